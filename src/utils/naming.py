"""
Event URL name allocation.

Event ids double as public URL slugs and must be unique across all
organizations. Uniqueness is checked against the mirror records stored in
the events table under the sentinel organization "-".
"""

from typing import Callable, Optional

from .constants import MAX_NAME_ATTEMPTS, MIRROR_ORGANIZATION
from .dynamodb import tables
from .errors import AppError, ErrorCode
from .ids import derive_slug, random_slug
from .logging import get_logger
from .validation import validate_name_url

logger = get_logger(__name__)


def name_exists(name: str) -> bool:
    """Return True if an event mirror already holds this name."""
    response = tables.events.get_item(
        Key={"organization": MIRROR_ORGANIZATION, "id": name},
        ProjectionExpression="#id",
        ExpressionAttributeNames={"#id": "id"},
    )
    return "Item" in response


def find_owner(name: str) -> Optional[str]:
    """Return the organization owning an event name, if any."""
    response = tables.events.get_item(Key={"organization": MIRROR_ORGANIZATION, "id": name})
    item = response.get("Item")
    return str(item["belongsTo"]) if item and item.get("belongsTo") else None


def resolve_event_name(
    candidate: Optional[str],
    exists: Callable[[str], bool] = name_exists,
    max_attempts: int = MAX_NAME_ATTEMPTS,
) -> str:
    """
    Allocate a unique event name.

    Without a candidate, random 8-character names are drawn. A taken
    candidate is retried as `<candidate>-<4 random chars>`.

    Args:
        candidate: Name requested by the caller (may be empty)
        exists: Lookup used to test a name
        max_attempts: Lookups before giving up

    Returns:
        A name that was free at lookup time

    Raises:
        AppError: ALREADY_EXISTS when every attempt collides, or
            INVALID_INPUT if the name contains forbidden characters
    """
    requested = (candidate or "").strip() or None
    name = requested or random_slug()

    for attempt in range(1, max_attempts + 1):
        if not exists(name):
            validate_name_url(name)
            if name != requested:
                logger.info("Allocated derived event name", requested=requested, name=name, attempts=attempt)
            return name
        logger.info("Event name taken", name=name, attempt=attempt)
        name = derive_slug(requested)

    logger.warning("Gave up allocating event name", requested=requested, attempts=max_attempts)
    raise AppError(
        ErrorCode.ALREADY_EXISTS,
        "Could not allocate a unique event url",
        {"nameUrl": requested or ""},
    )
