"""
Conditional mutations on shared counters and allotments.

Every write here is a single-item conditional update through
`attempt_update`. Callers that chain several of them register the matching
undo action on a `Compensations` stack so that a later failure can restore
the earlier writes.
"""

from typing import Any, Callable, Dict, List, Optional, Tuple, TypedDict

from .constants import EventsLimitType, GiftEventStatus, HandshakeStatus
from .dynamodb import MutationOutcome, attempt_update, tables
from .errors import AppError, ErrorCode
from .logging import get_logger

logger = get_logger(__name__)

# Donor organization fields copied onto an event bought with a gift
GIFT_DEFAULT_FIELDS = ("location", "photographerName", "website", "instagram", "facebook")
GIFT_FLAG_FIELDS = ("logo", "mainImage")


class GiftRedemption(TypedDict):
    """A gift event that passed every precondition and may be committed."""

    gift_id: int
    donor_organization: str
    available_tokens: int
    requested_tokens: int
    defaults: Dict[str, Any]


class Compensations:
    """Stack of undo actions executed in reverse order on failure."""

    def __init__(self) -> None:
        self._actions: List[Tuple[str, Callable[[], None]]] = []

    def __len__(self) -> int:
        return len(self._actions)

    def add(self, description: str, action: Callable[[], None]) -> None:
        """Register the undo action for a write that just succeeded."""
        self._actions.append((description, action))

    def run(self) -> None:
        """Undo registered writes, newest first. Failures are logged, never raised."""
        while self._actions:
            description, action = self._actions.pop()
            try:
                action()
                logger.info(f"Compensated: {description}")
            except Exception as e:
                logger.error(f"Compensation failed: {description}", exc_info=True, error=str(e))


# ----------------------------------------------------------------------------
# Event quota
# ----------------------------------------------------------------------------


def enforce_event_quota(organization: str, username: str, event_id: str, limit_type: str) -> None:
    """
    Record a new event for a user, failing if the user is at their limit.

    Args:
        organization: Organization of the user
        username: User creating the event
        event_id: Event being created
        limit_type: "number" enforces eventsLimit, anything else is unlimited

    Raises:
        AppError: LIMIT_REACHED (403) when at the limit, UPSTREAM_ERROR otherwise
    """
    condition = None
    if limit_type == EventsLimitType.NUMBER:
        condition = "size(eventsCreated) < eventsLimit"

    result = attempt_update(
        tables.users,
        {"organization": organization, "id": username},
        "SET eventsCreated = list_append(if_not_exists(eventsCreated, :emptyList), :eventId)",
        condition,
        values={":emptyList": [], ":eventId": [event_id]},
    )

    if result["outcome"] == MutationOutcome.PRECONDITION_FAILED:
        logger.info("Event limit reached", organization=organization, username=username)
        raise AppError(ErrorCode.LIMIT_REACHED, "You have reached your limit of events", {"reason": "limit"})
    if result["outcome"] == MutationOutcome.ERROR:
        logger.error("Failed to record event creation", username=username, error=str(result.get("error")))
        raise AppError(ErrorCode.UPSTREAM_ERROR, "You have reached your limit of events", {"reason": "unknown"})


def release_event_quota(organization: str, username: str, event_id: str) -> None:
    """Remove an event id from a user's eventsCreated list."""
    key = {"organization": organization, "id": username}
    item = tables.users.get_item(Key=key, ProjectionExpression="eventsCreated").get("Item") or {}
    created = list(item.get("eventsCreated", []))
    if event_id not in created:
        return

    index = created.index(event_id)
    result = attempt_update(
        tables.users,
        key,
        f"REMOVE eventsCreated[{index}]",
        f"eventsCreated[{index}] = :eventId",
        values={":eventId": event_id},
    )
    if result["outcome"] != MutationOutcome.SUCCESS:
        raise AppError(ErrorCode.UPSTREAM_ERROR, "Could not release event quota")


# ----------------------------------------------------------------------------
# Organization tokens
# ----------------------------------------------------------------------------


def debit_tokens(organization: str, amount: int) -> None:
    """
    Take tokens from an organization's balance.

    The balance never goes negative and only positive amounts are accepted.

    Raises:
        AppError: INVALID_INPUT for a non-positive amount, INSUFFICIENT_TOKENS
            when the balance is too low
    """
    if amount <= 0:
        raise AppError(ErrorCode.INVALID_INPUT, f"Token amount must be positive: {amount}")

    result = attempt_update(
        tables.organizations,
        {"id": organization},
        "SET #tokens = #tokens - :tokens",
        "#tokens >= :tokens AND :tokens > :zero",
        names={"#tokens": "tokens"},
        values={":tokens": amount, ":zero": 0},
    )

    if result["outcome"] == MutationOutcome.PRECONDITION_FAILED:
        logger.info("Not enough tokens", organization=organization, requested=amount)
        raise AppError(ErrorCode.INSUFFICIENT_TOKENS, "Not enough tokens", {"reason": "tokens"})
    if result["outcome"] == MutationOutcome.ERROR:
        raise result["error"]  # type: ignore[misc]

    logger.info("Debited tokens", organization=organization, amount=amount)


def refund_tokens(organization: str, amount: int) -> None:
    """Return previously debited tokens to an organization."""
    result = attempt_update(
        tables.organizations,
        {"id": organization},
        "SET #tokens = #tokens + :tokens",
        "attribute_exists(#id)",
        names={"#tokens": "tokens", "#id": "id"},
        values={":tokens": amount},
    )
    if result["outcome"] != MutationOutcome.SUCCESS:
        raise AppError(ErrorCode.UPSTREAM_ERROR, "Could not refund tokens")


# ----------------------------------------------------------------------------
# Gift events
# ----------------------------------------------------------------------------


def load_gift(organization: str, gift_id: Any, donor_organization: str, requested: int) -> GiftRedemption:
    """
    Load a gift event and check every redemption precondition.

    Nothing is written. Checks stop at the first failure.

    Args:
        organization: Organization redeeming the gift
        gift_id: Gift event id (numeric)
        donor_organization: Organization that issued the gift
        requested: Tokens the caller wants to use

    Returns:
        GiftRedemption ready for commit_gift

    Raises:
        AppError: GIFT_UNAVAILABLE describing the failed precondition
    """
    try:
        numeric_id = int(gift_id)
    except (TypeError, ValueError):
        raise AppError(ErrorCode.GIFT_UNAVAILABLE, "gift event not found or not belong to organization")

    gift = tables.gift_events.get_item(Key={"organization": organization, "id": numeric_id}).get("Item")
    donor = tables.organizations.get_item(
        Key={"id": donor_organization},
        ProjectionExpression="#id, #location, #name, photographerName, facebook, instagram, website, logo, mainImage",
        ExpressionAttributeNames={"#id": "id", "#location": "location", "#name": "name"},
    ).get("Item")

    if not gift or not donor:
        raise AppError(ErrorCode.GIFT_UNAVAILABLE, "gift event not found or not belong to organization")
    if gift.get("status") != GiftEventStatus.ACTIVE:
        raise AppError(ErrorCode.GIFT_UNAVAILABLE, "gift event not active")
    if gift.get("root") != donor_organization:
        raise AppError(ErrorCode.GIFT_UNAVAILABLE, "gift event not belong to organization")

    available = int(gift.get("tokens", 0))
    if available < requested:
        raise AppError(
            ErrorCode.GIFT_UNAVAILABLE,
            "not enough tokens in gift event",
            {"available": available, "requested": requested},
        )

    defaults = {field: donor[field] for field in GIFT_DEFAULT_FIELDS if donor.get(field)}
    defaults.update({flag: bool(donor.get(flag, False)) for flag in GIFT_FLAG_FIELDS})

    return GiftRedemption(
        gift_id=numeric_id,
        donor_organization=donor_organization,
        available_tokens=available,
        requested_tokens=requested,
        defaults=defaults,
    )


def commit_gift(organization: str, gift: GiftRedemption) -> int:
    """
    Transition a gift event ACTIVE -> USED.

    Re-checks status and remaining tokens so a concurrent redemption cannot
    consume the same gift twice.

    Returns:
        Photos granted by the gift

    Raises:
        AppError: GIFT_UNAVAILABLE if the gift changed since load_gift
    """
    tokens_used = gift["requested_tokens"]
    result = attempt_update(
        tables.gift_events,
        {"organization": organization, "id": gift["gift_id"]},
        "SET tokensUsed = :tokensUsed, #status = :used",
        "#status = :active AND #tokens >= :tokensUsed",
        names={"#status": "status", "#tokens": "tokens"},
        values={
            ":tokensUsed": tokens_used,
            ":used": GiftEventStatus.USED,
            ":active": GiftEventStatus.ACTIVE,
        },
    )

    if result["outcome"] == MutationOutcome.PRECONDITION_FAILED:
        logger.warning("Gift changed before commit", organization=organization, gift_id=gift["gift_id"])
        raise AppError(ErrorCode.GIFT_UNAVAILABLE, "gift event not active")
    if result["outcome"] == MutationOutcome.ERROR:
        raise result["error"]  # type: ignore[misc]

    logger.info("Redeemed gift event", organization=organization, gift_id=gift["gift_id"], tokens=tokens_used)
    return min(gift["available_tokens"], tokens_used)


def revert_gift(organization: str, gift_id: int) -> None:
    """Return a USED gift event to ACTIVE."""
    result = attempt_update(
        tables.gift_events,
        {"organization": organization, "id": gift_id},
        "SET #status = :active REMOVE tokensUsed",
        "#status = :used",
        names={"#status": "status"},
        values={":active": GiftEventStatus.ACTIVE, ":used": GiftEventStatus.USED},
    )
    if result["outcome"] != MutationOutcome.SUCCESS:
        raise AppError(ErrorCode.UPSTREAM_ERROR, "Could not revert gift event")


def gift_field_names(defaults: Dict[str, Any]) -> List[str]:
    """Names of the event fields sourced from a gift."""
    return [field for field in GIFT_DEFAULT_FIELDS if defaults.get(field)]


# ----------------------------------------------------------------------------
# Payment handshakes
# ----------------------------------------------------------------------------


def read_handshake_tokens(thtk: Optional[str], organization: str) -> int:
    """Tokens granted by a READY handshake owned by the organization, else 0."""
    if not thtk:
        return 0
    item = (
        tables.handshakes.get_item(
            Key={"thtk": thtk},
            ProjectionExpression="#tokens, #status, #organization",
            ExpressionAttributeNames={"#tokens": "tokens", "#status": "status", "#organization": "organization"},
        ).get("Item")
        or {}
    )
    if item.get("status") == HandshakeStatus.READY and item.get("organization") == organization:
        return int(item.get("tokens", 0))
    logger.info("Handshake not usable", thtk=thtk, status=item.get("status"))
    return 0


def mark_handshake_used(thtk: str, organization: str) -> None:
    """
    Consume a READY payment handshake owned by the organization.

    Raises:
        AppError: INVALID_INPUT when the handshake is not READY or belongs to
            another organization
    """
    result = attempt_update(
        tables.handshakes,
        {"thtk": thtk},
        "SET #status = :used",
        "#status = :ready AND #organization = :organization",
        names={"#status": "status", "#organization": "organization"},
        values={":used": HandshakeStatus.USED, ":ready": HandshakeStatus.READY, ":organization": organization},
    )
    if result["outcome"] == MutationOutcome.PRECONDITION_FAILED:
        logger.info("Handshake not available", thtk=thtk, organization=organization)
        raise AppError(ErrorCode.INVALID_INPUT, "Handshake is not available")
    if result["outcome"] == MutationOutcome.ERROR:
        raise result["error"]  # type: ignore[misc]


def release_handshake(thtk: str, organization: str) -> None:
    """Return a consumed handshake to READY."""
    result = attempt_update(
        tables.handshakes,
        {"thtk": thtk},
        "SET #status = :ready",
        "#status = :used AND #organization = :organization",
        names={"#status": "status", "#organization": "organization"},
        values={":used": HandshakeStatus.USED, ":ready": HandshakeStatus.READY, ":organization": organization},
    )
    if result["outcome"] != MutationOutcome.SUCCESS:
        raise AppError(ErrorCode.UPSTREAM_ERROR, "Could not release handshake")
