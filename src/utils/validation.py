"""
Input validation utilities.

Validates event creation and update payloads, photo name lists and
promotion details. Every failure raises AppError(INVALID_INPUT).
"""

import re
from typing import Any, Dict, Iterable, List, Optional

from .errors import AppError, ErrorCode

# Event URL names may only contain letters, digits and hyphens
NAME_URL_FORBIDDEN = re.compile(r"[^A-Za-z0-9-]")

# Field length limits on event creation
SHORT_FIELD_MAX = 25
LONG_FIELD_MAX = 200
SHORT_CREATE_FIELDS = ("eventName", "nameUrl", "location", "photographerName")
LONG_CREATE_FIELDS = ("website", "instagram", "facebook", "watermarkPosition")

# Field length limits on event update
LONG_UPDATE_FIELDS = ("location", "photographerName", "website", "instagram", "facebook")

# Favorite photo names
MAX_PHOTO_NAME_LENGTH = 200

# Next event promotion fields
NEXT_EVENT_FIELDS = ("name", "date", "location", "website")
NEXT_EVENT_FIELD_MAX = 50

# Watermark size bounds
WATERMARK_SIZE_MIN = 0
WATERMARK_SIZE_MAX = 10000


def require_fields(payload: Dict[str, Any], fields: Iterable[str], message: str = "missing required fields") -> None:
    """
    Require non-empty values for each field.

    Raises:
        AppError: If any field is missing or empty
    """
    missing = [field for field in fields if payload.get(field) in (None, "")]
    if missing:
        raise AppError(ErrorCode.INVALID_INPUT, message, {"missingFields": missing})


def validate_non_negative(name: str, value: Any) -> int:
    """
    Coerce an optional credit amount to int, rejecting negatives.

    Whole floats (3.0) and integer strings ("3") are accepted; booleans and
    fractional amounts are not.

    Raises:
        AppError: If the value is not an integer or is negative
    """
    if value is None or value == "":
        return 0
    if isinstance(value, bool):
        raise AppError(ErrorCode.INVALID_INPUT, f"{name} must be an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise AppError(ErrorCode.INVALID_INPUT, f"{name} must be an integer")
        amount = int(value)
    elif isinstance(value, int):
        amount = value
    else:
        try:
            amount = int(str(value).strip())
        except ValueError:
            raise AppError(ErrorCode.INVALID_INPUT, f"{name} must be an integer")
    if amount < 0:
        raise AppError(ErrorCode.INVALID_INPUT, f"{name} is negative: {amount}")
    return amount


def _too_long(payload: Dict[str, Any], fields: Iterable[str], limit: int) -> bool:
    return any(len(str(payload.get(field) or "")) > limit for field in fields)


def validate_name_url(name_url: str) -> None:
    """
    Reject event URL names with characters outside [A-Za-z0-9-].

    Raises:
        AppError: If a forbidden character is present
    """
    if NAME_URL_FORBIDDEN.search(name_url):
        raise AppError(
            ErrorCode.INVALID_INPUT,
            "Event Url Name includes forbidden chars",
            {"nameUrl": name_url},
        )


def validate_create_event(payload: Dict[str, Any]) -> None:
    """
    Validate an event creation payload.

    Checks run in a fixed order and stop at the first failure:
    negative credits, required fields, field lengths, URL name characters.

    Args:
        payload: CreateEventDTO fields

    Raises:
        AppError: On the first failed check
    """
    validate_non_negative("creditsToUse", payload.get("creditsToUse"))
    require_fields(payload, ("eventName", "eventDate"))

    if _too_long(payload, SHORT_CREATE_FIELDS, SHORT_FIELD_MAX) or _too_long(
        payload, LONG_CREATE_FIELDS, LONG_FIELD_MAX
    ):
        raise AppError(ErrorCode.INVALID_INPUT, "Fields are too long")

    name_url = payload.get("nameUrl")
    if name_url:
        validate_name_url(str(name_url).strip())

    validate_non_negative("giftCreditsToUse", payload.get("giftCreditsToUse"))


def validate_update_event(payload: Dict[str, Any]) -> None:
    """
    Validate an event update payload.

    Raises:
        AppError: If the event id is missing or a field is too long
    """
    if not payload.get("eventId"):
        raise AppError(ErrorCode.INVALID_INPUT, "Missing event id")

    if len(str(payload.get("eventName") or "")) > SHORT_FIELD_MAX or _too_long(
        payload, LONG_UPDATE_FIELDS, LONG_FIELD_MAX
    ):
        raise AppError(ErrorCode.INVALID_INPUT, "Fields too long")


def resolve_watermark_size(value: Any) -> str:
    """
    Normalize a watermark size, falling back to "1".

    Examples:
        >>> resolve_watermark_size("250")
        '250'
        >>> resolve_watermark_size("huge")
        '1'
        >>> resolve_watermark_size(20000)
        '1'
    """
    try:
        size = float(value)
    except (TypeError, ValueError):
        return "1"
    if size != size or not WATERMARK_SIZE_MIN <= size <= WATERMARK_SIZE_MAX:
        return "1"
    return str(value)


def validate_photo_names(photos: Any, max_count: int) -> List[str]:
    """
    Validate a list of photo names for deletion.

    Raises:
        AppError: If the list is missing, malformed or too long
    """
    if not photos:
        raise AppError(ErrorCode.INVALID_INPUT, "Photos not provided")
    if not isinstance(photos, list) or not all(isinstance(p, str) for p in photos):
        raise AppError(ErrorCode.INVALID_INPUT, "Photos is not an array or some of the photos is not a string")
    if len(photos) > max_count:
        raise AppError(ErrorCode.INVALID_INPUT, "Photos array is too long")
    return photos


def validate_favorite_photos(photos: Any, max_count: int) -> Optional[List[str]]:
    """
    Validate an optional favorites list (1..max_count names, each 1..199 chars).

    Returns:
        The list, or None when not provided

    Raises:
        AppError: If the list is provided but invalid
    """
    if photos is None:
        return None
    if (
        not isinstance(photos, list)
        or not 0 < len(photos) <= max_count
        or not all(isinstance(p, str) and 0 < len(p) < MAX_PHOTO_NAME_LENGTH for p in photos)
    ):
        raise AppError(ErrorCode.INVALID_INPUT, "invalid photos")
    return photos


def validate_next_event(next_event: Any) -> Dict[str, str]:
    """
    Validate next-event promotion details.

    Raises:
        AppError: If a field is missing, not a string, or too long
    """
    if not isinstance(next_event, dict):
        raise AppError(ErrorCode.INVALID_INPUT, "missing required fields")
    require_fields(next_event, NEXT_EVENT_FIELDS)

    for field in NEXT_EVENT_FIELDS:
        value = next_event[field]
        if not isinstance(value, str) or len(value) > NEXT_EVENT_FIELD_MAX:
            raise AppError(ErrorCode.INVALID_INPUT, "Too long fields", {"field": field})

    return {field: next_event[field] for field in NEXT_EVENT_FIELDS}
