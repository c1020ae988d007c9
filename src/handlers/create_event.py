"""
Event creation handlers.

create_resources provisions a new event: URL name, user quota, token and
gift debits, the face collection, and the event plus mirror records. Each
debit-like step registers an undo action so a later failure leaves the
organization, user and gift as they were.
"""

from typing import Any, Dict, List, Optional

from botocore.exceptions import ClientError

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.api_types import get_body, get_query_param
    from utils.constants import EVENT_RETENTION_DAYS, MIRROR_ORGANIZATION, EventImagesStatus, Permission
    from utils.dynamodb import MutationOutcome, attempt_update, get_dynamodb_resource, tables
    from utils.errors import AppError, ErrorCode
    from utils.ids import now_ms, ttl_after_days
    from utils.ledger import (
        Compensations,
        GiftRedemption,
        commit_gift,
        debit_tokens,
        enforce_event_quota,
        gift_field_names,
        load_gift,
        mark_handshake_used,
        read_handshake_tokens,
        refund_tokens,
        release_event_quota,
        revert_gift,
    )
    from utils.logging import get_logger
    from utils.middleware import api_handler, require_csrf, require_permission
    from utils.naming import name_exists, resolve_event_name
    from utils.recognition import create_collection_with_fallback, delete_collection
    from utils.responses import ApiResponse, build_response
    from utils.tokens import Caller, get_caller
    from utils.validation import resolve_watermark_size, validate_create_event, validate_non_negative
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.api_types import get_body, get_query_param
    from ..utils.constants import EVENT_RETENTION_DAYS, MIRROR_ORGANIZATION, EventImagesStatus, Permission
    from ..utils.dynamodb import MutationOutcome, attempt_update, get_dynamodb_resource, tables
    from ..utils.errors import AppError, ErrorCode
    from ..utils.ids import now_ms, ttl_after_days
    from ..utils.ledger import (
        Compensations,
        GiftRedemption,
        commit_gift,
        debit_tokens,
        enforce_event_quota,
        gift_field_names,
        load_gift,
        mark_handshake_used,
        read_handshake_tokens,
        refund_tokens,
        release_event_quota,
        revert_gift,
    )
    from ..utils.logging import get_logger
    from ..utils.middleware import api_handler, require_csrf, require_permission
    from ..utils.naming import name_exists, resolve_event_name
    from ..utils.recognition import create_collection_with_fallback, delete_collection
    from ..utils.responses import ApiResponse, build_response
    from ..utils.tokens import Caller, get_caller
    from ..utils.validation import resolve_watermark_size, validate_create_event, validate_non_negative

logger = get_logger(__name__)


def build_event_item(
    event_id: str,
    caller: Caller,
    payload: Dict[str, Any],
    number_of_photos: int,
    gift: Optional[GiftRedemption],
    ttl: int,
) -> Dict[str, Any]:
    """
    Build the primary event record.

    Fields donated by a gift win over the request values and are listed in
    giftFields so later updates leave them alone.
    """
    defaults: Dict[str, Any] = gift["defaults"] if gift else {}

    def pick(field: str) -> str:
        return str(defaults.get(field) or payload.get(field) or "")

    return {
        "id": event_id,
        "organization": caller["organization"],
        "username": caller["username"],
        "name": payload["eventName"],
        "number_of_photos": number_of_photos,
        "total_photos": 0,
        "photos_process": [],
        "tokens": [],
        "time_created": now_ms(),
        "selfies_taken": 0,
        "photos_taken": 0,
        "event_date": payload["eventDate"],
        "location": pick("location"),
        "photographer_name": pick("photographerName"),
        "favorite_photos": [],
        "nextEventPromotion": "",
        "website": pick("website"),
        "instagram": pick("instagram"),
        "facebook": pick("facebook"),
        "imagesStatus": EventImagesStatus.UPLOADING,
        "ttl": ttl,
        "giftId": str(payload.get("selectedGiftEventId") or "") if gift else "",
        "giftFields": gift_field_names(defaults),
        "mainImage": bool(defaults.get("mainImage", False)),
        "logo": bool(defaults.get("logo", False)),
        "watermark": bool(payload.get("watermark", False)),
        "eventWatermarkSize": int(float(resolve_watermark_size(payload.get("eventWatermarkSize")))),
        "watermarkPosition": str(payload.get("watermarkPosition") or ""),
        "isPublicEvent": bool(payload.get("isPublicEvent", False)),
    }


def build_mirror_item(event_id: str, organization: str, ttl: int) -> Dict[str, Any]:
    """Build the global uniqueness record for an event name."""
    return {
        "id": event_id,
        "organization": MIRROR_ORGANIZATION,
        "belongsTo": organization,
        "ttl": ttl,
    }


def write_event_records(event_item: Dict[str, Any], mirror_item: Dict[str, Any]) -> None:
    """
    Write the mirror and the event in one batch.

    Raises:
        AppError: If the store reports unprocessed items
    """
    table_name = tables.events.name
    response = get_dynamodb_resource().batch_write_item(
        RequestItems={
            table_name: [
                {"PutRequest": {"Item": mirror_item}},
                {"PutRequest": {"Item": event_item}},
            ]
        }
    )
    unprocessed: Dict[str, List[Any]] = response.get("UnprocessedItems") or {}
    if any(unprocessed.values()):
        logger.error("Event records were not fully written", event_id=event_item["id"])
        raise AppError(ErrorCode.UPSTREAM_ERROR, "Could not save event")


def delete_event_records(event_id: str, organization: str) -> None:
    """Delete an event and its mirror."""
    events_table = tables.events
    events_table.delete_item(Key={"organization": organization, "id": event_id})
    events_table.delete_item(Key={"organization": MIRROR_ORGANIZATION, "id": event_id})


def provision_event(caller: Caller, payload: Dict[str, Any]) -> str:
    """
    Create every resource of a new event.

    Args:
        caller: Identity of the creating user
        payload: CreateEventDTO fields

    Returns:
        The id of the created event

    Raises:
        AppError: On validation, quota, token or gift failures
        ClientError: On unexpected service failures (after compensation)
    """
    organization = caller["organization"]

    # Step 1: Validate input before touching anything
    validate_create_event(payload)
    credits_to_use = validate_non_negative("creditsToUse", payload.get("creditsToUse"))
    gift_credits = validate_non_negative("giftCreditsToUse", payload.get("giftCreditsToUse"))

    # Step 2: Allocate a unique URL name
    event_id = resolve_event_name(payload.get("nameUrl"))

    # Step 3: Check the gift without redeeming it
    gift: Optional[GiftRedemption] = None
    gift_id = payload.get("selectedGiftEventId")
    donor_organization = payload.get("selectedGiftEventOrgId")
    if gift_credits and gift_id and donor_organization:
        gift = load_gift(organization, gift_id, str(donor_organization), gift_credits)

    compensations = Compensations()
    try:
        # Step 4: Count the event against the user's quota
        enforce_event_quota(organization, caller["username"], event_id, caller["events_limit_type"])
        compensations.add(
            "release event quota",
            lambda: release_event_quota(organization, caller["username"], event_id),
        )

        # Step 5: Photos paid through a payment handshake
        thtk = payload.get("thtk")
        handshake_tokens = read_handshake_tokens(thtk, organization)
        number_of_photos = handshake_tokens

        # Step 6: Photos paid with organization tokens
        if credits_to_use:
            debit_tokens(organization, credits_to_use)
            compensations.add("refund tokens", lambda: refund_tokens(organization, credits_to_use))
            number_of_photos += credits_to_use

        # Step 7: Photos paid with a gift
        if gift is not None:
            redeemed = gift
            number_of_photos += commit_gift(organization, redeemed)
            compensations.add("revert gift", lambda: revert_gift(organization, redeemed["gift_id"]))

        # Step 8: Face collection (its id becomes the event id)
        collection_id = create_collection_with_fallback(event_id)
        compensations.add("delete collection", lambda: delete_collection(collection_id))
        if collection_id != event_id and name_exists(collection_id):
            raise AppError(ErrorCode.ALREADY_EXISTS, "Could not allocate a unique event url")

        # Step 9: Event and mirror records
        ttl = ttl_after_days(EVENT_RETENTION_DAYS)
        event_item = build_event_item(collection_id, caller, payload, number_of_photos, gift, ttl)
        mirror_item = build_mirror_item(collection_id, organization, ttl)
        compensations.add("delete event records", lambda: delete_event_records(collection_id, organization))
        write_event_records(event_item, mirror_item)
    except (AppError, ClientError):
        compensations.run()
        raise

    # Step 10: Consume the handshake; the event already exists at this point
    if thtk and handshake_tokens:
        try:
            mark_handshake_used(thtk, organization)
        except (AppError, ClientError) as e:
            logger.error("Failed to mark handshake as used", exc_info=True, thtk=thtk, error=str(e))

    logger.info(
        "Created event",
        event_id=collection_id,
        organization=organization,
        number_of_photos=number_of_photos,
    )
    return collection_id


@api_handler(require_csrf, require_permission(Permission.CREATE_EVENTS))
def create_resources(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Create an event.

    Body: { event: CreateEventDTO }

    Returns:
        { success: true, eventId }
    """
    caller = get_caller(event)
    payload = get_body(event).get("event")
    if not isinstance(payload, dict):
        raise AppError(ErrorCode.INVALID_INPUT, "missing required fields")

    event_id = provision_event(caller, payload)
    return build_response({"success": True, "eventId": event_id})


@api_handler()
def verify_name_url(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Report whether an event URL name is taken.

    Query: nameUrl
    """
    name_url = get_query_param(event, "nameUrl")
    if not name_url:
        raise AppError(ErrorCode.INVALID_INPUT, "Missing name parameter")

    return build_response({"exist": name_exists(name_url)})


@api_handler(require_csrf, require_permission(Permission.CREATE_EVENTS))
def finish_upload(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Mark an event's upload as complete.

    Body: { eventId }
    """
    caller = get_caller(event)
    event_id = get_body(event).get("eventId")
    if not event_id:
        raise AppError(ErrorCode.INVALID_INPUT, "Missing event id")

    result = attempt_update(
        tables.events,
        {"organization": caller["organization"], "id": event_id},
        "SET imagesStatus = :imagesStatus, missingPhotos = :missingPhotos",
        "attribute_exists(#id)",
        names={"#id": "id"},
        values={":imagesStatus": EventImagesStatus.DONE, ":missingPhotos": 0},
    )
    if result["outcome"] == MutationOutcome.PRECONDITION_FAILED:
        raise AppError(ErrorCode.NOT_FOUND, "Event not found")
    if result["outcome"] == MutationOutcome.ERROR:
        raise result["error"]  # type: ignore[misc]
    logger.info("Finished upload", event_id=event_id)
    return build_response({"success": True, "err": False})
