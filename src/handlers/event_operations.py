"""
Event management handlers.

Listing, reading, updating and deleting events, favorites, next-event
promotions and share QR codes. Events are keyed by (organization, id); every handler scopes
its reads and writes to the caller's organization.
"""

import json
from io import BytesIO
from typing import Any, Dict, List

import qrcode
from botocore.exceptions import ClientError

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.api_types import get_body, get_path_param, get_query_param
    from utils.constants import (
        MAX_FILES_PER_REQUEST,
        MIRROR_ORGANIZATION,
        STALE_UPLOAD_MINUTES,
        EventImagesStatus,
        Permission,
    )
    from utils.dynamodb import MutationOutcome, attempt_update, batch_delete, query_all, tables
    from utils.errors import AppError, ErrorCode
    from utils.ids import now_ms
    from utils.logging import get_logger
    from utils.middleware import api_handler, require_csrf, require_permission
    from utils.recognition import delete_collection
    from utils.responses import ApiResponse, build_response, get_domain
    from utils.storage import asset_key, delete_event_photos, delete_keys, put_png, qrcode_key
    from utils.tokens import get_caller
    from utils.validation import validate_favorite_photos, validate_next_event, validate_update_event
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.api_types import get_body, get_path_param, get_query_param
    from ..utils.constants import (
        MAX_FILES_PER_REQUEST,
        MIRROR_ORGANIZATION,
        STALE_UPLOAD_MINUTES,
        EventImagesStatus,
        Permission,
    )
    from ..utils.dynamodb import MutationOutcome, attempt_update, batch_delete, query_all, tables
    from ..utils.errors import AppError, ErrorCode
    from ..utils.ids import now_ms
    from ..utils.logging import get_logger
    from ..utils.middleware import api_handler, require_csrf, require_permission
    from ..utils.recognition import delete_collection
    from ..utils.responses import ApiResponse, build_response, get_domain
    from ..utils.storage import asset_key, delete_event_photos, delete_keys, put_png, qrcode_key
    from ..utils.tokens import get_caller
    from ..utils.validation import validate_favorite_photos, validate_next_event, validate_update_event

logger = get_logger(__name__)

# Request field -> stored attribute, for fields that can be updated
UPDATABLE_FIELDS = {
    "eventName": "name",
    "eventDate": "event_date",
    "location": "location",
    "photographerName": "photographer_name",
    "website": "website",
    "instagram": "instagram",
    "facebook": "facebook",
    "isPublicEvent": "isPublicEvent",
}

# Fields that may be cleared with an empty string
CLEARABLE_FIELDS = ("location", "photographerName", "website", "instagram", "facebook")

EVENT_LIST_PROJECTION = (
    "#id, #name, event_date, logo, giftRoot, number_of_photos, total_photos, photos_process, "
    "#location, username, time_created, photographer_name, imagesStatus, missingPhotos, "
    "lastUpdated, logoVersion, isPublicEvent, #ttl"
)


def requested_updates(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Pick the updatable fields present in a payload (empty strings clear text fields)."""
    requested: Dict[str, Any] = {}
    for field in UPDATABLE_FIELDS:
        if field not in payload:
            continue
        value = payload[field]
        if field == "isPublicEvent" or value or (value == "" and field in CLEARABLE_FIELDS):
            requested[field] = value
    return requested


def _is_stale(item: Dict[str, Any], now: int) -> bool:
    last_updated = item.get("lastUpdated")
    return last_updated is not None and int(last_updated) < now - STALE_UPLOAD_MINUTES * 60 * 1000


def reconcile_event(organization: str, item: Dict[str, Any], now: int) -> Dict[str, Any]:
    """
    Settle the counters of an event whose upload went quiet.

    A finished upload folds photos_process into total_photos and frees the
    quota. An upload still marked UPLOADING becomes DONE when every paid
    photo was processed, otherwise SUSPENDED with missingPhotos set.

    Returns:
        The item with reconciled values
    """
    if not _is_stale(item, now):
        return item

    processed = list(item.get("photos_process") or [])
    key = {"organization": organization, "id": item["id"]}
    status = item.get("imagesStatus")

    if status == EventImagesStatus.DONE and processed:
        tables.events.update_item(
            Key=key,
            UpdateExpression=(
                "SET total_photos = total_photos + :processed, photos_process = :empty, "
                "#tokens = :empty, number_of_photos = :zero"
            ),
            ExpressionAttributeNames={"#tokens": "tokens"},
            ExpressionAttributeValues={":processed": len(processed), ":empty": [], ":zero": 0},
        )
        item.update(
            total_photos=int(item.get("total_photos", 0)) + len(processed),
            photos_process=[],
            number_of_photos=0,
        )
        logger.info("Folded processed photos into total", event_id=item["id"], processed=len(processed))

    elif status == EventImagesStatus.UPLOADING:
        missing = max(0, int(item.get("number_of_photos", 0)) - len(processed))
        new_status = EventImagesStatus.DONE if missing == 0 else EventImagesStatus.SUSPENDED
        tables.events.update_item(
            Key=key,
            UpdateExpression="SET imagesStatus = :imagesStatus, missingPhotos = :missingPhotos",
            ExpressionAttributeValues={":imagesStatus": new_status, ":missingPhotos": missing},
        )
        item.update(imagesStatus=new_status, missingPhotos=missing)
        logger.info("Settled stale upload", event_id=item["id"], status=new_status, missing=missing)

    return item


@api_handler(require_csrf)
def get_events(event: Dict[str, Any], context: Any) -> ApiResponse:
    """List the caller organization's events, newest first."""
    caller = get_caller(event)
    organization = caller["organization"]

    items = list(
        query_all(
            tables.events,
            KeyConditionExpression="#org = :organization",
            ProjectionExpression=EVENT_LIST_PROJECTION,
            ExpressionAttributeNames={
                "#org": "organization",
                "#id": "id",
                "#name": "name",
                "#location": "location",
                "#ttl": "ttl",
            },
            ExpressionAttributeValues={":organization": organization},
        )
    )

    now = now_ms()
    events = [reconcile_event(organization, item, now) for item in items]
    events.sort(key=lambda item: int(item.get("time_created", 0)), reverse=True)

    logger.info(f"Listed {len(events)} events", organization=organization)
    return build_response({"success": True, "events": events})


@api_handler(require_csrf)
def get_single_event(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Read one event by its URL name (path parameter nameUrl)."""
    caller = get_caller(event)
    name_url = get_path_param(event, "nameUrl")
    if not name_url:
        raise AppError(ErrorCode.INVALID_INPUT, "Missing event name url")

    item = tables.events.get_item(Key={"organization": caller["organization"], "id": name_url}).get("Item")
    if not item:
        raise AppError(ErrorCode.NOT_FOUND, "Event not found")

    # Upload bookkeeping is internal
    for internal in ("tokens", "photos_process"):
        item.pop(internal, None)
    return build_response({"success": True, "error": False, "event": item})


@api_handler(require_csrf, require_permission(Permission.MANAGE_EVENTS))
def update_event(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Update event details.

    Body: { event: UpdateEventDTO }

    Fields that were donated by a gift (listed in giftFields) are never
    overwritten.
    """
    caller = get_caller(event)
    payload = get_body(event).get("event")
    if not isinstance(payload, dict):
        raise AppError(ErrorCode.INVALID_INPUT, "Missing event id")

    validate_update_event(payload)
    event_id = payload["eventId"]

    requested = requested_updates(payload)
    if not requested:
        raise AppError(ErrorCode.INVALID_INPUT, "No fields to update")

    key = {"organization": caller["organization"], "id": event_id}
    current = tables.events.get_item(Key=key, ProjectionExpression="giftFields").get("Item")
    if current is None:
        raise AppError(ErrorCode.NOT_FOUND, "Event not found")

    gift_fields = set(current.get("giftFields") or [])
    updates = {field: value for field, value in requested.items() if field not in gift_fields}
    if not updates:
        raise AppError(ErrorCode.INVALID_INPUT, "No fields to update")

    if "isPublicEvent" in updates:
        updates["isPublicEvent"] = bool(updates["isPublicEvent"])

    names: Dict[str, str] = {}
    values: Dict[str, Any] = {}
    assignments: List[str] = []
    for i, (field, value) in enumerate(updates.items()):
        names[f"#f{i}"] = UPDATABLE_FIELDS[field]
        values[f":v{i}"] = value
        assignments.append(f"#f{i} = :v{i}")
    names["#id"] = "id"

    result = attempt_update(
        tables.events,
        key,
        "SET " + ", ".join(assignments),
        "attribute_exists(#id)",
        names=names,
        values=values,
        return_values="ALL_NEW",
    )
    if result["outcome"] == MutationOutcome.PRECONDITION_FAILED:
        raise AppError(ErrorCode.NOT_FOUND, "Event not found")
    if result["outcome"] == MutationOutcome.ERROR:
        raise result["error"]  # type: ignore[misc]

    skipped = sorted(set(requested) - set(updates))
    logger.info("Updated event", event_id=event_id, fields=sorted(updates), skipped_gift_fields=skipped or None)
    return build_response(
        {
            "success": True,
            "error": False,
            "message": "Event updated successfully",
            "event": result["attributes"],
        }
    )


def delete_event_faces(event_id: str) -> int:
    """Delete every face record of an event."""
    keys = [
        {"eventId": str(item["eventId"]), "id": str(item["id"])}
        for item in query_all(
            tables.faces,
            KeyConditionExpression="eventId = :eventId",
            ExpressionAttributeValues={":eventId": event_id},
            ProjectionExpression="eventId, #id",
            ExpressionAttributeNames={"#id": "id"},
        )
    ]
    deleted = batch_delete(tables.faces, keys, ["eventId", "id"])
    logger.info(f"Deleted {deleted} faces", event_id=event_id)
    return deleted


@api_handler(require_csrf, require_permission(Permission.MANAGE_EVENTS))
def delete_event(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Delete an event with its mirror, faces, collection and photos.

    Query: id
    """
    caller = get_caller(event)
    organization = caller["organization"]
    event_id = get_query_param(event, "id")
    if not event_id:
        raise AppError(ErrorCode.INVALID_INPUT, "Event ID not provided")

    existing = tables.events.get_item(
        Key={"organization": organization, "id": event_id},
        ProjectionExpression="#id",
        ExpressionAttributeNames={"#id": "id"},
    ).get("Item")
    if not existing:
        raise AppError(ErrorCode.NOT_FOUND, "Event not found")

    # Step 1: Records
    tables.events.delete_item(Key={"organization": organization, "id": event_id})
    tables.events.delete_item(Key={"organization": MIRROR_ORGANIZATION, "id": event_id})

    # Step 2: Faces and their collection
    delete_event_faces(event_id)
    delete_collection(event_id)

    # Step 3: Photos
    delete_event_photos(organization, event_id)

    logger.info("Deleted event", event_id=event_id, organization=organization)
    return build_response({"success": True, "message": "Event deleted successfully"})


@api_handler(require_csrf, require_permission(Permission.MANAGE_EVENTS))
def change_photos_favorite(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Add photos to or remove photos from an event's favorites.

    Body: { eventId, photosToAdd?, photosToRemove? }
    """
    caller = get_caller(event)
    body = get_body(event)
    event_id = body.get("eventId")
    to_add = body.get("photosToAdd")
    to_remove = body.get("photosToRemove")

    if not event_id or (to_add is None and to_remove is None):
        raise AppError(ErrorCode.INVALID_INPUT, "missing required fields")

    to_add = validate_favorite_photos(to_add, MAX_FILES_PER_REQUEST)
    to_remove = validate_favorite_photos(to_remove, MAX_FILES_PER_REQUEST)

    key = {"organization": caller["organization"], "id": event_id}
    item = tables.events.get_item(Key=key, ProjectionExpression="favorite_photos").get("Item")
    if item is None:
        raise AppError(ErrorCode.NOT_FOUND, "Event not found")

    favorites: List[str] = list(item.get("favorite_photos") or [])
    for photo in to_add or []:
        if photo not in favorites:
            favorites.append(photo)
    if to_remove:
        removed = set(to_remove)
        favorites = [photo for photo in favorites if photo not in removed]

    tables.events.update_item(
        Key=key,
        UpdateExpression="SET favorite_photos = :favorites",
        ExpressionAttributeValues={":favorites": favorites},
    )
    logger.info("Updated favorite photos", event_id=event_id, count=len(favorites))
    return build_response(
        {"success": True, "message": "successfully updated favorite photos", "favoritePhotos": favorites}
    )


@api_handler(require_csrf, require_permission(Permission.MANAGE_EVENTS))
def set_next_event_promotion(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Attach a promotion for the organization's next event.

    Body: { eventId, nextEvent: { name, date, location, website } }
    """
    caller = get_caller(event)
    body = get_body(event)
    event_id = body.get("eventId")
    if not event_id or not body.get("nextEvent"):
        raise AppError(ErrorCode.INVALID_INPUT, "missing required fields")

    next_event = validate_next_event(body["nextEvent"])

    result = attempt_update(
        tables.events,
        {"organization": caller["organization"], "id": event_id},
        "SET nextEventPromotion = :promotion",
        "attribute_exists(#id)",
        names={"#id": "id"},
        values={":promotion": json.dumps(next_event)},
    )
    if result["outcome"] == MutationOutcome.PRECONDITION_FAILED:
        raise AppError(ErrorCode.NOT_FOUND, "Event not found")
    if result["outcome"] == MutationOutcome.ERROR:
        raise result["error"]  # type: ignore[misc]

    return build_response({"success": True, "message": "successfully updated next event promotion"})


@api_handler(require_csrf, require_permission(Permission.MANAGE_EVENTS))
def delete_next_event_promotion(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Remove an event's next-event promotion and its logo.

    Query: eventId
    """
    caller = get_caller(event)
    organization = caller["organization"]
    event_id = get_query_param(event, "eventId")
    if not event_id:
        raise AppError(ErrorCode.INVALID_INPUT, "missing eventId")

    result = attempt_update(
        tables.events,
        {"organization": organization, "id": event_id},
        "REMOVE nextEventPromotion",
        "attribute_exists(#id)",
        names={"#id": "id"},
    )
    if result["outcome"] == MutationOutcome.PRECONDITION_FAILED:
        raise AppError(ErrorCode.NOT_FOUND, "Event not found")
    if result["outcome"] == MutationOutcome.ERROR:
        raise result["error"]  # type: ignore[misc]

    try:
        delete_keys(
            [
                asset_key("original", organization, "next-event-logo", event_id),
                asset_key("resized", organization, "next-event-logo", event_id),
            ]
        )
    except ClientError as e:
        logger.warning("Failed to delete next event logo", event_id=event_id, error=str(e))

    return build_response({"success": True, "message": "successfully deleted next event promotion"})


@api_handler(require_csrf)
def create_share_qrcode(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Render the QR code guests scan to open an event's gallery.

    Body: { eventId }

    The PNG encodes https://{site domain}/{eventId} and is stored under
    organization-assets/qrcodes/; the event is flagged with qrcode = true.
    """
    caller = get_caller(event)
    organization = caller["organization"]
    event_id = get_body(event).get("eventId")
    if not event_id:
        raise AppError(ErrorCode.INVALID_INPUT, "missing eventId")

    existing = tables.events.get_item(
        Key={"organization": organization, "id": event_id},
        ProjectionExpression="#id",
        ExpressionAttributeNames={"#id": "id"},
    ).get("Item")
    if not existing:
        raise AppError(ErrorCode.NOT_FOUND, "Event not found")

    buffer = BytesIO()
    qrcode.make(f"https://{get_domain()}/{event_id}").save(buffer, format="PNG")
    key = qrcode_key(organization, event_id)
    put_png(key, buffer.getvalue())

    result = attempt_update(
        tables.events,
        {"organization": organization, "id": event_id},
        "SET qrcode = :true",
        "attribute_exists(#id)",
        names={"#id": "id"},
        values={":true": True},
    )
    if result["outcome"] == MutationOutcome.PRECONDITION_FAILED:
        raise AppError(ErrorCode.NOT_FOUND, "Event not found")
    if result["outcome"] == MutationOutcome.ERROR:
        raise result["error"]  # type: ignore[misc]

    logger.info("Created share QR code", organization=organization, event_id=event_id)
    return build_response({"success": True, "qrcode": key})
