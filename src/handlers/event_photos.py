"""
Photo listing and deletion handlers.

Listings read the `small/` rendition prefix of the photo bucket and page
with S3 continuation tokens, returned to clients as `lastKey`.
"""

from typing import Any, Dict, List

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.api_types import get_body, get_query_param
    from utils.constants import MAX_FILES_PER_REQUEST, PHOTO_PREFIXES, Permission
    from utils.dynamodb import batch_delete, query_all, tables
    from utils.errors import AppError, ErrorCode
    from utils.logging import get_logger
    from utils.middleware import api_handler, require_csrf, require_permission
    from utils.naming import find_owner
    from utils.responses import ApiResponse, build_response
    from utils.storage import delete_keys, event_prefix, file_name, list_page, photo_key, random_keys
    from utils.tokens import get_caller
    from utils.validation import validate_photo_names
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.api_types import get_body, get_query_param
    from ..utils.constants import MAX_FILES_PER_REQUEST, PHOTO_PREFIXES, Permission
    from ..utils.dynamodb import batch_delete, query_all, tables
    from ..utils.errors import AppError, ErrorCode
    from ..utils.logging import get_logger
    from ..utils.middleware import api_handler, require_csrf, require_permission
    from ..utils.naming import find_owner
    from ..utils.responses import ApiResponse, build_response
    from ..utils.storage import delete_keys, event_prefix, file_name, list_page, photo_key, random_keys
    from ..utils.tokens import get_caller
    from ..utils.validation import validate_photo_names

logger = get_logger(__name__)

# Page sizes
OWNER_PAGE_SIZE = 100
PUBLIC_PAGE_SIZE = 20

# Random preview photos per event
RANDOM_PHOTO_COUNT = 3


@api_handler(require_csrf)
def get_event_photos(event: Dict[str, Any], context: Any) -> ApiResponse:
    """List one page of an event's photos.

    Query: eventId, marker (continuation token, may be empty)
    """
    caller = get_caller(event)
    event_id = get_query_param(event, "eventId")
    if not event_id:
        raise AppError(ErrorCode.INVALID_INPUT, "missing required fields")

    page = list_page(
        event_prefix("small", caller["organization"], event_id),
        OWNER_PAGE_SIZE,
        get_query_param(event, "marker") or None,
    )
    return build_response(
        {
            "success": True,
            "error": False,
            "photos": [file_name(key) for key in page["keys"]],
            "lastKey": page["nextToken"],
        }
    )


@api_handler(require_csrf)
def get_event_random_photos(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Return a few random photo names of an event for previews.

    Query: eventId
    """
    caller = get_caller(event)
    event_id = get_query_param(event, "eventId")
    if not event_id:
        raise AppError(ErrorCode.INVALID_INPUT, "missing required fields")

    keys = random_keys(event_prefix("small", caller["organization"], event_id), RANDOM_PHOTO_COUNT)
    headers = {"Cache-Control": "max-age=600"} if len(keys) >= RANDOM_PHOTO_COUNT else None
    return build_response({"success": True, "photos": [file_name(key) for key in keys]}, headers=headers)


@api_handler()
def get_photos_public(event: Dict[str, Any], context: Any) -> ApiResponse:
    """List one page of a public event's photos. No authentication.

    Query: eventId, marker
    """
    event_id = get_query_param(event, "eventId")
    if not event_id:
        raise AppError(ErrorCode.INVALID_INPUT, "missing required fields")

    owner = find_owner(event_id)
    if not owner:
        raise AppError(ErrorCode.INVALID_INPUT, "event not found")

    record = tables.events.get_item(
        Key={"organization": owner, "id": event_id},
        ProjectionExpression="isPublicEvent, total_photos",
    ).get("Item")
    if not record:
        raise AppError(ErrorCode.INVALID_INPUT, "event record not found")
    if record.get("isPublicEvent") is not True:
        raise AppError(ErrorCode.INVALID_INPUT, "event is not public")

    page = list_page(event_prefix("small", owner, event_id), PUBLIC_PAGE_SIZE, get_query_param(event, "marker") or None)
    return build_response(
        {
            "success": True,
            "photos": [file_name(key) for key in page["keys"]],
            "lastKey": page["nextToken"],
            "total": int(record.get("total_photos", 0)),
        }
    )


def delete_photo_faces(event_id: str, photos: List[str]) -> int:
    """Delete the face records detected in the given photos."""
    wanted = set(photos)
    keys = [
        {"eventId": str(item["eventId"]), "id": str(item["id"])}
        for item in query_all(
            tables.faces,
            KeyConditionExpression="eventId = :eventId",
            ExpressionAttributeValues={":eventId": event_id},
        )
        if item.get("image") in wanted
    ]
    return batch_delete(tables.faces, keys, ["eventId", "id"])


@api_handler(require_csrf, require_permission(Permission.MANAGE_EVENTS))
def delete_photos(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Delete photos from an event.

    Body: { eventId, photos: [name] }
    """
    caller = get_caller(event)
    organization = caller["organization"]
    body = get_body(event)
    event_id = body.get("eventId")
    if not event_id:
        raise AppError(ErrorCode.INVALID_INPUT, "Event ID not provided")
    photos = validate_photo_names(body.get("photos"), MAX_FILES_PER_REQUEST)

    # Step 1: Every rendition of every photo
    deleted_originals = 0
    for prefix in PHOTO_PREFIXES:
        deleted = delete_keys([photo_key(prefix, organization, event_id, photo) for photo in photos])
        if prefix == "original":
            deleted_originals = len(deleted)

    # Step 2: Faces found in those photos
    faces_deleted = delete_photo_faces(event_id, photos)

    # Step 3: Counter
    if deleted_originals:
        tables.events.update_item(
            Key={"organization": organization, "id": event_id},
            UpdateExpression="SET total_photos = total_photos - :num",
            ConditionExpression="total_photos >= :num",
            ExpressionAttributeValues={":num": deleted_originals},
        )

    logger.info(
        "Deleted photos",
        event_id=event_id,
        photos=len(photos),
        originals=deleted_originals,
        faces=faces_deleted,
    )
    return build_response({"success": True, "message": "Photos deleted successfully"})
