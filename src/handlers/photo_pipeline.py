"""
Queue consumers of the photo pipeline.

Uploads to the photo bucket publish object-created notifications to SNS,
which fans them out to SQS queues consumed here. Errors are re-raised so the
queue redelivers the message and eventually moves it to its dead-letter
queue.
"""

from typing import Any, Dict, List

from botocore.exceptions import ClientError

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.api_types import iter_object_created
    from utils.constants import (
        ASSETS_PREFIX,
        BRANDING_IMAGE_WIDTH,
        EVENT_RETENTION_DAYS,
        MAIN_IMAGE_WIDTH,
        PHOTO_RENDITIONS,
    )
    from utils.dynamodb import MutationOutcome, attempt_update, tables
    from utils.ids import ttl_after_days
    from utils.images import resize_to_width
    from utils.logging import get_logger
    from utils.recognition import index_faces, is_invalid_image
    from utils.storage import delete_object, get_object_bytes, photo_key, put_jpeg
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.api_types import iter_object_created
    from ..utils.constants import (
        ASSETS_PREFIX,
        BRANDING_IMAGE_WIDTH,
        EVENT_RETENTION_DAYS,
        MAIN_IMAGE_WIDTH,
        PHOTO_RENDITIONS,
    )
    from ..utils.dynamodb import MutationOutcome, attempt_update, tables
    from ..utils.ids import ttl_after_days
    from ..utils.images import resize_to_width
    from ..utils.logging import get_logger
    from ..utils.recognition import index_faces, is_invalid_image
    from ..utils.storage import delete_object, get_object_bytes, photo_key, put_jpeg

logger = get_logger(__name__)


def _parse_photo_key(key: str) -> List[str]:
    """Split original/{organization}/{eventId}/{photo} into its parts."""
    parts = key.split("/", 3)
    if len(parts) != 4 or not all(parts):
        raise ValueError(f"Unexpected photo key: {key}")
    return parts


def resize_branding_asset(bucket: str, key: str) -> str:
    """
    Resize an organization asset into organization-assets/resized/.

    Keys look like organization-assets/original/{org}/{asset} or
    organization-assets/original/{org}/{eventId}/{asset}.

    Returns:
        Key of the resized asset
    """
    parts = key.split("/")
    if len(parts) < 4:
        raise ValueError(f"Unexpected asset key: {key}")
    scope = "/".join(parts[2:])
    asset_name = parts[-1]
    width = MAIN_IMAGE_WIDTH if asset_name.startswith("mainImage") else BRANDING_IMAGE_WIDTH

    resized_key = f"{ASSETS_PREFIX}/resized/{scope}"
    put_jpeg(bucket, resized_key, resize_to_width(get_object_bytes(bucket, key), width))
    logger.info("Resized branding asset", key=key, resized_key=resized_key, width=width)
    return resized_key


def record_processed_photo(organization: str, event_id: str, photo: str) -> bool:
    """
    Add a photo to the event's photos_process list.

    Returns:
        False when the event quota is full or the photo is already listed
    """
    result = attempt_update(
        tables.events,
        {"organization": organization, "id": event_id},
        "SET photos_process = list_append(photos_process, :photo)",
        "size(photos_process) < number_of_photos AND NOT contains(photos_process, :photostr)",
        values={":photo": [photo], ":photostr": photo},
    )
    if result["outcome"] == MutationOutcome.PRECONDITION_FAILED:
        logger.warning("Photo not counted, quota full or duplicate", event_id=event_id, photo=photo)
        return False
    if result["outcome"] == MutationOutcome.ERROR:
        raise result["error"]  # type: ignore[misc]
    return True


def resize_event_photo(bucket: str, key: str) -> List[str]:
    """
    Create the medium and small renditions of an uploaded photo.

    Returns:
        Keys of the written renditions
    """
    _, organization, event_id, photo = _parse_photo_key(key)
    source = get_object_bytes(bucket, key)

    written: List[str] = []
    for prefix, width in PHOTO_RENDITIONS:
        target = photo_key(prefix, organization, event_id, photo)
        put_jpeg(bucket, target, resize_to_width(source, width))
        written.append(target)

    record_processed_photo(organization, event_id, photo)
    logger.info("Resized photo", key=key, renditions=written)
    return written


def resize_photo(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Resize uploaded photos and branding assets.

    Args:
        event: SQS event of SNS-wrapped S3 notifications
        context: Lambda context

    Returns:
        { resized: int }
    """
    resized = 0
    for obj in iter_object_created(event):
        try:
            if obj["key"].startswith(f"{ASSETS_PREFIX}/"):
                resize_branding_asset(obj["bucket"], obj["key"])
            else:
                resize_event_photo(obj["bucket"], obj["key"])
            resized += 1
        except Exception:
            logger.exception("Failed to resize object", bucket=obj["bucket"], key=obj["key"])
            raise

    return {"resized": resized}


def index_photo_faces(bucket: str, key: str) -> int:
    """
    Index the faces of one photo into its event's collection.

    Unreadable images are deleted from the bucket and skipped.

    Returns:
        Number of face records written
    """
    _, _organization, event_id, photo = _parse_photo_key(key)

    try:
        face_records = index_faces(event_id, bucket, key)
    except ClientError as e:
        if is_invalid_image(e):
            logger.warning("Invalid image format, deleting", key=key)
            delete_object(key, bucket)
            return 0
        raise

    ttl = ttl_after_days(EVENT_RETENTION_DAYS)
    with tables.faces.batch_writer(overwrite_by_pkeys=["eventId", "id"]) as batch_writer:
        for record in face_records:
            batch_writer.put_item(
                Item={
                    "eventId": event_id,
                    "id": record["Face"]["FaceId"],
                    "image": photo,
                    "ttl": ttl,
                }
            )

    logger.info(f"Indexed {len(face_records)} faces", event_id=event_id, photo=photo)
    return len(face_records)


def process_photo(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Index faces of uploaded photos.

    Args:
        event: SQS event of SNS-wrapped S3 notifications
        context: Lambda context

    Returns:
        { facesIndexed: int }
    """
    faces_indexed = 0
    for obj in iter_object_created(event):
        try:
            faces_indexed += index_photo_faces(obj["bucket"], obj["key"])
        except Exception:
            logger.exception("Failed to index photo", bucket=obj["bucket"], key=obj["key"])
            raise

    return {"facesIndexed": faces_indexed}
