"""
Object storage utilities.

Key layout of the photo bucket:
    original/{organization}/{eventId}/{photo}
    medium/{organization}/{eventId}/{photo}
    small/{organization}/{eventId}/{photo}
    organization-assets/{original|resized}/{organization}/[{eventId}/]{asset}
    organization-assets/qrcodes/{organization}/{eventId}/qrcode.png
"""

import os
import random
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

import boto3
from botocore.exceptions import ClientError

if TYPE_CHECKING:  # pragma: no cover
    from mypy_boto3_s3.client import S3Client

from .constants import ASSETS_PREFIX, PHOTO_PREFIXES, PRESIGN_EXPIRES_SECONDS
from .dynamodb import get_required_env
from .logging import get_logger

logger = get_logger(__name__)

# Module-level S3 client proxy for testing
s3_client: "S3Client | None" = None

# DeleteObjects accepts at most this many keys
DELETE_BATCH_SIZE = 1000


def _get_s3_client() -> "S3Client":
    """Return the S3 client (module-level override for tests, otherwise a fresh boto3 client)."""
    global s3_client
    if s3_client is not None:
        return s3_client
    return boto3.client("s3", endpoint_url=os.getenv("S3_ENDPOINT"))


def get_photo_bucket() -> str:
    """Name of the bucket holding photos and organization assets."""
    return get_required_env("PHOTO_BUCKET_NAME")


def photo_key(prefix: str, organization: str, event_id: str, photo: str) -> str:
    """Key of one photo rendition."""
    return f"{prefix}/{organization}/{event_id}/{photo}"


def event_prefix(prefix: str, organization: str, event_id: str) -> str:
    """Key prefix of all photos of one rendition of an event."""
    return f"{prefix}/{organization}/{event_id}/"


def asset_key(variant: str, organization: str, asset: str, event_id: Optional[str] = None) -> str:
    """
    Key of an organization branding asset.

    Args:
        variant: "original" or "resized"
        organization: Organization id
        asset: Asset file name (e.g. "logo-2")
        event_id: Event the asset belongs to, if event-scoped

    Returns:
        organization-assets/{variant}/{organization}/[{event_id}/]{asset}
    """
    scope = f"{organization}/{event_id}" if event_id else organization
    return f"{ASSETS_PREFIX}/{variant}/{scope}/{asset}"


def presign_put(key: str, content_length: int, bucket: Optional[str] = None) -> str:
    """
    Generate a presigned PUT URL for a JPEG upload.

    Args:
        key: Target object key
        content_length: Exact size the client will upload
        bucket: Bucket name (defaults to the photo bucket)

    Returns:
        Presigned URL valid for one hour
    """
    s3 = _get_s3_client()
    url: str = s3.generate_presigned_url(
        "put_object",
        Params={
            "Bucket": bucket or get_photo_bucket(),
            "Key": key,
            "ContentType": "image/jpeg",
            "ContentLength": content_length,
        },
        ExpiresIn=PRESIGN_EXPIRES_SECONDS,
    )
    return url


def get_object_bytes(bucket: str, key: str) -> bytes:
    """Download an object."""
    response = _get_s3_client().get_object(Bucket=bucket, Key=key)
    body: bytes = response["Body"].read()
    return body


def put_jpeg(bucket: str, key: str, body: bytes) -> None:
    """Upload JPEG bytes."""
    _get_s3_client().put_object(Bucket=bucket, Key=key, Body=body, ContentType="image/jpeg")


def qrcode_key(organization: str, event_id: str) -> str:
    """Key of an event's share QR code."""
    return f"{ASSETS_PREFIX}/qrcodes/{organization}/{event_id}/qrcode.png"


def put_png(key: str, body: bytes, bucket: Optional[str] = None) -> None:
    """Upload PNG bytes (defaults to the photo bucket)."""
    _get_s3_client().put_object(Bucket=bucket or get_photo_bucket(), Key=key, Body=body, ContentType="image/png")


def list_page(
    prefix: str, max_keys: int, continuation_token: Optional[str] = None, bucket: Optional[str] = None
) -> Dict[str, Any]:
    """
    List one page of keys under a prefix.

    Returns:
        {"keys": [...], "nextToken": str | None}
    """
    kwargs: Dict[str, Any] = {
        "Bucket": bucket or get_photo_bucket(),
        "Prefix": prefix,
        "MaxKeys": max_keys,
    }
    if continuation_token:
        kwargs["ContinuationToken"] = continuation_token

    response = _get_s3_client().list_objects_v2(**kwargs)
    keys = [obj["Key"] for obj in response.get("Contents", [])]
    next_token = response.get("NextContinuationToken") if response.get("IsTruncated") else None
    return {"keys": keys, "nextToken": next_token}


def list_all_keys(prefix: str, bucket: Optional[str] = None) -> List[str]:
    """List every key under a prefix."""
    keys: List[str] = []
    token: Optional[str] = None
    while True:
        page = list_page(prefix, DELETE_BATCH_SIZE, token, bucket)
        keys.extend(page["keys"])
        token = page["nextToken"]
        if not token:
            return keys


def delete_keys(keys: Iterable[str], bucket: Optional[str] = None) -> List[str]:
    """
    Delete keys in batches of 1000.

    Returns:
        Keys reported as deleted

    Raises:
        ClientError: If a batch request fails
    """
    bucket_name = bucket or get_photo_bucket()
    s3 = _get_s3_client()
    pending = list(keys)
    deleted: List[str] = []

    for i in range(0, len(pending), DELETE_BATCH_SIZE):
        batch = pending[i : i + DELETE_BATCH_SIZE]
        response = s3.delete_objects(
            Bucket=bucket_name,
            Delete={"Objects": [{"Key": key} for key in batch], "Quiet": False},
        )
        deleted.extend(obj["Key"] for obj in response.get("Deleted", []))
        for error in response.get("Errors", []):
            logger.warning("Failed to delete object", key=error.get("Key"), error=error.get("Message"))

    return deleted


def delete_prefix(prefix: str, bucket: Optional[str] = None) -> int:
    """Delete every object under a prefix and return how many were removed."""
    keys = list_all_keys(prefix, bucket)
    if not keys:
        return 0
    return len(delete_keys(keys, bucket))


def delete_event_photos(organization: str, event_id: str) -> int:
    """Delete all renditions of every photo of an event."""
    total = 0
    for prefix in PHOTO_PREFIXES:
        total += delete_prefix(event_prefix(prefix, organization, event_id))
    logger.info(f"Deleted {total} photo objects", organization=organization, event_id=event_id)
    return total


def delete_object(key: str, bucket: Optional[str] = None) -> None:
    """Delete a single object, ignoring objects that do not exist."""
    try:
        _get_s3_client().delete_object(Bucket=bucket or get_photo_bucket(), Key=key)
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") != "NoSuchKey":
            raise


def random_keys(prefix: str, count: int, sample_from: int = 100) -> List[str]:
    """Pick up to `count` random keys from the first `sample_from` under a prefix."""
    keys = list_page(prefix, sample_from)["keys"]
    if len(keys) <= count:
        return keys
    return random.sample(keys, count)


def file_name(key: str) -> str:
    """Last path segment of a key."""
    return key.rsplit("/", 1)[-1]
