"""
Face recognition utilities.

Each event owns one Rekognition collection whose id is the event id.
"""

import os
from typing import TYPE_CHECKING, Any, Dict, List

import boto3
from botocore.exceptions import ClientError

if TYPE_CHECKING:  # pragma: no cover
    from mypy_boto3_rekognition.client import RekognitionClient

from .constants import MAX_COLLECTION_RETRIES, MAX_FACES_PER_PHOTO
from .logging import get_logger

logger = get_logger(__name__)

# Module-level Rekognition client proxy for testing
rekognition_client: "RekognitionClient | None" = None


def _get_rekognition_client() -> "RekognitionClient":
    """Return the Rekognition client (module-level override for tests)."""
    global rekognition_client
    if rekognition_client is not None:
        return rekognition_client
    return boto3.client("rekognition", endpoint_url=os.getenv("REKOGNITION_ENDPOINT"))


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))


def create_collection_with_fallback(name: str, max_retries: int = MAX_COLLECTION_RETRIES) -> str:
    """
    Create a collection, appending numeric suffixes on name collisions.

    Attempts `name`, then `name0`, `name01`, `name012` and so on, giving up
    after `max_retries` collisions.

    Args:
        name: Preferred collection id
        max_retries: Collisions tolerated before giving up

    Returns:
        The collection id that was created

    Raises:
        ClientError: If creation fails for another reason or retries run out
    """
    client = _get_rekognition_client()
    candidate = name
    for index in range(max_retries + 1):
        try:
            client.create_collection(CollectionId=candidate)
            logger.info("Created collection", collection_id=candidate)
            return candidate
        except ClientError as e:
            if _error_code(e) != "ResourceAlreadyExistsException" or index >= max_retries:
                raise
            logger.warning("Collection already exists, retrying with suffix", collection_id=candidate)
            candidate = f"{candidate}{index}"
    raise RuntimeError("unreachable")  # pragma: no cover


def delete_collection(collection_id: str) -> bool:
    """
    Delete a collection.

    Returns:
        True if deleted, False if it did not exist
    """
    try:
        _get_rekognition_client().delete_collection(CollectionId=collection_id)
    except ClientError as e:
        if _error_code(e) == "ResourceNotFoundException":
            logger.warning("Collection not found", collection_id=collection_id)
            return False
        raise
    return True


def index_faces(collection_id: str, bucket: str, key: str) -> List[Dict[str, Any]]:
    """
    Index the faces found in an S3 image.

    Returns:
        FaceRecords from Rekognition

    Raises:
        ClientError: Including InvalidImageFormatException for unreadable images
    """
    response = _get_rekognition_client().index_faces(
        CollectionId=collection_id,
        Image={"S3Object": {"Bucket": bucket, "Name": key}},
        MaxFaces=MAX_FACES_PER_PHOTO,
    )
    records: List[Dict[str, Any]] = response.get("FaceRecords", [])
    return records


def is_invalid_image(error: ClientError) -> bool:
    """True when Rekognition rejected the image format."""
    return _error_code(error) == "InvalidImageFormatException"
