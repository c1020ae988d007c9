"""
Test data builders for Lambda function tests.

Provides factory functions for creating test data with sensible defaults
and customization options. Use these to create test entities without
repeating boilerplate across test files.
"""

import io
import json
from typing import Any, Dict, List, Optional

from PIL import Image

TEST_ORGANIZATION = "org-1"
TEST_USERNAME = "jane"
TEST_XSRF = "xsrf-token-123"
PHOTO_BUCKET = "eventlens-photos-test"


def make_event_item(
    event_id: str = "wedding",
    organization: str = TEST_ORGANIZATION,
    **overrides: Any,
) -> Dict[str, Any]:
    """Build an event record.

    Args:
        event_id: Event URL name
        organization: Owning organization
        **overrides: Attributes replacing the defaults

    Returns:
        Item ready for put_item
    """
    item: Dict[str, Any] = {
        "organization": organization,
        "id": event_id,
        "username": TEST_USERNAME,
        "name": event_id.title(),
        "number_of_photos": 10,
        "total_photos": 0,
        "photos_process": [],
        "tokens": [],
        "time_created": 1700000000000,
        "event_date": "2025-06-01",
        "favorite_photos": [],
        "nextEventPromotion": "",
        "imagesStatus": "UPLOADING",
        "giftFields": [],
        "isPublicEvent": False,
    }
    item.update(overrides)
    return item


def make_mirror_item(event_id: str = "wedding", organization: str = TEST_ORGANIZATION) -> Dict[str, Any]:
    """Build the uniqueness record of an event name."""
    return {"organization": "-", "id": event_id, "belongsTo": organization}


def make_gift_item(
    gift_id: int = 1,
    organization: str = TEST_ORGANIZATION,
    root: str = "donor-org",
    tokens: int = 50,
    status: str = "ACTIVE",
    **overrides: Any,
) -> Dict[str, Any]:
    """Build a gift event record."""
    item: Dict[str, Any] = {
        "organization": organization,
        "id": gift_id,
        "root": root,
        "tokens": tokens,
        "status": status,
    }
    item.update(overrides)
    return item


def jpeg_bytes(width: int = 64, height: int = 48, color: str = "red") -> bytes:
    """Encode a solid-color JPEG."""
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buffer, format="JPEG")
    return buffer.getvalue()


def s3_notification(bucket: str, *keys: str) -> Dict[str, Any]:
    """SNS envelope carrying an S3 object-created notification."""
    message = {"Records": [{"s3": {"bucket": {"name": bucket}, "object": {"key": key}}} for key in keys]}
    return {"Type": "Notification", "Message": json.dumps(message)}


def organization_deleted(organization: str, event_ids: List[str]) -> Dict[str, Any]:
    """SNS envelope of an organization-deleted notification."""
    return {
        "Type": "Notification",
        "Message": json.dumps({"organization": organization}),
        "MessageAttributes": {
            "organization": {"Type": "String", "Value": organization},
            "eventIds": {"Type": "String.Array", "Value": json.dumps(event_ids)},
        },
    }


def sqs_event(*envelopes: Dict[str, Any]) -> Dict[str, Any]:
    """Wrap SNS envelopes into an SQS event."""
    return {"Records": [{"messageId": f"msg-{i}", "body": json.dumps(e)} for i, e in enumerate(envelopes)]}


def client_error(code: str, operation: str = "Operation", message: Optional[str] = None) -> Any:
    """Build a botocore ClientError."""
    from botocore.exceptions import ClientError

    return ClientError({"Error": {"Code": code, "Message": message or code}}, operation)
