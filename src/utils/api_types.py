"""
Type definitions and accessors for Lambda events.

Provides TypedDict definitions for API Gateway proxy events and the
SQS-over-SNS S3 notifications consumed by the photo pipeline, plus helpers
for safe extraction.
"""

import json
from typing import Any, Dict, Iterator, List, Optional, TypedDict
from urllib.parse import unquote_plus

from .errors import AppError, ErrorCode


class ApiGatewayEvent(TypedDict, total=False):
    """API Gateway REST proxy integration event."""

    resource: str
    path: str
    httpMethod: str
    headers: Dict[str, str]
    queryStringParameters: Optional[Dict[str, str]]
    pathParameters: Optional[Dict[str, str]]
    requestContext: Dict[str, Any]
    body: Optional[str]
    isBase64Encoded: bool


class ObjectCreated(TypedDict):
    """Bucket and decoded key of one S3 object-created notification."""

    bucket: str
    key: str


# Helper functions for safe extraction


def get_header(event: Dict[str, Any], name: str) -> Optional[str]:
    """
    Extract a request header (case-insensitive).

    Args:
        event: API Gateway event
        name: Header name

    Returns:
        Header value or None if not present
    """
    headers: Dict[str, Any] = event.get("headers") or {}
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value
    return None


def get_query_param(event: Dict[str, Any], name: str) -> Optional[str]:
    """Extract a query string parameter."""
    params: Dict[str, Any] = event.get("queryStringParameters") or {}
    return params.get(name)


def get_path_param(event: Dict[str, Any], name: str) -> Optional[str]:
    """Extract a path parameter."""
    params: Dict[str, Any] = event.get("pathParameters") or {}
    return params.get(name)


def get_body(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Parse the JSON request body.

    Args:
        event: API Gateway event

    Returns:
        Parsed body (empty dict when the body is absent)

    Raises:
        AppError: If the body is not a JSON object
    """
    raw = event.get("body")
    if not raw:
        return {}
    try:
        body = json.loads(raw)
    except (TypeError, ValueError):
        raise AppError(ErrorCode.INVALID_INPUT, "Request body must be valid JSON")
    if not isinstance(body, dict):
        raise AppError(ErrorCode.INVALID_INPUT, "Request body must be a JSON object")
    return body


def iter_object_created(event: Dict[str, Any]) -> Iterator[ObjectCreated]:
    """
    Yield the S3 objects referenced by an SQS batch of SNS-wrapped notifications.

    Each SQS record body is an SNS envelope whose Message is the S3 event.
    Keys arrive URL-encoded with '+' for spaces.

    Args:
        event: SQS event

    Yields:
        ObjectCreated entries in delivery order
    """
    for record in event.get("Records", []):
        envelope = json.loads(record["body"])
        notification = json.loads(envelope["Message"])
        for s3_record in notification.get("Records", []):
            s3_info = s3_record["s3"]
            yield ObjectCreated(
                bucket=s3_info["bucket"]["name"],
                key=unquote_plus(s3_info["object"]["key"]),
            )


def iter_message_attributes(event: Dict[str, Any]) -> Iterator[Dict[str, str]]:
    """
    Yield the SNS message attributes of each SQS record as plain strings.

    Args:
        event: SQS event whose records carry SNS envelopes

    Yields:
        Mapping of attribute name to its string value
    """
    for record in event.get("Records", []):
        envelope = json.loads(record["body"])
        attributes = envelope.get("MessageAttributes", {})
        yield {name: attr.get("Value", "") for name, attr in attributes.items()}


def parse_string_list(value: Optional[str]) -> List[str]:
    """Decode a JSON string-array attribute, tolerating absent values."""
    if not value:
        return []
    decoded = json.loads(value)
    return [str(item) for item in decoded] if isinstance(decoded, list) else []
