"""
Identity token helpers.

The API Gateway Cognito authorizer has already verified the signature of the
id token by the time a handler runs, so claims are read without verification.
"""

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, TypedDict

from jose import jwt
from jose.exceptions import JWTError

from .api_types import get_header
from .errors import AppError, ErrorCode
from .logging import get_logger

logger = get_logger(__name__)

# Cookie and claim names
ID_TOKEN_KEY = "idToken"
ACCESS_TOKEN_KEY = "accessToken"
REFRESH_TOKEN_KEY = "refreshToken"
XSRF_TOKEN_KEY = "XSRF-TOKEN"

# Header carrying the anti-forgery token
XSRF_HEADER = "xsrf-token"


class Caller(TypedDict):
    """Identity of the user behind a request."""

    organization: str
    username: str
    email: str
    root: bool
    permissions: List[str]
    events_limit_type: str


def get_bearer_token(event: Dict[str, Any]) -> Optional[str]:
    """Return the token from an 'Authorization: Bearer <jwt>' header."""
    authorization = get_header(event, "Authorization")
    if not authorization:
        return None
    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
        return None
    return parts[1]


def decode_claims(token: str) -> Dict[str, Any]:
    """
    Decode JWT claims without signature verification.

    Args:
        token: Encoded JWT

    Returns:
        Claims dictionary

    Raises:
        AppError: If the token cannot be decoded
    """
    try:
        return dict(jwt.get_unverified_claims(token))
    except JWTError as e:
        logger.warning("Could not decode token", error=str(e))
        raise AppError(ErrorCode.UNAUTHORIZED, "Invalid token")


def get_claims(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Decode the caller's id token claims.

    Raises:
        AppError: If no bearer token is present or it cannot be decoded
    """
    token = get_bearer_token(event)
    if not token:
        raise AppError(ErrorCode.UNAUTHORIZED, "Unauthorized")
    return decode_claims(token)


def parse_permissions(claims: Dict[str, Any]) -> List[str]:
    """Decode the JSON list held in custom:permissions."""
    raw = claims.get("custom:permissions")
    if not raw:
        return []
    try:
        permissions = json.loads(raw)
    except (TypeError, ValueError):
        return []
    return [str(p) for p in permissions] if isinstance(permissions, list) else []


def get_caller(event: Dict[str, Any]) -> Caller:
    """
    Build the caller identity from the id token.

    Raises:
        AppError: If the token is missing or carries no organization
    """
    claims = get_claims(event)
    organization = claims.get("custom:organization")
    username = claims.get("cognito:username")
    if not organization or not username:
        raise AppError(ErrorCode.UNAUTHORIZED, "Token is missing organization or username")

    return Caller(
        organization=str(organization),
        username=str(username),
        email=str(claims.get("email", "")),
        root=claims.get("custom:root") == "true",
        permissions=parse_permissions(claims),
        events_limit_type=str(claims.get("eventsLimitType", "")),
    )


def parse_expiration(value: Any) -> Optional[datetime]:
    """
    Parse a custom:expiration value.

    Accepts epoch milliseconds or an ISO-8601 date/datetime. Naive values are
    taken as UTC.

    Examples:
        >>> parse_expiration("2020-01-01").year
        2020
        >>> parse_expiration("not a date") is None
        True
    """
    if value is None or value == "":
        return None
    text = str(value).strip()
    try:
        if text.isdigit():
            return datetime.fromtimestamp(int(text) / 1000, tz=timezone.utc)
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_expired(expiration: Any, now: Optional[datetime] = None) -> bool:
    """Return True when an expiration value lies in the past."""
    expires_at = parse_expiration(expiration)
    if expires_at is None:
        return False
    return expires_at < (now or datetime.now(timezone.utc))
