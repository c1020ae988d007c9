"""
API Gateway response builders.

Provides the JSON envelope, the error envelope and the session cookies set
by authentication handlers.
"""

import json
import os
from decimal import Decimal
from typing import Any, Dict, List, Optional, TypedDict

from .errors import AppError, handle_error, http_status_for

# Cookie domain per deployment environment
DOMAINS = {"dev": "eventlens.cloud", "prod": "eventlens.app"}

DEFAULT_HEADERS = {
    "Content-Type": "application/json",
    "Access-Control-Allow-Origin": "*",
}


class ApiResponse(TypedDict, total=False):
    """API Gateway proxy integration result."""

    statusCode: int
    headers: Dict[str, str]
    multiValueHeaders: Dict[str, List[str]]
    body: str


class FileResult(TypedDict, total=False):
    """Per-file outcome of a presign request."""

    success: bool
    err: bool
    fileName: str
    reason: Optional[str]
    presignUrl: Optional[str]


def _json_default(value: Any) -> Any:
    """Serialize DynamoDB types that json does not know about."""
    if isinstance(value, Decimal):
        return int(value) if value % 1 == 0 else float(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def build_response(
    body: Dict[str, Any],
    status_code: int = 200,
    headers: Optional[Dict[str, str]] = None,
    multi_value_headers: Optional[Dict[str, List[str]]] = None,
) -> ApiResponse:
    """
    Build an API Gateway proxy response.

    Args:
        body: JSON-serializable body (Decimal and set values are converted)
        status_code: HTTP status code
        headers: Extra headers, merged over the defaults
        multi_value_headers: Headers with several values (Set-Cookie)

    Returns:
        ApiResponse for the proxy integration
    """
    response = ApiResponse(
        statusCode=status_code,
        headers={**DEFAULT_HEADERS, **(headers or {})},
        body=json.dumps(body, default=_json_default),
    )
    if multi_value_headers:
        response["multiValueHeaders"] = multi_value_headers
    return response


def error_response(error: Exception) -> ApiResponse:
    """Build the failure envelope for an exception."""
    status_code = error.status_code if isinstance(error, AppError) else http_status_for("")
    return build_response({"success": False, "error": True, **handle_error(error)}, status_code)


def get_domain() -> str:
    """
    Cookie domain for the current deployment.

    Raises:
        ValueError: If DEPLOY_ENV is not a known environment
    """
    env = os.getenv("DEPLOY_ENV", "dev")
    if env not in DOMAINS:
        raise ValueError(f"Unknown DEPLOY_ENV '{env}'")
    return DOMAINS[env]


def session_cookies(
    id_token: str,
    access_token: str,
    xsrf_token: str,
    refresh_token: Optional[str] = None,
) -> Dict[str, List[str]]:
    """Set-Cookie headers establishing a session."""
    domain = get_domain()
    cookies = [
        f"idToken={id_token}; domain=.{domain}; path=/; secure; HttpOnly; SameSite=Strict",
        f"accessToken={access_token}; domain=.{domain}; path=/; secure; HttpOnly; SameSite=Strict",
    ]
    if refresh_token:
        cookies.append(
            f"refreshToken={refresh_token}; domain=.{domain}; path=/auth/refreshToken; "
            "secure; HttpOnly; SameSite=Strict"
        )
    # Readable by scripts so the client can echo it in the xsrf-token header
    cookies.append(f"XSRF-TOKEN={xsrf_token}; domain=.{domain}; path=/; secure; SameSite=Strict")
    return {"Set-Cookie": cookies}


def empty_cookies() -> Dict[str, List[str]]:
    """Set-Cookie headers expiring every session cookie."""
    domain = get_domain()
    return {
        "Set-Cookie": [
            f"idToken=; domain=.{domain}; path=/; secure; HttpOnly; SameSite=Strict; Max-Age=0",
            f"accessToken=; domain=.{domain}; path=/; secure; HttpOnly; SameSite=Strict; Max-Age=0",
            f"refreshToken=; domain=.{domain}; path=/auth/refreshToken; secure; HttpOnly; SameSite=Strict; Max-Age=0",
            f"XSRF-TOKEN=; domain=.{domain}; path=/; secure; SameSite=Strict; Max-Age=0",
        ]
    }
