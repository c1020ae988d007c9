"""
Request middleware for API Gateway handlers.

`api_handler` wraps a handler with an ordered chain of stages. Each stage
inspects the event and returns either None (continue) or a terminal
response, which is returned to the client as-is. Exceptions escaping the
handler are converted to the JSON error envelope.

Example:
    @api_handler(require_csrf, require_permission(Permission.MANAGE_EVENTS))
    def update_event(event, context):
        ...
"""

from functools import wraps
from typing import Any, Callable, Dict, Optional

from botocore.exceptions import ClientError

from .api_types import get_header
from .errors import AppError, ErrorCode
from .logging import get_correlation_id, get_logger
from .responses import ApiResponse, build_response, error_response
from .tokens import XSRF_HEADER, XSRF_TOKEN_KEY, decode_claims, get_bearer_token, get_claims, parse_permissions

logger = get_logger(__name__)

Stage = Callable[[Dict[str, Any]], Optional[ApiResponse]]
Handler = Callable[[Dict[str, Any], Any], ApiResponse]


def require_csrf(event: Dict[str, Any]) -> Optional[ApiResponse]:
    """Reject the request unless the token's XSRF claim matches the xsrf-token header."""
    token = get_bearer_token(event)
    header_value = get_header(event, XSRF_HEADER)
    expected: Optional[str] = None
    if token:
        try:
            expected = decode_claims(token).get(XSRF_TOKEN_KEY)
        except AppError:
            expected = None

    if not expected or expected != header_value:
        logger.warning("CSRF token mismatch", path=event.get("path"))
        return build_response({"success": False, "message": "Invalid csrf token"}, 400)
    return None


def require_permission(permission: str) -> Stage:
    """Build a stage that requires root or the given permission."""

    def check_permission(event: Dict[str, Any]) -> Optional[ApiResponse]:
        claims = get_claims(event)
        if claims.get("custom:root") == "true" or permission in parse_permissions(claims):
            return None

        logger.warning("Permission denied", permission=permission, username=claims.get("cognito:username"))
        return build_response(
            {
                "success": False,
                "message": "You are not authorized to perform this action",
                "action": permission,
            },
            400,
        )

    check_permission.__name__ = f"require_permission_{permission}"
    return check_permission


def api_handler(*stages: Stage) -> Callable[[Handler], Handler]:
    """Wrap a handler with the given stages and uniform error conversion."""

    def decorator(func: Handler) -> Handler:
        @wraps(func)
        def wrapper(event: Dict[str, Any], context: Any) -> ApiResponse:
            logger.bind(get_correlation_id(event))
            logger.info(
                f"Handling {event.get('httpMethod', '')} {event.get('path', '')}",
                handler=func.__name__,
            )

            try:
                for stage in stages:
                    terminal = stage(event)
                    if terminal is not None:
                        return terminal
                return func(event, context)
            except AppError as e:
                logger.warning(f"Request rejected: {e.message}", handler=func.__name__, error_code=e.error_code)
                return error_response(e)
            except ClientError as e:
                logger.error(
                    f"AWS service error in {func.__name__}",
                    exc_info=True,
                    aws_error=e.response.get("Error", {}).get("Code"),
                )
                return error_response(AppError(ErrorCode.UPSTREAM_ERROR, "Upstream service error"))
            except Exception as e:
                logger.error(f"Unexpected error in {func.__name__}: {str(e)}", exc_info=True)
                return error_response(e)

        return wrapper

    return decorator
