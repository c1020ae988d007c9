"""
Account settings of the signed-in user: phone number and SMS MFA.

Cognito calls here act on the caller's own session, so they take the access
token from the AccessToken header rather than admin credentials.
"""

from typing import Any, Dict

from botocore.exceptions import ClientError

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.api_types import get_body, get_header
    from utils.errors import AppError, ErrorCode
    from utils.identity import get_attribute, get_client_id, get_cognito_client
    from utils.logging import get_logger
    from utils.middleware import api_handler, require_csrf
    from utils.responses import ApiResponse, build_response
    from utils.tokens import get_claims
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.api_types import get_body, get_header
    from ..utils.errors import AppError, ErrorCode
    from ..utils.identity import get_attribute, get_client_id, get_cognito_client
    from ..utils.logging import get_logger
    from ..utils.middleware import api_handler, require_csrf
    from ..utils.responses import ApiResponse, build_response
    from ..utils.tokens import get_claims

logger = get_logger(__name__)


def _access_token(event: Dict[str, Any]) -> str:
    token = get_header(event, "AccessToken")
    if not token:
        raise AppError(ErrorCode.UNAUTHORIZED, "Missing access token")
    return token


def _update_failed(message: str) -> ApiResponse:
    return build_response({"success": False, "error": True, "message": message}, 501)


@api_handler(require_csrf)
def update_mfa(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Enable or disable SMS MFA.

    Body: { enable: bool }
    """
    enable = bool(get_body(event).get("enable"))
    try:
        get_cognito_client().set_user_mfa_preference(
            SMSMfaSettings={"Enabled": enable, "PreferredMfa": enable},
            AccessToken=_access_token(event),
        )
    except ClientError:
        logger.error("Failed to update MFA preference", exc_info=True)
        return _update_failed("Error updating user")

    state = "enabled" if enable else "disabled"
    return build_response({"success": True, "error": False, "message": f"User mfa {state} successfully"})


@api_handler(require_csrf)
def update_phone(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Set the phone number, or resend its verification code.

    Body: { phoneNumber } or { resend: true }
    """
    body = get_body(event)
    phone_number = body.get("phoneNumber")
    resend = bool(body.get("resend"))
    if not phone_number and not resend:
        raise AppError(ErrorCode.INVALID_INPUT, "Missing required fields")

    cognito = get_cognito_client()
    try:
        if resend:
            cognito.resend_confirmation_code(
                ClientId=get_client_id(),
                Username=str(get_claims(event).get("cognito:username", "")),
            )
        else:
            cognito.update_user_attributes(
                UserAttributes=[{"Name": "phone_number", "Value": str(phone_number)}],
                AccessToken=_access_token(event),
            )
    except ClientError:
        logger.error("Failed to update phone number", exc_info=True, resend=resend)
        return _update_failed("Error updating user")

    return build_response({"success": True, "error": False, "message": "User updated successfully"})


@api_handler(require_csrf)
def verify_phone(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Verify the phone number with the SMS code.

    Body: { confirmationCode }
    """
    code = get_body(event).get("confirmationCode")
    if not code:
        raise AppError(ErrorCode.INVALID_INPUT, "Missing required fields")

    try:
        get_cognito_client().verify_user_attribute(
            AccessToken=_access_token(event),
            AttributeName="phone_number",
            Code=str(code),
        )
    except ClientError:
        logger.error("Failed to verify phone number", exc_info=True)
        return _update_failed("Error verifying phone number")

    return build_response({"success": True, "error": False, "message": "Phone number verified successfully"})


@api_handler(require_csrf)
def get_cognito_details(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Return the caller's phone and MFA settings."""
    try:
        user = get_cognito_client().get_user(AccessToken=_access_token(event))
    except ClientError:
        logger.error("Failed to read user", exc_info=True)
        return build_response({"success": False, "error": True, "message": "Error in get user process"}, 502)

    attributes = user.get("UserAttributes", [])
    return build_response(
        {
            "success": True,
            "error": False,
            "message": "User fetched successfully",
            "user": {
                "phoneNumber": get_attribute(attributes, "phone_number"),
                "phoneNumberVerified": get_attribute(attributes, "phone_number_verified"),
                "smsMfaEnabled": user.get("PreferredMfaSetting") == "SMS_MFA",
            },
        }
    )
