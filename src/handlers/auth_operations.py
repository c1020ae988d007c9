"""
Authentication handlers backed by the Cognito user pool.

Sessions live in cookies: the id, access and refresh tokens are HttpOnly,
while the XSRF-TOKEN cookie is readable so the client can echo it in the
xsrf-token header. Usernames are always lower-cased.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from botocore.exceptions import ClientError

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.api_types import get_body, get_header
    from utils.constants import STARTING_TOKENS, GiftEventStatus, UserStatus
    from utils.dynamodb import query_all, tables
    from utils.errors import AppError, ErrorCode
    from utils.identity import (
        authentication_result,
        error_code,
        error_message,
        get_attribute,
        get_client_id,
        get_cognito_client,
        get_user_pool_id,
        global_sign_out,
    )
    from utils.ids import new_organization_id
    from utils.logging import get_logger
    from utils.middleware import api_handler
    from utils.responses import ApiResponse, build_response, empty_cookies, session_cookies
    from utils.tokens import XSRF_TOKEN_KEY, decode_claims, get_claims, is_expired, parse_permissions
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.api_types import get_body, get_header
    from ..utils.constants import STARTING_TOKENS, GiftEventStatus, UserStatus
    from ..utils.dynamodb import query_all, tables
    from ..utils.errors import AppError, ErrorCode
    from ..utils.identity import (
        authentication_result,
        error_code,
        error_message,
        get_attribute,
        get_client_id,
        get_cognito_client,
        get_user_pool_id,
        global_sign_out,
    )
    from ..utils.ids import new_organization_id
    from ..utils.logging import get_logger
    from ..utils.middleware import api_handler
    from ..utils.responses import ApiResponse, build_response, empty_cookies, session_cookies
    from ..utils.tokens import XSRF_TOKEN_KEY, decode_claims, get_claims, is_expired, parse_permissions

logger = get_logger(__name__)

# Challenge names returned by initiate_auth
NEW_PASSWORD_REQUIRED = "NEW_PASSWORD_REQUIRED"
SMS_MFA = "SMS_MFA"

# Client action asking for the MFA code
CONFIRM_MFA = "CONFIRM_MFA"
EXPIRED = "EXPIRED"

_BAD_CREDENTIALS = ("NotAuthorizedException", "UserNotFoundException")


def _failure(message: str, status_code: int, **extra: Any) -> ApiResponse:
    return build_response({"success": False, "error": True, "message": message, **extra}, status_code)


def _lower(body: Dict[str, Any], field: str) -> str:
    return str(body.get(field) or "").lower()


def session_response(result: Dict[str, Any], refresh_token: Optional[str] = None) -> ApiResponse:
    """
    Build a success response setting the session cookies of an auth result.

    Args:
        result: Cognito AuthenticationResult
        refresh_token: Refresh token to set; defaults to the one in the result
    """
    id_token = result["IdToken"]
    xsrf_token = str(decode_claims(id_token).get(XSRF_TOKEN_KEY, ""))
    return build_response(
        {"success": True},
        multi_value_headers=session_cookies(
            id_token,
            result["AccessToken"],
            xsrf_token,
            refresh_token or result.get("RefreshToken"),
        ),
    )


@api_handler()
def signin(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Sign in with username and password.

    Body: { username, password }

    Users with a pending step get 200 with success=false and an action:
    UNCONFIRMED, FORCE_CHANGE_PASSWORD or CONFIRM_MFA.
    """
    body = get_body(event)
    username = _lower(body, "username")
    password = body.get("password")
    if not username or not password:
        raise AppError(ErrorCode.INVALID_INPUT, "Missing required fields")

    cognito = get_cognito_client()
    try:
        user = cognito.admin_get_user(UserPoolId=get_user_pool_id(), Username=username)
        attributes = user.get("UserAttributes", [])
        if user.get("UserStatus") == UserStatus.UNCONFIRMED:
            return build_response(
                {
                    "success": False,
                    "err": False,
                    "action": UserStatus.UNCONFIRMED,
                    "destination": get_attribute(attributes, "email"),
                    "message": "User must confirm their email before sign in",
                }
            )

        response = cognito.initiate_auth(
            AuthFlow="USER_PASSWORD_AUTH",
            ClientId=get_client_id(),
            AuthParameters={"USERNAME": username, "PASSWORD": str(password)},
        )
        challenge = response.get("ChallengeName")
        if challenge == NEW_PASSWORD_REQUIRED:
            return build_response(
                {
                    "success": False,
                    "err": False,
                    "action": UserStatus.FORCE_CHANGE_PASSWORD,
                    "message": "User must change password before sign in",
                }
            )
        if challenge == SMS_MFA:
            return build_response(
                {
                    "success": False,
                    "err": False,
                    "action": CONFIRM_MFA,
                    "destination": response.get("ChallengeParameters", {}).get("CODE_DELIVERY_DESTINATION"),
                    "message": "User must confirm MFA before sign in",
                    "session": response.get("Session"),
                }
            )

        if is_expired(get_attribute(attributes, "custom:expiration")):
            global_sign_out(username)
            logger.info("Expired user signed out", username=username)
            return build_response(
                {"success": False, "err": False, "action": EXPIRED, "message": "User is expired"},
                401,
            )

        logger.info("User signed in", username=username)
        return session_response(authentication_result(response))
    except ClientError as e:
        if error_code(e) in _BAD_CREDENTIALS:
            logger.warning("Sign in rejected", username=username, error_code=error_code(e))
            return build_response(
                {
                    "success": False,
                    "err": False,
                    "message": "Wrong username or password",
                    "code": "NotAuthorizedException",
                },
                401,
            )
        logger.error("Sign in failed", exc_info=True, username=username)
        return _failure("Error in sign in process", 502)


@api_handler()
def signup(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Register a root user together with a new organization.

    Body: { memberName, username, email, password }
    """
    body = get_body(event)
    username = _lower(body, "username")
    email = _lower(body, "email")
    password = body.get("password")
    if not username or not email or not password:
        raise AppError(ErrorCode.INVALID_INPUT, "Missing required fields")

    organization = new_organization_id()
    try:
        get_cognito_client().sign_up(
            ClientId=get_client_id(),
            Username=username,
            Password=str(password),
            UserAttributes=[
                {"Name": "email", "Value": email},
                {"Name": "custom:root", "Value": "true"},
                {"Name": "custom:organization", "Value": organization},
            ],
            ValidationData=[{"Name": "email", "Value": email}],
        )

        tables.users.put_item(
            Item={
                "organization": organization,
                "id": username,
                "email": email,
                "role": "admin",
                "root": True,
                "created_on": datetime.now(timezone.utc).isoformat(),
                "eventsCreated": [],
            },
            ConditionExpression="attribute_not_exists(#id)",
            ExpressionAttributeNames={"#id": "id"},
        )
        tables.organizations.put_item(
            Item={
                "id": organization,
                "name": body.get("memberName") or username,
                "rootUser": email,
                "tokens": STARTING_TOKENS,
                "giftsEvents": [],
            },
            ConditionExpression="attribute_not_exists(#id)",
            ExpressionAttributeNames={"#id": "id"},
        )
    except ClientError as e:
        if error_code(e) in ("InvalidPasswordException", "UsernameExistsException"):
            logger.warning("Sign up rejected", username=username, error_code=error_code(e))
            return _failure(error_message(e), 400)
        logger.error("Sign up failed", exc_info=True, username=username)
        return _failure("Error in sign up process", 502)

    logger.info("User signed up", username=username, organization=organization)
    return build_response({"success": True})


@api_handler()
def refresh_token(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Issue fresh id and access tokens from the refreshToken header."""
    token = get_header(event, "refreshToken")
    if not token:
        return build_response(
            {"success": False, "error": True, "message": "Missing refresh token in headers"},
            400,
            multi_value_headers=empty_cookies(),
        )

    try:
        response = get_cognito_client().initiate_auth(
            AuthFlow="REFRESH_TOKEN_AUTH",
            ClientId=get_client_id(),
            AuthParameters={"REFRESH_TOKEN": token},
        )
        result = authentication_result(response)
        claims = decode_claims(result["IdToken"])
        if is_expired(claims.get("custom:expiration")):
            global_sign_out(str(claims.get("cognito:username", "")))
            return build_response(
                {"success": False, "error": True, "message": "User expired"},
                400,
                multi_value_headers=empty_cookies(),
            )
    except (ClientError, KeyError, AppError):
        logger.error("Refresh token failed", exc_info=True)
        return build_response(
            {"success": False, "error": True, "message": "Error in refresh token process"},
            502,
            multi_value_headers=empty_cookies(),
        )

    # Cognito does not rotate refresh tokens; keep the current one
    return session_response(result, refresh_token=token)


@api_handler()
def sign_out(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Sign the caller out everywhere and clear the session cookies."""
    try:
        username = get_claims(event).get("cognito:username")
    except AppError:
        username = None
    if not username:
        return _failure("Could not find username", 400)

    try:
        global_sign_out(str(username))
    except ClientError:
        logger.error("Sign out failed", exc_info=True, username=username)
        return build_response(
            {"success": False, "error": True, "message": "An error occurred"},
            500,
            multi_value_headers=empty_cookies(),
        )

    logger.info("User signed out", username=username)
    return build_response({"success": True}, multi_value_headers=empty_cookies())


@api_handler()
def is_logged_in(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Describe the signed-in caller, with the organization's active gifts."""
    try:
        claims = get_claims(event)
    except AppError:
        return build_response({"success": False, "error": True}, 401)

    organization = claims.get("custom:organization")
    gifts_events = []
    if organization:
        gifts_events = list(
            query_all(
                tables.gift_events,
                KeyConditionExpression="#org = :organization",
                FilterExpression="#status = :status",
                ExpressionAttributeNames={"#org": "organization", "#status": "status"},
                ExpressionAttributeValues={":organization": organization, ":status": GiftEventStatus.ACTIVE},
            )
        )

    return build_response(
        {
            "success": True,
            "isLoggedIn": True,
            "payload": {
                "email": claims.get("email"),
                "username": claims.get("cognito:username"),
                "organization": organization,
                "permissions": parse_permissions(claims),
                "root": claims.get("custom:root"),
                "giftsEvents": gifts_events,
            },
        }
    )


@api_handler()
def sms_mfa(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Complete an SMS MFA challenge.

    Body: { username, mfaCode, session }
    """
    body = get_body(event)
    username = _lower(body, "username")
    if not username or not body.get("mfaCode") or not body.get("session"):
        raise AppError(ErrorCode.INVALID_INPUT, "Missing required fields")

    response = get_cognito_client().respond_to_auth_challenge(
        ChallengeName=SMS_MFA,
        ClientId=get_client_id(),
        ChallengeResponses={"USERNAME": username, "SMS_MFA_CODE": str(body["mfaCode"])},
        Session=str(body["session"]),
    )
    result = authentication_result(response)
    if not result:
        return build_response({"success": False, "err": True, "message": "Something went wrong"}, 502)
    return session_response(result)


@api_handler()
def force_change_password(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Replace the temporary password of an invited user.

    Body: { username, oldPassword, newPassword }
    """
    body = get_body(event)
    username = _lower(body, "username")
    if not username or not body.get("oldPassword") or not body.get("newPassword"):
        raise AppError(ErrorCode.INVALID_INPUT, "Missing required fields")

    cognito = get_cognito_client()
    try:
        user = cognito.admin_get_user(UserPoolId=get_user_pool_id(), Username=username)
        if user.get("UserStatus") != UserStatus.FORCE_CHANGE_PASSWORD:
            return build_response({"success": False, "message": "User is not in FORCE_CHANGE_PASSWORD status"})

        auth = cognito.admin_initiate_auth(
            AuthFlow="ADMIN_NO_SRP_AUTH",
            ClientId=get_client_id(),
            UserPoolId=get_user_pool_id(),
            AuthParameters={"USERNAME": username, "PASSWORD": str(body["oldPassword"])},
        )
        cognito.admin_respond_to_auth_challenge(
            ChallengeName=NEW_PASSWORD_REQUIRED,
            ClientId=get_client_id(),
            UserPoolId=get_user_pool_id(),
            ChallengeResponses={"USERNAME": username, "NEW_PASSWORD": str(body["newPassword"])},
            Session=auth.get("Session", ""),
        )

        organization = get_attribute(user.get("UserAttributes", []), "custom:organization")
        tables.users.update_item(
            Key={"organization": organization, "id": username},
            UpdateExpression="SET verified = :verified",
            ExpressionAttributeValues={":verified": True},
        )
    except ClientError:
        logger.error("Force change password failed", exc_info=True, username=username)
        return build_response({"success": False, "err": True, "message": "Failed to change temp user password"}, 502)

    logger.info("Temporary password replaced", username=username)
    return build_response({"success": True})


@api_handler()
def forgot_password(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Send a password reset code.

    Body: { username }
    """
    username = _lower(get_body(event), "username")
    if not username:
        raise AppError(ErrorCode.INVALID_INPUT, "Missing required fields")

    try:
        get_cognito_client().forgot_password(ClientId=get_client_id(), Username=username)
    except ClientError:
        logger.error("Forgot password failed", exc_info=True, username=username)
        return build_response({"success": False, "err": True}, 502)
    return build_response({"success": True})


@api_handler()
def reset_password(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Set a new password with a reset code.

    Body: { verificationCode, newPassword, username }
    """
    body = get_body(event)
    username = _lower(body, "username")
    if not body.get("verificationCode") or not body.get("newPassword") or not username:
        raise AppError(ErrorCode.INVALID_INPUT, "Missing required fields")

    try:
        get_cognito_client().confirm_forgot_password(
            ClientId=get_client_id(),
            Username=username,
            ConfirmationCode=str(body["verificationCode"]),
            Password=str(body["newPassword"]),
        )
    except ClientError:
        logger.error("Reset password failed", exc_info=True, username=username)
        return build_response({"success": False, "err": True}, 502)
    return build_response({"success": True})


@api_handler()
def reset_password_auth(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Change the password of a signed-in user (AccessToken header).

    Body: { oldPassword, newPassword }
    """
    body = get_body(event)
    old_password = body.get("oldPassword")
    new_password = body.get("newPassword")
    if not old_password or not new_password:
        raise AppError(ErrorCode.INVALID_INPUT, "Missing required fields")
    if old_password == new_password:
        raise AppError(ErrorCode.INVALID_INPUT, "New password cannot be the same as old password")

    try:
        get_cognito_client().change_password(
            AccessToken=get_header(event, "AccessToken") or "",
            PreviousPassword=str(old_password),
            ProposedPassword=str(new_password),
        )
    except ClientError:
        logger.error("Change password failed", exc_info=True)
        return _failure("Error in change password process", 502)
    return build_response({"success": True, "error": False, "message": "Password changed successfully"})


@api_handler()
def resend_confirmation_code(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Resend the sign-up confirmation code.

    Body: { username }
    """
    username = _lower(get_body(event), "username")
    if not username:
        raise AppError(ErrorCode.INVALID_INPUT, "Missing required fields")

    try:
        get_cognito_client().resend_confirmation_code(ClientId=get_client_id(), Username=username)
    except ClientError as e:
        message = "Error in resend code process"
        if error_code(e) == "UserNotFoundException":
            message = "User not found"
        elif error_code(e) == "InvalidParameterException":
            message = "User already confirmed"
        logger.warning("Resend confirmation code failed", username=username, error_code=error_code(e))
        return build_response({"success": False, "err": True, "message": message}, 502)
    return build_response({"success": True})


@api_handler()
def verify_email(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Confirm a sign-up with the emailed code.

    Body: { verifyCode, username }
    """
    body = get_body(event)
    username = _lower(body, "username")
    if not body.get("verifyCode") or not username:
        raise AppError(ErrorCode.INVALID_INPUT, "Missing required fields")

    try:
        get_cognito_client().confirm_sign_up(
            ClientId=get_client_id(),
            Username=username,
            ConfirmationCode=str(body["verifyCode"]),
            ForceAliasCreation=True,
        )
    except ClientError as e:
        logger.warning("Email verification failed", username=username, error=error_message(e))
        return build_response({"success": False, "err": True, "message": "Could not verify code"}, 502)
    return build_response({"success": True})
