"""
Cognito user pool helpers.
"""

import os
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

if TYPE_CHECKING:  # pragma: no cover
    from mypy_boto3_cognito_idp.client import CognitoIdentityProviderClient

from .dynamodb import get_required_env

# Module-level Cognito client proxy for testing
cognito_client: "CognitoIdentityProviderClient | None" = None


def get_cognito_client() -> "CognitoIdentityProviderClient":
    """Return the Cognito client (module-level override for tests)."""
    global cognito_client
    if cognito_client is not None:
        return cognito_client
    return boto3.client("cognito-idp", endpoint_url=os.getenv("COGNITO_ENDPOINT"))


def get_user_pool_id() -> str:
    """User pool id from USER_POOL_ID."""
    return get_required_env("USER_POOL_ID")


def get_client_id() -> str:
    """App client id from CLIENT_APP_ID."""
    return get_required_env("CLIENT_APP_ID")


def get_attribute(attributes: List[Dict[str, str]], name: str) -> Optional[str]:
    """
    Find an attribute value in a Cognito Name/Value list.

    Examples:
        >>> get_attribute([{"Name": "email", "Value": "a@b.co"}], "email")
        'a@b.co'
        >>> get_attribute([], "email") is None
        True
    """
    for attribute in attributes:
        if attribute.get("Name") == name:
            return attribute.get("Value")
    return None


def error_code(error: ClientError) -> str:
    """Cognito error code of a ClientError."""
    return str(error.response.get("Error", {}).get("Code", ""))


def error_message(error: ClientError) -> str:
    """Cognito error message of a ClientError."""
    return str(error.response.get("Error", {}).get("Message", ""))


def global_sign_out(username: str) -> None:
    """Invalidate every session of a user."""
    get_cognito_client().admin_user_global_sign_out(UserPoolId=get_user_pool_id(), Username=username)


def authentication_result(response: Dict[str, Any]) -> Dict[str, Any]:
    """AuthenticationResult of an auth response (empty when a challenge is pending)."""
    result: Dict[str, Any] = response.get("AuthenticationResult") or {}
    return result
