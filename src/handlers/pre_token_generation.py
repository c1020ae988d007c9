"""
Cognito Pre-Token-Generation Lambda Trigger

Adds the anti-forgery token and the user's event quota to the id token.

Trigger: Pre Token Generation
Event: Before Cognito issues tokens (sign in, refresh, MFA completion)
"""

import logging
import os
from typing import Any, Dict

import boto3

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.ids import new_xsrf_token
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.ids import new_xsrf_token

# Configure logging
logger = logging.getLogger()
logger.setLevel(logging.INFO)

XSRF_TOKEN_KEY = "XSRF-TOKEN"


def lambda_handler(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """
    Pre-Token-Generation Lambda Trigger Handler

    Event structure:
    {
        "triggerSource": "TokenGeneration_Authentication",
        "userPoolId": "us-east-1_EXAMPLE",
        "userName": "jane",
        "request": {
            "userAttributes": {
                "custom:organization": "3f1c...",
                "custom:root": "false"
            }
        },
        "response": {}
    }

    Root users carry no quota: eventsLimitType is "" and the counters "0".

    Args:
        event: Cognito Pre Token Generation trigger event
        context: Lambda context

    Returns:
        event: With claimsOverrideDetails set; returned unchanged on any error
            so sign-in is never blocked
    """
    try:
        attributes = event.get("request", {}).get("userAttributes", {})
        organization = attributes.get("custom:organization", "")
        is_root = attributes.get("custom:root") == "true"
        username = event.get("userName", "")

        events_limit_type = ""
        events_created = "0"
        events_limit = "0"
        if not is_root:
            dynamodb = boto3.resource("dynamodb", endpoint_url=os.getenv("DYNAMODB_ENDPOINT"))
            table = dynamodb.Table(os.environ["USERS_TABLE_NAME"])
            item = table.get_item(
                Key={"organization": organization, "id": username},
                ProjectionExpression="eventsLimitType, eventsCreated, eventsLimit",
            ).get("Item")
            if not item:
                raise LookupError(f"User not found: {username}")

            events_limit_type = str(item.get("eventsLimitType", ""))
            events_created = str(len(item.get("eventsCreated", [])))
            events_limit = str(int(item.get("eventsLimit", 0)))

        event["response"] = {
            "claimsOverrideDetails": {
                "claimsToAddOrOverride": {
                    XSRF_TOKEN_KEY: new_xsrf_token(),
                    "eventsLimitType": events_limit_type,
                    "eventsCreated": events_created,
                    "eventsLimit": events_limit,
                }
            }
        }
        logger.info(f"Added claims to token for {username}")
    except Exception as e:
        # Never block sign-in
        logger.error(f"Error in pre-token-generation: {str(e)}", exc_info=True)

    return event
