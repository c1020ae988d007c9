"""
Organization deletion cascade.

delete_organization removes the organization's records synchronously and
publishes one notification; the photo and face clean-up runs in the queue
consumers subscribed to that topic, since an organization may own far more
objects than one request can delete.
"""

import json
import os
from typing import Any, Dict, List

import boto3
from botocore.exceptions import ClientError

# Handle both Lambda (absolute) and unit test (relative) imports
try:  # pragma: no cover
    from utils.api_types import iter_message_attributes, parse_string_list
    from utils.constants import MIRROR_ORGANIZATION, Permission
    from utils.dynamodb import batch_delete, get_required_env, query_all, tables
    from utils.identity import error_code, get_cognito_client, get_user_pool_id
    from utils.logging import get_logger
    from utils.middleware import api_handler, require_permission
    from utils.recognition import delete_collection
    from utils.responses import ApiResponse, build_response
    from utils.storage import delete_event_photos
    from utils.tokens import get_caller
except ModuleNotFoundError:  # pragma: no cover
    from ..utils.api_types import iter_message_attributes, parse_string_list
    from ..utils.constants import MIRROR_ORGANIZATION, Permission
    from ..utils.dynamodb import batch_delete, get_required_env, query_all, tables
    from ..utils.identity import error_code, get_cognito_client, get_user_pool_id
    from ..utils.logging import get_logger
    from ..utils.middleware import api_handler, require_permission
    from ..utils.recognition import delete_collection
    from ..utils.responses import ApiResponse, build_response
    from ..utils.storage import delete_event_photos
    from ..utils.tokens import get_caller

logger = get_logger(__name__)

# Module-level SNS client proxy for testing
sns_client: object | None = None


def _get_sns_client():
    """Return the SNS client (module-level override for tests)."""
    global sns_client
    if sns_client is not None:
        return sns_client
    return boto3.client("sns", endpoint_url=os.getenv("SNS_ENDPOINT"))


def list_organization_event_ids(organization: str) -> List[str]:
    """Ids of every event owned by an organization."""
    return [
        str(item["id"])
        for item in query_all(
            tables.events,
            KeyConditionExpression="#org = :organization",
            ExpressionAttributeValues={":organization": organization},
            ProjectionExpression="#id",
            ExpressionAttributeNames={"#org": "organization", "#id": "id"},
        )
    ]


def publish_organization_deleted(organization: str, event_ids: List[str]) -> None:
    """Notify the clean-up consumers that an organization is gone."""
    _get_sns_client().publish(  # type: ignore[attr-defined]
        TopicArn=get_required_env("SNS_TOPIC_ARN"),
        Message=json.dumps({"organization": organization}),
        MessageAttributes={
            "organization": {"DataType": "String", "StringValue": organization},
            "eventIds": {"DataType": "String.Array", "StringValue": json.dumps(event_ids)},
        },
    )


def delete_organization_users(organization: str) -> int:
    """Delete the organization's user records and their Cognito users."""
    users = list(
        query_all(
            tables.users,
            KeyConditionExpression="#org = :organization",
            ExpressionAttributeNames={"#org": "organization"},
            ExpressionAttributeValues={":organization": organization},
        )
    )

    cognito = get_cognito_client()
    for user in users:
        try:
            cognito.admin_delete_user(UserPoolId=get_user_pool_id(), Username=str(user["id"]))
        except ClientError as e:
            if error_code(e) != "UserNotFoundException":
                raise
            logger.warning("Cognito user already gone", username=user["id"])

    return batch_delete(
        tables.users,
        [{"organization": organization, "id": str(user["id"])} for user in users],
        ["organization", "id"],
    )


@api_handler(require_permission(Permission.MANAGE_ORGANIZATION))
def delete_organization(event: Dict[str, Any], context: Any) -> ApiResponse:
    """Delete the caller's organization with its events and users."""
    caller = get_caller(event)
    organization = caller["organization"]

    # Step 1: Events, announced before their records go away
    event_ids = list_organization_event_ids(organization)
    publish_organization_deleted(organization, event_ids)

    # Step 2: Collections
    for event_id in event_ids:
        delete_collection(event_id)

    # Step 3: Event and mirror records
    batch_delete(
        tables.events,
        [{"organization": organization, "id": event_id} for event_id in event_ids]
        + [{"organization": MIRROR_ORGANIZATION, "id": event_id} for event_id in event_ids],
        ["organization", "id"],
    )

    # Step 4: Users, then the organization itself
    users_deleted = delete_organization_users(organization)
    tables.organizations.delete_item(Key={"id": organization})

    logger.info(
        "Deleted organization",
        organization=organization,
        events=len(event_ids),
        users=users_deleted,
    )
    return build_response({"success": True, "message": "Organization deleted successfully"})


def delete_organization_photos(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Delete every photo of a deleted organization's events.

    Args:
        event: SQS event of organization-deleted notifications
        context: Lambda context

    Returns:
        { deleted: int }
    """
    deleted = 0
    for attributes in iter_message_attributes(event):
        organization = attributes.get("organization", "")
        if not organization:
            logger.warning("Notification without organization, skipping")
            continue
        for event_id in parse_string_list(attributes.get("eventIds")):
            deleted += delete_event_photos(organization, event_id)
        logger.info(f"Deleted {deleted} photos", organization=organization)

    return {"deleted": deleted}


def delete_organization_faces(event: Dict[str, Any], context: Any) -> Dict[str, Any]:
    """Delete every face record of a deleted organization's events.

    A failure on one event is logged and the remaining events are still
    cleaned up.

    Returns:
        { deleted: int, failed: [eventId] }
    """
    deleted = 0
    failed: List[str] = []
    for attributes in iter_message_attributes(event):
        for event_id in parse_string_list(attributes.get("eventIds")):
            try:
                keys = [
                    {"eventId": str(item["eventId"]), "id": str(item["id"])}
                    for item in query_all(
                        tables.faces,
                        KeyConditionExpression="eventId = :eventId",
                        ExpressionAttributeValues={":eventId": event_id},
                    )
                ]
                deleted += batch_delete(tables.faces, keys, ["eventId", "id"])
            except ClientError as e:
                logger.error("Failed to delete faces", exc_info=True, event_id=event_id, error=str(e))
                failed.append(event_id)

    return {"deleted": deleted, "failed": failed}
