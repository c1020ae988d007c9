"""
IAM roles and policies for the CDK stack.

Creates:
- Lambda execution role with DynamoDB, S3, Rekognition and SNS permissions
- Trigger role for the Cognito pre-token-generation function
"""

from typing import Callable, Dict

from aws_cdk import aws_dynamodb as dynamodb
from aws_cdk import aws_iam as iam
from aws_cdk import aws_s3 as s3
from aws_cdk import aws_sns as sns
from constructs import Construct

REKOGNITION_ACTIONS = [
    "rekognition:CreateCollection",
    "rekognition:DeleteCollection",
    "rekognition:IndexFaces",
]

COGNITO_ACTIONS = [
    "cognito-idp:AdminGetUser",
    "cognito-idp:AdminInitiateAuth",
    "cognito-idp:AdminRespondToAuthChallenge",
    "cognito-idp:AdminUserGlobalSignOut",
    "cognito-idp:AdminDeleteUser",
]


def create_lambda_execution_role(
    stack: Construct,
    rn: Callable[[str], str],
    tables: Dict[str, dynamodb.ITable],
    photo_bucket: s3.IBucket,
    organization_deleted_topic: sns.ITopic,
) -> iam.Role:
    """Create the Lambda execution role with appropriate permissions.

    Args:
        stack: CDK Construct (usually the Stack instance)
        rn: helper function to create resource names
        tables: Dict of DynamoDB tables to grant access to
        photo_bucket: S3 bucket holding photos and assets
        organization_deleted_topic: Topic announcing organization deletion

    Returns:
        The Lambda execution role
    """
    lambda_execution_role = iam.Role(
        stack,
        "LambdaExecutionRole",
        role_name=rn("eventlens-lambda-exec"),
        assumed_by=iam.ServicePrincipal("lambda.amazonaws.com"),
        managed_policies=[iam.ManagedPolicy.from_aws_managed_policy_name("service-role/AWSLambdaBasicExecutionRole")],
    )

    for table in tables.values():
        table.grant_read_write_data(lambda_execution_role)

    photo_bucket.grant_read_write(lambda_execution_role)
    photo_bucket.grant_delete(lambda_execution_role)
    organization_deleted_topic.grant_publish(lambda_execution_role)

    lambda_execution_role.add_to_policy(
        iam.PolicyStatement(
            actions=REKOGNITION_ACTIONS,
            resources=["*"],  # Rekognition collections are created at runtime
        )
    )

    return lambda_execution_role


def grant_user_pool_access(role: iam.Role, user_pool_arn: str) -> None:
    """Allow the admin Cognito calls made by the auth and organization handlers."""
    role.add_to_policy(iam.PolicyStatement(actions=COGNITO_ACTIONS, resources=[user_pool_arn]))


def create_trigger_role(
    stack: Construct,
    rn: Callable[[str], str],
    users_table: dynamodb.ITable,
) -> iam.Role:
    """Create the role of the pre-token-generation trigger.

    Kept apart from the execution role: the user pool depends on the
    trigger, so the trigger's role cannot reference the pool.

    Args:
        stack: CDK Construct (usually the Stack instance)
        rn: helper function to create resource names
        users_table: Table holding the user quota

    Returns:
        The trigger role
    """
    trigger_role = iam.Role(
        stack,
        "TriggerExecutionRole",
        role_name=rn("eventlens-trigger-exec"),
        assumed_by=iam.ServicePrincipal("lambda.amazonaws.com"),
        managed_policies=[iam.ManagedPolicy.from_aws_managed_policy_name("service-role/AWSLambdaBasicExecutionRole")],
    )
    users_table.grant_read_data(trigger_role)
    return trigger_role
