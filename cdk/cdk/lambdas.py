"""Lambda function definitions for the EventLens stack.

This module creates all Lambda functions used by the application:
- API handlers (auth, account settings, events, photos, organization)
- Queue consumers (photo resize, face indexing, organization cleanup)
- Pre-token-generation Cognito trigger
"""

import os
from typing import TYPE_CHECKING, Any, NamedTuple

from aws_cdk import Duration
from aws_cdk import aws_iam as iam
from aws_cdk import aws_lambda as lambda_
from aws_cdk import aws_lambda_event_sources as event_sources
from constructs import Construct

if TYPE_CHECKING:
    from aws_cdk import aws_dynamodb as dynamodb
    from aws_cdk import aws_s3 as s3
    from aws_cdk import aws_sns as sns
    from aws_cdk import aws_sqs as sqs


class FunctionSpec(NamedTuple):
    """One Lambda function: its short name, handler path and sizing."""

    name: str
    handler: str
    timeout: int = 10
    memory_size: int = 256


# API Gateway proxy handlers, keyed by the route table in api.py
API_FUNCTIONS = [
    FunctionSpec("signin", "handlers.auth_operations.signin"),
    FunctionSpec("signup", "handlers.auth_operations.signup"),
    FunctionSpec("refresh-token", "handlers.auth_operations.refresh_token"),
    FunctionSpec("sign-out", "handlers.auth_operations.sign_out"),
    FunctionSpec("is-logged-in", "handlers.auth_operations.is_logged_in", timeout=5),
    FunctionSpec("sms-mfa", "handlers.auth_operations.sms_mfa"),
    FunctionSpec("force-change-password", "handlers.auth_operations.force_change_password"),
    FunctionSpec("forgot-password", "handlers.auth_operations.forgot_password"),
    FunctionSpec("reset-password", "handlers.auth_operations.reset_password"),
    FunctionSpec("reset-password-auth", "handlers.auth_operations.reset_password_auth"),
    FunctionSpec("resend-confirmation-code", "handlers.auth_operations.resend_confirmation_code"),
    FunctionSpec("verify-email", "handlers.auth_operations.verify_email"),
    FunctionSpec("update-mfa", "handlers.account_settings.update_mfa"),
    FunctionSpec("update-phone", "handlers.account_settings.update_phone"),
    FunctionSpec("verify-phone", "handlers.account_settings.verify_phone"),
    FunctionSpec("get-cognito-details", "handlers.account_settings.get_cognito_details", timeout=5),
    FunctionSpec("create-resources", "handlers.create_event.create_resources", timeout=30, memory_size=512),
    FunctionSpec("verify-name-url", "handlers.create_event.verify_name_url", timeout=5),
    FunctionSpec("finish-upload", "handlers.create_event.finish_upload", timeout=5),
    FunctionSpec("get-events", "handlers.event_operations.get_events", timeout=30),
    FunctionSpec("get-single-event", "handlers.event_operations.get_single_event", timeout=5),
    FunctionSpec("update-event", "handlers.event_operations.update_event"),
    FunctionSpec("delete-event", "handlers.event_operations.delete_event", timeout=120, memory_size=512),
    FunctionSpec("change-photos-favorite", "handlers.event_operations.change_photos_favorite"),
    FunctionSpec("set-next-event-promotion", "handlers.event_operations.set_next_event_promotion"),
    FunctionSpec("delete-next-event-promotion", "handlers.event_operations.delete_next_event_promotion"),
    FunctionSpec("create-share-qrcode", "handlers.event_operations.create_share_qrcode"),
    FunctionSpec("get-event-photos", "handlers.event_photos.get_event_photos"),
    FunctionSpec("get-event-random-photos", "handlers.event_photos.get_event_random_photos"),
    FunctionSpec("get-photos-public", "handlers.event_photos.get_photos_public"),
    FunctionSpec("delete-photos", "handlers.event_photos.delete_photos", timeout=30),
    FunctionSpec("photo-presign-url", "handlers.photo_uploads.photo_presign_url", timeout=30),
    FunctionSpec("branding-presign-url", "handlers.photo_uploads.branding_presign_url"),
    FunctionSpec("add-images", "handlers.photo_uploads.add_images", timeout=30),
    FunctionSpec("delete-organization", "handlers.organization_operations.delete_organization", timeout=150),
]


def _construct_id(name: str) -> str:
    """CamelCase construct id of a function name ("sign-out" -> "SignOutFn")."""
    return "".join(part.capitalize() for part in name.split("-")) + "Fn"


def create_lambda_functions(
    scope: Construct,
    rn: Any,  # Resource naming function
    lambda_execution_role: iam.Role,
    trigger_role: iam.Role,
    tables: dict[str, "dynamodb.Table"],
    photo_bucket: "s3.Bucket",
    messaging: dict[str, "sns.Topic | sqs.Queue"],
    env_name: str,
) -> dict[str, lambda_.Function | lambda_.LayerVersion]:
    """Create all Lambda functions for the stack.

    Args:
        scope: CDK construct scope
        rn: Resource naming function (name -> formatted name)
        lambda_execution_role: IAM role for API handlers and consumers
        trigger_role: IAM role for the pre-token-generation trigger
        tables: DynamoDB tables keyed as returned by create_dynamodb_tables
        photo_bucket: S3 bucket for photos and assets
        messaging: Topics and queues keyed as returned by create_messaging
        env_name: Deployment environment (dev, prod)

    Returns:
        Dictionary containing all Lambda functions (keyed by function name)
        and the shared layer
    """
    lambda_env = {
        "EVENTS_TABLE_NAME": tables["events_table"].table_name,
        "USERS_TABLE_NAME": tables["users_table"].table_name,
        "ORGANIZATIONS_TABLE_NAME": tables["organizations_table"].table_name,
        "GIFT_EVENTS_TABLE_NAME": tables["gift_events_table"].table_name,
        "HANDSHAKES_TABLE_NAME": tables["handshakes_table"].table_name,
        "FACES_TABLE_NAME": tables["faces_table"].table_name,
        "PHOTO_BUCKET_NAME": photo_bucket.bucket_name,
        "SNS_TOPIC_ARN": messaging["organization_deleted_topic"].topic_arn,
        "DEPLOY_ENV": env_name,
        "LOG_LEVEL": "INFO",
    }

    # Shared dependencies (Pillow, python-jose, qrcode) are built into this directory
    lambda_layer_path = os.path.join(os.path.dirname(__file__), "..", "lambda-layer")
    if not os.path.exists(lambda_layer_path):
        os.makedirs(lambda_layer_path, exist_ok=True)

    shared_layer = lambda_.LayerVersion(
        scope,
        "SharedDependenciesLayer",
        layer_version_name=rn("eventlens-deps"),
        code=lambda_.Code.from_asset(lambda_layer_path),
        compatible_runtimes=[lambda_.Runtime.PYTHON_3_13],
        description="Shared Python dependencies for Lambda functions",
    )

    # Use only the src directory for Lambda code (not the entire repo)
    lambda_code_path = os.path.join(os.path.dirname(__file__), "..", "..", "src")
    lambda_code = lambda_.Code.from_asset(
        lambda_code_path,
        exclude=[
            "__pycache__",
            "*.pyc",
            ".pytest_cache",
        ],
    )

    def function(function_spec: FunctionSpec, role: iam.Role, environment: dict[str, str]) -> lambda_.Function:
        return lambda_.Function(
            scope,
            _construct_id(function_spec.name),
            function_name=rn(f"eventlens-{function_spec.name}"),
            runtime=lambda_.Runtime.PYTHON_3_13,
            handler=function_spec.handler,
            code=lambda_code,
            layers=[shared_layer],
            timeout=Duration.seconds(function_spec.timeout),
            memory_size=function_spec.memory_size,
            role=role,
            environment=environment,
        )

    functions: dict[str, lambda_.Function | lambda_.LayerVersion] = {"shared_layer": shared_layer}
    for function_spec in API_FUNCTIONS:
        functions[function_spec.name] = function(function_spec, lambda_execution_role, lambda_env)

    # Queue consumers; the queues' visibility timeout covers these timeouts
    resize_photo_fn = function(
        FunctionSpec("resize-photo", "handlers.photo_pipeline.resize_photo", timeout=120, memory_size=1024),
        lambda_execution_role,
        lambda_env,
    )
    resize_photo_fn.add_event_source(event_sources.SqsEventSource(messaging["resize_queue"], batch_size=1))
    resize_photo_fn.add_event_source(event_sources.SqsEventSource(messaging["branding_queue"], batch_size=1))

    process_photo_fn = function(
        FunctionSpec("process-photo", "handlers.photo_pipeline.process_photo", timeout=60),
        lambda_execution_role,
        lambda_env,
    )
    process_photo_fn.add_event_source(event_sources.SqsEventSource(messaging["faces_queue"], batch_size=5))

    delete_organization_photos_fn = function(
        FunctionSpec(
            "delete-organization-photos",
            "handlers.organization_operations.delete_organization_photos",
            timeout=150,
            memory_size=512,
        ),
        lambda_execution_role,
        lambda_env,
    )
    delete_organization_photos_fn.add_event_source(
        event_sources.SqsEventSource(messaging["delete_photos_queue"], batch_size=1)
    )

    delete_organization_faces_fn = function(
        FunctionSpec(
            "delete-organization-faces",
            "handlers.organization_operations.delete_organization_faces",
            timeout=150,
        ),
        lambda_execution_role,
        lambda_env,
    )
    delete_organization_faces_fn.add_event_source(
        event_sources.SqsEventSource(messaging["delete_faces_queue"], batch_size=1)
    )

    # Pre-Token-Generation Lambda (Cognito Trigger)
    # Adds the XSRF token and the event quota to every id token
    pre_token_generation_fn = function(
        FunctionSpec("pre-token-generation", "handlers.pre_token_generation.lambda_handler"),
        trigger_role,
        {"USERS_TABLE_NAME": tables["users_table"].table_name, "LOG_LEVEL": "INFO"},
    )

    functions.update(
        {
            "resize-photo": resize_photo_fn,
            "process-photo": process_photo_fn,
            "delete-organization-photos": delete_organization_photos_fn,
            "delete-organization-faces": delete_organization_faces_fn,
            "pre-token-generation": pre_token_generation_fn,
        }
    )
    return functions


def add_user_pool_environment(functions: dict[str, Any], user_pool_id: str, client_id: str) -> None:
    """Point the API handlers at the user pool once it exists."""
    for function_spec in API_FUNCTIONS:
        fn = functions[function_spec.name]
        fn.add_environment("USER_POOL_ID", user_pool_id)
        fn.add_environment("CLIENT_APP_ID", client_id)
