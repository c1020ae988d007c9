import os

from aws_cdk import CfnOutput, Stack
from constructs import Construct

from cdk.api import create_rest_api
from cdk.auth import create_cognito_auth
from cdk.dynamodb_tables import create_dynamodb_tables
from cdk.helpers import REGION_ABBREVIATIONS, get_domain_names, make_resource_namer
from cdk.iam_roles import create_lambda_execution_role, create_trigger_role, grant_user_pool_access
from cdk.lambdas import add_user_pool_environment, create_lambda_functions
from cdk.messaging import create_messaging
from cdk.s3_buckets import create_s3_buckets


class CdkStack(Stack):
    """
    EventLens - Core Infrastructure Stack

    Creates foundational resources:
    - DynamoDB tables for events, users, organizations, gifts, handshakes and faces
    - S3 photo bucket with upload notifications
    - SNS topics and SQS queues for the photo and cleanup pipelines
    - Lambda functions and their IAM roles
    - Cognito User Pool for authentication
    - REST API with a Cognito authorizer
    """

    def __init__(self, scope: Construct, construct_id: str, env_name: str = "dev", **kwargs) -> None:
        super().__init__(scope, construct_id, **kwargs)

        self.env_name = env_name

        # Uses CDK_DEFAULT_REGION or falls back to us-east-1
        region = os.getenv("AWS_REGION") or os.getenv("CDK_DEFAULT_REGION", "us-east-1")
        self.region_abbrev = REGION_ABBREVIATIONS.get(region, region[:3])

        # Helper for consistent resource naming: {name}-{region}-{env}
        rn = make_resource_namer(self.region_abbrev, env_name)
        self.resource_name = rn

        domains = get_domain_names(env_name)
        allowed_origins = [
            f"https://{domains['site_domain']}",
            f"https://www.{domains['site_domain']}",
            "http://localhost:3000",
        ]

        # ====================================================================
        # Storage
        # ====================================================================

        self.tables = create_dynamodb_tables(self, rn)
        self.buckets = create_s3_buckets(self, rn, allowed_origins)
        self.photo_bucket = self.buckets["photo_bucket"]

        # ====================================================================
        # Pipelines
        # ====================================================================

        self.messaging = create_messaging(self, rn, self.photo_bucket)

        # ====================================================================
        # Compute
        # ====================================================================

        self.lambda_execution_role = create_lambda_execution_role(
            self,
            rn,
            self.tables,
            self.photo_bucket,
            self.messaging["organization_deleted_topic"],
        )
        self.trigger_role = create_trigger_role(self, rn, self.tables["users_table"])

        self.functions = create_lambda_functions(
            self,
            rn,
            self.lambda_execution_role,
            self.trigger_role,
            self.tables,
            self.photo_bucket,
            self.messaging,
            env_name,
        )

        # ====================================================================
        # Authentication
        # ====================================================================

        auth = create_cognito_auth(self, rn, self.functions["pre-token-generation"])
        self.user_pool = auth["user_pool"]
        self.user_pool_client = auth["user_pool_client"]

        grant_user_pool_access(self.lambda_execution_role, self.user_pool.user_pool_arn)
        add_user_pool_environment(
            self.functions,
            self.user_pool.user_pool_id,
            self.user_pool_client.user_pool_client_id,
        )

        # ====================================================================
        # API
        # ====================================================================

        api = create_rest_api(self, rn, self.functions, self.user_pool, allowed_origins)
        self.api = api["api"]

        CfnOutput(self, "PhotoBucketName", value=self.photo_bucket.bucket_name)
