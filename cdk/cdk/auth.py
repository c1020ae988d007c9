"""Cognito User Pool authentication configuration for the EventLens stack.

This module creates and configures:
- Cognito User Pool with username sign-in and the organization attributes
- User Pool Client used by the auth handlers
- SMS role for MFA
- Pre-token-generation trigger
"""

from typing import Any

from aws_cdk import CfnOutput, RemovalPolicy
from aws_cdk import aws_cognito as cognito
from aws_cdk import aws_iam as iam
from aws_cdk import aws_lambda as lambda_
from constructs import Construct


def _should_skip_lambda_triggers(scope: Construct) -> bool:
    """Check if Lambda triggers should be skipped (import phase)."""
    skip = scope.node.try_get_context("skip_lambda_triggers")
    if skip is None:
        return False
    if isinstance(skip, str):
        return skip.lower() == "true"
    return bool(skip)


def _build_user_pool_triggers(
    scope: Construct,
    pre_token_generation_fn: lambda_.Function,
) -> cognito.UserPoolTriggers | None:
    """Build user pool triggers unless in import phase."""
    if _should_skip_lambda_triggers(scope):
        print("Skipping Lambda triggers (import phase - will be added on subsequent deploy)")
        return None
    return cognito.UserPoolTriggers(pre_token_generation=pre_token_generation_fn)


def _create_sms_role(scope: Construct, rn: Any) -> iam.Role:
    """Create SMS role for Cognito MFA."""
    sms_role = iam.Role(
        scope,
        "UserPoolsmsRole",
        assumed_by=iam.ServicePrincipal("cognito-idp.amazonaws.com"),
        role_name=rn("eventlens-UserPoolsmsRole"),
        inline_policies={
            "UserPoolSmsPolicy": iam.PolicyDocument(
                statements=[iam.PolicyStatement(actions=["sns:Publish"], resources=["*"])]
            )
        },
    )
    sms_role.apply_removal_policy(RemovalPolicy.RETAIN)
    return sms_role


def _create_password_policy() -> cognito.PasswordPolicy:
    """Create password policy for user pool."""
    return cognito.PasswordPolicy(
        min_length=8, require_lowercase=True, require_uppercase=True, require_digits=True, require_symbols=False
    )


def _custom_attributes() -> dict[str, cognito.ICustomAttribute]:
    """Organization membership attributes read from the id token."""
    return {
        "organization": cognito.StringAttribute(mutable=True),
        "root": cognito.StringAttribute(mutable=True),
        "permissions": cognito.StringAttribute(mutable=True, max_len=2048),
        "expiration": cognito.StringAttribute(mutable=True),
    }


def create_cognito_auth(
    scope: Construct,
    rn: Any,  # Resource naming function
    pre_token_generation_fn: lambda_.Function,
) -> dict[str, Any]:
    """Create Cognito User Pool and related authentication resources.

    Args:
        scope: CDK construct scope
        rn: Resource naming function (name -> formatted name)
        pre_token_generation_fn: Lambda function for pre-token-generation trigger

    Returns:
        Dictionary containing user_pool, user_pool_client and user_pool_sms_role
    """
    user_pool_sms_role = _create_sms_role(scope, rn)

    user_pool = cognito.UserPool(
        scope,
        "UserPool",
        user_pool_name=rn("eventlens-users"),
        sign_in_aliases=cognito.SignInAliases(username=True, email=True),
        sign_in_case_sensitive=False,
        self_sign_up_enabled=True,
        auto_verify=cognito.AutoVerifiedAttrs(email=True),
        standard_attributes=cognito.StandardAttributes(
            email=cognito.StandardAttribute(required=True, mutable=True),
            phone_number=cognito.StandardAttribute(required=False, mutable=True),
        ),
        custom_attributes=_custom_attributes(),
        password_policy=_create_password_policy(),
        account_recovery=cognito.AccountRecovery.EMAIL_ONLY,
        mfa=cognito.Mfa.OPTIONAL,
        mfa_second_factor=cognito.MfaSecondFactor(sms=True, otp=False),
        sms_role=user_pool_sms_role,
        sms_role_external_id="eventlens-sms-role",
        lambda_triggers=_build_user_pool_triggers(scope, pre_token_generation_fn),
        removal_policy=RemovalPolicy.RETAIN,
    )
    user_pool.node.add_dependency(user_pool_sms_role)

    user_pool_client = user_pool.add_client(
        "AppClient",
        user_pool_client_name="EventLens-Web",
        auth_flows=cognito.AuthFlow(user_password=True, admin_user_password=True),
        generate_secret=False,
        prevent_user_existence_errors=False,
    )

    CfnOutput(
        scope,
        "UserPoolId",
        value=user_pool.user_pool_id,
        description="Cognito User Pool ID",
    )
    CfnOutput(
        scope,
        "UserPoolClientId",
        value=user_pool_client.user_pool_client_id,
        description="Cognito User Pool Client ID",
    )

    return {
        "user_pool": user_pool,
        "user_pool_client": user_pool_client,
        "user_pool_sms_role": user_pool_sms_role,
    }
