"""
REST API for the EventLens stack.

Every route is a Lambda proxy integration. Routes marked as protected go
through the Cognito authorizer; the handlers then read the verified id token
from the Authorization header.
"""

from typing import Any, NamedTuple

from aws_cdk import CfnOutput
from aws_cdk import aws_apigateway as apigw
from aws_cdk import aws_cognito as cognito
from constructs import Construct


class Route(NamedTuple):
    """One API method bound to a Lambda function."""

    path: str
    method: str
    function: str
    protected: bool = True


ROUTES = [
    # Authentication
    Route("auth/signin", "POST", "signin", protected=False),
    Route("auth/signup", "POST", "signup", protected=False),
    Route("auth/refresh-token", "POST", "refresh-token", protected=False),
    Route("auth/sign-out", "POST", "sign-out"),
    Route("auth/is-logged-in", "GET", "is-logged-in"),
    Route("auth/sms-mfa", "POST", "sms-mfa", protected=False),
    Route("auth/force-change-password", "POST", "force-change-password", protected=False),
    Route("auth/forgot-password", "POST", "forgot-password", protected=False),
    Route("auth/reset-password", "POST", "reset-password", protected=False),
    Route("auth/reset-password-auth", "POST", "reset-password-auth"),
    Route("auth/resend-confirmation-code", "POST", "resend-confirmation-code", protected=False),
    Route("auth/verify-email", "POST", "verify-email", protected=False),
    Route("auth/mfa", "POST", "update-mfa"),
    Route("auth/phone", "POST", "update-phone"),
    Route("auth/verify-phone", "POST", "verify-phone"),
    Route("auth/cognito-details", "GET", "get-cognito-details"),
    # Events
    Route("events", "GET", "get-events"),
    Route("events", "POST", "create-resources"),
    Route("events", "PUT", "update-event"),
    Route("events", "DELETE", "delete-event"),
    Route("events/verify-name", "GET", "verify-name-url", protected=False),
    Route("events/finish-upload", "POST", "finish-upload"),
    Route("events/photos", "GET", "get-event-photos"),
    Route("events/random-photos", "GET", "get-event-random-photos"),
    Route("events/delete-photos", "POST", "delete-photos"),
    Route("events/favorites", "POST", "change-photos-favorite"),
    Route("events/presign", "POST", "photo-presign-url"),
    Route("events/add-images", "POST", "add-images"),
    Route("events/next-event-promotion", "POST", "set-next-event-promotion"),
    Route("events/next-event-promotion", "DELETE", "delete-next-event-promotion"),
    Route("events/share-qrcode", "POST", "create-share-qrcode"),
    Route("events/{nameUrl}", "GET", "get-single-event"),
    # Organization
    Route("organization", "DELETE", "delete-organization"),
    Route("organization/branding", "POST", "branding-presign-url"),
    # Guests
    Route("guests/photos", "GET", "get-photos-public", protected=False),
]


def _resource(root: apigw.IResource, path: str, cache: dict[str, apigw.IResource]) -> apigw.IResource:
    """Resolve (creating as needed) the resource of a slash-separated path."""
    resource = root
    walked = []
    for part in path.split("/"):
        walked.append(part)
        key = "/".join(walked)
        if key not in cache:
            cache[key] = resource.add_resource(part)
        resource = cache[key]
    return resource


def create_rest_api(
    scope: Construct,
    rn: Any,  # Resource naming function
    functions: dict[str, Any],
    user_pool: cognito.IUserPool,
    allowed_origins: list[str],
) -> dict[str, Any]:
    """Create the REST API and bind every route.

    Args:
        scope: CDK construct scope
        rn: Resource naming function
        functions: Lambda functions keyed by short name
        user_pool: Pool validating bearer tokens
        allowed_origins: Origins allowed by CORS preflight

    Returns:
        Dict with 'api' and 'authorizer'
    """
    api = apigw.RestApi(
        scope,
        "Api",
        rest_api_name=rn("eventlens-api"),
        description="EventLens REST API",
        default_cors_preflight_options=apigw.CorsOptions(
            allow_origins=allowed_origins,
            allow_methods=apigw.Cors.ALL_METHODS,
            allow_headers=["Content-Type", "Authorization", "xsrf-token", "AccessToken", "refreshToken"],
            allow_credentials=True,
        ),
        deploy_options=apigw.StageOptions(
            stage_name="api",
            throttling_rate_limit=100,
            throttling_burst_limit=200,
            logging_level=apigw.MethodLoggingLevel.ERROR,
            metrics_enabled=True,
        ),
    )

    authorizer = apigw.CognitoUserPoolsAuthorizer(
        scope,
        "ApiAuthorizer",
        authorizer_name=rn("eventlens-authorizer"),
        cognito_user_pools=[user_pool],
    )

    api_root = api.root.add_resource("api")
    resources: dict[str, apigw.IResource] = {}
    integrations: dict[str, apigw.LambdaIntegration] = {}
    for route in ROUTES:
        integration = integrations.setdefault(route.function, apigw.LambdaIntegration(functions[route.function]))
        resource = _resource(api_root, route.path, resources)
        if route.protected:
            resource.add_method(
                route.method,
                integration,
                authorizer=authorizer,
                authorization_type=apigw.AuthorizationType.COGNITO,
            )
        else:
            resource.add_method(route.method, integration)

    CfnOutput(scope, "ApiUrl", value=api.url, description="REST API base URL")

    return {"api": api, "authorizer": authorizer}
