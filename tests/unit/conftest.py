"""
Test fixtures for Lambda function tests.

Provides mocked AWS resources, identity tokens and API Gateway events.
"""

import json
import os
from typing import Any, Callable, Dict, Generator, Optional
from unittest.mock import MagicMock

import boto3
import pytest
from jose import jwt
from moto import mock_aws

from src.utils import identity, recognition, storage
from src.utils.dynamodb import clear_all_overrides, reset_singleton
from tests.unit.fixtures import (
    PHOTO_BUCKET,
    TEST_ORGANIZATION,
    TEST_USERNAME,
    TEST_XSRF,
    make_event_item,
    make_mirror_item,
)
from tests.unit.table_schemas import TABLE_ENV_VARS, TABLE_NAMES, create_all_tables


@pytest.fixture
def aws_credentials() -> None:
    """Set fake AWS credentials and the configuration the handlers read."""
    os.environ["AWS_ACCESS_KEY_ID"] = "testing"
    os.environ["AWS_SECRET_ACCESS_KEY"] = "testing"
    os.environ["AWS_SECURITY_TOKEN"] = "testing"
    os.environ["AWS_SESSION_TOKEN"] = "testing"
    os.environ["AWS_DEFAULT_REGION"] = "us-east-1"
    for name, env_var in TABLE_ENV_VARS.items():
        os.environ[env_var] = TABLE_NAMES[name]
    os.environ["PHOTO_BUCKET_NAME"] = PHOTO_BUCKET
    os.environ["USER_POOL_ID"] = "us-east-1_TEST123"
    os.environ["CLIENT_APP_ID"] = "test-client-id"
    os.environ["DEPLOY_ENV"] = "dev"
    os.environ["SNS_TOPIC_ARN"] = "arn:aws:sns:us-east-1:123456789012:eventlens-organization-deleted"


@pytest.fixture(autouse=True)
def reset_clients() -> Generator[None, None, None]:
    """Clear client and table overrides between tests."""
    yield
    storage.s3_client = None
    recognition.rekognition_client = None
    identity.cognito_client = None
    clear_all_overrides()
    reset_singleton()


@pytest.fixture
def dynamodb_tables(aws_credentials: None) -> Generator[Dict[str, Any], None, None]:
    """Create all mock DynamoDB tables."""
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")
        yield create_all_tables(dynamodb)


@pytest.fixture
def photo_bucket(dynamodb_tables: Dict[str, Any]) -> Any:
    """Create the mock photo bucket (inside the tables' moto context)."""
    s3 = boto3.client("s3", region_name="us-east-1")
    s3.create_bucket(Bucket=PHOTO_BUCKET)
    return s3


@pytest.fixture
def rekognition() -> MagicMock:
    """Install a mock Rekognition client."""
    client = MagicMock()
    recognition.rekognition_client = client
    return client


@pytest.fixture
def cognito() -> MagicMock:
    """Install a mock Cognito client."""
    client = MagicMock()
    identity.cognito_client = client
    return client


@pytest.fixture
def make_token() -> Callable[..., str]:
    """Factory for id tokens; keyword arguments override default claims."""

    def _make(**overrides: Any) -> str:
        claims: Dict[str, Any] = {
            "cognito:username": TEST_USERNAME,
            "custom:organization": TEST_ORGANIZATION,
            "custom:root": "true",
            "email": "jane@example.com",
            "XSRF-TOKEN": TEST_XSRF,
            "eventsLimitType": "",
        }
        claims.update(overrides)
        claims = {k: v for k, v in claims.items() if v is not None}
        return str(jwt.encode(claims, "test-secret", algorithm="HS256"))

    return _make


@pytest.fixture
def api_event(make_token: Callable[..., str]) -> Callable[..., Dict[str, Any]]:
    """
    Factory for API Gateway proxy events.

    By default the event carries a root user's token and the matching
    xsrf-token header. Pass token=None for an anonymous request.
    """

    def _make(
        body: Optional[Dict[str, Any]] = None,
        query: Optional[Dict[str, str]] = None,
        path_params: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
        method: str = "POST",
        path: str = "/api/events",
        token: Optional[str] = "default",
        **claims: Any,
    ) -> Dict[str, Any]:
        all_headers: Dict[str, str] = {}
        if token == "default":
            token = make_token(**claims)
        if token:
            all_headers["Authorization"] = f"Bearer {token}"
            all_headers["xsrf-token"] = TEST_XSRF
        all_headers.update(headers or {})
        return {
            "httpMethod": method,
            "path": path,
            "headers": all_headers,
            "queryStringParameters": query,
            "pathParameters": path_params,
            "body": json.dumps(body) if body is not None else None,
            "requestContext": {"requestId": "req-123"},
        }

    return _make


@pytest.fixture
def lambda_context() -> Any:
    """Mock Lambda context."""

    class MockContext:
        function_name = "test-function"
        memory_limit_in_mb = 128
        invoked_function_arn = "arn:aws:lambda:us-east-1:123456789012:function:test-function"
        aws_request_id = "test-request-id"

    return MockContext()


@pytest.fixture
def sample_organization(dynamodb_tables: Dict[str, Any]) -> Dict[str, Any]:
    """Organization with 1000 tokens and its root user."""
    organization = {
        "id": TEST_ORGANIZATION,
        "name": "Jane Photography",
        "rootUser": "jane@example.com",
        "tokens": 1000,
        "giftsEvents": [],
    }
    dynamodb_tables["organizations"].put_item(Item=organization)
    dynamodb_tables["users"].put_item(
        Item={
            "organization": TEST_ORGANIZATION,
            "id": TEST_USERNAME,
            "email": "jane@example.com",
            "role": "admin",
            "root": True,
            "eventsCreated": [],
        }
    )
    return organization


@pytest.fixture
def sample_event(dynamodb_tables: Dict[str, Any], sample_organization: Dict[str, Any]) -> Dict[str, Any]:
    """An event with room for 10 photos, plus its mirror record."""
    item = make_event_item()
    dynamodb_tables["events"].put_item(Item=item)
    dynamodb_tables["events"].put_item(Item=make_mirror_item())
    return item
