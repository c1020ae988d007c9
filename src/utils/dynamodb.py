"""
Centralized DynamoDB table access utilities.

Provides singleton-pattern table accessors with lazy initialization,
test monkeypatch support, and the conditional-update primitive every
ledger mutation is built on.
"""

import os
from typing import TYPE_CHECKING, Any, Dict, Iterator, List, Optional, Sequence, TypedDict

import boto3
from botocore.exceptions import ClientError

if TYPE_CHECKING:
    from mypy_boto3_dynamodb import DynamoDBServiceResource
    from mypy_boto3_dynamodb.service_resource import Table


# Module-level cache for test overrides
_table_overrides: dict[str, Optional["Table"]] = {}

# DynamoDB BatchWriteItem limit
BATCH_SIZE = 25


def get_required_env(name: str, default: Optional[str] = None) -> str:
    """Get a required environment variable.

    In Lambda/production, the env var must be set. For tests, a default can be
    provided to allow the code to run in mocked environments.

    Args:
        name: Environment variable name
        default: Optional default for test environments

    Returns:
        The environment variable value

    Raises:
        ValueError: If the env var is not set and no default is provided
    """
    value = os.getenv(name, default)
    if value is None:
        raise ValueError(f"Required environment variable '{name}' is not set")
    return value


def _get_dynamodb() -> "DynamoDBServiceResource":
    """Get DynamoDB resource with optional endpoint override for LocalStack."""
    return boto3.resource("dynamodb", endpoint_url=os.getenv("DYNAMODB_ENDPOINT"))


def get_dynamodb_resource() -> "DynamoDBServiceResource":
    """Get DynamoDB resource for resource-level operations like batch_write_item.

    For table-level operations, prefer using the `tables` singleton.
    """
    return _get_dynamodb()


class TableAccessor:
    """Centralized access to DynamoDB tables with environment-based naming."""

    _instance: Optional["TableAccessor"] = None

    def __new__(cls) -> "TableAccessor":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def _table(self, key: str, env_name: str) -> "Table":
        if override := _table_overrides.get(key):
            return override
        return _get_dynamodb().Table(get_required_env(env_name))

    @property
    def events(self) -> "Table":
        """Get events table instance (PK=organization, SK=id; mirrors use organization '-')."""
        return self._table("events", "EVENTS_TABLE_NAME")

    @property
    def users(self) -> "Table":
        """Get users table instance (PK=organization, SK=id)."""
        return self._table("users", "USERS_TABLE_NAME")

    @property
    def organizations(self) -> "Table":
        """Get organizations table instance (PK=id)."""
        return self._table("organizations", "ORGANIZATIONS_TABLE_NAME")

    @property
    def gift_events(self) -> "Table":
        """Get gift events table instance (PK=organization, SK=id number)."""
        return self._table("gift_events", "GIFT_EVENTS_TABLE_NAME")

    @property
    def handshakes(self) -> "Table":
        """Get payment handshakes table instance (PK=thtk)."""
        return self._table("handshakes", "HANDSHAKES_TABLE_NAME")

    @property
    def faces(self) -> "Table":
        """Get faces table instance (PK=eventId, SK=id)."""
        return self._table("faces", "FACES_TABLE_NAME")


# Singleton instance for import
tables = TableAccessor()


class MutationOutcome:
    """Possible results of a conditional update."""

    SUCCESS = "success"
    PRECONDITION_FAILED = "precondition_failed"
    ERROR = "error"


class MutationResult(TypedDict, total=False):
    """Result of attempt_update."""

    outcome: str
    attributes: Dict[str, Any]
    error: Optional[ClientError]


def attempt_update(
    table: "Table",
    key: Dict[str, Any],
    update_expression: str,
    condition_expression: Optional[str] = None,
    names: Optional[Dict[str, str]] = None,
    values: Optional[Dict[str, Any]] = None,
    return_values: str = "NONE",
) -> MutationResult:
    """Apply an update guarded by a precondition and classify the outcome.

    A failed precondition is an expected business result (limit reached, not
    enough tokens, gift already used) and never raises. Other service errors
    are returned as ERROR so callers decide how to surface them.

    Args:
        table: Table to update
        key: Primary key of the item
        update_expression: DynamoDB UpdateExpression
        condition_expression: Optional ConditionExpression
        names: ExpressionAttributeNames
        values: ExpressionAttributeValues
        return_values: ReturnValues setting

    Returns:
        MutationResult with outcome, returned attributes, and the error if any
    """
    kwargs: Dict[str, Any] = {
        "Key": key,
        "UpdateExpression": update_expression,
        "ReturnValues": return_values,
    }
    if condition_expression:
        kwargs["ConditionExpression"] = condition_expression
    if names:
        kwargs["ExpressionAttributeNames"] = names
    if values:
        kwargs["ExpressionAttributeValues"] = values

    try:
        response = table.update_item(**kwargs)
    except ClientError as e:
        if e.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException":
            return MutationResult(outcome=MutationOutcome.PRECONDITION_FAILED, attributes={}, error=e)
        return MutationResult(outcome=MutationOutcome.ERROR, attributes={}, error=e)

    return MutationResult(
        outcome=MutationOutcome.SUCCESS,
        attributes=dict(response.get("Attributes", {})),
        error=None,
    )


def query_all(table: "Table", **query_kwargs: Any) -> Iterator[Dict[str, Any]]:
    """Yield every item of a query, following LastEvaluatedKey pagination."""
    last_evaluated_key: Dict[str, Any] | None = None
    while True:
        if last_evaluated_key is not None:
            query_kwargs["ExclusiveStartKey"] = last_evaluated_key

        response = table.query(**query_kwargs)
        yield from response.get("Items", [])

        last_evaluated_key = response.get("LastEvaluatedKey")
        if last_evaluated_key is None:
            break


def batch_delete(table: "Table", keys: Sequence[Dict[str, Any]], key_names: List[str]) -> int:
    """Delete items in batches of 25.

    Args:
        table: Table to delete from
        keys: Primary keys of the items
        key_names: Key attribute names (used to de-duplicate within a batch)

    Returns:
        Number of deleted keys
    """
    deleted = 0
    for i in range(0, len(keys), BATCH_SIZE):
        batch = keys[i : i + BATCH_SIZE]
        with table.batch_writer(overwrite_by_pkeys=key_names) as batch_writer:
            for item_key in batch:
                batch_writer.delete_item(Key=item_key)
        deleted += len(batch)
    return deleted


# Test utilities
def override_table(table_name: str, table: Optional["Table"]) -> None:
    """Override a table for testing. Set to None to clear override."""
    _table_overrides[table_name] = table


def clear_all_overrides() -> None:
    """Clear all table overrides (call in test teardown)."""
    _table_overrides.clear()


def reset_singleton() -> None:
    """Reset the singleton instance (for testing isolation)."""
    TableAccessor._instance = None
