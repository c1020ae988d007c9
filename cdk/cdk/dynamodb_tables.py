from typing import Callable, Dict, Optional

from aws_cdk import RemovalPolicy
from aws_cdk import aws_dynamodb as ddb
from constructs import Construct

# Attribute holding the epoch-seconds expiry of mirror and face records
TTL_ATTRIBUTE = "ttl"


def _table(
    stack: Construct,
    construct_id: str,
    table_name: str,
    partition_key: str,
    sort_key: Optional[str] = None,
    sort_key_type: ddb.AttributeType = ddb.AttributeType.STRING,
    time_to_live: bool = False,
) -> ddb.Table:
    return ddb.Table(
        stack,
        construct_id,
        table_name=table_name,
        partition_key=ddb.Attribute(name=partition_key, type=ddb.AttributeType.STRING),
        sort_key=ddb.Attribute(name=sort_key, type=sort_key_type) if sort_key else None,
        billing_mode=ddb.BillingMode.PAY_PER_REQUEST,
        point_in_time_recovery_specification=ddb.PointInTimeRecoverySpecification(point_in_time_recovery_enabled=True),
        time_to_live_attribute=TTL_ATTRIBUTE if time_to_live else None,
        removal_policy=RemovalPolicy.RETAIN,
    )


def create_dynamodb_tables(stack: Construct, rn: Callable[[str], str]) -> Dict[str, ddb.Table]:
    """Create all DynamoDB tables used by the application and return them in a dict.

    Events and name mirrors share the events table; mirrors live under the
    "-" organization and expire through TTL together with face records.

    Args:
        stack: CDK Construct (usually the Stack instance)
        rn: helper function to create resource names (rn(name: str) -> str)

    Returns:
        Mapping of table names to Table constructs
    """
    events_table = _table(stack, "EventsTable", rn("eventlens-events"), "organization", "id", time_to_live=True)
    users_table = _table(stack, "UsersTable", rn("eventlens-users"), "organization", "id")
    organizations_table = _table(stack, "OrganizationsTable", rn("eventlens-organizations"), "id")
    gift_events_table = _table(
        stack,
        "GiftEventsTable",
        rn("eventlens-gift-events"),
        "organization",
        "id",
        sort_key_type=ddb.AttributeType.NUMBER,
    )
    handshakes_table = _table(stack, "HandshakesTable", rn("eventlens-handshakes"), "thtk")
    faces_table = _table(stack, "FacesTable", rn("eventlens-faces"), "eventId", "id", time_to_live=True)

    return {
        "events_table": events_table,
        "users_table": users_table,
        "organizations_table": organizations_table,
        "gift_events_table": gift_events_table,
        "handshakes_table": handshakes_table,
        "faces_table": faces_table,
    }
