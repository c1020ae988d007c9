"""Tests for API Gateway and queue event accessors."""

import json

import pytest

from src.utils.api_types import (
    get_body,
    get_header,
    get_path_param,
    get_query_param,
    iter_message_attributes,
    iter_object_created,
    parse_string_list,
)
from src.utils.errors import AppError
from tests.unit.fixtures import organization_deleted, s3_notification, sqs_event


class TestRequestAccessors:
    """Tests for header, query, path and body extraction."""

    def test_header_lookup_is_case_insensitive(self) -> None:
        """Test header names match regardless of case."""
        event = {"headers": {"XSRF-Token": "abc"}}

        assert get_header(event, "xsrf-token") == "abc"
        assert get_header(event, "missing") is None
        assert get_header({"headers": None}, "xsrf-token") is None

    def test_query_and_path_params(self) -> None:
        """Test parameters tolerate absent maps."""
        event = {"queryStringParameters": {"eventId": "wedding"}, "pathParameters": None}

        assert get_query_param(event, "eventId") == "wedding"
        assert get_path_param(event, "nameUrl") is None

    def test_body_parsed(self) -> None:
        """Test a JSON object body is returned."""
        assert get_body({"body": json.dumps({"eventId": "wedding"})}) == {"eventId": "wedding"}
        assert get_body({"body": None}) == {}

    @pytest.mark.parametrize("raw", ["{not json", "[1, 2]"])
    def test_body_rejected(self, raw: str) -> None:
        """Test invalid JSON and non-object bodies are rejected."""
        with pytest.raises(AppError) as exc_info:
            get_body({"body": raw})

        assert exc_info.value.status_code == 400


class TestQueueAccessors:
    """Tests for SQS-over-SNS helpers."""

    def test_object_created_keys_are_decoded(self) -> None:
        """Test keys are URL-decoded with '+' as space."""
        event = sqs_event(
            s3_notification("bucket-a", "original/org-1/wedding/first+dance%281%29.jpg"),
            s3_notification("bucket-a", "original/org-1/wedding/b.jpg"),
        )

        objects = list(iter_object_created(event))

        assert objects == [
            {"bucket": "bucket-a", "key": "original/org-1/wedding/first dance(1).jpg"},
            {"bucket": "bucket-a", "key": "original/org-1/wedding/b.jpg"},
        ]

    def test_message_attributes(self) -> None:
        """Test SNS attributes are flattened to strings."""
        event = sqs_event(organization_deleted("org-1", ["wedding", "party"]))

        attributes = list(iter_message_attributes(event))

        assert attributes[0]["organization"] == "org-1"
        assert parse_string_list(attributes[0]["eventIds"]) == ["wedding", "party"]

    def test_parse_string_list_tolerates_absent_values(self) -> None:
        """Test missing or non-list values yield an empty list."""
        assert parse_string_list(None) == []
        assert parse_string_list('{"a": 1}') == []
