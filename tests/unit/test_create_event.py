"""Unit tests for event creation handlers."""

import json
from typing import Any, Callable, Dict, Optional
from unittest.mock import MagicMock, patch

import pytest

from src.handlers.create_event import create_resources, finish_upload, provision_event, verify_name_url
from src.utils.errors import AppError
from tests.unit.fixtures import TEST_ORGANIZATION, TEST_USERNAME, client_error, make_gift_item, make_mirror_item


def _create_event(
    api_event: Callable[..., Dict[str, Any]], payload: Optional[Dict[str, Any]] = None, **claims: Any
) -> Dict[str, Any]:
    dto: Dict[str, Any] = {"eventName": "Wedding", "eventDate": "2025-06-01", "nameUrl": "wedding"}
    dto.update(payload or {})
    return api_event(body={"event": dto}, **claims)


def _balance(tables: Dict[str, Any]) -> int:
    return int(tables["organizations"].get_item(Key={"id": TEST_ORGANIZATION})["Item"]["tokens"])


def _events_created(tables: Dict[str, Any]) -> Any:
    user = tables["users"].get_item(Key={"organization": TEST_ORGANIZATION, "id": TEST_USERNAME})["Item"]
    return user["eventsCreated"]


class TestCreateResources:
    """Tests for create_resources handler."""

    def test_create_with_tokens(
        self,
        dynamodb_tables: Dict[str, Any],
        sample_organization: Dict[str, Any],
        rekognition: MagicMock,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test paying with tokens creates the event, its mirror and the collection."""
        response = create_resources(_create_event(api_event, {"creditsToUse": 100}), lambda_context)

        assert response["statusCode"] == 200
        assert json.loads(response["body"]) == {"success": True, "eventId": "wedding"}
        assert _balance(dynamodb_tables) == 900
        assert _events_created(dynamodb_tables) == ["wedding"]
        rekognition.create_collection.assert_called_once_with(CollectionId="wedding")

        event = dynamodb_tables["events"].get_item(Key={"organization": TEST_ORGANIZATION, "id": "wedding"})["Item"]
        assert event["number_of_photos"] == 100
        assert event["total_photos"] == 0
        assert event["imagesStatus"] == "UPLOADING"
        assert event["username"] == TEST_USERNAME
        assert event["eventWatermarkSize"] == 1
        assert event["ttl"] > 0

        mirror = dynamodb_tables["events"].get_item(Key={"organization": "-", "id": "wedding"})["Item"]
        assert mirror["belongsTo"] == TEST_ORGANIZATION
        assert mirror["ttl"] == event["ttl"]

    def test_taken_name_gets_suffix(
        self,
        dynamodb_tables: Dict[str, Any],
        sample_organization: Dict[str, Any],
        rekognition: MagicMock,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test a name held by another organization is not reused."""
        dynamodb_tables["events"].put_item(Item=make_mirror_item("wedding", "org-2"))

        response = create_resources(_create_event(api_event), lambda_context)

        event_id = json.loads(response["body"])["eventId"]
        assert event_id.startswith("wedding-")
        mirror = dynamodb_tables["events"].get_item(Key={"organization": "-", "id": "wedding"})["Item"]
        assert mirror["belongsTo"] == "org-2"

    def test_collection_suffix_becomes_event_id(
        self,
        dynamodb_tables: Dict[str, Any],
        sample_organization: Dict[str, Any],
        rekognition: MagicMock,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test the event takes the id of the collection actually created."""
        rekognition.create_collection.side_effect = [
            client_error("ResourceAlreadyExistsException", "CreateCollection"),
            {},
        ]

        response = create_resources(_create_event(api_event), lambda_context)

        assert json.loads(response["body"])["eventId"] == "wedding0"
        assert "Item" in dynamodb_tables["events"].get_item(Key={"organization": "-", "id": "wedding0"})

    def test_collection_failure_compensates(
        self,
        dynamodb_tables: Dict[str, Any],
        sample_organization: Dict[str, Any],
        rekognition: MagicMock,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test tokens and quota are restored when the collection cannot be created."""
        rekognition.create_collection.side_effect = client_error("AccessDeniedException", "CreateCollection")

        response = create_resources(_create_event(api_event, {"creditsToUse": 100}), lambda_context)

        assert response["statusCode"] == 502
        assert _balance(dynamodb_tables) == 1000
        assert _events_created(dynamodb_tables) == []
        assert "Item" not in dynamodb_tables["events"].get_item(Key={"organization": "-", "id": "wedding"})

    def test_record_write_failure_deletes_collection(
        self,
        dynamodb_tables: Dict[str, Any],
        sample_organization: Dict[str, Any],
        rekognition: MagicMock,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test a failed record write removes the collection and refunds."""
        with patch(
            "src.handlers.create_event.write_event_records",
            side_effect=client_error("InternalServerError", "BatchWriteItem"),
        ):
            response = create_resources(_create_event(api_event, {"creditsToUse": 10}), lambda_context)

        assert response["statusCode"] == 502
        rekognition.delete_collection.assert_called_once_with(CollectionId="wedding")
        assert _balance(dynamodb_tables) == 1000

    def test_insufficient_tokens(
        self,
        dynamodb_tables: Dict[str, Any],
        sample_organization: Dict[str, Any],
        rekognition: MagicMock,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test a debit beyond the balance fails and releases the quota."""
        response = create_resources(_create_event(api_event, {"creditsToUse": 5000}), lambda_context)

        assert response["statusCode"] == 403
        assert json.loads(response["body"])["reason"] == "tokens"
        assert _events_created(dynamodb_tables) == []
        rekognition.create_collection.assert_not_called()

    def test_event_limit_reached(
        self,
        dynamodb_tables: Dict[str, Any],
        sample_organization: Dict[str, Any],
        rekognition: MagicMock,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test users at their limit cannot create events."""
        dynamodb_tables["users"].update_item(
            Key={"organization": TEST_ORGANIZATION, "id": TEST_USERNAME},
            UpdateExpression="SET eventsCreated = :created, eventsLimit = :limit",
            ExpressionAttributeValues={":created": ["party"], ":limit": 1},
        )

        response = create_resources(
            _create_event(api_event, {"creditsToUse": 10}, eventsLimitType="number"), lambda_context
        )

        assert response["statusCode"] == 403
        assert json.loads(response["body"])["reason"] == "limit"
        assert _balance(dynamodb_tables) == 1000

    def test_gift_redemption(
        self,
        dynamodb_tables: Dict[str, Any],
        sample_organization: Dict[str, Any],
        rekognition: MagicMock,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test gift credits add photos and copy the donor's branding fields."""
        dynamodb_tables["organizations"].put_item(
            Item={"id": "donor-org", "name": "Donor", "location": "Lisbon", "mainImage": True}
        )
        dynamodb_tables["gift_events"].put_item(Item=make_gift_item(tokens=50))

        response = create_resources(
            _create_event(
                api_event,
                {
                    "creditsToUse": 10,
                    "giftCreditsToUse": 50,
                    "selectedGiftEventId": 1,
                    "selectedGiftEventOrgId": "donor-org",
                    "location": "Porto",
                },
            ),
            lambda_context,
        )

        assert response["statusCode"] == 200
        event = dynamodb_tables["events"].get_item(Key={"organization": TEST_ORGANIZATION, "id": "wedding"})["Item"]
        assert event["number_of_photos"] == 60
        assert event["location"] == "Lisbon"
        assert event["giftFields"] == ["location"]
        assert event["giftId"] == "1"
        assert event["mainImage"] is True
        gift = dynamodb_tables["gift_events"].get_item(Key={"organization": TEST_ORGANIZATION, "id": 1})["Item"]
        assert gift["status"] == "USED"

    def test_inactive_gift_rejected_before_writes(
        self,
        dynamodb_tables: Dict[str, Any],
        sample_organization: Dict[str, Any],
        rekognition: MagicMock,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test a used gift fails without touching quota or tokens."""
        dynamodb_tables["organizations"].put_item(Item={"id": "donor-org", "name": "Donor"})
        dynamodb_tables["gift_events"].put_item(Item=make_gift_item(status="USED"))

        response = create_resources(
            _create_event(
                api_event,
                {
                    "creditsToUse": 10,
                    "giftCreditsToUse": 5,
                    "selectedGiftEventId": 1,
                    "selectedGiftEventOrgId": "donor-org",
                },
            ),
            lambda_context,
        )

        assert response["statusCode"] == 400
        assert json.loads(response["body"])["message"] == "gift event not active"
        assert _balance(dynamodb_tables) == 1000
        assert _events_created(dynamodb_tables) == []

    def test_handshake_tokens(
        self,
        dynamodb_tables: Dict[str, Any],
        sample_organization: Dict[str, Any],
        rekognition: MagicMock,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test a READY handshake pays for photos and is consumed."""
        dynamodb_tables["handshakes"].put_item(
            Item={"thtk": "hs-1", "tokens": 200, "status": "ready", "organization": TEST_ORGANIZATION}
        )

        create_resources(_create_event(api_event, {"thtk": "hs-1"}), lambda_context)

        event = dynamodb_tables["events"].get_item(Key={"organization": TEST_ORGANIZATION, "id": "wedding"})["Item"]
        assert event["number_of_photos"] == 200
        handshake = dynamodb_tables["handshakes"].get_item(Key={"thtk": "hs-1"})["Item"]
        assert handshake["status"] == "used"
        assert _balance(dynamodb_tables) == 1000

    def test_foreign_handshake_is_left_ready(
        self,
        dynamodb_tables: Dict[str, Any],
        sample_organization: Dict[str, Any],
        rekognition: MagicMock,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test another organization's handshake neither pays nor gets consumed."""
        dynamodb_tables["handshakes"].put_item(
            Item={"thtk": "hs-2", "tokens": 200, "status": "ready", "organization": "org-2"}
        )

        response = create_resources(_create_event(api_event, {"thtk": "hs-2", "creditsToUse": 5}), lambda_context)

        assert response["statusCode"] == 200
        event = dynamodb_tables["events"].get_item(Key={"organization": TEST_ORGANIZATION, "id": "wedding"})["Item"]
        assert event["number_of_photos"] == 5
        handshake = dynamodb_tables["handshakes"].get_item(Key={"thtk": "hs-2"})["Item"]
        assert handshake["status"] == "ready"

    def test_validation_error(
        self,
        dynamodb_tables: Dict[str, Any],
        sample_organization: Dict[str, Any],
        rekognition: MagicMock,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test invalid payloads are rejected before any write."""
        response = create_resources(_create_event(api_event, {"creditsToUse": -1}), lambda_context)

        assert response["statusCode"] == 400
        assert json.loads(response["body"])["message"] == "creditsToUse is negative: -1"
        assert _events_created(dynamodb_tables) == []

    def test_missing_event_payload(
        self, dynamodb_tables: Dict[str, Any], api_event: Callable[..., Dict[str, Any]], lambda_context: Any
    ) -> None:
        """Test the body must carry an event object."""
        response = create_resources(api_event(body={}), lambda_context)

        assert response["statusCode"] == 400

    def test_requires_create_permission(
        self, dynamodb_tables: Dict[str, Any], api_event: Callable[..., Dict[str, Any]], lambda_context: Any
    ) -> None:
        """Test non-root users need create-events."""
        response = create_resources(
            _create_event(api_event, **{"custom:root": "false", "custom:permissions": "[]"}), lambda_context
        )

        assert response["statusCode"] == 400
        assert json.loads(response["body"])["action"] == "create-events"


class TestProvisionEvent:
    """Tests for provision_event called directly."""

    def test_errors_propagate_after_compensation(
        self, dynamodb_tables: Dict[str, Any], sample_organization: Dict[str, Any], rekognition: MagicMock
    ) -> None:
        """Test the original error is re-raised."""
        caller = {
            "organization": TEST_ORGANIZATION,
            "username": TEST_USERNAME,
            "email": "jane@example.com",
            "root": True,
            "permissions": [],
            "events_limit_type": "",
        }
        with patch(
            "src.handlers.create_event.create_collection_with_fallback",
            side_effect=AppError("UPSTREAM_ERROR", "boom"),
        ):
            with pytest.raises(AppError, match="boom"):
                provision_event(caller, {"eventName": "W", "eventDate": "2025-06-01", "creditsToUse": 5})

        assert _balance(dynamodb_tables) == 1000


class TestVerifyNameUrl:
    """Tests for verify_name_url handler."""

    def test_reports_existence(
        self, dynamodb_tables: Dict[str, Any], api_event: Callable[..., Dict[str, Any]], lambda_context: Any
    ) -> None:
        """Test existing and free names."""
        dynamodb_tables["events"].put_item(Item=make_mirror_item("wedding"))

        taken = verify_name_url(api_event(query={"nameUrl": "wedding"}, token=None), lambda_context)
        free = verify_name_url(api_event(query={"nameUrl": "party"}, token=None), lambda_context)

        assert json.loads(taken["body"]) == {"exist": True}
        assert json.loads(free["body"]) == {"exist": False}

    def test_missing_name(
        self, dynamodb_tables: Dict[str, Any], api_event: Callable[..., Dict[str, Any]], lambda_context: Any
    ) -> None:
        """Test the parameter is required."""
        response = verify_name_url(api_event(token=None), lambda_context)

        assert response["statusCode"] == 400
        assert json.loads(response["body"])["message"] == "Missing name parameter"


class TestFinishUpload:
    """Tests for finish_upload handler."""

    def test_marks_done(
        self,
        dynamodb_tables: Dict[str, Any],
        sample_event: Dict[str, Any],
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test the event moves to DONE."""
        response = finish_upload(api_event(body={"eventId": "wedding"}), lambda_context)

        assert json.loads(response["body"]) == {"success": True, "err": False}
        item = dynamodb_tables["events"].get_item(Key={"organization": TEST_ORGANIZATION, "id": "wedding"})["Item"]
        assert item["imagesStatus"] == "DONE"
        assert item["missingPhotos"] == 0

    def test_unknown_event(
        self, dynamodb_tables: Dict[str, Any], api_event: Callable[..., Dict[str, Any]], lambda_context: Any
    ) -> None:
        """Test unknown events are not created."""
        response = finish_upload(api_event(body={"eventId": "ghost"}), lambda_context)

        assert response["statusCode"] == 404
        assert "Item" not in dynamodb_tables["events"].get_item(Key={"organization": TEST_ORGANIZATION, "id": "ghost"})

    def test_missing_event_id(
        self, dynamodb_tables: Dict[str, Any], api_event: Callable[..., Dict[str, Any]], lambda_context: Any
    ) -> None:
        """Test eventId is required."""
        response = finish_upload(api_event(body={}), lambda_context)

        assert response["statusCode"] == 400
