"""Unit tests for photo listing and deletion handlers."""

import json
from typing import Any, Callable, Dict

from src.handlers.event_photos import (
    delete_photo_faces,
    delete_photos,
    get_event_photos,
    get_event_random_photos,
    get_photos_public,
)
from tests.unit.fixtures import PHOTO_BUCKET, TEST_ORGANIZATION, make_event_item, make_mirror_item


def _put_photos(s3: Any, prefix: str, *names: str, organization: str = TEST_ORGANIZATION) -> None:
    for name in names:
        s3.put_object(Bucket=PHOTO_BUCKET, Key=f"{prefix}/{organization}/wedding/{name}", Body=b"jpeg")


def _keys(s3: Any) -> list:
    return sorted(obj["Key"] for obj in s3.list_objects_v2(Bucket=PHOTO_BUCKET).get("Contents", []))


class TestGetEventPhotos:
    """Tests for get_event_photos handler."""

    def test_lists_small_renditions(
        self,
        photo_bucket: Any,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test only file names of the small renditions are returned."""
        _put_photos(photo_bucket, "small", "a.jpg", "b.jpg")
        _put_photos(photo_bucket, "original", "a.jpg", "b.jpg", "c.jpg")

        response = get_event_photos(api_event(method="GET", query={"eventId": "wedding"}), lambda_context)

        body = json.loads(response["body"])
        assert body == {"success": True, "error": False, "photos": ["a.jpg", "b.jpg"], "lastKey": None}

    def test_other_organizations_hidden(
        self,
        photo_bucket: Any,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test listings are scoped to the caller's organization."""
        _put_photos(photo_bucket, "small", "a.jpg", organization="org-2")

        response = get_event_photos(api_event(method="GET", query={"eventId": "wedding"}), lambda_context)

        assert json.loads(response["body"])["photos"] == []

    def test_missing_event_id(
        self, dynamodb_tables: Dict[str, Any], api_event: Callable[..., Dict[str, Any]], lambda_context: Any
    ) -> None:
        """Test eventId is required."""
        response = get_event_photos(api_event(method="GET"), lambda_context)

        assert response["statusCode"] == 400
        assert json.loads(response["body"])["message"] == "missing required fields"


class TestGetEventRandomPhotos:
    """Tests for get_event_random_photos handler."""

    def test_caches_full_previews(
        self,
        photo_bucket: Any,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test three distinct photos are picked and cached."""
        _put_photos(photo_bucket, "small", *[f"{i}.jpg" for i in range(6)])

        response = get_event_random_photos(api_event(method="GET", query={"eventId": "wedding"}), lambda_context)

        photos = json.loads(response["body"])["photos"]
        assert len(set(photos)) == 3
        assert response["headers"]["Cache-Control"] == "max-age=600"

    def test_few_photos_not_cached(
        self,
        photo_bucket: Any,
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test previews of small events are not cached."""
        _put_photos(photo_bucket, "small", "a.jpg", "b.jpg")

        response = get_event_random_photos(api_event(method="GET", query={"eventId": "wedding"}), lambda_context)

        assert sorted(json.loads(response["body"])["photos"]) == ["a.jpg", "b.jpg"]
        assert "Cache-Control" not in response["headers"]


class TestGetPhotosPublic:
    """Tests for get_photos_public handler."""

    def test_public_event(
        self,
        photo_bucket: Any,
        dynamodb_tables: Dict[str, Any],
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test anyone can list a public event's photos."""
        dynamodb_tables["events"].put_item(Item=make_event_item(isPublicEvent=True, total_photos=2))
        dynamodb_tables["events"].put_item(Item=make_mirror_item())
        _put_photos(photo_bucket, "small", "a.jpg", "b.jpg")

        response = get_photos_public(
            api_event(method="GET", query={"eventId": "wedding"}, token=None), lambda_context
        )

        body = json.loads(response["body"])
        assert body == {"success": True, "photos": ["a.jpg", "b.jpg"], "lastKey": None, "total": 2}

    def test_unknown_event(
        self, dynamodb_tables: Dict[str, Any], api_event: Callable[..., Dict[str, Any]], lambda_context: Any
    ) -> None:
        """Test names without a mirror are rejected."""
        response = get_photos_public(api_event(query={"eventId": "ghost"}, token=None), lambda_context)

        assert response["statusCode"] == 400
        assert json.loads(response["body"])["message"] == "event not found"

    def test_mirror_without_record(
        self, dynamodb_tables: Dict[str, Any], api_event: Callable[..., Dict[str, Any]], lambda_context: Any
    ) -> None:
        """Test a dangling mirror is reported."""
        dynamodb_tables["events"].put_item(Item=make_mirror_item())

        response = get_photos_public(api_event(query={"eventId": "wedding"}, token=None), lambda_context)

        assert json.loads(response["body"])["message"] == "event record not found"

    def test_private_event(
        self,
        sample_event: Dict[str, Any],
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test private events are not listed."""
        response = get_photos_public(api_event(query={"eventId": "wedding"}, token=None), lambda_context)

        assert response["statusCode"] == 400
        assert json.loads(response["body"])["message"] == "event is not public"


class TestDeletePhotos:
    """Tests for delete_photos handler."""

    def test_deletes_renditions_faces_and_count(
        self,
        photo_bucket: Any,
        dynamodb_tables: Dict[str, Any],
        sample_event: Dict[str, Any],
        api_event: Callable[..., Dict[str, Any]],
        lambda_context: Any,
    ) -> None:
        """Test every rendition, matching faces and the counter are updated."""
        dynamodb_tables["events"].update_item(
            Key={"organization": TEST_ORGANIZATION, "id": "wedding"},
            UpdateExpression="SET total_photos = :n",
            ExpressionAttributeValues={":n": 3},
        )
        for prefix in ("original", "medium", "small"):
            _put_photos(photo_bucket, prefix, "a.jpg", "b.jpg", "c.jpg")
        faces = dynamodb_tables["faces"]
        faces.put_item(Item={"eventId": "wedding", "id": "face-a", "image": "a.jpg"})
        faces.put_item(Item={"eventId": "wedding", "id": "face-c", "image": "c.jpg"})

        response = delete_photos(api_event(body={"eventId": "wedding", "photos": ["a.jpg", "b.jpg"]}), lambda_context)

        assert json.loads(response["body"]) == {"success": True, "message": "Photos deleted successfully"}
        assert _keys(photo_bucket) == [
            "medium/org-1/wedding/c.jpg",
            "original/org-1/wedding/c.jpg",
            "small/org-1/wedding/c.jpg",
        ]
        assert [item["id"] for item in faces.scan()["Items"]] == ["face-c"]
        event = dynamodb_tables["events"].get_item(Key={"organization": TEST_ORGANIZATION, "id": "wedding"})["Item"]
        assert event["total_photos"] == 1

    def test_missing_event_id(
        self, dynamodb_tables: Dict[str, Any], api_event: Callable[..., Dict[str, Any]], lambda_context: Any
    ) -> None:
        """Test eventId is required."""
        response = delete_photos(api_event(body={"photos": ["a.jpg"]}), lambda_context)

        assert json.loads(response["body"])["message"] == "Event ID not provided"

    def test_invalid_photo_list(
        self, dynamodb_tables: Dict[str, Any], api_event: Callable[..., Dict[str, Any]], lambda_context: Any
    ) -> None:
        """Test the photo list is validated."""
        response = delete_photos(api_event(body={"eventId": "wedding", "photos": "a.jpg"}), lambda_context)

        assert response["statusCode"] == 400


class TestDeletePhotoFaces:
    """Tests for delete_photo_faces function."""

    def test_only_matching_faces(self, dynamodb_tables: Dict[str, Any]) -> None:
        """Test faces of other photos and events survive."""
        faces = dynamodb_tables["faces"]
        faces.put_item(Item={"eventId": "wedding", "id": "f1", "image": "a.jpg"})
        faces.put_item(Item={"eventId": "wedding", "id": "f2", "image": "b.jpg"})
        faces.put_item(Item={"eventId": "party", "id": "f3", "image": "a.jpg"})

        assert delete_photo_faces("wedding", ["a.jpg"]) == 1
        assert sorted(item["id"] for item in faces.scan()["Items"]) == ["f2", "f3"]
