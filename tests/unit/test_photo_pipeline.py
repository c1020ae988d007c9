"""Unit tests for the resize and face indexing consumers."""

import io
from typing import Any, Dict
from unittest.mock import MagicMock

import pytest
from botocore.exceptions import ClientError
from PIL import Image

from src.handlers.photo_pipeline import (
    index_photo_faces,
    process_photo,
    record_processed_photo,
    resize_branding_asset,
    resize_photo,
)
from tests.unit.fixtures import (
    PHOTO_BUCKET,
    TEST_ORGANIZATION,
    client_error,
    jpeg_bytes,
    make_event_item,
    s3_notification,
    sqs_event,
)


def _width(s3: Any, key: str) -> int:
    body = s3.get_object(Bucket=PHOTO_BUCKET, Key=key)["Body"].read()
    return Image.open(io.BytesIO(body)).width


def _event(tables: Dict[str, Any]) -> Dict[str, Any]:
    return tables["events"].get_item(Key={"organization": TEST_ORGANIZATION, "id": "wedding"})["Item"]


class TestResizePhoto:
    """Tests for resize_photo consumer."""

    def test_writes_renditions_and_counts(
        self, photo_bucket: Any, dynamodb_tables: Dict[str, Any], sample_event: Dict[str, Any]
    ) -> None:
        """Test medium and small renditions are written and the photo counted."""
        key = "original/org-1/wedding/first dance.jpg"
        photo_bucket.put_object(Bucket=PHOTO_BUCKET, Key=key, Body=jpeg_bytes(2400, 1600))

        result = resize_photo(
            sqs_event(s3_notification(PHOTO_BUCKET, "original/org-1/wedding/first+dance.jpg")), None
        )

        assert result == {"resized": 1}
        assert _width(photo_bucket, "medium/org-1/wedding/first dance.jpg") == 1200
        assert _width(photo_bucket, "small/org-1/wedding/first dance.jpg") == 450
        assert _event(dynamodb_tables)["photos_process"] == ["first dance.jpg"]

    def test_small_photos_not_upscaled(
        self, photo_bucket: Any, dynamodb_tables: Dict[str, Any], sample_event: Dict[str, Any]
    ) -> None:
        """Test photos narrower than a rendition keep their width."""
        photo_bucket.put_object(Bucket=PHOTO_BUCKET, Key="original/org-1/wedding/a.jpg", Body=jpeg_bytes(300, 200))

        resize_photo(sqs_event(s3_notification(PHOTO_BUCKET, "original/org-1/wedding/a.jpg")), None)

        assert _width(photo_bucket, "medium/org-1/wedding/a.jpg") == 300
        assert _width(photo_bucket, "small/org-1/wedding/a.jpg") == 300

    def test_branding_asset(self, photo_bucket: Any, dynamodb_tables: Dict[str, Any]) -> None:
        """Test organization assets go to the resized prefix."""
        key = "organization-assets/original/org-1/logo-1"
        photo_bucket.put_object(Bucket=PHOTO_BUCKET, Key=key, Body=jpeg_bytes(1000, 500))

        resize_photo(sqs_event(s3_notification(PHOTO_BUCKET, key)), None)

        assert _width(photo_bucket, "organization-assets/resized/org-1/logo-1") == 200

    def test_event_main_image(self, photo_bucket: Any, dynamodb_tables: Dict[str, Any]) -> None:
        """Test main images use the wider rendition."""
        key = "organization-assets/original/org-1/wedding/mainImage-2"
        photo_bucket.put_object(Bucket=PHOTO_BUCKET, Key=key, Body=jpeg_bytes(2000, 1000))

        assert resize_branding_asset(PHOTO_BUCKET, key) == "organization-assets/resized/org-1/wedding/mainImage-2"
        assert _width(photo_bucket, "organization-assets/resized/org-1/wedding/mainImage-2") == 800

    def test_missing_object_fails_message(self, photo_bucket: Any, dynamodb_tables: Dict[str, Any]) -> None:
        """Test failures propagate so the message is retried."""
        with pytest.raises(ClientError):
            resize_photo(sqs_event(s3_notification(PHOTO_BUCKET, "original/org-1/wedding/none.jpg")), None)

    def test_unexpected_key(self, photo_bucket: Any, dynamodb_tables: Dict[str, Any]) -> None:
        """Test keys outside the photo layout are rejected."""
        with pytest.raises(ValueError):
            resize_photo(sqs_event(s3_notification(PHOTO_BUCKET, "original/org-1/a.jpg")), None)


class TestRecordProcessedPhoto:
    """Tests for record_processed_photo function."""

    def test_duplicates_and_quota(self, dynamodb_tables: Dict[str, Any], sample_organization: Dict[str, Any]) -> None:
        """Test a photo is counted once and never beyond the quota."""
        dynamodb_tables["events"].put_item(Item=make_event_item(number_of_photos=1))

        assert record_processed_photo(TEST_ORGANIZATION, "wedding", "a.jpg") is True
        assert record_processed_photo(TEST_ORGANIZATION, "wedding", "a.jpg") is False
        assert record_processed_photo(TEST_ORGANIZATION, "wedding", "b.jpg") is False
        assert _event(dynamodb_tables)["photos_process"] == ["a.jpg"]


class TestProcessPhoto:
    """Tests for process_photo consumer."""

    def test_indexes_faces(self, dynamodb_tables: Dict[str, Any], rekognition: MagicMock) -> None:
        """Test each detected face is stored with its photo."""
        rekognition.index_faces.return_value = {
            "FaceRecords": [{"Face": {"FaceId": "face-1"}}, {"Face": {"FaceId": "face-2"}}]
        }

        result = process_photo(sqs_event(s3_notification(PHOTO_BUCKET, "original/org-1/wedding/a.jpg")), None)

        assert result == {"facesIndexed": 2}
        rekognition.index_faces.assert_called_once_with(
            CollectionId="wedding",
            Image={"S3Object": {"Bucket": PHOTO_BUCKET, "Name": "original/org-1/wedding/a.jpg"}},
            MaxFaces=25,
        )
        items = sorted(dynamodb_tables["faces"].scan()["Items"], key=lambda item: item["id"])
        assert [(item["id"], item["image"]) for item in items] == [("face-1", "a.jpg"), ("face-2", "a.jpg")]
        assert all(item["ttl"] > 0 for item in items)

    def test_invalid_image_is_deleted(
        self, photo_bucket: Any, dynamodb_tables: Dict[str, Any], rekognition: MagicMock
    ) -> None:
        """Test unreadable uploads are removed and skipped."""
        key = "original/org-1/wedding/broken.jpg"
        photo_bucket.put_object(Bucket=PHOTO_BUCKET, Key=key, Body=b"not an image")
        rekognition.index_faces.side_effect = client_error("InvalidImageFormatException", "IndexFaces")

        assert index_photo_faces(PHOTO_BUCKET, key) == 0
        assert photo_bucket.list_objects_v2(Bucket=PHOTO_BUCKET)["KeyCount"] == 0

    def test_other_errors_propagate(self, dynamodb_tables: Dict[str, Any], rekognition: MagicMock) -> None:
        """Test service errors fail the message."""
        rekognition.index_faces.side_effect = client_error("ThrottlingException", "IndexFaces")

        with pytest.raises(ClientError):
            process_photo(sqs_event(s3_notification(PHOTO_BUCKET, "original/org-1/wedding/a.jpg")), None)
