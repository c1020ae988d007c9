"""Unit tests for S3 storage utilities."""

from typing import Any
from unittest.mock import MagicMock
from urllib.parse import parse_qs, urlparse

import pytest
from botocore.exceptions import ClientError

from src.utils import storage
from src.utils.storage import (
    asset_key,
    delete_event_photos,
    delete_keys,
    delete_object,
    event_prefix,
    file_name,
    list_all_keys,
    list_page,
    photo_key,
    presign_put,
    random_keys,
)
from tests.unit.fixtures import PHOTO_BUCKET, client_error


def _put(s3: Any, *keys: str) -> None:
    for key in keys:
        s3.put_object(Bucket=PHOTO_BUCKET, Key=key, Body=b"x")


class TestKeys:
    """Tests for key builders."""

    def test_photo_keys(self) -> None:
        """Test rendition keys and prefixes."""
        assert photo_key("small", "org-1", "wedding", "a.jpg") == "small/org-1/wedding/a.jpg"
        assert event_prefix("original", "org-1", "wedding") == "original/org-1/wedding/"

    def test_asset_keys(self) -> None:
        """Test organization and event scoped assets."""
        assert asset_key("original", "org-1", "logo-1") == "organization-assets/original/org-1/logo-1"
        assert (
            asset_key("resized", "org-1", "mainImage-2", event_id="wedding")
            == "organization-assets/resized/org-1/wedding/mainImage-2"
        )

    def test_file_name(self) -> None:
        """Test the last path segment is returned."""
        assert file_name("small/org-1/wedding/a.jpg") == "a.jpg"
        assert file_name("a.jpg") == "a.jpg"


class TestPresign:
    """Tests for presign_put function."""

    def test_url_targets_key(self, photo_bucket: Any) -> None:
        """Test the presigned URL points at the key and carries an expiry."""
        url = presign_put("original/org-1/wedding/a.jpg", 2048)

        parsed = urlparse(url)
        assert parsed.path.endswith("/original/org-1/wedding/a.jpg")
        assert any("Expires" in name for name in parse_qs(parsed.query))


class TestListing:
    """Tests for listing functions."""

    def test_pagination(self, photo_bucket: Any) -> None:
        """Test pages chain through continuation tokens."""
        _put(photo_bucket, *[f"small/org-1/wedding/{i:02d}.jpg" for i in range(5)])

        first = list_page("small/org-1/wedding/", 2)
        second = list_page("small/org-1/wedding/", 2, first["nextToken"])

        assert first["keys"] == ["small/org-1/wedding/00.jpg", "small/org-1/wedding/01.jpg"]
        assert second["keys"] == ["small/org-1/wedding/02.jpg", "small/org-1/wedding/03.jpg"]
        assert len(list_all_keys("small/org-1/wedding/")) == 5

    def test_last_page_has_no_token(self, photo_bucket: Any) -> None:
        """Test a complete listing carries no token."""
        _put(photo_bucket, "small/org-1/wedding/a.jpg")

        assert list_page("small/org-1/wedding/", 10)["nextToken"] is None

    def test_random_keys(self, photo_bucket: Any) -> None:
        """Test a random sample is drawn from the prefix."""
        keys = [f"small/org-1/wedding/{i}.jpg" for i in range(6)]
        _put(photo_bucket, *keys)

        sample = random_keys("small/org-1/wedding/", 3)

        assert len(sample) == 3
        assert len(set(sample)) == 3
        assert set(sample) <= set(keys)
        assert sorted(random_keys("small/org-1/wedding/", 10)) == keys


class TestDeletion:
    """Tests for deletion functions."""

    def test_delete_event_photos(self, photo_bucket: Any) -> None:
        """Test every rendition of the event is removed."""
        _put(
            photo_bucket,
            "original/org-1/wedding/a.jpg",
            "medium/org-1/wedding/a.jpg",
            "small/org-1/wedding/a.jpg",
            "small/org-1/wedding-2/a.jpg",
        )

        assert delete_event_photos("org-1", "wedding") == 3
        assert list_all_keys("") == ["small/org-1/wedding-2/a.jpg"]

    def test_delete_keys_batches(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test requests are split into batches of 1000 and errors logged."""
        client = MagicMock()
        client.delete_objects.side_effect = lambda Bucket, Delete: {
            "Deleted": Delete["Objects"][:-1],
            "Errors": [{"Key": Delete["Objects"][-1]["Key"], "Message": "denied"}],
        }
        monkeypatch.setattr(storage, "s3_client", client)

        deleted = delete_keys([f"k{i}" for i in range(1500)], bucket="bucket")

        assert client.delete_objects.call_count == 2
        assert len(deleted) == 1498

    def test_delete_missing_object(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test NoSuchKey is ignored and other errors raised."""
        client = MagicMock()
        monkeypatch.setattr(storage, "s3_client", client)

        client.delete_object.side_effect = client_error("NoSuchKey", "DeleteObject")
        delete_object("a", bucket="bucket")

        client.delete_object.side_effect = client_error("AccessDenied", "DeleteObject")
        with pytest.raises(ClientError):
            delete_object("a", bucket="bucket")
