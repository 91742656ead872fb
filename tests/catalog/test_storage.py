"""
Tests for the local and S3 attachment stores.
"""

from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError

from catalog.errors import StorageFailure
from catalog.storage import (
    LocalAttachmentStore, S3AttachmentStore, create_attachment_store, safe_extension
)
from utilities.config import CatalogConfig


def _client_error(operation: str) -> ClientError:
    return ClientError({"Error": {"Code": "500", "Message": "boom"}}, operation)


class TestSafeExtension:

    @pytest.mark.parametrize("name, expected", [
        ("cover.PNG", ".png"),
        ("archive.tar.gz", ".gz"),
        ("no_extension", ""),
        ("", ""),
        (None, ""),
        ("weird.p/ng", ""),
    ])
    def test_extensions(self, name, expected):
        assert safe_extension(name) == expected


class TestLocalAttachmentStore:
    """Test cases for the local directory store."""

    @pytest.fixture
    def store(self, tmp_path):
        return LocalAttachmentStore(tmp_path / "uploads")

    def test_creates_directory(self, tmp_path):
        LocalAttachmentStore(tmp_path / "nested" / "uploads")
        assert (tmp_path / "nested" / "uploads").is_dir()

    @pytest.mark.asyncio
    async def test_store_writes_file(self, store):
        key = await store.store(b"image-bytes", "cover.png", "image/png")

        assert key.startswith("cover_image-")
        assert key.endswith(".png")
        assert (store.base_path / key).read_bytes() == b"image-bytes"
        assert await store.exists(key)

    @pytest.mark.asyncio
    async def test_same_millisecond_uploads_get_distinct_keys(self, store):
        with patch("catalog.storage._now_millis", return_value=1718000000000):
            first = await store.store(b"one", "a.png")
            second = await store.store(b"two", "b.png")

        assert first == "cover_image-1718000000000.png"
        assert second == "cover_image-1718000000001.png"
        assert (store.base_path / first).read_bytes() == b"one"
        assert (store.base_path / second).read_bytes() == b"two"

    @pytest.mark.asyncio
    async def test_delete(self, store):
        key = await store.store(b"image-bytes", "cover.jpg")

        assert await store.delete(key) is True
        assert not await store.exists(key)
        assert await store.delete(key) is False

    @pytest.mark.asyncio
    async def test_delete_refuses_unmanaged_keys(self, store, tmp_path):
        outside = tmp_path / "secret.txt"
        outside.write_text("keep me")

        assert await store.delete("../secret.txt") is False
        assert await store.delete("other-file.png") is False
        assert outside.exists()

    def test_owns(self, store):
        assert store.owns("cover_image-1718000000000.png")
        assert not store.owns("../cover_image-1.png")
        assert not store.owns("avatar-1.png")
        assert not store.owns(None)

    def test_locator(self, tmp_path):
        store = LocalAttachmentStore(tmp_path, url_prefix="/uploads/")
        assert store.locator_for("cover_image-1.png") == "/uploads/cover_image-1.png"
        assert store.locator_for("elsewhere.png") is None


class TestS3AttachmentStore:
    """Test cases for the S3 store with a mocked client."""

    @pytest.fixture
    def client(self):
        client = MagicMock()
        client.generate_presigned_url.return_value = "https://signed.example/cover"
        return client

    @pytest.fixture
    def store(self, client):
        return S3AttachmentStore("covers-bucket", "eu-west-1", client=client)

    @pytest.mark.asyncio
    async def test_store_puts_object_under_prefix(self, store, client):
        key = await store.store(b"image-bytes", "cover.png")

        assert key.startswith("book-covers/cover_image-")
        assert key.endswith(".png")
        client.put_object.assert_called_once()
        kwargs = client.put_object.call_args.kwargs
        assert kwargs["Bucket"] == "covers-bucket"
        assert kwargs["Key"] == key
        assert kwargs["ContentType"] == "image/png"

    @pytest.mark.asyncio
    async def test_store_failure_raises(self, store, client):
        client.put_object.side_effect = _client_error("PutObject")

        with pytest.raises(StorageFailure):
            await store.store(b"image-bytes", "cover.png", "image/png")

    @pytest.mark.asyncio
    async def test_unconfigured_store_raises(self, client):
        store = S3AttachmentStore(None, None, client=client)

        with pytest.raises(StorageFailure) as exc_info:
            await store.store(b"image-bytes", "cover.png")

        assert exc_info.value.message == "S3 bucket name or region not configured."
        client.put_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_managed_key(self, store, client):
        assert await store.delete("book-covers/cover_image-1.png") is True
        client.delete_object.assert_called_once_with(
            Bucket="covers-bucket", Key="book-covers/cover_image-1.png"
        )

    @pytest.mark.asyncio
    async def test_delete_refuses_foreign_key(self, store, client):
        assert await store.delete("private/report.pdf") is False
        client.delete_object.assert_not_called()

    @pytest.mark.asyncio
    async def test_delete_failure_returns_false(self, store, client):
        client.delete_object.side_effect = _client_error("DeleteObject")
        assert await store.delete("book-covers/cover_image-1.png") is False

    @pytest.mark.asyncio
    async def test_exists(self, store, client):
        assert await store.exists("book-covers/cover_image-1.png") is True

        client.head_object.side_effect = _client_error("HeadObject")
        assert await store.exists("book-covers/cover_image-1.png") is False

    def test_locator_presigned(self, store, client):
        assert store.locator_for("book-covers/cover_image-1.png") == "https://signed.example/cover"
        assert store.locator_for("private/report.pdf") is None

    def test_locator_falls_back_to_public_url(self, store, client):
        client.generate_presigned_url.side_effect = _client_error("GetObject")
        assert store.locator_for("book-covers/cover_image-1.png") == (
            "https://covers-bucket.s3.eu-west-1.amazonaws.com/book-covers/cover_image-1.png"
        )


class TestCreateAttachmentStore:

    def test_local_backend(self, tmp_path):
        settings = CatalogConfig(storage_backend="local", upload_dir=str(tmp_path / "up"))
        store = create_attachment_store(settings)
        assert isinstance(store, LocalAttachmentStore)
        assert store.backend == "local"

    def test_s3_backend(self):
        settings = CatalogConfig(storage_backend="s3", s3_bucket_name="b", s3_region="us-east-1")
        with patch("catalog.storage.boto3.client") as client_factory:
            store = create_attachment_store(settings)
        assert isinstance(store, S3AttachmentStore)
        client_factory.assert_called_once()
