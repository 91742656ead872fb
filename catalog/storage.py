"""
Attachment storage backends.

Both backends implement the same AttachmentStore interface so the
reconciliation logic never branches on where blobs live:

- LocalAttachmentStore keeps blobs in one flat directory, named
  ``{field}-{timestamp}{ext}``; keys are the file names.
- S3AttachmentStore keeps blobs under a managed key prefix
  (``book-covers/`` by default) and only deletes keys carrying it.
"""

import asyncio
import mimetypes
import os
import re
import time
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional, Union

import aiofiles
import aiofiles.os
import boto3
import structlog
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from catalog.errors import StorageFailure

logger = structlog.get_logger(__name__)

_EXTENSION_RE = re.compile(r"^\.[A-Za-z0-9]{1,10}$")


def safe_extension(original_name: Optional[str]) -> str:
    """Lower-cased extension of an uploaded file name, or "" if unusable."""
    suffix = Path(original_name or "").suffix.lower()
    return suffix if _EXTENSION_RE.match(suffix) else ""


def _now_millis() -> int:
    return int(time.time() * 1000)


class AttachmentStore(ABC):
    """Capability interface for storing, deleting and locating attachment blobs."""

    backend: str = "abstract"

    @abstractmethod
    async def store(
        self,
        content: bytes,
        original_name: str,
        content_type: Optional[str] = None
    ) -> str:
        """
        Persist a blob under a newly generated key.

        Returns:
            str: the generated key

        Raises:
            StorageFailure: if the blob could not be persisted
        """

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """
        Delete a blob. Best-effort: failures are logged, never raised.

        Returns:
            bool: True if the blob was removed
        """

    @abstractmethod
    async def exists(self, key: str) -> bool:
        """Check whether a managed blob exists under key."""

    @abstractmethod
    def owns(self, key: Optional[str]) -> bool:
        """Check whether key has the shape of a key this store generates."""

    @abstractmethod
    def locator_for(self, key: Optional[str]) -> Optional[str]:
        """Display path or URL for key, or None if it cannot be resolved."""


class LocalAttachmentStore(AttachmentStore):
    """Attachment store backed by a flat local directory."""

    backend = "local"

    def __init__(
        self,
        base_path: Union[str, Path],
        url_prefix: str = "/uploads",
        field_name: str = "cover_image"
    ):
        """
        Args:
            base_path: Directory holding the blobs
            url_prefix: URL path the directory is served under
            field_name: Prefix of generated file names
        """
        self.base_path = Path(base_path)
        self.url_prefix = url_prefix.rstrip("/")
        self.field_name = field_name

        os.makedirs(self.base_path, exist_ok=True)

    async def store(
        self,
        content: bytes,
        original_name: str,
        content_type: Optional[str] = None
    ) -> str:
        extension = safe_extension(original_name)
        timestamp = _now_millis()

        while True:
            key = f"{self.field_name}-{timestamp}{extension}"
            path = self.base_path / key
            try:
                # Exclusive create: two uploads in the same millisecond get distinct names
                async with aiofiles.open(path, "xb") as f:
                    await f.write(content)
                break
            except FileExistsError:
                timestamp += 1
            except OSError as e:
                logger.error("Failed to store attachment", key=key, error=str(e))
                if path.exists():
                    path.unlink()
                raise StorageFailure("Failed to store attachment") from e

        logger.debug("Stored attachment", key=key, size_bytes=len(content))
        return key

    async def delete(self, key: str) -> bool:
        if not self.owns(key):
            logger.warning("Refusing to delete unmanaged attachment key", key=key)
            return False

        try:
            await aiofiles.os.remove(self.base_path / key)
            logger.info("Deleted attachment", key=key)
            return True
        except FileNotFoundError:
            logger.warning("Attachment already absent", key=key)
            return False
        except OSError as e:
            logger.error("Failed to delete attachment", key=key, error=str(e))
            return False

    async def exists(self, key: str) -> bool:
        if not self.owns(key):
            return False
        return await aiofiles.os.path.exists(self.base_path / key)

    def owns(self, key: Optional[str]) -> bool:
        if not key or not isinstance(key, str):
            return False
        if "/" in key or "\\" in key or key.startswith("."):
            return False
        return key.startswith(f"{self.field_name}-")

    def locator_for(self, key: Optional[str]) -> Optional[str]:
        if not self.owns(key):
            return None
        return f"{self.url_prefix}/{key}"


class S3AttachmentStore(AttachmentStore):
    """Attachment store backed by an S3 bucket."""

    backend = "s3"

    def __init__(
        self,
        bucket_name: Optional[str],
        region_name: Optional[str],
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        key_prefix: str = "book-covers/",
        field_name: str = "cover_image",
        presigned_expiration: int = 3600,
        client=None
    ):
        self.bucket_name = bucket_name
        self.region_name = region_name
        self.key_prefix = key_prefix
        self.field_name = field_name
        self.presigned_expiration = presigned_expiration

        self.s3_client = client or boto3.client(
            "s3",
            region_name=region_name,
            aws_access_key_id=access_key_id,
            aws_secret_access_key=secret_access_key,
            config=Config(signature_version="s3v4")
        )

        self.base_url = f"https://{bucket_name}.s3.{region_name}.amazonaws.com"

    def _is_configured(self) -> bool:
        return bool(self.bucket_name and self.region_name)

    async def store(
        self,
        content: bytes,
        original_name: str,
        content_type: Optional[str] = None
    ) -> str:
        if not self._is_configured():
            raise StorageFailure("S3 bucket name or region not configured.")

        extension = safe_extension(original_name)
        key = f"{self.key_prefix}{self.field_name}-{_now_millis()}-{uuid.uuid4().hex[:8]}{extension}"

        if not content_type:
            content_type, _ = mimetypes.guess_type(original_name or "")
            content_type = content_type or "application/octet-stream"

        try:
            await asyncio.to_thread(
                self.s3_client.put_object,
                Bucket=self.bucket_name,
                Key=key,
                Body=content,
                ContentType=content_type
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("S3 upload failed", key=key, error=str(e))
            raise StorageFailure("Failed to upload attachment to S3") from e

        logger.debug("Uploaded attachment to S3", key=key, size_bytes=len(content))
        return key

    async def delete(self, key: str) -> bool:
        if not self._is_configured() or not self.owns(key):
            logger.warning("Invalid S3 key or bucket not configured for deletion", key=key)
            return False

        try:
            await asyncio.to_thread(
                self.s3_client.delete_object,
                Bucket=self.bucket_name,
                Key=key
            )
            logger.info("Deleted attachment from S3", key=key)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.error("S3 delete failed", key=key, error=str(e))
            return False

    async def exists(self, key: str) -> bool:
        if not self._is_configured() or not self.owns(key):
            return False
        try:
            await asyncio.to_thread(
                self.s3_client.head_object,
                Bucket=self.bucket_name,
                Key=key
            )
            return True
        except ClientError:
            return False

    def owns(self, key: Optional[str]) -> bool:
        return bool(key) and isinstance(key, str) and key.startswith(self.key_prefix)

    def locator_for(self, key: Optional[str]) -> Optional[str]:
        """Pre-signed GET URL for key, falling back to the public object URL."""
        if not self._is_configured() or not self.owns(key):
            return None
        try:
            return self.s3_client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket_name, "Key": key},
                ExpiresIn=self.presigned_expiration
            )
        except (BotoCoreError, ClientError) as e:
            logger.error("Failed to generate pre-signed URL", key=key, error=str(e))
            return f"{self.base_url}/{key}"


def create_attachment_store(settings) -> AttachmentStore:
    """Build the attachment store selected by configuration."""
    if settings.storage_backend == "s3":
        return S3AttachmentStore(
            bucket_name=settings.s3_bucket_name,
            region_name=settings.s3_region,
            access_key_id=settings.aws_access_key_id,
            secret_access_key=settings.aws_secret_access_key,
            key_prefix=settings.s3_key_prefix,
            field_name=settings.upload_field_name,
            presigned_expiration=settings.s3_presigned_url_expiration
        )
    return LocalAttachmentStore(
        base_path=settings.get_upload_dir_path(),
        url_prefix=settings.upload_url_prefix,
        field_name=settings.upload_field_name
    )
