"""
Reconciliation of book records with their cover-image attachments.

The record store and the attachment store are not transactional with each
other, so every operation follows one ordering rule: commit the record that
holds the authoritative attachment reference first, then bring storage in
line with it.

- An upload is staged (stored) before the record commit. If the request is
  rejected or the commit fails, the staged blob is deleted because nothing
  will ever reference it.
- A superseded or cleared blob is deleted only after the commit succeeds.
  That deletion is best-effort: a failure leaks storage, it never fails the
  operation.
"""

from typing import Any, Dict, List, Optional, Tuple, Union

import structlog

from catalog.errors import Forbidden, InvalidInput, NotFound
from catalog.models import (
    AttachmentDecision, BookChanges, BookRecord, Identity
)
from catalog.policy import Operation, OwnershipPolicy
from catalog.storage import AttachmentStore
from catalog.validation import validate_book_id, validate_changes, validate_new_book
from utilities.logger import AttachmentLogger

logger = structlog.get_logger(__name__)

IMAGE_EXTENSIONS = (".png", ".jpg", ".jpeg", ".gif")

ATTACHMENT_FIELD = "cover_image"


def decide_attachment(staged_key: Optional[str], clear_requested: bool) -> AttachmentDecision:
    """
    Resolve the attachment decision for an update.

    A staged upload wins over an explicit clear; with neither, the current
    attachment is kept.
    """
    if staged_key:
        return AttachmentDecision.replace(staged_key)
    if clear_requested:
        return AttachmentDecision.clear()
    return AttachmentDecision.keep()


class ReconciliationEngine:
    """Create, update and delete book records together with their attachments."""

    def __init__(
        self,
        records,
        attachments: AttachmentStore,
        policy: Optional[OwnershipPolicy] = None,
        max_upload_bytes: int = 5 * 1024 * 1024,
        accept_image_extensions: bool = False
    ):
        """
        Args:
            records: BookRecordStore holding the records
            attachments: AttachmentStore holding the blobs
            policy: Ownership policy (defaults to OwnershipPolicy)
            max_upload_bytes: Largest accepted upload
            accept_image_extensions: Also accept uploads by image file
                extension when the content type is not an image type
        """
        self.records = records
        self.attachments = attachments
        self.policy = policy or OwnershipPolicy()
        self.max_upload_bytes = max_upload_bytes
        self.accept_image_extensions = accept_image_extensions
        self.audit = AttachmentLogger("catalog.reconcile").bind_context(backend=attachments.backend)

    # ------------------------------------------------------------------
    # Attachment staging and cleanup

    def _is_image(self, filename: Optional[str], content_type: Optional[str]) -> bool:
        if content_type and content_type.startswith("image/"):
            return True
        if self.accept_image_extensions and filename:
            return filename.lower().endswith(IMAGE_EXTENSIONS)
        return False

    async def stage_upload(
        self,
        content: bytes,
        filename: Optional[str],
        content_type: Optional[str] = None
    ) -> str:
        """
        Store an uploaded cover image ahead of the record commit.

        Raises:
            InvalidInput: for empty, oversized or non-image uploads
            StorageFailure: if the attachment store cannot persist the blob
        """
        if not self._is_image(filename, content_type):
            raise InvalidInput("Invalid file type: only image uploads are allowed")
        if not content:
            raise InvalidInput("Uploaded file is empty")
        if len(content) > self.max_upload_bytes:
            raise InvalidInput(f"Uploaded file exceeds the {self.max_upload_bytes} byte limit")

        key = await self.attachments.store(content, filename or "", content_type)
        self.audit.log_staged(key, filename or "", len(content))
        return key

    async def discard(self, key: Optional[str], reason: str) -> None:
        """Delete a staged upload that no record will reference."""
        if not key:
            return
        self.audit.log_discarded(key, reason)
        await self._delete_quietly(key)

    async def _delete_quietly(self, key: str) -> bool:
        try:
            removed = await self.attachments.delete(key)
        except Exception as e:
            logger.error("Attachment deletion raised", key=key, error=str(e))
            removed = False
        self.audit.log_cleanup(key, removed)
        return removed

    # ------------------------------------------------------------------
    # Reads

    async def get_record(self, book_id: str, identity: Identity) -> BookRecord:
        """
        Fetch a record the identity may read.

        Records the identity may not read are reported as missing so their
        existence is not confirmed to non-owners.
        """
        validate_book_id(book_id)
        record = await self.records.find_by_id(book_id)
        if record is None or not self.policy.can_access(identity, record, Operation.READ):
            raise NotFound("Book not found")
        return record

    async def list_records(self, identity: Identity) -> List[BookRecord]:
        return await self.records.find_all_visible_to(identity)

    def locator_for(self, record: BookRecord) -> Optional[str]:
        """Display URL or path of a record's attachment."""
        if not record.attachment_key:
            return None
        return self.attachments.locator_for(record.attachment_key)

    # ------------------------------------------------------------------
    # Writes

    async def create_with_attachment(
        self,
        identity: Identity,
        title: Optional[str],
        author: Optional[str],
        year: Union[int, str, None] = None,
        staged_key: Optional[str] = None
    ) -> BookRecord:
        """
        Validate and commit a new record referencing an optional staged upload.

        The staged upload is deleted if validation or the commit fails.
        """
        try:
            fields = validate_new_book(title, author, year)
        except Exception:
            await self.discard(staged_key, "validation failed")
            raise

        try:
            record = await self.records.create(fields, identity.id, staged_key)
        except Exception:
            logger.error("Failed to commit new book", user_id=identity.id, title=fields.title)
            await self.discard(staged_key, "commit failed")
            raise

        self.audit.log_committed(record.id, "replace" if staged_key else "keep", staged_key)
        return record

    async def _plan_update(
        self,
        book_id: str,
        identity: Identity,
        changes: BookChanges,
        clear_attachment: bool,
        staged_key: Optional[str]
    ) -> Tuple[BookRecord, Dict[str, Any], List[str], AttachmentDecision]:
        validate_book_id(book_id)

        existing = await self.records.find_by_id(book_id)
        if existing is None:
            raise NotFound("Book not found")

        if not self.policy.can_access(identity, existing, Operation.UPDATE):
            raise Forbidden("Access Denied: You do not own this book.")

        requested_set, requested_unset = validate_changes(changes)
        decision = decide_attachment(staged_key, clear_attachment)

        # Keep only the changes that alter the stored record
        set_fields = {
            name: value
            for name, value in requested_set.items()
            if getattr(existing, name) != value
        }
        unset_fields = [
            name for name in requested_unset
            if getattr(existing, name) is not None
        ]

        target_key = decision.target_key(existing.attachment_key)
        if target_key != existing.attachment_key:
            if target_key is None:
                unset_fields.append(ATTACHMENT_FIELD)
            else:
                set_fields[ATTACHMENT_FIELD] = target_key

        if not set_fields and not unset_fields and staged_key is None:
            raise InvalidInput("No update data provided")

        return existing, set_fields, unset_fields, decision

    async def update_with_attachment(
        self,
        book_id: str,
        identity: Identity,
        changes: BookChanges,
        clear_attachment: bool = False,
        staged_key: Optional[str] = None
    ) -> BookRecord:
        """
        Apply field changes and an attachment decision to an existing record.

        Args:
            book_id: Record identifier
            identity: Caller
            changes: Requested field changes
            clear_attachment: The client explicitly asked to remove the cover image
            staged_key: Key of a cover image already staged for this request

        Returns:
            The committed record

        Raises:
            InvalidInput: malformed id, invalid fields, or nothing to change
            NotFound: the record does not exist (or vanished before commit)
            Forbidden: the caller neither owns the record nor is an admin
        """
        try:
            existing, set_fields, unset_fields, decision = await self._plan_update(
                book_id, identity, changes, clear_attachment, staged_key
            )
        except Exception:
            await self.discard(staged_key, "update rejected")
            raise

        try:
            updated = await self.records.update_fields(book_id, set_fields, unset_fields)
        except Exception:
            logger.error("Failed to commit book update", book_id=book_id)
            await self.discard(staged_key, "commit failed")
            raise

        if updated is None:
            # Lost a race with a concurrent delete
            await self.discard(staged_key, "record vanished before commit")
            raise NotFound("Book not found")

        self.audit.log_committed(updated.id, decision.action.value, updated.attachment_key)

        superseded = decision.superseded_key(existing.attachment_key)
        if superseded:
            await self._delete_quietly(superseded)

        return updated

    async def delete_record(self, book_id: str, identity: Identity) -> BookRecord:
        """
        Delete a record, then its attachment.

        Returns:
            The deleted record

        Raises:
            InvalidInput: malformed id
            NotFound: the record does not exist
            Forbidden: the caller is not an admin
        """
        validate_book_id(book_id)

        existing = await self.records.find_by_id(book_id)
        if existing is None:
            raise NotFound("Book not found")

        if not self.policy.can_access(identity, existing, Operation.DELETE):
            raise Forbidden("Access Denied: Only admins can delete books.")

        deleted = await self.records.delete_by_id(book_id)
        if deleted is None:
            raise NotFound("Book not found")

        logger.info("Book deleted", book_id=book_id, deleted_by=identity.id)
        if deleted.attachment_key:
            await self._delete_quietly(deleted.attachment_key)
        return deleted
