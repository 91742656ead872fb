"""
Pytest configuration and shared fixtures.
"""

from datetime import datetime, timedelta
from typing import Dict, List, Optional

import pytest
from bson import ObjectId

from catalog.errors import StorageFailure
from catalog.models import BookFields, BookRecord, Identity, Role
from catalog.reconcile import ReconciliationEngine
from catalog.storage import AttachmentStore


class InMemoryRecordStore:
    """Record store keeping book records in a dict, with failure switches."""

    def __init__(self):
        self.records: Dict[str, BookRecord] = {}
        self.fail_next_write = False
        self.vanish_before_update = False
        self._clock = datetime(2024, 1, 1)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def add(self, record: BookRecord) -> BookRecord:
        self.records[record.id] = record
        return record

    def _maybe_fail(self):
        if self.fail_next_write:
            self.fail_next_write = False
            raise RuntimeError("record store unavailable")

    async def create(self, fields: BookFields, owner_id: str, attachment_key: Optional[str] = None) -> BookRecord:
        self._maybe_fail()
        now = self._tick()
        record = BookRecord(
            id=str(ObjectId()),
            title=fields.title,
            author=fields.author,
            year=fields.year,
            attachment_key=attachment_key,
            owner_id=owner_id,
            created_at=now,
            updated_at=now,
        )
        return self.add(record)

    async def find_by_id(self, book_id: str) -> Optional[BookRecord]:
        return self.records.get(book_id)

    async def find_all_visible_to(self, identity: Identity) -> List[BookRecord]:
        visible = [
            record for record in self.records.values()
            if identity.is_admin or record.owner_id == identity.id
        ]
        return sorted(visible, key=lambda record: record.created_at, reverse=True)

    async def update_fields(self, book_id, set_fields, unset_fields=None) -> Optional[BookRecord]:
        self._maybe_fail()
        if self.vanish_before_update:
            self.records.pop(book_id, None)
        record = self.records.get(book_id)
        if record is None:
            return None

        data = record.model_dump()
        for name, value in set_fields.items():
            data["attachment_key" if name == "cover_image" else name] = value
        for name in unset_fields or []:
            data["attachment_key" if name == "cover_image" else name] = None
        data["updated_at"] = self._tick()
        updated = BookRecord(**data)
        self.records[book_id] = updated
        return updated

    async def delete_by_id(self, book_id: str) -> Optional[BookRecord]:
        self._maybe_fail()
        return self.records.pop(book_id, None)


class InMemoryAttachmentStore(AttachmentStore):
    """Attachment store keeping blobs in a dict, with failure switches."""

    backend = "memory"

    def __init__(self):
        self.blobs: Dict[str, bytes] = {}
        self.deleted: List[str] = []
        self.fail_store = False
        self.fail_delete = False
        self._counter = 0

    def seed(self, key: str, content: bytes = b"old") -> str:
        self.blobs[key] = content
        return key

    async def store(self, content: bytes, original_name: str, content_type: Optional[str] = None) -> str:
        if self.fail_store:
            raise StorageFailure("Failed to store attachment")
        self._counter += 1
        key = f"cover_image-{self._counter}.png"
        self.blobs[key] = content
        return key

    async def delete(self, key: str) -> bool:
        if self.fail_delete:
            raise OSError("disk unavailable")
        self.deleted.append(key)
        return self.blobs.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return key in self.blobs

    def owns(self, key: Optional[str]) -> bool:
        return bool(key) and key.startswith("cover_image-")

    def locator_for(self, key: Optional[str]) -> Optional[str]:
        return f"/uploads/{key}" if self.owns(key) else None


@pytest.fixture
def record_store():
    return InMemoryRecordStore()


@pytest.fixture
def attachment_store():
    return InMemoryAttachmentStore()


@pytest.fixture
def engine(record_store, attachment_store):
    """Reconciliation engine wired to in-memory stores."""
    return ReconciliationEngine(record_store, attachment_store, max_upload_bytes=1024)


@pytest.fixture
def owner():
    return Identity(id=str(ObjectId()), username="owner", role=Role.USER)


@pytest.fixture
def other_user():
    return Identity(id=str(ObjectId()), username="stranger", role=Role.USER)


@pytest.fixture
def admin():
    return Identity(id=str(ObjectId()), username="admin", role=Role.ADMIN)


@pytest.fixture
def make_record(record_store, attachment_store):
    """Factory adding a committed record (and its blob) to the in-memory stores."""

    def _make(owner_id: str, attachment_key: Optional[str] = None, **fields) -> BookRecord:
        if attachment_key:
            attachment_store.seed(attachment_key)
        record = BookRecord(
            id=str(ObjectId()),
            title=fields.get("title", "Dune"),
            author=fields.get("author", "Frank Herbert"),
            year=fields.get("year", 1965),
            attachment_key=attachment_key,
            owner_id=owner_id,
            created_at=fields.get("created_at", datetime(2023, 6, 1)),
            updated_at=fields.get("created_at", datetime(2023, 6, 1)),
        )
        return record_store.add(record)

    return _make


@pytest.fixture
def png_bytes():
    """A few bytes standing in for an uploaded PNG."""
    return b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
