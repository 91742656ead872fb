"""
Tests for the MongoDB record and user stores using mocked motor collections.
"""

from datetime import datetime
from unittest.mock import AsyncMock, MagicMock

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from catalog.database import BookRecordStore, UserStore
from catalog.errors import Conflict
from catalog.models import BookFields, Identity, Role


class FakeCursor:
    """Async-iterable stand-in for a motor cursor."""

    def __init__(self, docs):
        self.docs = list(docs)

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.docs:
            raise StopAsyncIteration
        return self.docs.pop(0)


def _book_doc(**overrides):
    doc = {
        "_id": ObjectId(),
        "title": "Dune",
        "author": "Frank Herbert",
        "created_by": "owner-1",
        "created_at": datetime(2024, 1, 1),
        "updated_at": datetime(2024, 1, 1),
    }
    doc.update(overrides)
    return doc


@pytest.fixture
def collection():
    return MagicMock()


@pytest.fixture
def books(collection):
    return BookRecordStore(collection)


class TestBookRecordStore:
    """Test cases for BookRecordStore."""

    @pytest.mark.asyncio
    async def test_create_without_optional_fields(self, books, collection):
        object_id = ObjectId()
        collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id=object_id))

        record = await books.create(BookFields(title="Dune", author="Herbert"), "owner-1")

        doc = collection.insert_one.call_args.args[0]
        assert "year" not in doc
        assert "cover_image" not in doc
        assert doc["created_by"] == "owner-1"
        assert doc["created_at"] == doc["updated_at"]
        assert record.id == str(object_id)
        assert record.attachment_key is None

    @pytest.mark.asyncio
    async def test_create_with_year_and_attachment(self, books, collection):
        collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id=ObjectId()))

        record = await books.create(
            BookFields(title="Dune", author="Herbert", year=1965), "owner-1", "cover_image-1.png"
        )

        doc = collection.insert_one.call_args.args[0]
        assert doc["year"] == 1965
        assert doc["cover_image"] == "cover_image-1.png"
        assert record.attachment_key == "cover_image-1.png"

    @pytest.mark.asyncio
    async def test_find_by_id(self, books, collection):
        doc = _book_doc()
        collection.find_one = AsyncMock(return_value=doc)

        record = await books.find_by_id(str(doc["_id"]))

        collection.find_one.assert_awaited_once_with({"_id": doc["_id"]})
        assert record.title == "Dune"

    @pytest.mark.asyncio
    async def test_find_by_id_missing_or_malformed(self, books, collection):
        collection.find_one = AsyncMock(return_value=None)

        assert await books.find_by_id(str(ObjectId())) is None
        assert await books.find_by_id("bogus") is None
        collection.find_one.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_find_all_scoped_to_owner(self, books, collection):
        collection.find.return_value.sort.return_value = FakeCursor([_book_doc(), _book_doc(title="Emma")])

        records = await books.find_all_visible_to(Identity(id="owner-1"))

        collection.find.assert_called_once_with({"created_by": "owner-1"})
        collection.find.return_value.sort.assert_called_once_with("created_at", -1)
        assert [record.title for record in records] == ["Dune", "Emma"]

    @pytest.mark.asyncio
    async def test_find_all_for_admin(self, books, collection):
        collection.find.return_value.sort.return_value = FakeCursor([])

        assert await books.find_all_visible_to(Identity(id="root", role=Role.ADMIN)) == []
        collection.find.assert_called_once_with({})

    @pytest.mark.asyncio
    async def test_update_fields_sets_and_unsets(self, books, collection):
        doc = _book_doc(title="Dune Messiah")
        collection.find_one_and_update = AsyncMock(return_value=doc)

        record = await books.update_fields(
            str(doc["_id"]), {"title": "Dune Messiah"}, ["year", "cover_image"]
        )

        query, update = collection.find_one_and_update.call_args.args
        assert query == {"_id": doc["_id"]}
        assert update["$set"]["title"] == "Dune Messiah"
        assert isinstance(update["$set"]["updated_at"], datetime)
        assert update["$unset"] == {"year": "", "cover_image": ""}
        assert collection.find_one_and_update.call_args.kwargs["return_document"] == ReturnDocument.AFTER
        assert record.title == "Dune Messiah"

    @pytest.mark.asyncio
    async def test_update_fields_missing_record(self, books, collection):
        collection.find_one_and_update = AsyncMock(return_value=None)

        assert await books.update_fields(str(ObjectId()), {"title": "X"}) is None
        update = collection.find_one_and_update.call_args.args[1]
        assert "$unset" not in update

    @pytest.mark.asyncio
    async def test_update_fields_propagates_errors(self, books, collection):
        collection.find_one_and_update = AsyncMock(side_effect=RuntimeError("primary stepped down"))

        with pytest.raises(RuntimeError):
            await books.update_fields(str(ObjectId()), {"title": "X"})

    @pytest.mark.asyncio
    async def test_delete_by_id_returns_removed_record(self, books, collection):
        doc = _book_doc(cover_image="cover_image-1.png")
        collection.find_one_and_delete = AsyncMock(return_value=doc)

        record = await books.delete_by_id(str(doc["_id"]))

        assert record.attachment_key == "cover_image-1.png"


class TestUserStore:
    """Test cases for UserStore."""

    @pytest.mark.asyncio
    async def test_create_user(self, collection):
        collection.insert_one = AsyncMock(return_value=MagicMock(inserted_id=ObjectId()))
        users = UserStore(collection)

        account = await users.create("alice", "hashed", Role.ADMIN)

        doc = collection.insert_one.call_args.args[0]
        assert doc["password"] == "hashed"
        assert doc["role"] == "admin"
        assert account.username == "alice"
        assert account.role == Role.ADMIN

    @pytest.mark.asyncio
    async def test_duplicate_username(self, collection):
        collection.insert_one = AsyncMock(side_effect=DuplicateKeyError("E11000 duplicate key"))
        users = UserStore(collection)

        with pytest.raises(Conflict) as exc_info:
            await users.create("alice", "hashed")

        assert exc_info.value.message == "Username already exists."

    @pytest.mark.asyncio
    async def test_set_role(self, collection):
        collection.update_one = AsyncMock(return_value=MagicMock(matched_count=1))
        users = UserStore(collection)

        assert await users.set_role("alice", Role.ADMIN) is True
        collection.update_one.assert_awaited_once_with(
            {"username": "alice"}, {"$set": {"role": "admin"}}
        )

        collection.update_one.return_value = MagicMock(matched_count=0)
        assert await users.set_role("ghost", Role.ADMIN) is False

    @pytest.mark.asyncio
    async def test_find_by_username(self, collection):
        collection.find_one = AsyncMock(return_value={
            "_id": ObjectId(), "username": "alice", "password": "hashed", "role": "user"
        })
        users = UserStore(collection)

        account = await users.find_by_username("alice")

        assert account.password_hash == "hashed"
        assert account.role == Role.USER
