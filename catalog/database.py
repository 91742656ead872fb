"""
MongoDB persistence for book records and user accounts.
Handles connection, indexing, and CRUD operations over motor collections.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

import structlog
from bson import ObjectId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection, AsyncIOMotorDatabase
from pymongo import ReturnDocument
from pymongo.errors import ConnectionFailure, DuplicateKeyError

from catalog.errors import Conflict
from catalog.models import BookFields, BookRecord, Identity, Role, UserAccount

logger = structlog.get_logger(__name__)


def _object_id(value: str) -> Optional[ObjectId]:
    return ObjectId(value) if ObjectId.is_valid(value) else None


class BookRecordStore:
    """
    Persistence for book records.

    Lookups by id apply no ownership filtering; callers decide visibility so
    that "absent" and "present but not yours" stay distinguishable.
    """

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def create(
        self,
        fields: BookFields,
        owner_id: str,
        attachment_key: Optional[str] = None
    ) -> BookRecord:
        """
        Insert a new book record.

        Args:
            fields: Validated book fields
            owner_id: Identifier of the creating user
            attachment_key: Key of an already stored cover image

        Returns:
            The committed BookRecord
        """
        now = datetime.utcnow()
        doc: Dict[str, Any] = {
            "title": fields.title,
            "author": fields.author,
            "created_by": owner_id,
            "created_at": now,
            "updated_at": now,
        }
        if fields.year is not None:
            doc["year"] = fields.year
        if attachment_key:
            doc["cover_image"] = attachment_key

        try:
            result = await self.collection.insert_one(doc)
            doc["_id"] = result.inserted_id
            logger.debug("Inserted book", book_id=str(result.inserted_id), title=fields.title)
            return BookRecord.from_document(doc)
        except Exception as e:
            logger.error("Failed to insert book", title=fields.title, error=str(e))
            raise

    async def find_by_id(self, book_id: str) -> Optional[BookRecord]:
        """Retrieve a book by id, or None if it does not exist."""
        object_id = _object_id(book_id)
        if object_id is None:
            return None

        try:
            doc = await self.collection.find_one({"_id": object_id})
            return BookRecord.from_document(doc) if doc else None
        except Exception as e:
            logger.error("Failed to retrieve book", book_id=book_id, error=str(e))
            raise

    async def find_all_visible_to(self, identity: Identity) -> List[BookRecord]:
        """
        List books visible to an identity, newest first.

        Admins see every book; other users see the books they created.
        """
        filter_query = {} if identity.is_admin else {"created_by": identity.id}

        try:
            cursor = self.collection.find(filter_query).sort("created_at", -1)
            books = []
            async for doc in cursor:
                books.append(BookRecord.from_document(doc))
            logger.debug("Listed books", user_id=identity.id, count=len(books))
            return books
        except Exception as e:
            logger.error("Failed to list books", user_id=identity.id, error=str(e))
            raise

    async def update_fields(
        self,
        book_id: str,
        set_fields: Dict[str, Any],
        unset_fields: Optional[List[str]] = None
    ) -> Optional[BookRecord]:
        """
        Apply a field patch in a single update call.

        Returns:
            The record after the update, or None if it no longer exists
        """
        object_id = _object_id(book_id)
        if object_id is None:
            return None

        update: Dict[str, Any] = {"$set": {**set_fields, "updated_at": datetime.utcnow()}}
        if unset_fields:
            update["$unset"] = {field: "" for field in unset_fields}

        try:
            doc = await self.collection.find_one_and_update(
                {"_id": object_id},
                update,
                return_document=ReturnDocument.AFTER
            )
            return BookRecord.from_document(doc) if doc else None
        except Exception as e:
            logger.error("Failed to update book", book_id=book_id, error=str(e))
            raise

    async def delete_by_id(self, book_id: str) -> Optional[BookRecord]:
        """Delete a book and return what was removed, or None if absent."""
        object_id = _object_id(book_id)
        if object_id is None:
            return None

        try:
            doc = await self.collection.find_one_and_delete({"_id": object_id})
            return BookRecord.from_document(doc) if doc else None
        except Exception as e:
            logger.error("Failed to delete book", book_id=book_id, error=str(e))
            raise


class UserStore:
    """Persistence for user accounts."""

    def __init__(self, collection: AsyncIOMotorCollection):
        self.collection = collection

    async def create(self, username: str, password_hash: str, role: Role = Role.USER) -> UserAccount:
        """
        Insert a new user account.

        Raises:
            Conflict: if the username is already taken
        """
        doc = {
            "username": username,
            "password": password_hash,
            "role": role.value,
            "created_at": datetime.utcnow(),
        }
        try:
            result = await self.collection.insert_one(doc)
        except DuplicateKeyError:
            logger.warning("Username already exists", username=username)
            raise Conflict("Username already exists.")
        doc["_id"] = result.inserted_id
        logger.info("Created user", username=username, role=role.value)
        return UserAccount.from_document(doc)

    async def find_by_id(self, user_id: str) -> Optional[UserAccount]:
        object_id = _object_id(user_id)
        if object_id is None:
            return None
        doc = await self.collection.find_one({"_id": object_id})
        return UserAccount.from_document(doc) if doc else None

    async def find_by_username(self, username: str) -> Optional[UserAccount]:
        doc = await self.collection.find_one({"username": username})
        return UserAccount.from_document(doc) if doc else None

    async def set_role(self, username: str, role: Role) -> bool:
        """Change a user's role. Returns False if the user does not exist."""
        result = await self.collection.update_one(
            {"username": username},
            {"$set": {"role": role.value}}
        )
        return result.matched_count > 0

    async def list_users(self) -> List[UserAccount]:
        users = []
        async for doc in self.collection.find({}).sort("username", 1):
            users.append(UserAccount.from_document(doc))
        return users


class CatalogDatabase:
    """
    Async MongoDB manager for the catalog.
    Owns the client connection and exposes the record and user stores.
    """

    def __init__(
        self,
        connection_url: str,
        database_name: str,
        books_collection: str = "books",
        users_collection: str = "users"
    ):
        """
        Initialize MongoDB manager.

        Args:
            connection_url: MongoDB connection URL
            database_name: Name of the database
            books_collection: Name of the book collection
            users_collection: Name of the user collection
        """
        self.connection_url = connection_url
        self.database_name = database_name
        self.books_collection_name = books_collection
        self.users_collection_name = users_collection
        self.client: Optional[AsyncIOMotorClient] = None
        self.database: Optional[AsyncIOMotorDatabase] = None
        self.books: Optional[BookRecordStore] = None
        self.users: Optional[UserStore] = None

    async def connect(self) -> None:
        """Establish connection to MongoDB."""
        try:
            self.client = AsyncIOMotorClient(self.connection_url)
            self.database = self.client[self.database_name]
            self.books = BookRecordStore(self.database[self.books_collection_name])
            self.users = UserStore(self.database[self.users_collection_name])

            # Test connection
            await self.client.admin.command('ping')
            logger.info("Successfully connected to MongoDB", database=self.database_name)

            await self._create_indexes()

        except ConnectionFailure as e:
            logger.error("Failed to connect to MongoDB", error=str(e))
            raise

    async def disconnect(self) -> None:
        """Close MongoDB connection."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")

    async def _create_indexes(self) -> None:
        """Create indexes for ownership listing and unique usernames."""
        try:
            await self.users.collection.create_index("username", unique=True)
            await self.books.collection.create_index([("created_by", 1), ("created_at", -1)])
            await self.books.collection.create_index("created_at")
            logger.info("Successfully created MongoDB indexes")
        except Exception as e:
            logger.error("Failed to create indexes", error=str(e))
            raise

    async def health_check(self) -> Dict:
        """
        Perform database health check.

        Returns:
            Dictionary with health status
        """
        try:
            await self.database.command("ping")
            books_count = await self.books.collection.count_documents({})
            return {
                "status": "healthy",
                "books_collection": "accessible",
                "books_count": books_count
            }
        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            return {
                "status": "unhealthy",
                "error": str(e)
            }
