"""
Pydantic models and value types for the book catalog domain.
Defines book records, identities, user accounts and attachment decisions.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field


class Role(str, Enum):
    """Enum for account roles."""
    USER = "user"
    ADMIN = "admin"


class Identity(BaseModel):
    """Authenticated caller resolved from a bearer credential."""
    id: str = Field(..., description="User identifier")
    username: str = Field("", description="Username")
    role: Role = Field(Role.USER, description="Account role")

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class UserAccount(BaseModel):
    """Stored user account."""
    id: str = Field(..., description="User identifier")
    username: str = Field(..., description="Unique username")
    password_hash: str = Field(..., description="bcrypt password hash")
    role: Role = Field(Role.USER, description="Account role")
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "UserAccount":
        return cls(
            id=str(doc["_id"]),
            username=doc["username"],
            password_hash=doc["password"],
            role=doc.get("role", Role.USER.value),
            created_at=doc.get("created_at") or datetime.utcnow(),
        )


class BookRecord(BaseModel):
    """
    Book record as committed to the record store.

    attachment_key is either None or a key produced by the deployment's
    AttachmentStore; it is never taken from client input.
    """
    id: str = Field(..., description="Unique book identifier")
    title: str = Field(..., min_length=1, description="Book title")
    author: str = Field(..., min_length=1, description="Book author")
    year: Optional[int] = Field(None, description="Publication year")
    attachment_key: Optional[str] = Field(None, description="Cover image attachment key")
    owner_id: str = Field(..., description="Identifier of the creating user")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "BookRecord":
        """Build a record from a MongoDB document."""
        created_at = doc.get("created_at") or datetime.utcnow()
        return cls(
            id=str(doc["_id"]),
            title=doc["title"],
            author=doc["author"],
            year=doc.get("year"),
            attachment_key=doc.get("cover_image"),
            owner_id=str(doc["created_by"]),
            created_at=created_at,
            updated_at=doc.get("updated_at") or created_at,
        )


class BookFields(BaseModel):
    """Validated fields for a new book."""
    title: str
    author: str
    year: Optional[int] = None


class BookChanges(BaseModel):
    """
    Raw field changes requested by an update.

    A field left out of the request is absent from model_fields_set; a field
    sent as an empty string is present. For year that empty string clears
    the stored value.
    """
    title: Optional[str] = None
    author: Optional[str] = None
    year: Union[int, str, None] = None


class AttachmentAction(str, Enum):
    """What an update does to the record's attachment."""
    KEEP = "keep"
    REPLACE = "replace"
    CLEAR = "clear"


@dataclass(frozen=True)
class AttachmentDecision:
    """Tagged attachment decision: KEEP, REPLACE(key) or CLEAR."""
    action: AttachmentAction
    key: Optional[str] = None

    @classmethod
    def keep(cls) -> "AttachmentDecision":
        return cls(AttachmentAction.KEEP)

    @classmethod
    def replace(cls, key: str) -> "AttachmentDecision":
        return cls(AttachmentAction.REPLACE, key)

    @classmethod
    def clear(cls) -> "AttachmentDecision":
        return cls(AttachmentAction.CLEAR)

    def target_key(self, current: Optional[str]) -> Optional[str]:
        """Attachment key the record holds once this decision is applied."""
        if self.action == AttachmentAction.REPLACE:
            return self.key
        if self.action == AttachmentAction.CLEAR:
            return None
        return current

    def superseded_key(self, current: Optional[str]) -> Optional[str]:
        """Old key to delete after commit, if the decision drops it."""
        if current and current != self.target_key(current):
            return current
        return None
