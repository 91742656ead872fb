"""
API models and schemas for the FastAPI application.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from catalog.models import BookRecord, Role


class BookResponse(BaseModel):
    """Book response model for API."""
    id: str = Field(..., description="Unique book identifier")
    title: str = Field(..., description="Book title")
    author: str = Field(..., description="Book author")
    year: Optional[int] = Field(None, description="Publication year")
    cover_image: Optional[str] = Field(None, description="Cover image attachment key")
    cover_image_url: Optional[str] = Field(None, description="Display URL or path of the cover image")
    owner_id: str = Field(..., description="Identifier of the user who created the book")
    created_at: str = Field(..., description="Creation timestamp")
    updated_at: str = Field(..., description="Last update timestamp")

    @classmethod
    def from_record(cls, record: BookRecord, cover_image_url: Optional[str] = None) -> "BookResponse":
        return cls(
            id=record.id,
            title=record.title,
            author=record.author,
            year=record.year,
            cover_image=record.attachment_key,
            cover_image_url=cover_image_url,
            owner_id=record.owner_id,
            created_at=record.created_at.isoformat(),
            updated_at=record.updated_at.isoformat(),
        )


class DeleteBookResponse(BaseModel):
    """Response model for a deleted book."""
    message: str = Field(..., description="Outcome message")
    deleted_book: BookResponse = Field(..., description="The removed book")


class CredentialsRequest(BaseModel):
    """Username and password submitted to register or log in."""
    username: str = Field(..., description="Username")
    password: str = Field(..., description="Password")


class RegisterResponse(BaseModel):
    """Response model for a registered user."""
    message: str = Field(..., description="Outcome message")
    user_id: str = Field(..., description="New user identifier")


class LoginResponse(BaseModel):
    """Response model for a successful login."""
    message: str = Field(..., description="Outcome message")
    token: str = Field(..., description="Bearer access token")
    user_id: str = Field(..., description="User identifier")
    role: Role = Field(..., description="Account role")


class ErrorResponse(BaseModel):
    """Error response model."""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Additional error details")
    status_code: int = Field(..., description="HTTP status code")


class HealthResponse(BaseModel):
    """Health check response model."""
    status: str = Field(..., description="Service status")
    timestamp: datetime = Field(..., description="Current timestamp")
    version: str = Field(..., description="API version")
    database_status: str = Field(..., description="Database connection status")
    storage_backend: str = Field(..., description="Active attachment storage backend")
