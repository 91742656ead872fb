"""
FastAPI main application for the Book Catalog API.
"""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from api import auth
from api.auth import get_current_identity, require_roles
from api.config import config as api_config
from api.models import (
    BookResponse, CredentialsRequest, DeleteBookResponse, ErrorResponse,
    HealthResponse, LoginResponse, RegisterResponse
)
from catalog.auth import AuthGate, PasswordHasher, TokenManager
from catalog.database import CatalogDatabase
from catalog.errors import CatalogError, InvalidInput
from catalog.models import BookChanges, Identity, Role
from catalog.reconcile import ATTACHMENT_FIELD, ReconciliationEngine
from catalog.storage import create_attachment_store
from catalog.users import UserService
from catalog.validation import validate_book_id
from utilities.config import config
from utilities.logger import setup_logging

# Setup logging
logger = structlog.get_logger(__name__)

# Global services, created on startup
database: Optional[CatalogDatabase] = None
engine: Optional[ReconciliationEngine] = None
user_service: Optional[UserService] = None

BOOK_TEXT_FIELDS = ("title", "author", "year")
CLEAR_FLAG_FIELD = "clear_cover_image"
DEFAULT_JWT_SECRET = "change-this-secret-in-production"
TRUTHY_VALUES = ("1", "true", "yes", "on")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global database, engine, user_service

    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )
    logger.info("Starting Book Catalog API", storage_backend=config.storage_backend)

    try:
        database = CatalogDatabase(
            connection_url=config.mongodb_url,
            database_name=config.mongodb_database,
            books_collection=config.books_collection,
            users_collection=config.users_collection
        )
        await database.connect()
        logger.info("Database connection established")

        if config.is_production() and config.jwt_secret_key == DEFAULT_JWT_SECRET:
            logger.warning("Using the default JWT secret outside debug or test mode")

        tokens = TokenManager(
            secret_key=config.jwt_secret_key,
            algorithm=config.jwt_algorithm,
            expire_minutes=config.jwt_access_token_expire_minutes
        )
        auth.auth_gate = AuthGate(database.users, tokens)
        user_service = UserService(database.users, tokens, PasswordHasher())
        engine = ReconciliationEngine(
            records=database.books,
            attachments=create_attachment_store(config),
            max_upload_bytes=config.max_upload_bytes,
            accept_image_extensions=config.test_mode
        )

    except Exception as e:
        logger.error("Failed to initialize services", error=str(e))
        raise

    yield

    logger.info("Shutting down Book Catalog API")
    if database:
        await database.disconnect()


# Create FastAPI application
app = FastAPI(
    title=api_config.api_title,
    description="""
    A REST API for managing book records with optional cover images.

    ## Features

    * **Accounts**: Register and log in to obtain a bearer token
    * **Books**: Create, read and update the books you own
    * **Cover images**: Upload, replace or clear one cover image per book
    * **Administration**: Admins see every book and may delete books

    ## Authentication

    All book endpoints require a bearer token obtained from `/auth/login`:

    ```
    Authorization: Bearer your_token_here
    ```
    """,
    version=api_config.api_version,
    lifespan=lifespan
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=api_config.cors_origins,
    allow_credentials=api_config.cors_allow_credentials,
    allow_methods=api_config.cors_allow_methods,
    allow_headers=api_config.cors_allow_headers,
)

if config.storage_backend == "local":
    app.mount(
        config.upload_url_prefix,
        StaticFiles(directory=config.upload_dir, check_dir=False),
        name="uploads"
    )


# Exception handlers
@app.exception_handler(CatalogError)
async def catalog_exception_handler(request: Request, exc: CatalogError):
    """Render catalog failures with their status code."""
    if exc.status_code >= 500:
        logger.error("Catalog operation failed", error=exc.message, path=request.url.path)
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=exc.message,
            status_code=exc.status_code
        ).dict(),
        headers=exc.headers
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=str(exc.detail),
            status_code=exc.status_code
        ).dict(),
        headers=getattr(exc, "headers", None)
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error("Unhandled exception", error=str(exc), path=request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="Internal server error",
            detail=str(exc) if api_config.debug else None,
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        ).dict()
    )


def _require_engine() -> ReconciliationEngine:
    if not engine:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Catalog service not available"
        )
    return engine


def _require_user_service() -> UserService:
    if not user_service:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Account service not available"
        )
    return user_service


def _is_truthy(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return isinstance(value, str) and value.strip().lower() in TRUTHY_VALUES


async def _read_book_payload(request: Request) -> Tuple[Dict[str, Any], Optional[UploadFile], bool]:
    """
    Read book fields, an optional cover image and the clear signal.

    Accepts multipart/form-data (with an optional file) or a JSON object.
    The cover image field sent empty (or null) means "clear"; left out, it
    means "keep". Attachment keys are never accepted from the client.

    Returns:
        Tuple of (present text fields, uploaded file, clear requested)
    """
    content_type = request.headers.get("content-type", "")
    if content_type.startswith("application/json"):
        try:
            body = await request.json()
        except ValueError:
            raise InvalidInput("Malformed JSON body")
        if not isinstance(body, dict):
            raise InvalidInput("Request body must be a JSON object")
    else:
        body = await request.form()

    fields: Dict[str, Any] = {}
    for name in BOOK_TEXT_FIELDS:
        if name not in body:
            continue
        value = body[name]
        if isinstance(value, bool) or not isinstance(value, (str, int, type(None))):
            raise InvalidInput(f"Invalid value for '{name}'")
        if name != "year" and isinstance(value, int):
            raise InvalidInput(f"Invalid value for '{name}'")
        fields[name] = value

    upload = None
    clear_requested = _is_truthy(body.get(CLEAR_FLAG_FIELD))
    if ATTACHMENT_FIELD in body:
        value = body[ATTACHMENT_FIELD]
        if isinstance(value, UploadFile):
            # Browsers submit an unnamed empty part when no file was chosen
            if value.filename:
                upload = value
        elif value is None or value == "":
            clear_requested = True
        else:
            raise InvalidInput("Cover images must be uploaded as a file")

    return fields, upload, clear_requested


async def _stage(service: ReconciliationEngine, upload: Optional[UploadFile]) -> Optional[str]:
    if upload is None:
        return None
    # One byte past the limit is enough to reject an oversized upload
    content = await upload.read(service.max_upload_bytes + 1)
    return await service.stage_upload(content, upload.filename, upload.content_type)


def _to_response(service: ReconciliationEngine, record) -> Dict:
    return BookResponse.from_record(record, service.locator_for(record)).dict()


# Health check endpoint (no authentication required)
@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check():
    """Health check endpoint."""
    try:
        db_status = "unknown"
        if database:
            health_info = await database.health_check()
            db_status = health_info.get("status", "unknown")

        return HealthResponse(
            status="healthy" if db_status == "healthy" else "degraded",
            timestamp=datetime.utcnow(),
            version=api_config.api_version,
            database_status=db_status,
            storage_backend=config.storage_backend
        )
    except Exception as e:
        logger.error("Health check failed", error=str(e))
        return HealthResponse(
            status="unhealthy",
            timestamp=datetime.utcnow(),
            version=api_config.api_version,
            database_status="unhealthy",
            storage_backend=config.storage_backend
        )


# Auth endpoints
@app.post("/auth/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED, tags=["Auth"])
async def register(payload: CredentialsRequest):
    """Register a new user account."""
    account = await _require_user_service().register(payload.username, payload.password)
    return JSONResponse(
        status_code=status.HTTP_201_CREATED,
        content=RegisterResponse(
            message="User registered successfully",
            user_id=account.id
        ).dict()
    )


@app.post("/auth/login", response_model=LoginResponse, tags=["Auth"])
async def login(payload: CredentialsRequest):
    """Log in and receive a bearer token."""
    result = await _require_user_service().login(payload.username, payload.password)
    return JSONResponse(
        content=LoginResponse(message="Login successful", **result).dict()
    )


# Books endpoints
@app.get("/books", response_model=List[BookResponse], tags=["Books"])
async def get_books(identity: Identity = Depends(get_current_identity)):
    """
    List books, newest first.

    Admins see every book; other users see the books they created.
    """
    service = _require_engine()
    records = await service.list_records(identity)
    return JSONResponse(content=[_to_response(service, record) for record in records])


@app.get("/books/{book_id}", response_model=BookResponse, tags=["Books"])
async def get_book(book_id: str, identity: Identity = Depends(get_current_identity)):
    """
    Get a single book by ID.

    - **book_id**: Book identifier (MongoDB ObjectId)
    """
    service = _require_engine()
    record = await service.get_record(book_id, identity)
    return JSONResponse(content=_to_response(service, record))


@app.post("/books", response_model=BookResponse, status_code=status.HTTP_201_CREATED, tags=["Books"])
async def create_book(request: Request, identity: Identity = Depends(get_current_identity)):
    """
    Create a book.

    - **title**: Book title (required)
    - **author**: Book author (required)
    - **year**: Publication year (optional)
    - **cover_image**: Cover image file (optional, images only)
    """
    service = _require_engine()
    fields, upload, _ = await _read_book_payload(request)

    staged_key = await _stage(service, upload)
    record = await service.create_with_attachment(
        identity,
        title=fields.get("title"),
        author=fields.get("author"),
        year=fields.get("year"),
        staged_key=staged_key
    )
    logger.info("Book created", book_id=record.id, user_id=identity.id)
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=_to_response(service, record))


@app.put("/books/{book_id}", response_model=BookResponse, tags=["Books"])
async def update_book(book_id: str, request: Request, identity: Identity = Depends(get_current_identity)):
    """
    Update a book you own (admins may update any book).

    - **title**, **author**, **year**: Fields to change; an empty year clears it
    - **cover_image**: New cover image file, or an empty value to remove the cover
    - **clear_cover_image**: `true` to remove the cover
    """
    service = _require_engine()
    validate_book_id(book_id)
    fields, upload, clear_requested = await _read_book_payload(request)

    staged_key = await _stage(service, upload)
    record = await service.update_with_attachment(
        book_id,
        identity,
        BookChanges(**fields),
        clear_attachment=clear_requested,
        staged_key=staged_key
    )
    logger.info("Book updated", book_id=record.id, user_id=identity.id)
    return JSONResponse(content=_to_response(service, record))


@app.delete("/books/{book_id}", response_model=DeleteBookResponse, tags=["Books"])
async def delete_book(book_id: str, identity: Identity = Depends(require_roles(Role.ADMIN))):
    """
    Delete a book and its cover image. Admins only.
    """
    service = _require_engine()
    record = await service.delete_record(book_id, identity)
    return JSONResponse(
        content=DeleteBookResponse(
            message="Book deleted successfully",
            deleted_book=BookResponse.from_record(record)
        ).dict()
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "api.main:app",
        host=api_config.host,
        port=api_config.port,
        reload=api_config.debug,
        log_level=api_config.log_level.lower()
    )
