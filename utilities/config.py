"""
Configuration management using environment variables.
Handles catalog, authentication and attachment storage settings with validation and defaults.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings


class CatalogConfig(BaseSettings):
    """
    Configuration class for the book catalog.
    Uses pydantic BaseSettings for environment variable management.
    """

    # MongoDB Configuration
    mongodb_url: str = Field(default="mongodb://localhost:27017")
    mongodb_database: str = Field(default="book_catalog")
    books_collection: str = Field(default="books")
    users_collection: str = Field(default="users")

    # Token Configuration
    jwt_secret_key: str = Field(default="change-this-secret-in-production")
    jwt_algorithm: str = Field(default="HS256")
    jwt_access_token_expire_minutes: int = Field(default=60)

    # Attachment Storage Configuration
    storage_backend: str = Field(default="local")
    upload_dir: str = Field(default="uploads")
    upload_url_prefix: str = Field(default="/uploads")
    upload_field_name: str = Field(default="cover_image")
    max_upload_bytes: int = Field(default=5 * 1024 * 1024)

    # S3 Configuration
    s3_bucket_name: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)
    s3_key_prefix: str = Field(default="book-covers/")
    s3_presigned_url_expiration: int = Field(default=3600)

    # Logging Configuration
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json")
    log_file: Optional[str] = Field(default="logs/catalog.log")

    # Development/Testing
    debug: bool = Field(default=False)
    test_mode: bool = Field(default=False)

    @validator('jwt_access_token_expire_minutes')
    def validate_token_expiry(cls, v):
        """Ensure token lifetime is reasonable."""
        if v < 1 or v > 60 * 24 * 30:
            raise ValueError('jwt_access_token_expire_minutes must be between 1 and 43200')
        return v

    @validator('storage_backend')
    def validate_storage_backend(cls, v):
        """Ensure the storage backend is supported."""
        valid_backends = ['local', 's3']
        if v.lower() not in valid_backends:
            raise ValueError(f'storage_backend must be one of: {valid_backends}')
        return v.lower()

    @validator('max_upload_bytes')
    def validate_max_upload_bytes(cls, v):
        """Ensure upload limit is positive."""
        if v < 1:
            raise ValueError('max_upload_bytes must be positive')
        return v

    @validator('s3_key_prefix')
    def validate_s3_key_prefix(cls, v):
        """Managed keys are told apart from foreign ones by this prefix."""
        if not v or not v.endswith('/'):
            raise ValueError('s3_key_prefix must be a non-empty prefix ending with "/"')
        return v

    @validator('s3_presigned_url_expiration')
    def validate_presigned_expiration(cls, v):
        """S3 caps presigned URLs at seven days."""
        if v < 1 or v > 604800:
            raise ValueError('s3_presigned_url_expiration must be between 1 and 604800 seconds')
        return v

    @validator('log_level')
    def validate_log_level(cls, v):
        """Ensure log level is valid."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if v.upper() not in valid_levels:
            raise ValueError(f'log_level must be one of: {valid_levels}')
        return v.upper()

    @validator('log_format')
    def validate_log_format(cls, v):
        """Ensure log format is valid."""
        valid_formats = ['json', 'console']
        if v.lower() not in valid_formats:
            raise ValueError(f'log_format must be one of: {valid_formats}')
        return v.lower()

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",  # Ignore extra fields from .env
    }

    def get_log_file_path(self) -> Optional[Path]:
        """Get log file path as Path object."""
        if self.log_file:
            return Path(self.log_file)
        return None

    def get_upload_dir_path(self) -> Path:
        """Get the local attachment directory as Path object."""
        return Path(self.upload_dir)

    def is_production(self) -> bool:
        """Check if running in production mode."""
        return not self.debug and not self.test_mode


# Global configuration instance
config = CatalogConfig()
