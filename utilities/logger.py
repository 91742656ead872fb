"""
Structured logging setup using structlog.
Provides JSON or console output and an attachment lifecycle logger.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

import structlog
from structlog.stdlib import LoggerFactory


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "json",
    log_file: Optional[Union[str, Path]] = None,
    debug: bool = False
) -> None:
    """
    Set up structured logging with configurable output formats.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or console)
        log_file: Optional log file path
        debug: Add call-site information to every event
    """

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if debug:
        processors.append(structlog.processors.CallsiteParameterAdder())

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    # Set up file logging if specified
    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(logging.Formatter('%(message)s'))
        logging.getLogger().addHandler(file_handler)

    logger = structlog.get_logger(__name__)
    logger.info(
        "Logging system initialized",
        level=log_level,
        format=log_format,
        file=str(log_file) if log_file else None,
        debug=debug
    )


class AttachmentLogger:
    """
    Specialized logger for attachment lifecycle events with context management.
    """

    def __init__(self, name: str = "attachments"):
        self.logger = structlog.get_logger(name)
        self.context = {}

    def bind_context(self, **kwargs) -> 'AttachmentLogger':
        """
        Bind context variables to the logger.

        Args:
            **kwargs: Context variables to bind

        Returns:
            Self for method chaining
        """
        self.context.update(kwargs)
        return self

    def log_staged(self, key: str, original_name: str, size: int) -> None:
        """Log an upload persisted ahead of its record commit."""
        self.logger.info(
            "Attachment staged",
            key=key,
            original_name=original_name,
            size_bytes=size,
            **self.context
        )

    def log_committed(self, book_id: str, action: str, key: Optional[str]) -> None:
        """Log a record commit together with its attachment decision."""
        self.logger.info(
            "Book record committed",
            book_id=book_id,
            attachment_action=action,
            attachment_key=key,
            **self.context
        )

    def log_discarded(self, key: str, reason: str) -> None:
        """Log a staged upload dropped because nothing will reference it."""
        self.logger.warning(
            "Staged attachment discarded",
            key=key,
            reason=reason,
            **self.context
        )

    def log_cleanup(self, key: str, success: bool) -> None:
        """Log post-commit removal of a superseded attachment."""
        level = "info" if success else "error"
        getattr(self.logger, level)(
            "Attachment cleanup",
            key=key,
            success=success,
            **self.context
        )
