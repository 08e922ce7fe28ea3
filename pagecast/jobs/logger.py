"""
Structured logging system for documents.

Provides thread-safe logging with persistence to the database.
"""

import logging
import sys
import threading
import traceback
from typing import Optional, Dict, Any

from .models import DocumentID
from .storage import DocumentStorage


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


def setup_logging(level: int = logging.INFO) -> logging.Logger:
    """
    Configure the root logger for the CLI and the worker.

    Args:
        level: Logging level

    Returns:
        The pagecast package logger
    """
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.basicConfig(level=level, handlers=[handler])
    return logging.getLogger("pagecast")


class DocumentLogger:
    """
    Logger for document-specific structured logging.

    Features:
    - Thread-safe logging operations
    - Persistence to database via DocumentStorage
    - Structured metadata support
    - Standard Python logging integration
    """

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def __init__(self, document_id: DocumentID, storage: DocumentStorage):
        """
        Initialize logger for a specific document.

        Args:
            document_id: Document ID to log for
            storage: DocumentStorage instance for persistence
        """
        self.document_id = document_id
        self.storage = storage
        self._lock = threading.Lock()
        self._py_logger = logging.getLogger(f"pagecast.document.{document_id}")

    def _log(self, level: str, message: str, metadata: Optional[Dict[str, Any]] = None):
        with self._lock:
            self.storage.add_log(
                document_id=self.document_id,
                level=level,
                message=message,
                metadata=metadata
            )

            py_level = self._level_to_py_level(level)
            if self._py_logger.isEnabledFor(py_level):
                extra_msg = f" [{metadata}]" if metadata else ""
                self._py_logger.log(py_level, f"{message}{extra_msg}")

    @staticmethod
    def _level_to_py_level(level: str) -> int:
        """Convert string level to Python logging level."""
        return {
            "DEBUG": logging.DEBUG,
            "INFO": logging.INFO,
            "WARNING": logging.WARNING,
            "ERROR": logging.ERROR,
            "CRITICAL": logging.CRITICAL,
        }.get(level, logging.INFO)

    def debug(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        self._log(self.DEBUG, message, metadata)

    def info(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        self._log(self.INFO, message, metadata)

    def warning(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        self._log(self.WARNING, message, metadata)

    def error(self, message: str, metadata: Optional[Dict[str, Any]] = None):
        self._log(self.ERROR, message, metadata)

    def log_page_submitted(self, page_number: int, job_id: str):
        self.info(
            f"Submitted page {page_number} for synthesis (job {job_id})",
            metadata={"page_number": page_number, "job_id": job_id}
        )

    def log_page_completed(self, page_number: int, job_id: str, audio_url: str):
        self.info(
            f"Page {page_number} audio ready",
            metadata={"page_number": page_number, "job_id": job_id, "audio_url": audio_url}
        )

    def log_page_failed(self, page_number: int, error: str, job_id: Optional[str] = None):
        metadata = {"page_number": page_number, "error": error}
        if job_id is not None:
            metadata["job_id"] = job_id
        self.error(f"Page {page_number} failed: {error}", metadata=metadata)

    def log_error_with_context(
        self,
        error: BaseException,
        context: str,
        page_number: Optional[int] = None,
        job_id: Optional[str] = None
    ):
        """
        Log an error with full context.

        Args:
            error: Exception that occurred
            context: Description of what was being done
            page_number: Page being processed (if applicable)
            job_id: Synthesis job involved (if applicable)
        """
        error_metadata = {
            "error_type": type(error).__name__,
            "error_message": str(error),
            "context": context,
            "traceback": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
        }

        if page_number is not None:
            error_metadata["page_number"] = page_number

        if job_id is not None:
            error_metadata["job_id"] = job_id

        self.error(
            f"Error during {context}: {type(error).__name__}: {error}",
            metadata=error_metadata
        )
