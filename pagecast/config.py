"""Configuration for Pagecast.

Settings for the job engine, the worker and the PlayHT synthesis client.
Every setting can be overridden from the environment with ``from_env``.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, '')
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, '')
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


@dataclass
class PipelineConfig:
    """Configuration for the job engine and worker.

    Attributes:
        db_path: SQLite database path (default: ~/.pagecast/documents.db)
        poll_interval: Seconds between status queries of outstanding jobs
        max_concurrent_submissions: Synthesis submissions in flight per document
        max_concurrent_documents: Documents the worker dispatches at once
        queue_poll_interval: Seconds the worker sleeps when the queue is empty
        page_separator: Boundary marker between pages in extracted text
    """
    db_path: Optional[str] = None
    poll_interval: float = 2.0
    max_concurrent_submissions: int = 8
    max_concurrent_documents: int = 4
    queue_poll_interval: float = 2.0
    page_separator: str = "\n\n"

    def __post_init__(self):
        if self.poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        if self.max_concurrent_submissions < 1:
            raise ValueError("max_concurrent_submissions must be at least 1")
        if self.max_concurrent_documents < 1:
            raise ValueError("max_concurrent_documents must be at least 1")

    @classmethod
    def from_env(cls):
        """Load configuration from environment variables.

        Environment variables:
            PAGECAST_DB_PATH: SQLite database path
            PAGECAST_POLL_INTERVAL: Job status poll interval in seconds
            PAGECAST_MAX_SUBMISSIONS: Concurrent submissions per document
            PAGECAST_MAX_DOCUMENTS: Concurrent documents in the worker
            PAGECAST_QUEUE_POLL_INTERVAL: Worker queue poll interval in seconds
            PAGECAST_PAGE_SEPARATOR: Page boundary marker (escape sequences allowed)

        Returns:
            PipelineConfig instance with values from environment
        """
        separator = os.getenv('PAGECAST_PAGE_SEPARATOR', '')
        if separator:
            separator = separator.encode('utf-8').decode('unicode_escape')

        return cls(
            db_path=os.getenv('PAGECAST_DB_PATH') or None,
            poll_interval=_env_float('PAGECAST_POLL_INTERVAL', 2.0),
            max_concurrent_submissions=_env_int('PAGECAST_MAX_SUBMISSIONS', 8),
            max_concurrent_documents=_env_int('PAGECAST_MAX_DOCUMENTS', 4),
            queue_poll_interval=_env_float('PAGECAST_QUEUE_POLL_INTERVAL', 2.0),
            page_separator=separator or "\n\n",
        )


@dataclass
class PlayHTConfig:
    """Credentials and endpoint for the PlayHT synthesis API."""
    api_key: str = ""
    user_id: str = ""
    api_url: str = "https://api.play.ai/api/v1/tts"
    model: str = "PlayDialog"
    request_timeout: float = 30.0

    @classmethod
    def from_env(cls):
        """Load configuration from PLAYHT_* environment variables."""
        return cls(
            api_key=os.getenv('PLAYHT_API_KEY', ''),
            user_id=os.getenv('PLAYHT_USER_ID', ''),
            api_url=os.getenv('PLAYHT_API_URL', '') or cls.api_url,
            model=os.getenv('PLAYHT_MODEL', '') or cls.model,
            request_timeout=_env_float('PLAYHT_TIMEOUT', 30.0),
        )
