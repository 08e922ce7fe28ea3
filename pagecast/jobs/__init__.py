"""
Document job engine for Pagecast.

This package turns the extracted text of a document into one asynchronous
synthesis job per page and tracks every page until the whole document has
audio. Documents and pages are persisted to SQLite so that a restarted
worker can pick up outstanding jobs.

Key Components:
- JobManager: Synchronous API for queueing documents and querying progress
- JobOrchestrator: Page records, concurrent dispatch and polling scopes
- JobPoller: Status polling of outstanding synthesis jobs
- RetryCoordinator: Re-dispatch of a single failed page
- DocumentWorker: Queue consumer that feeds the orchestrator
- DocumentStorage: SQLite persistence layer
- DocumentLogger: Structured per-document logging

Example Usage:
    from pagecast.jobs import JobManager

    manager = JobManager()
    document_id = manager.submit_document(
        owner="reader@example.com",
        extracted_text=text,
        voice_id="s3://voice-cloning/narrator.json",
        speed=1.0
    )

    progress = manager.get_file_progress(document_id, "reader@example.com")
    print(f"Progress: {progress.percentage:.0f}%")
"""

from .errors import (
    PagecastError,
    ValidationError,
    NotFoundError,
    DocumentNotFoundError,
    PageNotFoundError,
    PreconditionError,
    SubmissionError,
    SynthesisRejected,
    PollError
)

from .models import (
    Document,
    Page,
    PageUnit,
    PageStatus,
    SynthesisParams,
    ProgressEvent,
    FileProgress,
    PollResult,
    DocumentID,
    JobHandle
)

from .storage import DocumentStorage
from .logger import DocumentLogger, setup_logging
from .progress import ProgressSink, InMemoryProgressSink, ProgressBroadcaster, channel_name
from .poller import JobPoller
from .orchestrator import JobOrchestrator
from .retry import RetryCoordinator
from .manager import JobManager
from .worker import DocumentWorker, build_orchestrator, run_worker

__all__ = [
    # Errors
    'PagecastError',
    'ValidationError',
    'NotFoundError',
    'DocumentNotFoundError',
    'PageNotFoundError',
    'PreconditionError',
    'SubmissionError',
    'SynthesisRejected',
    'PollError',

    # Data models
    'Document',
    'Page',
    'PageUnit',
    'PageStatus',
    'SynthesisParams',
    'ProgressEvent',
    'FileProgress',
    'PollResult',
    'DocumentID',
    'JobHandle',

    # Core components
    'DocumentStorage',
    'DocumentLogger',
    'setup_logging',
    'ProgressSink',
    'InMemoryProgressSink',
    'ProgressBroadcaster',
    'channel_name',
    'JobPoller',
    'JobOrchestrator',
    'RetryCoordinator',
    'JobManager',

    # Worker
    'DocumentWorker',
    'build_orchestrator',
    'run_worker',
]
