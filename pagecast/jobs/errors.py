"""
Exception hierarchy for the document job engine.

Only ValidationError, NotFoundError and PreconditionError are raised to
callers of the mutating entry points. SubmissionError and PollError are
raised by synthesis clients and turned into page state or log entries by
the orchestrator and poller.
"""


class PagecastError(Exception):
    """Base class for all engine errors."""


class ValidationError(PagecastError, ValueError):
    """Bad parameters supplied by the caller. Nothing was mutated."""


class NotFoundError(PagecastError, LookupError):
    """A document or page does not exist or belongs to another owner."""


class DocumentNotFoundError(NotFoundError):
    def __init__(self, document_id: str):
        super().__init__(f"Document not found: {document_id}")
        self.document_id = document_id


class PageNotFoundError(NotFoundError):
    def __init__(self, document_id: str, page_number: int):
        super().__init__(f"Page {page_number} not found in document {document_id}")
        self.document_id = document_id
        self.page_number = page_number


class PreconditionError(PagecastError):
    """The requested operation is not allowed in the current state."""


class SubmissionError(PagecastError):
    """The synthesis provider rejected or could not accept a job."""


class SynthesisRejected(SubmissionError):
    """
    Raised by a TTS client when a submission fails.

    Carries the HTTP status code when the provider answered at all.
    """

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code


class PollError(PagecastError):
    """Transient failure while querying a job handle."""
