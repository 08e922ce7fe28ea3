"""
Single-page retry.

Re-dispatches one failed page without touching its siblings or the
document's completion flag; the page's new polling scope re-evaluates
completion once the job resolves.
"""

import asyncio
from typing import Optional

from .errors import DocumentNotFoundError, PageNotFoundError, PreconditionError
from .executor import run_blocking
from .logger import DocumentLogger
from .models import PageStatus, DocumentID
from .orchestrator import JobOrchestrator


class RetryCoordinator:
    """Retries failed pages through the orchestrator's submission path."""

    def __init__(self, orchestrator: JobOrchestrator):
        self.orchestrator = orchestrator
        self.storage = orchestrator.storage

    async def retry_page(
        self,
        document_id: DocumentID,
        page_number: int,
        owner: str
    ) -> Optional[asyncio.Task]:
        """
        Re-submit a failed page and start polling it.

        Args:
            document_id: Document ID
            page_number: 1-based page number
            owner: Identity that must own the document

        Returns:
            Polling task for the page, or None if re-submission failed
            (the page is back in 'failed' with the new error)

        Raises:
            DocumentNotFoundError: If the document does not exist for this owner
            PageNotFoundError: If the page does not exist
            PreconditionError: If the page is not in 'failed'
        """
        document = await run_blocking(self.storage.get_document, document_id, owner)
        if document is None:
            raise DocumentNotFoundError(document_id)

        page = document.get_page(page_number)
        if page is None:
            raise PageNotFoundError(document_id, page_number)

        if page.audio_status != PageStatus.FAILED:
            raise PreconditionError(
                f"Page {page_number} of document {document_id} is "
                f"{page.audio_status.value}, only failed pages can be retried"
            )

        # guarded again in the store so two concurrent retries cannot both pass
        reopened = await run_blocking(self.storage.reopen_failed_page, document_id, page_number)
        if not reopened:
            raise PreconditionError(f"Page {page_number} of document {document_id} is no longer failed")

        doc_logger = DocumentLogger(document_id, self.storage)
        await run_blocking(
            doc_logger.info,
            f"Retrying page {page_number}",
            {"page_number": page_number, "previous_error": page.error}
        )

        handle = await self.orchestrator.submit_page(
            document_id, owner, page_number, page.text, document.params, doc_logger
        )
        if handle is None:
            return None

        return self.orchestrator.watch(document_id, owner, {handle: page_number})
