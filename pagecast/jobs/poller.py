"""
Status polling for outstanding synthesis jobs.

A poller drives one scope of (job handle -> page) pairs to terminal states.
Each document gets its own scope from the orchestrator; a retried page gets
a fresh single-page scope.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from .errors import NotFoundError
from .executor import run_blocking
from .logger import DocumentLogger
from .models import PageStatus, PollResult, DocumentID, JobHandle
from .progress import ProgressBroadcaster
from .storage import DocumentStorage

logger = logging.getLogger(__name__)


class JobPoller:
    """
    Queries job handles on a fixed interval until each one resolves.

    Features:
    - Concurrent status queries per cycle
    - Atomic page completion and processed-page counting in the store
    - Progress event per page transition and per cycle
    - Transient query errors retried on the next cycle
    - Silent termination when the document is deleted
    """

    def __init__(
        self,
        storage: DocumentStorage,
        client,
        broadcaster: ProgressBroadcaster,
        poll_interval: float = 2.0
    ):
        """
        Initialize poller.

        Args:
            storage: Document store
            client: TTSClient used to query job status
            broadcaster: Progress broadcaster
            poll_interval: Seconds between cycles
        """
        self.storage = storage
        self.client = client
        self.broadcaster = broadcaster
        self.poll_interval = poll_interval

    async def poll(
        self,
        document_id: DocumentID,
        owner: str,
        jobs: Dict[JobHandle, int]
    ) -> Optional[Dict[JobHandle, PageStatus]]:
        """
        Poll every handle in the scope until it reaches a terminal state.

        Args:
            document_id: Document the pages belong to
            owner: Owner identity (progress channel key)
            jobs: Mapping of job handle to page number

        Returns:
            Final status per handle, or None if the document disappeared
        """
        pending = dict(jobs)
        resolved: Dict[JobHandle, PageStatus] = {}
        completed_job_ids: List[JobHandle] = []
        doc_logger = DocumentLogger(document_id, self.storage)

        logger.debug("Polling %d job(s) for document %s", len(pending), document_id)

        while pending:
            handles = list(pending)
            try:
                outcomes = await asyncio.gather(*(
                    self._check(document_id, owner, handle, pending[handle], doc_logger)
                    for handle in handles
                ))
            except NotFoundError:
                logger.info("Document %s no longer exists, stopping poll", document_id)
                return None

            for handle, status in zip(handles, outcomes):
                if status is None:
                    continue
                del pending[handle]
                resolved[handle] = status
                if status == PageStatus.COMPLETED:
                    completed_job_ids.append(handle)

            counts = await run_blocking(self.storage.get_progress_counts, document_id)
            if counts is None:
                logger.info("Document %s no longer exists, stopping poll", document_id)
                return None

            processed, total = counts
            self.broadcaster.emit(
                owner, document_id, "audio",
                completed_pages=processed,
                total_pages=total,
                completed_job_ids=list(completed_job_ids)
            )

            if pending:
                await asyncio.sleep(self.poll_interval)

        return resolved

    async def _check(
        self,
        document_id: DocumentID,
        owner: str,
        handle: JobHandle,
        page_number: int,
        doc_logger: DocumentLogger
    ) -> Optional[PageStatus]:
        """
        Query one handle and apply its transition.

        Returns:
            Terminal status, or None while the job is still in flight
        """
        try:
            result: PollResult = await run_blocking(self.client.query_status, handle)
        except Exception as e:
            logger.warning(
                "Error polling job %s for page %d of document %s: %s",
                handle, page_number, document_id, e
            )
            return None

        try:
            return await self._apply(document_id, owner, handle, page_number, result, doc_logger)
        except NotFoundError:
            raise
        except Exception as e:
            logger.warning(
                "Error recording status of job %s for page %d of document %s: %s",
                handle, page_number, document_id, e
            )
            return None

    async def _apply(
        self,
        document_id: DocumentID,
        owner: str,
        handle: JobHandle,
        page_number: int,
        result: PollResult,
        doc_logger: DocumentLogger
    ) -> Optional[PageStatus]:
        if result.status == PageStatus.COMPLETED:
            if not result.url:
                logger.warning("Job %s reported completion without an audio URL", handle)
                return None
            changed = await run_blocking(
                self.storage.complete_page, document_id, page_number, result.url, handle
            )
            if changed:
                await run_blocking(doc_logger.log_page_completed, page_number, handle, result.url)
                await self._emit_page(document_id, owner, page_number, [handle])
            # also after a re-query, in case the first attempt stopped after counting
            await self.check_completion(document_id, owner)
            return PageStatus.COMPLETED

        if result.status == PageStatus.FAILED:
            error = result.error or f"Synthesis job {handle} failed"
            changed = await run_blocking(
                self.storage.fail_page, document_id, page_number, error, handle
            )
            if changed:
                await run_blocking(doc_logger.log_page_failed, page_number, error, handle)
                await self._emit_page(document_id, owner, page_number)
            return PageStatus.FAILED

        return None

    async def _emit_page(
        self,
        document_id: DocumentID,
        owner: str,
        page_number: int,
        completed_job_ids: Optional[List[JobHandle]] = None
    ):
        counts = await run_blocking(self.storage.get_progress_counts, document_id)
        if counts is None:
            raise NotFoundError(f"Document not found: {document_id}")
        processed, total = counts
        self.broadcaster.emit(
            owner, document_id, "audio",
            completed_pages=processed,
            total_pages=total,
            page_number=page_number,
            completed_job_ids=completed_job_ids
        )

    async def check_completion(self, document_id: DocumentID, owner: str) -> bool:
        """
        Try to set the document's completion flag.

        Returns:
            True only for the call that flipped the flag
        """
        flipped = await run_blocking(self.storage.set_completion_flag, document_id)
        if flipped:
            doc_logger = DocumentLogger(document_id, self.storage)
            await run_blocking(doc_logger.info, "All pages processed, document complete")
        return flipped
