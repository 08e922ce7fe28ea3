"""
Per-document job orchestration.

The orchestrator writes a document's page records, submits one synthesis
job per page and hands the resulting handles to a polling scope it owns.
Persisted page state stays the single source of truth: ``recover`` rebuilds
outstanding work from the store after a restart.
"""

import asyncio
import logging
from collections import defaultdict
from functools import partial
from typing import Optional, List, Dict, Set, Tuple

from ..config import PipelineConfig
from .errors import NotFoundError, DocumentNotFoundError, PreconditionError
from .executor import run_blocking
from .logger import DocumentLogger
from .models import (
    Page,
    PageUnit,
    PageStatus,
    SynthesisParams,
    DocumentID,
    JobHandle
)
from .poller import JobPoller
from .progress import ProgressBroadcaster
from .storage import DocumentStorage

logger = logging.getLogger(__name__)


class JobOrchestrator:
    """
    Drives every page of a document from text to audio.

    Example:
        orchestrator = JobOrchestrator(storage, PlayHTClient())
        await orchestrator.start_processing(
            document_id, "reader@example.com", split_pages(text),
            voice_id="s3://voice", temperature=None, speed=1.0
        )
        await orchestrator.wait_idle(document_id)
    """

    def __init__(
        self,
        storage: DocumentStorage,
        client,
        broadcaster: Optional[ProgressBroadcaster] = None,
        config: Optional[PipelineConfig] = None
    ):
        """
        Initialize orchestrator.

        Args:
            storage: Document store
            client: TTSClient used for submissions and status queries
            broadcaster: Progress broadcaster (in-memory sink if None)
            config: Pipeline configuration (defaults if None)
        """
        self.storage = storage
        self.client = client
        self.broadcaster = broadcaster or ProgressBroadcaster()
        self.config = config or PipelineConfig()
        self.poller = JobPoller(storage, client, self.broadcaster, self.config.poll_interval)

        # document_id -> polling tasks currently running for it
        self._scopes: Dict[DocumentID, Set[asyncio.Task]] = {}

    async def start_processing(
        self,
        document_id: DocumentID,
        owner: str,
        page_units: List[PageUnit],
        voice_id: str,
        temperature: Optional[float],
        speed: float
    ) -> Optional[asyncio.Task]:
        """
        Create page records, dispatch all pages and start polling.

        Parameters are trusted: callers validate them before queueing.

        Returns:
            The polling task for the document, or None if nothing was
            submitted successfully (or there were no pages)

        Raises:
            DocumentNotFoundError: If the document does not exist
            PreconditionError: If the document already has pages
        """
        document = await run_blocking(self.storage.get_document, document_id, owner)
        if document is None:
            raise DocumentNotFoundError(document_id)
        if document.pages or document.processing_complete:
            raise PreconditionError(f"Document {document_id} has already been processed")

        params = SynthesisParams(voice_id=voice_id, temperature=temperature, speed=speed)
        pages = [Page(page_number=unit.page_number, text=unit.text) for unit in page_units]
        doc_logger = DocumentLogger(document_id, self.storage)

        await run_blocking(self.storage.set_pages, document_id, pages)
        await run_blocking(
            doc_logger.info,
            f"Segmented into {len(pages)} pages",
            {"total_pages": len(pages), "voice_id": voice_id, "speed": speed, "temperature": temperature}
        )
        self.broadcaster.emit(owner, document_id, "extraction", completed_pages=0, total_pages=len(pages))

        if not pages:
            await self.poller.check_completion(document_id, owner)
            self.broadcaster.emit(owner, document_id, "audio", completed_pages=0, total_pages=0)
            return None

        try:
            jobs = await self._dispatch(document_id, owner, pages, params, doc_logger)
        except NotFoundError:
            logger.info("Document %s was deleted during dispatch", document_id)
            return None

        if not jobs:
            await run_blocking(doc_logger.warning, "No page could be submitted for synthesis")
            return None

        return self.watch(document_id, owner, jobs)

    async def _dispatch(
        self,
        document_id: DocumentID,
        owner: str,
        pages: List[Page],
        params: SynthesisParams,
        doc_logger: DocumentLogger,
        total_pages: Optional[int] = None
    ) -> Dict[JobHandle, int]:
        """
        Fan out one submission per page.

        A page whose dispatch raises is logged and left in its stored state
        for recovery; the other pages' handles are still returned.

        Returns:
            Mapping of job handle to page number

        Raises:
            NotFoundError: If the document disappeared during dispatch
        """
        semaphore = asyncio.Semaphore(self.config.max_concurrent_submissions)
        total = len(pages) if total_pages is None else total_pages
        extracted = total - len(pages)

        async def dispatch_one(page: Page) -> Optional[Tuple[JobHandle, int]]:
            nonlocal extracted
            # text must be durable before the job exists
            await run_blocking(
                self.storage.update_page_fields,
                document_id, page.page_number,
                text=page.text, text_status=PageStatus.COMPLETED
            )
            extracted += 1
            self.broadcaster.emit(
                owner, document_id, "extraction",
                completed_pages=extracted,
                total_pages=total,
                page_number=page.page_number
            )

            async with semaphore:
                handle = await self.submit_page(
                    document_id, owner, page.page_number, page.text, params, doc_logger
                )
            return (handle, page.page_number) if handle else None

        results = await asyncio.gather(
            *(dispatch_one(page) for page in pages),
            return_exceptions=True
        )

        jobs: Dict[JobHandle, int] = {}
        missing: Optional[NotFoundError] = None
        for page, result in zip(pages, results):
            if isinstance(result, NotFoundError):
                missing = missing or result
            elif isinstance(result, Exception):
                logger.error(
                    "Dispatch of page %d of document %s failed; left for recovery",
                    page.page_number, document_id, exc_info=result
                )
            elif isinstance(result, BaseException):
                raise result
            elif result is not None:
                handle, page_number = result
                jobs[handle] = page_number

        if missing is not None:
            raise missing
        return jobs

    async def submit_page(
        self,
        document_id: DocumentID,
        owner: str,
        page_number: int,
        text: str,
        params: SynthesisParams,
        doc_logger: Optional[DocumentLogger] = None
    ) -> Optional[JobHandle]:
        """
        Submit one page and record the outcome on the page.

        A rejected submission moves only this page to 'failed'.

        Returns:
            Job handle, or None if the submission failed
        """
        doc_logger = doc_logger or DocumentLogger(document_id, self.storage)

        try:
            handle = await run_blocking(
                self.client.submit, text, params.voice_id, params.temperature, params.speed
            )
        except Exception as e:
            error = str(e) or type(e).__name__
            await run_blocking(self.storage.fail_page, document_id, page_number, error)
            await run_blocking(doc_logger.log_page_failed, page_number, error)
            await self._emit_audio(document_id, owner, page_number)
            return None

        await run_blocking(
            self.storage.update_page_fields,
            document_id, page_number,
            job_id=handle, audio_status=PageStatus.PROCESSING, error=None
        )
        await run_blocking(doc_logger.log_page_submitted, page_number, handle)
        return handle

    async def _emit_audio(self, document_id: DocumentID, owner: str, page_number: int):
        counts = await run_blocking(self.storage.get_progress_counts, document_id)
        if counts is None:
            return
        processed, total = counts
        self.broadcaster.emit(
            owner, document_id, "audio",
            completed_pages=processed, total_pages=total, page_number=page_number
        )

    # Polling scopes

    def watch(self, document_id: DocumentID, owner: str, jobs: Dict[JobHandle, int]) -> asyncio.Task:
        """Start an independent polling scope for the given handles."""
        task = asyncio.get_running_loop().create_task(
            self._run_scope(document_id, owner, jobs),
            name=f"poll-{document_id}"
        )
        self._scopes.setdefault(document_id, set()).add(task)
        task.add_done_callback(partial(self._scope_done, document_id))
        return task

    async def _run_scope(self, document_id: DocumentID, owner: str, jobs: Dict[JobHandle, int]):
        resolved = await self.poller.poll(document_id, owner, jobs)
        if resolved is None:
            return None

        failed = sorted(page for handle, page in jobs.items()
                        if resolved.get(handle) == PageStatus.FAILED)
        if failed:
            doc_logger = DocumentLogger(document_id, self.storage)
            await run_blocking(
                doc_logger.warning,
                f"Polling finished with {len(failed)} failed page(s)",
                {"failed_pages": failed}
            )
        return resolved

    def _scope_done(self, document_id: DocumentID, task: asyncio.Task):
        tasks = self._scopes.get(document_id)
        if tasks is not None:
            tasks.discard(task)
            if not tasks:
                del self._scopes[document_id]

        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Polling for document %s failed", document_id, exc_info=exc)

    def active_documents(self) -> List[DocumentID]:
        """Documents with at least one running polling scope."""
        return list(self._scopes)

    def is_active(self, document_id: DocumentID) -> bool:
        return document_id in self._scopes

    async def wait_idle(self, document_id: Optional[DocumentID] = None):
        """Wait until the document (or every document) has no polling scope."""
        while True:
            if document_id is None:
                tasks = [t for scope in self._scopes.values() for t in scope]
            else:
                tasks = list(self._scopes.get(document_id, ()))
            if not tasks:
                return
            await asyncio.gather(*tasks, return_exceptions=True)

    def cancel_document(self, document_id: DocumentID) -> int:
        """
        Cancel every polling scope of a document.

        Returns:
            Number of tasks cancelled
        """
        tasks = list(self._scopes.get(document_id, ()))
        for task in tasks:
            task.cancel()
        return len(tasks)

    async def delete_document(self, document_id: DocumentID, owner: str):
        """
        Stop polling and delete a document.

        Raises:
            DocumentNotFoundError: If the document does not exist for this owner
        """
        document = await run_blocking(self.storage.get_document, document_id, owner)
        if document is None:
            raise DocumentNotFoundError(document_id)

        tasks = list(self._scopes.get(document_id, ()))
        self.cancel_document(document_id)
        await run_blocking(self.storage.delete_document, document_id, owner)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def shutdown(self):
        """Cancel all polling scopes and wait for them to unwind."""
        tasks = [t for scope in self._scopes.values() for t in scope]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # Crash recovery

    async def recover(self) -> Dict[str, int]:
        """
        Rebuild outstanding work from the store.

        Pages in 'processing' with a job handle are polled again; pages with
        no handle yet are submitted. Documents claimed by a worker that died
        before writing pages are requeued. Documents whose last page was
        counted but whose completion flag was never set are flagged.

        Returns:
            Counts of resumed polls, dispatched pages, requeued documents
            and completed documents
        """
        requeued = await run_blocking(self.storage.release_stale_claims)
        outstanding = await run_blocking(self.storage.find_outstanding_pages)

        by_document: Dict[DocumentID, List[Page]] = defaultdict(list)
        owners: Dict[DocumentID, str] = {}
        for document_id, owner, page in outstanding:
            if self.is_active(document_id):
                continue
            by_document[document_id].append(page)
            owners[document_id] = owner

        resumed = 0
        dispatched = 0
        for document_id, pages in by_document.items():
            owner = owners[document_id]
            document = await run_blocking(self.storage.get_document, document_id)
            if document is None:
                continue

            jobs = {
                page.job_id: page.page_number for page in pages
                if page.audio_status == PageStatus.PROCESSING and page.job_id
            }
            resumed += len(jobs)

            unsubmitted = [page for page in pages if not page.job_id]
            if unsubmitted:
                doc_logger = DocumentLogger(document_id, self.storage)
                await run_blocking(
                    doc_logger.info,
                    f"Resubmitting {len(unsubmitted)} page(s) after restart"
                )
                try:
                    jobs.update(await self._dispatch(
                        document_id, owner, unsubmitted, document.params, doc_logger,
                        total_pages=document.total_pages
                    ))
                except NotFoundError:
                    continue
                dispatched += len(unsubmitted)

            if jobs:
                self.watch(document_id, owner, jobs)

        completed = 0
        for document_id, owner in await run_blocking(self.storage.find_uncompleted_documents):
            if await self.poller.check_completion(document_id, owner):
                completed += 1

        summary = {
            "resumed_polls": resumed,
            "dispatched_pages": dispatched,
            "requeued_documents": requeued,
            "completed_documents": completed,
        }
        if any(summary.values()):
            logger.info("Recovered outstanding work: %s", summary)
        return summary
