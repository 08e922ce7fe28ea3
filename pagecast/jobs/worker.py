"""
Background worker for processing queued documents.

The worker claims queued documents from the store, segments their text and
hands them to the orchestrator. Polling continues in the orchestrator's
per-document scopes after dispatch returns.
"""

import asyncio
import logging
import os
import signal
from typing import Optional, Set

from ..config import PipelineConfig, PlayHTConfig
from ..segmenter import PageSegmenter
from ..tts import PlayHTClient
from .errors import NotFoundError, PreconditionError
from .executor import run_blocking
from .logger import DocumentLogger, setup_logging
from .models import Document
from .orchestrator import JobOrchestrator
from .progress import ProgressBroadcaster
from .storage import DocumentStorage

logger = logging.getLogger(__name__)


class DocumentWorker:
    """
    Queue consumer for document processing.

    Features:
    - Polls the document queue continuously
    - Bounds the number of documents dispatching at once
    - Recovers outstanding pages from the store on start
    - Graceful shutdown
    """

    def __init__(
        self,
        orchestrator: JobOrchestrator,
        config: Optional[PipelineConfig] = None,
        segmenter: Optional[PageSegmenter] = None
    ):
        """
        Initialize worker.

        Args:
            orchestrator: Orchestrator that dispatches and polls pages
            config: Pipeline configuration (orchestrator's if None)
            segmenter: Page segmenter (configured separator if None)
        """
        self.orchestrator = orchestrator
        self.storage = orchestrator.storage
        self.config = config or orchestrator.config
        self.segmenter = segmenter or PageSegmenter(self.config.page_separator)

        self.worker_id = f"worker-{os.getpid()}"
        self.running = False
        self._wakeup: Optional[asyncio.Event] = None
        self._tasks: Set[asyncio.Task] = set()

    def stop(self):
        """Ask the run loop to exit after the current iteration."""
        logger.info("Worker %s stopping", self.worker_id)
        self.running = False
        if self._wakeup is not None:
            self._wakeup.set()

    async def run(self):
        """
        Run the worker loop until stop() is called.

        In-flight dispatches are awaited on shutdown; polling scopes are
        cancelled and picked up again by recovery on the next start.
        """
        logger.info("Worker %s starting", self.worker_id)
        self._wakeup = asyncio.Event()
        self.running = True

        await self.orchestrator.recover()
        slots = asyncio.Semaphore(self.config.max_concurrent_documents)

        try:
            while self.running:
                await slots.acquire()
                try:
                    document = await run_blocking(self.storage.claim_next_document)
                except Exception:
                    slots.release()
                    raise

                if document is None:
                    slots.release()
                    await self._sleep(self.config.queue_poll_interval)
                    continue

                task = asyncio.get_running_loop().create_task(self.process_document(document))
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)
                task.add_done_callback(lambda _: slots.release())
        finally:
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)
            await self.orchestrator.shutdown()
            logger.info("Worker %s shut down", self.worker_id)

    async def drain(self):
        """Process every queued document and wait until all polling finishes."""
        await self.orchestrator.recover()
        while True:
            document = await run_blocking(self.storage.claim_next_document)
            if document is None:
                break
            await self.process_document(document)
        await self.orchestrator.wait_idle()

    async def process_document(self, document: Document) -> Optional[asyncio.Task]:
        """
        Segment a claimed document and start processing it.

        Errors are recorded in the document's log; they never stop the worker.
        """
        units = self.segmenter.split(document.source_text or "")
        logger.info(
            "Processing document %s (%d pages) for %s",
            document.document_id, len(units), document.owner
        )

        try:
            return await self.orchestrator.start_processing(
                document.document_id,
                document.owner,
                units,
                document.params.voice_id,
                document.params.temperature,
                document.params.speed
            )
        except NotFoundError:
            logger.info("Document %s was deleted before processing", document.document_id)
        except PreconditionError as e:
            logger.warning("Skipping document %s: %s", document.document_id, e)
        except Exception as e:
            logger.exception("Unexpected error processing document %s", document.document_id)
            doc_logger = DocumentLogger(document.document_id, self.storage)
            await run_blocking(doc_logger.log_error_with_context, e, "document dispatch")
        return None

    async def _sleep(self, seconds: float):
        try:
            await asyncio.wait_for(self._wakeup.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass


def build_orchestrator(
    config: Optional[PipelineConfig] = None,
    client=None,
    broadcaster: Optional[ProgressBroadcaster] = None
) -> JobOrchestrator:
    """Wire storage, PlayHT client and broadcaster from configuration."""
    config = config or PipelineConfig.from_env()
    if client is None:
        client = PlayHTClient(PlayHTConfig.from_env())
    return JobOrchestrator(DocumentStorage(config.db_path), client, broadcaster, config)


async def _run(worker: DocumentWorker):
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(signum, worker.stop)
        except (NotImplementedError, RuntimeError):
            # not available on this platform / thread
            pass
    await worker.run()


def run_worker(config: Optional[PipelineConfig] = None):
    """
    Entry point for running the worker as a separate process.

    Args:
        config: Pipeline configuration (environment if None)
    """
    setup_logging()
    orchestrator = build_orchestrator(config)
    asyncio.run(_run(DocumentWorker(orchestrator)))


if __name__ == '__main__':
    run_worker()
