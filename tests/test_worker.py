"""
Tests for the queue-consuming document worker.
"""

import asyncio

from conftest import OWNER, VOICE, failed
from pagecast.jobs import DocumentWorker, JobManager, PageStatus


def test_drain_processes_queue(orchestrator, storage, client):
    manager = JobManager(storage=storage)
    first = manager.submit_document(OWNER, "One\n\nTwo", VOICE)
    second = manager.submit_document(OWNER, "Three", VOICE, speed=0.5)
    empty = manager.submit_document(OWNER, "   ", VOICE)

    asyncio.run(DocumentWorker(orchestrator).drain())

    for document_id, pages in ((first, 2), (second, 1), (empty, 0)):
        document = storage.get_document(document_id)
        assert document.total_pages == pages
        assert document.processed_pages == pages
        assert document.processing_complete is True

    assert sorted(client.submitted_texts()) == ["One", "Three", "Two"]
    assert storage.claim_next_document() is None


def test_failed_document_does_not_stop_worker(orchestrator, storage, client):
    manager = JobManager(storage=storage)
    broken = manager.submit_document(OWNER, "Bad", VOICE)
    fine = manager.submit_document(OWNER, "Good", VOICE)
    client.reject.add("Bad")

    asyncio.run(DocumentWorker(orchestrator).drain())

    assert storage.get_document(broken).get_page(1).audio_status == PageStatus.FAILED
    assert storage.get_document(fine).processing_complete is True


def test_stale_claim_is_requeued(orchestrator, storage):
    manager = JobManager(storage=storage)
    document_id = manager.submit_document(OWNER, "One", VOICE)
    storage.claim_next_document()  # a worker died before writing pages

    asyncio.run(DocumentWorker(orchestrator).drain())

    assert storage.get_document(document_id).processing_complete is True


def test_already_processed_document_is_skipped(orchestrator, storage, client):
    manager = JobManager(storage=storage)
    document_id = manager.submit_document(OWNER, "One", VOICE)
    worker = DocumentWorker(orchestrator)
    asyncio.run(worker.drain())

    document = storage.get_document(document_id)
    assert asyncio.run(worker.process_document(document)) is None
    assert len(client.submitted) == 1


def test_deleted_document_is_skipped(orchestrator, storage, client):
    manager = JobManager(storage=storage)
    document_id = manager.submit_document(OWNER, "One", VOICE)
    document = storage.claim_next_document()
    manager.delete_document(document_id, OWNER)

    assert asyncio.run(DocumentWorker(orchestrator).process_document(document)) is None
    assert client.submitted == []


def test_run_until_stopped(orchestrator, storage, client):
    manager = JobManager(storage=storage)
    client.outcomes["Two"] = [failed("bad voice")]
    worker = DocumentWorker(orchestrator)

    async def go():
        task = asyncio.get_running_loop().create_task(worker.run())
        document_id = await asyncio.get_running_loop().run_in_executor(
            None, manager.submit_document, OWNER, "One\n\nTwo", VOICE
        )
        for _ in range(500):
            document = storage.get_document(document_id)
            if document.pages and document.is_settled():
                break
            await asyncio.sleep(0.01)
        worker.stop()
        await asyncio.wait_for(task, timeout=5)
        return document_id

    document_id = asyncio.run(go())

    document = storage.get_document(document_id)
    assert document.get_page(1).audio_status == PageStatus.COMPLETED
    assert document.get_page(2).audio_status == PageStatus.FAILED
    assert document.processing_complete is False
    assert worker.running is False
    assert orchestrator.active_documents() == []
