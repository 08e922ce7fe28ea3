"""
Tests for status polling of submitted jobs.
"""

import asyncio
import sqlite3

from conftest import OWNER, completed, failed, processing
from pagecast.jobs import JobPoller, PageStatus, PollError, ProgressBroadcaster


def _poller(storage, client, sink):
    return JobPoller(storage, client, ProgressBroadcaster(sink), poll_interval=0.01)


def test_poll_until_terminal(storage, client, sink, processing_document):
    document_id, jobs = processing_document(["One", "Two"])
    client.script("job-p1", [processing(), completed("https://cdn/1.mp3")])
    client.script("job-p2", [processing(), processing(), failed("bad voice")])

    resolved = asyncio.run(_poller(storage, client, sink).poll(document_id, OWNER, jobs))

    assert resolved == {"job-p1": PageStatus.COMPLETED, "job-p2": PageStatus.FAILED}
    document = storage.get_document(document_id)
    assert document.get_page(1).audio_url == "https://cdn/1.mp3"
    assert document.get_page(2).error == "bad voice"
    assert document.processed_pages == 1
    assert document.processing_complete is False
    assert client.queries.count("job-p2") == 3


def test_transient_query_errors_are_retried(storage, client, sink, processing_document):
    document_id, jobs = processing_document(["One"])
    client.script("job-p1", [PollError("timeout"), PollError("502"), completed("https://cdn/1.mp3")])

    resolved = asyncio.run(_poller(storage, client, sink).poll(document_id, OWNER, jobs))

    assert resolved == {"job-p1": PageStatus.COMPLETED}
    page = storage.get_document(document_id).get_page(1)
    assert page.audio_status == PageStatus.COMPLETED
    assert page.error is None


def test_completion_without_url_keeps_polling(storage, client, sink, processing_document):
    document_id, jobs = processing_document(["One"])
    client.script("job-p1", [completed(None), completed("https://cdn/1.mp3")])

    asyncio.run(_poller(storage, client, sink).poll(document_id, OWNER, jobs))

    assert storage.get_document(document_id).get_page(1).audio_url == "https://cdn/1.mp3"
    assert client.queries == ["job-p1", "job-p1"]


def test_last_page_sets_completion_flag(storage, client, sink, processing_document):
    document_id, jobs = processing_document(["One", "Two", "Three"])

    asyncio.run(_poller(storage, client, sink).poll(document_id, OWNER, jobs))

    document = storage.get_document(document_id)
    assert document.processed_pages == 3
    assert document.processing_complete is True
    messages = [entry['message'] for entry in storage.get_logs(document_id)]
    assert messages.count("All pages processed, document complete") == 1


def test_cycle_event_lists_completed_jobs(storage, client, sink, processing_document):
    document_id, jobs = processing_document(["One", "Two"])
    client.script("job-p2", [processing(), completed("https://cdn/2.mp3")])

    asyncio.run(_poller(storage, client, sink).poll(document_id, OWNER, jobs))

    cycles = [e for e in sink.history(OWNER, document_id)
              if e.phase == "audio" and e.page_number is None]
    assert [e.completed_job_ids for e in cycles] == [["job-p1"], ["job-p1", "job-p2"]]
    assert [e.completed_pages for e in cycles] == [1, 2]
    assert cycles[-1].to_dict()['completedJobIds'] == ["job-p1", "job-p2"]


def test_deleted_document_stops_polling(storage, client, sink, processing_document):
    document_id, jobs = processing_document(["One"])
    client.script("job-p1", [processing()])
    poller = _poller(storage, client, sink)

    async def go():
        task = asyncio.get_running_loop().create_task(poller.poll(document_id, OWNER, jobs))
        await asyncio.sleep(0.05)
        storage.delete_document(document_id)
        return await asyncio.wait_for(task, timeout=5)

    assert asyncio.run(go()) is None


def test_check_completion_only_once(storage, client, sink, make_document):
    document_id = make_document()
    storage.set_pages(document_id, [])
    poller = _poller(storage, client, sink)

    async def go():
        return await asyncio.gather(*(poller.check_completion(document_id, OWNER) for _ in range(5)))

    assert sorted(asyncio.run(go())) == [False, False, False, False, True]


def test_store_error_is_retried_next_cycle(storage, client, sink, processing_document, monkeypatch):
    document_id, jobs = processing_document(["One", "Two"])
    client.script("job-p2", [processing(), completed("https://cdn/2.mp3")])
    complete_page = storage.complete_page
    calls = []

    def locked_once(*args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise sqlite3.OperationalError("database is locked")
        return complete_page(*args, **kwargs)

    monkeypatch.setattr(storage, "complete_page", locked_once)

    resolved = asyncio.run(_poller(storage, client, sink).poll(document_id, OWNER, jobs))

    assert resolved == {"job-p1": PageStatus.COMPLETED, "job-p2": PageStatus.COMPLETED}
    document = storage.get_document(document_id)
    assert [page.audio_status for page in document.pages] == [PageStatus.COMPLETED] * 2
    assert document.processed_pages == 2
    assert document.processing_complete is True
