"""
Shared pytest fixtures and configuration for Pagecast tests
"""
import sys
import threading
from pathlib import Path

import pytest

# Add project root to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from pagecast.config import PipelineConfig
from pagecast.jobs import (
    Document,
    DocumentStorage,
    InMemoryProgressSink,
    JobOrchestrator,
    Page,
    PageStatus,
    PollResult,
    ProgressBroadcaster,
    SynthesisParams,
    SynthesisRejected
)
from pagecast.tts import TTSClient

OWNER = "reader@example.com"
VOICE = "s3://voice-cloning/narrator.json"


def audio_url(handle):
    return f"https://cdn.example.com/{handle}.mp3"


class FakeTTSClient(TTSClient):
    """
    Scripted synthesis provider.

    Each job gets a list of poll results when it is submitted: the results
    are returned in order and the last one repeats. An exception instance in
    the list is raised instead of returned. Jobs with no script complete on
    the first query.
    """

    def __init__(self):
        self.outcomes = {}   # page text -> poll script for jobs submitted with it
        self.reject = set()  # page texts whose submission is refused
        self.submitted = []
        self.queries = []
        self._scripts = {}
        self._lock = threading.Lock()
        self._counter = 0

    def script(self, handle, results):
        with self._lock:
            self._scripts[handle] = list(results)

    def submit(self, text, voice_id, temperature, speed):
        with self._lock:
            if text in self.reject:
                raise SynthesisRejected(f"Synthesis request rejected (400): bad text {text!r}", status_code=400)
            self._counter += 1
            handle = f"job-{self._counter}"
            self.submitted.append({
                'handle': handle,
                'text': text,
                'voice_id': voice_id,
                'temperature': temperature,
                'speed': speed,
            })
            if text in self.outcomes:
                self._scripts[handle] = list(self.outcomes[text])
            return handle

    def query_status(self, job_id):
        with self._lock:
            self.queries.append(job_id)
            script = self._scripts.get(job_id)
            if not script:
                result = PollResult(status=PageStatus.COMPLETED, url=audio_url(job_id))
            elif len(script) > 1:
                result = script.pop(0)
            else:
                result = script[0]
        if isinstance(result, Exception):
            raise result
        return result

    def submitted_texts(self):
        with self._lock:
            return [entry['text'] for entry in self.submitted]


def completed(url=None):
    return PollResult(status=PageStatus.COMPLETED, url=url)


def failed(error="voice model crashed"):
    return PollResult(status=PageStatus.FAILED, error=error)


def processing():
    return PollResult(status=PageStatus.PROCESSING)


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "documents.db")


@pytest.fixture
def storage(db_path):
    storage = DocumentStorage(db_path)
    yield storage
    storage.close()


@pytest.fixture
def config(db_path):
    """Pipeline configuration with short intervals for tests"""
    return PipelineConfig(db_path=db_path, poll_interval=0.01, queue_poll_interval=0.01)


@pytest.fixture
def client():
    return FakeTTSClient()


@pytest.fixture
def sink():
    return InMemoryProgressSink()


@pytest.fixture
def orchestrator(storage, client, sink, config):
    return JobOrchestrator(storage, client, ProgressBroadcaster(sink), config)


@pytest.fixture
def make_document(storage):
    """Factory that stores a document shell and returns its id"""
    def _make(source_text=None, owner=OWNER, file_name="book.pdf", created_at=None, **params):
        document = Document(
            owner=owner,
            file_name=file_name,
            source_text=source_text,
            params=SynthesisParams(voice_id=params.get('voice_id', VOICE),
                                   temperature=params.get('temperature'),
                                   speed=params.get('speed', 1.0)),
        )
        if created_at is not None:
            document.created_at = created_at
        return storage.create_document_shell(document)
    return _make


@pytest.fixture
def processing_document(storage, make_document):
    """Factory for a document whose pages are already submitted as job-p<n>"""
    def _make(texts):
        document_id = make_document()
        storage.set_pages(document_id, [
            Page(page_number=i, text=text, text_status=PageStatus.COMPLETED,
                 audio_status=PageStatus.PROCESSING, job_id=f"job-p{i}")
            for i, text in enumerate(texts, start=1)
        ])
        jobs = {f"job-p{i}": i for i in range(1, len(texts) + 1)}
        return document_id, jobs
    return _make
