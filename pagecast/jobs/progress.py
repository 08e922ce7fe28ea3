"""
Progress delivery.

Progress is a side effect: a sink that raises never affects the page state
that triggered the event.
"""

import logging
import threading
from collections import defaultdict
from typing import Callable, Dict, List, Optional

from .models import ProgressEvent, DocumentID

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[ProgressEvent], None]


def channel_name(owner: str, document_id: DocumentID) -> str:
    """Channel that subscribers of one document listen on."""
    return f"progress-{owner}-{document_id}"


class ProgressSink:
    """Delivers progress events to subscribers keyed by (owner, document)."""

    def publish(self, owner: str, document_id: DocumentID, event: ProgressEvent):
        raise NotImplementedError


class InMemoryProgressSink(ProgressSink):
    """
    Process-local sink with callback subscriptions.

    Keeps the history of published events per channel so late subscribers
    and tests can inspect what was sent.
    """

    def __init__(self, history_limit: Optional[int] = 1000):
        self.history_limit = history_limit
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[ProgressCallback]] = defaultdict(list)
        self._history: Dict[str, List[ProgressEvent]] = defaultdict(list)

    def subscribe(self, owner: str, document_id: DocumentID, callback: ProgressCallback):
        with self._lock:
            self._subscribers[channel_name(owner, document_id)].append(callback)

    def unsubscribe(self, owner: str, document_id: DocumentID, callback: ProgressCallback):
        with self._lock:
            callbacks = self._subscribers.get(channel_name(owner, document_id), [])
            if callback in callbacks:
                callbacks.remove(callback)

    def history(self, owner: str, document_id: DocumentID) -> List[ProgressEvent]:
        with self._lock:
            return list(self._history.get(channel_name(owner, document_id), []))

    def publish(self, owner: str, document_id: DocumentID, event: ProgressEvent):
        channel = channel_name(owner, document_id)
        with self._lock:
            history = self._history[channel]
            history.append(event)
            if self.history_limit is not None and len(history) > self.history_limit:
                del history[:len(history) - self.history_limit]
            callbacks = list(self._subscribers.get(channel, []))

        for callback in callbacks:
            callback(event)


class ProgressBroadcaster:
    """Builds progress events and hands them to a sink, best-effort."""

    def __init__(self, sink: Optional[ProgressSink] = None):
        self.sink = sink or InMemoryProgressSink()

    def emit(
        self,
        owner: str,
        document_id: DocumentID,
        phase: str,
        completed_pages: int,
        total_pages: int,
        page_number: Optional[int] = None,
        completed_job_ids: Optional[List[str]] = None
    ) -> Optional[ProgressEvent]:
        """
        Publish a progress event.

        Returns:
            The event, or None if it could not be built or delivered
        """
        event = ProgressEvent(
            phase=phase,
            completed_pages=min(completed_pages, total_pages),
            total_pages=total_pages,
            page_number=page_number,
            completed_job_ids=completed_job_ids,
        )
        try:
            self.sink.publish(owner, document_id, event)
        except Exception:
            logger.exception("Failed to deliver progress for document %s", document_id)
            return None
        return event
