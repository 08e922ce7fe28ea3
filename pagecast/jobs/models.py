"""
Data models for the document job engine.

Documents and pages are persisted to SQLite; nested values (synthesis
parameters) are stored as JSON strings.
"""

import json
import time
import uuid
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Optional, Dict, Any, List

from .errors import ValidationError


MIN_SPEED = 0.1
MAX_SPEED = 5.0
MIN_TEMPERATURE = 0.0
MAX_TEMPERATURE = 2.0


class PageStatus(str, Enum):
    """Status of a page's text extraction or audio generation."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (PageStatus.COMPLETED, PageStatus.FAILED)


@dataclass
class SynthesisParams:
    """Voice parameters shared by every page of a document."""
    voice_id: str
    temperature: Optional[float] = None
    speed: float = 1.0

    def validate(self):
        """
        Check the parameter ranges.

        Raises:
            ValidationError: If any parameter is out of range
        """
        if not self.voice_id or not str(self.voice_id).strip():
            raise ValidationError("voice_id is required")

        try:
            speed = float(self.speed)
        except (TypeError, ValueError):
            raise ValidationError(f"speed must be a number, got {self.speed!r}")
        if not MIN_SPEED <= speed <= MAX_SPEED:
            raise ValidationError(f"speed must be between {MIN_SPEED} and {MAX_SPEED}, got {speed}")

        if self.temperature is not None:
            try:
                temperature = float(self.temperature)
            except (TypeError, ValueError):
                raise ValidationError(f"temperature must be a number, got {self.temperature!r}")
            if not MIN_TEMPERATURE <= temperature <= MAX_TEMPERATURE:
                raise ValidationError(
                    f"temperature must be between {MIN_TEMPERATURE} and {MAX_TEMPERATURE}, "
                    f"got {temperature}"
                )

    def to_json(self) -> str:
        """Serialize to JSON string."""
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, json_str: str) -> 'SynthesisParams':
        """Deserialize from JSON string."""
        return cls(**json.loads(json_str))


@dataclass
class PageUnit:
    """One segment of extracted text, numbered from 1 in text order."""
    page_number: int
    text: str


@dataclass
class Page:
    """Persisted state of a single page."""
    page_number: int
    text: str = ""
    audio_url: Optional[str] = None
    text_status: PageStatus = PageStatus.PENDING
    audio_status: PageStatus = PageStatus.PENDING
    job_id: Optional[str] = None
    error: Optional[str] = None
    updated_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'page_number': self.page_number,
            'text': self.text,
            'audio_url': self.audio_url,
            'text_status': self.text_status.value,
            'audio_status': self.audio_status.value,
            'job_id': self.job_id,
            'error': self.error,
            'updated_at': self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Page':
        return cls(
            page_number=data['page_number'],
            text=data.get('text') or "",
            audio_url=data.get('audio_url'),
            text_status=PageStatus(data['text_status']),
            audio_status=PageStatus(data['audio_status']),
            job_id=data.get('job_id'),
            error=data.get('error'),
            updated_at=data.get('updated_at') or time.time(),
        )

    def status_summary(self) -> Dict[str, Any]:
        """Per-page status view exposed to the API layer (no text)."""
        return {
            'page_number': self.page_number,
            'text_status': self.text_status.value,
            'audio_status': self.audio_status.value,
            'audio_url': self.audio_url,
            'error': self.error,
        }


@dataclass
class Document:
    """
    A document and its pages.

    This is the main data model that gets persisted to the database.
    processed_pages counts completed pages only; processing_complete is set
    once every page has audio.
    """
    # Identity
    document_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    owner: str = ""
    created_at: float = field(default_factory=time.time)

    # Source
    file_name: str = ""
    file_size: Optional[int] = None
    source_text: Optional[str] = None

    # Synthesis
    params: SynthesisParams = field(default_factory=lambda: SynthesisParams(voice_id=""))

    # Progress
    total_pages: int = 0
    processed_pages: int = 0
    processing_complete: bool = False
    claimed_at: Optional[float] = None
    completed_at: Optional[float] = None

    pages: List[Page] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a row dictionary (pages are stored separately)."""
        return {
            'document_id': self.document_id,
            'owner': self.owner,
            'created_at': self.created_at,
            'file_name': self.file_name,
            'file_size': self.file_size,
            'source_text': self.source_text,
            'params': self.params.to_json(),
            'total_pages': self.total_pages,
            'processed_pages': self.processed_pages,
            'processing_complete': 1 if self.processing_complete else 0,
            'claimed_at': self.claimed_at,
            'completed_at': self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], pages: Optional[List[Page]] = None) -> 'Document':
        return cls(
            document_id=data['document_id'],
            owner=data['owner'],
            created_at=data['created_at'],
            file_name=data.get('file_name') or "",
            file_size=data.get('file_size'),
            source_text=data.get('source_text'),
            params=SynthesisParams.from_json(data['params']),
            total_pages=data['total_pages'],
            processed_pages=data['processed_pages'],
            processing_complete=bool(data['processing_complete']),
            claimed_at=data.get('claimed_at'),
            completed_at=data.get('completed_at'),
            pages=pages or [],
        )

    def get_page(self, page_number: int) -> Optional[Page]:
        for page in self.pages:
            if page.page_number == page_number:
                return page
        return None

    def failed_pages(self) -> List[int]:
        """Page numbers whose audio generation failed."""
        return [p.page_number for p in self.pages if p.audio_status == PageStatus.FAILED]

    def is_settled(self) -> bool:
        """True when every page reached a terminal audio status."""
        if len(self.pages) < self.total_pages:
            return False
        return all(p.audio_status.is_terminal for p in self.pages)

    def progress_percentage(self) -> float:
        if self.total_pages > 0:
            return (self.processed_pages / self.total_pages) * 100
        return 100.0 if self.processing_complete else 0.0


@dataclass
class ProgressEvent:
    """Progress notification delivered to subscribers of a document."""
    phase: str  # "extraction" or "audio"
    completed_pages: int
    total_pages: int
    page_number: Optional[int] = None
    completed_job_ids: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            'phase': self.phase,
            'completedPages': self.completed_pages,
            'totalPages': self.total_pages,
        }
        if self.page_number is not None:
            data['pageNumber'] = self.page_number
        if self.completed_job_ids is not None:
            data['completedJobIds'] = list(self.completed_job_ids)
        return data


@dataclass
class FileProgress:
    """Answer to a progress query for one document."""
    total_pages: int
    processed_pages: int
    processing_complete: bool
    settled: bool
    percentage: float
    failed_pages: List[int] = field(default_factory=list)
    pages: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_document(cls, document: Document) -> 'FileProgress':
        return cls(
            total_pages=document.total_pages,
            processed_pages=document.processed_pages,
            processing_complete=document.processing_complete,
            settled=document.is_settled(),
            percentage=document.progress_percentage(),
            failed_pages=document.failed_pages(),
            pages=[p.status_summary() for p in document.pages],
        )


@dataclass
class PollResult:
    """Status of an external synthesis job."""
    status: PageStatus
    url: Optional[str] = None
    error: Optional[str] = None


# Type aliases for clarity
DocumentID = str
JobHandle = str
