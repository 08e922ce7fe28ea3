"""
High-level document management API.

Provides a synchronous interface for the API layer: queue documents for
the worker and answer progress queries.
"""

from typing import Optional, List, Dict, Any

from .errors import DocumentNotFoundError, ValidationError
from .logger import DocumentLogger
from .models import Document, FileProgress, SynthesisParams, DocumentID
from .storage import DocumentStorage


class JobManager:
    """
    High-level API for document management.

    Example:
        manager = JobManager()

        document_id = manager.submit_document(
            owner="reader@example.com",
            extracted_text=text,
            voice_id="s3://voice-cloning/narrator.json",
            speed=1.0
        )

        progress = manager.get_file_progress(document_id, "reader@example.com")
        print(f"{progress.processed_pages}/{progress.total_pages} pages")
    """

    def __init__(self, db_path: Optional[str] = None, storage: Optional[DocumentStorage] = None):
        """
        Initialize document manager.

        Args:
            db_path: Path to SQLite database (None for default)
            storage: Existing storage to share (overrides db_path)
        """
        self.storage = storage or DocumentStorage(db_path)

    def submit_document(
        self,
        owner: str,
        extracted_text: str,
        voice_id: str,
        temperature: Optional[float] = None,
        speed: float = 1.0,
        file_name: str = "",
        file_size: Optional[int] = None
    ) -> DocumentID:
        """
        Queue a document for audio generation.

        The document is created immediately with zero pages; the worker
        segments the text and dispatches the pages.

        Args:
            owner: Identity of the uploading user
            extracted_text: Text already extracted from the source document
            voice_id: Provider voice identifier
            temperature: Sampling temperature in [0, 2], or None
            speed: Speech speed in [0.1, 5]
            file_name: Original file name
            file_size: Original file size in bytes

        Returns:
            Document ID for tracking

        Raises:
            ValidationError: If parameters are invalid
        """
        if not owner or not owner.strip():
            raise ValidationError("owner is required")
        if extracted_text is None:
            raise ValidationError("extracted_text is required")

        params = SynthesisParams(voice_id=voice_id, temperature=temperature, speed=speed)
        params.validate()
        params.speed = float(params.speed)
        if params.temperature is not None:
            params.temperature = float(params.temperature)

        document = Document(
            owner=owner,
            file_name=file_name,
            file_size=file_size,
            source_text=extracted_text,
            params=params,
        )
        document_id = self.storage.create_document_shell(document)

        DocumentLogger(document_id, self.storage).info(
            f"Document queued: {file_name or document_id}",
            metadata={
                'file_name': file_name,
                'file_size': file_size,
                'voice_id': voice_id,
                'speed': params.speed,
                'temperature': params.temperature,
            }
        )

        return document_id

    def get_document(self, document_id: DocumentID, owner: str) -> Document:
        """
        Get a document with its pages.

        Raises:
            DocumentNotFoundError: If the document does not exist for this owner
        """
        document = self.storage.get_document(document_id, owner)
        if document is None:
            raise DocumentNotFoundError(document_id)
        return document

    def get_file_progress(self, document_id: DocumentID, owner: str) -> FileProgress:
        """
        Get counts, completion flag and per-page status of a document.

        Raises:
            DocumentNotFoundError: If the document does not exist for this owner
        """
        return FileProgress.from_document(self.get_document(document_id, owner))

    def check_processing_status(self, document_id: DocumentID, owner: str) -> Dict[str, Any]:
        """
        Get the completion flag and percentage of processed pages.

        Raises:
            DocumentNotFoundError: If the document does not exist for this owner
        """
        document = self.get_document(document_id, owner)
        return {
            'processing_complete': document.processing_complete,
            'progress': document.progress_percentage(),
        }

    def list_documents(self, owner: str, limit: Optional[int] = None) -> List[Document]:
        """List an owner's documents, newest first (pages not loaded)."""
        return self.storage.list_documents(owner, limit=limit)

    def delete_document(self, document_id: DocumentID, owner: str):
        """
        Delete a document and all associated data.

        Polling for the document stops on its next cycle.

        Raises:
            DocumentNotFoundError: If the document does not exist for this owner
        """
        if not self.storage.delete_document(document_id, owner):
            raise DocumentNotFoundError(document_id)

    def get_document_logs(
        self,
        document_id: DocumentID,
        owner: str,
        level: Optional[str] = None,
        limit: int = 100
    ) -> List[Dict[str, Any]]:
        """
        Get log entries for a document, newest first.

        Raises:
            DocumentNotFoundError: If the document does not exist for this owner
        """
        self.get_document(document_id, owner)
        return self.storage.get_logs(document_id, level=level, limit=limit)

    def close(self):
        """Close database connections."""
        self.storage.close()
