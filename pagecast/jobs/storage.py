"""
SQLite storage layer for documents and pages.

Provides thread-safe database operations for the job engine. Every method
that changes shared counters does so with a single SQL statement inside a
transaction, never with a read-modify-write in Python.
"""

import json
import sqlite3
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Optional, List, Dict, Any, Tuple

from .errors import DocumentNotFoundError, PageNotFoundError
from .models import Document, Page, PageStatus, DocumentID


# Columns of the pages table that callers may update directly.
PAGE_FIELDS = ('text', 'audio_url', 'text_status', 'audio_status', 'job_id', 'error')


class DocumentStorage:
    """
    SQLite-based storage for document persistence.

    Features:
    - Thread-local connections (safe to call from executor threads)
    - WAL mode for better concurrent access
    - Atomic per-page updates and counter increments
    - Atomic queue claims for the worker
    """

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize storage.

        Args:
            db_path: Path to SQLite database file. Defaults to ~/.pagecast/documents.db
        """
        if db_path is None:
            pagecast_dir = Path.home() / ".pagecast"
            pagecast_dir.mkdir(exist_ok=True)
            db_path = str(pagecast_dir / "documents.db")

        self.db_path = db_path
        self._local = threading.local()
        self._lock = threading.Lock()

        # every thread's connection, so close() can reach executor threads too
        self._connections: List[sqlite3.Connection] = []
        self._connections_lock = threading.Lock()
        self._generation = 0

        self._initialize_database()

    def _get_connection(self) -> sqlite3.Connection:
        """
        Get a thread-local database connection.

        Each thread gets its own connection for thread safety. A connection
        closed by close() is replaced on the thread's next call.
        """
        if getattr(self._local, 'generation', None) != self._generation:
            conn = sqlite3.connect(self.db_path, timeout=30, check_same_thread=False)
            conn.row_factory = sqlite3.Row

            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA foreign_keys=ON")

            with self._connections_lock:
                self._connections.append(conn)
                self._local.generation = self._generation
            self._local.connection = conn

        return self._local.connection

    @contextmanager
    def _transaction(self):
        """
        Context manager for database transactions.

        Automatically commits on success, rolls back on error.
        """
        conn = self._get_connection()
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def _initialize_database(self):
        """Initialize database schema from schema.sql."""
        schema_path = Path(__file__).parent / "schema.sql"

        with open(schema_path, 'r') as f:
            schema_sql = f.read()

        conn = self._get_connection()
        conn.executescript(schema_sql)
        conn.commit()

    @staticmethod
    def _document_exists(conn: sqlite3.Connection, document_id: DocumentID) -> bool:
        cursor = conn.execute(
            "SELECT 1 FROM documents WHERE document_id = ?", (document_id,)
        )
        return cursor.fetchone() is not None

    def _raise_missing_page(self, conn: sqlite3.Connection, document_id: DocumentID, page_number: int):
        if not self._document_exists(conn, document_id):
            raise DocumentNotFoundError(document_id)
        raise PageNotFoundError(document_id, page_number)

    def _page_exists(self, conn: sqlite3.Connection, document_id: DocumentID, page_number: int) -> bool:
        cursor = conn.execute(
            "SELECT 1 FROM pages WHERE document_id = ? AND page_number = ?",
            (document_id, page_number)
        )
        return cursor.fetchone() is not None

    # Document operations

    def create_document_shell(self, document: Document) -> DocumentID:
        """
        Persist a new document with zero counts and no pages.

        Args:
            document: Document to persist (its counts and pages are ignored)

        Returns:
            Document ID
        """
        row = document.to_dict()
        row.update(total_pages=0, processed_pages=0, processing_complete=0)

        with self._transaction() as conn:
            conn.execute("""
                INSERT INTO documents (
                    document_id, owner, created_at,
                    file_name, file_size, source_text,
                    params,
                    total_pages, processed_pages, processing_complete,
                    claimed_at, completed_at
                ) VALUES (
                    :document_id, :owner, :created_at,
                    :file_name, :file_size, :source_text,
                    :params,
                    :total_pages, :processed_pages, :processing_complete,
                    :claimed_at, :completed_at
                )
            """, row)

        return document.document_id

    def get_document(self, document_id: DocumentID, owner: Optional[str] = None) -> Optional[Document]:
        """
        Retrieve a document and its pages.

        Args:
            document_id: Document ID
            owner: If given, the document must belong to this owner

        Returns:
            Document instance or None if not found
        """
        conn = self._get_connection()

        query = "SELECT * FROM documents WHERE document_id = ?"
        params: List[Any] = [document_id]
        if owner is not None:
            query += " AND owner = ?"
            params.append(owner)

        row = conn.execute(query, params).fetchone()
        if row is None:
            return None

        page_rows = conn.execute(
            "SELECT * FROM pages WHERE document_id = ? ORDER BY page_number ASC",
            (document_id,)
        ).fetchall()

        return Document.from_dict(dict(row), [Page.from_dict(dict(r)) for r in page_rows])

    def get_progress_counts(self, document_id: DocumentID) -> Optional[Tuple[int, int]]:
        """
        Read (processed_pages, total_pages) without loading pages.

        Returns:
            Tuple of counts or None if the document does not exist
        """
        conn = self._get_connection()
        row = conn.execute(
            "SELECT processed_pages, total_pages FROM documents WHERE document_id = ?",
            (document_id,)
        ).fetchone()
        if row is None:
            return None
        return row['processed_pages'], row['total_pages']

    def list_documents(self, owner: str, limit: Optional[int] = None) -> List[Document]:
        """
        List an owner's documents, newest first, without their pages.

        Args:
            owner: Owner identity
            limit: Maximum number of documents to return
        """
        conn = self._get_connection()

        query = "SELECT * FROM documents WHERE owner = ? ORDER BY created_at DESC"
        params: List[Any] = [owner]
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        return [Document.from_dict(dict(row)) for row in conn.execute(query, params).fetchall()]

    def delete_document(self, document_id: DocumentID, owner: Optional[str] = None) -> bool:
        """
        Delete a document with its pages and logs.

        Returns:
            True if a document was deleted
        """
        query = "DELETE FROM documents WHERE document_id = ?"
        params: List[Any] = [document_id]
        if owner is not None:
            query += " AND owner = ?"
            params.append(owner)

        with self._transaction() as conn:
            cursor = conn.execute(query, params)
            return cursor.rowcount > 0

    def set_pages(self, document_id: DocumentID, pages: List[Page]):
        """
        Write total_pages and one row per page in a single transaction.

        Raises:
            DocumentNotFoundError: If the document does not exist
        """
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE documents
                SET total_pages = ?, processed_pages = 0, processing_complete = 0
                WHERE document_id = ?
            """, (len(pages), document_id))
            if cursor.rowcount == 0:
                raise DocumentNotFoundError(document_id)

            conn.execute("DELETE FROM pages WHERE document_id = ?", (document_id,))
            conn.executemany("""
                INSERT INTO pages (
                    document_id, page_number, text, audio_url,
                    text_status, audio_status, job_id, error, updated_at
                ) VALUES (
                    :document_id, :page_number, :text, :audio_url,
                    :text_status, :audio_status, :job_id, :error, :updated_at
                )
            """, [dict(page.to_dict(), document_id=document_id) for page in pages])

    # Page operations (atomic, single page)

    def update_page_fields(self, document_id: DocumentID, page_number: int, **fields):
        """
        Atomically update fields of one page.

        Args:
            document_id: Document ID
            page_number: 1-based page number
            **fields: Any of text, audio_url, text_status, audio_status, job_id, error

        Raises:
            NotFoundError: If the document or page does not exist
            ValueError: If an unknown field is passed
        """
        unknown = set(fields) - set(PAGE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown page fields: {sorted(unknown)}")
        if not fields:
            return

        values = {
            key: value.value if isinstance(value, PageStatus) else value
            for key, value in fields.items()
        }
        assignments = ", ".join(f"{key} = :{key}" for key in values)

        with self._transaction() as conn:
            cursor = conn.execute(f"""
                UPDATE pages SET {assignments}, updated_at = :updated_at
                WHERE document_id = :document_id AND page_number = :page_number
            """, dict(values, updated_at=time.time(), document_id=document_id, page_number=page_number))

            if cursor.rowcount == 0:
                self._raise_missing_page(conn, document_id, page_number)

    def increment_processed_count(self, document_id: DocumentID) -> bool:
        """
        Atomically add one to processed_pages, never past total_pages.

        Returns:
            True if the counter moved
        """
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE documents SET processed_pages = processed_pages + 1
                WHERE document_id = ? AND processed_pages < total_pages
            """, (document_id,))
            if cursor.rowcount == 0 and not self._document_exists(conn, document_id):
                raise DocumentNotFoundError(document_id)
            return cursor.rowcount > 0

    def complete_page(
        self,
        document_id: DocumentID,
        page_number: int,
        audio_url: str,
        job_id: Optional[str] = None
    ) -> bool:
        """
        Mark a processing page completed and count it, in one transaction.

        Only a page currently in 'processing' (and holding job_id, when
        given) is moved, so a handle that resolves twice is counted once.

        Returns:
            True if this call completed the page
        """
        query = """
            UPDATE pages
            SET audio_status = 'completed', audio_url = ?, job_id = NULL,
                error = NULL, updated_at = ?
            WHERE document_id = ? AND page_number = ? AND audio_status = 'processing'
        """
        params: List[Any] = [audio_url, time.time(), document_id, page_number]
        if job_id is not None:
            query += " AND job_id = ?"
            params.append(job_id)

        with self._transaction() as conn:
            cursor = conn.execute(query, params)
            if cursor.rowcount == 0:
                if not self._page_exists(conn, document_id, page_number):
                    self._raise_missing_page(conn, document_id, page_number)
                return False

            conn.execute("""
                UPDATE documents SET processed_pages = processed_pages + 1
                WHERE document_id = ? AND processed_pages < total_pages
            """, (document_id,))
            return True

    def fail_page(
        self,
        document_id: DocumentID,
        page_number: int,
        error: str,
        job_id: Optional[str] = None
    ) -> bool:
        """
        Mark a non-completed page failed and drop its job handle.

        Returns:
            True if this call failed the page
        """
        query = """
            UPDATE pages
            SET audio_status = 'failed', error = ?, job_id = NULL, updated_at = ?
            WHERE document_id = ? AND page_number = ? AND audio_status != 'completed'
        """
        params: List[Any] = [error or "Unknown error", time.time(), document_id, page_number]
        if job_id is not None:
            query += " AND job_id = ?"
            params.append(job_id)

        with self._transaction() as conn:
            cursor = conn.execute(query, params)
            if cursor.rowcount == 0:
                if not self._page_exists(conn, document_id, page_number):
                    self._raise_missing_page(conn, document_id, page_number)
                return False
            return True

    def reopen_failed_page(self, document_id: DocumentID, page_number: int) -> bool:
        """
        Move a failed page back to processing and clear its error.

        Returns:
            False if the page was not in 'failed' (nothing is changed)
        """
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE pages
                SET audio_status = 'processing', error = NULL, job_id = NULL, updated_at = ?
                WHERE document_id = ? AND page_number = ? AND audio_status = 'failed'
            """, (time.time(), document_id, page_number))
            if cursor.rowcount == 0:
                if not self._page_exists(conn, document_id, page_number):
                    self._raise_missing_page(conn, document_id, page_number)
                return False
            return True

    def set_completion_flag(self, document_id: DocumentID) -> bool:
        """
        Set processing_complete once every page has been processed.

        The flag is only written when processed_pages equals total_pages,
        compared inside the UPDATE itself, so concurrent callers cannot
        both see the transition.

        Returns:
            True for the single call that flipped the flag
        """
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE documents
                SET processing_complete = 1, completed_at = ?
                WHERE document_id = ?
                  AND processing_complete = 0
                  AND processed_pages = total_pages
            """, (time.time(), document_id))
            return cursor.rowcount > 0

    # Queue operations (atomic)

    def claim_next_document(self) -> Optional[Document]:
        """
        Claim the oldest queued document for processing.

        A document is queued while it has source text and no claim. Claims
        are made with a conditional UPDATE so two workers never claim the
        same document.

        Returns:
            Document instance or None if the queue is empty
        """
        with self._lock:
            while True:
                conn = self._get_connection()
                row = conn.execute("""
                    SELECT document_id FROM documents
                    WHERE claimed_at IS NULL AND source_text IS NOT NULL
                      AND processing_complete = 0
                    ORDER BY created_at ASC
                    LIMIT 1
                """).fetchone()
                if row is None:
                    return None

                document_id = row['document_id']
                with self._transaction() as conn:
                    cursor = conn.execute("""
                        UPDATE documents SET claimed_at = ?
                        WHERE document_id = ? AND claimed_at IS NULL
                    """, (time.time(), document_id))
                    claimed = cursor.rowcount > 0

                if claimed:
                    return self.get_document(document_id)

    def release_stale_claims(self) -> int:
        """
        Requeue claimed documents whose pages were never written.

        Returns:
            Number of documents requeued
        """
        with self._transaction() as conn:
            cursor = conn.execute("""
                UPDATE documents SET claimed_at = NULL
                WHERE claimed_at IS NOT NULL
                  AND total_pages = 0
                  AND processing_complete = 0
                  AND source_text IS NOT NULL
            """)
            return cursor.rowcount

    def find_outstanding_pages(self) -> List[Tuple[DocumentID, str, Page]]:
        """
        Find pages whose audio generation has not reached a terminal state.

        Returns:
            List of (document_id, owner, page) tuples
        """
        conn = self._get_connection()
        rows = conn.execute("""
            SELECT d.owner AS owner, p.*
            FROM pages p JOIN documents d ON d.document_id = p.document_id
            WHERE p.audio_status IN ('pending', 'processing')
            ORDER BY p.document_id, p.page_number
        """).fetchall()

        return [(row['document_id'], row['owner'], Page.from_dict(dict(row))) for row in rows]

    def find_uncompleted_documents(self) -> List[Tuple[DocumentID, str]]:
        """
        Find documents whose pages are all processed but whose completion
        flag was never set.

        Documents without pages are left out: a zero-page document that was
        never flagged is still queued or requeued for segmentation.

        Returns:
            List of (document_id, owner) tuples
        """
        conn = self._get_connection()
        rows = conn.execute("""
            SELECT document_id, owner FROM documents
            WHERE processing_complete = 0
              AND total_pages > 0
              AND processed_pages = total_pages
            ORDER BY created_at ASC
        """).fetchall()

        return [(row['document_id'], row['owner']) for row in rows]

    # Log operations

    def add_log(
        self,
        document_id: DocumentID,
        level: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None
    ):
        """
        Add a log entry for a document.

        Entries for a document that no longer exists are dropped.
        """
        metadata_json = json.dumps(metadata, default=str) if metadata else None

        with self._transaction() as conn:
            conn.execute("""
                INSERT INTO document_logs (document_id, timestamp, level, message, metadata)
                SELECT ?, ?, ?, ?, ?
                WHERE EXISTS (SELECT 1 FROM documents WHERE document_id = ?)
            """, (document_id, time.time(), level, message, metadata_json, document_id))

    def get_logs(
        self,
        document_id: DocumentID,
        level: Optional[str] = None,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Get log entries for a document, newest first.

        Args:
            document_id: Document ID
            level: Filter by log level (None for all)
            limit: Maximum number of entries to return
        """
        conn = self._get_connection()

        query = "SELECT * FROM document_logs WHERE document_id = ?"
        params: List[Any] = [document_id]

        if level is not None:
            query += " AND level = ?"
            params.append(level)

        query += " ORDER BY timestamp DESC, id DESC"

        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        logs = []
        for row in conn.execute(query, params).fetchall():
            log_dict = dict(row)
            if log_dict.get('metadata'):
                log_dict['metadata'] = json.loads(log_dict['metadata'])
            logs.append(log_dict)

        return logs

    def close(self):
        """Close the database connections of every thread that used this storage."""
        with self._connections_lock:
            connections = self._connections
            self._connections = []
            self._generation += 1

        for conn in connections:
            conn.close()
