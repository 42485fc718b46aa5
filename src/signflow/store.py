"""Document record stores for SignFlow.

A store is the only shared mutable resource in the system. Records are
created once and afterwards only change through
:meth:`RecordStore.compare_and_swap`, which checks the expected status
(and optionally the expected token) and writes the replacement record
as one step under the document's lock stripe.

Two implementations:

* ``MemoryRecordStore`` keeps records in a dict. Tests and embedding.
* ``FileRecordStore`` keeps one JSON file per document on disk::

    ~/.signflow/
    └── documents/
        └── <doc-id>/
            └── document.json   (record, PDF base64-encoded)

  The PDF travels inside the JSON so status, binary and timestamp are
  replaced together by a single ``os.replace``.
"""

import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from .config import DEFAULT_SIGNFLOW_DIR
from .errors import DocumentNotFoundError
from .models import DocumentRecord, DocumentStatus

logger = logging.getLogger("signflow.store")


class RecordStore:
    """Storage collaborator interface with per-document locking.

    Document ids hash onto a fixed pool of lock stripes, so lookups of
    unknown ids allocate nothing. Locks are never nested.
    """

    LOCK_STRIPES = 64

    def __init__(self) -> None:
        self._locks = tuple(threading.Lock() for _ in range(self.LOCK_STRIPES))

    def _lock_for(self, document_id: str) -> threading.Lock:
        return self._locks[hash(document_id) % len(self._locks)]

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def get(self, document_id: str) -> DocumentRecord:
        """Load a record.

        Raises:
            DocumentNotFoundError: If no record has this id.
        """
        with self._lock_for(document_id):
            record = self._read(document_id)
        if record is None:
            raise DocumentNotFoundError(f"Document not found: {document_id}")
        return record

    def create(self, record: DocumentRecord) -> DocumentRecord:
        """Persist a new record.

        Raises:
            ValueError: If a record with the same id already exists.
        """
        with self._lock_for(record.document_id):
            if self._read(record.document_id) is not None:
                raise ValueError(f"Document already exists: {record.document_id}")
            self._write(record)
        logger.info("Created document %s (%s)", record.title, record.document_id[:8])
        return record

    def compare_and_swap(
        self,
        document_id: str,
        expected_status: DocumentStatus,
        new_record: DocumentRecord,
        expected_token: Optional[str] = None,
    ) -> bool:
        """Replace a record only if it is still in the expected state.

        Args:
            document_id: Record to replace.
            expected_status: Status the stored record must have.
            new_record: Replacement; must carry the same id.
            expected_token: If given, the stored token must also match.

        Returns:
            True if the record was replaced, False if it had moved on.

        Raises:
            DocumentNotFoundError: If no record has this id.
            ValueError: If ``new_record`` has a different id.
        """
        if new_record.document_id != document_id:
            raise ValueError("Replacement record must keep the document id")

        with self._lock_for(document_id):
            current = self._read(document_id)
            if current is None:
                raise DocumentNotFoundError(f"Document not found: {document_id}")
            if current.status != expected_status:
                return False
            if expected_token is not None and current.token != expected_token:
                return False
            self._write(new_record)
        logger.debug(
            "Swapped document %s: %s -> %s",
            document_id[:8],
            expected_status.value,
            new_record.status.value,
        )
        return True

    def __contains__(self, document_id: str) -> bool:
        with self._lock_for(document_id):
            return self._read(document_id) is not None

    # ------------------------------------------------------------------
    # Backend hooks (called with the document lock held)
    # ------------------------------------------------------------------

    def _read(self, document_id: str) -> Optional[DocumentRecord]:
        raise NotImplementedError

    def _write(self, record: DocumentRecord) -> None:
        raise NotImplementedError


class MemoryRecordStore(RecordStore):
    """In-process store. Hands out copies so callers cannot mutate state."""

    def __init__(self) -> None:
        super().__init__()
        self._records: dict[str, DocumentRecord] = {}

    def _read(self, document_id: str) -> Optional[DocumentRecord]:
        record = self._records.get(document_id)
        return record.model_copy(deep=True) if record is not None else None

    def _write(self, record: DocumentRecord) -> None:
        self._records[record.document_id] = record.model_copy(deep=True)


class FileRecordStore(RecordStore):
    """Filesystem-backed store, one directory per document.

    Locks are per process. Several processes sharing one directory
    must be serialized by the deployment.

    Args:
        base_dir: Root directory for all signflow data.
    """

    def __init__(self, base_dir: Optional[Path] = None) -> None:
        super().__init__()
        self.base = Path(base_dir) if base_dir else DEFAULT_SIGNFLOW_DIR
        self._documents_dir = self.base / "documents"
        self._documents_dir.mkdir(parents=True, exist_ok=True)

    def _json_path(self, document_id: str) -> Path:
        # ids come from URLs; keep them inside the documents directory
        if not document_id or Path(document_id).name != document_id or document_id in (".", ".."):
            return self._documents_dir / "__invalid__" / "document.json"
        return self._documents_dir / document_id / "document.json"

    def _read(self, document_id: str) -> Optional[DocumentRecord]:
        path = self._json_path(document_id)
        if not path.exists():
            return None
        return DocumentRecord.model_validate_json(path.read_text(encoding="utf-8"))

    def _write(self, record: DocumentRecord) -> None:
        path = self._json_path(record.document_id)
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".document-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(record.model_dump_json(indent=2))
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
