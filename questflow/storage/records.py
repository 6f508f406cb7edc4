"""In-memory record store for QuestFlow.

RecordStore is the source of truth for reads. Every mutation updates the
in-memory collection, persists through the active backend and, when sync is
enabled, queues the change for the remote service. A failed persist rolls
the in-memory change back, so the collection always matches the last
successful write.
"""

import logging
import threading
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Union

from questflow.errors import InvalidFormat, NotFound, PersistenceError
from questflow.protocols import Notifier, Severity
from questflow.types import Record, RecordKind, StoredAttachment
from questflow.utils import generate_id, utc_now

from .base import PersistenceBackend
from .fallback import FallbackBackend

if TYPE_CHECKING:
    from questflow.sync.queue import SyncQueue

logger = logging.getLogger(__name__)

DRAFT_FIELDS = Record.MUTABLE_FIELDS | {"id"}


def _coerce_field(name: str, value: Any) -> Any:
    if name == "kind":
        return RecordKind.parse(value)
    if name in ("choices", "attachments"):
        if value is None:
            return []
        if not isinstance(value, (list, tuple)):
            raise InvalidFormat(f"{name} must be a list, got {type(value).__name__}")
        return list(value)
    return value


class RecordStore:
    """Authoritative collection of records.

    Mutations are serialized by a lock held across the mutate-then-persist
    sequence.

    Args:
        backend: The active persistence backend. Records are loaded from it.
        mirror: Fallback store that receives a metadata-only copy of the
            collection whenever a different backend is active.
        sync_queue: Queue receiving create/update/delete mutations.
        sync_enabled_fn: Returns whether mutations should be queued.
        notifier: Receives user-visible save errors.
    """

    def __init__(
        self,
        backend: PersistenceBackend,
        *,
        mirror: Optional[FallbackBackend] = None,
        sync_queue: Optional["SyncQueue"] = None,
        sync_enabled_fn: Optional[Callable[[], bool]] = None,
        notifier: Optional[Notifier] = None,
    ):
        self._lock = threading.RLock()
        self._backend = backend
        self._mirror = mirror
        self._sync_queue = sync_queue
        self._sync_enabled_fn = sync_enabled_fn or (lambda: True)
        self._notifier = notifier
        self._records: List[Record] = backend.load_all()

    # === Reads ===

    @property
    def backend(self) -> PersistenceBackend:
        return self._backend

    def list(self) -> List[Record]:
        """All records in creation order, as independent copies."""
        with self._lock:
            return [r.copy() for r in self._records]

    def get(self, record_id: str) -> Record:
        """Get a record by id.

        Raises:
            NotFound: If no record has that id.
        """
        with self._lock:
            index = self._index_of(record_id)
            if index is None:
                raise NotFound(record_id)
            return self._records[index].copy()

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    def __contains__(self, record_id: str) -> bool:
        with self._lock:
            return self._index_of(record_id) is not None

    def _index_of(self, record_id: str) -> Optional[int]:
        for index, record in enumerate(self._records):
            if record.id == record_id:
                return index
        return None

    # === Mutations ===

    def create(self, draft: Union[Record, Dict[str, Any]]) -> Record:
        """Add a new record.

        Args:
            draft: A Record, or a dict of record fields (``kind``, ``body``,
                ``choices``, ``correct_choice_index``, ``attachments`` and an
                optional ``id``).

        Returns:
            The record as persisted.

        Raises:
            InvalidFormat: If the draft is malformed or its id is taken.
            PersistenceError: If the backend write failed (nothing changed).
        """
        record = self._build(draft)
        with self._lock:
            if self._index_of(record.id) is not None:
                raise InvalidFormat(f"Record id already exists: {record.id}")

            self._records.append(record)
            try:
                persisted = self._backend.save(record, self._records)
            except PersistenceError as e:
                self._records.pop()
                self._report_failure("Save Error", "Failed to save question", e)
                raise

            self._records[-1] = persisted
            self._write_mirror()
            queued = self._queue("create", persisted.to_dict())
            result = persisted.copy()

        logger.info(f"Created record {result.id} ({result.kind.value})")
        if queued:
            self._kick_sync()
        return result

    def update(self, record_id: str, patch: Dict[str, Any]) -> Record:
        """Overwrite fields of an existing record.

        Fields in ``patch`` replace the stored values wholesale (no deep
        merge). ``updated_at`` is bumped.

        Raises:
            NotFound: If no record has that id.
            InvalidFormat: If the patch names unknown or immutable fields or
                leaves the record inconsistent.
            PersistenceError: If the backend write failed (nothing changed).
        """
        unknown = set(patch) - Record.MUTABLE_FIELDS
        if unknown:
            raise InvalidFormat(f"Cannot update field(s): {', '.join(sorted(unknown))}")

        with self._lock:
            index = self._index_of(record_id)
            if index is None:
                raise NotFound(record_id)
            previous = self._records[index]

            updated = previous.copy()
            for name, value in patch.items():
                setattr(updated, name, _coerce_field(name, value))
            now = utc_now()
            updated.updated_at = max(now, previous.created_at) if previous.created_at else now
            updated.validate()

            self._records[index] = updated
            try:
                persisted = self._backend.save(updated, self._records)
            except PersistenceError as e:
                self._records[index] = previous
                self._report_failure("Update Error", "Failed to update question", e)
                raise

            self._records[index] = persisted
            self._release_dropped_attachments(previous, persisted)
            self._write_mirror()
            queued = self._queue("update", persisted.to_dict())
            result = persisted.copy()

        logger.info(f"Updated record {record_id}")
        if queued:
            self._kick_sync()
        return result

    def delete(self, record_id: str) -> bool:
        """Remove a record and its attachment bytes.

        Returns:
            True if a record was removed, False if none had that id.

        Raises:
            PersistenceError: If the record metadata could not be removed
                (nothing changed). Attachment cleanup failures are only logged.
        """
        with self._lock:
            index = self._index_of(record_id)
            if index is None:
                return False

            record = self._records.pop(index)
            try:
                self._backend.delete(record, self._records)
            except PersistenceError as e:
                self._records.insert(index, record)
                self._report_failure("Delete Error", "Failed to delete question", e)
                raise

            self._write_mirror()
            queued = self._queue("delete", {"id": record.id})

        logger.info(f"Deleted record {record_id}")
        if queued:
            self._kick_sync()
        return True

    def switch_backend(self, backend: PersistenceBackend) -> int:
        """Make ``backend`` active and replace the collection with its contents.

        Nothing is merged: records absent from the new backend disappear.

        Returns:
            Number of records loaded.

        Raises:
            PersistenceError: If the new backend cannot be read (the current
                backend and collection stay in place).
        """
        with self._lock:
            records = backend.load_all()
            self._backend = backend
            self._records = records
            self._write_mirror()
            logger.info(f"Switched to {backend.describe()} with {len(records)} records")
            return len(records)

    def clear(self) -> None:
        """Remove every record from the active backend and the mirror."""
        with self._lock:
            self._backend.clear()
            if self._mirror is not None and self._mirror is not self._backend:
                try:
                    self._mirror.clear()
                except PersistenceError as e:
                    logger.warning(f"Failed to clear fallback mirror: {e}")
            self._records = []
        logger.info("Cleared all records")

    def export_records(self) -> List[Dict[str, Any]]:
        """Serialized collection for export (descriptors only, no bytes)."""
        with self._lock:
            return [r.to_dict() for r in self._records]

    # === Internals ===

    def _build(self, draft: Union[Record, Dict[str, Any]]) -> Record:
        if isinstance(draft, Record):
            record = draft.copy()
            record.id = record.id or generate_id()
        elif isinstance(draft, dict):
            unknown = set(draft) - DRAFT_FIELDS
            if unknown:
                raise InvalidFormat(f"Unknown record field(s): {', '.join(sorted(unknown))}")
            if "kind" not in draft:
                raise InvalidFormat("Record kind is required")
            values = {name: _coerce_field(name, v) for name, v in draft.items() if name != "id"}
            record = Record(id=draft.get("id") or generate_id(), **values)
        else:
            raise InvalidFormat(f"Record draft must be a dict, got {type(draft).__name__}")

        now = utc_now()
        record.created_at = now
        record.updated_at = now
        record.validate()
        return record

    def _write_mirror(self) -> None:
        """Copy the collection to the fallback store when another backend is active."""
        if self._mirror is None or self._mirror is self._backend:
            return
        try:
            self._mirror.write_all(self._records)
        except PersistenceError as e:
            logger.warning(f"Failed to mirror records to local storage: {e}")

    def _release_dropped_attachments(self, previous: Record, current: Record) -> None:
        kept = {a.path for a in current.attachments if isinstance(a, StoredAttachment)}
        dropped = [
            a
            for a in previous.attachments
            if isinstance(a, StoredAttachment) and a.path not in kept
        ]
        if dropped:
            self._backend.release_attachments(dropped)

    def _queue(self, action: str, payload: Dict[str, Any]) -> bool:
        if self._sync_queue is None or not self._sync_enabled_fn():
            return False
        try:
            self._sync_queue.enqueue(action, payload, drain=False)
        except PersistenceError as e:
            logger.error(f"Failed to queue {action} for sync: {e}")
            return False
        return True

    def _kick_sync(self) -> None:
        if self._sync_queue is not None:
            self._sync_queue.kick()

    def _report_failure(self, title: str, message: str, error: Exception) -> None:
        logger.error(f"{message}: {error}")
        if self._notifier is not None:
            self._notifier.notify(Severity.ERROR, title, f"{message}.")
