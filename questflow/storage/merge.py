"""Merge engine for QuestFlow.

Reconciles an externally supplied record set (an import) with the local
collection using last-write-wins on ``updatedAt``:

- Unknown ids are inserted.
- Known ids are replaced only when the incoming copy is strictly newer;
  ties keep the local copy.

The incoming set is validated in full before anything changes, so a
malformed import never partially applies. Merges never populate the sync
queue.

Only inserted and replaced records are written back. Unchanged local
records are already persisted, so the backend ends up consistent with the
merged collection without rewriting every file.
Attachment files the replaced copies no longer reference are released.
"""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Set

from questflow.errors import InvalidFormat, PersistenceError
from questflow.types import MergeResult, Record

if TYPE_CHECKING:
    from .records import RecordStore

logger = logging.getLogger(__name__)


def _is_newer(incoming: Optional[datetime], local: Optional[datetime]) -> bool:
    if incoming is None:
        return False
    if local is None:
        return True
    return incoming > local


class MergeEngine:
    """Merges incoming records into a RecordStore.

    Args:
        host: The RecordStore whose collection and backend are merged into.
    """

    def __init__(self, host: "RecordStore"):
        self._host = host

    def merge(self, incoming: Any) -> int:
        """Merge ``incoming`` and return how many records were processed.

        Raises:
            InvalidFormat: If ``incoming`` is not a sequence of record-shaped
                objects. Nothing is changed.
            PersistenceError: If writing the merged records failed. The
                in-memory collection is restored.
        """
        return self.merge_records(incoming).total

    def merge_records(self, incoming: Any) -> MergeResult:
        """Like merge(), but reports inserted/replaced/kept counts."""
        records = self._coerce(incoming)
        host = self._host
        result = MergeResult()

        with host._lock:
            snapshot = list(host._records)
            working = list(snapshot)
            positions = {r.id: i for i, r in enumerate(working)}
            changed: Dict[str, Record] = {}
            inserted_ids: Set[str] = set()

            for record in records:
                index = positions.get(record.id)
                if index is None:
                    positions[record.id] = len(working)
                    working.append(record)
                    changed[record.id] = record
                    inserted_ids.add(record.id)
                    result.inserted += 1
                elif _is_newer(record.updated_at, working[index].updated_at):
                    working[index] = record
                    changed[record.id] = record
                    result.replaced += 1
                else:
                    result.kept += 1

            if changed:
                host._records = working
                try:
                    persisted = host._backend.save_many(list(changed.values()), working)
                except PersistenceError:
                    host._records = snapshot
                    self._restore(snapshot, changed, inserted_ids)
                    raise
                previous = {r.id: r for r in snapshot}
                for record in persisted:
                    working[positions[record.id]] = record
                    if record.id not in inserted_ids:
                        host._release_dropped_attachments(previous[record.id], record)
                host._write_mirror()

        logger.info(
            f"Merged {result.total} records: inserted={result.inserted}, "
            f"replaced={result.replaced}, kept={result.kept}"
        )
        return result

    def _coerce(self, incoming: Any) -> List[Record]:
        if isinstance(incoming, (str, bytes, dict)) or not isinstance(incoming, (list, tuple)):
            raise InvalidFormat(
                f"Incoming records must be a list, got {type(incoming).__name__}"
            )
        records = []
        for position, item in enumerate(incoming):
            try:
                if isinstance(item, Record):
                    record = item.copy()
                    record.validate()
                else:
                    record = Record.from_dict(item)
            except InvalidFormat as e:
                raise InvalidFormat(f"Item {position}: {e}") from e
            if record.updated_at is None:
                raise InvalidFormat(f"Item {position}: missing updatedAt")
            records.append(record)
        return records

    def _restore(
        self, snapshot: List[Record], changed: Dict[str, Record], inserted_ids: Set[str]
    ) -> None:
        """Best-effort rewrite of the pre-merge state after a failed persist."""
        backend = self._host._backend
        previous = {r.id: r for r in snapshot}
        for record_id, record in changed.items():
            try:
                if record_id in inserted_ids:
                    backend.delete(record, snapshot)
                else:
                    backend.save(previous[record_id], snapshot)
            except PersistenceError as e:
                logger.warning(f"Failed to restore record {record_id} after merge failure: {e}")
