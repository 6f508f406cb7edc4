"""Single-document record persistence.

Used when no record directory is available. The whole collection is
rewritten on every save or delete. Attachment bytes are never written:
draft attachments keep their media type and name only.
"""

import logging
from typing import List, Sequence

from questflow.errors import PersistenceError
from questflow.types import DraftAttachment, Record

from .base import PersistenceBackend
from .local import QUESTIONS_KEY, LocalStorage

logger = logging.getLogger(__name__)


def strip_binary(record: Record) -> Record:
    """Copy of ``record`` with inline attachment bytes reduced to metadata.

    Stored descriptors keep their path so the bytes are reachable again once
    the record directory is reopened.
    """
    stripped = record.copy()
    stripped.attachments = [
        a.detach() if isinstance(a, DraftAttachment) else a for a in record.attachments
    ]
    return stripped


class FallbackBackend(PersistenceBackend):
    """Serializes the collection as one document in local storage.

    Args:
        local: The key/value store holding the document.
        key: Document key.
    """

    supports_binary = False

    def __init__(self, local: LocalStorage, key: str = QUESTIONS_KEY):
        self.local = local
        self.key = key

    def describe(self) -> str:
        return "local storage"

    def _write(self, collection: Sequence[Record]) -> None:
        try:
            self.local.set_item(self.key, [strip_binary(r).to_dict() for r in collection])
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to write records to local storage: {e}") from e

    def save(self, record: Record, collection: Sequence[Record]) -> Record:
        persisted = strip_binary(record)
        if record.has_draft_attachments:
            logger.info(
                f"Record {record.id}: attachment bytes dropped (no record directory chosen)"
            )
        self._write([persisted if r.id == record.id else r for r in collection])
        return persisted

    def save_many(self, records: Sequence[Record], collection: Sequence[Record]) -> List[Record]:
        persisted = {r.id: strip_binary(r) for r in records}
        self._write([persisted.get(r.id, r) for r in collection])
        return [persisted[r.id] for r in records]

    def delete(self, record: Record, collection: Sequence[Record]) -> None:
        self._write(collection)

    def write_all(self, collection: Sequence[Record]) -> None:
        """Replace the stored collection wholesale."""
        self._write(collection)

    def clear(self) -> None:
        try:
            self.local.remove_item(self.key)
        except OSError as e:
            raise PersistenceError(f"Failed to clear local storage: {e}") from e

    def load_all(self) -> List[Record]:
        try:
            items = self.local.get_item(self.key, [])
        except OSError as e:
            raise PersistenceError(f"Failed to read records from local storage: {e}") from e
        except ValueError as e:
            logger.error(f"Stored record collection is corrupt, starting empty: {e}")
            return []

        if not isinstance(items, list):
            logger.error("Stored record collection is not a list, starting empty")
            return []

        records: List[Record] = []
        for index, item in enumerate(items):
            try:
                records.append(Record.from_dict(item))
            except ValueError as e:
                logger.error(f"Skipping unreadable stored record #{index}: {e}")
        return records
