"""Persistence backend interface for questflow.

Two implementations exist:
- DirectoryBackend: one JSON file per record plus a media directory; stores
  attachment bytes natively
- FallbackBackend: the whole collection as one serialized document; keeps
  attachment metadata only

The record store picks one at startup and talks to it only through this
interface. Call sites ask ``supports_binary`` instead of checking types.
"""

from abc import ABC, abstractmethod
from typing import List, Sequence

from questflow.errors import Unavailable
from questflow.types import Record, StoredAttachment


class PersistenceBackend(ABC):
    """Capability interface over a record persistence mechanism."""

    #: Whether attachment bytes survive a save in this backend.
    supports_binary: bool = False

    @abstractmethod
    def save(self, record: Record, collection: Sequence[Record]) -> Record:
        """Persist one record.

        Args:
            record: The record to write. Draft attachments are resolved here.
            collection: The full in-memory collection, already containing
                ``record`` (used by backends that rewrite everything).

        Returns:
            The record as persisted (attachment descriptors rewritten).

        Raises:
            PersistenceError: If the write failed.
        """

    @abstractmethod
    def delete(self, record: Record, collection: Sequence[Record]) -> None:
        """Remove one record and, best effort, its attachment bytes.

        ``collection`` no longer contains ``record``. Deleting a record that
        is not on disk is not an error.

        Raises:
            PersistenceError: If the record metadata could not be removed.
        """

    @abstractmethod
    def load_all(self) -> List[Record]:
        """Load every readable record, in creation order.

        Unreadable entries are logged and skipped.

        Raises:
            PersistenceError: If the store itself cannot be read.
        """

    @abstractmethod
    def clear(self) -> None:
        """Remove every record and attachment held by this backend."""

    def save_many(self, records: Sequence[Record], collection: Sequence[Record]) -> List[Record]:
        """Persist several records; returns their persisted forms in order."""
        return [self.save(record, collection) for record in records]

    def release_attachments(self, attachments: Sequence[StoredAttachment]) -> None:
        """Best-effort removal of attachment bytes no record references any more."""

    def read_attachment(self, path: str) -> bytes:
        """Read attachment bytes by backend path.

        Raises:
            Unavailable: If this backend does not hold binary data.
            NotFound: If the file is gone.
        """
        raise Unavailable(f"{self.describe()} does not store attachment bytes")

    @abstractmethod
    def describe(self) -> str:
        """Short human-readable description of where records live."""
