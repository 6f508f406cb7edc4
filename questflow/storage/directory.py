"""Directory-backed record persistence.

Layout under the chosen root:

    <root>/<record id>.json            record metadata
    <root>/media/<id>_<index><ext>     attachment bytes

Draft attachments are written to the media directory on save and their
descriptors rewritten to point at the file; the metadata file never holds
inline bytes.
"""

import json
import logging
import os
import shutil
from pathlib import Path
from typing import List, Sequence

from questflow.attachments import extension_for
from questflow.errors import NotFound, PersistenceError
from questflow.types import DraftAttachment, Record, StoredAttachment

from .base import PersistenceBackend

logger = logging.getLogger(__name__)

MEDIA_FOLDER = "media"


class DirectoryBackend(PersistenceBackend):
    """One file per record in a user-chosen directory.

    Args:
        root: The record directory. Must already exist.
    """

    supports_binary = True

    def __init__(self, root: Path):
        self.root = Path(root).expanduser().resolve()
        self.media_dir = self.root / MEDIA_FOLDER

    @classmethod
    def is_supported(cls, root: Path) -> bool:
        """Whether ``root`` can host a record directory (exists and is writable)."""
        path = Path(root).expanduser()
        return path.is_dir() and os.access(path, os.R_OK | os.W_OK | os.X_OK)

    def describe(self) -> str:
        return f"directory {self.root}"

    def _record_path(self, record_id: str) -> Path:
        if (
            not record_id
            or "/" in record_id
            or "\\" in record_id
            or record_id.startswith(".")
            or "\x00" in record_id
        ):
            raise PersistenceError(f"Record id {record_id!r} cannot be used as a filename")
        return self.root / f"{record_id}.json"

    def _resolve_media(self, path: str) -> Path:
        """Resolve a descriptor path, refusing anything outside the media directory."""
        resolved = (self.root / path).resolve()
        if not resolved.is_relative_to(self.media_dir):
            raise NotFound(path, "Attachment file")
        return resolved

    def _write_atomic(self, path: Path, content: bytes) -> None:
        tmp = path.with_name(f".{path.name}.tmp")
        with open(tmp, "wb") as f:
            f.write(content)
        os.replace(tmp, path)

    def _media_path_for(self, record_id: str, index: int, media_type: str, taken: set) -> str:
        """``media/<id>_<index><ext>``, suffixed when that name is referenced or already on disk.

        Existing files are never overwritten: a failed save must leave the
        bytes of the last persisted record intact.
        """
        ext = extension_for(media_type)
        path = f"{MEDIA_FOLDER}/{record_id}_{index}{ext}"
        suffix = 1
        while path in taken or (self.root / path).exists():
            path = f"{MEDIA_FOLDER}/{record_id}_{index}_{suffix}{ext}"
            suffix += 1
        return path

    # === Writes ===

    def save(self, record: Record, collection: Sequence[Record]) -> Record:
        record_path = self._record_path(record.id)
        persisted = record.copy()
        taken = {a.path for a in record.attachments if isinstance(a, StoredAttachment)}
        written: List[Path] = []
        try:
            for index, attachment in enumerate(record.attachments):
                if not isinstance(attachment, DraftAttachment):
                    continue
                self.media_dir.mkdir(exist_ok=True)
                path = self._media_path_for(record.id, index, attachment.media_type, taken)
                taken.add(path)
                self._write_atomic(self.root / path, attachment.data)
                written.append(self.root / path)
                persisted.attachments[index] = attachment.store(path)

            content = json.dumps(persisted.to_dict(), indent=2).encode("utf-8")
            self._write_atomic(record_path, content)
        except OSError as e:
            self._discard(written)
            raise PersistenceError(f"Failed to save record {record.id} to {self.root}: {e}") from e

        logger.debug(f"Saved record {record.id} to {record_path}")
        return persisted

    def _discard(self, paths: Sequence[Path]) -> None:
        for path in paths:
            try:
                path.unlink()
            except OSError as e:
                logger.warning(f"Failed to remove unsaved attachment {path}: {e}")

    def delete(self, record: Record, collection: Sequence[Record]) -> None:
        record_path = self._record_path(record.id)
        try:
            record_path.unlink()
        except FileNotFoundError:
            logger.debug(f"Record file {record_path} already gone")
        except OSError as e:
            raise PersistenceError(f"Failed to delete record {record.id}: {e}") from e

        self.release_attachments(
            [a for a in record.attachments if isinstance(a, StoredAttachment)]
        )

    def release_attachments(self, attachments: Sequence[StoredAttachment]) -> None:
        for attachment in attachments:
            try:
                self._resolve_media(attachment.path).unlink()
            except FileNotFoundError:
                logger.debug(f"Attachment {attachment.path} already gone")
            except (OSError, NotFound) as e:
                logger.warning(f"Failed to delete attachment {attachment.path}: {e}")

    def clear(self) -> None:
        try:
            for path in self.root.glob("*.json"):
                path.unlink()
            if self.media_dir.exists():
                shutil.rmtree(self.media_dir)
        except OSError as e:
            raise PersistenceError(f"Failed to clear {self.root}: {e}") from e

    # === Reads ===

    def load_all(self) -> List[Record]:
        try:
            paths = sorted(self.root.glob("*.json"))
        except OSError as e:
            raise PersistenceError(f"Failed to list {self.root}: {e}") from e

        records: List[Record] = []
        for path in paths:
            if path.name.startswith("."):
                continue
            try:
                data = json.loads(path.read_text(encoding="utf-8"))
                records.append(Record.from_dict(data))
            except (OSError, ValueError) as e:
                # InvalidFormat and JSONDecodeError are both ValueErrors
                logger.error(f"Skipping unreadable record file {path.name}: {e}")

        records.sort(key=lambda r: (r.created_at is None, r.created_at, r.id))
        logger.info(f"Loaded {len(records)} records from {self.root}")
        return records

    def read_attachment(self, path: str) -> bytes:
        resolved = self._resolve_media(path)
        try:
            return resolved.read_bytes()
        except FileNotFoundError as e:
            raise NotFound(path, "Attachment file") from e
        except OSError as e:
            raise PersistenceError(f"Failed to read attachment {path}: {e}") from e
