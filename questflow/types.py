"""
Shared types for questflow.

Records, attachment descriptors, sync queue items and settings live here.
They are the contract between the record store, the persistence backends,
the merge engine and the sync queue.

Serialized forms keep the field names of the on-disk and export layout
(``type``, ``question``, ``options``, ``answer``, ``media``, ``createdAt``,
``updatedAt``) so existing record directories and exports stay readable.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Union

from questflow.errors import InvalidFormat
from questflow.utils import format_datetime, parse_datetime

# === Enums ===


class RecordKind(str, Enum):
    """Closed set of record categories."""

    MULTIPLE_CHOICE = "multiple_choice"
    TRUE_FALSE = "true_false"
    FILL_BLANK = "fill_blank"

    @property
    def has_choices(self) -> bool:
        """Whether records of this kind carry selectable options."""
        return self is not RecordKind.FILL_BLANK

    @classmethod
    def parse(cls, value: Any) -> "RecordKind":
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError as e:
            valid = ", ".join(k.value for k in cls)
            raise InvalidFormat(f"Invalid record type {value!r} (expected one of: {valid})") from e


# === Attachment Descriptors ===
#
# An attachment moves Draft -> Stored when a durable backend writes its bytes,
# or Draft -> Detached when only the fallback backend is available.


@dataclass(frozen=True)
class DraftAttachment:
    """Attachment carrying its bytes inline; never persisted in this form."""

    media_type: str
    name: str
    data: bytes = field(repr=False)

    state: ClassVar[str] = "draft"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.media_type, "name": self.name}

    def detach(self) -> "DetachedAttachment":
        return DetachedAttachment(media_type=self.media_type, name=self.name)

    def store(self, path: str) -> "StoredAttachment":
        return StoredAttachment(media_type=self.media_type, name=self.name, path=path)


@dataclass(frozen=True)
class StoredAttachment:
    """Attachment whose bytes live in the durable backend at ``path``.

    ``path`` is relative to the durable root (``media/<recordId>_<index><ext>``).
    """

    media_type: str
    name: str
    path: str

    state: ClassVar[str] = "stored"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.media_type, "name": self.name, "path": self.path}

    def detach(self) -> "DetachedAttachment":
        return DetachedAttachment(media_type=self.media_type, name=self.name)


@dataclass(frozen=True)
class DetachedAttachment:
    """Metadata-only attachment; its bytes are not retrievable."""

    media_type: str
    name: str

    state: ClassVar[str] = "detached"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.media_type, "name": self.name}

    def detach(self) -> "DetachedAttachment":
        return self


Attachment = Union[DraftAttachment, StoredAttachment, DetachedAttachment]


def attachment_from_dict(data: Any) -> Attachment:
    """Build a descriptor from its serialized form."""
    if not isinstance(data, dict):
        raise InvalidFormat(f"Attachment must be an object, got {type(data).__name__}")
    media_type = data.get("type")
    if not isinstance(media_type, str) or not media_type:
        raise InvalidFormat("Attachment is missing its media type")
    name = data.get("name") or ""
    if not isinstance(name, str):
        raise InvalidFormat("Attachment name must be a string")
    path = data.get("path")
    if path:
        if not isinstance(path, str):
            raise InvalidFormat("Attachment path must be a string")
        return StoredAttachment(media_type=media_type, name=name, path=path)
    return DetachedAttachment(media_type=media_type, name=name)


# === Records ===


@dataclass
class Record:
    """A structured content item (a question)."""

    id: str
    kind: RecordKind
    body: str = ""
    choices: List[str] = field(default_factory=list)
    correct_choice_index: Optional[int] = None
    attachments: List[Attachment] = field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # Fields a patch may overwrite; id and created_at are immutable.
    MUTABLE_FIELDS: ClassVar[frozenset] = frozenset(
        {"kind", "body", "choices", "correct_choice_index", "attachments"}
    )

    def validate(self) -> None:
        """Check the per-kind field rules.

        Raises:
            InvalidFormat: If the record is inconsistent.
        """
        if not isinstance(self.id, str) or not self.id:
            raise InvalidFormat("Record id must be a non-empty string")
        if not isinstance(self.body, str):
            raise InvalidFormat("Record body must be a string")
        if not isinstance(self.choices, list) or any(
            not isinstance(c, str) for c in self.choices
        ):
            raise InvalidFormat("Record choices must be a list of strings")
        if self.choices and not self.kind.has_choices:
            raise InvalidFormat(f"Records of type {self.kind.value} cannot have choices")
        if self.correct_choice_index is not None:
            if isinstance(self.correct_choice_index, bool) or not isinstance(
                self.correct_choice_index, int
            ):
                raise InvalidFormat("correct_choice_index must be an integer")
            if not 0 <= self.correct_choice_index < len(self.choices):
                raise InvalidFormat(
                    f"correct_choice_index {self.correct_choice_index} out of range "
                    f"for {len(self.choices)} choices"
                )
        if not all(
            isinstance(a, (DraftAttachment, StoredAttachment, DetachedAttachment))
            for a in self.attachments
        ):
            raise InvalidFormat("Record attachments must be attachment descriptors")
        if self.created_at and self.updated_at and self.updated_at < self.created_at:
            raise InvalidFormat("updatedAt must not be earlier than createdAt")

    def copy(self) -> "Record":
        """Return an independent copy (attachments are immutable and shared)."""
        return replace(self, choices=list(self.choices), attachments=list(self.attachments))

    @property
    def has_draft_attachments(self) -> bool:
        return any(a.state == DraftAttachment.state for a in self.attachments)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to the on-disk/export layout. Inline bytes are never included."""
        data: Dict[str, Any] = {
            "id": self.id,
            "type": self.kind.value,
            "question": self.body,
            "options": list(self.choices),
            "media": [a.to_dict() for a in self.attachments],
            "createdAt": format_datetime(self.created_at),
            "updatedAt": format_datetime(self.updated_at),
        }
        if self.correct_choice_index is not None:
            data["answer"] = self.correct_choice_index
        return data

    @classmethod
    def from_dict(cls, data: Any) -> "Record":
        """Parse the serialized layout.

        Raises:
            InvalidFormat: If ``data`` is not record-shaped.
        """
        if not isinstance(data, dict):
            raise InvalidFormat(f"Record must be an object, got {type(data).__name__}")
        try:
            created_at = parse_datetime(data.get("createdAt"))
            updated_at = parse_datetime(data.get("updatedAt"))
        except ValueError as e:
            raise InvalidFormat(f"Invalid timestamp in record {data.get('id')!r}: {e}") from e

        media = data.get("media") or []
        if not isinstance(media, list):
            raise InvalidFormat("Record media must be a list")
        options = data.get("options") or []
        if not isinstance(options, list):
            raise InvalidFormat("Record options must be a list")

        record = cls(
            id=data.get("id"),
            kind=RecordKind.parse(data.get("type")),
            body=data.get("question") or "",
            choices=list(options),
            correct_choice_index=data.get("answer"),
            attachments=[attachment_from_dict(m) for m in media],
            created_at=created_at or updated_at,
            updated_at=updated_at or created_at,
        )
        record.validate()
        return record


# === Sync Types ===


@dataclass
class QueueItem:
    """A pending outbound mutation."""

    id: str
    action: str
    payload: Dict[str, Any]  # Deep snapshot, never a live record reference
    enqueued_at: datetime
    attempts: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "action": self.action,
            "data": self.payload,
            "timestamp": format_datetime(self.enqueued_at),
            "retries": self.attempts,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueueItem":
        return cls(
            id=data["id"],
            action=data["action"],
            payload=data.get("data") or {},
            enqueued_at=parse_datetime(data.get("timestamp")),
            attempts=int(data.get("retries") or 0),
        )


@dataclass
class DrainResult:
    """Outcome of one drain pass over the sync queue."""

    delivered: int = 0
    failed: int = 0  # Failed but left pending for the next drain
    abandoned: int = 0
    completed: bool = False  # True only when the pass reached the end of the queue
    skipped: Optional[str] = None  # Why the drain did nothing, if it did nothing
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.completed and not self.errors


@dataclass
class MergeResult:
    """Outcome of merging an incoming record set."""

    inserted: int = 0
    replaced: int = 0
    kept: int = 0  # Local copy was newer or equal

    @property
    def total(self) -> int:
        return self.inserted + self.replaced + self.kept

    @property
    def changed(self) -> int:
        return self.inserted + self.replaced


# === Settings ===


@dataclass
class Settings:
    """Process-wide configuration, persisted on every change."""

    api_url: str = ""
    api_key: str = ""
    auto_sync: bool = True
    dark_mode: bool = False
    last_sync_time: Optional[str] = None
    directory_path: Optional[str] = None

    # Attribute name -> persisted name
    PERSISTED_NAMES: ClassVar[Dict[str, str]] = {
        "api_url": "apiUrl",
        "api_key": "apiKey",
        "auto_sync": "autoSync",
        "dark_mode": "darkMode",
        "last_sync_time": "lastSyncTime",
        "directory_path": "directoryPath",
    }

    @property
    def sync_configured(self) -> bool:
        return bool(self.api_url and self.api_key)

    def to_dict(self) -> Dict[str, Any]:
        return {self.PERSISTED_NAMES[f.name]: getattr(self, f.name) for f in fields(self)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        settings = cls()
        for attr, persisted in cls.PERSISTED_NAMES.items():
            if persisted in data:
                setattr(settings, attr, data[persisted])
        return settings
