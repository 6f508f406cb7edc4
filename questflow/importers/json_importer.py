"""JSON import and export for QuestFlow.

The export format is the whole record collection as one JSON list, each
record in its serialized layout with attachments as descriptors only. Import
accepts the same shape and validates it against RECORD_LIST_SCHEMA before
anything is merged.
"""

import json
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional, Union

from jsonschema import Draft7Validator

from questflow.errors import InvalidFormat
from questflow.types import MergeResult, Record, RecordKind

if TYPE_CHECKING:
    from questflow.storage.merge import MergeEngine

logger = logging.getLogger(__name__)

MEDIA_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["type"],
    "properties": {
        "type": {"type": "string", "minLength": 1},
        "name": {"type": "string"},
        "path": {"type": "string"},
    },
}

RECORD_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "required": ["id", "type", "updatedAt"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "type": {"enum": [k.value for k in RecordKind]},
        "question": {"type": "string"},
        "options": {"type": "array", "items": {"type": "string"}},
        "answer": {"type": ["integer", "null"]},
        "media": {"type": "array", "items": MEDIA_SCHEMA},
        "createdAt": {"type": ["string", "null"]},
        "updatedAt": {"type": "string", "minLength": 1},
    },
}

RECORD_LIST_SCHEMA: Dict[str, Any] = {"type": "array", "items": RECORD_SCHEMA}

_validator = Draft7Validator(RECORD_LIST_SCHEMA)


def validate_records_data(data: Any) -> None:
    """Check decoded import data against RECORD_LIST_SCHEMA.

    Raises:
        InvalidFormat: Describing the first violation found.
    """
    errors = sorted(_validator.iter_errors(data), key=lambda err: [str(p) for p in err.path])
    if not errors:
        return
    first = errors[0]
    if not first.path:
        raise InvalidFormat("Import data must be a list of questions")
    path = ".".join(str(part) for part in first.path)
    raise InvalidFormat(f"Invalid import data at {path}: {first.message}")


def parse_records_json(content: Union[str, bytes]) -> List[Record]:
    """Decode and validate an export document.

    Raises:
        InvalidFormat: If the content is not JSON, not a list, or any element
            is not record-shaped. Nothing is returned in that case.
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        raise InvalidFormat(f"Invalid JSON: {e}") from e

    validate_records_data(data)
    records = []
    for position, item in enumerate(data):
        try:
            records.append(Record.from_dict(item))
        except InvalidFormat as e:
            raise InvalidFormat(f"Item {position}: {e}") from e
    return records


def export_records(records: Iterable[Union[Record, Dict[str, Any]]]) -> str:
    """Serialize records to the export format (pretty-printed JSON list)."""
    data = [r.to_dict() if isinstance(r, Record) else r for r in records]
    return json.dumps(data, indent=2)


class JsonImporter:
    """Import records from a QuestFlow JSON export file."""

    def __init__(self, file_path: Union[str, Path]):
        self.file_path = Path(file_path).expanduser()
        self.records: Optional[List[Record]] = None

    def parse(self) -> List[Record]:
        """Read and validate the file.

        Raises:
            FileNotFoundError: If the file doesn't exist
            InvalidFormat: If the file is not a valid export
        """
        if not self.file_path.exists():
            raise FileNotFoundError(f"File not found: {self.file_path}")

        self.records = parse_records_json(self.file_path.read_text(encoding="utf-8"))
        logger.debug(f"Parsed {len(self.records)} records from {self.file_path}")
        return self.records

    def import_to(self, merger: "MergeEngine") -> MergeResult:
        """Merge the parsed records into a store.

        Returns:
            Inserted/replaced/kept counts.
        """
        if self.records is None:
            self.parse()
        return merger.merge_records(self.records)
