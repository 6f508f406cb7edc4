"""Key/value document store for QuestFlow.

LocalStorage keeps one JSON document per key in a single directory. It is
the storage of last resort: settings, the sync queue and the fallback record
collection all live here, so it must work when no record directory has been
chosen.
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Iterator, Optional

logger = logging.getLogger(__name__)

SETTINGS_KEY = "questflow_settings"
QUESTIONS_KEY = "questflow_questions"
SYNC_QUEUE_KEY = "questflow_sync_queue"
DEAD_LETTER_KEY = "questflow_sync_dead_letter"


class LocalStorage:
    """JSON documents addressed by key.

    Args:
        directory: Where the documents are kept. Created on first use.
    """

    def __init__(self, directory: Path):
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, key: str) -> Path:
        if not key or "/" in key or "\\" in key or key.startswith("."):
            raise ValueError(f"Invalid storage key: {key!r}")
        return self.directory / f"{key}.json"

    def get_item(self, key: str, default: Any = None) -> Any:
        """Read and decode a document.

        Raises:
            OSError: If the document exists but cannot be read.
            json.JSONDecodeError: If the document is corrupt.
        """
        path = self._path_for(key)
        if not path.exists():
            return default
        return json.loads(path.read_text(encoding="utf-8"))

    def set_item(self, key: str, value: Any) -> None:
        """Encode and write a document, replacing any previous one atomically.

        Raises:
            OSError: If the write fails.
        """
        path = self._path_for(key)
        tmp = path.with_name(f".{path.name}.tmp")
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(value, f, indent=2)
        os.replace(tmp, path)

    def remove_item(self, key: str) -> bool:
        path = self._path_for(key)
        try:
            path.unlink()
            return True
        except FileNotFoundError:
            return False

    def keys(self) -> Iterator[str]:
        for path in sorted(self.directory.glob("*.json")):
            yield path.stem

    def __contains__(self, key: str) -> bool:
        return self._path_for(key).exists()

    def read_or_default(self, key: str, default: Any = None) -> Optional[Any]:
        """Like get_item, but a corrupt or unreadable document is logged and ignored."""
        try:
            return self.get_item(key, default)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Failed to read {key} from local storage: {e}")
            return default
