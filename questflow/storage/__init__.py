"""QuestFlow storage.

Record persistence with two backends: a user-chosen directory that stores
media files natively, and a fallback collection in local storage that keeps
metadata only.
"""

from .base import PersistenceBackend
from .directory import DirectoryBackend
from .fallback import FallbackBackend
from .local import LocalStorage
from .merge import MergeEngine
from .records import RecordStore

__all__ = [
    "PersistenceBackend",
    "DirectoryBackend",
    "FallbackBackend",
    "LocalStorage",
    "MergeEngine",
    "RecordStore",
]
