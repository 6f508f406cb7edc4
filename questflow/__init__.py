"""
QuestFlow - local-first question store with offline sync.

Records persist to a user-chosen directory (with media files) or, when none
is available, to local storage, and are synchronized to a remote API when
connectivity allows.
"""

from .core import QuestFlow
from .errors import (
    ConfigurationError,
    InvalidFormat,
    NotFound,
    Offline,
    PersistenceError,
    QuestFlowError,
    TransportFailure,
    Unavailable,
)
from .types import Record, RecordKind

try:
    from importlib.metadata import PackageNotFoundError, version

    __version__ = version("questflow")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "QuestFlow",
    "Record",
    "RecordKind",
    "QuestFlowError",
    "NotFound",
    "PersistenceError",
    "InvalidFormat",
    "ConfigurationError",
    "Offline",
    "TransportFailure",
    "Unavailable",
]
