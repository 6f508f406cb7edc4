"""Error taxonomy for QuestFlow.

Every failure surfaced by the record store, persistence backends, attachment
resolver, merge engine and sync queue is one of these.
"""

from typing import Optional


class QuestFlowError(Exception):
    """Base class for all QuestFlow errors."""


class NotFound(QuestFlowError):
    """A referenced record or file does not exist."""

    def __init__(self, record_id: str, what: str = "Record"):
        self.record_id = record_id
        super().__init__(f"{what} not found: {record_id}")


class PersistenceError(QuestFlowError):
    """A backend read or write failed. The triggering mutation was rolled back."""


class InvalidFormat(QuestFlowError, ValueError):
    """A record payload, import file or draft is malformed."""


class ConfigurationError(QuestFlowError):
    """Sync was attempted without a usable endpoint or credential."""


class Offline(QuestFlowError):
    """Sync was attempted without connectivity."""


class TransportFailure(QuestFlowError):
    """A remote call failed (network error or non-2xx response)."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class Unavailable(QuestFlowError):
    """Attachment bytes cannot be reached in the current backend mode."""
