"""
Collaborator protocols for questflow.

The core never renders UI and never talks HTTP directly. It calls out through
these interfaces, which the application (CLI, GUI, tests) supplies:

- Transport: delivers a queued mutation to the remote service
- Notifier: surfaces user-visible events
- Confirmer: asks the user to confirm destructive actions
"""

import logging
from enum import Enum
from typing import Any, Dict, Protocol, runtime_checkable

logger = logging.getLogger(__name__)


class Severity(str, Enum):
    """Severity of a user-visible notification."""

    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


@runtime_checkable
class Transport(Protocol):
    """Delivers sync queue items to the remote service."""

    def send(self, action: str, payload: Dict[str, Any]) -> Any:
        """Invoke ``action`` remotely with ``payload``.

        Returns:
            The decoded remote result.

        Raises:
            TransportFailure: On network errors or non-2xx responses.
        """
        ...


@runtime_checkable
class Notifier(Protocol):
    """Receives user-visible events."""

    def notify(self, severity: Severity, title: str, message: str) -> None: ...


@runtime_checkable
class Confirmer(Protocol):
    """Asks the user to confirm an action."""

    def confirm(self, title: str, body: str, confirm_label: str, cancel_label: str) -> bool: ...


_SEVERITY_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.SUCCESS: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
}


class LoggingNotifier:
    """Notifier that writes notifications to the log. Used when no UI is attached."""

    def notify(self, severity: Severity, title: str, message: str) -> None:
        logger.log(_SEVERITY_LEVELS.get(Severity(severity), logging.INFO), f"{title}: {message}")


class StaticConfirmer:
    """Confirmer that always gives the same answer."""

    def __init__(self, answer: bool):
        self.answer = answer

    def confirm(self, title: str, body: str, confirm_label: str, cancel_label: str) -> bool:
        logger.debug(f"Auto-{'confirmed' if self.answer else 'declined'}: {title}")
        return self.answer
