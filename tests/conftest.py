"""
Pytest fixtures and test configuration for QuestFlow tests.
"""

import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from questflow.errors import TransportFailure
from questflow.protocols import Severity
from questflow.settings import SettingsManager
from questflow.storage import DirectoryBackend, FallbackBackend, LocalStorage, RecordStore
from questflow.sync import ConnectivityMonitor, SyncQueue

API_URL = "https://api.example.com"
API_KEY = "test-key"


class RecordingNotifier:
    """Notifier that keeps every notification for assertions."""

    def __init__(self):
        self.events: List[Tuple[Severity, str, str]] = []

    def notify(self, severity: Severity, title: str, message: str) -> None:
        self.events.append((severity, title, message))

    def titles(self) -> List[str]:
        return [title for _, title, _ in self.events]


class RecordingConfirmer:
    """Confirmer with a fixed answer that remembers what it was asked."""

    def __init__(self, answer: bool = True):
        self.answer = answer
        self.asked: List[str] = []

    def confirm(self, title: str, body: str, confirm_label: str, cancel_label: str) -> bool:
        self.asked.append(title)
        return self.answer


class ScriptedTransport:
    """Transport that records calls and succeeds unless told to fail.

    Args:
        fail: When True every send raises TransportFailure.
        on_send: Optional hook run before each send returns (or fails).
    """

    def __init__(self, fail: bool = False, on_send: Optional[Callable[[str, Dict], None]] = None):
        self.fail = fail
        self.on_send = on_send
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def send(self, action: str, payload: Dict[str, Any]) -> Any:
        with self._lock:
            self.calls.append((action, payload))
        if self.on_send is not None:
            self.on_send(action, payload)
        if self.fail:
            raise TransportFailure("HTTP error! status: 503", status_code=503)
        return {"ok": True}


@pytest.fixture(autouse=True)
def questflow_home(tmp_path, monkeypatch):
    """Keep logs and default data out of the real home directory."""
    home = tmp_path / "home"
    monkeypatch.setenv("QUESTFLOW_DATA_DIR", str(home))
    monkeypatch.delenv("QUESTFLOW_API_URL", raising=False)
    monkeypatch.delenv("QUESTFLOW_API_KEY", raising=False)
    return home


@pytest.fixture
def local(tmp_path):
    return LocalStorage(tmp_path / "local")


@pytest.fixture
def settings(local):
    """Settings with the remote API configured."""
    manager = SettingsManager(local, environ={})
    manager.update(api_url=API_URL, api_key=API_KEY)
    return manager


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def transport():
    return ScriptedTransport()


@pytest.fixture
def connectivity():
    return ConnectivityMonitor(online=True)


@pytest.fixture
def fallback(local):
    return FallbackBackend(local)


@pytest.fixture
def record_dir(tmp_path):
    path = tmp_path / "records"
    path.mkdir()
    return path


@pytest.fixture
def directory_backend(record_dir):
    return DirectoryBackend(record_dir)


@pytest.fixture
def store(fallback, notifier):
    """Record store on the fallback backend, without sync."""
    return RecordStore(fallback, mirror=fallback, notifier=notifier)


@pytest.fixture
def make_queue(transport, local, settings, connectivity, notifier):
    """Factory for sync queues sharing the test's storage and collaborators."""

    def _make(**kwargs) -> SyncQueue:
        options = {
            "transport": transport,
            "local": local,
            "settings": settings,
            "connectivity": connectivity,
            "notifier": notifier,
        }
        options.update(kwargs)
        return SyncQueue(
            options.pop("transport"),
            options.pop("local"),
            options.pop("settings"),
            options.pop("connectivity"),
            **options,
        )

    return _make


def mc_draft(**overrides) -> Dict[str, Any]:
    """A multiple-choice draft."""
    draft: Dict[str, Any] = {
        "kind": "multiple_choice",
        "body": "2+2?",
        "choices": ["3", "4"],
        "correct_choice_index": 1,
    }
    draft.update(overrides)
    return draft
