"""Settings management for QuestFlow.

Settings are loaded once at startup and written through to local storage on
every change. The remote endpoint and credential may also come from the
environment:

1. Stored settings (``questflow_settings`` in local storage)
2. Environment variables (QUESTFLOW_API_URL, QUESTFLOW_API_KEY) when the
   stored values are empty. These are never written to local storage.
"""

import logging
import os
import threading
from dataclasses import fields, replace
from typing import Any, Dict, Iterable, Mapping, Optional
from urllib.parse import urlparse

from questflow.errors import ConfigurationError, PersistenceError
from questflow.storage.local import SETTINGS_KEY, LocalStorage
from questflow.types import Settings

logger = logging.getLogger(__name__)

SETTING_NAMES = frozenset(f.name for f in fields(Settings))
BOOLEAN_SETTINGS = frozenset({"auto_sync", "dark_mode"})

# Kept by reset(): clearing data must not lose the remote configuration.
PRESERVED_ON_RESET = ("api_url", "api_key")


def validate_backend_url(url: str, *, allow_localhost_http: bool = True) -> Optional[str]:
    """Validate a remote URL for safe credential transmission.

    Rejects non-http/https schemes, URLs with no host, and remote HTTP
    endpoints (only localhost/127.0.0.1 are allowed over plaintext HTTP).

    Returns:
        The URL unchanged if valid, or ``None`` if rejected.
    """
    if not url:
        return None
    parsed = urlparse(url)
    if parsed.scheme not in {"https", "http"}:
        logger.warning("Invalid API URL scheme; only http/https allowed.")
        return None
    if not parsed.netloc:
        logger.warning("Invalid API URL; missing host.")
        return None
    if parsed.scheme == "http":
        if not allow_localhost_http:
            logger.warning("HTTP not allowed in this context.")
            return None
        host = parsed.hostname or ""
        if host not in {"localhost", "127.0.0.1"}:
            logger.warning("Refusing non-local http API URL for security.")
            return None
    return url


class SettingsManager:
    """Process-wide settings with write-through persistence.

    Environment values are an in-memory overlay: ``get()`` applies them to
    empty stored values, but only the stored values are ever written.

    Args:
        local: Local storage holding the settings document.
        environ: Environment mapping (defaults to ``os.environ``).
    """

    def __init__(self, local: LocalStorage, environ: Optional[Mapping[str, str]] = None):
        self._local = local
        self._lock = threading.Lock()
        self._stored = self._load()
        self._overlay = self._env_overlay(os.environ if environ is None else environ)

    def _load(self) -> Settings:
        stored = self._local.read_or_default(SETTINGS_KEY, {})
        if not isinstance(stored, dict):
            logger.error("Stored settings are not an object, using defaults")
            stored = {}
        return Settings.from_dict(stored)

    @staticmethod
    def _env_overlay(environ: Mapping[str, str]) -> Dict[str, str]:
        overlay = {}
        if environ.get("QUESTFLOW_API_URL"):
            url = validate_backend_url(environ["QUESTFLOW_API_URL"])
            if url:
                overlay["api_url"] = url.rstrip("/")
        if environ.get("QUESTFLOW_API_KEY"):
            overlay["api_key"] = environ["QUESTFLOW_API_KEY"]
        return overlay

    def _effective(self, stored: Settings) -> Settings:
        effective = replace(stored)
        for name, value in self._overlay.items():
            if not getattr(effective, name):
                setattr(effective, name, value)
        return effective

    def get(self) -> Settings:
        """A copy of the current settings, environment values applied."""
        with self._lock:
            return self._effective(self._stored)

    def update(self, **changes: Any) -> Settings:
        """Apply and persist changes.

        Raises:
            ConfigurationError: On unknown names or invalid values.
            PersistenceError: If the settings could not be written (nothing
                changed).
        """
        unknown = set(changes) - SETTING_NAMES
        if unknown:
            raise ConfigurationError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        for name in BOOLEAN_SETTINGS & set(changes):
            if not isinstance(changes[name], bool):
                raise ConfigurationError(f"{name} must be true or false")
        if changes.get("api_url"):
            url = validate_backend_url(changes["api_url"])
            if url is None:
                raise ConfigurationError(f"Invalid API URL: {changes['api_url']}")
            changes["api_url"] = url.rstrip("/")

        with self._lock:
            updated = replace(self._stored, **changes)
            self._write(updated)
            self._stored = updated
            return self._effective(updated)

    def reset(self, keep: Iterable[str] = ()) -> Settings:
        """Restore defaults, keeping the remote endpoint and credential.

        Args:
            keep: Further setting names to carry over.
        """
        names = set(PRESERVED_ON_RESET) | set(keep)
        unknown = names - SETTING_NAMES
        if unknown:
            raise ConfigurationError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        with self._lock:
            kept = {name: getattr(self._stored, name) for name in names}
            updated = Settings(**kept)
            self._write(updated)
            self._stored = updated
            return self._effective(updated)

    def _write(self, settings: Settings) -> None:
        try:
            self._local.set_item(SETTINGS_KEY, settings.to_dict())
        except OSError as e:
            raise PersistenceError(f"Failed to save settings: {e}") from e
