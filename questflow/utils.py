"""Shared helpers for QuestFlow: data directory, ids and timestamps."""

import logging
import os
import tempfile
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def get_questflow_home() -> Path:
    """Return the QuestFlow data directory, creating it if needed.

    Priority:
    1. QUESTFLOW_DATA_DIR environment variable
    2. ~/.questflow
    3. <tempdir>/.questflow when the home directory is not writable
    """
    env_dir = os.environ.get("QUESTFLOW_DATA_DIR")
    home = Path(env_dir).expanduser() if env_dir else Path.home() / ".questflow"
    try:
        home.mkdir(parents=True, exist_ok=True)
        return home
    except OSError as e:
        fallback = Path(tempfile.gettempdir()) / ".questflow"
        logger.warning(f"Cannot write to {home} ({e}), falling back to {fallback}")
        fallback.mkdir(parents=True, exist_ok=True)
        return fallback


def generate_id() -> str:
    """Generate an opaque unique identifier."""
    return uuid.uuid4().hex


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def format_datetime(dt: Optional[datetime]) -> Optional[str]:
    """Serialize a datetime to ISO-8601, passing None through."""
    if dt is None:
        return None
    return dt.isoformat()


def parse_datetime(s: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware datetime.

    A trailing ``Z`` is accepted and naive values are taken as UTC.

    Raises:
        ValueError: If the string is not a valid ISO-8601 timestamp.
    """
    if not s:
        return None
    if not isinstance(s, str):
        raise ValueError(f"Timestamp must be a string, got {type(s).__name__}")
    dt = datetime.fromisoformat(s.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt
