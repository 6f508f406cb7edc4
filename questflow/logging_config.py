"""Logging setup for QuestFlow.

``setup_questflow_logging`` sends the ``questflow`` logger to a dated file
under ``<data dir>/logs``. ``log_store_event`` keeps a separate, line-per-event
audit trail of bulk store operations (imports, syncs, clears, root switches).

Every function takes an optional ``log_dir``; without one the logs go under
the default data directory.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Union

from questflow.utils import get_questflow_home

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"

logger = logging.getLogger(__name__)


def _log_dir(log_dir: Optional[Union[str, Path]] = None) -> Path:
    path = Path(log_dir) if log_dir is not None else get_questflow_home() / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def setup_questflow_logging(level: str = "INFO", log_dir: Optional[Union[str, Path]] = None) -> logging.Logger:
    """Configure the ``questflow`` logger to write ``logs/local-<date>.log``.

    Args:
        level: Level name, case-insensitive. Unknown names mean INFO. DEBUG
            also echoes to the console.
        log_dir: Directory for the log file. Defaults to ``<data dir>/logs``.

    Returns:
        The configured ``questflow`` logger. Repeated calls reuse its handlers.
    """
    questflow_logger = logging.getLogger("questflow")
    log_level = getattr(logging, str(level).upper(), None)
    if not isinstance(log_level, int):
        log_level = logging.INFO
    questflow_logger.setLevel(log_level)

    formatter = logging.Formatter(LOG_FORMAT)

    if not any(isinstance(h, logging.FileHandler) for h in questflow_logger.handlers):
        log_file = _log_dir(log_dir) / f"local-{datetime.now().strftime('%Y-%m-%d')}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        questflow_logger.addHandler(file_handler)

    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in questflow_logger.handlers
    )
    if log_level == logging.DEBUG and not has_console:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        questflow_logger.addHandler(console)

    return questflow_logger


def log_store_event(event_type: str, details: str, log_dir: Optional[Union[str, Path]] = None) -> None:
    """Append one line to ``logs/store-events-<date>.log``.

    The operation being recorded has already happened, so a write failure is
    logged and dropped.
    """
    now = datetime.now()
    try:
        path = _log_dir(log_dir) / f"store-events-{now.strftime('%Y-%m-%d')}.log"
        with open(path, "a", encoding="utf-8") as f:
            f.write(f"{now.isoformat(timespec='seconds')} | {event_type} | {details}\n")
    except OSError as e:
        logger.warning(f"Failed to record store event {event_type}: {e}")


def log_import(
    source: str, total: int, inserted: int, replaced: int, log_dir: Optional[Union[str, Path]] = None
) -> None:
    log_store_event(
        "import", f"source={source}, total={total}, inserted={inserted}, replaced={replaced}", log_dir=log_dir
    )


def log_sync(delivered: int, abandoned: int, pending: int, log_dir: Optional[Union[str, Path]] = None) -> None:
    log_store_event("sync", f"delivered={delivered}, abandoned={abandoned}, pending={pending}", log_dir=log_dir)
