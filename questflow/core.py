"""
QuestFlow core.

This module provides the QuestFlow class, the primary interface for an
application embedding the record store. It wires the persistence backends,
record store, merge engine, attachment resolver and sync queue together and
adds the user-facing flows around them (confirmed deletes, import/export
files, clearing all data, directory selection).
"""

import logging
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from questflow.attachments import AttachmentResolver
from questflow.errors import (
    ConfigurationError,
    InvalidFormat,
    NotFound,
    Offline,
    PersistenceError,
)
from questflow.importers.json_importer import JsonImporter, export_records
from questflow.logging_config import log_import, log_store_event, log_sync
from questflow.protocols import (
    Confirmer,
    LoggingNotifier,
    Notifier,
    Severity,
    StaticConfirmer,
    Transport,
)
from questflow.settings import SettingsManager
from questflow.storage import (
    DirectoryBackend,
    FallbackBackend,
    LocalStorage,
    MergeEngine,
    PersistenceBackend,
    RecordStore,
)
from questflow.sync import ConnectivityMonitor, HttpTransport, SyncQueue
from questflow.types import DrainResult, MergeResult, Record, Settings
from questflow.utils import get_questflow_home

logger = logging.getLogger(__name__)

LOCAL_FOLDER = "local"
LOG_FOLDER = "logs"


class QuestFlow:
    """Local-first question store with background sync.

    Args:
        data_dir: Where settings, the sync queue and the fallback collection
            live. Defaults to the QuestFlow home directory.
        transport: Delivers sync items. Defaults to HttpTransport against the
            configured API URL.
        notifier: Receives user-visible events. Defaults to logging them.
        confirmer: Asked before destructive actions. Defaults to declining,
            so callers without a UI must opt in explicitly.
        connectivity: Connectivity monitor. Defaults to probing the API's
            health endpoint when the default transport is used.
        environ: Environment mapping for settings defaults.
    """

    def __init__(
        self,
        data_dir: Optional[Union[str, Path]] = None,
        *,
        transport: Optional[Transport] = None,
        notifier: Optional[Notifier] = None,
        confirmer: Optional[Confirmer] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.data_dir = Path(data_dir).expanduser() if data_dir else get_questflow_home()
        self.log_dir = self.data_dir / LOG_FOLDER
        self.notifier = notifier or LoggingNotifier()
        self.confirmer = confirmer or StaticConfirmer(False)

        self.local = LocalStorage(self.data_dir / LOCAL_FOLDER)
        self.settings = SettingsManager(self.local, environ=environ)
        self.fallback = FallbackBackend(self.local)

        self._owns_transport = transport is None
        self.transport = transport or HttpTransport(self.settings)
        if connectivity is None:
            if isinstance(self.transport, HttpTransport):
                connectivity = ConnectivityMonitor(check_fn=self.transport.check_health)
            else:
                connectivity = ConnectivityMonitor(online=True)
        self.connectivity = connectivity

        self.sync_queue = SyncQueue(
            self.transport,
            self.local,
            self.settings,
            self.connectivity,
            records_fn=lambda: self.store.list(),
            notifier=self.notifier,
        )
        self.store = self._open_store(self.settings.get().directory_path)
        self.merger = MergeEngine(self.store)
        self.resolver = AttachmentResolver(lambda: self.store.backend)

        logger.debug(
            f"QuestFlow initialized with {self.store.backend.describe()}, "
            f"{len(self.store)} records, {len(self.sync_queue)} pending sync items"
        )

    def _open_store(self, directory_path: Optional[str]) -> RecordStore:
        backend: PersistenceBackend = self.fallback
        if directory_path:
            if DirectoryBackend.is_supported(directory_path):
                backend = DirectoryBackend(directory_path)
            else:
                self._warn_limited_storage(f"Record directory {directory_path} is unavailable.")

        try:
            return self._build_store(backend)
        except PersistenceError as e:
            if backend is self.fallback:
                raise
            logger.error(f"Failed to load {backend.describe()}: {e}")
            self._warn_limited_storage(f"Could not read {directory_path}.")
            return self._build_store(self.fallback)

    def _build_store(self, backend: PersistenceBackend) -> RecordStore:
        return RecordStore(
            backend,
            mirror=self.fallback,
            sync_queue=self.sync_queue,
            sync_enabled_fn=self._sync_enabled,
            notifier=self.notifier,
        )

    def _warn_limited_storage(self, reason: str) -> None:
        self.notifier.notify(
            Severity.WARNING,
            "Limited Storage Support",
            f"{reason} Questions are kept in local storage and media files will not be saved.",
        )

    def _sync_enabled(self) -> bool:
        settings = self.settings.get()
        return settings.auto_sync and settings.sync_configured

    # === Records ===

    def list_records(self) -> List[Record]:
        return self.store.list()

    def get_record(self, record_id: str) -> Record:
        return self.store.get(record_id)

    def create_record(self, draft: Union[Record, Dict[str, Any]]) -> Record:
        return self.store.create(draft)

    def update_record(self, record_id: str, patch: Dict[str, Any]) -> Record:
        return self.store.update(record_id, patch)

    def delete_record(self, record_id: str, confirm: bool = True) -> bool:
        """Delete a record, asking the confirmer first unless ``confirm`` is False.

        Returns:
            True if the record was removed; False if it did not exist or the
            user declined.
        """
        if confirm and not self.confirmer.confirm(
            "Delete Question",
            "Are you sure you want to delete this question? This action cannot be undone.",
            "Delete",
            "Cancel",
        ):
            logger.info(f"Delete of {record_id} cancelled")
            return False
        return self.store.delete(record_id)

    def read_attachment(self, record_id: str, index: int) -> bytes:
        """Bytes of a record's attachment.

        Raises:
            NotFound: If the record or attachment does not exist.
            Unavailable: If the bytes are not reachable in the current mode.
        """
        record = self.store.get(record_id)
        if not 0 <= index < len(record.attachments):
            raise NotFound(f"{record_id}[{index}]", what="Attachment")
        return self.resolver.materialize(record.attachments[index])

    # === Storage ===

    def choose_directory(self, path: Union[str, Path]) -> int:
        """Make ``path`` the record directory and reload everything from it.

        Returns:
            Number of records loaded.

        Raises:
            PersistenceError: If the directory is unusable. The current
                backend stays active.
        """
        if not DirectoryBackend.is_supported(path):
            raise PersistenceError(f"Not a writable directory: {path}")
        backend = DirectoryBackend(path)
        count = self.store.switch_backend(backend)
        self.settings.update(directory_path=str(backend.root))
        log_store_event("switch_root", f"root={backend.root}, records={count}", log_dir=self.log_dir)
        self.notifier.notify(
            Severity.SUCCESS, "Directory Selected", f"Loaded {count} questions from {backend.root}"
        )
        return count

    def export_to(self, path: Union[str, Path]) -> int:
        """Write the collection to ``path`` as a JSON export.

        Returns:
            Number of records exported.
        """
        records = self.store.export_records()
        target = Path(path).expanduser()
        try:
            target.write_text(export_records(records), encoding="utf-8")
        except OSError as e:
            raise PersistenceError(f"Failed to write export {target}: {e}") from e
        logger.info(f"Exported {len(records)} records to {target}")
        return len(records)

    def import_from(self, path: Union[str, Path]) -> MergeResult:
        """Merge a JSON export into the collection (last write wins).

        Raises:
            FileNotFoundError: If the file doesn't exist
            InvalidFormat: If the file is not a valid export (nothing changes)
            PersistenceError: If the merged records could not be written
        """
        importer = JsonImporter(path)
        try:
            result = importer.import_to(self.merger)
        except (FileNotFoundError, InvalidFormat, PersistenceError) as e:
            self.notifier.notify(Severity.ERROR, "Import Error", f"Failed to import data: {e}")
            raise
        log_import(
            str(importer.file_path), result.total, result.inserted, result.replaced, log_dir=self.log_dir
        )
        self.notifier.notify(
            Severity.SUCCESS, "Import Complete", f"Successfully imported {result.total} questions."
        )
        return result

    def clear_data(self) -> bool:
        """Delete every record and attachment and reset settings, after confirmation.

        The API endpoint, credential and active record directory are kept.

        Returns:
            False if the user declined.
        """
        if not self.confirmer.confirm(
            "Clear All Data",
            "Are you sure you want to clear all data? This will delete all questions "
            "and media files. This action cannot be undone.",
            "Clear",
            "Cancel",
        ):
            return False

        self.store.clear()
        keep = ["directory_path"] if isinstance(self.store.backend, DirectoryBackend) else []
        self.settings.reset(keep=keep)
        log_store_event("clear", f"backend={self.store.backend.describe()}", log_dir=self.log_dir)
        self.notifier.notify(Severity.SUCCESS, "Data Cleared", "All data has been cleared.")
        return True

    # === Sync ===

    def force_sync(self) -> DrainResult:
        """Queue every record for upload and drain the queue.

        Raises:
            ConfigurationError: If the API URL or key is missing.
            Offline: If the API is unreachable.
        """
        try:
            result = self.sync_queue.force_sync()
        except (ConfigurationError, Offline) as e:
            self.notifier.notify(Severity.ERROR, "Sync Error", str(e))
            raise
        if result.skipped is None:
            log_sync(result.delivered, result.abandoned, len(self.sync_queue), log_dir=self.log_dir)
        return result

    def sync_status(self) -> Dict[str, Any]:
        return self.sync_queue.status()

    def update_settings(self, **changes: Any) -> Settings:
        return self.settings.update(**changes)

    # === Lifecycle ===

    def status(self) -> Dict[str, Any]:
        backend = self.store.backend
        return {
            "backend": backend.describe(),
            "supports_binary": backend.supports_binary,
            "record_count": len(self.store),
            "directory_path": self.settings.get().directory_path,
            "sync": self.sync_status(),
        }

    def close(self) -> None:
        self.sync_queue.close()
        if self._owns_transport and isinstance(self.transport, HttpTransport):
            self.transport.close()
