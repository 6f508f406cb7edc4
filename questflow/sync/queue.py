"""
Sync queue for QuestFlow.

A durable FIFO of outbound mutations. Items are delivered strictly in
enqueue order through the Transport collaborator:

- Delivered items are removed.
- Failed items stay pending with ``attempts`` incremented, until they reach
  MAX_ATTEMPTS and are abandoned to the dead-letter list with one
  user-visible notice.

The queue and the dead letters are persisted to local storage after every
change, so a restart resumes exactly where the last pass stopped.
"""

import copy
import logging
import threading
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional

from questflow.errors import ConfigurationError, Offline, PersistenceError
from questflow.protocols import Notifier, Severity, Transport
from questflow.settings import SettingsManager
from questflow.storage.local import DEAD_LETTER_KEY, SYNC_QUEUE_KEY, LocalStorage
from questflow.types import DrainResult, QueueItem, Record
from questflow.utils import format_datetime, generate_id, utc_now

from .connectivity import ConnectivityMonitor

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3


def _load_items(local: LocalStorage, key: str) -> List[QueueItem]:
    raw = local.read_or_default(key, [])
    if not isinstance(raw, list):
        logger.error(f"Stored {key} is not a list, starting empty")
        return []
    items = []
    for entry in raw:
        try:
            item = QueueItem.from_dict(entry)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed entry in {key}: {e}")
            continue
        if item.enqueued_at is None:
            item.enqueued_at = utc_now()
        items.append(item)
    return items


def _copy_item(item: QueueItem) -> QueueItem:
    return replace(item, payload=copy.deepcopy(item.payload))


class SyncQueue:
    """Durable outbound mutation queue with bounded retries.

    Args:
        transport: Delivers items to the remote service.
        local: Local storage holding the queue and dead letters.
        settings: Source of the endpoint/credential; receives the last sync time.
        connectivity: Reports whether the remote is reachable. Transitions
            trigger a drain (online) or a notice (offline).
        records_fn: Returns the current records, for force_sync().
        notifier: Receives user-visible sync events.
        max_attempts: Delivery attempts before an item is abandoned.
    """

    def __init__(
        self,
        transport: Transport,
        local: LocalStorage,
        settings: SettingsManager,
        connectivity: ConnectivityMonitor,
        *,
        records_fn: Optional[Callable[[], Iterable[Record]]] = None,
        notifier: Optional[Notifier] = None,
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self._transport = transport
        self._local = local
        self._settings = settings
        self._connectivity = connectivity
        self._records_fn = records_fn
        self._notifier = notifier
        self._max_attempts = max_attempts

        self._lock = threading.Lock()
        self._draining = False
        self._closed = False
        self._items = _load_items(local, SYNC_QUEUE_KEY)
        self._dead = _load_items(local, DEAD_LETTER_KEY)
        if self._items:
            logger.info(f"Loaded {len(self._items)} pending sync items")

        connectivity.subscribe(self._on_connectivity_change)

    # === Inspection ===

    @property
    def is_syncing(self) -> bool:
        return self._draining

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def pending(self) -> List[QueueItem]:
        """Pending items in delivery order, as copies."""
        with self._lock:
            return [_copy_item(i) for i in self._items]

    def dead_letters(self) -> List[QueueItem]:
        """Abandoned items, oldest first, as copies."""
        with self._lock:
            return [_copy_item(i) for i in self._dead]

    def status(self) -> Dict[str, Any]:
        with self._lock:
            queue_length = len(self._items)
            dead_letter = len(self._dead)
        return {
            "is_syncing": self._draining,
            "last_sync_time": self._settings.get().last_sync_time,
            "queue_length": queue_length,
            "dead_letter": dead_letter,
        }

    # === Mutation ===

    def enqueue(self, action: str, payload: Dict[str, Any], *, drain: bool = True) -> QueueItem:
        """Append a pending item and persist the queue.

        Args:
            action: Remote operation name (``create``, ``update``, ``delete``).
            payload: Data to send. It is deep-copied.
            drain: Attempt an opportunistic drain afterwards.

        Raises:
            PersistenceError: If the queue could not be written (the item is
                not queued).
        """
        item = QueueItem(
            id=generate_id(),
            action=action,
            payload=copy.deepcopy(payload),
            enqueued_at=utc_now(),
        )
        with self._lock:
            self._items.append(item)
            try:
                self._write()
            except PersistenceError:
                self._items.pop()
                raise
        logger.debug(f"Queued {action} ({item.id})")

        if drain:
            self.kick()
        return item

    def requeue_dead_letters(self, ids: Optional[List[str]] = None) -> int:
        """Move dead letters back to the queue with their attempts reset.

        Args:
            ids: Specific item ids to requeue, or None for all.

        Returns:
            Number of items requeued.
        """
        with self._lock:
            selected = [i for i in self._dead if ids is None or i.id in ids]
            if not selected:
                return 0
            previous_items, previous_dead = list(self._items), list(self._dead)
            selected_ids = {i.id for i in selected}
            self._dead = [i for i in self._dead if i.id not in selected_ids]
            self._items.extend(replace(i, attempts=0) for i in selected)
            try:
                self._write()
            except PersistenceError:
                self._items, self._dead = previous_items, previous_dead
                raise
        logger.info(f"Requeued {len(selected)} dead-lettered sync items")
        return len(selected)

    def close(self) -> None:
        """Stop accepting drains. A pass in progress stops after its current item."""
        self._closed = True
        self._connectivity.unsubscribe(self._on_connectivity_change)

    # === Delivery ===

    def kick(self) -> DrainResult:
        """Opportunistic drain, used after enqueueing."""
        return self.drain()

    def drain(self) -> DrainResult:
        """Deliver pending items in order.

        Returns immediately when a drain is already running, the queue is
        closed or empty, or the remote is unreachable.
        """
        with self._lock:
            if self._draining:
                return DrainResult(skipped="already running")
            if self._closed:
                return DrainResult(skipped="closed")
            if not self._items:
                return DrainResult(skipped="empty")
            self._draining = True

        try:
            if not self._connectivity.is_online():
                logger.info("Offline - sync skipped, changes queued")
                return DrainResult(skipped="offline")
            if not self._settings.get().sync_configured:
                logger.warning("Sync skipped: API configuration not found")
                self._notify(Severity.ERROR, "Sync Error", "API configuration not found")
                return DrainResult(skipped="not configured")
            return self._run_pass()
        finally:
            with self._lock:
                self._draining = False

    def _run_pass(self) -> DrainResult:
        result = DrainResult()
        index = 0

        while True:
            with self._lock:
                if index >= len(self._items):
                    result.completed = True
                    break
                item = self._items[index]
            if self._closed:
                logger.info("Sync queue closed, stopping drain")
                break
            if not self._connectivity.is_online():
                logger.info("Connectivity lost during sync, stopping drain")
                break

            body = dict(item.payload)
            body["timestamp"] = format_datetime(item.enqueued_at)
            try:
                self._transport.send(item.action, body)
            except (ConfigurationError, Offline) as e:
                # Not the item's fault; no attempt is counted.
                logger.warning(f"Sync stopped: {e}")
                self._notify(Severity.ERROR, "Sync Error", str(e))
                result.errors.append(str(e))
                break
            except Exception as e:
                if self._record_failure(item, e, result):
                    continue  # Abandoned: the next item now sits at this index
                index += 1
                continue

            with self._lock:
                self._remove(item)
                self._write_logged()
            result.delivered += 1
            logger.debug(f"Delivered {item.action} ({item.id})")

        if result.success:
            try:
                self._settings.update(last_sync_time=format_datetime(utc_now()))
            except PersistenceError as e:
                logger.error(f"Failed to record last sync time: {e}")

        logger.info(
            f"Sync pass finished: delivered={result.delivered}, failed={result.failed}, "
            f"abandoned={result.abandoned}, completed={result.completed}"
        )
        return result

    def _record_failure(self, item: QueueItem, error: Exception, result: DrainResult) -> bool:
        """Count a failed attempt. Returns True if the item was abandoned."""
        with self._lock:
            item.attempts += 1
            abandoned = item.attempts >= self._max_attempts
            if abandoned:
                self._remove(item)
                self._dead.append(item)
            self._write_logged()

        result.errors.append(f"{item.action} ({item.id}): {error}")
        if not abandoned:
            result.failed += 1
            logger.warning(
                f"Sync of {item.action} ({item.id}) failed: {error} "
                f"(attempt {item.attempts}/{self._max_attempts})"
            )
            return False

        result.abandoned += 1
        logger.error(
            f"Sync of {item.action} ({item.id}) failed after {item.attempts} attempts, "
            f"moved to dead letters: {error}"
        )
        self._notify(
            Severity.ERROR,
            "Sync Failed",
            f"Failed to sync item after {self._max_attempts} attempts: {item.action}",
        )
        return True

    def force_sync(self) -> DrainResult:
        """Queue every current record as a ``create`` and drain.

        Raises:
            ConfigurationError: If no endpoint or credential is configured.
            Offline: If the remote is unreachable.
            PersistenceError: If the queue could not be written.
        """
        if not self._settings.get().sync_configured:
            raise ConfigurationError("API configuration not found")
        if not self._connectivity.is_online():
            raise Offline("No internet connection")

        records = list(self._records_fn()) if self._records_fn else []
        now = utc_now()
        items = [
            QueueItem(id=generate_id(), action="create", payload=r.to_dict(), enqueued_at=now)
            for r in records
        ]
        with self._lock:
            busy = self._draining
            if not busy:
                previous = list(self._items)
                self._items.extend(items)
                try:
                    self._write()
                except PersistenceError:
                    self._items = previous
                    raise
        if busy:
            self._notify(
                Severity.INFO, "Sync in Progress", "Please wait for the current sync to complete."
            )
            return DrainResult(skipped="already running")
        logger.info(f"Force sync queued {len(items)} records")

        result = self.drain()
        if result.success:
            self._notify(Severity.SUCCESS, "Sync Complete", "All questions have been synchronized.")
        return result

    # === Internals ===

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            self._notify(Severity.INFO, "Connection Restored", "Processing pending sync items...")
            self.drain()
        else:
            self._notify(
                Severity.WARNING,
                "Connection Lost",
                "Changes will be synced when connection is restored.",
            )

    def _remove(self, item: QueueItem) -> None:
        for index, candidate in enumerate(self._items):
            if candidate is item:
                del self._items[index]
                return

    def _write(self) -> None:
        try:
            self._local.set_item(SYNC_QUEUE_KEY, [i.to_dict() for i in self._items])
            self._local.set_item(DEAD_LETTER_KEY, [i.to_dict() for i in self._dead])
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(f"Failed to save sync queue: {e}") from e

    def _write_logged(self) -> None:
        try:
            self._write()
        except PersistenceError as e:
            logger.error(str(e))

    def _notify(self, severity: Severity, title: str, message: str) -> None:
        if self._notifier is not None:
            self._notifier.notify(severity, title, message)
