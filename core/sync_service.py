"""Two-phase orchestration of local mutations and their remote mirrors.

Every public mutation first commits to the local ledger, which always succeeds
or raises a local validation error, and only then schedules the matching
remote job. Remote jobs report through :class:`SyncStatusTracker`; a failed
job is remembered so that it can be re-triggered explicitly with
:meth:`InventoryService.retry_last_sync`. Nothing is retried automatically.
"""
from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional

from core.ledger import LedgerEngine
from core.models import Item, StockMovement
from core.sheets_sync import SheetsSync, SyncResult
from db import LocalCache
from settings import GoogleSyncSettings, save_google_sync_settings

logger = logging.getLogger(__name__)


class SyncState(str, Enum):
    IDLE = "idle"
    SYNCING = "syncing"
    SUCCESS = "success"
    ERROR = "error"


StatusListener = Callable[[SyncState, Optional[SyncResult]], None]


class SyncStatusTracker:
    """Hold the state of the most recent sync attempt and notify listeners."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = SyncState.IDLE
        self._last_result: Optional[SyncResult] = None
        self._in_flight = 0
        self._listeners: List[StatusListener] = []

    @property
    def state(self) -> SyncState:
        with self._lock:
            return self._state

    @property
    def last_result(self) -> Optional[SyncResult]:
        with self._lock:
            return self._last_result

    @property
    def in_flight(self) -> int:
        with self._lock:
            return self._in_flight

    def add_listener(self, listener: StatusListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def remove_listener(self, listener: StatusListener) -> None:
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def begin(self) -> None:
        with self._lock:
            self._in_flight += 1
            self._state = SyncState.SYNCING
        self._notify(SyncState.SYNCING, None)

    def finish(self, result: SyncResult) -> None:
        state = SyncState.SUCCESS if result.success else SyncState.ERROR
        with self._lock:
            self._in_flight = max(0, self._in_flight - 1)
            self._last_result = result
            self._state = state
        self._notify(state, result)

    def _notify(self, state: SyncState, result: Optional[SyncResult]) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(state, result)
            except Exception:  # pragma: no cover - listener bugs must not break sync
                logger.exception("Sync status listener failed")


@dataclass(frozen=True)
class PendingSync:
    """A remote job bound to the item code it writes."""

    description: str
    code: str
    job: Callable[[], SyncResult]


@dataclass(frozen=True)
class MutationOutcome:
    """Local result of a mutation plus its remote result when run inline."""

    item: Item
    sync: Optional[SyncResult] = None
    movement: Optional[StockMovement] = None
    removed_movements: int = 0


class InventoryService:
    """Front door for item and movement changes.

    With ``background=True`` remote jobs run on daemon threads and the
    returned :class:`MutationOutcome` carries no sync result; callers observe
    the :attr:`tracker` instead. Each item code has its own queue drained by one
    worker, so remote writes for a code run one at a time in commit order.
    """

    def __init__(
        self,
        ledger: LedgerEngine,
        sheets_sync: SheetsSync,
        *,
        background: bool = False,
        tracker: Optional[SyncStatusTracker] = None,
    ) -> None:
        self._ledger = ledger
        self._sync = sheets_sync
        self._background = background
        self._tracker = tracker or SyncStatusTracker()
        self._queues: Dict[str, Deque[PendingSync]] = {}
        self._queues_guard = threading.Lock()
        self._inline_lock = threading.Lock()
        self._workers: List[threading.Thread] = []
        self._failed: Optional[PendingSync] = None
        self._failed_guard = threading.Lock()

    @property
    def ledger(self) -> LedgerEngine:
        return self._ledger

    @property
    def sheets_sync(self) -> SheetsSync:
        return self._sync

    @property
    def tracker(self) -> SyncStatusTracker:
        return self._tracker

    @property
    def last_result(self) -> Optional[SyncResult]:
        return self._tracker.last_result

    @property
    def pending_retry(self) -> Optional[PendingSync]:
        with self._failed_guard:
            return self._failed

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------
    def _dispatch(self, pending: PendingSync) -> Optional[SyncResult]:
        if not self._background:
            with self._inline_lock:
                return self._execute(pending)
        with self._queues_guard:
            queue = self._queues.get(pending.code)
            if queue is not None:
                queue.append(pending)
                return None
            self._queues[pending.code] = deque([pending])
            worker = threading.Thread(
                target=self._drain, args=(pending.code,), name=f"sync-{pending.code}", daemon=True
            )
            self._workers = [thread for thread in self._workers if thread.is_alive()]
            self._workers.append(worker)
            worker.start()
        return None

    def _drain(self, code: str) -> None:
        while True:
            with self._queues_guard:
                queue = self._queues[code]
                if not queue:
                    del self._queues[code]
                    return
                pending = queue.popleft()
            self._execute(pending)

    def _execute(self, pending: PendingSync) -> SyncResult:
        self._tracker.begin()
        try:
            result = pending.job()
        except Exception as exc:  # pragma: no cover - SheetsSync already wraps known errors
            logger.exception("%s crashed", pending.description)
            result = SyncResult(False, f"{pending.description} failed: {exc}")
        with self._failed_guard:
            if result.success:
                if self._failed is not None and self._failed.code == pending.code:
                    self._failed = None
            else:
                self._failed = pending
        self._tracker.finish(result)
        if result.success:
            logger.info("%s: %s", pending.description, result.message)
        return result

    def wait_for_sync(self, timeout: Optional[float] = None) -> None:
        """Block until every background job started so far has finished."""

        with self._queues_guard:
            threads = list(self._workers)
        for thread in threads:
            thread.join(timeout)

    def _insert_job(self, item: Item) -> Callable[[], SyncResult]:
        done = {"row": False}

        # A retry after a failed history-sheet setup must not append the master row twice.
        def job() -> SyncResult:
            if not done["row"]:
                appended = self._sync.append_master_row(item)
                if not appended.success:
                    return appended
                done["row"] = True
            sheet = self._sync.ensure_item_sheet(item.code)
            if not sheet.success:
                return sheet
            return SyncResult.ok(f"Item {item.code} added to master sheet")

        return job

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------
    def add_item(self, **fields: Any) -> MutationOutcome:
        item = self._ledger.create_item(**fields)
        result = self._dispatch(
            PendingSync(
                f"Add item {item.code}",
                item.code,
                self._insert_job(item),
            )
        )
        return MutationOutcome(item=item, sync=result)

    def update_item(self, item_id: str, **changes: Any) -> MutationOutcome:
        item = self._ledger.update_item(item_id, **changes)
        result = self._dispatch(
            PendingSync(
                f"Update item {item.code}",
                item.code,
                lambda: self._sync.update_master_row(item),
            )
        )
        return MutationOutcome(item=item, sync=result)

    def delete_item(self, item_id: str) -> MutationOutcome:
        item, removed = self._ledger.delete_item(item_id)
        result = self._dispatch(
            PendingSync(
                f"Delete item {item.code}",
                item.code,
                lambda: self._sync.delete_master_row(item.code),
            )
        )
        return MutationOutcome(item=item, sync=result, removed_movements=len(removed))

    def record_movement(self, movement: StockMovement) -> MutationOutcome:
        item, stored = self._ledger.record_movement(movement)
        done = {"history": False}

        # A retry after a failed master update must not append the history row twice.
        def job() -> SyncResult:
            if not done["history"]:
                history = self._sync.append_movement(item.code, stored, item)
                if not history.success:
                    return history
                done["history"] = True
            master = self._sync.update_master_row(item)
            if not master.success:
                return master
            return SyncResult.ok(f"Stock entry and master row synced for {item.code}")

        result = self._dispatch(PendingSync(f"Record {stored.type.value} for {item.code}", item.code, job))
        return MutationOutcome(item=item, sync=result, movement=stored)

    # ------------------------------------------------------------------
    # Manual actions
    # ------------------------------------------------------------------
    def retry_last_sync(self) -> Optional[SyncResult]:
        """Re-run the most recent failed remote job, if there is one.

        The job replays the snapshot captured at mutation time and is queued
        behind any job already pending for the same item code. In background
        mode the result is reported through the tracker only.
        """

        pending = self.pending_retry
        if pending is None:
            return None
        logger.info("Retrying %s", pending.description)
        return self._dispatch(pending)

    def resync_item(self, item_id: str, *, create: bool = False) -> Optional[SyncResult]:
        """Send the current local snapshot of an item to the master sheet again.

        ``create`` appends a new row; otherwise the existing row is updated and
        a missing row is reported as a failure rather than inserted.
        """

        item = self._ledger.get_item(item_id)
        if create:
            return self._dispatch(
                PendingSync(f"Insert master row for {item.code}", item.code, self._insert_job(item))
            )
        return self._dispatch(
            PendingSync(
                f"Update master row for {item.code}",
                item.code,
                lambda: self._sync.update_master_row(item),
            )
        )

    def test_connection(self) -> SyncResult:
        self._tracker.begin()
        result = self._sync.test_connection()
        self._tracker.finish(result)
        return result

    def reconnect(self, settings: GoogleSyncSettings, cache: LocalCache) -> SyncResult:
        """Persist ``settings``, reconfigure the gateway and provision the master sheet."""

        save_google_sync_settings(settings, cache)
        self._sync.gateway.reconfigure(settings)
        result = self.test_connection()
        if not result.success:
            return result
        self._tracker.begin()
        setup = self._sync.ensure_master_sheet()
        self._tracker.finish(setup)
        if not setup.success:
            return setup
        return result


__all__ = [
    "InventoryService",
    "MutationOutcome",
    "PendingSync",
    "StatusListener",
    "SyncState",
    "SyncStatusTracker",
]
