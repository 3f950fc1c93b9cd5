"""Sync Orchestrator — periodic and explicit pulls from linked spreadsheets.

A sweep walks every linked table and pulls it independently; a failure on one
table is recorded on that table and the sweep moves on. Pulls for the same
table never overlap: the sweep and explicit syncs share a per-table lock.
The remote is authoritative for sheet-bound columns up to its own length;
stored rows beyond that length are kept.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ..errors import SheetboardError, ValidationError
from ..tables.merge import merge
from ..tables.schema import TableSnapshot
from ..utils.logging import get_logger

TABLE_UPDATED = "tableUpdated"
SYNC_ERROR = "syncError"


class SweepGuard:
    """Single in-flight flag for the periodic sweep."""

    def __init__(self):
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def try_acquire(self) -> bool:
        if self._in_flight:
            return False
        self._in_flight = True
        return True

    def release(self) -> None:
        self._in_flight = False


@dataclass
class SyncResult:
    changed: bool
    table: TableSnapshot
    rows: list[dict] = field(default_factory=list)


def build_candidate(pulled: list[dict], stored: list[dict]) -> list[dict]:
    """Pulled rows followed by any stored rows beyond the remote's length."""
    return list(pulled) + [dict(r) for r in stored[len(pulled):]]


class SyncOrchestrator:
    """Background service owning the sweep loop, the sweep guard and the per-table locks.

    Started and stopped with the application; reports through ``health_check``.
    """

    def __init__(self, row_store, side_store, adapter, publisher, interval: float = 300.0):
        self.running = False
        self.health_status = "initialized"
        self.last_heartbeat: Optional[datetime] = None
        self.logger = get_logger("sync.orchestrator")
        self._row_store = row_store
        self._side_store = side_store
        self._adapter = adapter
        self._publisher = publisher
        self._interval = interval
        self.guard = SweepGuard()
        self._table_locks: dict[int, asyncio.Lock] = {}
        self._poll_task: Optional[asyncio.Task] = None
        self._sweep_tasks: set[asyncio.Task] = set()
        self._sweeps = 0
        self._skipped = 0
        self._last_sweep: Optional[dict] = None

    def table_lock(self, table_id: int) -> asyncio.Lock:
        lock = self._table_locks.get(table_id)
        if lock is None:
            lock = self._table_locks[table_id] = asyncio.Lock()
        return lock

    def forget_table(self, table_id: int) -> None:
        self._table_locks.pop(table_id, None)

    def heartbeat(self) -> None:
        self.last_heartbeat = datetime.now(timezone.utc)

    # --- Lifecycle ---

    async def start(self) -> None:
        self.running = True
        self.health_status = "running"
        self._poll_task = asyncio.create_task(self._poll_loop())
        self.heartbeat()
        self.logger.info("sync_orchestrator_started", interval=self._interval)

    async def stop(self) -> None:
        self.running = False
        if self._poll_task and not self._poll_task.done():
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
        for task in list(self._sweep_tasks):
            task.cancel()
        if self._sweep_tasks:
            await asyncio.gather(*self._sweep_tasks, return_exceptions=True)
        self.health_status = "stopped"
        self.logger.info("sync_orchestrator_stopped")

    async def health_check(self) -> dict:
        self.heartbeat()
        return {
            "status": self.health_status,
            "last_heartbeat": self.last_heartbeat.isoformat() if self.last_heartbeat else None,
            "details": {
                "interval_seconds": self._interval,
                "sweep_in_flight": self.guard.in_flight,
                "sweeps": self._sweeps,
                "skipped_ticks": self._skipped,
                "last_sweep": self._last_sweep,
            },
        }

    async def _poll_loop(self) -> None:
        while self.running:
            try:
                await asyncio.sleep(self._interval)
                if self.running:
                    # Not awaited: a tick that lands during a long sweep is skipped
                    task = asyncio.create_task(self.sweep())
                    self._sweep_tasks.add(task)
                    task.add_done_callback(self._sweep_tasks.discard)
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.logger.error("sync_tick_error", error=str(e))

    # --- Notifications ---

    async def merged_rows(self, table: TableSnapshot) -> list[dict]:
        return merge(table, await self._side_store.get_all(table.id))

    async def notify_updated(self, table: TableSnapshot) -> list[dict]:
        """Publish ``tableUpdated`` with the merged rows and return them."""
        rows = await self.merged_rows(table)
        await self._publisher.publish(table.id, TABLE_UPDATED, {"tableId": table.id, "data": rows})
        return rows

    async def record_failure(self, table_id: int, error: str) -> None:
        await self._row_store.record_sync_error(table_id, error)
        await self._publisher.publish(table_id, SYNC_ERROR, {"tableId": table_id, "error": error})

    # --- Sync ---

    async def sweep(self) -> dict:
        """One pass over all linked tables. A no-op if another sweep is running."""
        if not self.guard.try_acquire():
            self._skipped += 1
            self.logger.debug("sync_sweep_skipped")
            return {"skipped": True}
        summary = {"skipped": False, "tables": 0, "changed": 0, "failed": 0}
        try:
            for table_id in await self._row_store.list_linked():
                summary["tables"] += 1
                try:
                    result = await self.sync_table(table_id)
                    if result.changed:
                        summary["changed"] += 1
                except SheetboardError:
                    summary["failed"] += 1
                except Exception as e:
                    summary["failed"] += 1
                    self.logger.error("sync_table_unexpected_error", table_id=table_id, error=str(e))
                    await self.record_failure(table_id, str(e))
        finally:
            self.guard.release()
        self._sweeps += 1
        self._last_sweep = {**summary, "at": datetime.now(timezone.utc).isoformat()}
        self.heartbeat()
        self.logger.info("sync_sweep_complete", **summary)
        return summary

    async def sync_table(self, table_id: int, owner_id: Optional[str] = None) -> SyncResult:
        """Pull one table. With ``owner_id`` the table must belong to that owner.

        Failures are recorded on the table, published as ``syncError`` and
        re-raised.
        """
        if owner_id is not None:
            await self._row_store.get(owner_id, table_id)
        async with self.table_lock(table_id):
            table = await self._row_store.get_by_id(table_id)
            if not table.is_linked:
                raise ValidationError(f"Table {table_id} has no linked spreadsheet")
            try:
                pulled = await self._adapter.pull(table)
            except SheetboardError as e:
                self.logger.warning("sync_table_failed", table_id=table_id, error=str(e))
                await self.record_failure(table_id, str(e))
                raise

            candidate = build_candidate(pulled, table.rows)
            if candidate == table.rows:
                if table.last_sync_error:
                    await self._row_store.clear_sync_error(table_id)
                    table.last_sync_error = None
                return SyncResult(changed=False, table=table, rows=await self.merged_rows(table))

            table = await self._row_store.replace_rows(
                table_id, candidate, datetime.now(timezone.utc)
            )
            rows = await self.notify_updated(table)
            self.logger.info("sync_table_updated", table_id=table_id, rows=len(candidate))
            return SyncResult(changed=True, table=table, rows=rows)
