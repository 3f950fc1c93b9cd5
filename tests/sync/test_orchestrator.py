"""Tests for the sync orchestrator: explicit syncs, sweeps and the sweep guard."""

import asyncio
import json

import pytest
from starlette.responses import JSONResponse

from sheetboard.errors import MissingColumnsError, NotFound, ValidationError
from sheetboard.sync.orchestrator import SweepGuard, SyncOrchestrator, build_candidate
from sheetboard.tables.schema import SpreadsheetRef, parse_columns


def _ref(external_id):
    return SpreadsheetRef(external_id, f"https://docs.google.com/spreadsheets/d/{external_id}/edit")


@pytest.fixture
def columns(amount_notes):
    return parse_columns(amount_notes)


class TestHelpers:
    def test_guard(self):
        guard = SweepGuard()
        assert guard.try_acquire() is True
        assert guard.try_acquire() is False
        assert guard.in_flight
        guard.release()
        assert guard.try_acquire() is True

    def test_candidate_keeps_local_tail(self):
        pulled = [{"_id": "a", "Amount": 1}]
        stored = [{"_id": "a", "Amount": 0}, {"_id": "b", "Amount": 2}]
        assert build_candidate(pulled, stored) == [{"_id": "a", "Amount": 1}, {"_id": "b", "Amount": 2}]


class TestSyncTable:
    @pytest.mark.asyncio
    async def test_pull_replaces_rows_and_notifies(
        self, orchestrator, row_store, sheets_client, publisher, columns
    ):
        sheets_client.add_sheet("s1", [["Amount"], ["10"], ["20"]])
        table = await row_store.create("alice", "T", columns, _ref("s1"))

        result = await orchestrator.sync_table(table.id)

        assert result.changed is True
        assert [r["Amount"] for r in result.table.rows] == [10.0, 20.0]
        assert result.table.last_synced_at is not None
        updates = publisher.of_type("tableUpdated")
        assert len(updates) == 1
        assert updates[0][2]["tableId"] == table.id

    @pytest.mark.asyncio
    async def test_second_sync_is_a_no_op(self, orchestrator, row_store, sheets_client, publisher, columns):
        sheets_client.add_sheet("s1", [["Amount"], ["10"]])
        table = await row_store.create("alice", "T", columns, _ref("s1"))

        first = await orchestrator.sync_table(table.id)
        second = await orchestrator.sync_table(table.id)

        assert second.changed is False
        assert second.table.last_synced_at == first.table.last_synced_at
        assert second.table.rows == first.table.rows
        assert len(publisher.of_type("tableUpdated")) == 1

    @pytest.mark.asyncio
    async def test_extra_local_rows_survive(self, orchestrator, row_store, sheets_client, columns):
        sheets_client.add_sheet("s1", [["Amount"], ["1"]])
        table = await row_store.create("alice", "T", columns, _ref("s1"))
        await row_store.append_row("alice", table.id, {"_id": "a", "Amount": 0})
        await row_store.append_row("alice", table.id, {"_id": "local", "Amount": 99})

        result = await orchestrator.sync_table(table.id)

        assert result.table.rows == [{"_id": "a", "Amount": 1.0}, {"_id": "local", "Amount": 99}]

    @pytest.mark.asyncio
    async def test_remote_edit_preserves_dashboard_values(
        self, orchestrator, row_store, side_store, sheets_client, columns
    ):
        worksheet = sheets_client.add_sheet("s1", [["Amount"], ["1"]])
        table = await row_store.create("alice", "T", columns, _ref("s1"))
        await row_store.append_row("alice", table.id, {"_id": "a", "Amount": 1.0})
        await side_store.save(table.id, "a", {"Notes": "mine"})
        worksheet.values[1] = ["5"]

        result = await orchestrator.sync_table(table.id)

        assert result.rows == [{"_id": "a", "Amount": 5.0, "Notes": "mine"}]

    @pytest.mark.asyncio
    async def test_missing_columns_recorded(self, orchestrator, row_store, sheets_client, publisher, columns):
        sheets_client.add_sheet("s1", [["Other"], ["x"]])
        table = await row_store.create("alice", "T", columns, _ref("s1"))
        await row_store.append_row("alice", table.id, {"_id": "a", "Amount": 1})

        with pytest.raises(MissingColumnsError):
            await orchestrator.sync_table(table.id)

        stored = await row_store.get_by_id(table.id)
        assert stored.rows == [{"_id": "a", "Amount": 1}]
        assert stored.last_sync_error == "Missing columns in spreadsheet: Amount"
        errors = publisher.of_type("syncError")
        assert errors == [(table.id, "syncError", {"tableId": table.id, "error": stored.last_sync_error})]

    @pytest.mark.asyncio
    async def test_recovery_clears_error(self, orchestrator, row_store, sheets_client, columns):
        sheets_client.add_sheet("s1", [["Amount"]])
        table = await row_store.create("alice", "T", columns, _ref("s1"))
        await row_store.record_sync_error(table.id, "earlier failure")

        result = await orchestrator.sync_table(table.id)

        assert result.changed is False
        assert (await row_store.get_by_id(table.id)).last_sync_error is None

    @pytest.mark.asyncio
    async def test_overflowing_number_still_serializes(
        self, orchestrator, row_store, sheets_client, publisher, columns
    ):
        sheets_client.add_sheet("s1", [["Amount"], ["1e999"], ["2"]])
        table = await row_store.create("alice", "T", columns, _ref("s1"))

        result = await orchestrator.sync_table(table.id)

        assert [r["Amount"] for r in result.rows] == [None, 2.0]
        body = json.loads(JSONResponse(result.table.to_dict(rows=result.rows)).body)
        assert body["rows"][0]["Amount"] is None
        event = publisher.of_type("tableUpdated")[-1][2]
        json.dumps(event, allow_nan=False)

    @pytest.mark.asyncio
    async def test_owner_scoping(self, orchestrator, row_store, sheets_client, columns):
        sheets_client.add_sheet("s1", [["Amount"]])
        table = await row_store.create("alice", "T", columns, _ref("s1"))
        with pytest.raises(NotFound):
            await orchestrator.sync_table(table.id, owner_id="bob")

    @pytest.mark.asyncio
    async def test_unlinked_table(self, orchestrator, row_store, columns):
        table = await row_store.create("alice", "T", columns)
        with pytest.raises(ValidationError):
            await orchestrator.sync_table(table.id)


class TestSweep:
    @pytest.mark.asyncio
    async def test_one_failure_does_not_abort(self, orchestrator, row_store, sheets_client, columns):
        sheets_client.add_sheet("good", [["Amount"], ["3"]])
        broken = await row_store.create("alice", "Broken", columns, _ref("missing"))
        good = await row_store.create("bob", "Good", columns, _ref("good"))
        await row_store.create("carol", "Unlinked", columns)

        summary = await orchestrator.sweep()

        assert summary == {"skipped": False, "tables": 2, "changed": 1, "failed": 1}
        assert (await row_store.get_by_id(broken.id)).last_sync_error
        assert [r["Amount"] for r in (await row_store.get_by_id(good.id)).rows] == [3.0]

    @pytest.mark.asyncio
    async def test_overlapping_sweep_is_skipped(self, orchestrator, row_store, sheets_client, publisher, columns):
        sheets_client.add_sheet("s1", [["Amount"], ["1"]])
        sheets_client.delay = 0.2
        await row_store.create("alice", "T", columns, _ref("s1"))

        first, second = await asyncio.gather(orchestrator.sweep(), orchestrator.sweep())

        assert first["skipped"] is False
        assert second == {"skipped": True}
        assert len(publisher.of_type("tableUpdated")) == 1
        assert orchestrator.guard.in_flight is False

    @pytest.mark.asyncio
    async def test_guard_released_after_failure(self, orchestrator, row_store, sheets_client, remote_failure, columns):
        sheets_client.add_sheet("s1", [["Amount"]])
        sheets_client.fail = remote_failure
        await row_store.create("alice", "T", columns, _ref("s1"))

        summary = await orchestrator.sweep()

        assert summary["failed"] == 1
        assert orchestrator.guard.in_flight is False


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_stop(self, orchestrator):
        await orchestrator.start()
        health = await orchestrator.health_check()
        assert health["status"] == "running"
        assert health["details"]["interval_seconds"] == 60.0
        await orchestrator.stop()
        assert orchestrator.running is False
        assert orchestrator.health_status == "stopped"

    @pytest.mark.asyncio
    async def test_poll_loop_runs_sweeps(self, row_store, side_store, adapter, publisher, sheets_client, columns):
        sheets_client.add_sheet("s1", [["Amount"], ["8"]])
        table = await row_store.create("alice", "T", columns, _ref("s1"))
        orchestrator = SyncOrchestrator(row_store, side_store, adapter, publisher, interval=0.05)

        await orchestrator.start()
        try:
            for _ in range(100):
                if (await orchestrator.health_check())["details"]["sweeps"] >= 1:
                    break
                await asyncio.sleep(0.02)
        finally:
            await orchestrator.stop()

        health = await orchestrator.health_check()
        assert health["details"]["sweeps"] >= 1
        assert health["details"]["last_sweep"]["tables"] == 1
        assert [r["Amount"] for r in (await row_store.get_by_id(table.id)).rows] == [8.0]


class TestTableLock:
    @pytest.mark.asyncio
    async def test_sweep_and_explicit_sync_never_overlap(self, orchestrator, row_store, sheets_client, columns):
        sheets_client.add_sheet("s1", [["Amount"], ["1"]])
        table = await row_store.create("alice", "T", columns, _ref("s1"))
        sheets_client.delay = 0.1

        summary, result = await asyncio.gather(orchestrator.sweep(), orchestrator.sync_table(table.id))

        assert summary["tables"] == 1
        assert summary["failed"] == 0
        assert [r["Amount"] for r in result.table.rows] == [1.0]
        assert sheets_client.max_in_flight == 1

    @pytest.mark.asyncio
    async def test_row_added_during_pull_survives(
        self, orchestrator, service, row_store, sheets_client, columns
    ):
        worksheet = sheets_client.add_sheet("s1", [["Amount"], ["1"]])
        table = await row_store.create("alice", "T", columns, _ref("s1"))
        await orchestrator.sync_table(table.id)
        worksheet.values[1] = ["5"]
        sheets_client.delay = 0.1

        _, added = await asyncio.gather(
            orchestrator.sync_table(table.id),
            service.add_row("alice", table.id, {"Amount": 7}),
        )

        stored = await row_store.get_by_id(table.id)
        assert [r["_id"] for r in stored.rows][-1] == added.row_id
        assert [r["Amount"] for r in stored.rows] == [5.0, 7]
