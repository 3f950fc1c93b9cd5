"""Shared test fixtures."""

import threading
import time

import pytest
import pytest_asyncio
from gspread.exceptions import GSpreadException, SpreadsheetNotFound
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from sheetboard.models.base import Base
from sheetboard.sheets.adapter import SheetsAdapter
from sheetboard.sync.orchestrator import SyncOrchestrator
from sheetboard.tables.row_store import RowStore
from sheetboard.tables.service import TableService
from sheetboard.tables.side_store import SideStore


# ---------------------------------------------------------------------------
# In-memory gspread double
# ---------------------------------------------------------------------------

class FakeWorksheet:
    """Just enough of gspread.Worksheet for the adapter, backed by a grid."""

    def __init__(self, values=None, client=None):
        self.values = [list(r) for r in (values or [])]
        self.client = client
        self.calls = []
        self._extra_cols = 0

    def _check(self):
        if self.client is not None:
            self.client.maybe_fail()

    def _ensure(self, row, col):
        while len(self.values) < row:
            self.values.append([])
        line = self.values[row - 1]
        while len(line) < col:
            line.append("")

    @property
    def col_count(self):
        width = max((len(r) for r in self.values), default=0)
        return max(width, 26) + self._extra_cols

    def get_all_values(self):
        self._check()
        width = max((len(r) for r in self.values), default=0)
        return [list(r) + [""] * (width - len(r)) for r in self.values]

    def row_values(self, row):
        self._check()
        if row > len(self.values):
            return []
        line = list(self.values[row - 1])
        while line and line[-1] == "":
            line.pop()
        return line

    def update_cells(self, cells, value_input_option="RAW"):
        self._check()
        self.calls.append(("update_cells", [(c.row, c.col, c.value) for c in cells]))
        for cell in cells:
            self._ensure(cell.row, cell.col)
            self.values[cell.row - 1][cell.col - 1] = str(cell.value)

    def update_cell(self, row, col, value):
        self._check()
        self.calls.append(("update_cell", row, col, value))
        self._ensure(row, col)
        self.values[row - 1][col - 1] = str(value)

    def append_row(self, values, value_input_option="RAW", table_range=None, **kwargs):
        self._check()
        self.calls.append(("append_row", list(values)))
        self.values.append([str(v) for v in values])

    def append_rows(self, values, value_input_option="RAW", table_range=None, **kwargs):
        self._check()
        self.calls.append(("append_rows", [list(v) for v in values]))
        for row in values:
            self.values.append([str(v) for v in row])

    def delete_rows(self, start_index, end_index=None):
        self._check()
        self.calls.append(("delete_rows", start_index))
        end = end_index or start_index
        del self.values[start_index - 1:end]

    def add_cols(self, cols):
        self._extra_cols += cols


class FakeSpreadsheet:
    def __init__(self, sheet_id, worksheet):
        self.id = sheet_id
        self.sheet1 = worksheet
        self.shared_with = []

    def share(self, email_address, perm_type, role, notify=True, **kwargs):
        self.shared_with.append((email_address, perm_type, role))


class FakeSheetsClient:
    """Spreadsheets keyed by id. ``fail`` raises on every call, ``delay`` slows them.

    ``max_in_flight`` records the most calls that were ever running at once.
    """

    def __init__(self):
        self.spreadsheets = {}
        self.fail = None
        self.delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0
        self._counter = 0
        self._guard = threading.Lock()

    def maybe_fail(self):
        with self._guard:
            self.in_flight += 1
            self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                time.sleep(self.delay)
            if self.fail is not None:
                raise self.fail
        finally:
            with self._guard:
                self.in_flight -= 1

    def add_sheet(self, sheet_id, values):
        worksheet = FakeWorksheet(values, client=self)
        self.spreadsheets[sheet_id] = FakeSpreadsheet(sheet_id, worksheet)
        return worksheet

    def open_by_key(self, key):
        self.maybe_fail()
        if key not in self.spreadsheets:
            raise SpreadsheetNotFound(f"spreadsheet {key} not found")
        return self.spreadsheets[key]

    def create(self, title, folder_id=None):
        self.maybe_fail()
        self._counter += 1
        sheet_id = f"created-{self._counter}"
        spreadsheet = FakeSpreadsheet(sheet_id, FakeWorksheet(client=self))
        spreadsheet.title = title
        self.spreadsheets[sheet_id] = spreadsheet
        return spreadsheet


class RecordingPublisher:
    """Collects published events instead of sending them anywhere."""

    def __init__(self):
        self.events = []

    async def publish(self, table_id, event, data):
        self.events.append((table_id, event, data))
        return 1

    def of_type(self, event):
        return [e for e in self.events if e[1] == event]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def sheets_client():
    return FakeSheetsClient()


@pytest.fixture
def adapter(sheets_client):
    return SheetsAdapter(client_factory=lambda: sheets_client, timeout=2.0, share_email=None)


@pytest_asyncio.fixture
async def session_factory():
    """In-memory SQLite shared across sessions via StaticPool."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def row_store(session_factory):
    return RowStore(session_factory)


@pytest.fixture
def side_store(tmp_path):
    return SideStore(tmp_path / "storage" / "dashboard_data.json")


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def orchestrator(row_store, side_store, adapter, publisher):
    return SyncOrchestrator(row_store, side_store, adapter, publisher, interval=60.0)


@pytest.fixture
def service(row_store, side_store, adapter, orchestrator):
    return TableService(row_store, side_store, adapter, orchestrator)


@pytest.fixture
def amount_notes():
    """Sheet-bound number column Amount plus dashboard-only text column Notes."""
    return [
        {"name": "Amount", "type": "number", "isDashboardOnly": False},
        {"name": "Notes", "type": "text", "isDashboardOnly": True},
    ]


@pytest.fixture
def remote_failure():
    return GSpreadException("spreadsheet service unavailable")
