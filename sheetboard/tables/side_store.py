"""Side Store — dashboard-only values kept in one JSON document on disk.

Layout: ``{tableId: {rowId: {column: value}}}``. Every mutation is a whole
document read-modify-write, so all access goes through one asyncio lock and
the blocking file I/O runs in the default executor.
"""

import asyncio
import json
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from ..errors import StorageCorruption
from ..utils.fs_atomic import atomic_write_text
from ..utils.logging import get_logger

logger = get_logger("tables.side_store")

Document = dict[str, dict[str, dict[str, Any]]]


class SideStore:
    """Serialized JSON document store for dashboard-only row values."""

    def __init__(self, path: str | Path):
        self._path = Path(path)
        self._lock = asyncio.Lock()

    @property
    def path(self) -> Path:
        return self._path

    # --- Blocking file access (executor only) ---

    def _read_document(self) -> Document:
        """Load the document. Missing file -> empty; unreadable -> StorageCorruption."""
        if not self._path.exists():
            return {}
        try:
            raw = self._path.read_text(encoding="utf-8")
        except OSError as exc:
            raise StorageCorruption(f"side store unreadable: {exc}") from exc
        if not raw.strip():
            return {}
        try:
            document = json.loads(raw)
        except json.JSONDecodeError as exc:
            raise StorageCorruption(f"side store is not valid JSON: {exc}") from exc
        if not isinstance(document, dict) or not all(
            isinstance(rows, dict) for rows in document.values()
        ):
            raise StorageCorruption("side store document has the wrong shape")
        return document

    def _write_document(self, document: Document) -> None:
        atomic_write_text(self._path, json.dumps(document, indent=2, default=str))

    def _quarantine(self) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        target = self._path.with_name(f"{self._path.name}.corrupt-{stamp}")
        os.replace(self._path, target)
        logger.warning("side_store_quarantined", path=str(self._path), moved_to=str(target))

    def _mutate_sync(self, mutation: Callable[[Document], None]) -> None:
        try:
            document = self._read_document()
        except StorageCorruption as exc:
            logger.error("side_store_corrupt_on_write", error=str(exc))
            self._quarantine()
            document = {}
        mutation(document)
        self._write_document(document)

    def _read_sync(self) -> Document:
        try:
            return self._read_document()
        except StorageCorruption as exc:
            logger.error("side_store_corrupt_on_read", error=str(exc))
            return {}

    # --- Async API ---

    async def _read(self) -> Document:
        loop = asyncio.get_event_loop()
        async with self._lock:
            return await loop.run_in_executor(None, self._read_sync)

    async def _mutate(self, mutation: Callable[[Document], None]) -> None:
        loop = asyncio.get_event_loop()
        async with self._lock:
            await loop.run_in_executor(None, self._mutate_sync, mutation)

    async def save(self, table_id: int | str, row_id: str, fields: dict) -> None:
        """Replace the row's entry with ``fields``."""
        key = str(table_id)

        def _apply(document: Document) -> None:
            document.setdefault(key, {})[row_id] = dict(fields)

        await self._mutate(_apply)

    async def get(self, table_id: int | str, row_id: str) -> Optional[dict]:
        document = await self._read()
        entry = document.get(str(table_id), {}).get(row_id)
        return entry if isinstance(entry, dict) else None

    async def get_all(self, table_id: int | str) -> dict[str, dict]:
        document = await self._read()
        return dict(document.get(str(table_id), {}))

    async def delete(self, table_id: int | str, row_id: str) -> bool:
        """Remove one row's entry. Returns whether an entry existed."""
        key = str(table_id)
        removed = False

        def _apply(document: Document) -> None:
            nonlocal removed
            rows = document.get(key)
            if rows is not None and row_id in rows:
                del rows[row_id]
                removed = True
                if not rows:
                    del document[key]

        await self._mutate(_apply)
        return removed

    async def delete_table(self, table_id: int | str) -> None:
        key = str(table_id)

        def _apply(document: Document) -> None:
            document.pop(key, None)

        await self._mutate(_apply)

    async def replace_table(self, table_id: int | str, entries: dict[str, dict]) -> None:
        """Replace a table's whole section. Empty entries are dropped."""
        key = str(table_id)

        def _apply(document: Document) -> None:
            section = {row_id: dict(values) for row_id, values in entries.items() if values}
            if section:
                document[key] = section
            else:
                document.pop(key, None)

        await self._mutate(_apply)
