"""Per-table WebSocket channels.

Each connection gets a bounded outbound queue drained by its own writer task;
a client that cannot keep up is disconnected. Events are delivered only to
connections that joined the event's table.
"""

import asyncio
import json
import time
from datetime import datetime, timezone

from fastapi import WebSocket

from ..utils.logging import get_logger

logger = get_logger("realtime.hub")


class TableChannelHub:
    """Manages WebSocket connections and their table subscriptions."""

    def __init__(self, max_connections: int = 200, queue_size: int = 100, heartbeat_interval: int = 30):
        self._connections: dict[WebSocket, asyncio.Queue] = {}
        self._writer_tasks: dict[WebSocket, asyncio.Task] = {}
        self._channels: dict[int, set[WebSocket]] = {}
        self._memberships: dict[WebSocket, set[int]] = {}
        self._max_connections = max_connections
        self._queue_size = queue_size
        self._heartbeat_interval = heartbeat_interval

    async def connect(self, websocket: WebSocket) -> bool:
        """Accept connection if under limit. Returns False if rejected."""
        if len(self._connections) >= self._max_connections:
            await websocket.close(code=1013)  # Try Again Later
            logger.warning("ws_connection_rejected", reason="max_connections", total=len(self._connections))
            return False
        await websocket.accept()
        queue: asyncio.Queue = asyncio.Queue(maxsize=self._queue_size)
        self._connections[websocket] = queue
        self._memberships[websocket] = set()
        self._writer_tasks[websocket] = asyncio.create_task(self._writer(websocket, queue))
        logger.info("ws_client_connected", total=len(self._connections))
        return True

    async def disconnect(self, websocket: WebSocket) -> None:
        """Drop the connection and every subscription it holds."""
        if websocket not in self._connections:
            return
        self._connections.pop(websocket, None)
        for table_id in self._memberships.pop(websocket, set()):
            self._remove_member(table_id, websocket)
        task = self._writer_tasks.pop(websocket, None)
        if task and not task.done():
            task.cancel()
        try:
            await websocket.close()
        except Exception as e:
            logger.debug("ws_close_failed", error=str(e))
        logger.info("ws_client_disconnected", total=len(self._connections))

    def join(self, websocket: WebSocket, table_id: int) -> None:
        self._channels.setdefault(table_id, set()).add(websocket)
        self._memberships.setdefault(websocket, set()).add(table_id)
        logger.debug("ws_table_joined", table_id=table_id)

    def leave(self, websocket: WebSocket, table_id: int) -> None:
        self._remove_member(table_id, websocket)
        self._memberships.get(websocket, set()).discard(table_id)
        logger.debug("ws_table_left", table_id=table_id)

    def _remove_member(self, table_id: int, websocket: WebSocket) -> None:
        members = self._channels.get(table_id)
        if members is None:
            return
        members.discard(websocket)
        if not members:
            del self._channels[table_id]

    def subscribers(self, table_id: int) -> set[WebSocket]:
        return set(self._channels.get(table_id, ()))

    def _enqueue(self, websocket: WebSocket, text: str) -> bool:
        """Queue ``text`` for one connection. False when its queue is full."""
        queue = self._connections.get(websocket)
        if queue is None:
            return False
        try:
            queue.put_nowait(text)
        except asyncio.QueueFull:
            logger.warning("ws_client_backpressure_disconnect", queued=queue.qsize())
            return False
        return True

    async def send(self, websocket: WebSocket, message: dict) -> None:
        """Queue a message for one connection; a saturated client is dropped."""
        if websocket not in self._connections:
            return
        if not self._enqueue(websocket, json.dumps(message, default=str)):
            await self.disconnect(websocket)

    async def publish(self, table_id: int, event: str, data: dict) -> int:
        """Queue ``{"type": event, "data": data}`` for the table's subscribers.

        Returns how many connections the event was queued for.
        """
        text = json.dumps({"type": event, "data": data}, default=str)
        members = [ws for ws in self.subscribers(table_id) if ws in self._connections]
        saturated = [ws for ws in members if not self._enqueue(ws, text)]
        for ws in saturated:
            await self.disconnect(ws)
        delivered = len(members) - len(saturated)
        logger.debug("ws_event_published", table_id=table_id, event=event, delivered=delivered)
        return delivered

    def close_table(self, table_id: int) -> None:
        """Unsubscribe everyone from a deleted table."""
        for ws in self.subscribers(table_id):
            self.leave(ws, table_id)

    async def close_all(self) -> None:
        for ws in list(self._connections.keys()):
            await self.disconnect(ws)

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def _heartbeat(self, idle_since: float) -> str:
        return json.dumps({
            "type": "heartbeat",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "idle_seconds": round(time.monotonic() - idle_since, 1),
        })

    async def _writer(self, websocket: WebSocket, queue: asyncio.Queue) -> None:
        """Drain one connection's queue; send a heartbeat after each idle interval."""
        idle_since = time.monotonic()
        while True:
            try:
                text = await asyncio.wait_for(queue.get(), timeout=self._heartbeat_interval)
            except asyncio.TimeoutError:
                text = self._heartbeat(idle_since)
            except asyncio.CancelledError:
                return
            try:
                await websocket.send_text(text)
            except asyncio.CancelledError:
                return
            except Exception as e:
                logger.debug("ws_writer_stopped", error=str(e))
                # Detached so disconnect leaves this task running
                self._writer_tasks.pop(websocket, None)
                await self.disconnect(websocket)
                return
            idle_since = time.monotonic()
