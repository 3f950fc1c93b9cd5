"""Real-time table channels over WebSocket."""

import json
from datetime import datetime, timezone

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ...dependencies import get_app_config, get_channel_hub, get_row_store
from ...errors import NotFound
from ...utils.logging import get_logger
from ...utils.security import owner_from_token

logger = get_logger("websocket.tables")

router = APIRouter()


def _table_id(msg: dict):
    try:
        return int(msg.get("tableId"))
    except (TypeError, ValueError):
        return None


@router.websocket("/ws/tables")
async def websocket_tables(websocket: WebSocket):
    """WebSocket endpoint for per-table change notifications.

    Client messages:
    {"type": "joinTable" | "leaveTable", "tableId": <id>}  ->  {"type": "joined" | "left" | "error", ...}
    {"type": "ping"}  ->  {"type": "pong"}

    Server events for joined tables:
    {"type": "tableUpdated", "data": {"tableId", "data": [merged rows]}}
    {"type": "syncError", "data": {"tableId", "error"}}
    """
    token = websocket.query_params.get("token")
    if not token:
        await websocket.close(code=4001)
        return
    cfg = get_app_config()
    owner_id = owner_from_token(token, cfg.secret_key, cfg.jwt_algorithm)
    if owner_id is None:
        await websocket.close(code=4001)
        return

    hub = get_channel_hub()
    connected = await hub.connect(websocket)
    if not connected:
        return
    await hub.send(websocket, {
        "type": "connected",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    })

    row_store = get_row_store()
    try:
        while True:
            data = await websocket.receive_text()
            try:
                msg = json.loads(data)
            except json.JSONDecodeError:
                logger.debug("ws_invalid_json_from_client")
                await hub.send(websocket, {"type": "error", "error": "Invalid JSON"})
                continue
            if not isinstance(msg, dict):
                await hub.send(websocket, {"type": "error", "error": "Invalid message"})
                continue

            kind = msg.get("type")
            if kind == "ping":
                await hub.send(websocket, {
                    "type": "pong",
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                })
            elif kind in ("joinTable", "leaveTable"):
                table_id = _table_id(msg)
                if table_id is None:
                    await hub.send(websocket, {"type": "error", "error": "tableId is required"})
                    continue
                if kind == "leaveTable":
                    hub.leave(websocket, table_id)
                    await hub.send(websocket, {"type": "left", "tableId": table_id})
                    continue
                try:
                    await row_store.get(owner_id, table_id)
                except NotFound as e:
                    await hub.send(websocket, {"type": "error", "tableId": table_id, "error": str(e)})
                    continue
                hub.join(websocket, table_id)
                await hub.send(websocket, {"type": "joined", "tableId": table_id})
            else:
                await hub.send(websocket, {"type": "error", "error": f"Unknown message type: {kind}"})

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("ws_error", error=str(e))
    finally:
        await hub.disconnect(websocket)
