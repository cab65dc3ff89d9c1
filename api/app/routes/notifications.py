import asyncio
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool

from ..auth.deps import get_current_user, user_from_token
from ..deps import get_gateway, get_hub
from ..services.live import InboxBridge
from ..services.unread import UnreadAggregator, UnreadSnapshot, count_initial_unread

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/notifications/counts")
def unread_counts(current_user: dict[str, Any] = Depends(get_current_user), gateway=Depends(get_gateway)) -> dict[str, Any]:
    counts = count_initial_unread(gateway, str(current_user["id"]))
    return UnreadSnapshot(matches=counts["matches"], messages=counts["messages"], letters=counts["letters"]).as_dict()


async def _pump(websocket: WebSocket, queue: asyncio.Queue) -> None:
    while True:
        item = await queue.get()
        if isinstance(item, UnreadSnapshot):
            item = {"type": "unread", **item.as_dict()}
        await websocket.send_json(item)


async def _stop_pump(pump: asyncio.Task, user_id: str) -> None:
    pump.cancel()
    try:
        await pump
    except asyncio.CancelledError:
        pass
    except Exception:
        logger.warning("[REALTIME] push loop for %s failed", user_id, exc_info=True)


@router.websocket("/realtime/ws")
async def realtime_ws(websocket: WebSocket, token: str | None = None, hub=Depends(get_hub), gateway=Depends(get_gateway)) -> None:
    """Pushes unread snapshots; accepts {"reset": "matches"|"letters"|"messages"|"chat:<id>"} and {"focus": <match id>|null}."""
    try:
        user = user_from_token(token or "")
    except HTTPException:
        await websocket.close(code=4401)
        return
    await websocket.accept()

    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    aggregator = UnreadAggregator(user["id"])
    aggregator.add_listener(lambda snap: loop.call_soon_threadsafe(queue.put_nowait, snap))
    bridge = InboxBridge(hub, gateway, aggregator)
    pump = asyncio.create_task(_pump(websocket, queue))
    try:
        await run_in_threadpool(bridge.start)
        queue.put_nowait({"type": "ready"})
        while True:
            command = await websocket.receive_json()
            if not isinstance(command, dict):
                queue.put_nowait({"type": "error", "detail": "commands must be JSON objects"})
                continue
            if "focus" in command:
                bridge.focus_chat(command.get("focus"))
            if "reset" in command:
                try:
                    aggregator.apply_command(str(command.get("reset") or ""))
                except ValueError as exc:
                    queue.put_nowait({"type": "error", "detail": str(exc)})
    except WebSocketDisconnect:
        logger.info("[REALTIME] socket closed for %s", user["id"])
    finally:
        bridge.close()
        await _stop_pump(pump, user["id"])
