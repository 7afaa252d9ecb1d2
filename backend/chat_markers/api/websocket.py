from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Optional, Union

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect

from chat_markers.anchoring.chat_key import derive_chat_key

logger = logging.getLogger(__name__)

router = APIRouter()

Listener = Callable[[str, dict], Union[Awaitable[None], None]]


class ChangeNotifier:
    """Fan out collection change events to WebSocket clients and in-process listeners."""

    def __init__(self) -> None:
        self._connections: dict[str, set[WebSocket]] = {}
        self._listeners: list[Listener] = []
        self._lock = asyncio.Lock()

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def connect(self, chat_key: str, websocket: WebSocket) -> None:
        await websocket.accept()
        async with self._lock:
            self._connections.setdefault(chat_key, set()).add(websocket)

    async def disconnect(self, chat_key: str, websocket: WebSocket) -> None:
        async with self._lock:
            connections = self._connections.get(chat_key)
            if not connections:
                return
            connections.discard(websocket)
            if not connections:
                self._connections.pop(chat_key, None)

    async def broadcast(self, chat_key: str, payload: dict[str, Any]) -> None:
        for listener in list(self._listeners):
            try:
                result = listener(chat_key, payload)
                if inspect.isawaitable(result):
                    await result
            except Exception:  # noqa: BLE001
                logger.exception("Change listener failed for %s", chat_key)

        async with self._lock:
            connections = list(self._connections.get(chat_key, set()))
        if not connections:
            return
        stale: list[WebSocket] = []
        for websocket in connections:
            try:
                await websocket.send_json(payload)
            except Exception:  # noqa: BLE001
                stale.append(websocket)
        for websocket in stale:
            await self.disconnect(chat_key, websocket)

    async def markers_changed(
        self, chat_key: str, reason: str, marker_count: Optional[int] = None
    ) -> None:
        payload: dict[str, Any] = {"event": "markers_changed", "chat_key": chat_key, "reason": reason}
        if marker_count is not None:
            payload["marker_count"] = marker_count
        await self.broadcast(chat_key, payload)


def get_change_notifier(websocket: WebSocket) -> ChangeNotifier:
    """Dependency to access the change notifier from app state."""

    return websocket.app.state.change_notifier


@router.websocket("/ws/markers")
async def ws_markers(
    websocket: WebSocket,
    path: str = Query(...),
    notifier: ChangeNotifier = Depends(get_change_notifier),
) -> None:
    """WebSocket endpoint streaming change events for one conversation."""

    chat_key = derive_chat_key(path)
    await notifier.connect(chat_key, websocket)
    await websocket.send_json({"event": "subscribed", "chat_key": chat_key})
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        await notifier.disconnect(chat_key, websocket)
