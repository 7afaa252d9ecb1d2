from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from chat_markers.anchoring.types import ResolvedMarker
from chat_markers.api.markers import resolved_out
from chat_markers.api.websocket import ChangeNotifier, get_change_notifier
from chat_markers.schemas.api import ItemIn
from chat_markers.services.errors import MarkerOperationError
from chat_markers.services.marker_service import MarkerService
from chat_markers.services.scan_service import ScanCoordinator

logger = logging.getLogger(__name__)

router = APIRouter()


def get_ws_marker_service(websocket: WebSocket) -> MarkerService:
    return websocket.app.state.marker_service


class ScanSession:
    """One host view: the items it last reported and the coordinator resolving them."""

    def __init__(self, websocket: WebSocket, marker_service: MarkerService) -> None:
        self._websocket = websocket
        self._items: list[tuple[str, str]] = []
        settings = websocket.app.state.settings
        self.coordinator = ScanCoordinator(
            marker_service,
            self._current_items,
            self._send_results,
            delay_sec=settings.debounce_delay_ms / 1000,
        )

    async def _current_items(self) -> list[tuple[str, str]]:
        return list(self._items)

    async def _send_results(self, results: list[ResolvedMarker]) -> None:
        context = self.coordinator.context
        await self._websocket.send_json(
            {
                "event": "resolved",
                "chat_key": context.chat_key if context else None,
                "results": [resolved_out(result).model_dump() for result in results],
            }
        )

    async def send_error(self, code: str, message: str) -> None:
        await self._websocket.send_json({"event": "error", "code": code, "message": message})

    async def handle(self, message: Any) -> None:
        event = message.get("event") if isinstance(message, dict) else None
        if event == "content_changed":
            try:
                items = [ItemIn.model_validate(item) for item in message.get("items") or []]
            except ValidationError:
                await self.send_error("MALFORMED_INPUT", "Items need a role and text")
                return
            self._items = [(item.role, item.text) for item in items]
            self.coordinator.notify_content_changed()
        elif event == "start_relink":
            marker_id = message.get("marker_id")
            context = self.coordinator.context
            if context is None or not isinstance(marker_id, str) or context.find(marker_id) is None:
                await self.send_error("MARKER_NOT_FOUND", "Marker not found")
                return
            self.coordinator.start_relink(marker_id)
            await self._websocket.send_json({"event": "relink_started", "marker_id": marker_id})
        elif event == "cancel_relink":
            self.coordinator.cancel_relink()
        elif event == "select_item":
            await self._select(message.get("ordinal"))
        else:
            await self.send_error("UNKNOWN_EVENT", f"Unsupported event {event!r}")

    async def _select(self, ordinal: Any) -> None:
        session = self.coordinator.relink_session
        if session is None:
            await self.send_error("NO_RELINK", "No relink in progress")
            return
        items = self.coordinator.last_items
        if not isinstance(ordinal, int) or not 0 <= ordinal < len(items):
            await self.send_error("INVALID_REFERENCE", "No message at that position")
            return
        try:
            await session.offer(items[ordinal])
        except MarkerOperationError as exc:
            await self.send_error(exc.code, exc.message)


@router.websocket("/ws/scan")
async def ws_scan(
    websocket: WebSocket,
    path: str = Query(...),
    notifier: ChangeNotifier = Depends(get_change_notifier),
    marker_service: MarkerService = Depends(get_ws_marker_service),
) -> None:
    """Live resolve loop for one host view.

    The client reports the messages it shows with ``content_changed``; bursts
    are debounced into one ``resolved`` event. ``start_relink`` followed by
    ``select_item`` re-attaches a marker to the chosen message.
    """

    await websocket.accept()
    session = ScanSession(websocket, marker_service)
    coordinator = session.coordinator
    notifier.add_listener(coordinator.on_collection_changed)
    try:
        await coordinator.open(path)
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                await session.send_error("MALFORMED_INPUT", "Messages must be JSON")
                continue
            await session.handle(message)
    except WebSocketDisconnect:
        logger.debug("Scan session for %s closed", path)
    finally:
        notifier.remove_listener(coordinator.on_collection_changed)
        await coordinator.aclose()
