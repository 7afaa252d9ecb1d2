from __future__ import annotations

import json

import httpx
import pytest
from conftest import CHAT_KEY, CHAT_PATH, marker_record
from fastapi.testclient import TestClient

from chat_markers.core.config import Settings
from chat_markers.main import create_app
from chat_markers.storage.memory_store import InMemoryKeyValueStore

ITEMS = [
    {"role": "user", "text": "How do I reverse a list in Python?"},
    {"role": "assistant", "text": "Use slicing: items[::-1] returns a reversed copy."},
]


async def create_marker(client, note="check this", ordinal=1, **extra):
    payload = {"path": CHAT_PATH, "item": {**ITEMS[ordinal], "ordinal": ordinal}, "note": note}
    payload.update(extra)
    return await client.post("/api/markers", json=payload)


@pytest.mark.anyio
async def test_marker_lifecycle(client):
    response = await create_marker(client, tag="python", color="green")
    assert response.status_code == 200
    data = response.json()
    assert data["chat_key"] == CHAT_KEY
    assert data["near_limit"] is False
    marker = data["marker"]
    assert marker["note"] == "check this"
    assert marker["msgRef"]["role"] == "assistant"
    assert marker["msgRef"]["indexHint"] == 1
    marker_id = marker["id"]

    response = await client.post("/api/markers/resolve", json={"path": CHAT_PATH, "items": ITEMS})
    assert response.status_code == 200
    resolved = response.json()
    assert resolved["items"][1]["fingerprint"] == marker["msgRef"]["hash"]
    assert resolved["results"][0]["tier"] == "fingerprint"
    assert resolved["results"][0]["matched_ordinal"] == 1

    response = await client.patch(
        f"/api/markers/{marker_id}", json={"path": CHAT_PATH, "note": "edited", "tag": ""}
    )
    assert response.status_code == 200
    assert response.json()["marker"]["note"] == "edited"
    assert "tag" not in response.json()["marker"]

    response = await client.get("/api/markers", params={"path": CHAT_PATH, "q": "EDIT"})
    assert response.status_code == 200
    assert [m["id"] for m in response.json()["markers"]] == [marker_id]

    response = await client.post(
        f"/api/markers/{marker_id}/relink",
        json={"path": CHAT_PATH, "item": {**ITEMS[0], "ordinal": 0}},
    )
    assert response.status_code == 200
    assert response.json()["marker"]["msgRef"]["role"] == "user"

    response = await client.delete(f"/api/markers/{marker_id}", params={"path": CHAT_PATH})
    assert response.status_code == 200
    assert response.json()["deleted_marker_id"] == marker_id

    response = await client.get("/api/markers", params={"path": CHAT_PATH})
    assert response.json()["markers"] == []


@pytest.mark.anyio
async def test_missing_marker_is_reported_after_edit(client):
    await create_marker(client)
    edited_items = [ITEMS[0], {"role": "tool", "text": "Completely different output"}]

    response = await client.post(
        "/api/markers/resolve", json={"path": CHAT_PATH, "items": edited_items}
    )

    result = response.json()["results"][0]
    assert result["missing"] is True
    assert result["matched_ordinal"] is None


@pytest.mark.anyio
async def test_marker_errors(client):
    response = await create_marker(client, note="   ")
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "EMPTY_NOTE"

    response = await create_marker(client, color="orange")
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_COLOR"

    response = await client.patch("/api/markers/cm-nope", json={"path": CHAT_PATH, "note": "x"})
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "MARKER_NOT_FOUND"

    response = await client.delete("/api/markers/cm-nope", params={"path": CHAT_PATH})
    assert response.status_code == 404


@pytest.mark.anyio
async def test_single_conversation_export_and_import(client):
    await create_marker(client, note="exported")

    response = await client.get("/api/markers/export", params={"path": CHAT_PATH})
    assert response.status_code == 200
    assert "chat-markers-chat_markers__6650f1a2_aaaa_bbbb.json" in response.headers[
        "content-disposition"
    ]
    document = response.json()
    assert document["chatKey"] == CHAT_KEY
    assert document["markers"][0]["note"] == "exported"

    other_path = "/c/another-conversation-id"
    response = await client.post(
        "/api/markers/import", params={"path": other_path}, content=json.dumps(document)
    )
    assert response.status_code == 200
    assert response.json()["added_count"] == 1
    assert response.json()["chat_keys"] == ["chat_markers::another-conversation-id"]

    response = await client.post(
        "/api/markers/import", params={"path": CHAT_PATH}, content=b"{not json"
    )
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "MALFORMED_INPUT"


@pytest.mark.anyio
async def test_collections_bundle_and_clear(client):
    response = await client.get("/api/collections/export")
    assert response.status_code == 404
    assert response.json()["detail"]["code"] == "NOTHING_TO_EXPORT"

    bundle = {
        "exportedAt": "2026-01-01T00:00:00.000Z",
        "schemaVersion": 2,
        "conversations": [
            {"key": CHAT_KEY, "markers": [marker_record("cm-1")]},
            {"key": "chat_markers::b-conversation", "markers": [marker_record("cm-2"), {}]},
        ],
    }
    response = await client.post("/api/collections/import", content=json.dumps(bundle))
    assert response.status_code == 200
    assert response.json()["added_count"] == 2
    assert response.json()["skipped_count"] == 1

    response = await client.get("/api/collections")
    collections = response.json()["collections"]
    assert [row["short_id"] for row in collections] == ["6650f1a2-aaaa-bbbb", "b-conversation"]

    response = await client.get("/api/collections/export")
    assert response.status_code == 200
    assert "chat-markers-all-" in response.headers["content-disposition"]
    assert len(response.json()["conversations"]) == 2

    response = await client.delete("/api/collections/chat_markers::b-conversation")
    assert response.status_code == 200
    assert response.json()["deleted_key"] == "chat_markers::b-conversation"

    response = await client.delete("/api/collections/settings")
    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_KEY"

    response = await client.delete("/api/collections")
    assert response.json() == {"cleared": True, "removed_keys": [CHAT_KEY]}
    response = await client.delete("/api/collections")
    assert response.json() == {"cleared": False, "removed_keys": []}


@pytest.mark.anyio
async def test_quota_exceeded_maps_to_507():
    app = create_app(
        Settings(STORE_BACKEND="memory", LOG_LEVEL="WARNING"),
        store=InMemoryKeyValueStore(quota_bytes=300),
    )
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        response = await create_marker(client, note="n" * 1000)

    assert response.status_code == 507
    assert response.json()["detail"]["code"] == "STORAGE_QUOTA_EXCEEDED"


def test_websocket_receives_change_events():
    app = create_app(Settings(STORE_BACKEND="memory", LOG_LEVEL="WARNING"))
    with TestClient(app) as client:
        with client.websocket_connect(f"/ws/markers?path={CHAT_PATH}") as websocket:
            assert websocket.receive_json() == {"event": "subscribed", "chat_key": CHAT_KEY}

            response = client.post(
                "/api/markers",
                json={"path": CHAT_PATH, "item": {**ITEMS[1], "ordinal": 1}, "note": "live"},
            )
            assert response.status_code == 200

            assert websocket.receive_json() == {
                "event": "markers_changed",
                "chat_key": CHAT_KEY,
                "reason": "created",
                "marker_count": 1,
            }


def test_scan_socket_resolves_reported_items_and_relinks():
    app = create_app(
        Settings(STORE_BACKEND="memory", LOG_LEVEL="WARNING", DEBOUNCE_DELAY_MS=10)
    )
    with TestClient(app) as client:
        response = client.post(
            "/api/markers",
            json={"path": CHAT_PATH, "item": {**ITEMS[1], "ordinal": 1}, "note": "scan me"},
        )
        marker_id = response.json()["marker"]["id"]

        with client.websocket_connect(f"/ws/scan?path={CHAT_PATH}") as websocket:
            initial = websocket.receive_json()
            assert initial["event"] == "resolved"
            assert initial["chat_key"] == CHAT_KEY
            assert initial["results"][0]["missing"] is True

            websocket.send_text("{not json")
            assert websocket.receive_json()["code"] == "MALFORMED_INPUT"
            websocket.send_json({"event": "select_item", "ordinal": 0})
            assert websocket.receive_json()["code"] == "NO_RELINK"
            websocket.send_json({"event": "start_relink", "marker_id": "cm-nope"})
            assert websocket.receive_json()["code"] == "MARKER_NOT_FOUND"

            websocket.send_json({"event": "content_changed", "items": ITEMS})
            resolved = websocket.receive_json()
            assert resolved["results"][0]["matched_ordinal"] == 1
            assert resolved["results"][0]["tier"] == "fingerprint"

            websocket.send_json({"event": "start_relink", "marker_id": marker_id})
            assert websocket.receive_json() == {"event": "relink_started", "marker_id": marker_id}
            websocket.send_json({"event": "select_item", "ordinal": 0})
            relinked = websocket.receive_json()
            assert relinked["event"] == "resolved"
            assert relinked["results"][0]["matched_ordinal"] == 0
            assert relinked["results"][0]["marker"]["msgRef"]["role"] == "user"

        response = client.get("/api/markers", params={"path": CHAT_PATH})
        assert response.json()["markers"][0]["msgRef"]["role"] == "user"
