import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import httpx
import pytest

from chat_markers.anchoring.types import build_items
from chat_markers.api.websocket import ChangeNotifier
from chat_markers.core.config import get_settings
from chat_markers.db.base import init_db
from chat_markers.main import create_app
from chat_markers.repos.marker_store import MarkerStore
from chat_markers.schemas.marker import Marker, MessageRef
from chat_markers.services.marker_service import MarkerService
from chat_markers.services.registry_service import CollectionRegistry
from chat_markers.storage.memory_store import InMemoryKeyValueStore

CHAT_PATH = "/c/6650f1a2-aaaa-bbbb"
CHAT_KEY = "chat_markers::6650f1a2-aaaa-bbbb"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def marker_store(kv_store):
    return MarkerStore(kv_store)


@pytest.fixture
def notifier():
    return ChangeNotifier()


@pytest.fixture
def registry(marker_store, notifier):
    return CollectionRegistry(marker_store, notifier)


@pytest.fixture
def marker_service(marker_store, registry, notifier):
    return MarkerService(marker_store, registry, notifier)


@pytest.fixture
def conversation():
    return build_items(
        [
            ("user", "How do I reverse a list in Python?"),
            ("assistant", "Use slicing: items[::-1] returns a reversed copy."),
            ("user", "And in place?"),
            ("assistant", "Call items.reverse(); it mutates the list and returns None."),
        ]
    )


@pytest.fixture
def app(tmp_path, monkeypatch):
    db_path = tmp_path / "test_chat_markers.db"
    monkeypatch.setenv("DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("STORE_BACKEND", "sqlite")
    monkeypatch.setenv("STORAGE_QUOTA_BYTES", "0")
    get_settings.cache_clear()
    app = create_app()
    yield app
    get_settings.cache_clear()


@pytest.fixture
async def client(app):
    await init_db(app.state.engine)
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    await app.state.engine.dispose()


def make_marker(marker_id: str, note: str = "note", **ref_fields) -> Marker:
    ref = {"role": "assistant", "fingerprint": "abc123", "snippet": "Hello", "ordinal_hint": 0}
    ref.update(ref_fields)
    return Marker(
        id=marker_id,
        reference=MessageRef(**ref),
        note=note,
        created_at="2026-01-01T00:00:00.000Z",
        updated_at="2026-01-01T00:00:00.000Z",
    )


def marker_record(marker_id, note="note", **extra) -> dict:
    record = {
        "id": marker_id,
        "msgRef": {"role": "assistant", "hash": "abc123", "snippet": "Hello", "indexHint": 0},
        "note": note,
        "tag": "",
        "color": "yellow",
        "createdAt": "2026-01-01T00:00:00.000Z",
        "updatedAt": "2026-01-01T00:00:00.000Z",
    }
    record.update(extra)
    return record
