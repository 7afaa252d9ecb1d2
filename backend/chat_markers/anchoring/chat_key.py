from __future__ import annotations

import re

from chat_markers.utils.time_utils import epoch_millis

CHAT_KEY_PREFIX = "chat_markers::"

_CONVERSATION_PATH = re.compile(r"/(?:c|chat|g/[^/]+/c)/([a-zA-Z0-9_-]{8,})")
_UNSAFE_FILENAME_CHARS = re.compile(r"[^a-z0-9]", re.IGNORECASE)


def derive_chat_key(path: str) -> str:
    """Map a host path (e.g. ``/c/<conversation-id>``) to a namespaced collection key."""

    match = _CONVERSATION_PATH.search(path)
    conversation_id = match.group(1) if match else path.replace("/", "_")
    return CHAT_KEY_PREFIX + conversation_id


def is_chat_key(key: str) -> bool:
    return key.startswith(CHAT_KEY_PREFIX)


def short_chat_id(key: str) -> str:
    """Strip the namespace prefix for display."""

    return key[len(CHAT_KEY_PREFIX) :] if is_chat_key(key) else key


def export_filename(chat_key: str) -> str:
    """Download name for a single-conversation export."""

    safe = _UNSAFE_FILENAME_CHARS.sub("_", chat_key)[:40]
    return f"chat-markers-{safe}.json"


def bundle_filename() -> str:
    return f"chat-markers-all-{epoch_millis()}.json"
