from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Literal, Optional

from chat_markers.anchoring.fingerprint import item_fingerprint, snippet
from chat_markers.schemas.marker import Marker, MessageRef

MatchTier = Literal["fingerprint", "snippet", "ordinal"]


@dataclass(frozen=True)
class ChatItem:
    """One message of the current scan. Rebuilt from scratch on every scan."""

    role: str
    text: str
    ordinal: int
    fingerprint: str
    snippet: str
    # Host-side object (e.g. a DOM node proxy); never persisted or kept across scans.
    handle: Any = field(default=None, compare=False, repr=False)


@dataclass(frozen=True)
class ResolvedMarker:
    """A marker paired with the item it resolved to in the current scan."""

    marker: Marker
    matched_item: Optional[ChatItem]
    missing: bool
    tier: Optional[MatchTier] = None


def build_item(role: str, text: str, ordinal: int, handle: Any = None) -> ChatItem:
    """Build a scan item; the fingerprint is taken over the collapsed, clipped text."""

    role = role or "unknown"
    item_snippet = snippet(text)
    return ChatItem(
        role=role,
        text=text,
        ordinal=ordinal,
        fingerprint=item_fingerprint(role, text),
        snippet=item_snippet,
        handle=handle,
    )


def build_items(raw_items: Iterable[Any]) -> list[ChatItem]:
    """Build scan items from host tuples ``(role, text)`` / ``(role, text, handle)`` or mappings.

    Ordinals are assigned by position, across all roles.
    """

    items: list[ChatItem] = []
    for ordinal, raw in enumerate(raw_items):
        if isinstance(raw, ChatItem):
            items.append(build_item(raw.role, raw.text, ordinal, raw.handle))
            continue
        if isinstance(raw, dict):
            items.append(
                build_item(
                    str(raw.get("role") or ""),
                    str(raw.get("text") or ""),
                    ordinal,
                    raw.get("handle"),
                )
            )
            continue
        role, text, *rest = raw
        items.append(build_item(role, text, ordinal, rest[0] if rest else None))
    return items


def make_reference(item: ChatItem) -> MessageRef:
    """Capture a reference to ``item`` for a new marker or a relink."""

    if not item.role or not item.fingerprint:
        raise ValueError("A message reference needs a role and a fingerprint")
    return MessageRef(
        role=item.role,
        fingerprint=item.fingerprint,
        snippet=item.snippet,
        ordinal_hint=item.ordinal,
    )
