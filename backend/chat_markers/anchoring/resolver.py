from __future__ import annotations

from collections.abc import Sequence
from typing import Optional

from chat_markers.anchoring.types import ChatItem, MatchTier, ResolvedMarker
from chat_markers.schemas.marker import Marker, MessageRef

SNIPPET_PREFIX_LENGTH = 40


def resolve_reference(
    reference: Optional[MessageRef], items: Sequence[ChatItem]
) -> tuple[Optional[ChatItem], Optional[MatchTier]]:
    """Find the current item for one reference.

    Tiers, first hit wins: exact fingerprint, then same role with a
    case-insensitive 40-character snippet prefix, then the same-role item
    nearest to the ordinal hint (ties go to the earlier item).
    """

    if reference is None:
        return None, None

    if reference.fingerprint:
        for item in items:
            if item.fingerprint == reference.fingerprint:
                return item, "fingerprint"

    if reference.snippet:
        prefix = reference.snippet[:SNIPPET_PREFIX_LENGTH].lower()
        for item in items:
            if item.role == reference.role and item.snippet.lower().startswith(prefix):
                return item, "snippet"

    if reference.ordinal_hint is not None:
        best: Optional[ChatItem] = None
        best_distance = 0
        for item in items:
            if item.role != reference.role:
                continue
            distance = abs(item.ordinal - reference.ordinal_hint)
            if best is None or distance < best_distance:
                best = item
                best_distance = distance
        if best is not None:
            return best, "ordinal"

    return None, None


def resolve(markers: Sequence[Marker], items: Sequence[ChatItem]) -> list[ResolvedMarker]:
    """Resolve every marker against the current scan, preserving marker order."""

    results: list[ResolvedMarker] = []
    for marker in markers:
        matched, tier = resolve_reference(marker.reference, items)
        results.append(
            ResolvedMarker(marker=marker, matched_item=matched, missing=matched is None, tier=tier)
        )
    return results


def missing_markers(results: Sequence[ResolvedMarker]) -> list[Marker]:
    return [result.marker for result in results if result.missing]
