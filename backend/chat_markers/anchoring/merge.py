from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from chat_markers.schemas.marker import Marker

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MergeResult:
    """Outcome of merging incoming markers into a base list."""

    merged: list[Marker]
    added_count: int


def merge_markers(base: Sequence[Marker], incoming: Iterable[Marker]) -> MergeResult:
    """Append incoming markers whose id is not already present. The base copy always wins."""

    merged = list(base)
    seen_ids = {marker.id for marker in merged}
    added = 0
    for marker in incoming:
        if marker.id in seen_ids:
            continue
        seen_ids.add(marker.id)
        merged.append(marker)
        added += 1
    return MergeResult(merged=merged, added_count=added)


def filter_valid(records: Iterable[Any]) -> tuple[list[Marker], int]:
    """Parse imported marker records, skipping those without an id, a msgRef, or a note."""

    valid: list[Marker] = []
    skipped = 0
    for record in records:
        if isinstance(record, Marker):
            valid.append(record)
            continue
        if (
            not isinstance(record, dict)
            or record.get("id") is None
            or not isinstance(record.get("msgRef"), dict)
            or record.get("note") is None
        ):
            skipped += 1
            continue
        try:
            valid.append(Marker.model_validate(record))
        except ValidationError as exc:
            logger.warning(
                "Skipping invalid marker record %s: %s", record.get("id"), exc.errors()[0]["msg"]
            )
            skipped += 1
    return valid, skipped
