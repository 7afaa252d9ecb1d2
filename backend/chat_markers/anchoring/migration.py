from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any, Callable, Optional

from pydantic import ValidationError

from chat_markers.anchoring.fingerprint import FINGERPRINT_SEPARATOR, hash_string
from chat_markers.schemas.marker import SCHEMA_VERSION, Marker, MarkerCollection

logger = logging.getLogger(__name__)


def _salvage_record(record: dict[str, Any]) -> Optional[Marker]:
    """Parse a stored record, resetting fields that do not validate to their defaults."""

    data = dict(record)
    data["id"] = str(data["id"])
    while True:
        try:
            return Marker.model_validate(data)
        except ValidationError as exc:
            broken: set[str] = set()
            for error in exc.errors():
                if not error["loc"] or error["loc"][0] == "id":
                    continue
                name = str(error["loc"][0])
                field = Marker.model_fields.get(name)
                broken.update({name, field.alias} if field and field.alias else {name})
            present = broken & set(data)
            if not present:
                return None
            for key in present:
                data.pop(key)
            logger.warning(
                "Reset unreadable field(s) %s of stored marker %s", sorted(present), data["id"]
            )


def parse_stored_records(records: Iterable[Any]) -> list[Marker]:
    """Parse stored records leniently: every mapping with an id is kept.

    A record without a usable ``msgRef`` loads with no reference and
    resolves as missing until the user relinks it.
    """

    markers: list[Marker] = []
    dropped = 0
    for record in records:
        if isinstance(record, Marker):
            markers.append(record)
            continue
        if not isinstance(record, dict) or record.get("id") in (None, ""):
            dropped += 1
            continue
        marker = _salvage_record(record)
        if marker is None:
            dropped += 1
            continue
        markers.append(marker)
    if dropped:
        logger.warning("Ignored %d stored marker record(s) without an id", dropped)
    return markers


def normalize_collection(raw: Any) -> MarkerCollection:
    """Coerce a stored value into the versioned envelope without migrating it.

    A bare list is the version 1 layout. ``None`` yields an empty
    current-version collection.
    """

    if raw is None:
        return MarkerCollection(schema_version=SCHEMA_VERSION, markers=[])
    if isinstance(raw, list):
        version, records = 1, raw
    elif isinstance(raw, dict):
        version = raw.get("schemaVersion", 1)
        records = raw.get("markers") or []
        if not isinstance(version, int) or isinstance(version, bool):
            version = 1
        if not isinstance(records, list):
            records = []
    else:
        logger.warning("Ignoring stored value of unexpected type %s", type(raw).__name__)
        return MarkerCollection(schema_version=SCHEMA_VERSION, markers=[])

    return MarkerCollection(schema_version=version, markers=parse_stored_records(records))


def _backfill_fingerprints(markers: list[Marker]) -> list[Marker]:
    upgraded: list[Marker] = []
    for marker in markers:
        ref = marker.reference
        if ref is not None and not ref.fingerprint and ref.snippet:
            ref = ref.model_copy(
                update={"fingerprint": hash_string(ref.role + FINGERPRINT_SEPARATOR + ref.snippet)}
            )
            marker = marker.model_copy(update={"reference": ref})
        upgraded.append(marker)
    return upgraded


# from_version -> step producing from_version + 1
_MIGRATIONS: dict[int, Callable[[list[Marker]], list[Marker]]] = {
    1: _backfill_fingerprints,
}


def migrate(collection: MarkerCollection) -> MarkerCollection:
    """Upgrade a collection to the current schema version. Idempotent; never drops markers."""

    version = collection.schema_version
    markers = list(collection.markers)
    if version >= SCHEMA_VERSION:
        return MarkerCollection(schema_version=version, markers=markers)
    while version < SCHEMA_VERSION:
        step = _MIGRATIONS.get(version)
        if step is not None:
            markers = step(markers)
        version += 1
    return MarkerCollection(schema_version=version, markers=markers)
