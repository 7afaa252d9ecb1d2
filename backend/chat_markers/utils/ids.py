from __future__ import annotations

import secrets

from chat_markers.anchoring.fingerprint import to_base36
from chat_markers.utils.time_utils import epoch_millis

MARKER_ID_PREFIX = "cm-"
_RANDOM_ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"


def new_marker_id() -> str:
    """Marker ids look like ``cm-<base36 epoch ms><4 random base36 chars>``."""

    suffix = "".join(secrets.choice(_RANDOM_ALPHABET) for _ in range(4))
    return f"{MARKER_ID_PREFIX}{to_base36(epoch_millis())}{suffix}"
