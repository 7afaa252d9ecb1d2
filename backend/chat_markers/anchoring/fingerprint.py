from __future__ import annotations

import re

FINGERPRINT_TEXT_LIMIT = 120
SNIPPET_LENGTH = 120
FINGERPRINT_SEPARATOR = "||"

_HASH_SEED = 5381
_UINT32_MASK = 0xFFFFFFFF
_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"
_WHITESPACE_RUN = re.compile(r"\s+")


def to_base36(value: int) -> str:
    """Render a non-negative integer in lowercase base-36."""

    if value < 0:
        raise ValueError("base36 encoding expects a non-negative integer")
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def _utf16_units(text: str) -> list[int]:
    raw = text.encode("utf-16-le", "surrogatepass")
    return [int.from_bytes(raw[i : i + 2], "little") for i in range(0, len(raw), 2)]


def _units_to_text(units: list[int]) -> str:
    raw = b"".join(unit.to_bytes(2, "little") for unit in units)
    return raw.decode("utf-16-le", "surrogatepass")


def hash_string(value: str) -> str:
    """DJB2-xor hash over UTF-16 code units, 32-bit unsigned, base-36 encoded.

    Exported marker files carry these values, so the arithmetic has to stay
    bit-compatible with every other producer of the format.
    """

    h = _HASH_SEED
    for unit in _utf16_units(value):
        h = ((h * 33) ^ unit) & _UINT32_MASK
    return to_base36(h)


def fingerprint(role: str, text: str) -> str:
    """Fingerprint an item from its role and the first 120 UTF-16 units of its trimmed text."""

    units = _utf16_units(text.strip())[:FINGERPRINT_TEXT_LIMIT]
    return hash_string(role + FINGERPRINT_SEPARATOR + _units_to_text(units))


def _clip_units(text: str, limit: int) -> str:
    # May end in an unpaired high surrogate, as a UTF-16 slice would.
    return _units_to_text(_utf16_units(text)[:limit])


def _collapse(text: str) -> str:
    return _WHITESPACE_RUN.sub(" ", text.strip())


def snippet(text: str, length: int = SNIPPET_LENGTH) -> str:
    """Whitespace-collapsed, trimmed preview of an item's text, at most ``length`` UTF-16 units.

    A surrogate pair split by the cut is dropped whole so the preview stays encodable.
    """

    clipped = _clip_units(_collapse(text), length)
    if clipped and "\ud800" <= clipped[-1] <= "\udbff":
        clipped = clipped[:-1]
    return clipped


def item_fingerprint(role: str, text: str) -> str:
    """Fingerprint of a scanned message, taken over its preview exactly as browsers cut it."""

    return fingerprint(role, _clip_units(_collapse(text), SNIPPET_LENGTH))
