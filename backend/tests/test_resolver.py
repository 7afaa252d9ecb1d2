from __future__ import annotations

from conftest import make_marker

from chat_markers.anchoring.resolver import missing_markers, resolve, resolve_reference
from chat_markers.anchoring.types import build_items
from chat_markers.schemas.marker import MessageRef


def test_fingerprint_match_wins_over_ordinal_hint():
    items = build_items(
        [
            ("user", "Hi"),
            ("assistant", "First reply"),
            ("user", "More"),
            ("assistant", "Second reply"),
            ("user", "Again"),
            ("assistant", "The marked reply"),
        ]
    )
    ref = MessageRef(
        role="assistant", fingerprint=items[5].fingerprint, snippet="stale", ordinal_hint=1
    )

    item, tier = resolve_reference(ref, items)

    assert item is items[5]
    assert tier == "fingerprint"


def test_snippet_prefix_match_when_text_was_extended():
    items = build_items(
        [
            ("user", "hi"),
            ("assistant", "Other"),
            ("user", "q"),
            ("assistant", "Unrelated answer"),
            ("assistant", "HELLO WORLD, and here is some more text"),
        ]
    )
    ref = MessageRef(role="assistant", fingerprint="zz9", snippet="Hello world", ordinal_hint=3)

    item, tier = resolve_reference(ref, items)

    assert item.ordinal == 4
    assert tier == "snippet"


def test_snippet_tier_requires_same_role():
    items = build_items([("user", "Hello world"), ("assistant", "Something else")])
    ref = MessageRef(role="assistant", fingerprint="nope", snippet="Hello world", ordinal_hint=0)

    item, tier = resolve_reference(ref, items)

    assert item.ordinal == 1
    assert tier == "ordinal"


def test_ordinal_fallback_breaks_ties_toward_first_item():
    items = build_items(
        [
            ("user", "a"),
            ("assistant", "one"),
            ("user", "b"),
            ("user", "c"),
            ("user", "d"),
            ("assistant", "five"),
            ("assistant", "six"),
        ]
    )
    ref = MessageRef(role="assistant", fingerprint="zz9", snippet="Hello world", ordinal_hint=3)

    item, tier = resolve_reference(ref, items)

    assert item.ordinal == 1
    assert tier == "ordinal"


def test_empty_snippet_skips_prefix_tier():
    items = build_items([("assistant", "anything"), ("assistant", "else")])
    ref = MessageRef(role="assistant", fingerprint="zz9", snippet="", ordinal_hint=1)

    item, tier = resolve_reference(ref, items)

    assert item.ordinal == 1
    assert tier == "ordinal"


def test_unresolvable_reference_reports_missing():
    items = build_items([("user", "only users here"), ("user", "still users")])
    no_role = MessageRef(role="assistant", fingerprint="zz9", snippet="Hello", ordinal_hint=0)
    no_hint = MessageRef(role="user", fingerprint="zz9", snippet="not present")

    assert resolve_reference(no_role, items) == (None, None)
    assert resolve_reference(no_hint, items) == (None, None)
    assert resolve_reference(None, items) == (None, None)


def test_duplicate_items_resolve_to_first():
    items = build_items([("assistant", "Same text"), ("user", "x"), ("assistant", "Same text")])
    ref = MessageRef(role="assistant", fingerprint=items[0].fingerprint, ordinal_hint=2)

    item, tier = resolve_reference(ref, items)

    assert item is items[0]
    assert tier == "fingerprint"


def test_resolve_preserves_marker_order_and_flags_missing():
    items = build_items([("user", "Question"), ("assistant", "Answer")])
    found = make_marker("cm-a", fingerprint=items[1].fingerprint, ordinal_hint=1)
    lost = make_marker("cm-b", role="tool", fingerprint="zz9", snippet="gone", ordinal_hint=0)
    also_found = make_marker("cm-c", role="user", fingerprint="zz9", snippet="question")

    results = resolve([found, lost, also_found], items)

    assert [result.marker.id for result in results] == ["cm-a", "cm-b", "cm-c"]
    assert results[0].matched_item is items[1]
    assert results[1].missing is True
    assert results[1].tier is None
    assert results[2].matched_item is items[0]
    assert results[2].tier == "snippet"
    assert [marker.id for marker in missing_markers(results)] == ["cm-b"]


def test_resolve_against_empty_scan():
    results = resolve([make_marker("cm-a")], [])
    assert len(results) == 1
    assert results[0].missing
