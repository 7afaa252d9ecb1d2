from __future__ import annotations

import logging

from chat_markers.core.config import Settings
from chat_markers.core.logging import NoteRedactionFilter, clip_user_text


def test_clip_user_text():
    assert clip_user_text("short  note\n") == "short note"
    clipped = clip_user_text("word " * 50, max_length=20)
    assert len(clipped) == 20
    assert clipped.endswith("...")


def test_redaction_filter_clips_string_args():
    record = logging.LogRecord(
        "chat_markers.test", logging.INFO, __file__, 1, "note %s (%d)", ("n" * 200, 3), None
    )

    assert NoteRedactionFilter().filter(record) is True
    assert len(record.args[0]) == 80
    assert record.args[1] == 3


def test_settings_parse_cors_origins():
    assert Settings(CORS_ORIGINS="").parsed_cors_origins() == []
    assert Settings(CORS_ORIGINS="http://a, http://b").parsed_cors_origins() == [
        "http://a",
        "http://b",
    ]
    assert Settings(CORS_ORIGINS='["http://a", ""]').parsed_cors_origins() == ["http://a"]


def test_settings_defaults():
    settings = Settings(_env_file=None)
    assert settings.storage_soft_limit_bytes == 5 * 1024 * 1024
    assert settings.debounce_delay_ms == 300
    assert settings.db_url.startswith("sqlite+aiosqlite:///")
