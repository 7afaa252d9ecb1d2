from __future__ import annotations

import logging

MAX_LOGGED_TEXT = 80


def clip_user_text(text: str, max_length: int = MAX_LOGGED_TEXT) -> str:
    """Shorten user-authored text (notes, snippets) before it reaches log output."""

    collapsed = " ".join(text.split())
    if len(collapsed) <= max_length:
        return collapsed
    return collapsed[: max_length - 3] + "..."


class NoteRedactionFilter(logging.Filter):
    """Log filter that clips long note and snippet text in log arguments."""

    def filter(self, record: logging.LogRecord) -> bool:
        if record.args and isinstance(record.args, tuple):
            record.args = tuple(
                clip_user_text(arg) if isinstance(arg, str) else arg for arg in record.args
            )
        return True


def setup_logging(level: str) -> None:
    """Configure engine logging with note clipping."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
    # Records from module loggers skip root-level filters, so clip at the handlers.
    for handler in logging.getLogger().handlers:
        if not any(isinstance(item, NoteRedactionFilter) for item in handler.filters):
            handler.addFilter(NoteRedactionFilter())
