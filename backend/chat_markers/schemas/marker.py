from __future__ import annotations

from typing import Any, List, Optional

from pydantic import Field, field_validator

from chat_markers.schemas.common import WireModel

SCHEMA_VERSION = 2
MARKER_COLORS = ("yellow", "blue", "green", "red", "purple")
DEFAULT_COLOR = "yellow"


class MessageRef(WireModel):
    """Enough about a message to find it again: fingerprint, snippet prefix, ordinal."""

    role: str = ""
    fingerprint: Optional[str] = Field(default=None, alias="hash")
    snippet: Optional[str] = Field(default=None)
    ordinal_hint: Optional[int] = Field(default=None, alias="indexHint")


class Marker(WireModel):
    """A user note attached to one chat message."""

    id: str = Field(min_length=1)
    reference: Optional[MessageRef] = Field(default=None, alias="msgRef")
    note: str = Field(default="")
    tag: Optional[str] = Field(default=None)
    color: str = Field(default=DEFAULT_COLOR)
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    updated_at: Optional[str] = Field(default=None, alias="updatedAt")

    @field_validator("color", mode="before")
    @classmethod
    def _default_color(cls, value: Any) -> Any:
        if value is None or value == "":
            return DEFAULT_COLOR
        return value


class MarkerCollection(WireModel):
    """Versioned envelope stored under one chat key."""

    schema_version: int = Field(default=SCHEMA_VERSION, alias="schemaVersion")
    markers: List[Marker] = Field(default_factory=list)


class CollectionExport(WireModel):
    """Single-conversation export file."""

    chat_key: str = Field(alias="chatKey")
    exported_at: str = Field(alias="exportedAt")
    schema_version: int = Field(default=SCHEMA_VERSION, alias="schemaVersion")
    markers: List[Marker] = Field(default_factory=list)


class ConversationEntry(WireModel):
    key: str
    markers: List[Marker] = Field(default_factory=list)


class BundleExport(WireModel):
    """All-conversations export file."""

    exported_at: str = Field(alias="exportedAt")
    schema_version: int = Field(default=SCHEMA_VERSION, alias="schemaVersion")
    conversations: List[ConversationEntry] = Field(default_factory=list)
