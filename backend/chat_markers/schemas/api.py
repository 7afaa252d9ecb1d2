from __future__ import annotations

from typing import Any, List, Optional

from pydantic import Field

from chat_markers.schemas.common import APIModel


class ItemIn(APIModel):
    """One message as the host sees it in the current scan."""

    role: str = Field(min_length=1, max_length=64)
    text: str


class ItemOut(APIModel):
    ordinal: int
    role: str
    fingerprint: str
    snippet: str


class ResolveRequest(APIModel):
    path: str = Field(min_length=1)
    items: List[ItemIn] = Field(default_factory=list)


class ResolvedMarkerOut(APIModel):
    marker: dict[str, Any]
    missing: bool
    tier: Optional[str] = None
    matched_ordinal: Optional[int] = None


class ResolveResponse(APIModel):
    chat_key: str
    items: List[ItemOut]
    results: List[ResolvedMarkerOut]


class MarkerListResponse(APIModel):
    chat_key: str
    markers: List[dict[str, Any]]


class TargetItem(APIModel):
    """The message a marker is attached to, identified the way the host scanned it."""

    role: str = Field(min_length=1, max_length=64)
    text: str
    ordinal: int = Field(ge=0)


class MarkerCreateRequest(APIModel):
    path: str = Field(min_length=1)
    item: TargetItem
    note: str = Field(max_length=20000)
    tag: Optional[str] = Field(default=None, max_length=200)
    color: Optional[str] = Field(default=None)


class MarkerUpdateRequest(APIModel):
    path: str = Field(min_length=1)
    note: Optional[str] = Field(default=None, max_length=20000)
    tag: Optional[str] = Field(default=None, max_length=200)
    color: Optional[str] = Field(default=None)


class MarkerRelinkRequest(APIModel):
    path: str = Field(min_length=1)
    item: TargetItem


class MarkerResponse(APIModel):
    chat_key: str
    marker: dict[str, Any]
    near_limit: bool = False


class MarkerDeleteResponse(APIModel):
    chat_key: str
    deleted_marker_id: str


class ImportResponse(APIModel):
    added_count: int
    skipped_count: int
    chat_keys: List[str]


class CollectionOut(APIModel):
    key: str
    short_id: str
    marker_count: int


class CollectionListResponse(APIModel):
    collections: List[CollectionOut]


class CollectionDeleteResponse(APIModel):
    deleted_key: str


class ClearResponse(APIModel):
    cleared: bool
    removed_keys: List[str]
