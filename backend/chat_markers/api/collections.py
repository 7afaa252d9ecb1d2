from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from chat_markers.anchoring.chat_key import bundle_filename
from chat_markers.api.errors import to_http_error
from chat_markers.schemas.api import (
    ClearResponse,
    CollectionDeleteResponse,
    CollectionListResponse,
    CollectionOut,
    ImportResponse,
)
from chat_markers.services.errors import MarkerOperationError
from chat_markers.services.registry_service import CollectionRegistry, get_collection_registry

router = APIRouter(prefix="/api/collections", tags=["collections"])


@router.get("", response_model=CollectionListResponse)
async def list_collections(
    registry: CollectionRegistry = Depends(get_collection_registry),
) -> CollectionListResponse:
    """Return every stored conversation with its marker count."""

    summaries = await registry.list_collections()
    return CollectionListResponse(
        collections=[
            CollectionOut(key=row.key, short_id=row.short_id, marker_count=row.marker_count)
            for row in summaries
        ]
    )


@router.get("/export")
async def export_all(
    registry: CollectionRegistry = Depends(get_collection_registry),
) -> Response:
    """Download every conversation as one bundle."""

    try:
        bundle = await registry.export_all()
    except MarkerOperationError as exc:
        raise to_http_error(exc) from exc
    return Response(
        content=bundle.model_dump_json(by_alias=True, exclude_none=True, indent=2),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{bundle_filename()}"'},
    )


@router.post("/import", response_model=ImportResponse)
async def import_file(
    request: Request,
    registry: CollectionRegistry = Depends(get_collection_registry),
) -> ImportResponse:
    """Import a bundle or a single-conversation export file."""

    raw = await request.body()
    try:
        summary = await registry.import_payload(raw)
    except MarkerOperationError as exc:
        raise to_http_error(exc) from exc
    return ImportResponse(
        added_count=summary.added_count,
        skipped_count=summary.skipped_count,
        chat_keys=list(summary.chat_keys),
    )


@router.delete("", response_model=ClearResponse)
async def clear_all(
    registry: CollectionRegistry = Depends(get_collection_registry),
) -> ClearResponse:
    summary = await registry.clear_all()
    return ClearResponse(cleared=summary.cleared, removed_keys=list(summary.removed_keys))


@router.delete("/{chat_key:path}", response_model=CollectionDeleteResponse)
async def delete_collection(
    chat_key: str,
    registry: CollectionRegistry = Depends(get_collection_registry),
) -> CollectionDeleteResponse:
    try:
        await registry.delete_collection(chat_key)
    except MarkerOperationError as exc:
        raise to_http_error(exc) from exc
    return CollectionDeleteResponse(deleted_key=chat_key)
