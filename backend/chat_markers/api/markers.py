from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request, Response

from chat_markers.anchoring.chat_key import export_filename
from chat_markers.anchoring.types import ResolvedMarker, build_item, build_items
from chat_markers.api.errors import to_http_error
from chat_markers.schemas.api import (
    ImportResponse,
    ItemOut,
    MarkerCreateRequest,
    MarkerDeleteResponse,
    MarkerListResponse,
    MarkerRelinkRequest,
    MarkerResponse,
    MarkerUpdateRequest,
    ResolvedMarkerOut,
    ResolveRequest,
    ResolveResponse,
)
from chat_markers.services.errors import MarkerOperationError
from chat_markers.services.marker_service import MarkerService, get_marker_service

router = APIRouter(prefix="/api/markers", tags=["markers"])


def resolved_out(result: ResolvedMarker) -> ResolvedMarkerOut:
    return ResolvedMarkerOut(
        marker=result.marker.to_wire(),
        missing=result.missing,
        tier=result.tier,
        matched_ordinal=result.matched_item.ordinal if result.matched_item else None,
    )


@router.post("/resolve", response_model=ResolveResponse)
async def resolve_markers(
    payload: ResolveRequest,
    marker_service: MarkerService = Depends(get_marker_service),
) -> ResolveResponse:
    """Match stored markers against the messages currently shown by the host."""

    context = await marker_service.open_context(payload.path)
    items = build_items((item.role, item.text) for item in payload.items)
    results = marker_service.resolve(context, items)
    return ResolveResponse(
        chat_key=context.chat_key,
        items=[
            ItemOut(
                ordinal=item.ordinal,
                role=item.role,
                fingerprint=item.fingerprint,
                snippet=item.snippet,
            )
            for item in items
        ],
        results=[resolved_out(result) for result in results],
    )


@router.get("", response_model=MarkerListResponse)
async def list_markers(
    path: str = Query(..., min_length=1),
    q: str = Query(default=""),
    marker_service: MarkerService = Depends(get_marker_service),
) -> MarkerListResponse:
    """Return markers of one conversation, optionally filtered by note/tag text."""

    context = await marker_service.open_context(path)
    markers = marker_service.search(context, q)
    return MarkerListResponse(
        chat_key=context.chat_key, markers=[marker.to_wire() for marker in markers]
    )


@router.post("", response_model=MarkerResponse)
async def create_marker(
    payload: MarkerCreateRequest,
    marker_service: MarkerService = Depends(get_marker_service),
) -> MarkerResponse:
    """Attach a note to a message."""

    context = await marker_service.open_context(payload.path)
    item = build_item(payload.item.role, payload.item.text, payload.item.ordinal)
    try:
        context, marker, report = await marker_service.create_marker(
            context, item, payload.note, tag=payload.tag, color=payload.color
        )
    except MarkerOperationError as exc:
        raise to_http_error(exc) from exc
    return MarkerResponse(
        chat_key=context.chat_key, marker=marker.to_wire(), near_limit=report.near_limit
    )


@router.get("/export")
async def export_markers(
    path: str = Query(..., min_length=1),
    marker_service: MarkerService = Depends(get_marker_service),
) -> Response:
    """Download the single-conversation export file."""

    context = await marker_service.open_context(path)
    document = marker_service.export_collection(context)
    return Response(
        content=document.model_dump_json(by_alias=True, exclude_none=True, indent=2),
        media_type="application/json",
        headers={
            "Content-Disposition": f'attachment; filename="{export_filename(context.chat_key)}"'
        },
    )


@router.post("/import", response_model=ImportResponse)
async def import_markers(
    request: Request,
    path: str = Query(..., min_length=1),
    marker_service: MarkerService = Depends(get_marker_service),
) -> ImportResponse:
    """Import an export file into this conversation."""

    context = await marker_service.open_context(path)
    raw = await request.body()
    try:
        _, summary = await marker_service.import_into(context, raw)
    except MarkerOperationError as exc:
        raise to_http_error(exc) from exc
    return ImportResponse(
        added_count=summary.added_count,
        skipped_count=summary.skipped_count,
        chat_keys=list(summary.chat_keys),
    )


@router.patch("/{marker_id}", response_model=MarkerResponse)
async def update_marker(
    marker_id: str,
    payload: MarkerUpdateRequest,
    marker_service: MarkerService = Depends(get_marker_service),
) -> MarkerResponse:
    """Edit the note, tag or color of a marker."""

    context = await marker_service.open_context(payload.path)
    try:
        context, marker, report = await marker_service.update_marker(
            context, marker_id, note=payload.note, tag=payload.tag, color=payload.color
        )
    except MarkerOperationError as exc:
        raise to_http_error(exc) from exc
    return MarkerResponse(
        chat_key=context.chat_key, marker=marker.to_wire(), near_limit=report.near_limit
    )


@router.delete("/{marker_id}", response_model=MarkerDeleteResponse)
async def delete_marker(
    marker_id: str,
    path: str = Query(..., min_length=1),
    marker_service: MarkerService = Depends(get_marker_service),
) -> MarkerDeleteResponse:
    context = await marker_service.open_context(path)
    try:
        context, marker, _ = await marker_service.delete_marker(context, marker_id)
    except MarkerOperationError as exc:
        raise to_http_error(exc) from exc
    return MarkerDeleteResponse(chat_key=context.chat_key, deleted_marker_id=marker.id)


@router.post("/{marker_id}/relink", response_model=MarkerResponse)
async def relink_marker(
    marker_id: str,
    payload: MarkerRelinkRequest,
    marker_service: MarkerService = Depends(get_marker_service),
) -> MarkerResponse:
    """Re-attach a marker to the message the user picked."""

    context = await marker_service.open_context(payload.path)
    item = build_item(payload.item.role, payload.item.text, payload.item.ordinal)
    try:
        context, marker, report = await marker_service.relink(context, marker_id, item)
    except MarkerOperationError as exc:
        raise to_http_error(exc) from exc
    return MarkerResponse(
        chat_key=context.chat_key, marker=marker.to_wire(), near_limit=report.near_limit
    )
