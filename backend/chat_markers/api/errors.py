from __future__ import annotations

from fastapi import HTTPException, status

from chat_markers.schemas.common import ErrorResponse
from chat_markers.services.errors import MarkerOperationError


def marker_status(code: str) -> int:
    if code in {"MARKER_NOT_FOUND", "NOTHING_TO_EXPORT"}:
        return status.HTTP_404_NOT_FOUND
    if code == "STORAGE_QUOTA_EXCEEDED":
        return status.HTTP_507_INSUFFICIENT_STORAGE
    if code == "STORAGE_FAILED":
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    return status.HTTP_400_BAD_REQUEST


def to_http_error(exc: MarkerOperationError) -> HTTPException:
    return HTTPException(
        status_code=marker_status(exc.code),
        detail=ErrorResponse(code=exc.code, message=exc.message).model_dump(),
    )
