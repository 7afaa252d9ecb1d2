from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict


class APIModel(BaseModel):
    """Base model for HTTP request/response payloads."""

    model_config = ConfigDict(from_attributes=True, protected_namespaces=())


class WireModel(BaseModel):
    """Base model for documents persisted to storage or written to export files.

    Field names follow the camelCase wire format through aliases; unknown keys
    written by other producers are kept so they survive a load/save cycle.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow", protected_namespaces=())

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ErrorResponse(APIModel):
    """Standard error response payload."""

    code: str
    message: str
