"""
Shared response envelopes.

WHAT: The two shapes every endpoint returns: an operation envelope for
mutations and a page envelope for listings.

WHY: Clients handle `{success, data, message}` uniformly and can surface
`notifications_degraded` (state changed, but someone was not told)
without treating it as an error.
"""

from typing import Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, Field

from app.services.unit_of_work import OperationResult, Page

T = TypeVar("T")


class OperationResponse(BaseModel, Generic[T]):
    """Envelope for state-mutating operations."""

    success: bool = Field(..., description="Whether the change was committed")
    data: Optional[T] = Field(None, description="Affected entity")
    message: str = Field("", description="Human-readable outcome")
    notifications_degraded: bool = Field(
        False, description="At least one notification failed to dispatch"
    )


class PageResponse(BaseModel, Generic[T]):
    """Envelope for paginated reads."""

    items: List[T] = Field(default_factory=list)
    total: int = Field(..., description="Total items matching filters")
    page: int = Field(..., description="1-based page number")
    limit: int = Field(..., description="Maximum items per page")
    pages: int = Field(0, description="Total number of pages")


def operation_response(result: OperationResult, schema: Type[BaseModel]) -> dict:
    """
    Serialize an OperationResult, validating `data` against `schema`.

    Returns a plain dict so FastAPI applies the route's response_model.
    """
    data = None
    if result.data is not None:
        data = schema.model_validate(result.data, from_attributes=True)
    return {
        "success": result.success,
        "data": data,
        "message": result.message,
        "notifications_degraded": result.notifications_degraded,
    }


def page_response(page: Page, schema: Type[BaseModel]) -> dict:
    return {
        "items": [schema.model_validate(item, from_attributes=True) for item in page.items],
        "total": page.total,
        "page": page.page,
        "limit": page.limit,
        "pages": page.pages,
    }
