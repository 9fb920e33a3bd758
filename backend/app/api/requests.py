"""
Project request API endpoints.

WHAT: Client intake and staff triage of requests.

HOW: Thin router; role and ownership rules live in
ProjectRequestService. Submission is open to anonymous callers, and a
valid token links the request to the client's account.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.core.actor import Actor
from app.core.deps import get_current_actor, get_optional_actor, get_request_service
from app.models.project_request import RequestStatus
from app.schemas.common import OperationResponse, PageResponse, operation_response, page_response
from app.schemas.project_request import (
    ProjectRequestCreate,
    ProjectRequestResponse,
    RequestStatusCounts,
    RequestStatusUpdate,
)
from app.services.request_service import ProjectRequestService


router = APIRouter(prefix="/requests", tags=["requests"])


@router.post(
    "",
    response_model=OperationResponse[ProjectRequestResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Submit project request",
)
async def submit_request(
    data: ProjectRequestCreate,
    actor: Optional[Actor] = Depends(get_optional_actor),
    service: ProjectRequestService = Depends(get_request_service),
):
    result = await service.submit(data.model_dump(exclude_none=True), actor)
    return operation_response(result, ProjectRequestResponse)


@router.get(
    "",
    response_model=PageResponse[ProjectRequestResponse],
    summary="List requests (managers)",
)
async def list_requests(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status_filter: Optional[RequestStatus] = Query(default=None, alias="status"),
    search: Optional[str] = Query(default=None, max_length=100),
    actor: Actor = Depends(get_current_actor),
    service: ProjectRequestService = Depends(get_request_service),
):
    result = await service.list(actor, page=page, limit=limit, status=status_filter, search=search)
    return page_response(result, ProjectRequestResponse)


@router.get(
    "/mine",
    response_model=PageResponse[ProjectRequestResponse],
    summary="List my requests",
)
async def list_my_requests(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status_filter: Optional[RequestStatus] = Query(default=None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    service: ProjectRequestService = Depends(get_request_service),
):
    result = await service.list_mine(actor, page=page, limit=limit, status=status_filter)
    return page_response(result, ProjectRequestResponse)


@router.get(
    "/stats",
    response_model=RequestStatusCounts,
    summary="Request counts by status (managers)",
)
async def request_stats(
    actor: Actor = Depends(get_current_actor),
    service: ProjectRequestService = Depends(get_request_service),
):
    return {"counts": await service.counts_by_status(actor)}


@router.get(
    "/{request_id}",
    response_model=ProjectRequestResponse,
    summary="Get request",
)
async def get_request(
    request_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ProjectRequestService = Depends(get_request_service),
):
    return await service.get(request_id, actor)


@router.patch(
    "/{request_id}/status",
    response_model=OperationResponse[ProjectRequestResponse],
    summary="Change request status (managers)",
)
async def update_request_status(
    request_id: int,
    data: RequestStatusUpdate,
    actor: Actor = Depends(get_current_actor),
    service: ProjectRequestService = Depends(get_request_service),
):
    result = await service.update_status(request_id, data.status, actor)
    return operation_response(result, ProjectRequestResponse)


@router.delete(
    "/{request_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete request (managers)",
)
async def delete_request(
    request_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ProjectRequestService = Depends(get_request_service),
) -> None:
    await service.soft_delete(request_id, actor)
