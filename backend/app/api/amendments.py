"""
Amendment API endpoints.

WHAT: Change requests against accepted proposals and their path to an
amendment proposal.

HOW: Thin router over AmendmentWorkflow.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.core.actor import Actor
from app.core.deps import get_amendment_workflow, get_current_actor
from app.models.amendment import AmendmentStatus
from app.schemas.amendment import (
    AmendmentCreate,
    AmendmentProposalCreate,
    AmendmentProposalResult,
    AmendmentResponse,
    AmendmentReview,
)
from app.schemas.common import OperationResponse, PageResponse, operation_response, page_response
from app.services.amendment_service import AmendmentWorkflow


router = APIRouter(prefix="/amendments", tags=["amendments"])


@router.post(
    "",
    response_model=OperationResponse[AmendmentResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Request amendment",
)
async def create_amendment(
    data: AmendmentCreate,
    actor: Actor = Depends(get_current_actor),
    workflow: AmendmentWorkflow = Depends(get_amendment_workflow),
):
    # JSON mode: requested services are stored in a JSON column
    details = data.model_dump(mode="json", exclude={"proposal_id"})
    result = await workflow.create_request(data.proposal_id, details, actor)
    return operation_response(result, AmendmentResponse)


@router.get(
    "",
    response_model=PageResponse[AmendmentResponse],
    summary="List amendments (managers)",
)
async def list_amendments(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status_filter: Optional[AmendmentStatus] = Query(default=None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    workflow: AmendmentWorkflow = Depends(get_amendment_workflow),
):
    result = await workflow.list_all(actor, status=status_filter, page=page, limit=limit)
    return page_response(result, AmendmentResponse)


@router.get(
    "/{amendment_id}",
    response_model=AmendmentResponse,
    summary="Get amendment",
)
async def get_amendment(
    amendment_id: int,
    actor: Actor = Depends(get_current_actor),
    workflow: AmendmentWorkflow = Depends(get_amendment_workflow),
):
    return await workflow.get(amendment_id, actor)


@router.post(
    "/{amendment_id}/review",
    response_model=OperationResponse[AmendmentResponse],
    summary="Approve or reject amendment (managers)",
)
async def review_amendment(
    amendment_id: int,
    data: AmendmentReview,
    actor: Actor = Depends(get_current_actor),
    workflow: AmendmentWorkflow = Depends(get_amendment_workflow),
):
    result = await workflow.review(amendment_id, data.approve, actor, notes=data.notes)
    return operation_response(result, AmendmentResponse)


@router.post(
    "/{amendment_id}/proposal",
    response_model=OperationResponse[AmendmentProposalResult],
    status_code=status.HTTP_201_CREATED,
    summary="Draft amendment proposal (managers)",
)
async def create_amendment_proposal(
    amendment_id: int,
    data: AmendmentProposalCreate,
    actor: Actor = Depends(get_current_actor),
    workflow: AmendmentWorkflow = Depends(get_amendment_workflow),
):
    details = data.model_dump(exclude_none=True)
    result = await workflow.create_proposal_from_amendment(amendment_id, details, actor)
    return operation_response(result, AmendmentProposalResult)


@router.post(
    "/{amendment_id}/complete",
    response_model=OperationResponse[AmendmentResponse],
    summary="Complete amendment (managers)",
)
async def complete_amendment(
    amendment_id: int,
    actor: Actor = Depends(get_current_actor),
    workflow: AmendmentWorkflow = Depends(get_amendment_workflow),
):
    return operation_response(await workflow.complete_amendment(amendment_id, actor), AmendmentResponse)
