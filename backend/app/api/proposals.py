"""
Proposal API endpoints.

WHAT: Drafting, pricing, sending, signing and declining proposals, plus
the service-approval sub-flow of amendment proposals.

WHY: Proposals are the contract between the firm and the client. Once
sent they change only through signatures, rejection or expiry, and
acceptance fans out into project stages.

HOW: Thin router over ProposalWorkflowService and SignatureCoordinator.
Every mutation returns the {success, data, message} envelope; listings
return {items, total, page, limit}.
"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from app.core.actor import Actor
from app.core.deps import (
    get_amendment_workflow,
    get_current_actor,
    get_proposal_service,
    get_signature_coordinator,
    get_stage_tracker,
)
from app.models.amendment import AmendmentStatus
from app.models.proposal import ProposalStatus
from app.schemas.amendment import AmendmentResponse
from app.schemas.common import OperationResponse, PageResponse, operation_response, page_response
from app.schemas.project_stage import ProjectStageResponse
from app.schemas.proposal import (
    CreditChangeResponse,
    CreditInput,
    CreditUpdate,
    ProposalCreate,
    ProposalDetailResponse,
    ProposalReject,
    ProposalResponse,
    ProposalTreeResponse,
    ProposalUpdate,
    ServiceApprovalDecision,
    ServiceChangeResponse,
    ServiceInput,
    ServiceResponse,
    ServiceUpdate,
    SignatureInput,
    SignatureResultResponse,
)
from app.services.amendment_service import AmendmentWorkflow
from app.services.proposal_service import ProposalWorkflowService
from app.services.signature_service import SignatureCoordinator
from app.services.stage_service import StageProgressTracker


router = APIRouter(prefix="/proposals", tags=["proposals"])


# ============================================================================
# Proposals
# ============================================================================


@router.post(
    "",
    response_model=OperationResponse[ProposalDetailResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Draft proposal",
    description="Draft a proposal for a project request (managers)",
)
async def create_proposal(
    data: ProposalCreate,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    payload = data.model_dump(exclude={"request_id"})
    result = await service.create(data.request_id, payload, actor)
    return operation_response(result, ProposalDetailResponse)


@router.get(
    "",
    response_model=PageResponse[ProposalResponse],
    summary="List proposals",
    description="Managers see all proposals; clients see their own sent proposals",
)
async def list_proposals(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status_filter: Optional[ProposalStatus] = Query(default=None, alias="status"),
    request_id: Optional[int] = Query(default=None, gt=0),
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    result = await service.list(
        actor, page=page, limit=limit, status=status_filter, request_id=request_id
    )
    return page_response(result, ProposalResponse)


@router.get(
    "/{proposal_id}",
    response_model=ProposalDetailResponse,
    summary="Get proposal",
    description="The client's first read of a sent proposal marks it viewed",
)
async def get_proposal(
    proposal_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    return await service.get(proposal_id, actor)


@router.get(
    "/{proposal_id}/tree",
    response_model=ProposalTreeResponse,
    summary="Proposal tree",
    description="Root proposal and its amendment proposals, oldest first",
)
async def get_proposal_tree(
    proposal_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    return await service.get_tree(proposal_id, actor)


@router.put(
    "/{proposal_id}",
    response_model=OperationResponse[ProposalDetailResponse],
    summary="Edit draft proposal",
)
async def update_proposal(
    proposal_id: int,
    data: ProposalUpdate,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    result = await service.update_draft(proposal_id, data.model_dump(exclude_unset=True), actor)
    return operation_response(result, ProposalDetailResponse)


@router.post(
    "/{proposal_id}/send",
    response_model=OperationResponse[ProposalResponse],
    summary="Send proposal to client",
)
async def send_proposal(
    proposal_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    return operation_response(await service.send(proposal_id, actor), ProposalResponse)


@router.post(
    "/{proposal_id}/reject",
    response_model=OperationResponse[ProposalResponse],
    summary="Decline proposal (client)",
)
async def reject_proposal(
    proposal_id: int,
    data: ProposalReject,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    result = await service.reject(proposal_id, actor, reason=data.reason)
    return operation_response(result, ProposalResponse)


@router.post(
    "/{proposal_id}/expire",
    response_model=OperationResponse[ProposalResponse],
    summary="Expire proposal (managers)",
)
async def expire_proposal(
    proposal_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    return operation_response(await service.expire(proposal_id, actor), ProposalResponse)


@router.post(
    "/{proposal_id}/sign",
    response_model=OperationResponse[SignatureResultResponse],
    summary="Sign proposal",
    description="Owner signs as the client, architect signs as staff; "
    "the second signature accepts the proposal and creates its stages",
)
async def sign_proposal(
    proposal_id: int,
    data: SignatureInput,
    actor: Actor = Depends(get_current_actor),
    coordinator: SignatureCoordinator = Depends(get_signature_coordinator),
):
    result = await coordinator.sign(
        proposal_id, data.party, data.signature, actor, signed_by=data.signed_by
    )
    return operation_response(result, SignatureResultResponse)


# ============================================================================
# Line items and credits
# ============================================================================


@router.post(
    "/{proposal_id}/services",
    response_model=OperationResponse[ServiceChangeResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Add service to draft proposal",
)
async def add_service(
    proposal_id: int,
    data: ServiceInput,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    result = await service.add_service(proposal_id, data.model_dump(), actor)
    return operation_response(result, ServiceChangeResponse)


@router.put(
    "/services/{service_id}",
    response_model=OperationResponse[ServiceChangeResponse],
    summary="Edit service of draft proposal",
)
async def update_service(
    service_id: int,
    data: ServiceUpdate,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    result = await service.update_service(service_id, data.model_dump(exclude_unset=True), actor)
    return operation_response(result, ServiceChangeResponse)


@router.delete(
    "/services/{service_id}",
    response_model=OperationResponse[ServiceChangeResponse],
    summary="Remove service from draft proposal",
)
async def delete_service(
    service_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    return operation_response(await service.delete_service(service_id, actor), ServiceChangeResponse)


@router.post(
    "/{proposal_id}/credits",
    response_model=OperationResponse[CreditChangeResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Add credit to draft proposal",
)
async def add_credit(
    proposal_id: int,
    data: CreditInput,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    result = await service.add_credit(proposal_id, data.model_dump(), actor)
    return operation_response(result, CreditChangeResponse)


@router.put(
    "/credits/{credit_id}",
    response_model=OperationResponse[CreditChangeResponse],
    summary="Edit credit of draft proposal",
)
async def update_credit(
    credit_id: int,
    data: CreditUpdate,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    result = await service.update_credit(credit_id, data.model_dump(exclude_unset=True), actor)
    return operation_response(result, CreditChangeResponse)


@router.delete(
    "/credits/{credit_id}",
    response_model=OperationResponse[CreditChangeResponse],
    summary="Remove credit from draft proposal",
)
async def delete_credit(
    credit_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    return operation_response(await service.delete_credit(credit_id, actor), CreditChangeResponse)


# ============================================================================
# Service approval (amendment proposals)
# ============================================================================


@router.post(
    "/{proposal_id}/services/approval",
    response_model=OperationResponse[ServiceResponse],
    status_code=status.HTTP_201_CREATED,
    summary="Add service pending client approval",
)
async def add_service_for_approval(
    proposal_id: int,
    data: ServiceInput,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    result = await service.add_service_for_approval(proposal_id, data.model_dump(), actor)
    return operation_response(result, ServiceResponse)


@router.get(
    "/{proposal_id}/services/pending",
    response_model=List[ServiceResponse],
    summary="Services awaiting client approval",
)
async def pending_service_approvals(
    proposal_id: int,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    return await service.pending_approvals(proposal_id, actor)


@router.post(
    "/services/{service_id}/decision",
    response_model=OperationResponse[ServiceResponse],
    summary="Approve or reject a pending service (client)",
)
async def decide_service_approval(
    service_id: int,
    data: ServiceApprovalDecision,
    actor: Actor = Depends(get_current_actor),
    service: ProposalWorkflowService = Depends(get_proposal_service),
):
    result = await service.decide_service_approval(service_id, data.approve, actor, reason=data.reason)
    return operation_response(result, ServiceResponse)


# ============================================================================
# Related records
# ============================================================================


@router.get(
    "/{proposal_id}/stages",
    response_model=List[ProjectStageResponse],
    summary="Project stages of a proposal",
)
async def list_proposal_stages(
    proposal_id: int,
    actor: Actor = Depends(get_current_actor),
    tracker: StageProgressTracker = Depends(get_stage_tracker),
):
    return await tracker.list_for_proposal(proposal_id, actor)


@router.get(
    "/{proposal_id}/amendments",
    response_model=PageResponse[AmendmentResponse],
    summary="Amendment requests of a proposal",
)
async def list_proposal_amendments(
    proposal_id: int,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    status_filter: Optional[AmendmentStatus] = Query(default=None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    workflow: AmendmentWorkflow = Depends(get_amendment_workflow),
):
    result = await workflow.list_for_proposal(
        proposal_id, actor, status=status_filter, page=page, limit=limit
    )
    return page_response(result, AmendmentResponse)
