"""
Project stage API endpoints.

WHAT: Progress reporting and scheduling for the stages generated when a
proposal is accepted. Stages are never created here.
"""

from fastapi import APIRouter, Depends, Query

from app.core.actor import Actor
from app.core.deps import get_current_actor, get_stage_tracker
from app.schemas.common import OperationResponse, PageResponse, operation_response, page_response
from app.schemas.project_stage import (
    ProjectStageResponse,
    StageComplete,
    StageProgressUpdate,
    StageUpdate,
)
from app.services.stage_service import StageProgressTracker


router = APIRouter(prefix="/stages", tags=["stages"])


@router.get(
    "/mine",
    response_model=PageResponse[ProjectStageResponse],
    summary="Open stages assigned to me",
)
async def my_assigned_stages(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    tracker: StageProgressTracker = Depends(get_stage_tracker),
):
    return page_response(await tracker.my_assigned(actor, page=page, limit=limit), ProjectStageResponse)


@router.get(
    "/{stage_id}",
    response_model=ProjectStageResponse,
    summary="Get stage",
)
async def get_stage(
    stage_id: int,
    actor: Actor = Depends(get_current_actor),
    tracker: StageProgressTracker = Depends(get_stage_tracker),
):
    return await tracker.get(stage_id, actor)


@router.patch(
    "/{stage_id}",
    response_model=OperationResponse[ProjectStageResponse],
    summary="Edit stage scheduling or hold status (managers)",
)
async def update_stage(
    stage_id: int,
    data: StageUpdate,
    actor: Actor = Depends(get_current_actor),
    tracker: StageProgressTracker = Depends(get_stage_tracker),
):
    result = await tracker.update(stage_id, data.model_dump(exclude_unset=True), actor)
    return operation_response(result, ProjectStageResponse)


@router.post(
    "/{stage_id}/progress",
    response_model=OperationResponse[ProjectStageResponse],
    summary="Report stage progress (managers)",
)
async def set_stage_progress(
    stage_id: int,
    data: StageProgressUpdate,
    actor: Actor = Depends(get_current_actor),
    tracker: StageProgressTracker = Depends(get_stage_tracker),
):
    result = await tracker.set_progress(
        stage_id,
        data.progress,
        actor,
        completed_tasks=data.completed_tasks,
        note=data.note,
    )
    return operation_response(result, ProjectStageResponse)


@router.post(
    "/{stage_id}/complete",
    response_model=OperationResponse[ProjectStageResponse],
    summary="Complete stage (managers)",
)
async def complete_stage(
    stage_id: int,
    data: StageComplete,
    actor: Actor = Depends(get_current_actor),
    tracker: StageProgressTracker = Depends(get_stage_tracker),
):
    return operation_response(await tracker.complete_stage(stage_id, actor, note=data.note), ProjectStageResponse)
