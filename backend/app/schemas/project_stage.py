"""Pydantic schemas for project stage endpoints."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from app.models.project_stage import StageStatus


class StageProgressUpdate(BaseModel):
    """
    Progress report for one stage.

    WHY: Out-of-range progress is rejected, never clamped.
    """

    progress: int = Field(..., ge=0, le=100)
    completed_tasks: Optional[int] = Field(None, ge=0)
    note: Optional[str] = Field(None, max_length=5000)


class StageComplete(BaseModel):
    note: Optional[str] = Field(None, max_length=5000)


class StageUpdate(BaseModel):
    """Scheduling edits and hold/resume."""

    description: Optional[str] = Field(None, max_length=5000)
    assigned_to_id: Optional[int] = Field(None, gt=0)
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    total_tasks: Optional[int] = Field(None, ge=1)
    status: Optional[StageStatus] = None


class ProjectStageResponse(BaseModel):
    id: int
    proposal_id: int
    name: str
    description: Optional[str] = None
    order: int
    status: StageStatus
    progress: int
    total_tasks: int
    completed_tasks: int
    assigned_to_id: Optional[int] = None
    start_date: Optional[datetime] = None
    due_date: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
