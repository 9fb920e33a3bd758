"""
Stage progress tracker.

WHAT: Progress reporting on the project stages generated at acceptance.

WHY: Stage status is derived from progress rather than set freely:
100% means COMPLETED, any progress on an untouched stage means
IN_PROGRESS. Completion is announced to the client together with the
proposal's overall stage counts.

HOW: Every derived status change still passes the stage transition table,
so a stage on hold has to be resumed before it can be completed.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import Actor, require_manager
from app.core.config import settings
from app.core.exceptions import (
    AlreadyCompletedError,
    AuthorizationError,
    ProposalNotFoundError,
    StageNotFoundError,
    ValidationError,
)
from app.core.transitions import EntityKind, assert_transition
from app.dao.project_stage import ProjectStageDAO
from app.dao.proposal import ProposalDAO
from app.models.project_stage import ProjectStage, StageStatus
from app.models.proposal import Proposal
from app.services.notes import append_note
from app.services.notification_service import NotificationSink
from app.services.unit_of_work import OperationResult, Page, UnitOfWork, page_window

logger = logging.getLogger(__name__)

# Fields staff may edit directly; status is checked against the stage table
UPDATABLE_FIELDS = frozenset(
    {"description", "assigned_to_id", "start_date", "due_date", "total_tasks", "status"}
)


def derive_status(current: StageStatus, progress: int) -> StageStatus:
    """
    Status implied by a new progress value.

    Example:
        >>> derive_status(StageStatus.NOT_STARTED, 40)
        <StageStatus.IN_PROGRESS: 'in_progress'>
    """
    if progress == 100:
        return StageStatus.COMPLETED
    if progress > 0 and current == StageStatus.NOT_STARTED:
        return StageStatus.IN_PROGRESS
    return current


class StageProgressTracker:
    """
    Stage reads and progress updates.

    Attributes:
        session: Request-scoped session
        sink: Notification sink used after commit
    """

    def __init__(self, session: AsyncSession, sink: Optional[NotificationSink] = None):
        self.session = session
        self.sink = sink
        self.dao = ProjectStageDAO(session)
        self.proposal_dao = ProposalDAO(session)

    async def _load(self, stage_id: int) -> ProjectStage:
        stage = await self.dao.get_by_id(stage_id)
        if not stage:
            raise StageNotFoundError(resource_type="ProjectStage", resource_id=stage_id)
        return stage

    async def _load_proposal(self, proposal_id: int) -> Proposal:
        proposal = await self.proposal_dao.get_by_id(proposal_id)
        if not proposal:
            raise ProposalNotFoundError(resource_type="Proposal", resource_id=proposal_id)
        return proposal

    def _assert_can_view(self, proposal: Proposal, actor: Actor, stage: Optional[ProjectStage] = None) -> None:
        if actor.is_manager or actor.matches(proposal.user_id, proposal.client_email):
            return
        if stage is not None and stage.assigned_to_id == actor.id:
            return
        raise AuthorizationError(
            message="You can only access stages of your own projects",
            resource_id=proposal.id,
            user_id=actor.id,
        )

    # =========================================================================
    # Progress
    # =========================================================================

    async def set_progress(
        self,
        stage_id: int,
        progress: int,
        actor: Actor,
        completed_tasks: Optional[int] = None,
        note: Optional[str] = None,
    ) -> OperationResult:
        """
        Record progress on a stage and derive its status.

        Args:
            stage_id: Stage to update
            progress: Percentage, 0-100 inclusive (never clamped)
            actor: Acting manager
            completed_tasks: Optional task counter, 0..total_tasks
            note: Appended to the stage's note log

        Raises:
            InsufficientPermissionsError: For non-managers
            ValidationError: Progress or task counter out of range
            AlreadyCompletedError: Stage is already COMPLETED
        """
        require_manager(actor, "update stage progress")
        if progress is None or not 0 <= progress <= 100:
            raise ValidationError(message="Progress must be between 0 and 100", field="progress")

        async with UnitOfWork(self.session, self.sink) as uow:
            stage = await self._load(stage_id)
            if stage.status == StageStatus.COMPLETED:
                raise AlreadyCompletedError(
                    message="This stage is already completed",
                    stage_id=stage_id,
                )
            if completed_tasks is not None and not 0 <= completed_tasks <= stage.total_tasks:
                raise ValidationError(
                    message=f"Completed tasks must be between 0 and {stage.total_tasks}",
                    field="completed_tasks",
                )

            previous = stage.status
            new_status = derive_status(previous, progress)
            if new_status != previous:
                assert_transition(EntityKind.STAGE, previous, new_status)

            stage.progress = progress
            if completed_tasks is not None:
                stage.completed_tasks = completed_tasks
            stage.status = new_status
            if new_status == StageStatus.IN_PROGRESS and stage.start_date is None:
                stage.start_date = datetime.utcnow()
            if new_status == StageStatus.COMPLETED:
                stage.completed_at = datetime.utcnow()
            stage.notes = append_note(stage.notes, note)
            await self.session.flush()

            if new_status == StageStatus.COMPLETED:
                proposal = await self._load_proposal(stage.proposal_id)
                completed, total = await self.dao.completion_counts(stage.proposal_id)
                uow.outbox.notify_stage_completed(stage, proposal, completed, total)

        if new_status == StageStatus.COMPLETED:
            logger.info(f"Stage {stage_id} completed by user {actor.id}")
        else:
            logger.info(f"Stage {stage_id} progress set to {progress}% by user {actor.id}")
        return uow.result(stage, "Stage progress updated")

    async def complete_stage(self, stage_id: int, actor: Actor, note: Optional[str] = None) -> OperationResult:
        """
        Mark a stage finished: 100% progress, every task done.

        Raises:
            AlreadyCompletedError: If the stage is already COMPLETED
        """
        require_manager(actor, "complete stages")
        stage = await self._load(stage_id)
        if stage.status == StageStatus.COMPLETED:
            raise AlreadyCompletedError(message="This stage is already completed", stage_id=stage_id)

        return await self.set_progress(
            stage_id,
            100,
            actor,
            completed_tasks=stage.total_tasks,
            note=f"[Completed] {note.strip()}" if note and note.strip() else None,
        )

    # =========================================================================
    # Staff edits
    # =========================================================================

    async def update(self, stage_id: int, data: Dict[str, Any], actor: Actor) -> OperationResult:
        """
        Edit scheduling fields or put a stage on hold / resume it.

        Raises:
            ValidationError: total_tasks below completed tasks, or an
                attempt to complete through this path
            InvalidStateTransitionError: Status move not in the stage table
        """
        require_manager(actor, "update stages")
        fields = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}

        async with UnitOfWork(self.session, self.sink) as uow:
            stage = await self._load(stage_id)

            if fields.get("status") is not None:
                new_status = StageStatus(fields["status"])
                if new_status == StageStatus.COMPLETED:
                    raise ValidationError(
                        message="Use stage completion to finish a stage",
                        field="status",
                    )
                if new_status != stage.status:
                    assert_transition(EntityKind.STAGE, stage.status, new_status)
                fields["status"] = new_status
            else:
                fields.pop("status", None)

            if fields.get("total_tasks") is not None:
                if fields["total_tasks"] < max(stage.completed_tasks, 1):
                    raise ValidationError(
                        message="Total tasks cannot be below completed tasks",
                        field="total_tasks",
                    )
            else:
                fields.pop("total_tasks", None)

            for field_name, value in fields.items():
                setattr(stage, field_name, value)
            await self.session.flush()

        logger.info(f"Stage {stage_id} updated by user {actor.id}: {sorted(fields)}")
        return uow.result(stage, "Stage updated")

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, stage_id: int, actor: Actor) -> ProjectStage:
        stage = await self._load(stage_id)
        self._assert_can_view(await self._load_proposal(stage.proposal_id), actor, stage)
        return stage

    async def list_for_proposal(self, proposal_id: int, actor: Actor) -> List[ProjectStage]:
        """Stages of a proposal in ascending order."""
        self._assert_can_view(await self._load_proposal(proposal_id), actor)
        return await self.dao.list_for_proposal(proposal_id)

    async def my_assigned(
        self,
        actor: Actor,
        page: int = 1,
        limit: int = settings.DEFAULT_PAGE_SIZE,
    ) -> Page:
        """Open stages assigned to the actor, soonest due first."""
        page, limit, skip = page_window(page, limit, settings.MAX_PAGE_SIZE)
        items, total = await self.dao.list_assigned(actor.id, skip, limit)
        return Page(items=items, total=total, page=page, limit=limit)
