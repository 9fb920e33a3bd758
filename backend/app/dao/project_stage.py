"""
Project stage Data Access Object.

WHY: Stage listings are always ordered by `order`, completion counts feed
the stage-completion notification, and assigned-stage queues are ordered
by due date.
"""

from typing import List, Tuple

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.base import BaseDAO
from app.models.project_stage import ProjectStage, StageStatus


class ProjectStageDAO(BaseDAO[ProjectStage]):
    """Data Access Object for ProjectStage."""

    def __init__(self, session: AsyncSession):
        super().__init__(ProjectStage, session)

    async def list_for_proposal(self, proposal_id: int) -> List[ProjectStage]:
        """Stages of a proposal in ascending order."""
        result = await self.session.execute(
            select(ProjectStage)
            .where(ProjectStage.proposal_id == proposal_id)
            .order_by(ProjectStage.order.asc())
        )
        return list(result.scalars().all())

    async def completion_counts(self, proposal_id: int) -> Tuple[int, int]:
        """
        Aggregate stage completion for a proposal.

        Returns:
            (completed_stages, total_stages)
        """
        result = await self.session.execute(
            select(
                func.coalesce(
                    func.sum(case((ProjectStage.status == StageStatus.COMPLETED, 1), else_=0)),
                    0,
                ),
                func.count(ProjectStage.id),
            ).where(ProjectStage.proposal_id == proposal_id)
        )
        completed, total = result.one()
        return int(completed), int(total)

    async def list_assigned(
        self,
        user_id: int,
        skip: int = 0,
        limit: int = 10,
    ) -> Tuple[List[ProjectStage], int]:
        """
        Open stages assigned to a staff member.

        Open means NOT_STARTED or IN_PROGRESS. Ordered by due date (undated
        last), then stage order.
        """
        query = (
            select(ProjectStage)
            .where(
                ProjectStage.assigned_to_id == user_id,
                ProjectStage.status.in_([StageStatus.NOT_STARTED, StageStatus.IN_PROGRESS]),
            )
            .order_by(
                ProjectStage.due_date.is_(None),
                ProjectStage.due_date.asc(),
                ProjectStage.order.asc(),
                ProjectStage.id.asc(),
            )
        )
        return await self.paginate(query, skip, limit)
