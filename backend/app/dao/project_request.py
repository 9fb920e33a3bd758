"""
Project request Data Access Object.

WHAT: Queries and writes for client intake requests.

WHY: Soft-deleted requests must be invisible on every read path, and the
acceptance fan-out advances a request with a conditional update so a
request that has already moved past SCHEDULED is never regressed.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.base import BaseDAO
from app.models.project_request import ProjectRequest, RequestStatus


class ProjectRequestDAO(BaseDAO[ProjectRequest]):
    """Data Access Object for ProjectRequest."""

    def __init__(self, session: AsyncSession):
        super().__init__(ProjectRequest, session)

    async def get_active(self, request_id: int) -> Optional[ProjectRequest]:
        """Retrieve a request unless it is missing or soft-deleted."""
        result = await self.session.execute(
            select(ProjectRequest).where(
                ProjectRequest.id == request_id,
                ProjectRequest.deleted_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def list_filtered(
        self,
        skip: int = 0,
        limit: int = 10,
        status: Optional[RequestStatus] = None,
        search: Optional[str] = None,
        owner_id: Optional[int] = None,
        owner_email: Optional[str] = None,
    ) -> Tuple[List[ProjectRequest], int]:
        """
        Page through live requests, newest first.

        Args:
            status: Only requests in this status
            search: Case-insensitive match on client names, email,
                project name and company
            owner_id / owner_email: Restrict to one client's requests
                (matched by account id or email)

        Returns:
            (items, total)
        """
        query = select(ProjectRequest).where(ProjectRequest.deleted_at.is_(None))

        if status is not None:
            query = query.where(ProjectRequest.status == status)

        if search:
            pattern = f"%{search.lower()}%"
            query = query.where(
                or_(
                    func.lower(ProjectRequest.client_first_name).like(pattern),
                    func.lower(ProjectRequest.client_last_name).like(pattern),
                    func.lower(ProjectRequest.email).like(pattern),
                    func.lower(ProjectRequest.project_name).like(pattern),
                    func.lower(ProjectRequest.company_name).like(pattern),
                )
            )

        if owner_id is not None or owner_email is not None:
            owner_clauses = []
            if owner_id is not None:
                owner_clauses.append(ProjectRequest.user_id == owner_id)
            if owner_email:
                owner_clauses.append(func.lower(ProjectRequest.email) == owner_email.lower())
            query = query.where(or_(*owner_clauses))

        query = query.order_by(ProjectRequest.created_at.desc(), ProjectRequest.id.desc())
        return await self.paginate(query, skip, limit)

    async def counts_by_status(self) -> Dict[RequestStatus, int]:
        """Live request count per status, zero-filled."""
        result = await self.session.execute(
            select(ProjectRequest.status, func.count(ProjectRequest.id))
            .where(ProjectRequest.deleted_at.is_(None))
            .group_by(ProjectRequest.status)
        )
        counts = {status: 0 for status in RequestStatus}
        for status, count in result.all():
            counts[RequestStatus(status)] = count
        return counts

    async def soft_delete(self, request_id: int) -> bool:
        """Stamp deleted_at. Returns False if already deleted or missing."""
        result = await self.session.execute(
            update(ProjectRequest)
            .where(ProjectRequest.id == request_id, ProjectRequest.deleted_at.is_(None))
            .values(deleted_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def advance_status(
        self,
        request_id: int,
        target: RequestStatus,
        from_statuses: Sequence[RequestStatus],
    ) -> bool:
        """
        Move a request to `target` only if it is currently in one of
        `from_statuses`.

        WHY: The guard runs in the UPDATE itself, so a request that another
        transaction already moved forward is left alone.

        Returns:
            True if the row was advanced
        """
        result = await self.session.execute(
            update(ProjectRequest)
            .where(
                ProjectRequest.id == request_id,
                ProjectRequest.status.in_(list(from_statuses)),
            )
            .values(status=target, updated_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
