"""
Amendment request Data Access Object.

WHY: The link between an amendment request and its generated proposal is
written exactly once. The write is a conditional UPDATE so that two
concurrent promotions of the same amendment cannot both succeed.
"""

from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.dao.base import BaseDAO
from app.models.amendment import AmendmentRequest, AmendmentStatus


class AmendmentRequestDAO(BaseDAO[AmendmentRequest]):
    """Data Access Object for AmendmentRequest."""

    def __init__(self, session: AsyncSession):
        super().__init__(AmendmentRequest, session)

    async def list_filtered(
        self,
        skip: int = 0,
        limit: int = 10,
        proposal_id: Optional[int] = None,
        status: Optional[AmendmentStatus] = None,
    ) -> Tuple[List[AmendmentRequest], int]:
        """
        Page through amendment requests, newest first.

        Returns:
            (items, total)
        """
        query = select(AmendmentRequest)
        if proposal_id is not None:
            query = query.where(AmendmentRequest.proposal_id == proposal_id)
        if status is not None:
            query = query.where(AmendmentRequest.status == status)

        query = query.order_by(AmendmentRequest.created_at.desc(), AmendmentRequest.id.desc())
        return await self.paginate(query, skip, limit)

    async def link_proposal(self, amendment_id: int, proposal_id: int) -> bool:
        """
        Attach the generated amendment proposal and move to UNDER_REVIEW.

        Only matches an APPROVED amendment with no linked proposal.

        Returns:
            True if this call set the link
        """
        result = await self.session.execute(
            update(AmendmentRequest)
            .where(
                AmendmentRequest.id == amendment_id,
                AmendmentRequest.status == AmendmentStatus.APPROVED,
                AmendmentRequest.amendment_proposal_id.is_(None),
            )
            .values(
                amendment_proposal_id=proposal_id,
                status=AmendmentStatus.UNDER_REVIEW,
                updated_at=datetime.utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
