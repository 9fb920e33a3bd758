"""
Proposal Data Access Objects.

WHAT: DAOs for proposals, their service line items and their credits.

WHY: Encapsulates every proposal query the workflow needs:
1. Year-scoped proposal numbering
2. Client/manager scoped listings
3. Proposal tree reconstruction (root + amendments)
4. Guarded writes for signatures, acceptance and viewing
5. Dense re-ordering of line items

HOW: Guarded writes are single UPDATE statements whose WHERE clause
restates the precondition. The caller inspects the returned bool instead
of trusting state it read earlier.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select, update, func, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.dao.base import BaseDAO
from app.models.proposal import (
    Proposal,
    ProposalStatus,
    ProposalService,
    ServiceApprovalStatus,
    SignatureParty,
    Credit,
    SIGNABLE_STATUSES,
)


class ProposalDAO(BaseDAO[Proposal]):
    """
    Data Access Object for Proposal model.

    WHAT: Proposal queries plus the guarded status and signature writes.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize ProposalDAO.

        Args:
            session: Async database session
        """
        super().__init__(Proposal, session)

    async def get_with_details(self, proposal_id: int) -> Optional[Proposal]:
        """
        Load a proposal with services, credits and stages.

        WHY: populate_existing makes the collections reflect rows written
        earlier in the same transaction through bulk statements.
        """
        result = await self.session.execute(
            select(Proposal)
            .where(Proposal.id == proposal_id)
            .options(
                selectinload(Proposal.services),
                selectinload(Proposal.credits),
                selectinload(Proposal.stages),
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def next_proposal_number(self, prefix: str, year: int, suffix: str = "") -> str:
        """
        Allocate the next human-readable proposal number for a year.

        Format: {prefix}-{year}-{NNNN}{suffix}, where NNNN is one more than
        the number of proposals already numbered in that year.

        Example:
            >>> await dao.next_proposal_number("PROP", 2026)
            'PROP-2026-0001'
        """
        year_prefix = f"{prefix}-{year}-"
        result = await self.session.execute(
            select(func.count(Proposal.id)).where(Proposal.proposal_number.like(f"{year_prefix}%"))
        )
        count = result.scalar_one()
        return f"{year_prefix}{count + 1:04d}{suffix}"

    async def list_filtered(
        self,
        skip: int = 0,
        limit: int = 10,
        status: Optional[ProposalStatus] = None,
        request_id: Optional[int] = None,
        client_id: Optional[int] = None,
        client_email: Optional[str] = None,
        exclude_statuses: Sequence[ProposalStatus] = (),
    ) -> Tuple[List[Proposal], int]:
        """
        Page through proposals, newest first.

        Args:
            status: Only proposals in this status
            request_id: Only proposals of this request
            client_id / client_email: Restrict to one client (either match)
            exclude_statuses: Statuses hidden from this caller

        Returns:
            (items, total)
        """
        query = select(Proposal)

        if status is not None:
            query = query.where(Proposal.status == status)
        if request_id is not None:
            query = query.where(Proposal.request_id == request_id)
        if exclude_statuses:
            query = query.where(Proposal.status.not_in(list(exclude_statuses)))
        if client_id is not None or client_email:
            clauses = []
            if client_id is not None:
                clauses.append(Proposal.user_id == client_id)
            if client_email:
                clauses.append(func.lower(Proposal.client_email) == client_email.lower())
            query = query.where(or_(*clauses))

        query = query.order_by(Proposal.created_at.desc(), Proposal.id.desc())
        return await self.paginate(query, skip, limit)

    async def get_amendment_proposals(self, root_proposal_id: int) -> List[Proposal]:
        """Amendment proposals of a root proposal, oldest first."""
        result = await self.session.execute(
            select(Proposal)
            .where(Proposal.parent_proposal_id == root_proposal_id)
            .order_by(Proposal.created_at.asc(), Proposal.id.asc())
        )
        return list(result.scalars().all())

    # =========================================================================
    # Guarded writes
    # =========================================================================

    async def mark_viewed(self, proposal_id: int) -> bool:
        """
        Move SENT -> VIEWED.

        Returns:
            True if this call performed the transition
        """
        result = await self.session.execute(
            update(Proposal)
            .where(Proposal.id == proposal_id, Proposal.status == ProposalStatus.SENT)
            .values(status=ProposalStatus.VIEWED, viewed_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def write_signature(
        self,
        proposal_id: int,
        party: SignatureParty,
        signature: str,
        signed_by: str,
        signer_id: Optional[int] = None,
    ) -> bool:
        """
        Fill one signature slot if it is still empty and the proposal is
        still signable.

        WHY: Restating "slot IS NULL" in the UPDATE makes re-signing a slot
        impossible even when two requests race.

        Returns:
            True if the slot was written by this call
        """
        now = datetime.utcnow()
        if party == SignatureParty.OWNER:
            slot = Proposal.owner_signature
            values = {
                "owner_signature": signature,
                "owner_signed_by": signed_by,
                "owner_signed_at": now,
            }
        else:
            slot = Proposal.architect_signature
            values = {
                "architect_signature": signature,
                "architect_signed_by": signed_by,
                "architect_signed_at": now,
                "architect_signer_id": signer_id,
            }

        result = await self.session.execute(
            update(Proposal)
            .where(
                Proposal.id == proposal_id,
                Proposal.status.in_(list(SIGNABLE_STATUSES)),
                slot.is_(None),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_accepted(self, proposal_id: int) -> bool:
        """
        Flip a fully signed, still signable proposal to ACCEPTED.

        WHY: This is the only write in the code base that sets ACCEPTED.
        The WHERE clause requires both slots, so exactly one transaction
        can win; every other caller sees rowcount 0.

        Returns:
            True if this call accepted the proposal
        """
        result = await self.session.execute(
            update(Proposal)
            .where(
                Proposal.id == proposal_id,
                Proposal.status.in_(list(SIGNABLE_STATUSES)),
                Proposal.owner_signature.is_not(None),
                Proposal.architect_signature.is_not(None),
            )
            .values(status=ProposalStatus.ACCEPTED, responded_at=datetime.utcnow())
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def set_totals(
        self,
        proposal_id: int,
        subtotal: Decimal,
        credits_total: Decimal,
        tax_amount: Decimal,
        total_amount: Decimal,
    ) -> None:
        """Persist the derived pricing fields."""
        await self.session.execute(
            update(Proposal)
            .where(Proposal.id == proposal_id)
            .values(
                subtotal=subtotal,
                credits_total=credits_total,
                tax_amount=tax_amount,
                total_amount=total_amount,
            )
            .execution_options(synchronize_session=False)
        )


class ProposalServiceDAO(BaseDAO[ProposalService]):
    """Data Access Object for proposal line items."""

    def __init__(self, session: AsyncSession):
        super().__init__(ProposalService, session)

    async def list_for_proposal(self, proposal_id: int) -> List[ProposalService]:
        """Line items of a proposal in display order."""
        result = await self.session.execute(
            select(ProposalService)
            .where(ProposalService.proposal_id == proposal_id)
            .order_by(ProposalService.order.asc(), ProposalService.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_pending_approval(self, proposal_id: int) -> List[ProposalService]:
        result = await self.session.execute(
            select(ProposalService)
            .where(
                ProposalService.proposal_id == proposal_id,
                ProposalService.approval_status == ServiceApprovalStatus.PENDING_APPROVAL,
            )
            .order_by(ProposalService.order.asc())
        )
        return list(result.scalars().all())

    async def next_order(self, proposal_id: int) -> int:
        """Order value for a service appended to the end of the list."""
        return await self.count(proposal_id=proposal_id)

    async def repack_order(self, proposal_id: int) -> None:
        """
        Rewrite `order` as 0..n-1 following the current ordering.

        WHY: Deleting a line item leaves a gap; stage generation relies on
        service order being dense.
        """
        services = await self.list_for_proposal(proposal_id)
        for index, service in enumerate(services):
            if service.order != index:
                service.order = index
        await self.session.flush()


class CreditDAO(BaseDAO[Credit]):
    """Data Access Object for proposal credits."""

    def __init__(self, session: AsyncSession):
        super().__init__(Credit, session)

    async def list_for_proposal(self, proposal_id: int) -> List[Credit]:
        result = await self.session.execute(
            select(Credit)
            .where(Credit.proposal_id == proposal_id)
            .order_by(Credit.id.asc())
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())
