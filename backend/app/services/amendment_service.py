"""
Amendment workflow.

WHAT: Change requests raised against an accepted proposal: creation, staff
review, promotion to a child AMENDMENT proposal and completion.

WHY: A signed proposal is never edited. An approved amendment instead
spawns a new DRAFT proposal in the same tree, which is sent, signed and
accepted like any other proposal and produces its own stages.

HOW: The link from amendment to generated proposal is written by a
guarded UPDATE (AmendmentRequestDAO.link_proposal). If another caller
linked first, the whole unit of work, including the freshly drafted
proposal, is rolled back.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import Actor, require_manager
from app.core.config import settings
from app.core.exceptions import (
    AlreadyCompletedError,
    AlreadyReviewedError,
    AmendmentNotFoundError,
    AuthorizationError,
    InvalidStateError,
    PrerequisiteNotMetError,
    ProjectRequestNotFoundError,
    ProposalNotFoundError,
    ValidationError,
)
from app.core.transitions import EntityKind, assert_transition
from app.dao.amendment import AmendmentRequestDAO
from app.dao.project_request import ProjectRequestDAO
from app.dao.proposal import ProposalDAO
from app.dao.user import UserDAO
from app.models.amendment import AmendmentRequest, AmendmentStatus, AmendmentUrgency
from app.models.proposal import Proposal, ProposalStatus, ProposalType
from app.services.notification_service import NotificationSink
from app.services.proposal_service import ProposalWorkflowService
from app.services.unit_of_work import OperationResult, Page, UnitOfWork, page_window

logger = logging.getLogger(__name__)


class AmendmentWorkflow:
    """
    Amendment request operations.

    Attributes:
        session: Request-scoped session
        sink: Notification sink used after commit
    """

    def __init__(self, session: AsyncSession, sink: Optional[NotificationSink] = None):
        self.session = session
        self.sink = sink
        self.dao = AmendmentRequestDAO(session)
        self.proposal_dao = ProposalDAO(session)
        self.request_dao = ProjectRequestDAO(session)
        self.user_dao = UserDAO(session)
        self.proposals = ProposalWorkflowService(session, sink)

    # =========================================================================
    # Lookups
    # =========================================================================

    async def _load(self, amendment_id: int) -> AmendmentRequest:
        amendment = await self.dao.get_by_id(amendment_id)
        if not amendment:
            raise AmendmentNotFoundError(resource_type="AmendmentRequest", resource_id=amendment_id)
        return amendment

    async def _load_proposal(self, proposal_id: int) -> Proposal:
        proposal = await self.proposal_dao.get_by_id(proposal_id)
        if not proposal:
            raise ProposalNotFoundError(resource_type="Proposal", resource_id=proposal_id)
        return proposal

    async def _requester_email(self, amendment: AmendmentRequest) -> Optional[str]:
        requester = await self.user_dao.get_by_id(amendment.requested_by_id)
        return requester.email if requester else None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def create_request(
        self,
        proposal_id: int,
        details: Dict[str, Any],
        actor: Actor,
    ) -> OperationResult:
        """
        Raise a change request against an accepted proposal.

        Args:
            proposal_id: Accepted parent proposal
            details: description (required), project_name,
                requested_services, urgency
            actor: The proposal's client or a manager

        Raises:
            ProposalNotFoundError: Unknown proposal
            AuthorizationError: Requester is neither client nor manager
            InvalidStateError: Parent proposal is not ACCEPTED
            ValidationError: Missing description
        """
        description = (details.get("description") or "").strip()
        if not description:
            raise ValidationError(message="Amendment description is required", field="description")

        async with UnitOfWork(self.session, self.sink) as uow:
            proposal = await self._load_proposal(proposal_id)
            if not actor.is_manager and not actor.matches(proposal.user_id, proposal.client_email):
                raise AuthorizationError(
                    message="You can only request amendments to your own proposals",
                    resource_id=proposal_id,
                    user_id=actor.id,
                )
            if proposal.status != ProposalStatus.ACCEPTED:
                raise InvalidStateError(
                    message="Amendments can only be requested for accepted proposals",
                    proposal_id=proposal_id,
                    current_state=proposal.status.value,
                )

            amendment = await self.dao.create(
                proposal_id=proposal_id,
                requested_by_id=actor.id,
                project_name=details.get("project_name"),
                description=description,
                requested_services=list(details.get("requested_services") or []) or None,
                urgency=AmendmentUrgency(details.get("urgency") or AmendmentUrgency.MEDIUM),
                status=AmendmentStatus.PENDING,
            )
            managers = await self.user_dao.get_active_managers()
            uow.outbox.notify_amendment_requested(amendment, proposal, [m.email for m in managers])

        logger.info(f"Amendment {amendment.id} requested on proposal {proposal_id} by user {actor.id}")
        return uow.result(amendment, "Amendment request submitted")

    async def review(
        self,
        amendment_id: int,
        approve: bool,
        actor: Actor,
        notes: Optional[str] = None,
    ) -> OperationResult:
        """
        Staff decision on a PENDING amendment.

        Raises:
            InsufficientPermissionsError: For non-managers
            AlreadyReviewedError: If the amendment is no longer PENDING
        """
        require_manager(actor, "review amendments")
        decision = AmendmentStatus.APPROVED if approve else AmendmentStatus.REJECTED

        async with UnitOfWork(self.session, self.sink) as uow:
            amendment = await self._load(amendment_id)
            if amendment.status != AmendmentStatus.PENDING:
                raise AlreadyReviewedError(
                    message="This amendment has already been reviewed",
                    amendment_id=amendment_id,
                    current_state=amendment.status.value,
                )
            assert_transition(EntityKind.AMENDMENT, amendment.status, decision)

            amendment.status = decision
            amendment.reviewed_by_id = actor.id
            amendment.reviewed_at = datetime.utcnow()
            amendment.review_notes = notes
            await self.session.flush()
            uow.outbox.notify_amendment_reviewed(amendment, await self._requester_email(amendment))

        logger.info(f"Amendment {amendment_id} {decision.value} by user {actor.id}")
        return uow.result(amendment, f"Amendment {decision.value}")

    async def create_proposal_from_amendment(
        self,
        amendment_id: int,
        details: Dict[str, Any],
        actor: Actor,
    ) -> OperationResult:
        """
        Draft the child AMENDMENT proposal for an approved amendment.

        Client identity, location, service type and category come from the
        parent proposal. The new proposal hangs off the tree's root so the
        tree stays one level deep. When `details` carries no services, the
        amendment's requested services are used as line items.

        Raises:
            ValidationError: The amendment already has a proposal
            InvalidStateError: The amendment is not APPROVED
        """
        require_manager(actor, "create amendment proposals")

        async with UnitOfWork(self.session, self.sink) as uow:
            amendment = await self.dao.get_for_update(amendment_id)
            if not amendment:
                raise AmendmentNotFoundError(
                    resource_type="AmendmentRequest", resource_id=amendment_id
                )
            if amendment.amendment_proposal_id is not None:
                raise ValidationError(
                    message="A proposal has already been created for this amendment",
                    amendment_id=amendment_id,
                    amendment_proposal_id=amendment.amendment_proposal_id,
                )
            if amendment.status != AmendmentStatus.APPROVED:
                raise InvalidStateError(
                    message="Only approved amendments can be turned into proposals",
                    amendment_id=amendment_id,
                    current_state=amendment.status.value,
                )

            parent = await self._load_proposal(amendment.proposal_id)
            # Amendments raised against an amendment proposal still attach to
            # the tree root, keeping every tree one level deep.
            root = await self._load_proposal(parent.root_proposal_id)
            request = await self.request_dao.get_by_id(root.request_id)
            if not request:
                raise ProjectRequestNotFoundError(
                    resource_type="ProjectRequest", resource_id=root.request_id
                )

            data = dict(details)
            data.setdefault("title", amendment.project_name or root.title)
            data.setdefault("description", amendment.description)
            if not data.get("services"):
                data["services"] = self._services_from_request(amendment)

            proposal = await self.proposals.build_proposal(
                request,
                data,
                actor,
                proposal_type=ProposalType.AMENDMENT,
                parent=root,
            )

            if not await self.dao.link_proposal(amendment_id, proposal.id):
                raise ValidationError(
                    message="A proposal has already been created for this amendment",
                    amendment_id=amendment_id,
                )
            amendment = await self.dao.get_for_update(amendment_id)
            proposal = await self.proposal_dao.get_with_details(proposal.id)

        logger.info(
            f"Amendment proposal {proposal.proposal_number} drafted for amendment {amendment_id} "
            f"by user {actor.id}"
        )
        return uow.result(
            {"amendment": amendment, "proposal": proposal},
            "Amendment proposal created",
        )

    @staticmethod
    def _services_from_request(amendment: AmendmentRequest) -> List[Dict[str, Any]]:
        services = []
        for item in amendment.requested_services or []:
            if not isinstance(item, dict) or not item.get("name"):
                continue
            services.append(
                {
                    "name": item["name"],
                    "description": item.get("description"),
                    "amount": item.get("estimated_amount") or 0,
                }
            )
        return services

    async def complete_amendment(self, amendment_id: int, actor: Actor) -> OperationResult:
        """
        Close an amendment once its proposal has been accepted.

        Raises:
            AlreadyCompletedError: If already COMPLETED
            PrerequisiteNotMetError: No linked proposal, or it is not ACCEPTED
        """
        require_manager(actor, "complete amendments")

        async with UnitOfWork(self.session, self.sink) as uow:
            amendment = await self._load(amendment_id)
            if amendment.status == AmendmentStatus.COMPLETED:
                raise AlreadyCompletedError(
                    message="This amendment is already completed",
                    amendment_id=amendment_id,
                )
            if amendment.amendment_proposal_id is None:
                raise PrerequisiteNotMetError(
                    message="No amendment proposal has been created yet",
                    amendment_id=amendment_id,
                )
            linked = await self._load_proposal(amendment.amendment_proposal_id)
            if linked.status != ProposalStatus.ACCEPTED:
                raise PrerequisiteNotMetError(
                    message="The amendment proposal must be accepted first",
                    amendment_id=amendment_id,
                    proposal_status=linked.status.value,
                )
            assert_transition(EntityKind.AMENDMENT, amendment.status, AmendmentStatus.COMPLETED)

            amendment.status = AmendmentStatus.COMPLETED
            amendment.completed_by_id = actor.id
            amendment.completed_at = datetime.utcnow()
            await self.session.flush()
            uow.outbox.notify_amendment_completed(amendment, await self._requester_email(amendment))

        logger.info(f"Amendment {amendment_id} completed by user {actor.id}")
        return uow.result(amendment, "Amendment completed")

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, amendment_id: int, actor: Actor) -> AmendmentRequest:
        """Requester, proposal client or any manager."""
        amendment = await self._load(amendment_id)
        if actor.is_manager or amendment.requested_by_id == actor.id:
            return amendment
        proposal = await self._load_proposal(amendment.proposal_id)
        if not actor.matches(proposal.user_id, proposal.client_email):
            raise AuthorizationError(
                message="You can only access your own amendments",
                resource_id=amendment_id,
                user_id=actor.id,
            )
        return amendment

    async def list_for_proposal(
        self,
        proposal_id: int,
        actor: Actor,
        status: Optional[AmendmentStatus] = None,
        page: int = 1,
        limit: int = settings.DEFAULT_PAGE_SIZE,
    ) -> Page:
        proposal = await self._load_proposal(proposal_id)
        if not actor.is_manager and not actor.matches(proposal.user_id, proposal.client_email):
            raise AuthorizationError(
                message="You can only access your own proposals",
                resource_id=proposal_id,
                user_id=actor.id,
            )
        page, limit, skip = page_window(page, limit, settings.MAX_PAGE_SIZE)
        items, total = await self.dao.list_filtered(skip, limit, proposal_id=proposal_id, status=status)
        return Page(items=items, total=total, page=page, limit=limit)

    async def list_all(
        self,
        actor: Actor,
        status: Optional[AmendmentStatus] = None,
        page: int = 1,
        limit: int = settings.DEFAULT_PAGE_SIZE,
    ) -> Page:
        require_manager(actor, "list all amendments")
        page, limit, skip = page_window(page, limit, settings.MAX_PAGE_SIZE)
        items, total = await self.dao.list_filtered(skip, limit, status=status)
        return Page(items=items, total=total, page=page, limit=limit)
