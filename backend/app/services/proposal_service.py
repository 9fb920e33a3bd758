"""
Proposal workflow service.

WHAT: Drafting, sending, viewing and declining proposals, plus line-item,
credit and service-approval management.

WHY: Proposals are mutable only while DRAFT; once SENT they change only
through signatures (app.services.signature_service), rejection or
expiry. Every line-item or credit mutation recalculates totals inside the
same transaction so the stored pricing is never stale.

HOW: Each mutating method is one UnitOfWork. Status moves go through the
proposal transition table; ACCEPTED is not in that table and cannot be
reached from here.
"""

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import Actor, require_manager
from app.core.config import settings
from app.core.exceptions import (
    AlreadyReviewedError,
    AuthorizationError,
    CreditNotFoundError,
    InvalidStateError,
    ProjectRequestNotFoundError,
    ProposalNotFoundError,
    ProposalServiceNotFoundError,
    ValidationError,
)
from app.core.transitions import EntityKind, assert_transition
from app.dao.project_request import ProjectRequestDAO
from app.dao.proposal import ProposalDAO, ProposalServiceDAO, CreditDAO
from app.dao.user import UserDAO
from app.models.project_request import ProjectRequest
from app.models.proposal import (
    Credit,
    CreditType,
    Proposal,
    ProposalService,
    ProposalStatus,
    ProposalType,
    ServiceApprovalStatus,
)
from app.services.financials import FinancialRecalculator
from app.services.notes import append_note
from app.services.notification_service import NotificationSink
from app.services.unit_of_work import OperationResult, Page, UnitOfWork, page_window

logger = logging.getLogger(__name__)


# Fields staff may edit while a proposal is DRAFT
EDITABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "square_footage",
        "budget_range",
        "expected_timeline",
        "tax_rate",
        "payment_method",
        "payment_terms",
        "terms_and_conditions",
        "notes",
        "expires_at",
    }
)

SERVICE_FIELDS = frozenset({"name", "description", "amount", "quantity"})
CREDIT_FIELDS = frozenset({"description", "amount", "type"})

# Statuses during which an amendment proposal may grow by client-approved services
APPROVAL_FLOW_STATUSES = (ProposalStatus.DRAFT, ProposalStatus.SENT, ProposalStatus.VIEWED)


def _decimal(value: Any, field_name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        raise ValidationError(message=f"{field_name} must be a number", field=field_name)


def validate_service_fields(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Normalise and validate line-item input.

    Raises:
        ValidationError: Missing name, negative amount or quantity below 1
    """
    fields = {k: v for k, v in data.items() if k in SERVICE_FIELDS and v is not None}

    if not partial and not fields.get("name"):
        raise ValidationError(message="Service name is required", field="name")
    if "name" in fields and not str(fields["name"]).strip():
        raise ValidationError(message="Service name is required", field="name")
    if "amount" in fields:
        fields["amount"] = _decimal(fields["amount"], "amount")
        if fields["amount"] < 0:
            raise ValidationError(message="Service amount cannot be negative", field="amount")
    elif not partial:
        raise ValidationError(message="Service amount is required", field="amount")
    if "quantity" in fields and int(fields["quantity"]) < 1:
        raise ValidationError(message="Quantity must be at least 1", field="quantity")
    return fields


def validate_credit_fields(data: Dict[str, Any], partial: bool = False) -> Dict[str, Any]:
    """
    Normalise and validate credit input.

    Raises:
        ValidationError: Non-positive amount or a percent credit above 100
    """
    fields = {k: v for k, v in data.items() if k in CREDIT_FIELDS and v is not None}

    if "type" in fields:
        fields["type"] = CreditType(fields["type"])
    elif not partial:
        fields["type"] = CreditType.DOLLAR_AMOUNT

    if "amount" in fields:
        fields["amount"] = _decimal(fields["amount"], "amount")
        if fields["amount"] <= 0:
            raise ValidationError(message="Credit amount must be positive", field="amount")
    elif not partial:
        raise ValidationError(message="Credit amount is required", field="amount")

    if fields.get("type") == CreditType.PERCENT and fields.get("amount", 0) > 100:
        raise ValidationError(message="Percent credit cannot exceed 100", field="amount")
    return fields


class ProposalWorkflowService:
    """
    Proposal drafting and review operations.

    Attributes:
        session: Request-scoped session
        sink: Notification sink used after commit
    """

    def __init__(self, session: AsyncSession, sink: Optional[NotificationSink] = None):
        self.session = session
        self.sink = sink
        self.proposal_dao = ProposalDAO(session)
        self.service_dao = ProposalServiceDAO(session)
        self.credit_dao = CreditDAO(session)
        self.request_dao = ProjectRequestDAO(session)
        self.user_dao = UserDAO(session)
        self.recalculator = FinancialRecalculator(session)

    # =========================================================================
    # Lookups and guards
    # =========================================================================

    async def _load(self, proposal_id: int) -> Proposal:
        proposal = await self.proposal_dao.get_by_id(proposal_id)
        if not proposal:
            raise ProposalNotFoundError(resource_type="Proposal", resource_id=proposal_id)
        return proposal

    async def _load_draft(self, proposal_id: int) -> Proposal:
        proposal = await self._load(proposal_id)
        if not proposal.is_editable:
            raise InvalidStateError(
                message="Only draft proposals can be modified",
                proposal_id=proposal_id,
                current_state=proposal.status.value,
            )
        return proposal

    async def _load_service(self, service_id: int) -> ProposalService:
        service = await self.service_dao.get_by_id(service_id)
        if not service:
            raise ProposalServiceNotFoundError(resource_type="ProposalService", resource_id=service_id)
        return service

    async def _load_credit(self, credit_id: int) -> Credit:
        credit = await self.credit_dao.get_by_id(credit_id)
        if not credit:
            raise CreditNotFoundError(resource_type="Credit", resource_id=credit_id)
        return credit

    @staticmethod
    def is_client(proposal: Proposal, actor: Actor) -> bool:
        return actor.matches(proposal.user_id, proposal.client_email)

    def assert_can_view(self, proposal: Proposal, actor: Actor) -> None:
        """
        Managers see every proposal; clients see their own once sent.

        Raises:
            ProposalNotFoundError: A client asking for a DRAFT
            AuthorizationError: Anyone else
        """
        if actor.is_manager:
            return
        if not self.is_client(proposal, actor):
            raise AuthorizationError(
                message="You can only access your own proposals",
                resource_id=proposal.id,
                user_id=actor.id,
            )
        if proposal.status == ProposalStatus.DRAFT:
            raise ProposalNotFoundError(resource_type="Proposal", resource_id=proposal.id)

    async def manager_emails(self) -> List[str]:
        return [user.email for user in await self.user_dao.get_active_managers()]

    # =========================================================================
    # Proposal creation (shared with the amendment workflow)
    # =========================================================================

    async def build_proposal(
        self,
        request: ProjectRequest,
        data: Dict[str, Any],
        created_by: Actor,
        proposal_type: ProposalType = ProposalType.NORMAL,
        parent: Optional[Proposal] = None,
    ) -> Proposal:
        """
        Insert a DRAFT proposal with its initial services and credits.

        Does not commit; callers run this inside their own unit of work.
        Client identity comes from the parent proposal when given,
        otherwise from the request.

        Args:
            request: Originating request
            data: Editable fields plus optional "services" / "credits" lists
            created_by: Staff member drafting the proposal
            proposal_type: NORMAL or AMENDMENT
            parent: Root proposal for amendment proposals

        Returns:
            The created proposal with totals calculated

        Raises:
            ValidationError: On invalid services/credits or credits
                exceeding the subtotal
        """
        suffix = settings.AMENDMENT_NUMBER_SUFFIX if proposal_type == ProposalType.AMENDMENT else ""
        number = await self.proposal_dao.next_proposal_number(
            settings.PROPOSAL_NUMBER_PREFIX,
            datetime.utcnow().year,
            suffix,
        )

        fields = {k: v for k, v in data.items() if k in EDITABLE_FIELDS and v is not None}
        if "tax_rate" in fields:
            fields["tax_rate"] = _decimal(fields["tax_rate"], "tax_rate")
            if fields["tax_rate"] < 0:
                raise ValidationError(message="Tax rate cannot be negative", field="tax_rate")

        if parent is not None:
            identity = dict(
                user_id=parent.user_id,
                client_name=parent.client_name,
                client_email=parent.client_email,
                client_phone=parent.client_phone,
                client_company=parent.client_company,
                project_location=parent.project_location,
                service_type=parent.service_type,
                project_category=parent.project_category,
                square_footage=parent.square_footage,
            )
            fields.setdefault("tax_rate", parent.tax_rate)
        else:
            identity = dict(
                user_id=request.user_id,
                client_name=request.client_name,
                client_email=request.email,
                client_phone=request.phone,
                client_company=request.company_name,
                project_location=request.project_location or None,
                service_type=request.service_type,
                project_category=request.project_category,
            )
            fields.setdefault("budget_range", request.budget_range)

        proposal = await self.proposal_dao.create(
            proposal_number=number,
            request_id=request.id,
            created_by_id=created_by.id,
            status=ProposalStatus.DRAFT,
            proposal_type=proposal_type,
            parent_proposal_id=parent.id if parent is not None else None,
            **{**identity, **fields},
        )

        for order, service_data in enumerate(data.get("services") or []):
            service_fields = validate_service_fields(service_data)
            await self.service_dao.create(proposal_id=proposal.id, order=order, **service_fields)

        for credit_data in data.get("credits") or []:
            await self.credit_dao.create(proposal_id=proposal.id, **validate_credit_fields(credit_data))

        await self.recalculator.recalculate(proposal.id)
        return proposal

    async def create(self, request_id: int, data: Dict[str, Any], actor: Actor) -> OperationResult:
        """
        Draft a proposal for a client request.

        Raises:
            InsufficientPermissionsError: For non-managers
            ProjectRequestNotFoundError: If the request is missing or deleted
            ValidationError: On invalid line items or credits
        """
        require_manager(actor, "create proposals")

        async with UnitOfWork(self.session, self.sink) as uow:
            request = await self.request_dao.get_active(request_id)
            if not request:
                raise ProjectRequestNotFoundError(
                    resource_type="ProjectRequest", resource_id=request_id
                )
            proposal = await self.build_proposal(request, data, actor)
            proposal = await self.proposal_dao.get_with_details(proposal.id)

        logger.info(
            f"Proposal {proposal.proposal_number} drafted for request {request_id} by user {actor.id}"
        )
        return uow.result(proposal, "Proposal created")

    # =========================================================================
    # Reads
    # =========================================================================

    async def get(self, proposal_id: int, actor: Actor) -> Proposal:
        """
        Read one proposal with services, credits and stages.

        The client's first read of a SENT proposal marks it VIEWED.

        Raises:
            ProposalNotFoundError / AuthorizationError
        """
        proposal = await self._load(proposal_id)
        self.assert_can_view(proposal, actor)

        if proposal.status == ProposalStatus.SENT and self.is_client(proposal, actor):
            async with UnitOfWork(self.session, self.sink):
                if await self.proposal_dao.mark_viewed(proposal_id):
                    logger.info(f"Proposal {proposal_id} viewed by client {actor.id}")

        return await self.proposal_dao.get_with_details(proposal_id)

    async def list(
        self,
        actor: Actor,
        page: int = 1,
        limit: int = settings.DEFAULT_PAGE_SIZE,
        status: Optional[ProposalStatus] = None,
        request_id: Optional[int] = None,
    ) -> Page:
        """Managers see every proposal; clients see their own non-draft ones."""
        page, limit, skip = page_window(page, limit, settings.MAX_PAGE_SIZE)
        if actor.is_manager:
            items, total = await self.proposal_dao.list_filtered(
                skip, limit, status=status, request_id=request_id
            )
        else:
            items, total = await self.proposal_dao.list_filtered(
                skip,
                limit,
                status=status,
                request_id=request_id,
                client_id=actor.id,
                client_email=actor.email,
                exclude_statuses=(ProposalStatus.DRAFT,),
            )
        return Page(items=items, total=total, page=page, limit=limit)

    async def get_tree(self, proposal_id: int, actor: Actor) -> Dict[str, Any]:
        """
        Reconstruct the proposal tree containing `proposal_id`.

        Returns:
            {"normal_proposal", "amendment_proposals", "total_proposals"}
            with amendments ordered by creation
        """
        proposal = await self._load(proposal_id)
        root = await self._load(proposal.root_proposal_id)
        self.assert_can_view(root, actor)

        amendments = await self.proposal_dao.get_amendment_proposals(root.id)
        if not actor.is_manager:
            amendments = [p for p in amendments if p.status != ProposalStatus.DRAFT]

        return {
            "normal_proposal": root,
            "amendment_proposals": amendments,
            "total_proposals": 1 + len(amendments),
        }

    # =========================================================================
    # Status changes
    # =========================================================================

    async def update_draft(self, proposal_id: int, data: Dict[str, Any], actor: Actor) -> OperationResult:
        """
        Edit DRAFT proposal fields. Tax rate changes recalculate totals.

        Raises:
            InvalidStateError: If the proposal is not DRAFT
        """
        require_manager(actor, "edit proposals")

        async with UnitOfWork(self.session, self.sink) as uow:
            proposal = await self._load_draft(proposal_id)
            fields = {k: v for k, v in data.items() if k in EDITABLE_FIELDS}
            if "tax_rate" in fields:
                if fields["tax_rate"] is None:
                    fields.pop("tax_rate")
                else:
                    fields["tax_rate"] = _decimal(fields["tax_rate"], "tax_rate")
                    if fields["tax_rate"] < 0:
                        raise ValidationError(message="Tax rate cannot be negative", field="tax_rate")

            for field_name, value in fields.items():
                setattr(proposal, field_name, value)
            await self.session.flush()
            await self.recalculator.recalculate(proposal_id)
            proposal = await self.proposal_dao.get_with_details(proposal_id)

        return uow.result(proposal, "Proposal updated")

    async def send(self, proposal_id: int, actor: Actor) -> OperationResult:
        """
        DRAFT -> SENT, notifying the client.

        Raises:
            InvalidStateTransitionError: If not DRAFT
            ValidationError: If the proposal has no priced services
        """
        require_manager(actor, "send proposals")

        async with UnitOfWork(self.session, self.sink) as uow:
            proposal = await self._load(proposal_id)
            assert_transition(EntityKind.PROPOSAL, proposal.status, ProposalStatus.SENT)

            services = await self.service_dao.list_for_proposal(proposal_id)
            if not any(s.counts_toward_total for s in services):
                raise ValidationError(
                    message="Cannot send a proposal without services",
                    proposal_id=proposal_id,
                )

            proposal.status = ProposalStatus.SENT
            proposal.sent_at = datetime.utcnow()
            await self.session.flush()
            uow.outbox.notify_proposal_sent(proposal)

        logger.info(f"Proposal {proposal.proposal_number} sent by user {actor.id}")
        return uow.result(proposal, "Proposal sent to client")

    async def reject(self, proposal_id: int, actor: Actor, reason: Optional[str] = None) -> OperationResult:
        """
        Client declines a SENT or VIEWED proposal.

        Raises:
            AuthorizationError: If the actor is not the proposal's client
            InvalidStateTransitionError: If the proposal is not SENT/VIEWED
        """
        async with UnitOfWork(self.session, self.sink) as uow:
            proposal = await self._load(proposal_id)
            if not self.is_client(proposal, actor):
                raise AuthorizationError(
                    message="Only the client can reject this proposal",
                    resource_id=proposal_id,
                    user_id=actor.id,
                )
            assert_transition(EntityKind.PROPOSAL, proposal.status, ProposalStatus.REJECTED)

            proposal.status = ProposalStatus.REJECTED
            proposal.responded_at = datetime.utcnow()
            proposal.notes = append_note(proposal.notes, reason, prefix="[Rejected] ")
            await self.session.flush()
            uow.outbox.notify_proposal_rejected(proposal, await self.manager_emails(), reason)

        logger.info(f"Proposal {proposal.proposal_number} rejected by client {actor.id}")
        return uow.result(proposal, "Proposal rejected")

    async def expire(self, proposal_id: int, actor: Actor) -> OperationResult:
        """SENT/VIEWED -> EXPIRED (staff only)."""
        require_manager(actor, "expire proposals")

        async with UnitOfWork(self.session, self.sink) as uow:
            proposal = await self._load(proposal_id)
            assert_transition(EntityKind.PROPOSAL, proposal.status, ProposalStatus.EXPIRED)
            proposal.status = ProposalStatus.EXPIRED
            await self.session.flush()

        logger.info(f"Proposal {proposal.proposal_number} expired by user {actor.id}")
        return uow.result(proposal, "Proposal expired")

    # =========================================================================
    # Line items
    # =========================================================================

    async def add_service(self, proposal_id: int, data: Dict[str, Any], actor: Actor) -> OperationResult:
        """Append a line item to a DRAFT proposal."""
        require_manager(actor, "edit proposal services")

        async with UnitOfWork(self.session, self.sink) as uow:
            await self._load_draft(proposal_id)
            fields = validate_service_fields(data)
            order = await self.service_dao.next_order(proposal_id)
            service = await self.service_dao.create(proposal_id=proposal_id, order=order, **fields)
            totals = await self.recalculator.recalculate(proposal_id)

        return uow.result({"service": service, "totals": totals}, "Service added")

    async def update_service(self, service_id: int, data: Dict[str, Any], actor: Actor) -> OperationResult:
        """Edit a line item of a DRAFT proposal."""
        require_manager(actor, "edit proposal services")

        async with UnitOfWork(self.session, self.sink) as uow:
            service = await self._load_service(service_id)
            await self._load_draft(service.proposal_id)
            for field_name, value in validate_service_fields(data, partial=True).items():
                setattr(service, field_name, value)
            await self.session.flush()
            totals = await self.recalculator.recalculate(service.proposal_id)

        return uow.result({"service": service, "totals": totals}, "Service updated")

    async def delete_service(self, service_id: int, actor: Actor) -> OperationResult:
        """Remove a line item and re-pack the remaining order values."""
        require_manager(actor, "edit proposal services")

        async with UnitOfWork(self.session, self.sink) as uow:
            service = await self._load_service(service_id)
            proposal_id = service.proposal_id
            await self._load_draft(proposal_id)
            await self.session.delete(service)
            await self.session.flush()
            await self.service_dao.repack_order(proposal_id)
            totals = await self.recalculator.recalculate(proposal_id)

        return uow.result({"id": service_id, "totals": totals}, "Service deleted")

    # =========================================================================
    # Credits
    # =========================================================================

    async def add_credit(self, proposal_id: int, data: Dict[str, Any], actor: Actor) -> OperationResult:
        """
        Add a discount to a DRAFT proposal.

        Raises:
            ValidationError: If the credit would push totals below zero
        """
        require_manager(actor, "edit proposal credits")

        async with UnitOfWork(self.session, self.sink) as uow:
            await self._load_draft(proposal_id)
            credit = await self.credit_dao.create(proposal_id=proposal_id, **validate_credit_fields(data))
            totals = await self.recalculator.recalculate(proposal_id)

        return uow.result({"credit": credit, "totals": totals}, "Credit added")

    async def update_credit(self, credit_id: int, data: Dict[str, Any], actor: Actor) -> OperationResult:
        require_manager(actor, "edit proposal credits")

        async with UnitOfWork(self.session, self.sink) as uow:
            credit = await self._load_credit(credit_id)
            await self._load_draft(credit.proposal_id)
            fields = validate_credit_fields(data, partial=True)
            if (
                fields.get("type", credit.type) == CreditType.PERCENT
                and fields.get("amount", credit.amount) > 100
            ):
                raise ValidationError(message="Percent credit cannot exceed 100", field="amount")
            for field_name, value in fields.items():
                setattr(credit, field_name, value)
            await self.session.flush()
            totals = await self.recalculator.recalculate(credit.proposal_id)

        return uow.result({"credit": credit, "totals": totals}, "Credit updated")

    async def delete_credit(self, credit_id: int, actor: Actor) -> OperationResult:
        require_manager(actor, "edit proposal credits")

        async with UnitOfWork(self.session, self.sink) as uow:
            credit = await self._load_credit(credit_id)
            proposal_id = credit.proposal_id
            await self._load_draft(proposal_id)
            await self.session.delete(credit)
            await self.session.flush()
            totals = await self.recalculator.recalculate(proposal_id)

        return uow.result({"id": credit_id, "totals": totals}, "Credit deleted")

    # =========================================================================
    # Service approval (amendment proposals)
    # =========================================================================

    async def add_service_for_approval(
        self,
        proposal_id: int,
        data: Dict[str, Any],
        actor: Actor,
    ) -> OperationResult:
        """
        Add a service to an amendment proposal that the client must approve.

        The service is priced out until approved.

        Raises:
            InvalidStateError: If the proposal is not an amendment proposal
                in DRAFT, SENT or VIEWED
        """
        require_manager(actor, "add services")

        async with UnitOfWork(self.session, self.sink) as uow:
            proposal = await self._load(proposal_id)
            if proposal.proposal_type != ProposalType.AMENDMENT:
                raise InvalidStateError(
                    message="Service approval only applies to amendment proposals",
                    proposal_id=proposal_id,
                )
            if proposal.status not in APPROVAL_FLOW_STATUSES:
                raise InvalidStateError(
                    message="Services can no longer be added to this proposal",
                    proposal_id=proposal_id,
                    current_state=proposal.status.value,
                )

            fields = validate_service_fields(data)
            order = await self.service_dao.next_order(proposal_id)
            service = await self.service_dao.create(
                proposal_id=proposal_id,
                order=order,
                requires_approval=True,
                approval_status=ServiceApprovalStatus.PENDING_APPROVAL,
                **fields,
            )
            uow.outbox.notify_service_approval_requested(proposal, service)

        logger.info(f"Service {service.id} added for approval on proposal {proposal_id}")
        return uow.result(service, "Service added and awaiting client approval")

    async def decide_service_approval(
        self,
        service_id: int,
        approve: bool,
        actor: Actor,
        reason: Optional[str] = None,
    ) -> OperationResult:
        """
        Client approves or rejects a pending service.

        Raises:
            AuthorizationError: If the actor is not the proposal's client
            AlreadyReviewedError: If the service is not pending approval
            InvalidStateError: If the proposal has left the approval window
        """
        async with UnitOfWork(self.session, self.sink) as uow:
            service = await self._load_service(service_id)
            proposal = await self._load(service.proposal_id)
            if not self.is_client(proposal, actor):
                raise AuthorizationError(
                    message="Only the client can decide on this service",
                    resource_id=service_id,
                    user_id=actor.id,
                )
            if service.approval_status != ServiceApprovalStatus.PENDING_APPROVAL:
                raise AlreadyReviewedError(
                    message="This service has already been reviewed",
                    service_id=service_id,
                    current_state=service.approval_status.value if service.approval_status else None,
                )
            if proposal.status not in APPROVAL_FLOW_STATUSES:
                raise InvalidStateError(
                    message="The proposal is no longer open for service decisions",
                    proposal_id=proposal.id,
                    current_state=proposal.status.value,
                )

            now = datetime.utcnow()
            if approve:
                service.approval_status = ServiceApprovalStatus.APPROVED
                service.approved_at = now
                service.approved_by_id = actor.id
            else:
                service.approval_status = ServiceApprovalStatus.REJECTED
                service.rejected_at = now
                service.rejected_by_id = actor.id
                service.rejection_reason = reason
            await self.session.flush()
            await self.recalculator.recalculate(proposal.id)
            uow.outbox.notify_service_approval_decided(proposal, service, await self.manager_emails())

        decision = "approved" if approve else "rejected"
        logger.info(f"Service {service_id} {decision} by client {actor.id}")
        return uow.result(service, f"Service {decision}")

    async def pending_approvals(self, proposal_id: int, actor: Actor) -> List[ProposalService]:
        """Services of a proposal still awaiting the client's decision."""
        proposal = await self._load(proposal_id)
        self.assert_can_view(proposal, actor)
        return await self.service_dao.list_pending_approval(proposal_id)


def counted_services(services: Iterable[ProposalService]) -> List[ProposalService]:
    """Services that are priced (and become stages), in display order."""
    return [s for s in sorted(services, key=lambda s: (s.order, s.id)) if s.counts_toward_total]
