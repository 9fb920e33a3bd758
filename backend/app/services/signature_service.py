"""
Signature coordination and acceptance fan-out.

WHAT: Records owner and architect signatures on a proposal and, when the
second one lands, accepts the proposal, generates its project stages and
advances the originating request to SCHEDULED.

WHY: Acceptance is the one place where several aggregates change
together. Running it in the signing transaction means a proposal is never
ACCEPTED without its stages, and the guarded UPDATEs in ProposalDAO make
the fan-out run at most once per proposal even under concurrent signing.

HOW:
    1. write_signature() fills the slot only if it is empty and the
       proposal is still SENT/VIEWED.
    2. The proposal row is re-read under lock.
    3. If both slots are filled, AcceptanceFanOut.run() flips the status
       with mark_accepted(); only the caller that wins that UPDATE creates
       stages and queues the acceptance notifications.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.actor import Actor
from app.core.config import settings
from app.core.exceptions import (
    AuthorizationError,
    InsufficientPermissionsError,
    InvalidStateError,
    PrerequisiteNotMetError,
    ProposalNotFoundError,
    ValidationError,
)
from app.dao.project_request import ProjectRequestDAO
from app.dao.proposal import ProposalDAO, ProposalServiceDAO
from app.dao.user import UserDAO
from app.models.project_request import RequestStatus
from app.models.project_stage import ProjectStage, StageStatus
from app.models.proposal import Proposal, SignatureParty
from app.services.notification_service import NotificationOutbox, NotificationSink
from app.services.proposal_service import counted_services
from app.services.unit_of_work import OperationResult, UnitOfWork

logger = logging.getLogger(__name__)


# Request statuses that acceptance may move forward to SCHEDULED
SCHEDULABLE_REQUEST_STATUSES = (RequestStatus.PENDING, RequestStatus.REVIEWED)


class AcceptanceFanOut:
    """
    Side effects of a proposal becoming ACCEPTED.

    Runs inside the caller's transaction and never commits.
    """

    def __init__(self, session: AsyncSession):
        self.session = session
        self.proposal_dao = ProposalDAO(session)
        self.service_dao = ProposalServiceDAO(session)
        self.request_dao = ProjectRequestDAO(session)
        self.user_dao = UserDAO(session)

    async def run(self, proposal_id: int, outbox: Optional[NotificationOutbox] = None) -> Dict[str, Any]:
        """
        Accept a fully signed proposal and fan out.

        Idempotent: a second run finds the proposal already ACCEPTED, the
        guarded UPDATE matches nothing, and no stages or notifications are
        produced.

        Returns:
            {"accepted": bool, "stages_created": int, "request_advanced": bool}
        """
        if not await self.proposal_dao.mark_accepted(proposal_id):
            logger.warning(
                f"Acceptance fan-out skipped for proposal {proposal_id}: "
                "not fully signed or already decided"
            )
            return {"accepted": False, "stages_created": 0, "request_advanced": False}

        proposal = await self.proposal_dao.get_for_update(proposal_id)
        stages = await self._create_stages(proposal)

        advanced = await self.request_dao.advance_status(
            proposal.request_id,
            RequestStatus.SCHEDULED,
            SCHEDULABLE_REQUEST_STATUSES,
        )
        if advanced:
            logger.info(f"Request {proposal.request_id} scheduled by acceptance of proposal {proposal_id}")
        else:
            logger.info(
                f"Request {proposal.request_id} left unchanged by acceptance of proposal {proposal_id}"
            )

        if outbox is not None:
            managers = await self.user_dao.get_active_managers()
            outbox.notify_proposal_accepted(
                proposal,
                [manager.email for manager in managers],
                stage_count=len(stages),
            )

        logger.info(
            f"Proposal {proposal.proposal_number} accepted, {len(stages)} stage(s) created"
        )
        return {"accepted": True, "stages_created": len(stages), "request_advanced": advanced}

    async def _create_stages(self, proposal: Proposal) -> List[ProjectStage]:
        """
        One NOT_STARTED stage per priced service, in service order.

        Stage order is the dense position among counted services, so a
        rejected or pending service between two priced ones leaves no gap:
        stages keep the relative order of their services, not their indices.
        """
        services = counted_services(await self.service_dao.list_for_proposal(proposal.id))
        stages = []
        for index, service in enumerate(services):
            stage = ProjectStage(
                proposal_id=proposal.id,
                name=service.name,
                description=service.description,
                order=index,
                status=StageStatus.NOT_STARTED,
                progress=0,
                total_tasks=settings.DEFAULT_STAGE_TOTAL_TASKS,
                completed_tasks=0,
            )
            self.session.add(stage)
            stages.append(stage)
        await self.session.flush()
        return stages


class SignatureCoordinator:
    """
    Records one signature per party per proposal.

    Attributes:
        session: Request-scoped session
        sink: Notification sink used after commit
    """

    def __init__(self, session: AsyncSession, sink: Optional[NotificationSink] = None):
        self.session = session
        self.sink = sink
        self.proposal_dao = ProposalDAO(session)
        self.service_dao = ProposalServiceDAO(session)
        self.user_dao = UserDAO(session)
        self.fan_out = AcceptanceFanOut(session)

    def _assert_may_sign(self, proposal: Proposal, party: SignatureParty, actor: Actor) -> None:
        if party == SignatureParty.OWNER:
            if not actor.matches(proposal.user_id, proposal.client_email):
                raise AuthorizationError(
                    message="Only the client can sign as owner",
                    resource_id=proposal.id,
                    user_id=actor.id,
                )
        elif not actor.is_manager:
            raise InsufficientPermissionsError(
                message="Only managers can sign as architect",
                user_id=actor.id,
                user_role=actor.role.value,
            )

    async def sign(
        self,
        proposal_id: int,
        party: SignatureParty,
        signature: str,
        actor: Actor,
        signed_by: Optional[str] = None,
    ) -> OperationResult:
        """
        Record a signature and accept the proposal once both are present.

        Args:
            proposal_id: Proposal to sign
            party: OWNER (the client) or ARCHITECT (staff)
            signature: Signature payload (typed name or image data)
            actor: Signing user
            signed_by: Printed signer name; defaults to the actor's name

        Returns:
            OperationResult with {"proposal", "accepted", "stages_created"}

        Raises:
            ValidationError: Empty signature
            ProposalNotFoundError: Unknown proposal
            AuthorizationError / InsufficientPermissionsError: Wrong signer
            InvalidStateError: Proposal not SENT/VIEWED, or slot already signed
            PrerequisiteNotMetError: Services still await client approval
        """
        party = SignatureParty(party)
        if not signature or not signature.strip():
            raise ValidationError(message="Signature is required", field="signature")

        async with UnitOfWork(self.session, self.sink) as uow:
            proposal = await self.proposal_dao.get_by_id(proposal_id)
            if not proposal:
                raise ProposalNotFoundError(resource_type="Proposal", resource_id=proposal_id)
            self._assert_may_sign(proposal, party, actor)

            if not proposal.is_signable:
                raise InvalidStateError(
                    message="Only sent or viewed proposals can be signed",
                    proposal_id=proposal_id,
                    current_state=proposal.status.value,
                )

            pending = await self.service_dao.list_pending_approval(proposal_id)
            if pending:
                raise PrerequisiteNotMetError(
                    message="Services awaiting client approval must be decided before signing",
                    proposal_id=proposal_id,
                    pending_services=[s.id for s in pending],
                )

            written = await self.proposal_dao.write_signature(
                proposal_id,
                party,
                signature.strip(),
                signed_by or actor.display_name,
                signer_id=actor.id if party == SignatureParty.ARCHITECT else None,
            )
            proposal = await self.proposal_dao.get_for_update(proposal_id)
            if not written:
                if not proposal.is_signable:
                    raise InvalidStateError(
                        message="Only sent or viewed proposals can be signed",
                        proposal_id=proposal_id,
                        current_state=proposal.status.value,
                    )
                raise InvalidStateError(
                    message=f"Proposal has already been signed by the {party.value}",
                    proposal_id=proposal_id,
                    party=party.value,
                )

            outcome = {"accepted": False, "stages_created": 0}
            if proposal.is_fully_signed:
                outcome = await self.fan_out.run(proposal_id, uow.outbox)
            else:
                await self._queue_signed(uow.outbox, proposal, party)

            proposal = await self.proposal_dao.get_with_details(proposal_id)

        logger.info(f"Proposal {proposal_id} signed as {party.value} by user {actor.id}")
        message = "Proposal signed and accepted" if outcome["accepted"] else "Signature recorded"
        return uow.result(
            {
                "proposal": proposal,
                "accepted": outcome["accepted"],
                "stages_created": outcome["stages_created"],
            },
            message,
        )

    async def _queue_signed(self, outbox: NotificationOutbox, proposal: Proposal, party: SignatureParty) -> None:
        # The party still to sign is told the other signature is in.
        if party == SignatureParty.OWNER:
            managers = await self.user_dao.get_active_managers()
            recipients = [manager.email for manager in managers]
        else:
            recipients = [proposal.client_email]
        outbox.notify_proposal_signed(proposal, party.value, recipients)

