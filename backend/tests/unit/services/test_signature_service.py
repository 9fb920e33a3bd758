"""
Unit tests for signature coordination and the acceptance fan-out.

WHAT: One signature per party, acceptance on the second signature, stage
generation and request scheduling.

WHY: Acceptance is the only multi-aggregate change in the system. These
tests pin down that it happens exactly once, only with both signatures,
and never moves a request backwards.
"""

import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from app.core.exceptions import (
    AuthorizationError,
    InsufficientPermissionsError,
    InvalidStateError,
    PrerequisiteNotMetError,
    ValidationError,
)
from app.dao.project_request import ProjectRequestDAO
from app.dao.project_stage import ProjectStageDAO
from app.dao.proposal import ProposalServiceDAO
from app.models.project_request import RequestStatus
from app.models.project_stage import StageStatus
from app.models.proposal import ProposalService, ProposalStatus, ServiceApprovalStatus, SignatureParty
from app.services.notification_service import MockNotificationSink, NotificationTemplate
from app.services.signature_service import AcceptanceFanOut, SignatureCoordinator
from tests.factories import ProjectRequestFactory, ProposalFactory


@pytest.fixture
def coordinator(db_session, sink):
    return SignatureCoordinator(db_session, sink)


async def sent_proposal(db_session, client_user, request_status=RequestStatus.PENDING, **kwargs):
    request = await ProjectRequestFactory.create(
        db_session, user=client_user, email=client_user.email, status=request_status
    )
    proposal = await ProposalFactory.create_sent(db_session, request, **kwargs)
    return request, proposal


class TestSingleSignature:
    @pytest.mark.asyncio
    async def test_owner_signature_alone_does_not_accept(
        self, db_session, coordinator, client_user, client_actor, manager_user
    ):
        request, proposal = await sent_proposal(db_session, client_user)

        result = await coordinator.sign(proposal.id, SignatureParty.OWNER, "Casey Client", client_actor)

        assert result.success is True
        assert result.message == "Signature recorded"
        assert result.data["accepted"] is False
        signed = result.data["proposal"]
        assert signed.status == ProposalStatus.SENT
        assert signed.owner_signature == "Casey Client"
        assert signed.owner_signed_by == client_actor.display_name
        assert signed.owner_signed_at is not None
        assert signed.architect_signature is None
        assert await ProjectStageDAO(db_session).list_for_proposal(proposal.id) == []

    @pytest.mark.asyncio
    async def test_owner_signature_notifies_managers(
        self, db_session, coordinator, client_user, client_actor, manager_user
    ):
        _, proposal = await sent_proposal(db_session, client_user)

        await coordinator.sign(proposal.id, SignatureParty.OWNER, "Casey Client", client_actor)

        sent = MockNotificationSink.sent_of_kind(NotificationTemplate.PROPOSAL_SIGNED)
        assert [i.recipient for i in sent] == [manager_user.email]
        assert sent[0].payload["signed_party"] == "owner"

    @pytest.mark.asyncio
    async def test_architect_signature_alone_notifies_client(
        self, db_session, coordinator, client_user, manager
    ):
        _, proposal = await sent_proposal(db_session, client_user)

        result = await coordinator.sign(proposal.id, SignatureParty.ARCHITECT, "Pat Manager", manager)

        assert result.data["accepted"] is False
        assert result.data["proposal"].architect_signer_id == manager.id
        sent = MockNotificationSink.sent_of_kind(NotificationTemplate.PROPOSAL_SIGNED)
        assert [i.recipient for i in sent] == [client_user.email]


class TestAcceptance:
    @pytest.mark.asyncio
    async def test_second_signature_accepts_and_fans_out(
        self, db_session, coordinator, client_user, client_actor, manager
    ):
        request, proposal = await sent_proposal(db_session, client_user)

        await coordinator.sign(proposal.id, SignatureParty.OWNER, "Casey Client", client_actor)
        result = await coordinator.sign(proposal.id, SignatureParty.ARCHITECT, "Pat Manager", manager)

        assert result.message == "Proposal signed and accepted"
        assert result.data["accepted"] is True
        assert result.data["stages_created"] == 2

        accepted = result.data["proposal"]
        assert accepted.status == ProposalStatus.ACCEPTED
        assert accepted.responded_at is not None

        stages = await ProjectStageDAO(db_session).list_for_proposal(proposal.id)
        assert [(s.order, s.name) for s in stages] == [
            (0, "Schematic design"),
            (1, "Construction documents"),
        ]
        assert all(s.status == StageStatus.NOT_STARTED for s in stages)
        assert all(s.progress == 0 and s.total_tasks == 5 for s in stages)

        await db_session.refresh(request)
        assert request.status == RequestStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_acceptance_notifies_client_and_managers(
        self, db_session, coordinator, client_user, client_actor, manager, manager_user
    ):
        _, proposal = await sent_proposal(db_session, client_user)
        await coordinator.sign(proposal.id, SignatureParty.ARCHITECT, "Pat Manager", manager)
        MockNotificationSink.clear()

        await coordinator.sign(proposal.id, SignatureParty.OWNER, "Casey Client", client_actor)

        sent = MockNotificationSink.sent_of_kind(NotificationTemplate.PROPOSAL_ACCEPTED)
        assert sorted(i.recipient for i in sent) == sorted([client_user.email, manager_user.email])
        assert MockNotificationSink.sent_of_kind(NotificationTemplate.PROPOSAL_SIGNED) == []

    @pytest.mark.asyncio
    async def test_viewed_proposal_can_be_accepted(
        self, db_session, coordinator, client_user, client_actor, manager
    ):
        _, proposal = await sent_proposal(db_session, client_user)
        proposal.status = ProposalStatus.VIEWED
        await db_session.commit()

        await coordinator.sign(proposal.id, SignatureParty.OWNER, "Casey Client", client_actor)
        result = await coordinator.sign(proposal.id, SignatureParty.ARCHITECT, "Pat Manager", manager)

        assert result.data["proposal"].status == ProposalStatus.ACCEPTED

    @pytest.mark.asyncio
    async def test_request_is_never_regressed(
        self, db_session, coordinator, client_user, client_actor, manager
    ):
        request, proposal = await sent_proposal(
            db_session, client_user, request_status=RequestStatus.ACTIVE
        )

        await coordinator.sign(proposal.id, SignatureParty.OWNER, "Casey Client", client_actor)
        result = await coordinator.sign(proposal.id, SignatureParty.ARCHITECT, "Pat Manager", manager)

        assert result.data["accepted"] is True
        await db_session.refresh(request)
        assert request.status == RequestStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_rejected_services_do_not_become_stages(
        self, db_session, coordinator, client_user, client_actor, manager
    ):
        _, proposal = await sent_proposal(db_session, client_user)
        db_session.add(
            ProposalService(
                proposal_id=proposal.id,
                name="Declined extra",
                amount=Decimal("300"),
                order=2,
                requires_approval=True,
                approval_status=ServiceApprovalStatus.REJECTED,
            )
        )
        await db_session.commit()

        await coordinator.sign(proposal.id, SignatureParty.OWNER, "Casey Client", client_actor)
        result = await coordinator.sign(proposal.id, SignatureParty.ARCHITECT, "Pat Manager", manager)

        assert result.data["stages_created"] == 2

    @pytest.mark.asyncio
    async def test_stage_order_skips_uncounted_services(
        self, db_session, coordinator, client_user, client_actor, manager
    ):
        _, proposal = await sent_proposal(db_session, client_user)
        services = await ProposalServiceDAO(db_session).list_for_proposal(proposal.id)
        services[1].order = 2
        db_session.add(
            ProposalService(
                proposal_id=proposal.id,
                name="Declined extra",
                amount=Decimal("300"),
                order=1,
                requires_approval=True,
                approval_status=ServiceApprovalStatus.REJECTED,
            )
        )
        await db_session.commit()

        await coordinator.sign(proposal.id, SignatureParty.OWNER, "Casey Client", client_actor)
        await coordinator.sign(proposal.id, SignatureParty.ARCHITECT, "Pat Manager", manager)

        stages = await ProjectStageDAO(db_session).list_for_proposal(proposal.id)
        assert [(s.order, s.name) for s in stages] == [
            (0, "Schematic design"),
            (1, "Construction documents"),
        ]

    @pytest.mark.asyncio
    async def test_failing_sink_degrades_but_commits(
        self, db_session, client_user, client_actor, manager
    ):
        _, proposal = await sent_proposal(db_session, client_user)
        coordinator = SignatureCoordinator(db_session, MockNotificationSink(fail=True))

        await coordinator.sign(proposal.id, SignatureParty.OWNER, "Casey Client", client_actor)
        result = await coordinator.sign(proposal.id, SignatureParty.ARCHITECT, "Pat Manager", manager)

        assert result.success is True
        assert result.notifications_degraded is True
        assert result.data["proposal"].status == ProposalStatus.ACCEPTED


class TestFanOutRollback:
    async def _sign_both_with_failure(self, db_session, coordinator, client_user, client_actor, manager, target):
        request, proposal = await sent_proposal(db_session, client_user)
        proposal_id = proposal.id
        await coordinator.sign(proposal_id, SignatureParty.OWNER, "Casey Client", client_actor)
        MockNotificationSink.clear()

        with patch.object(*target, AsyncMock(side_effect=RuntimeError("connection lost"))):
            with pytest.raises(RuntimeError):
                await coordinator.sign(proposal_id, SignatureParty.ARCHITECT, "Pat Manager", manager)

        await db_session.refresh(proposal)
        await db_session.refresh(request)
        return request, proposal

    @pytest.mark.asyncio
    async def test_failed_request_advance_undoes_signature_and_stages(
        self, db_session, coordinator, client_user, client_actor, manager
    ):
        request, proposal = await self._sign_both_with_failure(
            db_session,
            coordinator,
            client_user,
            client_actor,
            manager,
            (ProjectRequestDAO, "advance_status"),
        )

        assert proposal.status == ProposalStatus.SENT
        assert proposal.architect_signature is None
        assert proposal.owner_signature == "Casey Client"
        assert await ProjectStageDAO(db_session).list_for_proposal(proposal.id) == []
        assert request.status == RequestStatus.PENDING
        assert MockNotificationSink.sent == []

    @pytest.mark.asyncio
    async def test_failed_stage_creation_undoes_signature(
        self, db_session, coordinator, client_user, client_actor, manager
    ):
        request, proposal = await self._sign_both_with_failure(
            db_session,
            coordinator,
            client_user,
            client_actor,
            manager,
            (AcceptanceFanOut, "_create_stages"),
        )

        assert proposal.status == ProposalStatus.SENT
        assert proposal.architect_signature is None
        assert request.status == RequestStatus.PENDING
        assert MockNotificationSink.sent == []


class TestFanOutIdempotency:
    @pytest.mark.asyncio
    async def test_second_run_is_a_no_op(
        self, db_session, coordinator, client_user, client_actor, manager
    ):
        _, proposal = await sent_proposal(db_session, client_user)
        await coordinator.sign(proposal.id, SignatureParty.OWNER, "Casey Client", client_actor)
        await coordinator.sign(proposal.id, SignatureParty.ARCHITECT, "Pat Manager", manager)

        outcome = await AcceptanceFanOut(db_session).run(proposal.id)
        await db_session.commit()

        assert outcome == {"accepted": False, "stages_created": 0, "request_advanced": False}
        stages = await ProjectStageDAO(db_session).list_for_proposal(proposal.id)
        assert len(stages) == 2

    @pytest.mark.asyncio
    async def test_half_signed_proposal_is_not_accepted(self, db_session, client_user, client_actor, coordinator):
        _, proposal = await sent_proposal(db_session, client_user)
        await coordinator.sign(proposal.id, SignatureParty.OWNER, "Casey Client", client_actor)

        outcome = await AcceptanceFanOut(db_session).run(proposal.id)

        assert outcome["accepted"] is False
        assert await ProjectStageDAO(db_session).list_for_proposal(proposal.id) == []


class TestSignatureGuards:
    @pytest.mark.asyncio
    async def test_cannot_sign_draft(self, db_session, coordinator, client_user, client_actor):
        request = await ProjectRequestFactory.create(db_session, user=client_user)
        proposal = await ProposalFactory.create(db_session, request)

        with pytest.raises(InvalidStateError):
            await coordinator.sign(proposal.id, SignatureParty.OWNER, "Casey Client", client_actor)

    @pytest.mark.asyncio
    async def test_cannot_sign_same_slot_twice(self, db_session, coordinator, client_user, client_actor):
        _, proposal = await sent_proposal(db_session, client_user)
        proposal_id = proposal.id
        await coordinator.sign(proposal_id, SignatureParty.OWNER, "Casey Client", client_actor)

        with pytest.raises(InvalidStateError):
            await coordinator.sign(proposal_id, SignatureParty.OWNER, "Someone Else", client_actor)

        await db_session.refresh(proposal)
        assert proposal.owner_signature == "Casey Client"

    @pytest.mark.asyncio
    async def test_cannot_sign_accepted_proposal(
        self, db_session, coordinator, client_user, client_actor, manager
    ):
        _, proposal = await sent_proposal(db_session, client_user)
        proposal_id = proposal.id
        await coordinator.sign(proposal_id, SignatureParty.OWNER, "Casey Client", client_actor)
        await coordinator.sign(proposal_id, SignatureParty.ARCHITECT, "Pat Manager", manager)

        with pytest.raises(InvalidStateError):
            await coordinator.sign(proposal_id, SignatureParty.ARCHITECT, "Pat Again", manager)

    @pytest.mark.asyncio
    async def test_empty_signature_is_rejected(self, db_session, coordinator, client_user, client_actor):
        _, proposal = await sent_proposal(db_session, client_user)

        with pytest.raises(ValidationError):
            await coordinator.sign(proposal.id, SignatureParty.OWNER, "   ", client_actor)

    @pytest.mark.asyncio
    async def test_only_the_client_signs_as_owner(self, db_session, coordinator, client_user, other_client):
        _, proposal = await sent_proposal(db_session, client_user)

        with pytest.raises(AuthorizationError):
            await coordinator.sign(proposal.id, SignatureParty.OWNER, "Sam", other_client)

    @pytest.mark.asyncio
    async def test_only_managers_sign_as_architect(self, db_session, coordinator, client_user, client_actor):
        _, proposal = await sent_proposal(db_session, client_user)

        with pytest.raises(InsufficientPermissionsError):
            await coordinator.sign(proposal.id, SignatureParty.ARCHITECT, "Casey", client_actor)

    @pytest.mark.asyncio
    async def test_pending_approvals_block_signing(self, db_session, coordinator, client_user, client_actor):
        _, proposal = await sent_proposal(db_session, client_user)
        proposal_id = proposal.id
        await ProposalFactory.add_pending_service(db_session, proposal)

        with pytest.raises(PrerequisiteNotMetError):
            await coordinator.sign(proposal_id, SignatureParty.OWNER, "Casey Client", client_actor)

        await db_session.refresh(proposal)
        assert proposal.owner_signature is None
