"""
Unit tests for AmendmentWorkflow.

WHAT: Raising, reviewing, promoting and completing change requests.

WHY: An amendment may spawn exactly one child proposal, always attached to
the root of its tree, and can only close once that proposal is accepted.
"""

import pytest
import pytest_asyncio
from decimal import Decimal

from app.core.exceptions import (
    AlreadyCompletedError,
    AlreadyReviewedError,
    AuthorizationError,
    InsufficientPermissionsError,
    InvalidStateError,
    PrerequisiteNotMetError,
    ValidationError,
)
from app.models.amendment import AmendmentStatus, AmendmentUrgency
from app.models.proposal import ProposalStatus, ProposalType
from app.services.amendment_service import AmendmentWorkflow
from app.services.notification_service import MockNotificationSink, NotificationTemplate
from tests.factories import AmendmentFactory, ProjectRequestFactory, ProposalFactory


GARAGE = [
    {"name": "Garage design", "description": "Two-car detached", "estimated_amount": 8000},
    {"name": "Driveway grading", "estimated_amount": 1200},
]


@pytest.fixture
def workflow(db_session, sink):
    return AmendmentWorkflow(db_session, sink)


@pytest_asyncio.fixture
async def project_request(db_session, client_user):
    return await ProjectRequestFactory.create(db_session, user=client_user, email=client_user.email)


@pytest_asyncio.fixture
async def accepted_proposal(db_session, project_request):
    return await ProposalFactory.create_accepted(db_session, project_request, tax_rate=8)


class TestCreateRequest:
    @pytest.mark.asyncio
    async def test_client_raises_amendment(
        self, workflow, accepted_proposal, client_actor, manager_user
    ):
        result = await workflow.create_request(
            accepted_proposal.id,
            {"description": "Add a garage", "requested_services": GARAGE, "urgency": "high"},
            client_actor,
        )

        amendment = result.data
        assert amendment.status == AmendmentStatus.PENDING
        assert amendment.urgency == AmendmentUrgency.HIGH
        assert amendment.requested_by_id == client_actor.id
        assert len(amendment.requested_services) == 2

        sent = MockNotificationSink.sent_of_kind(NotificationTemplate.AMENDMENT_REQUESTED)
        assert [i.recipient for i in sent] == [manager_user.email]

    @pytest.mark.asyncio
    async def test_draft_proposal_cannot_be_amended(self, db_session, workflow, project_request, client_actor):
        draft = await ProposalFactory.create(db_session, project_request)

        with pytest.raises(InvalidStateError):
            await workflow.create_request(draft.id, {"description": "Add a garage"}, client_actor)

        assert MockNotificationSink.sent == []

    @pytest.mark.asyncio
    async def test_description_is_required(self, workflow, accepted_proposal, client_actor):
        with pytest.raises(ValidationError):
            await workflow.create_request(accepted_proposal.id, {"description": "  "}, client_actor)

    @pytest.mark.asyncio
    async def test_foreign_client_is_forbidden(self, workflow, accepted_proposal, other_client):
        with pytest.raises(AuthorizationError):
            await workflow.create_request(accepted_proposal.id, {"description": "Mine now"}, other_client)


class TestReview:
    @pytest.mark.asyncio
    async def test_approve_notifies_requester(
        self, db_session, workflow, accepted_proposal, client_user, manager
    ):
        amendment = await AmendmentFactory.create(db_session, accepted_proposal, client_user)

        result = await workflow.review(amendment.id, True, manager, notes="Looks reasonable")

        assert result.data.status == AmendmentStatus.APPROVED
        assert result.data.reviewed_by_id == manager.id
        assert result.data.reviewed_at is not None
        assert result.data.review_notes == "Looks reasonable"
        sent = MockNotificationSink.sent_of_kind(NotificationTemplate.AMENDMENT_REVIEWED)
        assert [i.recipient for i in sent] == [client_user.email]

    @pytest.mark.asyncio
    async def test_second_review_is_rejected(self, db_session, workflow, accepted_proposal, client_user, manager):
        amendment = await AmendmentFactory.create(db_session, accepted_proposal, client_user)
        await workflow.review(amendment.id, False, manager)

        with pytest.raises(AlreadyReviewedError):
            await workflow.review(amendment.id, True, manager)

        await db_session.refresh(amendment)
        assert amendment.status == AmendmentStatus.REJECTED

    @pytest.mark.asyncio
    async def test_clients_cannot_review(self, db_session, workflow, accepted_proposal, client_user, client_actor):
        amendment = await AmendmentFactory.create(db_session, accepted_proposal, client_user)

        with pytest.raises(InsufficientPermissionsError):
            await workflow.review(amendment.id, True, client_actor)


class TestCreateProposalFromAmendment:
    @pytest.mark.asyncio
    async def test_drafts_child_proposal_under_root(
        self, db_session, workflow, accepted_proposal, client_user, manager
    ):
        amendment = await AmendmentFactory.create(
            db_session,
            accepted_proposal,
            client_user,
            status=AmendmentStatus.APPROVED,
            requested_services=GARAGE,
        )

        result = await workflow.create_proposal_from_amendment(amendment.id, {}, manager)

        linked = result.data["amendment"]
        proposal = result.data["proposal"]
        assert linked.status == AmendmentStatus.UNDER_REVIEW
        assert linked.amendment_proposal_id == proposal.id

        assert proposal.proposal_type == ProposalType.AMENDMENT
        assert proposal.status == ProposalStatus.DRAFT
        assert proposal.proposal_number.endswith("-AMD")
        assert proposal.parent_proposal_id == accepted_proposal.id
        assert proposal.client_email == accepted_proposal.client_email
        assert proposal.user_id == accepted_proposal.user_id
        assert proposal.tax_rate == accepted_proposal.tax_rate
        assert [(s.name, s.amount) for s in proposal.services] == [
            ("Garage design", Decimal("8000.00")),
            ("Driveway grading", Decimal("1200.00")),
        ]
        assert proposal.total_amount == Decimal("9936.00")

    @pytest.mark.asyncio
    async def test_explicit_services_win(self, db_session, workflow, accepted_proposal, client_user, manager):
        amendment = await AmendmentFactory.create(
            db_session,
            accepted_proposal,
            client_user,
            status=AmendmentStatus.APPROVED,
            requested_services=GARAGE,
        )

        result = await workflow.create_proposal_from_amendment(
            amendment.id,
            {"title": "Garage addendum", "services": [{"name": "Garage design", "amount": 7500}]},
            manager,
        )

        proposal = result.data["proposal"]
        assert proposal.title == "Garage addendum"
        assert [s.amount for s in proposal.services] == [Decimal("7500.00")]

    @pytest.mark.asyncio
    async def test_amendment_of_amendment_attaches_to_root(
        self, db_session, workflow, project_request, accepted_proposal, client_user, manager
    ):
        child = await ProposalFactory.create_accepted(
            db_session,
            project_request,
            proposal_type=ProposalType.AMENDMENT,
            parent=accepted_proposal,
        )
        amendment = await AmendmentFactory.create(
            db_session, child, client_user, status=AmendmentStatus.APPROVED, requested_services=GARAGE
        )

        result = await workflow.create_proposal_from_amendment(amendment.id, {}, manager)

        assert result.data["proposal"].parent_proposal_id == accepted_proposal.id

    @pytest.mark.asyncio
    async def test_second_proposal_is_rejected(self, db_session, workflow, accepted_proposal, client_user, manager):
        amendment = await AmendmentFactory.create(
            db_session, accepted_proposal, client_user, status=AmendmentStatus.APPROVED, requested_services=GARAGE
        )
        amendment_id = amendment.id
        accepted_proposal_id = accepted_proposal.id
        await workflow.create_proposal_from_amendment(amendment_id, {}, manager)

        with pytest.raises(ValidationError):
            await workflow.create_proposal_from_amendment(amendment_id, {}, manager)

        tree = await workflow.proposals.get_tree(accepted_proposal_id, manager)
        assert tree["total_proposals"] == 2

    @pytest.mark.asyncio
    async def test_pending_amendment_cannot_be_promoted(
        self, db_session, workflow, accepted_proposal, client_user, manager
    ):
        amendment = await AmendmentFactory.create(db_session, accepted_proposal, client_user)

        with pytest.raises(InvalidStateError):
            await workflow.create_proposal_from_amendment(amendment.id, {}, manager)


class TestCompleteAmendment:
    @pytest.mark.asyncio
    async def test_requires_linked_proposal(self, db_session, workflow, accepted_proposal, client_user, manager):
        amendment = await AmendmentFactory.create(
            db_session, accepted_proposal, client_user, status=AmendmentStatus.APPROVED
        )

        with pytest.raises(PrerequisiteNotMetError):
            await workflow.complete_amendment(amendment.id, manager)

    @pytest.mark.asyncio
    async def test_requires_accepted_proposal(
        self, db_session, workflow, project_request, accepted_proposal, client_user, manager
    ):
        child = await ProposalFactory.create_sent(
            db_session, project_request, proposal_type=ProposalType.AMENDMENT, parent=accepted_proposal
        )
        amendment = await AmendmentFactory.create(
            db_session,
            accepted_proposal,
            client_user,
            status=AmendmentStatus.UNDER_REVIEW,
            amendment_proposal=child,
        )

        with pytest.raises(PrerequisiteNotMetError):
            await workflow.complete_amendment(amendment.id, manager)

    @pytest.mark.asyncio
    async def test_complete_after_acceptance(
        self, db_session, workflow, project_request, accepted_proposal, client_user, manager
    ):
        child = await ProposalFactory.create_accepted(
            db_session, project_request, proposal_type=ProposalType.AMENDMENT, parent=accepted_proposal
        )
        amendment = await AmendmentFactory.create(
            db_session,
            accepted_proposal,
            client_user,
            status=AmendmentStatus.UNDER_REVIEW,
            amendment_proposal=child,
        )

        result = await workflow.complete_amendment(amendment.id, manager)

        assert result.data.status == AmendmentStatus.COMPLETED
        assert result.data.completed_at is not None
        sent = MockNotificationSink.sent_of_kind(NotificationTemplate.AMENDMENT_COMPLETED)
        assert [i.recipient for i in sent] == [client_user.email]

        with pytest.raises(AlreadyCompletedError):
            await workflow.complete_amendment(amendment.id, manager)


class TestReads:
    @pytest.mark.asyncio
    async def test_listing(self, db_session, workflow, accepted_proposal, client_user, client_actor, manager):
        await AmendmentFactory.create(db_session, accepted_proposal, client_user)
        await AmendmentFactory.create(
            db_session, accepted_proposal, client_user, status=AmendmentStatus.APPROVED
        )

        page = await workflow.list_for_proposal(accepted_proposal.id, client_actor)
        assert page.total == 2

        page = await workflow.list_all(manager, status=AmendmentStatus.APPROVED)
        assert page.total == 1

        with pytest.raises(InsufficientPermissionsError):
            await workflow.list_all(client_actor)

    @pytest.mark.asyncio
    async def test_foreign_client_cannot_read(
        self, db_session, workflow, accepted_proposal, client_user, other_client
    ):
        amendment = await AmendmentFactory.create(db_session, accepted_proposal, client_user)

        with pytest.raises(AuthorizationError):
            await workflow.get(amendment.id, other_client)
