"""
Unit tests for ProposalWorkflowService.

WHAT: Drafting, line items, credits, sending, viewing, rejection and the
service-approval sub-flow.

WHY: Proposals are only editable while DRAFT and their totals must always
match their line items and credits.
"""

import pytest
import pytest_asyncio
from decimal import Decimal

from app.core.exceptions import (
    AlreadyReviewedError,
    AuthorizationError,
    InsufficientPermissionsError,
    InvalidStateError,
    InvalidStateTransitionError,
    ProposalNotFoundError,
    ValidationError,
)
from app.models.proposal import (
    CreditType,
    ProposalStatus,
    ProposalType,
    ServiceApprovalStatus,
)
from app.services.notification_service import MockNotificationSink, NotificationTemplate
from app.services.proposal_service import (
    ProposalWorkflowService,
    validate_credit_fields,
    validate_service_fields,
)
from tests.factories import ProjectRequestFactory, ProposalFactory


@pytest.fixture
def service(db_session, sink):
    return ProposalWorkflowService(db_session, sink)


@pytest_asyncio.fixture
async def request_row(db_session, client_user):
    return await ProjectRequestFactory.create(db_session, user=client_user, email=client_user.email)


class TestFieldValidation:
    def test_service_requires_name_and_amount(self):
        with pytest.raises(ValidationError):
            validate_service_fields({"amount": 10})
        with pytest.raises(ValidationError):
            validate_service_fields({"name": "Survey"})

    def test_service_rejects_negative_amount(self):
        with pytest.raises(ValidationError):
            validate_service_fields({"name": "Survey", "amount": -1})

    def test_partial_service_update(self):
        assert validate_service_fields({"amount": "12.50"}, partial=True) == {"amount": Decimal("12.50")}

    def test_credit_defaults_to_dollar_amount(self):
        fields = validate_credit_fields({"amount": 50})
        assert fields["type"] == CreditType.DOLLAR_AMOUNT

    def test_percent_credit_capped_at_100(self):
        with pytest.raises(ValidationError):
            validate_credit_fields({"amount": 101, "type": "percent"})

    def test_credit_must_be_positive(self):
        with pytest.raises(ValidationError):
            validate_credit_fields({"amount": 0})


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_draft_with_totals(self, service, request_row, manager):
        result = await service.create(
            request_row.id,
            {
                "title": "Lakeside Residence design",
                "tax_rate": 8,
                "services": [
                    {"name": "Schematic design", "amount": 1000},
                    {"name": "Construction documents", "amount": 500},
                ],
                "credits": [{"amount": 10, "type": "percent", "description": "Returning client"}],
            },
            manager,
        )

        proposal = result.data
        assert proposal.status == ProposalStatus.DRAFT
        assert proposal.proposal_type == ProposalType.NORMAL
        assert proposal.proposal_number.endswith("-0001")
        assert proposal.client_email == request_row.email
        assert proposal.client_name == "Casey Client"
        assert proposal.user_id == request_row.user_id
        assert [s.order for s in proposal.services] == [0, 1]
        assert proposal.subtotal == Decimal("1500.00")
        assert proposal.credits_total == Decimal("150.00")
        assert proposal.tax_amount == Decimal("108.00")
        assert proposal.total_amount == Decimal("1458.00")

    @pytest.mark.asyncio
    async def test_numbers_increment_within_year(self, service, request_row, manager):
        first = await service.create(request_row.id, {}, manager)
        second = await service.create(request_row.id, {}, manager)

        assert first.data.proposal_number.endswith("-0001")
        assert second.data.proposal_number.endswith("-0002")

    @pytest.mark.asyncio
    async def test_clients_cannot_create(self, service, request_row, client_actor):
        with pytest.raises(InsufficientPermissionsError):
            await service.create(request_row.id, {}, client_actor)

    @pytest.mark.asyncio
    async def test_credits_exceeding_subtotal_roll_back(self, db_session, service, request_row, manager):
        with pytest.raises(ValidationError):
            await service.create(
                request_row.id,
                {"services": [{"name": "Survey", "amount": 100}], "credits": [{"amount": 500}]},
                manager,
            )

        page = await service.list(manager)
        assert page.total == 0


class TestLineItems:
    @pytest.mark.asyncio
    async def test_add_update_delete_service_recalculates(self, db_session, service, request_row, manager):
        proposal = await ProposalFactory.create(db_session, request_row, tax_rate=10)

        added = await service.add_service(proposal.id, {"name": "Permitting", "amount": 250}, manager)
        assert added.data["service"].order == 2
        assert added.data["totals"].subtotal == Decimal("1750.00")

        updated = await service.update_service(added.data["service"].id, {"amount": 500}, manager)
        assert updated.data["totals"].total_amount == Decimal("2200.00")

        detail = await service.get(proposal.id, manager)
        first_service_id = detail.services[0].id
        deleted = await service.delete_service(first_service_id, manager)
        assert deleted.data["totals"].subtotal == Decimal("1000.00")

        detail = await service.get(proposal.id, manager)
        assert [(s.order, s.name) for s in detail.services] == [
            (0, "Construction documents"),
            (1, "Permitting"),
        ]
        assert detail.total_amount == Decimal("1100.00")

    @pytest.mark.asyncio
    async def test_credit_lifecycle(self, db_session, service, request_row, manager):
        proposal = await ProposalFactory.create(db_session, request_row)

        added = await service.add_credit(proposal.id, {"amount": 100}, manager)
        assert added.data["totals"].credits_total == Decimal("100.00")

        updated = await service.update_credit(
            added.data["credit"].id, {"amount": 20, "type": "percent"}, manager
        )
        assert updated.data["totals"].credits_total == Decimal("300.00")

        deleted = await service.delete_credit(added.data["credit"].id, manager)
        assert deleted.data["totals"].credits_total == Decimal("0.00")

    @pytest.mark.asyncio
    async def test_oversized_credit_is_rejected_and_not_stored(self, db_session, service, request_row, manager):
        proposal = await ProposalFactory.create(db_session, request_row)
        proposal_id = proposal.id

        with pytest.raises(ValidationError):
            await service.add_credit(proposal_id, {"amount": 5000}, manager)

        detail = await service.get(proposal_id, manager)
        assert detail.credits == []
        assert detail.total_amount == Decimal("1500.00")

    @pytest.mark.asyncio
    async def test_sent_proposal_is_frozen(self, db_session, service, request_row, manager):
        proposal = await ProposalFactory.create_sent(db_session, request_row)
        proposal_id = proposal.id

        with pytest.raises(InvalidStateError):
            await service.add_service(proposal_id, {"name": "Late add", "amount": 10}, manager)
        with pytest.raises(InvalidStateError):
            await service.update_draft(proposal_id, {"title": "Renamed"}, manager)

    @pytest.mark.asyncio
    async def test_tax_rate_edit_recalculates(self, db_session, service, request_row, manager):
        proposal = await ProposalFactory.create(db_session, request_row)

        result = await service.update_draft(proposal.id, {"tax_rate": 8}, manager)

        assert result.data.tax_amount == Decimal("120.00")
        assert result.data.total_amount == Decimal("1620.00")


class TestSend:
    @pytest.mark.asyncio
    async def test_send_notifies_client(self, db_session, service, request_row, manager):
        proposal = await ProposalFactory.create(db_session, request_row)

        result = await service.send(proposal.id, manager)

        assert result.data.status == ProposalStatus.SENT
        assert result.data.sent_at is not None
        sent = MockNotificationSink.sent_of_kind(NotificationTemplate.PROPOSAL_SENT)
        assert [i.recipient for i in sent] == [request_row.email]

    @pytest.mark.asyncio
    async def test_cannot_send_without_services(self, db_session, service, request_row, manager):
        proposal = await ProposalFactory.create(db_session, request_row, services=())

        with pytest.raises(ValidationError):
            await service.send(proposal.id, manager)

    @pytest.mark.asyncio
    async def test_cannot_send_twice(self, db_session, service, request_row, manager):
        proposal = await ProposalFactory.create_sent(db_session, request_row)

        with pytest.raises(InvalidStateTransitionError):
            await service.send(proposal.id, manager)


class TestViewing:
    @pytest.mark.asyncio
    async def test_client_read_marks_viewed(self, db_session, service, request_row, client_actor):
        proposal = await ProposalFactory.create_sent(db_session, request_row)

        viewed = await service.get(proposal.id, client_actor)

        assert viewed.status == ProposalStatus.VIEWED
        assert viewed.viewed_at is not None

    @pytest.mark.asyncio
    async def test_manager_read_does_not_mark_viewed(self, db_session, service, request_row, manager):
        proposal = await ProposalFactory.create_sent(db_session, request_row)

        assert (await service.get(proposal.id, manager)).status == ProposalStatus.SENT

    @pytest.mark.asyncio
    async def test_drafts_are_hidden_from_clients(self, db_session, service, request_row, client_actor):
        draft = await ProposalFactory.create(db_session, request_row)
        await ProposalFactory.create_sent(db_session, request_row)

        with pytest.raises(ProposalNotFoundError):
            await service.get(draft.id, client_actor)

        page = await service.list(client_actor)
        assert page.total == 1
        assert page.items[0].status == ProposalStatus.SENT

    @pytest.mark.asyncio
    async def test_foreign_client_is_forbidden(self, db_session, service, request_row, other_client):
        proposal = await ProposalFactory.create_sent(db_session, request_row)

        with pytest.raises(AuthorizationError):
            await service.get(proposal.id, other_client)


class TestRejectAndExpire:
    @pytest.mark.asyncio
    async def test_client_rejects_with_reason(self, db_session, service, request_row, client_actor, manager_user):
        proposal = await ProposalFactory.create_sent(db_session, request_row)

        result = await service.reject(proposal.id, client_actor, reason="Over budget")

        assert result.data.status == ProposalStatus.REJECTED
        assert result.data.responded_at is not None
        assert "[Rejected] Over budget" in result.data.notes
        sent = MockNotificationSink.sent_of_kind(NotificationTemplate.PROPOSAL_REJECTED)
        assert [i.recipient for i in sent] == [manager_user.email]

    @pytest.mark.asyncio
    async def test_manager_cannot_reject_for_client(self, db_session, service, request_row, manager):
        proposal = await ProposalFactory.create_sent(db_session, request_row)

        with pytest.raises(AuthorizationError):
            await service.reject(proposal.id, manager)

    @pytest.mark.asyncio
    async def test_draft_cannot_be_rejected(self, db_session, service, request_row, client_actor):
        proposal = await ProposalFactory.create(db_session, request_row)

        with pytest.raises(InvalidStateTransitionError):
            await service.reject(proposal.id, client_actor)

    @pytest.mark.asyncio
    async def test_expire(self, db_session, service, request_row, manager):
        proposal = await ProposalFactory.create_sent(db_session, request_row)

        result = await service.expire(proposal.id, manager)

        assert result.data.status == ProposalStatus.EXPIRED


class TestServiceApproval:
    @pytest.mark.asyncio
    async def test_approval_flow(self, db_session, service, request_row, manager, client_actor):
        root = await ProposalFactory.create_accepted(db_session, request_row)
        amendment = await ProposalFactory.create_sent(
            db_session,
            request_row,
            proposal_type=ProposalType.AMENDMENT,
            parent=root,
            services=(("Garage design", 8000),),
        )

        added = await service.add_service_for_approval(
            amendment.id, {"name": "Studio loft", "amount": 2000}, manager
        )
        pending_service = added.data
        assert pending_service.approval_status == ServiceApprovalStatus.PENDING_APPROVAL
        assert MockNotificationSink.sent_of_kind(NotificationTemplate.SERVICE_APPROVAL_REQUESTED)

        pending = await service.pending_approvals(amendment.id, client_actor)
        assert [s.id for s in pending] == [pending_service.id]

        detail = await service.get(amendment.id, manager)
        assert detail.subtotal == Decimal("8000.00")

        decided = await service.decide_service_approval(pending_service.id, True, client_actor)
        assert decided.data.approval_status == ServiceApprovalStatus.APPROVED
        assert decided.data.approved_by_id == client_actor.id

        detail = await service.get(amendment.id, manager)
        assert detail.subtotal == Decimal("10000.00")

        with pytest.raises(AlreadyReviewedError):
            await service.decide_service_approval(pending_service.id, False, client_actor)

    @pytest.mark.asyncio
    async def test_rejected_service_stays_priced_out(self, db_session, service, request_row, manager, client_actor):
        root = await ProposalFactory.create_accepted(db_session, request_row)
        amendment = await ProposalFactory.create(
            db_session, request_row, proposal_type=ProposalType.AMENDMENT, parent=root
        )
        added = await service.add_service_for_approval(amendment.id, {"name": "Pool", "amount": 900}, manager)

        decided = await service.decide_service_approval(
            added.data.id, False, client_actor, reason="Not this year"
        )

        assert decided.data.approval_status == ServiceApprovalStatus.REJECTED
        assert decided.data.rejection_reason == "Not this year"
        detail = await service.get(amendment.id, manager)
        assert detail.subtotal == Decimal("1500.00")

    @pytest.mark.asyncio
    async def test_normal_proposals_do_not_take_approval_services(self, db_session, service, request_row, manager):
        proposal = await ProposalFactory.create_sent(db_session, request_row)

        with pytest.raises(InvalidStateError):
            await service.add_service_for_approval(proposal.id, {"name": "Extra", "amount": 1}, manager)


class TestTree:
    @pytest.mark.asyncio
    async def test_tree_from_any_member(self, db_session, service, request_row, manager, client_actor):
        root = await ProposalFactory.create_accepted(db_session, request_row)
        first = await ProposalFactory.create_sent(
            db_session, request_row, proposal_type=ProposalType.AMENDMENT, parent=root
        )
        await ProposalFactory.create(
            db_session, request_row, proposal_type=ProposalType.AMENDMENT, parent=root
        )

        tree = await service.get_tree(first.id, manager)
        assert tree["normal_proposal"].id == root.id
        assert tree["total_proposals"] == 3

        client_tree = await service.get_tree(root.id, client_actor)
        assert [p.id for p in client_tree["amendment_proposals"]] == [first.id]
        assert client_tree["total_proposals"] == 2
