"""
Unit tests for the notification outbox and sinks.

WHAT: Intent building, recipient de-duplication and failure-tolerant
dispatch.

WHY: Notifications run after commit. A failing sink must be reported as
degraded, never raised.
"""

import pytest
from unittest.mock import AsyncMock, MagicMock

from app.services.notification_service import (
    DispatchResult,
    MockNotificationSink,
    NotificationIntent,
    NotificationOutbox,
    NotificationTemplate,
    dispatch_all,
    dispatch_safe,
)


@pytest.fixture
def sample_proposal():
    proposal = MagicMock()
    proposal.id = 12
    proposal.proposal_number = "PROP-2026-0012"
    proposal.client_name = "Casey Client"
    proposal.client_email = "client@example.com"
    proposal.total_amount = "1458.00"
    return proposal


class TestNotificationOutbox:
    def test_queue_skips_missing_recipient(self):
        outbox = NotificationOutbox()
        outbox.queue(None, NotificationTemplate.PROPOSAL_SENT, proposal_id=1)

        assert len(outbox) == 0

    def test_queue_many_deduplicates_case_insensitively(self):
        outbox = NotificationOutbox()
        outbox.queue_many(
            ["pm@firm.test", "PM@firm.test", "", "lead@firm.test"],
            NotificationTemplate.AMENDMENT_REQUESTED,
        )

        assert [i.recipient for i in outbox.intents] == ["pm@firm.test", "lead@firm.test"]

    def test_proposal_sent_goes_to_client(self, sample_proposal):
        outbox = NotificationOutbox(base_url="https://app.example.com")
        outbox.notify_proposal_sent(sample_proposal)

        intent = outbox.intents[0]
        assert intent.recipient == "client@example.com"
        assert intent.template_kind == NotificationTemplate.PROPOSAL_SENT
        assert intent.payload["url"] == "https://app.example.com/proposals/12"

    def test_acceptance_goes_to_client_and_managers(self, sample_proposal):
        outbox = NotificationOutbox()
        outbox.notify_proposal_accepted(
            sample_proposal, ["pm@firm.test", "client@example.com"], stage_count=2
        )

        recipients = [i.recipient for i in outbox.intents]
        assert recipients == ["client@example.com", "pm@firm.test"]
        assert all(i.payload["stage_count"] == 2 for i in outbox.intents)

    def test_stage_completed_is_one_intent(self, sample_proposal):
        stage = MagicMock(id=3)
        stage.name = "Schematic design"
        outbox = NotificationOutbox()
        outbox.notify_stage_completed(stage, sample_proposal, completed_stages=1, total_stages=2)

        assert len(outbox) == 1
        assert outbox.intents[0].payload["completed_stages"] == 1
        assert outbox.intents[0].payload["total_stages"] == 2


class TestDispatch:
    @pytest.mark.asyncio
    async def test_dispatch_safe_swallows_sink_errors(self):
        intent = NotificationIntent("client@example.com", NotificationTemplate.PROPOSAL_SENT)

        assert await dispatch_safe(MockNotificationSink(fail=True), intent) is False

    @pytest.mark.asyncio
    async def test_dispatch_safe_reports_rejection(self):
        sink = MagicMock()
        sink.dispatch = AsyncMock(return_value=DispatchResult(success=False, error="bounced"))
        intent = NotificationIntent("client@example.com", NotificationTemplate.PROPOSAL_SENT)

        assert await dispatch_safe(sink, intent) is False

    @pytest.mark.asyncio
    async def test_dispatch_all_continues_past_failures(self):
        sink = MagicMock()
        sink.dispatch = AsyncMock(
            side_effect=[ConnectionError("down"), DispatchResult(success=True)]
        )
        intents = [
            NotificationIntent("a@example.com", NotificationTemplate.PROPOSAL_SENT),
            NotificationIntent("b@example.com", NotificationTemplate.PROPOSAL_SENT),
        ]

        degraded = await dispatch_all(sink, intents)

        assert degraded is True
        assert sink.dispatch.await_count == 2

    @pytest.mark.asyncio
    async def test_mock_sink_records_intents(self):
        intent = NotificationIntent("client@example.com", NotificationTemplate.STAGE_COMPLETED)
        await MockNotificationSink().dispatch(intent)

        assert MockNotificationSink.sent_of_kind(NotificationTemplate.STAGE_COMPLETED) == [intent]
