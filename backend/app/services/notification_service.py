"""
Notification intents, outbox and sinks.

WHAT: Lifecycle services describe *who* should hear about an event and
*what* happened as NotificationIntent values. Intents collect in an
outbox while the transaction is open and are handed to a sink only after
the transaction commits.

WHY: Delivery belongs to an external collaborator. Queuing after commit
means a rolled-back operation never notifies anyone, and a failing sink
can never undo a committed state change. A failed dispatch is logged and
reported as a degraded flag on an otherwise successful result.

HOW: NotificationOutbox.notify_* methods build intents from domain
objects (one method per event, like a message builder). NotificationSink
is the channel abstraction; LoggingNotificationSink is the default and
MockNotificationSink records intents for tests.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


# ============================================================================
# Intent Types
# ============================================================================


class NotificationTemplate(str, Enum):
    """
    Kinds of lifecycle notifications.

    WHY: The sink picks a template per kind; the core never formats
    email or chat content itself.
    """

    PROPOSAL_SENT = "proposal_sent"
    PROPOSAL_SIGNED = "proposal_signed"
    PROPOSAL_ACCEPTED = "proposal_accepted"
    PROPOSAL_REJECTED = "proposal_rejected"
    AMENDMENT_REQUESTED = "amendment_requested"
    AMENDMENT_REVIEWED = "amendment_reviewed"
    AMENDMENT_COMPLETED = "amendment_completed"
    STAGE_COMPLETED = "stage_completed"
    SERVICE_APPROVAL_REQUESTED = "service_approval_requested"
    SERVICE_APPROVAL_DECIDED = "service_approval_decided"
    REQUEST_STATUS_CHANGED = "request_status_changed"


@dataclass(frozen=True)
class NotificationIntent:
    """
    One message to one recipient.

    WHAT: (recipient, template_kind, payload) triple handed to the sink.
    """

    recipient: str
    """Recipient email address."""

    template_kind: NotificationTemplate
    """Which template the sink should render."""

    payload: Dict[str, Any] = field(default_factory=dict)
    """Template variables. Plain JSON-compatible values only."""


@dataclass
class DispatchResult:
    """Outcome of handing one intent to a sink."""

    success: bool
    error: Optional[str] = None
    sink: Optional[str] = None


# ============================================================================
# Sinks
# ============================================================================


class NotificationSink(ABC):
    """
    Abstract outbound notification channel.

    WHY: The delivery mechanism (email provider, queue, webhook) is
    swappable without touching the lifecycle services.
    """

    @abstractmethod
    async def dispatch(self, intent: NotificationIntent) -> DispatchResult:
        """Hand one intent to the channel."""
        pass

    @abstractmethod
    def is_configured(self) -> bool:
        """Check if the sink can accept intents."""
        pass


class LoggingNotificationSink(NotificationSink):
    """
    Default sink: writes each intent to the application log.

    WHY: Lets the service run end to end without a delivery backend.
    """

    def is_configured(self) -> bool:
        return True

    async def dispatch(self, intent: NotificationIntent) -> DispatchResult:
        logger.info(
            f"[NOTIFY] To: {intent.recipient}, "
            f"Template: {intent.template_kind.value}, "
            f"Payload keys: {sorted(intent.payload)}"
        )
        return DispatchResult(success=True, sink="log")


class MockNotificationSink(NotificationSink):
    """
    Mock sink for testing.

    WHY: Tests assert on what was dispatched without a delivery backend.
    Set `fail=True` to simulate an unreachable channel.
    """

    sent: List[NotificationIntent] = []
    """Class-level list to track dispatched intents for testing."""

    def __init__(self, fail: bool = False):
        self.fail = fail

    def is_configured(self) -> bool:
        """Mock sink is always configured."""
        return True

    async def dispatch(self, intent: NotificationIntent) -> DispatchResult:
        if self.fail:
            raise ConnectionError("Mock notification channel unavailable")

        logger.info(
            f"[MOCK NOTIFY] To: {intent.recipient}, Template: {intent.template_kind.value}"
        )
        MockNotificationSink.sent.append(intent)
        return DispatchResult(success=True, sink="mock")

    @classmethod
    def clear(cls):
        """Clear dispatched intents (for test cleanup)."""
        cls.sent = []

    @classmethod
    def sent_of_kind(cls, kind: NotificationTemplate) -> List[NotificationIntent]:
        return [intent for intent in cls.sent if intent.template_kind == kind]


async def dispatch_safe(sink: NotificationSink, intent: NotificationIntent) -> bool:
    """
    Dispatch one intent without raising.

    WHAT: Fire-and-forget delivery that logs but doesn't fail.

    WHY: Notifications run after commit; a delivery problem must not turn
    a committed operation into an error.

    Returns:
        True if the sink accepted the intent, False otherwise
    """
    try:
        result = await sink.dispatch(intent)
    except Exception as e:
        logger.error(
            f"Failed to dispatch {intent.template_kind.value} notification "
            f"to {intent.recipient}: {e}",
            exc_info=True,
        )
        return False

    if not result.success:
        logger.error(
            f"Notification sink rejected {intent.template_kind.value} "
            f"for {intent.recipient}: {result.error}"
        )
    return result.success


async def dispatch_all(sink: NotificationSink, intents: Iterable[NotificationIntent]) -> bool:
    """
    Dispatch every intent, continuing past failures.

    Returns:
        True if at least one intent failed (degraded)
    """
    degraded = False
    for intent in intents:
        if not await dispatch_safe(sink, intent):
            degraded = True
    return degraded


# ============================================================================
# Outbox
# ============================================================================


class NotificationOutbox:
    """
    Intents queued during one unit of work.

    WHAT: Builds intents for lifecycle events and holds them until the
    owning unit of work commits.

    Attributes:
        intents: Queued intents, in queue order
        base_url: Base URL for links in payloads
    """

    def __init__(self, base_url: Optional[str] = None):
        self.intents: List[NotificationIntent] = []
        self.base_url = base_url or settings.FRONTEND_URL

    def __len__(self) -> int:
        return len(self.intents)

    def queue(
        self,
        recipient: Optional[str],
        template_kind: NotificationTemplate,
        **payload: Any,
    ) -> None:
        """Queue one intent. Recipients without an address are skipped."""
        if not recipient:
            logger.warning(f"Skipping {template_kind.value} notification with no recipient")
            return
        self.intents.append(NotificationIntent(recipient, template_kind, dict(payload)))

    def queue_many(
        self,
        recipients: Iterable[str],
        template_kind: NotificationTemplate,
        **payload: Any,
    ) -> None:
        # One intent per distinct address, first occurrence wins.
        seen = set()
        for recipient in recipients:
            key = (recipient or "").lower()
            if not key or key in seen:
                continue
            seen.add(key)
            self.queue(recipient, template_kind, **payload)

    def clear(self) -> None:
        self.intents = []

    def _proposal_url(self, proposal_id: int) -> str:
        return f"{self.base_url}/proposals/{proposal_id}"

    def _amendment_url(self, amendment_id: int) -> str:
        return f"{self.base_url}/amendments/{amendment_id}"

    # =========================================================================
    # Proposal Notifications
    # =========================================================================

    def notify_proposal_sent(self, proposal) -> None:
        self.queue(
            proposal.client_email,
            NotificationTemplate.PROPOSAL_SENT,
            proposal_id=proposal.id,
            proposal_number=proposal.proposal_number,
            client_name=proposal.client_name,
            total_amount=str(proposal.total_amount),
            url=self._proposal_url(proposal.id),
        )

    def notify_proposal_signed(self, proposal, party: str, recipients: Iterable[str]) -> None:
        """One signature recorded, the other still outstanding."""
        self.queue_many(
            recipients,
            NotificationTemplate.PROPOSAL_SIGNED,
            proposal_id=proposal.id,
            proposal_number=proposal.proposal_number,
            signed_party=party,
            url=self._proposal_url(proposal.id),
        )

    def notify_proposal_accepted(self, proposal, manager_emails: Iterable[str], stage_count: int) -> None:
        """
        Acceptance goes to the client and to every active manager.
        """
        payload = dict(
            proposal_id=proposal.id,
            proposal_number=proposal.proposal_number,
            client_name=proposal.client_name,
            total_amount=str(proposal.total_amount),
            stage_count=stage_count,
            url=self._proposal_url(proposal.id),
        )
        self.queue_many(
            [proposal.client_email, *manager_emails],
            NotificationTemplate.PROPOSAL_ACCEPTED,
            **payload,
        )

    def notify_proposal_rejected(self, proposal, manager_emails: Iterable[str], reason: Optional[str]) -> None:
        self.queue_many(
            manager_emails,
            NotificationTemplate.PROPOSAL_REJECTED,
            proposal_id=proposal.id,
            proposal_number=proposal.proposal_number,
            client_name=proposal.client_name,
            reason=reason,
            url=self._proposal_url(proposal.id),
        )

    def notify_service_approval_requested(self, proposal, service) -> None:
        self.queue(
            proposal.client_email,
            NotificationTemplate.SERVICE_APPROVAL_REQUESTED,
            proposal_id=proposal.id,
            proposal_number=proposal.proposal_number,
            service_id=service.id,
            service_name=service.name,
            amount=str(service.amount),
            url=self._proposal_url(proposal.id),
        )

    def notify_service_approval_decided(self, proposal, service, manager_emails: Iterable[str]) -> None:
        self.queue_many(
            manager_emails,
            NotificationTemplate.SERVICE_APPROVAL_DECIDED,
            proposal_id=proposal.id,
            proposal_number=proposal.proposal_number,
            service_id=service.id,
            service_name=service.name,
            decision=service.approval_status.value if service.approval_status else None,
            reason=service.rejection_reason,
        )

    # =========================================================================
    # Request Notifications
    # =========================================================================

    def notify_request_status_changed(self, request, previous_status) -> None:
        self.queue(
            request.email,
            NotificationTemplate.REQUEST_STATUS_CHANGED,
            request_id=request.id,
            project_name=request.project_name,
            previous_status=previous_status.value,
            status=request.status.value,
        )

    # =========================================================================
    # Amendment Notifications
    # =========================================================================

    def notify_amendment_requested(self, amendment, proposal, manager_emails: Iterable[str]) -> None:
        self.queue_many(
            manager_emails,
            NotificationTemplate.AMENDMENT_REQUESTED,
            amendment_id=amendment.id,
            proposal_id=proposal.id,
            proposal_number=proposal.proposal_number,
            client_name=proposal.client_name,
            urgency=amendment.urgency.value,
            description=amendment.description,
            url=self._amendment_url(amendment.id),
        )

    def notify_amendment_reviewed(self, amendment, recipient: Optional[str]) -> None:
        self.queue(
            recipient,
            NotificationTemplate.AMENDMENT_REVIEWED,
            amendment_id=amendment.id,
            proposal_id=amendment.proposal_id,
            decision=amendment.status.value,
            review_notes=amendment.review_notes,
            url=self._amendment_url(amendment.id),
        )

    def notify_amendment_completed(self, amendment, recipient: Optional[str]) -> None:
        self.queue(
            recipient,
            NotificationTemplate.AMENDMENT_COMPLETED,
            amendment_id=amendment.id,
            proposal_id=amendment.proposal_id,
            amendment_proposal_id=amendment.amendment_proposal_id,
            url=self._amendment_url(amendment.id),
        )

    # =========================================================================
    # Stage Notifications
    # =========================================================================

    def notify_stage_completed(
        self,
        stage,
        proposal,
        completed_stages: int,
        total_stages: int,
    ) -> None:
        """
        Stage completion goes to the proposal's client and carries the
        proposal's aggregate progress.
        """
        self.queue(
            proposal.client_email,
            NotificationTemplate.STAGE_COMPLETED,
            stage_id=stage.id,
            stage_name=stage.name,
            proposal_id=proposal.id,
            proposal_number=proposal.proposal_number,
            completed_stages=completed_stages,
            total_stages=total_stages,
            url=self._proposal_url(proposal.id),
        )
