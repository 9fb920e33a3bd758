"""
Amendment request model.

WHAT: A change requested against an already-accepted proposal.

WHY: Scope changes after acceptance must not edit the signed proposal.
Instead an approved amendment spawns a child AMENDMENT proposal that goes
through the full draft/send/sign lifecycle and produces its own stages.

HOW: amendment_proposal_id is written once, by a conditional update that
only matches while it is still NULL.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any, TYPE_CHECKING
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    JSON,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship, Mapped

from app.models.base import Base, PrimaryKeyMixin, TimestampMixin

if TYPE_CHECKING:
    from app.models.proposal import Proposal
    from app.models.user import User


class AmendmentStatus(str, Enum):
    """
    - PENDING: Waiting for staff review
    - APPROVED: Accepted by staff, no proposal drafted yet
    - REJECTED: Declined by staff
    - UNDER_REVIEW: Amendment proposal drafted and in the client's hands
    - COMPLETED: Amendment proposal accepted and amendment closed
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    UNDER_REVIEW = "under_review"
    COMPLETED = "completed"


class AmendmentUrgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class AmendmentRequest(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Change request against an accepted proposal.

    Attributes:
        proposal_id: Accepted parent proposal
        requested_by_id: Client or staff member who asked for the change
        project_name / description / requested_services / urgency: Details
        reviewed_by_id / reviewed_at / review_notes: Staff decision
        amendment_proposal_id: Generated amendment proposal (set once)
        completed_by_id / completed_at: Closing actor and time
    """

    __tablename__ = "amendment_requests"

    proposal_id: Mapped[int] = Column(
        Integer,
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    requested_by_id: Mapped[int] = Column(
        Integer,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    project_name: Mapped[Optional[str]] = Column(String(255), nullable=True)
    description: Mapped[str] = Column(Text, nullable=False)
    # Format: [{"name": str, "description": str | None, "estimated_amount": str | None}]
    requested_services: Mapped[Optional[List[Dict[str, Any]]]] = Column(
        JSON,
        nullable=True,
        default=list,
    )
    urgency: Mapped[AmendmentUrgency] = Column(
        SQLEnum(
            AmendmentUrgency,
            name="amendmenturgency",
            create_type=False,
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        default=AmendmentUrgency.MEDIUM,
    )

    status: Mapped[AmendmentStatus] = Column(
        SQLEnum(
            AmendmentStatus,
            name="amendmentstatus",
            create_type=False,
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        default=AmendmentStatus.PENDING,
        index=True,
    )

    reviewed_by_id: Mapped[Optional[int]] = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    reviewed_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    review_notes: Mapped[Optional[str]] = Column(Text, nullable=True)

    amendment_proposal_id: Mapped[Optional[int]] = Column(
        Integer,
        ForeignKey("proposals.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
        comment="Generated amendment proposal",
    )

    completed_by_id: Mapped[Optional[int]] = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    completed_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)

    proposal: Mapped["Proposal"] = relationship("Proposal", foreign_keys=[proposal_id])
    amendment_proposal: Mapped[Optional["Proposal"]] = relationship(
        "Proposal",
        foreign_keys=[amendment_proposal_id],
    )
    requested_by: Mapped["User"] = relationship("User", foreign_keys=[requested_by_id])

    def __repr__(self) -> str:
        return f"<AmendmentRequest(id={self.id}, proposal_id={self.proposal_id}, status={self.status})>"
