"""
Proposal, line-item and credit models.

WHAT: A priced offer drafted against a client request, its service line
items and its discounts.

WHY: Proposals are the binding documents of an engagement:
1. Define scope as an ordered list of services
2. Carry derived pricing (subtotal, credits, tax, total)
3. Require both the client and a staff architect to sign
4. Fan out into project stages once accepted

HOW: Uses SQLAlchemy 2.0 with:
- Status enum for the drafting/sending workflow
- Two independent signature slots
- A one-level self-reference (root proposal + amendment proposals)
- Numeric(12, 2) money columns, always written by the recalculator
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    DateTime,
    ForeignKey,
    Numeric,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship, Mapped

from app.models.base import Base, PrimaryKeyMixin, TimestampMixin
from app.models.project_request import ServiceType, ProjectCategory

if TYPE_CHECKING:
    from app.models.project_request import ProjectRequest
    from app.models.project_stage import ProjectStage
    from app.models.user import User


class ProposalStatus(str, Enum):
    """
    Proposal workflow status.

    - DRAFT: Being prepared by staff, not visible to the client
    - SENT: Sent to the client
    - VIEWED: Client has opened the proposal
    - ACCEPTED: Both parties signed
    - REJECTED: Client declined
    - EXPIRED: Validity period passed without acceptance
    """

    DRAFT = "draft"
    SENT = "sent"
    VIEWED = "viewed"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    EXPIRED = "expired"


SIGNABLE_STATUSES = (ProposalStatus.SENT, ProposalStatus.VIEWED)


class ProposalType(str, Enum):
    NORMAL = "normal"
    AMENDMENT = "amendment"


class SignatureParty(str, Enum):
    """Which signature slot a signature is written to."""

    OWNER = "owner"
    ARCHITECT = "architect"


class CreditType(str, Enum):
    DOLLAR_AMOUNT = "dollar_amount"
    PERCENT = "percent"


class ServiceApprovalStatus(str, Enum):
    """
    Client approval of a service added after the proposal left DRAFT.

    WHY: Amendment proposals may grow while the client is reviewing them.
    Such services stay out of the totals until the client approves them.
    """

    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class Proposal(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Client proposal.

    Attributes:
        proposal_number: Unique human-readable number (PROP-2026-0001)
        request_id: Originating intake request
        user_id: Registered client account, if any
        client_name / client_email / client_phone / client_company:
            Client identity copied from the request
        status: Current workflow status
        proposal_type: NORMAL or AMENDMENT
        parent_proposal_id: Root proposal of an amendment proposal
        owner_signature / owner_signed_by / owner_signed_at: Client slot
        architect_signature / architect_signed_by / architect_signed_at /
            architect_signer_id: Staff slot
        subtotal / credits_total / tax_rate / tax_amount / total_amount:
            Derived pricing
        sent_at / viewed_at / responded_at: Workflow timestamps
    """

    __tablename__ = "proposals"

    proposal_number: Mapped[str] = Column(
        String(50),
        nullable=False,
        unique=True,
        index=True,
        comment="Human-readable proposal number",
    )

    request_id: Mapped[int] = Column(
        Integer,
        ForeignKey("project_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Originating client request",
    )
    user_id: Mapped[Optional[int]] = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Registered client account",
    )
    created_by_id: Mapped[Optional[int]] = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Client identity (copied from the request at creation)
    client_name: Mapped[str] = Column(String(255), nullable=False)
    client_email: Mapped[str] = Column(String(255), nullable=False, index=True)
    client_phone: Mapped[Optional[str]] = Column(String(50), nullable=True)
    client_company: Mapped[Optional[str]] = Column(String(255), nullable=True)

    # Project details
    title: Mapped[Optional[str]] = Column(String(255), nullable=True)
    description: Mapped[Optional[str]] = Column(Text, nullable=True)
    project_location: Mapped[Optional[str]] = Column(String(500), nullable=True)
    service_type: Mapped[Optional[ServiceType]] = Column(
        SQLEnum(
            ServiceType,
            name="servicetype",
            create_type=False,
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=True,
    )
    project_category: Mapped[Optional[ProjectCategory]] = Column(
        SQLEnum(
            ProjectCategory,
            name="projectcategory",
            create_type=False,
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=True,
    )
    square_footage: Mapped[Optional[int]] = Column(Integer, nullable=True)
    budget_range: Mapped[Optional[str]] = Column(String(100), nullable=True)
    expected_timeline: Mapped[Optional[str]] = Column(String(100), nullable=True)

    # WHY: create_type=False because enum types are created in migrations
    # WHY: values_callable stores the lowercase value, not the member name
    status: Mapped[ProposalStatus] = Column(
        SQLEnum(
            ProposalStatus,
            name="proposalstatus",
            create_type=False,
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        default=ProposalStatus.DRAFT,
        index=True,
        comment="Current proposal status",
    )
    proposal_type: Mapped[ProposalType] = Column(
        SQLEnum(
            ProposalType,
            name="proposaltype",
            create_type=False,
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        default=ProposalType.NORMAL,
    )
    parent_proposal_id: Mapped[Optional[int]] = Column(
        Integer,
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="Root proposal of an amendment proposal",
    )

    # Signature slots
    owner_signature: Mapped[Optional[str]] = Column(Text, nullable=True)
    owner_signed_by: Mapped[Optional[str]] = Column(String(255), nullable=True)
    owner_signed_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    architect_signature: Mapped[Optional[str]] = Column(Text, nullable=True)
    architect_signed_by: Mapped[Optional[str]] = Column(String(255), nullable=True)
    architect_signed_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    architect_signer_id: Mapped[Optional[int]] = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )

    # Pricing (derived by FinancialRecalculator, never hand-edited)
    subtotal: Mapped[Decimal] = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    credits_total: Mapped[Decimal] = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    tax_rate: Mapped[Decimal] = Column(
        Numeric(5, 2),
        nullable=False,
        default=Decimal("0.00"),
        comment="Tax percentage",
    )
    tax_amount: Mapped[Decimal] = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    total_amount: Mapped[Decimal] = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))

    # Terms
    payment_method: Mapped[Optional[str]] = Column(String(100), nullable=True)
    payment_terms: Mapped[Optional[str]] = Column(Text, nullable=True)
    terms_and_conditions: Mapped[Optional[str]] = Column(Text, nullable=True)
    notes: Mapped[Optional[str]] = Column(Text, nullable=True)
    expires_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)

    # Workflow timestamps
    sent_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    viewed_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    responded_at: Mapped[Optional[datetime]] = Column(
        DateTime,
        nullable=True,
        comment="When the proposal was accepted or rejected",
    )

    # Relationships
    request: Mapped["ProjectRequest"] = relationship(
        "ProjectRequest",
        back_populates="proposals",
    )
    client: Mapped[Optional["User"]] = relationship("User", foreign_keys=[user_id])
    services: Mapped[List["ProposalService"]] = relationship(
        "ProposalService",
        back_populates="proposal",
        order_by="ProposalService.order",
        cascade="all, delete-orphan",
    )
    credits: Mapped[List["Credit"]] = relationship(
        "Credit",
        back_populates="proposal",
        cascade="all, delete-orphan",
    )
    stages: Mapped[List["ProjectStage"]] = relationship(
        "ProjectStage",
        back_populates="proposal",
        order_by="ProjectStage.order",
        cascade="all, delete-orphan",
    )
    parent_proposal: Mapped[Optional["Proposal"]] = relationship(
        "Proposal",
        remote_side="Proposal.id",
        foreign_keys=[parent_proposal_id],
    )

    def __repr__(self) -> str:
        return f"<Proposal(id={self.id}, number={self.proposal_number}, status={self.status})>"

    @property
    def is_editable(self) -> bool:
        """Only DRAFT proposals accept field, service or credit edits."""
        return self.status == ProposalStatus.DRAFT

    @property
    def is_signable(self) -> bool:
        return self.status in SIGNABLE_STATUSES

    @property
    def is_fully_signed(self) -> bool:
        return bool(self.owner_signature) and bool(self.architect_signature)

    @property
    def root_proposal_id(self) -> int:
        """Id of the NORMAL proposal at the root of this proposal's tree."""
        return self.parent_proposal_id or self.id


class ProposalService(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Service line item of a proposal.

    WHY: Each service becomes exactly one project stage on acceptance, so
    `order` is kept dense and zero-based per proposal.

    Attributes:
        amount: Line amount counted into the subtotal
        quantity: Informational quantity shown to the client
        order: Display order, 0..n-1
        requires_approval / approval_status: Client approval sub-flow for
            services added to an amendment proposal after drafting
    """

    __tablename__ = "proposal_services"

    proposal_id: Mapped[int] = Column(
        Integer,
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = Column(String(255), nullable=False)
    description: Mapped[Optional[str]] = Column(Text, nullable=True)
    amount: Mapped[Decimal] = Column(Numeric(12, 2), nullable=False, default=Decimal("0.00"))
    quantity: Mapped[int] = Column(Integer, nullable=False, default=1)
    order: Mapped[int] = Column(Integer, nullable=False, default=0)

    # Approval sub-flow
    requires_approval: Mapped[bool] = Column(Boolean, nullable=False, default=False)
    approval_status: Mapped[Optional[ServiceApprovalStatus]] = Column(
        SQLEnum(
            ServiceApprovalStatus,
            name="serviceapprovalstatus",
            create_type=False,
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=True,
    )
    approved_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    approved_by_id: Mapped[Optional[int]] = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    rejected_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    rejected_by_id: Mapped[Optional[int]] = Column(
        Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    rejection_reason: Mapped[Optional[str]] = Column(Text, nullable=True)

    proposal: Mapped["Proposal"] = relationship("Proposal", back_populates="services")

    def __repr__(self) -> str:
        return f"<ProposalService(id={self.id}, name={self.name}, order={self.order})>"

    @property
    def counts_toward_total(self) -> bool:
        """Pending or rejected approval services are priced out."""
        return self.approval_status not in (
            ServiceApprovalStatus.PENDING_APPROVAL,
            ServiceApprovalStatus.REJECTED,
        )


class Credit(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Discount applied to a proposal.

    Percent credits are computed against the pre-credit subtotal.
    """

    __tablename__ = "proposal_credits"

    proposal_id: Mapped[int] = Column(
        Integer,
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    description: Mapped[Optional[str]] = Column(String(255), nullable=True)
    amount: Mapped[Decimal] = Column(Numeric(12, 2), nullable=False)
    type: Mapped[CreditType] = Column(
        SQLEnum(
            CreditType,
            name="credittype",
            create_type=False,
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        default=CreditType.DOLLAR_AMOUNT,
    )

    proposal: Mapped["Proposal"] = relationship("Proposal", back_populates="credits")

    def __repr__(self) -> str:
        return f"<Credit(id={self.id}, amount={self.amount}, type={self.type})>"
