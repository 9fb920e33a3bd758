"""
Project request (client intake) model.

WHAT: A prospective client's submission describing the project they want
designed or built.

WHY: Every proposal is drafted against exactly one request. The request's
status records how far the engagement has progressed from the firm's
point of view and is only ever advanced by staff or by proposal
acceptance, never by the client directly.

HOW: Soft-deleted via deleted_at; status is a closed enum validated by
the request transition table in app.core.transitions.
"""

from enum import Enum
from typing import Optional, List, TYPE_CHECKING
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    ForeignKey,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship, Mapped

from app.models.base import Base, PrimaryKeyMixin, TimestampMixin, SoftDeleteMixin

if TYPE_CHECKING:
    from app.models.proposal import Proposal
    from app.models.user import User


class RequestStatus(str, Enum):
    """
    Intake request lifecycle.

    - PENDING: Submitted, not yet looked at
    - REVIEWED: Staff reviewed the request
    - SCHEDULED: A proposal was accepted; work is being scheduled
    - ACTIVE: Work under way
    - COMPLETED: Engagement delivered
    - CANCELLED: Abandoned by either party
    """

    PENDING = "pending"
    REVIEWED = "reviewed"
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class ServiceType(str, Enum):
    NEW_CONSTRUCTION = "new_construction"
    RENOVATION = "renovation"
    ADDITION = "addition"
    INTERIOR_DESIGN = "interior_design"
    LANDSCAPE_DESIGN = "landscape_design"
    OTHER = "other"


class ProjectCategory(str, Enum):
    RESIDENTIAL = "residential"
    COMMERCIAL = "commercial"
    INSTITUTIONAL = "institutional"
    LANDSCAPE = "landscape"
    INTERIOR = "interior"
    URBAN_PLANNING = "urban_planning"


class ProjectRequest(Base, PrimaryKeyMixin, TimestampMixin, SoftDeleteMixin):
    """
    Client intake request.

    Attributes:
        client_first_name / client_middle_name / client_last_name: Contact
        company_name: Optional company
        email / phone: Contact channels
        country / state / city / street_address: Client address
        project_name: Working name of the project
        project_country / project_state / project_city / project_street_address:
            Where the project is located
        service_type / project_category: What the client is asking for
        budget_range: Free-form budget bracket
        description: Free-form brief
        status: Current lifecycle status
        user_id: Registered client account, if any
    """

    __tablename__ = "project_requests"

    # Client identity
    client_first_name: Mapped[str] = Column(String(100), nullable=False)
    client_middle_name: Mapped[Optional[str]] = Column(String(100), nullable=True)
    client_last_name: Mapped[str] = Column(String(100), nullable=False)
    company_name: Mapped[Optional[str]] = Column(String(255), nullable=True)

    # Contact
    email: Mapped[str] = Column(String(255), nullable=False, index=True)
    phone: Mapped[Optional[str]] = Column(String(50), nullable=True)
    country: Mapped[str] = Column(String(100), nullable=False, default="United States")
    state: Mapped[Optional[str]] = Column(String(100), nullable=True)
    city: Mapped[Optional[str]] = Column(String(100), nullable=True)
    street_address: Mapped[Optional[str]] = Column(String(255), nullable=True)

    # Project
    project_name: Mapped[str] = Column(String(255), nullable=False)
    project_country: Mapped[Optional[str]] = Column(String(100), nullable=True)
    project_state: Mapped[Optional[str]] = Column(String(100), nullable=True)
    project_city: Mapped[Optional[str]] = Column(String(100), nullable=True)
    project_street_address: Mapped[Optional[str]] = Column(String(255), nullable=True)
    service_type: Mapped[ServiceType] = Column(
        SQLEnum(
            ServiceType,
            name="servicetype",
            create_type=False,
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
    )
    project_category: Mapped[ProjectCategory] = Column(
        SQLEnum(
            ProjectCategory,
            name="projectcategory",
            create_type=False,
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
    )
    budget_range: Mapped[Optional[str]] = Column(String(100), nullable=True)
    description: Mapped[Optional[str]] = Column(Text, nullable=True)

    status: Mapped[RequestStatus] = Column(
        SQLEnum(
            RequestStatus,
            name="requeststatus",
            create_type=False,
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        default=RequestStatus.PENDING,
        index=True,
    )

    user_id: Mapped[Optional[int]] = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
        comment="Registered client account",
    )

    # Relationships
    user: Mapped[Optional["User"]] = relationship("User")
    proposals: Mapped[List["Proposal"]] = relationship(
        "Proposal",
        back_populates="request",
    )

    def __repr__(self) -> str:
        return f"<ProjectRequest(id={self.id}, project={self.project_name}, status={self.status})>"

    @property
    def client_name(self) -> str:
        """First and last name as shown on proposals."""
        return f"{self.client_first_name} {self.client_last_name}".strip()

    @property
    def project_location(self) -> str:
        """Non-empty project address parts joined with commas."""
        parts = [
            self.project_street_address,
            self.project_city,
            self.project_state,
            self.project_country,
        ]
        return ", ".join(part for part in parts if part)
