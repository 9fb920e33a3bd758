"""
Project stage model.

WHAT: A unit of post-acceptance delivery work.

WHY: Stages are generated one-to-one from an accepted proposal's services
and are the only thing tracked once design work starts. They are never
created standalone.

HOW: (proposal_id, order) is unique so a proposal can never hold two
stage sets, even if two acceptance attempts race.
"""

from datetime import datetime
from enum import Enum
from typing import Optional, TYPE_CHECKING
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    UniqueConstraint,
    Enum as SQLEnum,
)
from sqlalchemy.orm import relationship, Mapped

from app.models.base import Base, PrimaryKeyMixin, TimestampMixin

if TYPE_CHECKING:
    from app.models.proposal import Proposal
    from app.models.user import User


class StageStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ON_HOLD = "on_hold"


class ProjectStage(Base, PrimaryKeyMixin, TimestampMixin):
    """
    Delivery stage of an accepted proposal.

    Attributes:
        proposal_id: Proposal the stage was generated from
        name / description: Copied from the originating service
        order: Dense, zero-based, equal to the service order
        status: Derived from progress by the stage tracker
        progress: 0-100
        total_tasks / completed_tasks: Task counters
        assigned_to_id: Staff member responsible
        notes: Append-only progress log
    """

    __tablename__ = "project_stages"
    __table_args__ = (
        UniqueConstraint("proposal_id", "order", name="uq_project_stages_proposal_order"),
    )

    proposal_id: Mapped[int] = Column(
        Integer,
        ForeignKey("proposals.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = Column(String(255), nullable=False)
    description: Mapped[Optional[str]] = Column(Text, nullable=True)
    order: Mapped[int] = Column(Integer, nullable=False)

    status: Mapped[StageStatus] = Column(
        SQLEnum(
            StageStatus,
            name="stagestatus",
            create_type=False,
            values_callable=lambda enum: [e.value for e in enum],
        ),
        nullable=False,
        default=StageStatus.NOT_STARTED,
        index=True,
    )
    progress: Mapped[int] = Column(Integer, nullable=False, default=0)
    total_tasks: Mapped[int] = Column(Integer, nullable=False, default=5)
    completed_tasks: Mapped[int] = Column(Integer, nullable=False, default=0)

    assigned_to_id: Mapped[Optional[int]] = Column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    start_date: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    due_date: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = Column(DateTime, nullable=True)
    notes: Mapped[Optional[str]] = Column(Text, nullable=True)

    proposal: Mapped["Proposal"] = relationship("Proposal", back_populates="stages")
    assigned_to: Mapped[Optional["User"]] = relationship("User")

    def __repr__(self) -> str:
        return f"<ProjectStage(id={self.id}, name={self.name}, order={self.order}, status={self.status})>"

    @property
    def is_completed(self) -> bool:
        return self.status == StageStatus.COMPLETED
