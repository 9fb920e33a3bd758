"""
Database models package.

WHY: Centralizing model imports ensures Alembic and the test suite see
every table when they use Base.metadata.
"""

from app.models.base import Base, TimestampMixin, PrimaryKeyMixin, SoftDeleteMixin
from app.models.user import User, UserRole, RoleClass, is_manager_role, classify_role
from app.models.project_request import (
    ProjectRequest,
    RequestStatus,
    ServiceType,
    ProjectCategory,
)
from app.models.proposal import (
    Proposal,
    ProposalStatus,
    ProposalType,
    ProposalService,
    ServiceApprovalStatus,
    SignatureParty,
    Credit,
    CreditType,
    SIGNABLE_STATUSES,
)
from app.models.project_stage import ProjectStage, StageStatus
from app.models.amendment import AmendmentRequest, AmendmentStatus, AmendmentUrgency

__all__ = [
    "Base",
    "TimestampMixin",
    "PrimaryKeyMixin",
    "SoftDeleteMixin",
    "User",
    "UserRole",
    "RoleClass",
    "is_manager_role",
    "classify_role",
    "ProjectRequest",
    "RequestStatus",
    "ServiceType",
    "ProjectCategory",
    "Proposal",
    "ProposalStatus",
    "ProposalType",
    "ProposalService",
    "ServiceApprovalStatus",
    "SignatureParty",
    "Credit",
    "CreditType",
    "SIGNABLE_STATUSES",
    "ProjectStage",
    "StageStatus",
    "AmendmentRequest",
    "AmendmentStatus",
    "AmendmentUrgency",
]
