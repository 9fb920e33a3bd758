"""
Data Access Object package.

WHY: DAOs own every SQL statement; services never build queries.
"""

from app.dao.base import BaseDAO
from app.dao.user import UserDAO
from app.dao.project_request import ProjectRequestDAO
from app.dao.proposal import ProposalDAO, ProposalServiceDAO, CreditDAO
from app.dao.project_stage import ProjectStageDAO
from app.dao.amendment import AmendmentRequestDAO

__all__ = [
    "BaseDAO",
    "UserDAO",
    "ProjectRequestDAO",
    "ProposalDAO",
    "ProposalServiceDAO",
    "CreditDAO",
    "ProjectStageDAO",
    "AmendmentRequestDAO",
]
