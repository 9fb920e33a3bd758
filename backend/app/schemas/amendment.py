"""
Pydantic schemas for amendment endpoints.

WHAT: Change requests against accepted proposals, staff review and
promotion to an amendment proposal.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from app.models.amendment import AmendmentStatus, AmendmentUrgency
from app.schemas.proposal import ProposalDetailResponse, ServiceInput


class RequestedService(BaseModel):
    """A service the client would like added. Pricing is staff's call."""

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    estimated_amount: Optional[Decimal] = Field(None, ge=0)


class AmendmentCreate(BaseModel):
    proposal_id: int = Field(..., gt=0, description="Accepted parent proposal")
    project_name: Optional[str] = Field(None, max_length=255)
    description: str = Field(..., min_length=1, max_length=10000)
    requested_services: List[RequestedService] = Field(default_factory=list)
    urgency: AmendmentUrgency = AmendmentUrgency.MEDIUM

    model_config = {
        "json_schema_extra": {
            "example": {
                "proposal_id": 12,
                "description": "Add a detached garage with studio above",
                "requested_services": [{"name": "Garage design", "estimated_amount": 8000}],
                "urgency": "medium",
            }
        }
    }


class AmendmentReview(BaseModel):
    approve: bool
    notes: Optional[str] = Field(None, max_length=5000)


class AmendmentProposalCreate(BaseModel):
    """
    Details for the amendment proposal.

    Omitted services default to the amendment's requested services; the
    tax rate defaults to the parent proposal's.
    """

    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=10000)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    expected_timeline: Optional[str] = Field(None, max_length=100)
    payment_terms: Optional[str] = None
    services: List[ServiceInput] = Field(default_factory=list)


class AmendmentResponse(BaseModel):
    id: int
    proposal_id: int
    requested_by_id: int
    project_name: Optional[str] = None
    description: str
    requested_services: Optional[List[Dict[str, Any]]] = None
    urgency: AmendmentUrgency
    status: AmendmentStatus
    reviewed_by_id: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    amendment_proposal_id: Optional[int] = None
    completed_by_id: Optional[int] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class AmendmentProposalResult(BaseModel):
    amendment: AmendmentResponse
    proposal: ProposalDetailResponse
