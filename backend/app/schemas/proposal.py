"""
Pydantic schemas for proposal endpoints.

WHAT: Request/response schemas for drafting, sending, signing and
pricing proposals.

WHY: Schemas define the API contracts:
1. Validate incoming line items, credits and signatures
2. Document the API for OpenAPI/Swagger
3. Keep derived pricing fields out of every input model

HOW: Pydantic v2 with Field constraints. Money travels as Decimal on the
way in and as float on the way out. Status enums are shared with the
SQLAlchemy models.
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field, model_validator

from app.models.project_request import ProjectCategory, ServiceType
from app.models.proposal import (
    CreditType,
    ProposalStatus,
    ProposalType,
    ServiceApprovalStatus,
    SignatureParty,
)
from app.schemas.project_stage import ProjectStageResponse


# ============================================================================
# Line items and credits
# ============================================================================


class ServiceInput(BaseModel):
    """
    Proposal line item.

    WHY: `amount` is the line amount that counts into the subtotal;
    `quantity` is shown to the client but not multiplied in.
    """

    name: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    amount: Decimal = Field(..., ge=0, description="Line amount")
    quantity: int = Field(1, ge=1, description="Informational quantity")

    model_config = {
        "json_schema_extra": {
            "example": {"name": "Schematic design", "amount": 12000, "quantity": 1}
        }
    }


class ServiceUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    amount: Optional[Decimal] = Field(None, ge=0)
    quantity: Optional[int] = Field(None, ge=1)


class CreditInput(BaseModel):
    """Discount applied before tax."""

    description: Optional[str] = Field(None, max_length=255)
    amount: Decimal = Field(..., gt=0)
    type: CreditType = Field(CreditType.DOLLAR_AMOUNT)

    @model_validator(mode="after")
    def percent_within_bounds(self) -> "CreditInput":
        if self.type == CreditType.PERCENT and self.amount > 100:
            raise ValueError("Percent credit cannot exceed 100")
        return self


class CreditUpdate(BaseModel):
    description: Optional[str] = Field(None, max_length=255)
    amount: Optional[Decimal] = Field(None, gt=0)
    type: Optional[CreditType] = None


class ServiceResponse(BaseModel):
    id: int
    proposal_id: int
    name: str
    description: Optional[str] = None
    amount: float
    quantity: int
    order: int
    requires_approval: bool
    approval_status: Optional[ServiceApprovalStatus] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None

    model_config = {"from_attributes": True}


class CreditResponse(BaseModel):
    id: int
    proposal_id: int
    description: Optional[str] = None
    amount: float
    type: CreditType

    model_config = {"from_attributes": True}


class TotalsResponse(BaseModel):
    """Derived pricing after a line-item or credit change."""

    subtotal: float
    credits_total: float
    after_credits: float
    tax_amount: float
    total_amount: float

    model_config = {"from_attributes": True}


class ServiceChangeResponse(BaseModel):
    service: Optional[ServiceResponse] = None
    id: Optional[int] = None
    totals: TotalsResponse


class CreditChangeResponse(BaseModel):
    credit: Optional[CreditResponse] = None
    id: Optional[int] = None
    totals: TotalsResponse


# ============================================================================
# Proposal input
# ============================================================================


class ProposalCreate(BaseModel):
    """
    Proposal drafting request.

    WHAT: Client identity and project location come from the request;
    only commercial fields and the initial line items are supplied here.
    """

    request_id: int = Field(..., gt=0, description="Originating project request")
    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=10000)
    square_footage: Optional[int] = Field(None, ge=0)
    budget_range: Optional[str] = Field(None, max_length=100)
    expected_timeline: Optional[str] = Field(None, max_length=100)
    tax_rate: Decimal = Field(Decimal("0"), ge=0, le=100, description="Tax percentage")
    payment_method: Optional[str] = Field(None, max_length=100)
    payment_terms: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    notes: Optional[str] = None
    expires_at: Optional[datetime] = None
    services: List[ServiceInput] = Field(default_factory=list)
    credits: List[CreditInput] = Field(default_factory=list)


class ProposalUpdate(BaseModel):
    """Editable fields of a DRAFT proposal."""

    title: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = Field(None, max_length=10000)
    square_footage: Optional[int] = Field(None, ge=0)
    budget_range: Optional[str] = Field(None, max_length=100)
    expected_timeline: Optional[str] = Field(None, max_length=100)
    tax_rate: Optional[Decimal] = Field(None, ge=0, le=100)
    payment_method: Optional[str] = Field(None, max_length=100)
    payment_terms: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    notes: Optional[str] = None
    expires_at: Optional[datetime] = None


class ProposalReject(BaseModel):
    reason: Optional[str] = Field(None, max_length=2000)


class SignatureInput(BaseModel):
    """
    One party's signature.

    WHY: The payload is either a typed name or image data; it is stored
    as given and never echoed back in error details.
    """

    party: SignatureParty
    signature: str = Field(..., min_length=1)
    signed_by: Optional[str] = Field(None, max_length=255, description="Printed signer name")


class ServiceApprovalDecision(BaseModel):
    approve: bool
    reason: Optional[str] = Field(None, max_length=2000)


# ============================================================================
# Proposal output
# ============================================================================


class ProposalResponse(BaseModel):
    """Proposal summary used in listings."""

    id: int
    proposal_number: str
    request_id: int
    user_id: Optional[int] = None
    client_name: str
    client_email: str
    client_company: Optional[str] = None
    title: Optional[str] = None
    project_location: Optional[str] = None
    service_type: Optional[ServiceType] = None
    project_category: Optional[ProjectCategory] = None
    status: ProposalStatus
    proposal_type: ProposalType
    parent_proposal_id: Optional[int] = None
    subtotal: float
    credits_total: float
    tax_rate: float
    tax_amount: float
    total_amount: float
    owner_signed_by: Optional[str] = None
    owner_signed_at: Optional[datetime] = None
    architect_signed_by: Optional[str] = None
    architect_signed_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    viewed_at: Optional[datetime] = None
    responded_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    is_editable: bool
    is_signable: bool
    is_fully_signed: bool

    model_config = {"from_attributes": True}


class ProposalDetailResponse(ProposalResponse):
    """Proposal with line items, credits and generated stages."""

    description: Optional[str] = None
    square_footage: Optional[int] = None
    budget_range: Optional[str] = None
    expected_timeline: Optional[str] = None
    payment_method: Optional[str] = None
    payment_terms: Optional[str] = None
    terms_and_conditions: Optional[str] = None
    notes: Optional[str] = None
    services: List[ServiceResponse] = Field(default_factory=list)
    credits: List[CreditResponse] = Field(default_factory=list)
    stages: List[ProjectStageResponse] = Field(default_factory=list)


class SignatureResultResponse(BaseModel):
    proposal: ProposalDetailResponse
    accepted: bool
    stages_created: int


class ProposalTreeResponse(BaseModel):
    """A root proposal and its amendment proposals, oldest first."""

    normal_proposal: ProposalResponse
    amendment_proposals: List[ProposalResponse]
    total_proposals: int
