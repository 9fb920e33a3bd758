"""
Pydantic schemas for project request endpoints.

WHAT: Intake submission, staff status change and response shapes.

HOW: Enum types are shared with the SQLAlchemy models so the API and the
database agree on the allowed values.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.models.project_request import ProjectCategory, RequestStatus, ServiceType


class ProjectRequestCreate(BaseModel):
    """
    Client intake submission.

    WHY: Only contact details, the project name and the service type are
    required; everything else helps staff scope the proposal.
    """

    client_first_name: str = Field(..., min_length=1, max_length=100)
    client_middle_name: Optional[str] = Field(None, max_length=100)
    client_last_name: str = Field(..., min_length=1, max_length=100)
    company_name: Optional[str] = Field(None, max_length=255)
    email: EmailStr = Field(..., description="Contact email; used to match the client account")
    phone: Optional[str] = Field(None, max_length=50)
    country: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    city: Optional[str] = Field(None, max_length=100)
    street_address: Optional[str] = Field(None, max_length=255)

    project_name: str = Field(..., min_length=1, max_length=255)
    project_country: Optional[str] = Field(None, max_length=100)
    project_state: Optional[str] = Field(None, max_length=100)
    project_city: Optional[str] = Field(None, max_length=100)
    project_street_address: Optional[str] = Field(None, max_length=255)
    service_type: ServiceType
    project_category: ProjectCategory
    budget_range: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=10000)

    @field_validator("client_first_name", "client_last_name", "project_name")
    @classmethod
    def strip_required(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    model_config = {
        "json_schema_extra": {
            "example": {
                "client_first_name": "Dana",
                "client_last_name": "Reyes",
                "email": "dana@example.com",
                "project_name": "Hillside residence",
                "service_type": "new_construction",
                "project_category": "residential",
                "budget_range": "$500k-$750k",
            }
        }
    }


class RequestStatusUpdate(BaseModel):
    """Staff decision on a request."""

    status: RequestStatus = Field(..., description="Target status")


class ProjectRequestResponse(BaseModel):
    """Request data returned by the API."""

    id: int
    client_first_name: str
    client_middle_name: Optional[str] = None
    client_last_name: str
    client_name: str
    company_name: Optional[str] = None
    email: str
    phone: Optional[str] = None
    project_name: str
    project_location: Optional[str] = None
    service_type: ServiceType
    project_category: ProjectCategory
    budget_range: Optional[str] = None
    description: Optional[str] = None
    status: RequestStatus
    user_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class RequestStatusCounts(BaseModel):
    """Live request count per status."""

    counts: dict[str, int]
