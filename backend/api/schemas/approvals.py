"""Approval decision and signup approval request schemas."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ApprovalDecision(BaseModel):
    """Decision on a step waiting for approval."""

    approved: bool
    notes: Optional[str] = Field(default=None, description="Shown to the applicant on rejection")
    output_data: Optional[Dict[str, Any]] = Field(
        default=None, description="Overrides the default approval output"
    )


class UserApprovalRequest(BaseModel):
    """Approval request for a user signup."""

    user_id: str = Field(min_length=1)
    request_reason: Optional[str] = None
    user_role: Optional[str] = Field(default=None, description="Requested role; picks the workflow")


class ClinicAdminApprovalRequest(BaseModel):
    """Approval request for a clinic admin signup."""

    user_id: str = Field(min_length=1)
    clinic_id: str = Field(min_length=1)
    clinic_name: str = Field(min_length=1)


class StaffApprovalRequest(BaseModel):
    """Approval request for a dentist or receptionist signup."""

    user_id: str = Field(min_length=1)
    clinic_id: str = Field(min_length=1)
    clinic_name: str = Field(min_length=1)
    role: str = Field(min_length=1)
