"""Signup approval request endpoints."""

import logging

from fastapi import APIRouter, Depends, status

from api.schemas.approvals import (
    ClinicAdminApprovalRequest,
    StaffApprovalRequest,
    UserApprovalRequest,
)
from api.schemas.instances import InstanceDetailResponse
from app.dependencies import get_approval_requests
from services.approval_request_service import ApprovalRequestService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["user-approval"])


@router.post("/request", response_model=InstanceDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_approval_request(
    request: UserApprovalRequest,
    svc: ApprovalRequestService = Depends(get_approval_requests),
) -> InstanceDetailResponse:
    """Start the approval workflow for the requested role."""
    instance = await svc.create_approval_request(
        request.user_id, request.request_reason, request.user_role
    )
    return InstanceDetailResponse.model_validate(instance)


@router.post(
    "/clinic-admin/request",
    response_model=InstanceDetailResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_clinic_admin_approval_request(
    request: ClinicAdminApprovalRequest,
    svc: ApprovalRequestService = Depends(get_approval_requests),
) -> InstanceDetailResponse:
    instance = await svc.create_clinic_admin_approval_request(
        request.user_id, request.clinic_id, request.clinic_name
    )
    return InstanceDetailResponse.model_validate(instance)


@router.post(
    "/staff/request",
    response_model=InstanceDetailResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_staff_approval_request(
    request: StaffApprovalRequest,
    svc: ApprovalRequestService = Depends(get_approval_requests),
) -> InstanceDetailResponse:
    instance = await svc.create_staff_approval_request(
        request.user_id, request.clinic_id, request.clinic_name, request.role
    )
    return InstanceDetailResponse.model_validate(instance)
