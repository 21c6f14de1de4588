"""Approval requests for user signups.

Starts the seeded approval workflows for new accounts. The workflow is
chosen from the requested role; each request gets a business key so a
user cannot have two approvals of the same kind running at once.
"""

import logging
from typing import Optional

from core.clock import Clock, SystemClock
from core.constants import (
    CLINIC_ADMIN_APPROVAL_WORKFLOW,
    STAFF_APPROVAL_WORKFLOW,
    USER_APPROVAL_WORKFLOW,
)
from db.models.workflow_instance import WorkflowInstance
from workflow.engine import ExecutionEngine

logger = logging.getLogger(__name__)

STAFF_ROLES = ("DENTIST", "RECEPTIONIST")


def determine_workflow_name(role: Optional[str]) -> str:
    """Workflow that approves a signup for ``role``."""
    role = (role or "").upper()
    if role == "CLINIC_ADMIN":
        return CLINIC_ADMIN_APPROVAL_WORKFLOW
    if role in STAFF_ROLES:
        return STAFF_APPROVAL_WORKFLOW
    return USER_APPROVAL_WORKFLOW


class ApprovalRequestService:
    """Starts signup approval workflows on the execution engine."""

    def __init__(self, engine: ExecutionEngine, clock: Optional[Clock] = None):
        self.engine = engine
        self.clock = clock or SystemClock()

    async def create_approval_request(
        self,
        user_id: str,
        request_reason: Optional[str] = None,
        user_role: Optional[str] = None,
    ) -> WorkflowInstance:
        """Start the approval workflow matching ``user_role``.

        Raises:
            DuplicateInstanceError: An approval for this user is still active
        """
        logger.info(f"Creating approval request for user {user_id} with role {user_role}")
        return await self._start(
            determine_workflow_name(user_role),
            user_id,
            instance_name=f"User Approval - {user_id}",
            business_key=f"user_approval_{user_id}",
            priority=5,
            input_data={
                "requestReason": request_reason,
                "requestedRole": user_role,
                "requestType": "USER_SIGNUP",
            },
        )

    async def create_clinic_admin_approval_request(
        self,
        user_id: str,
        clinic_id: str,
        clinic_name: str,
    ) -> WorkflowInstance:
        """Start the clinic admin approval for a user and their clinic."""
        logger.info(f"Creating clinic admin approval request for user {user_id} and clinic {clinic_id}")
        return await self._start(
            CLINIC_ADMIN_APPROVAL_WORKFLOW,
            user_id,
            instance_name=f"Clinic Admin Approval - {user_id}",
            business_key=f"clinic_admin_approval_{user_id}_{clinic_id}",
            priority=3,
            input_data={
                "clinicId": clinic_id,
                "clinicName": clinic_name,
                "requestedRole": "CLINIC_ADMIN",
                "requestType": "CLINIC_ADMIN_SIGNUP",
                "requestReason": f"Clinic admin sign up for {clinic_name}",
            },
        )

    async def create_staff_approval_request(
        self,
        user_id: str,
        clinic_id: str,
        clinic_name: str,
        role: str,
    ) -> WorkflowInstance:
        """Start the staff approval for a dentist or receptionist."""
        logger.info(f"Creating staff approval request for user {user_id} at clinic {clinic_id} as {role}")
        return await self._start(
            STAFF_APPROVAL_WORKFLOW,
            user_id,
            instance_name=f"Staff Approval - {user_id}",
            business_key=f"staff_approval_{user_id}_{clinic_id}",
            priority=4,
            input_data={
                "clinicId": clinic_id,
                "clinicName": clinic_name,
                "requestedRole": role,
                "requestType": "STAFF_SIGNUP",
                "requestReason": f"Clinic staff sign up for {clinic_name}",
            },
        )

    async def _start(
        self,
        workflow_name: str,
        user_id: str,
        instance_name: str,
        business_key: str,
        priority: int,
        input_data: dict,
    ) -> WorkflowInstance:
        input_data = {
            "userId": user_id,
            **input_data,
            "createdAt": self.clock.now().isoformat(),
        }
        return await self.engine.start(
            workflow_name,
            business_key=business_key,
            entity_type="USER",
            entity_id=user_id,
            input_data=input_data,
            auto_start=True,
            instance_name=instance_name,
            priority=priority,
            started_by=user_id,
        )
