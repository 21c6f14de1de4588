"""Built-in system workflows seeded at startup.

Signup approvals for the three account kinds share one shape:

    validate input -> notify approvers -> wait for approval
        -> write the decision to the identity service -> notify the applicant
"""

import logging

from core.constants import (
    CLINIC_ADMIN_APPROVAL_WORKFLOW,
    STAFF_APPROVAL_WORKFLOW,
    USER_APPROVAL_WORKFLOW,
    StepType,
)
from db.database import UnitOfWork
from services.definition_service import DefinitionService

logger = logging.getLogger(__name__)

ONE_WEEK_MINUTES = 7 * 24 * 60
THREE_DAYS_MINUTES = 3 * 24 * 60


def _approval_workflow(
    name: str,
    display_name: str,
    description: str,
    template_prefix: str,
    approver_role: str,
    approval_timeout: int,
    required_fields: list,
    update_clinic: bool = False,
) -> dict:
    approval_step = f"await_{approver_role.lower()}_approval"
    steps = [
        {
            "step_name": "validate_user_data",
            "step_order": 1,
            "step_type": StepType.AUTOMATIC.value,
            "description": "Validate the signup data",
            "configuration": {
                "handler": "validate_entity_data",
                "required_fields": required_fields,
            },
        },
        {
            "step_name": "send_approval_notification",
            "step_order": 2,
            "step_type": StepType.NOTIFICATION.value,
            "description": f"Notify {approver_role} users about the request",
            "notification_template": f"{template_prefix}_request",
            "configuration": {"recipient": approver_role, "channel": "EMAIL"},
        },
        {
            "step_name": approval_step,
            "step_order": 3,
            "step_type": StepType.APPROVAL.value,
            "description": f"Wait for {approver_role} approval",
            "approval_roles": [approver_role],
            "timeout_minutes": approval_timeout,
        },
        {
            "step_name": "update_user_status",
            "step_order": 4,
            "step_type": StepType.AUTOMATIC.value,
            "description": "Record the approval on the user account",
            "configuration": {
                "handler": "update_entity_approval_status",
                "entity_type": "USER",
                "entity_id": "{{ userId }}",
                "approval_step": approval_step,
            },
        },
    ]
    if update_clinic:
        steps.append({
            "step_name": "update_clinic_status",
            "step_order": 5,
            "step_type": StepType.AUTOMATIC.value,
            "description": "Record the approval on the clinic",
            "configuration": {
                "handler": "update_entity_approval_status",
                "entity_type": "CLINIC",
                "entity_id": "{{ clinicId }}",
                "approval_step": approval_step,
            },
        })
    steps.append({
        "step_name": "send_approval_result",
        "step_order": len(steps) + 1,
        "step_type": StepType.NOTIFICATION.value,
        "description": "Tell the applicant the outcome",
        "notification_template": f"{template_prefix}_result",
        "configuration": {"recipient": "{{ userId }}", "channel": "EMAIL"},
    })

    return {
        "name": name,
        "display_name": display_name,
        "description": description,
        "category": "USER_MANAGEMENT",
        "is_system_workflow": True,
        "timeout_minutes": ONE_WEEK_MINUTES,
        "max_retry_attempts": 3,
        "requires_approval": True,
        "input_schema": {"required": required_fields},
        "steps": steps,
    }


SYSTEM_WORKFLOWS = [
    _approval_workflow(
        USER_APPROVAL_WORKFLOW,
        "User Approval Workflow",
        "Approval of new user signups by a system administrator",
        template_prefix="user_approval",
        approver_role="SYSTEM_ADMIN",
        approval_timeout=ONE_WEEK_MINUTES,
        required_fields=["userId"],
    ),
    _approval_workflow(
        CLINIC_ADMIN_APPROVAL_WORKFLOW,
        "Clinic Admin Approval Workflow",
        "Approval of clinic administrator signups and their clinic",
        template_prefix="clinic_admin_approval",
        approver_role="SYSTEM_ADMIN",
        approval_timeout=ONE_WEEK_MINUTES,
        required_fields=["userId", "clinicId"],
        update_clinic=True,
    ),
    _approval_workflow(
        STAFF_APPROVAL_WORKFLOW,
        "Staff Approval Workflow",
        "Approval of dentist and receptionist signups by their clinic admin",
        template_prefix="staff_approval",
        approver_role="CLINIC_ADMIN",
        approval_timeout=THREE_DAYS_MINUTES,
        required_fields=["userId"],
    ),
]


async def seed_system_workflows(uow: UnitOfWork) -> list[str]:
    """Register every system workflow that has no definition yet.

    Returns:
        Names of the workflows that were created
    """
    created = []
    async with uow.transaction() as session:
        definitions = DefinitionService(session)
        for template in SYSTEM_WORKFLOWS:
            if await definitions.exists(template["name"]):
                continue
            await definitions.register_definition(template)
            created.append(template["name"])

    if created:
        logger.info(f"Seeded system workflows: {', '.join(created)}")
    return created
