"""Constants and enums for the workflow orchestration engine."""

from enum import Enum


class WorkflowStatus(str, Enum):
    """Workflow instance status."""

    CREATED = "CREATED"
    RUNNING = "RUNNING"
    WAITING = "WAITING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    TIMEOUT = "TIMEOUT"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_WORKFLOW_STATUSES


class StepStatus(str, Enum):
    """Status of a single step execution."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    WAITING_APPROVAL = "WAITING_APPROVAL"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    SKIPPED = "SKIPPED"


class StepType(str, Enum):
    """Kind of work a step performs."""

    AUTOMATIC = "AUTOMATIC"
    APPROVAL = "APPROVAL"
    NOTIFICATION = "NOTIFICATION"
    SERVICE_CALL = "SERVICE_CALL"
    CONDITIONAL = "CONDITIONAL"


TERMINAL_WORKFLOW_STATUSES = frozenset({
    WorkflowStatus.COMPLETED,
    WorkflowStatus.FAILED,
    WorkflowStatus.CANCELLED,
    WorkflowStatus.TIMEOUT,
})

ACTIVE_WORKFLOW_STATUSES = frozenset({
    WorkflowStatus.CREATED,
    WorkflowStatus.RUNNING,
    WorkflowStatus.WAITING,
})

# FAILED is not listed: whether a failed execution is still open
# depends on its retry budget.
OPEN_STEP_STATUSES = frozenset({
    StepStatus.PENDING,
    StepStatus.RUNNING,
    StepStatus.WAITING_APPROVAL,
})

# Approval-request workflows seeded at startup
USER_APPROVAL_WORKFLOW = "user_approval_workflow"
CLINIC_ADMIN_APPROVAL_WORKFLOW = "clinic_admin_approval_workflow"
STAFF_APPROVAL_WORKFLOW = "staff_approval_workflow"

APPROVAL_TIMEOUT_MESSAGE = "approval timeout"
STEP_TIMEOUT_MESSAGE = "step timeout"
WORKFLOW_TIMEOUT_MESSAGE = "workflow timeout"
