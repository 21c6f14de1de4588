"""Step execution model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import StepStatus
from db.base import BaseModel, RowVersionMixin


class WorkflowExecution(RowVersionMixin, BaseModel):
    """Execution record of one step within one workflow instance.

    There is exactly one row per (instance, step definition). Retries reuse
    the row and bump ``retry_count``.

    Attributes:
        workflow_instance_id: Owning instance
        step_definition_id: Step definition being executed
        step_name / step_order / step_type: Copied from the step definition
        status: PENDING, RUNNING, WAITING_APPROVAL, COMPLETED, FAILED, SKIPPED
        input_data / output_data: JSON payloads
        error_message: Last failure reason
        is_retryable: Whether a FAILED status may be retried
        retry_count: Retries performed so far
        assigned_to: Candidate approvers for APPROVAL steps
        approved_by / approval_notes: Approval decision
        timeout_at: Step deadline while RUNNING or WAITING_APPROVAL
        row_version: Optimistic concurrency token
    """

    __tablename__ = "workflow_executions"
    __table_args__ = (
        UniqueConstraint(
            "workflow_instance_id",
            "step_definition_id",
            name="uq_workflow_execution_instance_step",
        ),
    )

    workflow_instance_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_instances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_definition_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_step_definitions.id"),
        nullable=False,
    )
    step_name: Mapped[str] = mapped_column(nullable=False)
    step_order: Mapped[int] = mapped_column(nullable=False)
    step_type: Mapped[str] = mapped_column(nullable=False)
    status: Mapped[str] = mapped_column(
        default=StepStatus.PENDING.value, index=True
    )
    input_data: Mapped[dict] = mapped_column(JSON, default=dict)
    output_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(nullable=True)
    is_retryable: Mapped[bool] = mapped_column(default=True)
    retry_count: Mapped[int] = mapped_column(default=0)
    assigned_to: Mapped[list] = mapped_column(JSON, default=list)
    approved_by: Mapped[Optional[str]] = mapped_column(nullable=True)
    approval_notes: Mapped[Optional[str]] = mapped_column(nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    timeout_at: Mapped[Optional[datetime]] = mapped_column(nullable=True, index=True)

    # Relationships
    workflow_instance: Mapped["WorkflowInstance"] = relationship(
        "WorkflowInstance", back_populates="executions", lazy="noload"
    )
