"""Workflow instance model."""

from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, ForeignKey, Index, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.constants import WorkflowStatus
from db.base import BaseModel, RowVersionMixin

_ACTIVE_STATUS_CLAUSE = text("status IN ('CREATED', 'RUNNING', 'WAITING')")


class WorkflowInstance(RowVersionMixin, BaseModel):
    """A running (or finished) instance of a pinned workflow definition.

    Attributes:
        workflow_definition_id: Definition row the instance was started from
        status: CREATED, RUNNING, WAITING or one of the terminal statuses
        business_key: Caller-supplied deduplication key
        entity_type / entity_id: Business entity the workflow acts on
        priority: 1 (highest) to 10, default 5
        input_data / output_data / context_data: JSON payloads
        current_step_order / current_step_name: Most recently materialized step
        error_message: Failure, cancellation or timeout reason
        retry_count: Total step retries performed for this instance
        started_by: User who started the instance
        timeout_at: Instance-level deadline
        row_version: Optimistic concurrency token
    """

    __tablename__ = "workflow_instances"
    __table_args__ = (
        # At most one non-terminal instance per business key
        Index(
            "uq_workflow_instance_active_business_key",
            "business_key",
            unique=True,
            sqlite_where=_ACTIVE_STATUS_CLAUSE,
            postgresql_where=_ACTIVE_STATUS_CLAUSE,
        ),
    )

    workflow_definition_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_definitions.id"),
        nullable=False,
        index=True,
    )
    instance_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(
        default=WorkflowStatus.CREATED.value, index=True
    )
    business_key: Mapped[Optional[str]] = mapped_column(nullable=True)
    entity_type: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    entity_id: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    priority: Mapped[int] = mapped_column(default=5)
    input_data: Mapped[dict] = mapped_column(JSON, default=dict)
    output_data: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    context_data: Mapped[dict] = mapped_column(JSON, default=dict)
    current_step_order: Mapped[Optional[int]] = mapped_column(nullable=True)
    current_step_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    error_message: Mapped[Optional[str]] = mapped_column(nullable=True)
    retry_count: Mapped[int] = mapped_column(default=0)
    started_by: Mapped[Optional[str]] = mapped_column(nullable=True)
    started_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(nullable=True)
    timeout_at: Mapped[Optional[datetime]] = mapped_column(nullable=True, index=True)

    # Relationships
    workflow_definition: Mapped["WorkflowDefinition"] = relationship(
        "WorkflowDefinition", lazy="noload"
    )
    executions: Mapped[list["WorkflowExecution"]] = relationship(
        "WorkflowExecution",
        back_populates="workflow_instance",
        cascade="all, delete-orphan",
        order_by="WorkflowExecution.step_order",
        lazy="noload",
    )

    @property
    def is_terminal(self) -> bool:
        return WorkflowStatus(self.status).is_terminal
