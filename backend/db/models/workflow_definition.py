"""Workflow definition model."""

from typing import Optional

from sqlalchemy import JSON, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class WorkflowDefinition(BaseModel):
    """Versioned, immutable workflow template.

    Attributes:
        id: Unique identifier (UUID string)
        name: Workflow name, unique together with version
        version: Monotonic version number per name
        display_name: Human readable name
        description: Workflow description
        category: Free-form grouping (e.g. USER_MANAGEMENT)
        is_active: Inactive definitions cannot be started
        is_system_workflow: Seeded at startup
        timeout_minutes: Instance-level deadline, None for no limit
        max_retry_attempts: Default retry budget for its steps
        auto_start: Start new instances immediately
        requires_approval: Informational flag copied from the template
        configuration: Opaque JSON (``output_mapping`` is honoured)
        input_schema: JSON schema-ish dict; its ``required`` list is enforced
        output_schema: Opaque JSON
        created_by: User who registered the definition
        steps: Ordered step definitions
    """

    __tablename__ = "workflow_definitions"
    __table_args__ = (
        UniqueConstraint("name", "version", name="uq_workflow_definition_name_version"),
    )

    name: Mapped[str] = mapped_column(nullable=False, index=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)
    display_name: Mapped[Optional[str]] = mapped_column(nullable=True)
    description: Mapped[Optional[str]] = mapped_column(nullable=True)
    category: Mapped[Optional[str]] = mapped_column(nullable=True, index=True)
    is_active: Mapped[bool] = mapped_column(default=True, index=True)
    is_system_workflow: Mapped[bool] = mapped_column(default=False)
    timeout_minutes: Mapped[Optional[int]] = mapped_column(nullable=True)
    max_retry_attempts: Mapped[int] = mapped_column(default=3)
    auto_start: Mapped[bool] = mapped_column(default=False)
    requires_approval: Mapped[bool] = mapped_column(default=False)
    configuration: Mapped[dict] = mapped_column(JSON, default=dict)
    input_schema: Mapped[dict] = mapped_column(JSON, default=dict)
    output_schema: Mapped[dict] = mapped_column(JSON, default=dict)
    created_by: Mapped[Optional[str]] = mapped_column(nullable=True)

    # Relationships
    steps: Mapped[list["WorkflowStepDefinition"]] = relationship(
        "WorkflowStepDefinition",
        back_populates="workflow_definition",
        cascade="all, delete-orphan",
        order_by="WorkflowStepDefinition.step_order",
        lazy="selectin",
    )

    def get_step(self, step_definition_id: str) -> Optional["WorkflowStepDefinition"]:
        for step in self.steps:
            if step.id == step_definition_id:
                return step
        return None

    def retry_bound(self, step: "WorkflowStepDefinition") -> int:
        """Effective retry budget for a step of this definition."""
        if step.retry_attempts is not None:
            return step.retry_attempts
        return self.max_retry_attempts

    def step_timeout(self, step: "WorkflowStepDefinition") -> Optional[int]:
        """Effective deadline in minutes for a step; None means no deadline."""
        if step.timeout_minutes is not None:
            return step.timeout_minutes
        return self.timeout_minutes
