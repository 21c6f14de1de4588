"""Workflow step definition model."""

from typing import Optional

from sqlalchemy import JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from db.base import BaseModel


class WorkflowStepDefinition(BaseModel):
    """One step of a workflow definition.

    Steps run in ``step_order``; steps sharing an order run together and
    must all be ``is_parallel``.
    """

    __tablename__ = "workflow_step_definitions"
    __table_args__ = (
        UniqueConstraint(
            "workflow_definition_id", "step_name", name="uq_step_definition_name"
        ),
    )

    workflow_definition_id: Mapped[str] = mapped_column(
        ForeignKey("workflow_definitions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_name: Mapped[str] = mapped_column(nullable=False)
    step_order: Mapped[int] = mapped_column(nullable=False)
    step_type: Mapped[str] = mapped_column(nullable=False)
    description: Mapped[Optional[str]] = mapped_column(nullable=True)
    is_required: Mapped[bool] = mapped_column(default=True)
    is_parallel: Mapped[bool] = mapped_column(default=False)
    timeout_minutes: Mapped[Optional[int]] = mapped_column(nullable=True)
    retry_attempts: Mapped[Optional[int]] = mapped_column(nullable=True)
    condition_expression: Mapped[Optional[str]] = mapped_column(nullable=True)
    approval_roles: Mapped[list] = mapped_column(JSON, default=list)
    service_endpoint: Mapped[Optional[str]] = mapped_column(nullable=True)
    notification_template: Mapped[Optional[str]] = mapped_column(nullable=True)
    configuration: Mapped[dict] = mapped_column(JSON, default=dict)
    input_mapping: Mapped[dict] = mapped_column(JSON, default=dict)
    output_mapping: Mapped[dict] = mapped_column(JSON, default=dict)

    # Relationships
    workflow_definition: Mapped["WorkflowDefinition"] = relationship(
        "WorkflowDefinition", back_populates="steps", lazy="noload"
    )
