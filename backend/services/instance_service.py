"""Instance store: workflow instances and step executions.

Every status change goes through ``transition``, a compare-and-swap
UPDATE that matches on the row id, the allowed source statuses and the
``row_version`` read by the caller. When no row matches, another writer
changed the row first and ``ConcurrencyConflictError`` is raised.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from core.constants import (
    ACTIVE_WORKFLOW_STATUSES,
    StepStatus,
    WorkflowStatus,
)
from core.exceptions import ConcurrencyConflictError, DuplicateInstanceError
from db.models.workflow_execution import WorkflowExecution
from db.models.workflow_instance import WorkflowInstance
from db.models.workflow_step_definition import WorkflowStepDefinition
from services.base import BaseService

logger = logging.getLogger(__name__)


def _values(statuses: Iterable[Enum]) -> list:
    return [s.value for s in statuses]


class _TransitionMixin:
    """Compare-and-swap status updates for models with ``row_version``."""

    model: Any
    db: AsyncSession

    async def transition(self, row, expected: Iterable[Enum], **values: Any):
        """Move ``row`` to new values if it is still in an expected status.

        Args:
            row: Instance or execution as last read by the caller
            expected: Statuses the row may currently be in
            **values: Columns to set; enums are stored by value

        Returns:
            The refreshed row

        Raises:
            ConcurrencyConflictError: Status or row_version changed since read
        """
        values = {k: (v.value if isinstance(v, Enum) else v) for k, v in values.items()}
        stmt = (
            update(self.model)
            .where(
                self.model.id == row.id,
                self.model.status.in_(_values(expected)),
                self.model.row_version == row.row_version,
            )
            .values(**values, row_version=row.row_version + 1)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            raise ConcurrencyConflictError(
                f"{self.model.__name__} {row.id} changed concurrently "
                f"(expected status in {_values(expected)})"
            )
        await self.db.refresh(row)
        return row


class InstanceService(_TransitionMixin, BaseService[WorkflowInstance]):
    """Persistence for workflow instances."""

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowInstance, db)

    async def create_instance(self, data: dict[str, Any]) -> WorkflowInstance:
        try:
            return await self.create(data)
        except IntegrityError:
            raise DuplicateInstanceError(
                f"Active workflow instance already exists for business key "
                f"{data.get('business_key')}"
            )

    async def find_active_by_business_key(self, business_key: str) -> Optional[WorkflowInstance]:
        result = await self.db.execute(
            select(WorkflowInstance).where(
                WorkflowInstance.business_key == business_key,
                WorkflowInstance.status.in_(_values(ACTIVE_WORKFLOW_STATUSES)),
            )
        )
        return result.scalars().first()

    async def list_instances(
        self,
        status: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> Sequence[WorkflowInstance]:
        return await self.list(filters={
            "status": status,
            "entity_type": entity_type,
            "entity_id": entity_id,
        })

    async def timed_out_instances(self, now: datetime) -> Sequence[WorkflowInstance]:
        """Active instances whose own deadline has passed."""
        result = await self.db.execute(
            select(WorkflowInstance).where(
                WorkflowInstance.status.in_(_values(ACTIVE_WORKFLOW_STATUSES)),
                WorkflowInstance.timeout_at.is_not(None),
                WorkflowInstance.timeout_at <= now,
            )
        )
        return result.scalars().all()


class ExecutionService(_TransitionMixin, BaseService[WorkflowExecution]):
    """Persistence for step executions."""

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowExecution, db)

    async def for_instance(self, instance_id: str) -> Sequence[WorkflowExecution]:
        result = await self.db.execute(
            select(WorkflowExecution)
            .where(WorkflowExecution.workflow_instance_id == instance_id)
            .order_by(WorkflowExecution.step_order, WorkflowExecution.created_at)
        )
        return result.scalars().all()

    async def create_execution(
        self,
        instance: WorkflowInstance,
        step: WorkflowStepDefinition,
        status: StepStatus,
        **values: Any,
    ) -> WorkflowExecution:
        return await self.create({
            "workflow_instance_id": instance.id,
            "step_definition_id": step.id,
            "step_name": step.step_name,
            "step_order": step.step_order,
            "step_type": step.step_type,
            "status": status.value,
            **values,
        })

    async def timed_out(self, now: datetime) -> Sequence[WorkflowExecution]:
        """RUNNING or WAITING_APPROVAL executions past their deadline."""
        result = await self.db.execute(
            select(WorkflowExecution).where(
                WorkflowExecution.status.in_(
                    _values((StepStatus.RUNNING, StepStatus.WAITING_APPROVAL))
                ),
                WorkflowExecution.timeout_at.is_not(None),
                WorkflowExecution.timeout_at <= now,
            )
        )
        return result.scalars().all()

    async def failed_on_running_instances(self) -> Sequence[WorkflowExecution]:
        """FAILED executions whose instance is still RUNNING."""
        result = await self.db.execute(
            select(WorkflowExecution)
            .join(
                WorkflowInstance,
                WorkflowInstance.id == WorkflowExecution.workflow_instance_id,
            )
            .where(
                WorkflowExecution.status == StepStatus.FAILED.value,
                WorkflowInstance.status == WorkflowStatus.RUNNING.value,
            )
            .order_by(WorkflowExecution.updated_at)
        )
        return result.scalars().all()

    async def waiting_approvals(self) -> list[tuple[WorkflowExecution, WorkflowStepDefinition]]:
        """WAITING_APPROVAL executions of active instances with their steps."""
        result = await self.db.execute(
            select(WorkflowExecution, WorkflowStepDefinition)
            .join(
                WorkflowStepDefinition,
                WorkflowStepDefinition.id == WorkflowExecution.step_definition_id,
            )
            .join(
                WorkflowInstance,
                WorkflowInstance.id == WorkflowExecution.workflow_instance_id,
            )
            .where(
                WorkflowExecution.status == StepStatus.WAITING_APPROVAL.value,
                WorkflowInstance.status.in_(_values(ACTIVE_WORKFLOW_STATUSES)),
            )
            .order_by(WorkflowInstance.priority, WorkflowExecution.started_at)
        )
        return [tuple(row) for row in result.all()]
