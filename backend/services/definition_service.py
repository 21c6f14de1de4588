"""Definition store: versioned, immutable workflow templates."""

import logging
from collections import defaultdict
from typing import Any, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import get_settings
from core.constants import StepType
from core.exceptions import (
    DuplicateVersionError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from db.models.workflow_definition import WorkflowDefinition
from db.models.workflow_instance import WorkflowInstance
from db.models.workflow_step_definition import WorkflowStepDefinition
from services.base import BaseService

logger = logging.getLogger(__name__)

_DEFINITION_FIELDS = (
    "display_name",
    "description",
    "category",
    "is_active",
    "is_system_workflow",
    "timeout_minutes",
    "max_retry_attempts",
    "auto_start",
    "requires_approval",
    "configuration",
    "input_schema",
    "output_schema",
    "created_by",
)

_STEP_FIELDS = (
    "step_name",
    "step_order",
    "step_type",
    "description",
    "is_required",
    "is_parallel",
    "timeout_minutes",
    "retry_attempts",
    "condition_expression",
    "approval_roles",
    "service_endpoint",
    "notification_template",
    "configuration",
    "input_mapping",
    "output_mapping",
)


def validate_steps(steps: list[dict]) -> None:
    """Check the structural rules of a step list.

    Raises:
        ValidationError: On the first violated rule
    """
    if not steps:
        raise ValidationError("Workflow definition must have at least one step")

    names = set()
    by_order = defaultdict(list)
    for step in steps:
        name = step.get("step_name")
        if not name:
            raise ValidationError("Every step needs a step_name")
        if name in names:
            raise ValidationError(f"Duplicate step name '{name}'")
        names.add(name)

        order = step.get("step_order")
        if not isinstance(order, int) or isinstance(order, bool) or order < 0:
            raise ValidationError(f"Step '{name}' has an invalid step_order: {order!r}")
        by_order[order].append(step)

        try:
            step_type = StepType(step.get("step_type"))
        except ValueError:
            raise ValidationError(
                f"Step '{name}' has unknown step_type {step.get('step_type')!r}"
            )

        if step_type == StepType.APPROVAL and not step.get("approval_roles"):
            raise ValidationError(f"Approval step '{name}' must declare approval_roles")
        if step_type == StepType.SERVICE_CALL and not step.get("service_endpoint"):
            raise ValidationError(f"Service call step '{name}' must declare service_endpoint")

        for field in ("timeout_minutes", "retry_attempts"):
            value = step.get(field)
            if value is not None and value < 0:
                raise ValidationError(f"Step '{name}' has a negative {field}")

    for order, group in by_order.items():
        if len(group) > 1 and not all(s.get("is_parallel") for s in group):
            names_in_group = ", ".join(s["step_name"] for s in group)
            raise ValidationError(
                f"Steps sharing order {order} must all be parallel: {names_in_group}"
            )


class DefinitionService(BaseService[WorkflowDefinition]):
    """Service for registering and looking up workflow definitions."""

    def __init__(self, db: AsyncSession):
        super().__init__(WorkflowDefinition, db)

    async def register_definition(self, data: dict[str, Any]) -> WorkflowDefinition:
        """Register a new definition version.

        Args:
            data: Definition fields plus a ``steps`` list. A missing
                ``version`` means "next version" for that name.

        Returns:
            The persisted definition with its steps loaded

        Raises:
            ValidationError: Malformed definition or a version below the
                current highest one
            DuplicateVersionError: (name, version) already registered
        """
        name = data.get("name")
        if not name:
            raise ValidationError("Workflow definition name is required")
        steps = data.get("steps") or []
        validate_steps(steps)

        for field in ("timeout_minutes", "max_retry_attempts"):
            value = data.get(field)
            if value is not None and value < 0:
                raise ValidationError(f"{field} must not be negative")

        highest = await self.get_highest_version(name)
        version = data.get("version")
        if version is None:
            version = (highest or 0) + 1
        elif version < 1:
            raise ValidationError("version must be a positive integer")
        elif await self.get_by_name_and_version(name, version, required=False):
            raise DuplicateVersionError(
                f"Workflow definition {name} version {version} already exists"
            )
        elif highest is not None and version < highest:
            raise ValidationError(
                f"version {version} is lower than current version {highest} of {name}"
            )

        definition = WorkflowDefinition(
            name=name,
            version=version,
            **{f: data[f] for f in _DEFINITION_FIELDS if data.get(f) is not None},
        )
        if data.get("max_retry_attempts") is None:
            definition.max_retry_attempts = get_settings().DEFAULT_MAX_RETRY_ATTEMPTS
        definition.steps = [
            WorkflowStepDefinition(
                **{f: step[f] for f in _STEP_FIELDS if step.get(f) is not None}
            )
            for step in steps
        ]
        for step in definition.steps:
            step.step_type = StepType(step.step_type).value

        self.db.add(definition)
        try:
            await self.db.flush()
        except IntegrityError:
            raise DuplicateVersionError(
                f"Workflow definition {name} version {version} already exists"
            )

        logger.info(f"Registered workflow definition {name} v{version} ({len(steps)} steps)")
        return await self.get_definition(definition.id)

    # ─── Lookups ──────────────────────────────────────────

    async def get_definition(self, definition_id: str) -> WorkflowDefinition:
        return await self.get_or_404(definition_id)

    async def get_highest_version(self, name: str) -> Optional[int]:
        result = await self.db.execute(
            select(func.max(WorkflowDefinition.version)).where(
                WorkflowDefinition.name == name
            )
        )
        return result.scalar()

    async def get_latest(self, name: str) -> WorkflowDefinition:
        """Highest-version active definition for ``name``."""
        result = await self.db.execute(
            select(WorkflowDefinition)
            .where(
                WorkflowDefinition.name == name,
                WorkflowDefinition.is_active == True,
            )
            .order_by(WorkflowDefinition.version.desc())
            .limit(1)
        )
        definition = result.scalar_one_or_none()
        if definition is None:
            raise NotFoundError(f"No active workflow definition named {name}")
        return definition

    async def get_by_name_and_version(
        self, name: str, version: int, required: bool = True
    ) -> Optional[WorkflowDefinition]:
        result = await self.db.execute(
            select(WorkflowDefinition).where(
                WorkflowDefinition.name == name,
                WorkflowDefinition.version == version,
            )
        )
        definition = result.scalar_one_or_none()
        if definition is None and required:
            raise NotFoundError(f"Workflow definition {name} version {version} not found")
        return definition

    async def list_active(self, category: Optional[str] = None) -> Sequence[WorkflowDefinition]:
        return await self.list(
            filters={"is_active": True, "category": category},
            order_by="name",
            order_desc=False,
        )

    async def list_versions(self, name: str) -> Sequence[WorkflowDefinition]:
        versions = await self.list(filters={"name": name}, order_by="version", order_desc=False)
        if not versions:
            raise NotFoundError(f"No workflow definition named {name}")
        return versions

    async def exists(self, name: str) -> bool:
        return await self.count(name=name) > 0

    # ─── Mutations ────────────────────────────────────────

    async def set_active(self, definition_id: str, active: bool) -> WorkflowDefinition:
        """Toggle ``is_active``. Pinned instances are unaffected."""
        definition = await self.get_definition(definition_id)
        definition.is_active = active
        await self.db.flush()
        logger.info(
            f"Workflow definition {definition.name} v{definition.version} "
            f"{'activated' if active else 'deactivated'}"
        )
        return definition

    async def delete_definition(self, definition_id: str) -> None:
        """Delete a definition that no instance references."""
        definition = await self.get_definition(definition_id)
        result = await self.db.execute(
            select(func.count())
            .select_from(WorkflowInstance)
            .where(WorkflowInstance.workflow_definition_id == definition_id)
        )
        if (result.scalar() or 0) > 0:
            raise InvalidStateError(
                f"Workflow definition {definition.name} v{definition.version} "
                "is referenced by workflow instances"
            )
        await self.delete(definition)
        logger.info(f"Deleted workflow definition {definition.name} v{definition.version}")
