"""Built-in handlers used by the approval workflows.

- ``validate_entity_data``: checks that required input fields are present
- ``update_entity_approval_status``: writes the decision to the identity service
- ``noop``: records that the step ran; fallback for unknown handler keys
"""

from datetime import datetime, timezone
from typing import Any, Dict

from tasks.base_task import BaseTask, TaskResult


class ValidateEntityDataTask(BaseTask):
    """Validate that the workflow input carries the fields the process needs.

    Config:
        required_fields: list of input keys that must be present and non-empty
    """

    task_type = "validate_entity_data"
    display_name = "Validate Entity Data"
    description = "Check required fields of the workflow input"

    async def execute(self, config: Dict[str, Any], context: Dict[str, Any]) -> TaskResult:
        input_data = context.get("input", {})
        required = config.get("required_fields", [])
        missing = [f for f in required if input_data.get(f) in (None, "")]
        if missing:
            return TaskResult(
                success=False,
                error=f"Missing required fields: {', '.join(missing)}",
            )
        return TaskResult(
            success=True,
            output={"valid": True, "validatedFields": list(required)},
        )


class UpdateEntityApprovalStatusTask(BaseTask):
    """Record an approval outcome on a user or clinic via the identity port.

    Config:
        entity_type: ``USER`` or ``CLINIC`` (default: instance entity_type)
        entity_id: target id (default: instance entity_id)
        status: approval status to write (default ``APPROVED``)
        approval_step: step whose output holds ``approved_by`` / ``notes``
    """

    task_type = "update_entity_approval_status"
    display_name = "Update Approval Status"
    description = "Write an approval decision to the identity service"

    async def execute(self, config: Dict[str, Any], context: Dict[str, Any]) -> TaskResult:
        identity = self.dependencies.get("identity")
        if identity is None:
            return TaskResult(success=False, error="Identity service is not configured")

        entity_type = config.get("entity_type") or context.get("entity_type") or "USER"
        entity_id = config.get("entity_id") or context.get("entity_id")
        if entity_id is None:
            return TaskResult(success=False, error="No entity_id to update")

        decision = context.get("steps", {}).get(config.get("approval_step"), {}) or {}
        output = await identity.update_entity_approval_status(
            entity_type=str(entity_type),
            entity_id=str(entity_id),
            status=config.get("status", "APPROVED"),
            approver_id=decision.get("approved_by"),
            notes=decision.get("approval_notes"),
        )
        return TaskResult(success=True, output=output)


class NoOpTask(BaseTask):
    """Completes immediately, recording the step name and time."""

    task_type = "noop"
    display_name = "No-op"
    description = "Record that the step ran"

    async def execute(self, config: Dict[str, Any], context: Dict[str, Any]) -> TaskResult:
        return TaskResult(
            success=True,
            output={
                "stepName": context.get("step_name"),
                "executedAt": datetime.now(timezone.utc).isoformat(),
            },
        )


APPROVAL_TASK_TYPES = {
    "validate_entity_data": ValidateEntityDataTask,
    "update_entity_approval_status": UpdateEntityApprovalStatusTask,
    "noop": NoOpTask,
}
