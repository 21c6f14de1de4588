"""Step Dispatcher — performs one step execution.

``dispatch`` switches on the step type and returns a ``DispatchOutcome``
without touching the database. ``run`` wraps it in the claim / perform /
commit protocol:

1. claim: PENDING -> RUNNING in its own transaction, only while the
   instance is RUNNING
2. perform: the type-specific action, outside any transaction
3. commit: RUNNING -> outcome status, compare-and-swap on the claimed
   row_version; discarded when the row moved on (supervisor timeout) or
   the instance ended (cancellation, instance timeout). A step finishing
   while its instance is suspended is recorded, and the resume advances
   past it.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

import structlog

from core.clock import Clock, SystemClock
from core.constants import StepStatus, StepType, WorkflowStatus
from core.exceptions import ConcurrencyConflictError, DispatchError, ExpressionError
from db.database import UnitOfWork
from db.models.workflow_definition import WorkflowDefinition
from db.models.workflow_execution import WorkflowExecution
from db.models.workflow_instance import WorkflowInstance
from db.models.workflow_step_definition import WorkflowStepDefinition
from integrations.identity import IdentityPort
from integrations.service_call import ServiceCallPort
from notifications.client import NotificationChannel, NotificationPort
from services.definition_service import DefinitionService
from services.instance_service import ExecutionService, InstanceService
from tasks.registry import TaskRegistry
from workflow.conditions import (
    EvaluationContext,
    ExpressionEvaluator,
    context_for,
    merged_context,
)

logger = structlog.get_logger(__name__)

# A suspended instance still accepts the result of a step already in flight
_LIVE_INSTANCE = [WorkflowStatus.RUNNING, WorkflowStatus.WAITING]

APPROVAL_NOTIFICATION_TEMPLATE = "step_approval_required"

# ``{userId}`` style placeholders; ``{{ expr }}`` templates are left alone
_PLACEHOLDER = re.compile(r"(?<!\{)\{(\w+)\}(?!\})")


@dataclass
class DispatchOutcome:
    """Result of performing a step."""

    status: StepStatus
    output: dict = field(default_factory=dict)
    error: Optional[str] = None
    retryable: bool = True
    assigned_to: list = field(default_factory=list)
    timeout_at: Optional[datetime] = None

    @classmethod
    def completed(cls, output: Optional[dict] = None) -> "DispatchOutcome":
        return cls(status=StepStatus.COMPLETED, output=output or {})

    @classmethod
    def failed(cls, error: str, retryable: bool = True) -> "DispatchOutcome":
        return cls(status=StepStatus.FAILED, error=error, retryable=retryable)


class StepDispatcher:
    """Performs AUTOMATIC, APPROVAL, NOTIFICATION and SERVICE_CALL steps."""

    def __init__(
        self,
        uow: UnitOfWork,
        identity: IdentityPort,
        notifications: NotificationPort,
        services: ServiceCallPort,
        task_registry: Optional[TaskRegistry] = None,
        clock: Optional[Clock] = None,
    ):
        self.uow = uow
        self.identity = identity
        self.notifications = notifications
        self.services = services
        self.task_registry = task_registry or TaskRegistry()
        self.task_registry.set_dependencies(
            identity=identity, notifications=notifications, services=services
        )
        self.clock = clock or SystemClock()

    # ─── Claim / perform / commit ─────────────────────────────

    async def run(self, execution_id: str) -> Optional[DispatchOutcome]:
        """Dispatch one PENDING execution.

        Returns:
            The committed outcome, or None when the execution was not
            dispatched or its outcome was discarded.
        """
        claimed = await self._claim(execution_id)
        if claimed is None:
            return None
        execution, step, instance, definition, ctx = claimed

        outcome = await self.dispatch(execution, step, instance, definition=definition, ctx=ctx)

        return await self._commit(execution, step, ctx, outcome)

    async def _claim(self, execution_id: str):
        async with self.uow.transaction() as session:
            executions = ExecutionService(session)
            execution = await executions.get_by_id(execution_id)
            if execution is None or execution.status != StepStatus.PENDING.value:
                logger.debug("dispatch_skipped_not_pending", execution_id=execution_id)
                return None

            instance = await InstanceService(session).get_by_id(execution.workflow_instance_id)
            if instance.status != WorkflowStatus.RUNNING.value:
                logger.info(
                    "dispatch_skipped_instance_not_running",
                    execution_id=execution_id,
                    instance_id=instance.id,
                    instance_status=instance.status,
                )
                return None

            definition = await DefinitionService(session).get_definition(
                instance.workflow_definition_id
            )
            step = definition.get_step(execution.step_definition_id)
            ctx = context_for(instance, await executions.for_instance(instance.id))

            try:
                await executions.transition(
                    execution,
                    [StepStatus.PENDING],
                    status=StepStatus.RUNNING,
                    started_at=self.clock.now(),
                    timeout_at=self.clock.after(definition.step_timeout(step)),
                    error_message=None,
                )
            except ConcurrencyConflictError:
                logger.info("dispatch_claim_lost", execution_id=execution_id)
                return None

        logger.info(
            "step_claimed",
            execution_id=execution.id,
            instance_id=instance.id,
            step_name=step.step_name,
            step_type=step.step_type,
            attempt=execution.retry_count + 1,
        )
        return execution, step, instance, definition, ctx

    async def _commit(
        self,
        claimed: WorkflowExecution,
        step: WorkflowStepDefinition,
        ctx: EvaluationContext,
        outcome: DispatchOutcome,
    ) -> Optional[DispatchOutcome]:
        try:
            async with self.uow.transaction() as session:
                executions = ExecutionService(session)
                instances = InstanceService(session)
                current = await executions.get_by_id(claimed.id)
                instance = await instances.get_by_id(claimed.workflow_instance_id)
                if (
                    WorkflowStatus(instance.status).is_terminal
                    or current.row_version != claimed.row_version
                ):
                    logger.warning(
                        "dispatch_result_discarded",
                        execution_id=claimed.id,
                        instance_status=instance.status,
                        execution_status=current.status,
                        outcome=outcome.status.value,
                    )
                    return None

                context_data = None
                if outcome.status == StepStatus.COMPLETED and step.output_mapping:
                    try:
                        context_data = merged_context(
                            instance.context_data, step.output_mapping, ctx, outcome.output
                        )
                    except ExpressionError as e:
                        outcome = DispatchOutcome.failed(e.message, retryable=False)

                await executions.transition(
                    current, [StepStatus.RUNNING], **self._outcome_values(outcome)
                )
                if context_data is not None:
                    await instances.transition(
                        instance, _LIVE_INSTANCE, context_data=context_data
                    )
        except ConcurrencyConflictError:
            logger.warning("dispatch_result_discarded", execution_id=claimed.id)
            return None

        logger.info(
            "step_dispatched",
            execution_id=claimed.id,
            step_name=claimed.step_name,
            status=outcome.status.value,
            error=outcome.error,
        )
        return outcome

    def _outcome_values(self, outcome: DispatchOutcome) -> dict[str, Any]:
        values: dict[str, Any] = {"status": outcome.status}
        if outcome.status == StepStatus.WAITING_APPROVAL:
            values.update(assigned_to=outcome.assigned_to, timeout_at=outcome.timeout_at)
        elif outcome.status == StepStatus.FAILED:
            values.update(
                error_message=outcome.error,
                is_retryable=outcome.retryable,
                completed_at=self.clock.now(),
                timeout_at=None,
            )
        else:
            values.update(
                output_data=outcome.output, completed_at=self.clock.now(), timeout_at=None
            )
        return values

    # ─── Dispatch ─────────────────────────────────────────────

    async def dispatch(
        self,
        execution: WorkflowExecution,
        step: WorkflowStepDefinition,
        instance: WorkflowInstance,
        definition: Optional[WorkflowDefinition] = None,
        ctx: Optional[EvaluationContext] = None,
    ) -> DispatchOutcome:
        """Perform the step and describe the result. Never raises."""
        ctx = ctx or context_for(instance, [])
        handlers = {
            StepType.AUTOMATIC: self._dispatch_automatic,
            StepType.APPROVAL: self._dispatch_approval,
            StepType.NOTIFICATION: self._dispatch_notification,
            StepType.SERVICE_CALL: self._dispatch_service_call,
            StepType.CONDITIONAL: self._dispatch_conditional,
        }
        handler = handlers[StepType(step.step_type)]
        try:
            return await handler(execution, step, instance, definition, ctx)
        except ExpressionError as e:
            return DispatchOutcome.failed(e.message, retryable=False)
        except DispatchError as e:
            return DispatchOutcome.failed(e.message, retryable=e.retryable)
        except Exception as e:
            logger.exception("step_dispatch_error", step_name=step.step_name)
            return DispatchOutcome.failed(str(e) or type(e).__name__)

    async def _dispatch_automatic(self, execution, step, instance, definition, ctx):
        config = ExpressionEvaluator.resolve(step.configuration or {}, ctx)
        task = self.task_registry.resolve(
            config.get("handler"), step.service_endpoint, step.step_name
        )
        result = await task.run(config, {
            "instance_id": instance.id,
            "step_name": step.step_name,
            "entity_type": instance.entity_type,
            "entity_id": instance.entity_id,
            "input": ctx.input,
            "context": ctx.context,
            "steps": ctx.steps,
        })
        if result.success:
            return DispatchOutcome.completed(result.output)
        return DispatchOutcome.failed(result.error or "Task failed")

    async def _dispatch_approval(self, execution, step, instance, definition, ctx):
        assigned = await self.identity.resolve_role_holders(list(step.approval_roles or []))

        timeout_minutes = (
            definition.step_timeout(step) if definition is not None else step.timeout_minutes
        )

        variables = {
            "stepName": step.step_name,
            "workflowName": (definition.display_name or definition.name) if definition else None,
            "instanceId": instance.id,
            "executionId": execution.id,
        }
        for approver in assigned:
            try:
                await self.notifications.send_templated(
                    approver, APPROVAL_NOTIFICATION_TEMPLATE, variables, NotificationChannel.EMAIL
                )
            except Exception as e:
                logger.warning(
                    "approval_notification_failed",
                    step_name=step.step_name,
                    approver=approver,
                    error=str(e),
                )

        return DispatchOutcome(
            status=StepStatus.WAITING_APPROVAL,
            assigned_to=assigned,
            timeout_at=self.clock.after(timeout_minutes),
        )

    async def _dispatch_notification(self, execution, step, instance, definition, ctx):
        config = ExpressionEvaluator.resolve(step.configuration or {}, ctx)
        template = ExpressionEvaluator.render(step.notification_template, ctx)
        recipient = config.get("recipient") or ctx.input.get("email") or instance.entity_id
        channel = NotificationChannel(str(config.get("channel", "EMAIL")).upper())
        variables = {**ctx.input, **ctx.context, **config.get("variables", {})}

        result = await self.notifications.send_templated(
            str(recipient or ""), template, variables, channel
        )
        if not result.success:
            logger.warning(
                "notification_not_confirmed",
                step_name=step.step_name,
                template=template,
                error=result.error,
            )
        return DispatchOutcome.completed({
            "notificationSent": True,
            "template": template,
            "delivery": result.to_dict(),
        })

    async def _dispatch_service_call(self, execution, step, instance, definition, ctx):
        if step.input_mapping:
            payload = ExpressionEvaluator.apply_mapping(step.input_mapping, ctx)
        else:
            payload = {**ctx.input, **ctx.context}

        endpoint = self._fill_placeholders(step.service_endpoint, payload, ctx)
        output = await self.services.invoke(endpoint, payload)
        return DispatchOutcome.completed(output)

    async def _dispatch_conditional(self, execution, step, instance, definition, ctx):
        return DispatchOutcome.completed({
            "condition_met": True,
            "expression": step.condition_expression,
        })

    @staticmethod
    def _fill_placeholders(endpoint: str, payload: dict, ctx: EvaluationContext) -> str:
        values = {**ctx.input, **ctx.context, **payload}

        def substitute(match):
            name = match.group(1)
            if name not in values or values[name] is None:
                raise DispatchError(f"No value for placeholder {{{name}}} in {endpoint}")
            return str(values[name])

        return _PLACEHOLDER.sub(substitute, endpoint)
