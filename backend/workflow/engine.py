"""Workflow Execution Engine — drives instances through their steps.

An instance walks its definition's steps in ``step_order``. Steps sharing
an order are parallel peers and are materialized together. Every call that
changes state ends by *driving* the instance:

    advance  -> materialize the next eligible step(s), or finalize
    dispatch -> run every PENDING execution (parallel peers via gather)
    repeat   -> until nothing is PENDING

Advance rules, evaluated on each pass:

- any execution PENDING / RUNNING / WAITING_APPROVAL, or FAILED with
  retries left: wait (PENDING ones get dispatched)
- a required step FAILED terminally: instance FAILED
- every step has an execution: instance COMPLETED
- otherwise: materialize the lowest step order without executions; a
  false guard creates the row as SKIPPED, a CONDITIONAL step completes
  in place, anything else is created PENDING

Instance states:
    CREATED -> RUNNING -> {WAITING, COMPLETED, FAILED, CANCELLED, TIMEOUT}
    WAITING -> RUNNING | TIMEOUT | CANCELLED
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

import structlog
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from core.clock import Clock, SystemClock
from core.constants import (
    ACTIVE_WORKFLOW_STATUSES,
    APPROVAL_TIMEOUT_MESSAGE,
    OPEN_STEP_STATUSES,
    STEP_TIMEOUT_MESSAGE,
    WORKFLOW_TIMEOUT_MESSAGE,
    StepStatus,
    StepType,
    WorkflowStatus,
)
from core.exceptions import (
    ConcurrencyConflictError,
    DuplicateInstanceError,
    ExpressionError,
    InvalidStateError,
    NotFoundError,
    NotWaitingError,
    UnauthorizedError,
    ValidationError,
)
from db.database import UnitOfWork
from db.models.workflow_definition import WorkflowDefinition
from db.models.workflow_execution import WorkflowExecution
from db.models.workflow_instance import WorkflowInstance
from services.definition_service import DefinitionService
from services.instance_service import ExecutionService, InstanceService
from workflow.conditions import ExpressionEvaluator, context_for, merged_context
from workflow.dispatcher import StepDispatcher

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def is_terminal_failure(execution: WorkflowExecution, definition: WorkflowDefinition) -> bool:
    """FAILED with no retry left under the step's effective bound."""
    if execution.status != StepStatus.FAILED.value:
        return False
    if not execution.is_retryable:
        return True
    step = definition.get_step(execution.step_definition_id)
    return execution.retry_count >= definition.retry_bound(step)


def _is_open(execution: WorkflowExecution, definition: WorkflowDefinition) -> bool:
    if StepStatus(execution.status) in OPEN_STEP_STATUSES:
        return True
    return execution.status == StepStatus.FAILED.value and not is_terminal_failure(
        execution, definition
    )


class ExecutionEngine:
    """Creates, advances and terminates workflow instances.

    Each state change runs in its own short transaction obtained from the
    unit of work; dispatching happens between transactions.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        dispatcher: StepDispatcher,
        clock: Optional[Clock] = None,
        max_concurrency: int = 5,
        conflict_retries: int = 3,
    ):
        self.uow = uow
        self.dispatcher = dispatcher
        self.clock = clock or SystemClock()
        self.max_concurrency = max_concurrency
        self.conflict_retries = conflict_retries

    # ─── Conflict handling ────────────────────────────────────

    async def _retrying(self, operation: Callable[[], Awaitable[T]], name: str) -> T:
        """Re-run ``operation`` when it loses a compare-and-swap race.

        Each attempt re-reads its rows, so after a lost race the operation
        sees the winner's state (and e.g. raises NotWaitingError).
        """
        for attempt in range(1, self.conflict_retries + 1):
            try:
                return await operation()
            except ConcurrencyConflictError:
                if attempt >= self.conflict_retries:
                    raise
                logger.info("conflict_retry", operation=name, attempt=attempt)

    # ─── Start ────────────────────────────────────────────────

    async def start(
        self,
        workflow_name: str,
        version: Optional[int] = None,
        business_key: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        input_data: Optional[dict] = None,
        context_data: Optional[dict] = None,
        auto_start: Optional[bool] = None,
        instance_name: Optional[str] = None,
        priority: int = 5,
        started_by: Optional[str] = None,
    ) -> WorkflowInstance:
        """Create an instance of a workflow definition.

        The instance pins the resolved definition row. It is started right
        away when ``auto_start`` (or, if None, the definition default) is set.

        Raises:
            NotFoundError: Unknown workflow name or version
            ValidationError: Inactive definition or missing required input
            DuplicateInstanceError: ``business_key`` held by an active instance
        """
        input_data = dict(input_data or {})
        async with self.uow.transaction() as session:
            definition = await self._resolve_definition(session, workflow_name, version)

            required = (definition.input_schema or {}).get("required", [])
            missing = [f for f in required if f not in input_data]
            if missing:
                raise ValidationError(
                    f"Missing required input for {workflow_name}: {', '.join(missing)}"
                )

            instances = InstanceService(session)
            if business_key:
                existing = await instances.find_active_by_business_key(business_key)
                if existing is not None:
                    raise DuplicateInstanceError(
                        f"Active workflow instance {existing.id} already exists "
                        f"for business key {business_key}"
                    )

            instance = await instances.create_instance({
                "workflow_definition_id": definition.id,
                "instance_name": instance_name or definition.display_name or definition.name,
                "status": WorkflowStatus.CREATED.value,
                "business_key": business_key,
                "entity_type": entity_type,
                "entity_id": str(entity_id) if entity_id is not None else None,
                "priority": priority,
                "input_data": input_data,
                "context_data": dict(context_data or {}),
                "started_by": started_by,
                "timeout_at": self.clock.after(definition.timeout_minutes),
            })
            should_start = definition.auto_start if auto_start is None else auto_start

        logger.info(
            "instance_created",
            instance_id=instance.id,
            workflow=definition.name,
            version=definition.version,
            business_key=business_key,
        )
        if should_start:
            return await self.start_instance(instance.id)
        return await self.get_instance(instance.id)

    async def _resolve_definition(
        self, session: AsyncSession, name: str, version: Optional[int]
    ) -> WorkflowDefinition:
        definitions = DefinitionService(session)
        if version is not None:
            definition = await definitions.get_by_name_and_version(name, version)
            if not definition.is_active:
                raise ValidationError(f"Workflow definition {name} v{version} is inactive")
            return definition
        try:
            return await definitions.get_latest(name)
        except NotFoundError:
            if await definitions.exists(name):
                raise ValidationError(f"Workflow definition {name} has no active version")
            raise

    async def start_instance(self, instance_id: str) -> WorkflowInstance:
        """CREATED or WAITING -> RUNNING, then drive."""

        async def _start():
            async with self.uow.transaction() as session:
                instances = InstanceService(session)
                instance = await instances.get_or_404(instance_id)
                if instance.status not in (
                    WorkflowStatus.CREATED.value,
                    WorkflowStatus.WAITING.value,
                ):
                    raise InvalidStateError(
                        f"Cannot start workflow instance in status {instance.status}"
                    )
                values: dict[str, Any] = {"status": WorkflowStatus.RUNNING}
                if instance.started_at is None:
                    values["started_at"] = self.clock.now()
                await instances.transition(
                    instance, [WorkflowStatus.CREATED, WorkflowStatus.WAITING], **values
                )

        await self._retrying(_start, "start_instance")
        logger.info("instance_started", instance_id=instance_id)
        await self.drive(instance_id)
        return await self.get_instance(instance_id)

    async def suspend(self, instance_id: str) -> WorkflowInstance:
        """RUNNING -> WAITING. PENDING executions stay undispatched until resumed."""

        async def _suspend():
            async with self.uow.transaction() as session:
                instances = InstanceService(session)
                instance = await instances.get_or_404(instance_id)
                if instance.status != WorkflowStatus.RUNNING.value:
                    raise InvalidStateError(
                        f"Cannot suspend workflow instance in status {instance.status}"
                    )
                await instances.transition(
                    instance, [WorkflowStatus.RUNNING], status=WorkflowStatus.WAITING
                )

        await self._retrying(_suspend, "suspend")
        logger.info("instance_suspended", instance_id=instance_id)
        return await self.get_instance(instance_id)

    # ─── Drive / advance ──────────────────────────────────────

    async def drive(self, instance_id: str) -> None:
        """Advance and dispatch until the instance has nothing to run."""
        previous: set[str] = set()
        while True:
            try:
                pending = await self._retrying(lambda: self._advance(instance_id), "advance")
            except ConcurrencyConflictError:
                logger.warning("advance_abandoned", instance_id=instance_id)
                return
            if not pending:
                return
            if set(pending) == previous:
                # Nothing moved since the last pass; the supervisor will pick it up
                logger.warning("drive_stalled", instance_id=instance_id, pending=pending)
                return
            previous = set(pending)
            await self._dispatch_batch(pending)

    async def _dispatch_batch(self, execution_ids: Sequence[str]) -> None:
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _run(execution_id: str):
            async with semaphore:
                return await self.dispatcher.run(execution_id)

        results = await asyncio.gather(
            *[_run(eid) for eid in execution_ids], return_exceptions=True
        )
        for execution_id, result in zip(execution_ids, results):
            if isinstance(result, BaseException):
                logger.error(
                    "dispatch_crashed",
                    execution_id=execution_id,
                    error=str(result),
                )

    async def _advance(self, instance_id: str) -> list[str]:
        """One advance pass. Returns ids of PENDING executions to dispatch."""
        async with self.uow.transaction() as session:
            instances = InstanceService(session)
            executions = ExecutionService(session)
            instance = await instances.get_or_404(instance_id)
            if instance.status != WorkflowStatus.RUNNING.value:
                return []
            definition = await DefinitionService(session).get_definition(
                instance.workflow_definition_id
            )

            while True:
                rows = list(await executions.for_instance(instance.id))

                open_rows = [e for e in rows if _is_open(e, definition)]
                if open_rows:
                    return [e.id for e in open_rows if e.status == StepStatus.PENDING.value]

                failed = next(
                    (
                        e for e in rows
                        if is_terminal_failure(e, definition)
                        and definition.get_step(e.step_definition_id).is_required
                    ),
                    None,
                )
                if failed is not None:
                    await self._fail_instance(instances, instance, failed)
                    return []

                executed = {e.step_definition_id for e in rows}
                remaining = [s for s in definition.steps if s.id not in executed]
                if not remaining:
                    await self._complete_instance(instances, instance, definition, rows)
                    return []

                await self._materialize(instances, executions, instance, remaining, rows)

    async def _materialize(self, instances, executions, instance, remaining, rows) -> None:
        """Create executions for the lowest unexecuted step order."""
        order = min(s.step_order for s in remaining)
        group = [s for s in remaining if s.step_order == order]
        ctx = context_for(instance, rows)
        now = self.clock.now()

        for step in group:
            try:
                if not ExpressionEvaluator.evaluate_condition(step.condition_expression, ctx):
                    await executions.create_execution(
                        instance, step, StepStatus.SKIPPED,
                        output_data={"condition_met": False, "expression": step.condition_expression},
                        completed_at=now,
                    )
                    logger.info("step_skipped", instance_id=instance.id, step_name=step.step_name)
                    continue

                if step.step_type == StepType.CONDITIONAL.value:
                    output = {"condition_met": True, "expression": step.condition_expression}
                    context_data = merged_context(
                        instance.context_data, step.output_mapping, ctx, output
                    )
                    await executions.create_execution(
                        instance, step, StepStatus.COMPLETED,
                        output_data=output, started_at=now, completed_at=now,
                    )
                    if context_data != (instance.context_data or {}):
                        await instances.transition(
                            instance, [WorkflowStatus.RUNNING], context_data=context_data
                        )
                    continue

                input_data = (
                    ExpressionEvaluator.apply_mapping(step.input_mapping, ctx)
                    if step.input_mapping
                    else {}
                )
                await executions.create_execution(
                    instance, step, StepStatus.PENDING, input_data=input_data
                )
            except ExpressionError as e:
                await executions.create_execution(
                    instance, step, StepStatus.FAILED,
                    error_message=e.message, is_retryable=False, completed_at=now,
                )
                logger.warning(
                    "step_expression_failed",
                    instance_id=instance.id,
                    step_name=step.step_name,
                    error=e.message,
                )

        await instances.transition(
            instance,
            [WorkflowStatus.RUNNING],
            current_step_order=order,
            current_step_name=", ".join(s.step_name for s in group),
        )
        logger.info(
            "steps_materialized",
            instance_id=instance.id,
            step_order=order,
            steps=[s.step_name for s in group],
        )

    async def _fail_instance(self, instances, instance, execution) -> None:
        message = f"Step '{execution.step_name}' failed: {execution.error_message}"
        await instances.transition(
            instance,
            [WorkflowStatus.RUNNING],
            status=WorkflowStatus.FAILED,
            error_message=message,
            completed_at=self.clock.now(),
        )
        logger.warning("instance_failed", instance_id=instance.id, error=message)

    async def _complete_instance(self, instances, instance, definition, rows) -> None:
        completed = [e for e in rows if e.status == StepStatus.COMPLETED.value]
        output_mapping = (definition.configuration or {}).get("output_mapping")
        if output_mapping:
            try:
                output = ExpressionEvaluator.apply_mapping(
                    output_mapping, context_for(instance, rows)
                )
            except ExpressionError as e:
                await instances.transition(
                    instance,
                    [WorkflowStatus.RUNNING],
                    status=WorkflowStatus.FAILED,
                    error_message=f"Output mapping failed: {e.message}",
                    completed_at=self.clock.now(),
                )
                logger.warning("instance_failed", instance_id=instance.id, error=e.message)
                return
        elif completed:
            last = max(completed, key=lambda e: (e.step_order, e.completed_at or e.created_at))
            output = last.output_data or {}
        else:
            output = {}

        await instances.transition(
            instance,
            [WorkflowStatus.RUNNING],
            status=WorkflowStatus.COMPLETED,
            output_data=output,
            completed_at=self.clock.now(),
        )
        logger.info("instance_completed", instance_id=instance.id)

    # ─── Approvals ────────────────────────────────────────────

    async def resolve_approval(
        self,
        execution_id: str,
        approver_id: str,
        approved: bool,
        notes: Optional[str] = None,
        output_data: Optional[dict] = None,
        approver_roles: Optional[Sequence[str]] = None,
    ) -> WorkflowExecution:
        """Record a human decision on a WAITING_APPROVAL execution.

        The approver must be one of the assigned approvers, currently hold
        one of the step's approval roles, or present such a role.

        Raises:
            NotWaitingError: The execution is not awaiting a decision
            UnauthorizedError: The approver may not decide this step
        """
        async with self.uow.transaction() as session:
            execution = await ExecutionService(session).get_or_404(execution_id)
            if execution.status != StepStatus.WAITING_APPROVAL.value:
                raise NotWaitingError(
                    f"Step {execution.step_name} is {execution.status}, not waiting for approval"
                )
            instance = await InstanceService(session).get_or_404(execution.workflow_instance_id)
            definition = await DefinitionService(session).get_definition(
                instance.workflow_definition_id
            )
            step = definition.get_step(execution.step_definition_id)

        roles = list(step.approval_roles or [])
        authorized = approver_id in (execution.assigned_to or []) or bool(
            set(approver_roles or []) & set(roles)
        )
        if not authorized:
            authorized = approver_id in await self.dispatcher.identity.resolve_role_holders(roles)
        if not authorized:
            raise UnauthorizedError(
                f"User {approver_id} may not decide step {step.step_name} (roles: {roles})"
            )

        async def _decide():
            async with self.uow.transaction() as session:
                executions = ExecutionService(session)
                instances = InstanceService(session)
                current = await executions.get_or_404(execution_id)
                if current.status != StepStatus.WAITING_APPROVAL.value:
                    raise NotWaitingError(
                        f"Step {current.step_name} is {current.status}, not waiting for approval"
                    )
                inst = await instances.get_or_404(current.workflow_instance_id)
                if WorkflowStatus(inst.status) not in ACTIVE_WORKFLOW_STATUSES:
                    raise InvalidStateError(f"Workflow instance is {inst.status}")

                now = self.clock.now()
                decision = {
                    "approved_by": approver_id,
                    "approval_notes": notes,
                    "completed_at": now,
                    "timeout_at": None,
                }
                if approved:
                    output = output_data or {
                        "approved": True,
                        "approved_by": approver_id,
                        "approval_notes": notes,
                    }
                    ctx = context_for(inst, await executions.for_instance(inst.id))
                    context_data = merged_context(inst.context_data, step.output_mapping, ctx, output)
                    await executions.transition(
                        current, [StepStatus.WAITING_APPROVAL],
                        status=StepStatus.COMPLETED, output_data=output, **decision,
                    )
                    if step.output_mapping:
                        await instances.transition(
                            inst, ACTIVE_WORKFLOW_STATUSES, context_data=context_data
                        )
                else:
                    rejection = f"Step rejected: {notes}" if notes else "Step rejected"
                    await executions.transition(
                        current, [StepStatus.WAITING_APPROVAL],
                        status=StepStatus.FAILED if step.is_required else StepStatus.SKIPPED,
                        error_message=rejection,
                        is_retryable=False,
                        output_data={"approved": False, "approved_by": approver_id, "approval_notes": notes},
                        **decision,
                    )
                return current

        execution = await self._retrying(_decide, "resolve_approval")
        logger.info(
            "approval_resolved",
            execution_id=execution_id,
            approver=approver_id,
            approved=approved,
        )
        await self.drive(execution.workflow_instance_id)
        return await self.get_execution(execution_id)

    # ─── Cancellation / supervision hooks ─────────────────────

    async def cancel(self, instance_id: str, reason: Optional[str] = None) -> WorkflowInstance:
        """Cancel an active instance; open executions become SKIPPED.

        In-flight dispatches finish but their results are discarded.
        """
        reason = reason or "Cancelled by user"

        async def _cancel():
            async with self.uow.transaction() as session:
                instance = await InstanceService(session).get_or_404(instance_id)
                if WorkflowStatus(instance.status) not in ACTIVE_WORKFLOW_STATUSES:
                    raise InvalidStateError(
                        f"Cannot cancel workflow instance in status {instance.status}"
                    )
                await self._terminate(
                    session, instance, WorkflowStatus.CANCELLED, reason, f"Cancelled: {reason}"
                )

        await self._retrying(_cancel, "cancel")
        logger.info("instance_cancelled", instance_id=instance_id, reason=reason)
        return await self.get_instance(instance_id)

    async def _terminate(
        self,
        session: AsyncSession,
        instance: WorkflowInstance,
        status: WorkflowStatus,
        message: str,
        skip_message: str,
    ) -> None:
        now = self.clock.now()
        await InstanceService(session).transition(
            instance,
            ACTIVE_WORKFLOW_STATUSES,
            status=status,
            error_message=message,
            completed_at=now,
        )
        definition = await DefinitionService(session).get_definition(
            instance.workflow_definition_id
        )
        executions = ExecutionService(session)
        for execution in await executions.for_instance(instance.id):
            if _is_open(execution, definition):
                await executions.transition(
                    execution,
                    [*OPEN_STEP_STATUSES, StepStatus.FAILED],
                    status=StepStatus.SKIPPED,
                    error_message=skip_message,
                    completed_at=now,
                    timeout_at=None,
                )

    async def time_out_execution(self, execution_id: str) -> bool:
        """Apply a passed step deadline. Returns False if nothing changed.

        WAITING_APPROVAL: required -> FAILED (not retryable), optional -> SKIPPED.
        RUNNING: FAILED, retryable.
        """
        now = self.clock.now()
        async with self.uow.transaction() as session:
            executions = ExecutionService(session)
            execution = await executions.get_by_id(execution_id)
            if (
                execution is None
                or execution.timeout_at is None
                or execution.timeout_at > now
            ):
                return False
            instance = await InstanceService(session).get_by_id(execution.workflow_instance_id)
            if WorkflowStatus(instance.status).is_terminal:
                return False
            definition = await DefinitionService(session).get_definition(
                instance.workflow_definition_id
            )
            step = definition.get_step(execution.step_definition_id)

            if execution.status == StepStatus.WAITING_APPROVAL.value:
                values = (
                    dict(status=StepStatus.FAILED, error_message=APPROVAL_TIMEOUT_MESSAGE, is_retryable=False)
                    if step.is_required
                    else dict(status=StepStatus.SKIPPED, error_message=APPROVAL_TIMEOUT_MESSAGE)
                )
                expected = [StepStatus.WAITING_APPROVAL]
            elif execution.status == StepStatus.RUNNING.value:
                values = dict(status=StepStatus.FAILED, error_message=STEP_TIMEOUT_MESSAGE, is_retryable=True)
                expected = [StepStatus.RUNNING]
            else:
                return False

            try:
                await executions.transition(
                    execution, expected, completed_at=now, timeout_at=None, **values
                )
            except ConcurrencyConflictError:
                return False
            instance_id = instance.id

        logger.warning(
            "step_timed_out",
            execution_id=execution_id,
            step_name=execution.step_name,
            status=execution.status,
        )
        await self.drive(instance_id)
        return True

    async def retry_execution(self, execution_id: str) -> bool:
        """FAILED -> PENDING when retryable and under its bound, then drive.

        Returns False when the execution is not eligible (or the race was
        lost), so repeated calls never double-retry.
        """
        async with self.uow.transaction() as session:
            executions = ExecutionService(session)
            instances = InstanceService(session)
            execution = await executions.get_by_id(execution_id)
            if execution is None or execution.status != StepStatus.FAILED.value:
                return False
            instance = await instances.get_by_id(execution.workflow_instance_id)
            if instance.status != WorkflowStatus.RUNNING.value:
                return False
            definition = await DefinitionService(session).get_definition(
                instance.workflow_definition_id
            )
            if is_terminal_failure(execution, definition):
                return False

            try:
                await executions.transition(
                    execution,
                    [StepStatus.FAILED],
                    status=StepStatus.PENDING,
                    retry_count=execution.retry_count + 1,
                    error_message=None,
                    completed_at=None,
                    timeout_at=None,
                )
                await instances.transition(
                    instance, [WorkflowStatus.RUNNING], retry_count=instance.retry_count + 1
                )
            except ConcurrencyConflictError:
                return False
            instance_id = instance.id

        logger.info(
            "step_retry_scheduled",
            execution_id=execution_id,
            step_name=execution.step_name,
            retry_count=execution.retry_count,
        )
        await self.drive(instance_id)
        return True

    async def time_out_instance(self, instance_id: str) -> bool:
        """Active instance past its own deadline -> TIMEOUT."""
        now = self.clock.now()
        try:
            async with self.uow.transaction() as session:
                instance = await InstanceService(session).get_by_id(instance_id)
                if (
                    instance is None
                    or WorkflowStatus(instance.status) not in ACTIVE_WORKFLOW_STATUSES
                    or instance.timeout_at is None
                    or instance.timeout_at > now
                ):
                    return False
                await self._terminate(
                    session,
                    instance,
                    WorkflowStatus.TIMEOUT,
                    WORKFLOW_TIMEOUT_MESSAGE,
                    WORKFLOW_TIMEOUT_MESSAGE,
                )
        except ConcurrencyConflictError:
            return False
        logger.warning("instance_timed_out", instance_id=instance_id)
        return True

    # ─── Queries ──────────────────────────────────────────────

    async def get_instance(self, instance_id: str) -> WorkflowInstance:
        """Instance with ``executions`` populated in step order."""
        async with self.uow.transaction() as session:
            instance = await InstanceService(session).get_or_404(instance_id)
            rows = await ExecutionService(session).for_instance(instance_id)
            set_committed_value(instance, "executions", list(rows))
            return instance

    async def get_execution(self, execution_id: str) -> WorkflowExecution:
        async with self.uow.transaction() as session:
            return await ExecutionService(session).get_or_404(execution_id)

    async def list_instances(
        self,
        status: Optional[str] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
    ) -> Sequence[WorkflowInstance]:
        async with self.uow.transaction() as session:
            return await InstanceService(session).list_instances(
                status=status, entity_type=entity_type, entity_id=entity_id
            )

    async def list_pending_approvals(
        self,
        user_id: Optional[str] = None,
        roles: Optional[Sequence[str]] = None,
    ) -> list[WorkflowExecution]:
        """WAITING_APPROVAL executions the user or roles may decide.

        With neither filter every waiting approval is returned.
        """
        async with self.uow.transaction() as session:
            rows = await ExecutionService(session).waiting_approvals()

        if user_id is None and not roles:
            return [execution for execution, _ in rows]
        roles = set(roles or [])
        return [
            execution
            for execution, step in rows
            if (user_id is not None and user_id in (execution.assigned_to or []))
            or roles & set(step.approval_roles or [])
        ]
