"""
Timeout & Retry Supervisor.

Periodically re-examines executions and instances the engine is waiting
on and feeds decisions back into the engine. Each cycle:

1. Step timeouts: RUNNING / WAITING_APPROVAL executions past ``timeout_at``
   (approvals fail as "approval timeout", or are skipped when optional;
   running steps fail as a retryable "step timeout")
2. Retries: retryable FAILED executions on RUNNING instances still under
   their retry bound are reset to PENDING and re-dispatched; exhausted
   ones get their instance advanced so it fails
3. Instance timeouts: CREATED / RUNNING / WAITING instances past their
   own ``timeout_at`` become TIMEOUT

Every decision is a compare-and-swap transition, so running a cycle twice
(or two supervisors at once) never double-fails or double-retries.
"""

import asyncio
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

import structlog

from core.clock import Clock, SystemClock
from db.database import UnitOfWork
from services.definition_service import DefinitionService
from services.instance_service import ExecutionService, InstanceService
from workflow.engine import ExecutionEngine, is_terminal_failure

logger = structlog.get_logger(__name__)


class SupervisorReport:
    """Outcome of one supervisor cycle."""

    def __init__(self, started_at: datetime):
        self.started_at = started_at
        self.timed_out_steps: List[str] = []
        self.retried_steps: List[str] = []
        self.exhausted_steps: List[str] = []
        self.timed_out_instances: List[str] = []
        self.errors: List[str] = []

    @property
    def changed(self) -> bool:
        return bool(
            self.timed_out_steps
            or self.retried_steps
            or self.exhausted_steps
            or self.timed_out_instances
        )

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "timed_out_steps": self.timed_out_steps,
            "retried_steps": self.retried_steps,
            "exhausted_steps": self.exhausted_steps,
            "timed_out_instances": self.timed_out_instances,
            "errors": self.errors,
        }


class Supervisor:
    """Fixed-interval scanner for deadlines and retries."""

    def __init__(
        self,
        uow: UnitOfWork,
        engine: ExecutionEngine,
        clock: Optional[Clock] = None,
        interval_seconds: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.uow = uow
        self.engine = engine
        self.clock = clock or SystemClock()
        self.interval_seconds = interval_seconds
        self._sleep = sleep

    async def run_cycle(self) -> SupervisorReport:
        """Run the three scans once."""
        report = SupervisorReport(self.clock.now())
        await self._scan_step_timeouts(report)
        await self._scan_retries(report)
        await self._scan_instance_timeouts(report)

        if report.changed or report.errors:
            logger.info("supervisor_cycle", **report.to_dict())
        return report

    async def run_forever(self, stop_event: Optional[asyncio.Event] = None) -> None:
        """Loop cycles every ``interval_seconds`` until ``stop_event`` is set.

        A failing cycle is logged and the loop carries on.
        """
        stop_event = stop_event or asyncio.Event()
        logger.info("supervisor_started", interval_seconds=self.interval_seconds)
        while not stop_event.is_set():
            try:
                await self.run_cycle()
            except Exception as e:
                logger.exception("supervisor_cycle_failed", error=str(e))
            if stop_event.is_set():
                break
            await self._sleep(self.interval_seconds)
        logger.info("supervisor_stopped")

    # ─── Scans ────────────────────────────────────────────────

    async def _scan_step_timeouts(self, report: SupervisorReport) -> None:
        async with self.uow.transaction() as session:
            expired = [e.id for e in await ExecutionService(session).timed_out(self.clock.now())]

        for execution_id in expired:
            try:
                if await self.engine.time_out_execution(execution_id):
                    report.timed_out_steps.append(execution_id)
            except Exception as e:
                logger.error("step_timeout_failed", execution_id=execution_id, error=str(e))
                report.errors.append(f"{execution_id}: {e}")

    async def _scan_retries(self, report: SupervisorReport) -> None:
        async with self.uow.transaction() as session:
            failed = await ExecutionService(session).failed_on_running_instances()
            definitions = DefinitionService(session)
            instances = InstanceService(session)
            candidates = []
            for execution in failed:
                instance = await instances.get_by_id(execution.workflow_instance_id)
                definition = await definitions.get_definition(instance.workflow_definition_id)
                exhausted = is_terminal_failure(execution, definition)
                if exhausted and not definition.get_step(execution.step_definition_id).is_required:
                    # Tolerated optional failure; the instance already moved past it
                    continue
                candidates.append((execution.id, instance.id, exhausted))

        exhausted_instances = set()
        for execution_id, instance_id, exhausted in candidates:
            try:
                if exhausted:
                    if instance_id not in exhausted_instances:
                        exhausted_instances.add(instance_id)
                        await self.engine.drive(instance_id)
                    report.exhausted_steps.append(execution_id)
                elif await self.engine.retry_execution(execution_id):
                    report.retried_steps.append(execution_id)
            except Exception as e:
                logger.error("step_retry_failed", execution_id=execution_id, error=str(e))
                report.errors.append(f"{execution_id}: {e}")

    async def _scan_instance_timeouts(self, report: SupervisorReport) -> None:
        async with self.uow.transaction() as session:
            expired = [
                i.id for i in await InstanceService(session).timed_out_instances(self.clock.now())
            ]

        for instance_id in expired:
            try:
                if await self.engine.time_out_instance(instance_id):
                    report.timed_out_instances.append(instance_id)
            except Exception as e:
                logger.error("instance_timeout_failed", instance_id=instance_id, error=str(e))
                report.errors.append(f"{instance_id}: {e}")
