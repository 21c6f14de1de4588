"""Celery task running one Timeout & Retry Supervisor cycle.

Scheduled by beat every ``SUPERVISOR_INTERVAL_SECONDS`` (see ``worker.celery_app``). Worker
deployments set ``SUPERVISOR_ENABLED=false`` on the API processes so only
beat drives the supervisor; running both is safe, just redundant.
"""

import asyncio
import logging

from app.runtime import Runtime
from worker.celery_app import celery_app
from workflow.supervisor import SupervisorReport

logger = logging.getLogger(__name__)


@celery_app.task(
    name="worker.tasks.supervisor.run_supervisor_cycle",
    queue="supervisor",
)
def run_supervisor_cycle():
    """Apply passed deadlines and due retries once."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        report = loop.run_until_complete(_run_cycle())
        if report.changed or report.errors:
            logger.info("Supervisor cycle completed: %s", report.to_dict())
        return report.to_dict()
    except Exception as exc:
        logger.error("Supervisor cycle failed: %s", exc, exc_info=True)
        return {"status": "error", "error": str(exc)}
    finally:
        loop.close()


async def _run_cycle() -> SupervisorReport:
    # Database connections belong to one event loop, so each run builds its own runtime
    runtime = Runtime()
    try:
        return await runtime.supervisor.run_cycle()
    finally:
        await runtime.shutdown()
