"""Process-wide wiring of the engine and its collaborators.

A ``Runtime`` holds the database engine, unit of work, boundary clients,
dispatcher, execution engine and supervisor. The API process shares one
between requests and the lifespan supervisor; each Celery supervisor run
builds its own.
"""

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from app.config import Settings, get_settings
from core.clock import Clock, SystemClock
from db.database import UnitOfWork, close_db, create_db_engine, init_db
from integrations.identity import HttpIdentityClient, IdentityPort
from integrations.service_call import HttpServiceCallClient, ServiceCallPort
from notifications.client import HttpNotificationClient, NotificationPort
from services.approval_request_service import ApprovalRequestService
from tasks.registry import TaskRegistry
from workflow.dispatcher import StepDispatcher
from workflow.engine import ExecutionEngine
from workflow.supervisor import Supervisor
from workflow.templates import seed_system_workflows

logger = logging.getLogger(__name__)


class Runtime:
    """Everything needed to run workflows in this process."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        db_engine: Optional[AsyncEngine] = None,
        identity: Optional[IdentityPort] = None,
        notifications: Optional[NotificationPort] = None,
        services: Optional[ServiceCallPort] = None,
        clock: Optional[Clock] = None,
    ):
        self.settings = settings or get_settings()
        self.db_engine = db_engine or create_db_engine(self.settings.DATABASE_URL)
        self.uow = UnitOfWork.for_engine(self.db_engine)
        self.clock = clock or SystemClock()

        timeout = self.settings.HTTP_TIMEOUT_SECONDS
        self.identity = identity or HttpIdentityClient(
            self.settings.IDENTITY_SERVICE_URL, timeout_seconds=timeout
        )
        self.notifications = notifications or HttpNotificationClient(
            self.settings.NOTIFICATION_SERVICE_URL, timeout_seconds=timeout
        )
        self.services = services or HttpServiceCallClient(
            self.settings.SERVICE_BASE_URLS, timeout_seconds=timeout
        )

        self.dispatcher = StepDispatcher(
            self.uow,
            self.identity,
            self.notifications,
            self.services,
            task_registry=TaskRegistry(),
            clock=self.clock,
        )
        self.engine = ExecutionEngine(
            self.uow,
            self.dispatcher,
            clock=self.clock,
            max_concurrency=self.settings.DISPATCH_MAX_CONCURRENCY,
            conflict_retries=self.settings.CONFLICT_RETRY_ATTEMPTS,
        )
        self.supervisor = Supervisor(
            self.uow,
            self.engine,
            clock=self.clock,
            interval_seconds=self.settings.SUPERVISOR_INTERVAL_SECONDS,
        )
        self.approval_requests = ApprovalRequestService(self.engine, clock=self.clock)

    async def startup(self) -> None:
        """Create tables and seed the system workflows if configured."""
        await init_db(self.db_engine)
        if self.settings.SEED_SYSTEM_WORKFLOWS:
            await seed_system_workflows(self.uow)

    async def shutdown(self) -> None:
        """Close HTTP clients and dispose of the database engine."""
        for client in (self.identity, self.notifications, self.services):
            close = getattr(client, "close", None)
            if close is not None:
                await close()
        await close_db(self.db_engine)
        logger.info("Runtime shut down")


_runtime: Optional[Runtime] = None


def get_runtime() -> Runtime:
    """Get or create the process-wide runtime."""
    global _runtime
    if _runtime is None:
        _runtime = Runtime()
    return _runtime
