"""Shared pytest fixtures for the workflow engine test suite.

Provides:
- In-memory async SQLite database per test (no PostgreSQL needed)
- Fakes for the identity, notification and service-call boundaries
- A FrozenClock so deadlines move without sleeping
- Engine, dispatcher and supervisor wired to the above
- FastAPI test client (httpx.AsyncClient)
"""

import os
from datetime import datetime
from typing import Any, AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ.setdefault("SUPERVISOR_ENABLED", "false")
os.environ.setdefault("SEED_SYSTEM_WORKFLOWS", "false")

from core.clock import FrozenClock  # noqa: E402
from core.constants import StepType  # noqa: E402
from core.exceptions import DispatchError  # noqa: E402
from db.database import UnitOfWork, close_db, create_db_engine, init_db  # noqa: E402
from integrations.identity import IdentityPort  # noqa: E402
from integrations.service_call import ServiceCallPort  # noqa: E402
from notifications.client import DeliveryResult, NotificationChannel, NotificationPort  # noqa: E402
from services.definition_service import DefinitionService  # noqa: E402
from tasks.registry import TaskRegistry  # noqa: E402
from workflow.dispatcher import StepDispatcher  # noqa: E402
from workflow.engine import ExecutionEngine  # noqa: E402
from workflow.supervisor import Supervisor  # noqa: E402


# ---------------------------------------------------------------------------
# Boundary fakes
# ---------------------------------------------------------------------------

class FakeIdentity(IdentityPort):
    """Role holders from a dict; records approval status updates."""

    def __init__(self, role_holders: Optional[dict] = None):
        self.role_holders = role_holders or {
            "CLINIC_ADMIN": ["admin-1"],
            "SYSTEM_ADMIN": ["sysadmin-1"],
        }
        self.updates: list[dict] = []

    async def resolve_role_holders(self, roles: list[str]) -> list[str]:
        holders: list[str] = []
        for role in roles:
            for user_id in self.role_holders.get(role, []):
                if user_id not in holders:
                    holders.append(user_id)
        return holders

    async def update_entity_approval_status(
        self,
        entity_type: str,
        entity_id: str,
        status: str,
        approver_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> dict[str, Any]:
        self.updates.append({
            "entity_type": entity_type,
            "entity_id": entity_id,
            "status": status,
            "approver_id": approver_id,
            "notes": notes,
        })
        kind = entity_type.lower()
        return {f"{kind}StatusUpdated": True, f"{kind}Id": entity_id, "status": status}


class FakeNotifications(NotificationPort):
    """Records every notification; ``fail`` makes the service unreachable."""

    def __init__(self):
        self.sent: list[dict] = []
        self.fail = False

    async def send_templated(
        self,
        recipient: str,
        template_name: str,
        variables: dict[str, Any],
        channel: NotificationChannel = NotificationChannel.EMAIL,
    ) -> DeliveryResult:
        if self.fail:
            raise DispatchError("Notification service unreachable")
        self.sent.append({
            "recipient": recipient,
            "template": template_name,
            "variables": dict(variables),
            "channel": channel,
        })
        return DeliveryResult(success=True, channel=channel, recipient=recipient, message="queued")

    def templates(self) -> list[str]:
        return [n["template"] for n in self.sent]


class FakeServices(ServiceCallPort):
    """Canned responses per endpoint; endpoints in ``failing`` always raise."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []
        self.responses: dict[str, dict] = {}
        self.failing: dict[str, bool] = {}

    async def invoke(self, endpoint: str, input_data: dict[str, Any]) -> dict[str, Any]:
        self.calls.append((endpoint, dict(input_data)))
        if endpoint in self.failing:
            raise DispatchError(f"{endpoint} returned 503", retryable=self.failing[endpoint])
        return self.responses.get(endpoint, {"ok": True})

    def calls_to(self, endpoint: str) -> int:
        return sum(1 for called, _ in self.calls if called == endpoint)


# ---------------------------------------------------------------------------
# Database / engine fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine():
    """Fresh in-memory database for each test."""
    engine = create_db_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield engine
    await close_db(engine)


@pytest.fixture
def uow(db_engine) -> UnitOfWork:
    return UnitOfWork.for_engine(db_engine)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2024, 3, 1, 9, 0, 0))


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def notifications() -> FakeNotifications:
    return FakeNotifications()


@pytest.fixture
def services() -> FakeServices:
    return FakeServices()


@pytest.fixture
def dispatcher(uow, identity, notifications, services, clock) -> StepDispatcher:
    return StepDispatcher(
        uow, identity, notifications, services, task_registry=TaskRegistry(), clock=clock
    )


@pytest.fixture
def engine(uow, dispatcher, clock) -> ExecutionEngine:
    return ExecutionEngine(uow, dispatcher, clock=clock)


@pytest.fixture
def supervisor(uow, engine, clock) -> Supervisor:
    async def no_sleep(_seconds):
        return None

    return Supervisor(uow, engine, clock=clock, interval_seconds=0, sleep=no_sleep)


@pytest.fixture
def register(uow):
    """Register a definition in its own transaction; auto-started unless it says otherwise."""

    async def _register(data: dict):
        async with uow.transaction() as session:
            return await DefinitionService(session).register_definition({"auto_start": True, **data})

    return _register


# ---------------------------------------------------------------------------
# Definition builders
# ---------------------------------------------------------------------------

def clinic_onboarding(**overrides) -> dict:
    """validate -> clinic admin review -> activate."""
    review = {
        "step_name": "clinic-admin-review",
        "step_order": 2,
        "step_type": StepType.APPROVAL.value,
        "approval_roles": ["CLINIC_ADMIN"],
    }
    review.update(overrides.pop("review", {}))
    definition = {
        "name": "clinic_onboarding",
        "display_name": "Clinic Onboarding",
        "category": "ONBOARDING",
        "auto_start": True,
        "steps": [
            {
                "step_name": "validate",
                "step_order": 1,
                "step_type": StepType.AUTOMATIC.value,
                "configuration": {"handler": "validate_entity_data", "required_fields": ["userId"]},
            },
            review,
            {
                "step_name": "activate",
                "step_order": 3,
                "step_type": StepType.AUTOMATIC.value,
                "configuration": {"handler": "noop"},
            },
        ],
    }
    definition.update(overrides)
    return definition


def service_pipeline(endpoint: str = "user-service/users/{userId}/activate", **step) -> dict:
    """Single SERVICE_CALL step."""
    call = {
        "step_name": "call",
        "step_order": 1,
        "step_type": StepType.SERVICE_CALL.value,
        "service_endpoint": endpoint,
    }
    call.update(step)
    return {"name": "service_pipeline", "auto_start": True, "steps": [call]}


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def runtime(db_engine, identity, notifications, services, clock):
    """Runtime wired to the test database and fakes."""
    from app.runtime import Runtime

    return Runtime(
        db_engine=db_engine,
        identity=identity,
        notifications=notifications,
        services=services,
        clock=clock,
    )


@pytest.fixture
def app(runtime):
    """FastAPI app using the test runtime."""
    from app.main import create_app

    return create_app(runtime)


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac
