"""HTTP API tests."""

import asyncio

import pytest

from app.config import Settings
from app.main import create_app
from app.runtime import Runtime
from conftest import clinic_onboarding
from core.constants import USER_APPROVAL_WORKFLOW
from services.definition_service import DefinitionService
from workflow.templates import seed_system_workflows

ADMIN = {"X-User-ID": "admin-1", "X-User-Roles": "clinic_admin"}


async def _register(client, **overrides):
    response = await client.post("/api/v1/definitions", json=clinic_onboarding(**overrides), headers=ADMIN)
    assert response.status_code == 201, response.text
    return response.json()


async def _start(client, **body):
    payload = {"workflow_name": "clinic_onboarding", "input_data": {"userId": "u-1"}, **body}
    response = await client.post("/api/v1/instances", json=payload, headers={"X-User-ID": "u-1"})
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.integration
class TestHealth:

    @pytest.mark.parametrize("path", ["/api/health", "/api/v1/health"])
    async def test_health(self, client, path):
        response = await client.get(path)
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["database"] == "ok"

    async def test_request_id_echoed(self, client):
        response = await client.get("/api/health", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"
        assert "X-Process-Time" in response.headers

    async def test_status(self, client):
        response = await client.get("/api/v1/health/status")
        assert response.status_code == 200
        assert response.json()["supervisor"]["enabled"] is False


@pytest.mark.integration
class TestDefinitionsApi:

    async def test_register(self, client):
        body = await _register(client)
        assert body["version"] == 1
        assert body["created_by"] == "admin-1"
        assert [s["step_name"] for s in body["steps"]] == ["validate", "clinic-admin-review", "activate"]

    async def test_duplicate_version_conflict(self, client):
        await _register(client, version=1)
        response = await client.post("/api/v1/definitions", json=clinic_onboarding(version=1))
        assert response.status_code == 409
        assert response.json()["error_code"] == "duplicate_version"

    async def test_invalid_steps_rejected(self, client):
        definition = clinic_onboarding(review={"approval_roles": []})
        response = await client.post("/api/v1/definitions", json=definition)
        assert response.status_code == 422
        assert response.json()["error_code"] == "validation_error"

    async def test_empty_steps_rejected_by_schema(self, client):
        response = await client.post("/api/v1/definitions", json={"name": "empty", "steps": []})
        assert response.status_code == 422

    async def test_latest_and_versions(self, client):
        first = await _register(client)
        await _register(client)

        latest = await client.get("/api/v1/definitions/clinic_onboarding/latest")
        assert latest.json()["version"] == 2

        await client.post(f"/api/v1/definitions/{latest.json()['id']}/deactivate")
        latest = await client.get("/api/v1/definitions/clinic_onboarding/latest")
        assert latest.json()["id"] == first["id"]

        versions = await client.get("/api/v1/definitions/clinic_onboarding/versions")
        assert [v["version"] for v in versions.json()] == [1, 2]

        one = await client.get("/api/v1/definitions/clinic_onboarding/versions/1")
        assert one.json()["id"] == first["id"]

    async def test_unknown_definition(self, client):
        response = await client.get("/api/v1/definitions/missing/latest")
        assert response.status_code == 404
        body = response.json()
        assert body["error_code"] == "not_found"
        assert body["request_id"]

    async def test_delete(self, client):
        definition = await _register(client)
        response = await client.delete(f"/api/v1/definitions/{definition['id']}")
        assert response.status_code == 200
        listing = await client.get("/api/v1/definitions")
        assert listing.json() == []


@pytest.mark.integration
class TestInstancesApi:

    async def test_start_waits_on_approval(self, client):
        await _register(client)
        body = await _start(client)

        assert body["status"] == "RUNNING"
        assert body["started_by"] == "u-1"
        assert body["current_step_name"] == "clinic-admin-review"
        assert [e["status"] for e in body["executions"]] == ["COMPLETED", "WAITING_APPROVAL"]

    async def test_missing_input(self, client):
        await _register(client, input_schema={"required": ["clinicId"]})
        response = await client.post("/api/v1/instances", json={"workflow_name": "clinic_onboarding"})
        assert response.status_code == 422

    async def test_get_and_list(self, client):
        await _register(client)
        started = await _start(client, entity_type="USER", entity_id="u-1")

        response = await client.get(f"/api/v1/instances/{started['id']}")
        assert response.json()["id"] == started["id"]

        listing = await client.get("/api/v1/instances", params={"status": "RUNNING", "entity_id": "u-1"})
        assert [i["id"] for i in listing.json()] == [started["id"]]
        listing = await client.get("/api/v1/instances", params={"status": "COMPLETED"})
        assert listing.json() == []

    async def test_unknown_instance(self, client):
        response = await client.get("/api/v1/instances/nope")
        assert response.status_code == 404
        assert response.json()["error_code"] == "not_found"

    async def test_cancel(self, client):
        await _register(client)
        started = await _start(client)

        response = await client.post(f"/api/v1/instances/{started['id']}/cancel", json={"reason": "duplicate"})
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "CANCELLED"
        assert body["error_message"] == "duplicate"

        again = await client.post(f"/api/v1/instances/{started['id']}/cancel")
        assert again.status_code == 409

    async def test_suspend_and_resume(self, client):
        await _register(client)
        started = await _start(client)

        suspended = await client.post(f"/api/v1/instances/{started['id']}/suspend")
        assert suspended.json()["status"] == "WAITING"
        resumed = await client.post(f"/api/v1/instances/{started['id']}/start")
        assert resumed.json()["status"] == "RUNNING"


@pytest.mark.integration
class TestApprovalsApi:

    async def test_pending_and_approve(self, client):
        await _register(client)
        started = await _start(client)

        pending = await client.get("/api/v1/approvals/pending", headers=ADMIN)
        assert [e["step_name"] for e in pending.json()] == ["clinic-admin-review"]
        execution_id = pending.json()[0]["id"]

        other = await client.get("/api/v1/approvals/pending", headers={"X-User-ID": "someone"})
        assert other.json() == []

        response = await client.post(
            f"/api/v1/approvals/{execution_id}",
            json={"approved": True, "notes": "looks good"},
            headers=ADMIN,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "COMPLETED"
        assert response.json()["approved_by"] == "admin-1"

        instance = await client.get(f"/api/v1/instances/{started['id']}")
        assert instance.json()["status"] == "COMPLETED"

    async def test_decision_requires_user(self, client):
        await _register(client)
        started = await _start(client)
        execution_id = started["executions"][1]["id"]

        response = await client.post(f"/api/v1/approvals/{execution_id}", json={"approved": True})
        assert response.status_code == 400

    async def test_unauthorized_approver(self, client):
        await _register(client)
        started = await _start(client)
        execution_id = started["executions"][1]["id"]

        response = await client.post(
            f"/api/v1/approvals/{execution_id}",
            json={"approved": True},
            headers={"X-User-ID": "intruder"},
        )
        assert response.status_code == 403
        assert response.json()["error_code"] == "unauthorized"

    async def test_decide_twice(self, client):
        await _register(client)
        started = await _start(client)
        execution_id = started["executions"][1]["id"]

        first = await client.post(f"/api/v1/approvals/{execution_id}", json={"approved": False}, headers=ADMIN)
        assert first.json()["status"] == "FAILED"
        second = await client.post(f"/api/v1/approvals/{execution_id}", json={"approved": True}, headers=ADMIN)
        assert second.status_code == 409
        assert second.json()["error_code"] == "not_waiting"


@pytest.mark.integration
class TestUserApprovalApi:

    async def test_user_request(self, client, runtime):
        await seed_system_workflows(runtime.uow)
        response = await client.post(
            "/api/v1/user-approval/request",
            json={"user_id": "42", "request_reason": "new account"},
        )
        assert response.status_code == 201
        body = response.json()
        assert body["business_key"] == "user_approval_42"
        assert body["current_step_name"] == "await_system_admin_approval"

        duplicate = await client.post("/api/v1/user-approval/request", json={"user_id": "42"})
        assert duplicate.status_code == 409
        assert duplicate.json()["error_code"] == "duplicate_instance"

    async def test_clinic_admin_request(self, client, runtime):
        await seed_system_workflows(runtime.uow)
        response = await client.post(
            "/api/v1/user-approval/clinic-admin/request",
            json={"user_id": "9", "clinic_id": "c-3", "clinic_name": "Smile Clinic"},
        )
        assert response.status_code == 201
        assert response.json()["input_data"]["clinicId"] == "c-3"

    async def test_staff_request(self, client, runtime):
        await seed_system_workflows(runtime.uow)
        response = await client.post(
            "/api/v1/user-approval/staff/request",
            json={"user_id": "5", "clinic_id": "c-1", "clinic_name": "Smile Clinic", "role": "DENTIST"},
        )
        assert response.status_code == 201
        assert response.json()["current_step_name"] == "await_clinic_admin_approval"

    async def test_request_validation(self, client):
        response = await client.post("/api/v1/user-approval/staff/request", json={"user_id": "5"})
        assert response.status_code == 422


@pytest.mark.integration
class TestLifespan:

    async def test_startup_seeds_and_shutdown(self, db_engine, identity, notifications, services, clock):
        runtime = Runtime(
            settings=Settings(SEED_SYSTEM_WORKFLOWS=True, SUPERVISOR_ENABLED=False),
            db_engine=db_engine,
            identity=identity,
            notifications=notifications,
            services=services,
            clock=clock,
        )
        app = create_app(runtime)

        async with app.router.lifespan_context(app):
            async with runtime.uow.transaction() as session:
                assert await DefinitionService(session).exists(USER_APPROVAL_WORKFLOW)

    async def test_supervisor_task_stops_on_shutdown(self, runtime, app):
        runtime.settings = Settings(SEED_SYSTEM_WORKFLOWS=False, SUPERVISOR_ENABLED=True)
        cycles = []

        async def cycle():
            cycles.append(1)

        runtime.supervisor.run_cycle = cycle
        async with app.router.lifespan_context(app):
            await asyncio.sleep(0)
        assert cycles
