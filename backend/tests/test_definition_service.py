"""Tests for the definition store."""

import pytest

from conftest import clinic_onboarding
from core.exceptions import (
    DuplicateVersionError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from services.definition_service import DefinitionService, validate_steps


def _step(name, order, step_type="AUTOMATIC", **extra):
    return {"step_name": name, "step_order": order, "step_type": step_type, **extra}


@pytest.mark.unit
class TestValidateSteps:
    """Structural rules of a step list."""

    def test_valid_list(self):
        validate_steps([_step("a", 1), _step("b", 2)])

    def test_empty(self):
        with pytest.raises(ValidationError, match="at least one step"):
            validate_steps([])

    def test_duplicate_names(self):
        with pytest.raises(ValidationError, match="Duplicate step name"):
            validate_steps([_step("a", 1), _step("a", 2)])

    def test_unknown_type(self):
        with pytest.raises(ValidationError, match="unknown step_type"):
            validate_steps([_step("a", 1, "SCRIPT")])

    def test_approval_needs_roles(self):
        with pytest.raises(ValidationError, match="approval_roles"):
            validate_steps([_step("a", 1, "APPROVAL")])

    def test_service_call_needs_endpoint(self):
        with pytest.raises(ValidationError, match="service_endpoint"):
            validate_steps([_step("a", 1, "SERVICE_CALL")])

    def test_negative_order(self):
        with pytest.raises(ValidationError, match="invalid step_order"):
            validate_steps([_step("a", -1)])

    def test_negative_retry_attempts(self):
        with pytest.raises(ValidationError, match="negative retry_attempts"):
            validate_steps([_step("a", 1, retry_attempts=-1)])

    def test_shared_order_requires_parallel(self):
        with pytest.raises(ValidationError, match="must all be parallel"):
            validate_steps([_step("a", 1, is_parallel=True), _step("b", 1)])

    def test_shared_order_all_parallel(self):
        validate_steps([
            _step("a", 1, is_parallel=True),
            _step("b", 1, is_parallel=True),
            _step("c", 2),
        ])


@pytest.mark.integration
class TestDefinitionService:
    """Versioning, lookups and lifecycle of definitions."""

    async def test_register_assigns_first_version(self, register):
        definition = await register(clinic_onboarding())
        assert definition.version == 1
        assert definition.is_active is True
        assert [s.step_name for s in definition.steps] == [
            "validate",
            "clinic-admin-review",
            "activate",
        ]
        assert definition.steps[1].approval_roles == ["CLINIC_ADMIN"]

    async def test_register_without_version_bumps(self, register):
        await register(clinic_onboarding())
        second = await register(clinic_onboarding())
        assert second.version == 2

    async def test_retry_bound_defaults_from_settings(self, register):
        definition = await register(clinic_onboarding())
        assert definition.max_retry_attempts == 3

        pinned = await register(clinic_onboarding(max_retry_attempts=0))
        assert pinned.max_retry_attempts == 0

    async def test_duplicate_version_rejected(self, register):
        await register(clinic_onboarding(version=1))
        with pytest.raises(DuplicateVersionError):
            await register(clinic_onboarding(version=1))

    async def test_version_below_highest_rejected(self, register):
        await register(clinic_onboarding(version=3))
        with pytest.raises(ValidationError, match="lower than current version"):
            await register(clinic_onboarding(version=2))

    async def test_missing_name_rejected(self, register):
        with pytest.raises(ValidationError):
            await register(clinic_onboarding(name=""))

    async def test_get_latest_returns_highest_active(self, register, uow):
        first = await register(clinic_onboarding())
        second = await register(clinic_onboarding())

        async with uow.transaction() as session:
            svc = DefinitionService(session)
            assert (await svc.get_latest("clinic_onboarding")).id == second.id

            await svc.set_active(second.id, False)
            assert (await svc.get_latest("clinic_onboarding")).id == first.id

    async def test_get_latest_unknown(self, uow):
        async with uow.transaction() as session:
            with pytest.raises(NotFoundError):
                await DefinitionService(session).get_latest("nope")

    async def test_list_versions_and_active(self, register, uow):
        await register(clinic_onboarding())
        await register(clinic_onboarding())
        await register(clinic_onboarding(name="other", category="BILLING"))

        async with uow.transaction() as session:
            svc = DefinitionService(session)
            versions = await svc.list_versions("clinic_onboarding")
            assert [d.version for d in versions] == [1, 2]

            onboarding = await svc.list_active(category="ONBOARDING")
            assert {d.name for d in onboarding} == {"clinic_onboarding"}
            assert len(await svc.list_active()) == 3

            with pytest.raises(NotFoundError):
                await svc.list_versions("missing")

    async def test_get_by_name_and_version(self, register, uow):
        await register(clinic_onboarding())
        async with uow.transaction() as session:
            svc = DefinitionService(session)
            assert (await svc.get_by_name_and_version("clinic_onboarding", 1)).version == 1
            assert await svc.get_by_name_and_version("clinic_onboarding", 9, required=False) is None
            with pytest.raises(NotFoundError):
                await svc.get_by_name_and_version("clinic_onboarding", 9)

    async def test_delete_unreferenced(self, register, uow):
        definition = await register(clinic_onboarding())
        async with uow.transaction() as session:
            await DefinitionService(session).delete_definition(definition.id)
        async with uow.transaction() as session:
            assert not await DefinitionService(session).exists("clinic_onboarding")

    async def test_delete_referenced_rejected(self, register, engine, uow):
        definition = await register(clinic_onboarding())
        await engine.start("clinic_onboarding", input_data={"userId": "u-1"})

        async with uow.transaction() as session:
            with pytest.raises(InvalidStateError):
                await DefinitionService(session).delete_definition(definition.id)
