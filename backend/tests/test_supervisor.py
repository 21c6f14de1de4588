"""Tests for the timeout & retry supervisor."""

import asyncio

import pytest

from conftest import clinic_onboarding, service_pipeline
from core.constants import StepStatus, WorkflowStatus
from core.exceptions import NotWaitingError
from workflow.supervisor import Supervisor


def _by_name(instance):
    return {e.step_name: e for e in instance.executions}


@pytest.mark.integration
class TestStepTimeouts:
    """Deadlines on RUNNING and WAITING_APPROVAL executions."""

    async def test_approval_timeout_fails_instance(self, register, engine, supervisor):
        await register(clinic_onboarding(review={"timeout_minutes": 0}))
        instance = await engine.start("clinic_onboarding", input_data={"userId": "u-1"})
        review = _by_name(instance)["clinic-admin-review"]
        assert review.status == StepStatus.WAITING_APPROVAL.value

        report = await supervisor.run_cycle()
        assert report.timed_out_steps == [review.id]

        instance = await engine.get_instance(instance.id)
        review = _by_name(instance)["clinic-admin-review"]
        assert review.status == StepStatus.FAILED.value
        assert review.error_message == "approval timeout"
        assert review.is_retryable is False
        assert instance.status == WorkflowStatus.FAILED.value
        assert "activate" not in _by_name(instance)

    async def test_timeout_processed_once(self, register, engine, supervisor):
        await register(clinic_onboarding(review={"timeout_minutes": 0}))
        instance = await engine.start("clinic_onboarding", input_data={"userId": "u-1"})

        first = await supervisor.run_cycle()
        second = await supervisor.run_cycle()
        assert len(first.timed_out_steps) == 1
        assert not second.changed

        instance = await engine.get_instance(instance.id)
        assert instance.status == WorkflowStatus.FAILED.value

    async def test_timeout_not_yet_due(self, register, engine, supervisor, clock):
        await register(clinic_onboarding(review={"timeout_minutes": 30}))
        instance = await engine.start("clinic_onboarding", input_data={"userId": "u-1"})

        clock.advance(minutes=29)
        assert not (await supervisor.run_cycle()).changed

        clock.advance(minutes=1)
        report = await supervisor.run_cycle()
        assert len(report.timed_out_steps) == 1
        assert (await engine.get_instance(instance.id)).status == WorkflowStatus.FAILED.value

    async def test_optional_approval_timeout_skips(self, register, engine, supervisor):
        await register(clinic_onboarding(review={"timeout_minutes": 0, "is_required": False}))
        instance = await engine.start("clinic_onboarding", input_data={"userId": "u-1"})

        await supervisor.run_cycle()

        instance = await engine.get_instance(instance.id)
        assert _by_name(instance)["clinic-admin-review"].status == StepStatus.SKIPPED.value
        assert instance.status == WorkflowStatus.COMPLETED.value

    async def test_late_approval_after_timeout_rejected(self, register, engine, supervisor):
        await register(clinic_onboarding(review={"timeout_minutes": 0}))
        instance = await engine.start("clinic_onboarding", input_data={"userId": "u-1"})
        review = _by_name(instance)["clinic-admin-review"]
        await supervisor.run_cycle()

        with pytest.raises(NotWaitingError):
            await engine.resolve_approval(review.id, "admin-1", True)

    async def test_running_step_timeout_then_retry(
        self, register, engine, supervisor, services, clock
    ):
        await register(service_pipeline(endpoint="billing-service/charge", timeout_minutes=5))
        entered = asyncio.Event()
        release = asyncio.Event()
        original = services.invoke

        async def first_call_hangs(endpoint, input_data):
            if not entered.is_set():
                entered.set()
                await release.wait()
            return await original(endpoint, input_data)

        services.invoke = first_call_hangs
        started = asyncio.create_task(engine.start("service_pipeline"))
        await entered.wait()

        clock.advance(minutes=5)
        report = await supervisor.run_cycle()
        assert len(report.timed_out_steps) == 1
        assert report.retried_steps == report.timed_out_steps

        # The hung first attempt finishes late; its result is discarded
        release.set()
        instance = await started

        assert instance.status == WorkflowStatus.COMPLETED.value
        call = instance.executions[0]
        assert call.status == StepStatus.COMPLETED.value
        assert call.retry_count == 1
        assert services.calls_to("billing-service/charge") == 2

    async def test_running_step_falls_back_to_definition_timeout(
        self, register, engine, supervisor, services, clock
    ):
        definition = service_pipeline(endpoint="billing-service/charge")
        definition["timeout_minutes"] = 30
        await register(definition)
        entered = asyncio.Event()
        release = asyncio.Event()
        original = services.invoke

        async def first_call_hangs(endpoint, input_data):
            if not entered.is_set():
                entered.set()
                await release.wait()
            return await original(endpoint, input_data)

        services.invoke = first_call_hangs
        started = asyncio.create_task(engine.start("service_pipeline"))
        await entered.wait()

        [instance] = await engine.list_instances()
        call = (await engine.get_instance(instance.id)).executions[0]
        assert call.status == StepStatus.RUNNING.value
        assert call.timeout_at == clock.after(30)

        clock.advance(minutes=30)
        report = await supervisor.run_cycle()
        assert report.timed_out_steps == [call.id]
        assert report.retried_steps == [call.id]

        release.set()
        instance = await started
        assert instance.status == WorkflowStatus.COMPLETED.value
        assert instance.executions[0].retry_count == 1


@pytest.mark.integration
class TestRetries:
    """Retry budget of failing steps."""

    async def test_service_call_retried_until_exhausted(self, register, engine, supervisor, services):
        services.failing["billing-service/charge"] = True
        await register(service_pipeline(endpoint="billing-service/charge", retry_attempts=2))

        instance = await engine.start("service_pipeline")
        call = _by_name(instance)["call"]
        assert call.status == StepStatus.FAILED.value
        assert call.retry_count == 0
        assert instance.status == WorkflowStatus.RUNNING.value

        first = await supervisor.run_cycle()
        assert first.retried_steps == [call.id]
        second = await supervisor.run_cycle()
        assert second.retried_steps == [call.id]
        third = await supervisor.run_cycle()
        assert not third.changed

        assert services.calls_to("billing-service/charge") == 3
        instance = await engine.get_instance(instance.id)
        assert len(instance.executions) == 1
        call = instance.executions[0]
        assert call.status == StepStatus.FAILED.value
        assert call.retry_count == 2
        assert instance.status == WorkflowStatus.FAILED.value
        assert instance.retry_count == 2
        assert "billing-service/charge returned 503" in instance.error_message

    async def test_retry_succeeds_on_second_attempt(self, register, engine, supervisor, services):
        services.failing["billing-service/charge"] = True
        await register(service_pipeline(endpoint="billing-service/charge"))
        instance = await engine.start("service_pipeline")

        del services.failing["billing-service/charge"]
        await supervisor.run_cycle()

        instance = await engine.get_instance(instance.id)
        assert instance.status == WorkflowStatus.COMPLETED.value
        assert instance.executions[0].retry_count == 1

    async def test_definition_bound_applies_without_step_override(
        self, register, engine, supervisor, services
    ):
        services.failing["billing-service/charge"] = True
        definition = service_pipeline(endpoint="billing-service/charge")
        definition["max_retry_attempts"] = 1
        await register(definition)
        instance = await engine.start("service_pipeline")

        await supervisor.run_cycle()
        await supervisor.run_cycle()

        instance = await engine.get_instance(instance.id)
        assert instance.executions[0].retry_count == 1
        assert instance.status == WorkflowStatus.FAILED.value
        assert services.calls_to("billing-service/charge") == 2

    async def test_non_retryable_failure_not_retried(self, register, engine, supervisor, services):
        services.failing["billing-service/charge"] = False
        await register(service_pipeline(endpoint="billing-service/charge", retry_attempts=5))
        instance = await engine.start("service_pipeline")

        assert instance.status == WorkflowStatus.FAILED.value
        assert not (await supervisor.run_cycle()).changed
        assert services.calls_to("billing-service/charge") == 1

    async def test_retry_requires_running_instance(self, register, engine, services):
        services.failing["billing-service/charge"] = True
        await register(service_pipeline(endpoint="billing-service/charge", retry_attempts=3))
        instance = await engine.start("service_pipeline")
        call = _by_name(instance)["call"]

        assert await engine.retry_execution(call.id) is True
        instance = await engine.get_instance(instance.id)
        assert instance.executions[0].retry_count == 1
        assert instance.executions[0].status == StepStatus.FAILED.value

        cancelled = await engine.cancel(instance.id)
        assert _by_name(cancelled)["call"].status == StepStatus.SKIPPED.value
        assert await engine.retry_execution(call.id) is False


@pytest.mark.integration
class TestInstanceTimeouts:
    """Deadlines on instances."""

    async def test_instance_timeout(self, register, engine, supervisor, clock):
        await register(clinic_onboarding(timeout_minutes=60, review={"timeout_minutes": 600}))
        instance = await engine.start("clinic_onboarding", input_data={"userId": "u-1"})

        clock.advance(minutes=61)
        report = await supervisor.run_cycle()
        assert report.timed_out_instances == [instance.id]
        assert report.timed_out_steps == []

        instance = await engine.get_instance(instance.id)
        assert instance.status == WorkflowStatus.TIMEOUT.value
        assert instance.error_message == "workflow timeout"
        review = _by_name(instance)["clinic-admin-review"]
        assert review.status == StepStatus.SKIPPED.value
        assert review.error_message == "workflow timeout"
        assert _by_name(instance)["validate"].status == StepStatus.COMPLETED.value

        assert not (await supervisor.run_cycle()).changed

    async def test_instance_timeout_skips_failure_with_retries_left(
        self, register, engine, supervisor, services, clock
    ):
        services.failing["billing-service/charge"] = True
        definition = service_pipeline(endpoint="billing-service/charge", retry_attempts=5)
        definition["timeout_minutes"] = 10
        await register(definition)
        instance = await engine.start("service_pipeline")

        clock.advance(minutes=10)
        report = await supervisor.run_cycle()
        assert report.timed_out_instances == [instance.id]

        instance = await engine.get_instance(instance.id)
        assert instance.status == WorkflowStatus.TIMEOUT.value
        call = instance.executions[0]
        assert call.status == StepStatus.SKIPPED.value
        assert call.error_message == "workflow timeout"

    async def test_created_instance_times_out(self, register, engine, supervisor, clock):
        await register(clinic_onboarding(timeout_minutes=10))
        instance = await engine.start(
            "clinic_onboarding", input_data={"userId": "u-1"}, auto_start=False
        )
        clock.advance(minutes=10)
        await supervisor.run_cycle()
        assert (await engine.get_instance(instance.id)).status == WorkflowStatus.TIMEOUT.value

    async def test_no_deadline_never_times_out(self, register, engine, supervisor, clock):
        await register(clinic_onboarding())
        instance = await engine.start("clinic_onboarding", input_data={"userId": "u-1"})
        clock.advance(days=365)
        await supervisor.run_cycle()
        assert (await engine.get_instance(instance.id)).status == WorkflowStatus.RUNNING.value


@pytest.mark.integration
class TestRunForever:
    """The supervisor loop."""

    async def test_stops_when_event_set(self, uow, engine, clock):
        stop = asyncio.Event()
        cycles = []

        async def sleep(_seconds):
            if len(cycles) >= 2:
                stop.set()

        supervisor = Supervisor(uow, engine, clock=clock, interval_seconds=1, sleep=sleep)
        original = supervisor.run_cycle

        async def counting_cycle():
            cycles.append(1)
            return await original()

        supervisor.run_cycle = counting_cycle
        await supervisor.run_forever(stop)
        assert len(cycles) == 2

    async def test_failing_cycle_does_not_stop_loop(self, uow, engine, clock):
        stop = asyncio.Event()
        attempts = []

        async def sleep(_seconds):
            if len(attempts) >= 3:
                stop.set()

        async def broken_cycle():
            attempts.append(1)
            raise RuntimeError("database went away")

        supervisor = Supervisor(uow, engine, clock=clock, sleep=sleep)
        supervisor.run_cycle = broken_cycle
        await supervisor.run_forever(stop)
        assert len(attempts) == 3
