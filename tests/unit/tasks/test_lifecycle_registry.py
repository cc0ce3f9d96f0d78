from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from hubtasks.exceptions import (
    JobNotFoundError,
    TerminalValidationError,
    TransientNetworkError,
)
from hubtasks.tasks.registry import TaskLifecycleRegistry
from hubtasks.tasks.task_models import (
    CanonicalStatus,
    FailureReason,
    Job,
    SimpleMode,
    submission_mode_for,
)
from tests.mocks.providers import HONGKONG, FakeProviderClient


class FrozenClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_job(workflow_id: str = "wf-1", overrides=None) -> Job:
    return Job(workflow_id=workflow_id, region=HONGKONG, mode=submission_mode_for(overrides))


def test_register_and_get_returns_snapshot(registry: TaskLifecycleRegistry) -> None:
    job = registry.register(make_job())

    fetched = registry.get(job.job_id)
    fetched.status = CanonicalStatus.FAILED

    assert registry.get(job.job_id).status is CanonicalStatus.PENDING
    assert job.job_id in registry
    assert len(registry) == 1


def test_register_rejects_duplicate_ids(registry: TaskLifecycleRegistry) -> None:
    job = make_job()
    registry.register(job)

    with pytest.raises(ValueError):
        registry.register(job)


def test_unknown_job_raises_not_found(registry: TaskLifecycleRegistry) -> None:
    with pytest.raises(JobNotFoundError):
        registry.get("missing")
    with pytest.raises(KeyError):
        registry.update_status("missing", CanonicalStatus.RUNNING)


def test_terminal_status_is_sticky(registry: TaskLifecycleRegistry) -> None:
    job = registry.register(make_job())
    registry.update_status(job.job_id, CanonicalStatus.SUCCEEDED, results=["https://x/1.png"])

    ignored = registry.update_status(job.job_id, CanonicalStatus.RUNNING, provider_status="RUNNING")

    assert ignored is None
    current = registry.get(job.job_id)
    assert current.status is CanonicalStatus.SUCCEEDED
    assert current.result_urls == ("https://x/1.png",)
    assert current.progress == 100


def test_results_only_recorded_on_success(registry: TaskLifecycleRegistry) -> None:
    job = registry.register(make_job())

    registry.update_status(job.job_id, CanonicalStatus.RUNNING, results=["https://x/1.png"])

    assert registry.get(job.job_id).result_urls == ()


def test_failure_sets_error_and_reason(registry: TaskLifecycleRegistry) -> None:
    job = registry.register(make_job())

    registry.update_status(
        job.job_id,
        CanonicalStatus.FAILED,
        error="provider said no",
        failure_reason=FailureReason.PROVIDER_FAILURE,
    )

    current = registry.get(job.job_id)
    assert current.error_message == "provider said no"
    assert current.failure_reason is FailureReason.PROVIDER_FAILURE


def test_fail_submission_distinguishes_validation(registry: TaskLifecycleRegistry) -> None:
    first = registry.register(make_job())
    second = registry.register(make_job())

    registry.fail_submission(first.job_id, TerminalValidationError("bad node"), attempts=1)
    registry.fail_submission(second.job_id, TransientNetworkError("reset"), attempts=3)

    assert registry.get(first.job_id).failure_reason is FailureReason.VALIDATION_ERROR
    assert registry.get(second.job_id).failure_reason is FailureReason.SUBMISSION_ERROR
    assert registry.get(second.job_id).attempts == 3


def test_on_change_receives_snapshots(registry: TaskLifecycleRegistry) -> None:
    job = registry.register(make_job())
    seen: list[CanonicalStatus] = []
    registry.on_change(job.job_id, lambda snapshot: seen.append(snapshot.status))

    registry.update_status(job.job_id, CanonicalStatus.RUNNING)
    registry.update_status(job.job_id, CanonicalStatus.SUCCEEDED, results=[])

    assert seen == [CanonicalStatus.RUNNING, CanonicalStatus.SUCCEEDED]


def test_failing_callback_does_not_break_update(registry: TaskLifecycleRegistry) -> None:
    job = registry.register(make_job())

    def explode(_: Job) -> None:
        raise RuntimeError("observer bug")

    registry.on_change(job.job_id, explode)

    assert registry.update_status(job.job_id, CanonicalStatus.RUNNING) is not None


def test_task_id_is_write_once(registry: TaskLifecycleRegistry) -> None:
    job = registry.register(make_job())
    registry.assign_task_id(job.job_id, "t-1")

    with pytest.raises(ValueError):
        registry.assign_task_id(job.job_id, "t-2")


@pytest.mark.asyncio
async def test_cancel_running_job_calls_provider(
    registry: TaskLifecycleRegistry, provider: FakeProviderClient
) -> None:
    job = registry.register(make_job())
    registry.assign_task_id(job.job_id, "t-1")
    registry.update_status(job.job_id, CanonicalStatus.RUNNING)

    assert await registry.cancel(job.job_id) is True

    assert provider.cancelled == ["t-1"]
    assert registry.get(job.job_id).status is CanonicalStatus.CANCELLED


@pytest.mark.asyncio
async def test_cancel_terminal_job_is_rejected(
    registry: TaskLifecycleRegistry, provider: FakeProviderClient
) -> None:
    job = registry.register(make_job())
    registry.assign_task_id(job.job_id, "t-1")
    registry.update_status(job.job_id, CanonicalStatus.SUCCEEDED, results=["https://x/1.png"])

    assert await registry.cancel(job.job_id) is False
    assert await registry.cancel("unknown") is False
    assert provider.cancelled == []
    assert registry.get(job.job_id).status is CanonicalStatus.SUCCEEDED


@pytest.mark.asyncio
async def test_cancel_without_ack_leaves_state(
    registry: TaskLifecycleRegistry, provider: FakeProviderClient
) -> None:
    provider.cancel_results.append(TransientNetworkError("timeout"))
    job = registry.register(make_job())
    registry.assign_task_id(job.job_id, "t-1")
    registry.update_status(job.job_id, CanonicalStatus.RUNNING)

    assert await registry.cancel(job.job_id) is False
    assert registry.get(job.job_id).status is CanonicalStatus.RUNNING


@pytest.mark.asyncio
async def test_cancel_before_submission_then_attach_cancels_remote(
    registry: TaskLifecycleRegistry, provider: FakeProviderClient
) -> None:
    job = registry.register(make_job())

    assert await registry.cancel(job.job_id) is True
    snapshot = await registry.attach_submission(job.job_id, "t-late")

    assert snapshot.status is CanonicalStatus.CANCELLED
    assert provider.cancelled == ["t-late"]


@pytest.mark.asyncio
async def test_retry_failed_job_resubmits_same_request(
    registry: TaskLifecycleRegistry, provider: FakeProviderClient
) -> None:
    overrides = [{"nodeId": "3", "fieldName": "seed", "fieldValue": 7}]
    job = registry.register(make_job("wf-9", overrides))
    registry.assign_task_id(job.job_id, "t-old")
    registry.update_status(
        job.job_id, CanonicalStatus.FAILED, error="boom", failure_reason=FailureReason.PROVIDER_FAILURE
    )

    assert await registry.retry(job.job_id) is True

    current = registry.get(job.job_id)
    assert current.status is CanonicalStatus.PENDING
    assert current.task_id == "task-1"
    assert current.superseded_task_ids == ["t-old"]
    assert current.error_message is None
    assert current.failure_reason is None
    assert provider.submitted[-1]["workflowId"] == "wf-9"
    assert provider.submitted[-1]["nodeInfoList"] == [
        {"nodeId": "3", "fieldName": "seed", "fieldValue": "7"}
    ]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status", [CanonicalStatus.PENDING, CanonicalStatus.RUNNING, CanonicalStatus.SUCCEEDED]
)
async def test_retry_only_from_failed(
    registry: TaskLifecycleRegistry, provider: FakeProviderClient, status: CanonicalStatus
) -> None:
    job = registry.register(make_job())
    if status is not CanonicalStatus.PENDING:
        registry.update_status(job.job_id, status, results=[])

    assert await registry.retry(job.job_id) is False
    assert provider.submitted == []


@pytest.mark.asyncio
async def test_retry_submission_failure_returns_to_failed(
    registry: TaskLifecycleRegistry, provider: FakeProviderClient
) -> None:
    provider.submit_queue.append(TerminalValidationError("still broken"))
    job = registry.register(make_job())
    registry.update_status(job.job_id, CanonicalStatus.FAILED, error="first")

    assert await registry.retry(job.job_id) is False

    current = registry.get(job.job_id)
    assert current.status is CanonicalStatus.FAILED
    assert current.failure_reason is FailureReason.VALIDATION_ERROR


def test_sweep_evicts_only_stale_terminal_jobs() -> None:
    clock = FrozenClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
    archived: list[str] = []
    registry = TaskLifecycleRegistry(clock=clock, archive=lambda job: archived.append(job.job_id))
    done = registry.register(make_job())
    registry.update_status(done.job_id, CanonicalStatus.SUCCEEDED, results=[])
    pending = registry.register(make_job())

    clock.advance(minutes=31)
    evicted = registry.sweep(timedelta(minutes=30))

    assert [job.job_id for job in evicted] == [done.job_id]
    assert archived == [done.job_id]
    assert pending.job_id in registry
    assert done.job_id not in registry


def test_sweep_keeps_recent_terminal_jobs() -> None:
    clock = FrozenClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))
    registry = TaskLifecycleRegistry(clock=clock)
    job = registry.register(make_job())
    registry.update_status(job.job_id, CanonicalStatus.CANCELLED)

    clock.advance(minutes=29)

    assert registry.sweep(timedelta(minutes=30)) == []
    assert job.job_id in registry


def test_sweep_survives_archive_errors() -> None:
    clock = FrozenClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))

    def broken_archive(_: Job) -> None:
        raise RuntimeError("db down")

    registry = TaskLifecycleRegistry(clock=clock, archive=broken_archive)
    job = registry.register(make_job())
    registry.update_status(job.job_id, CanonicalStatus.FAILED, error="x")
    clock.advance(hours=1)

    assert len(registry.sweep(timedelta(minutes=30))) == 1
    assert len(registry) == 0


def test_find_duplicates_groups_identical_requests(registry: TaskLifecycleRegistry) -> None:
    overrides = [{"nodeId": "1", "fieldName": "text", "fieldValue": "cat"}]
    first = registry.register(make_job("wf", overrides))
    second = registry.register(make_job("wf", overrides))
    registry.register(make_job("wf", [{"nodeId": "1", "fieldName": "text", "fieldValue": "dog"}]))
    registry.register(Job(workflow_id="other", region=HONGKONG, mode=SimpleMode()))

    groups = registry.find_duplicates()

    assert len(groups) == 1
    assert {job.job_id for job in groups[0]} == {first.job_id, second.job_id}


def test_list_jobs_filters_by_status(registry: TaskLifecycleRegistry) -> None:
    running = registry.register(make_job())
    registry.update_status(running.job_id, CanonicalStatus.RUNNING)
    registry.register(make_job())

    assert [job.job_id for job in registry.list_jobs(CanonicalStatus.RUNNING)] == [running.job_id]
    assert len(registry.list_jobs()) == 2
