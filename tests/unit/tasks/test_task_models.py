from __future__ import annotations

from hubtasks.tasks.task_models import (
    AdvancedMode,
    CanonicalStatus,
    FieldOverride,
    Job,
    SimpleMode,
    UploadPlan,
    submission_mode_for,
)
from tests.mocks.providers import HONGKONG


def test_field_override_coerces_values_to_strings() -> None:
    override = FieldOverride.coerce(3, "seed", 42)

    assert override.to_payload() == {"nodeId": "3", "fieldName": "seed", "fieldValue": "42"}


def test_field_override_coerces_booleans_and_none() -> None:
    assert FieldOverride.coerce("5", "enabled", True).field_value == "true"
    assert FieldOverride.coerce("5", "enabled", False).field_value == "false"
    assert FieldOverride.coerce("5", "prompt", None).field_value == ""


def test_field_override_from_mapping_accepts_both_key_styles() -> None:
    camel = FieldOverride.from_mapping({"nodeId": 6, "fieldName": "text", "fieldValue": "cat"})
    snake = FieldOverride.from_mapping({"node_id": 6, "field_name": "text", "field_value": "cat"})

    assert camel == snake == FieldOverride("6", "text", "cat")


def test_empty_overrides_select_simple_mode() -> None:
    assert submission_mode_for(None) == SimpleMode()
    assert submission_mode_for([]) == SimpleMode()


def test_overrides_select_advanced_mode() -> None:
    mode = submission_mode_for([{"nodeId": "1", "fieldName": "image", "fieldValue": "a.png"}])

    assert isinstance(mode, AdvancedMode)
    assert mode.overrides == (FieldOverride("1", "image", "a.png"),)


def test_terminal_statuses() -> None:
    assert not CanonicalStatus.PENDING.is_terminal
    assert not CanonicalStatus.RUNNING.is_terminal
    assert CanonicalStatus.SUCCEEDED.is_terminal
    assert CanonicalStatus.FAILED.is_terminal
    assert CanonicalStatus.CANCELLED.is_terminal


def test_job_snapshot_is_detached() -> None:
    job = Job(workflow_id="wf", region=HONGKONG, mode=SimpleMode())
    job.superseded_task_ids.append("old")

    snapshot = job.snapshot()
    snapshot.superseded_task_ids.append("other")
    snapshot.status = CanonicalStatus.RUNNING

    assert job.superseded_task_ids == ["old"]
    assert job.status is CanonicalStatus.PENDING


def test_upload_plan_shrinks_retry_timeout_with_floor() -> None:
    plan = UploadPlan(use_direct_upload=True, timeout_ms=120_000, max_retries=3)

    assert plan.timeout_for_attempt(1) == 120_000
    assert plan.timeout_for_attempt(2) == 84_000
    small = UploadPlan(use_direct_upload=True, timeout_ms=60_000, max_retries=3)
    assert small.timeout_for_attempt(2) == 60_000


def test_upload_plan_backoff_is_longer_after_timeouts() -> None:
    plan = UploadPlan(use_direct_upload=True, timeout_ms=60_000, max_retries=3)

    assert plan.delay_after_attempt(1, timed_out=False) == 2_000
    assert plan.delay_after_attempt(2, timed_out=False) == 4_000
    assert plan.delay_after_attempt(2, timed_out=True) == 10_000
