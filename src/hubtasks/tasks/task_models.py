"""Data structures shared by the orchestration components."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any
from uuid import uuid4

from ..exceptions import TerminalValidationError


def utcnow() -> datetime:
    """Return timezone-aware UTC now."""
    return datetime.now(timezone.utc)


class CanonicalStatus(StrEnum):
    """Provider-independent job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset(
    {CanonicalStatus.SUCCEEDED, CanonicalStatus.FAILED, CanonicalStatus.CANCELLED}
)


class FailureReason(StrEnum):
    """Why a job ended up in ``failed``."""

    SUBMISSION_ERROR = "submission_error"
    VALIDATION_ERROR = "validation_error"
    PROVIDER_FAILURE = "provider_failure"
    POLL_TIMEOUT = "poll_timeout"
    RESULT_ERROR = "result_error"
    UPLOAD_ERROR = "upload_error"


@dataclass(frozen=True, slots=True)
class Region:
    """Provider endpoint for one routing region."""

    id: str
    display_name: str
    api_base_url: str
    host_header: str


def _as_field_string(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


@dataclass(frozen=True, slots=True)
class FieldOverride:
    """Patch of a single workflow node field; every member is a string."""

    node_id: str
    field_name: str
    field_value: str

    @classmethod
    def coerce(cls, node_id: Any, field_name: Any, field_value: Any) -> "FieldOverride":
        return cls(
            node_id=_as_field_string(node_id),
            field_name=_as_field_string(field_name),
            field_value=_as_field_string(field_value),
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "FieldOverride":
        """Accept both ``nodeId`` style and ``node_id`` style keys."""
        return cls.coerce(
            data.get("nodeId", data.get("node_id")),
            data.get("fieldName", data.get("field_name")),
            data.get("fieldValue", data.get("field_value")),
        )

    def to_payload(self) -> dict[str, str]:
        return {
            "nodeId": _as_field_string(self.node_id),
            "fieldName": _as_field_string(self.field_name),
            "fieldValue": _as_field_string(self.field_value),
        }


@dataclass(frozen=True, slots=True)
class SimpleMode:
    """Run the stored workflow verbatim."""

    overrides: tuple[FieldOverride, ...] = ()


@dataclass(frozen=True, slots=True)
class AdvancedMode:
    """Run the workflow with field patches applied."""

    overrides: tuple[FieldOverride, ...]


SubmissionMode = SimpleMode | AdvancedMode


def coerce_overrides(
    overrides: Iterable[FieldOverride | Mapping[str, Any]] | None,
) -> tuple[FieldOverride, ...]:
    if not overrides:
        return ()
    result: list[FieldOverride] = []
    for item in overrides:
        if isinstance(item, FieldOverride):
            result.append(FieldOverride.coerce(item.node_id, item.field_name, item.field_value))
        else:
            result.append(FieldOverride.from_mapping(item))
    return tuple(result)


def submission_mode_for(
    overrides: Iterable[FieldOverride | Mapping[str, Any]] | None,
) -> SubmissionMode:
    """Pick ``SimpleMode`` for an empty or absent override list."""
    coerced = coerce_overrides(overrides)
    if not coerced:
        return SimpleMode()
    return AdvancedMode(overrides=coerced)


def resolve_target(workflow_id: Any, webapp_id: Any = None) -> tuple[str, str | None]:
    """Return ``(workflow_id, webapp_id)``; a workflow id wins over a web app id."""
    workflow = _as_field_string(workflow_id).strip()
    webapp = _as_field_string(webapp_id).strip()
    if workflow:
        return workflow, None
    if webapp:
        return "", webapp
    raise TerminalValidationError("workflow_id or webapp_id is required")


@dataclass(slots=True)
class Job:
    """In-memory view of one submitted (or about to be submitted) job."""

    workflow_id: str
    region: Region
    mode: SubmissionMode
    job_id: str = field(default_factory=lambda: uuid4().hex)
    task_id: str | None = None
    instance_type: str | None = None
    webapp_id: str | None = None
    status: CanonicalStatus = CanonicalStatus.PENDING
    provider_status: str | None = None
    progress: int | None = None
    result_urls: tuple[str, ...] = ()
    error_message: str | None = None
    failure_reason: FailureReason | None = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    attempts: int = 0
    superseded_task_ids: list[str] = field(default_factory=list)

    @property
    def overrides(self) -> tuple[FieldOverride, ...]:
        return self.mode.overrides

    @property
    def is_webapp(self) -> bool:
        return self.webapp_id is not None

    @property
    def mode_label(self) -> str:
        if self.is_webapp:
            return "webapp"
        return "advanced" if isinstance(self.mode, AdvancedMode) else "simple"

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def snapshot(self) -> "Job":
        return replace(self, superseded_task_ids=list(self.superseded_task_ids))


@dataclass(frozen=True, slots=True)
class UploadPlan:
    """Upload routing and retry budget derived from the payload size."""

    use_direct_upload: bool
    timeout_ms: int
    max_retries: int
    backoff_base_ms: int = 2_000
    timeout_backoff_base_ms: int = 5_000
    min_retry_timeout_ms: int = 60_000

    def timeout_for_attempt(self, attempt: int) -> int:
        """Later attempts get a shorter timeout, never below the floor."""
        if attempt <= 1:
            return self.timeout_ms
        return max(self.timeout_ms * 7 // 10, self.min_retry_timeout_ms)

    def delay_after_attempt(self, attempt: int, *, timed_out: bool) -> int:
        base = self.timeout_backoff_base_ms if timed_out else self.backoff_base_ms
        return base * attempt


__all__ = [
    "AdvancedMode",
    "CanonicalStatus",
    "FailureReason",
    "FieldOverride",
    "Job",
    "Region",
    "SimpleMode",
    "SubmissionMode",
    "UploadPlan",
    "coerce_overrides",
    "resolve_target",
    "submission_mode_for",
    "utcnow",
]
