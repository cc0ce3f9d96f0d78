"""Persistence layer for job history."""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..db.db_models import JobHistoryModel
from ..tasks.task_models import Job, utcnow


@dataclass(slots=True)
class JobHistoryRecord:
    """Archived view of a job evicted from the in-memory registry."""

    job_id: str
    task_id: str | None
    superseded_task_ids: list[str]
    workflow_id: str
    webapp_id: str | None
    region: str
    instance_type: str | None
    mode: str
    overrides: list[dict[str, str]]
    status: str
    failure_reason: str | None
    error_message: str | None
    result_urls: list[str]
    attempts: int
    created_at: datetime
    updated_at: datetime
    archived_at: datetime


class JobHistoryRepository:
    """Manage job_history records."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def archive(self, job: Job, *, archived_at: datetime | None = None) -> None:
        """Insert or replace the history row for ``job``."""
        with self._session_factory() as session:
            session.merge(
                JobHistoryModel(
                    job_id=job.job_id,
                    task_id=job.task_id,
                    superseded_task_ids_json=json.dumps(list(job.superseded_task_ids)),
                    workflow_id=job.workflow_id,
                    webapp_id=job.webapp_id,
                    region=job.region.id,
                    instance_type=job.instance_type,
                    mode=job.mode_label,
                    overrides_json=json.dumps([item.to_payload() for item in job.overrides]),
                    status=job.status.value,
                    failure_reason=job.failure_reason.value if job.failure_reason else None,
                    error_message=job.error_message,
                    result_urls_json=json.dumps(list(job.result_urls)),
                    attempts=job.attempts,
                    created_at=job.created_at,
                    updated_at=job.updated_at,
                    archived_at=archived_at or utcnow(),
                )
            )
            session.commit()

    def get_job(self, job_id: str) -> JobHistoryRecord:
        """Return the archived job, raising ``KeyError`` when absent."""
        with self._session_factory() as session:
            model = session.get(JobHistoryModel, job_id)
            if model is None:
                raise KeyError(f"Job '{job_id}' not found")
            return _to_record(model)

    def list_recent(self, *, status: str | None = None, limit: int = 100) -> list[JobHistoryRecord]:
        with self._session_factory() as session:
            stmt = select(JobHistoryModel).order_by(JobHistoryModel.archived_at.desc())
            if status is not None:
                stmt = stmt.where(JobHistoryModel.status == status)
            stmt = stmt.limit(limit)
            return [_to_record(model) for model in session.scalars(stmt)]


def _to_record(model: JobHistoryModel) -> JobHistoryRecord:
    return JobHistoryRecord(
        job_id=model.job_id,
        task_id=model.task_id,
        superseded_task_ids=json.loads(model.superseded_task_ids_json or "[]"),
        workflow_id=model.workflow_id,
        webapp_id=model.webapp_id,
        region=model.region,
        instance_type=model.instance_type,
        mode=model.mode,
        overrides=json.loads(model.overrides_json or "[]"),
        status=model.status,
        failure_reason=model.failure_reason,
        error_message=model.error_message,
        result_urls=json.loads(model.result_urls_json or "[]"),
        attempts=model.attempts,
        created_at=model.created_at,
        updated_at=model.updated_at,
        archived_at=model.archived_at,
    )
