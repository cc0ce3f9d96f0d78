"""In-process registry of jobs and their lifecycle transitions.

The registry is the only shared mutable state of the orchestration layer.
Each entry carries its own lock so that updates to unrelated jobs never
serialize on each other; the map lock only guards insertion and removal.
No lock is held while awaiting the provider or while running callbacks.

Terminal states are sticky: once a job is ``succeeded``, ``failed`` or
``cancelled`` a late poll result cannot change it. The only way out of a
terminal state is :meth:`TaskLifecycleRegistry.retry` from ``failed``.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from ..exceptions import (
    JobNotFoundError,
    OrchestrationError,
    SubmissionError,
    TerminalValidationError,
)
from ..providers.providers_base import ProviderClient
from .submitter import JobSubmitter
from .task_models import CanonicalStatus, FailureReason, Job, Region, utcnow

logger = logging.getLogger(__name__)

ChangeCallback = Callable[[Job], None]
ArchiveHook = Callable[[Job], None]


@dataclass(slots=True)
class _Entry:
    job: Job
    lock: threading.Lock = field(default_factory=threading.Lock)
    callback: ChangeCallback | None = None


class TaskLifecycleRegistry:
    """Map from job id to job state with push-style change notification."""

    def __init__(
        self,
        *,
        provider: ProviderClient | None = None,
        submitter: JobSubmitter | None = None,
        clock: Callable[[], datetime] | None = None,
        archive: ArchiveHook | None = None,
    ) -> None:
        self._provider = provider
        self._submitter = submitter
        self._clock = clock or utcnow
        self._archive = archive
        self._entries: dict[str, _Entry] = {}
        self._map_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Basic map operations
    # ------------------------------------------------------------------
    def register(self, job: Job) -> Job:
        with self._map_lock:
            if job.job_id in self._entries:
                raise ValueError(f"Job '{job.job_id}' is already registered")
            now = self._clock()
            job.created_at = now
            job.updated_at = now
            self._entries[job.job_id] = _Entry(job=job)
        logger.info(
            "registry.registered",
            extra={"job_id": job.job_id, "workflow_id": job.workflow_id, "region": job.region.id},
        )
        return job.snapshot()

    def get(self, job_id: str) -> Job:
        entry = self._entry(job_id)
        with entry.lock:
            return entry.job.snapshot()

    def list_jobs(self, status: CanonicalStatus | None = None) -> list[Job]:
        with self._map_lock:
            entries = list(self._entries.values())
        jobs: list[Job] = []
        for entry in entries:
            with entry.lock:
                if status is None or entry.job.status is status:
                    jobs.append(entry.job.snapshot())
        jobs.sort(key=lambda job: job.created_at)
        return jobs

    def remove(self, job_id: str) -> Job | None:
        with self._map_lock:
            entry = self._entries.pop(job_id, None)
        if entry is None:
            return None
        logger.info("registry.removed", extra={"job_id": job_id})
        return entry.job.snapshot()

    def on_change(self, job_id: str, callback: ChangeCallback) -> None:
        """Register the single observer for ``job_id``, replacing any previous one."""
        entry = self._entry(job_id)
        with entry.lock:
            entry.callback = callback

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------
    def update_status(
        self,
        job_id: str,
        status: CanonicalStatus,
        *,
        progress: int | None = None,
        error: str | None = None,
        results: Iterable[str] | None = None,
        provider_status: str | None = None,
        failure_reason: FailureReason | None = None,
        attempts: int | None = None,
    ) -> Job | None:
        """Apply a transition and notify the observer.

        Returns the new snapshot, or ``None`` when the job was already
        terminal and the update was ignored.
        """
        entry = self._entry(job_id)
        with entry.lock:
            job = entry.job
            if job.status.is_terminal:
                logger.info(
                    "registry.update_ignored",
                    extra={
                        "job_id": job_id,
                        "current": job.status.value,
                        "requested": CanonicalStatus(status).value,
                        "provider_status": provider_status,
                    },
                )
                return None
            self._apply(
                job,
                CanonicalStatus(status),
                progress=progress,
                error=error,
                results=results,
                provider_status=provider_status,
                failure_reason=failure_reason,
                attempts=attempts,
            )
            snapshot = job.snapshot()
            callback = entry.callback
        self._notify(callback, snapshot)
        return snapshot

    def touch(self, job_id: str) -> Job | None:
        """Refresh ``updated_at`` and notify without changing the status."""
        entry = self._entry(job_id)
        with entry.lock:
            if entry.job.status.is_terminal:
                return None
            entry.job.updated_at = self._clock()
            snapshot = entry.job.snapshot()
            callback = entry.callback
        self._notify(callback, snapshot)
        return snapshot

    def assign_task_id(self, job_id: str, task_id: str, *, attempts: int | None = None) -> Job:
        """Record the provider id of the current submission; write-once."""
        entry = self._entry(job_id)
        with entry.lock:
            job = entry.job
            if job.task_id is not None and job.task_id != task_id:
                raise ValueError(f"Job '{job_id}' already has task id '{job.task_id}'")
            job.task_id = task_id
            if attempts is not None:
                job.attempts = attempts
            job.updated_at = self._clock()
            snapshot = job.snapshot()
            callback = entry.callback
        self._notify(callback, snapshot)
        return snapshot

    async def attach_submission(
        self, job_id: str, task_id: str, *, attempts: int | None = None
    ) -> Job:
        """Assign ``task_id``; cancel it remotely when the job was cancelled meanwhile."""
        snapshot = self.assign_task_id(job_id, task_id, attempts=attempts)
        if snapshot.status is CanonicalStatus.CANCELLED:
            logger.info(
                "registry.cancelled_during_submission",
                extra={"job_id": job_id, "task_id": task_id},
            )
            await self._cancel_remote(snapshot.region, task_id, job_id=job_id)
        return snapshot

    def fail_submission(self, job_id: str, exc: SubmissionError, *, attempts: int | None = None) -> Job | None:
        reason = (
            FailureReason.VALIDATION_ERROR
            if isinstance(exc, TerminalValidationError)
            else FailureReason.SUBMISSION_ERROR
        )
        return self.update_status(
            job_id,
            CanonicalStatus.FAILED,
            error=str(exc),
            failure_reason=reason,
            attempts=attempts,
        )

    async def cancel(self, job_id: str) -> bool:
        """Cancel a pending or running job.

        Returns ``False`` for unknown or terminal jobs and when the provider
        does not acknowledge the request; the state is unchanged then.
        """
        entry = self._entries.get(job_id)
        if entry is None:
            return False
        with entry.lock:
            job = entry.job
            if job.status.is_terminal:
                return False
            task_id = job.task_id
            region = job.region
            if task_id is None:
                self._apply(job, CanonicalStatus.CANCELLED)
                snapshot = job.snapshot()
                callback = entry.callback
            else:
                snapshot = None
                callback = None
        if snapshot is not None:
            logger.info("registry.cancelled_locally", extra={"job_id": job_id})
            self._notify(callback, snapshot)
            return True

        if not await self._cancel_remote(region, task_id, job_id=job_id):
            return False

        with entry.lock:
            job = entry.job
            if job.status.is_terminal:
                return False
            self._apply(job, CanonicalStatus.CANCELLED)
            snapshot = job.snapshot()
            callback = entry.callback
        logger.info("registry.cancelled", extra={"job_id": job_id, "task_id": task_id})
        self._notify(callback, snapshot)
        return True

    async def retry(self, job_id: str) -> bool:
        """Resubmit a failed job with the same workflow, overrides and region."""
        if self._submitter is None:
            raise RuntimeError("Registry has no submitter configured for retries")
        entry = self._entries.get(job_id)
        if entry is None:
            return False
        with entry.lock:
            job = entry.job
            if job.status is not CanonicalStatus.FAILED:
                logger.info(
                    "registry.retry_rejected",
                    extra={"job_id": job_id, "status": job.status.value},
                )
                return False
            if job.task_id is not None:
                job.superseded_task_ids.append(job.task_id)
                job.task_id = None
            self._apply(job, CanonicalStatus.PENDING, provider_status=None)
            job.provider_status = None
            job.progress = None
            work = job.snapshot()
            callback = entry.callback
        self._notify(callback, work)

        try:
            task_id = await self._submitter.submit(work)
        except SubmissionError as exc:
            logger.warning("registry.retry_failed", extra={"job_id": job_id, "error": str(exc)})
            self.fail_submission(job_id, exc, attempts=work.attempts)
            return False
        await self.attach_submission(job_id, task_id, attempts=work.attempts)
        logger.info("registry.retried", extra={"job_id": job_id, "task_id": task_id})
        return True

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------
    def sweep(self, retention: timedelta, *, now: datetime | None = None) -> list[Job]:
        """Evict terminal jobs idle for longer than ``retention``."""
        current = now or self._clock()
        with self._map_lock:
            entries = list(self._entries.items())
        expired: list[str] = []
        for job_id, entry in entries:
            with entry.lock:
                job = entry.job
                if job.status.is_terminal and current - job.updated_at > retention:
                    expired.append(job_id)
        evicted: list[Job] = []
        with self._map_lock:
            for job_id in expired:
                entry = self._entries.pop(job_id, None)
                if entry is not None:
                    evicted.append(entry.job.snapshot())
        for job in evicted:
            if self._archive is None:
                continue
            try:
                self._archive(job)
            except Exception:
                logger.exception("registry.archive_failed", extra={"job_id": job.job_id})
        if evicted:
            logger.info("registry.swept", extra={"evicted": len(evicted)})
        return evicted

    def find_duplicates(self) -> list[list[Job]]:
        """Group jobs submitted with an identical target, region and overrides.

        The provider offers no idempotency key, so a submission whose response
        was lost and then retried shows up here as a duplicate.
        """
        groups: dict[tuple[object, ...], list[Job]] = defaultdict(list)
        for job in self.list_jobs():
            key = (job.workflow_id, job.webapp_id, job.region.id, job.instance_type, job.overrides)
            groups[key].append(job)
        return [jobs for jobs in groups.values() if len(jobs) > 1]

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    def _entry(self, job_id: str) -> _Entry:
        entry = self._entries.get(job_id)
        if entry is None:
            raise JobNotFoundError(job_id)
        return entry

    def _apply(
        self,
        job: Job,
        status: CanonicalStatus,
        *,
        progress: int | None = None,
        error: str | None = None,
        results: Iterable[str] | None = None,
        provider_status: str | None = None,
        failure_reason: FailureReason | None = None,
        attempts: int | None = None,
    ) -> None:
        job.status = status
        job.updated_at = self._clock()
        if provider_status is not None:
            job.provider_status = provider_status
        if progress is not None:
            job.progress = max(0, min(100, int(progress)))
        if attempts is not None:
            job.attempts = attempts
        if status is CanonicalStatus.SUCCEEDED:
            job.result_urls = tuple(results or ())
            job.progress = 100
        elif results:
            logger.warning(
                "registry.results_ignored",
                extra={"job_id": job.job_id, "status": status.value},
            )
        if status is CanonicalStatus.FAILED:
            job.error_message = error or job.error_message or "Job failed"
            job.failure_reason = failure_reason or FailureReason.PROVIDER_FAILURE
        else:
            job.error_message = None
            job.failure_reason = None

    async def _cancel_remote(self, region: Region, task_id: str, *, job_id: str) -> bool:
        if self._provider is None:
            raise RuntimeError("Registry has no provider configured for cancellation")
        try:
            acknowledged = await self._provider.cancel_job(region, task_id)
        except OrchestrationError as exc:
            logger.warning(
                "registry.cancel_failed",
                extra={"job_id": job_id, "task_id": task_id, "error": str(exc)},
            )
            return False
        return bool(acknowledged)

    @staticmethod
    def _notify(callback: ChangeCallback | None, snapshot: Job) -> None:
        if callback is None:
            return
        try:
            callback(snapshot)
        except Exception:
            logger.exception("registry.callback_failed", extra={"job_id": snapshot.job_id})
