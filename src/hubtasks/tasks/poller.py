"""Status polling with canonical status mapping and single-flight loops."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Mapping
from typing import Any

import structlog

from ..exceptions import OrchestrationError, PollTimeoutError
from ..providers.providers_base import ProviderClient
from .registry import TaskLifecycleRegistry
from .results import ResultNormalizer
from .task_models import CanonicalStatus, FailureReason, Job
from .timing import wrap_sleep

logger = structlog.get_logger(__name__)

PROVIDER_STATUS_MAP: Mapping[str, CanonicalStatus] = {
    "QUEUED": CanonicalStatus.PENDING,
    "PENDING": CanonicalStatus.PENDING,
    "WAITING": CanonicalStatus.PENDING,
    "RUNNING": CanonicalStatus.RUNNING,
    "PROCESSING": CanonicalStatus.RUNNING,
    "SUCCESS": CanonicalStatus.SUCCEEDED,
    "COMPLETED": CanonicalStatus.SUCCEEDED,
    "FAILED": CanonicalStatus.FAILED,
    "ERROR": CanonicalStatus.FAILED,
    "CANCELLED": CanonicalStatus.CANCELLED,
    "CANCELED": CanonicalStatus.CANCELLED,
}


def map_provider_status(raw: str | None) -> CanonicalStatus:
    """Unknown vocabulary maps to ``pending`` so the loop keeps going."""
    if not raw:
        return CanonicalStatus.PENDING
    return PROVIDER_STATUS_MAP.get(raw.strip().upper(), CanonicalStatus.PENDING)


def split_status_payload(raw: Any) -> tuple[str | None, int | None]:
    """Return ``(provider_status, progress)`` from a string or object payload."""
    if isinstance(raw, Mapping):
        status = raw.get("status") or raw.get("taskStatus")
        progress = _parse_progress(raw.get("progress"))
        return (str(status) if status is not None else None), progress
    if raw is None:
        return None, None
    return str(raw), None


def _parse_progress(value: Any) -> int | None:
    if value is None:
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return max(0, min(100, int(number)))


class StatusPoller:
    """Poll provider status until a job reaches a terminal state.

    At most one loop runs per job id; concurrent callers join the running
    loop. A failed status query is logged and counted as an attempt, it
    never aborts the wait on its own.
    """

    def __init__(
        self,
        provider: ProviderClient,
        registry: TaskLifecycleRegistry,
        normalizer: ResultNormalizer,
        *,
        interval_seconds: float = 5.0,
        max_attempts: int = 150,
        settle_delay_seconds: float = 3.0,
        fetch_attempts: int = 3,
        fetch_backoff_seconds: float = 2.0,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self._provider = provider
        self._registry = registry
        self._normalizer = normalizer
        self._interval = max(0.0, interval_seconds)
        self._max_attempts = max(1, max_attempts)
        self._settle_delay = max(0.0, settle_delay_seconds)
        self._fetch_attempts = max(1, fetch_attempts)
        self._fetch_backoff = max(0.0, fetch_backoff_seconds)
        self._sleep = wrap_sleep(sleep)
        self._inflight: dict[str, asyncio.Task[Job]] = {}

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def is_polling(self, job_id: str) -> bool:
        task = self._inflight.get(job_id)
        return task is not None and not task.done()

    async def poll_until_terminal(
        self,
        job_id: str,
        *,
        interval: float | None = None,
        max_attempts: int | None = None,
    ) -> Job:
        """Return the terminal job, or raise :class:`PollTimeoutError`."""
        task = self._inflight.get(job_id)
        if task is None or task.done():
            task = asyncio.create_task(
                self._poll_loop(
                    job_id,
                    interval=self._interval if interval is None else max(0.0, interval),
                    max_attempts=self._max_attempts if max_attempts is None else max(1, max_attempts),
                ),
                name=f"poll-{job_id}",
            )
            self._inflight[job_id] = task
            task.add_done_callback(lambda done, key=job_id: self._forget(key, done))
        else:
            logger.debug("poller.joined", job_id=job_id)
        return await asyncio.shield(task)

    async def aclose(self) -> None:
        """Cancel every running loop and wait for them to unwind."""
        tasks = list(self._inflight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _forget(self, job_id: str, task: asyncio.Task[Job]) -> None:
        if self._inflight.get(job_id) is task:
            del self._inflight[job_id]

    async def _poll_loop(self, job_id: str, *, interval: float, max_attempts: int) -> Job:
        structlog.contextvars.bind_contextvars(job_id=job_id)
        job = self._registry.get(job_id)
        if job.is_terminal:
            return job
        if job.task_id is None:
            raise ValueError(f"Job {job_id} has not been submitted")
        task_id = job.task_id

        logger.info("poller.start", task_id=task_id, max_attempts=max_attempts)
        for attempt in range(1, max_attempts + 1):
            await self._sleep(interval)
            current = self._registry.get(job_id)
            if current.is_terminal:
                logger.info("poller.stopped", status=current.status.value, attempt=attempt)
                return current

            try:
                raw = await self._provider.query_status(current.region, task_id)
            except OrchestrationError as exc:
                logger.warning(
                    "poller.query_failed", task_id=task_id, attempt=attempt, error=str(exc)
                )
                self._registry.touch(job_id)
                continue

            provider_status, progress = split_status_payload(raw)
            status = map_provider_status(provider_status)
            logger.info(
                "poller.status",
                task_id=task_id,
                attempt=attempt,
                provider_status=provider_status,
                status=status.value,
            )

            if status is CanonicalStatus.SUCCEEDED:
                updated = self._registry.update_status(
                    job_id,
                    CanonicalStatus.RUNNING,
                    provider_status=provider_status,
                    progress=progress,
                )
                if updated is None:
                    return self._registry.get(job_id)
                await self._sleep(self._settle_delay)
                return await self._finish_success(job_id)

            if status in (CanonicalStatus.FAILED, CanonicalStatus.CANCELLED):
                self._registry.update_status(
                    job_id,
                    status,
                    provider_status=provider_status,
                    progress=progress,
                    error=f"Provider reported {provider_status} for task {task_id}",
                    failure_reason=FailureReason.PROVIDER_FAILURE,
                )
                return self._registry.get(job_id)

            updated = self._registry.update_status(
                job_id, status, provider_status=provider_status, progress=progress
            )
            if updated is None:
                return self._registry.get(job_id)

        error = PollTimeoutError(job_id, max_attempts)
        updated = self._registry.update_status(
            job_id,
            CanonicalStatus.FAILED,
            error=str(error),
            failure_reason=FailureReason.POLL_TIMEOUT,
        )
        if updated is None:
            return self._registry.get(job_id)
        logger.error("poller.timeout", task_id=task_id)
        try:
            await self._provider.cancel_job(updated.region, task_id)
        except OrchestrationError as exc:
            logger.warning("poller.timeout_cancel_failed", task_id=task_id, error=str(exc))
        raise error

    async def _finish_success(self, job_id: str) -> Job:
        job = self._registry.get(job_id)
        if job.is_terminal:
            return job
        last_error: OrchestrationError | None = None
        for attempt in range(1, self._fetch_attempts + 1):
            try:
                urls = await self._normalizer.fetch_results(job)
            except OrchestrationError as exc:
                last_error = exc
                logger.warning("poller.fetch_failed", attempt=attempt, error=str(exc))
                if attempt < self._fetch_attempts:
                    await self._sleep(self._fetch_backoff * attempt)
                continue
            self._registry.update_status(job_id, CanonicalStatus.SUCCEEDED, results=urls)
            return self._registry.get(job_id)

        self._registry.update_status(
            job_id,
            CanonicalStatus.FAILED,
            error=f"Failed to fetch outputs: {last_error}",
            failure_reason=FailureReason.RESULT_ERROR,
        )
        return self._registry.get(job_id)
