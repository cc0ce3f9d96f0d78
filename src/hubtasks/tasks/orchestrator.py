"""Facade wiring submission, polling, retention and uploads together."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable, Mapping
from datetime import timedelta
from typing import Any

import structlog

from ..config import AppConfig
from ..exceptions import (
    JobCancelledError,
    MissingApiKeyError,
    OrchestrationError,
    PollTimeoutError,
    ProviderBusinessFailure,
    ResultError,
    SubmissionError,
    TerminalValidationError,
    TransientNetworkError,
    UploadError,
)
from ..lifecycle import run_periodic_sweep
from ..providers.providers_base import ProviderClient
from ..providers.providers_runninghub import RunningHubClient
from ..storage.object_storage import ObjectStorageUploader
from .poller import StatusPoller
from .regions import RegionDirectory
from .registry import ArchiveHook, ChangeCallback, TaskLifecycleRegistry
from .results import ResultNormalizer
from .submitter import JobSubmitter
from .task_models import (
    CanonicalStatus,
    FailureReason,
    FieldOverride,
    Job,
    Region,
    UploadPlan,
    resolve_target,
    submission_mode_for,
)
from .upload_strategy import UploadStrategist

logger = structlog.get_logger(__name__)

WARMUP_TASK_ID = "warmup"


class TaskOrchestrator:
    """Single entry point for callers that submit and track provider jobs.

    Each accepted job gets one background pipeline task that polls until the
    job is terminal. ``max_in_flight`` bounds how many provider submissions
    run at the same time; pipelines never hold a slot, so polling jobs do
    not delay new submissions.
    """

    def __init__(
        self,
        provider: ProviderClient,
        *,
        regions: RegionDirectory,
        submitter: JobSubmitter,
        registry: TaskLifecycleRegistry,
        poller: StatusPoller,
        uploader: UploadStrategist,
        retention: timedelta = timedelta(minutes=30),
        sweep_interval_seconds: float = 300.0,
        max_in_flight: int = 32,
    ) -> None:
        self._provider = provider
        self._regions = regions
        self._submitter = submitter
        self._registry = registry
        self._poller = poller
        self._uploader = uploader
        self._retention = retention
        self._sweep_interval = sweep_interval_seconds
        self._admission = asyncio.Semaphore(max(1, max_in_flight))
        self._pipelines: dict[str, asyncio.Task[None]] = {}
        self._shutdown_event: asyncio.Event | None = None
        self._sweep_task: asyncio.Task[None] | None = None

    @classmethod
    def from_config(
        cls,
        config: AppConfig,
        *,
        provider: ProviderClient | None = None,
        object_storage: ObjectStorageUploader | None = None,
        archive: ArchiveHook | None = None,
        sleep: Callable[[float], Any] | None = None,
    ) -> "TaskOrchestrator":
        """Build the full component graph; raises :class:`MissingApiKeyError` without a key."""
        if not config.api_key:
            raise MissingApiKeyError("HUBTASKS_API_KEY must be set before accepting jobs")
        if provider is None:
            provider = RunningHubClient(
                api_key=config.api_key,
                request_timeout_seconds=config.request_timeout_seconds,
                cancel_timeout_seconds=config.cancel_timeout_seconds,
            )
        if object_storage is None and config.object_storage_endpoint:
            object_storage = ObjectStorageUploader(
                endpoint=config.object_storage_endpoint,
                public_base_url=config.object_storage_public_base_url,
                token=config.object_storage_token,
                prefix=config.object_storage_prefix,
            )

        submitter = JobSubmitter(
            provider,
            max_attempts=config.submit_max_attempts,
            first_timeout_seconds=config.submit_first_timeout_seconds,
            retry_timeout_seconds=config.submit_retry_timeout_seconds,
            backoff_seconds=config.submit_backoff_seconds,
            sleep=sleep,
        )
        registry = TaskLifecycleRegistry(provider=provider, submitter=submitter, archive=archive)
        poller = StatusPoller(
            provider,
            registry,
            ResultNormalizer(provider),
            interval_seconds=config.poll_interval_seconds,
            max_attempts=config.poll_max_attempts,
            settle_delay_seconds=config.settle_delay_seconds,
            sleep=sleep,
        )
        uploader = UploadStrategist(
            provider,
            object_storage,
            threshold_bytes=config.upload_threshold_bytes,
            small_timeout_seconds=config.upload_small_timeout_seconds,
            large_timeout_seconds=config.upload_large_timeout_seconds,
            offload_timeout_seconds=config.upload_offload_timeout_seconds,
            max_retries=config.upload_max_retries,
            sleep=sleep,
        )
        return cls(
            provider,
            regions=RegionDirectory(default_region=config.default_region),
            submitter=submitter,
            registry=registry,
            poller=poller,
            uploader=uploader,
            retention=timedelta(minutes=config.retention_minutes),
            sweep_interval_seconds=config.sweep_interval_seconds,
            max_in_flight=config.max_in_flight_jobs,
        )

    @property
    def registry(self) -> TaskLifecycleRegistry:
        return self._registry

    @property
    def regions(self) -> RegionDirectory:
        return self._regions

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------
    async def submit(
        self,
        workflow_id: str | None,
        overrides: Iterable[FieldOverride | Mapping[str, Any]] | None = None,
        region_id: str | None = None,
        *,
        instance_type: str | None = None,
        webapp_id: str | None = None,
    ) -> str:
        """Register and send a job, start its pipeline and return the job id.

        Pass ``webapp_id`` with an empty ``workflow_id`` to run a published web
        app; a workflow id takes precedence when both are given. Submission
        errors are recorded on the job and re-raised.
        """
        workflow, webapp = resolve_target(workflow_id, webapp_id)
        region = self._regions.resolve(region_id)
        job = self._registry.register(
            Job(
                workflow_id=workflow,
                region=region,
                mode=submission_mode_for(overrides),
                instance_type=None if webapp else instance_type or None,
                webapp_id=webapp,
            )
        )

        with structlog.contextvars.bound_contextvars(job_id=job.job_id):
            async with self._admission:
                try:
                    task_id = await self._submitter.submit(job)
                except SubmissionError as exc:
                    self._registry.fail_submission(job.job_id, exc, attempts=job.attempts)
                    raise
            snapshot = await self._registry.attach_submission(
                job.job_id, task_id, attempts=job.attempts
            )
        if not snapshot.is_terminal:
            self._start_pipeline(job.job_id)
        return job.job_id

    def get_job(self, job_id: str) -> Job:
        return self._registry.get(job_id)

    def list_jobs(self, status: CanonicalStatus | None = None) -> list[Job]:
        return self._registry.list_jobs(status)

    def on_job_change(self, job_id: str, callback: ChangeCallback) -> None:
        self._registry.on_change(job_id, callback)

    def find_duplicates(self) -> list[list[Job]]:
        return self._registry.find_duplicates()

    async def cancel(self, job_id: str) -> bool:
        return await self._registry.cancel(job_id)

    async def retry(self, job_id: str) -> bool:
        with structlog.contextvars.bound_contextvars(job_id=job_id):
            async with self._admission:
                accepted = await self._registry.retry(job_id)
        if accepted:
            self._start_pipeline(job_id)
        return accepted

    async def wait_for_completion(self, job_id: str) -> list[str]:
        """Return result URLs once ``job_id`` succeeds.

        Failed and cancelled jobs raise the error matching their failure
        reason.
        """
        job = self._registry.get(job_id)
        if not job.is_terminal:
            if job.task_id is None:
                raise OrchestrationError(f"job '{job_id}' has no accepted submission yet")
            job = await self._poller.poll_until_terminal(job_id)
        return self._outcome(job)

    def _outcome(self, job: Job) -> list[str]:
        if job.status is CanonicalStatus.SUCCEEDED:
            return list(job.result_urls)
        if job.status is CanonicalStatus.CANCELLED:
            raise JobCancelledError(f"job '{job.job_id}' was cancelled")
        message = job.error_message or "Job failed"
        reason = job.failure_reason
        if reason is FailureReason.POLL_TIMEOUT:
            raise PollTimeoutError(job.job_id, self._poller.max_attempts)
        if reason is FailureReason.RESULT_ERROR:
            raise ResultError(message)
        if reason is FailureReason.VALIDATION_ERROR:
            raise TerminalValidationError(message)
        if reason is FailureReason.SUBMISSION_ERROR:
            raise TransientNetworkError(message)
        if reason is FailureReason.UPLOAD_ERROR:
            raise UploadError(message)
        raise ProviderBusinessFailure(message)

    # ------------------------------------------------------------------
    # Uploads and regions
    # ------------------------------------------------------------------
    def plan_upload(self, byte_size: int) -> UploadPlan:
        return self._uploader.plan(byte_size)

    async def upload(
        self,
        data: bytes,
        filename: str,
        content_type: str = "application/octet-stream",
        region_id: str | None = None,
    ) -> str:
        region = self._regions.resolve(region_id)
        return await self._uploader.upload(
            data, filename=filename, content_type=content_type, region=region
        )

    def resolve_region(self, region_id: str | None) -> Region:
        return self._regions.resolve(region_id)

    async def warmup(self, region_id: str | None = None) -> bool:
        """Probe the region endpoint once; failures are logged only."""
        region = self._regions.resolve(region_id)
        try:
            await self._provider.query_status(region, WARMUP_TASK_ID)
        except OrchestrationError as exc:
            logger.info("orchestrator.warmup_failed", region=region.id, error=str(exc))
            return False
        logger.info("orchestrator.warmup_ok", region=region.id)
        return True

    # ------------------------------------------------------------------
    # Background work
    # ------------------------------------------------------------------
    def _start_pipeline(self, job_id: str) -> asyncio.Task[None]:
        existing = self._pipelines.get(job_id)
        if existing is not None and not existing.done():
            return existing
        task = asyncio.create_task(self._run_pipeline(job_id), name=f"pipeline-{job_id}")
        self._pipelines[job_id] = task
        task.add_done_callback(lambda done, key=job_id: self._pipeline_done(key, done))
        return task

    async def _run_pipeline(self, job_id: str) -> None:
        structlog.contextvars.bind_contextvars(job_id=job_id)
        while True:
            try:
                await self._poller.poll_until_terminal(job_id)
            except PollTimeoutError:
                pass
            except KeyError:
                logger.info("orchestrator.pipeline_job_gone")
                return
            job = self._registry.get(job_id)
            # a retry may have resubmitted the job while this loop was finishing
            if job.is_terminal or job.task_id is None:
                break
        logger.info(
            "orchestrator.pipeline_finished",
            status=job.status.value,
            results=len(job.result_urls),
        )

    def _pipeline_done(self, job_id: str, task: asyncio.Task[None]) -> None:
        if self._pipelines.get(job_id) is task:
            del self._pipelines[job_id]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("orchestrator.pipeline_failed", job_id=job_id, error=repr(exc))

    def start(self) -> None:
        """Start the periodic retention sweep."""
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._shutdown_event = asyncio.Event()
        self._sweep_task = asyncio.create_task(
            run_periodic_sweep(
                registry=self._registry,
                shutdown_event=self._shutdown_event,
                retention=self._retention,
                interval_seconds=self._sweep_interval,
            ),
            name="registry-sweep",
        )

    async def aclose(self) -> None:
        """Stop the sweep loop, cancel running pipelines and release the provider."""
        if self._shutdown_event is not None:
            self._shutdown_event.set()
        if self._sweep_task is not None:
            await self._sweep_task
            self._sweep_task = None
        pipelines = list(self._pipelines.values())
        for task in pipelines:
            task.cancel()
        if pipelines:
            await asyncio.gather(*pipelines, return_exceptions=True)
        await self._poller.aclose()
        await self._provider.aclose()


__all__ = ["TaskOrchestrator"]
