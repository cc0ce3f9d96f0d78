"""Job submission with diagnostics inspection and transient retries."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Mapping
from typing import Any

import structlog

from ..exceptions import TerminalValidationError, TransientNetworkError
from ..providers.providers_base import ProviderClient
from .task_models import (
    AdvancedMode,
    FieldOverride,
    Job,
    Region,
    resolve_target,
    submission_mode_for,
)
from .timing import wrap_sleep

logger = structlog.get_logger(__name__)


class JobSubmitter:
    """Build provider requests and send them.

    The first attempt gets a longer timeout than the retries because the
    provider's cold path is slower. Only :class:`TransientNetworkError` is
    retried; workflow diagnostics and rejected requests fail immediately.
    """

    def __init__(
        self,
        provider: ProviderClient,
        *,
        max_attempts: int = 3,
        first_timeout_seconds: float = 60.0,
        retry_timeout_seconds: float = 30.0,
        backoff_seconds: float = 2.0,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self._provider = provider
        self._max_attempts = max(1, max_attempts)
        self._first_timeout = first_timeout_seconds
        self._retry_timeout = retry_timeout_seconds
        self._backoff = max(0.0, backoff_seconds)
        self._sleep = wrap_sleep(sleep)

    @property
    def max_attempts(self) -> int:
        return self._max_attempts

    def timeout_for_attempt(self, attempt: int) -> float:
        return self._first_timeout if attempt == 1 else self._retry_timeout

    def build_request(self, job: Job) -> dict[str, Any]:
        """Simple mode omits ``nodeInfoList``; advanced mode sends string fields.

        Web app runs always carry ``nodeInfoList`` and keep ``webappId`` a
        string; the provider rejects numeric ids.
        """
        if job.webapp_id is not None:
            return {
                "webappId": str(job.webapp_id),
                "nodeInfoList": [item.to_payload() for item in job.overrides],
            }
        body: dict[str, Any] = {"workflowId": str(job.workflow_id), "addMetadata": True}
        if isinstance(job.mode, AdvancedMode) and job.mode.overrides:
            body["nodeInfoList"] = [item.to_payload() for item in job.mode.overrides]
        if job.instance_type:
            body["instanceType"] = job.instance_type
        return body

    async def submit(self, job: Job) -> str:
        """Send ``job`` and return the provider task id.

        ``job.attempts`` is incremented for every attempt made. Raises
        :class:`TerminalValidationError` without retrying, or the last
        :class:`TransientNetworkError` once attempts are exhausted.
        """
        body = self.build_request(job)
        last_error: TransientNetworkError | None = None

        for attempt in range(1, self._max_attempts + 1):
            job.attempts += 1
            timeout = self.timeout_for_attempt(attempt)
            logger.info(
                "submitter.attempt",
                workflow_id=job.workflow_id,
                webapp_id=job.webapp_id,
                region=job.region.id,
                attempt=attempt,
                timeout=timeout,
                mode=job.mode_label,
            )
            try:
                if job.is_webapp:
                    data = await self._provider.submit_webapp(job.region, body, timeout=timeout)
                else:
                    data = await self._provider.submit_job(job.region, body, timeout=timeout)
            except TransientNetworkError as exc:
                last_error = exc
                logger.warning("submitter.attempt.failed", attempt=attempt, error=str(exc))
                if attempt < self._max_attempts:
                    await self._sleep(self._backoff * attempt)
                continue

            _raise_on_diagnostics(data)
            task_id = data.get("taskId")
            if not task_id:
                raise TerminalValidationError(
                    f"Provider did not return taskId: {dict(data)!r}", diagnostics=dict(data)
                )
            logger.info("submitter.accepted", task_id=str(task_id), attempt=attempt)
            return str(task_id)

        assert last_error is not None
        logger.error("submitter.exhausted", attempts=self._max_attempts, error=str(last_error))
        raise last_error

    async def submit_new(
        self,
        workflow_id: str | None,
        overrides: Iterable[FieldOverride | Mapping[str, Any]] | None,
        region: Region,
        *,
        instance_type: str | None = None,
        webapp_id: str | int | None = None,
    ) -> Job:
        """Create a ``Job`` for ``workflow_id`` (or a web app) and submit it."""
        workflow, webapp = resolve_target(workflow_id, webapp_id)
        job = Job(
            workflow_id=workflow,
            region=region,
            mode=submission_mode_for(overrides),
            instance_type=instance_type,
            webapp_id=webapp,
        )
        with structlog.contextvars.bound_contextvars(job_id=job.job_id):
            job.task_id = await self.submit(job)
        return job


def parse_diagnostics(data: Mapping[str, Any]) -> Mapping[str, Any] | None:
    """Decode the embedded ``promptTips`` JSON, if any."""
    raw = data.get("promptTips")
    if not raw:
        return None
    if isinstance(raw, Mapping):
        return raw
    try:
        decoded = json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("submitter.diagnostics.unparsable", prompt_tips=str(raw)[:500])
        return None
    return decoded if isinstance(decoded, Mapping) else None


def _raise_on_diagnostics(data: Mapping[str, Any]) -> None:
    diagnostics = parse_diagnostics(data)
    if diagnostics is None:
        return
    error = diagnostics.get("error")
    node_errors = diagnostics.get("node_errors") or {}
    if error or node_errors:
        raise TerminalValidationError(
            f"Workflow validation failed: {json.dumps(diagnostics, ensure_ascii=False)[:1000]}",
            diagnostics=diagnostics,
        )
