"""Size-based routing of input files to the provider or to object storage."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from ..config import MIB
from ..exceptions import TerminalValidationError, TransientNetworkError, UploadError
from ..providers.providers_base import ProviderClient
from ..storage.object_storage import ObjectStorageUploader
from .task_models import Region, UploadPlan
from .timing import wrap_sleep

logger = logging.getLogger(__name__)


class UploadStrategist:
    """Choose a route and timeout for an upload, then perform it with retries.

    Files above ``threshold_bytes`` are offloaded to object storage and the
    returned public URL is used as the workflow input. Smaller files go to the
    provider directly; those above half the threshold get the long timeout.
    """

    def __init__(
        self,
        provider: ProviderClient,
        object_storage: ObjectStorageUploader | None = None,
        *,
        threshold_bytes: int = 10 * MIB,
        small_timeout_seconds: float = 60.0,
        large_timeout_seconds: float = 120.0,
        offload_timeout_seconds: float = 180.0,
        max_retries: int = 3,
        sleep: Callable[[float], Any] | None = None,
    ) -> None:
        self._provider = provider
        self._object_storage = object_storage
        self._threshold = threshold_bytes
        self._small_timeout_ms = int(small_timeout_seconds * 1000)
        self._large_timeout_ms = int(large_timeout_seconds * 1000)
        self._offload_timeout_ms = int(offload_timeout_seconds * 1000)
        self._max_retries = max(1, max_retries)
        self._sleep = wrap_sleep(sleep)

    def plan(self, byte_size: int) -> UploadPlan:
        if byte_size < 0:
            raise ValueError("byte_size must be non-negative")
        if byte_size > self._threshold:
            return UploadPlan(
                use_direct_upload=False,
                timeout_ms=self._offload_timeout_ms,
                max_retries=self._max_retries,
            )
        timeout_ms = (
            self._large_timeout_ms if byte_size > self._threshold // 2 else self._small_timeout_ms
        )
        return UploadPlan(use_direct_upload=True, timeout_ms=timeout_ms, max_retries=self._max_retries)

    async def upload(
        self,
        data: bytes,
        *,
        filename: str,
        content_type: str = "application/octet-stream",
        region: Region,
    ) -> str:
        """Return the workflow input reference for ``data``.

        The reference is a provider file name for direct uploads and a public
        URL for offloaded ones. Raises :class:`UploadError` once the retry
        budget is spent.
        """
        plan = self.plan(len(data))
        offloaded = not plan.use_direct_upload
        if offloaded and (self._object_storage is None or not self._object_storage.configured):
            raise UploadError(
                f"File of {len(data)} bytes exceeds the direct upload limit and no object storage is configured"
            )

        last_error: TransientNetworkError | None = None
        for attempt in range(1, plan.max_retries + 1):
            timeout = plan.timeout_for_attempt(attempt) / 1000
            logger.info(
                "upload.attempt",
                extra={
                    "file_name": filename,
                    "size_bytes": len(data),
                    "offloaded": offloaded,
                    "attempt": attempt,
                    "timeout": timeout,
                },
            )
            try:
                if offloaded:
                    assert self._object_storage is not None
                    reference = await self._object_storage.upload(
                        data, filename=filename, content_type=content_type, timeout=timeout
                    )
                else:
                    reference = await self._provider.upload_file(
                        region, data, filename=filename, content_type=content_type, timeout=timeout
                    )
            except TransientNetworkError as exc:
                last_error = exc
            except TerminalValidationError as exc:
                raise UploadError(f"Upload of {filename} was rejected: {exc}") from exc
            else:
                logger.info(
                    "upload.completed",
                    extra={"file_name": filename, "offloaded": offloaded, "attempt": attempt},
                )
                return reference

            logger.warning(
                "upload.attempt.failed",
                extra={"file_name": filename, "attempt": attempt, "error": str(last_error)},
            )
            if attempt < plan.max_retries:
                delay_ms = plan.delay_after_attempt(attempt, timed_out=last_error.timed_out)
                await self._sleep(delay_ms / 1000)

        raise UploadError(
            f"Upload of {filename} failed after {plan.max_retries} attempts: {last_error}"
        ) from last_error
