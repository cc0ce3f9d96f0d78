"""RunningHub-style workflow provider client over ``httpx``."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..exceptions import (
    MissingApiKeyError,
    TerminalValidationError,
    TransientNetworkError,
)
from ..tasks.task_models import Region
from .providers_base import ProviderClient

logger = logging.getLogger(__name__)

CREATE_PATH = "/task/openapi/create"
WEBAPP_RUN_PATH = "/task/openapi/ai-app/run"
STATUS_PATH = "/task/openapi/status"
OUTPUTS_PATH = "/task/openapi/outputs"
CANCEL_PATH = "/task/openapi/cancel"
UPLOAD_PATH = "/task/openapi/upload"

RETRYABLE_PROVIDER_CODES = frozenset({500, 502, 503, 504})


@dataclass(slots=True)
class RunningHubClient(ProviderClient):
    """Call the provider's open API; every request carries ``apiKey`` and ``Host``."""

    api_key: str
    request_timeout_seconds: float = 60.0
    cancel_timeout_seconds: float = 30.0
    log: logging.Logger = field(default_factory=lambda: logger)

    def __post_init__(self) -> None:
        if not self.api_key:
            raise MissingApiKeyError("Provider API key is not configured")

    async def submit_job(
        self, region: Region, body: Mapping[str, Any], *, timeout: float
    ) -> Mapping[str, Any]:
        payload = {"apiKey": self.api_key, **body}
        data = await self._call(region, CREATE_PATH, payload, timeout=timeout, operation="create")
        if not isinstance(data, Mapping):
            raise TerminalValidationError(f"Provider create returned unexpected data: {data!r}")
        return data

    async def submit_webapp(
        self, region: Region, body: Mapping[str, Any], *, timeout: float
    ) -> Mapping[str, Any]:
        payload = {"apiKey": self.api_key, **body}
        data = await self._call(
            region, WEBAPP_RUN_PATH, payload, timeout=timeout, operation="webapp_run"
        )
        if not isinstance(data, Mapping):
            raise TerminalValidationError(f"Provider web app run returned unexpected data: {data!r}")
        return data

    async def query_status(self, region: Region, task_id: str) -> Any:
        payload = {"apiKey": self.api_key, "taskId": task_id}
        return await self._call(
            region, STATUS_PATH, payload, timeout=self.request_timeout_seconds, operation="status"
        )

    async def fetch_outputs(self, region: Region, task_id: str) -> Any:
        payload = {"apiKey": self.api_key, "taskId": task_id}
        return await self._call(
            region, OUTPUTS_PATH, payload, timeout=self.request_timeout_seconds, operation="outputs"
        )

    async def cancel_job(self, region: Region, task_id: str) -> bool:
        payload = {"apiKey": self.api_key, "taskId": task_id}
        await self._call(
            region, CANCEL_PATH, payload, timeout=self.cancel_timeout_seconds, operation="cancel"
        )
        return True

    async def upload_file(
        self,
        region: Region,
        data: bytes,
        *,
        filename: str,
        content_type: str,
        timeout: float,
    ) -> str:
        url = _endpoint(region, UPLOAD_PATH)
        form = {"apiKey": self.api_key, "fileType": "image"}
        files = {"file": (filename, data, content_type)}
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(
                    url, headers=_headers(region), data=form, files=files
                )
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(
                f"Provider upload timed out after {timeout}s", timed_out=True
            ) from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Provider upload transport error: {exc}") from exc
        body = _unwrap(response, operation="upload")
        file_name = body.get("fileName") if isinstance(body, Mapping) else None
        if not file_name:
            raise TerminalValidationError("Provider upload did not return fileName")
        return str(file_name)

    async def _call(
        self,
        region: Region,
        path: str,
        payload: Mapping[str, Any],
        *,
        timeout: float,
        operation: str,
    ) -> Any:
        url = _endpoint(region, path)
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.post(url, headers=_headers(region), json=dict(payload))
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(
                f"Provider {operation} timed out after {timeout}s", timed_out=True
            ) from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Provider {operation} transport error: {exc}") from exc
        self.log.debug(
            "provider.response",
            extra={"operation": operation, "region": region.id, "status_code": response.status_code},
        )
        return _unwrap(response, operation=operation)


def _endpoint(region: Region, path: str) -> str:
    return f"{region.api_base_url.rstrip('/')}{path}"


def _headers(region: Region) -> dict[str, str]:
    return {"Host": region.host_header}


def _unwrap(response: httpx.Response, *, operation: str) -> Any:
    """Check HTTP status and the ``{"code", "msg", "data"}`` envelope."""
    status_code = response.status_code
    if status_code >= 500:
        raise TransientNetworkError(
            f"Provider {operation} failed with status {status_code}", status_code=status_code
        )
    if status_code != 200:
        raise TerminalValidationError(
            f"Provider {operation} rejected request with status {status_code}: {response.text[:500]}"
        )
    try:
        body = response.json()
    except ValueError as exc:
        raise TransientNetworkError(f"Provider {operation} returned invalid JSON") from exc
    if not isinstance(body, Mapping):
        raise TransientNetworkError(f"Provider {operation} returned unexpected body")

    code = body.get("code")
    if code not in (0, "0"):
        message = body.get("msg") or body.get("message") or "Unknown error"
        try:
            numeric = int(code)
        except (TypeError, ValueError):
            numeric = None
        if numeric in RETRYABLE_PROVIDER_CODES:
            raise TransientNetworkError(
                f"Provider {operation} error {code}: {message}", status_code=numeric
            )
        raise TerminalValidationError(
            f"Provider {operation} error {code}: {message}", diagnostics=dict(body)
        )
    return body.get("data")
