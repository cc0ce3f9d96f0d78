"""Deterministic provider fakes for unit and API tests."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from hubtasks.providers.providers_base import ProviderClient
from hubtasks.tasks.task_models import Region

CHINA = Region(
    id="china",
    display_name="Mainland China",
    api_base_url="https://www.runninghub.cn",
    host_header="www.runninghub.cn",
)
HONGKONG = Region(
    id="hongkong",
    display_name="Hong Kong / Macau / Taiwan / overseas",
    api_base_url="https://www.runninghub.ai",
    host_header="www.runninghub.ai",
)


def _resolve(item: Any) -> Any:
    if isinstance(item, BaseException):
        raise item
    return item


@dataclass
class FakeProviderClient(ProviderClient):
    """Scripted provider.

    Queues hold plain values or exceptions; an exception is raised instead of
    returned. Status scripts repeat their last entry once exhausted. Web app
    runs share the submit queue and are also recorded in ``submitted``.
    """

    submit_queue: list[Any] = field(default_factory=list)
    status_scripts: dict[str, list[Any]] = field(default_factory=dict)
    outputs: dict[str, Any] = field(default_factory=dict)
    output_errors: dict[str, list[BaseException]] = field(default_factory=dict)
    cancel_results: list[Any] = field(default_factory=list)
    upload_queue: list[Any] = field(default_factory=list)
    submit_gate: asyncio.Event | None = None

    submitted: list[dict[str, Any]] = field(default_factory=list)
    webapp_submitted: list[dict[str, Any]] = field(default_factory=list)
    submit_timeouts: list[float] = field(default_factory=list)
    status_calls: list[str] = field(default_factory=list)
    output_calls: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
    uploads: list[tuple[str, int, float]] = field(default_factory=list)
    closed: bool = False
    _counter: int = 0

    async def submit_job(
        self, region: Region, body: Mapping[str, Any], *, timeout: float
    ) -> Mapping[str, Any]:
        self.submitted.append(dict(body))
        self.submit_timeouts.append(timeout)
        if self.submit_gate is not None:
            await self.submit_gate.wait()
        if self.submit_queue:
            return _resolve(self.submit_queue.pop(0))
        self._counter += 1
        return {"taskId": f"task-{self._counter}", "taskStatus": "QUEUED"}

    async def submit_webapp(
        self, region: Region, body: Mapping[str, Any], *, timeout: float
    ) -> Mapping[str, Any]:
        self.webapp_submitted.append(dict(body))
        return await self.submit_job(region, body, timeout=timeout)

    async def query_status(self, region: Region, task_id: str) -> Any:
        self.status_calls.append(task_id)
        script = self.status_scripts.get(task_id)
        if not script:
            return "RUNNING"
        item = script.pop(0) if len(script) > 1 else script[0]
        return _resolve(item)

    async def fetch_outputs(self, region: Region, task_id: str) -> Any:
        self.output_calls.append(task_id)
        errors = self.output_errors.get(task_id)
        if errors:
            raise errors.pop(0)
        return self.outputs.get(task_id, [f"/outputs/{task_id}.png"])

    async def cancel_job(self, region: Region, task_id: str) -> bool:
        self.cancelled.append(task_id)
        if self.cancel_results:
            return _resolve(self.cancel_results.pop(0))
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
        self.uploads.append((filename, len(data), timeout))
        if self.upload_queue:
            return _resolve(self.upload_queue.pop(0))
        return f"api/{filename}"

    async def aclose(self) -> None:
        self.closed = True


class RecordingSleep:
    """Async sleep stand-in that records requested delays."""

    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        await asyncio.sleep(0)


__all__ = ["CHINA", "HONGKONG", "FakeProviderClient", "RecordingSleep"]
