"""Background retention sweep wired into application startup."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Callable

from .tasks.registry import TaskLifecycleRegistry
from .tasks.task_models import Job, utcnow


logger = logging.getLogger(__name__)


def sweep_once(
    *,
    registry: TaskLifecycleRegistry,
    retention: timedelta,
    now: datetime | None = None,
) -> list[Job]:
    """Run a single retention pass and return the evicted jobs."""

    return registry.sweep(retention, now=now or utcnow())


async def run_periodic_sweep(
    *,
    registry: TaskLifecycleRegistry,
    shutdown_event: asyncio.Event,
    retention: timedelta = timedelta(minutes=30),
    interval_seconds: float = 300.0,
    clock: Callable[[], datetime] | None = None,
) -> None:
    """Evict stale terminal jobs until ``shutdown_event`` is signalled."""

    interval = max(1.0, float(interval_seconds))
    tick = clock or utcnow
    while not shutdown_event.is_set():
        try:
            evicted = sweep_once(registry=registry, retention=retention, now=tick())
        except Exception:  # pragma: no cover - logged and retried next tick
            logger.exception("lifecycle.sweep_failed")
        else:
            if evicted:
                logger.info("lifecycle.swept", extra={"evicted": len(evicted)})
        try:
            await asyncio.wait_for(shutdown_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue


__all__ = ["run_periodic_sweep", "sweep_once"]
