"""Injectable sleep helpers shared by retrying components."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable
from typing import Any


def wrap_sleep(sleep: Callable[[float], Any] | None) -> Callable[[float], Awaitable[None]]:
    """Return an awaitable sleep; ``sleep`` may be sync or async."""
    if sleep is None:
        return asyncio.sleep

    async def _async_sleep(seconds: float) -> None:
        result = sleep(seconds)
        if inspect.isawaitable(result):
            await result

    return _async_sleep
