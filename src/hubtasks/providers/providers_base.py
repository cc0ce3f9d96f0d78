"""Abstract provider client definition.

The orchestration layer talks to the remote workflow provider through one
call per concept: submit (workflow or web app), status, outputs, cancel and
upload. Concrete
clients translate those calls to HTTP and raise the typed errors from
:mod:`hubtasks.exceptions`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any

from ..tasks.task_models import Region


class ProviderClient(ABC):
    """Base interface for provider clients."""

    @abstractmethod
    async def submit_job(
        self, region: Region, body: Mapping[str, Any], *, timeout: float
    ) -> Mapping[str, Any]:
        """Create a job and return the provider's ``data`` object."""

    @abstractmethod
    async def submit_webapp(
        self, region: Region, body: Mapping[str, Any], *, timeout: float
    ) -> Mapping[str, Any]:
        """Start a published web app run and return the provider's ``data`` object."""

    @abstractmethod
    async def query_status(self, region: Region, task_id: str) -> Any:
        """Return the raw status value (string or object) for ``task_id``."""

    @abstractmethod
    async def fetch_outputs(self, region: Region, task_id: str) -> Any:
        """Return the raw outputs container for ``task_id``."""

    @abstractmethod
    async def cancel_job(self, region: Region, task_id: str) -> bool:
        """Ask the provider to cancel ``task_id``; ``True`` on acknowledgement."""

    @abstractmethod
    async def upload_file(
        self,
        region: Region,
        data: bytes,
        *,
        filename: str,
        content_type: str,
        timeout: float,
    ) -> str:
        """Upload a file directly and return the provider-side file name."""

    async def aclose(self) -> None:
        """Release network resources."""
