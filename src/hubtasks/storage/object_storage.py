"""Object storage uploads for files too large for the provider's endpoint."""

from __future__ import annotations

import logging
import mimetypes
import secrets
import time
from dataclasses import dataclass, field
from pathlib import PurePosixPath

import httpx

from ..exceptions import TransientNetworkError, UploadError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ObjectStorageUploader:
    """PUT files to a bucket endpoint and return their public URL.

    Keys are ``<prefix>/<epoch-ms>-<random>.<ext>`` so uploads never collide.
    """

    endpoint: str | None
    public_base_url: str | None = None
    token: str | None = None
    prefix: str = "large-files"
    log: logging.Logger = field(default_factory=lambda: logger)

    @property
    def configured(self) -> bool:
        return bool(self.endpoint)

    def build_key(self, filename: str, content_type: str | None = None) -> str:
        suffix = PurePosixPath(filename).suffix.lower()
        if not suffix and content_type:
            suffix = mimetypes.guess_extension(content_type) or ""
        stamp = int(time.time() * 1000)
        token = secrets.token_hex(6)
        prefix = self.prefix.strip("/")
        name = f"{stamp}-{token}{suffix}"
        return f"{prefix}/{name}" if prefix else name

    async def upload(
        self,
        data: bytes,
        *,
        filename: str,
        content_type: str,
        timeout: float,
    ) -> str:
        if not self.endpoint:
            raise UploadError("Object storage is not configured for large uploads")
        key = self.build_key(filename, content_type)
        url = f"{self.endpoint.rstrip('/')}/{key}"
        headers = {"Content-Type": content_type}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"

        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.put(url, headers=headers, content=data)
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(
                f"Object storage upload timed out after {timeout}s", timed_out=True
            ) from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(f"Object storage transport error: {exc}") from exc

        if response.status_code >= 500:
            raise TransientNetworkError(
                f"Object storage upload failed with status {response.status_code}",
                status_code=response.status_code,
            )
        if response.status_code not in (200, 201, 204):
            raise UploadError(
                f"Object storage rejected upload with status {response.status_code}"
            )

        public_base = (self.public_base_url or self.endpoint).rstrip("/")
        public_url = f"{public_base}/{key}"
        self.log.info(
            "object_storage.uploaded",
            extra={"key": key, "size_bytes": len(data), "url": public_url},
        )
        return public_url
