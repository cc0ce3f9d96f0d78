"""Normalize heterogeneous provider output containers into URL lists.

The provider has been observed to return outputs as a bare list of URL
strings, as a list of objects carrying a URL field, or as a single loosely
keyed object whose values contain image paths. Each shape has a detector that
returns ``None`` when it does not apply; the first match wins. Relative paths
are resolved against the region's base URL, i.e. the provider's own domain.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from typing import Any

from ..exceptions import UnrecognizedResultShapeError
from ..providers.providers_base import ProviderClient
from .task_models import Job

logger = logging.getLogger(__name__)

URL_FIELDS = ("fileUrl", "url", "imageUrl", "file_url", "image_url")
IMAGE_SUFFIXES = (".png", ".jpg", ".jpeg", ".webp", ".gif")

ShapeDetector = Callable[[Any], "list[str] | None"]


def resolve_url(value: str, base_url: str) -> str:
    """Absolute URLs pass through; ``/x`` and ``x`` become ``base/x``.

    Protocol-relative ``//host/x`` takes the scheme of ``base_url``.
    """
    value = value.strip()
    if value.startswith(("http://", "https://")):
        return value
    if value.startswith("//"):
        scheme = base_url.split("://", 1)[0] if "://" in base_url else "https"
        return f"{scheme}:{value}"
    base = base_url.rstrip("/")
    if value.startswith("/"):
        return f"{base}{value}"
    return f"{base}/{value}"


def _bare_string_list(raw: Any) -> list[str] | None:
    if not isinstance(raw, list):
        return None
    if not all(isinstance(item, str) for item in raw):
        return None
    return [item for item in raw if item.strip()]


def _object_list(raw: Any) -> list[str] | None:
    if not isinstance(raw, list) or not any(isinstance(item, Mapping) for item in raw):
        return None
    urls: list[str] = []
    for item in raw:
        if isinstance(item, str):
            if item.strip():
                urls.append(item)
            continue
        if not isinstance(item, Mapping):
            continue
        for key in URL_FIELDS:
            value = item.get(key)
            if isinstance(value, str) and value.strip():
                urls.append(value)
                break
    return urls


def _looks_like_image_path(value: str) -> bool:
    lowered = value.lower().split("?", 1)[0]
    return any(suffix in lowered for suffix in IMAGE_SUFFIXES)


def _loose_object(raw: Any) -> list[str] | None:
    if not isinstance(raw, Mapping):
        return None
    return [
        value
        for value in raw.values()
        if isinstance(value, str) and _looks_like_image_path(value)
    ]


SHAPE_DETECTORS: Sequence[ShapeDetector] = (
    _bare_string_list,
    _object_list,
    _loose_object,
)


def normalize_outputs(raw: Any, base_url: str) -> list[str]:
    """Return absolute URLs in provider order.

    Raises :class:`UnrecognizedResultShapeError` when no detector applies.
    """
    for detector in SHAPE_DETECTORS:
        found = detector(raw)
        if found is not None:
            return [resolve_url(url, base_url) for url in found]
    raise UnrecognizedResultShapeError(
        f"Unrecognized output container of type {type(raw).__name__}"
    )


class ResultNormalizer:
    """Fetch outputs for a succeeded job and normalize them."""

    def __init__(self, provider: ProviderClient) -> None:
        self._provider = provider

    async def fetch_results(self, job: Job) -> list[str]:
        """Network errors propagate; an unknown shape yields an empty list."""
        if job.task_id is None:
            raise ValueError(f"Job {job.job_id} has no provider task id")
        raw = await self._provider.fetch_outputs(job.region, job.task_id)
        try:
            urls = normalize_outputs(raw, job.region.api_base_url)
        except UnrecognizedResultShapeError:
            logger.warning(
                "results.unrecognized_shape",
                extra={
                    "job_id": job.job_id,
                    "task_id": job.task_id,
                    "raw_type": type(raw).__name__,
                    "raw_preview": repr(raw)[:500],
                },
            )
            return []
        logger.info(
            "results.normalized",
            extra={"job_id": job.job_id, "task_id": job.task_id, "count": len(urls)},
        )
        return urls
