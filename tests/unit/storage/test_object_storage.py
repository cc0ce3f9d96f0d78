from __future__ import annotations

import re
from typing import Any

import httpx
import pytest

from hubtasks.exceptions import TransientNetworkError, UploadError
from hubtasks.storage import object_storage
from hubtasks.storage.object_storage import ObjectStorageUploader


class DummyHTTPResponse:
    def __init__(self, status_code: int) -> None:
        self.status_code = status_code


class DummyAsyncClient:
    def __init__(self, responses: list[Any], calls: list[dict[str, Any]]) -> None:
        self._responses = responses
        self._calls = calls

    async def __aenter__(self) -> "DummyAsyncClient":  # pragma: no cover - helper
        return self

    async def __aexit__(self, exc_type, exc_value, traceback) -> None:  # pragma: no cover - helper
        return None

    async def put(self, url: str, **kwargs: Any) -> DummyHTTPResponse:
        self._calls.append({"url": url, **kwargs})
        item = self._responses.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item


@pytest.fixture
def http(monkeypatch) -> tuple[list[Any], list[dict[str, Any]]]:
    responses: list[Any] = []
    calls: list[dict[str, Any]] = []
    monkeypatch.setattr(
        object_storage.httpx,
        "AsyncClient",
        lambda timeout=None: DummyAsyncClient(responses, calls),
    )
    return responses, calls


def test_build_key_uses_prefix_and_extension() -> None:
    uploader = ObjectStorageUploader(endpoint="https://bucket.example.com", prefix="/large-files/")

    key = uploader.build_key("Photo.PNG")

    assert re.fullmatch(r"large-files/\d{13}-[0-9a-f]{12}\.png", key)


def test_build_key_guesses_extension_from_content_type() -> None:
    uploader = ObjectStorageUploader(endpoint="https://bucket.example.com")

    assert uploader.build_key("blob", "image/png").endswith(".png")


@pytest.mark.asyncio
async def test_upload_puts_object_and_returns_public_url(http) -> None:
    responses, calls = http
    responses.append(DummyHTTPResponse(200))
    uploader = ObjectStorageUploader(
        endpoint="https://bucket.example.com/",
        public_base_url="https://cdn.example.com",
        token="secret",
    )

    url = await uploader.upload(b"data", filename="big.jpg", content_type="image/jpeg", timeout=180)

    assert url.startswith("https://cdn.example.com/large-files/")
    assert url.endswith(".jpg")
    assert calls[0]["url"].startswith("https://bucket.example.com/large-files/")
    assert calls[0]["headers"]["Authorization"] == "Bearer secret"
    assert calls[0]["content"] == b"data"


@pytest.mark.asyncio
async def test_upload_server_error_is_transient(http) -> None:
    responses, _ = http
    responses.append(DummyHTTPResponse(503))
    uploader = ObjectStorageUploader(endpoint="https://bucket.example.com")

    with pytest.raises(TransientNetworkError):
        await uploader.upload(b"data", filename="big.jpg", content_type="image/jpeg", timeout=1)


@pytest.mark.asyncio
async def test_upload_timeout_is_flagged(http) -> None:
    responses, _ = http
    responses.append(httpx.WriteTimeout("slow"))
    uploader = ObjectStorageUploader(endpoint="https://bucket.example.com")

    with pytest.raises(TransientNetworkError) as excinfo:
        await uploader.upload(b"data", filename="big.jpg", content_type="image/jpeg", timeout=1)

    assert excinfo.value.timed_out is True


@pytest.mark.asyncio
async def test_upload_rejected_is_upload_error(http) -> None:
    responses, _ = http
    responses.append(DummyHTTPResponse(403))
    uploader = ObjectStorageUploader(endpoint="https://bucket.example.com")

    with pytest.raises(UploadError):
        await uploader.upload(b"data", filename="big.jpg", content_type="image/jpeg", timeout=1)


@pytest.mark.asyncio
async def test_unconfigured_storage_refuses_upload() -> None:
    uploader = ObjectStorageUploader(endpoint=None)

    assert uploader.configured is False
    with pytest.raises(UploadError):
        await uploader.upload(b"data", filename="big.jpg", content_type="image/jpeg", timeout=1)
