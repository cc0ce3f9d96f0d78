from __future__ import annotations

import pytest

from hubtasks.config import AppConfig
from hubtasks.tasks.poller import StatusPoller
from hubtasks.tasks.registry import TaskLifecycleRegistry
from hubtasks.tasks.results import ResultNormalizer
from hubtasks.tasks.submitter import JobSubmitter
from tests.mocks.providers import FakeProviderClient, RecordingSleep


@pytest.fixture
def provider() -> FakeProviderClient:
    return FakeProviderClient()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def submitter(provider: FakeProviderClient, sleep: RecordingSleep) -> JobSubmitter:
    return JobSubmitter(provider, sleep=sleep)


@pytest.fixture
def registry(provider: FakeProviderClient, submitter: JobSubmitter) -> TaskLifecycleRegistry:
    return TaskLifecycleRegistry(provider=provider, submitter=submitter)


@pytest.fixture
def poller(
    provider: FakeProviderClient,
    registry: TaskLifecycleRegistry,
    sleep: RecordingSleep,
) -> StatusPoller:
    return StatusPoller(
        provider,
        registry,
        ResultNormalizer(provider),
        interval_seconds=5,
        max_attempts=5,
        settle_delay_seconds=3,
        sleep=sleep,
    )


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        api_key="test-key",
        poll_interval_seconds=0,
        settle_delay_seconds=0,
        submit_backoff_seconds=0,
        poll_max_attempts=5,
    )
