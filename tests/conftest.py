"""Shared pytest fixtures."""

from __future__ import annotations

from typing import Callable

import httpx
import pytest

from healthbot.config import Settings
from healthbot.retry import RetryPolicy
from healthbot.storage.kv import MemoryKeyValueStore
from healthbot.storage.readings import HealthDataStore
from healthbot.storage.sessions import SessionStore
from healthbot.storage.tokens import TokenStore

Handler = Callable[[httpx.Request], httpx.Response]


class RecordingSleep:
    """Stands in for ``asyncio.sleep``; remembers every backoff delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        google_fit_client_id="gfit-id",
        google_fit_client_secret="gfit-secret",
        fitbit_client_id="fitbit-id",
        fitbit_client_secret="fitbit-secret",
        withings_client_id="withings-id",
        withings_client_secret="withings-secret",
        oura_client_id="oura-id",
        oura_client_secret="oura-secret",
        strava_client_id="",
        strava_client_secret="",
        public_base_url="http://localhost:8000",
        storage_backend="memory",
        api_secret_key="change-me-to-a-random-secret",
    )


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def tokens(kv: MemoryKeyValueStore) -> TokenStore:
    return TokenStore(kv)


@pytest.fixture
def sessions(kv: MemoryKeyValueStore) -> SessionStore:
    return SessionStore(kv)


@pytest.fixture
def readings(kv: MemoryKeyValueStore) -> HealthDataStore:
    return HealthDataStore(kv, max_records=1000)


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def policy(sleep: RecordingSleep) -> RetryPolicy:
    return RetryPolicy(max_attempts=3, timeout=5.0, backoff_seconds=1.0, sleep=sleep)


@pytest.fixture
def mock_http() -> Callable[[Handler], httpx.AsyncClient]:
    """Build an ``httpx.AsyncClient`` answering through *handler*."""

    def _make(handler: Handler) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(handler))

    return _make
