"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import httpx
import pytest

from hookgate.auth import reset_auth_singletons
from hookgate.models import Subscription
from hookgate.storage import InMemoryStorage

# Add tests directory to path so helpers here can be imported by test modules
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

Handler = Callable[[httpx.Request], Any]


class SleepRecorder:
    """Stand-in for asyncio.sleep that records backoff delays without waiting."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(float(delay))


class RecordingTransport(httpx.MockTransport):
    """MockTransport that routes by URL and keeps every request it receives.

    Handlers may be sync or async and return an httpx.Response.
    """

    def __init__(self, routes: dict[str, Handler]) -> None:
        self.routes = routes
        self.requests: list[httpx.Request] = []
        super().__init__(self._dispatch)

    async def _dispatch(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes[str(request.url)]
        response = handler(request)
        if hasattr(response, "__await__"):
            response = await response
        return response

    def requests_to(self, url: str) -> list[httpx.Request]:
        return [r for r in self.requests if str(r.url) == url]


@pytest.fixture(autouse=True)
def _reset_singletons():
    """Give every test a fresh rate limiter singleton."""
    reset_auth_singletons()
    yield
    reset_auth_singletons()


@pytest.fixture
def storage() -> InMemoryStorage:
    """Create an empty in-process store."""
    return InMemoryStorage()


@pytest.fixture
def sleeps() -> SleepRecorder:
    """Record backoff delays instead of sleeping."""
    return SleepRecorder()


@pytest.fixture
def make_webhook() -> Callable[..., Subscription]:
    """Factory for webhooks with sensible defaults."""

    def _make(**overrides: Any) -> Subscription:
        values: dict[str, Any] = {
            "user_id": "user_1",
            "url": "https://hooks.example.com/ok",
            "events": ["goal.achieved"],
            "secret": "s3cret",
        }
        values.update(overrides)
        return Subscription(**values)

    return _make
