"""
Shared pytest fixtures for all tests.

This module provides reusable fixtures for:
- Temporary directories and databases
- A fast scraper configuration (no real waiting)
- An in-process fake of the EMS web app served through httpx.MockTransport
- Recording sleep and controllable clocks

Async code is driven with asyncio.run() from plain synchronous tests.
"""

import json
import tempfile
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Generator, Optional

import httpx
import pytest

from src.ems.config import ScraperConfig
from src.ems.database import EMSDatabase

from .factories import envelope, token_page


# =============================================================================
# Test Doubles
# =============================================================================


class SleepRecorder:
    """Async stand-in for asyncio.sleep that records instead of waiting."""

    def __init__(self):
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeClock:
    """Manually advanced clock returning datetimes."""

    def __init__(self, start: datetime = datetime(2025, 3, 1, 12, 0, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeEMSServer:
    """
    Minimal EMS web app: the BrowseEvents page and the BrowseEvents API.

    Events are served per requested day. Queue HTTP status codes in
    `failures` to make the next API calls fail in order.
    """

    def __init__(self, token: Optional[str] = "test-csrf-token"):
        self.token = token
        self.events_by_date: dict[date, list[dict]] = {}
        self.failures: list[int] = []
        self.token_requests = 0
        self.api_requests = 0
        self.seen_tokens: list[Optional[str]] = []
        self.requested_days: list[date] = []

    def set_events(self, day: date, records: list[dict]) -> None:
        self.events_by_date[day] = records

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path

        if request.method == "GET" and path.endswith("/BrowseEvents.aspx"):
            self.token_requests += 1
            return httpx.Response(200, text=token_page(self.token))

        if request.method == "POST" and path.endswith("/ServerApi.aspx/BrowseEvents"):
            self.api_requests += 1
            self.seen_tokens.append(request.headers.get("dea-csrftoken"))

            if self.failures:
                return httpx.Response(self.failures.pop(0), text="Server error")

            body = json.loads(request.content)
            start_value = body["filterData"]["filters"][0]["value"]
            day = date.fromisoformat(start_value[:10])
            self.requested_days.append(day)
            return httpx.Response(200, json=envelope(self.events_by_date.get(day, [])))

        return httpx.Response(404, text="Not found")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


# =============================================================================
# Basic Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """
    Provide a temporary directory for test files.

    Yields:
        Path to temporary directory
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db_path(temp_dir: Path) -> Path:
    """Provide a path for a temporary test database."""
    return temp_dir / "test_ems.db"


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def fake_server() -> FakeEMSServer:
    return FakeEMSServer()


@pytest.fixture
def fast_config() -> ScraperConfig:
    """
    Configuration with no pacing or cooldown and few retries.

    Sleeps are injected in tests, so delays are recorded rather than waited.
    """
    return ScraperConfig(
        base_url="https://ems.test/EmsWebApp",
        request_interval=0.0,
        min_request_interval=0.0,
        max_retries=3,
        error_cooldown=0.0,
    )


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
def empty_db(temp_db_path: Path, fake_clock: FakeClock) -> EMSDatabase:
    """
    Provide an empty test database driven by the fake clock.

    Schema is created but no data is inserted.
    """
    return EMSDatabase(str(temp_db_path), clock=fake_clock)
