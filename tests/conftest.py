"""Shared fixtures for the suitecal test suite."""

from collections.abc import Callable, Generator
from datetime import datetime, timezone
from typing import Any

import pytest

from suitecal.calendar.models import SeriesRoot
from suitecal.config_loader import Config
from suitecal.store.collaborators import RecordingNotifier, StaticDirectory
from suitecal.store.memory_store import InMemoryDatastore


def pytest_configure(config: Any) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: fast isolated unit tests")
    config.addinivalue_line("markers", "integration: tests spanning the HTTP surface or CLI")


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Keep SUITECAL_* overrides from leaking between tests."""
    for name in ("SUITECAL_TEST_TIME", "SUITECAL_DEBUG", "SUITECAL_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    yield


@pytest.fixture
def utc() -> Callable[..., datetime]:
    """Build aware UTC datetimes tersely: utc(2024, 1, 1, 9)."""

    def _utc(year: int, month: int, day: int, hour: int = 0, minute: int = 0, second: int = 0) -> datetime:
        return datetime(year, month, day, hour, minute, second, tzinfo=timezone.utc)

    return _utc


@pytest.fixture
def make_series(utc: Callable[..., datetime]) -> Callable[..., SeriesRoot]:
    """Factory for series roots with sensible defaults.

    Defaults to a daily 09:00-10:00 UTC series starting 2024-01-01 in cal-1.
    """

    def _make(**overrides: Any) -> SeriesRoot:
        data: dict[str, Any] = {
            "id": "series-1",
            "calendar_id": "cal-1",
            "title": "Standup",
            "start_at": utc(2024, 1, 1, 9),
            "end_at": utc(2024, 1, 1, 10),
            "timezone": "UTC",
            "recurrence_rule": "FREQ=DAILY;INTERVAL=1",
            "created_by": "user-1",
        }
        data.update(overrides)
        return SeriesRoot(**data)

    return _make


@pytest.fixture
def datastore() -> InMemoryDatastore:
    """Fresh in-memory datastore without persistence."""
    return InMemoryDatastore()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def directory() -> StaticDirectory:
    return StaticDirectory({"bob@example.com": ["cal-bob"], "carol@example.com": ["cal-carol"]})


@pytest.fixture
def config() -> Config:
    return Config()
