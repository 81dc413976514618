# tests/conftest.py
"""Shared pytest fixtures for all test modules.

Provides common fixtures for:
- A fresh, not yet started SchedulerEngine per test
- A recording receiver that can be waited on from the test thread
- Frequently used time zones
"""

import threading
from collections.abc import Generator
from datetime import timezone
from typing import Any
from zoneinfo import ZoneInfo

import pytest

from cronwire.config import Settings
from cronwire.core.scheduler.engine import SchedulerEngine

UTC = timezone.utc
BERLIN = ZoneInfo("Europe/Berlin")


class RecordingReceiver:
    """Receiver collecting every delivered message."""

    def __init__(self) -> None:
        self.messages: list[Any] = []
        self._received = threading.Condition()

    def tell(self, message: Any) -> None:
        with self._received:
            self.messages.append(message)
            self._received.notify_all()

    def wait_for(self, count: int, timeout: float = 5.0) -> bool:
        """Block until at least ``count`` messages arrived.

        Returns:
            True if enough messages arrived before the timeout.
        """
        with self._received:
            return self._received.wait_for(
                lambda: len(self.messages) >= count, timeout=timeout
            )


@pytest.fixture
def settings() -> Settings:
    """Settings for a small engine in UTC."""
    return Settings(
        default_timezone="UTC",
        scheduler_name="test",
        thread_pool={"threadCount": 2, "daemonThreads": True},
    )


@pytest.fixture
def engine(settings: Settings) -> Generator[SchedulerEngine, None, None]:
    """Create an engine and shut it down after the test.

    Yields:
        A SchedulerEngine that has not been started.
    """
    scheduler_engine = SchedulerEngine(settings)

    yield scheduler_engine

    scheduler_engine.shutdown(wait_for_jobs_to_complete=False)


@pytest.fixture
def recorder() -> RecordingReceiver:
    return RecordingReceiver()


@pytest.fixture
def make_recorder() -> type[RecordingReceiver]:
    """Provide the recording receiver class for tests needing several."""
    return RecordingReceiver
