"""Shared pytest fixtures."""

import pytest

from tests.helpers.fakes import RecordingDelivery, RecordingNotifier
from voicerelay.metrics import MetricsCollector
from voicerelay.registry import SessionRegistry


class ManualClock:
    """Wall clock advanced explicitly by tests."""

    def __init__(self, start: float = 1_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def metrics() -> MetricsCollector:
    """Fresh collector so counters don't leak between tests."""
    return MetricsCollector()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def delivery() -> RecordingDelivery:
    return RecordingDelivery()


@pytest.fixture
def registry(
    notifier: RecordingNotifier, clock: ManualClock, metrics: MetricsCollector
) -> SessionRegistry:
    return SessionRegistry(notifier, clock=clock, metrics=metrics)
