import random
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from app.config import PipelineSettings
from app.services.channel import InMemoryChannel
from app.services.pipeline import TelemetryPipeline


class FakeClock:
    """Manually advanced wall clock for liveness / timestamp tests."""

    def __init__(self, start: datetime = datetime(2025, 10, 31, 14, 45, 0)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, ms: float) -> datetime:
        self.now = self.now + timedelta(milliseconds=ms)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def rng():
    return random.Random(1234)


@pytest.fixture
def settings():
    return PipelineSettings()


@pytest.fixture
def channel():
    return InMemoryChannel()


@pytest.fixture
def pipeline(channel, settings, rng, clock):
    return TelemetryPipeline(channel=channel, settings=settings, rng=rng, clock=clock)


@pytest.fixture
def client(monkeypatch):
    # Long timer intervals keep background ticks out of request assertions
    monkeypatch.setenv("DEMO_MODE", "false")
    monkeypatch.setenv("DEMO_DETERMINISTIC", "true")
    monkeypatch.setenv("LIVENESS_CHECK_INTERVAL_S", "3600")
    monkeypatch.setenv("DRIFT_INTERVAL_S", "3600")

    from app.deps import reset_singletons
    from app.main import app

    reset_singletons()
    with TestClient(app) as c:
        yield c
    reset_singletons()


def sample(**overrides):
    """Device-shaped payload with quiet defaults: no control action, no alert rule fires."""
    base = {"I": 1.0, "V": 1.0, "W": 0.0, "P": 0.95, "Relay": 1, "Choke": "1"}
    base.update(overrides)
    return base


@pytest.fixture
def make_sample():
    return sample
