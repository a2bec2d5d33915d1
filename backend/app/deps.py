# backend/app/deps.py
"""
deps.py

Purpose:
  Dependency Injection (DI) container for the application.
  Manages singleton instances of core services so pipeline state persists across requests.

Services Managed:
  - `InMemoryChannel` (the telemetry store boundary)
  - `TelemetryPipeline` (owner of all derived telemetry state)
  - `DemoFeed` (only when DEMO_MODE is on)

Pattern:
  - Uses `lru_cache` to enforce Singleton pattern for each getter.
  - Tests swap instances via `app.dependency_overrides` or `cache_clear()`.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from app.config import PipelineSettings, load_settings
from app.services.channel import InMemoryChannel
from app.services.demo_feed import DemoFeed
from app.services.pipeline import TelemetryPipeline


@lru_cache(maxsize=1)
def get_settings() -> PipelineSettings:
    return load_settings()


@lru_cache(maxsize=1)
def get_channel() -> InMemoryChannel:
    return InMemoryChannel()


@lru_cache(maxsize=1)
def get_pipeline() -> TelemetryPipeline:
    return TelemetryPipeline(channel=get_channel(), settings=get_settings())


@lru_cache(maxsize=1)
def get_demo_feed() -> Optional[DemoFeed]:
    settings = get_settings()
    if not settings.demo_mode:
        return None
    return DemoFeed(channel=get_channel(), settings=settings)


def reset_singletons() -> None:
    for getter in (get_settings, get_channel, get_pipeline, get_demo_feed):
        getter.cache_clear()
