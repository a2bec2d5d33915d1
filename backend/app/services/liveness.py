from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Optional

from app.models.domain import LivenessState

logger = logging.getLogger(__name__)


class LivenessTracker:
    """
    Tracks whether the telemetry feed is still producing fresh samples.

    `is_active(now)` is a pure read of the timeout rule. `check(now)` is the
    periodic-timer entry point that latches the stored flag to False once the
    feed goes stale; only `record_update()` sets it back to True.
    """

    def __init__(self, timeout_ms: int = 5000, started_at: Optional[datetime] = None):
        self.timeout = timedelta(milliseconds=int(timeout_ms))
        self.last_update_at = started_at or datetime.now()
        self._active = True

    def record_update(self, ts: datetime) -> None:
        if not self._active:
            logger.info("Telemetry feed resumed at %s", ts.isoformat())
        self.last_update_at = ts
        self._active = True

    def is_active(self, now: datetime) -> bool:
        return (now - self.last_update_at) <= self.timeout

    def check(self, now: datetime) -> bool:
        if self._active and not self.is_active(now):
            self._active = False
            idle_s = (now - self.last_update_at).total_seconds()
            logger.info("Telemetry feed stopped (no fresh sample for %.1fs); freezing analytics", idle_s)
        return self._active

    @property
    def active(self) -> bool:
        return self._active

    def state(self) -> LivenessState:
        return LivenessState(last_update_at=self.last_update_at, is_active=self._active)
