"""
alerts.py

Purpose:
  Rule evaluator for operator alerts and the bounded alert log behind the
  dashboard's alert panel.

Rules (independent, any subset may fire per evaluation):
  - **Overload**: sample power above the configured threshold -> HIGH.
  - **Unbalanced**: |current - voltage| above tolerance -> MEDIUM. The rule
    compares amps against volts; it is kept exactly as deployed.
  - **High THD**: profile total THD above 5 % -> HIGH.

Log semantics:
  - Newest first, truncated to `capacity` after each batch.
  - Dismissal removes a single alert by id and leaves the rest in order.
"""
from __future__ import annotations

import itertools
import logging
from datetime import datetime
from typing import Iterator, List, Optional

from app.models.domain import Alert, AlertKind, HarmonicProfile, RawSample, SeverityLevel

logger = logging.getLogger(__name__)

# Alert ids are unique for the lifetime of the process
_ALERT_IDS: Iterator[int] = itertools.count(1)


def next_alert_id() -> int:
    return next(_ALERT_IDS)


class AlertEngine:
    def __init__(
        self,
        overload_threshold_w: float = 0.005,
        unbalanced_tolerance: float = 0.1,
        high_thd_pct: float = 5.0,
    ):
        self.overload_threshold_w = float(overload_threshold_w)
        self.unbalanced_tolerance = float(unbalanced_tolerance)
        self.high_thd_pct = float(high_thd_pct)

    def evaluate(self, sample: RawSample, profile: HarmonicProfile, now: Optional[datetime] = None) -> List[Alert]:
        raised_at = now or datetime.now()
        out: List[Alert] = []

        def emit(kind: AlertKind, severity: SeverityLevel, message: str) -> None:
            out.append(
                Alert(
                    id=next_alert_id(),
                    kind=kind,
                    severity=severity,
                    message=message,
                    raised_at=raised_at,
                )
            )

        if sample.power > self.overload_threshold_w:
            emit(AlertKind.OVERLOAD, SeverityLevel.HIGH, "Power overload detected")

        if abs(sample.current - sample.voltage) > self.unbalanced_tolerance:
            emit(AlertKind.UNBALANCED, SeverityLevel.MEDIUM, "Unbalanced load detected")

        if profile.total_thd > self.high_thd_pct:
            emit(AlertKind.HIGH_THD, SeverityLevel.HIGH, f"High THD detected: {profile.total_thd:.2f}%")

        return out


class AlertLog:
    def __init__(self, capacity: int = 10):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = int(capacity)
        self._alerts: List[Alert] = []

    def __len__(self) -> int:
        return len(self._alerts)

    def extend(self, new_alerts: List[Alert]) -> None:
        if not new_alerts:
            return
        for a in new_alerts:
            logger.info("Alert raised: %s (%s) %s", a.kind.value, a.severity.value, a.message)
        self._alerts = (list(new_alerts) + self._alerts)[: self.capacity]

    def dismiss(self, alert_id: int) -> bool:
        before = len(self._alerts)
        self._alerts = [a for a in self._alerts if a.id != alert_id]
        return len(self._alerts) < before

    def alerts(self) -> List[Alert]:
        return list(self._alerts)
