from __future__ import annotations

import random
from datetime import datetime, timedelta
from typing import Optional

from app.models.domain import PredictionSummary


class PredictionEstimator:
    """
    Placeholder short-horizon forecast. Values are drawn from fixed bands;
    the sample itself is not an input, only the decision to tick is.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rng = rng or random.Random()
        self.summary = PredictionSummary(
            compensation_level=85.7,
            response_delay_ms=12.3,
            next_anomaly_eta=datetime.now() + timedelta(minutes=30),
            confidence=92.1,
        )

    def tick(self, now: Optional[datetime] = None) -> PredictionSummary:
        now = now or datetime.now()
        self.summary = PredictionSummary(
            compensation_level=80.0 + self._rng.random() * 20.0,
            response_delay_ms=10.0 + self._rng.random() * 10.0,
            next_anomaly_eta=now + timedelta(milliseconds=self._rng.random() * 3_600_000),
            confidence=85.0 + self._rng.random() * 15.0,
        )
        return self.summary
