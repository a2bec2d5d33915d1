from __future__ import annotations

from collections import deque
from datetime import datetime
from typing import Deque, List

from app.models.domain import THDHistoryEntry

ANOMALY_THD_PCT = 5.0


def time_label(ts: datetime) -> str:
    return ts.strftime("%H:%M:%S")


class AnomalyHistory:
    """
    Bounded THD trend log. Only the newest entry is flagged live; anything
    above 5 % THD is flagged as an anomaly.
    """

    def __init__(self, capacity: int = 50):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = int(capacity)
        self._entries: Deque[THDHistoryEntry] = deque(maxlen=self.capacity)

    def __len__(self) -> int:
        return len(self._entries)

    def append(self, thd: float, now: datetime) -> THDHistoryEntry:
        if self._entries and self._entries[-1].is_live:
            # Only the tail can be live, so clearing it keeps the invariant
            self._entries[-1] = self._entries[-1].model_copy(update={"is_live": False})

        entry = THDHistoryEntry(
            time=time_label(now),
            thd=float(thd),
            is_anomaly=thd > ANOMALY_THD_PCT,
            is_live=True,
            observed_at=now,
        )
        self._entries.append(entry)
        return entry

    def entries(self) -> List[THDHistoryEntry]:
        return list(self._entries)

    def anomalies(self) -> List[THDHistoryEntry]:
        return [e for e in self._entries if e.is_anomaly]
