"""
timeseries.py

Purpose:
  Fixed-capacity chart buffers for the live telemetry channels.

Invariant Guarantees:
  - A window never holds more than `capacity` points (oldest evicted first).
  - Every window inside a `ChannelGroup` has the same length, so chart labels
    line up across current / voltage / power (and DC current / DC voltage).
"""
from __future__ import annotations

from collections import deque
from typing import Deque, Dict, Iterable, List, Mapping

from app.models.domain import ChannelWindow, TimeSeriesPoint

AC_CHANNELS = ("current", "voltage", "power")
DC_CHANNELS = ("dc_current", "dc_voltage")


class TimeSeriesWindow:
    def __init__(self, capacity: int = 20):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = int(capacity)
        self._points: Deque[TimeSeriesPoint] = deque(maxlen=self.capacity)

    def __len__(self) -> int:
        return len(self._points)

    def append(self, label: str, value: float) -> None:
        self._points.append(TimeSeriesPoint(label=label, value=float(value)))

    def points(self) -> List[TimeSeriesPoint]:
        return list(self._points)

    def labels(self) -> List[str]:
        return [p.label for p in self._points]

    def values(self) -> List[float]:
        return [p.value for p in self._points]


class ChannelGroup:
    """Windows that share one label axis and are only ever appended row-wise."""

    def __init__(self, channels: Iterable[str], capacity: int = 20):
        self.channels = tuple(channels)
        if not self.channels:
            raise ValueError("channel group needs at least one channel")
        self.capacity = int(capacity)
        self._windows: Dict[str, TimeSeriesWindow] = {
            name: TimeSeriesWindow(capacity) for name in self.channels
        }

    def __len__(self) -> int:
        return len(self._windows[self.channels[0]])

    def window(self, channel: str) -> TimeSeriesWindow:
        return self._windows[channel]

    def append_row(self, label: str, values: Mapping[str, float]) -> None:
        missing = [c for c in self.channels if c not in values]
        if missing:
            # Refuse partial rows; a half-applied row would misalign the labels
            raise KeyError(f"missing channel values: {', '.join(missing)}")
        for name in self.channels:
            self._windows[name].append(label, values[name])

    def snapshot(self) -> ChannelWindow:
        return ChannelWindow(
            labels=self._windows[self.channels[0]].labels(),
            series={name: w.values() for name, w in self._windows.items()},
        )
