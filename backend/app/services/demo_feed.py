"""
demo_feed.py

Purpose:
  Stand-in for the field device when no hardware is attached. Writes a
  plausible AC sample into the in-memory store every tick, mirrors DC readings
  onto the root node and appends a history record, so the whole pipeline
  (including the control write-back) can be exercised end to end.

Sim:
  - Voltage random-walks around 230 V, current around 1 A.
  - The choke flag toggles with a small probability per tick; the relay is
    left as the device last reported it, so the control policy has work to do.
"""
from __future__ import annotations

import asyncio
import logging
import random
import time
import uuid
from typing import Any, Dict, Optional

from app.config import PipelineSettings
from app.services.channel import InMemoryChannel

logger = logging.getLogger(__name__)


class DemoFeed:
    def __init__(
        self,
        channel: InMemoryChannel,
        settings: Optional[PipelineSettings] = None,
        rng: Optional[random.Random] = None,
    ):
        self.channel = channel
        self.settings = settings or PipelineSettings()
        s = self.settings
        self._rng = rng or (random.Random(s.seed) if s.deterministic else random.Random())
        self._task: Optional[asyncio.Task] = None
        self._voltage = 230.0
        self._current = 1.0
        self._choke = "0"
        self.ticks = 0

    def next_sample(self) -> Dict[str, Any]:
        rng = self._rng
        self._voltage = min(250.0, max(190.0, self._voltage + rng.uniform(-3.0, 3.0)))
        self._current = min(2.5, max(0.2, self._current + rng.uniform(-0.05, 0.05)))
        if rng.random() < 0.05:
            self._choke = "1" if self._choke == "0" else "0"

        current_state = self.channel.get(self.settings.live_path) or {}
        relay = current_state.get("Relay", 0) if isinstance(current_state, dict) else 0

        pf = rng.uniform(0.85, 0.99)
        return {
            "I": round(self._current, 3),
            "V": round(self._voltage, 2),
            "W": round(self._voltage * self._current * pf, 2),
            "P": round(pf, 3),
            "Relay": relay,
            "Choke": self._choke,
        }

    def step(self) -> Dict[str, Any]:
        s = self.settings
        sample = self.next_sample()
        self.channel.set(s.live_path, sample)
        self.channel.merge(
            s.dc_path,
            {
                "DC_Current": round(self._rng.uniform(0.4, 0.6), 3),
                "DC_Voltage": round(self._rng.uniform(11.8, 12.4), 2),
            },
        )
        self.channel.set(
            f"{s.history_path}/{uuid.uuid4().hex[:12]}",
            {
                "ts": time.time() * 1000.0,
                "current_a": sample["I"],
                "voltage_v": sample["V"],
                "power_w": sample["W"],
                "distribution_on": bool(sample["Relay"]),
            },
        )
        self._prune_history()
        self.ticks += 1
        return sample

    def _prune_history(self, keep: int = 50) -> None:
        records = self.channel.get(self.settings.history_path)
        if not isinstance(records, dict) or len(records) <= keep:
            return
        newest = sorted(records.items(), key=lambda kv: kv[1].get("ts", 0), reverse=True)[:keep]
        self.channel.set(self.settings.history_path, dict(newest))

    async def _run(self) -> None:
        while True:
            try:
                self.step()
            except Exception:
                logger.exception("Demo feed step failed")
            await asyncio.sleep(self.settings.demo_feed_interval_s)

    async def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name="demo-feed")
            logger.info("Demo feed started (interval=%.1fs)", self.settings.demo_feed_interval_s)

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is not None:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
            logger.info("Demo feed stopped after %d ticks", self.ticks)
