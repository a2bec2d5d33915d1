"""
pipeline.py

Purpose:
  Owns every piece of derived telemetry state and turns channel pushes into
  a consolidated `PipelineState` snapshot for the dashboard.

Key Responsibilities:
  - **Control loop**: runs the control policy on every live push and writes
    corrective directives back to the channel (fire-and-forget).
  - **Windows**: AC and DC chart buffers, appended row-wise.
  - **Analytics**: harmonic profile, THD trend log, alerts and predictions,
    all frozen while the feed is stale.
  - **Timers**: a liveness check (~1 s) and an idle drift tick (~2 s), both
    cancelled on `stop()`.

Flow (per materially-changed live sample):
  control -> liveness -> windows -> harmonics -> THD history -> alerts
  -> predictions -> emit snapshot.

Concurrency:
  All mutation happens under one re-entrant lock, so channel callbacks from
  SDK threads and the asyncio timers never interleave half-applied updates.
"""
from __future__ import annotations

import asyncio
import logging
import math
import random
import threading
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional, Set

from app.config import PipelineSettings
from app.models.domain import (
    ControlDirective,
    HarmonicProfile,
    HistoryRecord,
    LiveData,
    MalformedPayloadError,
    PipelineState,
    RawSample,
)
from app.services.alerts import AlertEngine, AlertLog
from app.services.anomaly_history import AnomalyHistory, time_label
from app.services.channel import ChannelEvent, TelemetryChannel, Unsubscribe
from app.services.control_policy import apply_directive, evaluate_control
from app.services.harmonics import HarmonicEstimator, classify_best_harmonic
from app.services.liveness import LivenessTracker
from app.services.prediction import PredictionEstimator
from app.services.timeseries import AC_CHANNELS, DC_CHANNELS, ChannelGroup

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def _opt_float(val: Any) -> Optional[float]:
    try:
        if val is None:
            return None
        out = float(val)
    except Exception:
        return None
    return out if math.isfinite(out) else None


def parse_history(payload: Any, limit: int = 5) -> List[HistoryRecord]:
    """id -> record mapping, newest first, top `limit`."""
    if not isinstance(payload, Mapping):
        raise MalformedPayloadError(f"expected mapping, got {type(payload).__name__}")

    records: List[HistoryRecord] = []
    for key, rec in payload.items():
        if not isinstance(rec, Mapping):
            continue
        ts = _opt_float(rec.get("ts"))
        if ts is None and rec.get("ts") is not None:
            logger.warning("Skipping history record %s with unusable ts %r", key, rec.get("ts"))
            continue
        records.append(
            HistoryRecord(
                id=str(key),
                ts=ts or 0.0,
                current_a=_opt_float(rec.get("current_a")),
                voltage_v=_opt_float(rec.get("voltage_v")),
                power_w=_opt_float(rec.get("power_w")),
                distribution_on=bool(rec.get("distribution_on")),
            )
        )
    records.sort(key=lambda r: r.ts, reverse=True)
    return records[: max(0, int(limit))]


class TelemetryPipeline:
    def __init__(
        self,
        channel: TelemetryChannel,
        settings: Optional[PipelineSettings] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Clock] = None,
    ):
        self.channel = channel
        self.settings = settings or PipelineSettings()
        self._clock: Clock = clock or datetime.now
        s = self.settings

        if rng is None:
            rng = random.Random(s.seed) if s.deterministic else random.Random()
        self._rng = rng

        # Aggregates
        self.ac = ChannelGroup(AC_CHANNELS, capacity=s.window_capacity)
        self.dc = ChannelGroup(DC_CHANNELS, capacity=s.window_capacity)
        self.liveness = LivenessTracker(timeout_ms=s.liveness_timeout_ms, started_at=self._clock())
        self.harmonics = HarmonicEstimator(rng=self._rng)
        self.thd_history = AnomalyHistory(capacity=s.thd_history_capacity)
        self.alert_engine = AlertEngine(
            overload_threshold_w=s.overload_threshold_w,
            unbalanced_tolerance=s.unbalanced_tolerance,
            high_thd_pct=s.high_thd_pct,
        )
        self.alert_log = AlertLog(capacity=s.alert_capacity)
        self.predictions = PredictionEstimator(rng=self._rng)

        self._live = LiveData(ts=self._clock())
        self._previous: Optional[RawSample] = None
        self._history: List[HistoryRecord] = []
        self._dc_current = 0.0
        self._dc_voltage = 0.0

        self._lock = threading.RLock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: List[asyncio.Task] = []
        self._unsubscribers: List[Unsubscribe] = []
        self._pending_writes: Set[asyncio.Future] = set()
        self._listeners: List[asyncio.Queue] = []

        self.directives_issued = 0
        self.directive_failures = 0

    # -----------------------------
    # Lifecycle
    # -----------------------------
    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        self._loop = asyncio.get_running_loop()
        s = self.settings

        # Explicit handler registration per path
        self._unsubscribers = [
            self.channel.subscribe(s.live_path, self._on_live_event),
            self.channel.subscribe(s.dc_path, self._on_dc_event),
            self.channel.subscribe(s.history_path, self._on_history_event),
        ]
        self._tasks = [
            asyncio.create_task(self._liveness_loop(), name="pipeline-liveness"),
            asyncio.create_task(self._drift_loop(), name="pipeline-drift"),
        ]
        logger.info(
            "Telemetry pipeline started (live=%s, liveness=%.1fs, drift=%.1fs)",
            s.live_path,
            s.liveness_check_interval_s,
            s.drift_interval_s,
        )

    async def stop(self) -> None:
        for unsub in self._unsubscribers:
            unsub()
        self._unsubscribers = []

        tasks, self._tasks = self._tasks, []
        for t in tasks:
            t.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        pending = list(self._pending_writes)
        if pending:
            done, not_done = await asyncio.wait(pending, timeout=1.0)
            for t in not_done:
                t.cancel()
        self._pending_writes.clear()
        with self._lock:
            self._listeners.clear()
        self._loop = None
        logger.info("Telemetry pipeline stopped")

    async def __aenter__(self) -> "TelemetryPipeline":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _liveness_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.liveness_check_interval_s)
            try:
                self.check_liveness()
            except Exception:
                logger.exception("Liveness check failed")

    async def _drift_loop(self) -> None:
        while True:
            await asyncio.sleep(self.settings.drift_interval_s)
            try:
                self.drift_tick()
            except Exception:
                logger.exception("Harmonic drift tick failed")

    # -----------------------------
    # Channel handlers
    # -----------------------------
    def _on_live_event(self, event: ChannelEvent) -> None:
        self.ingest_live(event.value)

    def _on_dc_event(self, event: ChannelEvent) -> None:
        self.ingest_dc(event.value)

    def _on_history_event(self, event: ChannelEvent) -> None:
        self.ingest_history(event.value)

    # -----------------------------
    # Ingest
    # -----------------------------
    def ingest_live(self, payload: Any) -> Optional[ControlDirective]:
        """
        Runs one live push through the pipeline.
        Returns the directive that was dispatched, if any.
        """
        now = self._clock()
        try:
            sample = RawSample.from_payload(payload, observed_at=now)
        except MalformedPayloadError as e:
            logger.warning("Ignoring malformed live sample: %s", e)
            return None

        s = self.settings
        with self._lock:
            directive, issued = evaluate_control(
                sample,
                voltage_limit_v=s.control_voltage_limit_v,
                target_current_a=s.control_target_current_a,
            )
            if issued:
                self._dispatch(directive)

            corrected = apply_directive(sample, directive)
            if isinstance(payload, Mapping):
                if "DC_Current" in payload:
                    self._dc_current = corrected.dc_current
                if "DC_Voltage" in payload:
                    self._dc_voltage = corrected.dc_voltage

            frequency = 50.0 + (self._rng.random() - 0.5) * 0.2

            if not corrected.differs_from(self._previous):
                # Same reading re-pushed: refresh the timestamp only
                self._live = self._live.model_copy(update={"ts": now})
                self._emit()
                return directive if issued else None

            self.liveness.record_update(now)
            self._previous = corrected
            self._live = LiveData(
                current=corrected.current,
                voltage=corrected.voltage,
                power=corrected.power,
                power_factor=corrected.power_factor,
                relay=corrected.relay,
                choke_mode=corrected.choke_mode,
                dc_current=self._dc_current,
                dc_voltage=self._dc_voltage,
                frequency=frequency,
                ts=now,
            )

            label = time_label(now)
            self.ac.append_row(
                label,
                {"current": corrected.current, "voltage": corrected.voltage, "power": corrected.power},
            )
            self.dc.append_row(label, {"dc_current": self._dc_current, "dc_voltage": self._dc_voltage})

            active = self.liveness.check(now)
            profile = self.harmonics.tick(corrected.current, corrected.choke_mode, active=active)
            if profile is not None:
                self.thd_history.append(profile.total_thd, now)

            self.alert_log.extend(self.alert_engine.evaluate(corrected, self.harmonics.profile, now=now))
            self.predictions.tick(now)
            self._emit()

        return directive if issued else None

    def ingest_dc(self, payload: Any) -> None:
        if not isinstance(payload, Mapping):
            logger.warning("Ignoring malformed DC payload of type %s", type(payload).__name__)
            return
        dc_current = _opt_float(payload.get("DC_Current"))
        dc_voltage = _opt_float(payload.get("DC_Voltage"))
        with self._lock:
            self._dc_current = dc_current or 0.0
            self._dc_voltage = dc_voltage or 0.0
            self._live = self._live.model_copy(
                update={"dc_current": self._dc_current, "dc_voltage": self._dc_voltage}
            )
            self._emit()

    def ingest_history(self, payload: Any) -> None:
        try:
            records = parse_history(payload, limit=self.settings.history_limit)
        except MalformedPayloadError as e:
            logger.warning("Ignoring malformed history payload: %s", e)
            return
        with self._lock:
            self._history = records
            self._emit()

    # -----------------------------
    # Timer entry points
    # -----------------------------
    def check_liveness(self) -> bool:
        with self._lock:
            was_active = self.liveness.active
            active = self.liveness.check(self._clock())
            if active != was_active:
                self._emit()
            return active

    def drift_tick(self) -> Optional[HarmonicProfile]:
        now = self._clock()
        with self._lock:
            if not self.liveness.check(now):
                return None
            profile = self.harmonics.drift(self._live.choke_mode, active=True)
            if profile is None:
                return None
            self.thd_history.append(profile.total_thd, now)
            self._emit()
            return profile

    # -----------------------------
    # Operator actions
    # -----------------------------
    def dismiss_alert(self, alert_id: int) -> bool:
        with self._lock:
            removed = self.alert_log.dismiss(alert_id)
            if removed:
                self._emit()
            return removed

    # -----------------------------
    # Outbound control writes
    # -----------------------------
    def _dispatch(self, directive: ControlDirective) -> None:
        updates = directive.to_updates()
        self.directives_issued += 1
        logger.info("Dispatching control directive %s to %s", updates, self.settings.live_path)

        try:
            loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if loop is not None:
            self._spawn_write(updates)
        elif self._loop is not None and self._loop.is_running():
            # Push arrived on an SDK thread
            self._loop.call_soon_threadsafe(self._spawn_write, updates)
        else:
            logger.warning("No event loop available; control directive %s not sent", updates)

    def _spawn_write(self, updates: Dict[str, Any]) -> None:
        task = asyncio.get_running_loop().create_task(self._write_directive(updates))
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _write_directive(self, updates: Dict[str, Any]) -> None:
        try:
            await self.channel.update(self.settings.live_path, updates)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.directive_failures += 1
            logger.warning("Control directive write failed (%s); next sample will retry", e)

    # -----------------------------
    # Snapshot / emission
    # -----------------------------
    def snapshot(self) -> PipelineState:
        with self._lock:
            profile = self.harmonics.profile
            return PipelineState(
                emitted_at=self._clock(),
                live=self._live.model_copy(),
                history=list(self._history),
                ac=self.ac.snapshot(),
                dc=self.dc.snapshot(),
                harmonics=profile.model_copy(deep=True),
                best_harmonic=classify_best_harmonic(profile, self._live.choke_mode),
                thd_history=self.thd_history.entries(),
                alerts=self.alert_log.alerts(),
                predictions=self.predictions.summary.model_copy(),
                liveness=self.liveness.state(),
            )

    def listen(self, maxsize: int = 8) -> asyncio.Queue:
        q: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        with self._lock:
            self._listeners.append(q)
        return q

    def unlisten(self, q: asyncio.Queue) -> None:
        with self._lock:
            try:
                self._listeners.remove(q)
            except ValueError:
                pass

    def _emit(self) -> None:
        if not self._listeners:
            return
        state = self.snapshot()
        try:
            in_loop = asyncio.get_running_loop() is self._loop
        except RuntimeError:
            in_loop = False

        if in_loop or self._loop is None:
            self._fanout(state)
        else:
            self._loop.call_soon_threadsafe(self._fanout, state)

    def _fanout(self, state: PipelineState) -> None:
        for q in list(self._listeners):
            if q.full():
                # Slow consumer: drop its oldest snapshot
                try:
                    q.get_nowait()
                except asyncio.QueueEmpty:
                    pass
            q.put_nowait(state)
