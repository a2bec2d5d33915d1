import asyncio
import random

import pytest

from app.config import PipelineSettings
from app.models.domain import AlertKind
from app.services.channel import ChannelError, InMemoryChannel
from app.services.pipeline import TelemetryPipeline, parse_history

LIVE = "2_AC_Power_Facter/1_AC_Power_Choke"


class FailingChannel(InMemoryChannel):
    async def update(self, path, fields):
        raise ChannelError("store unavailable")


def _distinct(make_sample, i):
    return make_sample(I=1.0 + i * 0.001, V=1.0 + i * 0.001)


# ============================================================
# WINDOWS & MATERIAL-CHANGE GATE
# ============================================================

@pytest.mark.parametrize("n", [1, 5, 20, 33])
def test_windows_track_min_of_capacity_and_samples(pipeline, clock, make_sample, n):
    for i in range(n):
        clock.advance(500)
        pipeline.ingest_live(_distinct(make_sample, i))

    state = pipeline.snapshot()
    expected = min(20, n)
    assert len(state.ac.labels) == expected
    assert len(state.dc.labels) == expected
    for series in list(state.ac.series.values()) + list(state.dc.series.values()):
        assert len(series) == expected


def test_repeated_sample_only_refreshes_timestamp(pipeline, clock, make_sample):
    pipeline.ingest_live(make_sample())
    before = pipeline.snapshot()

    clock.advance(1000)
    pipeline.ingest_live(make_sample())
    after = pipeline.snapshot()

    assert after.live.ts == clock.now
    assert after.ac == before.ac
    assert after.thd_history == before.thd_history
    assert after.predictions == before.predictions
    assert after.liveness.last_update_at == before.liveness.last_update_at


def test_sample_runs_every_stage(pipeline, clock, make_sample):
    pipeline.ingest_live(make_sample(I=1.2, V=1.25))
    state = pipeline.snapshot()

    assert state.live.current == 1.2
    assert state.ac.series["current"] == [1.2]
    assert len(state.thd_history) == 1
    assert state.thd_history[-1].is_live
    assert state.thd_history[-1].thd == state.harmonics.total_thd
    assert state.predictions.next_anomaly_eta >= clock.now
    assert state.liveness.is_active


def test_malformed_live_payload_is_ignored(pipeline, make_sample):
    pipeline.ingest_live(make_sample())
    before = pipeline.snapshot()

    assert pipeline.ingest_live("not a sample") is None
    assert pipeline.ingest_live({"V": "garbage"}) is None
    after = pipeline.snapshot()

    assert after.ac == before.ac
    assert after.live == before.live


# ============================================================
# CONTROL LOOP
# ============================================================

def test_corrected_values_flow_into_live_view(pipeline, make_sample):
    pipeline.ingest_live(make_sample(V=250.0, I=1.0, Relay=0, Choke="1"))
    state = pipeline.snapshot()

    assert state.live.current == 1.5
    assert state.live.relay == 1
    assert pipeline.directives_issued == 1


def test_directive_written_back_to_channel():
    async def scenario():
        channel = InMemoryChannel()
        settings = PipelineSettings(liveness_check_interval_s=3600, drift_interval_s=3600)
        async with TelemetryPipeline(channel, settings=settings, rng=random.Random(1)) as pipeline:
            channel.set(LIVE, {"V": 250.0, "I": 1.0, "W": 10.0, "Relay": 0, "Choke": "1"})
            for _ in range(5):
                await asyncio.sleep(0)
            return channel, pipeline

    channel, pipeline = asyncio.run(scenario())

    assert channel.writes == [(LIVE, {"I": 1.5, "Relay": 1})]
    assert channel.get(LIVE)["I"] == 1.5
    # The echoed, already-corrected sample must not trigger a second write
    assert pipeline.directives_issued == 1


def test_directive_write_failure_is_swallowed():
    async def scenario():
        channel = FailingChannel()
        settings = PipelineSettings(liveness_check_interval_s=3600, drift_interval_s=3600)
        async with TelemetryPipeline(channel, settings=settings, rng=random.Random(1)) as pipeline:
            channel.set(LIVE, {"V": 250.0, "I": 1.0, "Relay": 1, "Choke": "1"})
            for _ in range(5):
                await asyncio.sleep(0)
            return pipeline

    pipeline = asyncio.run(scenario())

    assert pipeline.directive_failures == 1
    assert pipeline.snapshot().live.current == 1.5
    assert len(pipeline.snapshot().ac.labels) == 1


def test_directive_without_event_loop_is_dropped(pipeline, channel, make_sample):
    directive = pipeline.ingest_live(make_sample(V=250.0, I=1.0))
    assert directive is not None
    assert directive.current == 1.5
    assert channel.writes == []


# ============================================================
# LIVENESS & FREEZE
# ============================================================

def test_feed_goes_stale_after_timeout(pipeline, clock, make_sample):
    pipeline.ingest_live(make_sample())

    clock.advance(5000)
    assert pipeline.check_liveness() is True
    clock.advance(1)
    assert pipeline.check_liveness() is False
    assert pipeline.snapshot().liveness.is_active is False


def test_drift_ticks_append_while_active(pipeline, clock, make_sample):
    pipeline.ingest_live(make_sample())
    for _ in range(3):
        clock.advance(1000)
        assert pipeline.drift_tick() is not None

    entries = pipeline.snapshot().thd_history
    assert len(entries) == 4
    assert sum(e.is_live for e in entries) == 1


def test_analytics_freeze_when_inactive(pipeline, clock, make_sample):
    pipeline.ingest_live(make_sample(W=50.0))
    clock.advance(6000)
    pipeline.check_liveness()

    assert pipeline.drift_tick() is None
    first = pipeline.snapshot()
    clock.advance(2000)
    assert pipeline.drift_tick() is None
    second = pipeline.snapshot()

    assert first.harmonics == second.harmonics
    assert first.thd_history == second.thd_history
    assert first.alerts == second.alerts
    assert first.predictions == second.predictions


def test_new_sample_revives_feed(pipeline, clock, make_sample):
    pipeline.ingest_live(make_sample())
    clock.advance(6000)
    pipeline.check_liveness()

    pipeline.ingest_live(make_sample(I=1.05, V=1.05))
    state = pipeline.snapshot()
    assert state.liveness.is_active
    assert len(state.thd_history) == 2


# ============================================================
# ALERTS
# ============================================================

def test_overload_sample_raises_exactly_one_alert(channel, rng, clock, make_sample):
    settings = PipelineSettings(overload_threshold_w=100.0)
    pipeline = TelemetryPipeline(channel, settings=settings, rng=rng, clock=clock)

    pipeline.ingest_live(make_sample(W=150.0))
    alerts = pipeline.snapshot().alerts

    assert len(alerts) == 1
    assert alerts[0].kind == AlertKind.OVERLOAD


def test_alert_log_capped_and_dismissable(pipeline, clock, make_sample):
    for i in range(8):
        clock.advance(100)
        # power + unbalanced: two alerts per sample
        pipeline.ingest_live(make_sample(I=1.0, V=230.0 + i, W=100.0))

    alerts = pipeline.snapshot().alerts
    assert len(alerts) == 10

    target = alerts[4].id
    assert pipeline.dismiss_alert(target)
    remaining = [a.id for a in pipeline.snapshot().alerts]
    assert remaining == [a.id for a in alerts if a.id != target]
    assert not pipeline.dismiss_alert(target)


# ============================================================
# DC + HISTORY
# ============================================================

def test_dc_values_carried_into_next_row(pipeline, make_sample):
    pipeline.ingest_dc({"DC_Current": 0.52, "DC_Voltage": 12.1})
    assert pipeline.snapshot().live.dc_voltage == 12.1

    pipeline.ingest_live(make_sample())
    dc = pipeline.snapshot().dc
    assert dc.series["dc_current"] == [0.52]
    assert dc.series["dc_voltage"] == [12.1]


def test_history_sorted_desc_top_five(pipeline):
    payload = {f"k{i}": {"ts": 1000.0 + i, "current_a": i, "voltage_v": 230, "power_w": 5} for i in range(4)}
    payload["broken"] = "not a record"
    payload["nan_ts"] = {"ts": "nan", "power_w": 5}
    payload["inf_ts"] = {"ts": float("inf")}
    payload.update({f"k{i}": {"ts": 1000.0 + i, "current_a": i, "voltage_v": 230, "power_w": 5} for i in range(4, 8)})
    pipeline.ingest_history(payload)

    history = pipeline.snapshot().history
    assert [r.id for r in history] == ["k7", "k6", "k5", "k4", "k3"]


def test_parse_history_drops_non_finite_values():
    records = parse_history({"a": {"ts": 10, "power_w": "nan"}, "b": {"ts": "inf"}}, limit=5)
    assert [r.id for r in records] == ["a"]
    assert records[0].power_w is None


def test_parse_history_tolerates_missing_fields():
    records = parse_history({"a": {}, "b": {"ts": 5}}, limit=5)
    assert [r.id for r in records] == ["b", "a"]
    assert records[1].current_a is None


# ============================================================
# LIFECYCLE
# ============================================================

def test_timers_drive_drift_and_stop_cleanly(clock):
    async def scenario():
        channel = InMemoryChannel()
        settings = PipelineSettings(liveness_check_interval_s=0.01, drift_interval_s=0.01)
        pipeline = TelemetryPipeline(channel, settings=settings, rng=random.Random(2), clock=clock)
        await pipeline.start()
        assert channel.subscriber_count() == 3

        channel.set(LIVE, {"I": 1.0, "V": 1.0, "Relay": 1, "Choke": "1"})
        await asyncio.sleep(0.1)
        active_len = len(pipeline.thd_history)

        clock.advance(6000)
        await asyncio.sleep(0.05)
        frozen_len = len(pipeline.thd_history)
        await asyncio.sleep(0.05)
        still_len = len(pipeline.thd_history)

        await pipeline.stop()
        return pipeline, channel, active_len, frozen_len, still_len

    pipeline, channel, active_len, frozen_len, still_len = asyncio.run(scenario())

    assert active_len > 1
    assert frozen_len == still_len
    assert not pipeline.running
    assert channel.subscriber_count() == 0


def test_listeners_receive_snapshots(make_sample):
    async def scenario():
        channel = InMemoryChannel()
        settings = PipelineSettings(liveness_check_interval_s=3600, drift_interval_s=3600)
        async with TelemetryPipeline(channel, settings=settings, rng=random.Random(4)) as pipeline:
            q = pipeline.listen(maxsize=2)
            for i in range(4):
                channel.set(LIVE, make_sample(I=1.0 + i * 0.01))
            got = [q.get_nowait() for _ in range(q.qsize())]
            pipeline.unlisten(q)
            return got

    got = asyncio.run(scenario())

    # Bounded queue keeps only the newest snapshots
    assert len(got) == 2
    assert got[-1].live.current == pytest.approx(1.03)


def test_stop_detaches_listeners():
    async def scenario():
        settings = PipelineSettings(liveness_check_interval_s=3600, drift_interval_s=3600)
        async with TelemetryPipeline(InMemoryChannel(), settings=settings, rng=random.Random(4)) as pipeline:
            for _ in range(3):
                pipeline.listen()
            attached = len(pipeline._listeners)
        return attached, len(pipeline._listeners)

    attached, after = asyncio.run(scenario())
    assert attached == 3
    assert after == 0


def test_directive_from_foreign_thread_completes_before_stop():
    async def scenario():
        channel = InMemoryChannel()
        settings = PipelineSettings(liveness_check_interval_s=3600, drift_interval_s=3600)
        async with TelemetryPipeline(channel, settings=settings, rng=random.Random(1)) as pipeline:
            # Push delivered on a worker thread, as an SDK callback would be
            await asyncio.to_thread(channel.set, LIVE, {"V": 250.0, "I": 1.0, "Relay": 1, "Choke": "1"})
        return channel, pipeline

    channel, pipeline = asyncio.run(scenario())
    assert pipeline.directives_issued == 1
    assert channel.writes == [(LIVE, {"I": 1.5})]
    assert not pipeline._pending_writes
