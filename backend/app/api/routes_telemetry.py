"""
routes_telemetry.py

Purpose:
  Live telemetry surface: the corrected live reading, chart windows, the
  recent-history table and a push endpoint that plays the device role.

Endpoints:
  - **GET /telemetry/live**: latest corrected reading (current/relay after control).
  - **POST /telemetry/live**: writes a device-shaped sample into the store;
    the pipeline picks it up through its live-path subscription.
  - **GET /telemetry/windows**: AC + DC chart buffers (shared label axis per group).
  - **GET /telemetry/history**: newest-first history records (top 5).
  - **PUT /telemetry/history/{record_id}**: writes one history record.
  - **GET /telemetry/stream**: SSE stream of pipeline snapshots.
"""
from __future__ import annotations

from typing import AsyncIterator, Dict, List

from fastapi import APIRouter
from sse_starlette.sse import EventSourceResponse

from app.deps import get_channel, get_pipeline
from app.models.domain import HistoryRecord, LiveData, SampleIngestResponse
from app.schemas.telemetry import ChartWindowsResponse, HistoryRecordIn, SamplePush
from app.services.pipeline import TelemetryPipeline

router = APIRouter()


@router.get("/live", response_model=LiveData)
async def telemetry_live() -> LiveData:
    return get_pipeline().snapshot().live


@router.post("/live", response_model=SampleIngestResponse)
async def telemetry_push(sample: SamplePush) -> SampleIngestResponse:
    pipeline = get_pipeline()
    path = pipeline.settings.live_path
    get_channel().set(path, sample.to_store())
    return SampleIngestResponse(ok=True, path=path)


@router.get("/windows", response_model=ChartWindowsResponse)
async def telemetry_windows() -> ChartWindowsResponse:
    state = get_pipeline().snapshot()
    return ChartWindowsResponse(ac=state.ac, dc=state.dc)


@router.get("/history", response_model=List[HistoryRecord])
async def telemetry_history() -> List[HistoryRecord]:
    return get_pipeline().snapshot().history


@router.put("/history/{record_id}", response_model=SampleIngestResponse)
async def telemetry_history_put(record_id: str, record: HistoryRecordIn) -> SampleIngestResponse:
    path = f"{get_pipeline().settings.history_path}/{record_id}"
    get_channel().set(path, record.model_dump())
    return SampleIngestResponse(ok=True, path=path)


async def snapshot_events(pipeline: TelemetryPipeline) -> AsyncIterator[Dict[str, str]]:
    """SSE events: the current snapshot first, then one per emission."""
    q = pipeline.listen()
    try:
        yield {"event": "snapshot", "data": pipeline.snapshot().model_dump_json()}
        while True:
            state = await q.get()
            yield {"event": "snapshot", "data": state.model_dump_json()}
    finally:
        pipeline.unlisten(q)


@router.get("/stream", response_class=EventSourceResponse)
async def telemetry_stream():
    """
    Streams a pipeline snapshot on every emission (SSE).
    """
    return EventSourceResponse(snapshot_events(get_pipeline()))
