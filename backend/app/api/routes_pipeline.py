from __future__ import annotations

from fastapi import APIRouter

from app.deps import get_pipeline
from app.models.domain import LivenessState, PipelineState, PredictionSummary

router = APIRouter()


@router.get("/state", response_model=PipelineState)
async def pipeline_state() -> PipelineState:
    """
    Full read-only snapshot: live view, history, chart windows, harmonics,
    THD trend, alerts, predictions and liveness.
    """
    return get_pipeline().snapshot()


@router.get("/predictions", response_model=PredictionSummary)
async def pipeline_predictions() -> PredictionSummary:
    return get_pipeline().snapshot().predictions


@router.get("/liveness", response_model=LivenessState)
async def pipeline_liveness() -> LivenessState:
    return get_pipeline().snapshot().liveness
