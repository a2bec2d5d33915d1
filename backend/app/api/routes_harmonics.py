from __future__ import annotations

from typing import List

from fastapi import APIRouter, Query

from app.deps import get_pipeline
from app.models.domain import BestHarmonic, THDHistoryEntry
from app.schemas.telemetry import HarmonicBar, HarmonicsResponse
from app.services.harmonics import harmonic_band

router = APIRouter()


@router.get("", response_model=HarmonicsResponse)
async def harmonics_profile() -> HarmonicsResponse:
    state = get_pipeline().snapshot()
    bars = [HarmonicBar(**h.model_dump(), band=harmonic_band(h.thd)) for h in state.harmonics.harmonics]
    return HarmonicsResponse(total_thd=state.harmonics.total_thd, harmonics=bars, best=state.best_harmonic)


@router.get("/best", response_model=BestHarmonic)
async def harmonics_best() -> BestHarmonic:
    return get_pipeline().snapshot().best_harmonic


@router.get("/thd-history", response_model=List[THDHistoryEntry])
async def harmonics_thd_history(
    anomalies_only: bool = Query(False, description="Only entries above the 5% THD line"),
) -> List[THDHistoryEntry]:
    entries = get_pipeline().snapshot().thd_history
    if anomalies_only:
        entries = [e for e in entries if e.is_anomaly]
    return entries
