from __future__ import annotations

from typing import List

from fastapi import APIRouter, HTTPException

from app.deps import get_pipeline
from app.models.domain import Alert, DismissResponse

router = APIRouter()


@router.get("", response_model=List[Alert])
async def alerts_list() -> List[Alert]:
    """Newest first, at most ALERT_CAPACITY entries."""
    return get_pipeline().snapshot().alerts


@router.delete("/{alert_id}", response_model=DismissResponse)
async def alerts_dismiss(alert_id: int) -> DismissResponse:
    pipeline = get_pipeline()
    if not pipeline.dismiss_alert(alert_id):
        raise HTTPException(status_code=404, detail="Alert not found")
    return DismissResponse(ok=True, id=alert_id, remaining=len(pipeline.alert_log))
