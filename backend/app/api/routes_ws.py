from __future__ import annotations

import asyncio

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from app.deps import get_pipeline

router = APIRouter()

# Resend interval while the pipeline is quiet (frozen feed)
KEEPALIVE_S = 1.0


@router.websocket("/ws/pipeline")
async def ws_pipeline(websocket: WebSocket):
    """
    WebSocket stream of pipeline snapshots: one on connect, then one per emission.
    When nothing is emitted for KEEPALIVE_S the latest snapshot is resent, so a
    dead client is noticed even while the feed is frozen.
    Same payload as GET /pipeline/state.
    """
    await websocket.accept()
    pipeline = get_pipeline()
    q = pipeline.listen()

    try:
        await websocket.send_json(pipeline.snapshot().model_dump(mode="json"))
        while True:
            try:
                state = await asyncio.wait_for(q.get(), timeout=KEEPALIVE_S)
            except asyncio.TimeoutError:
                if websocket.client_state != WebSocketState.CONNECTED:
                    return
                state = pipeline.snapshot()
            await websocket.send_json(state.model_dump(mode="json"))

    except WebSocketDisconnect:
        # normal disconnect
        return
    except Exception:
        try:
            await websocket.close()
        except Exception:
            pass
    finally:
        pipeline.unlisten(q)
