# backend/app/main.py
from __future__ import annotations

import logging
import os
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from app.api import (
    routes_alerts,
    routes_harmonics,
    routes_health,
    routes_pipeline,
    routes_telemetry,
    routes_ws,
)
from app.deps import get_demo_feed, get_pipeline
from app.logging_config import setup_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    pipeline = get_pipeline()
    feed = get_demo_feed()

    await pipeline.start()
    if feed is not None:
        await feed.start()
    try:
        yield
    finally:
        # Stop the producer first so nothing fires into a stopped pipeline
        if feed is not None:
            await feed.stop()
        await pipeline.stop()


app = FastAPI(
    title="Neural Power Monitor Backend",
    version="0.1.0",
    description="Reactive telemetry-to-insight pipeline for the AC power-factor / choke rig.",
    lifespan=lifespan,
)

# CORS: allow the dashboard dev server
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "*")
allow_origins = ["*"] if ALLOWED_ORIGINS == "*" else [o.strip() for o in ALLOWED_ORIGINS.split(",")]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


app.include_router(routes_health.router, tags=["health"])
app.include_router(routes_pipeline.router, prefix="/pipeline", tags=["pipeline"])
app.include_router(routes_telemetry.router, prefix="/telemetry", tags=["telemetry"])
app.include_router(routes_harmonics.router, prefix="/harmonics", tags=["harmonics"])
app.include_router(routes_alerts.router, prefix="/alerts", tags=["alerts"])
app.include_router(routes_ws.router, tags=["ws"])

# Run:
#   uvicorn app.main:app --reload --port 8000   (from backend/)
#
# Open docs:
#   http://localhost:8000/docs
