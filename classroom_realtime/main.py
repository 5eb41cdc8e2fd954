# classroom_realtime/main.py

from __future__ import annotations

import asyncio
import math

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from classroom_realtime.core import state
from classroom_realtime.core.config import settings
from classroom_realtime.core.database import create_mongo_client, get_database
from classroom_realtime.core.errors import RateLimited, RealtimeError
from classroom_realtime.core.logging import setup_logging, get_logger
from classroom_realtime.api.routes import (
    discussions,
    groups,
    health,
    leaderboard,
    messages,
    metrics,
    notifications,
    root,
)
from classroom_realtime.api import websocket as websocket_module
from classroom_realtime.services.directory import MongoDirectory
from classroom_realtime.services.message_store import MongoMessageStore
from classroom_realtime.services.redis_pub_sub import connect_redis

# Configure logging first
setup_logging()
logger = get_logger(__name__)

# FastAPI app
app = FastAPI(title="Classroom Realtime Service")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CLIENT_URL,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# REST routes
app.include_router(root.router)
app.include_router(health.router)
app.include_router(metrics.router)
app.include_router(discussions.router)
app.include_router(groups.router)
app.include_router(messages.router)
app.include_router(leaderboard.router)
app.include_router(notifications.router)

# WebSocket routes
app.include_router(websocket_module.router)

_background_tasks: list[asyncio.Task] = []


@app.exception_handler(RealtimeError)
async def realtime_error_handler(request: Request, exc: RealtimeError):
    headers = None
    if isinstance(exc, RateLimited):
        headers = {"Retry-After": str(max(1, math.ceil(exc.retry_after_ms / 1000)))}
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)


@app.on_event("startup")
async def startup_event():
    logger.info("🚀 Application starting - instance %s, bus=%s", settings.INSTANCE_ID, settings.PUB_SUB_SERVICE)

    state.mongo_client = create_mongo_client(settings.MONGO_URL)
    db = get_database(state.mongo_client, settings.DB_NAME)
    redis_client = await connect_redis(settings.REDIS_URL)

    await state.init_state(
        settings,
        MongoDirectory(db),
        MongoMessageStore(db),
        redis=redis_client,
    )

    # Periodic prune of idle rate limit windows
    _background_tasks.append(
        asyncio.create_task(state.rate_limiter.run_sweeper(settings.RATE_LIMIT_SWEEP_SECONDS))
    )


@app.on_event("shutdown")
async def on_shutdown():
    for task in _background_tasks:
        task.cancel()
    _background_tasks.clear()

    if state.bus is not None:
        await state.bus.close()
    if state.redis_client is not None:
        await state.redis_client.aclose()
    if state.mongo_client is not None:
        state.mongo_client.close()

    logger.info("👋 Application stopped")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("classroom_realtime.main:app", host="0.0.0.0", port=8000)

# ============================================================================
# END OF FILE
# ============================================================================
