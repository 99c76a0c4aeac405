from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request

from .config import settings
from .db import engine, init_db
from .routers.api import health_router, router as api_router
from .routers.ui import router as ui_router

logging.basicConfig(
    level=settings.LOG_LEVEL.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("leaderboard")

_MAX_HEADER_LOG = 2048

@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.AUTO_CREATE_SCHEMA:
        init_db(engine)
    yield
    engine.dispose()

app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    if settings.DEBUG_HTTP:
        headers = {
            k: (v if len(v) <= _MAX_HEADER_LOG else "<truncated>")
            for k, v in request.headers.items()
        }
        logger.info(
            "http.debug method=%s path=%s query=%s remote=%s headers=%s",
            request.method,
            request.url.path,
            request.url.query,
            request.client.host if request.client else None,
            headers,
        )
    start = time.perf_counter()
    try:
        response = await call_next(request)
    except Exception:
        logger.exception("req method=%s path=%s failed", request.method, request.url.path)
        raise
    logger.info(
        "req method=%s path=%s status=%s dur=%.1fms",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - start) * 1000,
    )
    return response

app.include_router(ui_router)
app.include_router(api_router)
app.include_router(health_router)
