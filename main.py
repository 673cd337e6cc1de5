"""Agent runner API: enqueue runs, cancel them, and stream their events."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from agent_runner import __version__
from agent_runner.config import settings
from agent_runner.database import SessionLocal
from agent_runner.redis_client import get_redis_client
from agent_runner.routers.run_router import router as run_router
from agent_runner.schemas.health import HealthResponse

# ── Logging ─────────────────────────────────────────────────────────────────────

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(levelname)-7s | %(name)s | %(message)s",
)
logger = logging.getLogger("agent_runner")


# ── Lifespan ────────────────────────────────────────────────────────────────────

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Agent runner API starting (redis=%s)", settings.REDIS_URL)
    yield
    logger.info("Agent runner API shutting down")


# ── App ─────────────────────────────────────────────────────────────────────────

app = FastAPI(
    title="Agent Runner",
    description=(
        "Execution engine API for AI agents: queue runs, cancel them cooperatively, "
        "and follow their event log live."
    ),
    version=__version__,
    lifespan=lifespan,
    root_path=settings.ROOT_PATH,
)


# ── Global exception handler ───────────────────────────────────────────────────

@app.exception_handler(Exception)
async def _unhandled_exception(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={
            "detail": str(exc),
            "error": type(exc).__name__,
            "path": str(request.url.path),
            "method": request.method,
        },
    )


# ── Health ──────────────────────────────────────────────────────────────────────

@app.get("/api/health", response_model=HealthResponse, tags=["Health"])
def health():
    """Report database and redis reachability."""
    detail: dict = {}
    db_ok = False
    db = SessionLocal()
    try:
        db.execute(text("SELECT 1"))
        db_ok = True
    except SQLAlchemyError as exc:
        detail["database"] = str(exc)
    finally:
        db.close()

    redis_ok = False
    try:
        redis_ok = bool(get_redis_client().ping())
    except redis.RedisError as exc:
        detail["redis"] = str(exc)

    return HealthResponse(
        status="ok" if db_ok and redis_ok else "degraded",
        database=db_ok,
        redis=redis_ok,
        version=__version__,
        detail=detail or None,
    )


# ── Routers ─────────────────────────────────────────────────────────────────────

app.include_router(run_router, prefix="/api/runs")


def main():
    uvicorn.run(
        "main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        reload=False,
        log_level="info",
    )


if __name__ == "__main__":
    main()
