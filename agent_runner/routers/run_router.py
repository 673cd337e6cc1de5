from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from ..database import SessionLocal, get_db
from ..redis_client import get_async_redis_client, get_redis_client
from ..schemas.run import CancelRunResponse, CreateRunRequest, RunEventsResponse, RunResponse
from ..services.event_stream import stream_run_events
from ..services.run_service import RunService
from ..tasks import enqueue_run

router = APIRouter(tags=["Runs"])


def get_redis():
    return get_redis_client()


def get_enqueue():
    return enqueue_run


def get_session_factory():
    return SessionLocal


def get_async_redis_factory():
    return get_async_redis_client


def get_run_service(
    db: Session = Depends(get_db),
    redis_client=Depends(get_redis),
    enqueue=Depends(get_enqueue),
) -> RunService:
    return RunService(db, redis_client, enqueue)


@router.post("", response_model=RunResponse, status_code=201)
def create_run(req: CreateRunRequest, svc: RunService = Depends(get_run_service)):
    """Create a queued run and hand it to the run workers."""
    return svc.create_run(req)


@router.get("/{run_id}", response_model=RunResponse)
def get_run(run_id: str, svc: RunService = Depends(get_run_service)):
    return svc.get_run(run_id)


@router.get("/{run_id}/events/history", response_model=RunEventsResponse)
def list_run_events(
    run_id: str,
    after_seq: int = Query(0, ge=0),
    limit: int = Query(200, ge=1, le=1000),
    svc: RunService = Depends(get_run_service),
):
    """Persisted events after ``after_seq``, in sequence order."""
    return {"events": svc.list_events(run_id, after_seq=after_seq, limit=limit)}


@router.get("/{run_id}/events")
async def stream_events(
    run_id: str,
    after_seq: int = Query(0, ge=0),
    svc: RunService = Depends(get_run_service),
    session_factory=Depends(get_session_factory),
    async_redis_factory=Depends(get_async_redis_factory),
):
    """Server-sent events: replay of persisted events, then the live channel."""
    svc.get_run(run_id)
    return StreamingResponse(
        stream_run_events(run_id, session_factory, async_redis_factory(), after_seq=after_seq),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


@router.post("/{run_id}/cancel", response_model=CancelRunResponse)
def cancel_run(run_id: str, svc: RunService = Depends(get_run_service)):
    """Request cooperative cancellation. Takes effect at the worker's next checkpoint."""
    run = svc.cancel_run(run_id)
    return CancelRunResponse(run_id=run.id, status=run.status)
