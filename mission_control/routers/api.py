"""GET-only API over the read model."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from mission_control.read_model import ReadModel

api_router = APIRouter(prefix="/api", tags=["mission-control"])


def _get_read_model(request: Request) -> ReadModel:
    db = getattr(request.app.state, "db", None)
    if db is None:
        raise HTTPException(status_code=503, detail="Store not initialized")
    return ReadModel(db)


@api_router.get("/overview")
async def get_overview(request: Request):
    return await _get_read_model(request).overview()


@api_router.get("/sessions")
async def list_sessions(
    request: Request,
    limit: int = Query(100, ge=1, le=500),
    status: Optional[str] = Query(None, pattern="^(active|recent|unknown)$"),
):
    return await _get_read_model(request).sessions(limit=limit, status=status)


@api_router.get("/sessions/{session_id}/stream")
async def get_session_stream(request: Request, session_id: str):
    return await _get_read_model(request).session_stream(session_id)


@api_router.get("/cron")
async def get_cron(request: Request, runs_limit: int = Query(200, ge=1, le=1000)):
    return await _get_read_model(request).cron(runs_limit=runs_limit)


@api_router.get("/memory")
async def get_memory(request: Request):
    return await _get_read_model(request).memory()


@api_router.get("/health")
async def get_health(request: Request):
    return await _get_read_model(request).health()


@api_router.get("/events")
async def list_events(
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
    category: Optional[str] = None,
):
    return await _get_read_model(request).events(limit=limit, category=category)


@api_router.get("/collectors")
async def get_collectors(request: Request):
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        raise HTTPException(status_code=503, detail="Scheduler not initialized")
    return {"running": scheduler.is_running, "collectors": scheduler.status()}
