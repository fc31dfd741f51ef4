"""Ticker control: inspect, start, stop and trigger the publish drain and watchdog."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel

from .services.scheduler import scheduler_service
from .settings import get_settings

router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])


class TickerJob(BaseModel):
    id: str
    name: str
    next_run: str | None = None
    trigger: str


class TickerStatus(BaseModel):
    enabled: bool
    running: bool
    tick_seconds: int
    watchdog_enabled: bool
    jobs: list[TickerJob]


def _status() -> TickerStatus:
    settings = get_settings()
    return TickerStatus(
        enabled=settings.scheduler_enabled,
        running=scheduler_service.is_running(),
        tick_seconds=settings.publish_tick_seconds,
        watchdog_enabled=settings.watchdog_enabled,
        jobs=[TickerJob(**job) for job in scheduler_service.get_jobs()],
    )


@router.get("/status", response_model=TickerStatus)
async def get_ticker_status():
    return _status()


@router.post("/start", response_model=TickerStatus)
async def start_ticker():
    """Start the ticker. A no-op when it already runs or is disabled in settings."""
    if not scheduler_service.is_running():
        scheduler_service.start()
    return _status()


@router.post("/stop", response_model=TickerStatus)
async def stop_ticker():
    if scheduler_service.is_running():
        scheduler_service.stop()
    return _status()


@router.post("/jobs/{job_id}/run", response_model=dict)
async def run_ticker_job(job_id: str):
    """Run ``publish_jobs`` or ``publish_watchdog`` once, outside the schedule."""
    result = await scheduler_service.run_now(job_id)
    if "error" in result:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result["error"])
    return result
