"""
Operations endpoints: publish watchdog and health.
"""
from __future__ import annotations

from fastapi import APIRouter, Query
from sqlalchemy.ext.asyncio import AsyncSession

from .deps import SessionDep
from .services.watchdog_service import get_health, run_watchdog

router = APIRouter(prefix="/api/ops", tags=["ops"])


@router.post("/watchdog")
async def run_watchdog_endpoint(
    dry_run: bool = Query(default=True),
    session: AsyncSession = SessionDep,
):
    """Find publish jobs stuck in processing and re-queue them (report only when dry_run)."""
    return await run_watchdog(session, dry_run=dry_run)


@router.get("/health")
async def health_endpoint(session: AsyncSession = SessionDep):
    """Publish job counts by status and scheduler state."""
    return await get_health(session)
