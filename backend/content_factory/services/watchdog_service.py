"""
Watchdog service: finds publish jobs stuck in processing and re-queues them.

Stuck criteria:
- status == "processing" and updated_at < now - (STUCK_PROCESSING_MINUTES + delay_seconds)

A drain updates ``updated_at`` after every item, so a live drain is never
older than its own inter-item delay. A stuck job goes back to ``pending``
with its ``processed_count`` intact and the next scheduler tick resumes it.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from content_factory.models import ACTIVE_JOB_STATUSES, JobStatus, PublishJob
from content_factory.services.publish_jobs import requeue_job
from content_factory.settings import get_settings

logger = logging.getLogger(__name__)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes.
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


async def run_watchdog(
    session: AsyncSession, *, dry_run: bool = False,
) -> dict[str, Any]:
    """Find stuck processing jobs and re-queue them.

    Returns a report dict.
    """
    settings = get_settings()
    now = datetime.now(timezone.utc)

    res = await session.execute(select(PublishJob).where(PublishJob.status == JobStatus.processing.value))
    processing = list(res.scalars().all())

    report_items: list[dict] = []
    requeued = 0

    for job in processing:
        threshold = timedelta(minutes=settings.stuck_processing_minutes, seconds=job.delay_seconds)
        age = now - _aware(job.updated_at)
        if age < threshold:
            continue

        age_minutes = age.total_seconds() / 60
        reason = f"watchdog: stuck processing > {threshold.total_seconds() / 60:.0f}m (age={age_minutes:.0f}m), requeued"
        item = {
            "job_id": job.id,
            "project_id": job.project_id,
            "processed_count": job.processed_count,
            "total_contents": job.total_contents,
            "age_minutes": round(age_minutes),
            "action": "requeue",
        }

        if not dry_run:
            if await requeue_job(session, job.id, reason):
                requeued += 1
                logger.warning("[watchdog] Job %d %s", job.id, reason)
            else:
                item["action"] = "skipped_status_changed"

        report_items.append(item)

    return {
        "dry_run": dry_run,
        "stuck_found": len(report_items),
        "requeued": requeued,
        "items": report_items,
    }


async def get_health(session: AsyncSession) -> dict[str, Any]:
    """Job counts by status plus scheduler state."""
    from content_factory.services.scheduler import scheduler_service

    res = await session.execute(
        select(PublishJob.status, func.count(PublishJob.id)).group_by(PublishJob.status)
    )
    counts = {status: count for status, count in res.all()}
    return {
        "jobs_by_status": counts,
        "active_jobs": sum(counts.get(s.value, 0) for s in ACTIVE_JOB_STATUSES),
        "scheduler_running": scheduler_service.is_running(),
    }
