"""
Publish job state machine.

A publish job lives entirely in its ``publish_jobs`` row: any process can
pick up where another left off. Transitions:

    pending    -> processing | paused | cancelled
    processing -> completed | failed | paused | cancelled | pending (recovery)
    paused     -> pending | cancelled

completed, failed and cancelled are terminal.

Only ``advance`` moves a job into ``processing``, and it does so with a
compare-and-swap on ``status = 'pending'``, so at most one driver owns a
job at a time. Operator actions (pause/resume/cancel) only touch
``status``; the owning driver notices between items.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from content_factory.errors import InvalidState, NotFound
from content_factory.models import (
    ACTIVE_JOB_STATUSES,
    TERMINAL_JOB_STATUSES,
    GeneratedContent,
    JobStatus,
    Project,
    PublishJob,
    PublishStatus,
)
from content_factory.services.task_control import (
    JobCancelled,
    JobPaused,
    SleepFn,
    check_control_flags,
    wait_between_items,
)
from content_factory.settings import get_settings

logger = logging.getLogger(__name__)

TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.pending: frozenset({JobStatus.processing, JobStatus.paused, JobStatus.cancelled}),
    JobStatus.processing: frozenset({
        JobStatus.completed,
        JobStatus.failed,
        JobStatus.paused,
        JobStatus.cancelled,
        JobStatus.pending,
    }),
    JobStatus.paused: frozenset({JobStatus.pending, JobStatus.cancelled}),
    JobStatus.completed: frozenset(),
    JobStatus.failed: frozenset(),
    JobStatus.cancelled: frozenset(),
}

# action -> (statuses it may be applied from, resulting status)
OPERATOR_ACTIONS: dict[str, tuple[frozenset[JobStatus], JobStatus]] = {
    "pause": (frozenset({JobStatus.pending, JobStatus.processing}), JobStatus.paused),
    "resume": (frozenset({JobStatus.paused}), JobStatus.pending),
    "cancel": (frozenset({JobStatus.pending, JobStatus.processing, JobStatus.paused}), JobStatus.cancelled),
}

ERROR_MESSAGE_LIMIT = 1000


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def can_transition(current: str, target: str) -> bool:
    try:
        return JobStatus(target) in TRANSITIONS[JobStatus(current)]
    except ValueError:
        return False


def validate_action(action: str, current: str) -> JobStatus:
    """Return the status ``action`` leads to from ``current``, or raise InvalidState."""
    allowed_from, target = OPERATOR_ACTIONS[action]
    try:
        current_status = JobStatus(current)
    except ValueError:
        raise InvalidState(f"Unknown job status {current!r}") from None
    if current_status not in allowed_from or not can_transition(current_status, target):
        raise InvalidState(f"Cannot {action} a job that is {current}")
    return target


# ── Lookups ──────────────────────────────────────────────────

async def get_job(session: AsyncSession, job_id: int) -> PublishJob:
    job = await session.get(PublishJob, job_id, populate_existing=True)
    if not job:
        raise NotFound(f"Publish job {job_id} not found")
    return job


async def get_active_job(session: AsyncSession, project_id: int) -> PublishJob | None:
    res = await session.execute(
        select(PublishJob)
        .where(
            PublishJob.project_id == project_id,
            PublishJob.status.in_([s.value for s in ACTIVE_JOB_STATUSES]),
        )
        .order_by(PublishJob.created_at.desc(), PublishJob.id.desc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return res.scalars().first()


async def list_jobs(session: AsyncSession, project_id: int, limit: int = 50) -> list[PublishJob]:
    res = await session.execute(
        select(PublishJob)
        .where(PublishJob.project_id == project_id)
        .order_by(PublishJob.created_at.desc(), PublishJob.id.desc())
        .limit(limit)
    )
    return list(res.scalars().all())


async def next_pending_job_id(session: AsyncSession) -> int | None:
    """Oldest pending job across all projects (FIFO)."""
    res = await session.execute(
        select(PublishJob.id)
        .where(PublishJob.status == JobStatus.pending.value)
        .order_by(PublishJob.created_at.asc(), PublishJob.id.asc())
        .limit(1)
    )
    return res.scalar_one_or_none()


# ── Operator actions ─────────────────────────────────────────

async def create_job(session: AsyncSession, project_id: int, delay_seconds: int | None = None) -> PublishJob:
    project = await session.get(Project, project_id)
    if not project:
        raise NotFound(f"Project {project_id} not found")

    active = await get_active_job(session, project_id)
    if active:
        raise InvalidState(f"Project {project_id} already has an active publish job {active.id} ({active.status})")

    if delay_seconds is None:
        delay_seconds = project.publish_delay_seconds
    if delay_seconds is None:
        delay_seconds = get_settings().default_publish_delay_seconds

    job = PublishJob(
        project_id=project_id,
        status=JobStatus.pending.value,
        total_contents=0,
        processed_count=0,
        delay_seconds=max(0, int(delay_seconds)),
    )
    session.add(job)
    try:
        await session.commit()
    except IntegrityError as e:
        # Lost the race against another writer creating a job for the same project.
        await session.rollback()
        raise InvalidState(f"Project {project_id} already has an active publish job") from e
    await session.refresh(job)

    logger.info("[publish] Job %d created for project %d (delay=%ds)", job.id, project_id, job.delay_seconds)
    return job


async def _apply_action(session: AsyncSession, job_id: int, action: str) -> PublishJob:
    job = await get_job(session, job_id)
    target = validate_action(action, job.status)
    allowed_from, _ = OPERATOR_ACTIONS[action]
    now = _utcnow()

    values: dict = {"status": target.value, "updated_at": now}
    if target in TERMINAL_JOB_STATUSES:
        values["completed_at"] = now

    res = await session.execute(
        update(PublishJob)
        .where(PublishJob.id == job_id, PublishJob.status.in_([s.value for s in allowed_from]))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    if res.rowcount != 1:
        # Status changed between the read and the write.
        job = await get_job(session, job_id)
        raise InvalidState(f"Cannot {action} a job that is {job.status}")

    job = await get_job(session, job_id)
    logger.info("[publish] Job %d: %s -> %s", job_id, action, job.status)
    return job


async def pause_job(session: AsyncSession, job_id: int) -> PublishJob:
    return await _apply_action(session, job_id, "pause")


async def resume_job(session: AsyncSession, job_id: int) -> PublishJob:
    return await _apply_action(session, job_id, "resume")


async def cancel_job(session: AsyncSession, job_id: int) -> PublishJob:
    return await _apply_action(session, job_id, "cancel")


async def delete_job(session: AsyncSession, job_id: int) -> None:
    job = await get_job(session, job_id)
    if job.status not in TERMINAL_JOB_STATUSES:
        raise InvalidState(f"Cannot delete a job that is {job.status}; cancel it first")
    await session.delete(job)
    await session.commit()
    logger.info("[publish] Job %d deleted", job_id)


async def requeue_job(session: AsyncSession, job_id: int, reason: str) -> bool:
    """Recovery transition processing -> pending. Returns False if the job was not processing."""
    res = await session.execute(
        update(PublishJob)
        .where(PublishJob.id == job_id, PublishJob.status == JobStatus.processing.value)
        .values(status=JobStatus.pending.value, error_message=reason[:ERROR_MESSAGE_LIMIT], updated_at=_utcnow())
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return res.rowcount == 1


# ── Drain ────────────────────────────────────────────────────

async def _pending_content_ids(session: AsyncSession, project_id: int) -> list[int]:
    res = await session.execute(
        select(GeneratedContent.id)
        .where(
            GeneratedContent.project_id == project_id,
            GeneratedContent.publish_status == PublishStatus.pending.value,
        )
        .order_by(GeneratedContent.created_at.asc(), GeneratedContent.id.asc())
    )
    return list(res.scalars().all())


async def _claim(session: AsyncSession, job_id: int) -> bool:
    now = _utcnow()
    res = await session.execute(
        update(PublishJob)
        .where(PublishJob.id == job_id, PublishJob.status == JobStatus.pending.value)
        .values(
            status=JobStatus.processing.value,
            started_at=func.coalesce(PublishJob.started_at, now),
            error_message=None,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return res.rowcount == 1


async def _finish(session: AsyncSession, job_id: int, status: JobStatus, error_message: str | None = None) -> bool:
    now = _utcnow()
    values: dict = {"status": status.value, "completed_at": now, "updated_at": now}
    if error_message is not None:
        values["error_message"] = error_message[:ERROR_MESSAGE_LIMIT]
    res = await session.execute(
        update(PublishJob)
        .where(PublishJob.id == job_id, PublishJob.status == JobStatus.processing.value)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return res.rowcount == 1


async def _publish_item(session: AsyncSession, job_id: int, content_id: int, processed: int) -> bool:
    """Publish one item and record progress in a single transaction.

    Returns False when the item had already left ``pending``; it still
    counts as processed.
    """
    now = _utcnow()
    res = await session.execute(
        update(GeneratedContent)
        .where(
            GeneratedContent.id == content_id,
            GeneratedContent.publish_status == PublishStatus.pending.value,
        )
        .values(publish_status=PublishStatus.published.value, published_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.execute(
        update(PublishJob)
        .where(PublishJob.id == job_id)
        .values(processed_count=processed, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return res.rowcount == 1


async def advance(session: AsyncSession, job_id: int, *, sleep: SleepFn = asyncio.sleep) -> PublishJob:
    """Drive a pending job until it completes, fails, or is paused/cancelled.

    Raises NotFound for an unknown job and InvalidState when the job is
    not pending. Any other error ends the job in ``failed`` and is not
    re-raised; items published before the error stay published.
    """
    settings = get_settings()

    if not await _claim(session, job_id):
        job = await get_job(session, job_id)
        raise InvalidState(f"Publish job {job_id} is {job.status}, expected pending")

    job = await get_job(session, job_id)
    project_id = job.project_id
    delay = job.delay_seconds
    processed = job.processed_count
    logger.info("[publish] Job %d for project %d: processing (delay=%ds)", job_id, project_id, delay)

    try:
        content_ids = await _pending_content_ids(session, project_id)
        total = processed + len(content_ids)
        await session.execute(
            update(PublishJob)
            .where(PublishJob.id == job_id)
            .values(total_contents=total, updated_at=_utcnow())
            .execution_options(synchronize_session=False)
        )
        await session.commit()

        for position, content_id in enumerate(content_ids):
            if position > 0 and delay > 0:
                await wait_between_items(session, job_id, delay, settings.publish_control_poll_seconds, sleep)
            await check_control_flags(session, job_id)

            processed += 1
            if await _publish_item(session, job_id, content_id, processed):
                logger.debug("[publish] Job %d: published content %d (%d/%d)", job_id, content_id, processed, total)
            else:
                logger.info("[publish] Job %d: content %d no longer pending, skipped", job_id, content_id)

        if await _finish(session, job_id, JobStatus.completed):
            logger.info("[publish] Job %d completed: %d/%d items", job_id, processed, total)
        else:
            logger.info("[publish] Job %d left processing before completion", job_id)

    except JobPaused as e:
        await session.rollback()
        logger.info("[publish] Job %d stopped at %d items: %s", job_id, processed, e)
    except JobCancelled as e:
        await session.rollback()
        logger.info("[publish] Job %d stopped at %d items: %s", job_id, processed, e)
    except Exception as e:
        logger.exception("[publish] Job %d failed after %d items", job_id, processed)
        await session.rollback()
        await _finish(session, job_id, JobStatus.failed, error_message=str(e) or e.__class__.__name__)

    try:
        return await get_job(session, job_id)
    except NotFound:
        # Deleted mid-drain; report the last state we knew about.
        job.status = JobStatus.cancelled.value
        return job


async def publish_now(session: AsyncSession, project_id: int, delay_seconds: int | None = None) -> PublishJob:
    """Create a job and drain it inline, blocking until it finishes."""
    job = await create_job(session, project_id, delay_seconds)
    return await advance(session, job.id)


async def run_next_pending(session: AsyncSession, *, sleep: SleepFn = asyncio.sleep) -> PublishJob | None:
    """Advance the oldest pending job, if any. One job per call."""
    job_id = await next_pending_job_id(session)
    if job_id is None:
        return None
    try:
        return await advance(session, job_id, sleep=sleep)
    except InvalidState:
        # Another driver claimed it between the lookup and the claim.
        logger.info("[publish] Job %d was claimed elsewhere, skipping", job_id)
        return None
