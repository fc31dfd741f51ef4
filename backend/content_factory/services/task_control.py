"""
Task control: cooperative pause/cancel for publish job drains.

Operators never touch a running drain directly; they only change the
job's ``status`` column. The drain re-reads that column between items
(and between slices of the inter-item delay) and stops when it is no
longer ``processing``.

Exceptions:
- JobPaused: status moved to paused (or was re-queued to pending)
- JobCancelled: status moved to cancelled, or the job row disappeared
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from content_factory.models import JobStatus, PublishJob

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class JobPaused(Exception):
    """Raised when a job has been paused or re-queued while draining."""
    pass


class JobCancelled(Exception):
    """Raised when a job has been cancelled or deleted while draining."""
    pass


async def check_control_flags(session: AsyncSession, job_id: int) -> None:
    """Read the job status fresh from the database and act on it.

    Must be called before each item is published.

    Raises:
        JobCancelled: if the job is cancelled or gone
        JobPaused: if the job is in any other non-processing state
    """
    res = await session.execute(select(PublishJob.status).where(PublishJob.id == job_id))
    current = res.scalar_one_or_none()

    if current is None:
        logger.info("[task_control] Job %d disappeared during drain", job_id)
        raise JobCancelled(f"Job {job_id} no longer exists")

    if current == JobStatus.cancelled:
        logger.info("[task_control] Job %d cancelled by user", job_id)
        raise JobCancelled(f"Job {job_id} cancelled by user")

    if current != JobStatus.processing:
        logger.info("[task_control] Job %d interrupted (status=%s)", job_id, current)
        raise JobPaused(f"Job {job_id} is {current}")


async def wait_between_items(
    session: AsyncSession,
    job_id: int,
    delay_seconds: float,
    poll_seconds: float,
    sleep: SleepFn = asyncio.sleep,
) -> None:
    """Sleep ``delay_seconds`` in slices, checking control flags after each slice.

    A pause or cancel therefore takes effect within ``poll_seconds`` rather
    than after the whole delay.
    """
    remaining = float(delay_seconds)
    while remaining > 0:
        step = min(poll_seconds, remaining) if poll_seconds > 0 else remaining
        await sleep(step)
        remaining -= step
        await check_control_flags(session, job_id)
        # Do not keep a read transaction open across the sleep.
        await session.commit()
