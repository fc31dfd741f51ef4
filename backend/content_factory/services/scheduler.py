"""
Background ticker for publish jobs.

Two interval jobs run on an APScheduler AsyncIOScheduler:

    publish_jobs       drains the oldest pending publish job each tick
    publish_watchdog   puts publish jobs stuck in processing back to pending

With several app instances on one Postgres database, each tick first takes a
non-blocking advisory lock; instances that miss it skip the tick. Set
SCHEDULER_ENABLED=false to keep an instance from ticking at all.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from content_factory.db import build_engine, build_session_factory
from content_factory.settings import get_settings

logger = logging.getLogger("scheduler")

# Advisory lock keys (arbitrary int64, unique per job type)
LOCK_PUBLISH_JOBS = 910_001
LOCK_PUBLISH_WATCHDOG = 910_002


class SchedulerService:
    """Background ticker for publish jobs.

    Ticks never overlap within one process (APScheduler ``max_instances=1``);
    on Postgres, pg_try_advisory_lock keeps other instances out as well, so
    only one publish job is drained at a time system-wide.
    """

    _instance: "SchedulerService | None" = None

    def __init__(self):
        self.scheduler = AsyncIOScheduler()
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker | None = None
        self._running = False

    @classmethod
    def get_instance(cls) -> "SchedulerService":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def configure(self, database_url: str | None = None, engine: AsyncEngine | None = None):
        """Bind the ticker to an engine, building one from the URL when none is given."""
        if engine is None:
            engine = build_engine(database_url)
        self._engine = engine
        self._session_factory = build_session_factory(engine)

    async def _get_session(self) -> AsyncSession:
        if not self._session_factory:
            self.configure()
        return self._session_factory()

    @asynccontextmanager
    async def _leader_lock(self, lock_key: int) -> AsyncIterator[bool]:
        """Hold a Postgres session-level advisory lock (non-blocking) for the block.

        Yields True if this instance acquired the lock (is leader for this tick).
        The lock lives on its own connection because the tick body commits
        many times. Databases without advisory locks always yield True.
        """
        if not self._session_factory:
            self.configure()
        if self._engine.dialect.name != "postgresql":
            yield True
            return

        async with self._engine.connect() as conn:
            result = await conn.execute(text("SELECT pg_try_advisory_lock(:key)"), {"key": lock_key})
            acquired = bool(result.scalar())
            await conn.commit()
            try:
                yield acquired
            finally:
                if acquired:
                    await conn.execute(text("SELECT pg_advisory_unlock(:key)"), {"key": lock_key})
                    await conn.commit()

    def start(self):
        """Register the ticker jobs and start. Does nothing when disabled in settings."""
        settings = get_settings()
        if not settings.scheduler_enabled:
            logger.info("[scheduler] Disabled by SCHEDULER_ENABLED=false, skipping start")
            return

        if self._running:
            return

        self.scheduler.add_job(
            self._run_publish_jobs,
            IntervalTrigger(seconds=settings.publish_tick_seconds),
            id="publish_jobs",
            name="Advance pending publish jobs",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        if settings.watchdog_enabled:
            self.scheduler.add_job(
                self._run_publish_watchdog,
                IntervalTrigger(minutes=settings.watchdog_interval_minutes),
                id="publish_watchdog",
                name="Re-queue stuck publish jobs",
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )

        self.scheduler.start()
        self._running = True
        logger.info("[scheduler] Started (tick=%ds, single-leader mode via advisory locks)", settings.publish_tick_seconds)

    def stop(self):
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self.scheduler = AsyncIOScheduler()
        self._running = False
        logger.info("[scheduler] Stopped")

    def is_running(self) -> bool:
        return self._running

    async def _run_publish_jobs(self):
        """Advance at most one pending publish job.

        Protected by advisory lock: only one instance executes per tick.
        Errors are logged and swallowed so the ticker keeps running.
        """
        async with self._leader_lock(LOCK_PUBLISH_JOBS) as acquired:
            if not acquired:
                logger.debug("[scheduler] Advisory lock not acquired, another instance is leader, skipping tick")
                return None

            async with await self._get_session() as session:
                try:
                    from content_factory.services.publish_jobs import run_next_pending

                    job = await run_next_pending(session)
                    if job is None:
                        return None
                    logger.info(
                        "[scheduler] Job %d finished tick as %s (%d/%d)",
                        job.id, job.status, job.processed_count, job.total_contents,
                    )
                    return {"job_id": job.id, "status": job.status, "processed_count": job.processed_count}
                except Exception:
                    logger.exception("[scheduler] Tick failed")
                    await session.rollback()
                    return None

    async def _run_publish_watchdog(self):
        """Re-queue stuck processing jobs.

        Protected by advisory lock: only one instance executes per tick.
        """
        async with self._leader_lock(LOCK_PUBLISH_WATCHDOG) as acquired:
            if not acquired:
                logger.debug("[scheduler] Advisory lock not acquired, skipping tick")
                return None

            async with await self._get_session() as session:
                try:
                    from content_factory.services.watchdog_service import run_watchdog

                    result = await run_watchdog(session)
                    logger.info("[scheduler] Watchdog completed: %d requeued", result.get("requeued", 0))
                    return result
                except Exception:
                    logger.exception("[scheduler] Tick failed")
                    await session.rollback()
                    return None

    def get_jobs(self) -> list[dict]:
        """Describe registered ticker jobs for the status endpoint."""
        return [
            {
                "id": job.id,
                "name": job.name,
                "next_run": job.next_run_time.isoformat() if getattr(job, "next_run_time", None) else None,
                "trigger": str(job.trigger),
            }
            for job in self.scheduler.get_jobs()
        ]

    async def run_now(self, job_id: str) -> dict:
        """Run one tick of a registered job outside its schedule.

        Tick bodies log and swallow their own errors, so the result is the
        tick summary or None when there was nothing to do.
        """
        job = self.scheduler.get_job(job_id)
        if job is None:
            return {"error": f"Ticker job {job_id} is not registered"}
        logger.info("[scheduler] Manual run of %s", job_id)
        return {"ok": True, "result": await job.func()}


scheduler_service = SchedulerService.get_instance()
