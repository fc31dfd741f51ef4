"""Unit tests for the publish ticker."""

from __future__ import annotations

import pytest

from content_factory.models import JobStatus
from content_factory.services import publish_jobs
from content_factory.services.combination_expander import expand
from content_factory.services.scheduler import SchedulerService


@pytest.fixture
def scheduler(engine):
    service = SchedulerService()
    service.configure(engine=engine)
    yield service
    service.stop()


async def test_tick_drains_oldest_pending_job(scheduler, session, make_project, load_rows) -> None:
    project = await make_project(title_template="{{size}}")
    await load_rows(project.id, ["size"], [["S"], ["M"]])
    await expand(session, project.id)
    job = await publish_jobs.create_job(session, project.id, delay_seconds=0)

    result = await scheduler._run_publish_jobs()

    assert result == {"job_id": job.id, "status": "completed", "processed_count": 2}
    assert (await publish_jobs.get_job(session, job.id)).status == JobStatus.completed


async def test_tick_without_pending_jobs_is_a_no_op(scheduler) -> None:
    assert await scheduler._run_publish_jobs() is None


async def test_tick_swallows_unexpected_errors(scheduler, monkeypatch) -> None:
    async def _boom(_session, **_kwargs):
        raise RuntimeError("database went away")

    monkeypatch.setattr(publish_jobs, "run_next_pending", _boom)

    assert await scheduler._run_publish_jobs() is None


async def test_watchdog_tick_returns_report(scheduler) -> None:
    result = await scheduler._run_publish_watchdog()

    assert result["stuck_found"] == 0


async def test_start_registers_jobs_and_stop_clears_state(scheduler, settings) -> None:
    settings.scheduler_enabled = True
    settings.watchdog_enabled = True

    scheduler.start()

    assert scheduler.is_running()
    assert {j["id"] for j in scheduler.get_jobs()} == {"publish_jobs", "publish_watchdog"}
    scheduler.stop()
    assert not scheduler.is_running()
    assert scheduler.get_jobs() == []


async def test_start_respects_disabled_flag(scheduler, settings) -> None:
    settings.scheduler_enabled = False

    scheduler.start()

    assert not scheduler.is_running()


async def test_run_now_unknown_job(scheduler) -> None:
    assert "error" in await scheduler.run_now("missing")
