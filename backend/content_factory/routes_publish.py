"""
Publish job endpoints.

Starting a publish only creates a pending job; the scheduler tick drains
it. ``publish-sync`` drains inline through the same state machine.
"""
from __future__ import annotations

from typing import List

from fastapi import APIRouter, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from .deps import OrganizationDep, SessionDep, load_project
from .models import PublishJob
from .schemas import PublishJobRead, PublishRequest
from .services import publish_jobs

router = APIRouter(prefix="/api", tags=["publish"])


async def _load_job(session: AsyncSession, job_id: int, organization_id: str | None) -> PublishJob:
    job = await publish_jobs.get_job(session, job_id)
    await load_project(session, job.project_id, organization_id)
    return job


@router.post("/projects/{project_id}/publish", response_model=PublishJobRead, status_code=status.HTTP_201_CREATED)
async def start_publish(
    project_id: int,
    data: PublishRequest | None = None,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    await load_project(session, project_id, organization_id)
    return await publish_jobs.create_job(session, project_id, data.delay_seconds if data else None)


@router.post("/projects/{project_id}/publish-sync", response_model=PublishJobRead)
async def publish_sync(
    project_id: int,
    data: PublishRequest | None = None,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    """Create a job and drain it before responding."""
    await load_project(session, project_id, organization_id)
    return await publish_jobs.publish_now(session, project_id, data.delay_seconds if data else None)


@router.get("/projects/{project_id}/publish-jobs", response_model=List[PublishJobRead])
async def list_publish_jobs(
    project_id: int,
    limit: int = Query(default=50, ge=1, le=500),
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    await load_project(session, project_id, organization_id)
    return await publish_jobs.list_jobs(session, project_id, limit=limit)


@router.get("/projects/{project_id}/active-publish-job", response_model=PublishJobRead | None)
async def get_active_publish_job(
    project_id: int,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    await load_project(session, project_id, organization_id)
    return await publish_jobs.get_active_job(session, project_id)


@router.get("/publish-jobs/{job_id}", response_model=PublishJobRead)
async def get_publish_job(
    job_id: int,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    return await _load_job(session, job_id, organization_id)


@router.post("/publish-jobs/{job_id}/pause", response_model=PublishJobRead)
async def pause_publish_job(
    job_id: int,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    await _load_job(session, job_id, organization_id)
    return await publish_jobs.pause_job(session, job_id)


@router.post("/publish-jobs/{job_id}/resume", response_model=PublishJobRead)
async def resume_publish_job(
    job_id: int,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    await _load_job(session, job_id, organization_id)
    return await publish_jobs.resume_job(session, job_id)


@router.post("/publish-jobs/{job_id}/cancel", response_model=PublishJobRead)
async def cancel_publish_job(
    job_id: int,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    await _load_job(session, job_id, organization_id)
    return await publish_jobs.cancel_job(session, job_id)


@router.delete("/publish-jobs/{job_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_publish_job(
    job_id: int,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    await _load_job(session, job_id, organization_id)
    await publish_jobs.delete_job(session, job_id)
