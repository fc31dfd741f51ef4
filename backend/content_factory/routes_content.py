"""
Generation, generated content and export endpoints.
"""
from __future__ import annotations

import json
import logging
from dataclasses import asdict
from typing import Literal

from fastapi import APIRouter, Query, status
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession

from .deps import OrganizationDep, SessionDep, load_project
from .errors import NotFound
from .models import PublishStatus
from .schemas import (
    CombinationPreview,
    ContentListResponse,
    ContentRead,
    ContentUpdate,
    ExpansionResultRead,
    GenerateQueuedResponse,
    GenerationJobStatus,
    OverallStats,
    UnpublishRequest,
    UnpublishResponse,
)
from .services import combination_expander, content_service, dataset_store, export_service
from .settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["content"])


async def _load_content(session: AsyncSession, content_id: int, organization_id: str | None):
    content = await content_service.get_content(session, content_id)
    await load_project(session, content.project_id, organization_id)
    return content


# ── Generation ───────────────────────────────────────────────

@router.post("/projects/{project_id}/generate")
async def generate(
    project_id: int,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    """Regenerate the project's content: queued on Celery when enabled, inline otherwise."""
    await load_project(session, project_id, organization_id)

    if get_settings().celery_enabled:
        total_rows = await dataset_store.count_rows(session, project_id)
        if total_rows == 0:
            raise NotFound(f"No CSV data found for project {project_id}")

        from .worker.tasks import generate_project

        async_result = generate_project.delay(project_id)
        logger.info("[expander] Project %d: generation queued as %s", project_id, async_result.id)
        return GenerateQueuedResponse(job_id=async_result.id, total_rows=total_rows)

    result = await combination_expander.expand(session, project_id)
    return ExpansionResultRead.model_validate(asdict(result))


@router.post("/projects/{project_id}/generate-sync", response_model=ExpansionResultRead)
async def generate_sync(
    project_id: int,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    await load_project(session, project_id, organization_id)
    result = await combination_expander.expand(session, project_id)
    return asdict(result)


@router.get("/generation-jobs/{job_id}", response_model=GenerationJobStatus)
async def get_generation_job(job_id: str):
    """State of a queued generation (Celery task id)."""
    if not get_settings().celery_enabled:
        raise NotFound("Queued generation is disabled")

    from celery.result import AsyncResult

    from .worker.celery_app import celery_app

    res = AsyncResult(job_id, app=celery_app)
    payload = GenerationJobStatus(job_id=job_id, state=res.state)
    if res.successful():
        result = res.result
        if isinstance(result, dict) and result.get("error"):
            payload.error = result["error"]
        payload.result = result if isinstance(result, dict) else None
    elif res.failed():
        payload.error = str(res.result)
    return payload


@router.post("/projects/{project_id}/preview-combinations", response_model=CombinationPreview)
async def preview_combinations(
    project_id: int,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    await load_project(session, project_id, organization_id)
    return await combination_expander.preview(session, project_id)


# ── Content ──────────────────────────────────────────────────

@router.get("/projects/{project_id}/contents", response_model=ContentListResponse)
async def list_contents(
    project_id: int,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=200),
    publish_status: PublishStatus | None = Query(default=None, alias="status"),
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    await load_project(session, project_id, organization_id)
    return await content_service.list_contents(session, project_id, page=page, limit=limit, status=publish_status)


@router.get("/contents/{content_id}", response_model=ContentRead)
async def get_content(
    content_id: int,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    return await _load_content(session, content_id, organization_id)


@router.patch("/contents/{content_id}", response_model=ContentRead)
async def update_content(
    content_id: int,
    data: ContentUpdate,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    await _load_content(session, content_id, organization_id)
    return await content_service.update_content(session, content_id, data.model_dump(exclude_unset=True))


@router.delete("/contents/{content_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_content(
    content_id: int,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    await _load_content(session, content_id, organization_id)
    await content_service.delete_content(session, content_id)


@router.post("/contents/unpublish", response_model=UnpublishResponse)
async def unpublish_contents(
    data: UnpublishRequest,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    """Bulk rollback: published -> pending, clearing published_at. Scoped to the caller's organization."""
    return await content_service.unpublish(session, data.content_ids, organization_id)


@router.get("/stats/overall", response_model=OverallStats)
async def overall_stats(
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    return await content_service.overall_stats(session, organization_id)


# ── Export ───────────────────────────────────────────────────

@router.get("/projects/{project_id}/export")
async def export_contents(
    project_id: int,
    format: Literal["csv", "json", "html-zip"] = Query(default="csv"),
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    await load_project(session, project_id, organization_id)
    contents = await export_service.load_contents(session, project_id)
    stem = f"project-{project_id}-content"

    if format == "json":
        return Response(
            content=json.dumps(export_service.to_json(contents), ensure_ascii=False, indent=2),
            media_type="application/json",
            headers={"Content-Disposition": f'attachment; filename="{stem}.json"'},
        )
    if format == "html-zip":
        return Response(
            content=export_service.to_html_zip(contents),
            media_type="application/zip",
            headers={"Content-Disposition": f'attachment; filename="{stem}.zip"'},
        )
    return Response(
        content=export_service.to_csv(contents),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{stem}.csv"'},
    )
