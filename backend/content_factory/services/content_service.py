from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Iterable

from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from content_factory.errors import InvalidState, NotFound
from content_factory.models import (
    ACTIVE_JOB_STATUSES,
    GeneratedContent,
    JobStatus,
    Project,
    PublishJob,
    PublishStatus,
)

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("title", "content", "meta_description", "tags", "thumbnail_url", "slug", "publish_status")


async def list_contents(
    session: AsyncSession,
    project_id: int,
    page: int = 1,
    limit: int = 20,
    status: PublishStatus | None = None,
) -> dict[str, Any]:
    conditions = [GeneratedContent.project_id == project_id]
    if status:
        conditions.append(GeneratedContent.publish_status == PublishStatus(status).value)

    total = (
        await session.execute(select(func.count(GeneratedContent.id)).where(and_(*conditions)))
    ).scalar_one()
    res = await session.execute(
        select(GeneratedContent)
        .where(and_(*conditions))
        .order_by(GeneratedContent.created_at.desc(), GeneratedContent.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return {
        "contents": list(res.scalars().all()),
        "total": total,
        "page": page,
        "total_pages": math.ceil(total / limit) if limit else 0,
    }


async def get_content(session: AsyncSession, content_id: int) -> GeneratedContent:
    content = await session.get(GeneratedContent, content_id, populate_existing=True)
    if not content:
        raise NotFound(f"Content {content_id} not found")
    return content


async def update_content(session: AsyncSession, content_id: int, updates: dict[str, Any]) -> GeneratedContent:
    content = await get_content(session, content_id)
    for field in EDITABLE_FIELDS:
        if field in updates and updates[field] is not None:
            setattr(content, field, updates[field])

    # published_at is set if and only if the item is published.
    if "publish_status" in updates and updates["publish_status"] is not None:
        status = PublishStatus(updates["publish_status"])
        content.publish_status = status.value
        if status == PublishStatus.published:
            content.published_at = content.published_at or datetime.now(timezone.utc)
        else:
            content.published_at = None

    try:
        await session.commit()
    except IntegrityError as e:
        await session.rollback()
        raise InvalidState(f"Slug {updates.get('slug')!r} is already used in this project") from e
    await session.refresh(content)
    return content


async def delete_content(session: AsyncSession, content_id: int) -> None:
    content = await get_content(session, content_id)
    await session.delete(content)
    await session.commit()


async def unpublish(
    session: AsyncSession,
    content_ids: Iterable[int],
    organization_id: str | None = None,
) -> dict[str, int]:
    """Revert published items to pending.

    Ids that are not published, or that belong to another organization when
    one is given, are ignored.
    """
    ids = list(dict.fromkeys(content_ids))
    if not ids:
        return {"unpublished": 0}
    conditions = [
        GeneratedContent.id.in_(ids),
        GeneratedContent.publish_status == PublishStatus.published.value,
    ]
    if organization_id:
        conditions.append(
            GeneratedContent.project_id.in_(select(Project.id).where(Project.organization_id == organization_id))
        )
    res = await session.execute(
        update(GeneratedContent)
        .where(*conditions)
        .values(publish_status=PublishStatus.pending.value, published_at=None)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    logger.info("[content] Unpublished %d of %d requested items", res.rowcount, len(ids))
    return {"unpublished": res.rowcount}


async def overall_stats(session: AsyncSession, organization_id: str | None = None) -> dict[str, int]:
    project_filter = []
    if organization_id:
        project_ids = select(Project.id).where(Project.organization_id == organization_id)
        project_filter = [Project.organization_id == organization_id]
        content_scope = [GeneratedContent.project_id.in_(project_ids)]
        job_scope = [PublishJob.project_id.in_(project_ids)]
    else:
        content_scope = []
        job_scope = []

    async def count(column, *conditions) -> int:
        res = await session.execute(select(func.count(column)).where(*conditions))
        return res.scalar_one() or 0

    today = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)

    return {
        "total_projects": await count(Project.id, *project_filter),
        "total_content": await count(GeneratedContent.id, *content_scope),
        "published_content": await count(
            GeneratedContent.id, *content_scope, GeneratedContent.publish_status == PublishStatus.published.value
        ),
        "pending_content": await count(
            GeneratedContent.id, *content_scope, GeneratedContent.publish_status == PublishStatus.pending.value
        ),
        "failed_content": await count(
            GeneratedContent.id, *content_scope, GeneratedContent.publish_status == PublishStatus.failed.value
        ),
        "active_jobs": await count(
            PublishJob.id, *job_scope, PublishJob.status.in_([s.value for s in ACTIVE_JOB_STATUSES])
        ),
        "completed_jobs_today": await count(
            PublishJob.id, *job_scope,
            PublishJob.status == JobStatus.completed.value,
            PublishJob.completed_at >= today,
        ),
    }
