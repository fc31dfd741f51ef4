"""
Celery tasks.

content.generate_project runs the combination expander in a synchronous
worker through asyncio.run(), with an engine of its own per invocation.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict

from content_factory.errors import ContentFactoryError
from content_factory.worker.celery_app import celery_app

logger = logging.getLogger(__name__)


def _session_factory():
    from content_factory.db import build_engine, build_session_factory

    engine = build_engine()
    return engine, build_session_factory(engine)


async def _generate_project_async(project_id: int) -> dict:
    from content_factory.services.combination_expander import expand

    engine, session_factory = _session_factory()
    try:
        async with session_factory() as session:
            try:
                result = await expand(session, project_id)
            except ContentFactoryError as e:
                # Operator errors are final; retrying would fail the same way.
                logger.warning("[worker] Generation for project %d rejected: %s", project_id, e)
                return {"project_id": project_id, "error": str(e), "error_type": type(e).__name__}
            return asdict(result)
    finally:
        await engine.dispose()


@celery_app.task(
    bind=True,
    name="content.generate_project",
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_kwargs={"max_retries": 3},
    queue="content",
)
def generate_project(self, project_id: int) -> dict:
    """Celery task: regenerate all content for a project."""
    logger.info(
        "[worker] Generating project %d (celery_id=%s, attempt=%d)",
        project_id, self.request.id, self.request.retries + 1,
    )
    try:
        return asyncio.run(_generate_project_async(project_id))
    except Exception as e:
        logger.error("[worker] Generation for project %d error (attempt %d): %s", project_id, self.request.retries + 1, e)
        raise


