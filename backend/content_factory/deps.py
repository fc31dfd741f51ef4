from __future__ import annotations

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from .db import get_session
from .errors import NotFound
from .models import Project

SessionDep = Depends(get_session)


async def get_organization_id(x_organization_id: str | None = Header(default=None)) -> str | None:
    """Organization scope supplied by the auth layer in front of the service."""
    if x_organization_id is None:
        return None
    return x_organization_id.strip() or None


OrganizationDep = Depends(get_organization_id)


async def load_project(session: AsyncSession, project_id: int, organization_id: str | None) -> Project:
    """Project lookup scoped to the caller's organization; a mismatch reads as not found."""
    project = await session.get(Project, project_id)
    if not project or (organization_id and project.organization_id != organization_id):
        raise NotFound(f"Project {project_id} not found")
    return project
