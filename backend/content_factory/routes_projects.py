from __future__ import annotations

from typing import List

from fastapi import APIRouter, File, Query, UploadFile, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .deps import OrganizationDep, SessionDep, load_project
from .errors import InvalidUpload
from .models import Project
from .schemas import DatasetRead, DatasetUploadResponse, ProjectCreate, ProjectRead, ProjectUpdate
from .services import dataset_store
from .settings import get_settings

router = APIRouter(prefix="/api", tags=["projects"])


@router.post("/projects", response_model=ProjectRead, status_code=status.HTTP_201_CREATED)
async def create_project(
    data: ProjectCreate,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    project = Project(organization_id=organization_id, **data.model_dump())
    session.add(project)
    await session.commit()
    await session.refresh(project)
    return project


@router.get("/projects", response_model=List[ProjectRead])
async def list_projects(
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    q = select(Project).order_by(Project.created_at.desc(), Project.id.desc())
    if organization_id:
        q = q.where(Project.organization_id == organization_id)
    res = await session.execute(q)
    return res.scalars().all()


@router.get("/projects/{project_id}", response_model=ProjectRead)
async def get_project(
    project_id: int,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    return await load_project(session, project_id, organization_id)


@router.patch("/projects/{project_id}", response_model=ProjectRead)
async def update_project(
    project_id: int,
    data: ProjectUpdate,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    project = await load_project(session, project_id, organization_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        if field == "name" and not (value or "").strip():
            continue
        setattr(project, field, value)
    await session.commit()
    await session.refresh(project)
    return project


@router.delete("/projects/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: int,
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    project = await load_project(session, project_id, organization_id)
    await session.delete(project)
    await session.commit()


# ── Dataset ──────────────────────────────────────────────────

@router.post("/projects/{project_id}/dataset", response_model=DatasetUploadResponse)
async def upload_dataset(
    project_id: int,
    file: UploadFile = File(...),
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    """Replace the project's dataset with an uploaded CSV or XLSX file."""
    await load_project(session, project_id, organization_id)

    max_bytes = get_settings().max_upload_bytes
    payload = await file.read(max_bytes + 1)
    if len(payload) > max_bytes:
        raise InvalidUpload(f"File exceeds the upload limit of {max_bytes} bytes")
    if not payload:
        raise InvalidUpload("Uploaded file is empty")

    dataset = dataset_store.parse_upload(file.filename, payload)
    return await dataset_store.replace_dataset(session, project_id, dataset)


@router.get("/projects/{project_id}/dataset", response_model=DatasetRead)
async def get_dataset(
    project_id: int,
    offset: int = Query(default=0, ge=0),
    limit: int = Query(default=100, ge=1, le=1000),
    session: AsyncSession = SessionDep,
    organization_id: str | None = OrganizationDep,
):
    await load_project(session, project_id, organization_id)
    return await dataset_store.get_dataset(session, project_id, offset=offset, limit=limit)
