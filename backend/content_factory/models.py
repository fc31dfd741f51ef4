from __future__ import annotations

from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column, relationship as sa_relationship

from .db import Base


def relationship(*args, **kwargs):
    """Wrap SQLAlchemy relationship to forbid lazy loading by default."""
    kwargs.setdefault("lazy", "raise")
    return sa_relationship(*args, **kwargs)


class PublishStatus(str, Enum):
    pending = "pending"
    published = "published"
    failed = "failed"


class JobStatus(str, Enum):
    pending = "pending"
    processing = "processing"
    paused = "paused"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


ACTIVE_JOB_STATUSES = (JobStatus.pending, JobStatus.processing, JobStatus.paused)
TERMINAL_JOB_STATUSES = (JobStatus.completed, JobStatus.failed, JobStatus.cancelled)

_ACTIVE_JOB_PREDICATE = "status IN ('pending', 'processing', 'paused')"


class Project(Base):
    __tablename__ = "projects"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    organization_id: Mapped[str | None] = mapped_column(sa.String(64), nullable=True, index=True)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    template: Mapped[str] = mapped_column(sa.Text(), nullable=False, server_default="")
    title_template: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    meta_description_template: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    tags_template: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(sa.String(1024), nullable=True)
    publish_delay_seconds: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="5")
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    columns: Mapped[list["CsvColumn"]] = relationship(
        back_populates="project", cascade="all, delete-orphan", passive_deletes=True
    )
    rows: Mapped[list["CsvRow"]] = relationship(
        back_populates="project", cascade="all, delete-orphan", passive_deletes=True
    )
    contents: Mapped[list["GeneratedContent"]] = relationship(
        back_populates="project", cascade="all, delete-orphan", passive_deletes=True
    )
    publish_jobs: Mapped[list["PublishJob"]] = relationship(
        back_populates="project", cascade="all, delete-orphan", passive_deletes=True
    )


class CsvColumn(Base):
    __tablename__ = "csv_columns"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    column_type: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default="text")
    order: Mapped[int] = mapped_column("column_order", sa.Integer(), nullable=False)

    project: Mapped[Project] = relationship(back_populates="columns")


class CsvRow(Base):
    __tablename__ = "csv_rows"
    __table_args__ = (sa.Index("ix_csv_rows_project_order", "project_id", "row_order"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    data: Mapped[dict] = mapped_column("row_data", sa.JSON(), nullable=False)
    order: Mapped[int] = mapped_column("row_order", sa.Integer(), nullable=False)

    project: Mapped[Project] = relationship(back_populates="rows")


class GeneratedContent(Base):
    __tablename__ = "generated_contents"
    __table_args__ = (
        sa.UniqueConstraint("project_id", "slug", name="uq_generated_contents_project_slug"),
        sa.Index("ix_generated_contents_project_status", "project_id", "publish_status"),
    )
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    content: Mapped[str] = mapped_column(sa.Text(), nullable=False)
    title: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    meta_description: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    tags: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    thumbnail_url: Mapped[str | None] = mapped_column(sa.String(1024), nullable=True)
    slug: Mapped[str] = mapped_column(sa.String(512), nullable=False)
    publish_status: Mapped[PublishStatus] = mapped_column(
        sa.String(16), nullable=False, server_default=PublishStatus.pending.value
    )
    published_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )

    project: Mapped[Project] = relationship(back_populates="contents")


class PublishJob(Base):
    __tablename__ = "publish_jobs"
    __table_args__ = (
        # One active job per project, enforced by the database as well as the service layer.
        sa.Index(
            "uq_publish_jobs_active_project",
            "project_id",
            unique=True,
            postgresql_where=sa.text(_ACTIVE_JOB_PREDICATE),
            sqlite_where=sa.text(_ACTIVE_JOB_PREDICATE),
        ),
        sa.Index("ix_publish_jobs_status_created", "status", "created_at"),
    )
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    project_id: Mapped[int] = mapped_column(sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[JobStatus] = mapped_column(sa.String(16), nullable=False, server_default=JobStatus.pending.value)
    total_contents: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    processed_count: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="0")
    delay_seconds: Mapped[int] = mapped_column(sa.Integer(), nullable=False, server_default="5")
    error_message: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(sa.DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), server_default=sa.func.now(), onupdate=sa.func.now(), nullable=False
    )

    project: Mapped[Project] = relationship(back_populates="publish_jobs")
