from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from .models import JobStatus, PublishStatus


class ProjectBase(BaseModel):
    name: str
    description: str | None = None
    template: str = ""
    title_template: str | None = None
    meta_description_template: str | None = None
    tags_template: str | None = None
    thumbnail_url: str | None = None
    publish_delay_seconds: int = Field(default=5, ge=0)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be empty")
        return value


class ProjectCreate(ProjectBase):
    pass


class ProjectUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    template: str | None = None
    title_template: str | None = None
    meta_description_template: str | None = None
    tags_template: str | None = None
    thumbnail_url: str | None = None
    publish_delay_seconds: int | None = Field(default=None, ge=0)


class ProjectRead(ProjectBase):
    id: int
    organization_id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class CsvColumnRead(BaseModel):
    id: int
    name: str
    column_type: str
    order: int

    class Config:
        from_attributes = True


class CsvRowRead(BaseModel):
    id: int
    order: int
    data: dict

    class Config:
        from_attributes = True


class DatasetUploadResponse(BaseModel):
    columns: list[CsvColumnRead]
    row_count: int
    total_combinations: int


class DatasetRead(BaseModel):
    columns: list[CsvColumnRead]
    rows: list[CsvRowRead]
    total: int


class ContentRead(BaseModel):
    id: int
    project_id: int
    title: str | None = None
    slug: str
    content: str
    meta_description: str | None = None
    tags: str | None = None
    thumbnail_url: str | None = None
    publish_status: PublishStatus
    published_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class ContentUpdate(BaseModel):
    title: str | None = None
    content: str | None = None
    meta_description: str | None = None
    tags: str | None = None
    thumbnail_url: str | None = None
    slug: str | None = None
    publish_status: PublishStatus | None = None

    @field_validator("slug")
    @classmethod
    def normalize_slug(cls, value: str | None) -> str | None:
        if value is None:
            return None
        value = value.strip()
        if not value:
            raise ValueError("slug must not be empty")
        return value


class ContentListResponse(BaseModel):
    contents: list[ContentRead]
    total: int
    page: int
    total_pages: int


class UnpublishRequest(BaseModel):
    content_ids: list[int] = Field(min_length=1)


class UnpublishResponse(BaseModel):
    unpublished: int


class ExpansionResultRead(BaseModel):
    project_id: int
    generated_count: int
    estimated_combinations: int
    key_columns: list[str]
    skipped_duplicates: int = 0
    empty_key_columns: list[str] = []

    class Config:
        from_attributes = True


class GenerateQueuedResponse(BaseModel):
    job_id: str
    total_rows: int
    status: str = "queued"


class GenerationJobStatus(BaseModel):
    job_id: str
    state: str
    result: dict | None = None
    error: str | None = None


class CombinationPreview(BaseModel):
    project_id: int
    key_columns: list[str]
    distinct_counts: dict[str, int]
    shared_columns: list[str]
    empty_key_columns: list[str]
    estimated_combinations: int
    max_combinations: int
    within_limit: bool


class PublishRequest(BaseModel):
    delay_seconds: int | None = Field(default=None, ge=0)


class PublishJobRead(BaseModel):
    id: int
    project_id: int
    status: JobStatus
    total_contents: int
    processed_count: int
    delay_seconds: int
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class OverallStats(BaseModel):
    total_projects: int
    total_content: int
    published_content: int
    pending_content: int
    failed_content: int
    active_jobs: int
    completed_jobs_today: int
