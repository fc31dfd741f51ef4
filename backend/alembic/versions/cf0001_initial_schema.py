"""projects, dataset, generated content and publish jobs

Revision ID: cf0001_initial_schema
Revises:
Create Date: 2026-10-18 10:00:00
"""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = "cf0001_initial_schema"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_JOB_PREDICATE = "status IN ('pending', 'processing', 'paused')"


def upgrade() -> None:
    op.create_table(
        "projects",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("organization_id", sa.String(length=64), nullable=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("template", sa.Text(), nullable=False, server_default=""),
        sa.Column("title_template", sa.Text(), nullable=True),
        sa.Column("meta_description_template", sa.Text(), nullable=True),
        sa.Column("tags_template", sa.Text(), nullable=True),
        sa.Column("thumbnail_url", sa.String(length=1024), nullable=True),
        sa.Column("publish_delay_seconds", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_projects_organization_id", "projects", ["organization_id"], unique=False)

    op.create_table(
        "csv_columns",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("column_type", sa.String(length=32), nullable=False, server_default="text"),
        sa.Column("column_order", sa.Integer(), nullable=False),
    )
    op.create_index("ix_csv_columns_project_id", "csv_columns", ["project_id"], unique=False)

    op.create_table(
        "csv_rows",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("row_data", sa.JSON(), nullable=False),
        sa.Column("row_order", sa.Integer(), nullable=False),
    )
    op.create_index("ix_csv_rows_project_order", "csv_rows", ["project_id", "row_order"], unique=False)

    op.create_table(
        "generated_contents",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("title", sa.Text(), nullable=True),
        sa.Column("meta_description", sa.Text(), nullable=True),
        sa.Column("tags", sa.Text(), nullable=True),
        sa.Column("thumbnail_url", sa.String(length=1024), nullable=True),
        sa.Column("slug", sa.String(length=512), nullable=False),
        sa.Column("publish_status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("project_id", "slug", name="uq_generated_contents_project_slug"),
    )
    op.create_index(
        "ix_generated_contents_project_status", "generated_contents", ["project_id", "publish_status"], unique=False
    )

    op.create_table(
        "publish_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("project_id", sa.Integer(), sa.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="pending"),
        sa.Column("total_contents", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("processed_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("delay_seconds", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index(
        "uq_publish_jobs_active_project",
        "publish_jobs",
        ["project_id"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_JOB_PREDICATE),
        sqlite_where=sa.text(ACTIVE_JOB_PREDICATE),
    )
    op.create_index("ix_publish_jobs_status_created", "publish_jobs", ["status", "created_at"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_publish_jobs_status_created", table_name="publish_jobs")
    op.drop_index("uq_publish_jobs_active_project", table_name="publish_jobs")
    op.drop_table("publish_jobs")
    op.drop_index("ix_generated_contents_project_status", table_name="generated_contents")
    op.drop_table("generated_contents")
    op.drop_index("ix_csv_rows_project_order", table_name="csv_rows")
    op.drop_table("csv_rows")
    op.drop_index("ix_csv_columns_project_id", table_name="csv_columns")
    op.drop_table("csv_columns")
    op.drop_index("ix_projects_organization_id", table_name="projects")
    op.drop_table("projects")
