"""
Combination expander: turns a project's dataset into generated content.

Key columns are the columns referenced by the title template (all columns
when there is no title template). Each distinct value of every key column
is combined with every value of the others; columns that are not keys
contribute the first non-empty value seen anywhere in the dataset.

The combination space is enumerated as a mixed-radix number: index ``i``
in ``[0, total)`` is decoded into one digit per key column, the first key
column being the most significant (slowest varying). Nothing but the
per-column value lists is held in memory, and the output order is fully
determined by the row order of the dataset.
"""
from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Iterator, Mapping, Sequence

from sqlalchemy import delete, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from content_factory.errors import LimitExceeded, NotFound
from content_factory.models import CsvRow, GeneratedContent, Project, PublishStatus
from content_factory.services import dataset_store
from content_factory.services.template_renderer import compile_optional, compile_template, extract_variables
from content_factory.settings import get_settings

logger = logging.getLogger(__name__)

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


@dataclass
class ColumnScan:
    key_columns: list[str]
    values: dict[str, list[str]]
    shared: dict[str, str]
    empty_key_columns: list[str] = field(default_factory=list)

    @property
    def radices(self) -> list[int]:
        return [len(self.values[c]) for c in self.key_columns]

    @property
    def estimated_combinations(self) -> int:
        total = 1
        for n in self.radices:
            total *= n
        return total


@dataclass
class ExpansionResult:
    project_id: int
    generated_count: int
    estimated_combinations: int
    key_columns: list[str]
    skipped_duplicates: int = 0
    empty_key_columns: list[str] = field(default_factory=list)


def slugify(text: str) -> str:
    return _SLUG_STRIP.sub("-", (text or "").lower()).strip("-")


def build_slug(project_id: int, title: str, index: int) -> str:
    base = slugify(title) or f"item-{index + 1}"
    return f"{project_id}/{base}"


def resolve_key_columns(title_template: str | None, columns: Sequence[str]) -> list[str]:
    if title_template is None or not title_template.strip():
        return list(columns)
    return extract_variables(title_template, columns)


def decode_index(index: int, radices: Sequence[int]) -> list[int]:
    """Map a combination index onto one digit per key column (first column most significant)."""
    digits = [0] * len(radices)
    for pos in range(len(radices) - 1, -1, -1):
        index, digits[pos] = divmod(index, radices[pos])
    return digits


def iter_combinations(key_columns: Sequence[str], values: Mapping[str, Sequence[str]]) -> Iterator[dict[str, str]]:
    radices = [len(values[c]) for c in key_columns]
    total = 1
    for n in radices:
        total *= n
    for i in range(total):
        digits = decode_index(i, radices)
        yield {col: values[col][d] for col, d in zip(key_columns, digits)}


async def scan_columns(
    session: AsyncSession,
    project_id: int,
    columns: Sequence[str],
    key_columns: Sequence[str],
    batch_size: int,
) -> ColumnScan:
    """Stream the dataset once, collecting distinct key values and shared constants."""
    key_set = set(key_columns)
    seen: dict[str, dict[str, None]] = {c: {} for c in key_columns}
    shared: dict[str, str] = {}
    pending_shared = [c for c in columns if c not in key_set]

    offset = 0
    while True:
        res = await session.execute(
            select(CsvRow.data)
            .where(CsvRow.project_id == project_id)
            .order_by(CsvRow.order.asc(), CsvRow.id.asc())
            .offset(offset)
            .limit(batch_size)
        )
        batch = res.scalars().all()
        if not batch:
            break
        for data in batch:
            for col in key_columns:
                value = str(data.get(col) or "").strip()
                if value:
                    seen[col].setdefault(value, None)
            if pending_shared:
                for col in list(pending_shared):
                    value = str(data.get(col) or "").strip()
                    if value:
                        shared[col] = value
                        pending_shared.remove(col)
        offset += len(batch)

    for col in pending_shared:
        shared[col] = ""

    values: dict[str, list[str]] = {}
    empty: list[str] = []
    for col in key_columns:
        distinct = list(seen[col])
        if not distinct:
            # An all-empty key column contributes one blank value instead of collapsing the product to zero.
            empty.append(col)
            distinct = [""]
        values[col] = distinct

    return ColumnScan(key_columns=list(key_columns), values=values, shared=shared, empty_key_columns=empty)


async def _load_project(session: AsyncSession, project_id: int) -> Project:
    project = await session.get(Project, project_id)
    if not project:
        raise NotFound(f"Project {project_id} not found")
    return project


async def _column_names(session: AsyncSession, project_id: int) -> list[str]:
    columns = await dataset_store.list_columns(session, project_id)
    if columns:
        return [c.name for c in columns]
    # Datasets loaded without a column table: fall back to the first row's keys.
    res = await session.execute(
        select(CsvRow.data).where(CsvRow.project_id == project_id).order_by(CsvRow.order.asc()).limit(1)
    )
    first = res.scalar_one_or_none() or {}
    return list(first.keys())


async def preview(session: AsyncSession, project_id: int) -> dict:
    """Key columns, value counts and combination estimate; writes nothing."""
    settings = get_settings()
    project = await _load_project(session, project_id)
    columns = await _column_names(session, project_id)
    key_columns = resolve_key_columns(project.title_template, columns)
    scan = await scan_columns(session, project_id, columns, key_columns, settings.generation_row_batch_size)
    return {
        "project_id": project_id,
        "key_columns": scan.key_columns,
        "distinct_counts": {c: len(scan.values[c]) for c in scan.key_columns},
        "shared_columns": sorted(scan.shared),
        "empty_key_columns": scan.empty_key_columns,
        "estimated_combinations": scan.estimated_combinations,
        "max_combinations": settings.max_combinations,
        "within_limit": scan.estimated_combinations <= settings.max_combinations,
    }


async def expand(session: AsyncSession, project_id: int) -> ExpansionResult:
    """Regenerate all content for a project.

    Existing content is deleted and the new records are inserted in the
    same transaction. Raises NotFound, LimitExceeded or RenderFailure;
    nothing is written when any of them is raised.
    """
    settings = get_settings()
    started = time.monotonic()

    project = await _load_project(session, project_id)
    row_count = await dataset_store.count_rows(session, project_id)
    if row_count == 0:
        raise NotFound(f"No CSV data found for project {project_id}")

    columns = await _column_names(session, project_id)
    key_columns = resolve_key_columns(project.title_template, columns)
    scan = await scan_columns(session, project_id, columns, key_columns, settings.generation_row_batch_size)

    estimated = scan.estimated_combinations
    if estimated > settings.max_combinations:
        logger.warning(
            "[expander] Project %d: %d combinations over limit %d (key columns: %s)",
            project_id, estimated, settings.max_combinations, scan.key_columns,
        )
        raise LimitExceeded(estimated, settings.max_combinations)
    if scan.empty_key_columns:
        logger.warning(
            "[expander] Project %d: key columns without values, rendered blank: %s",
            project_id, scan.empty_key_columns,
        )

    render_content = compile_template(project.template, "content")
    render_title = compile_optional(project.title_template, "title")
    render_meta = compile_optional(project.meta_description_template, "meta_description")
    render_tags = compile_optional(project.tags_template, "tags")

    used_slugs: set[str] = set()
    buffer: list[dict] = []
    generated = 0
    skipped = 0

    try:
        await session.execute(delete(GeneratedContent).where(GeneratedContent.project_id == project_id))

        for index, assignment in enumerate(iter_combinations(scan.key_columns, scan.values)):
            data = {**scan.shared, **assignment}
            if render_title:
                title = render_title(data)
            else:
                title = next((v for v in assignment.values() if v), "") or "Untitled"

            slug = build_slug(project_id, title, index)
            if slug in used_slugs:
                skipped += 1
                continue
            used_slugs.add(slug)

            buffer.append({
                "project_id": project_id,
                "content": render_content(data),
                "title": title,
                "meta_description": render_meta(data) if render_meta else "",
                "tags": render_tags(data) if render_tags else "",
                "thumbnail_url": project.thumbnail_url,
                "slug": slug,
                "publish_status": PublishStatus.pending.value,
            })
            if len(buffer) >= settings.generation_insert_batch_size:
                await session.execute(insert(GeneratedContent), buffer)
                generated += len(buffer)
                buffer = []

        if buffer:
            await session.execute(insert(GeneratedContent), buffer)
            generated += len(buffer)
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "[expander] Project %d: generated %d items from %d combinations (%d duplicate slugs skipped, key columns %s) in %.2fs",
        project_id, generated, estimated, skipped, scan.key_columns, time.monotonic() - started,
    )
    return ExpansionResult(
        project_id=project_id,
        generated_count=generated,
        estimated_combinations=estimated,
        key_columns=scan.key_columns,
        skipped_duplicates=skipped,
        empty_key_columns=scan.empty_key_columns,
    )
