"""
Tabular store: parsed columns and rows of a project's uploaded dataset.

An upload replaces the previous dataset inside a single transaction, so
readers see either the old rows or the new ones, never a mix.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Any

import polars as pl
from openpyxl import load_workbook
from sqlalchemy import delete, func, insert, select
from sqlalchemy.ext.asyncio import AsyncSession

from content_factory.errors import InvalidUpload
from content_factory.models import CsvColumn, CsvRow

logger = logging.getLogger(__name__)

ROW_INSERT_BATCH_SIZE = 200
EXCEL_SUFFIXES = (".xlsx", ".xlsm")


@dataclass
class ParsedDataset:
    headers: list[str]
    rows: list[dict[str, str]]


def parse_csv(payload: bytes) -> ParsedDataset:
    try:
        text = payload.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise InvalidUpload(f"CSV must be UTF-8 encoded: {e}") from e
    if not text.strip():
        raise InvalidUpload("File must have headers")

    # Header row is read as data so names can be trimmed and checked for duplicates.
    try:
        frame = pl.read_csv(
            io.BytesIO(text.encode("utf-8")),
            has_header=False,
            infer_schema_length=0,
            truncate_ragged_lines=True,
        )
    except pl.exceptions.PolarsError as e:
        raise InvalidUpload(f"CSV parsing error: {e}") from e

    records = [
        ["" if v is None else v for v in r]
        for r in frame.iter_rows()
        if any(v is not None and v.strip() for v in r)
    ]
    if not records:
        raise InvalidUpload("File must have headers")
    return _to_dataset(records[0], records[1:])


def parse_excel(payload: bytes) -> ParsedDataset:
    try:
        wb = load_workbook(io.BytesIO(payload), read_only=True, data_only=True)
    except Exception as e:
        raise InvalidUpload(f"Excel parsing error: {e}") from e
    ws = wb.active
    if ws is None:
        raise InvalidUpload("Excel file has no sheets")
    records = [
        ["" if v is None else str(v) for v in r]
        for r in ws.iter_rows(values_only=True)
        if any(v is not None and str(v).strip() for v in r)
    ]
    wb.close()
    if not records:
        raise InvalidUpload("File must have headers")
    return _to_dataset(records[0], records[1:])


def _to_dataset(header: list[Any], body: list[list[str]]) -> ParsedDataset:
    headers = [str(h).strip() for h in header]
    if not any(headers):
        raise InvalidUpload("File must have headers")
    if len(set(h for h in headers if h)) != len([h for h in headers if h]):
        raise InvalidUpload("Column names must be unique")

    rows: list[dict[str, str]] = []
    for record in body:
        row = {}
        for i, name in enumerate(headers):
            if not name:
                continue
            row[name] = record[i] if i < len(record) else ""
        rows.append(row)

    if not rows:
        raise InvalidUpload("File must have at least one row of data")
    return ParsedDataset(headers=[h for h in headers if h], rows=rows)


def parse_upload(filename: str | None, payload: bytes) -> ParsedDataset:
    name = (filename or "").lower()
    if name.endswith(EXCEL_SUFFIXES):
        return parse_excel(payload)
    return parse_csv(payload)


async def replace_dataset(session: AsyncSession, project_id: int, dataset: ParsedDataset) -> dict:
    """Swap the project's columns and rows for ``dataset``; commits."""
    distinct: dict[str, set[str]] = {h: set() for h in dataset.headers}

    try:
        await session.execute(delete(CsvColumn).where(CsvColumn.project_id == project_id))
        await session.execute(delete(CsvRow).where(CsvRow.project_id == project_id))

        await session.execute(
            insert(CsvColumn),
            [
                {"project_id": project_id, "name": name, "column_type": "text", "order": i}
                for i, name in enumerate(dataset.headers)
            ],
        )

        for start in range(0, len(dataset.rows), ROW_INSERT_BATCH_SIZE):
            batch = dataset.rows[start:start + ROW_INSERT_BATCH_SIZE]
            for row in batch:
                for name, value in row.items():
                    if value and value.strip():
                        distinct[name].add(value.strip())
            await session.execute(
                insert(CsvRow),
                [
                    {"project_id": project_id, "data": row, "order": start + offset}
                    for offset, row in enumerate(batch)
                ],
            )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    total_combinations = 1
    for values in distinct.values():
        total_combinations *= max(len(values), 1)

    logger.info(
        "[dataset] Project %d: replaced dataset with %d columns, %d rows",
        project_id, len(dataset.headers), len(dataset.rows),
    )
    return {
        "columns": await list_columns(session, project_id),
        "row_count": len(dataset.rows),
        "total_combinations": total_combinations,
    }


async def list_columns(session: AsyncSession, project_id: int) -> list[CsvColumn]:
    res = await session.execute(
        select(CsvColumn).where(CsvColumn.project_id == project_id).order_by(CsvColumn.order.asc())
    )
    return list(res.scalars().all())


async def count_rows(session: AsyncSession, project_id: int) -> int:
    res = await session.execute(select(func.count(CsvRow.id)).where(CsvRow.project_id == project_id))
    return res.scalar_one()


async def find_rows(session: AsyncSession, project_id: int, offset: int, limit: int) -> list[CsvRow]:
    res = await session.execute(
        select(CsvRow)
        .where(CsvRow.project_id == project_id)
        .order_by(CsvRow.order.asc(), CsvRow.id.asc())
        .offset(offset)
        .limit(limit)
    )
    return list(res.scalars().all())


async def get_dataset(session: AsyncSession, project_id: int, offset: int = 0, limit: int = 100) -> dict:
    return {
        "columns": await list_columns(session, project_id),
        "rows": await find_rows(session, project_id, offset, limit),
        "total": await count_rows(session, project_id),
    }
