"""
Export of a project's generated content as CSV, JSON or a zip of HTML pages.
"""
from __future__ import annotations

import html
import io
import zipfile
from datetime import datetime

import polars as pl
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from content_factory.models import GeneratedContent, PublishStatus

CSV_HEADER = ["title", "slug", "content", "metaDescription", "tags", "publishStatus", "createdAt", "publishedAt"]

INDEX_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Content Export Index</title>
    <style>
        body {{ font-family: Arial, sans-serif; max-width: 800px; margin: 50px auto; padding: 20px; }}
        ul {{ list-style: none; padding: 0; }}
        li {{ margin: 10px 0; padding: 10px; background: #f5f5f5; border-radius: 5px; }}
        a {{ text-decoration: none; color: #0066cc; }}
    </style>
</head>
<body>
    <h1>Content Export Index</h1>
    <p>Total files: {count}</p>
    <ul>
        {links}
    </ul>
</body>
</html>"""

PAGE_TEMPLATE = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
    <meta name="description" content="{description}">
    {keywords}
</head>
<body>
{body}
</body>
</html>"""


async def load_contents(session: AsyncSession, project_id: int) -> list[GeneratedContent]:
    res = await session.execute(
        select(GeneratedContent)
        .where(GeneratedContent.project_id == project_id)
        .order_by(GeneratedContent.created_at.asc(), GeneratedContent.id.asc())
    )
    return list(res.scalars().all())


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value else ""


def to_csv(contents: list[GeneratedContent]) -> str:
    frame = pl.DataFrame(
        [
            [
                c.title or "",
                c.slug,
                c.content,
                c.meta_description or "",
                c.tags or "",
                PublishStatus(c.publish_status).value,
                _iso(c.created_at),
                _iso(c.published_at),
            ]
            for c in contents
        ],
        schema={name: pl.Utf8 for name in CSV_HEADER},
        orient="row",
    )
    return frame.write_csv(quote_style="always")


def to_json(contents: list[GeneratedContent]) -> list[dict]:
    return [
        {
            "id": c.id,
            "projectId": c.project_id,
            "title": c.title,
            "slug": c.slug,
            "content": c.content,
            "metaDescription": c.meta_description,
            "tags": c.tags,
            "thumbnailUrl": c.thumbnail_url,
            "publishStatus": c.publish_status,
            "createdAt": _iso(c.created_at) or None,
            "publishedAt": _iso(c.published_at) or None,
        }
        for c in contents
    ]


def page_filename(content: GeneratedContent, index: int) -> str:
    base = (content.slug or "").replace("/", "-") or f"content-{index + 1}"
    return f"{base}.html"


def render_page(content: GeneratedContent) -> str:
    keywords = ""
    if content.tags:
        keywords = f'<meta name="keywords" content="{html.escape(content.tags)}">'
    return PAGE_TEMPLATE.format(
        title=html.escape(content.title or ""),
        description=html.escape(content.meta_description or ""),
        keywords=keywords,
        body=content.content,
    )


def to_html_zip(contents: list[GeneratedContent]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=9) as zf:
        links = "\n        ".join(
            f'<li><a href="{page_filename(c, i)}">{html.escape(c.title or "")}</a></li>'
            for i, c in enumerate(contents)
        )
        zf.writestr("index.html", INDEX_TEMPLATE.format(count=len(contents), links=links))
        for i, c in enumerate(contents):
            zf.writestr(page_filename(c, i), render_page(c))
    return buf.getvalue()
