"""Unit tests for the combination expander."""

from __future__ import annotations

import pytest
from sqlalchemy import func, select

from content_factory.errors import LimitExceeded, NotFound, RenderFailure
from content_factory.models import GeneratedContent, PublishStatus
from content_factory.services.combination_expander import (
    build_slug,
    decode_index,
    expand,
    iter_combinations,
    preview,
    resolve_key_columns,
    slugify,
)


async def _contents(session) -> list[GeneratedContent]:
    res = await session.execute(select(GeneratedContent).order_by(GeneratedContent.id.asc()))
    return list(res.scalars().all())


async def _count(session) -> int:
    res = await session.execute(select(func.count(GeneratedContent.id)))
    return res.scalar_one()


def test_slugify_collapses_non_alphanumerics() -> None:
    assert slugify("  S Red / Shirt!! ") == "s-red-shirt"
    assert slugify("---") == ""


def test_build_slug_namespaces_by_project_and_falls_back_to_index() -> None:
    assert build_slug(7, "M Blue Shirt", 0) == "7/m-blue-shirt"
    assert build_slug(7, "%%%", 4) == "7/item-5"


def test_resolve_key_columns_uses_title_references_or_all_columns() -> None:
    columns = ["size", "color", "brand"]

    assert resolve_key_columns("{{color}} by {{size}}", columns) == ["color", "size"]
    assert resolve_key_columns(None, columns) == columns
    assert resolve_key_columns("  ", columns) == columns
    assert resolve_key_columns("Static title", columns) == []


def test_decode_index_first_column_is_most_significant() -> None:
    radices = [2, 3]

    decoded = [decode_index(i, radices) for i in range(6)]

    assert decoded == [[0, 0], [0, 1], [0, 2], [1, 0], [1, 1], [1, 2]]


def test_iter_combinations_is_cartesian_product() -> None:
    values = {"size": ["S", "M"], "color": ["Red", "Blue", "Green"]}

    combos = list(iter_combinations(["size", "color"], values))

    assert len(combos) == 6
    assert {(c["size"], c["color"]) for c in combos} == {
        (s, c) for s in values["size"] for c in values["color"]
    }


def test_iter_combinations_without_key_columns_yields_one_assignment() -> None:
    assert list(iter_combinations([], {})) == [{}]


async def test_expand_shirt_example(session, make_project, load_rows) -> None:
    project = await make_project(title_template="{{size}} {{color}} Shirt")
    await load_rows(project.id, ["size", "color"], [["S", "Red"], ["M", "Blue"]])

    result = await expand(session, project.id)

    contents = await _contents(session)
    assert result.generated_count == 4
    assert result.key_columns == ["size", "color"]
    assert [c.title for c in contents] == ["S Red Shirt", "S Blue Shirt", "M Red Shirt", "M Blue Shirt"]
    assert all(c.slug.startswith(f"{project.id}/") for c in contents)
    assert len({c.slug for c in contents}) == 4
    assert all(c.publish_status == PublishStatus.pending for c in contents)
    assert all(c.published_at is None for c in contents)
    assert contents[0].content == "<p>S Red</p>"


async def test_expand_hyphenated_column_reference(session, make_project, load_rows) -> None:
    project = await make_project(title_template="{{first-name}} Shirt", template="<p>{{first-name}}</p>")
    await load_rows(project.id, ["first-name"], [["Ann"], ["Bob"]])

    result = await expand(session, project.id)

    assert result.key_columns == ["first-name"]
    assert [c.title for c in await _contents(session)] == ["Ann Shirt", "Bob Shirt"]


async def test_expand_is_deterministic(session, make_project, load_rows) -> None:
    project = await make_project(title_template="{{size}} {{color}}")
    await load_rows(project.id, ["size", "color"], [["S", "Red"], ["M", "Blue"], ["L", "Red"]])

    first = await expand(session, project.id)
    first_slugs = [c.slug for c in await _contents(session)]
    second = await expand(session, project.id)
    second_slugs = [c.slug for c in await _contents(session)]

    assert first.generated_count == second.generated_count == 6
    assert first_slugs == second_slugs


async def test_expand_replaces_previous_run(session, make_project, load_rows) -> None:
    project = await make_project(title_template="{{size}}")
    await load_rows(project.id, ["size", "color"], [["S", "Red"], ["M", "Blue"]])
    await expand(session, project.id)

    project.title_template = "{{color}} edition"
    await session.commit()
    result = await expand(session, project.id)

    titles = sorted(c.title for c in await _contents(session))
    assert result.generated_count == 2
    assert titles == ["Blue edition", "Red edition"]


async def test_expand_over_limit_writes_nothing(session, make_project, load_rows) -> None:
    project = await make_project(title_template="{{a}}-{{b}}")
    await load_rows(project.id, ["a", "b"], [[f"a{i}", f"b{i}"] for i in range(101)])

    with pytest.raises(LimitExceeded) as exc_info:
        await expand(session, project.id)

    assert exc_info.value.estimated == 10_201
    assert exc_info.value.ceiling == 10_000
    assert await _count(session) == 0


async def test_limit_failure_keeps_previous_content(session, settings, make_project, load_rows) -> None:
    project = await make_project(title_template="{{size}} {{color}}")
    await load_rows(project.id, ["size", "color"], [["S", "Red"], ["M", "Blue"]])
    await expand(session, project.id)

    settings.max_combinations = 3
    with pytest.raises(LimitExceeded):
        await expand(session, project.id)

    assert await _count(session) == 4


async def test_non_key_columns_take_first_non_empty_value(session, make_project, load_rows) -> None:
    project = await make_project(title_template="{{size}}", template="{{size}} by {{brand}}")
    await load_rows(project.id, ["size", "brand"], [["S", ""], ["M", "Acme"], ["L", "Other"]])

    await expand(session, project.id)

    assert [c.content for c in await _contents(session)] == ["S by Acme", "M by Acme", "L by Acme"]


async def test_all_empty_key_column_renders_blank(session, make_project, load_rows) -> None:
    project = await make_project(title_template="{{size}} {{note}}", template="{{size}}")
    await load_rows(project.id, ["size", "note"], [["S", ""], ["M", " "]])

    result = await expand(session, project.id)

    assert result.generated_count == 2
    assert result.empty_key_columns == ["note"]
    assert [c.title for c in await _contents(session)] == ["S ", "M "]


async def test_colliding_slugs_are_skipped(session, make_project, load_rows) -> None:
    project = await make_project(title_template="{{size}}", template="{{size}}")
    await load_rows(project.id, ["size"], [["S"], ["s"], ["M"]])

    result = await expand(session, project.id)

    assert result.estimated_combinations == 3
    assert result.generated_count == 2
    assert result.skipped_duplicates == 1


async def test_title_without_known_columns_yields_single_item(session, make_project, load_rows) -> None:
    project = await make_project(title_template="Static {{unknown}} title", template="{{size}}")
    await load_rows(project.id, ["size"], [["S"], ["M"]])

    result = await expand(session, project.id)

    contents = await _contents(session)
    assert result.key_columns == []
    assert result.generated_count == 1
    assert contents[0].content == "S"


async def test_no_title_template_uses_all_columns(session, make_project, load_rows) -> None:
    project = await make_project(title_template=None, template="{{size}}/{{color}}")
    await load_rows(project.id, ["size", "color"], [["S", "Red"], ["M", "Blue"]])

    result = await expand(session, project.id)

    contents = await _contents(session)
    assert result.key_columns == ["size", "color"]
    assert result.estimated_combinations == 4
    # Default titles repeat the first value, so later combinations collide on slug.
    assert result.generated_count == 2
    assert result.skipped_duplicates == 2
    assert [c.title for c in contents] == ["S", "M"]


async def test_generated_items_inherit_templates_and_thumbnail(session, make_project, load_rows) -> None:
    project = await make_project(
        title_template="{{size}}",
        meta_description_template="Size {{size}} shirt",
        tags_template="shirt,{{size}}",
        thumbnail_url="https://cdn.example.com/shirt.png",
    )
    await load_rows(project.id, ["size"], [["S"]])

    await expand(session, project.id)

    (content,) = await _contents(session)
    assert content.meta_description == "Size S shirt"
    assert content.tags == "shirt,S"
    assert content.thumbnail_url == "https://cdn.example.com/shirt.png"


async def test_render_failure_writes_nothing(session, make_project, load_rows) -> None:
    project = await make_project(title_template="{{size}}", template="{{ nothing() }}")
    await load_rows(project.id, ["size"], [["S"], ["M"]])

    with pytest.raises(RenderFailure) as exc_info:
        await expand(session, project.id)

    assert exc_info.value.field == "content"
    assert await _count(session) == 0


async def test_expand_requires_rows(session, make_project) -> None:
    project = await make_project()

    with pytest.raises(NotFound):
        await expand(session, project.id)


async def test_expand_unknown_project(session) -> None:
    with pytest.raises(NotFound):
        await expand(session, 999)


async def test_scan_reads_rows_in_batches(session, settings, make_project, load_rows) -> None:
    settings.generation_row_batch_size = 2
    settings.generation_insert_batch_size = 3
    project = await make_project(title_template="{{size}} {{color}}")
    await load_rows(
        project.id,
        ["size", "color"],
        [["S", "Red"], ["M", "Blue"], ["L", "Green"], ["XL", "Red"], ["S", "Black"]],
    )

    result = await expand(session, project.id)

    assert result.estimated_combinations == 16
    assert result.generated_count == 16
    assert await _count(session) == 16


async def test_preview_reports_estimate_without_writing(session, make_project, load_rows) -> None:
    project = await make_project(title_template="{{size}} {{color}}", template="{{brand}}")
    await load_rows(project.id, ["size", "color", "brand"], [["S", "Red", "Acme"], ["M", "Red", ""]])

    report = await preview(session, project.id)

    assert report["key_columns"] == ["size", "color"]
    assert report["distinct_counts"] == {"size": 2, "color": 1}
    assert report["shared_columns"] == ["brand"]
    assert report["estimated_combinations"] == 2
    assert report["within_limit"] is True
    assert await _count(session) == 0
