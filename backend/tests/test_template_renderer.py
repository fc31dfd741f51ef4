"""Unit tests for template rendering."""

from __future__ import annotations

import pytest

from content_factory.errors import RenderFailure
from content_factory.services.template_renderer import compile_optional, compile_template, extract_variables


def test_extract_variables_keeps_first_appearance_order() -> None:
    names = extract_variables("{{color}} {{size}} in {{color}}, {{[Product Name]}}")

    assert names == ["color", "size", "Product Name"]


def test_extract_variables_filters_unknown_columns() -> None:
    names = extract_variables("{{size}} {{brand}} {{{color}}}", available=["color", "size"])

    assert names == ["size", "color"]


def test_extract_variables_handles_blank_template() -> None:
    assert extract_variables(None) == []
    assert extract_variables("") == []


def test_render_substitutes_and_blanks_missing_keys() -> None:
    render = compile_template("{{size}} {{color}} Shirt{{missing}}")

    assert render({"size": "S", "color": "Red"}) == "S Red Shirt"


def test_render_supports_bracketed_column_names() -> None:
    render = compile_template("<h1>{{[Product Name]}}</h1>{{[No Such Column]}}")

    assert render({"Product Name": "Linen Shirt"}) == "<h1>Linen Shirt</h1>"


def test_render_escapes_double_stash_but_not_triple_stash() -> None:
    render = compile_template("{{body}}|{{{body}}}")

    assert render({"body": "<b>hi</b>"}) == "&lt;b&gt;hi&lt;/b&gt;|<b>hi</b>"


def test_render_plain_names_that_are_not_identifiers() -> None:
    render = compile_template("{{first-name}}/{{1st}}/{{ if }}/{{{first-name}}}")

    assert render({"first-name": "Ann", "1st": "gold", "if": "x"}) == "Ann/gold/x/Ann"
    assert render({}) == "///"


def test_syntax_error_raises_render_failure_with_field() -> None:
    with pytest.raises(RenderFailure) as exc_info:
        compile_template("{% if %}", "title")

    assert exc_info.value.field == "title"


def test_compile_optional_skips_blank_templates() -> None:
    assert compile_optional(None, "tags") is None
    assert compile_optional("   ", "tags") is None
    assert compile_optional("{{a}}", "tags")({"a": "x"}) == "x"
