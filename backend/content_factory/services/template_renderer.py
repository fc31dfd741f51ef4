"""
Template rendering for generated content.

Operators write templates with Handlebars-style references:

    {{size}}                 plain column reference (HTML-escaped)
    {{[Product Name]}}       column whose name contains spaces or symbols
    {{{body_html}}}          raw, unescaped value

Column references of all three forms are rewritten into Jinja2 lookups
against the row mapping, so hyphens, leading digits and Jinja keywords in
column names are safe. Everything else is handed to a sandboxed Jinja2
environment as-is. Missing keys render as an empty string.
"""
from __future__ import annotations

import json
import re
from typing import Callable, Iterable, Mapping

from jinja2 import ChainableUndefined, TemplateError
from jinja2.sandbox import SandboxedEnvironment

from content_factory.errors import RenderFailure

RenderFn = Callable[[Mapping[str, str]], str]

_ROW_KEY = "__row__"

VARIABLE_PATTERN = re.compile(r"\{\{\{?\s*(?:\[([^\]]+)\]|([\w-]+))\s*\}?\}\}")
_RAW_PATTERN = re.compile(r"\{\{\{\s*(?:\[([^\]]+)\]|([\w-]+))\s*\}\}\}")
_PLAIN_PATTERN = re.compile(r"\{\{\s*(?:\[([^\]]+)\]|([\w-]+))\s*\}\}")

_env = SandboxedEnvironment(
    autoescape=True,
    undefined=ChainableUndefined,
    keep_trailing_newline=True,
)


class _RowView(dict):
    def __missing__(self, key):
        return ""


def _lookup(name: str) -> str:
    return f"{_ROW_KEY}[{json.dumps(name.strip())}]"


def _to_jinja(source: str) -> str:
    source = _RAW_PATTERN.sub(lambda m: "{{ " + _lookup(m.group(1) or m.group(2)) + "|safe }}", source)
    return _PLAIN_PATTERN.sub(lambda m: "{{ " + _lookup(m.group(1) or m.group(2)) + " }}", source)


def extract_variables(template: str | None, available: Iterable[str] | None = None) -> list[str]:
    """Return column names referenced by the template, first appearance first, de-duplicated.

    When ``available`` is given, names that are not in it are dropped.
    """
    if not template:
        return []
    allowed = set(available) if available is not None else None
    found: list[str] = []
    for match in VARIABLE_PATTERN.finditer(template):
        name = (match.group(1) or match.group(2)).strip()
        if allowed is not None and name not in allowed:
            continue
        if name not in found:
            found.append(name)
    return found


def compile_template(source: str, field: str = "content") -> RenderFn:
    """Compile a template into a ``data -> str`` callable.

    Raises RenderFailure for syntax errors here and for evaluation errors
    when the returned callable is invoked.
    """
    try:
        template = _env.from_string(_to_jinja(source or ""))
    except TemplateError as e:
        raise RenderFailure(field, str(e)) from e

    def render(data: Mapping[str, str]) -> str:
        context = dict(data)
        context[_ROW_KEY] = _RowView(data)
        try:
            return template.render(context)
        except Exception as e:
            # Filters and expressions can raise anything (ZeroDivisionError, TypeError, ...).
            raise RenderFailure(field, str(e) or e.__class__.__name__) from e

    return render


def compile_optional(source: str | None, field: str) -> RenderFn | None:
    if source is None or not source.strip():
        return None
    return compile_template(source, field)
