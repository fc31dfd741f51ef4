"""
Domain errors raised by the generation and publishing services.

The HTTP layer maps each class to a status code once (see main.py);
services never build HTTP responses themselves.
"""
from __future__ import annotations


class ContentFactoryError(Exception):
    """Base class for errors surfaced to callers."""


class NotFound(ContentFactoryError):
    """Referenced project, job or content does not exist."""


class InvalidState(ContentFactoryError):
    """Requested transition is illegal for the current job status."""


class InvalidUpload(ContentFactoryError):
    """Uploaded dataset could not be parsed."""


class LimitExceeded(ContentFactoryError):
    def __init__(self, estimated: int, ceiling: int):
        self.estimated = estimated
        self.ceiling = ceiling
        super().__init__(
            f"Combination count {estimated} exceeds the limit of {ceiling}; "
            f"reduce the columns referenced by the title template"
        )


class RenderFailure(ContentFactoryError):
    def __init__(self, field: str, detail: str):
        self.field = field
        self.detail = detail
        super().__init__(f"Failed to render {field} template: {detail}")
