"""Exception taxonomy for pagesmith builds.

Document-scoped errors carry the source path and are collected into the
build report; ``OutputRootError`` and ``TemplateError`` abort the build.
"""

from __future__ import annotations


class PagesmithError(Exception):
    """Base class for all pagesmith errors."""


class DocumentError(PagesmithError):
    """An error confined to a single content document."""

    kind = "DocumentError"

    def __init__(self, path: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.message = message


class ReadError(DocumentError):
    """The source file could not be read or decoded."""

    kind = "ReadError"


class MalformedMetadata(DocumentError):
    """Front matter is present but not a parseable key-value structure."""

    kind = "MalformedMetadata"


class MissingRequiredField(DocumentError):
    """A required front matter field is absent."""

    kind = "MissingRequiredField"

    def __init__(self, path: str, field: str):
        super().__init__(path, f"missing required field '{field}'")
        self.field = field


class RenderError(DocumentError):
    """The body contains a structurally unterminated construct."""

    kind = "RenderError"

    def __init__(self, path: str, message: str, line: int | None = None):
        if line is not None:
            message = f"line {line}: {message}"
        super().__init__(path, message)
        self.line = line


class TemplateNotFound(DocumentError):
    """The layout named by a document does not exist."""

    kind = "TemplateNotFound"

    def __init__(self, path: str, template: str):
        super().__init__(path, f"template '{template}' not found")
        self.template = template


class ComposeError(DocumentError):
    """The selected template failed while rendering a document."""

    kind = "ComposeError"


class WriteError(DocumentError):
    """Filesystem failure writing a page."""

    kind = "WriteError"


class OutputRootError(WriteError):
    """The output root itself is unusable; no further progress is possible."""

    kind = "WriteError"


class TemplateError(PagesmithError):
    """A template could not be loaded or compiled."""

    def __init__(self, template: str, message: str):
        super().__init__(f"template '{template}': {message}")
        self.template = template
