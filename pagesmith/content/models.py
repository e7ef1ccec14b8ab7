"""Document model produced by the content loader."""

from __future__ import annotations

from datetime import date
from pathlib import PurePosixPath
from typing import Union

from pydantic import BaseModel, ConfigDict

from ..render.markdown import RenderedBody

# Front matter values after normalization: string, calendar date or list of strings.
MetaValue = Union[str, date, list[str]]

_FALSE_VALUES = {"false", "no", "off", "0"}


class Document(BaseModel):
    """One content source unit: front matter plus Markdown body.

    Identity is ``path``, the POSIX path relative to the content root.
    """

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    path: str
    metadata: dict[str, MetaValue]
    body: str
    body_line: int = 1
    source_sha256: str
    rendered: RenderedBody | None = None

    @property
    def title(self) -> str:
        return str(self.metadata["title"])

    @property
    def date(self) -> date:
        value = self.metadata["date"]
        if not isinstance(value, date):
            raise TypeError(f"{self.path}: 'date' is {type(value).__name__}, not a calendar date")
        return value

    @property
    def author(self) -> str | None:
        value = self.metadata.get("author")
        return value if isinstance(value, str) else None

    @property
    def images(self) -> list[str]:
        return _as_list(self.metadata.get("images"))

    @property
    def tags(self) -> list[str]:
        return _as_list(self.metadata.get("tags"))

    @property
    def layout(self) -> str | None:
        value = self.metadata.get("layout")
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None

    @property
    def is_output(self) -> bool:
        """False for partials: ``_``-prefixed files or ``output: false``."""
        if PurePosixPath(self.path).name.startswith("_"):
            return False
        value = self.metadata.get("output")
        if isinstance(value, str) and value.strip().lower() in _FALSE_VALUES:
            return False
        return True

    def with_rendered(self, rendered: RenderedBody) -> Document:
        """Return a copy carrying the rendered body."""
        return self.model_copy(update={"rendered": rendered})


def _as_list(value: MetaValue | None) -> list[str]:
    if value is None:
        return []
    if isinstance(value, list):
        return list(value)
    return [str(value)]
