"""Merge rendered documents into their templates."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Any

import jinja2
from markupsafe import Markup

from ..config import OUTPUT_EXTENSION, BuildSettings
from ..content.models import Document
from ..errors import ComposeError
from .templates import TemplateRegistry, select_template


@dataclass(frozen=True)
class Page:
    """Materialized output for one document."""

    source_path: str
    output_path: str
    content: bytes
    template: str


def output_path_for(rel_path: str) -> str:
    """Same relative location as the source, with the output extension."""
    return PurePosixPath(rel_path).with_suffix(OUTPUT_EXTENSION).as_posix()


def root_prefix(output_path: str) -> str:
    """Relative prefix from a page back to the site root (``""`` at top level)."""
    depth = len(PurePosixPath(output_path).parts) - 1
    return "../" * depth


def asset_href(asset: str | None, root: str) -> str | None:
    """Resolve a site-root-relative asset path for a page at ``root`` depth."""
    if not asset:
        return None
    if asset.startswith(("/", "http://", "https://", "//")):
        return asset
    return root + asset


def page_context(
    document: Document,
    settings: BuildSettings,
    output_path: str,
) -> dict[str, Any]:
    """Slot values available to templates. Missing optional values render empty."""
    if document.rendered is None:
        raise ValueError(f"{document.path} has not been rendered")

    root = root_prefix(output_path)
    return {
        "content": Markup(document.rendered.html),
        "toc": Markup(document.rendered.toc_html()),
        "title": document.title,
        "date": document.date.isoformat(),
        "date_obj": document.date,
        "author": document.author or "",
        "images": [asset_href(image, root) for image in document.images],
        "tags": document.tags,
        "metadata": dict(document.metadata),
        "site": settings.site,
        "stylesheet": asset_href(settings.stylesheet, root),
        "root": root,
        "path": output_path,
        "source_path": document.path,
    }


def compose(document: Document, registry: TemplateRegistry, settings: BuildSettings) -> Page:
    """Render a document into its selected template.

    Raises:
        TemplateNotFound: The document's ``layout`` does not exist
        ComposeError: The template failed while rendering
    """
    template = select_template(document, registry)
    output_path = output_path_for(document.path)
    context = page_context(document, settings, output_path)

    try:
        context["slots"] = {
            name: Markup(slot.compiled.render(context)) for name, slot in sorted(registry.slots.items())
        }
        html = template.compiled.render(context)
    except jinja2.TemplateError as e:
        raise ComposeError(document.path, f"template '{template.name}': {e}") from e
    except Exception as e:
        # Template expressions can raise arbitrary Python exceptions
        raise ComposeError(document.path, f"template '{template.name}': {type(e).__name__}: {e}") from e

    if not html.endswith("\n"):
        html += "\n"

    return Page(
        source_path=document.path,
        output_path=output_path,
        content=html.encode("utf-8"),
        template=template.name,
    )
