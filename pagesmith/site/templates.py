"""Template registry and layout selection."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from pathlib import Path, PurePosixPath
from types import MappingProxyType

import jinja2
from markupsafe import Markup

from ..config import DEFAULT_TEMPLATE, SLOTS_DIR
from ..content.models import Document
from ..errors import TemplateError, TemplateNotFound
from .manifest import compute_sha256
from .styles import CSS

logger = logging.getLogger(__name__)

TEMPLATE_SUFFIX = ".html"

DEFAULT_TEMPLATE_SOURCE = """\
<!doctype html>
<html lang="{{ site.language or 'en' }}">
<head>
<meta charset="utf-8">
<meta name="viewport" content="width=device-width, initial-scale=1">
<title>{{ title }}{% if site.title %} · {{ site.title }}{% endif %}</title>
<style>{{ default_css }}</style>
{% if stylesheet %}<link rel="stylesheet" href="{{ stylesheet }}">
{% endif %}</head>
<body>
<header>
<div><a href="{{ root or './' }}">{{ site.title or 'Home' }}</a></div>
<nav>{{ slots.nav }}</nav>
</header>
<article>
<h1>{{ title }}</h1>
<div class="muted">{{ date }}{% if author %} · {{ author }}{% endif %}</div>
{% if tags %}<div class="muted">{{ tags | join(' · ') }}</div>
{% endif %}{% for image in images %}<figure><img src="{{ image }}" alt=""></figure>
{% endfor %}<div class="rule"></div>
{{ toc }}
{{ content }}
</article>
<footer>{{ slots.footer }}</footer>
</body>
</html>
"""


@dataclass(frozen=True)
class Template:
    name: str
    source: str
    compiled: jinja2.Template
    builtin: bool = False


class TemplateRegistry(Mapping[str, Template]):
    """Build-scoped, read-only set of templates and auxiliary slots.

    Constructed once before any document is processed and shared by all
    workers without locking.
    """

    def __init__(self, templates: dict[str, Template], slots: dict[str, Template], digest: str):
        self._templates = MappingProxyType(dict(templates))
        self.slots = MappingProxyType(dict(slots))
        self.digest = digest

    def __getitem__(self, name: str) -> Template:
        return self._templates[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._templates)

    def __len__(self) -> int:
        return len(self._templates)


def load_templates(template_root: Path) -> TemplateRegistry:
    """Load and compile every template under a root.

    ``slots/*.html`` become auxiliary slots; every other ``*.html`` file is a
    template named by its relative path without the suffix. A built-in
    ``default`` is registered when the root does not provide one.

    Raises:
        TemplateError: A template fails to compile
    """
    env = _environment(template_root)
    templates: dict[str, Template] = {}
    slots: dict[str, Template] = {}
    digest_parts: list[str] = []

    for rel in _template_files(template_root):
        raw = (template_root / rel).read_bytes()
        digest_parts.append(f"{rel}:{compute_sha256(raw)}")
        if PurePosixPath(rel).suffix != TEMPLATE_SUFFIX:
            continue
        try:
            source = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise TemplateError(rel, f"not valid UTF-8: {e}") from e
        compiled = _compile(env, rel)
        name = rel[: -len(TEMPLATE_SUFFIX)]
        if name.startswith(f"{SLOTS_DIR}/"):
            slot_name = name[len(SLOTS_DIR) + 1 :]
            slots[slot_name] = Template(name=slot_name, source=source, compiled=compiled)
        else:
            templates[name] = Template(name=name, source=source, compiled=compiled)

    if DEFAULT_TEMPLATE not in templates:
        templates[DEFAULT_TEMPLATE] = Template(
            name=DEFAULT_TEMPLATE,
            source=DEFAULT_TEMPLATE_SOURCE,
            compiled=env.from_string(DEFAULT_TEMPLATE_SOURCE),
            builtin=True,
        )
        digest_parts.append(f"<builtin>:{compute_sha256(DEFAULT_TEMPLATE_SOURCE + CSS)}")

    logger.debug("Loaded %d templates and %d slots from %s", len(templates), len(slots), template_root)
    return TemplateRegistry(templates, slots, compute_sha256("\n".join(digest_parts)))


def select_template(document: Document, registry: TemplateRegistry) -> Template:
    """Pick a template by specificity.

    1. Explicit ``layout`` in the front matter (must exist)
    2. The deepest enclosing directory that names a template
    3. The default template

    Raises:
        TemplateNotFound: ``layout`` names a template that does not exist
    """
    layout = document.layout
    if layout is not None:
        name = layout[: -len(TEMPLATE_SUFFIX)] if layout.endswith(TEMPLATE_SUFFIX) else layout
        template = registry.get(name)
        if template is None:
            raise TemplateNotFound(document.path, layout)
        return template

    for candidate in convention_candidates(document.path):
        template = registry.get(candidate)
        if template is not None:
            return template

    return registry[DEFAULT_TEMPLATE]


def convention_candidates(rel_path: str) -> list[str]:
    """Directory-derived template names, most specific first.

    ``blog/2024/post.md`` -> ``["blog/2024", "blog"]``
    """
    parents = PurePosixPath(rel_path).parent.parts
    return ["/".join(parents[:i]) for i in range(len(parents), 0, -1)]


def _environment(template_root: Path) -> jinja2.Environment:
    env = jinja2.Environment(
        loader=jinja2.FileSystemLoader(str(template_root)),
        autoescape=True,
        auto_reload=False,
        keep_trailing_newline=True,
    )
    env.globals["default_css"] = Markup(CSS)
    return env


def _template_files(template_root: Path) -> list[str]:
    if not template_root.is_dir():
        return []
    files: list[str] = []
    for path in template_root.rglob("*"):
        rel = path.relative_to(template_root)
        if any(part.startswith(".") for part in rel.parts) or not path.is_file():
            continue
        files.append(rel.as_posix())
    return sorted(files)


def _compile(env: jinja2.Environment, rel: str) -> jinja2.Template:
    try:
        return env.get_template(rel)
    except jinja2.TemplateSyntaxError as e:
        raise TemplateError(rel, f"line {e.lineno}: {e.message}") from e
    except jinja2.TemplateError as e:
        raise TemplateError(rel, str(e)) from e
