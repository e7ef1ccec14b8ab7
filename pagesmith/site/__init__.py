"""Templates, composition, manifest and the build orchestrator."""

from .build import BuildReport, DocumentResult, DocumentState, build_site
from .compose import Page, compose, output_path_for
from .manifest import BuildManifest, ManifestEntry, PageStore, compute_sha256
from .templates import Template, TemplateRegistry, load_templates, select_template

__all__ = [
    "build_site",
    "BuildReport",
    "DocumentResult",
    "DocumentState",
    "compose",
    "output_path_for",
    "Page",
    "BuildManifest",
    "ManifestEntry",
    "PageStore",
    "compute_sha256",
    "load_templates",
    "select_template",
    "Template",
    "TemplateRegistry",
]
