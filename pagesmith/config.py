"""Configuration constants, paths and build settings for pagesmith."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from . import __version__

# Conventional project layout, relative to the working directory.
# Override via PAGESMITH_* environment variables.
CONTENT_DIR = Path(os.getenv("PAGESMITH_CONTENT_DIR", "content"))
OUTPUT_DIR = Path(os.getenv("PAGESMITH_OUTPUT_DIR", "public"))
TEMPLATE_DIR = Path(os.getenv("PAGESMITH_TEMPLATE_DIR", "templates"))

# Manifest and page store live here; safe to delete (forces a full rebuild).
STATE_DIR = Path(os.getenv("PAGESMITH_STATE_DIR", ".pagesmith"))

SITE_CONFIG_FILE = Path("site.yaml")

# Produced by the external styling tool; only linked, never built here.
DEFAULT_STYLESHEET = "assets/site.css"

DEFAULT_WORKERS = int(os.getenv("PAGESMITH_WORKERS", "0")) or (os.cpu_count() or 1)

# Versioning for fingerprints and the persisted manifest
GENERATOR_VERSION = __version__
SCHEMA_VERSION = 1

CONTENT_EXTENSIONS = (".md", ".markdown")
OUTPUT_EXTENSION = ".html"

DEFAULT_TEMPLATE = "default"
SLOTS_DIR = "slots"

# serve mode
DEFAULT_PORT = 8000
WATCH_INTERVAL = 0.5


class SiteConfig(BaseModel):
    """Site-wide values exposed to templates as ``site``."""

    model_config = ConfigDict(extra="allow", frozen=True)

    title: str = ""
    description: str = ""
    base_url: str = ""
    language: str = "en"

    @classmethod
    def load(cls, path: Path) -> SiteConfig:
        """Load settings from a YAML file, falling back to defaults."""
        if not path.exists():
            return cls()
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid site config {path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Invalid site config {path}: expected a mapping")
        try:
            return cls(**data)
        except ValidationError as e:
            raise ValueError(f"Invalid site config {path}: {e}") from e


class BuildSettings(BaseModel):
    """Resolved inputs for a single build."""

    model_config = ConfigDict(frozen=True)

    content_dir: Path = CONTENT_DIR
    output_dir: Path = OUTPUT_DIR
    template_dir: Path = TEMPLATE_DIR
    state_dir: Path = STATE_DIR
    stylesheet: str | None = DEFAULT_STYLESHEET
    workers: int = Field(default=DEFAULT_WORKERS, ge=1)
    site: SiteConfig = Field(default_factory=SiteConfig)

    @property
    def manifest_path(self) -> Path:
        return self.state_dir / "manifest.json"

    @property
    def page_store_dir(self) -> Path:
        return self.state_dir / "pages"

    def output_inputs(self) -> dict[str, Any]:
        """Settings that change page bytes; folded into every fingerprint."""
        return {
            "stylesheet": self.stylesheet,
            "site": self.site.model_dump(mode="json"),
        }
