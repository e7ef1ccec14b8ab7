"""Build manifest and page store for incremental builds."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from ..config import GENERATOR_VERSION, SCHEMA_VERSION

logger = logging.getLogger(__name__)


class ManifestEntry(BaseModel):
    """Record of one successfully written page."""

    fingerprint: str
    output_path: str
    output_sha256: str
    written_at: datetime


class BuildManifest(BaseModel):
    """Persisted map of document path -> last successful output."""

    schema_version: int = SCHEMA_VERSION
    generator_version: str = GENERATOR_VERSION
    entries: dict[str, ManifestEntry] = Field(default_factory=dict)


def compute_sha256(content: bytes | str) -> str:
    """Compute SHA256 hash of content.

    Args:
        content: Bytes or string to hash

    Returns:
        Hex-encoded SHA256 hash
    """
    if isinstance(content, str):
        content = content.encode("utf-8")
    return hashlib.sha256(content).hexdigest()


def compute_fingerprint(source_sha256: str, templates_digest: str, settings: dict[str, Any]) -> str:
    """Fingerprint everything that determines a page's bytes.

    Args:
        source_sha256: Hash of the document's raw bytes
        templates_digest: Digest of the whole template root
        settings: Output-affecting build settings

    Returns:
        Hex-encoded SHA256 fingerprint
    """
    payload = json.dumps(
        {
            "generator": GENERATOR_VERSION,
            "source": source_sha256,
            "templates": templates_digest,
            "settings": settings,
        },
        sort_keys=True,
        ensure_ascii=False,
    )
    return compute_sha256(payload)


def load_manifest(path: Path) -> BuildManifest:
    """Read a manifest, returning an empty one when missing or unusable.

    A manifest from another schema or generator version is discarded, which
    forces a full rebuild.
    """
    if not path.exists():
        return BuildManifest()
    try:
        manifest = BuildManifest.model_validate_json(path.read_bytes())
    except (OSError, ValidationError, ValueError) as e:
        logger.warning("Ignoring unreadable manifest %s: %s", path, e)
        return BuildManifest()
    if manifest.schema_version != SCHEMA_VERSION or manifest.generator_version != GENERATOR_VERSION:
        logger.info("Manifest %s is from another version; rebuilding everything", path)
        return BuildManifest()
    return manifest


def write_manifest(manifest: BuildManifest, path: Path) -> Path:
    """Write manifest to JSON (sorted keys, trailing newline, atomic replace).

    Args:
        manifest: Manifest object
        path: Destination file

    Returns:
        Path to written manifest file
    """
    payload = manifest.model_dump(mode="json")
    data = json.dumps(payload, indent=2, sort_keys=True, ensure_ascii=False) + "\n"
    atomic_write(path, data.encode("utf-8"))
    return path


def atomic_write(path: Path, content: bytes) -> None:
    """Write bytes so readers see either the old file or the complete new one."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(content)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


class PageStore:
    """Content-addressed store of previously produced page bytes.

    Structure: {store_dir}/{sha[:2]}/{sha[2:4]}/{sha}.html
    """

    def __init__(self, store_dir: Path):
        self.store_dir = store_dir

    def _key_path(self, sha256: str) -> Path:
        return self.store_dir / sha256[:2] / sha256[2:4] / f"{sha256}.html"

    def get(self, sha256: str) -> bytes | None:
        """Return stored bytes, or None when missing or corrupted."""
        path = self._key_path(sha256)
        try:
            content = path.read_bytes()
        except OSError:
            return None
        if compute_sha256(content) != sha256:
            logger.warning("Discarding corrupted page store entry %s", path)
            return None
        return content

    def put(self, content: bytes) -> str:
        """Store content and return its hash."""
        sha256 = compute_sha256(content)
        path = self._key_path(sha256)
        if not path.exists():
            atomic_write(path, content)
        return sha256

    def exists(self, sha256: str) -> bool:
        return self._key_path(sha256).exists()

    def prune(self, keep: set[str]) -> int:
        """Remove entries not in ``keep``.

        Returns:
            Number of files removed
        """
        if not self.store_dir.exists():
            return 0
        removed = 0
        for path in self.store_dir.rglob("*.html"):
            if path.stem not in keep:
                path.unlink()
                removed += 1
        return removed
