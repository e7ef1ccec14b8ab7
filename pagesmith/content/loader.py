"""Content discovery and front matter parsing."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Iterator
from datetime import date, datetime
from pathlib import Path
from typing import Any

import yaml

from ..config import CONTENT_EXTENSIONS
from ..errors import DocumentError, MalformedMetadata, MissingRequiredField, ReadError
from .models import Document, MetaValue

logger = logging.getLogger(__name__)

FENCE = "---"
FENCE_CLOSERS = ("---", "...")

REQUIRED_FIELDS = ("title", "date")
LIST_FIELDS = ("images", "tags")


def discover(content_root: Path) -> list[str]:
    """List content documents under a root.

    Args:
        content_root: Directory to scan

    Returns:
        Sorted POSIX paths relative to the root. Hidden files and directories
        and files without a content extension are skipped.
    """
    if not content_root.is_dir():
        return []

    found: list[str] = []
    for path in content_root.rglob("*"):
        rel = path.relative_to(content_root)
        if any(part.startswith(".") for part in rel.parts):
            continue
        if not path.is_file():
            continue
        if path.suffix.lower() not in CONTENT_EXTENSIONS:
            logger.debug("Skipping non-content file %s", rel.as_posix())
            continue
        found.append(rel.as_posix())
    return sorted(found)


def split_front_matter(text: str, path: str = "<document>") -> tuple[str | None, str, int]:
    """Split a leading ``---`` fenced block from the body.

    Returns:
        (raw front matter or None, body, line number where the body starts)

    Raises:
        MalformedMetadata: The opening fence is never closed
    """
    lines = text.split("\n")
    if not lines or lines[0].rstrip() != FENCE:
        return None, text, 1

    for idx in range(1, len(lines)):
        if lines[idx].rstrip() in FENCE_CLOSERS:
            raw = "\n".join(lines[1:idx])
            body = "\n".join(lines[idx + 1 :])
            return raw, body, idx + 2

    raise MalformedMetadata(path, "front matter is not closed with '---'")


def parse_metadata(raw: str | None, path: str = "<document>") -> dict[str, MetaValue]:
    """Parse a YAML front matter block into normalized metadata.

    Values become strings, dates or lists of strings; keys keep their order.
    """
    if raw is None or not raw.strip():
        return {}

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise MalformedMetadata(path, f"invalid YAML front matter: {_yaml_problem(e)}") from e
    except (ValueError, TypeError) as e:
        # Raised by the YAML constructors, e.g. an impossible timestamp like 2024-02-30
        raise MalformedMetadata(path, f"invalid value in front matter: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise MalformedMetadata(path, "front matter must be a mapping of keys to values")

    metadata: dict[str, MetaValue] = {}
    for key, value in data.items():
        if value is None:
            continue
        name = str(key)
        metadata[name] = _normalize_value(path, name, value)

    for name in LIST_FIELDS:
        value = metadata.get(name)
        if isinstance(value, str):
            metadata[name] = [value]

    if "date" in metadata:
        metadata["date"] = _parse_date(path, metadata["date"])

    return metadata


def validate_metadata(metadata: dict[str, MetaValue], path: str = "<document>") -> None:
    """Raise MissingRequiredField unless every required field is present."""
    for name in REQUIRED_FIELDS:
        value = metadata.get(name)
        if value is None or (isinstance(value, str) and not value.strip()):
            raise MissingRequiredField(path, name)
    if not isinstance(metadata["title"], str):
        raise MalformedMetadata(path, "'title' must be a string")


def load_document(content_root: Path, rel_path: str) -> Document:
    """Read and parse one content document.

    Args:
        content_root: Content root directory
        rel_path: POSIX path relative to the root

    Returns:
        Validated Document (not yet rendered)
    """
    source = content_root / rel_path
    try:
        raw_bytes = source.read_bytes()
    except OSError as e:
        raise ReadError(rel_path, f"cannot read file: {e}") from e
    return parse_document(rel_path, raw_bytes)


def parse_document(rel_path: str, raw_bytes: bytes) -> Document:
    """Parse already-read source bytes into a validated Document."""
    try:
        text = raw_bytes.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise ReadError(rel_path, f"not valid UTF-8: {e}") from e

    text = text.replace("\r\n", "\n").replace("\r", "\n")
    raw_meta, body, body_line = split_front_matter(text, rel_path)
    metadata = parse_metadata(raw_meta, rel_path)
    validate_metadata(metadata, rel_path)

    return Document(
        path=rel_path,
        metadata=metadata,
        body=body,
        body_line=body_line,
        source_sha256=hashlib.sha256(raw_bytes).hexdigest(),
    )


def load_documents(
    content_root: Path,
    paths: list[str] | None = None,
) -> Iterator[tuple[str, Document | DocumentError]]:
    """Lazily load documents, yielding errors in place of failed documents."""
    for rel_path in paths if paths is not None else discover(content_root):
        try:
            yield rel_path, load_document(content_root, rel_path)
        except DocumentError as e:
            yield rel_path, e


def _normalize_value(path: str, key: str, value: Any) -> MetaValue:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, list):
        items: list[str] = []
        for item in value:
            if isinstance(item, (dict, list)):
                raise MalformedMetadata(path, f"'{key}' must be a list of plain values")
            if item is None:
                continue
            items.append(_scalar_text(item))
        return items
    if isinstance(value, dict):
        raise MalformedMetadata(path, f"'{key}' must not be a nested mapping")
    return _scalar_text(value)


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def _parse_date(path: str, value: MetaValue) -> date:
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text).date()
        except ValueError:
            pass
    raise MalformedMetadata(path, f"'date' is not a calendar date: {value!r}")


def _yaml_problem(e: yaml.YAMLError) -> str:
    mark = getattr(e, "problem_mark", None)
    problem = getattr(e, "problem", None) or str(e)
    if mark is not None:
        # problem_mark is relative to the block; +2 accounts for the opening fence
        return f"{problem} (line {mark.line + 2})"
    return problem
