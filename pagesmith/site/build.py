"""Build orchestrator: content root -> output site."""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from collections.abc import Iterable
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from ..config import BuildSettings
from ..content.loader import discover, parse_document
from ..errors import DocumentError, OutputRootError, ReadError, WriteError
from ..render.markdown import render
from .compose import compose, output_path_for
from .manifest import (
    BuildManifest,
    ManifestEntry,
    PageStore,
    atomic_write,
    compute_fingerprint,
    compute_sha256,
    load_manifest,
    write_manifest,
)
from .templates import TemplateRegistry, load_templates

logger = logging.getLogger(__name__)


class DocumentState(str, Enum):
    DISCOVERED = "discovered"
    LOADED = "loaded"
    RENDERED = "rendered"
    COMPOSED = "composed"
    WRITTEN = "written"
    SKIPPED = "skipped"
    LOAD_FAILED = "load_failed"
    RENDER_FAILED = "render_failed"
    COMPOSE_FAILED = "compose_failed"
    WRITE_FAILED = "write_failed"


FAILED_STATES = frozenset(
    {
        DocumentState.LOAD_FAILED,
        DocumentState.RENDER_FAILED,
        DocumentState.COMPOSE_FAILED,
        DocumentState.WRITE_FAILED,
    }
)


class DocumentResult(BaseModel):
    """Terminal state of one document in one build."""

    path: str
    state: DocumentState
    output_path: str | None = None
    template: str | None = None
    reused: bool = False
    error_kind: str | None = None
    message: str | None = None
    fingerprint: str | None = None
    output_sha256: str | None = None

    @property
    def failed(self) -> bool:
        return self.state in FAILED_STATES


class BuildReport(BaseModel):
    """Result of building a site."""

    model_config = {"arbitrary_types_allowed": True}

    output_dir: Path
    incremental: bool
    results: list[DocumentResult]
    removed: list[str]
    cancelled: bool = False

    @property
    def failures(self) -> list[DocumentResult]:
        return [r for r in self.results if r.failed]

    @property
    def written(self) -> list[DocumentResult]:
        return [r for r in self.results if r.state == DocumentState.WRITTEN]

    @property
    def reused(self) -> list[DocumentResult]:
        return [r for r in self.written if r.reused]

    @property
    def ok(self) -> bool:
        return not self.failures and not self.cancelled

    @property
    def exit_code(self) -> int:
        return 0 if self.ok else 1


@dataclass(frozen=True)
class _BuildContext:
    """Read-only state shared by every worker."""

    settings: BuildSettings
    registry: TemplateRegistry
    store: PageStore
    output_inputs: dict[str, Any]
    incremental: bool


def build_site(
    settings: BuildSettings,
    *,
    incremental: bool = True,
    only: Iterable[str] | None = None,
    cancel: threading.Event | None = None,
) -> BuildReport:
    """Build every content document into a page under the output root.

    Args:
        settings: Resolved build settings
        incremental: Reuse pages whose fingerprint matches the manifest
        only: Restrict processing to these relative paths; other documents
            keep their previous output and manifest entries
        cancel: Stops dispatching new documents once set

    Returns:
        BuildReport with one result per processed document

    Raises:
        OutputRootError: The output root or state directory is not writable
        TemplateError: A template failed to compile
    """
    output_dir = settings.output_dir
    _prepare_dir(output_dir, "output root")
    _prepare_dir(settings.state_dir, "state directory")

    # Templates are loaded once, before any document is processed.
    registry = load_templates(settings.template_dir)
    store = PageStore(settings.page_store_dir)
    previous = load_manifest(settings.manifest_path)

    paths = discover(settings.content_dir)
    discovered = set(paths)
    if only is not None:
        wanted = set(only)
        targets = [p for p in paths if p in wanted]
    else:
        targets = paths

    ctx = _BuildContext(
        settings=settings,
        registry=registry,
        store=store,
        output_inputs=settings.output_inputs(),
        incremental=incremental,
    )
    logger.info(
        "Building %d of %d documents (%s)",
        len(targets),
        len(paths),
        "incremental" if incremental else "full",
    )

    manifest = BuildManifest()
    results: list[DocumentResult] = []
    processed: set[str] = set()
    cancelled = False

    targets, collisions = _split_collisions(paths, targets)
    for result in collisions:
        processed.add(result.path)
        _record(result, manifest, previous, results)

    pending: set[Future[DocumentResult]] = set()
    dispatched = 0
    queue = iter(targets)
    limit = max(1, settings.workers) * 2

    with ThreadPoolExecutor(max_workers=settings.workers, thread_name_prefix="pagesmith") as pool:
        try:
            while True:
                # Bounded dispatch; nothing new is submitted once cancelled.
                while len(pending) < limit and not _is_set(cancel):
                    rel_path = next(queue, None)
                    if rel_path is None:
                        break
                    processed.add(rel_path)
                    dispatched += 1
                    pending.add(pool.submit(_process_document, rel_path, ctx, previous.entries.get(rel_path)))
                if not pending:
                    break
                done, pending = wait(pending, return_when=FIRST_COMPLETED)
                for future in done:
                    _record(future.result(), manifest, previous, results)
        except KeyboardInterrupt:
            logger.warning("Interrupted; finishing %d in-flight documents", len(pending))
            cancelled = True
            for future in pending:
                _record(future.result(), manifest, previous, results)
            pending = set()

    if _is_set(cancel) and dispatched < len(targets):
        cancelled = True

    # Documents not processed this round keep their previous page.
    for rel_path, entry in previous.entries.items():
        if rel_path in discovered and rel_path not in processed:
            manifest.entries[rel_path] = entry

    removed = _remove_stale_outputs(output_dir, previous, manifest)

    manifest.entries = dict(sorted(manifest.entries.items()))
    try:
        write_manifest(manifest, settings.manifest_path)
    except OSError as e:
        raise OutputRootError(str(settings.manifest_path), f"cannot write manifest: {e}") from e

    if not cancelled:
        pruned = store.prune({e.output_sha256 for e in manifest.entries.values()})
        if pruned:
            logger.debug("Pruned %d unused pages from the page store", pruned)

    results.sort(key=lambda r: r.path)
    report = BuildReport(
        output_dir=output_dir,
        incremental=incremental,
        results=results,
        removed=removed,
        cancelled=cancelled,
    )
    logger.info(
        "Built %d pages (%d reused), %d failed, %d removed",
        len(report.written),
        len(report.reused),
        len(report.failures),
        len(removed),
    )
    return report


def _process_document(
    rel_path: str,
    ctx: _BuildContext,
    previous: ManifestEntry | None,
) -> DocumentResult:
    """Discovered -> Loaded -> Rendered -> Composed -> Written for one document."""
    settings = ctx.settings
    try:
        raw = (settings.content_dir / rel_path).read_bytes()
    except OSError as e:
        return _failed(rel_path, DocumentState.LOAD_FAILED, ReadError(rel_path, f"cannot read file: {e}"))

    fingerprint = compute_fingerprint(compute_sha256(raw), ctx.registry.digest, ctx.output_inputs)

    if ctx.incremental and previous is not None and previous.fingerprint == fingerprint:
        reused = _reuse_page(rel_path, ctx, previous)
        if reused is not None:
            return reused

    try:
        document = parse_document(rel_path, raw)
    except DocumentError as e:
        return _failed(rel_path, DocumentState.LOAD_FAILED, e)
    logger.debug("%s: %s", rel_path, DocumentState.LOADED.value)

    try:
        document = document.with_rendered(render(document.body, rel_path, document.body_line))
    except DocumentError as e:
        return _failed(rel_path, DocumentState.RENDER_FAILED, e)
    logger.debug("%s: %s", rel_path, DocumentState.RENDERED.value)

    if not document.is_output:
        return DocumentResult(path=rel_path, state=DocumentState.SKIPPED)

    try:
        page = compose(document, ctx.registry, settings)
    except DocumentError as e:
        return _failed(rel_path, DocumentState.COMPOSE_FAILED, e)
    logger.debug("%s: %s with template %s", rel_path, DocumentState.COMPOSED.value, page.template)

    try:
        atomic_write(settings.output_dir / page.output_path, page.content)
        output_sha256 = ctx.store.put(page.content)
    except OSError as e:
        return _failed(rel_path, DocumentState.WRITE_FAILED, WriteError(rel_path, f"cannot write page: {e}"))
    logger.debug("%s: %s to %s", rel_path, DocumentState.WRITTEN.value, page.output_path)

    return DocumentResult(
        path=rel_path,
        state=DocumentState.WRITTEN,
        output_path=page.output_path,
        template=page.template,
        fingerprint=fingerprint,
        output_sha256=output_sha256,
    )


def _reuse_page(rel_path: str, ctx: _BuildContext, previous: ManifestEntry) -> DocumentResult | None:
    """Copy the previously produced page; None when it is no longer available."""
    content = ctx.store.get(previous.output_sha256)
    if content is None:
        return None

    target = ctx.settings.output_dir / previous.output_path
    if not _has_content(target, previous.output_sha256):
        try:
            atomic_write(target, content)
        except OSError as e:
            return _failed(rel_path, DocumentState.WRITE_FAILED, WriteError(rel_path, f"cannot write page: {e}"))

    return DocumentResult(
        path=rel_path,
        state=DocumentState.WRITTEN,
        output_path=previous.output_path,
        reused=True,
        fingerprint=previous.fingerprint,
        output_sha256=previous.output_sha256,
    )


def _record(
    result: DocumentResult,
    manifest: BuildManifest,
    previous: BuildManifest,
    results: list[DocumentResult],
) -> None:
    """Apply a finished document to the manifest. Only the dispatching thread calls this."""
    results.append(result)
    if result.failed:
        logger.warning("%s: %s (%s)", result.path, result.state.value, result.message)
        return
    if result.state != DocumentState.WRITTEN:
        return

    old = previous.entries.get(result.path)
    if result.reused and old is not None:
        manifest.entries[result.path] = old
        return

    manifest.entries[result.path] = ManifestEntry(
        fingerprint=result.fingerprint or "",
        output_path=result.output_path or "",
        output_sha256=result.output_sha256 or "",
        written_at=datetime.now(UTC),
    )


def _split_collisions(paths: list[str], targets: list[str]) -> tuple[list[str], list[DocumentResult]]:
    """Fail documents whose output path is already claimed by an earlier one."""
    owners: dict[str, str] = {}
    for rel_path in paths:
        owners.setdefault(output_path_for(rel_path), rel_path)

    keep: list[str] = []
    collisions: list[DocumentResult] = []
    for rel_path in targets:
        owner = owners[output_path_for(rel_path)]
        if owner == rel_path:
            keep.append(rel_path)
            continue
        error = WriteError(rel_path, f"output path {output_path_for(rel_path)} is already produced by {owner}")
        collisions.append(_failed(rel_path, DocumentState.WRITE_FAILED, error))
    return keep, collisions


def _failed(rel_path: str, state: DocumentState, error: DocumentError) -> DocumentResult:
    return DocumentResult(
        path=rel_path,
        state=state,
        error_kind=error.kind,
        message=error.message,
    )


def _remove_stale_outputs(output_dir: Path, previous: BuildManifest, manifest: BuildManifest) -> list[str]:
    """Delete pages whose document disappeared, failed or stopped producing output."""
    current = {e.output_path for e in manifest.entries.values()}
    removed: list[str] = []
    for rel_path, entry in sorted(previous.entries.items()):
        if rel_path in manifest.entries or entry.output_path in current:
            continue
        target = output_dir / entry.output_path
        if target.is_file():
            target.unlink()
            _remove_empty_parents(target.parent, output_dir)
        removed.append(entry.output_path)
        logger.debug("Removed stale page %s", entry.output_path)
    return removed


def _remove_empty_parents(directory: Path, stop: Path) -> None:
    stop = stop.resolve()
    directory = directory.resolve()
    while directory != stop and stop in directory.parents:
        try:
            directory.rmdir()
        except OSError:
            return
        directory = directory.parent


def _has_content(path: Path, sha256: str) -> bool:
    try:
        return compute_sha256(path.read_bytes()) == sha256
    except OSError:
        return False


def _prepare_dir(path: Path, what: str) -> None:
    """Create a directory and prove it is writable, or abort the build."""
    try:
        path.mkdir(parents=True, exist_ok=True)
        fd, probe = tempfile.mkstemp(dir=path, prefix=".pagesmith-probe-")
        os.close(fd)
        os.unlink(probe)
    except OSError as e:
        raise OutputRootError(str(path), f"{what} is not writable: {e}") from e


def _is_set(event: threading.Event | None) -> bool:
    return event is not None and event.is_set()
