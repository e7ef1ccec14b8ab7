"""serve mode: watch the project, rebuild incrementally, preview over HTTP."""

from __future__ import annotations

import functools
import http.server
import logging
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from ..config import CONTENT_EXTENSIONS, DEFAULT_PORT, WATCH_INTERVAL, BuildSettings
from ..errors import TemplateError
from .build import BuildReport, build_site

logger = logging.getLogger(__name__)

# relative path -> (mtime_ns, size)
Snapshot = dict[str, tuple[int, int]]

CONTENT = "content"
TEMPLATES = "templates"
CONFIG = "config"


@dataclass(frozen=True)
class ChangeEvent:
    kind: str
    path: str
    change: str


def snapshot(root: Path, suffixes: tuple[str, ...] | None = None) -> Snapshot:
    """Record mtime and size of every visible file under ``root``."""
    state: Snapshot = {}
    if root.is_file():
        st = root.stat()
        return {root.name: (st.st_mtime_ns, st.st_size)}
    if not root.is_dir():
        return state
    for path in root.rglob("*"):
        rel = path.relative_to(root)
        if any(part.startswith(".") for part in rel.parts):
            continue
        if suffixes is not None and path.suffix.lower() not in suffixes:
            continue
        try:
            st = path.stat()
        except OSError:
            # Vanished between listing and stat
            continue
        if path.is_file():
            state[rel.as_posix()] = (st.st_mtime_ns, st.st_size)
    return state


def diff_snapshots(old: Snapshot, new: Snapshot) -> list[tuple[str, str]]:
    """Return sorted ``(path, change)`` pairs; change is added, modified or removed."""
    changes: list[tuple[str, str]] = []
    for path in sorted(set(old) | set(new)):
        if path not in old:
            changes.append((path, "added"))
        elif path not in new:
            changes.append((path, "removed"))
        elif old[path] != new[path]:
            changes.append((path, "modified"))
    return changes


class Watcher(threading.Thread):
    """Polling watcher that turns filesystem changes into queued events."""

    def __init__(
        self,
        roots: list[tuple[str, Path, tuple[str, ...] | None]],
        events: queue.Queue[ChangeEvent],
        interval: float = WATCH_INTERVAL,
    ):
        super().__init__(name="pagesmith-watcher", daemon=True)
        self.roots = roots
        self.events = events
        self.interval = interval
        self._halt = threading.Event()
        self._snapshots = {kind: snapshot(root, suffixes) for kind, root, suffixes in roots}

    def scan(self) -> list[ChangeEvent]:
        """Compare against the last snapshot, enqueue and return the changes."""
        found: list[ChangeEvent] = []
        for kind, root, suffixes in self.roots:
            current = snapshot(root, suffixes)
            for path, change in diff_snapshots(self._snapshots[kind], current):
                event = ChangeEvent(kind=kind, path=path, change=change)
                found.append(event)
                self.events.put(event)
            self._snapshots[kind] = current
        return found

    def run(self) -> None:
        while not self._halt.wait(self.interval):
            self.scan()

    def stop(self) -> None:
        self._halt.set()


def drain(events: queue.Queue[ChangeEvent], first: ChangeEvent) -> list[ChangeEvent]:
    """Collect ``first`` plus everything already queued into one batch."""
    batch = [first]
    while True:
        try:
            batch.append(events.get_nowait())
        except queue.Empty:
            return batch


def plan_rebuild(batch: list[ChangeEvent]) -> set[str] | None:
    """Content paths to rebuild, or None when the whole site must be considered."""
    if any(event.kind != CONTENT for event in batch):
        return None
    return {event.path for event in batch}


class _PreviewHandler(http.server.SimpleHTTPRequestHandler):
    def log_message(self, format: str, *args) -> None:  # noqa: A002 - stdlib signature
        logger.debug("%s - %s", self.address_string(), format % args)


def make_server(output_dir: Path, port: int, host: str = "127.0.0.1") -> http.server.ThreadingHTTPServer:
    handler = functools.partial(_PreviewHandler, directory=str(output_dir))
    return http.server.ThreadingHTTPServer((host, port), handler)


def serve(
    load_settings: Callable[[], BuildSettings],
    *,
    config_path: Path | None = None,
    port: int = DEFAULT_PORT,
    interval: float = WATCH_INTERVAL,
    on_report: Callable[[BuildReport], None] | None = None,
) -> int:
    """Build, then rebuild on every change until interrupted.

    Builds run one batch at a time on this thread, so the same document is
    never built concurrently by two builds.
    """
    settings = load_settings()
    _rebuild(settings, None, on_report)

    events: queue.Queue[ChangeEvent] = queue.Queue()
    roots: list[tuple[str, Path, tuple[str, ...] | None]] = [
        (CONTENT, settings.content_dir, CONTENT_EXTENSIONS),
        (TEMPLATES, settings.template_dir, None),
    ]
    if config_path is not None:
        roots.append((CONFIG, config_path, None))
    watcher = Watcher(roots, events, interval)

    httpd = make_server(settings.output_dir, port)
    server_thread = threading.Thread(target=httpd.serve_forever, name="pagesmith-http", daemon=True)
    server_thread.start()
    watcher.start()
    logger.info("Serving %s at http://127.0.0.1:%d/", settings.output_dir, httpd.server_address[1])

    try:
        while True:
            try:
                first = events.get(timeout=interval)
            except queue.Empty:
                continue
            batch = drain(events, first)
            logger.info("Detected %d change(s); rebuilding", len(batch))

            if any(event.kind == CONFIG for event in batch):
                try:
                    settings = load_settings()
                except ValueError as e:
                    logger.error("Keeping previous settings: %s", e)

            _rebuild(settings, plan_rebuild(batch), on_report)
    except KeyboardInterrupt:
        logger.info("Stopping")
    finally:
        watcher.stop()
        httpd.shutdown()
        httpd.server_close()

    return 0


def _rebuild(
    settings: BuildSettings,
    only: set[str] | None,
    on_report: Callable[[BuildReport], None] | None,
) -> None:
    try:
        report = build_site(settings, only=only)
    except TemplateError as e:
        # Keep serving the last good output until the template is fixed
        logger.error("Build aborted: %s", e)
        return
    if on_report:
        on_report(report)
