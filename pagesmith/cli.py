"""CLI entry point for pagesmith.

This CLI intentionally avoids third-party CLI frameworks so the project remains
easy to run in constrained environments.
"""

from __future__ import annotations

import argparse
import logging
import shutil
import sys
import threading
from pathlib import Path
from typing import Any

from . import __version__
from .config import (
    CONTENT_DIR,
    DEFAULT_PORT,
    DEFAULT_STYLESHEET,
    DEFAULT_WORKERS,
    OUTPUT_DIR,
    SITE_CONFIG_FILE,
    STATE_DIR,
    TEMPLATE_DIR,
    WATCH_INTERVAL,
    BuildSettings,
    SiteConfig,
)
from .errors import OutputRootError, TemplateError
from .log import setup_logging

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130


def app(argv: list[str] | None = None) -> None:
    """Console script entrypoint (kept as `app` for packaging compatibility)."""
    raise SystemExit(main(argv))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="pagesmith",
        description="Build a static site from Markdown content, templates and front matter.",
    )
    parser.add_argument(
        "--version",
        "-V",
        action="version",
        version=f"pagesmith {__version__}",
    )

    sub = parser.add_subparsers(dest="cmd", required=True)

    p_build = sub.add_parser("build", help="Build the site")
    _add_build_arguments(p_build)
    p_build.add_argument("--full", action="store_true", help="Ignore the manifest and rebuild every page")

    p_serve = sub.add_parser("serve", help="Build, watch for changes and preview over HTTP")
    _add_build_arguments(p_serve)
    p_serve.add_argument("--port", "-p", type=int, default=DEFAULT_PORT, help="Preview server port")
    p_serve.add_argument(
        "--interval",
        type=float,
        default=WATCH_INTERVAL,
        help="Seconds between filesystem polls",
    )

    p_clean = sub.add_parser("clean", help="Remove the manifest and page store")
    p_clean.add_argument("--state", type=Path, default=STATE_DIR, help="State directory")
    p_clean.add_argument("--output", "-o", type=Path, default=None, help="Also remove this output root")
    p_clean.add_argument("--verbose", "-v", action="store_true", help="Debug logging")

    args = parser.parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    if args.cmd == "build":
        return _cmd_build(args)
    if args.cmd == "serve":
        return _cmd_serve(args)
    if args.cmd == "clean":
        return _cmd_clean(args)

    parser.print_help()
    return EXIT_USAGE


def _add_build_arguments(p: argparse.ArgumentParser) -> None:
    p.add_argument("--content", "-c", type=Path, default=CONTENT_DIR, help="Content root")
    p.add_argument("--output", "-o", type=Path, default=OUTPUT_DIR, help="Output root")
    p.add_argument("--templates", "-t", type=Path, default=TEMPLATE_DIR, help="Template root")
    p.add_argument("--state", type=Path, default=STATE_DIR, help="Manifest and page store directory")
    p.add_argument("--config", type=Path, default=SITE_CONFIG_FILE, help="Site config (YAML)")
    p.add_argument(
        "--stylesheet",
        default=DEFAULT_STYLESHEET,
        help="Stylesheet path produced by the asset pipeline ('' to omit)",
    )
    p.add_argument("--workers", "-j", type=int, default=DEFAULT_WORKERS, help="Worker threads")
    p.add_argument("--verbose", "-v", action="store_true", help="Debug logging")


def _settings_from_args(args: Any) -> BuildSettings:
    """Raises ValueError for an invalid site config or worker count."""
    if args.workers < 1:
        raise ValueError("--workers must be at least 1")
    return BuildSettings(
        content_dir=args.content,
        output_dir=args.output,
        template_dir=args.templates,
        state_dir=args.state,
        stylesheet=args.stylesheet or None,
        workers=args.workers,
        site=SiteConfig.load(args.config),
    )


def _cmd_build(args: Any) -> int:
    from .site.build import build_site

    try:
        settings = _settings_from_args(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    cancel = threading.Event()
    try:
        report = build_site(settings, incremental=not args.full, cancel=cancel)
    except (OutputRootError, TemplateError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except KeyboardInterrupt:
        # Interrupted outside the dispatch loop (template loading, discovery, manifest write)
        cancel.set()
        print("Interrupted", file=sys.stderr)
        return EXIT_INTERRUPTED

    _print_report(report)
    if report.cancelled:
        return EXIT_INTERRUPTED
    return report.exit_code


def _cmd_serve(args: Any) -> int:
    from .site.watch import serve

    try:
        _settings_from_args(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE

    try:
        return serve(
            lambda: _settings_from_args(args),
            config_path=args.config,
            port=args.port,
            interval=args.interval,
            on_report=_print_report,
        )
    except OutputRootError as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_USAGE
    except OSError as e:
        print(f"Error: cannot start preview server: {e}", file=sys.stderr)
        return EXIT_FAILED


def _cmd_clean(args: Any) -> int:
    targets = [args.state]
    if args.output is not None:
        targets.append(args.output)

    for target in targets:
        if not target.exists():
            print(f"Nothing to remove: {target}")
            continue
        try:
            shutil.rmtree(target)
        except OSError as e:
            print(f"Error removing {target}: {e}", file=sys.stderr)
            return EXIT_FAILED
        print(f"Removed {target}")
    return EXIT_OK


def _print_report(report: Any) -> None:
    failures = report.failures
    mark = "✓" if report.ok else "✗"
    print(f"{mark} Site built" + (" (interrupted)" if report.cancelled else ""))
    print(f"  Output: {report.output_dir}")
    print(f"  Pages: {len(report.written)} ({len(report.reused)} unchanged)")
    if report.removed:
        print(f"  Removed: {len(report.removed)}")

    if failures:
        print(f"\nFailed ({len(failures)}):", file=sys.stderr)
        for r in failures:
            print(f"  - {r.path}: {r.error_kind}: {r.message}", file=sys.stderr)


if __name__ == "__main__":
    app()
