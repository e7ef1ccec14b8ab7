"""Tests for change detection in serve mode."""

import queue
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from pagesmith.config import CONTENT_EXTENSIONS, BuildSettings
from pagesmith.errors import TemplateError
from pagesmith.site.watch import (
    CONFIG,
    CONTENT,
    TEMPLATES,
    ChangeEvent,
    Watcher,
    _rebuild,
    diff_snapshots,
    drain,
    plan_rebuild,
    snapshot,
)


class TestSnapshots(unittest.TestCase):
    def test_snapshot_filters_hidden_and_suffixes(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            (root / "a.md").write_text("a", encoding="utf-8")
            (root / "notes.txt").write_text("n", encoding="utf-8")
            (root / ".git").mkdir()
            (root / ".git" / "x.md").write_text("x", encoding="utf-8")

            self.assertEqual(sorted(snapshot(root, CONTENT_EXTENSIONS)), ["a.md"])
            self.assertEqual(sorted(snapshot(root)), ["a.md", "notes.txt"])

    def test_snapshot_of_single_file_and_missing_root(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            config = Path(td) / "site.yaml"
            config.write_text("title: x\n", encoding="utf-8")
            self.assertEqual(list(snapshot(config)), ["site.yaml"])
            self.assertEqual(snapshot(Path(td) / "missing"), {})

    def test_diff_snapshots(self) -> None:
        old = {"a.md": (1, 1), "b.md": (1, 1), "c.md": (1, 1)}
        new = {"a.md": (1, 1), "b.md": (2, 5), "d.md": (1, 1)}
        self.assertEqual(
            diff_snapshots(old, new),
            [("b.md", "modified"), ("c.md", "removed"), ("d.md", "added")],
        )


class TestWatcher(unittest.TestCase):
    def test_scan_reports_changes_once(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            content = Path(td) / "content"
            templates = Path(td) / "templates"
            content.mkdir()
            templates.mkdir()
            (content / "a.md").write_text("a", encoding="utf-8")

            events: queue.Queue[ChangeEvent] = queue.Queue()
            watcher = Watcher(
                [(CONTENT, content, CONTENT_EXTENSIONS), (TEMPLATES, templates, None)],
                events,
            )

            (content / "a.md").write_text("a changed", encoding="utf-8")
            (content / "b.md").write_text("b", encoding="utf-8")
            (templates / "default.html").write_text("{{ content }}", encoding="utf-8")

            found = watcher.scan()
            self.assertEqual(
                found,
                [
                    ChangeEvent(CONTENT, "a.md", "modified"),
                    ChangeEvent(CONTENT, "b.md", "added"),
                    ChangeEvent(TEMPLATES, "default.html", "added"),
                ],
            )
            self.assertEqual(events.qsize(), 3)
            self.assertEqual(watcher.scan(), [])


class TestPlanning(unittest.TestCase):
    def test_drain_collects_queued_events(self) -> None:
        events: queue.Queue[ChangeEvent] = queue.Queue()
        first = ChangeEvent(CONTENT, "a.md", "modified")
        events.put(ChangeEvent(CONTENT, "b.md", "added"))
        batch = drain(events, first)
        self.assertEqual([e.path for e in batch], ["a.md", "b.md"])
        self.assertTrue(events.empty())

    def test_content_only_batch_rebuilds_those_paths(self) -> None:
        batch = [ChangeEvent(CONTENT, "a.md", "modified"), ChangeEvent(CONTENT, "b.md", "removed")]
        self.assertEqual(plan_rebuild(batch), {"a.md", "b.md"})

    def test_template_or_config_change_rebuilds_everything(self) -> None:
        self.assertIsNone(plan_rebuild([ChangeEvent(TEMPLATES, "default.html", "modified")]))
        self.assertIsNone(
            plan_rebuild([ChangeEvent(CONTENT, "a.md", "added"), ChangeEvent(CONFIG, "site.yaml", "modified")])
        )

    def test_template_error_keeps_serving(self) -> None:
        reports = []
        with patch("pagesmith.site.watch.build_site", side_effect=TemplateError("default.html", "bad")):
            _rebuild(BuildSettings(), None, reports.append)
        self.assertEqual(reports, [])


if __name__ == "__main__":
    unittest.main()
