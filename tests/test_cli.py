"""Tests for the command-line interface."""

import io
import tempfile
import threading
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest.mock import patch

from pagesmith.cli import EXIT_FAILED, EXIT_INTERRUPTED, EXIT_OK, EXIT_USAGE, main


class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        self.root = Path(self._td.name)
        self.content = self.root / "content"
        self.content.mkdir()
        (self.content / "a.md").write_text("---\ntitle: A\ndate: 2024-01-01\n---\nHello\n", encoding="utf-8")

    def tearDown(self) -> None:
        self._td.cleanup()

    def _build(self, *extra: str) -> tuple[int, str, str]:
        argv = [
            "build",
            "--content",
            str(self.content),
            "--output",
            str(self.root / "public"),
            "--templates",
            str(self.root / "templates"),
            "--state",
            str(self.root / "state"),
            "--config",
            str(self.root / "site.yaml"),
            *extra,
        ]
        out, err = io.StringIO(), io.StringIO()
        with redirect_stdout(out), redirect_stderr(err):
            code = main(argv)
        return code, out.getvalue(), err.getvalue()

    def test_build_success(self) -> None:
        code, out, _ = self._build("-j", "1")
        self.assertEqual(code, EXIT_OK)
        self.assertIn("Site built", out)
        self.assertTrue((self.root / "public" / "a.html").exists())

    def test_build_reports_failures(self) -> None:
        (self.content / "b.md").write_text("---\ndate: 2024-01-01\n---\n", encoding="utf-8")
        code, _, err = self._build()
        self.assertEqual(code, EXIT_FAILED)
        self.assertIn("b.md: MissingRequiredField", err)

    def test_site_config_reaches_templates(self) -> None:
        (self.root / "site.yaml").write_text("title: Field Notes\n", encoding="utf-8")
        code, _, _ = self._build()
        self.assertEqual(code, EXIT_OK)
        self.assertIn("Field Notes", (self.root / "public" / "a.html").read_text(encoding="utf-8"))

    def test_invalid_site_config_is_usage_error(self) -> None:
        (self.root / "site.yaml").write_text("title: [unclosed\n", encoding="utf-8")
        code, _, err = self._build()
        self.assertEqual(code, EXIT_USAGE)
        self.assertIn("Invalid site config", err)

    def test_invalid_worker_count(self) -> None:
        code, _, _ = self._build("--workers", "0")
        self.assertEqual(code, EXIT_USAGE)

    def test_interrupt_before_dispatch_exits_130(self) -> None:
        with patch("pagesmith.site.build.build_site", side_effect=KeyboardInterrupt) as build:
            code, _, err = self._build()
        self.assertEqual(code, EXIT_INTERRUPTED)
        self.assertIn("Interrupted", err)
        cancel = build.call_args.kwargs["cancel"]
        self.assertIsInstance(cancel, threading.Event)
        self.assertTrue(cancel.is_set())

    def test_clean_removes_state(self) -> None:
        self._build()
        state = self.root / "state"
        self.assertTrue(state.exists())

        with redirect_stdout(io.StringIO()):
            code = main(["clean", "--state", str(state)])

        self.assertEqual(code, EXIT_OK)
        self.assertFalse(state.exists())
        self.assertTrue((self.root / "public" / "a.html").exists())


if __name__ == "__main__":
    unittest.main()
