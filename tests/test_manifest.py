"""Tests for the build manifest and page store."""

import json
import tempfile
import unittest
from datetime import UTC, datetime
from pathlib import Path

from pagesmith.config import GENERATOR_VERSION, SCHEMA_VERSION
from pagesmith.site.manifest import (
    BuildManifest,
    ManifestEntry,
    PageStore,
    atomic_write,
    compute_fingerprint,
    compute_sha256,
    load_manifest,
    write_manifest,
)


def _manifest() -> BuildManifest:
    return BuildManifest(
        entries={
            "b.md": ManifestEntry(
                fingerprint="f2",
                output_path="b.html",
                output_sha256="s2",
                written_at=datetime(2024, 1, 2, tzinfo=UTC),
            ),
            "a.md": ManifestEntry(
                fingerprint="f1",
                output_path="a.html",
                output_sha256="s1",
                written_at=datetime(2024, 1, 1, tzinfo=UTC),
            ),
        }
    )


class TestHashing(unittest.TestCase):
    def test_compute_sha256(self) -> None:
        self.assertEqual(
            compute_sha256("hello world"),
            "b94d27b9934d3e08a52e52d7da7dabfac484efe37a5380ee9088f7ace2efcde9",
        )
        self.assertEqual(compute_sha256(b"hello world"), compute_sha256("hello world"))

    def test_fingerprint_depends_on_every_input(self) -> None:
        base = compute_fingerprint("src", "tpl", {"stylesheet": "a.css"})
        self.assertEqual(base, compute_fingerprint("src", "tpl", {"stylesheet": "a.css"}))
        self.assertNotEqual(base, compute_fingerprint("src2", "tpl", {"stylesheet": "a.css"}))
        self.assertNotEqual(base, compute_fingerprint("src", "tpl2", {"stylesheet": "a.css"}))
        self.assertNotEqual(base, compute_fingerprint("src", "tpl", {"stylesheet": None}))


class TestManifestFile(unittest.TestCase):
    def test_write_is_sorted_and_stable(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "state" / "manifest.json"
            write_manifest(_manifest(), path)
            first = path.read_bytes()
            write_manifest(load_manifest(path), path)

            self.assertEqual(path.read_bytes(), first)
            self.assertTrue(first.endswith(b"\n"))
            data = json.loads(first)
            self.assertEqual(list(data["entries"]), ["a.md", "b.md"])
            self.assertEqual(data["schema_version"], SCHEMA_VERSION)
            self.assertEqual(data["generator_version"], GENERATOR_VERSION)

    def test_missing_manifest_is_empty(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            self.assertEqual(load_manifest(Path(td) / "manifest.json").entries, {})

    def test_corrupt_manifest_is_ignored(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "manifest.json"
            path.write_text("{not json", encoding="utf-8")
            self.assertEqual(load_manifest(path).entries, {})

    def test_other_version_is_ignored(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            path = Path(td) / "manifest.json"
            manifest = _manifest()
            manifest.generator_version = "0.0.0-other"
            write_manifest(manifest, path)
            self.assertEqual(load_manifest(path).entries, {})

    def test_atomic_write_leaves_no_temp_files(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            target = Path(td) / "nested" / "page.html"
            atomic_write(target, b"one")
            atomic_write(target, b"two")
            self.assertEqual(target.read_bytes(), b"two")
            self.assertEqual([p.name for p in target.parent.iterdir()], ["page.html"])


class TestPageStore(unittest.TestCase):
    def test_put_get_prune(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            store = PageStore(Path(td) / "pages")
            keep = store.put(b"<p>keep</p>")
            drop = store.put(b"<p>drop</p>")

            self.assertEqual(keep, compute_sha256(b"<p>keep</p>"))
            self.assertTrue((Path(td) / "pages" / keep[:2] / keep[2:4] / f"{keep}.html").exists())
            self.assertEqual(store.get(keep), b"<p>keep</p>")

            self.assertEqual(store.prune({keep}), 1)
            self.assertTrue(store.exists(keep))
            self.assertFalse(store.exists(drop))
            self.assertIsNone(store.get(drop))

    def test_corrupted_entry_is_a_miss(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            store = PageStore(Path(td))
            sha = store.put(b"original")
            store._key_path(sha).write_bytes(b"tampered")
            self.assertIsNone(store.get(sha))


if __name__ == "__main__":
    unittest.main()
