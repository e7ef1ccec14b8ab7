"""Tests for template loading, selection and page composition."""

import tempfile
import unittest
from pathlib import Path

from pagesmith.config import BuildSettings, SiteConfig
from pagesmith.content.loader import parse_document
from pagesmith.errors import ComposeError, TemplateError, TemplateNotFound
from pagesmith.render.markdown import render
from pagesmith.site.compose import asset_href, compose, output_path_for, root_prefix
from pagesmith.site.templates import convention_candidates, load_templates, select_template


def _doc(rel_path: str, extra: str = "", body: str = "Hi\n"):
    raw = f"---\ntitle: A & B\ndate: 2024-03-01\n{extra}---\n{body}".encode("utf-8")
    doc = parse_document(rel_path, raw)
    return doc.with_rendered(render(doc.body, rel_path, doc.body_line))


def _write(root: Path, rel: str, text: str) -> None:
    path = root / rel
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(text, encoding="utf-8")


class TestLoadTemplates(unittest.TestCase):
    def test_missing_root_has_builtin_default(self) -> None:
        registry = load_templates(Path("/nonexistent/pagesmith-templates"))
        self.assertEqual(list(registry), ["default"])
        self.assertTrue(registry["default"].builtin)
        self.assertEqual(dict(registry.slots), {})

    def test_names_and_slots(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _write(root, "default.html", "{{ content }}")
            _write(root, "blog.html", "blog {{ content }}")
            _write(root, "slots/nav.html", "<nav></nav>")
            _write(root, "notes.txt", "not a template")

            registry = load_templates(root)
            self.assertEqual(sorted(registry), ["blog", "default"])
            self.assertFalse(registry["default"].builtin)
            self.assertEqual(list(registry.slots), ["nav"])

    def test_syntax_error_aborts(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _write(root, "default.html", "<p>\n{% if %}\n")
            with self.assertRaises(TemplateError) as ctx:
                load_templates(root)
            self.assertEqual(ctx.exception.template, "default.html")

    def test_digest_tracks_every_file(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _write(root, "default.html", "{{ content }}")
            first = load_templates(root).digest
            self.assertEqual(load_templates(root).digest, first)

            _write(root, "partials/footer.txt", "changed")
            self.assertNotEqual(load_templates(root).digest, first)

    def test_registry_is_read_only(self) -> None:
        registry = load_templates(Path("/nonexistent/pagesmith-templates"))
        with self.assertRaises(TypeError):
            registry.slots["nav"] = registry["default"]


class TestSelectTemplate(unittest.TestCase):
    def setUp(self) -> None:
        self._td = tempfile.TemporaryDirectory()
        root = Path(self._td.name)
        for name in ["default", "special", "blog", "blog/2024"]:
            _write(root, f"{name}.html", f"{name}: {{{{ content }}}}")
        self.registry = load_templates(root)

    def tearDown(self) -> None:
        self._td.cleanup()

    def test_explicit_layout_wins(self) -> None:
        doc = _doc("blog/2024/post.md", "layout: special\n")
        self.assertEqual(select_template(doc, self.registry).name, "special")

    def test_layout_with_suffix(self) -> None:
        doc = _doc("post.md", "layout: special.html\n")
        self.assertEqual(select_template(doc, self.registry).name, "special")

    def test_missing_layout(self) -> None:
        doc = _doc("b.md", "layout: nope\n")
        with self.assertRaises(TemplateNotFound) as ctx:
            select_template(doc, self.registry)
        self.assertEqual(ctx.exception.template, "nope")
        self.assertEqual(ctx.exception.path, "b.md")

    def test_deepest_directory_convention(self) -> None:
        self.assertEqual(select_template(_doc("blog/2024/x.md"), self.registry).name, "blog/2024")
        self.assertEqual(select_template(_doc("blog/old/x.md"), self.registry).name, "blog")
        self.assertEqual(select_template(_doc("about.md"), self.registry).name, "default")

    def test_convention_candidates(self) -> None:
        self.assertEqual(convention_candidates("blog/2024/post.md"), ["blog/2024", "blog"])
        self.assertEqual(convention_candidates("post.md"), [])


class TestCompose(unittest.TestCase):
    def test_paths(self) -> None:
        self.assertEqual(output_path_for("blog/post.md"), "blog/post.html")
        self.assertEqual(output_path_for("a.markdown"), "a.html")
        self.assertEqual(root_prefix("a.html"), "")
        self.assertEqual(root_prefix("blog/2024/a.html"), "../../")
        self.assertEqual(asset_href("img/x.png", "../"), "../img/x.png")
        self.assertEqual(asset_href("https://cdn.test/x.png", "../"), "https://cdn.test/x.png")
        self.assertIsNone(asset_href(None, ""))

    def test_slots_escaping_and_missing_values(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _write(
                root,
                "default.html",
                "<title>{{ title }}</title>\n{{ content }}\n[{{ missing }}][{{ slots.footer }}]\n{{ slots.nav }}\n",
            )
            _write(root, "slots/nav.html", '<a href="{{ root }}index.html">Home</a>')
            registry = load_templates(root)
            settings = BuildSettings(content_dir=root, output_dir=root, template_dir=root, state_dir=root)

            page = compose(_doc("blog/post.md"), registry, settings)

        self.assertEqual(page.output_path, "blog/post.html")
        self.assertEqual(page.template, "default")
        self.assertIn(b"<title>A &amp; B</title>", page.content)
        self.assertIn(b"<p>Hi</p>", page.content)
        self.assertIn(b"[][]", page.content)
        self.assertIn(b'<a href="../index.html">Home</a>', page.content)

    def test_builtin_default(self) -> None:
        registry = load_templates(Path("/nonexistent/pagesmith-templates"))
        settings = BuildSettings(site=SiteConfig(title="My Site"))

        top = compose(_doc("post.md", body="## Part\n"), registry, settings).content.decode("utf-8")
        nested = compose(_doc("blog/post.md"), registry, settings).content.decode("utf-8")

        self.assertTrue(top.lower().startswith("<!doctype html>"))
        self.assertIn("My Site", top)
        self.assertIn('href="assets/site.css"', top)
        self.assertIn('href="#part"', top)
        self.assertIn('href="../assets/site.css"', nested)
        self.assertTrue(top.endswith("\n"))

    def test_runtime_failure_is_compose_error(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _write(root, "default.html", "{{ metadata.title.bogus() }}")
            registry = load_templates(root)
            with self.assertRaises(ComposeError):
                compose(_doc("post.md"), registry, BuildSettings())

    def test_python_errors_in_templates_are_compose_errors(self) -> None:
        for source in ["{{ title + 1 }}", "{{ 1 // 0 }}"]:
            with tempfile.TemporaryDirectory() as td:
                root = Path(td)
                _write(root, "default.html", source)
                _write(root, "slots/nav.html", "<nav></nav>")
                registry = load_templates(root)
                with self.assertRaises(ComposeError):
                    compose(_doc("post.md"), registry, BuildSettings())

    def test_python_error_in_slot_is_compose_error(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            _write(root, "default.html", "{{ content }}")
            _write(root, "slots/footer.html", "{{ title + 1 }}")
            registry = load_templates(root)
            with self.assertRaises(ComposeError):
                compose(_doc("post.md"), registry, BuildSettings())

    def test_compose_is_deterministic(self) -> None:
        registry = load_templates(Path("/nonexistent/pagesmith-templates"))
        doc = _doc("post.md")
        self.assertEqual(
            compose(doc, registry, BuildSettings()).content,
            compose(doc, registry, BuildSettings()).content,
        )


if __name__ == "__main__":
    unittest.main()
