"""Markdown -> HTML renderer (CommonMark-ish subset).

The goal is readable, deterministic output: identical input always yields
identical HTML. Authors are trusted, so inline and block HTML pass through
unescaped and link targets are not filtered. Fenced code is emitted verbatim
(only escaped for HTML) with a ``language-*`` class for downstream
highlighters.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from html import escape, unescape

from ..errors import RenderError

FENCE_OPEN_RE = re.compile(r"^(?P<indent> {0,3})(?P<fence>`{3,}|~{3,})[ \t]*(?P<info>.*?)[ \t]*$")
HEADING_RE = re.compile(r"^ {0,3}(#{1,6})(?:[ \t]+(.*?))?(?:[ \t]+#+)?[ \t]*$")
SETEXT_RE = re.compile(r"^ {0,3}(=+|-+)[ \t]*$")
HR_RE = re.compile(r"^ {0,3}(?:(?:-[ \t]*){3,}|(?:\*[ \t]*){3,}|(?:_[ \t]*){3,})$")
BULLET_RE = re.compile(r"^( {0,3})([-*+])(?:[ \t]+(.*)|[ \t]*)$")
ORDERED_RE = re.compile(r"^( {0,3})(\d{1,9})([.)])(?:[ \t]+(.*)|[ \t]*)$")
BLOCKQUOTE_RE = re.compile(r"^ {0,3}> ?(.*)$")
LINK_DEF_RE = re.compile(
    r"^ {0,3}\[(?P<label>[^\]]+)\]:[ \t]*<?(?P<url>[^\s>]+)>?"
    r"(?:[ \t]+(?:\"(?P<t1>[^\"]*)\"|'(?P<t2>[^']*)'|\((?P<t3>[^)]*)\)))?[ \t]*$"
)

HTML_BLOCK_TAGS = frozenset(
    """
    address article aside audio blockquote canvas details dialog dd div dl dt
    fieldset figcaption figure footer form h1 h2 h3 h4 h5 h6 header hr iframe
    li main nav ol p picture section summary svg table tbody td tfoot th thead
    tr ul video
    """.split()
)
HTML_RAW_TAGS = ("pre", "script", "style", "textarea")
HTML_TAG_NAME_RE = re.compile(r"</?([A-Za-z][A-Za-z0-9-]*)(?=[\s/>]|$)")

_ATTR = r"(?:\s+[A-Za-z_:][\w:.-]*(?:\s*=\s*(?:\"[^\"]*\"|'[^']*'|[^\s\"'=<>`]+))?)"
INLINE_HTML_RE = re.compile(rf"<!--.*?-->|</[A-Za-z][A-Za-z0-9-]*\s*>|<[A-Za-z][A-Za-z0-9-]*{_ATTR}*\s*/?>", re.DOTALL)
COMPLETE_TAG_RE = re.compile(rf"</[A-Za-z][A-Za-z0-9-]*\s*>|<[A-Za-z][A-Za-z0-9-]*{_ATTR}*\s*/?>")

CODE_SPAN_RE = re.compile(r"(?<!`)(`+)(?!`)(.+?)(?<!`)\1(?!`)", re.DOTALL)
ESCAPED_CHAR_RE = re.compile(r"\\([!\"#$%&'()*+,\-./:;<=>?@\[\\\]^_`{|}~])")
HARD_BREAK_RE = re.compile(r"(?: {2,}|\\)\n")
AUTOLINK_RE = re.compile(r"<((?:https?|ftp|mailto):[^\s<>]+)>")

_DEST = r"(?P<href><[^<>\n]*>|[^\s()<>]*(?:\([^\s()<>]*\)[^\s()<>]*)*)"
_TITLE = r"(?:\s+(?P<title>\"[^\"]*\"|'[^']*'))?"
IMAGE_RE = re.compile(r"!\[(?P<alt>[^\]]*)\]\(\s*" + _DEST + _TITLE + r"\s*\)")
LINK_RE = re.compile(r"\[(?P<label>(?:[^\[\]]|\[[^\[\]]*\])*)\]\(\s*" + _DEST + _TITLE + r"\s*\)")
REF_IMAGE_RE = re.compile(r"!\[(?P<alt>[^\]]*)\](?:\[(?P<ref>[^\]]*)\])?")
REF_LINK_RE = re.compile(r"\[(?P<label>(?:[^\[\]]|\[[^\[\]]*\])*)\](?:\[(?P<ref>[^\]]*)\])?")

STRONG_RE = re.compile(r"\*\*(?=\S)(.+?)(?<=\S)\*\*|(?<!\w)__(?=\S)(.+?)(?<=\S)__(?!\w)", re.DOTALL)
EM_RE = re.compile(r"\*(?=[^\s*])(.+?)(?<=[^\s*])\*|(?<!\w)_(?=[^\s_])(.+?)(?<=[^\s_])_(?!\w)", re.DOTALL)
STRIKE_RE = re.compile(r"~~(?=\S)(.+?)(?<=\S)~~", re.DOTALL)
AMP_RE = re.compile(r"&(?!#\d{1,7};|#[xX][0-9a-fA-F]{1,6};|[A-Za-z][A-Za-z0-9]{1,31};)")
TOKEN_RE = re.compile("\x02(\\d+)\x03")
_TOKEN_DELIMITERS = {0x02: None, 0x03: None}
TAG_RE = re.compile(r"<[^>]+>")


@dataclass(frozen=True)
class Heading:
    level: int
    text: str
    anchor: str


@dataclass(frozen=True)
class CodeBlock:
    """A fenced code block, kept verbatim for downstream highlighting."""

    language: str | None
    code: str


@dataclass(frozen=True)
class RenderedBody:
    html: str
    headings: tuple[Heading, ...] = ()
    code_blocks: tuple[CodeBlock, ...] = ()

    def toc_html(self, min_level: int = 2, max_level: int = 3) -> str:
        """Table of contents as a flat ``<ul>``; empty when no heading qualifies."""
        items = [h for h in self.headings if min_level <= h.level <= max_level]
        if not items:
            return ""
        lines = ['<ul class="toc">']
        for h in items:
            lines.append(
                f'<li class="toc-h{h.level}"><a href="#{escape(h.anchor, quote=True)}">{escape(h.text)}</a></li>'
            )
        lines.append("</ul>")
        return "\n".join(lines)


def render(body: str, path: str = "<body>", first_line: int = 1) -> RenderedBody:
    """Render a Markdown body to HTML.

    Args:
        body: Raw Markdown text
        path: Source path, used in error messages
        first_line: Line number of the body's first line in the source file

    Returns:
        RenderedBody with HTML, headings and code blocks

    Raises:
        RenderError: On an unterminated code fence, HTML comment or raw HTML block
    """
    lines = body.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    refs = _collect_link_definitions(lines)
    renderer = _BlockRenderer(path, refs)
    blocks = renderer.render_blocks(lines, first_line)
    return RenderedBody(
        html="\n".join(b.html for b in blocks),
        headings=tuple(renderer.headings),
        code_blocks=tuple(renderer.code_blocks),
    )


def slugify(text: str) -> str:
    """Convert heading text to an anchor id."""
    text = text.strip().lower()
    text = re.sub(r"[^\w\s-]", "", text)
    text = re.sub(r"[\s_-]+", "-", text).strip("-")
    return text or "section"


@dataclass
class _Block:
    html: str
    # Inner HTML of a paragraph, so tight list items can drop the <p>.
    paragraph: str | None = None


@dataclass
class _ListMarker:
    ordered: bool
    char: str
    start: int
    content_col: int
    text: str


class _BlockRenderer:
    def __init__(self, path: str, refs: dict[str, tuple[str, str | None]]):
        self.path = path
        self.inline = _InlineRenderer(refs)
        self.headings: list[Heading] = []
        self.code_blocks: list[CodeBlock] = []
        self._anchors: dict[str, int] = {}

    def render_blocks(self, lines: list[str], first_line: int) -> list[_Block]:
        out: list[_Block] = []
        i = 0
        n = len(lines)

        while i < n:
            line = lines[i]
            stripped = line.strip()

            if not stripped:
                i += 1
                continue

            # Code fences
            fence = _match_fence(line)
            if fence:
                i = self._fenced_code(lines, i, fence, first_line, out)
                continue

            # Raw HTML blocks
            html_kind = _html_block_kind(line, interrupting=False)
            if html_kind:
                i = self._html_block(lines, i, html_kind, first_line, out)
                continue

            # Headings
            m = HEADING_RE.match(line)
            if m:
                out.append(self._heading(len(m.group(1)), m.group(2) or ""))
                i += 1
                continue

            # Horizontal rule
            if HR_RE.match(line):
                out.append(_Block("<hr>"))
                i += 1
                continue

            # Blockquote
            if BLOCKQUOTE_RE.match(line):
                i = self._blockquote(lines, i, first_line, out)
                continue

            # Lists
            marker = _list_marker(line)
            if marker:
                i = self._list(lines, i, marker, first_line, out)
                continue

            # Table (GFM)
            if _looks_like_table_start(lines, i):
                table_lines = [lines[i], lines[i + 1]]
                i += 2
                while i < n and lines[i].strip() and "|" in lines[i]:
                    table_lines.append(lines[i])
                    i += 1
                out.append(_Block(self._table(table_lines)))
                continue

            i = self._paragraph(lines, i, out)

        return out

    def _fenced_code(
        self,
        lines: list[str],
        i: int,
        fence: re.Match,
        first_line: int,
        out: list[_Block],
    ) -> int:
        marker = fence.group("fence")
        indent = len(fence.group("indent"))
        info = unescape(fence.group("info"))
        language = info.split()[0] if info else ""
        close_re = _fence_closer(marker)

        code_lines: list[str] = []
        j = i + 1
        while j < len(lines):
            if close_re.match(lines[j]):
                break
            code_lines.append(_strip_indent(lines[j], indent))
            j += 1
        else:
            raise RenderError(self.path, f"unterminated code fence '{marker}'", line=first_line + i)

        code = "\n".join(code_lines) + ("\n" if code_lines else "")
        self.code_blocks.append(CodeBlock(language=language or None, code=code))
        cls = f' class="language-{escape(language, quote=True)}"' if language else ""
        out.append(_Block(f"<pre><code{cls}>{escape(code, quote=False)}</code></pre>"))
        return j + 1

    def _html_block(
        self,
        lines: list[str],
        i: int,
        kind: str,
        first_line: int,
        out: list[_Block],
    ) -> int:
        n = len(lines)
        if kind in ("comment", "raw"):
            if kind == "comment":
                end = re.compile(r"-->")
                what = "HTML comment"
                offset = lines[i].index("<!--") + 4
            else:
                end = re.compile(r"</(?:%s)\s*>" % "|".join(HTML_RAW_TAGS), re.IGNORECASE)
                what = "raw HTML block"
                offset = 0
            j = i
            while j < n:
                segment = lines[j][offset:] if j == i else lines[j]
                if end.search(segment):
                    break
                j += 1
            if j >= n:
                raise RenderError(self.path, f"unterminated {what}", line=first_line + i)
            out.append(_Block("\n".join(lines[i : j + 1])))
            return j + 1

        j = i
        while j < n and lines[j].strip():
            j += 1
        out.append(_Block("\n".join(lines[i:j])))
        return j

    def _heading(self, level: int, raw: str) -> _Block:
        html = self.inline.render(raw.strip())
        text = unescape(TAG_RE.sub("", html)).strip()
        anchor = self._unique_anchor(slugify(text))
        self.headings.append(Heading(level=level, text=text, anchor=anchor))
        return _Block(f'<h{level} id="{escape(anchor, quote=True)}">{html}</h{level}>')

    def _unique_anchor(self, base: str) -> str:
        count = self._anchors.get(base, 0)
        self._anchors[base] = count + 1
        return base if count == 0 else f"{base}-{count}"

    def _blockquote(self, lines: list[str], i: int, first_line: int, out: list[_Block]) -> int:
        start = i
        inner: list[str] = []
        n = len(lines)
        while i < n:
            line = lines[i]
            m = BLOCKQUOTE_RE.match(line)
            if m:
                inner.append(m.group(1))
            elif line.strip() and inner and inner[-1].strip() and not _starts_block(line):
                # Lazy continuation of a quoted paragraph
                inner.append(line)
            else:
                break
            i += 1
        blocks = self.render_blocks(inner, first_line + start)
        body = "\n".join(b.html for b in blocks)
        out.append(_Block(f"<blockquote>\n{body}\n</blockquote>" if body else "<blockquote></blockquote>"))
        return i

    def _list(
        self,
        lines: list[str],
        i: int,
        first: _ListMarker,
        first_line: int,
        out: list[_Block],
    ) -> int:
        items: list[list[str]] = []
        starts: list[int] = []
        loose = False
        content_col = first.content_col
        n = len(lines)

        while i < n:
            line = lines[i]

            # Indented past the marker: nested content, including sub-lists
            if items and line.strip() and _indent(line) >= content_col:
                items[-1].append(line[content_col:])
                i += 1
                continue

            marker = _list_marker(line)
            if marker and marker.ordered == first.ordered and marker.char == first.char:
                items.append([marker.text])
                starts.append(i)
                content_col = marker.content_col
                i += 1
                continue

            if not line.strip():
                j = i
                while j < n and not lines[j].strip():
                    j += 1
                if j >= n:
                    break
                nxt = lines[j]
                nxt_marker = _list_marker(nxt)
                continues_item = _indent(nxt) >= content_col
                next_item = bool(
                    nxt_marker and nxt_marker.ordered == first.ordered and nxt_marker.char == first.char
                )
                if not continues_item and not next_item:
                    break
                loose = True
                if continues_item:
                    items[-1].extend([""] * (j - i))
                i = j
                continue

            # Lazy continuation of the item's last paragraph
            if items[-1][-1].strip() and not _starts_block(line):
                items[-1].append(line.strip())
                i += 1
                continue

            break

        html_items: list[str] = []
        for item_lines, start in zip(items, starts):
            blocks = self.render_blocks(item_lines, first_line + start)
            parts = [b.paragraph if (b.paragraph is not None and not loose) else b.html for b in blocks]
            if not parts:
                html_items.append("<li></li>")
            elif len(parts) == 1 and not loose:
                html_items.append(f"<li>{parts[0]}</li>")
            else:
                html_items.append("<li>\n" + "\n".join(parts) + "\n</li>")

        if first.ordered:
            start_attr = f' start="{first.start}"' if first.start != 1 else ""
            tag_open, tag_close = f"<ol{start_attr}>", "</ol>"
        else:
            tag_open, tag_close = "<ul>", "</ul>"
        out.append(_Block("\n".join([tag_open, *html_items, tag_close])))
        return i

    def _table(self, table_lines: list[str]) -> str:
        header = _split_row(table_lines[0])
        aligns = [_cell_align(c) for c in _split_row(table_lines[1])]
        body_rows = [_split_row(line) for line in table_lines[2:]]

        def cell(tag: str, text: str, col: int) -> str:
            align = aligns[col] if col < len(aligns) else None
            attr = f' style="text-align: {align}"' if align else ""
            return f"<{tag}{attr}>{self.inline.render(text)}</{tag}>"

        out = ["<table>", "<thead>", "<tr>"]
        for col, h in enumerate(header):
            out.append(cell("th", h, col))
        out.extend(["</tr>", "</thead>"])
        if body_rows:
            out.append("<tbody>")
            for row in body_rows:
                out.append("<tr>")
                # Rows are padded or cut to the header width
                for col in range(len(header)):
                    out.append(cell("td", row[col] if col < len(row) else "", col))
                out.append("</tr>")
            out.append("</tbody>")
        out.append("</table>")
        return "\n".join(out)

    def _paragraph(self, lines: list[str], i: int, out: list[_Block]) -> int:
        buf = [lines[i]]
        i += 1
        n = len(lines)
        while i < n:
            line = lines[i]
            if not line.strip():
                break
            setext = SETEXT_RE.match(line)
            if setext:
                level = 1 if setext.group(1).startswith("=") else 2
                out.append(self._heading(level, "\n".join(s.strip() for s in buf)))
                return i + 1
            if _starts_block(line, interrupting=True):
                break
            buf.append(line)
            i += 1

        text = "\n".join(s.lstrip() for s in buf).rstrip()
        inner = self.inline.render(text)
        out.append(_Block(f"<p>{inner}</p>", paragraph=inner))
        return i


class _InlineRenderer:
    """Placeholder-based inline renderer.

    Constructs that must not be reformatted (code spans, HTML, links) are
    stashed behind tokens first, the remaining text is escaped and decorated,
    then the tokens are restored.
    """

    def __init__(self, refs: dict[str, tuple[str, str | None]]):
        self.refs = refs

    def render(self, text: str) -> str:
        stash: list[str] = []

        def put(html: str) -> str:
            stash.append(html)
            return f"\x02{len(stash) - 1}\x03"

        # Token delimiters are reserved; they are not valid in HTML text anyway.
        text = text.translate(_TOKEN_DELIMITERS)
        text = CODE_SPAN_RE.sub(lambda m: put(f"<code>{_escape_text(_trim_code(m.group(2)))}</code>"), text)
        text = ESCAPED_CHAR_RE.sub(lambda m: put(escape(m.group(1), quote=False)), text)
        text = HARD_BREAK_RE.sub(lambda m: put("<br>\n"), text)
        text = AUTOLINK_RE.sub(
            lambda m: put(f'<a href="{_escape_attr(m.group(1))}">{_escape_text(m.group(1))}</a>'),
            text,
        )
        text = INLINE_HTML_RE.sub(lambda m: put(m.group(0)), text)

        def image(m: re.Match) -> str:
            return put(_img(m.group("href"), m.group("alt"), m.group("title")))

        def ref_image(m: re.Match) -> str:
            ref = self._ref(m.group("ref") or m.group("alt"))
            if ref is None:
                return m.group(0)
            return put(_img(ref[0], m.group("alt"), ref[1]))

        text = IMAGE_RE.sub(image, text)
        text = REF_IMAGE_RE.sub(ref_image, text)

        def link(m: re.Match) -> str:
            return put(_anchor(m.group("href"), self._decorate(m.group("label")), m.group("title")))

        def ref_link(m: re.Match) -> str:
            ref = self._ref(m.group("ref") or m.group("label"))
            if ref is None:
                return m.group(0)
            return put(_anchor(ref[0], self._decorate(m.group("label")), ref[1]))

        text = LINK_RE.sub(link, text)
        text = REF_LINK_RE.sub(ref_link, text)

        # Stashed HTML can itself contain tokens (e.g. an image inside a link),
        # always pointing at earlier entries.
        def restore(s: str) -> str:
            return TOKEN_RE.sub(lambda m: restore(stash[int(m.group(1))]), s)

        return restore(self._decorate(text))

    def _ref(self, label: str) -> tuple[str, str | None] | None:
        return self.refs.get(_normalize_label(label))

    def _decorate(self, text: str) -> str:
        text = _escape_text(text)
        text = STRONG_RE.sub(lambda m: f"<strong>{m.group(1) or m.group(2)}</strong>", text)
        text = EM_RE.sub(lambda m: f"<em>{m.group(1) or m.group(2)}</em>", text)
        text = STRIKE_RE.sub(lambda m: f"<del>{m.group(1)}</del>", text)
        return text


def _collect_link_definitions(lines: list[str]) -> dict[str, tuple[str, str | None]]:
    """Pull ``[label]: url "title"`` definitions out of the body (outside fences)."""
    refs: dict[str, tuple[str, str | None]] = {}
    closer: re.Pattern | None = None
    for idx, line in enumerate(lines):
        if closer is not None:
            if closer.match(line):
                closer = None
            continue
        fence = _match_fence(line)
        if fence:
            closer = _fence_closer(fence.group("fence"))
            continue
        m = LINK_DEF_RE.match(line)
        if m:
            key = _normalize_label(m.group("label"))
            title = m.group("t1") or m.group("t2") or m.group("t3")
            # First definition wins
            refs.setdefault(key, (m.group("url"), title))
            lines[idx] = ""
    return refs


def _match_fence(line: str) -> re.Match | None:
    m = FENCE_OPEN_RE.match(line)
    if not m:
        return None
    # Backtick fences cannot carry backticks in their info string
    if m.group("fence")[0] == "`" and "`" in m.group("info"):
        return None
    return m


def _fence_closer(marker: str) -> re.Pattern:
    """Closing line for a fence opened with ``marker``: same char, at least as long, 0-3 spaces indent."""
    return re.compile(rf"^ {{0,3}}{re.escape(marker[0])}{{{len(marker)},}}[ \t]*$")


def _html_block_kind(line: str, interrupting: bool) -> str | None:
    s = line.lstrip(" ")
    if len(line) - len(s) > 3 or not s.startswith("<"):
        return None
    if s.startswith("<!--"):
        return "comment"
    m = HTML_TAG_NAME_RE.match(s)
    if not m:
        return None
    name = m.group(1).lower()
    if name in HTML_RAW_TAGS and not s.startswith("</"):
        return "raw"
    if name in HTML_BLOCK_TAGS:
        return "block"
    # A lone complete tag starts a block, but cannot interrupt a paragraph
    if not interrupting and COMPLETE_TAG_RE.fullmatch(s.rstrip()):
        return "tag"
    return None


def _list_marker(line: str) -> _ListMarker | None:
    m = BULLET_RE.match(line)
    if m and not HR_RE.match(line):
        text = m.group(3) or ""
        return _ListMarker(False, m.group(2), 1, _content_col(line, text), text)
    m = ORDERED_RE.match(line)
    if m:
        text = m.group(4) or ""
        return _ListMarker(True, m.group(3), int(m.group(2)), _content_col(line, text), text)
    return None


def _content_col(line: str, text: str) -> int:
    if not text:
        return len(line.rstrip()) + 1
    return len(line) - len(text)


def _starts_block(line: str, interrupting: bool = False) -> bool:
    """True when ``line`` opens a new block (used to end paragraphs)."""
    if _match_fence(line) or HEADING_RE.match(line) or HR_RE.match(line):
        return True
    if BLOCKQUOTE_RE.match(line):
        return True
    if _html_block_kind(line, interrupting=interrupting):
        return True
    marker = _list_marker(line)
    if marker and marker.text:
        # Only ordered lists starting at 1 may interrupt a paragraph
        return not marker.ordered or marker.start == 1
    return False


def _looks_like_table_start(lines: list[str], i: int) -> bool:
    if i + 1 >= len(lines):
        return False
    header = lines[i]
    sep = lines[i + 1]
    if "|" not in header or "|" not in sep:
        return False
    cells = _split_row(sep)
    if not cells or not all(re.fullmatch(r":?-+:?", c) for c in cells):
        return False
    return len(cells) == len(_split_row(header))


def _split_row(line: str) -> list[str]:
    s = line.strip()
    if s.startswith("|"):
        s = s[1:]
    if s.endswith("|") and not s.endswith("\\|"):
        s = s[:-1]
    return [c.strip().replace("\\|", "|") for c in re.split(r"(?<!\\)\|", s)]


def _cell_align(cell: str) -> str | None:
    if cell.startswith(":") and cell.endswith(":"):
        return "center"
    if cell.endswith(":"):
        return "right"
    if cell.startswith(":"):
        return "left"
    return None


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip(" "))


def _strip_indent(line: str, width: int) -> str:
    return line[min(width, _indent(line)) :]


def _trim_code(code: str) -> str:
    code = code.replace("\n", " ")
    if len(code) > 2 and code.startswith(" ") and code.endswith(" ") and code.strip():
        return code[1:-1]
    return code


def _normalize_label(label: str) -> str:
    return re.sub(r"\s+", " ", label.strip()).lower()


def _escape_text(text: str) -> str:
    # Entities the author wrote stay intact; tags were stashed before this runs.
    return AMP_RE.sub("&amp;", text).replace("<", "&lt;").replace(">", "&gt;")


def _escape_attr(text: str) -> str:
    return _escape_text(text).replace('"', "&quot;")


def _unwrap_href(href: str) -> str:
    if href.startswith("<") and href.endswith(">"):
        return href[1:-1]
    return href


def _unquote_title(title: str | None) -> str | None:
    if not title:
        return None
    return title[1:-1]


def _anchor(href: str, label_html: str, title: str | None) -> str:
    title = _unquote_title(title) if title and title[:1] in "\"'" else title
    title_attr = f' title="{_escape_attr(title)}"' if title else ""
    return f'<a href="{_escape_attr(_unwrap_href(href))}"{title_attr}>{label_html}</a>'


def _img(src: str, alt: str, title: str | None) -> str:
    title = _unquote_title(title) if title and title[:1] in "\"'" else title
    title_attr = f' title="{_escape_attr(title)}"' if title else ""
    return f'<img src="{_escape_attr(_unwrap_href(src))}" alt="{_escape_attr(alt)}"{title_attr}>'
