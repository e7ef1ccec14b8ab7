"""Inline CSS for the built-in default template."""

CSS = r"""
:root {
  --paper: #fdfcfa;
  --ink: #222;
  --faint: #777;
  --hairline: #e6e2db;
  --accent: #8a3b12;
  --code-bg: #f4f1ec;
  --measure: 42rem;
  --mono: ui-monospace, Menlo, "DejaVu Sans Mono", monospace;
}

html { background: var(--paper); }

body {
  margin: 0 auto;
  max-width: var(--measure);
  padding: 2rem 1.25rem 4rem;
  color: var(--ink);
  font: 1.05rem/1.7 Georgia, "Iowan Old Style", serif;
}

a { color: var(--accent); }
a:hover { text-decoration-thickness: 2px; }

body > header {
  display: flex;
  flex-wrap: wrap;
  gap: 0.25rem 1.25rem;
  align-items: baseline;
  justify-content: space-between;
  margin-bottom: 2rem;
  font-family: system-ui, sans-serif;
}
body > header a { color: inherit; font-weight: 600; text-decoration: none; }
body > header nav a { font-weight: 400; color: var(--faint); margin-left: 0.9rem; }

article h1 { font-size: 2rem; line-height: 1.2; margin: 0 0 0.4rem; }
article h2 { font-size: 1.4rem; margin-top: 2.2rem; }
article h3 { font-size: 1.15rem; margin-top: 1.6rem; }

.muted { color: var(--faint); font: 0.85rem/1.5 system-ui, sans-serif; }
.rule { height: 1px; background: var(--hairline); margin: 1.5rem 0; }

ul.toc { margin: 0 0 2rem; padding: 0; list-style: none; font-size: 0.9rem; }
ul.toc li.toc-h3 { margin-left: 1.25rem; }

figure { margin: 1.5rem 0; }
figure img, article img { display: block; max-width: 100%; }

article table { width: 100%; border-collapse: collapse; font-size: 0.95rem; }
article th { border-bottom: 2px solid var(--hairline); }
article td { border-bottom: 1px solid var(--hairline); }
article th, article td { padding: 0.4rem 0.6rem; }

pre {
  padding: 1rem;
  overflow-x: auto;
  background: var(--code-bg);
  border-radius: 4px;
  line-height: 1.45;
}
code { font-family: var(--mono); font-size: 0.88em; }
:not(pre) > code { background: var(--code-bg); padding: 0.05em 0.3em; border-radius: 3px; }

blockquote {
  margin: 1.25rem 0;
  padding-left: 1rem;
  border-left: 3px solid var(--accent);
  font-style: italic;
}

body > footer {
  margin-top: 3rem;
  padding-top: 1rem;
  border-top: 1px solid var(--hairline);
  color: var(--faint);
  font-size: 0.85rem;
}
"""
