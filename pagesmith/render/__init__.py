"""Markdown rendering."""

from .markdown import CodeBlock, Heading, RenderedBody, render, slugify

__all__ = [
    "render",
    "RenderedBody",
    "Heading",
    "CodeBlock",
    "slugify",
]
