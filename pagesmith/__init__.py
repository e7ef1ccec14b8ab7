"""pagesmith: deterministic static-site builds from Markdown content."""

__version__ = "0.1.0"
