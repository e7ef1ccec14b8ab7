"""Content discovery, front matter parsing and the Document model."""

from .loader import (
    discover,
    load_document,
    load_documents,
    parse_document,
    parse_metadata,
    split_front_matter,
)
from .models import Document, MetaValue

__all__ = [
    "Document",
    "MetaValue",
    "discover",
    "load_document",
    "load_documents",
    "parse_document",
    "parse_metadata",
    "split_front_matter",
]
