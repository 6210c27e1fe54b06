"""Context retrieval: ranked, size-bounded knowledge snippets for agent runs."""

from .base import ContextDocument, ContextSource
from .retriever import ContextRetriever
from .sources import HttpContextSource, InMemoryContextSource

__all__ = [
    "ContextDocument",
    "ContextSource",
    "ContextRetriever",
    "HttpContextSource",
    "InMemoryContextSource",
]
