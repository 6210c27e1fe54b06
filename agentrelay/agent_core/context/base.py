from __future__ import annotations

"""Context source protocol and document model.

A ``ContextSource`` is the black-box search/embedding capability behind the
``ContextRetriever``. Sources return candidate documents with a relevance
score; ranking, deduplication and size bounding are the retriever's job.
"""

from typing import List, Protocol

from pydantic import Field

from ..schemas.base import BaseSchema


class ContextDocument(BaseSchema):
    document_id: str
    content: str
    score: float = Field(default=0.0)


class ContextSource(Protocol):
    async def search(self, query: str, scope: str, *, limit: int) -> List[ContextDocument]: ...
