from __future__ import annotations

"""Bounded, ranked context retrieval for grounding LLM requests."""

import logging
from typing import List, Optional

from .base import ContextDocument, ContextSource

logger = logging.getLogger(__name__)


class ContextRetriever:
    """
    Query a ``ContextSource`` and bound what goes into the LLM request.

    The result is ordered by descending score, holds at most ``max_results``
    entries (or the caller's smaller ``limit``) and at most ``max_total_chars``
    characters of combined content. The last document that crosses the size
    budget is truncated rather than dropped.
    """

    def __init__(self, source: ContextSource, *, max_results: int = 5, max_total_chars: int = 8000) -> None:
        self._source = source
        self._max_results = max_results
        self._max_total_chars = max_total_chars

    async def retrieve(self, query: str, scope: Optional[str], limit: Optional[int] = None) -> List[ContextDocument]:
        """
        Return ranked ``(document_id, content)`` entries for ``query`` within ``scope``.

        Args:
            query: Free-text query, usually the user's run input.
            scope: Knowledge scope of the agent; ``None`` means no knowledge base.
            limit: Optional caller limit, never larger than ``max_results``.

        Returns:
            A possibly empty list of ``ContextDocument``.
        """
        if scope is None or not query.strip():
            return []
        effective = self._max_results if limit is None else min(limit, self._max_results)
        if effective <= 0:
            return []

        candidates = await self._source.search(query, scope, limit=effective)
        ranked = sorted(candidates, key=lambda d: d.score, reverse=True)

        results: List[ContextDocument] = []
        seen: set[str] = set()
        remaining = self._max_total_chars
        for doc in ranked:
            if len(results) >= effective or remaining <= 0:
                break
            if doc.document_id in seen or not doc.content:
                continue
            seen.add(doc.document_id)
            content = doc.content if len(doc.content) <= remaining else doc.content[:remaining]
            remaining -= len(content)
            results.append(doc.model_copy(update={"content": content}))

        logger.debug(f"Retrieved {len(results)} context documents for scope={scope}")
        return results
