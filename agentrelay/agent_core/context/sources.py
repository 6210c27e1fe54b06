from __future__ import annotations

"""Concrete ``ContextSource`` implementations.

- ``InMemoryContextSource``: keyword-overlap scoring over documents added at
  runtime; used for local development and tests.
- ``HttpContextSource``: delegates to an external search/embedding service
  over HTTP.
"""

import re
from typing import Any, Dict, List

import httpx

from ...core.errors import TransportError
from .base import ContextDocument

_TOKEN_RE = re.compile(r"\w+")


def _tokens(text: str) -> set[str]:
    return {t.lower() for t in _TOKEN_RE.findall(text)}


class InMemoryContextSource:
    def __init__(self) -> None:
        self._docs: Dict[str, Dict[str, str]] = {}

    def add(self, scope: str, document_id: str, content: str) -> None:
        self._docs.setdefault(scope, {})[document_id] = content

    async def search(self, query: str, scope: str, *, limit: int) -> List[ContextDocument]:
        wanted = _tokens(query)
        if not wanted:
            return []
        scored: List[ContextDocument] = []
        for doc_id, content in self._docs.get(scope, {}).items():
            overlap = len(wanted & _tokens(content))
            if overlap:
                scored.append(ContextDocument(document_id=doc_id, content=content, score=overlap / len(wanted)))
        scored.sort(key=lambda d: d.score, reverse=True)
        return scored[:limit]


class HttpContextSource:
    """
    Search an external knowledge service.

    The service is expected to answer ``POST {url}`` with
    ``{"results": [{"id": ..., "content": ..., "score": ...}, ...]}``.
    """

    def __init__(self, client: httpx.AsyncClient, url: str, *, timeout: float = 10.0) -> None:
        self._client = client
        self._url = url
        self._timeout = timeout

    async def search(self, query: str, scope: str, *, limit: int) -> List[ContextDocument]:
        try:
            resp = await self._client.post(
                self._url,
                json={"query": query, "scope": scope, "limit": limit},
                timeout=self._timeout,
            )
        except httpx.HTTPError as e:
            raise TransportError(f"knowledge search failed: {e}") from e
        if resp.status_code >= 400:
            raise TransportError(f"knowledge search returned {resp.status_code}", status_code=resp.status_code)

        body: Any = resp.json()
        items = body.get("results", []) if isinstance(body, dict) else body
        docs: List[ContextDocument] = []
        for item in items or []:
            doc_id = item.get("document_id") or item.get("id")
            content = item.get("content") or ""
            if doc_id is None:
                continue
            docs.append(ContextDocument(document_id=str(doc_id), content=str(content), score=float(item.get("score") or 0.0)))
        return docs
