"""
Retrieval stage clients.

Looks up context snippets relevant to the user's transcript. Retrieval is
best-effort: the orchestrator absorbs any RetrievalError and continues with
no context.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import List, Optional, Protocol

from openai import AsyncOpenAI
from qdrant_client import AsyncQdrantClient

from logging_setup import get_logger, Component
from .errors import RetrievalError

logger = get_logger(Component.RETRIEVAL)


@dataclass(frozen=True)
class RetrievedSnippet:
    text: str
    score: float
    source: Optional[str] = None


class Retriever(Protocol):
    async def search(self, query: str, top_k: int) -> List[RetrievedSnippet]:
        ...

    async def aclose(self) -> None:
        ...


class NullRetriever:
    """Used when no vector index is configured; never finds context."""

    async def search(self, query: str, top_k: int) -> List[RetrievedSnippet]:
        return []

    async def aclose(self) -> None:
        return None


class QdrantRetriever:
    """Embeds the query, then runs a similarity search against a Qdrant collection."""

    def __init__(
        self,
        client: AsyncQdrantClient,
        embeddings: AsyncOpenAI,
        *,
        collection: str,
        embedding_model: str,
        score_threshold: float = 0.0,
    ):
        self.client = client
        self.embeddings = embeddings
        self.collection = collection
        self.embedding_model = embedding_model
        self.score_threshold = score_threshold

    async def _embed(self, text: str) -> List[float]:
        response = await self.embeddings.embeddings.create(model=self.embedding_model, input=text)
        return list(response.data[0].embedding)

    async def search(self, query: str, top_k: int) -> List[RetrievedSnippet]:
        if not query.strip() or top_k <= 0:
            return []

        start = time.perf_counter()
        try:
            vector = await self._embed(query)
            response = await self.client.query_points(
                collection_name=self.collection,
                query=vector,
                limit=top_k,
                score_threshold=self.score_threshold,
                with_payload=True,
            )
        except Exception as e:
            logger.warning(
                "Retrieval failed",
                collection=self.collection,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise RetrievalError(f"Vector search failed: {type(e).__name__}") from e

        snippets = []
        for point in response.points:
            payload = point.payload or {}
            text = payload.get("text") or payload.get("content") or ""
            if not text:
                continue
            snippets.append(RetrievedSnippet(
                text=text,
                score=float(point.score),
                source=payload.get("source") or payload.get("title"),
            ))

        logger.info(
            "Retrieval completed",
            collection=self.collection,
            results=len(snippets),
            latency_ms=int((time.perf_counter() - start) * 1000),
        )
        return snippets

    async def aclose(self) -> None:
        await self.client.close()
