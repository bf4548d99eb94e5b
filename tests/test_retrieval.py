"""
Retrieval adapter tests with an in-process vector index.
"""
from types import SimpleNamespace

import pytest

from voice_pipeline.errors import RetrievalError
from voice_pipeline.retrieval import NullRetriever, QdrantRetriever


class FakeEmbeddings:
    def __init__(self):
        self.inputs = []

    async def create(self, model, input):
        self.inputs.append((model, input))
        return SimpleNamespace(data=[SimpleNamespace(embedding=[0.1, 0.2, 0.3])])


class FakeQdrant:
    def __init__(self, points=None, error=None):
        self.points = points or []
        self.error = error
        self.queries = []
        self.closed = False

    async def query_points(self, **kwargs):
        self.queries.append(kwargs)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(points=self.points)

    async def close(self):
        self.closed = True


def point(score, **payload):
    return SimpleNamespace(score=score, payload=payload)


def retriever(qdrant, embeddings=None):
    embeddings = embeddings or FakeEmbeddings()
    return QdrantRetriever(
        qdrant,
        SimpleNamespace(embeddings=embeddings),
        collection="voice_context",
        embedding_model="openai/text-embedding-3-small",
        score_threshold=0.5,
    )


@pytest.mark.asyncio
async def test_search_maps_payloads():
    qdrant = FakeQdrant(points=[
        point(0.91, text="Likes green tea", source="profile"),
        point(0.72, content="Lives in Utrecht", title="notes"),
        point(0.60, other="no text here"),
    ])
    embeddings = FakeEmbeddings()

    snippets = await retriever(qdrant, embeddings).search("what tea do I like", top_k=3)

    assert [(s.text, s.score, s.source) for s in snippets] == [
        ("Likes green tea", 0.91, "profile"),
        ("Lives in Utrecht", 0.72, "notes"),
    ]
    assert embeddings.inputs == [("openai/text-embedding-3-small", "what tea do I like")]
    query = qdrant.queries[0]
    assert query["collection_name"] == "voice_context"
    assert query["query"] == [0.1, 0.2, 0.3]
    assert query["limit"] == 3
    assert query["score_threshold"] == 0.5
    assert query["with_payload"] is True


@pytest.mark.asyncio
async def test_blank_query_skips_search():
    qdrant = FakeQdrant()

    assert await retriever(qdrant).search("   ", top_k=3) == []
    assert qdrant.queries == []


@pytest.mark.asyncio
async def test_backend_failure_is_retrieval_error():
    qdrant = FakeQdrant(error=ConnectionError("refused"))

    with pytest.raises(RetrievalError):
        await retriever(qdrant).search("hello", top_k=3)


@pytest.mark.asyncio
async def test_aclose_closes_client():
    qdrant = FakeQdrant()
    await retriever(qdrant).aclose()
    assert qdrant.closed


@pytest.mark.asyncio
async def test_null_retriever():
    r = NullRetriever()
    assert await r.search("anything", top_k=5) == []
    await r.aclose()
