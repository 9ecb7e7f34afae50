"""Shared fixtures for unit tests."""
from typing import List, Optional

import pytest

from dochelper.embedding_client import EmbeddingClient
from dochelper.rag.store import Chunk, SearchFilter, SearchResult, VectorStore, dedupe_chunks

TEST_DIM = 8


def fake_vector(text: str, dim: int = TEST_DIM) -> List[float]:
    """Deterministic bag-of-characters embedding."""
    vector = [0.0] * dim
    for ch in text:
        vector[ord(ch) % dim] += 1.0
    if not any(vector):
        vector[0] = 1.0
    return vector


class FakeProvider:
    """Embedding provider that records calls instead of hitting the network."""

    name = "fake"
    model = "fake-embedding"

    def __init__(self, supports_batch: bool = True, dim: int = TEST_DIM, drop_from_batch: int = 0):
        self.supports_batch = supports_batch
        self.dim = dim
        self.drop_from_batch = drop_from_batch
        self.one_calls: List[str] = []
        self.batch_calls: List[List[str]] = []
        self.closed = False

    async def embed_one(self, text: str) -> List[float]:
        self.one_calls.append(text)
        return fake_vector(text, self.dim)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.batch_calls.append(list(texts))
        vectors = [fake_vector(t, self.dim) for t in texts]
        return vectors[: len(vectors) - self.drop_from_batch]

    async def aclose(self) -> None:
        self.closed = True


class MemoryStore(VectorStore):
    """In-memory store returning canned results, recording every call."""

    backend = "memory"

    def __init__(self, dimension: int = TEST_DIM, results: Optional[List[SearchResult]] = None):
        super().__init__(dimension)
        self.rows = {}
        self.results = results or []
        self.upsert_calls: List[List[Chunk]] = []
        self.queries = []
        self.schema_calls = 0
        self.closed = False

    async def ensure_schema(self) -> None:
        self.schema_calls += 1

    async def upsert(self, chunks: List[Chunk]) -> None:
        self.upsert_calls.append(list(chunks))
        for chunk in dedupe_chunks(chunks):
            self._check_dimension(chunk.embedding)
            self.rows[chunk.chunk_id] = chunk

    async def query(
        self,
        embedding: List[float],
        limit: int,
        filters: Optional[SearchFilter] = None,
    ) -> List[SearchResult]:
        self.queries.append((embedding, limit, filters))
        matching = [r for r in self.results if filters is None or filters.matches(r.source_url)]
        return matching[:limit]

    async def count(self) -> int:
        return len(self.rows)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def embedder(provider):
    return EmbeddingClient(provider)


@pytest.fixture
def store():
    return MemoryStore()
