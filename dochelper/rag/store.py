"""Vector store data types and the backend interface.

Two backends implement VectorStore:
- PgVectorStore: PostgreSQL + pgvector HNSW index (default)
- FaissVectorStore: SQLite rows + FAISS HNSW index on local disk
"""
import enum
import hashlib
from dataclasses import dataclass
from typing import Dict, List, Optional

from dochelper import config

CHUNK_ID_LENGTH = 48
# Only this much of the content feeds the chunk ID
CHUNK_ID_CONTENT_PREFIX = 32


@dataclass
class Chunk:
    """A stored passage with its embedding."""

    chunk_id: str
    content: str
    embedding: List[float]
    source_url: Optional[str] = None


@dataclass(frozen=True)
class SearchFilter:
    """Structural filter over ``source_url``; set fields are AND-ed."""

    source_host: Optional[str] = None
    source_prefix: Optional[str] = None

    @property
    def is_empty(self) -> bool:
        return not self.source_host and not self.source_prefix

    @property
    def host_pattern(self) -> Optional[str]:
        return f"://{self.source_host}" if self.source_host else None

    def matches(self, source_url: Optional[str]) -> bool:
        """Evaluate the filter in Python, with the same semantics as the SQL."""
        if self.is_empty:
            return True
        url = source_url or ""
        if self.source_host and self.host_pattern not in url:
            return False
        if self.source_prefix and not url.startswith(self.source_prefix):
            return False
        return True


@dataclass
class SearchResult:
    """A retrieved passage; lower distance means more relevant."""

    source_url: Optional[str]
    content: str
    distance: float


class StoreErrorKind(enum.Enum):
    """Backend-independent classification of store errors."""

    ALREADY_EXISTS = "already_exists"
    OTHER = "other"


def dedupe_chunks(chunks: List[Chunk]) -> List[Chunk]:
    """Keep the last chunk for each chunk_id, in first-seen order."""
    by_id: Dict[str, Chunk] = {}
    for chunk in chunks:
        by_id[chunk.chunk_id] = chunk
    return list(by_id.values())


def content_chunk_id(source_url: Optional[str], index: int, content: str) -> str:
    """Content-addressable chunk ID.

    Derived from the source URL (or the raw-text marker), the chunk's
    position and a prefix of its content, so re-indexing identical input
    overwrites rows instead of duplicating them.
    """
    prefix = content[:CHUNK_ID_CONTENT_PREFIX]
    if source_url:
        key = f"{source_url}#{index}-{prefix}"
    else:
        key = f"text-{index}-{prefix}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:CHUNK_ID_LENGTH]


class VectorStore:
    """Interface shared by the vector store backends."""

    backend = "base"

    def __init__(self, dimension: Optional[int] = None):
        self.dimension = config.EMBEDDING_DIM if dimension is None else dimension

    async def ensure_schema(self) -> None:
        """Create the table and ANN index if missing. Safe to call repeatedly."""
        raise NotImplementedError

    async def upsert(self, chunks: List[Chunk]) -> None:
        """Insert chunks in one request; on chunk_id conflict overwrite the row."""
        raise NotImplementedError

    async def query(
        self,
        embedding: List[float],
        limit: int,
        filters: Optional[SearchFilter] = None,
    ) -> List[SearchResult]:
        """Return up to ``limit`` rows by ascending cosine distance."""
        raise NotImplementedError

    async def count(self) -> int:
        raise NotImplementedError

    async def close(self) -> None:
        return None

    def classify_error(self, exc: BaseException) -> StoreErrorKind:
        return StoreErrorKind.OTHER

    def _check_dimension(self, embedding: List[float]) -> None:
        if len(embedding) != self.dimension:
            raise ValueError(
                f"Embedding dimension mismatch: expected {self.dimension}, "
                f"got {len(embedding)}"
            )


def create_vector_store(backend: Optional[str] = None) -> VectorStore:
    """Build the backend named by ``backend`` (default: VECTOR_BACKEND)."""
    backend = (backend or config.VECTOR_BACKEND).lower()
    if backend == "pgvector":
        from dochelper.rag.store_pgvector import PgVectorStore

        return PgVectorStore()
    if backend == "faiss":
        from dochelper.rag.store_faiss import FaissVectorStore

        return FaissVectorStore()
    raise ValueError(f"Unknown vector backend: {backend!r}")
