"""Indexing pipeline for crawled sites and raw text.

Orchestrates:
- Site crawling (URL input)
- Whitespace normalization and chunking
- Content-addressable chunk IDs
- Batched embedding generation
- Batched upserts into the vector store

Batches run one after another; each is awaited before the next starts.
"""
from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence, TypeVar

import structlog
from pydantic import ValidationError

from dochelper import config
from dochelper.embedding_client import EmbeddingClient
from dochelper.errors import (
    EmbeddingProviderError,
    NothingToIndexError,
    RequestValidationError,
)
from dochelper.models import IndexRequest, IndexResult
from dochelper.rag.chunker import TextChunker, normalize_whitespace
from dochelper.rag.crawler import CrawlPage, SiteCrawler
from dochelper.rag.store import Chunk, VectorStore, content_chunk_id

logger = structlog.get_logger()

T = TypeVar("T")


def batched(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of at most ``size`` items."""
    if size <= 0:
        raise ValueError(f"Batch size must be positive, got {size}")
    for i in range(0, len(items), size):
        yield items[i : i + size]


@dataclass
class PendingChunk:
    """A chunk that has an ID and content but no embedding yet."""

    chunk_id: str
    content: str
    source_url: Optional[str]


class IndexingPipeline:
    """Pipeline for indexing documentation into the vector store."""

    def __init__(
        self,
        embedder: EmbeddingClient,
        store: VectorStore,
        crawler: Optional[SiteCrawler] = None,
        chunk_size: Optional[int] = None,
        chunk_overlap: Optional[int] = None,
        embed_batch_size: Optional[int] = None,
        upsert_batch_size: Optional[int] = None,
    ):
        """Initialize the indexing pipeline.

        Args:
            embedder: Shared embedding client
            store: Shared vector store
            crawler: Site crawler (a default-configured one if omitted)
            chunk_size: Chunk size in characters (default from config)
            chunk_overlap: Chunk overlap in characters (default from config)
            embed_batch_size: Texts per embedding request (default from config)
            upsert_batch_size: Rows per store upsert (default from config)
        """
        self.embedder = embedder
        self.store = store
        self.crawler = crawler or SiteCrawler()
        self.chunker = TextChunker(chunk_size=chunk_size, chunk_overlap=chunk_overlap)
        self.embed_batch_size = embed_batch_size or config.EMBED_BATCH_SIZE
        self.upsert_batch_size = upsert_batch_size or config.UPSERT_BATCH_SIZE

        logger.info(
            "indexing_pipeline_initialized",
            chunk_size=self.chunker.chunk_size,
            chunk_overlap=self.chunker.chunk_overlap,
            embed_batch_size=self.embed_batch_size,
            upsert_batch_size=self.upsert_batch_size,
        )

    async def index(self, url: Optional[str] = None, text: Optional[str] = None) -> IndexResult:
        """Index a site (``url``) or raw ``text``; the URL wins if both are given.

        Raises:
            RequestValidationError: If neither a URL nor text was supplied
            NothingToIndexError: If no content could be extracted
        """
        try:
            request = IndexRequest(url=url, text=text)
        except ValidationError as e:
            raise RequestValidationError(str(e)) from e

        if request.url and request.url.strip():
            return await self.index_url(request.url.strip())
        return await self.index_text(request.text)

    def build_chunks(self, text: str, source_url: Optional[str] = None) -> List[PendingChunk]:
        """Normalize and chunk one document, assigning content-addressable IDs."""
        chunks = self.chunker.chunk_text(normalize_whitespace(text))
        return [
            PendingChunk(
                chunk_id=content_chunk_id(source_url, chunk.chunk_index, chunk.content),
                content=chunk.content,
                source_url=source_url,
            )
            for chunk in chunks
        ]

    async def index_url(self, url: str) -> IndexResult:
        """Crawl the site at ``url`` and index every page found."""
        await self.store.ensure_schema()

        pages: List[CrawlPage] = await self.crawler.crawl(url)
        if not pages:
            raise NothingToIndexError(f"No crawlable pages found at {url}")

        pending: List[PendingChunk] = []
        for page in pages:
            pending.extend(self.build_chunks(page.text, source_url=page.url))

        if not pending:
            raise NothingToIndexError("No content to index after crawling")

        await self._embed_and_store(pending)

        logger.info("url_indexed", url=url, pages=len(pages), chunks=len(pending))
        return IndexResult(chunks=len(pending), pages=len(pages), source="url_crawl")

    async def index_text(self, text: str) -> IndexResult:
        """Index a block of raw text with no source URL."""
        if not normalize_whitespace(text or ""):
            raise NothingToIndexError("No content to index")

        await self.store.ensure_schema()

        pending = self.build_chunks(text)
        if not pending:
            raise NothingToIndexError("No content to index")

        await self._embed_and_store(pending)

        logger.info("text_indexed", chars=len(text), chunks=len(pending))
        return IndexResult(chunks=len(pending), source="text")

    async def _embed_and_store(self, pending: List[PendingChunk]) -> None:
        vectors: List[List[float]] = []
        for batch in batched(pending, self.embed_batch_size):
            vectors.extend(await self.embedder.embed_texts([p.content for p in batch]))
            logger.debug("embedding_batch_done", embedded=len(vectors), total=len(pending))

        if len(vectors) != len(pending):
            raise EmbeddingProviderError(
                f"Embedding count mismatch: {len(vectors)} vectors for {len(pending)} chunks"
            )

        chunks = [
            Chunk(
                chunk_id=p.chunk_id,
                content=p.content,
                embedding=vector,
                source_url=p.source_url,
            )
            for p, vector in zip(pending, vectors)
        ]

        for batch in batched(chunks, self.upsert_batch_size):
            await self.store.upsert(list(batch))
            logger.debug("upsert_batch_done", rows=len(batch))
