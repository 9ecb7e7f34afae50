"""Retriever for semantic search over indexed documentation.

Handles:
- Query embedding generation (every call re-embeds, nothing is cached)
- Filtered vector store queries
- Conversational retrieval queries built from recent history
- Dominant-host narrowing when the caller gave no filter
- Context formatting for the answering prompt
"""
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

import structlog

from dochelper import config
from dochelper.embedding_client import EmbeddingClient
from dochelper.errors import RequestValidationError
from dochelper.models import ChatMessage
from dochelper.rag.hosts import infer_dominant_host, narrow_to_host
from dochelper.rag.store import SearchFilter, SearchResult, VectorStore

logger = structlog.get_logger()


@dataclass
class ChatRetrieval:
    """Results for one conversational turn."""

    query: str
    results: List[SearchResult] = field(default_factory=list)
    dominant_host: Optional[str] = None

    @property
    def context(self) -> str:
        """Numbered context block for the answering prompt."""
        return format_context(self.results)


def build_retrieval_query(
    message: str,
    history: Optional[Sequence[ChatMessage]] = None,
    turns: Optional[int] = None,
) -> str:
    """Fold the last ``turns`` history messages and the new message into one query."""
    turns = config.HISTORY_TURNS if turns is None else turns
    lines = []
    if history and turns > 0:
        lines.extend(f"{m.role.upper()}: {m.content}" for m in list(history)[-turns:])
    lines.append(f"USER: {message}")
    return "\n".join(lines)


def format_context(results: Sequence[SearchResult]) -> str:
    """Numbered context block, one entry per retrieved passage."""
    return "\n---\n".join(
        f"[#{i}] URL: {r.source_url or 'n/a'}\n{r.content}"
        for i, r in enumerate(results, 1)
    )


class Retriever:
    """Semantic retriever for the RAG pipeline."""

    def __init__(
        self,
        embedder: EmbeddingClient,
        store: VectorStore,
        top_k: Optional[int] = None,
    ):
        """Initialize the retriever.

        Args:
            embedder: Shared embedding client
            store: Shared vector store
            top_k: Default number of results (default from config)
        """
        self.embedder = embedder
        self.store = store
        self.top_k = top_k or config.RETRIEVAL_TOP_K

    async def search(
        self,
        query: str,
        top_k: Optional[int] = None,
        filters: Optional[SearchFilter] = None,
    ) -> List[SearchResult]:
        """Embed ``query`` and return the nearest chunks, best first.

        Raises:
            RequestValidationError: If the query is empty or top_k is not positive
            EmbeddingProviderError: If the query cannot be embedded
            StoreQueryError: If the store query fails
        """
        if not query or not query.strip():
            raise RequestValidationError("query is required")

        top_k = self.top_k if top_k is None else top_k
        if top_k <= 0:
            raise RequestValidationError(f"top_k must be positive, got {top_k}")

        logger.info(
            "retrieval_started",
            query_length=len(query),
            top_k=top_k,
            source_host=filters.source_host if filters else None,
            source_prefix=filters.source_prefix if filters else None,
        )

        query_embedding = await self.embedder.embed_query(query)
        results = await self.store.query(query_embedding, top_k, filters)

        logger.info(
            "retrieval_completed",
            results_returned=len(results),
            top_distance=results[0].distance if results else None,
        )
        return results

    async def retrieve_for_chat(
        self,
        message: str,
        history: Optional[Sequence[ChatMessage]] = None,
        top_k: Optional[int] = None,
        filters: Optional[SearchFilter] = None,
    ) -> ChatRetrieval:
        """Retrieve passages for a conversational turn.

        Without an explicit filter the results are narrowed to the dominant
        host, using the combined query as the hint text.
        """
        if not message or not message.strip():
            raise RequestValidationError("message is required")

        query = build_retrieval_query(message, history)
        results = await self.search(query, top_k=top_k, filters=filters)

        if filters is not None and not filters.is_empty:
            return ChatRetrieval(query=query, results=results)

        dominant_host = infer_dominant_host(results, query)
        if dominant_host:
            narrowed = narrow_to_host(results, dominant_host)
            logger.info(
                "results_narrowed_to_host",
                host=dominant_host,
                before=len(results),
                after=len(narrowed),
            )
            results = narrowed

        return ChatRetrieval(query=query, results=results, dominant_host=dominant_host)
