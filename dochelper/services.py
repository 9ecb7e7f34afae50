"""Process-level wiring: logging setup and the DocHelper service bundle.

The provider, embedding client and vector store are created once here and
handed to every component that needs them.
"""
import logging
import sys
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar, Union

import structlog
from pydantic import BaseModel, ValidationError

from dochelper import config
from dochelper.embedding_client import EmbeddingClient, EmbeddingProvider, create_provider
from dochelper.errors import RequestValidationError
from dochelper.models import (
    ChatMessage,
    ChatRetrievalRequest,
    IndexResult,
    SearchFilters,
    SearchRequest,
)
from dochelper.rag.crawler import SiteCrawler
from dochelper.rag.ingest import IndexingPipeline
from dochelper.rag.retriever import ChatRetrieval, Retriever
from dochelper.rag.store import SearchResult, VectorStore, create_vector_store

logger = structlog.get_logger()

FilterInput = Optional[Union[SearchFilters, Dict[str, Any]]]

M = TypeVar("M", bound=BaseModel)


def _validate(model: Type[M], payload: Dict[str, Any]) -> M:
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise RequestValidationError(str(e)) from e


def configure_logging(level: Optional[str] = None) -> None:
    """Route structlog through stdlib logging with JSON output."""
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stderr,
        level=getattr(logging, (level or config.LOG_LEVEL).upper(), logging.INFO),
    )
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
    )


class DocHelper:
    """Bundle of the indexing and retrieval components sharing one provider and store."""

    def __init__(
        self,
        provider: EmbeddingProvider,
        store: VectorStore,
        crawler: Optional[SiteCrawler] = None,
    ):
        self.provider = provider
        self.store = store
        self.embedder = EmbeddingClient(provider)
        self.pipeline = IndexingPipeline(self.embedder, store, crawler=crawler)
        self.retriever = Retriever(self.embedder, store)

    @classmethod
    def create(cls) -> "DocHelper":
        """Build every component from configuration."""
        helper = cls(provider=create_provider(), store=create_vector_store())
        logger.info(
            "dochelper_created",
            provider=helper.provider.name,
            model=helper.provider.model,
            backend=helper.store.backend,
            dimension=helper.store.dimension,
        )
        return helper

    async def index(self, url: Optional[str] = None, text: Optional[str] = None) -> IndexResult:
        return await self.pipeline.index(url=url, text=text)

    async def search(
        self,
        query: str,
        top_k: Optional[int] = None,
        filters: FilterInput = None,
    ) -> List[SearchResult]:
        """Validate a search request in wire form and run it.

        Args:
            query: Natural-language query
            top_k: Number of results (default from config)
            filters: SearchFilters, or a dict with ``sourceHost``/``sourcePrefix``
        """
        payload = {"query": query, "filters": filters}
        if top_k is not None:
            payload["topK"] = top_k
        request = _validate(SearchRequest, payload)

        await self.store.ensure_schema()
        return await self.retriever.search(
            request.query,
            top_k=request.top_k,
            filters=request.filters.to_filter() if request.filters else None,
        )

    async def retrieve_for_chat(
        self,
        message: str,
        history: Sequence[Union[ChatMessage, dict]] = (),
        top_k: Optional[int] = None,
        filters: FilterInput = None,
    ) -> ChatRetrieval:
        """Validate a conversational turn and retrieve its context.

        ``filters`` takes the same forms as in :meth:`search`.
        """
        payload = {"message": message, "history": list(history), "filters": filters}
        if top_k is not None:
            payload["topK"] = top_k
        request = _validate(ChatRetrievalRequest, payload)

        await self.store.ensure_schema()
        return await self.retriever.retrieve_for_chat(
            request.message,
            history=request.history,
            top_k=request.top_k,
            filters=request.filters.to_filter() if request.filters else None,
        )

    async def status(self) -> dict:
        """Chunk count and backend details."""
        await self.store.ensure_schema()
        return {
            "count": await self.store.count(),
            "backend": self.store.backend,
            "dimension": self.store.dimension,
            "embedding_model": self.provider.model,
        }

    async def aclose(self) -> None:
        await self.embedder.aclose()
        await self.store.close()

    async def __aenter__(self) -> "DocHelper":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
