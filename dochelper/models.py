"""Request and response models at the indexing/search boundary.

Fields accept the camelCase wire names (``topK``, ``sourceHost``) as well as
their snake_case attribute names.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dochelper import config
from dochelper.rag.store import SearchFilter


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SearchFilters(_WireModel):
    """Optional structural filters over source URLs."""

    source_host: Optional[str] = Field(default=None, alias="sourceHost")
    source_prefix: Optional[str] = Field(default=None, alias="sourcePrefix")

    @field_validator("source_host", "source_prefix")
    @classmethod
    def _blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    def to_filter(self) -> SearchFilter:
        return SearchFilter(source_host=self.source_host, source_prefix=self.source_prefix)


class IndexRequest(_WireModel):
    """Index a site by crawling ``url``, or index raw ``text``."""

    url: Optional[str] = None
    text: Optional[str] = None

    @model_validator(mode="after")
    def _require_source(self) -> "IndexRequest":
        has_url = bool(self.url and self.url.strip())
        has_text = bool(self.text and self.text.strip())
        if not has_url and not has_text:
            raise ValueError("Provide either url or text")
        if has_url and not self.url.strip().lower().startswith(("http://", "https://")):
            raise ValueError("url must be an absolute http(s) URL")
        return self


class IndexResult(BaseModel):
    """Outcome of one indexing request."""

    chunks: int
    pages: Optional[int] = None
    source: Literal["url_crawl", "text"]


class SearchRequest(_WireModel):
    """Semantic search over the indexed corpus."""

    query: str = Field(..., min_length=1)
    top_k: int = Field(default=config.RETRIEVAL_TOP_K, alias="topK", ge=1)
    filters: Optional[SearchFilters] = None

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query is required")
        return value


class ChatMessage(BaseModel):
    """One prior conversation turn used to enrich the retrieval query."""

    role: Literal["user", "assistant"]
    content: str


class ChatRetrievalRequest(_WireModel):
    """Retrieval for a conversational turn."""

    message: str = Field(..., min_length=1)
    top_k: int = Field(default=config.RETRIEVAL_TOP_K, alias="topK", ge=1)
    filters: Optional[SearchFilters] = None
    history: List[ChatMessage] = Field(default_factory=list)
