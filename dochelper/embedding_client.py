"""Embedding provider adapters and the batch/sequential embedding strategy.

Providers are plain objects constructed once at startup and passed by
reference; each owns a single ``httpx.AsyncClient`` for its lifetime.
"""
from typing import Any, Dict, List, Optional

import httpx
import structlog

from dochelper import config
from dochelper.errors import EmbeddingProviderError

logger = structlog.get_logger()


class EmbeddingProvider:
    """Base class for remote embedding providers.

    Subclasses set ``supports_batch`` to declare whether ``embed_batch`` is a
    real multi-input endpoint. The EmbeddingClient branches on that flag
    instead of probing the provider at runtime.
    """

    name = "base"
    supports_batch = False

    def __init__(self, model: str, timeout: float = None, transport=None):
        self.model = model
        self.timeout = config.EMBEDDING_TIMEOUT if timeout is None else timeout
        self._http = httpx.AsyncClient(timeout=self.timeout, transport=transport)

    async def embed_one(self, text: str) -> List[float]:
        raise NotImplementedError

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        raise NotImplementedError(f"{self.name} provider has no batch endpoint")

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _post(self, url: str, payload: Dict[str, Any], headers: Dict[str, str] = None) -> Dict:
        try:
            response = await self._http.post(url, json=payload, headers=headers)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            logger.error(
                "embedding_http_error",
                provider=self.name,
                model=self.model,
                status_code=e.response.status_code,
                error=str(e),
            )
            raise EmbeddingProviderError(
                f"{self.name} embedding request failed with HTTP {e.response.status_code}"
            ) from e
        except httpx.HTTPError as e:
            logger.error(
                "embedding_connection_error",
                provider=self.name,
                model=self.model,
                error=str(e),
            )
            raise EmbeddingProviderError(f"{self.name} embedding request failed: {e}") from e
        except ValueError as e:
            raise EmbeddingProviderError(f"{self.name} returned invalid JSON: {e}") from e


def _as_vector(values: Any, provider: str) -> List[float]:
    if not isinstance(values, list) or not values:
        raise EmbeddingProviderError(f"Empty or malformed embedding returned by {provider}")
    return [float(v) for v in values]


def _batch_vectors(items: List[Any], provider: str) -> List[List[float]]:
    """Vectors from a batch response, dropping malformed items.

    A shorter result makes EmbeddingClient fall back to single calls.
    """
    vectors = []
    for position, values in enumerate(items):
        if not isinstance(values, list) or not values:
            logger.warning("malformed_batch_embedding", provider=provider, position=position)
            continue
        vectors.append([float(v) for v in values])
    return vectors


class GoogleEmbeddingProvider(EmbeddingProvider):
    """Google Generative Language API (``text-embedding-004`` and friends)."""

    name = "google"
    supports_batch = True

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = None,
        transport=None,
    ):
        api_key = api_key or config.GOOGLE_API_KEY
        if not api_key:
            raise EmbeddingProviderError("GOOGLE_API_KEY is not set")
        super().__init__(model or config.EMBEDDING_MODEL, timeout=timeout, transport=transport)
        self.base_url = (base_url or config.GOOGLE_API_BASE_URL).rstrip("/")
        self._headers = {"x-goog-api-key": api_key}

    @property
    def _model_path(self) -> str:
        return self.model if self.model.startswith("models/") else f"models/{self.model}"

    def _content(self, text: str) -> Dict[str, Any]:
        return {"model": self._model_path, "content": {"parts": [{"text": text}]}}

    async def embed_one(self, text: str) -> List[float]:
        data = await self._post(
            f"{self.base_url}/{self._model_path}:embedContent",
            self._content(text),
            headers=self._headers,
        )
        return _as_vector((data.get("embedding") or {}).get("values"), self.name)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        data = await self._post(
            f"{self.base_url}/{self._model_path}:batchEmbedContents",
            {"requests": [self._content(t) for t in texts]},
            headers=self._headers,
        )
        return _batch_vectors(
            [item.get("values") if isinstance(item, dict) else None for item in data.get("embeddings") or []],
            self.name,
        )


class OllamaEmbeddingProvider(EmbeddingProvider):
    """Local Ollama server.

    ``/api/embeddings`` takes a single prompt; ``/api/embed`` accepts a list
    but only exists on newer servers, hence the configurable batch flag.
    """

    name = "ollama"

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        batch: Optional[bool] = None,
        timeout: float = None,
        transport=None,
    ):
        super().__init__(model or config.EMBEDDING_MODEL, timeout=timeout, transport=transport)
        self.base_url = (base_url or config.OLLAMA_BASE_URL).rstrip("/")
        self.supports_batch = config.OLLAMA_BATCH_EMBED if batch is None else batch

    async def embed_one(self, text: str) -> List[float]:
        logger.debug("ollama_embedding_request", model=self.model, prompt_length=len(text))
        data = await self._post(
            f"{self.base_url}/api/embeddings",
            {"model": self.model, "prompt": text},
        )
        return _as_vector(data.get("embedding"), self.name)

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        data = await self._post(
            f"{self.base_url}/api/embed",
            {"model": self.model, "input": texts},
        )
        return _batch_vectors(data.get("embeddings") or [], self.name)


def create_provider(name: Optional[str] = None) -> EmbeddingProvider:
    """Build the provider named by ``name`` (default: EMBEDDING_PROVIDER)."""
    name = (name or config.EMBEDDING_PROVIDER).lower()
    if name == "google":
        return GoogleEmbeddingProvider()
    if name == "ollama":
        return OllamaEmbeddingProvider()
    raise ValueError(f"Unknown embedding provider: {name!r}")


class EmbeddingClient:
    """Turns ordered text lists into equal-length, order-preserving vector lists."""

    def __init__(self, provider: EmbeddingProvider):
        self.provider = provider

    async def embed_texts(self, texts: List[str]) -> List[List[float]]:
        """Embed texts, preferring one batched call when the provider has one.

        Falls back to sequential single calls when the provider declares no
        batch support or the batch result length does not match the input.

        Raises:
            EmbeddingProviderError: If any remote call fails
        """
        if not texts:
            return []

        if len(texts) == 1:
            return [await self.provider.embed_one(texts[0])]

        if self.provider.supports_batch:
            vectors = await self.provider.embed_batch(texts)
            if len(vectors) == len(texts):
                logger.debug("embeddings_batch_generated", count=len(vectors))
                return vectors
            logger.warning(
                "batch_embedding_length_mismatch",
                provider=self.provider.name,
                expected=len(texts),
                received=len(vectors),
            )

        vectors = []
        for text in texts:
            vectors.append(await self.provider.embed_one(text))

        logger.debug("embeddings_sequential_generated", count=len(vectors))
        return vectors

    async def embed_query(self, text: str) -> List[float]:
        """Embed a single query string."""
        vectors = await self.embed_texts([text])
        return vectors[0]

    async def aclose(self) -> None:
        await self.provider.aclose()
