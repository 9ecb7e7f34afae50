"""Exception types raised by the retrieval core.

Per-page crawl failures (FetchError, ExtractionError) are absorbed by the
crawler. Everything else propagates to the immediate caller; nothing in this
package retries.
"""


class DocHelperError(Exception):
    """Base class for all DocHelper errors."""


class FetchError(DocHelperError):
    """A crawl page could not be fetched (network failure or non-2xx status)."""

    def __init__(self, url: str, reason: str, status_code: int = None):
        self.url = url
        self.reason = reason
        self.status_code = status_code
        super().__init__(f"Failed to fetch {url}: {reason}")


class ExtractionError(DocHelperError):
    """HTML could not be parsed into text."""


class EmbeddingProviderError(DocHelperError):
    """The remote embedding provider failed or returned a malformed response."""


class SchemaProvisionError(DocHelperError):
    """Vector store schema or index could not be created."""


class StoreQueryError(DocHelperError):
    """A vector store upsert, query or count failed."""


class RequestValidationError(DocHelperError, ValueError):
    """Input was missing or invalid; raised before any I/O happens."""


class NothingToIndexError(DocHelperError):
    """The input produced no indexable content."""
