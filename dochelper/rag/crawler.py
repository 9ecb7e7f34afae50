"""Same-host breadth-first site crawler.

Handles:
- FIFO traversal from a start URL up to a page and depth limit
- Same-host and document-extension filtering
- Body text extraction (script/style/nav/footer/header removed)
- Politeness delay between fetches

Per-page failures are logged and skipped; they never abort a crawl.
"""
import asyncio
import re
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Set, Tuple
from urllib.parse import urldefrag, urljoin, urlsplit, urlunsplit

import httpx
import structlog
from bs4 import BeautifulSoup

from dochelper import config
from dochelper.errors import ExtractionError, FetchError
from dochelper.rag.chunker import normalize_whitespace

logger = structlog.get_logger()

# Paths with these extensions are assets, not documents
_NON_DOCUMENT_RE = re.compile(
    r"\.(png|jpe?g|gif|svg|webp|ico|pdf|zip|tar|gz|tgz|mp4|mp3|wav|ogg|webm"
    r"|css|js|json|xml)$",
    re.IGNORECASE,
)

STRIPPED_TAGS = ("script", "style", "noscript", "nav", "footer", "header")

# httpx refuses URLs longer than this or containing ASCII control characters
MAX_URL_LENGTH = 65536
_CONTROL_CHAR_RE = re.compile(r"[\x00-\x1f\x7f]")


@dataclass
class CrawlPage:
    """Text extracted from one crawled page."""

    url: str
    text: str


def is_document_path(path: str) -> bool:
    """Return False for paths that point at images, archives, media or assets."""
    return not _NON_DOCUMENT_RE.search(path or "")


def normalize_url(url: str, base: Optional[str] = None) -> Optional[str]:
    """Resolve ``url`` against ``base`` and strip the fragment.

    Returns None for values that cannot be turned into an absolute http(s) URL.
    """
    try:
        absolute = urljoin(base, url) if base else url
        absolute, _fragment = urldefrag(absolute)
        parts = urlsplit(absolute)
    except ValueError:
        return None

    if parts.scheme not in ("http", "https") or not parts.netloc:
        return None
    if len(absolute) > MAX_URL_LENGTH or _CONTROL_CHAR_RE.search(absolute):
        return None

    path = parts.path or "/"
    return urlunsplit((parts.scheme, parts.netloc.lower(), path, parts.query, ""))


def url_host(url: str) -> str:
    """Host (with port, if any) of an absolute URL; empty string if unparseable."""
    try:
        return urlsplit(url).netloc.lower()
    except ValueError:
        return ""


def extract_page(html: str) -> Tuple[str, List[str]]:
    """Extract normalized body text and raw href values from an HTML page.

    Raises:
        ExtractionError: If the markup cannot be parsed
    """
    try:
        soup = BeautifulSoup(html, "html.parser")
    except Exception as e:
        raise ExtractionError(f"Unparseable HTML: {e}") from e

    # Links are collected before stripping so nav/footer links still count
    hrefs = []
    seen = set()
    for anchor in soup.find_all("a", href=True):
        href = anchor["href"].strip()
        if href and href not in seen:
            seen.add(href)
            hrefs.append(href)

    for tag in soup(list(STRIPPED_TAGS)):
        tag.decompose()

    body = soup.body or soup
    text = normalize_whitespace(body.get_text(separator=" "))
    return text, hrefs


class SiteCrawler:
    """Breadth-first crawler confined to the start URL's host."""

    def __init__(
        self,
        max_pages: Optional[int] = None,
        max_depth: Optional[int] = None,
        delay_ms: Optional[int] = None,
        user_agent: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the crawler.

        Args:
            max_pages: Maximum number of pages with text to return
            max_depth: Maximum link depth from the start URL
            delay_ms: Pause between fetch attempts in milliseconds
            user_agent: User-Agent header sent with every request
            transport: Optional httpx transport (used by tests)
        """
        self.max_pages = config.CRAWL_MAX_PAGES if max_pages is None else max_pages
        self.max_depth = config.CRAWL_MAX_DEPTH if max_depth is None else max_depth
        self.delay_ms = config.CRAWL_DELAY_MS if delay_ms is None else delay_ms
        self.user_agent = user_agent or config.CRAWL_USER_AGENT
        self._transport = transport

    async def crawl(self, start_url: str) -> List[CrawlPage]:
        """Crawl same-host pages reachable from ``start_url``.

        Args:
            start_url: Absolute http(s) URL to start from

        Returns:
            CrawlPage list in breadth-first order, at most ``max_pages`` long

        Raises:
            ValueError: If start_url is not an absolute http(s) URL
        """
        start = normalize_url(start_url)
        if start is None:
            raise ValueError(f"Not an absolute http(s) URL: {start_url!r}")

        start_host = url_host(start)
        queue: Deque[Tuple[str, int]] = deque([(start, 0)])
        visited: Set[str] = set()
        results: List[CrawlPage] = []
        failures = 0

        logger.info(
            "crawl_started",
            start_url=start,
            max_pages=self.max_pages,
            max_depth=self.max_depth,
        )

        async with httpx.AsyncClient(
            follow_redirects=True,
            headers={"User-Agent": self.user_agent},
            transport=self._transport,
        ) as client:
            while queue and len(results) < self.max_pages:
                url, depth = queue.popleft()
                if url in visited:
                    continue
                visited.add(url)

                if url_host(url) != start_host or not is_document_path(urlsplit(url).path):
                    continue

                try:
                    html = await self._fetch(client, url)
                    text, hrefs = extract_page(html)
                except FetchError as e:
                    failures += 1
                    logger.warning(
                        "crawl_fetch_failed",
                        url=url,
                        reason=e.reason,
                        status_code=e.status_code,
                    )
                    await self._pause()
                    continue
                except ExtractionError as e:
                    logger.warning("crawl_extraction_failed", url=url, error=str(e))
                    text, hrefs = "", []

                if text:
                    results.append(CrawlPage(url=url, text=text))
                    logger.debug("page_crawled", url=url, depth=depth, chars=len(text))

                if depth < self.max_depth:
                    for href in hrefs:
                        link = normalize_url(href, base=url)
                        if link is None or link in visited:
                            continue
                        if url_host(link) != start_host:
                            continue
                        if not is_document_path(urlsplit(link).path):
                            continue
                        queue.append((link, depth + 1))

                await self._pause()

        logger.info(
            "crawl_completed",
            start_url=start,
            pages=len(results),
            visited=len(visited),
            failures=failures,
        )

        return results

    async def _fetch(self, client: httpx.AsyncClient, url: str) -> str:
        try:
            response = await client.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchError(url, reason=str(e) or type(e).__name__) from e

        if not response.is_success:
            raise FetchError(
                url,
                reason=f"HTTP {response.status_code}",
                status_code=response.status_code,
            )
        return response.text

    async def _pause(self) -> None:
        if self.delay_ms > 0:
            await asyncio.sleep(self.delay_ms / 1000.0)
