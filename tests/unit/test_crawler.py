from unittest.mock import AsyncMock

import httpx
import pytest

from dochelper.errors import FetchError
from dochelper.rag.crawler import (
    MAX_URL_LENGTH,
    SiteCrawler,
    extract_page,
    is_document_path,
    normalize_url,
    url_host,
)

ROOT_HTML = """
<html><head><title>Docs</title><script>var tracking = 1;</script></head>
<body>
  <nav><a href="/guide">Guide</a></nav>
  <main>
    <h1>Welcome</h1>
    <p>Welcome to the   docs.</p>
    <a href="/guide#install">Install</a>
    <a href="/logo.png">Logo</a>
    <a href="https://other.com/page">Elsewhere</a>
    <a href="/broken">Broken</a>
    <a href="mailto:team@example.com">Mail</a>
  </main>
  <footer>Copyright footer</footer>
</body></html>
"""

GUIDE_HTML = """
<html><body><p>Guide body text.</p><a href="/deep">Deeper</a></body></html>
"""

DEEP_HTML = "<html><body><p>Deep page.</p></body></html>"


def make_site(requested, fail_with=None):
    pages = {
        "https://docs.example.com/": ROOT_HTML,
        "https://docs.example.com/guide": GUIDE_HTML,
        "https://docs.example.com/deep": DEEP_HTML,
    }

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        requested.append(url)
        if fail_with and url in fail_with:
            raise httpx.ConnectError("connection refused", request=request)
        if url in pages:
            return httpx.Response(200, html=pages[url])
        return httpx.Response(500, text="server error")

    return httpx.MockTransport(handler)


class TestUrlHelpers:
    def test_normalize_resolves_and_strips_fragment(self):
        assert (
            normalize_url("/guide#install", base="https://Docs.Example.com/a/")
            == "https://docs.example.com/guide"
        )

    def test_normalize_adds_root_path(self):
        assert normalize_url("https://docs.example.com") == "https://docs.example.com/"

    def test_normalize_rejects_non_http(self):
        assert normalize_url("mailto:team@example.com") is None
        assert normalize_url("javascript:void(0)", base="https://docs.example.com/") is None
        assert normalize_url("not a url") is None

    def test_normalize_rejects_control_characters(self):
        assert normalize_url("/bad\x7flink", base="https://docs.example.com/") is None
        assert normalize_url("https://docs.example.com/a\nb") is None

    def test_normalize_rejects_overlong_urls(self):
        long_path = "/" + "p" * MAX_URL_LENGTH
        assert normalize_url(long_path, base="https://docs.example.com/") is None

    def test_url_host(self):
        assert url_host("https://Docs.Example.com:8443/x") == "docs.example.com:8443"

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/docs/intro", True),
            ("/", True),
            ("/page.html", True),
            ("/img/logo.PNG", False),
            ("/files/manual.pdf", False),
            ("/static/app.js", False),
            ("/feed.xml", False),
        ],
    )
    def test_is_document_path(self, path, expected):
        assert is_document_path(path) is expected


class TestExtractPage:
    def test_strips_chrome_and_scripts(self):
        text, _hrefs = extract_page(ROOT_HTML)
        assert "Welcome to the docs." in text
        assert "tracking" not in text
        assert "Copyright footer" not in text
        assert "  " not in text

    def test_collects_links_including_nav(self):
        _text, hrefs = extract_page(ROOT_HTML)
        assert hrefs[0] == "/guide"
        assert "/broken" in hrefs
        assert len(hrefs) == len(set(hrefs))

    def test_page_without_body(self):
        text, hrefs = extract_page("<p>Just a fragment</p>")
        assert text == "Just a fragment"
        assert hrefs == []


class TestSiteCrawler:
    async def test_crawls_same_host_breadth_first(self):
        requested = []
        crawler = SiteCrawler(max_pages=10, max_depth=1, delay_ms=0, transport=make_site(requested))

        pages = await crawler.crawl("https://docs.example.com")

        assert [p.url for p in pages] == [
            "https://docs.example.com/",
            "https://docs.example.com/guide",
        ]
        assert "Welcome to the docs." in pages[0].text
        assert pages[1].text == "Guide body text. Deeper"
        # Assets, other hosts and links past max_depth are never fetched
        assert requested == [
            "https://docs.example.com/",
            "https://docs.example.com/guide",
            "https://docs.example.com/broken",
        ]

    async def test_follows_links_up_to_max_depth(self):
        requested = []
        crawler = SiteCrawler(max_pages=10, max_depth=2, delay_ms=0, transport=make_site(requested))

        pages = await crawler.crawl("https://docs.example.com/")

        assert [p.url for p in pages][-1] == "https://docs.example.com/deep"

    async def test_depth_zero_fetches_only_start(self):
        requested = []
        crawler = SiteCrawler(max_pages=10, max_depth=0, delay_ms=0, transport=make_site(requested))

        pages = await crawler.crawl("https://docs.example.com/")

        assert len(pages) == 1
        assert requested == ["https://docs.example.com/"]

    async def test_stops_at_max_pages(self):
        requested = []
        crawler = SiteCrawler(max_pages=1, max_depth=2, delay_ms=0, transport=make_site(requested))

        pages = await crawler.crawl("https://docs.example.com/")

        assert len(pages) == 1
        assert requested == ["https://docs.example.com/"]

    async def test_network_errors_are_skipped(self):
        requested = []
        transport = make_site(requested, fail_with={"https://docs.example.com/guide"})
        crawler = SiteCrawler(max_pages=10, max_depth=1, delay_ms=0, transport=transport)

        pages = await crawler.crawl("https://docs.example.com/")

        assert [p.url for p in pages] == ["https://docs.example.com/"]

    async def test_failed_start_page_yields_empty_crawl(self):
        requested = []
        crawler = SiteCrawler(delay_ms=0, transport=make_site(requested))

        assert await crawler.crawl("https://docs.example.com/missing") == []

    async def test_sends_user_agent(self):
        seen = []

        def handler(request):
            seen.append(request.headers["user-agent"])
            return httpx.Response(200, html="<body>hi</body>")

        crawler = SiteCrawler(delay_ms=0, user_agent="TestBot/2.0", transport=httpx.MockTransport(handler))
        await crawler.crawl("https://docs.example.com/")

        assert seen == ["TestBot/2.0"]

    async def test_rejects_invalid_start_url(self):
        with pytest.raises(ValueError):
            await SiteCrawler(delay_ms=0).crawl("ftp://docs.example.com/")

    async def test_invalid_link_does_not_abort_crawl(self):
        root = '<html><body><p>Root.</p><a href="/bad\x7flink">Bad</a><a href="/good">Good</a></body></html>'
        pages = {
            "https://docs.example.com/": root,
            "https://docs.example.com/good": "<html><body><p>Good page.</p></body></html>",
        }

        def handler(request):
            url = str(request.url)
            if url not in pages:
                return httpx.Response(404)
            return httpx.Response(200, html=pages[url])

        crawler = SiteCrawler(max_pages=10, max_depth=1, delay_ms=0, transport=httpx.MockTransport(handler))

        pages_found = await crawler.crawl("https://docs.example.com/")

        assert [p.url for p in pages_found] == [
            "https://docs.example.com/",
            "https://docs.example.com/good",
        ]

    async def test_fetch_wraps_invalid_url(self):
        crawler = SiteCrawler(delay_ms=0)
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="unreachable"))

        async with httpx.AsyncClient(transport=transport) as client:
            with pytest.raises(FetchError) as exc_info:
                await crawler._fetch(client, "https://docs.example.com/bad\x7flink")

        assert exc_info.value.url == "https://docs.example.com/bad\x7flink"
        assert exc_info.value.status_code is None

    async def test_pauses_after_every_fetch(self, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr("dochelper.rag.crawler.asyncio.sleep", sleep)
        requested = []
        crawler = SiteCrawler(max_pages=10, max_depth=1, delay_ms=150, transport=make_site(requested))

        await crawler.crawl("https://docs.example.com/")

        # root, /guide and the failing /broken each cost one pause
        assert len(requested) == 3
        assert sleep.await_count == len(requested)
        assert all(call.args == (0.15,) for call in sleep.await_args_list)

    async def test_no_pause_when_delay_is_zero(self, monkeypatch):
        sleep = AsyncMock()
        monkeypatch.setattr("dochelper.rag.crawler.asyncio.sleep", sleep)
        crawler = SiteCrawler(max_pages=10, max_depth=1, delay_ms=0, transport=make_site([]))

        await crawler.crawl("https://docs.example.com/")

        sleep.assert_not_awaited()
