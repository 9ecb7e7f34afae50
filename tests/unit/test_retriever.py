import pytest

from dochelper.errors import RequestValidationError
from dochelper.models import ChatMessage
from dochelper.rag.retriever import Retriever, build_retrieval_query, format_context
from dochelper.rag.store import SearchFilter, SearchResult

from conftest import MemoryStore, fake_vector

MIXED_RESULTS = [
    SearchResult("https://nextjs.org/docs/routing", "Routing in Next.js", 0.10),
    SearchResult("https://docs.python.org/3/library/asyncio.html", "asyncio", 0.12),
    SearchResult("https://nextjs.org/docs/app", "App router", 0.15),
    SearchResult(None, "raw text passage", 0.20),
]


def history(*pairs):
    return [ChatMessage(role=role, content=content) for role, content in pairs]


class TestBuildRetrievalQuery:
    def test_message_only(self):
        assert build_retrieval_query("How do I deploy?") == "USER: How do I deploy?"

    def test_keeps_last_turns(self):
        turns = history(
            ("user", "one"),
            ("assistant", "two"),
            ("user", "three"),
            ("assistant", "four"),
            ("user", "five"),
        )
        query = build_retrieval_query("six", turns, turns=4)
        assert query.split("\n") == [
            "ASSISTANT: two",
            "USER: three",
            "ASSISTANT: four",
            "USER: five",
            "USER: six",
        ]

    def test_zero_turns_ignores_history(self):
        assert build_retrieval_query("q", history(("user", "old")), turns=0) == "USER: q"


def test_format_context_numbers_passages():
    context = format_context(MIXED_RESULTS[2:])
    assert context == (
        "[#1] URL: https://nextjs.org/docs/app\nApp router"
        "\n---\n"
        "[#2] URL: n/a\nraw text passage"
    )
    assert format_context([]) == ""


class TestSearch:
    async def test_embeds_query_and_passes_filters(self, embedder, provider):
        store = MemoryStore(results=MIXED_RESULTS)
        retriever = Retriever(embedder, store, top_k=5)
        filters = SearchFilter(source_host="nextjs.org")

        results = await retriever.search("routing", filters=filters)

        assert [r.content for r in results] == ["Routing in Next.js", "App router"]
        embedding, limit, passed = store.queries[0]
        assert embedding == fake_vector("routing")
        assert limit == 5
        assert passed is filters
        assert provider.one_calls == ["routing"]

    async def test_every_call_embeds_again(self, embedder, provider):
        retriever = Retriever(embedder, MemoryStore(results=MIXED_RESULTS))

        await retriever.search("routing")
        await retriever.search("routing")

        assert provider.one_calls == ["routing", "routing"]

    async def test_explicit_top_k(self, embedder):
        store = MemoryStore(results=MIXED_RESULTS)
        results = await Retriever(embedder, store).search("q", top_k=2)
        assert len(results) == 2

    @pytest.mark.parametrize("query,top_k", [("", 3), ("   ", 3), ("q", 0), ("q", -1)])
    async def test_invalid_requests_do_no_io(self, embedder, provider, query, top_k):
        store = MemoryStore(results=MIXED_RESULTS)
        with pytest.raises(RequestValidationError):
            await Retriever(embedder, store).search(query, top_k=top_k)
        assert provider.one_calls == []
        assert store.queries == []


class TestRetrieveForChat:
    async def test_narrows_to_dominant_host(self, embedder):
        retriever = Retriever(embedder, MemoryStore(results=MIXED_RESULTS))

        retrieval = await retriever.retrieve_for_chat("How does routing work?")

        assert retrieval.dominant_host == "nextjs.org"
        assert [r.source_url for r in retrieval.results] == [
            "https://nextjs.org/docs/routing",
            "https://nextjs.org/docs/app",
        ]
        assert retrieval.query == "USER: How does routing work?"

    async def test_history_hint_shifts_dominant_host(self, embedder):
        results = [
            SearchResult("https://nextjs.org/docs/a", "a", 0.1),
            SearchResult("https://docs.python.org/3/a", "b", 0.2),
            SearchResult("https://docs.python.org/3/b", "c", 0.3),
        ]
        retriever = Retriever(embedder, MemoryStore(results=results))

        retrieval = await retriever.retrieve_for_chat(
            "and the app router?",
            history=history(("user", "tell me about NextJS"), ("assistant", "Sure.")),
        )

        assert retrieval.dominant_host == "nextjs.org"
        assert [r.content for r in retrieval.results] == ["a"]

    async def test_explicit_filter_skips_narrowing(self, embedder):
        store = MemoryStore(results=MIXED_RESULTS)
        retriever = Retriever(embedder, store)

        retrieval = await retriever.retrieve_for_chat(
            "asyncio?", filters=SearchFilter(source_prefix="https://docs.python.org/")
        )

        assert retrieval.dominant_host is None
        assert [r.content for r in retrieval.results] == ["asyncio"]

    async def test_results_without_hosts_are_returned_as_is(self, embedder):
        results = [SearchResult(None, "raw one", 0.1), SearchResult(None, "raw two", 0.2)]
        retriever = Retriever(embedder, MemoryStore(results=results))

        retrieval = await retriever.retrieve_for_chat("anything")

        assert retrieval.dominant_host is None
        assert [r.content for r in retrieval.results] == ["raw one", "raw two"]

    async def test_requires_message(self, embedder):
        with pytest.raises(RequestValidationError):
            await Retriever(embedder, MemoryStore()).retrieve_for_chat("  ")
