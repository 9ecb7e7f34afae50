from dochelper.rag.hosts import host_name_token, infer_dominant_host, narrow_to_host, source_host
from dochelper.rag.store import SearchResult


def result(url, content="c", distance=0.1):
    return SearchResult(source_url=url, content=content, distance=distance)


class TestHostHelpers:
    def test_source_host(self):
        assert source_host("https://NextJS.org/docs") == "nextjs.org"
        assert source_host(None) == ""
        assert source_host("no scheme") == ""

    def test_host_name_token(self):
        assert host_name_token("nextjs.org") == "nextjs"
        assert host_name_token("docs.python.org") == "python"
        assert host_name_token("localhost") == "localhost"


class TestInferDominantHost:
    def test_majority_host_wins(self):
        results = [
            result("https://nextjs.org/docs/a"),
            result("https://react.dev/learn"),
            result("https://nextjs.org/docs/b"),
        ]
        assert infer_dominant_host(results, "how do I route pages?") == "nextjs.org"

    def test_hint_doubles_a_host(self):
        results = [
            result("https://nextjs.org/docs/a"),
            result("https://nextjs.org/docs/b"),
            result("https://docs.python.org/3/library/asyncio.html"),
            result("https://docs.python.org/3/library/os.html"),
            result("https://docs.python.org/3/library/re.html"),
        ]
        # 2 * 2 = 4 beats 3 when the hint names nextjs
        assert infer_dominant_host(results, "USER: Routing in NextJS?") == "nextjs.org"
        assert infer_dominant_host(results, "USER: routing?") == "docs.python.org"

    def test_nextjs_python_examples(self):
        results = [
            result("https://nextjs.org/a"),
            result("https://nextjs.org/b"),
            result("https://python.org/c"),
        ]
        assert infer_dominant_host(results, "build a nextjs app") == "nextjs.org"
        assert infer_dominant_host(results, "") == "nextjs.org"

    def test_tie_keeps_first_seen(self):
        results = [result("https://b.dev/x"), result("https://a.dev/y")]
        assert infer_dominant_host(results, "") == "b.dev"

    def test_no_hosts(self):
        assert infer_dominant_host([], "anything") is None
        assert infer_dominant_host([result(None), result("")], "anything") is None


def test_narrow_to_host_preserves_order():
    results = [
        result("https://nextjs.org/docs/a", "1"),
        result("https://react.dev/learn", "2"),
        result(None, "3"),
        result("https://nextjs.org/docs/b", "4"),
    ]
    assert [r.content for r in narrow_to_host(results, "nextjs.org")] == ["1", "4"]
