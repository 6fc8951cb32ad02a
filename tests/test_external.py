"""Tests for the image generation and web search collaborators."""

import pytest

from fakes import FakeResponse
from overskill import external
from overskill.context import Context
from overskill.errors import ExternalServiceError
from overskill.external import ImageGenerator, WebSearcher, format_search_results, image_size_for


class FakeSession:
    def __init__(self, response: FakeResponse) -> None:
        self.response = response
        self.calls = []
        self.headers = {}

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        return self.response


@pytest.mark.parametrize("w,h,size", [(1024, 1024, "1024x1024"), (1920, 1080, "1536x1024"), (600, 900, "1024x1536")])
def test_image_size_for(w, h, size):
    assert image_size_for(w, h) == size


class TestImageGenerator:
    def test_generate_returns_url(self):
        gen = ImageGenerator(Context(), api_key="k", model="img-model")
        gen.session = FakeSession(FakeResponse(200, {"data": [{"url": "https://cdn.example/a.png"}]}))
        out = gen.generate("A red bicycle", width=1600, height=900)
        assert out == {"url": "https://cdn.example/a.png", "size": "1536x1024", "model": "img-model", "prompt": "A red bicycle"}
        sent = gen.session.calls[0]
        assert sent["method"] == "POST"
        assert sent["url"].endswith("/v1/images/generations")
        assert sent["json"]["size"] == "1536x1024"

    def test_base64_payload_becomes_data_uri(self):
        gen = ImageGenerator(Context(), api_key="k")
        gen.session = FakeSession(FakeResponse(200, {"data": [{"b64_json": "AAAA"}]}))
        assert gen.generate("icon")["url"] == "data:image/png;base64,AAAA"

    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(external, "OPENAI_API_KEY", "")
        with pytest.raises(ExternalServiceError):
            ImageGenerator(Context(), api_key="").generate("icon")

    def test_api_error(self):
        gen = ImageGenerator(Context(), api_key="k")
        gen.session = FakeSession(FakeResponse(400, text="content policy"))
        with pytest.raises(ExternalServiceError) as exc:
            gen.generate("icon")
        assert exc.value.status == 400
        assert exc.value.code == "external_error"

    def test_empty_result(self):
        gen = ImageGenerator(Context(), api_key="k")
        gen.session = FakeSession(FakeResponse(200, {"data": []}))
        with pytest.raises(ExternalServiceError):
            gen.generate("icon")


class TestWebSearcher:
    BODY = {
        "organic_results": [
            {"title": "Vite", "link": "https://vitejs.dev", "snippet": "Next generation tooling"},
            {"title": "React", "link": "https://react.dev"},
        ],
        "news_results": [{"title": "Release", "link": "https://news.example/1", "snippet": "v6 is out"}],
    }

    def searcher(self, body=None, status=200):
        s = WebSearcher(Context(), api_key="serp")
        s.session = FakeSession(FakeResponse(status, body if body is not None else self.BODY))
        return s

    def test_search(self):
        s = self.searcher()
        out = s.search("vite", num_results=5)
        assert [r["title"] for r in out["results"]] == ["Vite", "React"]
        assert out["results"][1]["snippet"] == ""
        params = s.session.calls[0]["params"]
        assert params["engine"] == "google"
        assert params["q"] == "vite"
        assert "tbm" not in params

    def test_news_category(self):
        s = self.searcher()
        out = s.search("vite", category="news")
        assert s.session.calls[0]["params"]["tbm"] == "nws"
        assert [r["title"] for r in out["results"]] == ["Release"]

    @pytest.mark.parametrize("category,query", [("github", "site:github.com vite"), ("pdf", "filetype:pdf vite")])
    def test_query_categories(self, category, query):
        s = self.searcher()
        assert s.search("vite", category=category)["query"] == query

    def test_num_results_caps_output(self):
        assert len(self.searcher().search("vite", num_results=1)["results"]) == 1

    def test_empty_query(self):
        with pytest.raises(ExternalServiceError):
            self.searcher().search("   ")

    def test_missing_key(self, monkeypatch):
        monkeypatch.setattr(external, "SERPAPI_API_KEY", "")
        with pytest.raises(ExternalServiceError):
            WebSearcher(Context(), api_key="").search("vite")

    def test_http_error(self):
        with pytest.raises(ExternalServiceError) as exc:
            self.searcher({"error": "quota"}, status=401).search("vite")
        assert exc.value.status == 401


def test_format_search_results():
    text = format_search_results([
        {"title": "A", "link": "https://a", "snippet": "first"},
        {"title": "B", "link": "https://b", "snippet": ""},
    ])
    assert text == "1. A\n   https://a\n   first\n\n2. B\n   https://b"
