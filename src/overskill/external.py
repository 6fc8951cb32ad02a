# overskill: HTTP collaborators used by tool handlers: image generation (OpenAI Images API) and web search (SerpAPI). Both speak requests directly and raise ExternalServiceError so dispatch reports a tool error instead of failing the run.

import os
import random
import time
from typing import Any, Dict, List, Optional, Protocol

import requests

from .config import HTTP_RETRIES, IMAGE_MODEL, IMAGE_TIMEOUT_SEC, OPENAI_API_KEY, OPENAI_BASE_URL, SERPAPI_API_KEY
from .context import Context
from .errors import ExternalServiceError
from .settings import section

SERPAPI_URL = "https://serpapi.com/search.json"
SEARCH_CATEGORIES = ("news", "github", "pdf")
SEARCH_TIMEOUT_SEC = 30


class ImageService(Protocol):
    def generate(self, prompt: str, width: int = 1024, height: int = 1024) -> Dict[str, Any]:
        ...


class SearchService(Protocol):
    def search(self, query: str, num_results: int = 5, category: Optional[str] = None) -> Dict[str, Any]:
        ...


def image_size_for(width: int, height: int) -> str:
    """Map requested dimensions onto the sizes the Images API accepts."""
    if width > height:
        return "1536x1024"
    if height > width:
        return "1024x1536"
    return "1024x1024"


def _request_with_retries(
    ctx: Context,
    session: requests.Session,
    service: str,
    method: str,
    url: str,
    max_retries: int,
    **kwargs: Any,
) -> requests.Response:
    """Issue a request, retrying timeouts and HTTP 5xx with jittered backoff; 4xx are returned as-is."""
    attempt = 0
    while True:
        attempt += 1
        try:
            r = session.request(method, url, **kwargs)
        except requests.exceptions.Timeout as e:
            if attempt <= max_retries:
                delay = [1.0, 2.0, 4.0][min(attempt - 1, 2)] * random.uniform(0.5, 1.5)
                ctx.log(f"{service} timeout on attempt {attempt}; retrying in {delay:.2f}s...")
                time.sleep(delay)
                continue
            raise ExternalServiceError(service, f"{service} timed out after {attempt} attempt(s): {e}")
        except requests.exceptions.RequestException as e:
            raise ExternalServiceError(service, f"{service} request failed: {e}")
        if r.status_code >= 500 and attempt <= max_retries:
            delay = [1.0, 2.0, 4.0][min(attempt - 1, 2)] * random.uniform(0.5, 1.5)
            ctx.log(f"{service} attempt {attempt} received {r.status_code}; retrying in {delay:.2f}s...")
            time.sleep(delay)
            continue
        return r


class ImageGenerator:
    """
    OpenAI Images API client.

    generate() returns {"url", "size", "model", "prompt"}; when the API answers
    with base64 data the url is a data: URI.
    """

    def __init__(
        self,
        ctx: Context,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: float = IMAGE_TIMEOUT_SEC,
        max_retries: int = HTTP_RETRIES,
    ) -> None:
        self.ctx = ctx
        self.api_key = api_key or OPENAI_API_KEY
        self.model = model or IMAGE_MODEL
        base = (base_url or OPENAI_BASE_URL or "https://api.openai.com/v1").rstrip("/")
        if not base.endswith("/v1"):
            base = f"{base}/v1"
        self.base_url = base
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = requests.Session()
        if self.api_key:
            self.session.headers.update({
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            })

    def generate(self, prompt: str, width: int = 1024, height: int = 1024) -> Dict[str, Any]:
        if not self.api_key:
            raise ExternalServiceError("image", "Image generation is not configured (OPENAI_API_KEY)")
        if not (prompt or "").strip():
            raise ExternalServiceError("image", "Prompt is required")
        size = image_size_for(int(width), int(height))
        payload = {"model": self.model, "prompt": prompt, "size": size, "n": 1}
        self.ctx.log(f"[image] Generating {size} image with {self.model}")
        r = _request_with_retries(
            self.ctx, self.session, "image", "POST", f"{self.base_url}/images/generations",
            self.max_retries, json=payload, timeout=self.timeout,
        )
        if r.status_code != 200:
            raise ExternalServiceError("image", f"Images API error {r.status_code}: {r.text[:500]}", status=r.status_code)
        try:
            data = (r.json().get("data") or [{}])[0]
        except (ValueError, AttributeError, IndexError):
            raise ExternalServiceError("image", "Images API returned an unreadable body", status=r.status_code)
        url = data.get("url")
        if not url and data.get("b64_json"):
            url = f"data:image/png;base64,{data['b64_json']}"
        if not url:
            raise ExternalServiceError("image", "Images API returned no image", status=r.status_code)
        return {"url": url, "size": size, "model": self.model, "prompt": prompt}


def format_search_results(results: List[Dict[str, Any]]) -> str:
    """Render results as numbered 'title / link / snippet' entries for the model."""
    lines: List[str] = []
    for i, item in enumerate(results, start=1):
        lines.append(f"{i}. {item.get('title', '')}")
        lines.append(f"   {item.get('link', '')}")
        snippet = item.get("snippet")
        if snippet:
            lines.append(f"   {snippet}")
        lines.append("")
    return "\n".join(lines).rstrip("\n")


class WebSearcher:
    """SerpAPI Google search with optional news/github/pdf categories."""

    def __init__(
        self,
        ctx: Context,
        api_key: Optional[str] = None,
        timeout: float = SEARCH_TIMEOUT_SEC,
        max_retries: int = HTTP_RETRIES,
    ) -> None:
        self.ctx = ctx
        self.api_key = api_key or SERPAPI_API_KEY
        self.timeout = timeout
        self.max_retries = max_retries
        self.session = requests.Session()

    def search(self, query: str, num_results: int = 5, category: Optional[str] = None) -> Dict[str, Any]:
        q = (query or "").strip()
        if not q:
            raise ExternalServiceError("search", "Query is required")
        if not self.api_key:
            raise ExternalServiceError("search", "Web search is not configured (SERPAPI_API_KEY)")
        params: Dict[str, Any] = {"engine": "google", "q": q, "api_key": self.api_key, "num": int(num_results)}
        if category == "news":
            params["tbm"] = "nws"
        elif category == "github":
            params["q"] = f"site:github.com {q}"
        elif category == "pdf":
            params["q"] = f"filetype:pdf {q}"
        self.ctx.log(f"[search] {params['q']!r} (category={category or 'web'})")
        r = _request_with_retries(
            self.ctx, self.session, "search", "GET", SERPAPI_URL,
            self.max_retries, params=params, timeout=self.timeout,
        )
        if r.status_code != 200:
            raise ExternalServiceError("search", f"SerpAPI error {r.status_code}: {r.text[:500]}", status=r.status_code)
        try:
            body = r.json()
        except ValueError:
            raise ExternalServiceError("search", "SerpAPI returned an unreadable body", status=r.status_code)
        raw = body.get("news_results") if category == "news" else body.get("organic_results")
        results = [
            {"title": it.get("title", ""), "link": it.get("link", ""), "snippet": it.get("snippet", "")}
            for it in (raw or [])[: int(num_results)]
            if isinstance(it, dict)
        ]
        return {"query": params["q"], "results": results, "formatted": format_search_results(results)}


def build_collaborators(ctx: Context, settings: Optional[Dict[str, Any]] = None):
    """Build (ImageGenerator, WebSearcher) from settings['images'/'search'] and environment."""
    img_cfg = section(settings or {}, "images")
    search_cfg = section(settings or {}, "search")
    images = ImageGenerator(
        ctx,
        api_key=img_cfg.get("api_key") or os.environ.get("OPENAI_API_KEY"),
        model=img_cfg.get("model"),
        base_url=img_cfg.get("base_url"),
    )
    searcher = WebSearcher(ctx, api_key=search_cfg.get("api_key") or os.environ.get("SERPAPI_API_KEY"))
    return images, searcher
