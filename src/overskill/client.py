# overskill: Responses API client used as an LLM provider. One complete() call is one model turn: the orchestrator owns the tool loop. Providers openai/azure/openrouter share the wire format; transient failures retry with jittered backoff and whatever is left surfaces as ProviderError.

import json
import os
import pathlib
import random
import time
from typing import Any, Dict, List, Optional, Protocol, Tuple

import requests

from .config import AI_MODEL, FALLBACK_MODEL, FALLBACK_PROVIDER, HTTP_RETRIES, MAX_COMPLETION_TOKENS, MODEL_TIMEOUT_SEC, OPENROUTER_API_KEY
from .context import Context
from .errors import ProviderError
from .models import ModelReply, ToolCall
from .settings import section
from .tools import RAW_ARGUMENTS_KEY

PROVIDERS = ("openai", "azure", "openrouter")
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


class ModelProvider(Protocol):
    """Anything that can run one model turn over Responses-style input items."""

    name: str

    def complete(
        self,
        ctx: Context,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        timeout: Optional[float] = None,
    ) -> ModelReply:
        ...


def _looks_like_azure(url: Optional[str]) -> bool:
    if not url:
        return False
    u = url.lower()
    return ("azure.com" in u) or ("/openai/" in u) or ("openai.azure.com" in u)


class ResponsesClient:
    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        settings: Optional[Dict[str, Any]] = None,
        provider: Optional[str] = None,
        max_retries: int = HTTP_RETRIES,
        settings_key: str = "api",
    ) -> None:
        """
        Initialize a minimal HTTP client for the Responses API with provider autodetection.

        Provider selection precedence (highest first):
          1) Constructor args (provider/api_key/model/base_url)
          2) settings[settings_key] values (provider, api_key, model, base_url)
          3) Environment
             - OpenAI:     OPENAI_API_KEY, AI_MODEL, OPENAI_BASE_URL
             - Azure:      AZURE_OPENAI_API_KEY, AZURE_OPENAI_MODEL, AZURE_OPENAI_ENDPOINT
             - OpenRouter: OPENROUTER_API_KEY, OVERSKILL_FALLBACK_MODEL

        Base URL normalization:
          - OpenAI:     default https://api.openai.com/v1 ("/v1" suffix ensured)
          - Azure:      {endpoint}/openai/v1
          - OpenRouter: default https://openrouter.ai/api/v1

        Missing credentials raise RuntimeError at construction time.
        """
        self.session = requests.Session()
        self.max_retries = max(0, int(max_retries))

        api_cfg = section(settings or {}, settings_key)

        resolved_provider = str(provider or api_cfg.get("provider") or "").strip().lower() or None
        if resolved_provider not in PROVIDERS:
            if (os.environ.get("AZURE_OPENAI_API_KEY") or os.environ.get("AZURE_OPENAI_ENDPOINT")) or _looks_like_azure(base_url or api_cfg.get("base_url")):
                resolved_provider = "azure"
            else:
                resolved_provider = "openai"

        # Resolve values with precedence: args > settings > env
        if resolved_provider == "azure":
            resolved_api_key = api_key or api_cfg.get("api_key") or os.environ.get("AZURE_OPENAI_API_KEY")
            resolved_model = model or api_cfg.get("model") or os.environ.get("AZURE_OPENAI_MODEL")
            endpoint = base_url or api_cfg.get("base_url") or os.environ.get("AZURE_OPENAI_ENDPOINT")
            if not endpoint:
                raise RuntimeError("Azure provider selected but no endpoint provided (AZURE_OPENAI_ENDPOINT or settings base_url or base_url arg).")
            endpoint = endpoint.rstrip("/")
            if not endpoint.endswith("/openai/v1"):
                if endpoint.endswith("/openai"):
                    endpoint = f"{endpoint}/v1"
                else:
                    endpoint = f"{endpoint}/openai/v1"
            resolved_base_url = endpoint
            if not resolved_api_key:
                raise RuntimeError("Azure provider selected but no API key provided (AZURE_OPENAI_API_KEY or settings api_key or api_key arg).")
            if not resolved_model:
                raise RuntimeError("Azure provider selected but no model deployment provided (AZURE_OPENAI_MODEL or settings model or model arg).")
            self.session.headers.update({
                "api-key": resolved_api_key,
                "Content-Type": "application/json",
            })
        elif resolved_provider == "openrouter":
            resolved_api_key = api_key or api_cfg.get("api_key") or os.environ.get("OPENROUTER_API_KEY") or OPENROUTER_API_KEY
            resolved_model = model or api_cfg.get("model") or FALLBACK_MODEL
            resolved_base_url = (base_url or api_cfg.get("base_url") or OPENROUTER_BASE_URL).rstrip("/")
            if not resolved_api_key:
                raise RuntimeError("OpenRouter provider selected but no API key provided (OPENROUTER_API_KEY or settings api_key or api_key arg).")
            self.session.headers.update({
                "Authorization": f"Bearer {resolved_api_key}",
                "Content-Type": "application/json",
            })
        else:  # openai
            resolved_api_key = api_key or api_cfg.get("api_key") or os.environ.get("OPENAI_API_KEY")
            resolved_model = model or api_cfg.get("model") or os.environ.get("AI_MODEL") or AI_MODEL
            resolved_base_url = base_url or api_cfg.get("base_url") or os.environ.get("OPENAI_BASE_URL") or "https://api.openai.com/v1"
            resolved_base_url = resolved_base_url.rstrip("/")
            if not resolved_base_url.endswith("/v1"):
                resolved_base_url = f"{resolved_base_url}/v1"
            if not resolved_api_key:
                raise RuntimeError("OpenAI provider selected but no API key provided (OPENAI_API_KEY or settings api_key or api_key arg).")
            self.session.headers.update({
                "Authorization": f"Bearer {resolved_api_key}",
                "Content-Type": "application/json",
            })

        self.model = resolved_model  # model id, Azure deployment name or OpenRouter slug
        self.base_url = resolved_base_url
        self.provider = resolved_provider
        self.name = f"{self.provider}:{self.model}"

    def _make_payload(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        max_output_tokens: int,
        cache_key: Optional[str],
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.model,
            "input": [_strip_local_fields(m) for m in messages],
            "max_output_tokens": max_output_tokens,
        }
        if tools:
            payload["tools"] = list(tools)
            payload["tool_choice"] = "auto"
        if self.provider in ("openai", "azure"):
            payload["reasoning"] = {"effort": "medium"}
            if cache_key:
                payload["prompt_cache_key"] = cache_key
        return payload

    def complete(
        self,
        ctx: Context,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]],
        timeout: Optional[float] = None,
        max_output_tokens: Optional[int] = None,
        cache_key: Optional[str] = None,
    ) -> ModelReply:
        """
        Run one model turn and normalize the result.

        Args:
            ctx: Logging context; ctx.settings controls .httpcalls dumps.
            messages: Responses API input items (messages, function_call, function_call_output).
            tools: OpenAI function tool specs.
            timeout: Total seconds for the call, shared by every retry attempt.

        Returns:
            ModelReply with assistant text and the requested tool calls in order.

        Raises:
            ProviderError: after retries are exhausted, on non-retryable HTTP errors,
                or when the body cannot be parsed.
        """
        url = f"{self.base_url}/responses"
        payload = self._make_payload(messages, tools, max_output_tokens or MAX_COMPLETION_TOKENS, cache_key)
        http_file = self._open_http_log(ctx, url, payload)
        r = self._post_with_retries(ctx, url, payload, timeout or MODEL_TIMEOUT_SEC, http_file)
        try:
            resp = r.json()
        except ValueError:
            raise ProviderError(f"{self.name}: response body is not JSON", provider=self.name, status=r.status_code)
        if not isinstance(resp, dict):
            raise ProviderError(f"{self.name}: unexpected response shape", provider=self.name, status=r.status_code)
        if resp.get("status") == "failed" or resp.get("error"):
            err = resp.get("error") or {}
            msg = err.get("message") if isinstance(err, dict) else str(err)
            raise ProviderError(f"{self.name}: response failed: {msg}", provider=self.name, status=r.status_code)
        usage = _log_usage(ctx, self.name, resp)
        content, tool_calls = extract_reply(resp)
        return ModelReply(content=content, tool_calls=tuple(tool_calls), provider=self.name, usage=usage)

    def _post_with_retries(
        self,
        ctx: Context,
        url: str,
        payload: Dict[str, Any],
        timeout: float,
        http_file: Optional[pathlib.Path],
    ) -> requests.Response:
        # Timeouts, connection errors, 429 and HTTP 5xx are retried; other 4xx fail immediately.
        # All attempts and backoff sleeps fit inside timeout.
        deadline = time.monotonic() + timeout
        attempt = 0
        while True:
            attempt += 1
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise ProviderError(f"{self.name}: no response within {timeout:g}s after {attempt - 1} attempt(s)", provider=self.name, retryable=True)
            t0 = time.time()
            try:
                r = self.session.post(url, json=payload, timeout=remaining)
            except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
                delay = _backoff(attempt)
                if attempt <= self.max_retries and delay < deadline - time.monotonic():
                    ctx.log(f"Responses API {type(e).__name__} on attempt {attempt}; retrying in {delay:.2f}s...")
                    time.sleep(delay)
                    continue
                raise ProviderError(f"{self.name}: {type(e).__name__} after {attempt} attempt(s): {e}", provider=self.name)
            except requests.exceptions.RequestException as e:
                raise ProviderError(f"{self.name}: request failed: {e}", provider=self.name)

            elapsed_ms = int((time.time() - t0) * 1000)
            _append_http_response(http_file, r, elapsed_ms)

            if r.status_code == 200:
                return r
            retryable = r.status_code >= 500 or r.status_code == 429
            delay = _backoff(attempt)
            if retryable and attempt <= self.max_retries and delay < deadline - time.monotonic():
                ctx.log(f"Responses API attempt {attempt} received {r.status_code}; retrying in {delay:.2f}s...")
                time.sleep(delay)
                continue
            raise ProviderError(
                f"{self.name}: Responses API error {r.status_code}: {r.text[:2000]}",
                provider=self.name,
                status=r.status_code,
                retryable=retryable,
            )

    def _open_http_log(self, ctx: Context, url: str, payload: Dict[str, Any]) -> Optional[pathlib.Path]:
        """Write the request in REST Client format with redacted secrets when .httpcalls logging is on."""
        root = ctx.app_root
        if root is None:
            return None
        log_cfg = section(ctx.settings, "logging", "httpcalls")
        enabled = log_cfg.get("enabled")
        custom_dir = log_cfg.get("dir")
        if enabled is False:
            return None
        if enabled is True:
            if custom_dir:
                cpath = pathlib.Path(str(custom_dir))
                base_dir = cpath if cpath.is_absolute() else (root / cpath)
            else:
                base_dir = root / ".httpcalls"
            base_dir.mkdir(parents=True, exist_ok=True)
        else:
            # Only log when the default dir already exists
            base_dir = root / ".httpcalls"
            if not base_dir.is_dir():
                return None
        ts_ms = int(time.time() * 1000)
        http_file_path = base_dir / f"call-{ts_ms}-{self.provider}.http"
        headers_for_log = dict(self.session.headers)
        if "Authorization" in headers_for_log:
            headers_for_log["Authorization"] = "Bearer {{API_KEY}}"
        if "api-key" in headers_for_log:
            headers_for_log["api-key"] = "{{AZURE_OPENAI_API_KEY}}"
        if dump_http_file(ctx, http_file_path, url, "POST", headers_for_log, payload):
            return http_file_path
        return None


def _backoff(attempt: int) -> float:
    base_delay = [1.0, 2.0, 4.0][min(attempt - 1, 2)]
    return base_delay * random.uniform(0.5, 1.5)


def _strip_local_fields(item: Dict[str, Any]) -> Dict[str, Any]:
    # History entries carry a local "ts" that the API would reject.
    if "ts" in item:
        return {k: v for k, v in item.items() if k != "ts"}
    return item


def parse_arguments(args_text: Any) -> Dict[str, Any]:
    """Parse function-call arguments; anything that is not a JSON object is kept raw for validation."""
    if isinstance(args_text, dict):
        return args_text
    if args_text is None or args_text == "":
        return {}
    try:
        parsed = json.loads(args_text)
    except (TypeError, ValueError):
        return {RAW_ARGUMENTS_KEY: str(args_text)}
    if not isinstance(parsed, dict):
        return {RAW_ARGUMENTS_KEY: str(args_text)}
    return parsed


def extract_reply(resp_obj: Dict[str, Any]) -> Tuple[Optional[str], List[ToolCall]]:
    """
    Normalize a Responses API result into (content, tool_calls).

    Output is a heterogeneous list; message text is stitched together while
    function_call items become ToolCalls indexed in the order received.
    """
    content_chunks: List[str] = []
    tool_calls: List[ToolCall] = []
    output = resp_obj.get("output")
    if isinstance(output, list):
        for o in output:
            if not isinstance(o, dict):
                continue
            _otype = o.get("type")
            if _otype == "message":
                _ct = o.get("content")
                if isinstance(_ct, str):
                    content_chunks.append(_ct)
                elif isinstance(_ct, list):
                    for item in _ct:
                        if isinstance(item, str):
                            content_chunks.append(item)
                        elif isinstance(item, dict) and item.get("type", "") == "output_text":
                            content_chunks.append(item.get("text", ""))
            elif _otype == "function_call":
                tool_calls.append(ToolCall(
                    name=str(o.get("name") or ""),
                    arguments=parse_arguments(o.get("arguments")),
                    index=len(tool_calls),
                    call_id=o.get("call_id") or o.get("id"),
                ))
    if not content_chunks and isinstance(resp_obj.get("output_text"), str):
        content_chunks.append(resp_obj["output_text"])
    content = "\n".join(c for c in content_chunks if c) if content_chunks else None
    return content, tool_calls


def _log_usage(ctx: Context, name: str, resp_obj: Dict[str, Any]) -> Dict[str, int]:
    """Log token usage; Responses fields first, Chat Completions aliases as fallback."""
    usage = resp_obj.get("usage") or {}

    def _as_int(v: Any) -> int:
        try:
            return int(v) if v is not None else 0
        except (TypeError, ValueError):
            return 0

    input_tokens = usage.get("input_tokens")
    if input_tokens is None:
        input_tokens = usage.get("prompt_tokens")
    output_tokens = usage.get("output_tokens")
    if output_tokens is None:
        output_tokens = usage.get("completion_tokens")

    # Cached input tokens may appear in several places
    cached_input = None
    itd = usage.get("input_tokens_details") or usage.get("input_token_details") or {}
    ptd = usage.get("prompt_tokens_details") or {}
    for cand in (itd.get("cached_tokens"), ptd.get("cached_tokens"), usage.get("cache_read_input_tokens")):
        if cand is not None:
            cached_input = cand
            break

    out = {
        "input_tokens": _as_int(input_tokens),
        "cached_input_tokens": _as_int(cached_input),
        "output_tokens": _as_int(output_tokens),
    }
    ctx.log(
        f"{name} usage: input_tokens={out['input_tokens']}, cached_input_tokens={out['cached_input_tokens']}, output_tokens={out['output_tokens']}"
    )
    return out


def dump_http_file(ctx: Context, file: pathlib.Path, url: str, method: str, headers: Dict[str, str], obj: Any) -> bool:
    """
    Write a human-readable HTTP request dump to disk for debugging.

    Best-effort: serialization and I/O errors are logged and reported by the
    False return value instead of raising.
    """
    try:
        json_str = json.dumps(obj, indent=2, ensure_ascii=False)
        with open(file, "w", encoding="utf-8") as f:
            f.write(f"{method.upper()} {url}\n")
            for key, value in headers.items():
                f.write(f"{key}: {value}\n")
            f.write("\n")
            f.write(json_str)
        ctx.debug(f"HTTP request dumped to {file}")
        return True
    except TypeError as e:
        ctx.warn(f"The request body could not be serialized to JSON: {e}")
    except OSError as e:
        ctx.warn(f"Could not write to file {file}: {e}")
    return False


def _append_http_response(http_file: Optional[pathlib.Path], r: requests.Response, elapsed_ms: int) -> None:
    if http_file is None:
        return
    try:
        with open(http_file, "a", encoding="utf-8") as f:
            f.write("\n\n### Response, elapsed_ms: " + str(elapsed_ms) + "\n")
            f.write(f"HTTP/1.1 {r.status_code} {getattr(r, 'reason', '')}\n")
            for hk, hv in r.headers.items():
                f.write(f"{hk}: {hv}\n")
            f.write("\n")
            f.write(r.text)
    except OSError:
        pass  # dump is diagnostic only


def build_provider_pair(settings: Optional[Dict[str, Any]] = None) -> Tuple[ResponsesClient, Optional[ResponsesClient]]:
    """
    Build (primary, fallback) providers.

    The fallback comes from settings['fallback'] or OVERSKILL_FALLBACK_PROVIDER /
    OVERSKILL_FALLBACK_MODEL; it is None when disabled ('none') or lacking credentials.
    """
    primary = ResponsesClient(settings=settings)
    fb_cfg = section(settings or {}, "fallback")
    fb_provider = str(fb_cfg.get("provider") or FALLBACK_PROVIDER or "").strip().lower()
    if fb_provider in ("", "none", "off") or fb_cfg.get("enabled") is False:
        return primary, None
    try:
        fallback = ResponsesClient(
            settings=settings,
            settings_key="fallback",
            provider=fb_provider,
            model=fb_cfg.get("model") or (FALLBACK_MODEL if fb_provider == "openrouter" else None),
        )
    except RuntimeError:
        return primary, None
    return primary, fallback
