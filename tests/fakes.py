"""Scripted collaborators shared by the test modules."""

import copy
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Union

from overskill.broadcaster import ProgressBroadcaster
from overskill.change_tracker import ChangeTracker
from overskill.errors import ProviderError
from overskill.file_store import InMemoryFileStore
from overskill.models import ModelReply, ToolCall
from overskill.orchestrator import Orchestrator, RunConfig
from overskill.prompt_builder import ContextBuilder
from overskill.tools import ToolContext
from overskill.toolset import default_registry
from overskill.versions import InMemoryVersionStore


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def call(name: str, index: int = 0, call_id: Optional[str] = None, **arguments: Any) -> ToolCall:
    return ToolCall(name=name, arguments=arguments, index=index, call_id=call_id or f"call_{name}_{index}")


def reply(content: Optional[str] = None, *calls: ToolCall) -> ModelReply:
    return ModelReply(content=content, tool_calls=tuple(calls))


Step = Union[ModelReply, Exception, Callable[[List[Dict[str, Any]]], ModelReply]]


class ScriptedProvider:
    """
    ModelProvider that replays a fixed script. Each step is a ModelReply, an
    exception to raise, or a callable taking the messages. The last step repeats
    once the script runs out.
    """

    def __init__(self, name: str, steps: List[Step], delay: float = 0.0) -> None:
        self.name = name
        self.steps = list(steps)
        self.delay = delay
        self.calls: List[List[Dict[str, Any]]] = []
        self._lock = threading.Lock()

    def complete(self, ctx, messages, tools, timeout=None) -> ModelReply:
        with self._lock:
            self.calls.append(copy.deepcopy(list(messages)))
            i = min(len(self.calls), len(self.steps)) - 1
            step = self.steps[i]
        if self.delay:
            time.sleep(self.delay)
        if isinstance(step, Exception):
            raise step
        if callable(step):
            return step(messages)
        return step


def outage(name: str = "primary") -> ScriptedProvider:
    return ScriptedProvider(name, [ProviderError(f"{name}: timed out", provider=name)])


class FakeImages:
    def __init__(self, url: str = "https://images.example/hero.png") -> None:
        self.url = url
        self.requests: List[Dict[str, Any]] = []

    def generate(self, prompt: str, width: int = 1024, height: int = 1024) -> Dict[str, Any]:
        self.requests.append({"prompt": prompt, "width": width, "height": height})
        return {"url": self.url, "size": f"{width}x{height}", "model": "fake", "prompt": prompt}


class FakeSearch:
    def __init__(self) -> None:
        self.requests: List[Dict[str, Any]] = []

    def search(self, query: str, num_results: int = 5, category: Optional[str] = None) -> Dict[str, Any]:
        self.requests.append({"query": query, "num_results": num_results, "category": category})
        results = [{"title": "Result", "link": "https://example.com", "snippet": query}]
        return {"query": query, "results": results, "formatted": "1. Result"}


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, text: Optional[str] = None) -> None:
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else ("" if body is None else str(body))
        self.headers: Dict[str, str] = {"Content-Type": "application/json"}
        self.reason = "OK" if status_code == 200 else "Error"

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no json body")
        return self._body


class Harness:
    """An in-memory app wired into an Orchestrator."""

    def __init__(
        self,
        provider,
        files: Optional[Dict[str, str]] = None,
        fallback=None,
        max_turns: int = 10,
        model_timeout: float = 5.0,
        images=None,
        search=None,
    ) -> None:
        self.store = InMemoryFileStore(files or {})
        self.tracker = ChangeTracker()
        self.broadcaster = ProgressBroadcaster()
        self.versions = InMemoryVersionStore()
        self.registry = default_registry()
        self.images = images
        self.search = search
        self.orchestrator = Orchestrator(
            provider=provider,
            fallback=fallback,
            registry=self.registry,
            prompt_builder=ContextBuilder(self.store, self.tracker, "You build apps."),
            broadcaster=self.broadcaster,
            version_store=self.versions,
            tool_context_factory=self.tool_context,
            config=RunConfig(max_turns=max_turns, model_timeout=model_timeout),
        )

    def tool_context(self) -> ToolContext:
        return ToolContext(
            self.store,
            self.tracker,
            app_id="app-test",
            broadcaster=self.broadcaster,
            images=self.images,
            search=self.search,
        )

    def run(self, message: str = "Make a change", **kwargs):
        try:
            return self.orchestrator.run("app-test", message, **kwargs)
        finally:
            self.orchestrator.close()
