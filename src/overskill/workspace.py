# overskill: The App aggregate for one app directory. Wires the directory-backed file store, persisted change tracker, version store, progress channels, tool collaborators and providers into an Orchestrator, and persists conversation history and metadata around each run.

import pathlib
import threading
from typing import Any, Dict, List, Optional

from .broadcaster import FanoutChannel, JsonlChannel, ProgressBroadcaster, ProgressChannel
from .change_tracker import ChangeTracker
from .client import ModelProvider, build_provider_pair
from .config import MAX_TURNS, MODEL_TIMEOUT_SEC
from .context import Context, Storage
from .external import build_collaborators
from .file_store import DirectoryFileStore
from .fs import now_ts
from .models import FileDelta, RunOutcome, RunState
from .orchestrator import Orchestrator, RunConfig
from .prompt_builder import ContextBuilder
from .prompts import get_prompt
from .settings import load_settings, section
from .tools import ToolContext, ToolRegistry
from .toolset import default_registry
from .versions import JsonVersionStore
from .worker import APP_LOCKS, AppLocks

PROMPT_ADDENDUM = "prompt_agent_system.addendum.txt"
RUNS_KEPT_IN_METADATA = 200


class Workspace:
    def __init__(
        self,
        app_root: pathlib.Path,
        settings: Optional[Dict[str, Any]] = None,
        ctx: Optional[Context] = None,
        provider: Optional[ModelProvider] = None,
        fallback: Optional[ModelProvider] = None,
        registry: Optional[ToolRegistry] = None,
        images: Any = None,
        search: Any = None,
        channel: Optional[ProgressChannel] = None,
        locks: Optional[AppLocks] = None,
        max_turns: Optional[int] = None,
        clock=now_ts,
    ) -> None:
        self.app_root = pathlib.Path(app_root).resolve()
        self.app_root.mkdir(parents=True, exist_ok=True)
        self.settings = settings if settings is not None else load_settings(self.app_root)
        self.ctx = ctx or Context(self.app_root, settings=self.settings)
        self.storage = Storage(self.app_root)
        self.md = self.storage.load_metadata()
        if not self.storage.metadata_file.exists():
            self.storage.save_metadata(self.md)
        self.app_id: str = self.md["app_id"]

        self.store = DirectoryFileStore(self.app_root)
        self.tracker = ChangeTracker.from_dict(self.md.get("change_tracker"), clock=clock)
        self.versions = JsonVersionStore(self.storage.versions_dir, clock=clock, ctx=self.ctx)
        self.registry = registry or default_registry()

        channels: List[ProgressChannel] = [JsonlChannel(self.storage.progress_file)]
        if channel is not None:
            channels.append(channel)
        self.broadcaster = ProgressBroadcaster(FanoutChannel(channels, ctx=self.ctx), clock=clock, ctx=self.ctx)

        if images is None and search is None:
            images, search = build_collaborators(self.ctx, self.settings)
        self.images = images
        self.search = search

        orch_cfg = section(self.settings, "orchestrator")
        self.run_config = RunConfig(
            max_turns=int(max_turns or orch_cfg.get("max_turns") or MAX_TURNS),
            model_timeout=float(orch_cfg.get("model_timeout") or MODEL_TIMEOUT_SEC),
            fallback_enabled=bool(orch_cfg.get("fallback_enabled", True)),
        )
        self.prompt_builder = ContextBuilder(self.store, self.tracker, self._base_prompt(), ctx=self.ctx)
        self.locks = locks or APP_LOCKS
        self._provider = provider
        self._fallback = fallback
        self._orchestrator: Optional[Orchestrator] = None
        self._init_lock = threading.Lock()

    # ---------- wiring ----------

    def _base_prompt(self) -> str:
        text = get_prompt("prompt_agent_system.txt", max_turns=self.run_config.max_turns)
        addendum = self.storage.state_dir / PROMPT_ADDENDUM
        if addendum.is_file():
            extra = addendum.read_text(encoding="utf-8")
            if extra.strip():
                text = f"{text.rstrip()}\n\n{extra}"
                self.ctx.log(f"Applied app-level prompt addendum: .overskill/{PROMPT_ADDENDUM}")
        return text

    def tool_context(self) -> ToolContext:
        return ToolContext(
            store=self.store,
            tracker=self.tracker,
            ctx=self.ctx,
            app_id=self.app_id,
            broadcaster=self.broadcaster,
            images=self.images,
            search=self.search,
        )

    @property
    def orchestrator(self) -> Orchestrator:
        """Built on first use so commands that never call a model need no credentials."""
        with self._init_lock:
            if self._orchestrator is None:
                if self._provider is None:
                    self._provider, self._fallback = build_provider_pair(self.settings)
                self._orchestrator = Orchestrator(
                    provider=self._provider,
                    fallback=self._fallback,
                    registry=self.registry,
                    prompt_builder=self.prompt_builder,
                    broadcaster=self.broadcaster,
                    version_store=self.versions,
                    tool_context_factory=self.tool_context,
                    config=self.run_config,
                    ctx=self.ctx,
                )
            return self._orchestrator

    # ---------- operations ----------

    def conversation(self) -> List[Dict[str, Any]]:
        """Stored history as Responses input items (user and assistant text only)."""
        items: List[Dict[str, Any]] = []
        for h in self.storage.load_history():
            if h.get("type", "message") != "message" or h.get("role") not in ("user", "assistant"):
                continue
            content = h.get("content")
            if not isinstance(content, str) or not content.strip():
                continue
            items.append({"type": "message", "role": h["role"], "content": content})
        return items

    def send_message(self, text: str, cancel: Optional[threading.Event] = None) -> RunOutcome:
        """Run one orchestration for text under the app lock and persist its results."""
        with self.locks.hold(self.app_id):
            history = self.conversation()
            outcome = self.orchestrator.run(self.app_id, text, history, cancel)
            self.storage.append_history("user", text, extra={"run_id": outcome.run_id})
            reply = outcome.final_message if outcome.state == RunState.done else f"Run failed: {outcome.error}"
            self.storage.append_history(
                "assistant",
                reply,
                extra={
                    "run_id": outcome.run_id,
                    "state": outcome.state.value,
                    "version": outcome.snapshot.version_number if outcome.snapshot else None,
                },
            )
            self._record_run(outcome)
            self.broadcaster.flush(timeout=5.0)
        return outcome

    def restore(self, version: str) -> List[FileDelta]:
        """Roll the app back to version; a new snapshot records the restore when anything changed."""
        with self.locks.hold(self.app_id):
            deltas = self.versions.restore(version, self.store)
            snap = self.store.snapshot()
            for d in deltas:
                if d.path in snap:
                    self.tracker.track(d.path, snap[d.path])
                else:
                    self.tracker.forget(d.path)
            if deltas:
                self.versions.create_snapshot(self.app_id, snap, f"Restore to version {version}", deltas)
            self.md["change_tracker"] = self.tracker.to_dict()
            self.storage.save_metadata(self.md)
        return deltas

    def status(self) -> Dict[str, Any]:
        latest = self.versions.latest()
        return {
            "app_id": self.app_id,
            "app_root": str(self.app_root),
            "files": len(self.store.list_paths()),
            "latest_version": latest.version_number if latest else None,
            "runs": len(self.md.get("runs") or []),
            "tracker": self.tracker.stats(),
            "context_blocks": self.prompt_builder.stats(),
        }

    def clear_history(self) -> None:
        self.storage.clear_history()

    def close(self) -> None:
        self.broadcaster.close()
        if self._orchestrator is not None:
            self._orchestrator.close()

    def _record_run(self, outcome: RunOutcome) -> None:
        runs = list(self.md.get("runs") or [])
        runs.append({
            "run_id": outcome.run_id,
            "state": outcome.state.value,
            "turns": len(outcome.turns),
            "partial": outcome.partial,
            "version": outcome.snapshot.version_number if outcome.snapshot else None,
            "error": outcome.error,
            "finished_at": now_ts(),
        })
        self.md["runs"] = runs[-RUNS_KEPT_IN_METADATA:]
        self.md["change_tracker"] = self.tracker.to_dict()
        self.storage.save_metadata(self.md)
