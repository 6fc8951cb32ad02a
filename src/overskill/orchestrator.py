# overskill: The orchestration loop. One run drives Init -> AwaitingModel -> ApplyingTools -> ... -> Finalizing -> Done, or Failed. Each turn is captured as an immutable TurnRecord and the next turn's input is derived from it; tool calls are applied sequentially; a ProviderError that survives the fallback, a cancellation or a store I/O error fails the run.

import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from pydantic import Field

from .broadcaster import ProgressBroadcaster
from .client import ModelProvider
from .config import MAX_TURNS, MODEL_TIMEOUT_SEC
from .context import Context
from .errors import ProviderError, RunCancelled, TurnLimitExceeded
from .fs import short_id
from .models import (
    FILE_ACTION_STAGE,
    CustomBaseModel,
    FileAction,
    FileDelta,
    ModelReply,
    ProgressStage,
    RunOutcome,
    RunState,
    ToolResult,
    TurnRecord,
)
from .prompt_builder import ContextBuilder
from .tools import ToolContext, ToolRegistry
from .versions import VersionStore

CHANGELOG_MAX_CHARS = 500
PARTIAL_NOTE = " (partial: turn limit reached)"
MODEL_WORKERS = 4


class RunConfig(CustomBaseModel):

    max_turns: int = Field(default=MAX_TURNS, ge=1, description="AwaitingModel/ApplyingTools cycles per run")
    model_timeout: float = Field(default=MODEL_TIMEOUT_SEC, gt=0, description="Seconds to wait for one model turn")
    fallback_enabled: bool = True


def net_file_actions(deltas: Iterable[FileDelta]) -> List[FileDelta]:
    """
    Collapse a run's deltas to one action per path, in first-touched order.

    created+updated -> created, created+deleted -> nothing,
    deleted+created -> updated, anything+deleted -> deleted.
    """
    order: List[str] = []
    first: Dict[str, FileAction] = {}
    last: Dict[str, FileAction] = {}
    for d in deltas:
        if d.path not in first:
            order.append(d.path)
            first[d.path] = d.action
        last[d.path] = d.action
    out: List[FileDelta] = []
    for p in order:
        f, l = first[p], last[p]
        if f == FileAction.created:
            if l == FileAction.deleted:
                continue
            action = FileAction.created
        elif f == FileAction.deleted:
            action = FileAction.deleted if l == FileAction.deleted else FileAction.updated
        else:
            action = FileAction.deleted if l == FileAction.deleted else FileAction.updated
        out.append(FileDelta(path=p, action=action))
    return out


def build_changelog(user_message: str, partial: bool) -> str:
    text = (user_message or "").strip()[:CHANGELOG_MAX_CHARS]
    return text + PARTIAL_NOTE if partial else text


class Orchestrator:
    """
    Runs one user message to completion against one app.

    Prompt builder and tool registry are swappable strategies; differences between
    agent flavours are configuration passed in here, not subclasses.
    """

    def __init__(
        self,
        provider: ModelProvider,
        registry: ToolRegistry,
        prompt_builder: ContextBuilder,
        broadcaster: ProgressBroadcaster,
        version_store: VersionStore,
        tool_context_factory: Callable[[], ToolContext],
        fallback: Optional[ModelProvider] = None,
        config: Optional[RunConfig] = None,
        ctx: Optional[Context] = None,
    ) -> None:
        self.provider = provider
        self.fallback = fallback
        self.registry = registry
        self.prompt_builder = prompt_builder
        self.broadcaster = broadcaster
        self.version_store = version_store
        self.tool_context_factory = tool_context_factory
        self.config = config or RunConfig()
        self.ctx = ctx or Context()
        # A hung primary only ever occupies primary workers.
        self._primary_pool = ThreadPoolExecutor(max_workers=MODEL_WORKERS, thread_name_prefix="overskill-primary")
        self._fallback_pool = ThreadPoolExecutor(max_workers=MODEL_WORKERS, thread_name_prefix="overskill-fallback")

    def close(self) -> None:
        self._primary_pool.shutdown(wait=False, cancel_futures=True)
        self._fallback_pool.shutdown(wait=False, cancel_futures=True)

    # ---------- run ----------

    def run(
        self,
        app_id: str,
        user_message: str,
        history: Sequence[Dict[str, Any]] = (),
        cancel: Optional[threading.Event] = None,
    ) -> RunOutcome:
        run_id = short_id("run")
        self.broadcaster.begin_run(run_id)
        self.ctx.log(f"[run {run_id}] start app={app_id} provider={self.provider.name} max_turns={self.config.max_turns}")

        # Init
        tctx = self.tool_context_factory()
        if tctx.broadcaster is None:
            tctx.broadcaster = self.broadcaster
        self.broadcaster.emit(ProgressStage.understanding, "Understanding your request")
        messages: Tuple[Dict[str, Any], ...] = tuple(history) + (
            {"type": "message", "role": "user", "content": user_message},
        )
        turns: List[TurnRecord] = []
        active = self.provider
        final_message = ""
        partial = False

        try:
            for turn_index in range(self.config.max_turns):
                # AwaitingModel
                if cancel is not None and cancel.is_set():
                    raise RunCancelled(run_id)
                if turn_index > 0:
                    self.broadcaster.emit(ProgressStage.thinking, f"Thinking (step {turn_index + 1})")
                system_items = self.prompt_builder.input_items()
                reply, active = self._call_model(active, tuple(system_items) + messages)
                self.ctx.log(f"[run {run_id}] turn {turn_index}: {len(reply.tool_calls)} tool call(s) from {reply.provider or active.name}")

                if not reply.tool_calls:
                    final_message = reply.content or ""
                    turns.append(TurnRecord(index=turn_index, provider=active.name, messages_in=messages, reply=reply))
                    break

                # ApplyingTools
                if reply.content:
                    self.broadcaster.emit(ProgressStage.status, reply.content.strip()[:200])
                results, deltas = self._apply_tools(tctx, reply)
                record = TurnRecord(
                    index=turn_index,
                    provider=active.name,
                    messages_in=messages,
                    reply=reply,
                    results=tuple(results),
                    deltas=tuple(deltas),
                )
                turns.append(record)
                messages = record.next_messages()
            else:
                raise TurnLimitExceeded(self.config.max_turns)
        except TurnLimitExceeded as e:
            partial = True
            self.ctx.warn(f"[run {run_id}] {e.message}; finalizing with partial results")
        except (ProviderError, RunCancelled, OSError) as e:
            return self._fail(run_id, app_id, tctx, turns, e)

        # Finalizing
        try:
            return self._finalize(run_id, app_id, user_message, tctx, turns, final_message, partial)
        except OSError as e:
            return self._fail(run_id, app_id, tctx, turns, e)

    # ---------- states ----------

    def _call_model(self, active: ModelProvider, conversation: Tuple[Dict[str, Any], ...]) -> Tuple[ModelReply, ModelProvider]:
        """One model turn; a primary failure is retried exactly once on the fallback, which then stays active."""
        try:
            return self._complete(active, conversation), active
        except ProviderError as e:
            if self.fallback is None or active is self.fallback or not self.config.fallback_enabled:
                raise
            self.ctx.warn(f"{active.name} failed ({e.message}); retrying on {self.fallback.name}")
            self.broadcaster.emit(ProgressStage.status, "Primary model unavailable, switching to backup model")
            return self._complete(self.fallback, conversation), self.fallback

    def _complete(self, provider: ModelProvider, conversation: Tuple[Dict[str, Any], ...]) -> ModelReply:
        timeout = self.config.model_timeout
        pool = self._fallback_pool if provider is self.fallback else self._primary_pool
        future = pool.submit(provider.complete, self.ctx, list(conversation), self.registry.specs(), timeout)
        try:
            return future.result(timeout=timeout)
        except FuturesTimeout:
            future.cancel()
            raise ProviderError(f"{provider.name}: no response within {timeout:g}s", provider=provider.name)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"{provider.name}: {type(e).__name__}: {e}", provider=provider.name)

    def _apply_tools(self, tctx: ToolContext, reply: ModelReply) -> Tuple[List[ToolResult], List[FileDelta]]:
        # Calls run one at a time, in the order the model emitted them.
        results: List[ToolResult] = []
        turn_deltas: List[FileDelta] = []
        for call in reply.tool_calls:
            before = len(tctx.deltas)
            result = self.registry.dispatch(tctx, call)
            results.append(result)
            if not result.success:
                self.ctx.log(f"[tool] {call.name} -> {result.error}: {result.message}")
            for delta in tctx.deltas[before:]:
                turn_deltas.append(delta)
                self.broadcaster.emit(
                    FILE_ACTION_STAGE[delta.action],
                    f"{delta.action.value.capitalize()} {delta.path}",
                    file_delta=delta,
                )
        return results, turn_deltas

    def _finalize(
        self,
        run_id: str,
        app_id: str,
        user_message: str,
        tctx: ToolContext,
        turns: List[TurnRecord],
        final_message: str,
        partial: bool,
    ) -> RunOutcome:
        snapshot = None
        actions = net_file_actions(tctx.deltas)
        if tctx.deltas:
            snapshot = self.version_store.create_snapshot(
                app_id,
                tctx.store.snapshot(),
                build_changelog(user_message, partial),
                actions,
            )
        summary = f"Version {snapshot.version_number} created" if snapshot else "No files changed"
        if partial:
            summary += " (stopped at turn limit)"
        self.broadcaster.emit(ProgressStage.completed, summary)
        self.ctx.log(f"[run {run_id}] done: {len(turns)} turn(s), {len(tctx.deltas)} mutation(s), partial={partial}")
        return RunOutcome(
            run_id=run_id,
            app_id=app_id,
            state=RunState.done,
            turns=tuple(turns),
            snapshot=snapshot,
            file_actions=tuple(actions),
            final_message=final_message,
            partial=partial,
            events=self.broadcaster.events,
        )

    def _fail(self, run_id: str, app_id: str, tctx: ToolContext, turns: List[TurnRecord], err: Exception) -> RunOutcome:
        message = "cancelled" if isinstance(err, RunCancelled) else str(getattr(err, "message", err))
        self.ctx.error_message(f"[run {run_id}] failed: {message}")
        # Mutations already applied stay in place.
        self.broadcaster.emit(ProgressStage.failed, message)
        return RunOutcome(
            run_id=run_id,
            app_id=app_id,
            state=RunState.failed,
            turns=tuple(turns),
            file_actions=tuple(net_file_actions(tctx.deltas)),
            error=message,
            events=self.broadcaster.events,
        )
