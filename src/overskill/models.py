# overskill: Centralized Pydantic v2 models for files, change records, tool calls/results, progress events, version snapshots and orchestration records. extra='forbid' keeps every record strict; run-scoped records are frozen.

from __future__ import annotations

import json
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .fs import count_lines, normalize_path


class CustomBaseModel(BaseModel):
    """Pydantic base model configured to forbid unknown fields for strict validation."""
    model_config = ConfigDict(extra="forbid")


class FrozenModel(BaseModel):
    """Immutable record; never mutated once created."""
    model_config = ConfigDict(extra="forbid", frozen=True)


class ContentType(str, Enum):
    html = "html"
    css = "css"
    js = "js"
    ts = "ts"
    jsx = "jsx"
    tsx = "tsx"
    json = "json"
    text = "text"


_EXT_TO_TYPE = {
    ".html": ContentType.html,
    ".htm": ContentType.html,
    ".css": ContentType.css,
    ".js": ContentType.js,
    ".mjs": ContentType.js,
    ".cjs": ContentType.js,
    ".ts": ContentType.ts,
    ".jsx": ContentType.jsx,
    ".tsx": ContentType.tsx,
    ".json": ContentType.json,
}

_ENTRY_STEMS = ("src/main", "src/index", "src/App")


def content_type_for(path: str) -> ContentType:
    """Infer the content type from the path extension; unknown extensions are text."""
    p = path.lower()
    dot = p.rfind(".")
    if dot < 0:
        return ContentType.text
    return _EXT_TO_TYPE.get(p[dot:], ContentType.text)


def is_entry_point(path: str) -> bool:
    """index.html and src/main.*, src/index.*, src/App.* are entry points."""
    if path == "index.html":
        return True
    name = path.rsplit("/", 1)[-1]
    if "." not in name:
        return False
    return path.rsplit(".", 1)[0] in _ENTRY_STEMS


class AppFile(CustomBaseModel):

    path: str = Field(..., description="App-relative POSIX path; unique within an app")
    content: str = Field(..., description="Full file contents")
    content_type: ContentType = Field(..., description="File type used for context labelling")
    size_bytes: int = Field(..., description="UTF-8 size of content")
    is_entry_point: bool = Field(default=False, description="Whether the file bootstraps the app")

    @field_validator("path")
    @classmethod
    def _normalize_path(cls, v: str) -> str:
        return normalize_path(v)

    @classmethod
    def build(cls, path: str, content: str, content_type: Optional[ContentType] = None) -> "AppFile":
        np = normalize_path(path)
        return cls(
            path=np,
            content=content,
            content_type=content_type or content_type_for(np),
            size_bytes=len(content.encode("utf-8")),
            is_entry_point=is_entry_point(np),
        )

    @property
    def line_count(self) -> int:
        return count_lines(self.content)


class ChangeRecord(CustomBaseModel):

    path: str = Field(..., description="Tracked path")
    content_hash: str = Field(..., description="sha256 of the latest tracked content")
    last_changed_at: float = Field(..., description="UNIX timestamp of the latest track call")
    stability_score: int = Field(default=10, ge=0, le=10, description="0 = volatile, 10 = stable")


class SearchMatch(CustomBaseModel):

    path: str
    line_number: int
    line_text: str


class ToolCall(FrozenModel):

    name: str = Field(..., description="Tool name as requested by the model")
    arguments: Dict[str, Any] = Field(default_factory=dict, description="Parsed arguments")
    index: int = Field(..., description="Position of the call within its turn")
    call_id: Optional[str] = Field(default=None, description="Provider call id used to pair outputs")


class ToolResult(FrozenModel):

    tool_call_index: int
    success: bool
    data: Any = None
    error: Optional[str] = Field(default=None, description="Machine code such as unknown_tool")
    message: Optional[str] = Field(default=None, description="Human-readable detail for the model")

    def to_output(self) -> str:
        """Serialize the result as the function_call_output text fed back to the model."""
        body: Dict[str, Any] = {"success": self.success}
        if self.success:
            body["data"] = self.data
        else:
            body["error"] = self.error
            if self.message:
                body["message"] = self.message
            if self.data is not None:
                body["data"] = self.data
        return json.dumps(body, ensure_ascii=False, default=str)


class ProgressStage(str, Enum):
    understanding = "understanding"
    thinking = "thinking"
    status = "status"
    file_created = "file_created"
    file_updated = "file_updated"
    file_deleted = "file_deleted"
    completed = "completed"
    failed = "failed"


# Stages that replace the trailing status line instead of appending.
COALESCING_STAGES = frozenset({ProgressStage.understanding, ProgressStage.thinking, ProgressStage.status})


class FileAction(str, Enum):
    created = "created"
    updated = "updated"
    deleted = "deleted"


FILE_ACTION_STAGE = {
    FileAction.created: ProgressStage.file_created,
    FileAction.updated: ProgressStage.file_updated,
    FileAction.deleted: ProgressStage.file_deleted,
}


class FileDelta(FrozenModel):

    path: str
    action: FileAction


class ProgressEvent(FrozenModel):

    seq: int = Field(..., description="1-based position within the run")
    run_id: str
    stage: ProgressStage
    message: str
    timestamp: float = Field(..., description="Strictly increasing within a run")
    file_delta: Optional[FileDelta] = None


class VersionSnapshot(FrozenModel):

    app_id: str
    version_number: str = Field(..., description="Dotted numeric version, e.g. 1.0.3")
    created_at: float
    files_snapshot: Dict[str, str] = Field(..., description="Complete path -> content copy")
    changelog: str
    file_actions: List[FileDelta] = Field(default_factory=list)


class ModelReply(FrozenModel):

    content: Optional[str] = None
    tool_calls: Tuple[ToolCall, ...] = ()
    provider: str = ""
    usage: Dict[str, int] = Field(default_factory=dict)


class RunState(str, Enum):
    done = "done"
    failed = "failed"


class TurnRecord(FrozenModel):
    """One AwaitingModel/ApplyingTools cycle; the next turn's input is derived from it."""

    index: int
    provider: str
    messages_in: Tuple[Dict[str, Any], ...] = Field(..., description="Conversation sent to the model")
    reply: ModelReply
    results: Tuple[ToolResult, ...] = ()
    deltas: Tuple[FileDelta, ...] = ()

    def next_messages(self) -> Tuple[Dict[str, Any], ...]:
        """Conversation for the following turn: inputs plus function calls and their outputs."""
        out: List[Dict[str, Any]] = list(self.messages_in)
        if self.reply.content:
            out.append({"type": "message", "role": "assistant", "content": self.reply.content})
        by_index = {r.tool_call_index: r for r in self.results}
        for tc in self.reply.tool_calls:
            call_id = tc.call_id or f"call_{self.index}_{tc.index}"
            out.append({
                "type": "function_call",
                "name": tc.name,
                "arguments": json.dumps(tc.arguments, ensure_ascii=False),
                "call_id": call_id,
            })
            res = by_index.get(tc.index)
            out.append({
                "type": "function_call_output",
                "call_id": call_id,
                "output": res.to_output() if res else json.dumps({"success": False, "error": "no_result"}),
            })
        return tuple(out)


class RunOutcome(FrozenModel):

    run_id: str
    app_id: str
    state: RunState
    turns: Tuple[TurnRecord, ...] = ()
    snapshot: Optional[VersionSnapshot] = None
    file_actions: Tuple[FileDelta, ...] = ()
    final_message: str = ""
    error: Optional[str] = None
    partial: bool = False
    events: Tuple[ProgressEvent, ...] = ()
