# overskill: Reflective tool registry. Handlers are plain typed functions; their signatures are reflected at registration into a pydantic argument model (validation) and an OpenAI function schema (exposed to the model with a synthetic reason_for_call). Dispatch never raises: every outcome is a ToolResult.

import inspect
import typing
from typing import Any, Callable, Dict, Iterable, List, Literal, Optional, Union, get_type_hints

from pydantic import ConfigDict, ValidationError, create_model

from .change_tracker import ChangeTracker
from .context import Context
from .errors import InvalidToolArguments, OverskillError, ToolRegistrationError, UnknownTool
from .file_store import FileStore
from .models import FileAction, FileDelta, ToolCall, ToolResult

RAW_ARGUMENTS_KEY = "__raw__"
REASON_KEY = "reason_for_call"


class ToolContext:
    """
    Everything a tool handler may touch for one app during one run.

    Mutating handlers call record() after the store write succeeds; the recorded
    deltas tell the orchestrator which progress events to emit.
    """

    def __init__(
        self,
        store: FileStore,
        tracker: ChangeTracker,
        ctx: Optional[Context] = None,
        app_id: str = "",
        broadcaster: Any = None,
        images: Any = None,
        search: Any = None,
    ) -> None:
        self.store = store
        self.tracker = tracker
        self.ctx = ctx or Context()
        self.app_id = app_id
        self.broadcaster = broadcaster
        self.images = images
        self.search = search
        self.deltas: List[FileDelta] = []

    def record(self, path: str, action: FileAction, content: Optional[str] = None) -> FileDelta:
        if action == FileAction.deleted:
            self.tracker.forget(path)
        elif content is not None:
            self.tracker.track(path, content)
        delta = FileDelta(path=path, action=action)
        self.deltas.append(delta)
        return delta


# -----------------------------
# Reflection utilities
# -----------------------------

_type_map = {
    str: {"type": "string"},
    int: {"type": "integer"},
    bool: {"type": "boolean"},
    float: {"type": "number"},
}


def _json_schema_for_annotation(ann: Any) -> Dict[str, Any]:
    """Map a Python annotation to a simple JSON Schema snippet."""
    origin = typing.get_origin(ann)
    args = typing.get_args(ann)
    if origin is Union:
        # Optional[T] is exposed as its inner type
        inner = [a for a in args if a is not type(None)]
        if len(inner) == 1:
            return _json_schema_for_annotation(inner[0])
        return {"type": "string"}
    if origin is Literal:
        return {"type": "string", "enum": [str(a) for a in args]}
    if origin in (list, List):
        item = args[0] if args else str
        return {"type": "array", "items": _json_schema_for_annotation(item)}
    if origin in (dict, Dict):
        return {"type": "object"}
    return dict(_type_map.get(ann, {"type": "string"}))


def _merge_schema(base: Dict[str, Any], override: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Shallow-merge override fields into base JSON Schema for a parameter."""
    if not override:
        return base
    out = dict(base)
    out.update({k: v for k, v in override.items() if v is not None})
    return out


class ToolSpec:
    """A registered handler plus its reflected argument model and schema."""

    def __init__(
        self,
        name: str,
        description: str,
        fn: Callable[..., Any],
        mutates: bool = False,
        param_overrides: Optional[Dict[str, Dict[str, Any]]] = None,
    ) -> None:
        self.name = name
        self.description = description
        self.fn = fn
        self.mutates = mutates
        self.param_overrides = param_overrides or {}
        self.params: List[str] = []
        self.model = None
        self.schema: Dict[str, Any] = {}
        self._reflect()

    def _reflect(self) -> None:
        sig = inspect.signature(self.fn)
        try:
            hints = get_type_hints(self.fn)
        except (NameError, TypeError) as e:
            raise ToolRegistrationError(f"Tool {self.name}: cannot resolve annotations ({e})")
        params = list(sig.parameters.values())
        if not params or hints.get(params[0].name) is not ToolContext:
            raise ToolRegistrationError(f"Tool {self.name}: first parameter must be annotated as ToolContext")

        fields: Dict[str, Any] = {}
        props: Dict[str, Any] = {}
        required: List[str] = []
        for p in params[1:]:
            if p.kind in (p.VAR_POSITIONAL, p.VAR_KEYWORD):
                raise ToolRegistrationError(f"Tool {self.name}: *args/**kwargs are not supported")
            if p.name not in hints:
                raise ToolRegistrationError(f"Tool {self.name}: parameter '{p.name}' has no type annotation")
            if p.name == REASON_KEY:
                raise ToolRegistrationError(f"Tool {self.name}: '{REASON_KEY}' is reserved")
            ann = hints[p.name]
            if p.default is inspect.Parameter.empty:
                fields[p.name] = (ann, ...)
                required.append(p.name)
            else:
                fields[p.name] = (ann, p.default)
            props[p.name] = _merge_schema(_json_schema_for_annotation(ann), self.param_overrides.get(p.name))
            self.params.append(p.name)

        unknown = set(self.param_overrides) - set(self.params)
        if unknown:
            raise ToolRegistrationError(f"Tool {self.name}: overrides for unknown parameters {sorted(unknown)}")

        model_name = "".join(part.capitalize() for part in self.name.replace("_", "-").split("-")) + "Args"
        self.model = create_model(model_name, __config__=ConfigDict(extra="forbid"), **fields)
        # Synthetic reason_for_call for the model only (not required)
        props[REASON_KEY] = {"type": "string", "description": "Short reason the tool is needed (for traceability)."}
        self.schema = {
            "type": "object",
            "properties": props,
            "required": required,
            "additionalProperties": False,
        }

    def openai_spec(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "name": self.name,
            "description": self.description,
            "parameters": self.schema,
        }


class ToolRegistry:
    """Maps tool names to handlers; validated at registration, dispatched by name."""

    def __init__(self) -> None:
        self._tools: Dict[str, ToolSpec] = {}

    def tool(
        self,
        name: str,
        description: str,
        *,
        param_overrides: Optional[Dict[str, Dict[str, Any]]] = None,
        mutates: bool = False,
    ):
        """Decorator to register a function as a tool with reflective schema.

        param_overrides allows per-parameter JSON Schema fields like description, enum, minimum.
        """
        def _wrap(fn: Callable):
            self.register(ToolSpec(name, description, fn, mutates=mutates, param_overrides=param_overrides))
            return fn
        return _wrap

    def register(self, spec: ToolSpec) -> None:
        if not spec.name or not spec.name.strip():
            raise ToolRegistrationError("Tool name must be non-empty")
        if spec.name in self._tools:
            raise ToolRegistrationError(f"Duplicate tool name: {spec.name}")
        self._tools[spec.name] = spec

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def specs(self) -> List[Dict[str, Any]]:
        """Return OpenAI tool specs for all registered tools, with the synthetic reason param."""
        return [s.openai_spec() for s in self._tools.values()]

    def subset(self, names: Iterable[str]) -> "ToolRegistry":
        """Derived registry exposing only the named tools; unknown names raise ToolRegistrationError."""
        out = ToolRegistry()
        for n in names:
            spec = self._tools.get(n)
            if spec is None:
                raise ToolRegistrationError(f"Unknown tool in subset: {n}")
            out.register(spec)
        return out

    def dispatch(self, tctx: ToolContext, call: ToolCall) -> ToolResult:
        """Validate and run one tool call. Never raises; failures come back as ToolResult errors."""
        spec = self._tools.get(call.name)
        if spec is None:
            return _failure(call.index, UnknownTool(call.name))

        args = dict(call.arguments or {})
        reason = args.pop(REASON_KEY, None)
        if reason:
            tctx.ctx.debug(f"[tool] {call.name}: {reason}")
        if RAW_ARGUMENTS_KEY in args:
            return _failure(call.index, InvalidToolArguments(
                call.name,
                f"Arguments for {call.name} are not valid JSON",
                {RAW_ARGUMENTS_KEY: str(args[RAW_ARGUMENTS_KEY])[:200]},
            ))

        try:
            validated = spec.model.model_validate(args)
        except ValidationError as e:
            fields = {}
            for err in e.errors():
                loc = ".".join(str(x) for x in err.get("loc", ())) or "__root__"
                fields[loc] = err.get("msg", "invalid")
            summary = "; ".join(f"{k}: {v}" for k, v in fields.items())
            return _failure(call.index, InvalidToolArguments(call.name, f"Invalid arguments for {call.name}: {summary}", fields))

        kwargs = {p: getattr(validated, p) for p in spec.params}
        try:
            data = spec.fn(tctx, **kwargs)
        except OverskillError as e:
            return _failure(call.index, e)
        except Exception as e:
            tctx.ctx.warn(f"Tool {call.name} failed: {type(e).__name__}: {e}")
            return ToolResult(tool_call_index=call.index, success=False, error="tool_failed", message=f"{type(e).__name__}: {e}")
        return ToolResult(tool_call_index=call.index, success=True, data=data)


def _failure(index: int, err: OverskillError) -> ToolResult:
    return ToolResult(
        tool_call_index=index,
        success=False,
        error=err.code,
        message=err.message,
        data=err.details or None,
    )
