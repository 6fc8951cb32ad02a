# overskill: Built-in tool handlers exposed to the model. Handlers are typed functions registered on BUILTIN; each returns a raw dict payload or raises an OverskillError that dispatch turns into a ToolResult error. Mutating handlers record a FileDelta only when the store actually changed.

import json
import re
from typing import Any, Dict, List, Literal, Optional, Tuple

from .errors import ExternalServiceError, InvalidManifest, InvalidToolArguments, NotFoundError
from .fs import normalize_path
from .models import FileAction, ProgressStage
from .tools import ToolContext, ToolRegistry

BUILTIN = ToolRegistry()

PACKAGE_JSON = "package.json"
IMAGE_MANIFEST = "src/imageUrls.json"
SEARCH_MAX_RESULTS = 200

_CODE_LINE_START = re.compile(r"^(import |export |const |let |var |function |class |interface |type |from |require\()", re.M)


def default_registry() -> ToolRegistry:
    """Fresh registry holding every built-in tool."""
    return BUILTIN.subset(BUILTIN.names())


def _current_content(tctx: ToolContext, path: str) -> Optional[str]:
    try:
        return tctx.store.read(path).content
    except NotFoundError:
        return None


def _write_tracked(tctx: ToolContext, path: str, content: str) -> Dict[str, Any]:
    """Write through the store and record created/updated; identical content records nothing."""
    before = _current_content(tctx, path)
    file = tctx.store.write(path, content)
    if before == file.content:
        return {"path": file.path, "changed": False, "line_count": file.line_count}
    action = FileAction.created if before is None else FileAction.updated
    tctx.record(file.path, action, file.content)
    return {"path": file.path, "changed": True, "action": action.value, "line_count": file.line_count}


def clean_escaped_newlines(content: str) -> str:
    """Models sometimes double-escape newlines in generated code. Single-line source with a
    quoted "\\n" literal is kept as written."""
    if "\n" in content or "\\n" not in content:
        return content
    if '"\\n"' in content or "'\\n'" in content:
        return content
    if not _CODE_LINE_START.search(content):
        return content
    return content.replace("\\r\\n", "\n").replace("\\n", "\n").replace("\\t", "\t")


# -----------------------------
# File tools
# -----------------------------

@BUILTIN.tool(
    name="write",
    description="Create a file or overwrite it with the complete new content.",
    param_overrides={
        "path": {"description": "App-relative file path, e.g. src/App.jsx"},
        "content": {"description": "Full file content (must not be empty)"},
    },
    mutates=True,
)
def write_file(tctx: ToolContext, path: str, content: str) -> Dict[str, Any]:
    return _write_tracked(tctx, normalize_path(path), clean_escaped_newlines(content))


@BUILTIN.tool(
    name="read",
    description="Read a file. Optionally pass lines like '1-40, 80-95' to read only those ranges.",
    param_overrides={"lines": {"description": "Optional comma-separated 1-indexed line ranges"}},
)
def read_file(tctx: ToolContext, path: str, lines: Optional[str] = None) -> Dict[str, Any]:
    full = tctx.store.read(path)
    out: Dict[str, Any] = {
        "path": full.path,
        "content_type": full.content_type.value,
        "line_count": full.line_count,
    }
    if lines:
        out["lines"] = lines
        out["content"] = tctx.store.read(path, lines=lines).content
    else:
        out["content"] = full.content
    return out


@BUILTIN.tool(
    name="line-replace",
    description=(
        "Replace lines first_line..last_line (1-indexed, inclusive) of a file with replacement. "
        "Line numbers refer to the file's current content."
    ),
    param_overrides={
        "first_line": {"minimum": 1},
        "last_line": {"minimum": 1},
        "replacement": {"description": "Text that replaces the range; may span several lines"},
    },
    mutates=True,
)
def line_replace(tctx: ToolContext, path: str, first_line: int, last_line: int, replacement: str) -> Dict[str, Any]:
    before = tctx.store.read(path)
    file = tctx.store.replace_lines(path, first_line, last_line, replacement)
    if file.content == before.content:
        return {"path": file.path, "changed": False, "line_count": file.line_count}
    tctx.record(file.path, FileAction.updated, file.content)
    return {"path": file.path, "changed": True, "action": FileAction.updated.value, "line_count": file.line_count}


@BUILTIN.tool(name="delete", description="Delete a file.", mutates=True)
def delete_file(tctx: ToolContext, path: str) -> Dict[str, Any]:
    np = normalize_path(path)
    tctx.store.delete(np)
    tctx.record(np, FileAction.deleted)
    return {"path": np, "deleted": True}


@BUILTIN.tool(
    name="rename",
    description="Move a file to a new path, keeping its content. Fails if new_path already exists.",
    mutates=True,
)
def rename_file(tctx: ToolContext, old_path: str, new_path: str) -> Dict[str, Any]:
    moved = tctx.store.rename(old_path, new_path)
    old = normalize_path(old_path)
    tctx.record(old, FileAction.deleted)
    tctx.record(moved.path, FileAction.created, moved.content)
    return {"old_path": old, "new_path": moved.path}


@BUILTIN.tool(
    name="search",
    description="Search file contents with a regex (or plain text). Returns matching lines.",
    param_overrides={
        "include_pattern": {"description": "Glob of files to include, e.g. src/**/*.jsx"},
        "exclude_pattern": {"description": "Glob of files to skip"},
        "max_results": {"minimum": 1, "maximum": SEARCH_MAX_RESULTS},
    },
)
def search_files(
    tctx: ToolContext,
    query: str,
    include_pattern: Optional[str] = None,
    exclude_pattern: Optional[str] = None,
    case_sensitive: bool = False,
    max_results: int = 50,
) -> Dict[str, Any]:
    if not query:
        raise InvalidToolArguments("search", "query must not be empty", {"query": "empty"})
    limit = max(1, min(int(max_results), SEARCH_MAX_RESULTS))
    matches: List[Dict[str, Any]] = []
    truncated = False
    for m in tctx.store.search(query, include_pattern, case_sensitive, exclude_pattern):
        if len(matches) >= limit:
            truncated = True
            break
        matches.append(m.model_dump())
    return {"matches": matches, "truncated": truncated}


@BUILTIN.tool(name="list-files", description="List app files; optionally filter by glob.")
def list_files(tctx: ToolContext, glob: Optional[str] = None) -> Dict[str, Any]:
    return {"paths": tctx.store.list_paths(glob)}


# -----------------------------
# Dependency tools
# -----------------------------

def parse_package_spec(spec: str) -> Tuple[str, str]:
    """
    Split 'name@version' on the last '@'. Scoped names keep their leading '@'
    ('@types/node@20' -> ('@types/node', '20')); a missing version is 'latest'.
    """
    s = (spec or "").strip()
    head, sep, tail = s.rpartition("@")
    if sep and head:
        name, version = head, tail.strip() or "latest"
    else:
        name, version = s, "latest"
    name = name.strip()
    if not name or name == "@":
        raise InvalidToolArguments("add-dependency", f"Invalid package spec: {spec!r}", {"package": "missing name"})
    return name, version


def _load_manifest(tctx: ToolContext) -> Optional[Dict[str, Any]]:
    raw = _current_content(tctx, PACKAGE_JSON)
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except ValueError as e:
        raise InvalidManifest(PACKAGE_JSON, str(e))
    if not isinstance(data, dict):
        raise InvalidManifest(PACKAGE_JSON, "top-level value is not an object")
    return data


def _dump_manifest(data: Dict[str, Any]) -> str:
    return json.dumps(data, indent=2, ensure_ascii=False) + "\n"


@BUILTIN.tool(
    name="add-dependency",
    description="Add or update an npm dependency in package.json, e.g. 'react@18.2.0' or '@types/node@20'.",
    param_overrides={
        "package": {"description": "Package spec name@version; version defaults to latest"},
        "dev": {"description": "Add to devDependencies instead of dependencies"},
    },
    mutates=True,
)
def add_dependency(tctx: ToolContext, package: str, dev: bool = False) -> Dict[str, Any]:
    name, version = parse_package_spec(package)
    data = _load_manifest(tctx)
    if data is None:
        data = {"name": tctx.app_id or "app", "dependencies": {}}
    key = "devDependencies" if dev else "dependencies"
    deps = data.get(key)
    if not isinstance(deps, dict):
        deps = {}
    deps[name] = version
    data[key] = deps
    out = _write_tracked(tctx, PACKAGE_JSON, _dump_manifest(data))
    tctx.ctx.log(f"[deps] Added {name}@{version}")
    out.update({"name": name, "version": version, "section": key})
    return out


@BUILTIN.tool(
    name="remove-dependency",
    description="Remove an npm dependency from package.json. Removing an absent package is a no-op.",
    mutates=True,
)
def remove_dependency(tctx: ToolContext, package: str) -> Dict[str, Any]:
    name = (package or "").strip()
    if not name:
        raise InvalidToolArguments("remove-dependency", "package must not be empty", {"package": "empty"})
    data = _load_manifest(tctx)
    removed_from: List[str] = []
    if data is not None:
        for key in ("dependencies", "devDependencies"):
            deps = data.get(key)
            if isinstance(deps, dict) and name in deps:
                del deps[name]
                removed_from.append(key)
    if not removed_from:
        return {"name": name, "removed": False, "changed": False}
    out = _write_tracked(tctx, PACKAGE_JSON, _dump_manifest(data))
    tctx.ctx.log(f"[deps] Removed {name}")
    out.update({"name": name, "removed": True, "sections": removed_from})
    return out


# -----------------------------
# Progress and external collaborators
# -----------------------------

@BUILTIN.tool(
    name="broadcast-progress",
    description="Show the user a short status line about what you are doing.",
    param_overrides={"message": {"description": "One short sentence"}},
)
def broadcast_progress(
    tctx: ToolContext,
    message: str,
    stage: Literal["status", "thinking"] = "status",
) -> Dict[str, Any]:
    if tctx.broadcaster is None:
        return {"broadcast": False}
    event = tctx.broadcaster.emit(ProgressStage(stage), message)
    return {"broadcast": True, "seq": event.seq}


@BUILTIN.tool(
    name="generate-image",
    description=(
        "Generate an image from a prompt. When target_path is given the URL is recorded "
        f"under that key in {IMAGE_MANIFEST}. Use the returned URL in your code."
    ),
    param_overrides={
        "width": {"minimum": 256, "maximum": 2048},
        "height": {"minimum": 256, "maximum": 2048},
        "target_path": {"description": "Logical asset path, e.g. src/assets/hero.png"},
    },
    mutates=True,
)
def generate_image(
    tctx: ToolContext,
    prompt: str,
    target_path: Optional[str] = None,
    width: int = 1024,
    height: int = 1024,
) -> Dict[str, Any]:
    if tctx.images is None:
        raise ExternalServiceError("image", "Image generation is not available")
    result = dict(tctx.images.generate(prompt, width=width, height=height))
    url = result.get("url")
    if target_path:
        asset = normalize_path(target_path)
        raw = _current_content(tctx, IMAGE_MANIFEST)
        try:
            manifest = json.loads(raw) if raw else {}
        except ValueError:
            manifest = {}
        if not isinstance(manifest, dict):
            manifest = {}
        manifest[asset] = url
        _write_tracked(tctx, IMAGE_MANIFEST, json.dumps(manifest, indent=2, ensure_ascii=False) + "\n")
        result["path"] = asset
        result["manifest"] = IMAGE_MANIFEST
    result["usage_instruction"] = f"Use this URL in your HTML/CSS: {url}"
    return result


@BUILTIN.tool(
    name="web-search",
    description="Search the web. category narrows results to news, github or pdf.",
    param_overrides={"num_results": {"minimum": 1, "maximum": 20}},
)
def web_search(
    tctx: ToolContext,
    query: str,
    num_results: int = 5,
    category: Optional[Literal["news", "github", "pdf"]] = None,
) -> Dict[str, Any]:
    if tctx.search is None:
        raise ExternalServiceError("search", "Web search is not available")
    return tctx.search.search(query, num_results=num_results, category=category)
