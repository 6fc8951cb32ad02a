# overskill: Filesystem, time/id, JSON/JSONL and hashing helpers shared by the file store, storage and version store. Paths are POSIX-normalized for a consistent wire format.

import fnmatch
import hashlib
import json
import os
import pathlib
import time
import uuid
from typing import Any, Iterable, List, Optional


# Directories never listed or exposed to the model.
INTERNAL_DIRS = (".git", ".overskill", "node_modules", ".httpcalls")


def now_ts() -> float:
    """Return the current UNIX timestamp in seconds (float)."""
    return time.time()


def short_id(prefix: str) -> str:
    """Return a short unique identifier with the given prefix (e.g., run-1a2b3c4d)."""
    return f"{prefix}-{uuid.uuid4().hex[:8]}"


def normalize_path(p: str) -> str:
    """Normalize a path to a POSIX-style, app-relative string (no leading './' or '/')."""
    s = str(pathlib.PurePosixPath(str(p).replace("\\", "/")))
    while s.startswith("./"):
        s = s[2:]
    s = s.lstrip("/")
    return "" if s == "." else s


def read_json(path: pathlib.Path, default: Any) -> Any:
    """Read JSON from path; return default if file is missing or invalid."""
    if not path.exists():
        return default
    try:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)
    except (OSError, ValueError):
        return default


def write_json(path: pathlib.Path, obj: Any) -> None:
    """Atomically write a JSON object to path (UTF-8, pretty-printed)."""
    tmp = path.with_suffix(path.suffix + ".tmp")
    path.parent.mkdir(parents=True, exist_ok=True)
    with tmp.open("w", encoding="utf-8") as f:
        json.dump(obj, f, indent=2, ensure_ascii=False)
    tmp.replace(path)


# overskill: JSONL helpers avoid locking; callers serialize access per app.
def append_jsonl(path: pathlib.Path, obj: Any) -> None:
    """Append a single JSON object as one line to a JSONL file (creating parents)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(json.dumps(obj, ensure_ascii=False) + "\n")


def read_jsonl(path: pathlib.Path) -> List[Any]:
    """Read a JSONL file into a list of parsed objects; returns [] if missing."""
    if not path.exists():
        return []
    lines: List[Any] = []
    with path.open("r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                lines.append(json.loads(line))
            except ValueError:
                # Skip torn or partial lines.
                continue
    return lines


def count_lines(s: str) -> int:
    """Return the number of lines in a string, handling trailing newline gracefully."""
    if not s:
        return 0
    return s.count("\n") + (0 if s.endswith("\n") else 1)


def sha256_bytes(data: bytes) -> str:
    """Compute a hex sha256 digest for the provided bytes."""
    h = hashlib.sha256()
    h.update(data)
    return h.hexdigest()


def sha256_text(text: str) -> str:
    """Compute a hex sha256 digest for UTF-8 text."""
    return sha256_bytes(text.encode("utf-8"))


def safe_abs(root: pathlib.Path, rel: str) -> pathlib.Path:
    """Resolve an app-relative path and reject escapes outside root."""
    abs_path = (root / rel).resolve()
    try:
        abs_path.relative_to(root.resolve())
    except ValueError:
        raise ValueError(f"Path escapes app root: {rel}")
    return abs_path


def is_internal_path(rel_posix: str) -> bool:
    """True when a relative path lives inside a directory that is never exposed."""
    return any(part in INTERNAL_DIRS for part in pathlib.PurePosixPath(rel_posix).parts)


def list_app_paths(root: pathlib.Path) -> List[str]:
    """Walk the app directory and return non-internal relative file paths (POSIX, sorted)."""
    paths: List[str] = []
    for base, dirs, files in os.walk(root):
        dirs[:] = [d for d in dirs if d not in INTERNAL_DIRS]
        for name in files:
            rel = normalize_path(os.path.relpath(pathlib.Path(base) / name, root))
            if is_internal_path(rel):
                continue
            paths.append(rel)
    return sorted(paths)


def glob_match(path: str, pattern: Optional[str]) -> bool:
    """Match a POSIX path against a glob; '**/' also matches zero directories."""
    if not pattern:
        return True
    if fnmatch.fnmatch(path, pattern):
        return True
    if pattern.startswith("**/") and fnmatch.fnmatch(path, pattern[3:]):
        return True
    # A bare filename glob (no slash) matches against the basename.
    if "/" not in pattern and fnmatch.fnmatch(pathlib.PurePosixPath(path).name, pattern):
        return True
    return False


def parse_line_ranges(spec: str) -> List[tuple]:
    """Parse '1-20, 40, 50-55' into [(1, 20), (40, 40), (50, 55)]; invalid pieces are skipped."""
    ranges: List[tuple] = []
    for piece in (spec or "").split(","):
        piece = piece.strip()
        if not piece:
            continue
        try:
            if "-" in piece:
                a, b = piece.split("-", 1)
                ranges.append((int(a), int(b)))
            else:
                n = int(piece)
                ranges.append((n, n))
        except ValueError:
            continue
    return ranges


def split_lines(content: str) -> List[str]:
    """Split on '\\n' only, keeping line endings; agrees with count_lines."""
    parts = content.split("\n")
    lines = [p + "\n" for p in parts[:-1]]
    if parts[-1]:
        lines.append(parts[-1])
    return lines


def select_lines(content: str, ranges: Iterable[tuple]) -> str:
    """Return only the lines inside the given 1-indexed inclusive ranges, in range order."""
    lines = split_lines(content)
    out: List[str] = []
    for start, end in ranges:
        lo = max(start - 1, 0)
        hi = min(end, len(lines))
        out.extend(lines[lo:hi])
    return "".join(out)
