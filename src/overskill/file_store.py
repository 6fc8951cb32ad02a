# overskill: Per-app key-value store of path -> file with metadata. One abstract contract, an in-memory backend for tests/embedding and a directory backend that keeps the app's files on disk. Mutations are atomic per path under a store-wide lock.

import pathlib
import re
import threading
from abc import ABC, abstractmethod
from typing import Dict, Iterator, List, Optional

from .errors import ConflictError, EmptyContentError, NotFoundError, RangeError
from .fs import (
    glob_match,
    is_internal_path,
    list_app_paths,
    normalize_path,
    parse_line_ranges,
    safe_abs,
    select_lines,
    split_lines,
)
from .models import AppFile, ContentType, SearchMatch, content_type_for


def splice_lines(path: str, content: str, first_line: int, last_line: int, replacement: str) -> str:
    """
    Replace lines first_line..last_line (1-indexed, inclusive) of content with replacement.

    Lines outside the range are preserved byte-for-byte. A replacement that does not
    end in a newline gets one when more content follows (or when the original last line
    had one), so neighbouring lines never merge.
    """
    lines = split_lines(content)
    n = len(lines)
    if first_line < 1 or first_line > last_line or last_line > n:
        raise RangeError(path, first_line, last_line, n)
    repl = replacement
    if repl and not repl.endswith("\n") and (last_line < n or lines[-1].endswith("\n")):
        repl += "\n"
    return "".join(lines[: first_line - 1]) + repl + "".join(lines[last_line:])


def _compile_query(query: str, case_sensitive: bool) -> "re.Pattern[str]":
    flags = 0 if case_sensitive else re.IGNORECASE
    try:
        return re.compile(query, flags)
    except re.error:
        # Not a valid regex; treat as a literal substring.
        return re.compile(re.escape(query), flags)


class FileStore(ABC):
    """
    Abstract file store for a single app.

    Subclasses implement the raw accessors (_get/_put/_remove/_paths); the public
    operations enforce the error contract and hold the store lock so every
    single-path mutation is atomic.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()

    # ---------- raw accessors ----------

    @abstractmethod
    def _get(self, path: str) -> Optional[AppFile]:
        ...

    @abstractmethod
    def _put(self, file: AppFile) -> None:
        ...

    @abstractmethod
    def _remove(self, path: str) -> None:
        ...

    @abstractmethod
    def _paths(self) -> List[str]:
        ...

    # ---------- operations ----------

    def exists(self, path: str) -> bool:
        with self._lock:
            return self._get(normalize_path(path)) is not None

    def list_paths(self, include_glob: Optional[str] = None) -> List[str]:
        with self._lock:
            paths = sorted(self._paths())
        return [p for p in paths if glob_match(p, include_glob)]

    def write(self, path: str, content: str, content_type: Optional[ContentType] = None) -> AppFile:
        """Create or overwrite path. Identical content leaves the store untouched."""
        np = normalize_path(path)
        if not np:
            raise NotFoundError(path)
        if content is None or content == "":
            raise EmptyContentError(np)
        with self._lock:
            existing = self._get(np)
            if existing is not None and existing.content == content and (
                content_type is None or existing.content_type == content_type
            ):
                return existing
            ct = content_type or (existing.content_type if existing is not None else None)
            file = AppFile.build(np, content, ct)
            self._put(file)
            return file

    def read(self, path: str, lines: Optional[str] = None) -> AppFile:
        """Return the file; with a line filter like '1-20,40' only those lines are kept in content."""
        np = normalize_path(path)
        with self._lock:
            file = self._get(np)
        if file is None:
            raise NotFoundError(np)
        if lines:
            ranges = parse_line_ranges(lines)
            if ranges:
                return file.model_copy(update={"content": select_lines(file.content, ranges)})
        return file

    def delete(self, path: str) -> None:
        np = normalize_path(path)
        with self._lock:
            if self._get(np) is None:
                raise NotFoundError(np)
            self._remove(np)

    def rename(self, old_path: str, new_path: str) -> AppFile:
        """Move old_path to new_path keeping content and type; ConflictError if the target exists."""
        op = normalize_path(old_path)
        nw = normalize_path(new_path)
        with self._lock:
            src = self._get(op)
            if src is None:
                raise NotFoundError(op)
            if not nw:
                raise NotFoundError(new_path)
            if op == nw or self._get(nw) is not None:
                raise ConflictError(nw)
            moved = AppFile.build(nw, src.content, src.content_type)
            self._put(moved)
            self._remove(op)
            return moved

    def replace_lines(self, path: str, first_line: int, last_line: int, replacement: str) -> AppFile:
        """
        Splice replacement into the inclusive 1-indexed range of the current stored content.

        Line numbers always refer to what is stored now; there is no optimistic lock, so
        an edit against a stale read still applies (last write wins).
        """
        np = normalize_path(path)
        with self._lock:
            file = self._get(np)
            if file is None:
                raise NotFoundError(np)
            new_content = splice_lines(np, file.content, int(first_line), int(last_line), replacement or "")
            if new_content == "":
                raise EmptyContentError(np)
            if new_content == file.content:
                return file
            updated = AppFile.build(np, new_content, file.content_type)
            self._put(updated)
            return updated

    def search(
        self,
        query: str,
        include_glob: Optional[str] = None,
        case_sensitive: bool = False,
        exclude_glob: Optional[str] = None,
    ) -> Iterator[SearchMatch]:
        """
        Lazily yield line matches across files. Each call returns a fresh generator, so a
        search can be restarted by calling again. The query is a regex; invalid regexes are
        treated as literal text.
        """
        pattern = _compile_query(query, case_sensitive)
        paths = self.list_paths(include_glob)

        def _gen() -> Iterator[SearchMatch]:
            for p in paths:
                if exclude_glob and glob_match(p, exclude_glob):
                    continue
                with self._lock:
                    file = self._get(p)
                if file is None:
                    continue
                for i, line in enumerate(split_lines(file.content), start=1):
                    if pattern.search(line):
                        yield SearchMatch(path=p, line_number=i, line_text=line.rstrip("\r\n"))

        return _gen()

    def snapshot(self) -> Dict[str, str]:
        """Complete, self-consistent path -> content copy taken under the store lock."""
        with self._lock:
            out: Dict[str, str] = {}
            for p in sorted(self._paths()):
                f = self._get(p)
                if f is not None:
                    out[p] = f.content
            return out


class InMemoryFileStore(FileStore):
    """Dictionary-backed store; useful for tests and embedding."""

    def __init__(self, files: Optional[Dict[str, str]] = None) -> None:
        super().__init__()
        self._files: Dict[str, AppFile] = {}
        for p, c in (files or {}).items():
            self.write(p, c)

    def _get(self, path: str) -> Optional[AppFile]:
        return self._files.get(path)

    def _put(self, file: AppFile) -> None:
        self._files[file.path] = file

    def _remove(self, path: str) -> None:
        self._files.pop(path, None)

    def _paths(self) -> List[str]:
        return list(self._files.keys())


class DirectoryFileStore(FileStore):
    """
    Store backed by an app directory on disk.

    Files are UTF-8 text under app_root; internal directories (.overskill, .git,
    node_modules) are never listed. Explicit content types that differ from the
    extension default are remembered in memory for the life of the store.
    """

    def __init__(self, app_root: pathlib.Path) -> None:
        super().__init__()
        self.app_root = pathlib.Path(app_root).resolve()
        self.app_root.mkdir(parents=True, exist_ok=True)
        self._types: Dict[str, ContentType] = {}

    def _abs(self, path: str) -> pathlib.Path:
        if is_internal_path(path):
            raise ValueError(f"Path is reserved: {path}")
        return safe_abs(self.app_root, path)

    def _get(self, path: str) -> Optional[AppFile]:
        if not path or is_internal_path(path):
            return None
        try:
            ap = self._abs(path)
        except ValueError:
            return None
        if not ap.is_file():
            return None
        try:
            content = ap.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return None
        return AppFile.build(path, content, self._types.get(path))

    def _put(self, file: AppFile) -> None:
        ap = self._abs(file.path)
        ap.parent.mkdir(parents=True, exist_ok=True)
        tmp = ap.with_name(ap.name + ".overskill-tmp")
        with tmp.open("w", encoding="utf-8", newline="") as f:
            f.write(file.content)
        tmp.replace(ap)
        if file.content_type != content_type_for(file.path):
            self._types[file.path] = file.content_type
        else:
            self._types.pop(file.path, None)

    def _remove(self, path: str) -> None:
        ap = self._abs(path)
        if ap.exists():
            ap.unlink()
        self._types.pop(path, None)
        # Prune directories left empty by the delete.
        parent = ap.parent
        while parent != self.app_root and parent.is_dir() and not any(parent.iterdir()):
            parent.rmdir()
            parent = parent.parent

    def _paths(self) -> List[str]:
        return list_app_paths(self.app_root)
