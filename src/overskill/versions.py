# overskill: Immutable version snapshots of an app's files, with numbering, diff and restore (rollback). Listeners registered with on_snapshot are notified after a snapshot is durably stored; that is the hook for deploy pipelines.

import pathlib
import threading
from abc import ABC, abstractmethod
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from .context import Context
from .errors import NotFoundError, UnknownVersion
from .file_store import FileStore
from .fs import now_ts, read_json, write_json
from .models import FileAction, FileDelta, VersionSnapshot

FIRST_VERSION = "1.0.0"


def next_version(previous: Optional[str]) -> str:
    """'1.0.0' for the first snapshot, then bump the last numeric component."""
    if not previous:
        return FIRST_VERSION
    parts = previous.split(".")
    try:
        parts[-1] = str(int(parts[-1]) + 1)
    except ValueError:
        parts.append("1")
    return ".".join(parts)


def version_key(version: str) -> Tuple[int, ...]:
    out: List[int] = []
    for part in version.split("."):
        try:
            out.append(int(part))
        except ValueError:
            out.append(0)
    return tuple(out)


class VersionStore(ABC):
    """Append-only snapshot store for one app."""

    def __init__(self, clock: Callable[[], float] = now_ts, ctx: Optional[Context] = None) -> None:
        self.clock = clock
        self.ctx = ctx or Context()
        self._lock = threading.RLock()
        self._listeners: List[Callable[[VersionSnapshot], None]] = []

    @abstractmethod
    def _save(self, snapshot: VersionSnapshot) -> None:
        ...

    @abstractmethod
    def _all(self) -> List[VersionSnapshot]:
        ...

    def on_snapshot(self, fn: Callable[[VersionSnapshot], None]) -> None:
        self._listeners.append(fn)

    def create_snapshot(
        self,
        app_id: str,
        files_snapshot: Dict[str, str],
        changelog: str,
        file_actions: Iterable[FileDelta] = (),
    ) -> VersionSnapshot:
        with self._lock:
            latest = self.latest()
            snap = VersionSnapshot(
                app_id=app_id,
                version_number=next_version(latest.version_number if latest else None),
                created_at=self.clock(),
                files_snapshot=dict(files_snapshot),
                changelog=changelog,
                file_actions=list(file_actions),
            )
            self._save(snap)
        self.ctx.log(f"[versions] Created {snap.version_number} for {app_id} ({len(snap.files_snapshot)} files)")
        for fn in list(self._listeners):
            try:
                fn(snap)
            except Exception as e:
                self.ctx.warn(f"[versions] snapshot listener failed: {e}")
        return snap

    def list(self) -> List[VersionSnapshot]:
        with self._lock:
            return sorted(self._all(), key=lambda s: version_key(s.version_number))

    def latest(self) -> Optional[VersionSnapshot]:
        items = self.list()
        return items[-1] if items else None

    def get(self, version: str) -> VersionSnapshot:
        for s in self.list():
            if s.version_number == version:
                return s
        raise UnknownVersion(version)

    def diff(self, a: str, b: str) -> Dict[str, List[str]]:
        """Paths added, removed and changed going from version a to version b."""
        fa = self.get(a).files_snapshot
        fb = self.get(b).files_snapshot
        return {
            "added": sorted(set(fb) - set(fa)),
            "removed": sorted(set(fa) - set(fb)),
            "changed": sorted(p for p in set(fa) & set(fb) if fa[p] != fb[p]),
        }

    def restore(self, version: str, store: FileStore) -> List[FileDelta]:
        """Write a snapshot back into store, deleting paths it does not contain."""
        files = self.get(version).files_snapshot
        deltas: List[FileDelta] = []
        for path in store.list_paths():
            if path not in files:
                store.delete(path)
                deltas.append(FileDelta(path=path, action=FileAction.deleted))
        for path, content in sorted(files.items()):
            try:
                before: Optional[str] = store.read(path).content
            except NotFoundError:
                before = None
            if before == content:
                continue
            store.write(path, content)
            deltas.append(FileDelta(path=path, action=FileAction.created if before is None else FileAction.updated))
        self.ctx.log(f"[versions] Restored {version}: {len(deltas)} file change(s)")
        return deltas


class InMemoryVersionStore(VersionStore):
    def __init__(self, clock: Callable[[], float] = now_ts, ctx: Optional[Context] = None) -> None:
        super().__init__(clock=clock, ctx=ctx)
        self._snapshots: List[VersionSnapshot] = []

    def _save(self, snapshot: VersionSnapshot) -> None:
        self._snapshots.append(snapshot)

    def _all(self) -> List[VersionSnapshot]:
        return [s.model_copy(deep=True) for s in self._snapshots]


class JsonVersionStore(VersionStore):
    """One JSON file per version under a directory (e.g. .overskill/versions/)."""

    def __init__(self, directory: pathlib.Path, clock: Callable[[], float] = now_ts, ctx: Optional[Context] = None) -> None:
        super().__init__(clock=clock, ctx=ctx)
        self.directory = pathlib.Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path_for(self, version: str) -> pathlib.Path:
        return self.directory / f"v{version}.json"

    def _save(self, snapshot: VersionSnapshot) -> None:
        write_json(self._path_for(snapshot.version_number), snapshot.model_dump(mode="json"))

    def _all(self) -> List[VersionSnapshot]:
        out: List[VersionSnapshot] = []
        for p in sorted(self.directory.glob("v*.json")):
            raw = read_json(p, None)
            if not isinstance(raw, dict):
                continue
            try:
                out.append(VersionSnapshot.model_validate(raw))
            except ValueError:
                self.ctx.warn(f"[versions] skipping unreadable snapshot {p.name}")
        return out
