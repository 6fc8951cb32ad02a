# overskill: Content-hash change detection and per-path stability scoring. Scores drive prompt-cache tiering; records are derived data and can be rebuilt from the file store, so persistence is a plain dict round-trip stored in workspace metadata.

import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .config import STABILITY_WINDOW_SEC, VOLATILE_WINDOW_SEC
from .fs import now_ts, sha256_text
from .models import ChangeRecord

CHANGE_LOG_MAX_SIZE = 1000

TIER_CORE = "core"
TIER_LIBRARY = "library"
TIER_ACTIVE = "active"
TIER_VOLATILE = "volatile"
TIERS = (TIER_CORE, TIER_LIBRARY, TIER_ACTIVE, TIER_VOLATILE)


class ChangeTracker:
    """
    Tracks sha256 hashes per path and a bounded log of real changes.

    A path's first track establishes a baseline and is not a change. Later tracks
    report a change only when the hash differs; hash and timestamp are refreshed
    either way.
    """

    def __init__(
        self,
        clock: Callable[[], float] = now_ts,
        volatile_window: float = VOLATILE_WINDOW_SEC,
        stability_window: float = STABILITY_WINDOW_SEC,
    ) -> None:
        self._clock = clock
        self.volatile_window = float(volatile_window)
        self.stability_window = float(stability_window)
        self._records: Dict[str, ChangeRecord] = {}
        self._log: List[Tuple[float, str]] = []
        self._lock = threading.RLock()

    # ---------- tracking ----------

    def track(self, path: str, content: str) -> bool:
        """Hash content for path; return True only when it differs from the previous hash."""
        digest = sha256_text(content)
        with self._lock:
            now = self._clock()
            prev = self._records.get(path)
            changed = prev is not None and prev.content_hash != digest
            if changed:
                self._log.append((now, path))
                if len(self._log) > CHANGE_LOG_MAX_SIZE:
                    self._log = self._log[-CHANGE_LOG_MAX_SIZE:]
            self._records[path] = ChangeRecord(
                path=path,
                content_hash=digest,
                last_changed_at=now,
                stability_score=self._score_locked(path, now),
            )
            return changed

    def track_many(self, files: Dict[str, str]) -> List[str]:
        """Track several files; return the paths that changed."""
        return [p for p, c in files.items() if self.track(p, c)]

    def forget(self, path: str) -> None:
        """Drop the record for a deleted path; its change history stays in the log."""
        with self._lock:
            self._records.pop(path, None)

    def clear(self) -> None:
        with self._lock:
            self._records.clear()
            self._log.clear()

    # ---------- queries ----------

    def record(self, path: str) -> Optional[ChangeRecord]:
        with self._lock:
            rec = self._records.get(path)
            if rec is None:
                return None
            return rec.model_copy(update={"stability_score": self._score_locked(path, self._clock())})

    def current_hash(self, path: str) -> Optional[str]:
        with self._lock:
            rec = self._records.get(path)
            return rec.content_hash if rec else None

    def tracked_paths(self) -> List[str]:
        with self._lock:
            return sorted(self._records.keys())

    def changed_since(self, ts: float) -> List[str]:
        """Unique paths with a real change at or after ts, in first-seen order."""
        seen: Dict[str, None] = {}
        with self._lock:
            for when, p in self._log:
                if when >= ts:
                    seen.setdefault(p, None)
        return list(seen.keys())

    def recently_changed(self, path: str, window_seconds: Optional[float] = None) -> bool:
        window = self.volatile_window if window_seconds is None else float(window_seconds)
        return self._count_since(path, self._clock() - window) > 0

    def change_frequency(self, path: str) -> float:
        """Changes per hour for path over the stability window."""
        hours = max(self.stability_window / 3600.0, 1e-9)
        return self._count_since(path, self._clock() - self.stability_window) / hours

    def stability_score(self, path: str) -> int:
        with self._lock:
            return self._score_locked(path, self._clock())

    def tier_for(self, path: str) -> str:
        """Cache tier: core (>=8), library (5-7), active (2-4), volatile (<2 or recently changed)."""
        if self.recently_changed(path):
            return TIER_VOLATILE
        score = self.stability_score(path)
        if score >= 8:
            return TIER_CORE
        if score >= 5:
            return TIER_LIBRARY
        if score >= 2:
            return TIER_ACTIVE
        return TIER_VOLATILE

    def categorize(self, paths: Iterable[str]) -> Dict[str, List[str]]:
        out: Dict[str, List[str]] = {t: [] for t in TIERS}
        for p in paths:
            out[self.tier_for(p)].append(p)
        return out

    def stats(self) -> Dict[str, Any]:
        now = self._clock()
        with self._lock:
            paths = list(self._records.keys())
        dist = self.categorize(paths)
        return {
            "total_tracked_files": len(paths),
            "recent_changes_1h": len(self.changed_since(now - 3600)),
            "recent_changes_window": len(self.changed_since(now - self.volatile_window)),
            "stability_distribution": {k: len(v) for k, v in dist.items()},
        }

    # ---------- persistence ----------

    def to_dict(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "records": {p: r.model_dump() for p, r in self._records.items()},
                "log": [[when, p] for when, p in self._log],
            }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], **kwargs: Any) -> "ChangeTracker":
        tracker = cls(**kwargs)
        tracker.load_dict(data)
        return tracker

    def load_dict(self, data: Optional[Dict[str, Any]]) -> None:
        """Replace state from to_dict() output; malformed entries are skipped."""
        if not isinstance(data, dict):
            return
        records: Dict[str, ChangeRecord] = {}
        for p, raw in (data.get("records") or {}).items():
            try:
                records[p] = ChangeRecord.model_validate(raw)
            except ValueError:
                continue
        log: List[Tuple[float, str]] = []
        for item in data.get("log") or []:
            try:
                when, p = item
                log.append((float(when), str(p)))
            except (TypeError, ValueError):
                continue
        with self._lock:
            self._records = records
            self._log = log[-CHANGE_LOG_MAX_SIZE:]

    # ---------- internals ----------

    def _count_since(self, path: str, since: float) -> int:
        with self._lock:
            return sum(1 for when, p in self._log if p == path and when >= since)

    def _score_locked(self, path: str, now: float) -> int:
        hours = max(self.stability_window / 3600.0, 1e-9)
        per_hour = self._count_since(path, now - self.stability_window) / hours
        score = max(0.0, 10.0 - per_hour)
        recent = self._count_since(path, now - self.volatile_window)
        if recent >= 3:
            score = min(score, 1.0)
        elif recent >= 1:
            score = min(score, 4.0)
        return int(round(score))
