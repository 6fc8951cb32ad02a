# overskill: Run scheduling. At most one orchestration run mutates an app at a time (per-app reentrant lock); runs for different apps proceed concurrently on a thread pool.

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from .context import Context
from .models import RunOutcome


class AppLocks:
    """Registry of one RLock per app id, created on first use."""

    def __init__(self) -> None:
        self._lock_guard = threading.Lock()
        self._app_locks: Dict[str, threading.RLock] = {}

    def lock_for(self, app_id: str) -> threading.RLock:
        with self._lock_guard:
            lock = self._app_locks.get(app_id)
            if lock is None:
                # Reentrant: a run may call helpers that take the same app lock.
                lock = threading.RLock()
                self._app_locks[app_id] = lock
            return lock

    @contextmanager
    def hold(self, app_id: str, timeout: Optional[float] = None) -> Iterator[None]:
        lock = self.lock_for(app_id)
        acquired = lock.acquire(timeout=-1 if timeout is None else timeout)
        if not acquired:
            raise TimeoutError(f"App {app_id} is busy with another run")
        try:
            yield
        finally:
            lock.release()

    def discard(self, app_id: str) -> None:
        with self._lock_guard:
            self._app_locks.pop(app_id, None)


# Process-wide default so every Workspace for the same app shares one lock.
APP_LOCKS = AppLocks()


class RunQueue:
    """
    Submits orchestration runs to a worker pool.

    orchestrator_factory(app_id) returns an object with
    run(app_id, message, history, cancel) -> RunOutcome.
    """

    def __init__(
        self,
        orchestrator_factory: Callable[[str], Any],
        max_workers: int = 4,
        locks: Optional[AppLocks] = None,
        ctx: Optional[Context] = None,
    ) -> None:
        self.orchestrator_factory = orchestrator_factory
        self.locks = locks or APP_LOCKS
        self.ctx = ctx or Context()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="overskill-run")
        self._guard = threading.Lock()
        self._active: Dict[str, threading.Event] = {}

    def submit(self, app_id: str, message: str, history: Sequence[Dict[str, Any]] = ()) -> "Future[RunOutcome]":
        cancel = threading.Event()
        return self._executor.submit(self._run, app_id, message, tuple(history), cancel)

    def _run(self, app_id: str, message: str, history: Sequence[Dict[str, Any]], cancel: threading.Event) -> RunOutcome:
        with self.locks.hold(app_id):
            with self._guard:
                self._active[app_id] = cancel
            try:
                orchestrator = self.orchestrator_factory(app_id)
                return orchestrator.run(app_id, message, history, cancel)
            finally:
                with self._guard:
                    if self._active.get(app_id) is cancel:
                        del self._active[app_id]

    def cancel(self, app_id: str) -> bool:
        """Ask the app's active run to stop at its next turn boundary; False when nothing is running."""
        with self._guard:
            event = self._active.get(app_id)
        if event is None:
            return False
        event.set()
        self.ctx.log(f"[queue] cancellation requested for {app_id}")
        return True

    def active_apps(self) -> List[str]:
        with self._guard:
            return sorted(self._active.keys())

    def shutdown(self, wait: bool = True) -> None:
        with self._guard:
            for event in self._active.values():
                event.set()
        self._executor.shutdown(wait=wait)
