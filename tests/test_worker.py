"""Tests for per-app mutual exclusion and the run queue."""

import threading
import time

import pytest

from overskill.worker import AppLocks, RunQueue


class ConcurrencyProbe:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.active = 0
        self.peak = 0

    def __enter__(self):
        with self._lock:
            self.active += 1
            self.peak = max(self.peak, self.active)
        return self

    def __exit__(self, *exc):
        with self._lock:
            self.active -= 1
        return False


class TestAppLocks:
    def test_same_app_runs_one_at_a_time(self):
        locks = AppLocks()
        probe = ConcurrencyProbe()

        def work():
            with locks.hold("app-1"), probe:
                time.sleep(0.02)

        threads = [threading.Thread(target=work) for _ in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert probe.peak == 1

    def test_different_apps_proceed_concurrently(self):
        locks = AppLocks()
        barrier = threading.Barrier(2, timeout=5)
        errors = []

        def work(app_id):
            with locks.hold(app_id):
                try:
                    barrier.wait()
                except threading.BrokenBarrierError as e:
                    errors.append(e)

        threads = [threading.Thread(target=work, args=(a,)) for a in ("app-1", "app-2")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert errors == []

    def test_hold_is_reentrant(self):
        locks = AppLocks()
        with locks.hold("app-1"):
            with locks.hold("app-1", timeout=0.1):
                pass

    def test_hold_times_out_when_busy(self):
        locks = AppLocks()
        held = threading.Event()
        release = threading.Event()

        def owner():
            with locks.hold("app-1"):
                held.set()
                release.wait(5)

        t = threading.Thread(target=owner)
        t.start()
        held.wait(5)
        try:
            with pytest.raises(TimeoutError):
                with locks.hold("app-1", timeout=0.05):
                    pass
        finally:
            release.set()
            t.join()

    def test_lock_for_returns_one_lock_per_app(self):
        locks = AppLocks()
        assert locks.lock_for("a") is locks.lock_for("a")
        assert locks.lock_for("a") is not locks.lock_for("b")


class FakeOrchestrator:
    def __init__(self, probe: ConcurrencyProbe, hold: float = 0.02) -> None:
        self.probe = probe
        self.hold = hold

    def run(self, app_id, message, history, cancel):
        with self.probe:
            time.sleep(self.hold)
        return f"{app_id}:{message}"


class TestRunQueue:
    def test_runs_for_one_app_are_serialized(self):
        probe = ConcurrencyProbe()
        queue = RunQueue(lambda app_id: FakeOrchestrator(probe), max_workers=4, locks=AppLocks())
        futures = [queue.submit("app-1", f"m{i}") for i in range(4)]
        assert sorted(f.result(timeout=5) for f in futures) == [f"app-1:m{i}" for i in range(4)]
        assert probe.peak == 1
        queue.shutdown()

    def test_runs_for_different_apps_overlap(self):
        probe = ConcurrencyProbe()
        queue = RunQueue(lambda app_id: FakeOrchestrator(probe, hold=0.2), max_workers=4, locks=AppLocks())
        futures = [queue.submit(f"app-{i}", "m") for i in range(3)]
        for f in futures:
            f.result(timeout=5)
        assert probe.peak > 1
        queue.shutdown()

    def test_cancel_reaches_the_active_run(self):
        started = threading.Event()

        class Waiting:
            def run(self, app_id, message, history, cancel):
                started.set()
                return "cancelled" if cancel.wait(5) else "timed out"

        queue = RunQueue(lambda app_id: Waiting(), locks=AppLocks())
        future = queue.submit("app-1", "m")
        assert started.wait(5)
        assert queue.active_apps() == ["app-1"]
        assert queue.cancel("app-1") is True
        assert future.result(timeout=5) == "cancelled"
        assert queue.active_apps() == []
        queue.shutdown()

    def test_cancel_without_a_run(self):
        queue = RunQueue(lambda app_id: FakeOrchestrator(ConcurrencyProbe()), locks=AppLocks())
        assert queue.cancel("app-1") is False
        queue.shutdown()

    def test_history_is_passed_through(self):
        seen = {}

        class Recording:
            def run(self, app_id, message, history, cancel):
                seen["history"] = history
                return "ok"

        queue = RunQueue(lambda app_id: Recording(), locks=AppLocks())
        history = [{"type": "message", "role": "user", "content": "earlier"}]
        assert queue.submit("app-1", "m", history).result(timeout=5) == "ok"
        assert seen["history"] == tuple(history)
        queue.shutdown()
