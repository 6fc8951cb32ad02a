# overskill: Ordered progress events for one orchestration run. emit() assigns the sequence number and a strictly increasing timestamp under a lock, records the event, and hands it to a single background delivery thread so the loop never waits on the UI channel.

import pathlib
import queue
import threading
from typing import Any, Callable, Iterable, List, Optional, Protocol, Tuple

from .context import Context
from .fs import append_jsonl, now_ts, short_id
from .models import COALESCING_STAGES, FileDelta, ProgressEvent, ProgressStage

_STOP = object()


class ProgressChannel(Protocol):
    def deliver(self, event: ProgressEvent) -> None:
        ...


class MemoryChannel:
    """Collects delivered events; handy for tests and embedding."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: List[ProgressEvent] = []

    def deliver(self, event: ProgressEvent) -> None:
        with self._lock:
            self._events.append(event)

    @property
    def events(self) -> List[ProgressEvent]:
        with self._lock:
            return list(self._events)


class CallbackChannel:
    def __init__(self, fn: Callable[[ProgressEvent], Any]) -> None:
        self.fn = fn

    def deliver(self, event: ProgressEvent) -> None:
        self.fn(event)


class JsonlChannel:
    """Appends every event as one JSON line (e.g. .overskill/progress.jsonl)."""

    def __init__(self, path: pathlib.Path) -> None:
        self.path = pathlib.Path(path)

    def deliver(self, event: ProgressEvent) -> None:
        append_jsonl(self.path, event.model_dump(mode="json"))


class ConsoleChannel:
    """Prints a live status line plus a permanent line per file change and terminal event."""

    _ICONS = {
        ProgressStage.file_created: "+",
        ProgressStage.file_updated: "~",
        ProgressStage.file_deleted: "-",
        ProgressStage.completed: "done:",
        ProgressStage.failed: "failed:",
    }

    def __init__(self, ctx: Context) -> None:
        self.ctx = ctx
        self.transcript = Transcript()

    def deliver(self, event: ProgressEvent) -> None:
        replaced = self.transcript.apply(event)
        if event.stage in COALESCING_STAGES:
            prefix = "  .." if replaced else "  ..."
            self.ctx.send_to_user(f"{prefix} {event.message}")
            return
        icon = self._ICONS.get(event.stage, "*")
        self.ctx.send_to_user(f"  {icon} {event.message}")


class FanoutChannel:
    """Delivers to several channels; one failing channel does not starve the rest."""

    def __init__(self, channels: Iterable[ProgressChannel], ctx: Optional[Context] = None) -> None:
        self.channels = list(channels)
        self.ctx = ctx or Context()

    def deliver(self, event: ProgressEvent) -> None:
        for ch in self.channels:
            try:
                ch.deliver(event)
            except Exception as e:
                self.ctx.warn(f"Progress channel {type(ch).__name__} failed: {e}")


class Transcript:
    """
    Display model of a run's progress.

    Consecutive understanding/thinking/status events replace the trailing status
    line; file and terminal events always append, giving a permanent audit trail.
    """

    def __init__(self) -> None:
        self._lines: List[Tuple[ProgressStage, str]] = []

    def apply(self, event: ProgressEvent) -> bool:
        """Apply one event; returns True when it replaced the previous status line."""
        if event.stage in COALESCING_STAGES and self._lines and self._lines[-1][0] in COALESCING_STAGES:
            self._lines[-1] = (event.stage, event.message)
            return True
        self._lines.append((event.stage, event.message))
        return False

    def lines(self) -> List[str]:
        return [text for _, text in self._lines]

    def __len__(self) -> int:
        return len(self._lines)


class ProgressBroadcaster:
    def __init__(
        self,
        channel: Optional[ProgressChannel] = None,
        clock: Callable[[], float] = now_ts,
        ctx: Optional[Context] = None,
    ) -> None:
        self.channel = channel
        self.clock = clock
        self.ctx = ctx or Context()
        self.run_id = short_id("run")
        self._lock = threading.Lock()
        self._events: List[ProgressEvent] = []
        self._seq = 0
        self._last_ts = 0.0
        self._queue: "queue.Queue[Any]" = queue.Queue()
        self._pending = 0
        self._idle = threading.Condition()
        self._thread: Optional[threading.Thread] = None
        self._closed = False

    def begin_run(self, run_id: str) -> None:
        """Start a new ordered event sequence; earlier events are dropped from the log."""
        with self._lock:
            self.run_id = run_id
            self._events = []
            self._seq = 0

    def emit(self, stage: ProgressStage, message: str, file_delta: Optional[FileDelta] = None) -> ProgressEvent:
        with self._lock:
            self._seq += 1
            ts = self.clock()
            if ts <= self._last_ts:
                ts = self._last_ts + 1e-6
            self._last_ts = ts
            event = ProgressEvent(
                seq=self._seq,
                run_id=self.run_id,
                stage=ProgressStage(stage),
                message=message,
                timestamp=ts,
                file_delta=file_delta,
            )
            self._events.append(event)
            if self.channel is not None and not self._closed:
                self._ensure_worker()
                with self._idle:
                    self._pending += 1
                self._queue.put(event)
        return event

    @property
    def events(self) -> Tuple[ProgressEvent, ...]:
        with self._lock:
            return tuple(self._events)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait until every queued event was handed to the channel; False on timeout."""
        with self._idle:
            return self._idle.wait_for(lambda: self._pending == 0, timeout=timeout)

    def close(self, timeout: Optional[float] = 5.0) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
            thread = self._thread
        if thread is not None:
            self._queue.put(_STOP)
            thread.join(timeout)

    def _ensure_worker(self) -> None:
        if self._thread is None:
            self._thread = threading.Thread(target=self._worker, name="overskill-progress", daemon=True)
            self._thread.start()

    def _worker(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            try:
                self.channel.deliver(item)
            except Exception as e:
                # Delivery is best-effort; the event stays in the run's log.
                self.ctx.warn(f"Progress delivery failed for seq={item.seq}: {e}")
            finally:
                with self._idle:
                    self._pending -= 1
                    self._idle.notify_all()
