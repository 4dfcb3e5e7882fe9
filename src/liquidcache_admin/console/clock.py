"""Timer scheduling for the poll engine.

All engine state is touched from one logical thread. A Clock runs every
scheduled callback while holding its `lock`; code outside the clock (the CLI,
executor completion hooks) either takes the same lock or hands work over with
call_soon.

TimerLoop is the real clock: a daemon thread running a timer heap.
ManualClock is the simulated clock: time only moves when advance() is called,
and callbacks run on the caller's thread.
"""

from __future__ import annotations

import heapq
import itertools
import threading
import time
from abc import ABC, abstractmethod
from typing import Callable, List, Optional


def _log(msg: str) -> None:
    """Print with flush for reliable output in daemon threads."""
    print(msg, flush=True)


class TimerHandle:
    """Handle for a scheduled callback."""

    __slots__ = ("due", "seq", "callback", "cancelled")

    def __init__(self, due: float, seq: int, callback: Callable[[], None]):
        self.due = due
        self.seq = seq
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def __lt__(self, other: "TimerHandle") -> bool:
        return (self.due, self.seq) < (other.due, other.seq)


class Clock(ABC):
    """Abstract scheduler: schedule(delay, callback) -> handle, cancel(handle)."""

    def __init__(self) -> None:
        self.lock = threading.RLock()
        self._counter = itertools.count()

    @abstractmethod
    def time(self) -> float:
        """Current wall-clock time in UNIX seconds."""

    @abstractmethod
    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        """Run callback after delay seconds."""

    def cancel(self, handle: Optional[TimerHandle]) -> None:
        if handle is not None:
            handle.cancel()

    def call_soon(self, callback: Callable[[], None]) -> TimerHandle:
        return self.schedule(0, callback)

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def _run_callback(self, handle: TimerHandle) -> None:
        with self.lock:
            if handle.cancelled:
                return
            try:
                handle.callback()
            except Exception as exc:
                _log(f"[clock] Callback failed: {exc!r}")


class ManualClock(Clock):
    """Simulated clock for tests and replay.

    Time starts at `start` (UNIX seconds) and only moves through advance().
    """

    def __init__(self, start: float = 1_700_000_000.0):
        super().__init__()
        self._now = start
        self._queue: List[TimerHandle] = []

    def time(self) -> float:
        return self._now

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(self._now + max(0.0, delay), next(self._counter), callback)
        heapq.heappush(self._queue, handle)
        return handle

    def advance(self, seconds: float = 0.0) -> int:
        """Move time forward, running every callback that falls due.

        Callbacks scheduled while advancing run too if they fall due within
        the window. Returns the number of callbacks run.
        """
        target = self._now + max(0.0, seconds)
        ran = 0
        while self._queue and self._queue[0].due <= target:
            handle = heapq.heappop(self._queue)
            if handle.cancelled:
                continue
            self._now = max(self._now, handle.due)
            self._run_callback(handle)
            ran += 1
        self._now = target
        return ran

    def run_ready(self) -> int:
        """Run everything already due without moving time."""
        return self.advance(0.0)

    def pending_delays(self) -> List[float]:
        """Remaining delays of live timers, soonest first."""
        return sorted(h.due - self._now for h in self._queue if not h.cancelled)

    @property
    def pending_count(self) -> int:
        return sum(1 for h in self._queue if not h.cancelled)


class TimerLoop(Clock):
    """Real clock backed by a single daemon thread."""

    def __init__(self, name: str = "liquidcache-admin-clock"):
        super().__init__()
        self._queue: List[TimerHandle] = []
        self._cond = threading.Condition()
        self._stopped = False
        self._thread = threading.Thread(target=self._run, name=name, daemon=True)

    def time(self) -> float:
        return time.time()

    def schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        handle = TimerHandle(time.monotonic() + max(0.0, delay), next(self._counter), callback)
        with self._cond:
            heapq.heappush(self._queue, handle)
            self._cond.notify()
        return handle

    def start(self) -> None:
        if not self._thread.is_alive() and not self._stopped:
            self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        with self._cond:
            self._stopped = True
            self._queue.clear()
            self._cond.notify()
        if self._thread.is_alive() and threading.current_thread() is not self._thread:
            self._thread.join(timeout=timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._stopped:
                    if self._queue:
                        wait = self._queue[0].due - time.monotonic()
                        if wait <= 0:
                            break
                        self._cond.wait(wait)
                    else:
                        self._cond.wait()
                if self._stopped:
                    return
                handle = heapq.heappop(self._queue)
            self._run_callback(handle)
