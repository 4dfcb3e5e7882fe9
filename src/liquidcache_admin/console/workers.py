"""Poll scheduler - periodic fetching for every open stream.

Each stream moves through

    IDLE -> SCHEDULED -> IN_FLIGHT -> SCHEDULED (success)
                                   -> BACKOFF   (failure) -> IN_FLIGHT ...

and to TERMINATED when its last subscriber leaves. Network calls run on the
executor; completions come back through clock.call_soon, so every method here
runs on the clock's thread (or under its lock).
"""

from __future__ import annotations

from concurrent.futures import CancelledError, Executor, Future
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from ..client.base import BaseTransport
from ..data.models import StreamKind, parse_stream_name
from ..data.normalization import PayloadError
from ..data.reconcile import Reconciler
from .clock import Clock, TimerHandle
from .config import PollConfig


def _log(msg: str) -> None:
    """Print with flush for reliable output in daemon threads."""
    print(msg, flush=True)


class StreamPhase(str, Enum):
    IDLE = "IDLE"
    SCHEDULED = "SCHEDULED"
    IN_FLIGHT = "IN_FLIGHT"
    BACKOFF = "BACKOFF"
    TERMINATED = "TERMINATED"


@dataclass
class PollStream:
    """Scheduling state of one stream."""

    name: str
    kind: StreamKind
    target: Optional[str]
    interval: float  # base interval, seconds
    phase: StreamPhase = StreamPhase.IDLE
    consecutive_failures: int = 0
    last_success_at: Optional[float] = None
    in_flight: Set[int] = field(default_factory=set)
    latest_seq: int = 0
    timer: Optional[TimerHandle] = None
    scheduled_delay: Optional[float] = None

    def next_delay(self, ceiling: int) -> float:
        """Base interval scaled by 2**failures, capped at ceiling times the base."""
        return self.interval * min(2 ** self.consecutive_failures, ceiling)

    @property
    def terminated(self) -> bool:
        return self.phase == StreamPhase.TERMINATED


class PollScheduler:
    """Owns the timers and in-flight requests of every open stream.

    Args:
        clock: schedules timers and marshals completions
        executor: runs the blocking transport calls
        transport: the cache service client
        reconciler: receives every completion
        config: intervals, backoff ceiling and request timeout
    """

    def __init__(
        self,
        clock: Clock,
        executor: Executor,
        transport: BaseTransport,
        reconciler: Reconciler,
        config: Optional[PollConfig] = None,
    ):
        self.clock = clock
        self.executor = executor
        self.transport = transport
        self.reconciler = reconciler
        self.config = config or PollConfig()
        self._streams: Dict[str, PollStream] = {}
        # Per-name counters outlive the stream so a re-created stream never
        # reuses a sequence number.
        self._sequences: Dict[str, int] = {}
        self._interval_overrides: Dict[str, float] = {}

    # --- Stream lifecycle ---

    def open(self, name: str) -> PollStream:
        """Create the stream and arm its first timer.

        Raises:
            ValueError: If name is not a valid stream name.
        """
        existing = self._streams.get(name)
        if existing is not None:
            return existing
        kind, target = parse_stream_name(name)
        interval = self._interval_overrides.get(name, self.config.interval_for(kind))
        stream = PollStream(name=name, kind=kind, target=target, interval=interval)
        self._streams[name] = stream
        _log(f"[poll:{name}] Opened (interval={interval}s)")
        self._arm(stream, interval)
        return stream

    def close(self, name: str) -> bool:
        """Terminate the stream; a request still in flight is discarded on arrival."""
        stream = self._streams.pop(name, None)
        if stream is None:
            return False
        self.clock.cancel(stream.timer)
        stream.timer = None
        stream.scheduled_delay = None
        stream.phase = StreamPhase.TERMINATED
        pending = f", discarding {len(stream.in_flight)} in flight" if stream.in_flight else ""
        _log(f"[poll:{name}] Terminated{pending}")
        return True

    def stop_all(self) -> None:
        for name in list(self._streams):
            self.close(name)

    def get(self, name: str) -> Optional[PollStream]:
        return self._streams.get(name)

    def streams(self) -> List[str]:
        return sorted(self._streams)

    def refresh(self, name: str) -> bool:
        """Issue a one-shot fetch outside the timer cadence.

        Returns:
            False if the stream is not open.
        """
        stream = self._streams.get(name)
        if stream is None:
            return False
        _log(f"[poll:{name}] Refresh requested")
        self._start_fetch(stream)
        return True

    def set_interval(self, name: str, seconds: float) -> None:
        """Change the base interval of a node-detail stream.

        The value is remembered for the name, so it also applies if the stream
        is re-created later.

        Raises:
            ValueError: If name is not a node-detail stream or seconds is not
                positive.
        """
        kind, _ = parse_stream_name(name)
        if kind != StreamKind.NODE_DETAIL:
            raise ValueError(f"Interval of {name!r} is not configurable")
        if seconds <= 0:
            raise ValueError(f"Interval must be positive, got {seconds}")
        self._interval_overrides[name] = seconds
        stream = self._streams.get(name)
        if stream is None:
            return
        stream.interval = seconds
        _log(f"[poll:{name}] Interval set to {seconds}s")
        if stream.phase in (StreamPhase.SCHEDULED, StreamPhase.BACKOFF):
            self._arm(stream, stream.next_delay(self.config.backoff_ceiling))

    # --- Timer and fetch handling ---

    def _arm(self, stream: PollStream, delay: float) -> None:
        self.clock.cancel(stream.timer)
        stream.timer = self.clock.schedule(delay, lambda: self._on_timer(stream))
        stream.scheduled_delay = delay
        stream.phase = StreamPhase.BACKOFF if stream.consecutive_failures else StreamPhase.SCHEDULED

    def _on_timer(self, stream: PollStream) -> None:
        if stream.terminated:
            return
        stream.timer = None
        stream.scheduled_delay = None
        if stream.in_flight:
            _log(f"[poll:{stream.name}] Tick dropped: request already in flight")
            return
        self._start_fetch(stream)

    def _next_seq(self, name: str) -> int:
        seq = self._sequences.get(name, 0) + 1
        self._sequences[name] = seq
        return seq

    def _start_fetch(self, stream: PollStream) -> None:
        seq = self._next_seq(stream.name)
        stream.latest_seq = seq
        stream.in_flight.add(seq)
        stream.phase = StreamPhase.IN_FLIGHT
        future = self.executor.submit(self._fetch, stream.kind, stream.target)
        future.add_done_callback(
            lambda f: self.clock.call_soon(lambda: self._on_complete(stream, seq, f))
        )

    def _fetch(self, kind: StreamKind, target: Optional[str]) -> Any:
        timeout = self.config.request_timeout
        if kind == StreamKind.OVERVIEW:
            return self.transport.fetch_overview(timeout=timeout)
        if kind == StreamKind.NODE_DETAIL:
            return self.transport.fetch_node(target, timeout=timeout)
        if kind == StreamKind.SYSTEM_INFO:
            return self.transport.fetch_system_info(timeout=timeout)
        if kind == StreamKind.EXECUTION_PLANS:
            return self.transport.fetch_execution_plans(timeout=timeout)
        return self.transport.fetch_fragments(self.config.fragment_query, timeout=timeout)

    def _on_complete(self, stream: PollStream, seq: int, future: Future) -> None:
        stream.in_flight.discard(seq)
        if stream.terminated:
            _log(f"[poll:{stream.name}] Discarding seq {seq}: stream terminated")
            return

        try:
            payload = future.result()
        except CancelledError:
            return
        except Exception as exc:
            self._handle_failure(stream, seq, exc)
            return

        try:
            self.reconciler.apply_success(stream.name, seq, payload)
        except PayloadError as exc:
            self._handle_failure(stream, seq, exc)
            return
        except Exception as exc:
            # Counted as a failed fetch so the stream never stays IN_FLIGHT
            _log(f"[poll:{stream.name}] Reconciling seq {seq} raised {type(exc).__name__}")
            self._handle_failure(stream, seq, exc)
            return

        if seq != stream.latest_seq:
            return
        stream.consecutive_failures = 0
        stream.last_success_at = self.clock.time()
        stream.phase = StreamPhase.IDLE
        self._arm(stream, stream.interval)

    def _handle_failure(self, stream: PollStream, seq: int, exc: Exception) -> None:
        if seq != stream.latest_seq:
            _log(f"[poll:{stream.name}] Ignoring failure of superseded seq {seq}: {exc}")
            return
        stream.consecutive_failures += 1
        delay = stream.next_delay(self.config.backoff_ceiling)
        _log(
            f"[poll:{stream.name}] Fetch failed "
            f"(failure {stream.consecutive_failures}, retry in {delay}s): {exc}"
        )
        self.reconciler.apply_failure(stream.name, seq, exc, stream.consecutive_failures)
        self._arm(stream, delay)
