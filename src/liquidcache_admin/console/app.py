"""Admin console - wires client, scheduler, reconciler and store together.

Usage:
    with AdminConsole(Config.load()) as console:
        sub = console.subscribe("overview", print)
        ...
        sub.close()
"""

from __future__ import annotations

from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, List, Optional

from ..client.base import (
    Ack,
    AdminCommand,
    BaseTransport,
    CommandError,
    CommandKind,
    CommandRejected,
    CommandTransportError,
)
from ..client.http import CacheServiceClient
from ..data.models import ClusterSnapshot, Notification, StreamKind, StreamView, node_detail_stream
from ..data.normalization import parse_cluster_snapshot
from ..data.persistence import ExportStore
from ..data.reconcile import Reconciler
from .clock import Clock, TimerLoop
from .config import Config, ConfigError
from .store import Subscription, ViewStateStore
from .workers import PollScheduler

FETCH_WORKERS = 4


def _log(msg: str) -> None:
    print(msg, flush=True)


class ConsoleMountError(Exception):
    """The console could not be mounted."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        self.cause = cause
        super().__init__(f"[console] {message}")


class AdminConsole:
    """Live, read-mostly view of a LiquidCache cluster.

    Resources not passed in (client, clock, executor) are created on mount and
    released on unmount; a later mount creates fresh ones.
    """

    def __init__(
        self,
        config: Optional[Config] = None,
        client: Optional[BaseTransport] = None,
        clock: Optional[Clock] = None,
        executor: Optional[Executor] = None,
    ):
        self.config = config or Config()
        self.client = client
        self.clock = clock
        self.executor = executor
        self._owns_client = client is None
        self._owns_clock = clock is None
        self._owns_executor = executor is None
        self.store: Optional[ViewStateStore] = None
        self.scheduler: Optional[PollScheduler] = None
        self.reconciler: Optional[Reconciler] = None
        self.trace_active = False  # Set by accepted start_trace, cleared by stop_trace
        self._mounted = False

    # --- Lifecycle ---

    @property
    def mounted(self) -> bool:
        return self._mounted

    def mount(self) -> "AdminConsole":
        """Validate configuration, build the engine and start the clock.

        Raises:
            ConsoleMountError: If the configuration is invalid.
        """
        if self._mounted:
            return self
        try:
            self.config.validate()
        except ConfigError as exc:
            raise ConsoleMountError(f"Invalid configuration: {exc}", exc) from exc

        service, poll = self.config.service, self.config.poll
        if self.client is None:
            self.client = CacheServiceClient(
                base_url=service.base_url,
                timeout=poll.request_timeout,
                verify=service.verify,
                ca_bundle=service.ca_bundle,
            )
        if self.clock is None:
            self.clock = TimerLoop()
        if self.executor is None:
            self.executor = ThreadPoolExecutor(
                max_workers=FETCH_WORKERS, thread_name_prefix="liquidcache-fetch"
            )

        self.store = ViewStateStore(
            dispatch=self.clock.call_soon,
            on_stream_opened=self._open_stream,
            on_stream_closed=self._close_stream,
            lock=self.clock.lock,
        )
        self.reconciler = Reconciler(
            self.store,
            now_fn=self._now,
            removal_debounce=self.config.reconcile.removal_debounce,
            stale_after_failures=poll.stale_after_failures,
        )
        self.scheduler = PollScheduler(self.clock, self.executor, self.client, self.reconciler, poll)
        self.clock.start()
        self._mounted = True
        _log(f"[console] Mounted against {getattr(self.client, 'base_url', 'custom transport')}")
        return self

    def unmount(self) -> None:
        """Terminate every stream, clear the store and release owned resources."""
        if not self._mounted:
            return
        self._mounted = False
        with self.clock.lock:
            self.scheduler.stop_all()
            self.store.clear()
        if self._owns_executor:
            self.executor.shutdown(wait=False, cancel_futures=True)
            self.executor = None
        if self._owns_clock:
            self.clock.stop()
            self.clock = None
        if self._owns_client:
            self.client.close()
            self.client = None
        self.trace_active = False
        _log("[console] Unmounted")

    def __enter__(self) -> "AdminConsole":
        return self.mount()

    def __exit__(self, *exc) -> None:
        self.unmount()

    def _require_mounted(self) -> None:
        if not self._mounted:
            raise RuntimeError("[console] Not mounted")

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self.clock.time(), tz=timezone.utc)

    def _open_stream(self, name: str) -> None:
        self.scheduler.open(name)

    def _close_stream(self, name: str) -> None:
        self.scheduler.close(name)

    # --- Views ---

    def subscribe(self, name: str, callback: Callable[[StreamView], None]) -> Subscription:
        """Subscribe to a stream; the first subscriber starts its polling.

        Raises:
            ValueError: If name is not a valid stream name.
        """
        self._require_mounted()
        with self.clock.lock:
            return self.store.subscribe(name, callback)

    def view(self, name: str) -> Optional[StreamView]:
        self._require_mounted()
        with self.clock.lock:
            return self.store.get(name)

    def streams(self) -> List[str]:
        self._require_mounted()
        with self.clock.lock:
            return self.scheduler.streams()

    def refresh(self, name: str) -> bool:
        """Fetch a subscribed stream now. Returns False if it is not subscribed."""
        self._require_mounted()
        with self.clock.lock:
            return self.scheduler.refresh(name)

    def set_interval(self, name: str, seconds: float) -> None:
        self._require_mounted()
        with self.clock.lock:
            self.scheduler.set_interval(name, seconds)

    # --- Commands ---

    def submit_command(
        self,
        command: AdminCommand,
        on_result: Optional[Callable[[Notification], None]] = None,
    ) -> "Future[Notification]":
        """Send a command; never retried.

        The outcome is delivered once, as a Notification, to on_result and to
        the returned future. An accepted command triggers a refresh of the
        streams it affects.
        """
        self._require_mounted()
        result: "Future[Notification]" = Future()
        timeout = self.config.poll.request_timeout
        clock = self.clock
        future = self.executor.submit(self.client.submit_command, command, timeout)
        future.add_done_callback(
            lambda f: clock.call_soon(lambda: self._on_command_done(command, f, on_result, result))
        )
        _log(f"[console] Submitted {command.kind.value} command (target={command.target})")
        return result

    def _on_command_done(
        self,
        command: AdminCommand,
        future: Future,
        on_result: Optional[Callable[[Notification], None]],
        result: "Future[Notification]",
    ) -> None:
        try:
            ack: Ack = future.result()
        except Exception as exc:
            notification = self._command_failed(CommandTransportError(command, str(exc), exc))
        else:
            if ack.accepted:
                label = command.kind.value.replace("_", " ")
                message = ack.message or f"{label.capitalize()} command accepted"
                notification = Notification.success(message)
                _log(f"[console] {command.kind.value} accepted: {message}")
                if command.kind == CommandKind.START_TRACE:
                    self.trace_active = True
                elif command.kind == CommandKind.STOP_TRACE:
                    self.trace_active = False
                self._refresh_affected(command)
            else:
                notification = self._command_failed(
                    CommandRejected(command, ack.message or "Rejected by the service")
                )

        if on_result is not None:
            try:
                on_result(notification)
            except Exception as exc:
                _log(f"[console] Command result callback failed: {exc!r}")
        result.set_result(notification)

    def _command_failed(self, error: CommandError) -> Notification:
        _log(f"[console] Command failed: {error}")
        return Notification.error(str(error))

    def _refresh_affected(self, command: AdminCommand) -> None:
        # Trace and stats commands leave the cache contents alone
        if not self._mounted or not command.acknowledged:
            return
        names = [StreamKind.OVERVIEW.value]
        if command.kind == CommandKind.EVICT:
            names.append(StreamKind.FRAGMENTS.value)
        if command.target:
            names.append(node_detail_stream(command.target))
        for name in names:
            self.scheduler.refresh(name)

    # --- Export ---

    def export(self, output_dir: Optional[Path] = None) -> Path:
        """Write the current overview snapshot to an export file.

        Uses the snapshot held by the overview stream when there is one and
        fetches a fresh one otherwise.

        Raises:
            TransportError: If a fresh fetch was needed and failed.
            PayloadError: If the fetched overview does not match the contract.
        """
        self._require_mounted()
        with self.clock.lock:
            view = self.store.get(StreamKind.OVERVIEW.value)
        snapshot = view.data if view is not None and isinstance(view.data, ClusterSnapshot) else None
        if snapshot is None:
            snapshot, _ = parse_cluster_snapshot(
                self.client.fetch_overview(timeout=self.config.poll.request_timeout)
            )

        directory = output_dir or self.config.export.directory
        exports = ExportStore(Path(directory) if directory else None)
        path = exports.write_snapshot(snapshot, self._now())
        _log(f"[console] Exported snapshot to {path}")
        return path
