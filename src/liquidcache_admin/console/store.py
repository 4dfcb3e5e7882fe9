"""View state store - the latest reconciled view of every subscribed stream.

Single writer (the reconciler), many readers. Readers never get a mutable
reference: they subscribe and receive frozen StreamView values.

Subscriber counting drives the poll lifecycle. The first subscriber to a
stream opens it (on_stream_opened), the last one to leave closes it
(on_stream_closed) and its slice is dropped.
"""

from __future__ import annotations

from contextlib import nullcontext
from typing import Callable, ContextManager, Dict, List, Optional

from ..data.models import StreamView, parse_stream_name

ViewCallback = Callable[[StreamView], None]


def _log(msg: str) -> None:
    print(msg, flush=True)


def _call_now(fn: Callable[[], None]) -> None:
    fn()


class Subscription:
    """Handle returned by ViewStateStore.subscribe."""

    def __init__(self, store: "ViewStateStore", name: str, token: int):
        self._store = store
        self.name = name
        self.token = token
        self._closed = False

    @property
    def active(self) -> bool:
        return not self._closed

    def close(self) -> None:
        """Unsubscribe. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._store._unsubscribe(self.name, self.token)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class ViewStateStore:
    """Publish/subscribe store of StreamView values.

    Args:
        dispatch: runs a delivery later; defaults to running it immediately.
            The console passes its clock's call_soon so a slow consumer never
            blocks the writer.
        on_stream_opened: called with the stream name on its first subscriber
        on_stream_closed: called with the stream name when its last subscriber
            leaves
        lock: held while subscribing and unsubscribing, so a consumer thread
            can close a Subscription while the clock thread publishes
    """

    def __init__(
        self,
        dispatch: Optional[Callable[[Callable[[], None]], object]] = None,
        on_stream_opened: Optional[Callable[[str], None]] = None,
        on_stream_closed: Optional[Callable[[str], None]] = None,
        lock: Optional[ContextManager] = None,
    ):
        self._lock = lock if lock is not None else nullcontext()
        self._dispatch = dispatch or _call_now
        self._on_opened = on_stream_opened
        self._on_closed = on_stream_closed
        self._views: Dict[str, StreamView] = {}
        self._subscribers: Dict[str, Dict[int, ViewCallback]] = {}
        self._delivered: Dict[int, StreamView] = {}
        self._next_token = 1

    # --- Read access ---

    def get(self, name: str) -> Optional[StreamView]:
        return self._views.get(name)

    def names(self) -> List[str]:
        return sorted(self._views)

    def subscriber_count(self, name: str) -> int:
        return len(self._subscribers.get(name, {}))

    def subscribe(self, name: str, callback: ViewCallback) -> Subscription:
        """Register interest in a stream.

        The current view is delivered to callback before this returns; every
        later replacement is delivered through the dispatch hook.

        Raises:
            ValueError: If name is not a valid stream name.
        """
        parse_stream_name(name)
        with self._lock:
            token = self._next_token
            self._next_token += 1

            first = name not in self._subscribers
            self._subscribers.setdefault(name, {})[token] = callback
            if first:
                self._views[name] = StreamView(name=name)
                if self._on_opened is not None:
                    self._on_opened(name)

            view = self._views[name]
            self._delivered[token] = view
            try:
                callback(view)
            except Exception as exc:
                _log(f"[store:{name}] Subscriber callback failed: {exc!r}")
            return Subscription(self, name, token)

    def _unsubscribe(self, name: str, token: int) -> None:
        with self._lock:
            subscribers = self._subscribers.get(name)
            if subscribers is None or token not in subscribers:
                return
            del subscribers[token]
            self._delivered.pop(token, None)
            if subscribers:
                return
            del self._subscribers[name]
            self._views.pop(name, None)
            if self._on_closed is not None:
                self._on_closed(name)

    # --- Write access (reconciler only) ---

    def replace(self, name: str, view: StreamView) -> bool:
        """Swap in a new view and notify subscribers.

        Returns False when the stream has no slice (nobody subscribed).
        """
        if name not in self._views:
            return False
        self._views[name] = view
        for token in list(self._subscribers.get(name, {})):
            self._dispatch(lambda token=token: self._deliver(name, token))
        return True

    def _deliver(self, name: str, token: int) -> None:
        callback = self._subscribers.get(name, {}).get(token)
        view = self._views.get(name)
        if callback is None or view is None:
            return
        # Several replacements may land before one delivery runs; the latest
        # view is delivered once.
        if self._delivered.get(token) is view:
            return
        self._delivered[token] = view
        try:
            callback(view)
        except Exception as exc:
            _log(f"[store:{name}] Subscriber callback failed: {exc!r}")

    def clear(self) -> None:
        """Drop every slice and subscriber without firing lifecycle hooks."""
        self._views.clear()
        self._subscribers.clear()
        self._delivered.clear()
