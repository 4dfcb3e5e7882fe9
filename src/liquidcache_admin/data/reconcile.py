"""Reconciliation of fetched payloads into published stream views.

The reconciler is the only writer of the view state store. For every fetch
completion it:

- checks the fetch sequence number against the last applied one, dropping
  anything not strictly newer
- parses the payload and merges it with the previously held value
- attaches warnings (partial snapshot, over-capacity nodes, stale data)
- publishes a new immutable StreamView

Failures never clear data: the last good value stays and is marked stale once
the failure streak reaches the configured threshold.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple

from .models import (
    ClusterSnapshot,
    DerivedMetrics,
    FragmentEntry,
    FragmentSet,
    NodeSummary,
    ReconciliationWarning,
    StreamKind,
    StreamView,
    parse_stream_name,
)
from .normalization import (
    parse_cluster_snapshot,
    parse_execution_plans,
    parse_fragment_listing,
    parse_node_summary,
    parse_system_info,
)

DEFAULT_REMOVAL_DEBOUNCE = 2
DEFAULT_STALE_AFTER_FAILURES = 3


def _log(msg: str) -> None:
    print(msg, flush=True)


# =============================================================================
# Pure reconciliation steps
# =============================================================================


def eviction_rate(current: ClusterSnapshot, previous: Optional[ClusterSnapshot]) -> Optional[float]:
    """Evictions per second between two snapshots.

    None without a previous snapshot, when time did not advance, or when the
    counter went backwards (service restart).
    """
    if previous is None:
        return None
    elapsed = (current.timestamp - previous.timestamp).total_seconds()
    delta = current.aggregate.evictions - previous.aggregate.evictions
    if elapsed <= 0 or delta < 0:
        return None
    return delta / elapsed


def oldest_staleness(nodes: Tuple[NodeSummary, ...], now: datetime) -> Optional[float]:
    ages = [age for age in (n.staleness(now) for n in nodes) if age is not None]
    return max(ages) if ages else None


def reconcile_overview(
    payload: Any,
    previous: Optional[ClusterSnapshot],
    now: datetime,
) -> Tuple[ClusterSnapshot, Tuple[ReconciliationWarning, ...], DerivedMetrics, List[str]]:
    """Build the overview snapshot, its warnings and derived metrics.

    Deterministic: the same payload and previous snapshot give equal results.
    """
    snapshot, problems = parse_cluster_snapshot(payload)
    warnings: List[ReconciliationWarning] = []
    if snapshot.partial:
        warnings.append(ReconciliationWarning.PARTIAL_SNAPSHOT)
    if snapshot.over_capacity_nodes:
        warnings.append(ReconciliationWarning.OVER_CAPACITY)
    metrics = DerivedMetrics(
        hit_ratio=snapshot.hit_ratio,
        eviction_rate=eviction_rate(snapshot, previous),
        staleness_seconds=oldest_staleness(snapshot.nodes, now),
    )
    return snapshot, tuple(warnings), metrics, problems


def reconcile_node(
    payload: Any, now: datetime
) -> Tuple[NodeSummary, Tuple[ReconciliationWarning, ...], DerivedMetrics]:
    node = parse_node_summary(payload)
    warnings = (ReconciliationWarning.OVER_CAPACITY,) if node.over_capacity else ()
    metrics = DerivedMetrics(hit_ratio=node.hit_ratio, staleness_seconds=node.staleness(now))
    return node, warnings, metrics


def reconcile_fragments(
    payload: Any,
    previous: Optional[FragmentSet],
    removal_debounce: int = DEFAULT_REMOVAL_DEBOUNCE,
) -> FragmentSet:
    """Diff a fresh listing against the held fragment set.

    - listed ids are inserted or refreshed, clearing any pending removal
    - held ids missing from the listing count one more miss
    - an id missed removal_debounce listings in a row is dropped
    """
    listed: Dict[str, FragmentEntry] = {
        record.fragment_id: FragmentEntry(record) for record in parse_fragment_listing(payload)
    }
    if previous is not None:
        for entry in previous:
            if entry.fragment_id in listed:
                continue
            missed = entry.missed_listings + 1
            if missed < removal_debounce:
                listed[entry.fragment_id] = FragmentEntry(entry.record, missed)
    return FragmentSet(tuple(listed[k] for k in sorted(listed)))


# =============================================================================
# Reconciler
# =============================================================================


class Reconciler:
    """Applies fetch outcomes to the view state store.

    Args:
        store: object with get(name) and replace(name, view)
        now_fn: returns the current UTC datetime
        removal_debounce: consecutive listings a fragment may be missing from
            before it is removed
        stale_after_failures: failure streak at which a view is marked stale
    """

    def __init__(
        self,
        store,
        now_fn: Callable[[], datetime],
        removal_debounce: int = DEFAULT_REMOVAL_DEBOUNCE,
        stale_after_failures: int = DEFAULT_STALE_AFTER_FAILURES,
    ):
        self.store = store
        self.now_fn = now_fn
        self.removal_debounce = removal_debounce
        self.stale_after_failures = stale_after_failures

    def apply_success(self, name: str, seq: int, payload: Any) -> bool:
        """Merge a fetched payload into the stream's view.

        Returns:
            True if a new view was published, False if the result was
            discarded (stream gone, or not newer than what is shown).

        Raises:
            PayloadError: If the payload does not match the contract. The
                held view is left untouched.
        """
        current: Optional[StreamView] = self.store.get(name)
        if current is None:
            _log(f"[reconcile:{name}] Discarding seq {seq}: stream no longer registered")
            return False
        if seq <= current.seq:
            _log(f"[reconcile:{name}] Discarding seq {seq}: already showing seq {current.seq}")
            return False

        now = self.now_fn()
        kind, _ = parse_stream_name(name)
        if kind == StreamKind.OVERVIEW:
            previous = current.data if isinstance(current.data, ClusterSnapshot) else None
            data, warnings, metrics, problems = reconcile_overview(payload, previous, now)
            for problem in problems:
                _log(f"[reconcile:{name}] Partial snapshot: {problem}")
            if data.over_capacity_nodes:
                _log(f"[reconcile:{name}] Over capacity: {', '.join(data.over_capacity_nodes)}")
        elif kind == StreamKind.NODE_DETAIL:
            data, warnings, metrics = reconcile_node(payload, now)
            if data.over_capacity:
                _log(
                    f"[reconcile:{name}] Over capacity: used {data.used_bytes} > "
                    f"capacity {data.capacity_bytes}"
                )
        elif kind == StreamKind.SYSTEM_INFO:
            data, warnings, metrics = parse_system_info(payload), (), None
        elif kind == StreamKind.EXECUTION_PLANS:
            # The service keeps the plan history; each listing replaces the last
            data, problems = parse_execution_plans(payload)
            warnings, metrics = (), None
            for problem in problems:
                _log(f"[reconcile:{name}] {problem}")
        else:
            previous_set = current.data if isinstance(current.data, FragmentSet) else None
            data = reconcile_fragments(payload, previous_set, self.removal_debounce)
            warnings, metrics = (), None
            if data.pending_removal:
                _log(f"[reconcile:{name}] Pending removal: {len(data.pending_removal)} fragments")

        view = StreamView(
            name=name,
            data=data,
            seq=seq,
            metrics=metrics,
            warnings=warnings,
            consecutive_failures=0,
            last_error=None,
            fetched_at=now,
            last_success_at=now,
        )
        return self.store.replace(name, view)

    def apply_failure(self, name: str, seq: int, error: Exception, consecutive_failures: int) -> bool:
        """Record a failed fetch without discarding held data.

        Returns:
            True if a new view was published.
        """
        current: Optional[StreamView] = self.store.get(name)
        if current is None or seq <= current.seq:
            return False

        warnings = tuple(w for w in current.warnings if w != ReconciliationWarning.STALE)
        # Only held data can go stale; without any the view stays UNAVAILABLE
        if consecutive_failures >= self.stale_after_failures and current.data is not None:
            if not current.is_stale:
                _log(
                    f"[reconcile:{name}] Marking stale after {consecutive_failures} "
                    "consecutive failures (last good data kept)"
                )
            warnings = warnings + (ReconciliationWarning.STALE,)

        view = replace(
            current,
            warnings=warnings,
            consecutive_failures=consecutive_failures,
            last_error=str(error),
            fetched_at=self.now_fn(),
        )
        return self.store.replace(name, view)
