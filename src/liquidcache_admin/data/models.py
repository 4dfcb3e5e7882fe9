"""Data models for LiquidCache cluster observation.

Every model here is immutable: the reconciliation engine builds new values and
the view state store swaps references, so a consumer holding a value never sees
it change underneath it.

1. UNITS
   - Sizes: bytes (integers)
   - Counters: hits, misses, evictions (integers, monotonic on the service)
   - Instants: timezone-aware UTC datetimes
   - Durations and rates: seconds, events per second (floats)

2. UNDEFINED METRICS
   - A ratio with a zero denominator is None, never 0.0. A cold node with no
     traffic must not read as "0% hit rate".

3. STREAM NAMES
   - overview, fragments, system-info, execution-plans, node-detail:<node id>
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple


# =============================================================================
# Enumerations
# =============================================================================


class StreamKind(str, Enum):
    """Kind of poll stream."""

    OVERVIEW = "overview"
    NODE_DETAIL = "node-detail"
    FRAGMENTS = "fragments"
    SYSTEM_INFO = "system-info"
    EXECUTION_PLANS = "execution-plans"


class ReconciliationWarning(str, Enum):
    """Non-fatal conditions attached to a published view."""

    PARTIAL_SNAPSHOT = "PARTIAL_SNAPSHOT"  # Aggregate disagrees with node sums
    OVER_CAPACITY = "OVER_CAPACITY"  # A node reports used > capacity
    STALE = "STALE"  # Failure streak reached the stale threshold


class ViewStatus(str, Enum):
    """Presentation status of a stream view."""

    LOADING = "LOADING"  # Nothing retrieved yet, no failure either
    OK = "OK"
    PARTIAL = "PARTIAL"  # Shown, with a "data inconsistent" indicator
    STALE = "STALE"  # Old but was once good
    UNAVAILABLE = "UNAVAILABLE"  # Never retrieved, fetches failing


class NotificationLevel(str, Enum):
    SUCCESS = "success"
    ERROR = "error"
    INFO = "info"


# Streams that need no target
_SINGLETON_STREAMS = frozenset(
    k.value for k in StreamKind if k is not StreamKind.NODE_DETAIL
)


def parse_stream_name(name: str) -> Tuple[StreamKind, Optional[str]]:
    """Split a stream name into its kind and target.

    Raises:
        ValueError: If the name is not a known stream.
    """
    if name in _SINGLETON_STREAMS:
        return StreamKind(name), None
    prefix = f"{StreamKind.NODE_DETAIL.value}:"
    if name.startswith(prefix) and len(name) > len(prefix):
        return StreamKind.NODE_DETAIL, name[len(prefix):]
    raise ValueError(f"Unknown stream name: {name!r}")


def node_detail_stream(node_id: str) -> str:
    return f"{StreamKind.NODE_DETAIL.value}:{node_id}"


def ratio(numerator: float, denominator: float) -> Optional[float]:
    """numerator / denominator, or None when the denominator is zero."""
    if not denominator:
        return None
    return numerator / denominator


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat().replace("+00:00", "Z") if value else None


# =============================================================================
# Cache counters and nodes
# =============================================================================


@dataclass(frozen=True)
class CacheCounters:
    """Hit, miss and eviction counters."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0

    def __add__(self, other: "CacheCounters") -> "CacheCounters":
        return CacheCounters(
            hits=self.hits + other.hits,
            misses=self.misses + other.misses,
            evictions=self.evictions + other.evictions,
        )

    @property
    def lookups(self) -> int:
        return self.hits + self.misses

    @property
    def hit_ratio(self) -> Optional[float]:
        """hits / (hits + misses); None for a node that saw no lookups."""
        return ratio(self.hits, self.lookups)

    def to_dict(self) -> Dict[str, Any]:
        return {"hits": self.hits, "misses": self.misses, "evictions": self.evictions}


@dataclass(frozen=True)
class NodeSummary:
    """One cache node as reported by the service.

    A node reporting more used bytes than capacity is kept and flagged
    over_capacity; the numbers are shown as reported.
    """

    node_id: str
    capacity_bytes: int  # Unit: bytes
    used_bytes: int  # Unit: bytes
    hits: int = 0
    misses: int = 0
    evictions: int = 0
    last_seen: Optional[datetime] = None

    @property
    def counters(self) -> CacheCounters:
        return CacheCounters(self.hits, self.misses, self.evictions)

    @property
    def over_capacity(self) -> bool:
        return self.used_bytes > self.capacity_bytes

    @property
    def hit_ratio(self) -> Optional[float]:
        return self.counters.hit_ratio

    @property
    def usage_percent(self) -> Optional[float]:
        used = ratio(self.used_bytes, self.capacity_bytes)
        return None if used is None else used * 100

    def staleness(self, now: datetime) -> Optional[float]:
        """Seconds since the service last heard from this node."""
        if self.last_seen is None:
            return None
        return (now - self.last_seen).total_seconds()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.node_id,
            "capacity_bytes": self.capacity_bytes,
            "used_bytes": self.used_bytes,
            "hits": self.hits,
            "misses": self.misses,
            "evictions": self.evictions,
            "last_seen": _iso(self.last_seen),
            "hit_ratio": self.hit_ratio,
            "over_capacity": self.over_capacity,
        }


@dataclass(frozen=True)
class ClusterSnapshot:
    """Point-in-time view of the whole cache cluster.

    nodes are ordered by node_id ascending. partial is set when aggregate does
    not equal the sum of the node counters.
    """

    timestamp: datetime
    nodes: Tuple[NodeSummary, ...]
    aggregate: CacheCounters
    partial: bool = False

    def node(self, node_id: str) -> Optional[NodeSummary]:
        return next((n for n in self.nodes if n.node_id == node_id), None)

    def node_sums(self) -> CacheCounters:
        total = CacheCounters()
        for node in self.nodes:
            total = total + node.counters
        return total

    @property
    def total_capacity_bytes(self) -> int:
        return sum(n.capacity_bytes for n in self.nodes)

    @property
    def total_used_bytes(self) -> int:
        return sum(n.used_bytes for n in self.nodes)

    @property
    def usage_percent(self) -> Optional[float]:
        used = ratio(self.total_used_bytes, self.total_capacity_bytes)
        return None if used is None else used * 100

    @property
    def hit_ratio(self) -> Optional[float]:
        return self.aggregate.hit_ratio

    @property
    def over_capacity_nodes(self) -> Tuple[str, ...]:
        return tuple(n.node_id for n in self.nodes if n.over_capacity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": _iso(self.timestamp),
            "partial": self.partial,
            "aggregate": self.aggregate.to_dict(),
            "nodes": [n.to_dict() for n in self.nodes],
        }


# =============================================================================
# Query fragments
# =============================================================================


@dataclass(frozen=True)
class FragmentRecord:
    """A cached query fragment."""

    fragment_id: str
    query_id: str
    size_bytes: int  # Unit: bytes
    created_at: Optional[datetime] = None
    last_access_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.fragment_id,
            "query_id": self.query_id,
            "size_bytes": self.size_bytes,
            "created_at": _iso(self.created_at),
            "last_access_at": _iso(self.last_access_at),
        }


@dataclass(frozen=True)
class FragmentEntry:
    """A fragment held locally, with how many listings in a row missed it."""

    record: FragmentRecord
    missed_listings: int = 0

    @property
    def fragment_id(self) -> str:
        return self.record.fragment_id

    @property
    def pending_removal(self) -> bool:
        return self.missed_listings > 0


@dataclass(frozen=True)
class FragmentSet:
    """Locally held fragments, ordered by fragment id."""

    entries: Tuple[FragmentEntry, ...] = ()

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> Iterator[FragmentEntry]:
        return iter(self.entries)

    def __contains__(self, fragment_id: object) -> bool:
        return any(e.fragment_id == fragment_id for e in self.entries)

    def get(self, fragment_id: str) -> Optional[FragmentEntry]:
        return next((e for e in self.entries if e.fragment_id == fragment_id), None)

    @property
    def ids(self) -> Tuple[str, ...]:
        return tuple(e.fragment_id for e in self.entries)

    @property
    def pending_removal(self) -> Tuple[str, ...]:
        return tuple(e.fragment_id for e in self.entries if e.pending_removal)

    @property
    def total_bytes(self) -> int:
        return sum(e.record.size_bytes for e in self.entries)

    def by_query(self) -> Dict[str, List[FragmentRecord]]:
        grouped: Dict[str, List[FragmentRecord]] = {}
        for entry in self.entries:
            grouped.setdefault(entry.record.query_id, []).append(entry.record)
        return grouped

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fragments": [
                dict(e.record.to_dict(), pending_removal=e.pending_removal) for e in self.entries
            ],
            "total_bytes": self.total_bytes,
        }


# =============================================================================
# Service host and execution plans
# =============================================================================


@dataclass(frozen=True)
class SystemInfo:
    """Host the cache service runs on, and the service process footprint."""

    name: str
    host_name: str
    kernel: str
    os: str
    cpu_cores: int
    total_memory_bytes: int  # Unit: bytes
    used_memory_bytes: int  # Unit: bytes
    server_resident_memory_bytes: int = 0  # Unit: bytes
    server_virtual_memory_bytes: int = 0  # Unit: bytes

    @property
    def memory_percent(self) -> Optional[float]:
        used = ratio(self.used_memory_bytes, self.total_memory_bytes)
        return None if used is None else used * 100

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "host_name": self.host_name,
            "kernel": self.kernel,
            "os": self.os,
            "cpu_cores": self.cpu_cores,
            "total_memory_bytes": self.total_memory_bytes,
            "used_memory_bytes": self.used_memory_bytes,
            "server_resident_memory_bytes": self.server_resident_memory_bytes,
            "server_virtual_memory_bytes": self.server_virtual_memory_bytes,
        }


@dataclass(frozen=True)
class PlanNode:
    """One operator of a physical execution plan."""

    name: str
    schema: Tuple[Tuple[str, str], ...] = ()  # (column name, data type)
    metrics: Tuple[Tuple[str, str], ...] = ()  # Sorted by metric name
    children: Tuple["PlanNode", ...] = ()

    def walk(self) -> Iterator["PlanNode"]:
        """Depth-first, parents before children."""
        yield self
        for child in self.children:
            yield from child.walk()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "schema": [{"name": n, "data_type": t} for n, t in self.schema],
            "metrics": dict(self.metrics),
            "children": [c.to_dict() for c in self.children],
        }


@dataclass(frozen=True)
class ExecutionStats:
    display_name: str
    execution_time_ms: int
    network_traffic_bytes: int  # Unit: bytes
    flamegraph_svg: Optional[str] = None


@dataclass(frozen=True)
class ExecutionPlan:
    """A query plan the service recorded, with its run statistics if any."""

    plan_id: str
    root: PlanNode
    created_at: datetime
    stats: Optional[ExecutionStats] = None

    @property
    def display_name(self) -> str:
        """Label for pickers: the query name, else a shortened plan id.

        The creation time (HH:MM:SS, UTC) is appended either way.
        """
        clock = self.created_at.strftime("%H:%M:%S")
        if self.stats is not None and self.stats.display_name:
            return f"{self.stats.display_name} ({clock})"
        short_id = f"{self.plan_id[:8]}..." if len(self.plan_id) > 8 else self.plan_id
        return f"{short_id} ({clock})"

    def to_dict(self) -> Dict[str, Any]:
        stats = None
        if self.stats is not None:
            stats = {
                "display_name": self.stats.display_name,
                "execution_time_ms": self.stats.execution_time_ms,
                "network_traffic_bytes": self.stats.network_traffic_bytes,
                "has_flamegraph": self.stats.flamegraph_svg is not None,
            }
        return {
            "id": self.plan_id,
            "created_at": _iso(self.created_at),
            "display_name": self.display_name,
            "plan": self.root.to_dict(),
            "stats": stats,
        }


@dataclass(frozen=True)
class ExecutionPlanList:
    """Recorded plans, newest first."""

    plans: Tuple[ExecutionPlan, ...] = ()

    def __len__(self) -> int:
        return len(self.plans)

    def __iter__(self) -> Iterator[ExecutionPlan]:
        return iter(self.plans)

    def get(self, plan_id: str) -> Optional[ExecutionPlan]:
        return next((p for p in self.plans if p.plan_id == plan_id), None)

    @property
    def latest(self) -> Optional[ExecutionPlan]:
        return self.plans[0] if self.plans else None

    def to_dict(self) -> Dict[str, Any]:
        return {"plans": [p.to_dict() for p in self.plans]}


# =============================================================================
# Published views
# =============================================================================


@dataclass(frozen=True)
class DerivedMetrics:
    """Presentation-ready metrics computed at reconciliation time.

    - hit_ratio: None when no lookups were recorded
    - eviction_rate: evictions per second since the previous snapshot, None on
      the first snapshot or when counters went backwards
    - staleness_seconds: age of the oldest last-seen instant at fetch time
    """

    hit_ratio: Optional[float] = None
    eviction_rate: Optional[float] = None
    staleness_seconds: Optional[float] = None


@dataclass(frozen=True)
class StreamView:
    """The value the store publishes for one stream.

    data holds a ClusterSnapshot, NodeSummary, FragmentSet, SystemInfo or
    ExecutionPlanList depending on the stream kind, or None until the first
    successful fetch. seq is the sequence number of the fetch that produced
    data.
    """

    name: str
    data: Any = None
    seq: int = 0
    metrics: Optional[DerivedMetrics] = None
    warnings: Tuple[ReconciliationWarning, ...] = ()
    consecutive_failures: int = 0
    last_error: Optional[str] = None
    fetched_at: Optional[datetime] = None
    last_success_at: Optional[datetime] = None

    @property
    def is_stale(self) -> bool:
        return ReconciliationWarning.STALE in self.warnings

    @property
    def is_partial(self) -> bool:
        return ReconciliationWarning.PARTIAL_SNAPSHOT in self.warnings

    @property
    def status(self) -> ViewStatus:
        if self.data is None:
            return ViewStatus.UNAVAILABLE if self.consecutive_failures else ViewStatus.LOADING
        if self.is_stale:
            return ViewStatus.STALE
        if self.is_partial:
            return ViewStatus.PARTIAL
        return ViewStatus.OK


# =============================================================================
# Operator notifications
# =============================================================================


@dataclass(frozen=True)
class Notification:
    """One-shot message for the view that initiated an action.

    duration_ms is how long a view should display it; None means until
    dismissed.
    """

    message: str
    level: NotificationLevel = NotificationLevel.INFO
    duration_ms: Optional[int] = 4000
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    @classmethod
    def success(cls, message: str) -> "Notification":
        return cls(message, NotificationLevel.SUCCESS, 4000)

    @classmethod
    def error(cls, message: str) -> "Notification":
        return cls(message, NotificationLevel.ERROR, 6000)

    @classmethod
    def info(cls, message: str) -> "Notification":
        return cls(message, NotificationLevel.INFO, 4000)

    @property
    def is_error(self) -> bool:
        return self.level == NotificationLevel.ERROR
