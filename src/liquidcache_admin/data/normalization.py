"""Payload normalization for the cache service API.

Turns decoded JSON bodies into the immutable models of `models.py`.

Key normalizations:
1. Field names → snake_case and camelCase spellings are both accepted
2. Instants → timezone-aware UTC datetimes (ISO-8601 strings or epoch seconds)
3. Counters and sizes → non-negative integers
4. Node order → ascending node id; plan order → newest first
5. JSON-in-JSON → plan listings nest JSON documents as strings; both strings
   and objects are accepted

Anything that cannot be read as the contract describes raises PayloadError.
Contract-valid but inconsistent data (aggregate mismatch, used > capacity) is
not an error here; reconciliation flags it.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from .models import (
    CacheCounters,
    ClusterSnapshot,
    ExecutionPlan,
    ExecutionPlanList,
    ExecutionStats,
    FragmentRecord,
    NodeSummary,
    PlanNode,
    SystemInfo,
)

# Epoch values above this are taken as milliseconds
_EPOCH_MS_THRESHOLD = 100_000_000_000


class PayloadError(ValueError):
    """Raised when a response body does not match the service contract."""

    def __init__(self, what: str, message: str):
        self.what = what
        super().__init__(f"[{what}] {message}")


# =============================================================================
# Field helpers
# =============================================================================


def _pick(raw: Dict[str, Any], *keys: str) -> Any:
    """Return the first present key among alternative spellings."""
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return None


def _require_mapping(raw: Any, what: str) -> Dict[str, Any]:
    if not isinstance(raw, dict):
        raise PayloadError(what, f"expected an object, got {type(raw).__name__}")
    return raw


def parse_count(value: Any, what: str, field: str, default: Optional[int] = None) -> int:
    """Parse a non-negative integer counter or size."""
    if value is None:
        if default is None:
            raise PayloadError(what, f"missing field {field!r}")
        return default
    if isinstance(value, bool):
        raise PayloadError(what, f"{field!r} must be an integer, got a boolean")
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        raise PayloadError(what, f"{field!r} must be an integer, got {value!r}")
    if isinstance(value, float) and value != number:
        raise PayloadError(what, f"{field!r} must be an integer, got {value!r}")
    if number < 0:
        raise PayloadError(what, f"{field!r} must not be negative, got {number}")
    return number


def parse_instant(value: Any, what: str = "instant") -> Optional[datetime]:
    """Parse an ISO-8601 string or UNIX epoch into a UTC datetime.

    Returns None for a missing value. Naive ISO strings are taken as UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise PayloadError(what, f"invalid instant {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
        if seconds > _EPOCH_MS_THRESHOLD:
            seconds /= 1000.0
        try:
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            raise PayloadError(what, f"epoch out of range: {value!r}")
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z") or text.endswith("z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            raise PayloadError(what, f"invalid ISO-8601 instant {value!r}")
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    raise PayloadError(what, f"invalid instant {value!r}")


# =============================================================================
# Normalization functions
# =============================================================================


def parse_counters(raw: Any, what: str = "aggregate") -> CacheCounters:
    data = _require_mapping(raw, what)
    return CacheCounters(
        hits=parse_count(_pick(data, "hits", "hit_count", "hitCount"), what, "hits", 0),
        misses=parse_count(_pick(data, "misses", "miss_count", "missCount"), what, "misses", 0),
        evictions=parse_count(
            _pick(data, "evictions", "eviction_count", "evictionCount"), what, "evictions", 0
        ),
    )


def parse_node_summary(raw: Any) -> NodeSummary:
    """Parse one node object.

    id, capacity and used bytes are required; counters default to zero.
    """
    data = _require_mapping(raw, "node")
    node_id = _pick(data, "id", "node_id", "nodeId")
    if node_id is None or str(node_id) == "":
        raise PayloadError("node", "missing field 'id'")
    what = f"node {node_id}"
    return NodeSummary(
        node_id=str(node_id),
        capacity_bytes=parse_count(
            _pick(data, "capacity_bytes", "capacityBytes", "capacity", "max_cache_bytes"),
            what,
            "capacity_bytes",
        ),
        used_bytes=parse_count(
            _pick(data, "used_bytes", "usedBytes", "used", "memory_usage_bytes"),
            what,
            "used_bytes",
        ),
        hits=parse_count(_pick(data, "hits", "hit_count", "hitCount"), what, "hits", 0),
        misses=parse_count(_pick(data, "misses", "miss_count", "missCount"), what, "misses", 0),
        evictions=parse_count(
            _pick(data, "evictions", "eviction_count", "evictionCount"), what, "evictions", 0
        ),
        last_seen=parse_instant(_pick(data, "last_seen", "lastSeen"), what),
    )


def parse_cluster_snapshot(raw: Any) -> Tuple[ClusterSnapshot, List[str]]:
    """Parse an overview body into a snapshot.

    Returns:
        Tuple of (snapshot, problems). problems lists inconsistencies found
        while parsing (duplicate node ids, aggregate mismatch); the snapshot is
        marked partial when it is non-empty.

    When the body carries no aggregate, the node sums stand in for it.
    """
    data = _require_mapping(raw, "overview")
    timestamp = parse_instant(_pick(data, "timestamp", "captured_at", "capturedAt"), "overview")
    if timestamp is None:
        raise PayloadError("overview", "missing field 'timestamp'")

    raw_nodes = data.get("nodes", [])
    if not isinstance(raw_nodes, list):
        raise PayloadError("overview", "'nodes' must be a list")

    problems: List[str] = []
    by_id: Dict[str, NodeSummary] = {}
    for raw_node in raw_nodes:
        node = parse_node_summary(raw_node)
        if node.node_id in by_id:
            problems.append(f"duplicate node id {node.node_id!r}")
            continue
        by_id[node.node_id] = node
    nodes = tuple(by_id[k] for k in sorted(by_id))

    sums = CacheCounters()
    for node in nodes:
        sums = sums + node.counters

    raw_aggregate = data.get("aggregate")
    aggregate = sums if raw_aggregate is None else parse_counters(raw_aggregate)
    for field in ("hits", "misses", "evictions"):
        reported, summed = getattr(aggregate, field), getattr(sums, field)
        if reported != summed:
            problems.append(f"aggregate {field}={reported} but nodes sum to {summed}")

    snapshot = ClusterSnapshot(
        timestamp=timestamp,
        nodes=nodes,
        aggregate=aggregate,
        partial=bool(problems),
    )
    return snapshot, problems


def parse_fragment_record(raw: Any) -> FragmentRecord:
    data = _require_mapping(raw, "fragment")
    fragment_id = _pick(data, "id", "fragment_id", "fragmentId")
    if fragment_id is None or str(fragment_id) == "":
        raise PayloadError("fragment", "missing field 'id'")
    what = f"fragment {fragment_id}"
    query_id = _pick(data, "query_id", "queryId", "query")
    return FragmentRecord(
        fragment_id=str(fragment_id),
        query_id="" if query_id is None else str(query_id),
        size_bytes=parse_count(_pick(data, "size_bytes", "sizeBytes", "size"), what, "size_bytes", 0),
        created_at=parse_instant(_pick(data, "created_at", "createdAt"), what),
        last_access_at=parse_instant(_pick(data, "last_access_at", "lastAccessAt", "last_access"), what),
    )


def parse_fragment_listing(raw: Any) -> List[FragmentRecord]:
    """Parse a fragment listing.

    Accepts a bare list or an object with a 'fragments' list. A fragment id
    listed twice keeps its first occurrence.
    """
    if isinstance(raw, dict):
        raw = raw.get("fragments")
    if not isinstance(raw, list):
        raise PayloadError("fragments", "expected a list of fragments")
    seen = set()
    records: List[FragmentRecord] = []
    for item in raw:
        record = parse_fragment_record(item)
        if record.fragment_id in seen:
            continue
        seen.add(record.fragment_id)
        records.append(record)
    return records


def _text(data: Dict[str, Any], what: str, *keys: str) -> str:
    value = _pick(data, *keys)
    if value is None:
        raise PayloadError(what, f"missing field {keys[0]!r}")
    return str(value)


def parse_system_info(raw: Any) -> SystemInfo:
    what = "system_info"
    data = _require_mapping(raw, what)
    return SystemInfo(
        name=_text(data, what, "name"),
        host_name=_text(data, what, "host_name", "hostName"),
        kernel=_text(data, what, "kernel"),
        os=_text(data, what, "os"),
        cpu_cores=parse_count(_pick(data, "cpu_cores", "cpuCores"), what, "cpu_cores"),
        total_memory_bytes=parse_count(
            _pick(data, "total_memory_bytes", "totalMemoryBytes"), what, "total_memory_bytes"
        ),
        used_memory_bytes=parse_count(
            _pick(data, "used_memory_bytes", "usedMemoryBytes"), what, "used_memory_bytes"
        ),
        server_resident_memory_bytes=parse_count(
            _pick(data, "server_resident_memory_bytes", "serverResidentMemoryBytes"),
            what,
            "server_resident_memory_bytes",
            0,
        ),
        server_virtual_memory_bytes=parse_count(
            _pick(data, "server_virtual_memory_bytes", "serverVirtualMemoryBytes"),
            what,
            "server_virtual_memory_bytes",
            0,
        ),
    )


# =============================================================================
# Execution plans
# =============================================================================


def _decode_nested(raw: Any, what: str) -> Dict[str, Any]:
    """Accept a nested document either as an object or as a JSON string."""
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except ValueError as e:
            raise PayloadError(what, f"embedded JSON is invalid: {e}")
    return _require_mapping(raw, what)


def parse_plan_node(raw: Any, problems: List[str], what: str = "plan") -> PlanNode:
    """Parse a plan operator and, recursively, its children.

    A child that cannot be parsed is left out and reported in problems; the
    operator itself must parse.
    """
    data = _decode_nested(raw, what)
    name = _text(data, what, "name")

    raw_schema = data.get("schema") or []
    if not isinstance(raw_schema, list):
        raise PayloadError(what, "'schema' must be a list")
    schema = []
    for column in raw_schema:
        column = _require_mapping(column, what)
        schema.append((_text(column, what, "name"), _text(column, what, "data_type", "dataType")))

    raw_metrics = data.get("metrics") or {}
    if not isinstance(raw_metrics, dict):
        raise PayloadError(what, "'metrics' must be an object")
    metrics = tuple(sorted((str(k), str(v)) for k, v in raw_metrics.items()))

    raw_children = data.get("children") or []
    if not isinstance(raw_children, list):
        raise PayloadError(what, "'children' must be a list")
    children = []
    for index, raw_child in enumerate(raw_children):
        child_what = f"{what} > {name}[{index}]"
        try:
            children.append(parse_plan_node(raw_child, problems, child_what))
        except PayloadError as e:
            problems.append(f"skipped child operator: {e}")

    return PlanNode(name=name, schema=tuple(schema), metrics=metrics, children=tuple(children))


def parse_execution_stats(raw: Any, what: str = "stats") -> ExecutionStats:
    data = _decode_nested(raw, what)
    return ExecutionStats(
        display_name=str(_pick(data, "display_name", "displayName") or ""),
        execution_time_ms=parse_count(
            _pick(data, "execution_time_ms", "executionTimeMs"), what, "execution_time_ms"
        ),
        network_traffic_bytes=parse_count(
            _pick(data, "network_traffic_bytes", "networkTrafficBytes"), what, "network_traffic_bytes"
        ),
        flamegraph_svg=_pick(data, "flamegraph_svg", "flamegraphSvg"),
    )


def _plan_items(raw: Any) -> List[Tuple[str, Any]]:
    if isinstance(raw, dict):
        raw = raw.get("plans", raw)
        if isinstance(raw, dict):
            return [(str(k), v) for k, v in raw.items()]
    if not isinstance(raw, list):
        raise PayloadError("execution_plans", "expected a list of (id, plan) pairs")
    items = []
    for item in raw:
        if not isinstance(item, (list, tuple)) or len(item) != 2:
            raise PayloadError("execution_plans", f"expected an (id, plan) pair, got {item!r}")
        items.append((str(item[0]), item[1]))
    return items


def parse_execution_plans(raw: Any) -> Tuple[ExecutionPlanList, List[str]]:
    """Parse the recorded execution plans.

    The body is a list of [plan id, document] pairs (an object keyed by plan
    id is accepted too). Each document carries the plan, its creation time in
    epoch seconds and optional run statistics, the plan and statistics
    possibly as JSON strings.

    Returns:
        Tuple of (plans newest first, problems). A plan that cannot be parsed
        fails the whole listing; unreadable statistics or child operators are
        dropped and reported in problems.
    """
    problems: List[str] = []
    plans: List[ExecutionPlan] = []
    for plan_id, raw_value in _plan_items(raw):
        what = f"plan {plan_id}"
        document = _decode_nested(raw_value, what)
        if document.get("plan") is None:
            raise PayloadError(what, "missing field 'plan'")
        root = parse_plan_node(document["plan"], problems, what)
        created_at = parse_instant(_pick(document, "created_at", "createdAt"), what)
        if created_at is None:
            raise PayloadError(what, "missing field 'created_at'")

        stats = None
        raw_stats = document.get("stats")
        if raw_stats is not None:
            try:
                stats = parse_execution_stats(raw_stats, f"{what} stats")
            except PayloadError as e:
                problems.append(f"dropped statistics: {e}")

        plans.append(ExecutionPlan(plan_id=plan_id, root=root, created_at=created_at, stats=stats))

    plans.sort(key=lambda p: (p.created_at, p.plan_id), reverse=True)
    return ExecutionPlanList(tuple(plans)), problems
