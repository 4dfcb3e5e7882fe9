"""Display helpers for byte sizes, ratios, ages and stream views."""

from __future__ import annotations

from typing import Optional

from .models import (
    ClusterSnapshot,
    ExecutionPlanList,
    FragmentSet,
    NodeSummary,
    StreamView,
    SystemInfo,
    ViewStatus,
)

KB = 1024
MB = 1024 * KB
GB = 1024 * MB


def format_bytes(num_bytes: int) -> str:
    """Format a byte count, e.g. 512 B, 1.50 KB, 2.00 GB."""
    if num_bytes < KB:
        return f"{num_bytes} B"
    if num_bytes < MB:
        return f"{num_bytes / KB:.2f} KB"
    if num_bytes < GB:
        return f"{num_bytes / MB:.2f} MB"
    return f"{num_bytes / GB:.2f} GB"


def format_ratio(value: Optional[float]) -> str:
    """Format a 0-1 ratio as a percentage; n/a when undefined."""
    if value is None:
        return "n/a"
    return f"{value * 100:.1f}%"


def format_age(seconds: Optional[float]) -> str:
    if seconds is None:
        return "n/a"
    seconds = max(0.0, seconds)
    if seconds < 60:
        return f"{seconds:.0f}s"
    if seconds < 3600:
        return f"{seconds / 60:.1f}m"
    return f"{seconds / 3600:.1f}h"


def format_rate(value: Optional[float]) -> str:
    if value is None:
        return "n/a"
    return f"{value:.2f}/s"


def summarize_view(view: StreamView) -> str:
    """One-line summary of a stream view for console output."""
    status = view.status
    head = f"[{view.name}] {status.value}"
    if view.data is None:
        if status == ViewStatus.UNAVAILABLE:
            return f"{head} failures={view.consecutive_failures} error={view.last_error}"
        return f"{head} waiting for first fetch"

    data = view.data
    metrics = view.metrics
    if isinstance(data, ClusterSnapshot):
        usage = "n/a" if data.usage_percent is None else f"{data.usage_percent:.1f}%"
        line = (
            f"{head} nodes={len(data.nodes)} "
            f"used={format_bytes(data.total_used_bytes)}/{format_bytes(data.total_capacity_bytes)} "
            f"({usage}) hit={format_ratio(data.hit_ratio)} "
            f"evict={format_rate(metrics.eviction_rate if metrics else None)}"
        )
    elif isinstance(data, NodeSummary):
        line = (
            f"{head} used={format_bytes(data.used_bytes)}/{format_bytes(data.capacity_bytes)} "
            f"hit={format_ratio(data.hit_ratio)} evictions={data.evictions} "
            f"seen={format_age(metrics.staleness_seconds if metrics else None)} ago"
        )
    elif isinstance(data, FragmentSet):
        line = (
            f"{head} fragments={len(data)} size={format_bytes(data.total_bytes)} "
            f"pending_removal={len(data.pending_removal)}"
        )
    elif isinstance(data, SystemInfo):
        memory = "n/a" if data.memory_percent is None else f"{data.memory_percent:.1f}%"
        line = (
            f"{head} host={data.host_name} os={data.os} cores={data.cpu_cores} "
            f"memory={format_bytes(data.used_memory_bytes)}/{format_bytes(data.total_memory_bytes)} "
            f"({memory}) server_rss={format_bytes(data.server_resident_memory_bytes)}"
        )
    elif isinstance(data, ExecutionPlanList):
        latest = data.latest
        line = f"{head} plans={len(data)}"
        if latest is not None:
            line += f" latest={latest.display_name}"
            if latest.stats is not None:
                line += f" time={latest.stats.execution_time_ms}ms"
    else:
        line = head

    if view.warnings:
        line += " warnings=" + ",".join(w.value for w in view.warnings)
    if view.consecutive_failures:
        line += f" failures={view.consecutive_failures}"
    return line
