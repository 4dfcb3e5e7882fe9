"""Data layer - models, normalization, reconciliation and export."""

from .models import (
    CacheCounters,
    ClusterSnapshot,
    DerivedMetrics,
    ExecutionPlan,
    ExecutionPlanList,
    ExecutionStats,
    FragmentEntry,
    FragmentRecord,
    FragmentSet,
    NodeSummary,
    Notification,
    NotificationLevel,
    PlanNode,
    ReconciliationWarning,
    StreamKind,
    StreamView,
    SystemInfo,
    ViewStatus,
    node_detail_stream,
    parse_stream_name,
)
from .normalization import PayloadError
from .persistence import ExportStore, get_data_dir
from .reconcile import Reconciler

__all__ = [
    "CacheCounters",
    "ClusterSnapshot",
    "DerivedMetrics",
    "ExecutionPlan",
    "ExecutionPlanList",
    "ExecutionStats",
    "ExportStore",
    "FragmentEntry",
    "FragmentRecord",
    "FragmentSet",
    "NodeSummary",
    "Notification",
    "NotificationLevel",
    "PayloadError",
    "PlanNode",
    "Reconciler",
    "ReconciliationWarning",
    "StreamKind",
    "StreamView",
    "SystemInfo",
    "ViewStatus",
    "get_data_dir",
    "node_detail_stream",
    "parse_stream_name",
]
