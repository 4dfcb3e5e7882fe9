"""Console - poll scheduling, view state and the operator-facing facade."""

from .app import AdminConsole, ConsoleMountError
from .clock import Clock, ManualClock, TimerHandle, TimerLoop
from .config import Config, ConfigError, ExportConfig, PollConfig, ReconcileConfig, ServiceConfig
from .store import Subscription, ViewStateStore
from .workers import PollScheduler, PollStream, StreamPhase

__all__ = [
    "AdminConsole",
    "Clock",
    "Config",
    "ConfigError",
    "ConsoleMountError",
    "ExportConfig",
    "ManualClock",
    "PollConfig",
    "PollScheduler",
    "PollStream",
    "ReconcileConfig",
    "ServiceConfig",
    "StreamPhase",
    "Subscription",
    "TimerHandle",
    "TimerLoop",
    "ViewStateStore",
]
