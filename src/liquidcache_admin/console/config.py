"""Configuration management for the LiquidCache admin console.

Supports YAML-based configuration; every option has a default and can be
overridden from the command line.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from ..client.http import DEFAULT_BASE_URL, DEFAULT_TIMEOUT, normalize_base_url
from ..data.models import StreamKind


class ConfigError(Exception):
    """Exception raised for invalid configuration."""

    def __init__(self, problems: List[str]):
        self.problems = problems
        super().__init__("[config] " + "; ".join(problems))


@dataclass
class ServiceConfig:
    """Where the cache service lives and how to talk to it."""

    base_url: str = DEFAULT_BASE_URL
    verify: bool = True
    ca_bundle: Optional[str] = None


@dataclass
class PollConfig:
    """Poll cadence and failure handling."""

    overview_interval: float = 5.0  # seconds
    node_detail_interval: float = 10.0
    fragments_interval: float = 15.0
    system_info_interval: float = 30.0
    execution_plans_interval: float = 15.0
    backoff_ceiling: int = 8  # multiplier cap on the base interval
    request_timeout: float = DEFAULT_TIMEOUT
    stale_after_failures: int = 3
    fragment_query: Optional[str] = None

    def interval_for(self, kind: StreamKind) -> float:
        if kind == StreamKind.OVERVIEW:
            return self.overview_interval
        if kind == StreamKind.NODE_DETAIL:
            return self.node_detail_interval
        if kind == StreamKind.SYSTEM_INFO:
            return self.system_info_interval
        if kind == StreamKind.EXECUTION_PLANS:
            return self.execution_plans_interval
        return self.fragments_interval


@dataclass
class ReconcileConfig:
    """Reconciliation settings."""

    removal_debounce: int = 2  # listings a fragment may be missing before removal


@dataclass
class ExportConfig:
    """Snapshot export settings."""

    directory: Optional[str] = None  # None: ~/.liquidcache_admin/exports


@dataclass
class Config:
    """Main configuration container."""

    service: ServiceConfig = field(default_factory=ServiceConfig)
    poll: PollConfig = field(default_factory=PollConfig)
    reconcile: ReconcileConfig = field(default_factory=ReconcileConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Config":
        """Create config from dictionary."""
        service_data = data.get("service", {}) or {}
        service = ServiceConfig(
            base_url=normalize_base_url(service_data.get("base_url", DEFAULT_BASE_URL)),
            verify=service_data.get("verify", True),
            ca_bundle=service_data.get("ca_bundle"),
        )

        poll_data = data.get("poll", {}) or {}
        intervals = poll_data.get("intervals", {}) or {}
        poll = PollConfig(
            overview_interval=intervals.get("overview", 5.0),
            node_detail_interval=intervals.get("node_detail", 10.0),
            fragments_interval=intervals.get("fragments", 15.0),
            system_info_interval=intervals.get("system_info", 30.0),
            execution_plans_interval=intervals.get("execution_plans", 15.0),
            backoff_ceiling=poll_data.get("backoff_ceiling", 8),
            request_timeout=poll_data.get("request_timeout", DEFAULT_TIMEOUT),
            stale_after_failures=poll_data.get("stale_after_failures", 3),
            fragment_query=poll_data.get("fragment_query"),
        )

        reconcile_data = data.get("reconcile", {}) or {}
        reconcile = ReconcileConfig(removal_debounce=reconcile_data.get("removal_debounce", 2))

        export_data = data.get("export", {}) or {}
        export = ExportConfig(directory=export_data.get("directory"))

        return cls(service=service, poll=poll, reconcile=reconcile, export=export)

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load config from YAML file."""
        if not path.exists():
            return cls()
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ConfigError([f"{path}: top level must be a mapping"])
        return cls.from_dict(data)

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "Config":
        """Load config from path or defaults.

        Checks in order:
        1. Provided path
        2. LIQUIDCACHE_ADMIN_CONFIG env var
        3. ./configs/config.yaml
        4. ./config.yaml
        5. ~/.liquidcache_admin/config.yaml
        6. Default config
        """
        paths_to_try = []

        if config_path:
            paths_to_try.append(Path(config_path))

        if env_path := os.environ.get("LIQUIDCACHE_ADMIN_CONFIG"):
            paths_to_try.append(Path(env_path))

        paths_to_try.extend([
            Path("./configs/config.yaml"),
            Path("./config.yaml"),
            Path.home() / ".liquidcache_admin" / "config.yaml",
        ])

        for path in paths_to_try:
            if path.exists():
                return cls.from_yaml(path)

        return cls()

    def validate(self) -> None:
        """Check every option.

        Raises:
            ConfigError: Listing every problem found.
        """
        problems = []
        poll = self.poll
        for name in (
            "overview_interval",
            "node_detail_interval",
            "fragments_interval",
            "system_info_interval",
            "execution_plans_interval",
            "request_timeout",
        ):
            value = getattr(poll, name)
            if not isinstance(value, (int, float)) or isinstance(value, bool) or value <= 0:
                problems.append(f"poll.{name} must be a positive number, got {value!r}")
        for name, value in (
            ("poll.backoff_ceiling", poll.backoff_ceiling),
            ("poll.stale_after_failures", poll.stale_after_failures),
            ("reconcile.removal_debounce", self.reconcile.removal_debounce),
        ):
            if not isinstance(value, int) or isinstance(value, bool) or value < 1:
                problems.append(f"{name} must be an integer >= 1, got {value!r}")
        if not self.service.base_url.startswith(("http://", "https://")):
            problems.append(f"service.base_url must be http(s), got {self.service.base_url!r}")
        if self.service.ca_bundle and not Path(self.service.ca_bundle).exists():
            problems.append(f"service.ca_bundle not found: {self.service.ca_bundle}")
        if problems:
            raise ConfigError(problems)

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        return {
            "service": {
                "base_url": self.service.base_url,
                "verify": self.service.verify,
                "ca_bundle": self.service.ca_bundle,
            },
            "poll": {
                "intervals": {
                    "overview": self.poll.overview_interval,
                    "node_detail": self.poll.node_detail_interval,
                    "fragments": self.poll.fragments_interval,
                    "system_info": self.poll.system_info_interval,
                    "execution_plans": self.poll.execution_plans_interval,
                },
                "backoff_ceiling": self.poll.backoff_ceiling,
                "request_timeout": self.poll.request_timeout,
                "stale_after_failures": self.poll.stale_after_failures,
                "fragment_query": self.poll.fragment_query,
            },
            "reconcile": {"removal_debounce": self.reconcile.removal_debounce},
            "export": {"directory": self.export.directory},
        }
