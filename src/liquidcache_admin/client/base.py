"""Transport interface and error taxonomy for the cache service client."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional
from urllib.parse import quote


class TransportErrorKind(str, Enum):
    """Failure class of a transport call."""

    TIMEOUT = "TIMEOUT"  # Caller-supplied timeout exceeded
    NETWORK = "NETWORK"  # Connection-level failure
    PROTOCOL = "PROTOCOL"  # Non-2xx status or malformed body


class CommandKind(str, Enum):
    """Administrative commands accepted by the service."""

    EVICT = "evict"
    REFRESH = "refresh"
    START_TRACE = "start_trace"  # Begin collecting a server trace
    STOP_TRACE = "stop_trace"  # Stop tracing and write the trace under a path
    CACHE_STATS = "cache_stats"  # Dump cache statistics under a path


# Answered with {"accepted": bool, "message": str}
ACKNOWLEDGED_COMMANDS = (CommandKind.EVICT, CommandKind.REFRESH)
# Take an output directory on the service host
PATH_COMMANDS = (CommandKind.STOP_TRACE, CommandKind.CACHE_STATS)
DEFAULT_DUMP_PATH = "/tmp"


@dataclass(frozen=True)
class AdminCommand:
    """An operator-issued command.

    For evict and refresh, `target` is passed through to the service untouched
    (a node id, fragment id or query id); None addresses the whole cluster.
    For stop_trace and cache_stats it is the output directory on the service
    host, /tmp when not given. start_trace takes no target.

    Trace and stats commands are plain GETs answered with {"message": str};
    a non-2xx status is their only way to refuse.
    """

    kind: CommandKind
    target: Optional[str] = None

    @property
    def acknowledged(self) -> bool:
        return self.kind in ACKNOWLEDGED_COMMANDS

    @property
    def method(self) -> str:
        return "POST" if self.acknowledged else "GET"

    @property
    def endpoint(self) -> str:
        if self.acknowledged:
            return f"/commands/{self.kind.value}"
        return f"/{self.kind.value}"

    def to_body(self) -> Optional[Dict[str, Any]]:
        if not self.acknowledged:
            return None
        body: Dict[str, Any] = {}
        if self.target is not None:
            body["target"] = self.target
        return body

    def to_params(self) -> Optional[Dict[str, Any]]:
        if self.kind in PATH_COMMANDS:
            return {"path": self.target or DEFAULT_DUMP_PATH}
        return None


@dataclass(frozen=True)
class Ack:
    """Service acknowledgement of a command."""

    accepted: bool
    message: str = ""


class TransportError(Exception):
    """Exception raised when a call to the cache service fails."""

    kind: TransportErrorKind = TransportErrorKind.NETWORK

    def __init__(self, endpoint: str, message: str, cause: Optional[Exception] = None):
        self.endpoint = endpoint
        self.cause = cause
        super().__init__(f"[{self.kind.value.lower()}] {endpoint}: {message}")


class TransportTimeout(TransportError):
    kind = TransportErrorKind.TIMEOUT


class TransportNetworkError(TransportError):
    kind = TransportErrorKind.NETWORK


class TransportProtocolError(TransportError):
    """Non-2xx response or a body that is not valid JSON."""

    kind = TransportErrorKind.PROTOCOL

    def __init__(
        self,
        endpoint: str,
        message: str,
        cause: Optional[Exception] = None,
        status_code: Optional[int] = None,
    ):
        self.status_code = status_code
        super().__init__(endpoint, message, cause)


class CommandError(Exception):
    """Exception raised when an administrative command does not go through."""

    def __init__(self, command: AdminCommand, message: str, cause: Optional[Exception] = None):
        self.command = command
        self.cause = cause
        super().__init__(f"[{command.kind.value}] {message}")


class CommandRejected(CommandError):
    """The service answered but refused the command."""


class CommandTransportError(CommandError):
    """The command never got an answer from the service."""


class BaseTransport(ABC):
    """Abstract transport to the cache service.

    Implementations never retry; a failed call raises a TransportError subclass
    and the caller decides what to do next.
    """

    @abstractmethod
    def fetch(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """GET an endpoint and return the decoded JSON body.

        Raises:
            TransportError: On timeout, connection failure or protocol error.
        """
        pass

    @abstractmethod
    def submit_command(self, command: AdminCommand, timeout: Optional[float] = None) -> Ack:
        """Send a command and return the service acknowledgement.

        Evict and refresh are POSTed to /commands/<kind>; trace and stats
        commands are GETs whose {"message"} reply counts as acceptance.

        Raises:
            TransportError: On timeout, connection failure or protocol error.
        """
        pass

    def fetch_overview(self, timeout: Optional[float] = None) -> Any:
        return self.fetch("/overview", timeout=timeout)

    def fetch_node(self, node_id: str, timeout: Optional[float] = None) -> Any:
        return self.fetch(f"/nodes/{quote(node_id, safe='')}", timeout=timeout)

    def fetch_fragments(self, query: Optional[str] = None, timeout: Optional[float] = None) -> Any:
        params = {"query": query} if query else None
        return self.fetch("/fragments", params=params, timeout=timeout)

    def fetch_system_info(self, timeout: Optional[float] = None) -> Any:
        return self.fetch("/system_info", timeout=timeout)

    def fetch_execution_plans(self, timeout: Optional[float] = None) -> Any:
        return self.fetch("/execution_plans", timeout=timeout)

    def close(self) -> None:
        """Release any held resources."""
        pass
