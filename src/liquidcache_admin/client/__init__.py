"""Transport client - HTTP access to the LiquidCache admin API."""

from .base import (
    Ack,
    AdminCommand,
    BaseTransport,
    CommandError,
    CommandKind,
    CommandRejected,
    CommandTransportError,
    TransportError,
    TransportErrorKind,
    TransportNetworkError,
    TransportProtocolError,
    TransportTimeout,
)
from .http import CacheServiceClient, normalize_base_url

__all__ = [
    "Ack",
    "AdminCommand",
    "BaseTransport",
    "CacheServiceClient",
    "CommandError",
    "CommandKind",
    "CommandRejected",
    "CommandTransportError",
    "TransportError",
    "TransportErrorKind",
    "TransportNetworkError",
    "TransportProtocolError",
    "TransportTimeout",
    "normalize_base_url",
]
