"""
corecast - Resilient streaming client for CoreCast gRPC feeds.

This library provides:
- StreamSession: keeps one subscription alive across transient failures
- Exponential backoff with jitter and a fail-closed error classification
- gRPC and in-memory transports
- YAML settings, config hot reloading and graceful shutdown
- Periodic health and throughput reporting
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("corecast-client")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from corecast.exceptions import ConfigurationError, CorecastError, TransportError
from corecast.reload import ConfigWatcher, SessionSupervisor
from corecast.session import (
    BackoffPolicy,
    ErrorClass,
    MessageReceived,
    ReconnectPolicy,
    SessionEvent,
    SessionFailure,
    SessionState,
    SessionStateError,
    SessionStatsReporter,
    StatsSnapshot,
    StreamEnded,
    StreamFailed,
    StreamSession,
    SubscriptionHandle,
    SubscriptionParams,
    Transport,
    classify,
    classify_exception,
)
from corecast.settings import ClientSettings, StreamKind, load_settings
from corecast.shutdown import ShutdownCoordinator, ShutdownReason, ShutdownResult
from corecast.transport import GrpcTransport, InMemoryTransport, ScriptedStream

__all__ = [
    "__version__",
    # Exceptions
    "CorecastError",
    "ConfigurationError",
    "TransportError",
    "SessionStateError",
    # Session
    "StreamSession",
    "SessionState",
    "SessionEvent",
    "SessionFailure",
    "ReconnectPolicy",
    "SubscriptionParams",
    "BackoffPolicy",
    "ErrorClass",
    "classify",
    "classify_exception",
    "SubscriptionHandle",
    "Transport",
    "MessageReceived",
    "StreamEnded",
    "StreamFailed",
    "SessionStatsReporter",
    "StatsSnapshot",
    # Settings
    "ClientSettings",
    "StreamKind",
    "load_settings",
    "ConfigWatcher",
    "SessionSupervisor",
    # Shutdown
    "ShutdownCoordinator",
    "ShutdownReason",
    "ShutdownResult",
    # Transports
    "GrpcTransport",
    "InMemoryTransport",
    "ScriptedStream",
]
