"""
Resilient stream sessions.

This package keeps one streaming subscription alive across transient
transport failures:

- BackoffPolicy: exponential backoff with jitter
- classify / classify_exception: retryable vs fatal terminations
- SubscriptionHandle: single-use, cancellable wrapper over one stream
- StreamSession: the open/stream/backoff/reopen state machine
- SessionStatsReporter: periodic health and throughput snapshots

Example:
    >>> from corecast.session import ReconnectPolicy, StreamSession, SubscriptionParams
    >>>
    >>> session = StreamSession(
    ...     transport=transport,
    ...     endpoint="corecast.example.com:443",
    ...     params=SubscriptionParams.create("dex_trades"),
    ...     policy=ReconnectPolicy(max_attempts=5),
    ... )
    >>> final_state = await session.run()
"""

from corecast.session.backoff import BackoffPolicy
from corecast.session.classification import (
    FATAL_CODES,
    RETRYABLE_CODES,
    TRANSIENT_EXCEPTIONS,
    ErrorClass,
    classify,
    classify_exception,
)
from corecast.session.config import ReconnectPolicy, SubscriptionParams
from corecast.session.exceptions import SessionError, SessionStateError
from corecast.session.handle import (
    MessageReceived,
    StreamCall,
    StreamEnded,
    StreamEvent,
    StreamFailed,
    SubscriptionHandle,
    Transport,
)
from corecast.session.manager import MessageHandler, SessionListener, StreamSession
from corecast.session.metrics import MetricSnapshot, SessionMetrics
from corecast.session.reporter import SessionStatsReporter, StatsSnapshot
from corecast.session.state import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    SessionEvent,
    SessionFailure,
    SessionState,
    is_valid_transition,
)

__all__ = [
    # Backoff
    "BackoffPolicy",
    # Classification
    "ErrorClass",
    "classify",
    "classify_exception",
    "RETRYABLE_CODES",
    "FATAL_CODES",
    "TRANSIENT_EXCEPTIONS",
    # Configuration
    "ReconnectPolicy",
    "SubscriptionParams",
    # Exceptions
    "SessionError",
    "SessionStateError",
    # Handle
    "Transport",
    "StreamCall",
    "StreamEvent",
    "MessageReceived",
    "StreamEnded",
    "StreamFailed",
    "SubscriptionHandle",
    # Session
    "StreamSession",
    "MessageHandler",
    "SessionListener",
    "SessionState",
    "SessionEvent",
    "SessionFailure",
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "is_valid_transition",
    # Observability
    "SessionMetrics",
    "MetricSnapshot",
    "SessionStatsReporter",
    "StatsSnapshot",
]
