"""
Session states, transition rules and lifecycle events.

State Machine:
    IDLE -> CONNECTING | STOPPED
    CONNECTING -> STREAMING | BACKOFF | FAILED | STOPPED
    STREAMING -> BACKOFF | FAILED | IDLE | STOPPED
    BACKOFF -> CONNECTING | STOPPED
    FAILED -> (terminal)
    STOPPED -> (terminal)
"""

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from corecast.session.classification import ErrorClass


class SessionState(Enum):
    """States a stream session can be in."""

    IDLE = "idle"
    """Not started, or the remote ended the stream cleanly."""

    CONNECTING = "connecting"
    """Opening a subscription."""

    STREAMING = "streaming"
    """A subscription is open and delivering messages."""

    BACKOFF = "backoff"
    """Waiting before the next reconnect attempt."""

    FAILED = "failed"
    """Gave up after a fatal error or exhausted retries."""

    STOPPED = "stopped"
    """Shut down on request."""


VALID_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.IDLE: {
        SessionState.CONNECTING,
        SessionState.STOPPED,
    },
    SessionState.CONNECTING: {
        SessionState.STREAMING,
        SessionState.BACKOFF,
        SessionState.FAILED,
        SessionState.STOPPED,
    },
    SessionState.STREAMING: {
        SessionState.BACKOFF,
        SessionState.FAILED,
        SessionState.IDLE,  # Clean end-of-stream
        SessionState.STOPPED,
    },
    SessionState.BACKOFF: {
        SessionState.CONNECTING,
        SessionState.STOPPED,
    },
    SessionState.FAILED: set(),  # Terminal state
    SessionState.STOPPED: set(),  # Terminal state
}

TERMINAL_STATES: frozenset[SessionState] = frozenset({SessionState.FAILED, SessionState.STOPPED})


def is_valid_transition(from_state: SessionState, to_state: SessionState) -> bool:
    """Check if a state transition is allowed."""
    return to_state in VALID_TRANSITIONS.get(from_state, set())


@dataclass(frozen=True)
class SessionEvent:
    """
    Structured record of one state transition.

    Attributes:
        session: Session name
        state: State entered
        previous_state: State left
        attempt: attempt_count after the transition
        delay_ms: Backoff delay, set when entering BACKOFF
        uptime_seconds: Connection uptime, set when leaving STREAMING
        reason: Short description of what caused the transition
        timestamp: When the transition happened
    """

    session: str
    state: SessionState
    previous_state: SessionState
    attempt: int
    delay_ms: float | None = None
    uptime_seconds: float | None = None
    reason: str | None = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging and serialization."""
        return {
            "session": self.session,
            "state": self.state.value,
            "previous_state": self.previous_state.value,
            "attempt": self.attempt,
            "delay_ms": self.delay_ms,
            "uptime_seconds": self.uptime_seconds,
            "reason": self.reason,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True)
class SessionFailure:
    """
    Why a session ended in the FAILED state.

    Attributes:
        reason: "fatal_error" or "retries_exhausted"
        error_class: Classification of the last error
        code: Status code of the last error, if any
        message: Text of the last error
        attempts: attempt_count when the session failed
    """

    reason: str
    error_class: ErrorClass
    code: str | None
    message: str
    attempts: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "reason": self.reason,
            "error_class": self.error_class.value,
            "code": self.code,
            "message": self.message,
            "attempts": self.attempts,
        }


__all__ = [
    "SessionState",
    "VALID_TRANSITIONS",
    "TERMINAL_STATES",
    "is_valid_transition",
    "SessionEvent",
    "SessionFailure",
]
