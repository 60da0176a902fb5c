"""
OpenTelemetry metrics for stream sessions.

Example:
    >>> from corecast.session.metrics import SessionMetrics
    >>>
    >>> metrics = SessionMetrics("dex_trades")
    >>> metrics.record_message()
    >>> metrics.record_transition("backoff", delay_ms=1250.0)
    >>> metrics.get_snapshot().messages_received
    1

Metrics Exposed:
    - corecast.session.messages (Counter): Messages received
    - corecast.session.reconnect_attempts (Counter): Entries into BACKOFF
    - corecast.session.transitions (Counter): State transitions, by state
    - corecast.session.backoff_delay (Histogram): Backoff delays in milliseconds
    - corecast.session.state (Gauge): Current session state (numeric)

All metrics include the 'session' attribute for filtering by session name.
Instruments are non-recording unless the host process installs an
OpenTelemetry SDK meter provider.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from opentelemetry import metrics
from opentelemetry.metrics import CallbackOptions, NoOpMeter, Observation


class StateValue(IntEnum):
    """Numeric values for session states as gauge values."""

    UNKNOWN = 0
    IDLE = 1
    CONNECTING = 2
    STREAMING = 3
    BACKOFF = 4
    FAILED = 5
    STOPPED = 6


STATE_MAPPING: dict[str, int] = {
    "idle": StateValue.IDLE,
    "connecting": StateValue.CONNECTING,
    "streaming": StateValue.STREAMING,
    "backoff": StateValue.BACKOFF,
    "failed": StateValue.FAILED,
    "stopped": StateValue.STOPPED,
}


@dataclass
class MetricSnapshot:
    """
    Snapshot of values recorded by a SessionMetrics instance.

    Useful for tests and debugging without an OpenTelemetry exporter.
    """

    messages_received: int = 0
    reconnect_attempts: int = 0
    transitions: int = 0
    total_backoff_ms: float = 0.0
    current_state: int = StateValue.UNKNOWN
    current_state_name: str = "unknown"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "messages_received": self.messages_received,
            "reconnect_attempts": self.reconnect_attempts,
            "transitions": self.transitions,
            "total_backoff_ms": self.total_backoff_ms,
            "current_state": self.current_state,
            "current_state_name": self.current_state_name,
        }


@dataclass
class SessionMetrics:
    """
    Container for session metric instruments.

    Attributes:
        session_name: Name of the session for metric labels
        enable_metrics: Whether instruments report to OpenTelemetry
    """

    session_name: str
    enable_metrics: bool = True

    _messages_counter: Any = field(default=None, init=False, repr=False)
    _reconnect_counter: Any = field(default=None, init=False, repr=False)
    _transitions_counter: Any = field(default=None, init=False, repr=False)
    _backoff_histogram: Any = field(default=None, init=False, repr=False)
    _snapshot: MetricSnapshot = field(default_factory=MetricSnapshot, init=False, repr=False)

    def __post_init__(self) -> None:
        """Initialize metric instruments."""
        if self.enable_metrics:
            meter = metrics.get_meter("corecast.session", version="1.0.0")
        else:
            meter = NoOpMeter("corecast.session")

        self._messages_counter = meter.create_counter(
            name="corecast.session.messages",
            unit="messages",
            description="Total number of messages received by the session",
        )
        self._reconnect_counter = meter.create_counter(
            name="corecast.session.reconnect_attempts",
            unit="1",
            description="Total number of reconnect attempts",
        )
        self._transitions_counter = meter.create_counter(
            name="corecast.session.transitions",
            unit="1",
            description="Total number of session state transitions",
        )
        self._backoff_histogram = meter.create_histogram(
            name="corecast.session.backoff_delay",
            unit="ms",
            description="Backoff delay before reconnecting, in milliseconds",
        )
        meter.create_observable_gauge(
            name="corecast.session.state",
            callbacks=[self._observe_state],
            unit="1",
            description="Current session state (numeric)",
        )

    @property
    def _attrs(self) -> dict[str, str]:
        return {"session": self.session_name}

    def _observe_state(self, options: CallbackOptions) -> Iterable[Observation]:
        """Callback for the observable state gauge."""
        yield Observation(
            value=self._snapshot.current_state,
            attributes={**self._attrs, "state_name": self._snapshot.current_state_name},
        )

    def record_message(self) -> None:
        """Record one received message."""
        self._messages_counter.add(1, self._attrs)
        self._snapshot.messages_received += 1

    def record_transition(self, state: str, delay_ms: float | None = None) -> None:
        """
        Record a state transition.

        Args:
            state: Name of the state entered (e.g. "backoff")
            delay_ms: Backoff delay, when entering the backoff state
        """
        name = state.lower()
        self._transitions_counter.add(1, {**self._attrs, "state": name})
        self._snapshot.transitions += 1
        self._snapshot.current_state_name = name
        self._snapshot.current_state = STATE_MAPPING.get(name, StateValue.UNKNOWN)

        if name == "backoff":
            self._reconnect_counter.add(1, self._attrs)
            self._snapshot.reconnect_attempts += 1
            if delay_ms is not None:
                self._backoff_histogram.record(delay_ms, self._attrs)
                self._snapshot.total_backoff_ms += delay_ms

    def get_snapshot(self) -> MetricSnapshot:
        """Get a copy of the values recorded so far."""
        return MetricSnapshot(**self._snapshot.to_dict())


__all__ = [
    "STATE_MAPPING",
    "StateValue",
    "MetricSnapshot",
    "SessionMetrics",
]
