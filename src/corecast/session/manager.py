"""
Resilient stream session manager.

The StreamSession owns the lifecycle of one logical subscription:
open -> stream -> on termination classify the error -> back off -> reopen
with the same parameters, until the stream ends cleanly, a fatal error
occurs, retries run out, or stop() is called.

All state changes happen inside the session's supervisor task or inside
stop(), so a failure reported by the old subscription and a concurrent
stop() can never both start a new subscription.

Example:
    >>> session = StreamSession(
    ...     transport=GrpcTransport(),
    ...     endpoint="corecast.example.com:443",
    ...     credentials="Bearer token",
    ...     params=SubscriptionParams.create("dex_trades", programs=["..."]),
    ...     on_message=handle_message,
    ... )
    >>> session.add_listener(lambda event: print(event.to_dict()))
    >>> await session.start()
    >>> final_state = await session.wait()
"""

import asyncio
import contextlib
import logging
import random
import time
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any

from corecast.observability import (
    ATTR_ATTEMPT,
    ATTR_ENDPOINT,
    ATTR_SESSION_NAME,
    ATTR_STREAM_KIND,
    Tracer,
    create_tracer,
)
from corecast.session.classification import ErrorClass, classify_exception, error_code
from corecast.session.config import ReconnectPolicy, SubscriptionParams
from corecast.session.exceptions import SessionStateError
from corecast.session.handle import (
    MessageReceived,
    StreamEnded,
    StreamFailed,
    SubscriptionHandle,
    Transport,
)
from corecast.session.metrics import SessionMetrics
from corecast.session.state import (
    TERMINAL_STATES,
    VALID_TRANSITIONS,
    SessionEvent,
    SessionFailure,
    SessionState,
    is_valid_transition,
)

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], Awaitable[None]]
"""Async consumer for one decoded message payload."""

SessionListener = Callable[[SessionEvent], None]
"""Observer invoked synchronously on every state transition."""


class StreamSession:
    """
    Keeps one subscription alive across transient transport failures.

    Attributes exposed read-only for observers: state, attempt_count,
    connected_since, uptime_seconds, messages_received, failure.
    """

    def __init__(
        self,
        transport: Transport,
        endpoint: str,
        params: SubscriptionParams,
        credentials: Any = None,
        policy: ReconnectPolicy | None = None,
        on_message: MessageHandler | None = None,
        name: str | None = None,
        rng: random.Random | None = None,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
        enable_metrics: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialize the session in the IDLE state.

        Args:
            transport: Transport used to open subscriptions
            endpoint: Remote address
            params: Request descriptor, reused unchanged for every reconnect
            credentials: Opaque credentials passed to the transport
            policy: Reconnection policy (defaults if None)
            on_message: Async consumer for message payloads
            name: Session name for logs and metrics (defaults to params.kind)
            rng: Random source for backoff jitter
            tracer: Optional custom Tracer instance
            enable_tracing: Whether to create OpenTelemetry spans.
                Ignored if tracer is explicitly provided.
            enable_metrics: Whether to report OpenTelemetry metrics
            clock: Monotonic clock used for uptime
        """
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._transport = transport
        self._endpoint = endpoint
        self._params = params
        self._credentials = credentials
        self._policy = policy or ReconnectPolicy()
        self._backoff = self._policy.backoff(rng)
        self._on_message = on_message
        self._name = name or params.kind
        self._clock = clock
        self._metrics = SessionMetrics(self._name, enable_metrics=enable_metrics)

        self._state = SessionState.IDLE
        self._attempt_count = 0
        self._connected_since: datetime | None = None
        self._connected_at: float | None = None
        self._handle: SubscriptionHandle | None = None
        self._task: asyncio.Task[None] | None = None
        self._lock = asyncio.Lock()
        self._listeners: list[SessionListener] = []
        self._stop_requested = False
        self._pending_delay_ms = 0.0
        self._stable_timer: asyncio.TimerHandle | None = None

        self._failure: SessionFailure | None = None
        self._last_error: BaseException | None = None
        self._messages_received = 0
        self._messages_failed = 0
        self._connections_opened = 0
        self._open_attempts = 0

    # =========================================================================
    # Read-only state
    # =========================================================================

    @property
    def name(self) -> str:
        """Session name."""
        return self._name

    @property
    def state(self) -> SessionState:
        """Current state."""
        return self._state

    @property
    def attempt_count(self) -> int:
        """Reconnect attempts in the current failure run."""
        return self._attempt_count

    @property
    def max_attempts(self) -> int:
        """Reconnect attempts allowed before the session fails."""
        return self._policy.max_attempts

    @property
    def policy(self) -> ReconnectPolicy:
        """Reconnection policy."""
        return self._policy

    @property
    def subscription_params(self) -> SubscriptionParams:
        """Request descriptor used for every (re)open."""
        return self._params

    @property
    def endpoint(self) -> str:
        """Remote address."""
        return self._endpoint

    @property
    def connected_since(self) -> datetime | None:
        """Time of the last successful subscription open."""
        return self._connected_since

    @property
    def uptime_seconds(self) -> float:
        """Seconds since the current subscription opened; 0 unless streaming."""
        if self._state is not SessionState.STREAMING or self._connected_at is None:
            return 0.0
        return max(0.0, self._clock() - self._connected_at)

    @property
    def messages_received(self) -> int:
        """Total messages received over the session's lifetime."""
        return self._messages_received

    @property
    def messages_failed(self) -> int:
        """Messages whose consumer raised an exception."""
        return self._messages_failed

    @property
    def connections_opened(self) -> int:
        """Subscriptions opened successfully."""
        return self._connections_opened

    @property
    def open_attempts(self) -> int:
        """Calls made to the transport to open a subscription."""
        return self._open_attempts

    @property
    def failure(self) -> SessionFailure | None:
        """Why the session failed, once it is in the FAILED state."""
        return self._failure

    @property
    def last_error(self) -> BaseException | None:
        """The most recent transport error."""
        return self._last_error

    @property
    def has_active_subscription(self) -> bool:
        """True while a subscription handle is held and not yet released."""
        return self._handle is not None and self._handle.is_active

    @property
    def is_terminal(self) -> bool:
        """True once the session is FAILED or STOPPED."""
        return self._state in TERMINAL_STATES

    @property
    def is_running(self) -> bool:
        """True while the supervisor task is alive."""
        return self._task is not None and not self._task.done()

    @property
    def metrics(self) -> SessionMetrics:
        """Metrics recorded by this session."""
        return self._metrics

    # =========================================================================
    # Observers
    # =========================================================================

    def add_listener(self, listener: SessionListener) -> None:
        """
        Register an observer for state transitions.

        Listeners run synchronously in the session's task; exceptions they
        raise are logged and do not affect the session.
        """
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> bool:
        """
        Remove a registered observer.

        Returns:
            True if the listener was found and removed
        """
        try:
            self._listeners.remove(listener)
            return True
        except ValueError:
            return False

    # =========================================================================
    # Control
    # =========================================================================

    async def start(self) -> None:
        """
        Start the session.

        Moves IDLE -> CONNECTING and launches the supervisor task.
        A session that went IDLE after a clean end-of-stream may be
        started again.

        Raises:
            SessionStateError: If the session is not IDLE
        """
        async with self._lock:
            if self._state is not SessionState.IDLE:
                raise SessionStateError(
                    f"Cannot start session {self._name} in state {self._state.value}"
                )

            logger.info(
                "Starting stream session",
                extra={
                    "session": self._name,
                    "endpoint": self._endpoint,
                    "params": self._params.to_dict(),
                },
            )
            self._attempt_count = 0
            self._transition(SessionState.CONNECTING, reason="start")
            self._task = asyncio.create_task(self._run(), name=f"corecast-session-{self._name}")

    async def stop(self) -> None:
        """
        Stop the session.

        Safe to call from any state and idempotent. Cancels a pending
        backoff wait or active subscription and moves to STOPPED. A session
        that already FAILED stays FAILED. After stop() returns, no further
        events, messages or reconnect attempts occur.
        """
        async with self._lock:
            if self._state is SessionState.STOPPED:
                return

            self._stop_requested = True
            task = self._task
            if task is not None and not task.done() and task is not asyncio.current_task():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

            uptime = self.uptime_seconds if self._state is SessionState.STREAMING else None
            await self._release_handle()

            if self._state not in TERMINAL_STATES:
                self._transition(SessionState.STOPPED, uptime_seconds=uptime, reason="stop requested")

    async def wait(self) -> SessionState:
        """
        Wait for the supervisor task to finish.

        Returns:
            The state the session settled in (IDLE, FAILED or STOPPED)
        """
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait({task})
        return self._state

    async def run(self) -> SessionState:
        """Start the session and wait for it to finish."""
        await self.start()
        return await self.wait()

    async def __aenter__(self) -> "StreamSession":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: Any,
    ) -> None:
        """Async context manager exit."""
        await self.stop()

    # =========================================================================
    # Supervisor
    # =========================================================================

    async def _run(self) -> None:
        """Drive CONNECTING -> STREAMING -> BACKOFF cycles until a final state."""
        try:
            while not self._stop_requested:
                try:
                    handle = await self._open()
                except Exception as e:
                    self._on_termination(e, uptime=None)
                else:
                    if not await self._stream(handle):
                        return

                if self._state is not SessionState.BACKOFF:
                    return

                await asyncio.sleep(self._pending_delay_ms / 1000.0)
                if self._stop_requested:
                    return
                self._transition(SessionState.CONNECTING, reason="backoff elapsed")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                "Stream session supervisor crashed",
                extra={"session": self._name, "error": str(e)},
                exc_info=True,
            )
            self._last_error = e
            if is_valid_transition(self._state, SessionState.FAILED):
                self._fail("internal_error", ErrorClass.FATAL, e)
        finally:
            await self._release_handle()

    async def _open(self) -> SubscriptionHandle:
        """Open a subscription; the previous handle is always released first."""
        await self._release_handle()
        self._open_attempts += 1

        with self._tracer.span(
            "corecast.session.open",
            {
                ATTR_SESSION_NAME: self._name,
                ATTR_ENDPOINT: self._endpoint,
                ATTR_STREAM_KIND: self._params.kind,
                ATTR_ATTEMPT: self._attempt_count,
            },
        ):
            return await SubscriptionHandle.open(
                self._transport,
                self._endpoint,
                self._credentials,
                self._params,
            )

    async def _stream(self, handle: SubscriptionHandle) -> bool:
        """
        Consume one subscription until it terminates.

        Returns:
            True if the session entered BACKOFF and should reconnect
        """
        self._handle = handle
        self._connections_opened += 1
        self._connected_since = datetime.now(UTC)
        self._connected_at = self._clock()
        self._transition(SessionState.STREAMING, reason="subscription opened")

        termination: StreamEnded | StreamFailed | None = None
        async for event in handle.events():
            if isinstance(event, MessageReceived):
                await self._deliver(event.payload, handle)
                if self._stop_requested:
                    return False
            else:
                termination = event
                break

        uptime = self.uptime_seconds
        await self._release_handle()

        if termination is None or self._stop_requested:
            return False

        if (
            self._attempt_count > 0
            and uptime * 1000.0 >= self._policy.stable_after_ms
        ):
            self._reset_attempts("sustained uptime")

        if isinstance(termination, StreamFailed):
            self._on_termination(termination.error, uptime=uptime)
            return self._state is SessionState.BACKOFF

        self._transition(
            SessionState.IDLE,
            uptime_seconds=uptime,
            reason="stream ended by remote",
        )
        return False

    async def _deliver(self, payload: Any, handle: SubscriptionHandle) -> None:
        """Hand one payload to the consumer in arrival order."""
        self._messages_received += 1
        self._metrics.record_message()

        if handle.messages_received == 1 and self._attempt_count > 0:
            self._reset_attempts("message received")

        if self._on_message is None:
            return

        try:
            await self._on_message(payload)
        except Exception as e:
            self._messages_failed += 1
            logger.error(
                "Message handler failed",
                extra={"session": self._name, "error": str(e)},
                exc_info=True,
            )

    def _on_termination(self, error: BaseException, uptime: float | None) -> None:
        """Decide between BACKOFF and FAILED for an open failure or stream error."""
        self._last_error = error
        error_class = classify_exception(error)

        if error_class is ErrorClass.FATAL:
            self._fail("fatal_error", error_class, error, uptime=uptime)
            return

        if self._attempt_count >= self._policy.max_attempts:
            self._fail("retries_exhausted", error_class, error, uptime=uptime)
            return

        self._attempt_count += 1
        self._pending_delay_ms = self._backoff.delay_for(self._attempt_count - 1)
        self._transition(
            SessionState.BACKOFF,
            delay_ms=self._pending_delay_ms,
            uptime_seconds=uptime,
            reason=str(error) or type(error).__name__,
        )

    def _fail(
        self,
        reason: str,
        error_class: ErrorClass,
        error: BaseException,
        uptime: float | None = None,
    ) -> None:
        self._failure = SessionFailure(
            reason=reason,
            error_class=error_class,
            code=error_code(error),
            message=str(error),
            attempts=self._attempt_count,
        )
        self._transition(SessionState.FAILED, uptime_seconds=uptime, reason=reason)

    def _on_stable(self) -> None:
        self._stable_timer = None
        if self._state is SessionState.STREAMING and self._attempt_count > 0:
            self._reset_attempts("sustained uptime")

    def _reset_attempts(self, why: str) -> None:
        logger.info(
            "Connection established, resetting attempt counter",
            extra={"session": self._name, "previous_attempts": self._attempt_count, "why": why},
        )
        self._attempt_count = 0

    async def _release_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is not None:
            await handle.cancel()

    # =========================================================================
    # Transitions
    # =========================================================================

    def _transition(
        self,
        new_state: SessionState,
        delay_ms: float | None = None,
        uptime_seconds: float | None = None,
        reason: str | None = None,
    ) -> None:
        """
        Move to a new state and notify observers.

        Raises:
            SessionStateError: If the transition is not valid
        """
        old_state = self._state
        if not is_valid_transition(old_state, new_state):
            valid_targets = VALID_TRANSITIONS.get(old_state, set())
            raise SessionStateError(
                f"Cannot transition from {old_state.value} to {new_state.value}. "
                f"Valid transitions: {sorted(s.value for s in valid_targets)}"
            )

        self._state = new_state
        if old_state is SessionState.STREAMING:
            self._connected_at = None
            if self._stable_timer is not None:
                self._stable_timer.cancel()
                self._stable_timer = None
        if new_state is SessionState.STREAMING:
            self._stable_timer = asyncio.get_running_loop().call_later(
                self._policy.stable_after_ms / 1000.0, self._on_stable
            )

        event = SessionEvent(
            session=self._name,
            state=new_state,
            previous_state=old_state,
            attempt=self._attempt_count,
            delay_ms=delay_ms,
            uptime_seconds=uptime_seconds,
            reason=reason,
        )
        self._metrics.record_transition(new_state.value, delay_ms=delay_ms)
        self._log_transition(event)

        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception as e:
                logger.error(
                    "Session listener error",
                    extra={"session": self._name, "error": str(e)},
                    exc_info=True,
                )

    def _log_transition(self, event: SessionEvent) -> None:
        extra = event.to_dict()
        if event.state is SessionState.FAILED:
            logger.error(
                "Stream session failed",
                extra={**extra, "failure": self._failure.to_dict() if self._failure else None},
            )
        elif event.state is SessionState.BACKOFF:
            logger.warning("Stream interrupted, backing off before reconnect", extra=extra)
        else:
            logger.info("Stream session state changed", extra=extra)

    def __repr__(self) -> str:
        return (
            f"StreamSession(name={self._name!r}, state={self._state.value}, "
            f"attempt_count={self._attempt_count}, max_attempts={self._policy.max_attempts})"
        )


__all__ = ["StreamSession", "MessageHandler", "SessionListener"]
