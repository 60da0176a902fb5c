"""
Graceful shutdown for the stream client.

The first SIGTERM or SIGINT asks the client to stop its sessions; a second
one while stopping forces the process to give up waiting. Stopping is
bounded by a timeout, after which sessions that have not finished stopping
are abandoned.

Example:
    >>> coordinator = ShutdownCoordinator(timeout=10.0)
    >>> coordinator.install_signal_handlers()
    >>> reason = await coordinator.wait_for_shutdown()
    >>> result = await coordinator.shutdown([session.stop])
    >>> coordinator.remove_signal_handlers()
"""

import asyncio
import logging
import signal
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

StopFunc = Callable[[], Awaitable[None]]

HANDLED_SIGNALS: tuple[signal.Signals, ...] = (signal.SIGTERM, signal.SIGINT)


class ShutdownPhase(Enum):
    """Where the coordinator is in the shutdown sequence."""

    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"
    FORCED = "forced"
    """Stopping was cut short by a second signal or the timeout."""


class ShutdownReason(Enum):
    """What asked the client to shut down."""

    SIGNAL_SIGTERM = "signal_sigterm"
    SIGNAL_SIGINT = "signal_sigint"
    PROGRAMMATIC = "programmatic"
    SESSION_ENDED = "session_ended"
    TIMEOUT = "timeout"
    DOUBLE_SIGNAL = "double_signal"


_SIGNAL_REASONS = {
    signal.SIGTERM: ShutdownReason.SIGNAL_SIGTERM,
    signal.SIGINT: ShutdownReason.SIGNAL_SIGINT,
}


@dataclass(frozen=True)
class ShutdownResult:
    """
    Outcome of ShutdownCoordinator.shutdown().

    Attributes:
        phase: STOPPED, or FORCED if stopping was cut short
        duration_seconds: Time spent stopping
        sessions_stopped: Stop functions that returned without error
        forced: True if stopping was cut short
        error: First stop error, or "timeout"
        reason: What triggered the shutdown
    """

    phase: ShutdownPhase
    duration_seconds: float
    sessions_stopped: int
    forced: bool = False
    error: str | None = None
    reason: ShutdownReason | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "duration_seconds": self.duration_seconds,
            "sessions_stopped": self.sessions_stopped,
            "forced": self.forced,
            "error": self.error,
            "reason": self.reason.value if self.reason else None,
        }


class ShutdownCoordinator:
    """
    Turns termination signals into an orderly stop of the client's sessions.

    Attributes:
        timeout: Seconds shutdown() waits for the stop functions
    """

    def __init__(self, timeout: float = 10.0) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self.timeout = timeout
        self._phase = ShutdownPhase.RUNNING
        self._reason: ShutdownReason | None = None
        self._requested = asyncio.Event()
        self._signal_loop: asyncio.AbstractEventLoop | None = None

    @property
    def phase(self) -> ShutdownPhase:
        return self._phase

    @property
    def shutdown_reason(self) -> ShutdownReason | None:
        return self._reason

    @property
    def is_shutting_down(self) -> bool:
        return self._requested.is_set()

    @property
    def is_forced(self) -> bool:
        return self._phase is ShutdownPhase.FORCED

    @property
    def has_signal_handlers(self) -> bool:
        return self._signal_loop is not None

    # =========================================================================
    # Signals
    # =========================================================================

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Route SIGTERM and SIGINT on the loop (default: running loop) to handle_signal()."""
        if self._signal_loop is not None:
            return
        loop = loop or asyncio.get_running_loop()
        for sig in HANDLED_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.handle_signal, sig)
            except NotImplementedError:
                # No loop signal handlers on Windows; KeyboardInterrupt still applies
                logger.warning("Cannot install signal handler", extra={"signal": sig.name})
        self._signal_loop = loop

    def remove_signal_handlers(self) -> None:
        loop, self._signal_loop = self._signal_loop, None
        if loop is None or loop.is_closed():
            return
        for sig in HANDLED_SIGNALS:
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                pass

    def handle_signal(self, sig: signal.Signals) -> None:
        """Request shutdown on the first signal; force it on the second."""
        if not self.is_shutting_down:
            self.request_shutdown(_SIGNAL_REASONS.get(sig, ShutdownReason.PROGRAMMATIC))
            return

        logger.warning(
            "Second shutdown signal, forcing shutdown",
            extra={"signal": sig.name, "shutdown_phase": self._phase.value},
        )
        self._phase = ShutdownPhase.FORCED
        self._reason = ShutdownReason.DOUBLE_SIGNAL

    # =========================================================================
    # Shutdown
    # =========================================================================

    def request_shutdown(self, reason: ShutdownReason = ShutdownReason.PROGRAMMATIC) -> bool:
        """
        Ask for a shutdown.

        Returns:
            False if a shutdown had already been requested
        """
        if self.is_shutting_down:
            return False
        self._reason = reason
        self._requested.set()
        logger.info("Shutdown requested", extra={"reason": reason.value})
        return True

    async def wait_for_shutdown(self) -> ShutdownReason | None:
        """Wait until a shutdown is requested and return its reason."""
        await self._requested.wait()
        return self._reason

    async def shutdown(self, stop_funcs: Sequence[StopFunc]) -> ShutdownResult:
        """
        Run the stop functions concurrently, waiting at most `timeout` seconds.

        Stop functions still running at the deadline are cancelled and the
        result is FORCED. After a second signal nothing is waited for.
        """
        started = time.perf_counter()
        self.request_shutdown()

        if self.is_forced:
            return self._finish(started, stopped=0)

        self._phase = ShutdownPhase.STOPPING
        logger.info("Stopping sessions", extra={"count": len(stop_funcs), "timeout": self.timeout})

        tasks = [asyncio.ensure_future(func()) for func in stop_funcs]
        if not tasks:
            self._phase = ShutdownPhase.STOPPED
            return self._finish(started, stopped=0)

        done, pending = await asyncio.wait(tasks, timeout=self.timeout)
        for task in pending:
            task.cancel()

        errors = [
            task.exception()
            for task in done
            if not task.cancelled() and task.exception() is not None
        ]
        for error in errors:
            logger.error("Session stop failed", extra={"error": str(error)})
        stopped = sum(1 for task in done if not task.cancelled()) - len(errors)

        if pending:
            logger.warning(
                "Shutdown timed out",
                extra={"timeout": self.timeout, "still_stopping": len(pending)},
            )
            self._phase = ShutdownPhase.FORCED
            self._reason = ShutdownReason.TIMEOUT
            return self._finish(started, stopped, error="timeout")

        if not self.is_forced:
            self._phase = ShutdownPhase.STOPPED
        return self._finish(started, stopped, error=str(errors[0]) if errors else None)

    def _finish(self, started: float, stopped: int, error: str | None = None) -> ShutdownResult:
        result = ShutdownResult(
            phase=self._phase,
            duration_seconds=time.perf_counter() - started,
            sessions_stopped=stopped,
            forced=self.is_forced,
            error=error,
            reason=self._reason,
        )
        logger.info("Shutdown finished", extra=result.to_dict())
        return result


__all__ = [
    "ShutdownCoordinator",
    "ShutdownPhase",
    "ShutdownReason",
    "ShutdownResult",
    "HANDLED_SIGNALS",
]
