"""
Periodic health and throughput reporting for a stream session.

The reporter is a pure observer: it reads the session's exposed counters
on a fixed interval and hands a StatsSnapshot to a sink. It never changes
session state.

Example:
    >>> reporter = SessionStatsReporter(session, interval=30.0)
    >>> await reporter.start()
    >>> ...
    >>> await reporter.stop()
"""

import asyncio
import contextlib
import logging
import sys
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if sys.platform != "win32":
    import resource

if TYPE_CHECKING:
    from corecast.session.manager import StreamSession

logger = logging.getLogger(__name__)

StatsSink = Callable[["StatsSnapshot"], None]
"""Receives every snapshot the reporter takes."""

ResourceProbe = Callable[[], dict[str, Any]]
"""Returns host-supplied resource indicators (memory, buffer sizes, ...)."""


@dataclass(frozen=True)
class StatsSnapshot:
    """
    Point-in-time view of a session, suitable for logging and serialization.

    Attributes:
        session: Session name
        state: Current state name
        attempt_count: Reconnect attempts in the current failure run
        uptime_seconds: Seconds connected; 0 unless streaming
        messages_total: Messages received over the session's lifetime
        messages_since_last: Messages received since the previous snapshot
        message_rate: messages_since_last divided by the elapsed seconds
        resources: Host-supplied resource indicators
        timestamp: When the snapshot was taken
    """

    session: str
    state: str
    attempt_count: int
    uptime_seconds: float
    messages_total: int
    messages_since_last: int
    message_rate: float
    resources: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "session": self.session,
            "state": self.state,
            "attempt_count": self.attempt_count,
            "uptime_seconds": self.uptime_seconds,
            "messages_total": self.messages_total,
            "messages_since_last": self.messages_since_last,
            "message_rate": self.message_rate,
            "resources": dict(self.resources),
            "timestamp": self.timestamp.isoformat(),
        }

    def format(self) -> str:
        """Render a multi-line, human-readable report."""
        lines = [
            f"=== Session Stats ({self.session}) ===",
            f"State: {self.state}",
            f"Attempts: {self.attempt_count}",
            f"Uptime: {self.uptime_seconds:.1f}s",
            f"Messages processed: {self.messages_since_last} (total {self.messages_total})",
            f"Rate: {self.message_rate:.2f} msg/sec",
        ]
        lines.extend(f"{key}: {value}" for key, value in sorted(self.resources.items()))
        return "\n".join(lines)


def default_resource_probe() -> dict[str, Any]:
    """Report peak resident memory and the asyncio tasks alive in the running loop."""
    resources: dict[str, Any] = {}
    if sys.platform != "win32":
        max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # ru_maxrss is bytes on macOS, kilobytes elsewhere
        resources["max_rss_kb"] = max_rss // 1024 if sys.platform == "darwin" else max_rss
    with contextlib.suppress(RuntimeError):
        resources["asyncio_tasks"] = len(asyncio.all_tasks())
    return resources


def log_sink(snapshot: StatsSnapshot) -> None:
    """Write a snapshot to the module logger."""
    logger.info(snapshot.format(), extra={"stats": snapshot.to_dict()})


class SessionStatsReporter:
    """
    Takes a StatsSnapshot of a session every `interval` seconds.

    Attributes:
        session: The session being observed
        interval: Seconds between snapshots
    """

    def __init__(
        self,
        session: "StreamSession",
        interval: float = 30.0,
        sink: StatsSink | None = None,
        resource_probe: ResourceProbe | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be positive, got {interval}.")

        self.session = session
        self.interval = interval
        self._sink = sink or log_sink
        self._resource_probe = resource_probe or default_resource_probe
        self._clock = clock
        self._last_count = session.messages_received
        self._last_time = clock()
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        """True while the periodic task is alive."""
        return self._task is not None and not self._task.done()

    def snapshot(self) -> StatsSnapshot:
        """
        Take a snapshot and advance the rate window.

        Returns:
            StatsSnapshot with counters read from the session
        """
        now = self._clock()
        total = self.session.messages_received
        since_last = max(0, total - self._last_count)
        elapsed = now - self._last_time
        rate = since_last / elapsed if elapsed > 0 else 0.0
        self._last_count = total
        self._last_time = now

        try:
            resources = self._resource_probe()
        except Exception as e:
            logger.error(
                "Resource probe failed",
                extra={"session": self.session.name, "error": str(e)},
                exc_info=True,
            )
            resources = {}

        return StatsSnapshot(
            session=self.session.name,
            state=self.session.state.value,
            attempt_count=self.session.attempt_count,
            uptime_seconds=self.session.uptime_seconds,
            messages_total=total,
            messages_since_last=since_last,
            message_rate=rate,
            resources=resources,
        )

    def report(self) -> StatsSnapshot:
        """Take a snapshot and send it to the sink."""
        snapshot = self.snapshot()
        try:
            self._sink(snapshot)
        except Exception as e:
            logger.error(
                "Stats sink failed",
                extra={"session": self.session.name, "error": str(e)},
                exc_info=True,
            )
        return snapshot

    async def start(self) -> None:
        """Start periodic reporting. Does nothing if already running."""
        if self.is_running:
            return
        self._task = asyncio.create_task(
            self._report_loop(), name=f"corecast-stats-{self.session.name}"
        )

    async def stop(self) -> None:
        """Stop periodic reporting."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    async def _report_loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.report()


__all__ = [
    "StatsSnapshot",
    "StatsSink",
    "ResourceProbe",
    "SessionStatsReporter",
    "default_resource_probe",
    "log_sink",
]
