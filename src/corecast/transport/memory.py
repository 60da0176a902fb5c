"""In-memory transport implementation.

This module provides a scripted transport that plays back predefined
stream outcomes without any network access.

Suitable for development, testing, and demos.
For a real feed, use GrpcTransport instead.
"""

import asyncio
import logging
from collections import deque
from collections.abc import AsyncIterator, Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from corecast.session.config import SubscriptionParams

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScriptedStream:
    """
    Outcome of one opened subscription.

    The stream yields `messages` in order, then raises `error` if set,
    otherwise stays open until closed when `hold` is set, otherwise ends
    cleanly.

    Attributes:
        messages: Payloads to deliver
        error: Exception raised after the messages
        hold: Keep the stream open after the messages
        message_delay: Seconds to wait before each message
        close_error: Exception raised by close(), to exercise cleanup paths
    """

    messages: Sequence[Any] = ()
    error: BaseException | None = None
    hold: bool = False
    message_delay: float = 0.0
    close_error: BaseException | None = None


ScriptedOutcome = ScriptedStream | BaseException
"""A stream to play back, or an exception raised by open_subscription()."""


@dataclass(frozen=True)
class OpenRecord:
    """Arguments of one open_subscription() call."""

    endpoint: str
    credentials: Any
    request: SubscriptionParams


class InMemoryStreamCall:
    """A StreamCall playing back one ScriptedStream."""

    def __init__(self, script: ScriptedStream, transport: "InMemoryTransport") -> None:
        self.script = script
        self.closed = False
        self._transport = transport
        self._closed_event = asyncio.Event()

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Any]:
        for payload in self.script.messages:
            if self.script.message_delay:
                await asyncio.sleep(self.script.message_delay)
            if self.closed:
                return
            yield payload

        if self.script.error is not None:
            raise self.script.error

        if self.script.hold:
            await self._closed_event.wait()

    async def close(self) -> None:
        """Close the call; idempotent."""
        if self.closed:
            return
        self.closed = True
        self._closed_event.set()
        self._transport._release(self)
        if self.script.close_error is not None:
            raise self.script.close_error


class InMemoryTransport:
    """
    Scripted transport for tests and demos.

    Each open_subscription() call consumes the next scripted outcome. When
    the script runs out, `default` is used; without a default, further
    streams stay open until closed.

    Example:
        >>> transport = InMemoryTransport([
        ...     TransportError("UNAVAILABLE", "connection refused"),
        ...     ScriptedStream(messages=["a", "b"], hold=True),
        ... ])
        >>> session = StreamSession(transport, "memory", params)
    """

    def __init__(
        self,
        outcomes: Iterable[ScriptedOutcome] = (),
        default: ScriptedOutcome | None = None,
    ) -> None:
        self._outcomes: deque[ScriptedOutcome] = deque(outcomes)
        self._default = default if default is not None else ScriptedStream(hold=True)
        self._active: set[InMemoryStreamCall] = set()
        self.opens: list[OpenRecord] = []
        self.calls: list[InMemoryStreamCall] = []
        self.max_concurrent_calls = 0

    def push(self, outcome: ScriptedOutcome) -> None:
        """Append an outcome to the script."""
        self._outcomes.append(outcome)

    @property
    def open_count(self) -> int:
        """Number of open_subscription() calls so far."""
        return len(self.opens)

    @property
    def active_calls(self) -> int:
        """Calls opened and not yet closed."""
        return len(self._active)

    async def open_subscription(
        self,
        endpoint: str,
        credentials: Any,
        request: SubscriptionParams,
    ) -> InMemoryStreamCall:
        """Open the next scripted stream, or raise the next scripted error."""
        self.opens.append(OpenRecord(endpoint, credentials, request))
        outcome = self._outcomes.popleft() if self._outcomes else self._default

        if isinstance(outcome, BaseException):
            logger.debug("Scripted open failure", extra={"error": str(outcome)})
            raise outcome

        call = InMemoryStreamCall(outcome, self)
        self.calls.append(call)
        self._active.add(call)
        self.max_concurrent_calls = max(self.max_concurrent_calls, len(self._active))
        return call

    def _release(self, call: InMemoryStreamCall) -> None:
        self._active.discard(call)


__all__ = [
    "InMemoryTransport",
    "InMemoryStreamCall",
    "ScriptedStream",
    "ScriptedOutcome",
    "OpenRecord",
]
