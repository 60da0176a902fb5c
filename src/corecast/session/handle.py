"""
Subscription handle over one transport-level stream.

This module provides:
- Transport / StreamCall: The capability a session needs from the network layer
- MessageReceived / StreamEnded / StreamFailed: Typed stream events
- SubscriptionHandle: Cancellable, single-use wrapper around one StreamCall

A handle yields any number of MessageReceived events followed by exactly
one terminal event (StreamEnded or StreamFailed). After cancel() returns,
no further events are yielded.
"""

import itertools
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol, runtime_checkable

from corecast.session.config import SubscriptionParams
from corecast.session.exceptions import SessionStateError

logger = logging.getLogger(__name__)

_handle_ids = itertools.count(1)


@runtime_checkable
class StreamCall(Protocol):
    """
    One open server-streaming call.

    Iterating yields decoded payloads in the order the transport received
    them. Iteration ends normally on a clean end-of-stream and raises on a
    transport failure.
    """

    def __aiter__(self) -> AsyncIterator[Any]: ...

    async def close(self) -> None:
        """Cancel the call and release its transport resources."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Capability that opens subscriptions against a remote endpoint."""

    async def open_subscription(
        self,
        endpoint: str,
        credentials: Any,
        request: SubscriptionParams,
    ) -> StreamCall:
        """
        Open a subscription.

        Raises:
            ConnectionError: If the subscription cannot be opened
                (TransportError carries a status code)
        """
        ...


@dataclass(frozen=True)
class MessageReceived:
    """A payload delivered by the stream."""

    payload: Any
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class StreamEnded:
    """The remote end closed the stream without an error."""


@dataclass(frozen=True)
class StreamFailed:
    """The stream terminated with an error."""

    error: BaseException


StreamEvent = MessageReceived | StreamEnded | StreamFailed


class SubscriptionHandle:
    """
    Cancellable handle over one active streaming subscription.

    Handles are created with open() and consumed once with events().
    A session must cancel its handle before opening a replacement.

    Example:
        >>> handle = await SubscriptionHandle.open(transport, "host:443", creds, params)
        >>> async for event in handle.events():
        ...     if isinstance(event, MessageReceived):
        ...         await consume(event.payload)
        >>> await handle.cancel()
    """

    def __init__(self, call: StreamCall, endpoint: str, params: SubscriptionParams) -> None:
        self.handle_id = next(_handle_ids)
        self.endpoint = endpoint
        self.params = params
        self.messages_received = 0
        self._call = call
        self._consumed = False
        self._terminated = False
        self._cancelled = False

    @classmethod
    async def open(
        cls,
        transport: Transport,
        endpoint: str,
        credentials: Any,
        params: SubscriptionParams,
    ) -> "SubscriptionHandle":
        """
        Open a subscription through the transport.

        Args:
            transport: Transport used to open the stream
            endpoint: Remote address
            credentials: Opaque credentials passed to the transport
            params: Request descriptor

        Returns:
            A new handle wrapping the open stream

        Raises:
            ConnectionError: If the transport cannot open the subscription
        """
        call = await transport.open_subscription(endpoint, credentials, params)
        handle = cls(call, endpoint, params)
        logger.debug(
            "Subscription opened",
            extra={"handle_id": handle.handle_id, "endpoint": endpoint, "kind": params.kind},
        )
        return handle

    @property
    def is_terminated(self) -> bool:
        """True once a terminal event was delivered."""
        return self._terminated

    @property
    def is_cancelled(self) -> bool:
        """True once cancel() was called."""
        return self._cancelled

    @property
    def is_active(self) -> bool:
        """True until the handle is cancelled and its resources released."""
        return not self._cancelled

    async def events(self) -> AsyncIterator[StreamEvent]:
        """
        Iterate over stream events.

        The sequence is lazy, unbounded and not restartable: calling
        events() a second time raises SessionStateError.

        Yields:
            MessageReceived for each payload, then one StreamEnded or
            StreamFailed. Nothing is yielded once the handle is cancelled.
        """
        if self._consumed:
            raise SessionStateError(
                f"Subscription handle {self.handle_id} has already been consumed"
            )
        self._consumed = True

        try:
            async for payload in self._call:
                if self._cancelled:
                    return
                self.messages_received += 1
                yield MessageReceived(payload)
        except Exception as e:
            if self._cancelled:
                return
            self._terminated = True
            yield StreamFailed(e)
            return

        if not self._cancelled:
            self._terminated = True
            yield StreamEnded()

    async def cancel(self) -> None:
        """
        Cancel the subscription and release transport resources.

        Idempotent and safe to call after the stream has terminated.
        A failure to release resources is logged and swallowed.
        """
        if self._cancelled:
            return
        self._cancelled = True

        try:
            await self._call.close()
        except Exception as e:
            logger.error(
                "Failed to release subscription",
                extra={"handle_id": self.handle_id, "error": str(e)},
                exc_info=True,
            )
        else:
            logger.debug("Subscription released", extra={"handle_id": self.handle_id})

    def __repr__(self) -> str:
        return (
            f"SubscriptionHandle(id={self.handle_id}, endpoint={self.endpoint!r}, "
            f"kind={self.params.kind!r}, terminated={self._terminated}, "
            f"cancelled={self._cancelled})"
        )


__all__ = [
    "Transport",
    "StreamCall",
    "MessageReceived",
    "StreamEnded",
    "StreamFailed",
    "StreamEvent",
    "SubscriptionHandle",
]
