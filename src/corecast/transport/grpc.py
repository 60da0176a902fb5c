"""
gRPC transport for CoreCast server-streaming subscriptions.

Each subscription gets its own grpc.aio channel, so cancelling a handle
releases every network resource it held. Messages are passed through the
configured response deserializer; by default the raw bytes are delivered
and decoding is left to the consumer.

Example:
    >>> transport = GrpcTransport(insecure=False)
    >>> call = await transport.open_subscription(
    ...     "corecast.example.com:443",
    ...     "Bearer token",
    ...     SubscriptionParams.create("dex_trades", programs=["..."]),
    ... )
    >>> async for payload in call:
    ...     ...
    >>> await call.close()
"""

import json
import logging
from collections.abc import AsyncIterator, Callable, Mapping, Sequence
from typing import Any

import grpc
import grpc.aio

from corecast.exceptions import ConfigurationError, TransportError
from corecast.session.config import SubscriptionParams

logger = logging.getLogger(__name__)

SERVICE_NAME = "solana_corecast.CoreCast"

# Stream kind -> RPC method on the CoreCast service
STREAM_METHODS: dict[str, str] = {
    "dex_trades": "DexTrades",
    "dex_orders": "DexOrders",
    "dex_pools": "DexPools",
    "transactions": "Transactions",
    "transfers": "Transfers",
    "balances": "Balances",
}

MAX_MESSAGE_LENGTH = 4 * 1024 * 1024

DEFAULT_CHANNEL_OPTIONS: tuple[tuple[str, int], ...] = (
    ("grpc.keepalive_time_ms", 30000),
    ("grpc.keepalive_timeout_ms", 5000),
    ("grpc.keepalive_permit_without_calls", 1),
    ("grpc.http2.max_pings_without_data", 0),
    ("grpc.http2.min_time_between_pings_ms", 10000),
    ("grpc.http2.min_ping_interval_without_data_ms", 300000),
    ("grpc.max_receive_message_length", MAX_MESSAGE_LENGTH),
    ("grpc.max_send_message_length", MAX_MESSAGE_LENGTH),
    ("grpc.enable_retries", 1),
    ("grpc.max_connection_idle_ms", 30000),
    ("grpc.max_connection_age_ms", 300000),
    ("grpc.max_connection_age_grace_ms", 5000),
)

RequestSerializer = Callable[[SubscriptionParams], bytes]
ResponseDeserializer = Callable[[bytes], Any]


def json_request_serializer(params: SubscriptionParams) -> bytes:
    """Encode the request payload built from the filters as UTF-8 JSON."""
    return json.dumps(params.to_request(), separators=(",", ":")).encode("utf-8")


def raw_response_deserializer(data: bytes) -> bytes:
    """Deliver response bytes unchanged."""
    return data


def method_path(kind: str) -> str:
    """
    Get the fully qualified RPC method for a stream kind.

    Raises:
        ConfigurationError: If the kind has no RPC method
    """
    try:
        method = STREAM_METHODS[kind]
    except KeyError:
        raise ConfigurationError(
            f"Unknown stream kind {kind!r}. Expected one of: {sorted(STREAM_METHODS)}"
        ) from None
    return f"/{SERVICE_NAME}/{method}"


def translate_rpc_error(error: grpc.aio.AioRpcError) -> TransportError:
    """Convert a grpc.aio error into a TransportError carrying its status."""
    code = error.code()
    return TransportError(code.name if code is not None else None, error.details() or "")


class GrpcStreamCall:
    """
    StreamCall over one grpc.aio server-streaming call.

    Owns its channel; close() cancels the call and closes the channel.
    """

    def __init__(self, channel: grpc.aio.Channel, call: Any, method: str) -> None:
        self.method = method
        self._channel = channel
        self._call = call
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> AsyncIterator[Any]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Any]:
        try:
            async for response in self._call:
                yield response
        except grpc.aio.AioRpcError as e:
            raise translate_rpc_error(e) from e

    async def close(self) -> None:
        """Cancel the call and close the channel; idempotent."""
        if self._closed:
            return
        self._closed = True
        self._call.cancel()
        await self._channel.close()


class GrpcTransport:
    """
    Transport opening CoreCast subscriptions over grpc.aio.

    Attributes:
        insecure: Use a plaintext channel instead of TLS
        channel_options: gRPC channel arguments (keepalive, message sizes, ...)
        wait_for_connection: Wait for the server to accept the call before
            open_subscription() returns, so that connection failures surface
            as open failures rather than as an immediate stream failure
    """

    def __init__(
        self,
        insecure: bool = False,
        channel_options: Sequence[tuple[str, Any]] = DEFAULT_CHANNEL_OPTIONS,
        request_serializer: RequestSerializer = json_request_serializer,
        response_deserializer: ResponseDeserializer = raw_response_deserializer,
        wait_for_connection: bool = True,
        root_certificates: bytes | None = None,
        extra_metadata: Mapping[str, str] | None = None,
    ) -> None:
        self.insecure = insecure
        self.channel_options = list(channel_options)
        self.wait_for_connection = wait_for_connection
        self._request_serializer = request_serializer
        self._response_deserializer = response_deserializer
        self._root_certificates = root_certificates
        self._extra_metadata = dict(extra_metadata or {})

    def create_channel(self, endpoint: str) -> grpc.aio.Channel:
        """Create a channel to the endpoint with the configured security."""
        if self.insecure:
            return grpc.aio.insecure_channel(endpoint, options=self.channel_options)
        credentials = grpc.ssl_channel_credentials(root_certificates=self._root_certificates)
        return grpc.aio.secure_channel(endpoint, credentials, options=self.channel_options)

    def metadata(self, credentials: Any) -> tuple[tuple[str, str], ...]:
        """Build call metadata; credentials go in the ``authorization`` header."""
        items = list(self._extra_metadata.items())
        if credentials:
            items.append(("authorization", str(credentials)))
        return tuple(items)

    async def open_subscription(
        self,
        endpoint: str,
        credentials: Any,
        request: SubscriptionParams,
    ) -> GrpcStreamCall:
        """
        Open a server-streaming call for the request's stream kind.

        Raises:
            ConfigurationError: If the stream kind is unknown
            TransportError: If the server rejects or cannot accept the call
        """
        method = method_path(request.kind)
        channel = self.create_channel(endpoint)

        try:
            multicallable = channel.unary_stream(
                method,
                request_serializer=self._request_serializer,
                response_deserializer=self._response_deserializer,
            )
            call = multicallable(request, metadata=self.metadata(credentials))
            if self.wait_for_connection:
                await call.wait_for_connection()
        except grpc.aio.AioRpcError as e:
            await channel.close()
            raise translate_rpc_error(e) from e
        except BaseException:
            await channel.close()
            raise

        logger.info(
            "Opened gRPC subscription",
            extra={"endpoint": endpoint, "method": method, "insecure": self.insecure},
        )
        return GrpcStreamCall(channel, call, method)


__all__ = [
    "GrpcTransport",
    "GrpcStreamCall",
    "SERVICE_NAME",
    "STREAM_METHODS",
    "DEFAULT_CHANNEL_OPTIONS",
    "json_request_serializer",
    "raw_response_deserializer",
    "method_path",
    "translate_rpc_error",
]
