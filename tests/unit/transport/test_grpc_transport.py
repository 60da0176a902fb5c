"""
Unit tests for GrpcTransport.

grpc.aio channels are replaced with fakes; no network access is needed.
"""

import json

import grpc
import grpc.aio
import pytest

from corecast.exceptions import ConfigurationError, TransportError
from corecast.session import (
    ReconnectPolicy,
    SessionState,
    StreamSession,
    SubscriptionParams,
)
from corecast.transport.grpc import (
    DEFAULT_CHANNEL_OPTIONS,
    GrpcTransport,
    json_request_serializer,
    method_path,
    raw_response_deserializer,
)


def rpc_error(code, details=""):
    return grpc.aio.AioRpcError(code, grpc.aio.Metadata(), grpc.aio.Metadata(), details)


class FakeCall:
    """Stands in for a grpc.aio UnaryStreamCall."""

    def __init__(self, responses=(), error=None, connect_error=None):
        self.responses = list(responses)
        self.error = error
        self.connect_error = connect_error
        self.cancelled = False

    async def wait_for_connection(self):
        if self.connect_error is not None:
            raise self.connect_error

    def cancel(self):
        self.cancelled = True
        return True

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for response in self.responses:
            yield response
        if self.error is not None:
            raise self.error


class FakeChannel:
    """Stands in for a grpc.aio.Channel."""

    def __init__(self, target, options, credentials=None, calls=()):
        self.target = target
        self.options = options
        self.credentials = credentials
        self.closed = False
        self.method = None
        self.request = None
        self.metadata = None
        self.request_serializer = None
        self.response_deserializer = None
        self._calls = list(calls)

    def unary_stream(self, method, request_serializer=None, response_deserializer=None):
        self.method = method
        self.request_serializer = request_serializer
        self.response_deserializer = response_deserializer

        def invoke(request, metadata=None):
            self.request = request
            self.metadata = metadata
            return self._calls.pop(0) if self._calls else FakeCall()

        return invoke

    async def close(self):
        self.closed = True


@pytest.fixture
def channels(monkeypatch):
    """Patch grpc.aio channel constructors; returns (created channels, call script)."""
    created = []
    script = []

    def insecure_channel(target, options=None):
        channel = FakeChannel(target, options, calls=script[:1])
        del script[:1]
        created.append(channel)
        return channel

    def secure_channel(target, credentials, options=None):
        channel = FakeChannel(target, options, credentials=credentials, calls=script[:1])
        del script[:1]
        created.append(channel)
        return channel

    monkeypatch.setattr(grpc.aio, "insecure_channel", insecure_channel)
    monkeypatch.setattr(grpc.aio, "secure_channel", secure_channel)
    monkeypatch.setattr(grpc, "ssl_channel_credentials", lambda root_certificates=None: "tls")
    return created, script


@pytest.fixture
def params():
    return SubscriptionParams.create("dex_trades", programs=["prog1"], traders=["t1"])


class TestHelpers:
    """Tests for module helpers."""

    @pytest.mark.parametrize(
        ("kind", "method"),
        [
            ("dex_trades", "DexTrades"),
            ("dex_orders", "DexOrders"),
            ("dex_pools", "DexPools"),
            ("transactions", "Transactions"),
            ("transfers", "Transfers"),
            ("balances", "Balances"),
        ],
    )
    def test_method_path(self, kind, method):
        """Test stream kinds map to CoreCast RPCs."""
        assert method_path(kind) == f"/solana_corecast.CoreCast/{method}"

    def test_unknown_kind(self):
        """Test an unsupported stream kind is a configuration error."""
        with pytest.raises(ConfigurationError) as exc_info:
            method_path("candles")
        assert "candles" in str(exc_info.value)

    def test_json_request_serializer(self, params):
        """Test the default request encoding."""
        data = json.loads(json_request_serializer(params))
        assert data == {
            "program": {"addresses": ["prog1"]},
            "trader": {"addresses": ["t1"]},
        }

    def test_raw_response_deserializer(self):
        """Test responses pass through unchanged."""
        assert raw_response_deserializer(b"\x01\x02") == b"\x01\x02"

    def test_channel_options(self):
        """Test keepalive and message size options."""
        options = dict(DEFAULT_CHANNEL_OPTIONS)
        assert options["grpc.keepalive_time_ms"] == 30000
        assert options["grpc.keepalive_timeout_ms"] == 5000
        assert options["grpc.max_receive_message_length"] == 4 * 1024 * 1024
        assert options["grpc.max_connection_age_ms"] == 300000


class TestOpenSubscription:
    """Tests for GrpcTransport.open_subscription()."""

    @pytest.mark.asyncio
    async def test_insecure_channel(self, channels, params):
        """Test insecure transports use a plaintext channel."""
        created, _ = channels
        transport = GrpcTransport(insecure=True)

        call = await transport.open_subscription("localhost:50051", "Bearer abc", params)

        channel = created[0]
        assert channel.target == "localhost:50051"
        assert channel.credentials is None
        assert channel.options == list(DEFAULT_CHANNEL_OPTIONS)
        assert channel.method == "/solana_corecast.CoreCast/DexTrades"
        assert channel.request is params
        assert ("authorization", "Bearer abc") in channel.metadata
        assert channel.request_serializer is json_request_serializer
        assert call.method == "/solana_corecast.CoreCast/DexTrades"

    @pytest.mark.asyncio
    async def test_secure_channel(self, channels, params):
        """Test TLS is the default."""
        created, _ = channels
        transport = GrpcTransport()

        await transport.open_subscription("corecast.example.com:443", None, params)

        assert created[0].credentials == "tls"
        assert created[0].metadata == ()

    @pytest.mark.asyncio
    async def test_extra_metadata(self, channels, params):
        """Test additional metadata is sent with every call."""
        created, _ = channels
        transport = GrpcTransport(insecure=True, extra_metadata={"x-client": "corecast"})

        await transport.open_subscription("h:1", "tok", params)

        assert created[0].metadata == (("x-client", "corecast"), ("authorization", "tok"))

    @pytest.mark.asyncio
    async def test_connect_error_translated(self, channels, params):
        """Test a failed connection becomes a TransportError and closes the channel."""
        created, script = channels
        script.append(FakeCall(connect_error=rpc_error(grpc.StatusCode.UNAVAILABLE, "refused")))
        transport = GrpcTransport(insecure=True)

        with pytest.raises(TransportError) as exc_info:
            await transport.open_subscription("h:1", None, params)

        assert exc_info.value.code == "UNAVAILABLE"
        assert exc_info.value.message == "refused"
        assert created[0].closed is True

    @pytest.mark.asyncio
    async def test_unknown_kind_opens_no_channel(self, channels):
        """Test an unsupported kind fails before connecting."""
        created, _ = channels
        transport = GrpcTransport(insecure=True)

        with pytest.raises(ConfigurationError):
            await transport.open_subscription("h:1", None, SubscriptionParams("candles"))

        assert created == []

    @pytest.mark.asyncio
    async def test_lazy_open(self, channels, params):
        """Test wait_for_connection=False returns before the server answers."""
        created, script = channels
        script.append(FakeCall(connect_error=rpc_error(grpc.StatusCode.UNAVAILABLE)))
        transport = GrpcTransport(insecure=True, wait_for_connection=False)

        call = await transport.open_subscription("h:1", None, params)

        assert call.closed is False
        assert created[0].closed is False


class TestStreamCall:
    """Tests for GrpcStreamCall."""

    @pytest.mark.asyncio
    async def test_iterates_responses(self, channels, params):
        """Test responses are yielded in order."""
        _, script = channels
        script.append(FakeCall(responses=[b"one", b"two"]))
        transport = GrpcTransport(insecure=True)
        call = await transport.open_subscription("h:1", None, params)

        assert [r async for r in call] == [b"one", b"two"]

    @pytest.mark.asyncio
    async def test_stream_error_translated(self, channels, params):
        """Test a mid-stream RPC error becomes a TransportError."""
        _, script = channels
        script.append(
            FakeCall(
                responses=[b"one"],
                error=rpc_error(grpc.StatusCode.INTERNAL, "Received RST_STREAM with code 2"),
            )
        )
        transport = GrpcTransport(insecure=True)
        call = await transport.open_subscription("h:1", None, params)

        with pytest.raises(TransportError) as exc_info:
            async for _ in call:
                pass

        assert exc_info.value.code == "INTERNAL"
        assert "RST_STREAM" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_close_cancels_and_closes_channel(self, channels, params):
        """Test close() releases the call and the channel, once."""
        created, script = channels
        fake = FakeCall()
        script.append(fake)
        transport = GrpcTransport(insecure=True)
        call = await transport.open_subscription("h:1", None, params)

        await call.close()
        await call.close()

        assert fake.cancelled is True
        assert created[0].closed is True
        assert call.closed is True


class TestSessionOverGrpc:
    """Tests for a session driven by the gRPC transport."""

    @pytest.mark.asyncio
    async def test_reconnects_after_rpc_error(self, channels, params):
        """Test a dropped gRPC stream is retried on a new channel."""
        created, script = channels
        script.append(FakeCall(connect_error=rpc_error(grpc.StatusCode.UNAVAILABLE, "refused")))
        script.append(FakeCall(responses=[b"m1"], error=rpc_error(grpc.StatusCode.UNAVAILABLE)))
        script.append(FakeCall(error=rpc_error(grpc.StatusCode.UNAUTHENTICATED, "expired")))
        received = []

        async def on_message(payload):
            received.append(payload)

        session = StreamSession(
            GrpcTransport(insecure=True),
            "h:1",
            params,
            credentials="Bearer abc",
            policy=ReconnectPolicy(initial_delay_ms=1.0, max_delay_ms=1.0, jitter_ms=0.0),
            on_message=on_message,
            enable_tracing=False,
            enable_metrics=False,
        )

        assert await session.run() is SessionState.FAILED
        assert received == [b"m1"]
        assert len(created) == 3
        assert all(channel.closed for channel in created)
        assert session.failure.code == "UNAUTHENTICATED"
