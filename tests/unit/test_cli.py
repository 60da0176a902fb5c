"""
Unit tests for the corecast command-line interface.
"""

import asyncio

import pytest
from click.testing import CliRunner

from corecast import cli as cli_module
from corecast.cli import build_session, cli, run_client
from corecast.exceptions import TransportError
from corecast.session import SessionState
from corecast.settings import parse_settings
from corecast.transport.grpc import GrpcTransport
from corecast.transport.memory import InMemoryTransport, ScriptedStream

CONFIG = """
server:
  address: localhost:50051
  authorization: Bearer cli-token
  insecure: true
stream:
  type: dex_trades
filters:
  programs:
    - prog1
reconnect:
  max_attempts: 2
  initial_delay_ms: 1
  max_delay_ms: 1
  jitter_ms: 0
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(CONFIG)
    return path


@pytest.fixture
def settings():
    return parse_settings(
        {
            "server": {"address": "localhost:50051", "authorization": "Bearer t"},
            "reconnect": {"initial_delay_ms": 1, "max_delay_ms": 1, "jitter_ms": 0},
        },
        environ={},
    )


@pytest.fixture
def runner():
    return CliRunner()


def use_transport(monkeypatch, transport):
    monkeypatch.setattr(cli_module, "default_transport_factory", lambda settings: transport)


class TestCheckConfig:
    """Tests for `corecast check-config`."""

    def test_valid_config(self, runner, config_file, monkeypatch):
        """Test a valid file is summarized."""
        monkeypatch.delenv("CORECAST_ADDRESS", raising=False)

        result = runner.invoke(cli, ["check-config", "--config", str(config_file)])

        assert result.exit_code == 0
        assert "Server: localhost:50051" in result.output
        assert "Insecure: True" in result.output
        assert "Stream type: dex_trades" in result.output
        assert "Filter programs: prog1" in result.output
        assert "Reconnect: max_attempts=2" in result.output
        assert "Configuration OK" in result.output

    def test_invalid_config(self, runner, tmp_path):
        """Test an invalid file exits with status 2."""
        path = tmp_path / "bad.yaml"
        path.write_text("server:\n  address: h:1\nstream:\n  type: candles\n")

        result = runner.invoke(cli, ["check-config", "-c", str(path)])

        assert result.exit_code == 2
        assert "Error: Invalid configuration" in result.output

    def test_missing_config(self, runner, tmp_path):
        """Test a missing file exits with status 2."""
        result = runner.invoke(cli, ["check-config", "-c", str(tmp_path / "nope.yaml")])

        assert result.exit_code == 2
        assert "Cannot read config file" in result.output


class TestRunCommand:
    """Tests for `corecast run`."""

    def test_fatal_error_exits_1(self, runner, config_file, monkeypatch):
        """Test a rejected subscription ends the process with status 1."""
        use_transport(
            monkeypatch, InMemoryTransport([TransportError("UNAUTHENTICATED", "bad token")])
        )

        result = runner.invoke(cli, ["run", "-c", str(config_file), "--log-level", "ERROR"])

        assert result.exit_code == 1
        assert "Connecting to localhost:50051 (dex_trades)" in result.output
        assert "Session finished: failed" in result.output

    def test_clean_end_exits_0(self, runner, config_file, monkeypatch):
        """Test a stream closed by the server ends the process normally."""
        use_transport(monkeypatch, InMemoryTransport([ScriptedStream(messages=[b"a", b"b"])]))

        result = runner.invoke(cli, ["run", "-c", str(config_file)])

        assert result.exit_code == 0
        assert "Session finished: idle" in result.output

    def test_invalid_config_exits_2(self, runner, tmp_path):
        """Test run refuses an invalid file."""
        path = tmp_path / "bad.yaml"
        path.write_text("- not a mapping\n")

        result = runner.invoke(cli, ["run", "-c", str(path)])

        assert result.exit_code == 2
        assert "must be a mapping" in result.output

    def test_version(self, runner):
        """Test --version prints the program name."""
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert "corecast" in result.output


class TestBuildSession:
    """Tests for build_session()."""

    def test_uses_settings(self, settings):
        """Test the session is configured from settings."""
        session = build_session(settings, lambda s: InMemoryTransport())

        assert session.endpoint == "localhost:50051"
        assert session.subscription_params == settings.to_params()
        assert session.policy == settings.to_policy()
        assert session.state is SessionState.IDLE

    def test_default_transport(self, settings):
        """Test the gRPC transport is used by default."""
        transport = cli_module.default_transport_factory(settings)
        assert isinstance(transport, GrpcTransport)
        assert transport.insecure is False


class TestRunClient:
    """Tests for run_client()."""

    @pytest.mark.asyncio
    async def test_delivers_messages(self, settings):
        """Test messages reach the consumer until the stream ends."""
        transport = InMemoryTransport([ScriptedStream(messages=[b"m1", b"m2"])])
        received = []

        async def on_message(payload):
            received.append(payload)

        state = await run_client(
            settings,
            transport_factory=lambda s: transport,
            on_message=on_message,
            register_signals=False,
        )

        assert state is SessionState.IDLE
        assert received == [b"m1", b"m2"]
        assert transport.opens[0].credentials == "Bearer t"

    @pytest.mark.asyncio
    async def test_failure_state(self, settings):
        """Test a fatal error is returned as FAILED."""
        transport = InMemoryTransport([TransportError("PERMISSION_DENIED", "no")])

        state = await run_client(
            settings, transport_factory=lambda s: transport, register_signals=False
        )

        assert state is SessionState.FAILED

    @pytest.mark.asyncio
    async def test_cancelled_while_streaming(self, settings):
        """Test cancelling the client stops the session and releases the stream."""
        transport = InMemoryTransport()
        task = asyncio.create_task(
            run_client(settings, transport_factory=lambda s: transport, register_signals=False)
        )
        for _ in range(200):
            if transport.active_calls:
                break
            await asyncio.sleep(0.005)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert transport.open_count == 1
        assert transport.active_calls == 0
