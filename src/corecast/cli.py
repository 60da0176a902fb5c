"""
Command-line interface for the CoreCast stream client.

Usage:
    corecast run --config config.yaml
    corecast run --config config.yaml --watch --log-level DEBUG
    corecast check-config --config config.yaml

`run` exits with status 1 when the session gives up (FAILED) and status 2
when the configuration cannot be loaded.
"""

import asyncio
import logging
import sys
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from corecast import __version__
from corecast.exceptions import ConfigurationError
from corecast.reload import ConfigWatcher, SessionSupervisor
from corecast.session.handle import Transport
from corecast.session.manager import MessageHandler, StreamSession
from corecast.session.reporter import SessionStatsReporter
from corecast.session.state import SessionState
from corecast.settings import ClientSettings, load_settings
from corecast.shutdown import ShutdownCoordinator
from corecast.transport.grpc import GrpcTransport

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_LEVELS = ["DEBUG", "INFO", "WARNING", "ERROR"]

TransportFactory = Callable[[ClientSettings], Transport]


def default_transport_factory(settings: ClientSettings) -> Transport:
    """Build the gRPC transport for the configured server."""
    return GrpcTransport(insecure=settings.server.insecure)


async def log_message(payload: Any) -> None:
    """Default consumer: record that a message arrived."""
    size = len(payload) if isinstance(payload, bytes | bytearray) else None
    logger.debug("Message received", extra={"size": size})


def build_session(
    settings: ClientSettings,
    transport_factory: TransportFactory = default_transport_factory,
    on_message: MessageHandler | None = None,
) -> StreamSession:
    """Build an unstarted session for a configuration."""
    return StreamSession(
        transport=transport_factory(settings),
        endpoint=settings.server.address,
        params=settings.to_params(),
        credentials=settings.server.authorization or None,
        policy=settings.to_policy(),
        on_message=on_message or log_message,
    )


async def run_client(
    settings: ClientSettings,
    config_path: Path | None = None,
    stats_interval: float = 30.0,
    watch: bool = False,
    watch_interval: float = 5.0,
    transport_factory: TransportFactory = default_transport_factory,
    on_message: MessageHandler | None = None,
    register_signals: bool = True,
    shutdown_timeout: float = 10.0,
) -> SessionState:
    """
    Run a session until it finishes or a shutdown is requested.

    Returns:
        The final state of the last session
    """
    coordinator = ShutdownCoordinator(timeout=shutdown_timeout)
    reporter: SessionStatsReporter | None = None

    async def attach_reporter(session: StreamSession) -> None:
        nonlocal reporter
        if reporter is not None:
            await reporter.stop()
        reporter = SessionStatsReporter(session, interval=stats_interval)
        await reporter.start()

    supervisor = SessionSupervisor(
        lambda s: build_session(s, transport_factory, on_message),
        settings,
        on_session=attach_reporter,
    )

    watcher: ConfigWatcher | None = None
    if watch and config_path is not None:
        watcher = ConfigWatcher(config_path, supervisor.apply, interval=watch_interval)

    if register_signals:
        coordinator.install_signal_handlers()

    try:
        await supervisor.start()
        if watcher is not None:
            await watcher.start()

        session_done = asyncio.create_task(supervisor.wait())
        shutdown_requested = asyncio.create_task(coordinator.wait_for_shutdown())
        try:
            await asyncio.wait(
                {session_done, shutdown_requested},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            shutdown_requested.cancel()

        if not session_done.done():
            result = await coordinator.shutdown([supervisor.stop])
            if not result.forced:
                await session_done
            else:
                session_done.cancel()
    except asyncio.CancelledError:
        await supervisor.stop()
        raise
    finally:
        if watcher is not None:
            await watcher.stop()
        if reporter is not None:
            reporter.report()
            await reporter.stop()
        if register_signals:
            coordinator.remove_signal_handlers()

    session = supervisor.session
    state = session.state if session is not None else SessionState.IDLE
    if session is not None and session.failure is not None:
        logger.error("Session failed", extra={"failure": session.failure.to_dict()})
    return state


@click.group()
@click.version_option(version=__version__, prog_name="corecast")
def cli() -> None:
    """CoreCast stream client."""
    pass


@cli.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default="config.yaml",
    show_default=True,
    help="YAML configuration file",
)
@click.option(
    "--log-level",
    type=click.Choice(LOG_LEVELS, case_sensitive=False),
    default="INFO",
    show_default=True,
)
@click.option(
    "--stats-interval",
    type=click.FloatRange(min=0, min_open=True),
    default=30.0,
    show_default=True,
    help="Seconds between stats reports",
)
@click.option(
    "--watch/--no-watch",
    default=False,
    show_default=True,
    help="Restart the session when the config file changes",
)
@click.option(
    "--watch-interval",
    type=click.FloatRange(min=0, min_open=True),
    default=5.0,
    show_default=True,
    help="Seconds between config file checks",
)
def run(
    config_path: Path,
    log_level: str,
    stats_interval: float,
    watch: bool,
    watch_interval: float,
) -> None:
    """Subscribe to the configured stream and keep it alive."""
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)

    try:
        settings = load_settings(config_path)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    click.echo(f"Connecting to {settings.server.address} ({settings.stream.type.value})")
    state = asyncio.run(
        run_client(
            settings,
            config_path=config_path,
            stats_interval=stats_interval,
            watch=watch,
            watch_interval=watch_interval,
            transport_factory=default_transport_factory,
        )
    )
    click.echo(f"Session finished: {state.value}")
    if state is SessionState.FAILED:
        sys.exit(1)


@cli.command("check-config")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default="config.yaml",
    show_default=True,
)
def check_config(config_path: Path) -> None:
    """Validate a configuration file and print the resulting subscription."""
    try:
        settings = load_settings(config_path)
    except ConfigurationError as e:
        click.echo(f"Error: {e}", err=True)
        sys.exit(2)

    params = settings.to_params()
    policy = settings.to_policy()
    click.echo(f"Server: {settings.server.address}")
    click.echo(f"Insecure: {settings.server.insecure}")
    click.echo(f"Stream type: {params.kind}")
    for name, addresses in params.filters.items():
        click.echo(f"Filter {name}: {', '.join(addresses)}")
    click.echo(
        f"Reconnect: max_attempts={policy.max_attempts} "
        f"initial_delay_ms={policy.initial_delay_ms:g} max_delay_ms={policy.max_delay_ms:g} "
        f"jitter_ms={policy.jitter_ms:g}"
    )
    click.echo("Configuration OK")


def main() -> None:
    """Console script entry point."""
    cli()


__all__ = ["cli", "main", "run_client", "build_session", "default_transport_factory"]
