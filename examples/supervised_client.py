"""
Supervised Client Example - Production-Style Wiring

This example demonstrates how the pieces fit together in a long-running
process:
- Loading settings from a YAML file
- Replacing the session when the configuration changes
- Periodic stats reports
- Graceful shutdown with signal handling (SIGTERM, SIGINT)

The scripted InMemoryTransport stands in for a CoreCast server; replace
the transport factory with `default_transport_factory` for a real feed.

Run with: python -m examples.supervised_client
"""

import asyncio
import logging
import tempfile
from pathlib import Path

from corecast import ClientSettings, InMemoryTransport, ScriptedStream, load_settings
from corecast.cli import run_client

# =============================================================================
# Configure Logging
# =============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

CONFIG = """
server:
  address: localhost:50051
  insecure: true
stream:
  type: {kind}
reconnect:
  max_attempts: 3
  initial_delay_ms: 200
  jitter_ms: 50
"""


def memory_transport(settings: ClientSettings) -> InMemoryTransport:
    """One scripted feed per session, ticking every 100ms until closed."""
    payloads = [f"{settings.stream.type.value}-{i}".encode() for i in range(10)]
    return InMemoryTransport([ScriptedStream(messages=payloads, message_delay=0.1, hold=True)])


async def edit_config_later(path: Path) -> None:
    """Switch the stream type while the client runs."""
    await asyncio.sleep(1.5)
    print("\n>>> Switching stream type to dex_orders\n")
    path.write_text(CONFIG.format(kind="dex_orders"))


async def main():
    """Run a supervised client for a few seconds."""
    print("=" * 60)
    print("Supervised Client Example")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        config_path = Path(tmp) / "config.yaml"
        config_path.write_text(CONFIG.format(kind="dex_trades"))
        settings = load_settings(config_path)

        async def on_message(payload: bytes) -> None:
            logger.info("Received %s", payload.decode())

        editor = asyncio.create_task(edit_config_later(config_path))
        client = asyncio.create_task(
            run_client(
                settings,
                config_path=config_path,
                stats_interval=1.0,
                watch=True,
                watch_interval=0.25,
                transport_factory=memory_transport,
                on_message=on_message,
            )
        )

        # Press Ctrl+C for a graceful stop; otherwise stop after 4 seconds
        done, _ = await asyncio.wait({client}, timeout=4.0)
        if not done:
            client.cancel()
            try:
                await client
            except asyncio.CancelledError:
                print("\nClient stopped")
        else:
            print(f"\nSession finished: {client.result().value}")
        editor.cancel()


if __name__ == "__main__":
    asyncio.run(main())
