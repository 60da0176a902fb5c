"""
Basic Usage Example

This example demonstrates the fundamental concepts of a stream session:
- Describing a subscription with SubscriptionParams
- Choosing a ReconnectPolicy
- Observing state transitions with a listener
- Surviving transient failures and stopping on a fatal one

It uses the scripted InMemoryTransport, so no server is needed.

Run with: python -m examples.basic_usage
"""

import asyncio

from corecast import (
    InMemoryTransport,
    ReconnectPolicy,
    ScriptedStream,
    SessionEvent,
    StreamSession,
    SubscriptionParams,
    TransportError,
)

# =============================================================================
# Step 1: Script the remote side
# =============================================================================
# Each connection attempt consumes one outcome: an exception fails the
# open, a ScriptedStream delivers messages and then ends or errors.

transport = InMemoryTransport(
    [
        TransportError("UNAVAILABLE", "connection refused"),
        ScriptedStream(
            messages=[b"trade-1", b"trade-2"],
            error=TransportError("INTERNAL", "Received RST_STREAM with code 2"),
        ),
        ScriptedStream(
            messages=[b"trade-3"],
            message_delay=0.05,
            error=TransportError("UNAVAILABLE", "GOAWAY received"),
        ),
        TransportError("UNAUTHENTICATED", "token expired"),
    ]
)


# =============================================================================
# Step 2: Consume messages and transitions
# =============================================================================


async def on_message(payload: bytes) -> None:
    print(f"  message: {payload.decode()}")


def on_transition(event: SessionEvent) -> None:
    details = f"attempt={event.attempt}"
    if event.delay_ms is not None:
        details += f" delay={event.delay_ms:.0f}ms"
    print(f"{event.previous_state.value} -> {event.state.value} ({details}) {event.reason or ''}")


# =============================================================================
# Step 3: Run the session
# =============================================================================


async def main() -> None:
    session = StreamSession(
        transport=transport,
        endpoint="memory://corecast",
        params=SubscriptionParams.create("dex_trades", programs=["prog1"]),
        credentials="Bearer example",
        policy=ReconnectPolicy(max_attempts=5, initial_delay_ms=100, jitter_ms=0),
        on_message=on_message,
    )
    session.add_listener(on_transition)

    final_state = await session.run()

    print(f"\nFinal state: {final_state.value}")
    print(f"Messages received: {session.messages_received}")
    print(f"Connection attempts: {transport.open_count}")
    if session.failure is not None:
        print(f"Failure: {session.failure.to_dict()}")


if __name__ == "__main__":
    asyncio.run(main())
