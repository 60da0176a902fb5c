"""
Shared pytest fixtures for the corecast tests.

This module provides:
- Policy and params fixtures (fast_policy, params)
- Transport fixtures (transport)
- Session fixtures (make_session), stopped automatically after each test
- Observation helpers (recorder, wait_for_state, wait_until)
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio

from corecast.exceptions import TransportError
from corecast.session import (
    ReconnectPolicy,
    SessionEvent,
    SessionState,
    StreamSession,
    SubscriptionParams,
)
from corecast.transport.memory import InMemoryTransport

# ============================================================================
# Configuration
# ============================================================================


@pytest.fixture
def fast_policy() -> ReconnectPolicy:
    """Policy with millisecond delays and no jitter: delays are 1, 2, 4, 4, ... ms."""
    return ReconnectPolicy(
        max_attempts=3,
        initial_delay_ms=1.0,
        max_delay_ms=4.0,
        jitter_ms=0.0,
        stable_after_ms=10000.0,
    )


@pytest.fixture
def params() -> SubscriptionParams:
    """Subscription params for a filtered dex_trades stream."""
    return SubscriptionParams.create("dex_trades", programs=["prog1"])


@pytest.fixture
def unavailable() -> TransportError:
    """A retryable transport error."""
    return TransportError("UNAVAILABLE", "connection refused")


# ============================================================================
# Transport and session
# ============================================================================


@pytest.fixture
def transport() -> InMemoryTransport:
    """Scripted transport; streams stay open once the script runs out."""
    return InMemoryTransport()


@pytest_asyncio.fixture
async def make_session(
    transport: InMemoryTransport,
    params: SubscriptionParams,
    fast_policy: ReconnectPolicy,
) -> AsyncGenerator[Callable[..., StreamSession], None]:
    """
    Factory for sessions over the `transport` fixture.

    Tracing and metrics are disabled unless overridden. Every session
    created is stopped at teardown.

    Example:
        def test_something(make_session):
            session = make_session(on_message=handler)
    """
    sessions: list[StreamSession] = []

    def factory(**overrides: Any) -> StreamSession:
        kwargs: dict[str, Any] = {
            "transport": transport,
            "endpoint": "memory://corecast",
            "params": params,
            "credentials": "Bearer test",
            "policy": fast_policy,
            "enable_tracing": False,
            "enable_metrics": False,
        }
        kwargs.update(overrides)
        session = StreamSession(**kwargs)
        sessions.append(session)
        return session

    yield factory

    for session in sessions:
        await session.stop()


# ============================================================================
# Observation helpers
# ============================================================================


class EventRecorder:
    """Session listener that keeps every transition event."""

    def __init__(self) -> None:
        self.events: list[SessionEvent] = []

    def __call__(self, event: SessionEvent) -> None:
        self.events.append(event)

    @property
    def states(self) -> list[SessionState]:
        return [event.state for event in self.events]

    def of_state(self, state: SessionState) -> list[SessionEvent]:
        return [event for event in self.events if event.state is state]


@pytest.fixture
def recorder() -> EventRecorder:
    """Fresh event recorder."""
    return EventRecorder()


@pytest.fixture
def wait_until() -> Callable[..., Awaitable[None]]:
    """Poll a condition until it holds, failing the test after a timeout."""

    async def _wait(condition: Callable[[], bool], timeout: float = 2.0) -> None:
        async def poll() -> None:
            while not condition():
                await asyncio.sleep(0.001)

        await asyncio.wait_for(poll(), timeout=timeout)

    return _wait


@pytest.fixture
def wait_for_state(
    wait_until: Callable[..., Awaitable[None]],
) -> Callable[..., Awaitable[None]]:
    """Wait until a session is in one of the given states."""

    async def _wait(session: StreamSession, *states: SessionState, timeout: float = 2.0) -> None:
        await wait_until(lambda: session.state in states, timeout=timeout)

    return _wait
