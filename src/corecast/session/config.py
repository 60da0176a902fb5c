"""
Configuration classes for stream sessions.

This module provides:
- ReconnectPolicy: Reconnection limits and backoff constants
- SubscriptionParams: The immutable request descriptor used to (re)open a stream
"""

from __future__ import annotations

import random
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from corecast.session.backoff import BackoffPolicy


@dataclass(frozen=True)
class ReconnectPolicy:
    """
    Reconnection policy for a stream session.

    Attributes:
        max_attempts: Reconnection attempts allowed in one failure run before
            the session gives up and enters the Failed state
        initial_delay_ms: Backoff delay before the first retry
        max_delay_ms: Upper bound for the exponential part of the delay
        jitter_ms: Exclusive upper bound of the uniform random jitter added
            to every delay (0 disables jitter)
        stable_after_ms: A connection that stays up at least this long counts
            as successful even if no message arrived, resetting the attempt
            counter

    Example:
        >>> policy = ReconnectPolicy(max_attempts=3, initial_delay_ms=500)
        >>> policy.backoff().delay_for(0)  # 500..1500 ms
    """

    max_attempts: int = 10
    initial_delay_ms: float = 1000.0
    max_delay_ms: float = 60000.0
    jitter_ms: float = 1000.0
    stable_after_ms: float = 10000.0

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.max_attempts < 0:
            raise ValueError(
                f"max_attempts must be >= 0, got {self.max_attempts}. Use 0 to never retry."
            )

        if self.initial_delay_ms <= 0:
            raise ValueError(f"initial_delay_ms must be positive, got {self.initial_delay_ms}.")

        if self.max_delay_ms <= 0:
            raise ValueError(f"max_delay_ms must be positive, got {self.max_delay_ms}.")

        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= "
                f"initial_delay_ms ({self.initial_delay_ms})."
            )

        if self.jitter_ms < 0:
            raise ValueError(f"jitter_ms must be >= 0, got {self.jitter_ms}.")

        if self.stable_after_ms < 0:
            raise ValueError(f"stable_after_ms must be >= 0, got {self.stable_after_ms}.")

    def backoff(self, rng: random.Random | None = None) -> BackoffPolicy:
        """
        Get the backoff policy described by this configuration.

        Args:
            rng: Random source for jitter (a fresh one if None)

        Returns:
            BackoffPolicy instance with settings from this policy
        """
        from corecast.session.backoff import BackoffPolicy

        return BackoffPolicy(
            initial_delay_ms=self.initial_delay_ms,
            max_delay_ms=self.max_delay_ms,
            jitter_ms=self.jitter_ms,
            rng=rng,
        )


@dataclass(frozen=True)
class SubscriptionParams:
    """
    Immutable request descriptor for a subscription.

    A session reopens every subscription with the same params; changing
    them means building a new session.

    Attributes:
        kind: Stream kind name (e.g. "dex_trades")
        filters: Filter name to address list (e.g. {"programs": ("abc",)})
    """

    kind: str
    filters: Mapping[str, tuple[str, ...]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.kind:
            raise ValueError("kind must be a non-empty stream kind name.")
        frozen = {name: tuple(values) for name, values in self.filters.items()}
        object.__setattr__(self, "filters", MappingProxyType(frozen))

    @classmethod
    def create(cls, kind: str, **filters: Sequence[str] | None) -> SubscriptionParams:
        """Build params from keyword filter lists, dropping None values."""
        return cls(
            kind=kind,
            filters={name: tuple(values) for name, values in filters.items() if values},
        )

    def to_request(self) -> dict[str, Any]:
        """
        Build the wire request payload.

        Each non-empty filter list becomes an ``{"addresses": [...]}`` entry
        keyed by the singular filter name; empty filters are omitted.
        """
        request: dict[str, Any] = {}
        for name, key in _REQUEST_KEYS.items():
            addresses = self.filters.get(name)
            if addresses:
                request[key] = {"addresses": list(addresses)}
        return request

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        return {
            "kind": self.kind,
            "filters": {name: list(values) for name, values in self.filters.items()},
        }


# Filter name -> request field
_REQUEST_KEYS: dict[str, str] = {
    "programs": "program",
    "pool": "pool",
    "traders": "trader",
    "signers": "signer",
}


__all__ = ["ReconnectPolicy", "SubscriptionParams"]
