"""
Exponential backoff with jitter for reconnect delays.

Delays are expressed in milliseconds:

    delay = min(initial_delay_ms * 2**attempt, max_delay_ms) + U[0, jitter_ms)

The jitter spreads retries from many clients apart so that a server
coming back up is not hit by all of them at once.
"""

import random
from dataclasses import dataclass, field

# 2**62 * any sane initial delay is far beyond any max_delay_ms
_MAX_EXPONENT = 62


@dataclass
class BackoffPolicy:
    """
    Maps an attempt number to a delay in milliseconds.

    Attributes:
        initial_delay_ms: Delay for attempt 0, before jitter
        max_delay_ms: Cap for the exponential part of the delay
        jitter_ms: Exclusive upper bound of the additive random jitter
        rng: Random source used for jitter; inject a seeded instance for
            deterministic tests

    Example:
        >>> policy = BackoffPolicy(rng=random.Random(42))
        >>> 1000 <= policy.delay_for(0) < 2000
        True
        >>> 60000 <= policy.delay_for(10) < 61000
        True
    """

    initial_delay_ms: float = 1000.0
    max_delay_ms: float = 60000.0
    jitter_ms: float = 1000.0
    rng: random.Random | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.initial_delay_ms <= 0:
            raise ValueError(f"initial_delay_ms must be positive, got {self.initial_delay_ms}.")

        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError(
                f"max_delay_ms ({self.max_delay_ms}) must be >= "
                f"initial_delay_ms ({self.initial_delay_ms})."
            )

        if self.jitter_ms < 0:
            raise ValueError(f"jitter_ms must be >= 0, got {self.jitter_ms}.")

        if self.rng is None:
            self.rng = random.Random()  # nosec B311 - not crypto

    def base_delay_for(self, attempt: int) -> float:
        """
        Get the capped exponential delay for an attempt, without jitter.

        Args:
            attempt: Attempt number (0-based)

        Returns:
            Delay in milliseconds

        Raises:
            ValueError: If attempt is negative
        """
        if attempt < 0:
            raise ValueError(f"attempt must be >= 0, got {attempt}.")

        exponent = min(attempt, _MAX_EXPONENT)
        return min(self.initial_delay_ms * (1 << exponent), self.max_delay_ms)

    def delay_for(self, attempt: int) -> float:
        """
        Calculate the delay for an attempt, including jitter.

        Args:
            attempt: Attempt number (0-based)

        Returns:
            Delay in milliseconds, in
            ``[base_delay_for(attempt), base_delay_for(attempt) + jitter_ms)``

        Raises:
            ValueError: If attempt is negative
        """
        delay = self.base_delay_for(attempt)
        assert self.rng is not None
        return delay + self.rng.random() * self.jitter_ms


__all__ = ["BackoffPolicy"]
