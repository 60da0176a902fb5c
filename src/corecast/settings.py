"""
Client settings loaded from a YAML file.

Example config.yaml:

    server:
      address: corecast.example.com:443
      authorization: Bearer <token>
      insecure: false
    stream:
      type: dex_trades
    filters:
      programs:
        - 675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8
    reconnect:
      max_attempts: 10
      initial_delay_ms: 1000

The ``CORECAST_AUTHORIZATION`` and ``CORECAST_ADDRESS`` environment
variables override the corresponding server values.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from enum import Enum
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from corecast.exceptions import ConfigurationError
from corecast.session.config import ReconnectPolicy, SubscriptionParams

logger = logging.getLogger(__name__)

ENV_AUTHORIZATION = "CORECAST_AUTHORIZATION"
ENV_ADDRESS = "CORECAST_ADDRESS"


class StreamKind(str, Enum):
    """Stream kinds served by CoreCast."""

    DEX_TRADES = "dex_trades"
    """DEX trade events."""

    DEX_ORDERS = "dex_orders"
    """DEX order book events."""

    DEX_POOLS = "dex_pools"
    """Liquidity pool events."""

    TRANSACTIONS = "transactions"
    """Parsed transactions."""

    TRANSFERS = "transfers"
    """Token transfers."""

    BALANCES = "balances"
    """Balance updates."""


class ServerSettings(BaseModel):
    """Remote endpoint and credentials."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    address: str = Field(..., min_length=1, description="host:port of the CoreCast server")
    authorization: str = Field(default="", description="Value of the authorization header")
    insecure: bool = Field(default=False, description="Use a plaintext channel")


class StreamSettings(BaseModel):
    """Which stream to subscribe to."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: StreamKind = StreamKind.DEX_TRADES


class FilterSettings(BaseModel):
    """Address filters; empty lists are left out of the request."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    programs: tuple[str, ...] = ()
    pool: tuple[str, ...] = ()
    traders: tuple[str, ...] = ()
    signers: tuple[str, ...] = ()

    @field_validator("programs", "pool", "traders", "signers", mode="before")
    @classmethod
    def _none_as_empty(cls, value: Any) -> Any:
        return () if value is None else value


class ReconnectSettings(BaseModel):
    """Reconnection policy values; see ReconnectPolicy."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    max_attempts: int = Field(default=10, ge=0)
    initial_delay_ms: float = Field(default=1000.0, gt=0)
    max_delay_ms: float = Field(default=60000.0, gt=0)
    jitter_ms: float = Field(default=1000.0, ge=0)
    stable_after_ms: float = Field(default=10000.0, ge=0)


class ClientSettings(BaseModel):
    """
    Complete client configuration.

    Example:
        >>> settings = load_settings("config.yaml")
        >>> params = settings.to_params()
        >>> policy = settings.to_policy()
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    server: ServerSettings
    stream: StreamSettings = Field(default_factory=StreamSettings)
    filters: FilterSettings = Field(default_factory=FilterSettings)
    reconnect: ReconnectSettings = Field(default_factory=ReconnectSettings)

    def to_params(self) -> SubscriptionParams:
        """Build the immutable request descriptor for a session."""
        return SubscriptionParams.create(
            self.stream.type.value,
            programs=self.filters.programs,
            pool=self.filters.pool,
            traders=self.filters.traders,
            signers=self.filters.signers,
        )

    def to_policy(self) -> ReconnectPolicy:
        """
        Build the reconnection policy.

        Raises:
            ConfigurationError: If the values are inconsistent
                (e.g. max_delay_ms below initial_delay_ms)
        """
        try:
            return ReconnectPolicy(**self.reconnect.model_dump())
        except ValueError as e:
            raise ConfigurationError(f"Invalid reconnect settings: {e}") from e


def apply_env_overrides(
    data: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return a copy of raw config data with environment overrides applied."""
    env = os.environ if environ is None else environ
    result = dict(data)
    server = dict(result.get("server") or {})

    if env.get(ENV_AUTHORIZATION):
        server["authorization"] = env[ENV_AUTHORIZATION]
    if env.get(ENV_ADDRESS):
        server["address"] = env[ENV_ADDRESS]

    result["server"] = server
    return result


def parse_settings(
    data: Mapping[str, Any] | None,
    environ: Mapping[str, str] | None = None,
) -> ClientSettings:
    """
    Validate raw config data.

    Raises:
        ConfigurationError: If the data does not describe valid settings
    """
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ConfigurationError(
            f"Configuration must be a mapping, got {type(data).__name__}"
        )

    try:
        settings = ClientSettings.model_validate(apply_env_overrides(data, environ))
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e

    # Surface inconsistent reconnect values at load time
    settings.to_policy()
    return settings


def load_settings(
    path: str | Path,
    environ: Mapping[str, str] | None = None,
) -> ClientSettings:
    """
    Load and validate settings from a YAML file.

    Args:
        path: Path to the YAML file
        environ: Environment used for overrides (os.environ if None)

    Returns:
        Validated ClientSettings

    Raises:
        ConfigurationError: If the file is missing, unreadable, not valid
            YAML, or does not describe valid settings
    """
    config_path = Path(path)
    try:
        text = config_path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {config_path}: {e}") from e

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e

    settings = parse_settings(data, environ)
    logger.debug(
        "Loaded client settings",
        extra={
            "path": str(config_path),
            "address": settings.server.address,
            "stream": settings.stream.type.value,
        },
    )
    return settings


__all__ = [
    "ClientSettings",
    "ServerSettings",
    "StreamSettings",
    "FilterSettings",
    "ReconnectSettings",
    "StreamKind",
    "ENV_AUTHORIZATION",
    "ENV_ADDRESS",
    "apply_env_overrides",
    "parse_settings",
    "load_settings",
]
