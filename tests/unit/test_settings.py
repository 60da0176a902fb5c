"""
Unit tests for client settings loading.
"""

import pytest
from pydantic import ValidationError

from corecast.exceptions import ConfigurationError
from corecast.session import ReconnectPolicy, SubscriptionParams
from corecast.settings import (
    ENV_ADDRESS,
    ENV_AUTHORIZATION,
    ClientSettings,
    StreamKind,
    apply_env_overrides,
    load_settings,
    parse_settings,
)

VALID_CONFIG = """
server:
  address: corecast.example.com:443
  authorization: Bearer file-token
stream:
  type: dex_orders
filters:
  programs:
    - prog1
    - prog2
  traders:
reconnect:
  max_attempts: 5
  initial_delay_ms: 500
"""


@pytest.fixture
def config_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text(VALID_CONFIG)
    return path


class TestLoadSettings:
    """Tests for load_settings()."""

    def test_valid_file(self, config_file):
        """Test a complete config file."""
        settings = load_settings(config_file, environ={})

        assert settings.server.address == "corecast.example.com:443"
        assert settings.server.authorization == "Bearer file-token"
        assert settings.server.insecure is False
        assert settings.stream.type is StreamKind.DEX_ORDERS
        assert settings.filters.programs == ("prog1", "prog2")
        assert settings.filters.traders == ()
        assert settings.reconnect.max_attempts == 5

    def test_missing_file(self, tmp_path):
        """Test a missing file is a configuration error."""
        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(tmp_path / "missing.yaml", environ={})
        assert "Cannot read config file" in str(exc_info.value)

    def test_invalid_yaml(self, tmp_path):
        """Test malformed YAML is a configuration error."""
        path = tmp_path / "broken.yaml"
        path.write_text("server: [unclosed\n")

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(path, environ={})
        assert "Invalid YAML" in str(exc_info.value)

    def test_empty_file_requires_server(self, tmp_path):
        """Test an empty file fails validation for the missing address."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        with pytest.raises(ConfigurationError) as exc_info:
            load_settings(path, environ={})
        assert "address" in str(exc_info.value)

    def test_empty_file_with_env_address(self, tmp_path):
        """Test environment values complete an empty file."""
        path = tmp_path / "empty.yaml"
        path.write_text("")

        settings = load_settings(path, environ={ENV_ADDRESS: "localhost:50051"})

        assert settings.server.address == "localhost:50051"
        assert settings.stream.type is StreamKind.DEX_TRADES

    def test_env_overrides_file(self, config_file):
        """Test environment variables take precedence."""
        settings = load_settings(
            config_file,
            environ={ENV_AUTHORIZATION: "Bearer env-token", ENV_ADDRESS: "other:443"},
        )

        assert settings.server.authorization == "Bearer env-token"
        assert settings.server.address == "other:443"


class TestParseSettings:
    """Tests for parse_settings() validation."""

    def test_top_level_list(self):
        """Test a non-mapping document is rejected."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_settings(["server"], environ={})
        assert "must be a mapping" in str(exc_info.value)

    def test_unknown_key(self):
        """Test unknown keys are rejected."""
        with pytest.raises(ConfigurationError):
            parse_settings({"server": {"address": "h:1", "port": 1}}, environ={})

    def test_unknown_stream_type(self):
        """Test stream types are validated."""
        with pytest.raises(ConfigurationError):
            parse_settings(
                {"server": {"address": "h:1"}, "stream": {"type": "candles"}}, environ={}
            )

    @pytest.mark.parametrize(
        "reconnect",
        [
            {"max_attempts": -1},
            {"initial_delay_ms": 0},
            {"jitter_ms": -1},
            {"initial_delay_ms": 5000, "max_delay_ms": 1000},
        ],
    )
    def test_invalid_reconnect(self, reconnect):
        """Test reconnect values are validated at load time."""
        with pytest.raises(ConfigurationError):
            parse_settings({"server": {"address": "h:1"}, "reconnect": reconnect}, environ={})

    def test_settings_are_frozen(self):
        """Test settings cannot be modified."""
        settings = parse_settings({"server": {"address": "h:1"}}, environ={})
        with pytest.raises(ValidationError):
            settings.server.address = "other"  # type: ignore[misc]

    def test_equality(self):
        """Test identical documents produce equal settings."""
        data = {"server": {"address": "h:1"}, "filters": {"pool": ["a"]}}
        assert parse_settings(data, environ={}) == parse_settings(data, environ={})


class TestConversions:
    """Tests for building session inputs from settings."""

    def test_to_params(self):
        """Test filters become subscription params without empty lists."""
        settings = ClientSettings.model_validate(
            {
                "server": {"address": "h:1"},
                "stream": {"type": "transfers"},
                "filters": {"signers": ["s1"], "pool": []},
            }
        )

        assert settings.to_params() == SubscriptionParams.create("transfers", signers=["s1"])

    def test_to_policy(self):
        """Test reconnect settings become a ReconnectPolicy."""
        settings = ClientSettings.model_validate(
            {"server": {"address": "h:1"}, "reconnect": {"max_attempts": 3, "jitter_ms": 0}}
        )

        policy = settings.to_policy()

        assert policy == ReconnectPolicy(max_attempts=3, jitter_ms=0)

    def test_apply_env_overrides_copies(self):
        """Test overrides do not modify the input."""
        data = {"server": {"address": "h:1"}}

        result = apply_env_overrides(data, {ENV_AUTHORIZATION: "tok"})

        assert result["server"] == {"address": "h:1", "authorization": "tok"}
        assert data == {"server": {"address": "h:1"}}

    def test_empty_env_values_ignored(self):
        """Test empty environment values do not override."""
        result = apply_env_overrides({"server": {"address": "h:1"}}, {ENV_ADDRESS: ""})
        assert result["server"]["address"] == "h:1"
