"""Tests for OAuth configuration module."""

import os
from unittest import mock

import pytest

from src.oauth.config import (
    DEFAULT_CALLBACK_TIMEOUT_SECONDS,
    DEFAULT_MIN_REFRESH_INTERVAL_MS,
    DEFAULT_REFRESH_JITTER_MS,
    DEFAULT_REFRESH_THRESHOLD_MS,
    OAuthClientConfig,
)
from src.oauth.exceptions import ConfigurationError


class TestOAuthClientConfig:
    """Tests for OAuthClientConfig class."""

    def test_config_with_required_params(self):
        """Config can be created with just required parameters."""
        config = OAuthClientConfig(
            client_id="test_client_id",
            client_secret="test_client_secret",
            scopes=["drive.readonly"],
        )

        assert config.client_id == "test_client_id"
        assert config.client_secret == "test_client_secret"
        assert config.scopes == ("drive.readonly",)
        assert config.redirect_uri == "http://localhost:3000/oauth2callback"
        assert config.port == 3000
        assert config.callback_path == "/oauth2callback"
        assert config.callback_host == "127.0.0.1"
        assert config.proactive_refresh_enabled is True
        assert config.refresh_threshold_ms == DEFAULT_REFRESH_THRESHOLD_MS
        assert config.refresh_jitter_ms == DEFAULT_REFRESH_JITTER_MS
        assert config.min_refresh_interval_ms == DEFAULT_MIN_REFRESH_INTERVAL_MS
        assert config.callback_timeout_seconds == DEFAULT_CALLBACK_TIMEOUT_SECONDS

    def test_config_with_all_params(self):
        """Config can be created with all parameters."""
        config = OAuthClientConfig(
            client_id="test_id",
            client_secret="test_secret",
            scopes=("a", "b"),
            redirect_uri="http://127.0.0.1:8085/custom/callback",
            port=9000,
            proactive_refresh_enabled=False,
            refresh_threshold_ms=60000,
            refresh_jitter_ms=0,
            min_refresh_interval_ms=1000,
            callback_timeout_seconds=5,
            authorization_url="https://auth.example.com/authorize",
            token_url="https://auth.example.com/token",
            token_file="/custom/path/tokens.json",
        )

        assert config.port == 9000
        assert config.callback_path == "/custom/callback"
        assert config.callback_host == "127.0.0.1"
        assert config.proactive_refresh_enabled is False
        assert config.refresh_threshold_ms == 60000
        assert config.token_url == "https://auth.example.com/token"
        assert config.token_file == "/custom/path/tokens.json"

    def test_port_defaults_to_redirect_uri_port(self):
        """Port is taken from the redirect URI when not given."""
        config = OAuthClientConfig(
            client_id="id",
            client_secret="secret",
            scopes=["s"],
            redirect_uri="http://localhost:8765/cb",
        )

        assert config.port == 8765

    def test_config_validates_empty_client_id(self):
        """Config raises error for empty client_id."""
        with pytest.raises(ConfigurationError, match="client_id cannot be empty"):
            OAuthClientConfig(client_id="", client_secret="secret", scopes=["s"])

    def test_config_validates_empty_client_secret(self):
        """Config raises error for empty client_secret."""
        with pytest.raises(ConfigurationError, match="client_secret cannot be empty"):
            OAuthClientConfig(client_id="id", client_secret="", scopes=["s"])

    def test_config_validates_scopes(self):
        """Config requires a non-empty list of scope strings."""
        with pytest.raises(ConfigurationError, match="scopes"):
            OAuthClientConfig(client_id="id", client_secret="secret", scopes=[])

        with pytest.raises(ConfigurationError, match="scopes"):
            OAuthClientConfig(client_id="id", client_secret="secret", scopes="single")

        with pytest.raises(ConfigurationError, match="scopes"):
            OAuthClientConfig(client_id="id", client_secret="secret", scopes=["ok", ""])

    def test_config_validates_redirect_uri(self):
        """Config rejects redirect URIs that are not absolute http(s) URLs."""
        with pytest.raises(ConfigurationError, match="redirect_uri"):
            OAuthClientConfig(
                client_id="id", client_secret="secret", scopes=["s"], redirect_uri="/callback"
            )

    def test_config_validates_port_range(self):
        """Config validates port is in valid range."""
        with pytest.raises(ConfigurationError, match="port must be between 1 and 65535"):
            OAuthClientConfig(client_id="id", client_secret="secret", scopes=["s"], port=0)

        with pytest.raises(ConfigurationError, match="port must be between 1 and 65535"):
            OAuthClientConfig(client_id="id", client_secret="secret", scopes=["s"], port=70000)

    def test_config_validates_negative_tunables(self):
        """Config validates refresh tunables are non-negative."""
        for name in ("refresh_threshold_ms", "refresh_jitter_ms", "min_refresh_interval_ms"):
            with pytest.raises(ConfigurationError, match=f"{name} cannot be negative"):
                OAuthClientConfig(
                    client_id="id", client_secret="secret", scopes=["s"], **{name: -1}
                )

    @pytest.mark.parametrize(
        "name",
        [
            "refresh_threshold_ms",
            "refresh_jitter_ms",
            "min_refresh_interval_ms",
            "callback_timeout_seconds",
        ],
    )
    @pytest.mark.parametrize("value", [float("nan"), float("inf"), float("-inf"), "300000", None, True])
    def test_config_rejects_non_finite_tunables(self, name, value):
        """Tunables must be real finite numbers."""
        with pytest.raises(ConfigurationError, match=f"{name} must be a finite number"):
            OAuthClientConfig(
                client_id="id", client_secret="secret", scopes=["s"], **{name: value}
            )

    def test_config_validates_callback_timeout(self):
        """Callback timeout must be positive."""
        with pytest.raises(ConfigurationError, match="callback_timeout_seconds"):
            OAuthClientConfig(
                client_id="id", client_secret="secret", scopes=["s"], callback_timeout_seconds=0
            )

    def test_config_is_immutable(self):
        """Config fields cannot be reassigned."""
        config = OAuthClientConfig(client_id="id", client_secret="secret", scopes=["s"])

        with pytest.raises(AttributeError):
            config.client_id = "other"

    def test_with_updates_changes_tunables(self):
        """with_updates returns a new config with tunables changed."""
        config = OAuthClientConfig(client_id="id", client_secret="secret", scopes=["s"])

        updated = config.with_updates(refresh_threshold_ms=1000, proactive_refresh_enabled=False)

        assert updated.refresh_threshold_ms == 1000
        assert updated.proactive_refresh_enabled is False
        assert config.refresh_threshold_ms == DEFAULT_REFRESH_THRESHOLD_MS

    def test_with_updates_rejects_identity_fields(self):
        """with_updates refuses to change client identity."""
        config = OAuthClientConfig(client_id="id", client_secret="secret", scopes=["s"])

        with pytest.raises(ConfigurationError, match="Cannot change client_id"):
            config.with_updates(client_id="other")

    def test_with_updates_validates_values(self):
        """with_updates re-runs validation."""
        config = OAuthClientConfig(client_id="id", client_secret="secret", scopes=["s"])

        with pytest.raises(ConfigurationError, match="cannot be negative"):
            config.with_updates(refresh_jitter_ms=-5)

    @pytest.mark.parametrize("value", [float("nan"), float("inf")])
    def test_with_updates_rejects_non_finite_values(self, value):
        """Runtime updates cannot install a non-finite threshold."""
        config = OAuthClientConfig(client_id="id", client_secret="secret", scopes=["s"])

        with pytest.raises(ConfigurationError, match="refresh_threshold_ms must be a finite number"):
            config.with_updates(refresh_threshold_ms=value)

        assert config.refresh_threshold_ms == DEFAULT_REFRESH_THRESHOLD_MS


class TestOAuthClientConfigFromEnv:
    """Tests for OAuthClientConfig.from_env()."""

    @mock.patch.dict(
        os.environ,
        {
            "OAUTH_CLIENT_ID": "env_client_id",
            "OAUTH_CLIENT_SECRET": "env_client_secret",
            "OAUTH_SCOPES": "drive.readonly, gmail.send",
        },
        clear=True,
    )
    def test_from_env_with_required_vars(self):
        """from_env loads required variables."""
        config = OAuthClientConfig.from_env()

        assert config.client_id == "env_client_id"
        assert config.client_secret == "env_client_secret"
        assert config.scopes == ("drive.readonly", "gmail.send")
        assert config.port == 3000

    @mock.patch.dict(
        os.environ,
        {
            "OAUTH_CLIENT_ID": "id",
            "OAUTH_CLIENT_SECRET": "secret",
            "OAUTH_SCOPES": "a b",
            "OAUTH_REDIRECT_URI": "http://localhost:4100/done",
            "OAUTH_PROACTIVE_REFRESH": "false",
            "OAUTH_REFRESH_THRESHOLD_MS": "120000",
            "OAUTH_REFRESH_JITTER_MS": "0",
            "OAUTH_MIN_REFRESH_INTERVAL_MS": "5000",
            "OAUTH_CALLBACK_TIMEOUT_SECONDS": "60",
            "OAUTH_TOKEN_FILE": "/tmp/env_tokens.json",
        },
        clear=True,
    )
    def test_from_env_with_optional_vars(self):
        """from_env loads optional variables."""
        config = OAuthClientConfig.from_env()

        assert config.scopes == ("a", "b")
        assert config.port == 4100
        assert config.callback_path == "/done"
        assert config.proactive_refresh_enabled is False
        assert config.refresh_threshold_ms == 120000
        assert config.refresh_jitter_ms == 0
        assert config.min_refresh_interval_ms == 5000
        assert config.callback_timeout_seconds == 60.0
        assert config.token_file == "/tmp/env_tokens.json"

    @mock.patch.dict(os.environ, {}, clear=True)
    def test_from_env_missing_credentials(self):
        """from_env raises ConfigurationError with guidance when credentials are missing."""
        with pytest.raises(ConfigurationError, match="OAUTH_CLIENT_ID"):
            OAuthClientConfig.from_env()

    @mock.patch.dict(
        os.environ,
        {"OAUTH_CLIENT_ID": "id", "OAUTH_CLIENT_SECRET": "secret"},
        clear=True,
    )
    def test_from_env_missing_scopes(self):
        """from_env requires scopes."""
        with pytest.raises(ConfigurationError, match="OAUTH_SCOPES"):
            OAuthClientConfig.from_env()

    @mock.patch.dict(
        os.environ,
        {
            "OAUTH_CLIENT_ID": "id",
            "OAUTH_CLIENT_SECRET": "secret",
            "OAUTH_SCOPES": "a",
            "OAUTH_REFRESH_THRESHOLD_MS": "five minutes",
        },
        clear=True,
    )
    def test_from_env_invalid_integer(self):
        """from_env names the variable holding a malformed integer."""
        with pytest.raises(ConfigurationError, match="OAUTH_REFRESH_THRESHOLD_MS"):
            OAuthClientConfig.from_env()
