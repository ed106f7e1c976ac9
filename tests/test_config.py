"""Tests for padsync.config -- env-var config loading and validation.

NOT to be confused with test_config_loader.py (hierarchical YAML config)
or test_config_schema.py (Pydantic models).  This covers the runtime
bootstrap path: validate_config() and load_config().
"""

import logging

import pytest

from padsync.config import (
    DEFAULT_API_URL,
    DEFAULT_DATA_DIR,
    Config,
    get_bool_env,
    load_config,
    validate_config,
)

_ENV_KEYS = (
    "PADSYNC_ACCESS_TOKEN",
    "PADSYNC_TOKEN_FILE",
    "PADSYNC_API_URL",
    "PADSYNC_UPLOAD_URL",
    "PADSYNC_DATA_DIR",
    "PADSYNC_SYNC_INTERVAL",
    "PADSYNC_REQUEST_TIMEOUT",
    "PADSYNC_MAX_PARALLEL_REQUESTS",
    "PADSYNC_DEBUG",
)


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


# -------------------------------------------------------------------------
# validate_config()
# -------------------------------------------------------------------------


class TestValidateConfig:
    """Tests for validate_config() -- endpoint and data dir checks."""

    def test_defaults_valid(self):
        validate_config(Config(access_token="t"))

    def test_http_endpoint_allowed(self):
        config = Config(access_token="t", api_url="http://localhost:9000/drive/v3")
        validate_config(config)
        assert config.api_url == "http://localhost:9000/drive/v3"

    @pytest.mark.parametrize("field", ["api_url", "upload_url"])
    def test_scheme_required(self, field):
        config = Config(access_token="t", **{field: "drive.example.com"})
        with pytest.raises(ValueError, match="must start with http:// or https://"):
            validate_config(config)

    def test_hostname_required(self):
        config = Config(access_token="t", upload_url="https://")
        with pytest.raises(ValueError, match="URL must include a hostname"):
            validate_config(config)

    def test_trailing_slash_and_whitespace_stripped(self):
        config = Config(access_token="t", api_url="  https://d.example.com/v3/ ")
        validate_config(config)
        assert config.api_url == "https://d.example.com/v3"

    def test_empty_data_dir(self):
        with pytest.raises(ValueError, match="Data directory cannot be empty"):
            validate_config(Config(access_token="t", data_dir="   "))

    def test_missing_token_only_warns(self, caplog):
        with caplog.at_level(logging.WARNING, logger="padsync.config"):
            validate_config(Config())
        assert "No access token configured" in caplog.text

    def test_token_file_counts_as_credentials(self, caplog):
        with caplog.at_level(logging.WARNING, logger="padsync.config"):
            validate_config(Config(token_file="/tmp/token"))
        assert "No access token" not in caplog.text


# -------------------------------------------------------------------------
# get_bool_env()
# -------------------------------------------------------------------------


class TestGetBoolEnv:
    def test_unset(self):
        assert get_bool_env("PADSYNC_DEBUG") is None

    @pytest.mark.parametrize("value", ["true", "1", "YES", "On"])
    def test_truthy(self, monkeypatch, value):
        monkeypatch.setenv("PADSYNC_DEBUG", value)
        assert get_bool_env("PADSYNC_DEBUG") is True

    @pytest.mark.parametrize("value", ["false", "0", "no", ""])
    def test_falsy(self, monkeypatch, value):
        monkeypatch.setenv("PADSYNC_DEBUG", value)
        assert get_bool_env("PADSYNC_DEBUG") is False


# -------------------------------------------------------------------------
# load_config()
# -------------------------------------------------------------------------


class TestLoadConfig:
    """Tests for load_config() precedence: CLI > env > YAML > default."""

    def test_defaults(self):
        config = load_config()

        assert config.access_token is None
        assert config.api_url == DEFAULT_API_URL
        assert config.data_dir == DEFAULT_DATA_DIR
        assert config.sync_interval == 300
        assert config.request_timeout == 60
        assert config.max_parallel_requests == 2
        assert config.debug is False

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("PADSYNC_ACCESS_TOKEN", "  env-token ")
        monkeypatch.setenv("PADSYNC_DATA_DIR", "/srv/pads")
        monkeypatch.setenv("PADSYNC_SYNC_INTERVAL", "0")
        monkeypatch.setenv("PADSYNC_DEBUG", "yes")

        config = load_config()

        assert config.access_token == "env-token"
        assert config.data_dir == "/srv/pads"
        assert config.sync_interval == 0
        assert config.debug is True

    def test_cli_overrides_env(self, monkeypatch):
        monkeypatch.setenv("PADSYNC_ACCESS_TOKEN", "env-token")
        monkeypatch.setenv("PADSYNC_DATA_DIR", "/env")

        config = load_config(access_token="cli-token", data_dir="/cli", debug=True)

        assert config.access_token == "cli-token"
        assert config.data_dir == "/cli"
        assert config.debug is True

    def test_yaml_fallbacks_below_env(self, monkeypatch):
        monkeypatch.setenv("PADSYNC_REQUEST_TIMEOUT", "20")
        fallbacks = {
            "access_token": "yaml-token",
            "token_file": "/yaml/token",
            "request_timeout": 90,
            "interval_seconds": 60,
            "debug": True,
        }

        config = load_config(yaml_fallbacks=fallbacks)

        assert config.access_token == "yaml-token"
        assert config.token_file == "/yaml/token"
        assert config.request_timeout == 20
        assert config.sync_interval == 60
        assert config.debug is True

    def test_env_debug_false_beats_yaml(self, monkeypatch):
        monkeypatch.setenv("PADSYNC_DEBUG", "false")
        assert load_config(yaml_fallbacks={"debug": True}).debug is False

    def test_data_dir_user_expanded(self, monkeypatch, tmp_path):
        monkeypatch.setenv("HOME", str(tmp_path))
        config = load_config(data_dir="~/pads")
        assert config.data_dir == str(tmp_path / "pads")

    def test_endpoint_from_env_validated(self, monkeypatch):
        monkeypatch.setenv("PADSYNC_API_URL", "https://drive.example.com/v3/")
        assert load_config().api_url == "https://drive.example.com/v3"

    def test_bad_endpoint_raises(self, monkeypatch):
        monkeypatch.setenv("PADSYNC_UPLOAD_URL", "ftp://drive.example.com")
        with pytest.raises(ValueError, match="upload_url"):
            load_config()

    @pytest.mark.parametrize(
        "key,value",
        [
            ("PADSYNC_SYNC_INTERVAL", "-1"),
            ("PADSYNC_SYNC_INTERVAL", "86401"),
            ("PADSYNC_REQUEST_TIMEOUT", "0"),
            ("PADSYNC_MAX_PARALLEL_REQUESTS", "17"),
            ("PADSYNC_MAX_PARALLEL_REQUESTS", "many"),
        ],
    )
    def test_numeric_out_of_range(self, monkeypatch, key, value):
        monkeypatch.setenv(key, value)
        with pytest.raises(ValueError, match=f"Invalid {key}"):
            load_config()

    def test_numeric_yaml_value_names_key(self):
        with pytest.raises(ValueError, match="Invalid request_timeout '0'"):
            load_config(yaml_fallbacks={"request_timeout": 0})

    def test_numeric_bounds_inclusive(self, monkeypatch):
        monkeypatch.setenv("PADSYNC_MAX_PARALLEL_REQUESTS", "16")
        monkeypatch.setenv("PADSYNC_REQUEST_TIMEOUT", "1")
        config = load_config()
        assert config.max_parallel_requests == 16
        assert config.request_timeout == 1
