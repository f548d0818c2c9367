"""Tests for configuration loading."""

import os
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import pytest

from configurator.config import (
    DEFAULT_ADDRESS,
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    Config,
    ConfigurationError,
    normalize_address,
)


class TestNormalizeAddress:
    """Tests for control-plane address normalization."""

    @pytest.mark.parametrize(
        ("address", "expected"),
        [
            ("grpc://pachd:1650", "http://pachd:1650"),
            ("grpcs://pachd.example.com:443", "https://pachd.example.com:443"),
            ("http://localhost:30650/", "http://localhost:30650"),
            ("https://pachd.example.com/api", "https://pachd.example.com/api"),
            ("  GRPC://pachd:1650  ", "http://pachd:1650"),
        ],
    )
    def test_supported_schemes(self, address: str, expected: str) -> None:
        assert normalize_address(address) == expected

    def test_unsupported_scheme(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            normalize_address("ftp://pachd:1650")

        assert "scheme" in str(exc_info.value)

    def test_missing_host(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            normalize_address("grpc://")

        assert "host" in str(exc_info.value)


class TestConfig:
    """Tests for Config class."""

    def test_defaults(self) -> None:
        """Test that defaults produce a valid configuration."""
        config = Config()

        assert config.config_root == Path("/pachConfig")
        assert config.address == DEFAULT_ADDRESS
        assert config.base_url == "http://pachd:1650"
        assert config.ca_path is None
        assert config.request_timeout_seconds == DEFAULT_REQUEST_TIMEOUT_SECONDS

    def test_invalid_address(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(address="pachd:1650")

        assert "PACHD_ADDRESS" in str(exc_info.value)

    def test_config_root_must_be_directory(self, tmp_path: Path) -> None:
        not_a_dir = tmp_path / "bundle"
        not_a_dir.write_text("oops")

        with pytest.raises(ConfigurationError) as exc_info:
            Config(config_root=not_a_dir)

        assert "CONFIG_ROOT" in str(exc_info.value)

    def test_missing_config_root_is_allowed(self, tmp_path: Path) -> None:
        """A missing bundle means every step is skipped, not a config error."""
        config = Config(config_root=tmp_path / "missing")

        assert not config.config_root.exists()

    def test_missing_ca_path(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(ca_path=tmp_path / "certs")

        assert "OPENSSL_DIR" in str(exc_info.value)

    def test_invalid_request_timeout(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(request_timeout_seconds=0)

        assert "REQUEST_TIMEOUT" in str(exc_info.value)

    def test_invalid_log_level(self) -> None:
        with pytest.raises(ConfigurationError) as exc_info:
            Config(log_level="LOUD")

        assert "LOG_LEVEL" in str(exc_info.value)

    def test_errors_are_collected(self) -> None:
        """Test that every validation error is reported at once."""
        with pytest.raises(ConfigurationError) as exc_info:
            Config(address="pachd", request_timeout_seconds=9999)

        message = str(exc_info.value)
        assert "PACHD_ADDRESS" in message
        assert "REQUEST_TIMEOUT" in message

    def test_replace_revalidates(self) -> None:
        with pytest.raises(ConfigurationError):
            replace(Config(), address="nope")

    def test_from_env(self, tmp_path: Path) -> None:
        """Test loading configuration from environment."""
        certs = tmp_path / "certs"
        certs.mkdir()

        env = {
            "CONFIG_ROOT": str(tmp_path),
            "PACHD_ADDRESS": "grpcs://pachd.example.com:443",
            "OPENSSL_DIR": str(certs),
            "REQUEST_TIMEOUT": "30",
            "LOG_LEVEL": "debug",
        }

        with patch.dict(os.environ, env, clear=True):
            config = Config.from_env()

        assert config.config_root == tmp_path
        assert config.base_url == "https://pachd.example.com:443"
        assert config.ca_path == certs
        assert config.request_timeout_seconds == 30
        assert config.log_level == "DEBUG"

    def test_from_env_defaults(self) -> None:
        with patch.dict(os.environ, {}, clear=True):
            config = Config.from_env()

        assert config.address == DEFAULT_ADDRESS
        assert config.ca_path is None

    def test_from_env_non_integer_timeout(self) -> None:
        with patch.dict(os.environ, {"REQUEST_TIMEOUT": "soon"}, clear=True):
            with pytest.raises(ConfigurationError) as exc_info:
                Config.from_env()

        assert "REQUEST_TIMEOUT must be an integer" in str(exc_info.value)
