"""Configuration management with validation.

The configure job reads its own settings from environment variables. Every
setting is validated at construction time so a misconfigured pod fails before
any call reaches the control plane.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from urllib.parse import urlparse


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Configuration constants with documented bounds
DEFAULT_CONFIG_ROOT = "/pachConfig"
DEFAULT_ADDRESS = "grpc://pachd:1650"

DEFAULT_REQUEST_TIMEOUT_SECONDS = 60
MIN_REQUEST_TIMEOUT_SECONDS = 1
MAX_REQUEST_TIMEOUT_SECONDS = 600

# Security constraints - enforced limits to prevent abuse
MAX_CONFIG_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max config entry

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# grpc-style addresses are accepted for compatibility with existing manifests
ADDRESS_SCHEMES: dict[str, str] = {
    "grpc": "http",
    "grpcs": "https",
    "http": "http",
    "https": "https",
}


def normalize_address(address: str) -> str:
    """Translate a control-plane address into the HTTP base URL used on the wire.

    Args:
        address: Address such as ``grpc://pachd:1650`` or ``https://pachd``.

    Returns:
        Base URL without a trailing slash.

    Raises:
        ConfigurationError: If the scheme is unsupported or the host is missing.
    """
    parsed = urlparse(address.strip())
    scheme = ADDRESS_SCHEMES.get(parsed.scheme.lower())
    if scheme is None:
        valid = sorted(ADDRESS_SCHEMES)
        raise ConfigurationError(f"address scheme must be one of {valid}: {address}")
    if not parsed.netloc:
        raise ConfigurationError(f"address must include a host: {address}")
    return f"{scheme}://{parsed.netloc}{parsed.path}".rstrip("/")


@dataclass(frozen=True)
class Config:
    """Job configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing mid-pipeline.
    """

    config_root: Path = field(default_factory=lambda: Path(DEFAULT_CONFIG_ROOT))
    address: str = DEFAULT_ADDRESS

    # Directory or bundle file holding trusted CA certificates
    ca_path: Path | None = None

    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        try:
            normalize_address(self.address)
        except ConfigurationError as e:
            errors.append(f"PACHD_ADDRESS is invalid: {e}")

        if self.config_root.exists() and not self.config_root.is_dir():
            errors.append(f"CONFIG_ROOT is not a directory: {self.config_root}")

        if self.ca_path is not None and not self.ca_path.exists():
            errors.append(f"OPENSSL_DIR does not exist: {self.ca_path}")

        if not (
            MIN_REQUEST_TIMEOUT_SECONDS
            <= self.request_timeout_seconds
            <= MAX_REQUEST_TIMEOUT_SECONDS
        ):
            errors.append(
                f"REQUEST_TIMEOUT must be between {MIN_REQUEST_TIMEOUT_SECONDS} "
                f"and {MAX_REQUEST_TIMEOUT_SECONDS} seconds"
            )

        if self.log_level not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def base_url(self) -> str:
        """HTTP base URL of the control plane."""
        return normalize_address(self.address)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            CONFIG_ROOT: Directory holding the configuration bundle (default: /pachConfig)
            PACHD_ADDRESS: Control-plane address (default: grpc://pachd:1650)
            OPENSSL_DIR: Trusted CA certificates, file or directory (default: unset)
            REQUEST_TIMEOUT: Per-request timeout in seconds (default: 60)
            LOG_LEVEL: Root log level (default: INFO)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        ca_path = os.environ.get("OPENSSL_DIR")

        return cls(
            config_root=Path(os.environ.get("CONFIG_ROOT", DEFAULT_CONFIG_ROOT)),
            address=os.environ.get("PACHD_ADDRESS", DEFAULT_ADDRESS),
            ca_path=Path(ca_path) if ca_path else None,
            request_timeout_seconds=get_int("REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
