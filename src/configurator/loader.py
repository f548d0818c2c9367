"""Configuration bundle loading with validation.

The bundle is a directory of named entries (usually a mounted Secret). Each
entry is either a raw scalar (tokens, license key) or a YAML document.

A missing entry is not an error: it means the step that owns it has nothing
to do. This is reported as StepSkipped so the pipeline can tell it apart from
real failures, which are raised as ConfigLoadError.

SECURITY: File reads enforce a size limit. Scalar values are never logged.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, TypeVar

import yaml
from pydantic import BaseModel, TypeAdapter, ValidationError

from .config import MAX_CONFIG_FILE_SIZE_BYTES
from .secret_refs import resolve_env_reference

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Entry names inside the configuration root
LICENSE_KEY = "licenseKey"
ENTERPRISE_SECRET = "enterpriseSecret"
ENTERPRISE_CLUSTERS = "enterpriseClusters"
ENTERPRISE_CONFIG = "enterpriseConfig"
ROOT_TOKEN = "rootToken"
ENTERPRISE_ROOT_TOKEN = "enterpriseRootToken"
ENTERPRISE_SERVER_ADDRESS = "enterpriseServerAddress"
IDENTITY_SERVICE_CONFIG = "identityServiceConfig"
OIDC_CLIENTS = "oidcClients"
AUTH_CONFIG = "authConfig"
IDPS = "idps"
CLUSTER_ROLE_BINDINGS = "clusterRoleBindings"


class StepSkipped(Exception):
    """Raised when a configuration entry is absent.

    Not a failure: the step owning the entry is skipped and the run continues.
    """

    def __init__(self, key: str, path: Path) -> None:
        super().__init__(f"no file {path}")
        self.key = key
        self.path = path


class ConfigLoadError(Exception):
    """Raised when a present configuration entry cannot be read or decoded."""

    pass


class ConfigLoader:
    """Reads named entries from a configuration root directory."""

    def __init__(self, root: Path) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        return self._root / key

    def exists(self, key: str) -> bool:
        return self.path_for(key).is_file()

    def read(self, key: str) -> bytes:
        """Read the raw bytes of an entry.

        Raises:
            StepSkipped: If the entry does not exist.
            ConfigLoadError: On any other I/O failure or if the entry is too large.
        """
        path = self.path_for(key)

        try:
            file_size = path.stat().st_size
        except FileNotFoundError as e:
            raise StepSkipped(key, path) from e
        except OSError as e:
            raise ConfigLoadError(f"Failed to stat config entry {path}: {e}") from e

        # SECURITY: Check file size before reading to prevent DoS
        if file_size > MAX_CONFIG_FILE_SIZE_BYTES:
            raise ConfigLoadError(
                f"Config entry exceeds maximum size of {MAX_CONFIG_FILE_SIZE_BYTES} bytes: {path}"
            )

        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            # Removed between stat and read (projected volumes are swapped atomically)
            raise StepSkipped(key, path) from e
        except OSError as e:
            raise ConfigLoadError(f"Failed to read config entry {path}: {e}") from e

    def read_text(self, key: str, *, resolve: bool = False) -> str:
        """Read a scalar entry as text with surrounding whitespace stripped.

        Args:
            key: Entry name.
            resolve: Treat the value as a possible ``$NAME`` secret reference.
        """
        data = self.read(key)
        try:
            value = data.decode("utf-8").strip()
        except UnicodeDecodeError as e:
            raise ConfigLoadError(f"Config entry {self.path_for(key)} is not valid UTF-8") from e

        if resolve:
            resolved = resolve_env_reference(value)
            return resolved if resolved is not None else ""
        return value

    def load_yaml(self, key: str, shape: type[T] | TypeAdapter[T]) -> T:
        """Load a YAML entry and validate it against a model or type adapter.

        Raises:
            StepSkipped: If the entry does not exist.
            ConfigLoadError: If the YAML is malformed, empty, or fails validation.
        """
        path = self.path_for(key)
        data = self.read(key)

        try:
            raw_data: Any = yaml.safe_load(data)
        except yaml.YAMLError as e:
            raise ConfigLoadError(f"Invalid YAML in {path}: {e}") from e

        if raw_data is None:
            raise ConfigLoadError(f"Config entry is empty: {path}")

        try:
            if isinstance(shape, TypeAdapter):
                value = shape.validate_python(raw_data)
            elif isinstance(shape, type) and issubclass(shape, BaseModel):
                value = shape.model_validate(raw_data)
            else:
                value = TypeAdapter(shape).validate_python(raw_data)
        except ValidationError as e:
            # Format Pydantic validation errors for readability
            errors = []
            for error in e.errors():
                loc = ".".join(str(x) for x in error["loc"])
                msg = error["msg"]
                errors.append(f"  - {loc}: {msg}")

            error_list = "\n".join(errors)
            raise ConfigLoadError(f"Validation failed for {path}:\n{error_list}") from e

        logger.debug("Loaded config entry '%s' from %s", key, path)
        return value
