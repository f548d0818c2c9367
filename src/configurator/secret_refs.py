"""Environment-variable indirection for secret fields.

Secret values in the configuration bundle may be written as ``$NAME``, meaning
"use the value of environment variable NAME". This keeps credentials that are
injected into the pod environment out of the mounted bundle.

Only fields documented as indirection-capable are passed through
resolve_env_reference(). Other strings are used literally, so a literal value
that happens to start with ``$`` stays unambiguous everywhere else.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping

logger = logging.getLogger(__name__)

ENV_REFERENCE_PREFIX = "$"


class UnresolvedSecretError(Exception):
    """Raised when a ``$NAME`` reference names an unset environment variable."""

    def __init__(self, variable: str) -> None:
        super().__init__(f"expected environment variable {variable!r} is not set")
        self.variable = variable


def is_env_reference(value: str | None) -> bool:
    """Check whether a value uses the ``$NAME`` indirection form."""
    return bool(value) and value.startswith(ENV_REFERENCE_PREFIX)


def resolve_env_reference(
    value: str | None,
    environ: Mapping[str, str] | None = None,
) -> str | None:
    """Resolve a possibly-indirect secret value.

    Args:
        value: Literal value or ``$NAME`` reference. None passes through.
        environ: Environment to resolve against (default: os.environ).

    Returns:
        The referenced variable's value, or the literal value unchanged.

    Raises:
        UnresolvedSecretError: If the referenced variable is not set.
    """
    if value is None or not is_env_reference(value):
        return value

    variable = value[len(ENV_REFERENCE_PREFIX) :]
    env = os.environ if environ is None else environ
    if variable not in env:
        raise UnresolvedSecretError(variable)

    # SECURITY: log the variable name only, never the resolved value
    logger.debug("Resolved secret reference", extra={"env_var": variable})
    return env[variable]
