"""Client wiring for the configure job.

Two handles are built:
1. The primary client, for the cluster being configured. It authenticates
   with the root token from the bundle when one is present.
2. The federation-server client. When the bundle names an external
   enterprise server (``enterpriseServerAddress``) a second client is built for
   it, using ``enterpriseRootToken`` if present. Otherwise the primary client
   is reused, which covers the embedded and single-cluster topologies.

Steps receive both handles and ignore the one they don't need.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from . import loader as keys
from .client import ControlPlaneClient, build_ssl_context
from .config import Config, normalize_address
from .loader import ConfigLoader, StepSkipped
from .steps import StepContext

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClientPair:
    """Primary and federation-server clients. May be the same object."""

    client: ControlPlaneClient
    enterprise_client: ControlPlaneClient

    @property
    def is_federated(self) -> bool:
        return self.enterprise_client is not self.client

    def context(self, loader: ConfigLoader) -> StepContext:
        return StepContext(
            loader=loader,
            client=self.client,
            enterprise_client=self.enterprise_client,
        )

    async def close(self) -> None:
        await self.client.close()
        if self.is_federated:
            await self.enterprise_client.close()


def _optional_text(loader: ConfigLoader, key: str, purpose: str) -> str | None:
    try:
        return loader.read_text(key) or None
    except StepSkipped as e:
        logger.info(f"Not using {purpose}", extra={"reason": str(e)})
        return None


def build_client(config: Config, base_url: str, auth_token: str | None) -> ControlPlaneClient:
    return ControlPlaneClient(
        base_url,
        auth_token=auth_token,
        verify=build_ssl_context(config.ca_path),
        timeout=config.request_timeout_seconds,
    )


def connect_clients(config: Config, loader: ConfigLoader) -> ClientPair:
    """Build the client handles for a run.

    Raises:
        ConfigLoadError: If a present token or address entry cannot be read.
        ConfigurationError: If the enterprise server address is invalid or the
            CA certificates cannot be loaded.
    """
    root_token = _optional_text(loader, keys.ROOT_TOKEN, "auth token")
    enterprise_address = _optional_text(
        loader, keys.ENTERPRISE_SERVER_ADDRESS, "external enterprise server"
    )

    enterprise_url: str | None = None
    enterprise_token: str | None = None
    if enterprise_address is not None:
        enterprise_url = normalize_address(enterprise_address)
        enterprise_token = _optional_text(
            loader, keys.ENTERPRISE_ROOT_TOKEN, "enterprise auth token"
        )

    client = build_client(config, config.base_url, root_token)
    logger.info(
        "Connecting to cluster",
        extra={"address": config.base_url, "authenticated": client.authenticated},
    )
    if enterprise_url is None:
        return ClientPair(client=client, enterprise_client=client)

    enterprise_client = build_client(config, enterprise_url, enterprise_token)
    logger.info(
        "Connecting to enterprise server",
        extra={"address": enterprise_url, "authenticated": enterprise_client.authenticated},
    )
    return ClientPair(client=client, enterprise_client=enterprise_client)
