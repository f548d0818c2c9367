"""Control-plane admin API client.

Each RPC is a JSON POST to ``{base_url}/{service}/{method}``. The caller's
token travels in the ``authn-token`` header. Error responses carry a JSON body
``{"code": ..., "message": ...}``.

Reconcilers rely on two idempotence signals being distinguishable from other
failures:
- DuplicateKeyError: a create call found an existing resource with that id
- AlreadyActiveError: an activation call found the subsystem already active

Everything else surfaces as ControlPlaneError.
"""

from __future__ import annotations

import logging
import ssl
from pathlib import Path
from typing import Any

import httpx

from .config import ConfigurationError
from .models import (
    AuthConfig,
    EnterpriseCluster,
    EnterpriseConfig,
    IdentityServerConfig,
    IDPConnector,
    OIDCClient,
)

logger = logging.getLogger(__name__)

AUTH_TOKEN_HEADER = "authn-token"

CODE_ALREADY_EXISTS = "already_exists"

# Service names on the wire
LICENSE_SERVICE = "license_v2.API"
ENTERPRISE_SERVICE = "enterprise_v2.API"
AUTH_SERVICE = "auth_v2.API"
IDENTITY_SERVICE = "identity_v2.API"
PFS_SERVICE = "pfs_v2.API"
PPS_SERVICE = "pps_v2.API"

CLUSTER_RESOURCE: dict[str, str] = {"type": "CLUSTER"}


class ControlPlaneError(Exception):
    """Base exception for control-plane API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        code: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code


class DuplicateKeyError(ControlPlaneError):
    """A create call collided with an existing resource id."""

    pass


class AlreadyActiveError(ControlPlaneError):
    """An activation call found the subsystem already active."""

    pass


def build_ssl_context(ca_path: Path | None) -> ssl.SSLContext | bool:
    """Build the TLS verification setting for a CA file or hashed-cert directory.

    Raises:
        ConfigurationError: If the CA certificates cannot be loaded.
    """
    if ca_path is None:
        return True
    try:
        if ca_path.is_dir():
            return ssl.create_default_context(capath=str(ca_path))
        return ssl.create_default_context(cafile=str(ca_path))
    except OSError as e:
        # ssl.SSLError is an OSError
        raise ConfigurationError(f"Failed to load CA certificates from {ca_path}: {e}") from e


class ControlPlaneClient:
    """Async client for the control-plane admin RPCs used by the configure job."""

    def __init__(
        self,
        base_url: str,
        *,
        auth_token: str | None = None,
        verify: ssl.SSLContext | bool = True,
        timeout: float = 60.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client. No connection is made until the first call.

        Args:
            base_url: HTTP base URL of the control plane
            auth_token: Token sent with every request, if any
            verify: TLS verification setting
            timeout: Per-request timeout in seconds
            transport: Custom transport (tests use httpx.MockTransport)
        """
        self.base_url = base_url.rstrip("/")
        self._auth_token = auth_token
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            verify=verify,
            timeout=httpx.Timeout(timeout),
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    @property
    def authenticated(self) -> bool:
        return bool(self._auth_token)

    async def close(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> ControlPlaneClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _call(
        self,
        service: str,
        method: str,
        payload: dict[str, Any] | None = None,
        *,
        conflict_error: type[ControlPlaneError] = DuplicateKeyError,
    ) -> dict[str, Any]:
        """Invoke one RPC and return the decoded response body.

        Args:
            service: Service name, e.g. ``license_v2.API``
            method: RPC name, e.g. ``AddCluster``
            payload: Request message
            conflict_error: Error raised for an ``already_exists`` response

        Raises:
            ControlPlaneError: On transport failure or any error response.
        """
        path = f"/{service}/{method}"
        headers = {AUTH_TOKEN_HEADER: self._auth_token} if self._auth_token else None

        try:
            response = await self._http.post(path, json=payload or {}, headers=headers)
        except httpx.HTTPError as e:
            logger.error(f"Request to {path} failed: {e}")
            raise ControlPlaneError(f"{service}/{method} request failed: {e}") from e

        if response.is_success:
            if not response.content:
                return {}
            try:
                body = response.json()
            except ValueError as e:
                raise ControlPlaneError(
                    f"{service}/{method} returned invalid JSON",
                    status_code=response.status_code,
                ) from e
            return body if isinstance(body, dict) else {}

        code: str | None = None
        message = response.text
        try:
            error_body = response.json()
        except ValueError:
            error_body = None
        if isinstance(error_body, dict):
            code = error_body.get("code")
            message = error_body.get("message") or message

        error_cls = conflict_error if code == CODE_ALREADY_EXISTS else ControlPlaneError
        raise error_cls(
            f"{service}/{method} failed ({response.status_code}): {message}",
            status_code=response.status_code,
            code=code,
        )

    # License / federation

    async def activate_license(self, activation_code: str) -> None:
        await self._call(LICENSE_SERVICE, "Activate", {"activation_code": activation_code})

    async def add_cluster(self, cluster: EnterpriseCluster) -> None:
        await self._call(LICENSE_SERVICE, "AddCluster", cluster.to_request())

    async def update_cluster(self, cluster: EnterpriseCluster) -> None:
        await self._call(LICENSE_SERVICE, "UpdateCluster", cluster.to_update_request())

    async def activate_enterprise(self, config: EnterpriseConfig) -> None:
        await self._call(ENTERPRISE_SERVICE, "Activate", config.to_request())

    async def get_enterprise_state(self) -> str:
        body = await self._call(ENTERPRISE_SERVICE, "GetState")
        return str(body.get("state", "NONE"))

    # Auth

    async def activate_auth(self, root_token: str) -> None:
        await self._call(
            AUTH_SERVICE,
            "Activate",
            {"root_token": root_token},
            conflict_error=AlreadyActiveError,
        )

    async def activate_pfs_auth(self) -> None:
        await self._call(PFS_SERVICE, "ActivateAuth", conflict_error=AlreadyActiveError)

    async def activate_pps_auth(self) -> None:
        await self._call(PPS_SERVICE, "ActivateAuth", conflict_error=AlreadyActiveError)

    async def who_am_i(self) -> str:
        body = await self._call(AUTH_SERVICE, "WhoAmI")
        return str(body.get("username", ""))

    async def set_auth_configuration(self, config: AuthConfig) -> None:
        await self._call(AUTH_SERVICE, "SetConfiguration", {"configuration": config.to_request()})

    async def get_cluster_role_binding(self) -> dict[str, set[str]]:
        """Return the cluster role binding as principal -> role names."""
        body = await self._call(AUTH_SERVICE, "GetRoleBinding", {"resource": CLUSTER_RESOURCE})
        entries = (body.get("binding") or {}).get("entries") or {}
        return {
            principal: {role for role, granted in (value.get("roles") or {}).items() if granted}
            for principal, value in entries.items()
        }

    async def modify_cluster_role_binding(self, principal: str, roles: list[str]) -> None:
        """Replace a principal's cluster roles. An empty list clears the principal."""
        await self._call(
            AUTH_SERVICE,
            "ModifyRoleBinding",
            {"resource": CLUSTER_RESOURCE, "principal": principal, "roles": list(roles)},
        )

    # Identity service

    async def set_identity_server_config(self, config: IdentityServerConfig) -> None:
        await self._call(IDENTITY_SERVICE, "SetIdentityServerConfig", {"config": config.to_request()})

    async def create_oidc_client(self, client: OIDCClient) -> None:
        await self._call(IDENTITY_SERVICE, "CreateOIDCClient", {"client": client.to_request()})

    async def update_oidc_client(self, client: OIDCClient) -> None:
        await self._call(IDENTITY_SERVICE, "UpdateOIDCClient", {"client": client.to_request()})

    async def create_idp_connector(self, connector: IDPConnector) -> None:
        await self._call(
            IDENTITY_SERVICE, "CreateIDPConnector", {"connector": connector.to_request()}
        )

    async def update_idp_connector(self, connector: IDPConnector) -> None:
        await self._call(
            IDENTITY_SERVICE, "UpdateIDPConnector", {"connector": connector.to_request()}
        )

    async def list_idp_connectors(self) -> list[IDPConnector]:
        body = await self._call(IDENTITY_SERVICE, "ListIDPConnectors")
        return [IDPConnector.model_validate(c) for c in body.get("connectors") or []]
