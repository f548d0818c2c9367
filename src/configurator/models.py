"""Pydantic models for the desired-state configuration bundle.

These models provide:
1. Type-safe YAML parsing
2. Validation at the boundary (fail fast, fail loudly)
3. Request payloads for the control-plane API

Models are frozen: a run loads each entry once and never mutates it. Secret
resolution produces a copy via with_resolved_secrets().
"""

from __future__ import annotations

import json
from typing import Annotated, Any

from pydantic import AfterValidator, BaseModel, Field, RootModel, TypeAdapter, field_validator

from .secret_refs import resolve_env_reference

# Principals with this prefix are built-in identities managed by the cluster
RESERVED_PRINCIPAL_PREFIX = "pach:"

DEFAULT_OIDC_SCOPES: tuple[str, ...] = ("email", "profile", "groups", "openid")

LOCALHOST_CLUSTER_ID = "localhost"
LOCALHOST_CLUSTER_ADDRESS = "grpc://localhost:1653"


class DesiredState(BaseModel):
    """Base for every desired-state value object."""

    model_config = {"extra": "ignore", "frozen": True, "populate_by_name": True}

    def to_request(self) -> dict[str, Any]:
        """Convert to the JSON payload sent to the control plane."""
        return self.model_dump(mode="json")


# =============================================================================
# Enterprise / federation
# =============================================================================


class EnterpriseCluster(DesiredState):
    """A cluster registered with the federation (license) server."""

    id: Annotated[str, Field(min_length=1)]
    address: str = ""
    user_address: str = ""
    secret: str = ""
    cluster_deployment_id: str = ""
    enterprise_server: bool = False

    def with_resolved_secrets(self) -> EnterpriseCluster:
        return self.model_copy(
            update={
                "secret": resolve_env_reference(self.secret),
                "cluster_deployment_id": resolve_env_reference(self.cluster_deployment_id),
            }
        )

    def to_update_request(self) -> dict[str, Any]:
        """Fields that can change on an already-registered cluster."""
        return {
            "id": self.id,
            "address": self.address,
            "user_address": self.user_address,
            "cluster_deployment_id": self.cluster_deployment_id,
        }

    @classmethod
    def localhost(cls, secret: str) -> EnterpriseCluster:
        """The embedded cluster used when the job's own cluster is the license server."""
        return cls(
            id=LOCALHOST_CLUSTER_ID,
            address=LOCALHOST_CLUSTER_ADDRESS,
            user_address=LOCALHOST_CLUSTER_ADDRESS,
            secret=secret,
            enterprise_server=True,
        )


class EnterpriseConfig(DesiredState):
    """Activation request pointing a cluster at its federation server."""

    id: Annotated[str, Field(min_length=1)]
    license_server: Annotated[str, Field(min_length=1)]
    secret: str = ""

    def with_resolved_secrets(self) -> EnterpriseConfig:
        return self.model_copy(update={"secret": resolve_env_reference(self.secret)})

    @classmethod
    def localhost(cls, secret: str) -> EnterpriseConfig:
        return cls(id=LOCALHOST_CLUSTER_ID, license_server=LOCALHOST_CLUSTER_ADDRESS, secret=secret)


# =============================================================================
# Identity service
# =============================================================================


class IdentityServerConfig(DesiredState):
    """Identity service settings. Applied with overwrite semantics."""

    issuer: Annotated[str, Field(min_length=1)]
    id_token_expiry: str | None = None
    rotation_token_expiry: str | None = None


class OIDCClient(DesiredState):
    """An OIDC client registered with the identity service."""

    id: Annotated[str, Field(min_length=1)]
    name: str = ""
    secret: str = ""
    redirect_uris: list[str] = Field(default_factory=list)
    trusted_peers: list[str] = Field(default_factory=list)

    def with_resolved_secrets(self) -> OIDCClient:
        return self.model_copy(update={"secret": resolve_env_reference(self.secret)})


class IDPConnector(DesiredState):
    """An upstream identity provider connector.

    config_version is owned by the control plane. The value in the bundle is
    never sent; reconciliation always derives it from the stored connector.
    """

    id: Annotated[str, Field(min_length=1)]
    name: str = ""
    type: Annotated[str, Field(min_length=1)]
    json_config: str = Field("", alias="jsonConfig")
    config_version: int = Field(0, alias="configVersion", ge=0)

    @field_validator("json_config", mode="before")
    @classmethod
    def encode_mapping_config(cls, v: Any) -> Any:
        # YAML authors may inline the connector config as a mapping
        if isinstance(v, dict):
            return json.dumps(v, sort_keys=True)
        return v

    def content_key(self) -> dict[str, Any]:
        """Comparable content, excluding the version counter.

        The JSON sub-config is compared structurally when it parses, so
        whitespace and key order differences don't trigger an update.
        """
        content = self.model_dump(exclude={"config_version"})
        try:
            content["json_config"] = json.loads(self.json_config) if self.json_config else None
        except ValueError:
            pass
        return content

    def same_content(self, other: IDPConnector) -> bool:
        return self.content_key() == other.content_key()

    def with_version(self, version: int) -> IDPConnector:
        return self.model_copy(update={"config_version": version})


# =============================================================================
# Auth
# =============================================================================


class AuthConfig(DesiredState):
    """OIDC configuration of the auth service. Applied with overwrite semantics."""

    issuer: Annotated[str, Field(min_length=1)]
    client_id: Annotated[str, Field(min_length=1)]
    client_secret: str = ""
    redirect_uri: str = ""
    localhost_issuer: bool = False
    require_email_verified: bool = False
    user_accessible_issuer_host: str = ""
    scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_OIDC_SCOPES))

    def with_resolved_secrets(self) -> AuthConfig:
        return self.model_copy(
            update={"client_secret": resolve_env_reference(self.client_secret)}
        )


class RoleBindings(RootModel[dict[str, list[str]]]):
    """Complete desired mapping of principal to cluster roles."""

    model_config = {"frozen": True}

    @field_validator("root")
    @classmethod
    def validate_entries(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        for principal, roles in v.items():
            if not principal:
                raise ValueError("role binding principal cannot be empty")
            if any(not role for role in roles):
                raise ValueError(f"empty role name for principal {principal!r}")
        return v


def unique_ids(items: list[Any]) -> list[Any]:
    """Reject lists that name the same id twice."""
    seen: set[str] = set()
    duplicates: list[str] = []
    for item in items:
        if item.id in seen and item.id not in duplicates:
            duplicates.append(item.id)
        seen.add(item.id)
    if duplicates:
        raise ValueError(f"duplicate ids: {duplicates}")
    return items


# Shapes decoded by the loader for list-valued entries; ids are keys, so each must be unique
ENTERPRISE_CLUSTERS = TypeAdapter(Annotated[list[EnterpriseCluster], AfterValidator(unique_ids)])
OIDC_CLIENTS = TypeAdapter(Annotated[list[OIDCClient], AfterValidator(unique_ids)])
IDP_CONNECTORS = TypeAdapter(Annotated[list[IDPConnector], AfterValidator(unique_ids)])
