"""The fixed, ordered list of configure steps.

Order matters:
- the license must be active before federation can be set up
- federation clusters must exist before a cluster is activated against one
- auth must be active before auth config, OIDC, IDP and role binding changes
  mean anything (role bindings need an authenticated principal)

Each step loads its own entry from the bundle and hands the result to its
reconciler. A missing entry raises StepSkipped from the loader.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from . import loader as keys
from .client import ControlPlaneClient
from .loader import ConfigLoader
from .models import (
    ENTERPRISE_CLUSTERS,
    IDP_CONNECTORS,
    OIDC_CLIENTS,
    AuthConfig,
    EnterpriseConfig,
    IdentityServerConfig,
    RoleBindings,
)
from .reconcilers import (
    SyncSummary,
    activate_auth,
    activate_enterprise,
    activate_license,
    configure_auth,
    configure_identity_service,
    register_embedded_enterprise,
    sync_enterprise_clusters,
    sync_idp_connectors,
    sync_oidc_clients,
    sync_role_bindings,
)


@dataclass(frozen=True)
class StepContext:
    """Everything a step may use. Read-only for the whole run.

    enterprise_client talks to the federation server. Without an external
    federation server it is the same object as client.
    """

    loader: ConfigLoader
    client: ControlPlaneClient
    enterprise_client: ControlPlaneClient


StepFn = Callable[[StepContext], Awaitable[SyncSummary | None]]


@dataclass(frozen=True)
class Step:
    name: str
    fn: StepFn


async def license_step(ctx: StepContext) -> None:
    code = ctx.loader.read_text(keys.LICENSE_KEY, resolve=True)
    await activate_license(ctx.enterprise_client, code)


async def enterprise_secret_step(ctx: StepContext) -> None:
    secret = ctx.loader.read_text(keys.ENTERPRISE_SECRET, resolve=True)
    await register_embedded_enterprise(ctx.enterprise_client, secret)


async def enterprise_clusters_step(ctx: StepContext) -> SyncSummary:
    clusters = ctx.loader.load_yaml(keys.ENTERPRISE_CLUSTERS, ENTERPRISE_CLUSTERS)
    return await sync_enterprise_clusters(ctx.enterprise_client, clusters)


async def enterprise_config_step(ctx: StepContext) -> None:
    config = ctx.loader.load_yaml(keys.ENTERPRISE_CONFIG, EnterpriseConfig)
    await activate_enterprise(ctx.client, config)


async def activate_auth_step(ctx: StepContext) -> None:
    root_token = ctx.loader.read_text(keys.ROOT_TOKEN)
    await activate_auth(ctx.client, root_token)


async def identity_service_step(ctx: StepContext) -> None:
    config = ctx.loader.load_yaml(keys.IDENTITY_SERVICE_CONFIG, IdentityServerConfig)
    await configure_identity_service(ctx.client, config)


async def oidc_clients_step(ctx: StepContext) -> SyncSummary:
    clients = ctx.loader.load_yaml(keys.OIDC_CLIENTS, OIDC_CLIENTS)
    return await sync_oidc_clients(ctx.enterprise_client, clients)


async def auth_config_step(ctx: StepContext) -> None:
    config = ctx.loader.load_yaml(keys.AUTH_CONFIG, AuthConfig)
    await configure_auth(ctx.client, config)


async def idps_step(ctx: StepContext) -> SyncSummary:
    connectors = ctx.loader.load_yaml(keys.IDPS, IDP_CONNECTORS)
    return await sync_idp_connectors(ctx.enterprise_client, connectors)


async def role_bindings_step(ctx: StepContext) -> SyncSummary:
    bindings = ctx.loader.load_yaml(keys.CLUSTER_ROLE_BINDINGS, RoleBindings)
    return await sync_role_bindings(ctx.client, bindings)


SYNC_STEPS: tuple[Step, ...] = (
    Step("license key", license_step),
    Step("enterprise secret", enterprise_secret_step),
    Step("sync enterprise clusters", enterprise_clusters_step),
    Step("configure enterprise", enterprise_config_step),
    Step("activate authentication", activate_auth_step),
    Step("configure identity service", identity_service_step),
    Step("sync oidc clients", oidc_clients_step),
    Step("configure auth", auth_config_step),
    Step("sync identity providers", idps_step),
    Step("sync cluster role bindings", role_bindings_step),
)
