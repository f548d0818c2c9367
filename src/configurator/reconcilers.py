"""Create-or-update reconciliation per resource kind.

Each function takes an already-loaded desired state and drives the control
plane towards it with the fewest mutating calls it can:

- list kinds (clusters, OIDC clients, IDP connectors) reconcile by id
- create first, and fall back to update on DuplicateKeyError
- IDP connectors are diffed against one listing so unchanged connectors cost
  no calls; their config version always comes from the stored connector
- role bindings are a set reconciliation that never touches reserved
  (``pach:``) principals

Errors other than the recognized idempotence signals propagate unchanged.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from .client import AlreadyActiveError, ControlPlaneClient, DuplicateKeyError
from .models import (
    RESERVED_PRINCIPAL_PREFIX,
    AuthConfig,
    EnterpriseCluster,
    EnterpriseConfig,
    IdentityServerConfig,
    IDPConnector,
    OIDCClient,
    RoleBindings,
)

logger = logging.getLogger(__name__)


@dataclass
class SyncSummary:
    """Counts of what a reconciliation did."""

    created: int = 0
    updated: int = 0
    unchanged: int = 0
    removed: int = 0

    @property
    def mutations(self) -> int:
        return self.created + self.updated + self.removed

    def as_log_fields(self) -> dict[str, int]:
        return {
            "created": self.created,
            "updated": self.updated,
            "unchanged": self.unchanged,
            "removed": self.removed,
        }


# =============================================================================
# License / federation
# =============================================================================


async def activate_license(client: ControlPlaneClient, activation_code: str) -> None:
    """Activate the enterprise license. Repeat activation is accepted upstream."""
    await client.activate_license(activation_code)
    logger.info("License activated")


async def register_embedded_enterprise(client: ControlPlaneClient, secret: str) -> None:
    """Register the job's own cluster as its federation server.

    Synthesizes the same cluster and activation shapes the explicit federation
    entries would provide, then applies them on the same code path.
    """
    cluster = EnterpriseCluster.localhost(secret)
    try:
        await client.add_cluster(cluster)
    except DuplicateKeyError:
        logger.debug("Embedded enterprise cluster already registered")

    await activate_enterprise(client, EnterpriseConfig.localhost(secret))


async def sync_enterprise_clusters(
    client: ControlPlaneClient,
    clusters: Iterable[EnterpriseCluster],
) -> SyncSummary:
    summary = SyncSummary()

    for desired in clusters:
        cluster = desired.with_resolved_secrets()
        try:
            await client.add_cluster(cluster)
            summary.created += 1
        except DuplicateKeyError:
            await client.update_cluster(cluster)
            summary.updated += 1

    return summary


async def activate_enterprise(client: ControlPlaneClient, config: EnterpriseConfig) -> None:
    """Point the cluster at its federation server and report the resulting state."""
    resolved = config.with_resolved_secrets()
    await client.activate_enterprise(resolved)

    state = await client.get_enterprise_state()
    logger.info(
        "Enterprise activated",
        extra={"cluster_id": resolved.id, "license_server": resolved.license_server, "state": state},
    )


# =============================================================================
# Auth
# =============================================================================


async def activate_auth(client: ControlPlaneClient, root_token: str) -> bool:
    """Activate authentication with the given root token.

    On first activation the storage (PFS) and scheduling (PPS) subsystems are
    told to enforce auth as well. When auth is already active nothing else is
    called.

    Returns:
        True if this call activated auth, False if it was already active.
    """
    try:
        await client.activate_auth(root_token)
    except AlreadyActiveError:
        logger.info("Authentication already active")
        return False

    for activate in (client.activate_pfs_auth, client.activate_pps_auth):
        try:
            await activate()
        except AlreadyActiveError:
            pass

    principal = await client.who_am_i()
    logger.info("Authentication activated", extra={"principal": principal})
    return True


async def configure_auth(client: ControlPlaneClient, config: AuthConfig) -> None:
    resolved = config.with_resolved_secrets()
    await client.set_auth_configuration(resolved)
    logger.info("Auth configuration applied", extra={"issuer": resolved.issuer})


async def sync_role_bindings(client: ControlPlaneClient, desired: RoleBindings) -> SyncSummary:
    """Make the cluster role binding exactly match the desired mapping.

    Principals absent from the mapping are cleared, and every desired principal
    is rewritten in full. Reserved principals are never touched.
    """
    summary = SyncSummary()
    existing = await client.get_cluster_role_binding()
    wanted = desired.root

    for principal in sorted(existing):
        if principal.startswith(RESERVED_PRINCIPAL_PREFIX):
            continue
        if principal not in wanted:
            await client.modify_cluster_role_binding(principal, [])
            summary.removed += 1

    for principal, roles in wanted.items():
        if principal.startswith(RESERVED_PRINCIPAL_PREFIX):
            logger.warning(
                "Skipping role binding for reserved principal",
                extra={"principal": principal},
            )
            continue
        await client.modify_cluster_role_binding(principal, roles)
        if principal in existing:
            summary.updated += 1
        else:
            summary.created += 1

    return summary


# =============================================================================
# Identity service
# =============================================================================


async def configure_identity_service(
    client: ControlPlaneClient, config: IdentityServerConfig
) -> None:
    await client.set_identity_server_config(config)
    logger.info("Identity service configured", extra={"issuer": config.issuer})


async def sync_oidc_clients(
    client: ControlPlaneClient,
    clients: Iterable[OIDCClient],
) -> SyncSummary:
    summary = SyncSummary()

    for desired in clients:
        oidc_client = desired.with_resolved_secrets()
        try:
            await client.create_oidc_client(oidc_client)
            summary.created += 1
        except DuplicateKeyError:
            await client.update_oidc_client(oidc_client)
            summary.updated += 1

    return summary


async def sync_idp_connectors(
    client: ControlPlaneClient,
    connectors: Iterable[IDPConnector],
) -> SyncSummary:
    """Create or update IDP connectors against a single listing of the stored ones.

    The version in the bundle is ignored: new connectors start at 0, changed
    connectors get the stored version plus one, and unchanged connectors are
    left alone. A create that collides with a connector added after the
    listing falls back to the same diff against a fresh listing.
    """
    summary = SyncSummary()
    existing = {c.id: c for c in await client.list_idp_connectors()}

    for desired in connectors:
        stored = existing.get(desired.id)
        if stored is None:
            try:
                await client.create_idp_connector(desired.with_version(0))
                summary.created += 1
                continue
            except DuplicateKeyError:
                # Created since the listing; re-read for its stored version
                existing = {c.id: c for c in await client.list_idp_connectors()}
                stored = existing.get(desired.id)
                if stored is None:
                    raise

        if stored.same_content(desired):
            summary.unchanged += 1
        else:
            await client.update_idp_connector(desired.with_version(stored.config_version + 1))
            summary.updated += 1

    return summary
