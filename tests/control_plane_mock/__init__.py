"""In-memory control plane for testing the configure job.

Provides a fake with the same async surface as ControlPlaneClient, backed by
plain dictionaries, so reconcilers and the full pipeline can be exercised
without a running cluster.

Key Features:
- Create calls raise DuplicateKeyError on an existing id
- Activation calls raise AlreadyActiveError when already active
- IDP connector updates enforce the stored-version-plus-one contract
- Every call is recorded for assertions on mutating call counts
- Error injection per method

Usage:
    plane = FakeControlPlane()
    await sync_oidc_clients(plane, clients)
    assert plane.mutating_calls == ["create_oidc_client"]
"""

from .bundle import write_bundle
from .control_plane import READ_ONLY_METHODS, FakeControlPlane

__all__ = [
    "READ_ONLY_METHODS",
    "FakeControlPlane",
    "write_bundle",
]
