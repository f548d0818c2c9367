"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for control_plane_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from configurator.loader import ConfigLoader  # noqa: E402
from configurator.steps import StepContext  # noqa: E402
from control_plane_mock import FakeControlPlane, write_bundle  # noqa: E402


@pytest.fixture
def config_root(tmp_path: Path) -> Path:
    """Empty configuration bundle directory."""
    root = tmp_path / "config"
    root.mkdir()
    return root


@pytest.fixture
def loader(config_root: Path) -> ConfigLoader:
    return ConfigLoader(config_root)


@pytest.fixture
def control_plane() -> FakeControlPlane:
    return FakeControlPlane()


@pytest.fixture
def step_context(loader: ConfigLoader, control_plane: FakeControlPlane) -> StepContext:
    """Single-cluster topology: the primary client is also the enterprise client."""
    return StepContext(loader=loader, client=control_plane, enterprise_client=control_plane)


@pytest.fixture
def bundle(config_root: Path):
    """Write entries into the configuration bundle."""

    def _write(**entries: object) -> Path:
        write_bundle(config_root, entries)
        return config_root

    return _write
