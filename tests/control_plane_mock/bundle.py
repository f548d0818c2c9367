"""Helpers for writing configuration bundles in tests."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path

import yaml


def write_bundle(root: Path, entries: Mapping[str, object]) -> None:
    """Write entries under root. Strings are written raw, everything else as YAML."""
    for key, value in entries.items():
        path = root / key
        if isinstance(value, str):
            path.write_text(value, encoding="utf-8")
        else:
            path.write_text(yaml.safe_dump(value), encoding="utf-8")
