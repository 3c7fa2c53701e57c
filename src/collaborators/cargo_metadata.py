# src/collaborators/cargo_metadata.py — v1
"""Dependency resolution through ``cargo metadata``."""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Any

from cratevault.collaborators.base import DependencyResolver
from cratevault.errors import ResolutionFailed, ToolchainMissing

logger = logging.getLogger(__name__)


class CargoMetadataResolver(DependencyResolver):
    """Runs ``cargo metadata --format-version 1`` in the member directory."""

    def __init__(
        self,
        cargo_executable: str = "cargo",
        all_features: bool = True,
        timeout: float | None = 600.0,
    ) -> None:
        self._cargo = cargo_executable
        self._all_features = all_features
        self._timeout = timeout

    def resolve(self, manifest_dir: Path) -> dict[str, Any]:
        args = [
            self._cargo,
            "metadata",
            "--format-version",
            "1",
            "--manifest-path",
            str(manifest_dir / "Cargo.toml"),
        ]
        if self._all_features:
            args.append("--all-features")
        try:
            result = subprocess.run(
                args, cwd=manifest_dir, capture_output=True, text=True, timeout=self._timeout
            )
        except FileNotFoundError as e:
            raise ToolchainMissing(f"cargo executable {self._cargo!r} not found") from e
        except subprocess.TimeoutExpired as e:
            raise ResolutionFailed(f"cargo metadata timed out after {self._timeout}s") from e

        if result.returncode != 0:
            raise ResolutionFailed(
                f"cargo metadata failed for {manifest_dir.name}: {result.stderr.strip()}",
                detail={"stderr": result.stderr},
            )
        try:
            return json.loads(result.stdout)
        except ValueError as e:
            raise ResolutionFailed(f"cargo metadata returned invalid JSON: {e}") from e
