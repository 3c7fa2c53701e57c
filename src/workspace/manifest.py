# src/workspace/manifest.py — v1
"""Cargo.toml reader (tomllib) exposing the fields the cache needs."""

from __future__ import annotations

import tomllib
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from cratevault.errors import InvalidSource

MANIFEST_NAME = "Cargo.toml"


class CargoManifest(BaseModel):
    """Subset of a Cargo manifest: package identity and workspace layout."""

    path: Path
    package_name: str | None = None
    package_version: str | None = None
    version_from_workspace: bool = False
    is_workspace: bool = False
    members: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    workspace_version: str | None = None

    @property
    def has_package(self) -> bool:
        return self.package_name is not None

    @property
    def is_virtual(self) -> bool:
        """Workspace root without a package of its own."""
        return self.is_workspace and not self.has_package

    @property
    def effective_version(self) -> str | None:
        if self.version_from_workspace:
            return self.workspace_version
        return self.package_version or self.workspace_version


def read_manifest(path: Path) -> CargoManifest:
    """Parse a Cargo.toml file (or the Cargo.toml inside a directory).

    Raises:
        InvalidSource: Missing or unparsable manifest.
    """
    if path.is_dir():
        path = path / MANIFEST_NAME
    try:
        with path.open("rb") as fh:
            data = tomllib.load(fh)
    except FileNotFoundError as e:
        raise InvalidSource(f"No {MANIFEST_NAME} at {path.parent}", detail={"path": str(path)}) from e
    except (tomllib.TOMLDecodeError, UnicodeDecodeError) as e:
        raise InvalidSource(f"Malformed {path}: {e}", detail={"path": str(path)}) from e
    return parse_manifest(data, path)


def parse_manifest(data: dict[str, Any], path: Path) -> CargoManifest:
    package = data.get("package") if isinstance(data.get("package"), dict) else None
    workspace = data.get("workspace") if isinstance(data.get("workspace"), dict) else None

    package_version: str | None = None
    version_from_workspace = False
    if package is not None:
        version = package.get("version")
        if isinstance(version, str):
            package_version = version
        elif isinstance(version, dict) and version.get("workspace") is True:
            version_from_workspace = True

    workspace_version = None
    if workspace is not None:
        ws_package = workspace.get("package")
        if isinstance(ws_package, dict) and isinstance(ws_package.get("version"), str):
            workspace_version = ws_package["version"]

    members = _string_list(workspace, "members")
    # A package with a member-less [workspace] table is a standalone crate.
    is_workspace = workspace is not None and (bool(members) or package is None)

    return CargoManifest(
        path=path,
        package_name=package.get("name") if package is not None else None,
        package_version=package_version,
        version_from_workspace=version_from_workspace,
        is_workspace=is_workspace,
        members=members,
        exclude=_string_list(workspace, "exclude"),
        workspace_version=workspace_version,
    )


def _string_list(table: dict[str, Any] | None, key: str) -> list[str]:
    if table is None:
        return []
    values = table.get(key) or []
    return [v for v in values if isinstance(v, str)]
