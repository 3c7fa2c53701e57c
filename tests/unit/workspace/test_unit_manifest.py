# tests/unit/workspace/test_unit_manifest.py — v1
"""Tests for workspace/manifest.py."""

from __future__ import annotations

from pathlib import Path

import pytest

from cratevault.errors import InvalidSource
from cratevault.workspace.manifest import read_manifest


class TestReadManifest:
    def test_package(self, tmp_path: Path):
        (tmp_path / "Cargo.toml").write_text('[package]\nname = "foo"\nversion = "1.2.3"\n')
        manifest = read_manifest(tmp_path)
        assert manifest.package_name == "foo"
        assert manifest.effective_version == "1.2.3"
        assert not manifest.is_workspace

    def test_inherited_workspace_version(self, tmp_path: Path):
        (tmp_path / "Cargo.toml").write_text(
            '[package]\nname = "foo"\nversion.workspace = true\n\n'
            '[workspace]\nmembers = ["a"]\n\n[workspace.package]\nversion = "0.9.0"\n'
        )
        manifest = read_manifest(tmp_path / "Cargo.toml")
        assert manifest.version_from_workspace
        assert manifest.effective_version == "0.9.0"
        assert manifest.is_workspace and not manifest.is_virtual
        assert manifest.members == ["a"]

    def test_virtual_workspace(self, tmp_path: Path):
        (tmp_path / "Cargo.toml").write_text('[workspace]\nmembers = ["crates/*"]\nexclude = ["crates/old"]\n')
        manifest = read_manifest(tmp_path)
        assert manifest.is_virtual
        assert manifest.exclude == ["crates/old"]

    def test_missing(self, tmp_path: Path):
        with pytest.raises(InvalidSource, match="No Cargo.toml"):
            read_manifest(tmp_path)

    def test_malformed(self, tmp_path: Path):
        (tmp_path / "Cargo.toml").write_text("[package\nname=")
        with pytest.raises(InvalidSource, match="Malformed"):
            read_manifest(tmp_path)

    def test_empty_workspace_table_on_package(self, tmp_path: Path):
        (tmp_path / "Cargo.toml").write_text('[package]\nname = "solo"\nversion = "0.2.0"\n\n[workspace]\n')
        manifest = read_manifest(tmp_path)
        assert not manifest.is_workspace
        assert manifest.package_name == "solo"
        assert manifest.members == []
