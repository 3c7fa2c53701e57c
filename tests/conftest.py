# tests/conftest.py — v1
"""Shared test fixtures for all unit and integration tests.

Provides deterministic fakes for the external collaborators (registry,
repository host, rustdoc, cargo metadata, cargo-modules), package trees,
crate archives and a temp cache. No network, no toolchain.
"""

from __future__ import annotations

import asyncio
import io
import shutil
import tarfile
from pathlib import Path
from typing import Any

import pytest

from cratevault.api.facade import CrateVault
from cratevault.cache.models import RepositoryOrigin
from cratevault.cache.store import CacheStore
from cratevault.collaborators.base import (
    DependencyResolver,
    DocGenerator,
    RegistryClient,
    RepositoryClient,
    StructureAnalyzer,
)
from cratevault.collaborators.factory import Collaborators
from cratevault.config.settings import Settings
from cratevault.docs.models import DocArtifact, StructureNode
from cratevault.docs.rustdoc import normalize_rustdoc
from cratevault.errors import BuildFailed, NotFound, ResolutionFailed
from cratevault.workspace.manifest import read_manifest

LIB_RS = """\
//! A tiny parsing crate.

/// A streaming parser.
pub struct Parser {
    input: String,
}

/// Parse a string.
pub fn parse_str(s: &str) -> Parser {
    Parser { input: s.to_string() }
}

pub mod de {
    /// Deserialization trait.
    pub trait Deserialize {}
}
"""


# === Builders ===


def manifest_text(name: str, version: str = "0.1.0") -> str:
    return f'[package]\nname = "{name}"\nversion = "{version}"\nedition = "2021"\n'


def write_package(
    root: Path,
    name: str,
    version: str = "0.1.0",
    files: dict[str, str] | None = None,
) -> Path:
    """Write a minimal cargo package (manifest + src/lib.rs) under root."""
    root.mkdir(parents=True, exist_ok=True)
    (root / "Cargo.toml").write_text(manifest_text(name, version))
    (root / "src").mkdir(exist_ok=True)
    (root / "src" / "lib.rs").write_text(LIB_RS)
    for rel, text in (files or {}).items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)
    return root


def write_workspace(root: Path, members: dict[str, str], version: str = "0.1.0") -> Path:
    """Virtual workspace with one package per {relative_path: name}."""
    root.mkdir(parents=True, exist_ok=True)
    listed = ", ".join(f'"{rel}"' for rel in members)
    (root / "Cargo.toml").write_text(
        f"[workspace]\nmembers = [{listed}]\n\n[workspace.package]\nversion = \"{version}\"\n"
    )
    for rel, name in members.items():
        write_package(root / rel, name, version)
    return root


def make_crate_tarball(name: str, version: str, files: dict[str, str] | None = None) -> bytes:
    """Registry-style .crate archive rooted at name-version/."""
    contents = {"Cargo.toml": manifest_text(name, version), "src/lib.rs": LIB_RS}
    contents.update(files or {})
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for rel, text in contents.items():
            data = text.encode("utf-8")
            info = tarfile.TarInfo(f"{name}-{version}/{rel}")
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def rustdoc_json(crate: str, version: str = "0.1.0") -> dict[str, Any]:
    """rustdoc JSON matching LIB_RS: Parser, Parser::input, parse_str, de, de::Deserialize."""
    span = lambda begin, end: {"filename": "src/lib.rs", "begin": [begin, 0], "end": [end, 1]}  # noqa: E731
    return {
        "root": 0,
        "crate_version": version,
        "format_version": 39,
        "index": {
            "0": {
                "id": 0, "crate_id": 0, "name": crate, "visibility": "public",
                "docs": "A tiny parsing crate.", "span": span(1, 17),
                "inner": {"module": {"is_crate": True, "items": [1, 2, 3]}},
            },
            "1": {
                "id": 1, "crate_id": 0, "name": "Parser", "visibility": "public",
                "docs": "A streaming parser.", "span": span(4, 6),
                "inner": {"struct": {"kind": {"plain": {"fields": [4]}},
                                     "generics": {"params": []}, "impls": []}},
            },
            "2": {
                "id": 2, "crate_id": 0, "name": "parse_str", "visibility": "public",
                "docs": "Parse a string.", "span": span(9, 11),
                "inner": {"function": {
                    "sig": {
                        "inputs": [["s", {"borrowed_ref": {"type": {"primitive": "str"}}}]],
                        "output": {"resolved_path": {"path": "Parser"}},
                    },
                    "generics": {"params": []},
                    "header": {},
                }},
            },
            "3": {
                "id": 3, "crate_id": 0, "name": "de", "visibility": "public",
                "span": span(13, 16), "inner": {"module": {"items": [5]}},
            },
            "4": {
                "id": 4, "crate_id": 0, "name": "input", "visibility": "default",
                "span": span(5, 5), "inner": {"struct_field": {"resolved_path": {"path": "String"}}},
            },
            "5": {
                "id": 5, "crate_id": 0, "name": "Deserialize", "visibility": "public",
                "docs": "Deserialization trait.", "span": span(15, 15),
                "inner": {"trait": {"items": [], "generics": {"params": []}}},
            },
            "9": {"id": 9, "crate_id": 1, "name": "String", "inner": {"struct": {}}},
        },
        "paths": {
            "0": {"crate_id": 0, "path": [crate], "kind": "module"},
            "1": {"crate_id": 0, "path": [crate, "Parser"], "kind": "struct"},
            "2": {"crate_id": 0, "path": [crate, "parse_str"], "kind": "function"},
            "3": {"crate_id": 0, "path": [crate, "de"], "kind": "module"},
            "5": {"crate_id": 0, "path": [crate, "de", "Deserialize"], "kind": "trait"},
        },
    }


def cargo_metadata(name: str, version: str, manifest_dir: Path) -> dict[str, Any]:
    """cargo metadata with one direct (serde) and one transitive (serde_derive) dependency."""
    root_id = f"path+file://{manifest_dir}#{name}@{version}"
    serde_id = "registry+https://github.com/rust-lang/crates.io-index#serde@1.0.200"
    derive_id = "registry+https://github.com/rust-lang/crates.io-index#serde_derive@1.0.200"
    return {
        "packages": [
            {
                "id": root_id, "name": name, "version": version,
                "manifest_path": str(manifest_dir / "Cargo.toml"),
                "dependencies": [
                    {"name": "serde", "req": "^1.0", "kind": None, "optional": False,
                     "features": ["derive"], "target": None, "rename": None},
                ],
            },
            {"id": serde_id, "name": "serde", "version": "1.0.200", "dependencies": []},
            {"id": derive_id, "name": "serde_derive", "version": "1.0.200", "dependencies": []},
        ],
        "workspace_members": [root_id],
        "resolve": {
            "root": root_id,
            "nodes": [
                {"id": root_id, "deps": [{"pkg": serde_id, "dep_kinds": [{"kind": None}]}]},
                {"id": serde_id, "deps": [{"pkg": derive_id, "dep_kinds": [{"kind": None}]}]},
                {"id": derive_id, "deps": []},
            ],
        },
    }


# === Fakes ===


class FakeRegistry(RegistryClient):
    def __init__(self) -> None:
        self.archives: dict[tuple[str, str], bytes] = {}
        self.latest: dict[str, str] = {}
        self.downloads: list[tuple[str, str]] = []
        self.lookups: list[str] = []
        self.delay = 0.0

    def publish(self, name: str, version: str, files: dict[str, str] | None = None) -> None:
        self.archives[(name, version)] = make_crate_tarball(name, version, files)
        self.latest[name] = version

    async def download(self, name: str, version: str) -> bytes:
        self.downloads.append((name, version))
        if self.delay:
            await asyncio.sleep(self.delay)
        try:
            return self.archives[(name, version)]
        except KeyError:
            raise NotFound(f"{name}@{version} is not published") from None

    async def latest_version(self, name: str) -> str:
        self.lookups.append(name)
        if self.delay:
            await asyncio.sleep(self.delay)
        try:
            return self.latest[name]
        except KeyError:
            raise NotFound(f"Crate {name} does not exist") from None


class FakeRepository(RepositoryClient):
    """Repositories are template directories copied on fetch."""

    def __init__(self) -> None:
        self.repos: dict[str, Path] = {}
        self.fetches: list[RepositoryOrigin] = []

    def fetch(self, origin: RepositoryOrigin, dest: Path) -> None:
        self.fetches.append(origin)
        template = self.repos.get(origin.locator)
        if template is None:
            raise NotFound(f"Repository {origin.locator} not found")
        # A checkout keeps symlinks as links.
        shutil.copytree(template, dest, symlinks=True, dirs_exist_ok=True)


class FakeDocGenerator(DocGenerator):
    def __init__(self) -> None:
        self.failures: dict[str, str] = {}
        self.calls: list[str] = []

    @property
    def toolchain(self) -> str:
        return "nightly-test"

    def generate(self, manifest_dir: Path, package: str | None, target_dir: Path) -> dict[str, Any]:
        manifest = read_manifest(manifest_dir)
        name = package or manifest.package_name or "unknown"
        self.calls.append(name)
        if name in self.failures:
            raise BuildFailed(f"Documentation build failed for {name}", diagnostic=self.failures[name])
        return rustdoc_json(name.replace("-", "_"), manifest.effective_version or "0.0.0")


class FakeDependencyResolver(DependencyResolver):
    def __init__(self) -> None:
        self.fail = False

    def resolve(self, manifest_dir: Path) -> dict[str, Any]:
        if self.fail:
            raise ResolutionFailed("cargo metadata failed")
        manifest = read_manifest(manifest_dir)
        return cargo_metadata(
            manifest.package_name or "unknown", manifest.effective_version or "0.0.0", manifest_dir
        )


class FakeStructureAnalyzer(StructureAnalyzer):
    def analyze(self, manifest_dir: Path, package: str | None) -> StructureNode:
        name = (package or read_manifest(manifest_dir).package_name or "unknown").replace("-", "_")
        return StructureNode(
            kind="crate",
            name=name,
            path=name,
            children=[
                StructureNode(kind="struct", name="Parser", path=f"{name}::Parser", visibility="pub"),
                StructureNode(kind="mod", name="de", path=f"{name}::de", visibility="pub"),
            ],
        )


# === FIXTURES ===


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        _env_file=None,
        cache_dir=tmp_path / "cache",
        lock_timeout_s=10.0,
        lock_poll_interval_s=0.01,
    )


@pytest.fixture
def store(settings: Settings) -> CacheStore:
    return CacheStore(settings.cache_dir, lock_timeout_s=10.0, lock_poll_interval_s=0.01)


@pytest.fixture
def fake_registry() -> FakeRegistry:
    registry = FakeRegistry()
    registry.publish("foo", "1.2.3")
    return registry


@pytest.fixture
def fake_repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def fake_docs() -> FakeDocGenerator:
    return FakeDocGenerator()


@pytest.fixture
def fake_deps() -> FakeDependencyResolver:
    return FakeDependencyResolver()


@pytest.fixture
def collaborators(
    fake_registry: FakeRegistry,
    fake_repository: FakeRepository,
    fake_docs: FakeDocGenerator,
    fake_deps: FakeDependencyResolver,
) -> Collaborators:
    return Collaborators(
        registry=fake_registry,
        repository=fake_repository,
        doc_generator=fake_docs,
        dependency_resolver=fake_deps,
        structure_analyzer=FakeStructureAnalyzer(),
    )


@pytest.fixture
def vault(settings: Settings, collaborators: Collaborators) -> CrateVault:
    return CrateVault(settings, collaborators)


@pytest.fixture
def sample_artifact() -> DocArtifact:
    """Normalized DocArtifact for crate "foo"."""
    return normalize_rustdoc(rustdoc_json("foo", "1.2.3"), "foo")


@pytest.fixture
def package_dir(tmp_path: Path) -> Path:
    """Local package "localpkg" 0.3.0 outside the cache."""
    return write_package(tmp_path / "src-tree" / "localpkg", "localpkg", "0.3.0")


@pytest.fixture
def builders() -> Any:
    """Access to module-level builders from test modules."""

    class _Builders:
        write_package = staticmethod(write_package)
        write_workspace = staticmethod(write_workspace)
        make_crate_tarball = staticmethod(make_crate_tarball)
        rustdoc_json = staticmethod(rustdoc_json)
        cargo_metadata = staticmethod(cargo_metadata)
        manifest_text = staticmethod(manifest_text)

    return _Builders
