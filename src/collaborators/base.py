# src/collaborators/base.py — v1
"""Abstract interfaces of the external collaborators.

The cache core only depends on these interfaces; subprocess and HTTP
adapters implement them for production, deterministic fakes for tests.
Everything except the registry client is synchronous and blocking; the
facade runs those calls in worker threads.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from cratevault.cache.models import RepositoryOrigin
from cratevault.docs.models import StructureNode


class RegistryClient(ABC):
    """Public package registry."""

    @abstractmethod
    async def download(self, name: str, version: str) -> bytes:
        """Return the gzip-compressed source archive of name@version.

        Raises:
            NotFound: Unknown package or version.
            NetworkError: Transport failure.
        """

    @abstractmethod
    async def latest_version(self, name: str) -> str:
        """Newest stable version published for name."""


class RepositoryClient(ABC):
    """Source-control host."""

    @abstractmethod
    def fetch(self, origin: RepositoryOrigin, dest: Path) -> None:
        """Materialize a snapshot of origin at its reference into dest.

        Raises:
            NotFound: Repository or reference does not exist.
            NetworkError: Transport failure.
        """


class DocGenerator(ABC):
    """Produces rustdoc JSON for one package."""

    @property
    @abstractmethod
    def toolchain(self) -> str:
        """Toolchain identity recorded in unit metadata."""

    @abstractmethod
    def generate(
        self, manifest_dir: Path, package: str | None, target_dir: Path
    ) -> dict[str, Any]:
        """Build documentation for the package whose manifest is in manifest_dir.

        Raises:
            ToolchainMissing: Toolchain channel not installed.
            BuildFailed: Compilation failed (diagnostic preserved verbatim).
        """


class DependencyResolver(ABC):
    """Resolves the dependency graph of one package."""

    @abstractmethod
    def resolve(self, manifest_dir: Path) -> dict[str, Any]:
        """Return ``cargo metadata`` style JSON for the manifest in manifest_dir.

        Raises:
            ResolutionFailed: Resolution failed.
        """


class StructureAnalyzer(ABC):
    """Builds the module tree of one package."""

    @abstractmethod
    def analyze(self, manifest_dir: Path, package: str | None) -> StructureNode:
        """Return the root node of the package's module tree.

        Raises:
            ToolchainMissing: Analyzer tool not installed.
            BuildFailed: Analysis failed.
        """
