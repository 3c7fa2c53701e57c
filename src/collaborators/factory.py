# src/collaborators/factory.py — v1
"""Factory for the production collaborator set."""

from __future__ import annotations

from dataclasses import dataclass

from cratevault.collaborators.base import (
    DependencyResolver,
    DocGenerator,
    RegistryClient,
    RepositoryClient,
    StructureAnalyzer,
)
from cratevault.config.settings import Settings


@dataclass
class Collaborators:
    """External tools the cache core talks to."""

    registry: RegistryClient
    repository: RepositoryClient
    doc_generator: DocGenerator
    dependency_resolver: DependencyResolver
    structure_analyzer: StructureAnalyzer


def create_collaborators(settings: Settings | None = None) -> Collaborators:
    """Instantiate HTTP and subprocess adapters from settings.

    Args:
        settings: Application settings. Defaults are used if None.
    """
    settings = settings or Settings()

    from cratevault.collaborators.cargo_metadata import CargoMetadataResolver
    from cratevault.collaborators.cargo_modules import CargoModulesAnalyzer
    from cratevault.collaborators.git import GitCliRepositoryClient
    from cratevault.collaborators.registry import HttpRegistryClient
    from cratevault.collaborators.rustdoc import CargoRustdocGenerator

    return Collaborators(
        registry=HttpRegistryClient(
            base_url=settings.registry_url,
            timeout=settings.http_timeout_s,
            user_agent=settings.user_agent,
        ),
        repository=GitCliRepositoryClient(
            git_executable=settings.git_executable,
            github_token=settings.github_token,
        ),
        doc_generator=CargoRustdocGenerator(
            toolchain=settings.doc_toolchain,
            all_features=settings.doc_all_features,
            cargo_executable=settings.cargo_executable,
            rustup_executable=settings.rustup_executable,
        ),
        dependency_resolver=CargoMetadataResolver(
            cargo_executable=settings.cargo_executable,
            all_features=settings.doc_all_features,
        ),
        structure_analyzer=CargoModulesAnalyzer(cargo_executable=settings.cargo_executable),
    )
