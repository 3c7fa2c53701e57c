# src/workspace/resolver.py — v1
"""Workspace resolution: which packages of a source tree get documented.

A plain package yields one member at ".". A workspace yields its declared
members in declaration order (globs expanded, excludes applied, duplicates
collapsed), preceded by the root package when the root manifest declares
one alongside [workspace].
"""

from __future__ import annotations

import fnmatch
import logging
from pathlib import Path, PurePosixPath

from pydantic import BaseModel, Field

from cratevault.cache.models import ROOT_MEMBER_PATH, MemberId, validate_member_path
from cratevault.errors import InvalidSource, MalformedWorkspace
from cratevault.workspace.manifest import MANIFEST_NAME, CargoManifest, read_manifest

logger = logging.getLogger(__name__)

_GLOB_CHARS = frozenset("*?[")


class WorkspaceLayout(BaseModel):
    """Result of resolving a source tree."""

    is_workspace: bool = False
    root_package: str | None = None
    version: str | None = None
    members: list[MemberId] = Field(default_factory=list)


class WorkspaceResolver:
    """Resolves the member list of a committed (or staged) source tree."""

    def resolve(self, source_root: Path) -> WorkspaceLayout:
        """Resolve members of the tree rooted at source_root.

        Raises:
            InvalidSource: No usable root manifest.
            MalformedWorkspace: A declared member cannot be resolved.
        """
        root = read_manifest(source_root)

        if not root.is_workspace:
            if not root.has_package:
                raise InvalidSource(
                    f"{MANIFEST_NAME} at {source_root} declares neither [package] nor [workspace]"
                )
            return WorkspaceLayout(
                is_workspace=False,
                root_package=root.package_name,
                version=root.effective_version,
                members=[MemberId(name=root.package_name, relative_path=ROOT_MEMBER_PATH)],
            )

        members: list[MemberId] = []
        if root.has_package:
            members.append(MemberId(name=root.package_name, relative_path=ROOT_MEMBER_PATH))

        seen_paths = {m.relative_path for m in members}
        for rel_path in self._expand_members(source_root, root):
            if rel_path in seen_paths:
                continue
            seen_paths.add(rel_path)
            members.append(self._member(source_root, rel_path))

        names = [m.name for m in members]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise MalformedWorkspace(
                f"Workspace declares duplicate packages: {', '.join(duplicates)}",
                detail={"duplicates": duplicates},
            )

        logger.info(
            "Resolved workspace with %d members%s",
            len(members),
            " (virtual)" if root.is_virtual else "",
        )
        return WorkspaceLayout(
            is_workspace=True,
            root_package=root.package_name,
            version=root.effective_version,
            members=members,
        )

    def _expand_members(self, source_root: Path, root: CargoManifest) -> list[str]:
        expanded: list[str] = []
        for pattern in root.members:
            pattern = pattern.strip().rstrip("/")
            try:
                validate_member_path(pattern)
            except ValueError as e:
                raise MalformedWorkspace(str(e), detail={"member": pattern}) from e

            if _GLOB_CHARS & set(pattern):
                matches = sorted(
                    p.relative_to(source_root).as_posix()
                    for p in source_root.glob(pattern)
                    if p.is_dir() and (p / MANIFEST_NAME).is_file()
                )
                candidates = matches
            else:
                candidates = [str(PurePosixPath(pattern))]

            for rel_path in candidates:
                if _is_excluded(rel_path, root.exclude):
                    logger.debug("Member %s excluded", rel_path)
                    continue
                expanded.append(rel_path)
        return expanded

    def _member(self, source_root: Path, rel_path: str) -> MemberId:
        manifest_dir = source_root / rel_path
        try:
            manifest = read_manifest(manifest_dir)
        except InvalidSource as e:
            raise MalformedWorkspace(
                f"Workspace member {rel_path!r} has no valid {MANIFEST_NAME}: {e.message}",
                detail={"member": rel_path},
            ) from e
        if not manifest.has_package:
            raise MalformedWorkspace(
                f"Workspace member {rel_path!r} does not declare [package].name",
                detail={"member": rel_path},
            )
        return MemberId(name=manifest.package_name, relative_path=rel_path)


def _is_excluded(rel_path: str, excludes: list[str]) -> bool:
    for pattern in excludes:
        pattern = pattern.strip().rstrip("/")
        if not pattern:
            continue
        if fnmatch.fnmatchcase(rel_path, pattern):
            return True
        if rel_path == pattern or rel_path.startswith(pattern + "/"):
            return True
    return False
