# src/cache/models.py — v1
"""Cache domain models: origins, CacheKey, MemberId, CacheEntry, CacheMetadata.

On-disk identity of an entry is (name, version). The origin is provenance
recorded alongside it, so the same name/version from two origins occupies
the same slot.
"""

from __future__ import annotations

import re
from datetime import datetime
from pathlib import PurePosixPath
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cratevault.errors import ErrorInfo

_CRATE_NAME_RE = re.compile(r"^[A-Za-z0-9_][A-Za-z0-9_-]{0,63}$")
_VERSION_RE = re.compile(r"^[0-9A-Za-z][0-9A-Za-z.+_-]{0,127}$")
_REF_RE = re.compile(r"^[A-Za-z0-9._/+-]{1,255}$")

ROOT_MEMBER_PATH = "."
ROOT_MEMBER_STORAGE = "__root__"


def normalize_version(version: str) -> str:
    """Trim whitespace and a leading 'v' in front of a digit ("v1.2" -> "1.2")."""
    version = version.strip()
    if len(version) > 1 and version[0] in "vV" and version[1].isdigit():
        version = version[1:]
    return version


def validate_crate_name(name: str) -> str:
    if not _CRATE_NAME_RE.match(name):
        raise ValueError(
            f"Invalid crate name {name!r}: only letters, digits, '-' and '_' allowed"
        )
    return name


def validate_member_path(path: str) -> str:
    """Reject member paths that could escape the entry directory."""
    if not path or not path.strip():
        raise ValueError("Member path cannot be empty")
    if "\\" in path:
        raise ValueError(f"Member path {path!r} must use forward slashes")
    if path.startswith("/") or re.match(r"^[A-Za-z]:", path):
        raise ValueError(f"Member path {path!r} must be relative")
    parts = PurePosixPath(path).parts
    if ".." in parts:
        raise ValueError(f"Member path {path!r} contains '..'")
    return path


def normalize_member_path(path: str) -> str:
    """Map a member's relative path to a flat directory name."""
    validate_member_path(path)
    if path.strip("/") in ("", ROOT_MEMBER_PATH):
        return ROOT_MEMBER_STORAGE
    return str(PurePosixPath(path)).replace("/", "-")


# === Origins ===


class RegistryOrigin(BaseModel):
    """Public package registry (crates.io)."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["registry"] = "registry"

    def describe(self) -> str:
        return "crates.io"


class RepositoryOrigin(BaseModel):
    """Source-control repository snapshot at a reference."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["repository"] = "repository"
    locator: str
    ref: str | None = None
    ref_kind: Literal["branch", "tag", "commit", "default"] = "default"
    subpath: str | None = None

    @field_validator("ref")
    @classmethod
    def validate_ref(cls, v: str | None) -> str | None:
        if v is None:
            return v
        if not _REF_RE.match(v) or ".." in v or v.startswith(("-", "/")):
            raise ValueError(f"Invalid git reference {v!r}")
        return v

    @field_validator("subpath")
    @classmethod
    def validate_subpath(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip("/")
        return validate_member_path(v) if v else None

    def describe(self) -> str:
        parts = [self.locator]
        if self.ref:
            parts.append(f"#{self.ref_kind}:{self.ref}")
        if self.subpath:
            parts.append(f" ({self.subpath})")
        return "".join(parts)


class LocalPathOrigin(BaseModel):
    """Directory on the local filesystem."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["local"] = "local"
    path: str

    def describe(self) -> str:
        return self.path


Origin = Annotated[
    Union[RegistryOrigin, RepositoryOrigin, LocalPathOrigin],
    Field(discriminator="kind"),
]


# === Keys ===


class CacheKey(BaseModel):
    """(name, version, origin) triple addressing one cache entry."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: str
    origin: Origin = Field(default_factory=RegistryOrigin)

    @field_validator("name")
    @classmethod
    def _check_name(cls, v: str) -> str:
        return validate_crate_name(v.strip())

    @field_validator("version")
    @classmethod
    def _check_version(cls, v: str) -> str:
        v = normalize_version(v)
        if not _VERSION_RE.match(v) or ".." in v:
            raise ValueError(f"Invalid version {v!r}")
        return v

    @property
    def slug(self) -> str:
        """Stable string identity, also the in-process single-flight key."""
        return f"{self.name}/{self.version}"

    def __str__(self) -> str:
        return f"{self.name}@{self.version}"


class MemberId(BaseModel):
    """Workspace member: package name plus manifest directory relative to the root."""

    model_config = ConfigDict(frozen=True)

    name: str
    relative_path: str = ROOT_MEMBER_PATH

    @field_validator("relative_path")
    @classmethod
    def _check_path(cls, v: str) -> str:
        v = v.strip().rstrip("/") or ROOT_MEMBER_PATH
        return validate_member_path(v)

    @property
    def storage_name(self) -> str:
        return normalize_member_path(self.relative_path)

    @property
    def is_root(self) -> bool:
        return self.relative_path == ROOT_MEMBER_PATH


# === Persisted records ===


class CacheEntry(BaseModel):
    """Committed package version. Persisted as entry.json beside source/."""

    key: CacheKey
    source_root: str = ""
    is_workspace: bool = False
    members: list[MemberId] = Field(default_factory=list)
    root_package: str | None = None
    created_at: datetime
    refreshed_at: datetime
    size_bytes: int = 0
    content_hash: str = ""

    def find_member(self, selector: str) -> MemberId | None:
        """Look up a member by package name or relative path."""
        wanted = selector.strip().rstrip("/") or ROOT_MEMBER_PATH
        for member in self.members:
            if member.name == wanted or member.relative_path == wanted:
                return member
        return None

    def unit_member(self, member: MemberId | None) -> MemberId | None:
        """Member whose artifacts live under members/ (None for a plain package)."""
        return member if self.is_workspace else None


class CacheMetadata(BaseModel):
    """Provenance and generation record for an entry or a workspace member."""

    name: str
    version: str
    origin: Origin = Field(default_factory=RegistryOrigin)
    member: str | None = None
    fetched_at: datetime | None = None
    source_size_bytes: int = 0
    content_hash: str = ""
    toolchain: str | None = None
    doc_generated: bool = False
    docs_digest: str | None = None
    dependencies_generated: bool = False
    generated_at: datetime | None = None
    docs_error: ErrorInfo | None = None
    dependencies_error: ErrorInfo | None = None


class EntrySummary(BaseModel):
    """Listing row for one cached entry."""

    name: str
    version: str
    origin: str
    is_workspace: bool = False
    members: list[str] = Field(default_factory=list)
    size_bytes: int = 0
    refreshed_at: datetime
