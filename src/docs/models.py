# src/docs/models.py — v1
"""Normalized documentation, dependency and structure models.

These are the artifacts persisted per documented unit. DocArtifact is the
authoritative source the search index is derived from.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

ITEM_KINDS: tuple[str, ...] = (
    "module",
    "struct",
    "enum",
    "function",
    "trait",
    "impl",
    "type_alias",
    "constant",
    "static",
    "macro",
    "extern_crate",
    "use",
    "union",
    "field",
    "variant",
    "trait_alias",
    "proc_macro",
    "primitive",
    "assoc_const",
    "assoc_type",
    "extern_type",
)

DependencyKind = Literal["normal", "dev", "build"]


class SourceSpan(BaseModel):
    """Location of an item in the source tree (1-based lines, relative file)."""

    filename: str
    begin_line: int
    begin_col: int = 0
    end_line: int
    end_col: int = 0


class DocItem(BaseModel):
    """One documented item (function, type, module...)."""

    id: str
    name: str
    kind: str
    path: list[str] = Field(default_factory=list)
    signature: str | None = None
    docs: str | None = None
    span: SourceSpan | None = None
    module: str | None = None
    visibility: str = "public"

    @property
    def qualified_path(self) -> str:
        return "::".join(self.path) if self.path else self.name


class DocArtifact(BaseModel):
    """All documented items of one unit, keyed by item id."""

    crate_name: str
    crate_version: str | None = None
    format_version: int | None = None
    root_id: str | None = None
    items: dict[str, DocItem] = Field(default_factory=dict)


class DependencyRecord(BaseModel):
    """A direct or transitive dependency of a unit."""

    name: str
    version_req: str | None = None
    resolved_version: str | None = None
    kind: DependencyKind = "normal"
    optional: bool = False
    direct: bool = True
    depth: int = 1
    features: list[str] = Field(default_factory=list)
    target: str | None = None


class DependencyEdge(BaseModel):
    """Resolved edge of the dependency graph, "name@version" on both ends."""

    source: str
    target: str
    kind: DependencyKind = "normal"


class DependencyArtifact(BaseModel):
    """Flattened dependency graph of one unit."""

    package: str
    version: str | None = None
    dependencies: dict[str, DependencyRecord] = Field(default_factory=dict)
    edges: list[DependencyEdge] = Field(default_factory=list)


class StructureNode(BaseModel):
    """Node of a module tree (crate, mod, struct, fn...)."""

    kind: str
    name: str
    path: str
    visibility: str | None = None
    children: list[StructureNode] = Field(default_factory=list)
