# src/api/models.py — v1
"""API-level models: request and response shapes of the query facade.

Transport-agnostic; every shape round-trips through JSON with
``model_dump_json`` / ``model_validate_json``.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field

from cratevault.cache.models import MemberId, Origin
from cratevault.docs.models import (
    DependencyEdge,
    DependencyKind,
    DependencyRecord,
    DocItem,
    StructureNode,
)
from cratevault.docs.source import SourceExcerpt
from cratevault.materialize.materializer import MemberStatus
from cratevault.search.models import Detail, SearchHit, SearchMode


class Truncation(BaseModel):
    """Marks a payload cut to the response budget and how to fetch the rest."""

    truncated: bool = True
    returned: int
    total: int
    next_offset: int | None = None
    hint: str | None = None


# === Requests ===


class UnitRequest(BaseModel):
    """Addresses one documented unit: a package version, optionally a member.

    ``source`` is an origin descriptor (registry name, repository URL or
    local path). Missing entries are cached on first use.
    """

    crate: str
    version: str | None = None
    source: str | None = None
    member: str | None = None


class CacheRequest(BaseModel):
    """Bring a package version into the cache."""

    crate: str
    version: str | None = None
    source: str | None = None
    origin: Origin | None = None
    members: list[str] | None = None
    update: bool = False


class SearchRequest(UnitRequest):
    pattern: str
    mode: SearchMode = "fuzzy"
    kind: str | None = None
    path_prefix: str | None = None
    detail: Detail = "preview"
    limit: int | None = None
    cursor: str | None = None


class ListItemsRequest(UnitRequest):
    kind: str | None = None
    path_prefix: str | None = None
    limit: int | None = None
    cursor: str | None = None


class ItemRequest(UnitRequest):
    item_id: str


class ItemDocsRequest(ItemRequest):
    offset: int = Field(default=0, ge=0)
    max_chars: int | None = Field(default=None, ge=1)


class ItemSourceRequest(ItemRequest):
    context_lines: int | None = Field(default=None, ge=0)


class DependenciesRequest(UnitRequest):
    name: str | None = None
    kind: DependencyKind | None = None
    direct_only: bool = False
    include_edges: bool = False


class StructureRequest(UnitRequest):
    pass


# === Responses ===


class UnitInfo(BaseModel):
    """Which unit answered a query."""

    crate: str
    version: str
    member: str | None = None


class CacheResponse(BaseModel):
    """Outcome of a cache request.

    status:
      - success: every requested member materialized fully
      - partial_success: at least one member or step failed, see member_statuses
      - workspace_detected: workspace cached; choose members and call again
      - unchanged: entry and artifacts were already current
    """

    status: Literal["success", "partial_success", "workspace_detected", "unchanged"]
    name: str
    version: str
    origin: str
    source_root: str
    is_workspace: bool = False
    root_package: str | None = None
    members: list[MemberId] = Field(default_factory=list)
    member_statuses: list[MemberStatus] = Field(default_factory=list)
    refreshed: bool = False
    message: str = ""


class SearchResponse(BaseModel):
    unit: UnitInfo
    hits: list[SearchHit]
    total: int
    offset: int
    mode: SearchMode
    detail: Detail
    next_cursor: str | None = None
    truncation: Truncation | None = None


class ItemSummary(BaseModel):
    id: str
    name: str
    kind: str
    path: str
    visibility: str = "public"


class ItemsResponse(BaseModel):
    unit: UnitInfo
    items: list[ItemSummary]
    total: int
    offset: int
    next_cursor: str | None = None
    truncation: Truncation | None = None


class ItemResponse(BaseModel):
    unit: UnitInfo
    item: DocItem
    truncation: Truncation | None = None


class DocsResponse(BaseModel):
    unit: UnitInfo
    item_id: str
    name: str
    docs: str
    offset: int
    total_chars: int
    truncation: Truncation | None = None


class SourceResponse(BaseModel):
    unit: UnitInfo
    item_id: str
    excerpt: SourceExcerpt
    truncation: Truncation | None = None


class DependenciesResponse(BaseModel):
    unit: UnitInfo
    package: str
    version: str | None = None
    dependencies: list[DependencyRecord]
    total: int
    edges: list[DependencyEdge] | None = None
    truncation: Truncation | None = None


class StructureResponse(BaseModel):
    unit: UnitInfo
    root: StructureNode


class EvictResponse(BaseModel):
    name: str
    version: str
    evicted: bool = True
