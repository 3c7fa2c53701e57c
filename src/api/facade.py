# src/api/facade.py — v1
"""Public API facade — single entry point for caching and querying crates.

Usage:
    from cratevault.api.facade import CrateVault
    vault = CrateVault.from_settings()
    await vault.cache(CacheRequest(crate="serde", version="1.0.200"))
    page = await vault.search(SearchRequest(crate="serde", version="1.0.200", pattern="Deserialize"))

Every request walks the same stages: resolve the cache key, ensure the
entry, ensure the member's artifacts, ensure the search index, answer.
Errors escaping a stage are tagged with its name and returned unchanged.
Nothing is retried automatically; a recorded build failure is re-raised
until the entry is cached again.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

from pydantic import ValidationError

from cratevault.acquisition.acquirer import SourceAcquirer, StagedSource
from cratevault.acquisition.sources import parse_origin
from cratevault.api.models import (
    CacheRequest,
    CacheResponse,
    DependenciesRequest,
    DependenciesResponse,
    DocsResponse,
    EvictResponse,
    ItemDocsRequest,
    ItemRequest,
    ItemResponse,
    ItemSourceRequest,
    ItemsResponse,
    ItemSummary,
    ListItemsRequest,
    SearchRequest,
    SearchResponse,
    SourceResponse,
    StructureRequest,
    StructureResponse,
    Truncation,
    UnitInfo,
    UnitRequest,
)
from cratevault.api.truncation import clip_lines, fit_to_budget, serialized_size, window_text
from cratevault.cache.coordinator import InFlight
from cratevault.cache.models import (
    CacheEntry,
    CacheKey,
    CacheMetadata,
    EntrySummary,
    LocalPathOrigin,
    MemberId,
    Origin,
    RegistryOrigin,
)
from cratevault.cache.store import CacheStore
from cratevault.collaborators.factory import Collaborators, create_collaborators
from cratevault.config.settings import Settings, load_settings
from cratevault.docs.models import DependencyArtifact, DocArtifact
from cratevault.docs.source import read_excerpt
from cratevault.errors import (
    CrateVaultError,
    InvalidRequest,
    IoError,
    NotFound,
    Stage,
    error_from_info,
)
from cratevault.logging.context import set_request_context, set_stage_context
from cratevault.logging.logger import setup_logging
from cratevault.materialize.materializer import Materializer, MemberStatus
from cratevault.search.config import SearchConfig
from cratevault.search.index import SearchIndex, listing_fingerprint
from cratevault.search.models import FullHit, SearchHit, SearchQuery
from cratevault.workspace.resolver import WorkspaceResolver

logger = logging.getLogger(__name__)

T = TypeVar("T")


@contextmanager
def _stage(stage: Stage) -> Iterator[None]:
    """Tag errors escaping the block with stage (inner tags win)."""
    set_stage_context(stage)
    try:
        yield
    except CrateVaultError as e:
        e.with_stage(stage)
        raise
    except OSError as e:
        raise IoError(str(e), stage=stage) from e


class CrateVault:
    """Cache and query facade over the store, acquirer, materializer and indices."""

    def __init__(
        self,
        settings: Settings,
        collaborators: Collaborators,
        store: CacheStore | None = None,
    ) -> None:
        self._settings = settings
        self._store = store or CacheStore(
            settings.cache_dir,
            lock_timeout_s=settings.lock_timeout_s,
            lock_poll_interval_s=settings.lock_poll_interval_s,
        )
        self._collaborators = collaborators
        self._acquirer = SourceAcquirer(
            self._store, collaborators.registry, collaborators.repository
        )
        self._resolver = WorkspaceResolver()
        self._materializer = Materializer(
            self._store,
            collaborators.doc_generator,
            collaborators.dependency_resolver,
            max_items=settings.max_items_per_unit,
        )
        self._search_config = SearchConfig.from_settings(settings)
        self._inflight = InFlight()
        self._workers = asyncio.Semaphore(settings.max_workers)
        self._indices: dict[Path, SearchIndex] = {}

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> CrateVault:
        """Build a vault with the production collaborators."""
        settings = settings or load_settings()
        setup_logging(
            level=settings.log_level,
            log_format=settings.log_format,
            log_file=str(settings.log_file) if settings.log_file else None,
            rotation=settings.log_rotation,
            retention=settings.log_retention,
        )
        return cls(settings, create_collaborators(settings))

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def settings(self) -> Settings:
        return self._settings

    # === Cache management ===

    async def cache(self, request: CacheRequest) -> CacheResponse:
        """Acquire, commit and resolve a package version; materialize its members.

        Raises:
            CrateVaultError: Tagged with the stage it escaped from. When
                every requested member fails documentation, the first
                member's error is raised.
        """
        set_request_context(_request_id(), request.crate, request.version)
        with _stage("resolve"):
            origin = request.origin or parse_origin(request.source)
        key, content_hash = await self._resolve_key(request.crate, request.version, origin)

        identity = key.slug if key is not None else f"{request.crate}@{origin.describe()}"
        members = ",".join(request.members) if request.members is not None else "*"
        flight = f"cache:{identity}:{members}:{request.update}"
        return await self._inflight.run(
            flight, lambda: self._cache(request, origin, key, content_hash)
        )

    async def list_entries(self) -> list[EntrySummary]:
        set_request_context(_request_id())
        with _stage("answer"):
            return await self._blocking(self._store.list_entries)

    async def list_versions(self, name: str) -> list[str]:
        set_request_context(_request_id(), name)
        with _stage("answer"):
            return await self._blocking(self._store.list_versions, name)

    async def evict(self, name: str, version: str) -> EvictResponse:
        """Remove an entry; waits for operations holding its key.

        Raises:
            NotFound: The entry is not cached.
        """
        set_request_context(_request_id(), name, version)
        with _stage("resolve"):
            key = _make_key(name, version, RegistryOrigin())
        with _stage("acquire"):
            async with self._store.reserve(key):
                with _stage("answer"):
                    await self._blocking(self._store.evict, key)
        self._forget_indices(key)
        return EvictResponse(name=key.name, version=key.version)

    # === Queries ===

    async def search(self, request: SearchRequest) -> SearchResponse:
        entry, member, unit = await self._open_unit(request)
        index = await self._ensure_index(entry, member)
        query = SearchQuery(
            pattern=request.pattern,
            mode=request.mode,
            kind=request.kind,
            path_prefix=request.path_prefix,
            detail=request.detail,
            limit=request.limit,
            cursor=request.cursor,
        )
        with _stage("answer"):
            page = await self._blocking(index.search, query)
            windowed, cut_docs = _window_hit_docs(page.hits, self._settings.doc_budget_chars)
            budget = self._settings.response_budget_chars
            hits = fit_to_budget(windowed, budget, serialized_size)
            next_cursor = page.next_cursor
            truncation = None
            if len(hits) < len(page.hits):
                next_cursor = index.cursor_at(page.offset + len(hits), query.fingerprint())
                truncation = _page_truncation(len(hits), len(page.hits), "detail='preview' or a smaller limit")
            elif serialized_size(hits) > budget:
                truncation = Truncation(
                    returned=len(hits),
                    total=len(page.hits),
                    hint="A single result exceeds the response budget; use detail='preview' and get_item.",
                )
            kept_cuts = {hit.id: cut_docs[hit.id] for hit in hits if hit.id in cut_docs}
            if kept_cuts:
                docs_cut = _docs_truncation(kept_cuts)
                if truncation is None:
                    truncation = docs_cut
                else:
                    truncation.hint = f"{truncation.hint} {docs_cut.hint}"
        return SearchResponse(
            unit=unit,
            hits=hits,
            total=page.total,
            offset=page.offset,
            mode=page.mode,
            detail=page.detail,
            next_cursor=next_cursor,
            truncation=truncation,
        )

    async def list_items(self, request: ListItemsRequest) -> ItemsResponse:
        entry, member, unit = await self._open_unit(request)
        index = await self._ensure_index(entry, member)
        with _stage("answer"):
            items, total, offset, next_cursor = await self._blocking(
                index.list_items, request.kind, request.path_prefix, request.limit, request.cursor
            )
            summaries = [
                ItemSummary(
                    id=item.id,
                    name=item.name,
                    kind=item.kind,
                    path=item.qualified_path,
                    visibility=item.visibility,
                )
                for item in items
            ]
            kept = fit_to_budget(summaries, self._settings.response_budget_chars, serialized_size)
            truncation = None
            if len(kept) < len(summaries):
                next_cursor = index.cursor_at(
                    offset + len(kept), listing_fingerprint(request.kind, request.path_prefix)
                )
                truncation = _page_truncation(len(kept), len(summaries), "a kind or path_prefix filter")
        return ItemsResponse(
            unit=unit,
            items=kept,
            total=total,
            offset=offset,
            next_cursor=next_cursor,
            truncation=truncation,
        )

    async def get_item(self, request: ItemRequest) -> ItemResponse:
        """Item record with its documentation cut to the doc budget."""
        entry, member, unit = await self._open_unit(request)
        index = await self._ensure_index(entry, member)
        with _stage("answer"):
            item = await self._blocking(index.get_item, request.item_id)
            truncation = None
            if item.docs:
                docs, truncation = window_text(
                    item.docs,
                    0,
                    self._settings.doc_budget_chars,
                    hint=f"Call get_item_docs with item_id={item.id!r} and offset={{next_offset}} for the rest.",
                )
                item = item.model_copy(update={"docs": docs})
        return ItemResponse(unit=unit, item=item, truncation=truncation)

    async def get_item_docs(self, request: ItemDocsRequest) -> DocsResponse:
        """Window of an item's full documentation string."""
        entry, member, unit = await self._open_unit(request)
        index = await self._ensure_index(entry, member)
        with _stage("answer"):
            item = await self._blocking(index.get_item, request.item_id)
            budget = min(
                request.max_chars or self._settings.doc_budget_chars,
                self._settings.response_budget_chars,
            )
            text = item.docs or ""
            docs, truncation = window_text(
                text,
                request.offset,
                budget,
                hint=f"Call get_item_docs with item_id={item.id!r} and offset={{next_offset}} for the rest.",
            )
        return DocsResponse(
            unit=unit,
            item_id=item.id,
            name=item.name,
            docs=docs,
            offset=request.offset,
            total_chars=len(text),
            truncation=truncation,
        )

    async def get_item_source(self, request: ItemSourceRequest) -> SourceResponse:
        """Source lines of an item plus context, read from the cached tree."""
        entry, member, unit = await self._open_unit(request)
        index = await self._ensure_index(entry, member)
        context = (
            request.context_lines
            if request.context_lines is not None
            else self._settings.default_context_lines
        )
        with _stage("answer"):
            item = await self._blocking(index.get_item, request.item_id)
            roots = [self._store.member_source(entry.key, member), self._store.source_root(entry.key)]
            excerpt = await self._blocking(read_excerpt, roots, item, context)
            code, truncation = clip_lines(excerpt.code, self._settings.source_budget_chars)
            if truncation is not None:
                excerpt = excerpt.model_copy(
                    update={
                        "code": code,
                        "end_line": excerpt.start_line + code.count("\n"),
                    }
                )
        return SourceResponse(unit=unit, item_id=item.id, excerpt=excerpt, truncation=truncation)

    async def get_dependencies(self, request: DependenciesRequest) -> DependenciesResponse:
        """Direct and transitive dependencies of a unit, filtered."""
        entry, member, unit = await self._open_unit(request)
        await self._ensure_artifacts(entry, member, DependencyArtifact)
        with _stage("answer"):
            artifact = await self._blocking(
                self._store.read_artifact, entry.key, entry.unit_member(member), DependencyArtifact
            )
            records = list(artifact.dependencies.values())
            if request.name:
                needle = request.name.lower()
                records = [r for r in records if needle in r.name.lower()]
            if request.kind:
                records = [r for r in records if r.kind == request.kind]
            if request.direct_only:
                records = [r for r in records if r.direct]
            records.sort(key=lambda r: (not r.direct, r.depth, r.name))

            budget = self._settings.response_budget_chars
            kept = fit_to_budget(records, budget, serialized_size)
            truncation = None
            if len(kept) < len(records):
                truncation = _page_truncation(len(kept), len(records), "a name or kind filter or direct_only")
            edges = None
            if request.include_edges:
                remaining = max(budget - serialized_size(kept), 1)
                edges = fit_to_budget(artifact.edges, remaining, serialized_size)
                if len(edges) < len(artifact.edges) and truncation is None:
                    truncation = _page_truncation(len(edges), len(artifact.edges), "include_edges=False")
        return DependenciesResponse(
            unit=unit,
            package=artifact.package,
            version=artifact.version,
            dependencies=kept,
            total=len(records),
            edges=edges,
            truncation=truncation,
        )

    async def get_structure(self, request: StructureRequest) -> StructureResponse:
        """Module tree of a unit from the structure analyzer."""
        entry, member, unit = await self._open_unit(request)
        analyzer = self._collaborators.structure_analyzer
        with _stage("materialize"):
            root = await self._blocking(
                analyzer.analyze,
                self._store.member_source(entry.key, member),
                member.name if entry.is_workspace else None,
            )
        return StructureResponse(unit=unit, root=root)

    # === Cache pipeline ===

    async def _cache(
        self,
        request: CacheRequest,
        origin: Origin,
        key: CacheKey | None,
        content_hash: str,
    ) -> CacheResponse:
        staged: StagedSource | None = None
        try:
            if key is None:
                # Repository without a version: the label comes from the checkout.
                with _stage("acquire"):
                    staged = await self._acquire(request.crate, None, origin)
                key = staged.key
                content_hash = staged.content_hash

            with _stage("acquire"):
                async with self._store.reserve(key):
                    entry, refreshed = await self._ensure_entry(
                        key, origin, staged, content_hash, request.update
                    )
                    staged = None
                    return await self._materialize_requested(entry, request, refreshed)
        finally:
            if staged is not None:
                self._store.discard_staging(staged.path)

    async def _ensure_entry(
        self,
        key: CacheKey,
        origin: Origin,
        staged: StagedSource | None,
        content_hash: str,
        update: bool,
    ) -> tuple[CacheEntry, bool]:
        """Committed entry for key, acquiring it when missing or stale. Lock held."""
        if await self._blocking(self._store.has_entry, key) and not update:
            with _stage("resolve"):
                entry = await self._blocking(self._store.read_entry, key)
            stale = isinstance(origin, LocalPathOrigin) and entry.content_hash != content_hash
            if not stale:
                if staged is not None:
                    self._store.discard_staging(staged.path)
                logger.info("%s already cached", key)
                return entry, False
            logger.info("Local source of %s changed, refreshing", key)

        with _stage("acquire"):
            if staged is None:
                staged = await self._acquire(key.name, key.version, origin)
            entry = await self._blocking(
                self._store.commit_source, key, staged.path, staged.content_hash, staged.size_bytes
            )
        with _stage("resolve"):
            layout = await self._blocking(self._resolver.resolve, self._store.source_root(key))
            entry = entry.model_copy(
                update={
                    "is_workspace": layout.is_workspace,
                    "members": layout.members,
                    "root_package": layout.root_package,
                }
            )
            await self._blocking(self._store.update_entry, entry)
        self._forget_indices(key)
        return entry, True

    async def _materialize_requested(
        self, entry: CacheEntry, request: CacheRequest, refreshed: bool
    ) -> CacheResponse:
        response = CacheResponse(
            status="success",
            name=entry.key.name,
            version=entry.key.version,
            origin=entry.key.origin.describe(),
            source_root=entry.source_root,
            is_workspace=entry.is_workspace,
            root_package=entry.root_package,
            members=entry.members,
            refreshed=refreshed,
        )
        if entry.is_workspace and request.members is None:
            response.status = "workspace_detected"
            response.message = (
                f"{entry.key} is a workspace with {len(entry.members)} members; "
                "pass members to document them"
            )
            return response

        with _stage("resolve"):
            members = (
                [_select_member(entry, name) for name in request.members]
                if entry.is_workspace and request.members is not None
                else entry.members
            )
        with _stage("materialize"):
            statuses = await self._blocking(
                self._materializer.materialize, entry, members, request.update
            )
        response.member_statuses = statuses
        response.status, response.message = _summarize(entry, statuses, refreshed)
        return response

    async def _acquire(self, name: str, version: str | None, origin: Origin) -> StagedSource:
        async with self._workers:
            return await self._acquirer.acquire(name, version, origin)

    async def _resolve_key(
        self, name: str, version: str | None, origin: Origin
    ) -> tuple[CacheKey | None, str]:
        """Key for a cache request, plus the content hash of a local tree.

        A repository origin without a version has no key until checked out.
        """
        if isinstance(origin, RegistryOrigin):
            if version is None:
                with _stage("acquire"):
                    version = await self._inflight.run(
                        f"latest:{name}", lambda: self._acquirer.resolve_registry_version(name)
                    )
            with _stage("resolve"):
                return _make_key(name, version, origin), ""
        if isinstance(origin, LocalPathOrigin):
            with _stage("acquire"):
                try:
                    return await self._blocking(self._acquirer.local_key, name, version, origin)
                except ValidationError as e:
                    raise InvalidRequest(f"Invalid crate name or version: {e}") from e
        if version is not None:
            with _stage("resolve"):
                return _make_key(name, version, origin), ""
        return None, ""

    # === Query pipeline ===

    async def _open_unit(self, request: UnitRequest) -> tuple[CacheEntry, MemberId, UnitInfo]:
        """Entry and member addressed by request, cached on first use."""
        set_request_context(_request_id(), request.crate, request.version)
        entry = await self._entry_for(request.crate, request.version, request.source)
        with _stage("resolve"):
            member = _default_member(entry, request.member)
        unit = UnitInfo(
            crate=entry.key.name,
            version=entry.key.version,
            member=member.name if entry.is_workspace else None,
        )
        return entry, member, unit

    async def _entry_for(self, crate: str, version: str | None, source: str | None) -> CacheEntry:
        with _stage("resolve"):
            if version is None:
                cached = await self._blocking(self._store.list_versions, crate)
                if cached:
                    version = cached[-1]
            if version is not None:
                key = _make_key(crate, version, RegistryOrigin())
                if await self._blocking(self._store.has_entry, key):
                    return await self._blocking(self._store.read_entry, key)

        logger.info("%s %s is not cached, caching it now", crate, version or "(latest)")
        response = await self.cache(CacheRequest(crate=crate, version=version, source=source))
        with _stage("resolve"):
            key = _make_key(response.name, response.version, RegistryOrigin())
            return await self._blocking(self._store.read_entry, key)

    async def _ensure_artifacts(
        self, entry: CacheEntry, member: MemberId, artifact_type: type[DocArtifact] | type[DependencyArtifact]
    ) -> CacheMetadata:
        """Metadata of a unit whose artifact_type exists for the current content."""
        unit = entry.unit_member(member)
        with _stage("materialize"):
            meta = await self._blocking(self._store.read_metadata, entry.key, unit)
            if _artifact_ready(self._store, entry, unit, meta, artifact_type):
                return meta
            _raise_recorded(entry, meta, artifact_type)

            flight = f"materialize:{entry.key.slug}:{member.storage_name}"
            return await self._inflight.run(
                flight, lambda: self._materialize_unit(entry, member, artifact_type)
            )

    async def _materialize_unit(
        self, entry: CacheEntry, member: MemberId, artifact_type: type[DocArtifact] | type[DependencyArtifact]
    ) -> CacheMetadata:
        unit = entry.unit_member(member)
        with _stage("materialize"):
            async with self._store.reserve(entry.key):
                # Another process may have finished while we waited for the lock.
                meta = await self._blocking(self._store.read_metadata, entry.key, unit)
                if not _artifact_ready(self._store, entry, unit, meta, artifact_type):
                    _raise_recorded(entry, meta, artifact_type)
                    await self._blocking(self._materializer.materialize, entry, [member])
                    meta = await self._blocking(self._store.read_metadata, entry.key, unit)
                if not _artifact_ready(self._store, entry, unit, meta, artifact_type):
                    _raise_recorded(entry, meta, artifact_type)
                    raise NotFound(f"No artifacts were produced for {entry.key} {member.name}")
                return meta

    async def _ensure_index(self, entry: CacheEntry, member: MemberId) -> SearchIndex:
        meta = await self._ensure_artifacts(entry, member, DocArtifact)
        unit = entry.unit_member(member)
        path = self._store.search_index_path(entry.key, unit)
        with _stage("index"):
            index = self._indices.get(path)
            if index is not None and index.path.is_file() and index.is_current(meta.docs_digest):
                return index
            index = SearchIndex(path, self._search_config)
            if not await self._blocking(index.is_current, meta.docs_digest):
                index = await self._inflight.run(
                    f"index:{path}", lambda: self._build_index(entry, unit, path)
                )
            self._indices[path] = index
            return index

    async def _build_index(self, entry: CacheEntry, unit: MemberId | None, path: Path) -> SearchIndex:
        async with self._store.reserve(entry.key):
            meta = await self._blocking(self._store.read_metadata, entry.key, unit)
            digest = meta.docs_digest if meta and meta.docs_digest else ""
            index = SearchIndex(path, self._search_config)
            if digest and await self._blocking(index.is_current, digest):
                return index
            artifact = await self._blocking(self._store.read_artifact, entry.key, unit, DocArtifact)
            return await self._blocking(
                SearchIndex.build, path, artifact, digest, self._search_config
            )

    # === Helpers ===

    def _forget_indices(self, key: CacheKey) -> None:
        entry_dir = self._store.entry_dir(key)
        for path in [p for p in self._indices if entry_dir in p.parents]:
            del self._indices[path]

    async def _blocking(self, fn: Callable[..., T], *args: Any) -> T:
        """Run blocking work in a worker thread, bounded by max_workers."""
        async with self._workers:
            return await asyncio.to_thread(fn, *args)


def _request_id() -> str:
    return uuid.uuid4().hex[:12]


def _make_key(name: str, version: str, origin: Origin) -> CacheKey:
    try:
        return CacheKey(name=name, version=version, origin=origin)
    except ValidationError as e:
        raise InvalidRequest(f"Invalid crate name or version: {name!r} {version!r}") from e


def _select_member(entry: CacheEntry, selector: str) -> MemberId:
    member = entry.find_member(selector)
    if member is None:
        raise NotFound(
            f"{entry.key} has no member {selector!r}",
            detail={"members": [m.name for m in entry.members]},
        )
    return member


def _default_member(entry: CacheEntry, selector: str | None) -> MemberId:
    if selector is not None:
        return _select_member(entry, selector)
    if not entry.is_workspace:
        if not entry.members:
            raise NotFound(f"{entry.key} has no documented package")
        return entry.members[0]
    if entry.root_package:
        member = entry.find_member(entry.root_package)
        if member is not None:
            return member
    names = [m.name for m in entry.members]
    raise InvalidRequest(
        f"{entry.key} is a workspace; choose a member: {', '.join(names)}",
        detail={"members": names},
    )


def _artifact_ready(
    store: CacheStore,
    entry: CacheEntry,
    unit: MemberId | None,
    meta: CacheMetadata | None,
    artifact_type: type[DocArtifact] | type[DependencyArtifact],
) -> bool:
    return (
        meta is not None
        and meta.content_hash == entry.content_hash
        and store.has_artifact(entry.key, unit, artifact_type)
    )


def _raise_recorded(
    entry: CacheEntry,
    meta: CacheMetadata | None,
    artifact_type: type[DocArtifact] | type[DependencyArtifact],
) -> None:
    """Re-raise a failure recorded for the current content of the unit."""
    if meta is None or meta.content_hash != entry.content_hash:
        return
    info = meta.docs_error if artifact_type is DocArtifact else meta.dependencies_error
    if info is not None:
        raise error_from_info(info)


def _summarize(
    entry: CacheEntry, statuses: list[MemberStatus], refreshed: bool
) -> tuple[str, str]:
    documented = [s for s in statuses if s.docs_error is None]
    if statuses and not documented:
        raise error_from_info(statuses[0].docs_error)
    if all(s.status == "ok" for s in statuses):
        if not refreshed and not any(s.regenerated for s in statuses):
            return "unchanged", f"{entry.key} is already cached and current"
        return "success", f"Cached {entry.key} ({len(statuses)} unit(s) documented)"
    failed = [s.member for s in statuses if s.status != "ok"]
    return "partial_success", f"Cached {entry.key}; incomplete: {', '.join(failed)}"


def _page_truncation(returned: int, total: int, narrow_with: str) -> Truncation:
    return Truncation(
        returned=returned,
        total=total,
        hint=(
            f"Response budget reached after {returned} of {total} results; "
            f"continue with next_cursor or narrow with {narrow_with}."
        ),
    )


def _window_hit_docs(
    hits: list[SearchHit], budget: int
) -> tuple[list[SearchHit], dict[str, tuple[int, int]]]:
    """Cut full-detail docs to budget; maps cut hit ids to (next_offset, total)."""
    windowed: list[SearchHit] = []
    cuts: dict[str, tuple[int, int]] = {}
    for hit in hits:
        if isinstance(hit, FullHit) and hit.docs:
            docs, cut = window_text(hit.docs, 0, budget)
            if cut is not None:
                cuts[hit.id] = (cut.next_offset, cut.total)
                hit = hit.model_copy(update={"docs": docs})
        windowed.append(hit)
    return windowed, cuts


def _docs_truncation(cuts: dict[str, tuple[int, int]]) -> Truncation:
    if len(cuts) == 1:
        ((item_id, (next_offset, total)),) = cuts.items()
        return Truncation(
            returned=next_offset,
            total=total,
            next_offset=next_offset,
            hint=f"Call get_item_docs with item_id={item_id!r} and offset={next_offset} for the rest.",
        )
    resume = ", ".join(f"item_id={item_id!r} offset={offset}" for item_id, (offset, _) in cuts.items())
    return Truncation(
        returned=sum(offset for offset, _ in cuts.values()),
        total=sum(total for _, total in cuts.values()),
        hint=f"Documentation cut to the doc budget; call get_item_docs with {resume} for the rest.",
    )
