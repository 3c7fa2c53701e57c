# tests/integration/api/test_int_facade.py — v1
"""Integration tests for the CrateVault facade.

Covers: api/facade.py end to end over the real store, acquirer,
workspace resolver, materializer and search index, with fake
collaborators standing in for the registry, git and the cargo tools.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from cratevault.api.facade import CrateVault
from cratevault.api.models import (
    CacheRequest,
    DependenciesRequest,
    ItemDocsRequest,
    ItemRequest,
    ItemSourceRequest,
    ListItemsRequest,
    SearchRequest,
    StructureRequest,
)
from cratevault.cache.models import CacheKey
from cratevault.config.settings import Settings
from cratevault.errors import BuildFailed, InvalidRequest, NetworkError, NotFound
from cratevault.search.models import FullHit, PreviewHit

FOO = {"crate": "foo", "version": "1.2.3"}


@pytest.fixture
def workspace_dir(tmp_path: Path, builders) -> Path:
    return builders.write_workspace(
        tmp_path / "src-tree" / "ws", {"crates/alpha": "alpha", "crates/beta": "beta"}, "1.0.0"
    )


class TestRegistryPackage:
    @pytest.mark.asyncio
    async def test_cache_then_query(self, vault: CrateVault, fake_registry):
        response = await vault.cache(CacheRequest(**FOO))
        assert response.status == "success"
        assert response.origin == "crates.io"
        assert not response.is_workspace
        assert [s.member for s in response.member_statuses] == ["foo"]
        assert response.member_statuses[0].item_count == 6
        assert Path(response.source_root, "src", "lib.rs").is_file()

        items = await vault.list_items(ListItemsRequest(**FOO))
        assert items.total == 6
        assert items.unit.crate == "foo" and items.unit.member is None

        page = await vault.search(SearchRequest(**FOO, pattern="parser"))
        assert page.hits[0].name == "Parser"
        assert isinstance(page.hits[0], PreviewHit)

        item = await vault.get_item(ItemRequest(**FOO, item_id=page.hits[0].id))
        assert item.item.signature == "struct Parser"
        assert item.truncation is None
        assert fake_registry.downloads == [("foo", "1.2.3")]

    @pytest.mark.asyncio
    async def test_source_excerpt_matches_tree(self, vault: CrateVault):
        await vault.cache(CacheRequest(**FOO))
        source = await vault.get_item_source(ItemSourceRequest(**FOO, item_id="2", context_lines=1))
        excerpt = source.excerpt
        assert (excerpt.start_line, excerpt.end_line) == (8, 12)
        lines = Path(vault.store.source_root(CacheKey(name=FOO["crate"], version=FOO["version"])), "src", "lib.rs").read_text().splitlines()
        assert excerpt.code == "\n".join(lines[7:12])
        assert excerpt.code.startswith("/// Parse a string.")

    @pytest.mark.asyncio
    async def test_preview_is_subset_of_full(self, vault: CrateVault):
        preview = await vault.search(SearchRequest(**FOO, pattern="parse", detail="preview"))
        full = await vault.search(SearchRequest(**FOO, pattern="parse", detail="full"))
        assert [h.id for h in preview.hits] == [h.id for h in full.hits]
        for small, big in zip(preview.hits, full.hits):
            assert isinstance(big, FullHit)
            assert small.model_dump().items() <= big.model_dump().items()

    @pytest.mark.asyncio
    async def test_query_auto_caches_latest(self, vault: CrateVault, fake_registry):
        page = await vault.search(SearchRequest(crate="foo", pattern="Deserialize", mode="exact"))
        assert page.unit.version == "1.2.3"
        assert [h.name for h in page.hits] == ["Deserialize"]
        assert await vault.list_versions("foo") == ["1.2.3"]

    @pytest.mark.asyncio
    async def test_item_docs_windows(self, vault: CrateVault):
        pieces, offset = [], 0
        while True:
            docs = await vault.get_item_docs(ItemDocsRequest(**FOO, item_id="1", offset=offset, max_chars=8))
            pieces.append(docs.docs)
            if docs.truncation is None:
                break
            assert "get_item_docs" in docs.truncation.hint
            offset = docs.truncation.next_offset
        assert "".join(pieces) == "A streaming parser."
        assert docs.total_chars == 19

    @pytest.mark.asyncio
    async def test_item_docs_offset_out_of_range(self, vault: CrateVault):
        with pytest.raises(InvalidRequest) as exc:
            await vault.get_item_docs(ItemDocsRequest(**FOO, item_id="1", offset=500))
        assert exc.value.stage == "answer"

    @pytest.mark.asyncio
    async def test_unknown_item(self, vault: CrateVault):
        with pytest.raises(NotFound):
            await vault.get_item(ItemRequest(**FOO, item_id="999"))

    @pytest.mark.asyncio
    async def test_dependencies(self, vault: CrateVault):
        deps = await vault.get_dependencies(DependenciesRequest(**FOO, include_edges=True))
        assert deps.package == "foo"
        assert [d.name for d in deps.dependencies] == ["serde", "serde_derive"]
        assert len(deps.edges) == 2

        direct = await vault.get_dependencies(DependenciesRequest(**FOO, direct_only=True))
        assert [d.name for d in direct.dependencies] == ["serde"]
        assert direct.edges is None

        named = await vault.get_dependencies(DependenciesRequest(**FOO, name="DERIVE"))
        assert [d.name for d in named.dependencies] == ["serde_derive"]

    @pytest.mark.asyncio
    async def test_structure(self, vault: CrateVault):
        structure = await vault.get_structure(StructureRequest(**FOO))
        assert structure.root.name == "foo"
        assert [c.name for c in structure.root.children] == ["Parser", "de"]

    @pytest.mark.asyncio
    async def test_second_cache_is_unchanged(self, vault: CrateVault, fake_registry, fake_docs):
        await vault.cache(CacheRequest(**FOO))
        again = await vault.cache(CacheRequest(**FOO))
        assert again.status == "unchanged"
        assert fake_registry.downloads == [("foo", "1.2.3")]
        assert fake_docs.calls == ["foo"]

    @pytest.mark.asyncio
    async def test_update_forces_refresh(self, vault: CrateVault, fake_registry, fake_docs):
        await vault.cache(CacheRequest(**FOO))
        updated = await vault.cache(CacheRequest(**FOO, update=True))
        assert updated.status == "success" and updated.refreshed
        assert len(fake_registry.downloads) == 2
        assert fake_docs.calls == ["foo", "foo"]


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_cache_acquires_once(self, vault: CrateVault, fake_registry, fake_docs):
        fake_registry.delay = 0.05
        results = await asyncio.gather(*(vault.cache(CacheRequest(**FOO)) for _ in range(5)))
        assert fake_registry.downloads == [("foo", "1.2.3")]
        assert fake_docs.calls == ["foo"]
        assert all(r == results[0] for r in results)
        assert results[0].status == "success"

    @pytest.mark.asyncio
    async def test_concurrent_latest_lookup_shared(self, vault: CrateVault, fake_registry, fake_docs):
        fake_registry.delay = 0.05
        results = await asyncio.gather(*(vault.cache(CacheRequest(crate="foo")) for _ in range(5)))
        assert fake_registry.lookups == ["foo"]
        assert fake_registry.downloads == [("foo", "1.2.3")]
        assert {r.version for r in results} == {"1.2.3"}
        assert fake_docs.calls == ["foo"]

    @pytest.mark.asyncio
    async def test_concurrent_failure_is_shared(self, vault: CrateVault, fake_registry):
        fake_registry.delay = 0.05
        results = await asyncio.gather(
            *(vault.cache(CacheRequest(crate="foo", version="9.9.9")) for _ in range(3)),
            return_exceptions=True,
        )
        assert len(fake_registry.downloads) == 1
        assert all(isinstance(r, NotFound) for r in results)
        assert all(str(r) == str(results[0]) for r in results)

    @pytest.mark.asyncio
    async def test_concurrent_queries_build_once(self, vault: CrateVault, fake_registry, fake_docs):
        fake_registry.delay = 0.02
        pages = await asyncio.gather(
            vault.search(SearchRequest(**FOO, pattern="parse")),
            vault.list_items(ListItemsRequest(**FOO)),
            vault.get_item(ItemRequest(**FOO, item_id="5")),
        )
        assert pages[0].total == 2
        assert fake_registry.downloads == [("foo", "1.2.3")]
        assert fake_docs.calls == ["foo"]


class TestEviction:
    @pytest.mark.asyncio
    async def test_evict_then_recache(self, vault: CrateVault, fake_registry):
        await vault.search(SearchRequest(**FOO, pattern="parser"))
        evicted = await vault.evict("foo", "1.2.3")
        assert evicted.evicted
        assert await vault.list_entries() == []
        with pytest.raises(NotFound):
            vault.store.read_entry(CacheKey(name=FOO["crate"], version=FOO["version"]))
        with pytest.raises(NotFound):
            await vault.evict("foo", "1.2.3")

        page = await vault.search(SearchRequest(**FOO, pattern="parser"))
        assert page.hits[0].name == "Parser"
        assert len(fake_registry.downloads) == 2

    @pytest.mark.asyncio
    async def test_list_entries(self, vault: CrateVault, package_dir: Path):
        await vault.cache(CacheRequest(**FOO))
        await vault.cache(CacheRequest(crate="localpkg", source=str(package_dir)))
        entries = await vault.list_entries()
        assert [(e.name, e.version) for e in entries] == [("foo", "1.2.3"), ("localpkg", "0.3.0")]
        assert entries[1].origin == str(package_dir.resolve())


class TestFailures:
    @pytest.mark.asyncio
    async def test_unknown_version(self, vault: CrateVault):
        with pytest.raises(NotFound) as exc:
            await vault.cache(CacheRequest(crate="foo", version="9.9.9"))
        assert exc.value.stage == "acquire"
        assert vault.store.list_versions("foo") == []
        staging = vault.store.root / "staging"
        assert not staging.exists() or list(staging.iterdir()) == []

    @pytest.mark.asyncio
    async def test_network_error_is_retryable(self, vault: CrateVault, fake_registry, monkeypatch):
        async def offline(name: str, version: str) -> bytes:
            raise NetworkError("connection reset")

        monkeypatch.setattr(fake_registry, "download", offline)
        with pytest.raises(NetworkError) as exc:
            await vault.cache(CacheRequest(**FOO))
        assert exc.value.retryable
        assert exc.value.stage == "acquire"
        assert exc.value.to_info().code == "network_error"

    @pytest.mark.asyncio
    async def test_docs_failure_raises_with_diagnostic(self, vault: CrateVault, fake_docs):
        fake_docs.failures["foo"] = "error[E0599]: no method named `frob`"
        with pytest.raises(BuildFailed) as exc:
            await vault.cache(CacheRequest(**FOO))
        assert exc.value.stage == "materialize"
        assert "E0599" in exc.value.diagnostic
        # The source stays cached; queries re-raise the recorded failure.
        with pytest.raises(BuildFailed):
            await vault.search(SearchRequest(**FOO, pattern="parser"))
        assert fake_docs.calls == ["foo"]

    @pytest.mark.asyncio
    async def test_dependency_failure_is_partial(self, vault: CrateVault, fake_deps):
        fake_deps.fail = True
        response = await vault.cache(CacheRequest(**FOO))
        assert response.status == "partial_success"
        assert response.member_statuses[0].dependencies_error.code == "resolution_failed"
        page = await vault.search(SearchRequest(**FOO, pattern="parser"))
        assert page.total >= 1

    @pytest.mark.asyncio
    async def test_invalid_crate_name(self, vault: CrateVault):
        with pytest.raises(InvalidRequest) as exc:
            await vault.cache(CacheRequest(crate="../../etc", version="1.0.0"))
        assert exc.value.stage == "resolve"


class TestWorkspace:
    @pytest.mark.asyncio
    async def test_package_with_empty_workspace_table(self, vault: CrateVault, tmp_path: Path, builders, fake_docs):
        root = builders.write_package(tmp_path / "src-tree" / "solo", "solo", "0.2.0")
        with (root / "Cargo.toml").open("a") as fh:
            fh.write("\n[workspace]\n")

        response = await vault.cache(CacheRequest(crate="solo", source=str(root)))
        assert response.status == "success"
        assert not response.is_workspace
        assert [m.name for m in response.members] == ["solo"]
        assert fake_docs.calls == ["solo"]

    @pytest.mark.asyncio
    async def test_detect_then_materialize_members(self, vault: CrateVault, workspace_dir: Path, fake_docs):
        detected = await vault.cache(CacheRequest(crate="ws", source=str(workspace_dir)))
        assert detected.status == "workspace_detected"
        assert detected.is_workspace
        assert sorted(m.name for m in detected.members) == ["alpha", "beta"]
        assert fake_docs.calls == []

        fake_docs.failures["beta"] = "error[E0425]: cannot find value `x`"
        response = await vault.cache(
            CacheRequest(crate="ws", source=str(workspace_dir), members=["alpha", "beta"])
        )
        assert response.status == "partial_success"
        statuses = {s.member: s for s in response.member_statuses}
        assert statuses["alpha"].status == "ok"
        assert statuses["beta"].docs_error.code == "build_failed"
        assert "E0425" in statuses["beta"].docs_error.detail["diagnostic"]

        page = await vault.search(SearchRequest(crate="ws", member="alpha", pattern="parser"))
        assert page.unit.member == "alpha"
        assert page.hits[0].name == "Parser"

        with pytest.raises(BuildFailed) as exc:
            await vault.search(SearchRequest(crate="ws", member="beta", pattern="parser"))
        assert exc.value.stage == "materialize"

    @pytest.mark.asyncio
    async def test_member_required(self, vault: CrateVault, workspace_dir: Path):
        await vault.cache(CacheRequest(crate="ws", source=str(workspace_dir)))
        with pytest.raises(InvalidRequest, match="choose a member") as exc:
            await vault.list_items(ListItemsRequest(crate="ws"))
        assert exc.value.detail["members"] == ["alpha", "beta"]

    @pytest.mark.asyncio
    async def test_unknown_member(self, vault: CrateVault, workspace_dir: Path):
        with pytest.raises(NotFound):
            await vault.cache(CacheRequest(crate="ws", source=str(workspace_dir), members=["gamma"]))

    @pytest.mark.asyncio
    async def test_query_materializes_member_on_demand(self, vault: CrateVault, workspace_dir: Path, fake_docs):
        await vault.cache(CacheRequest(crate="ws", source=str(workspace_dir)))
        deps = await vault.get_dependencies(DependenciesRequest(crate="ws", member="crates/beta"))
        assert deps.package == "beta"
        assert fake_docs.calls == ["beta"]


class TestLocalSources:
    @pytest.mark.asyncio
    async def test_unchanged_tree_skips_materialization(self, vault: CrateVault, package_dir: Path, fake_docs):
        first = await vault.cache(CacheRequest(crate="localpkg", source=str(package_dir)))
        assert first.status == "success"
        assert first.version == "0.3.0"

        again = await vault.cache(CacheRequest(crate="localpkg", source=str(package_dir)))
        assert again.status == "unchanged"
        assert not again.refreshed
        assert fake_docs.calls == ["localpkg"]
        page = await vault.search(SearchRequest(crate="localpkg", pattern="parse_str", mode="exact"))
        assert page.total == 1

    @pytest.mark.asyncio
    async def test_changed_tree_refreshes(self, vault: CrateVault, package_dir: Path, fake_docs):
        await vault.cache(CacheRequest(crate="localpkg", source=str(package_dir)))
        with (package_dir / "src" / "lib.rs").open("a") as fh:
            fh.write("\npub fn extra() {}\n")

        refreshed = await vault.cache(CacheRequest(crate="localpkg", source=str(package_dir)))
        assert refreshed.status == "success"
        assert refreshed.refreshed
        assert fake_docs.calls == ["localpkg", "localpkg"]
        cached = Path(refreshed.source_root, "src", "lib.rs").read_text()
        assert "pub fn extra" in cached

    @pytest.mark.asyncio
    async def test_relative_symlink_cached_as_file(self, vault: CrateVault, package_dir: Path, fake_docs):
        (package_dir.parent / "README.md").write_text("# localpkg\n")
        (package_dir / "README.md").symlink_to(Path("..") / "README.md")

        first = await vault.cache(CacheRequest(crate="localpkg", source=str(package_dir)))
        cached = Path(first.source_root)
        assert sorted(p.name for p in cached.iterdir()) == ["Cargo.toml", "README.md", "src"]
        assert (cached / "README.md").read_text() == "# localpkg\n"

        again = await vault.cache(CacheRequest(crate="localpkg", source=str(package_dir)))
        assert again.status == "unchanged"
        assert fake_docs.calls == ["localpkg"]


class TestRepositorySources:
    @pytest.mark.asyncio
    async def test_version_from_checkout(self, vault: CrateVault, fake_repository, tmp_path: Path, builders):
        fake_repository.repos["https://github.com/acme/widgets"] = builders.write_package(
            tmp_path / "remote" / "widgets", "widgets", "0.4.0"
        )
        response = await vault.cache(
            CacheRequest(crate="widgets", source="https://github.com/acme/widgets#tag:v0.4.0")
        )
        assert response.status == "success"
        assert response.version == "0.4.0"
        assert response.origin == "https://github.com/acme/widgets#tag:v0.4.0"
        assert fake_repository.fetches[0].ref == "v0.4.0"

        page = await vault.search(SearchRequest(crate="widgets", version="0.4.0", pattern="parser"))
        assert page.hits[0].name == "Parser"

    @pytest.mark.asyncio
    async def test_missing_repository(self, vault: CrateVault):
        with pytest.raises(NotFound) as exc:
            await vault.cache(CacheRequest(crate="nope", source="https://github.com/acme/nope"))
        assert exc.value.stage == "acquire"


class TestResponseBudget:
    @pytest.fixture
    def small_vault(self, tmp_path: Path, collaborators) -> CrateVault:
        settings = Settings(
            _env_file=None,
            cache_dir=tmp_path / "small-cache",
            lock_timeout_s=10.0,
            lock_poll_interval_s=0.01,
            response_budget_chars=400,
            doc_budget_chars=10,
            source_budget_chars=60,
        )
        return CrateVault(settings, collaborators)

    @pytest.mark.asyncio
    async def test_search_page_cut_with_resumable_cursor(self, small_vault: CrateVault):
        request = SearchRequest(**FOO, pattern="*", mode="exact", detail="full", limit=6)
        first = await small_vault.search(request)
        assert first.truncation is not None
        assert 1 <= len(first.hits) < 6
        assert first.total == 6

        seen = [h.id for h in first.hits]
        cursor = first.next_cursor
        while cursor is not None:
            page = await small_vault.search(request.model_copy(update={"cursor": cursor}))
            assert page.offset == len(seen)
            seen.extend(h.id for h in page.hits)
            cursor = page.next_cursor
        assert sorted(seen) == ["0", "1", "2", "3", "4", "5"]

    @pytest.mark.asyncio
    async def test_full_hit_docs_cut_to_doc_budget(self, small_vault: CrateVault):
        page = await small_vault.search(
            SearchRequest(**FOO, pattern="Parser", mode="exact", detail="full", limit=1)
        )
        hit = page.hits[0]
        assert isinstance(hit, FullHit)
        assert hit.name == "Parser"
        assert hit.docs == "A streamin"
        assert page.truncation is not None
        assert page.truncation.next_offset == 10
        assert "get_item_docs" in page.truncation.hint
        assert "item_id='1'" in page.truncation.hint

        rest = await small_vault.get_item_docs(ItemDocsRequest(**FOO, item_id=hit.id, offset=10))
        assert hit.docs + rest.docs == "A streaming parser."

    @pytest.mark.asyncio
    async def test_single_oversized_hit_reports_truncation(self, tmp_path: Path, collaborators):
        settings = Settings(
            _env_file=None,
            cache_dir=tmp_path / "tiny-cache",
            lock_timeout_s=10.0,
            lock_poll_interval_s=0.01,
            response_budget_chars=50,
            doc_budget_chars=10,
            source_budget_chars=50,
        )
        tiny = CrateVault(settings, collaborators)
        page = await tiny.search(SearchRequest(**FOO, pattern="Parser", mode="exact", detail="full", limit=1))
        assert len(page.hits) == 1
        assert page.hits[0].docs == "A streamin"
        assert page.truncation is not None
        assert "response budget" in page.truncation.hint
        assert "offset=10" in page.truncation.hint

    @pytest.mark.asyncio
    async def test_item_docs_cut_to_doc_budget(self, small_vault: CrateVault):
        item = await small_vault.get_item(ItemRequest(**FOO, item_id="1"))
        assert item.item.docs == "A streamin"
        assert item.truncation.next_offset == 10
        assert "offset=10" in item.truncation.hint

    @pytest.mark.asyncio
    async def test_source_clipped_to_whole_lines(self, small_vault: CrateVault):
        source = await small_vault.get_item_source(ItemSourceRequest(**FOO, item_id="2", context_lines=3))
        assert source.truncation is not None
        assert len(source.excerpt.code) <= 60
        assert source.excerpt.end_line == source.excerpt.start_line + source.excerpt.code.count("\n")
