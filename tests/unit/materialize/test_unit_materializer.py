# tests/unit/materialize/test_unit_materializer.py — v1
"""Tests for materialize/materializer.py — per-member artifact generation."""

from __future__ import annotations

import pytest

from cratevault.cache.models import CacheEntry, CacheKey, MemberId
from cratevault.cache.store import CacheStore
from cratevault.docs.models import DependencyArtifact, DocArtifact
from cratevault.materialize.materializer import Materializer


def _commit(store: CacheStore, tmp_path, builders, workspace: bool = False) -> CacheEntry:
    staging = store.create_staging("pkg")
    if workspace:
        builders.write_workspace(staging, {"crates/a": "alpha", "crates/b": "beta"}, version="1.0.0")
        key = CacheKey(name="ws", version="1.0.0")
    else:
        builders.write_package(staging, "foo", "1.2.3")
        key = CacheKey(name="foo", version="1.2.3")
    entry = store.commit_source(key, staging, content_hash="hash-1")
    if workspace:
        members = [MemberId(name="alpha", relative_path="crates/a"), MemberId(name="beta", relative_path="crates/b")]
    else:
        members = [MemberId(name="foo")]
    entry = entry.model_copy(update={"is_workspace": workspace, "members": members})
    store.update_entry(entry)
    return entry


@pytest.fixture
def materializer(store: CacheStore, fake_docs, fake_deps) -> Materializer:
    return Materializer(store, fake_docs, fake_deps)


class TestMaterialize:
    def test_plain_package(self, materializer, store, tmp_path, builders, fake_docs):
        entry = _commit(store, tmp_path, builders)
        [status] = materializer.materialize(entry, entry.members)

        assert status.status == "ok"
        assert status.item_count == 6
        assert store.has_artifact(entry.key, None, DocArtifact)
        assert store.has_artifact(entry.key, None, DependencyArtifact)
        meta = store.read_metadata(entry.key, None)
        assert meta.doc_generated and meta.dependencies_generated
        assert meta.content_hash == "hash-1"
        assert meta.toolchain == "nightly-test"
        assert meta.docs_digest
        assert fake_docs.calls == ["foo"]

    def test_current_unit_skipped(self, materializer, store, tmp_path, builders, fake_docs):
        entry = _commit(store, tmp_path, builders)
        materializer.materialize(entry, entry.members)
        [status] = materializer.materialize(entry, entry.members)
        assert status.regenerated is False
        assert fake_docs.calls == ["foo"]

    def test_force_regenerates(self, materializer, store, tmp_path, builders, fake_docs):
        entry = _commit(store, tmp_path, builders)
        materializer.materialize(entry, entry.members)
        materializer.materialize(entry, entry.members, force=True)
        assert fake_docs.calls == ["foo", "foo"]

    def test_content_change_makes_unit_stale(self, materializer, store, tmp_path, builders):
        entry = _commit(store, tmp_path, builders)
        materializer.materialize(entry, entry.members)
        changed = entry.model_copy(update={"content_hash": "hash-2"})
        assert not materializer.is_current(changed, entry.members[0])

    def test_workspace_partial_failure(self, materializer, store, tmp_path, builders, fake_docs):
        entry = _commit(store, tmp_path, builders, workspace=True)
        fake_docs.failures["beta"] = "error[E0425]: cannot find value `x` in this scope"

        alpha, beta = materializer.materialize(entry, entry.members)

        assert alpha.status == "ok"
        assert beta.status == "partial"
        assert beta.docs_error.code == "build_failed"
        assert beta.docs_error.stage == "materialize"
        assert "E0425" in beta.docs_error.detail["diagnostic"]
        assert store.has_artifact(entry.key, entry.members[0], DocArtifact)
        assert not store.has_artifact(entry.key, entry.members[1], DocArtifact)
        assert store.has_artifact(entry.key, entry.members[1], DependencyArtifact)
        meta = store.read_metadata(entry.key, entry.members[1])
        assert meta.docs_error is not None and not meta.doc_generated

    def test_both_steps_failing(self, materializer, store, tmp_path, builders, fake_docs, fake_deps):
        entry = _commit(store, tmp_path, builders)
        fake_docs.failures["foo"] = "boom"
        fake_deps.fail = True
        [status] = materializer.materialize(entry, entry.members)
        assert status.status == "failed"
        assert status.dependencies_error.code == "resolution_failed"

    def test_malformed_rustdoc_recorded_per_member(
        self, materializer, store, tmp_path, builders, fake_docs, monkeypatch
    ):
        entry = _commit(store, tmp_path, builders, workspace=True)
        generate = fake_docs.generate

        def malformed_for_beta(manifest_dir, package, target_dir):
            if package == "beta":
                return {"root": 7, "index": {"7": "not an item"}}
            return generate(manifest_dir, package, target_dir)

        monkeypatch.setattr(fake_docs, "generate", malformed_for_beta)
        alpha, beta = materializer.materialize(entry, entry.members)

        assert alpha.status == "ok"
        assert beta.docs_error.code == "invalid_source"
        assert beta.docs_error.stage == "materialize"
        assert store.has_artifact(entry.key, entry.members[1], DependencyArtifact)

    def test_malformed_cargo_metadata(self, materializer, store, tmp_path, builders, fake_deps, monkeypatch):
        entry = _commit(store, tmp_path, builders)
        monkeypatch.setattr(fake_deps, "resolve", lambda manifest_dir: {"packages": [{"name": "foo"}]})

        [status] = materializer.materialize(entry, entry.members)
        assert status.status == "partial"
        assert status.dependencies_error.code == "resolution_failed"
        assert store.has_artifact(entry.key, None, DocArtifact)
