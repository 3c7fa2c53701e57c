# src/materialize/dependencies.py — v1
"""Flatten ``cargo metadata`` output into a DependencyArtifact.

The resolve graph is loaded into a networkx DiGraph. Direct dependencies
come from the unit's declared dependency list; everything else reachable
from the unit is transitive, with its shortest depth and the weakest kind
along its best path (normal beats build beats dev).
"""

from __future__ import annotations

import logging
from collections import deque
from pathlib import Path
from typing import Any

import networkx as nx

from cratevault.docs.models import (
    DependencyArtifact,
    DependencyEdge,
    DependencyKind,
    DependencyRecord,
)
from cratevault.errors import ResolutionFailed

logger = logging.getLogger(__name__)

_KIND_RANK: dict[str, int] = {"normal": 0, "build": 1, "dev": 2}
_RANK_KIND: dict[int, DependencyKind] = {0: "normal", 1: "build", 2: "dev"}


def build_dependency_graph(metadata: dict[str, Any]) -> nx.DiGraph:
    """Resolve graph: nodes are package ids, edges carry the strongest dep kind."""
    graph = nx.DiGraph()
    for package in metadata.get("packages") or []:
        graph.add_node(package["id"], name=package["name"], version=package.get("version"))

    resolve = metadata.get("resolve") or {}
    for node in resolve.get("nodes") or []:
        source = node["id"]
        graph.add_node(source)
        for dep in node.get("deps") or []:
            kinds = [k.get("kind") or "normal" for k in dep.get("dep_kinds") or []] or ["normal"]
            rank = min(_KIND_RANK.get(k, 0) for k in kinds)
            graph.add_edge(source, dep["pkg"], kind=_RANK_KIND[rank])
    return graph


def flatten_dependencies(metadata: dict[str, Any], manifest_dir: Path | None = None) -> DependencyArtifact:
    """Build the DependencyArtifact of the package rooted at manifest_dir.

    Raises:
        ResolutionFailed: The root package cannot be identified.
    """
    packages = {p["id"]: p for p in metadata.get("packages") or []}
    root_id = _root_package_id(metadata, packages, manifest_dir)
    root = packages[root_id]
    graph = build_dependency_graph(metadata)

    records: dict[str, DependencyRecord] = {}
    direct_ids = {target: data["kind"] for _, target, data in graph.out_edges(root_id, data=True)}
    resolved_by_name = {graph.nodes[t].get("name"): t for t in direct_ids}

    for declared in root.get("dependencies") or []:
        kind = declared.get("kind") or "normal"
        dep_name = declared["name"]
        resolved = resolved_by_name.get(dep_name)
        key = declared.get("rename") or dep_name
        if key in records:
            key = f"{key}@{kind}"
        records[key] = DependencyRecord(
            name=dep_name,
            version_req=declared.get("req"),
            resolved_version=graph.nodes[resolved].get("version") if resolved else None,
            kind=kind if kind in _KIND_RANK else "normal",
            optional=bool(declared.get("optional")),
            direct=True,
            depth=1,
            features=list(declared.get("features") or []),
            target=declared.get("target"),
        )

    depths = nx.single_source_shortest_path_length(graph, root_id) if root_id in graph else {}
    ranks = _best_kind_ranks(graph, root_id)
    direct_names = {r.name for r in records.values()}
    for node_id, depth in sorted(depths.items(), key=lambda item: (item[1], item[0])):
        if node_id == root_id:
            continue
        name = graph.nodes[node_id].get("name") or node_id
        version = graph.nodes[node_id].get("version")
        if depth == 1 and name in direct_names:
            continue
        key = name if name not in records else f"{name}@{version}"
        if key in records:
            continue
        records[key] = DependencyRecord(
            name=name,
            resolved_version=version,
            kind=_RANK_KIND[ranks.get(node_id, 0)],
            direct=False,
            depth=depth,
        )

    edges = [
        DependencyEdge(
            source=_label(graph, source),
            target=_label(graph, target),
            kind=data["kind"],
        )
        for source, target, data in sorted(graph.edges(data=True))
        if source in depths and target in depths
    ]

    logger.debug(
        "Flattened %d dependencies (%d direct) for %s",
        len(records),
        sum(r.direct for r in records.values()),
        root["name"],
    )
    return DependencyArtifact(
        package=root["name"],
        version=root.get("version"),
        dependencies=records,
        edges=edges,
    )


def _root_package_id(
    metadata: dict[str, Any], packages: dict[str, Any], manifest_dir: Path | None
) -> str:
    if manifest_dir is not None:
        wanted = (manifest_dir / "Cargo.toml").resolve()
        for pkg_id, package in packages.items():
            manifest_path = package.get("manifest_path")
            if manifest_path and Path(manifest_path).resolve() == wanted:
                return pkg_id
    root = (metadata.get("resolve") or {}).get("root")
    if root in packages:
        return root
    members = metadata.get("workspace_members") or []
    if len(members) == 1 and members[0] in packages:
        return members[0]
    raise ResolutionFailed("cargo metadata output does not identify the root package")


def _best_kind_ranks(graph: nx.DiGraph, root_id: str) -> dict[str, int]:
    """Lowest kind rank reachable for each node (max rank along a path)."""
    if root_id not in graph:
        return {}
    best: dict[str, int] = {root_id: 0}
    queue: deque[str] = deque([root_id])
    while queue:
        node = queue.popleft()
        for _, child, data in graph.out_edges(node, data=True):
            rank = max(best[node], _KIND_RANK[data["kind"]])
            if child not in best or rank < best[child]:
                best[child] = rank
                queue.append(child)
    return best


def _label(graph: nx.DiGraph, node_id: str) -> str:
    attrs = graph.nodes[node_id]
    name = attrs.get("name") or node_id
    version = attrs.get("version")
    return f"{name}@{version}" if version else name
