# src/collaborators/cargo_modules.py — v1
"""Module tree analysis through ``cargo modules structure``.

The command prints an indented tree::

    crate demo
    ├── mod net: pub
    │   └── struct Client: pub
    └── fn run: pub(crate)

which is parsed into StructureNode objects.
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
from pathlib import Path

from cratevault.collaborators.base import StructureAnalyzer
from cratevault.docs.models import StructureNode
from cratevault.errors import BuildFailed, ToolchainMissing

logger = logging.getLogger(__name__)

_ANSI_RE = re.compile(r"\x1b\[[0-9;]*m")
_PREFIX_RE = re.compile(r"^((?:│   |    |├── |└── |\|   |\|-- |`-- )*)")
_INDENT = 4


class CargoModulesAnalyzer(StructureAnalyzer):
    """Runs the cargo-modules subcommand in the member directory."""

    def __init__(self, cargo_executable: str = "cargo", timeout: float | None = 600.0) -> None:
        self._cargo = cargo_executable
        self._timeout = timeout

    def analyze(self, manifest_dir: Path, package: str | None) -> StructureNode:
        args = [self._cargo, "modules", "structure", "--lib"]
        if package:
            args += ["--package", package]
        env = {**os.environ, "NO_COLOR": "1"}
        try:
            result = subprocess.run(
                args, cwd=manifest_dir, capture_output=True, text=True,
                timeout=self._timeout, env=env,
            )
        except FileNotFoundError as e:
            raise ToolchainMissing(f"cargo executable {self._cargo!r} not found") from e
        except subprocess.TimeoutExpired as e:
            raise BuildFailed(f"cargo modules timed out after {self._timeout}s") from e

        if result.returncode != 0:
            if "no such command" in result.stderr:
                raise ToolchainMissing(
                    "cargo-modules is not installed. Run: cargo install cargo-modules"
                )
            raise BuildFailed(
                f"cargo modules failed for {package or manifest_dir.name}",
                diagnostic=result.stderr,
            )
        return parse_structure(result.stdout)


def parse_structure(text: str) -> StructureNode:
    """Parse cargo-modules tree output.

    Raises:
        BuildFailed: Output contains no crate root.
    """
    root: StructureNode | None = None
    stack: list[tuple[int, StructureNode]] = []

    for raw_line in text.splitlines():
        line = _ANSI_RE.sub("", raw_line).rstrip()
        if not line.strip():
            continue
        prefix = _PREFIX_RE.match(line).group(1)
        depth = len(prefix) // _INDENT
        kind, name, visibility = _parse_label(line[len(prefix):])

        while stack and stack[-1][0] >= depth:
            stack.pop()
        parent = stack[-1][1] if stack else None
        path = name if parent is None else f"{parent.path}::{name}"
        node = StructureNode(kind=kind, name=name, path=path, visibility=visibility)

        if parent is None:
            if root is not None:
                # Trees after the first belong to other targets.
                break
            root = node
        else:
            parent.children.append(node)
        stack.append((depth, node))

    if root is None:
        raise BuildFailed("cargo modules produced no module tree", diagnostic=text)
    return root


def _parse_label(label: str) -> tuple[str, str, str | None]:
    """Split "unsafe trait Foo: pub(crate)" into kind, name, visibility."""
    head, sep, visibility = label.partition(": ")
    kind, _, name = head.strip().rpartition(" ")
    if not kind:
        kind, name = "item", head.strip()
    return kind, name, visibility.strip() if sep else None
