# src/collaborators/rustdoc.py — v1
"""rustdoc JSON generation through ``cargo rustdoc`` on a pinned nightly."""

from __future__ import annotations

import json
import logging
import subprocess
from pathlib import Path
from typing import Any

from cratevault.collaborators.base import DocGenerator
from cratevault.errors import BuildFailed, ToolchainMissing

logger = logging.getLogger(__name__)

MULTIPLE_TARGETS_ERROR = "extra arguments to `rustdoc` can only be passed to one target"
NO_LIBRARY_ERROR = "no library targets found"


class CargoRustdocGenerator(DocGenerator):
    """Runs ``cargo +<toolchain> rustdoc ... --output-format json``."""

    def __init__(
        self,
        toolchain: str = "nightly-2025-06-23",
        all_features: bool = True,
        cargo_executable: str = "cargo",
        rustup_executable: str = "rustup",
        timeout: float | None = 1800.0,
    ) -> None:
        self._toolchain = toolchain
        self._all_features = all_features
        self._cargo = cargo_executable
        self._rustup = rustup_executable
        self._timeout = timeout
        self._validated = False

    @property
    def toolchain(self) -> str:
        return self._toolchain

    def validate_toolchain(self) -> None:
        """Fail with an actionable message when the channel is missing."""
        if self._validated:
            return
        install_hint = f"rustup toolchain install {self._toolchain}"
        try:
            result = subprocess.run(
                [self._rustup, "toolchain", "list"],
                capture_output=True,
                text=True,
                timeout=60,
            )
        except FileNotFoundError as e:
            raise ToolchainMissing(
                f"rustup not found; install rustup and run: {install_hint}",
                detail={"toolchain": self._toolchain},
            ) from e
        if result.returncode != 0 or self._toolchain not in result.stdout:
            raise ToolchainMissing(
                f"Required toolchain {self._toolchain} is not installed. Run: {install_hint}",
                detail={"toolchain": self._toolchain},
            )
        self._validated = True

    def generate(
        self, manifest_dir: Path, package: str | None, target_dir: Path
    ) -> dict[str, Any]:
        self.validate_toolchain()
        base = [self._cargo, f"+{self._toolchain}", "rustdoc"]
        if package:
            base += ["-p", package]
        if self._all_features:
            base.append("--all-features")
        base += ["--target-dir", str(target_dir)]
        rustdoc_args = ["--", "--output-format", "json", "-Z", "unstable-options"]

        result = self._run([*base, *rustdoc_args], manifest_dir)
        if result.returncode != 0 and MULTIPLE_TARGETS_ERROR in result.stderr:
            logger.debug("Multiple targets in %s, retrying with --lib", manifest_dir)
            result = self._run([*base, "--lib", *rustdoc_args], manifest_dir)

        if result.returncode != 0:
            if NO_LIBRARY_ERROR in result.stderr:
                raise BuildFailed(
                    f"{package or manifest_dir.name} is a binary-only package; "
                    "rustdoc JSON needs a library target",
                    diagnostic=result.stderr,
                )
            raise BuildFailed(
                f"cargo rustdoc failed for {package or manifest_dir.name}",
                diagnostic=result.stderr,
            )

        output = self._find_output(target_dir / "doc", package)
        logger.info("Generated rustdoc JSON %s", output)
        try:
            return json.loads(output.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise BuildFailed(f"Unreadable rustdoc output {output}: {e}") from e

    def _run(self, args: list[str], cwd: Path) -> subprocess.CompletedProcess[str]:
        try:
            return subprocess.run(
                args, cwd=cwd, capture_output=True, text=True, timeout=self._timeout
            )
        except FileNotFoundError as e:
            raise ToolchainMissing(f"cargo executable {self._cargo!r} not found") from e
        except subprocess.TimeoutExpired as e:
            raise BuildFailed(
                f"cargo rustdoc timed out after {self._timeout}s",
                diagnostic=_as_text(e.stderr),
            ) from e

    @staticmethod
    def _find_output(doc_dir: Path, package: str | None) -> Path:
        if package:
            expected = doc_dir / f"{package.replace('-', '_')}.json"
            if expected.is_file():
                return expected
        candidates = sorted(doc_dir.glob("*.json"), key=lambda p: p.stat().st_mtime)
        if not candidates:
            raise BuildFailed(f"cargo rustdoc produced no JSON under {doc_dir}")
        return candidates[-1]


def _as_text(output: str | bytes | None) -> str:
    if isinstance(output, bytes):
        return output.decode("utf-8", errors="replace")
    return output or ""
