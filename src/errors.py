# src/errors.py — v1
"""Typed error taxonomy shared by every component.

Errors are raised where they are detected and travel unchanged to the
caller of the query facade. The facade tags each error with the stage in
which it escaped (acquire, resolve, materialize, index, answer) so callers
can tell transient failures from permanent ones without parsing messages.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

Stage = Literal["acquire", "resolve", "materialize", "index", "answer"]


class ErrorInfo(BaseModel):
    """Serializable view of a CrateVaultError."""

    code: str
    message: str
    stage: Stage | None = None
    retryable: bool = False
    detail: dict[str, Any] = Field(default_factory=dict)


class CrateVaultError(Exception):
    """Base class for all domain errors."""

    code: str = "error"
    retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        stage: Stage | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.stage = stage
        self.detail = detail or {}

    def with_stage(self, stage: Stage) -> CrateVaultError:
        """Record the stage unless an inner stage already claimed the error."""
        if self.stage is None:
            self.stage = stage
        return self

    def to_info(self) -> ErrorInfo:
        return ErrorInfo(
            code=self.code,
            message=self.message,
            stage=self.stage,
            retryable=self.retryable,
            detail=self.detail,
        )

    def __str__(self) -> str:
        if self.stage:
            return f"[{self.stage}] {self.message}"
        return self.message


class NotFound(CrateVaultError):
    """Package, version, reference, member, item or cache entry does not exist."""

    code = "not_found"


class NetworkError(CrateVaultError):
    """Transport failure talking to the registry or a repository host."""

    code = "network_error"
    retryable = True


class InvalidSource(CrateVaultError):
    """Fetched content is not a valid package (no manifest, unsafe archive...)."""

    code = "invalid_source"


class MalformedWorkspace(InvalidSource):
    """Workspace manifest lists members that cannot be resolved."""

    code = "malformed_workspace"


class ToolchainMissing(CrateVaultError):
    """The documentation toolchain channel is not installed."""

    code = "toolchain_missing"


class BuildFailed(CrateVaultError):
    """Documentation generation failed; ``diagnostic`` is the compiler output."""

    code = "build_failed"

    def __init__(
        self,
        message: str,
        *,
        diagnostic: str = "",
        stage: Stage | None = None,
        detail: dict[str, Any] | None = None,
    ) -> None:
        detail = dict(detail or {})
        detail["diagnostic"] = diagnostic
        super().__init__(message, stage=stage, detail=detail)
        self.diagnostic = diagnostic


class ResolutionFailed(CrateVaultError):
    """Dependency resolution (cargo metadata) failed."""

    code = "resolution_failed"


class LockTimeout(CrateVaultError):
    """Could not obtain the per-key lock within the bounded wait."""

    code = "lock_timeout"
    retryable = True


class IoError(CrateVaultError):
    """Filesystem failure while reading or writing the cache."""

    code = "io_error"


class InvalidRequest(CrateVaultError):
    """Caller supplied parameters that cannot be honored."""

    code = "invalid_request"


def error_from_info(info: ErrorInfo) -> CrateVaultError:
    """Rebuild an error recorded earlier (e.g. a failed build kept in metadata)."""
    for cls in _ALL_ERRORS:
        if cls.code == info.code:
            break
    else:
        cls = CrateVaultError
    if cls is BuildFailed:
        detail = {k: v for k, v in info.detail.items() if k != "diagnostic"}
        return BuildFailed(
            info.message,
            diagnostic=info.detail.get("diagnostic", ""),
            stage=info.stage,
            detail=detail,
        )
    return cls(info.message, stage=info.stage, detail=info.detail)


_ALL_ERRORS: tuple[type[CrateVaultError], ...] = (
    NotFound,
    NetworkError,
    InvalidSource,
    MalformedWorkspace,
    ToolchainMissing,
    BuildFailed,
    ResolutionFailed,
    LockTimeout,
    IoError,
    InvalidRequest,
)
