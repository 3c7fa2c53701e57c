# src/logging/context.py — v1
"""Contextual logging support — attach crate, version, member and stage to log records."""

from __future__ import annotations

import contextvars
from dataclasses import dataclass
from typing import Any

# Context variables for structured logging, set per facade request.
_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)
_crate: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "crate", default=None
)
_version: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "version", default=None
)
_member: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "member", default=None
)
_stage: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "stage", default=None
)


@dataclass
class LogContext:
    """Immutable snapshot of current logging context."""

    request_id: str | None = None
    crate: str | None = None
    version: str | None = None
    member: str | None = None
    stage: str | None = None

    def as_dict(self) -> dict[str, Any]:
        """Return non-None fields as dict for JSON log injection."""
        return {k: v for k, v in self.__dict__.items() if v is not None}


def get_context() -> LogContext:
    """Snapshot current context variables."""
    return LogContext(
        request_id=_request_id.get(),
        crate=_crate.get(),
        version=_version.get(),
        member=_member.get(),
        stage=_stage.get(),
    )


def set_request_context(
    request_id: str, crate: str | None = None, version: str | None = None
) -> None:
    """Set request-level context (called once per facade operation)."""
    _request_id.set(request_id)
    _crate.set(crate)
    _version.set(version)


def set_member_context(member: str | None) -> None:
    """Set the workspace member being processed."""
    _member.set(member)


def set_stage_context(stage: str | None) -> None:
    """Set the request stage (acquire, resolve, materialize, index, answer)."""
    _stage.set(stage)


def clear_context() -> None:
    """Reset all context variables."""
    _request_id.set(None)
    _crate.set(None)
    _version.set(None)
    _member.set(None)
    _stage.set(None)
