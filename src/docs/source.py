# src/docs/source.py — v1
"""Source excerpts for documented items, read from the cached source tree."""

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path, PurePosixPath

from pydantic import BaseModel

from cratevault.docs.models import DocItem, SourceSpan
from cratevault.errors import InvalidRequest, NotFound


class SourceExcerpt(BaseModel):
    """Lines of an item's span plus surrounding context."""

    location: SourceSpan
    code: str
    start_line: int
    end_line: int
    context_lines: int


def read_excerpt(
    source_roots: Sequence[Path], item: DocItem, context_lines: int = 3
) -> SourceExcerpt:
    """Read the item's lines with ``context_lines`` of context on each side.

    Span filenames are relative to the directory cargo ran in, which for a
    workspace member may be the member or the workspace root; the first
    root containing the file wins.

    Raises:
        NotFound: Item has no span, or the file is missing from the tree.
        InvalidRequest: Negative context.
    """
    if context_lines < 0:
        raise InvalidRequest("context_lines must be >= 0")
    span = item.span
    if span is None:
        raise NotFound(f"Item {item.id} ({item.name}) has no source location")

    candidates = [_resolve_inside(root, span.filename) for root in source_roots]
    path = next((p for p in candidates if p.is_file()), None)
    if path is None:
        raise NotFound(
            f"Source file not found: {span.filename}",
            detail={"filename": span.filename},
        )
    lines = path.read_text(encoding="utf-8", errors="replace").splitlines()

    start = max(span.begin_line - 1 - context_lines, 0)
    end = min(span.end_line + context_lines, len(lines))
    return SourceExcerpt(
        location=span,
        code="\n".join(lines[start:end]),
        start_line=start + 1,
        end_line=end,
        context_lines=context_lines,
    )


def _resolve_inside(source_root: Path, filename: str) -> Path:
    """Join a span filename to the tree, refusing paths that leave it."""
    rel = PurePosixPath(filename.replace("\\", "/"))
    if rel.is_absolute() or ".." in rel.parts:
        raise NotFound(
            f"Source file {filename} is outside the cached tree",
            detail={"filename": filename},
        )
    return source_root.joinpath(*rel.parts)
