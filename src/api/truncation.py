# src/api/truncation.py — v1
"""Response-size policy helpers.

Text is windowed by characters and cut at a line break when one falls in
the second half of the window. Lists are halved until their serialized
size fits the budget, keeping at least one element.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from typing import TypeVar

from pydantic import BaseModel

from cratevault.api.models import Truncation
from cratevault.errors import InvalidRequest

T = TypeVar("T")


def window_text(
    text: str, offset: int, budget: int, hint: str | None = None
) -> tuple[str, Truncation | None]:
    """Slice text[offset:] to at most budget characters.

    ``hint`` may contain ``{next_offset}``; it is formatted when the text
    is cut.

    Raises:
        InvalidRequest: offset lies beyond the end of text.
    """
    total = len(text)
    if offset < 0 or offset > total:
        raise InvalidRequest(f"offset {offset} is outside the text (length {total})")
    if budget < 1:
        raise InvalidRequest("budget must be >= 1")
    end = offset + budget
    if end >= total:
        return text[offset:], None

    cut = text.rfind("\n", offset, end)
    if cut <= offset + budget // 2:
        cut = end
    chunk = text[offset:cut]
    return chunk, Truncation(
        returned=len(chunk),
        total=total,
        next_offset=cut,
        hint=hint.format(next_offset=cut) if hint else None,
    )


def clip_lines(text: str, budget: int) -> tuple[str, Truncation | None]:
    """Keep whole leading lines of text within budget characters."""
    if len(text) <= budget:
        return text, None
    cut = text.rfind("\n", 0, budget)
    chunk = text[:cut] if cut > 0 else text[:budget]
    return chunk, Truncation(
        returned=len(chunk),
        total=len(text),
        hint="Source excerpt truncated; request fewer context_lines to see the whole span.",
    )


def serialized_size(items: Sequence[BaseModel]) -> int:
    return sum(len(item.model_dump_json()) for item in items)


def fit_to_budget(
    items: Sequence[T],
    budget: int,
    size: Callable[[Sequence[T]], int],
) -> list[T]:
    """Largest prefix, halving from the full list, whose size fits budget."""
    count = len(items)
    while count > 1 and size(items[:count]) > budget:
        count //= 2
    return list(items[:count])
