# src/search/config.py — v1
"""Search limits and ranking weights."""

from __future__ import annotations

from dataclasses import dataclass

from cratevault.config.settings import Settings

# bm25 column weights: name, words, path, kind, docs
COLUMN_WEIGHTS: tuple[float, ...] = (10.0, 5.0, 2.0, 0.0, 1.0)
MAX_QUERY_TOKENS = 16


@dataclass(frozen=True)
class SearchConfig:
    """Limits applied by every SearchIndex."""

    default_limit: int = 50
    max_limit: int = 1000
    max_query_length: int = 1000
    max_items: int = 100_000
    fuzzy_cutoff: float = 0.75
    fuzzy_max_expansions: int = 8

    @classmethod
    def from_settings(cls, settings: Settings) -> SearchConfig:
        return cls(
            default_limit=settings.search_default_limit,
            max_limit=settings.search_max_limit,
            max_query_length=settings.max_query_length,
            max_items=settings.max_items_per_unit,
            fuzzy_cutoff=settings.fuzzy_cutoff,
            fuzzy_max_expansions=settings.fuzzy_max_expansions,
        )
