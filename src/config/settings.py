# src/config/settings.py — v1
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for cache location, external tool locations,
search limits, response budgets and logging. Every field can be set from
the environment with the ``CRATEVAULT_`` prefix.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="CRATEVAULT_",
        extra="ignore",
    )

    # === Cache store ===
    cache_dir: Path = Path("~/.cratevault/cache")
    lock_timeout_s: float = 60.0
    lock_poll_interval_s: float = 0.1
    max_workers: int = 4

    # === Registry / repositories ===
    registry_url: str = "https://crates.io/api/v1/crates"
    http_timeout_s: float = 60.0
    user_agent: str = "cratevault (https://github.com/cratevault/cratevault)"
    github_token: str = ""

    # === External tools ===
    git_executable: str = "git"
    cargo_executable: str = "cargo"
    rustup_executable: str = "rustup"
    doc_toolchain: str = "nightly-2025-06-23"
    doc_all_features: bool = True

    # === Search ===
    max_items_per_unit: int = 100_000
    search_default_limit: int = 50
    search_max_limit: int = 1000
    max_query_length: int = 1000
    fuzzy_cutoff: float = 0.75
    fuzzy_max_expansions: int = 8

    # === Response budgets (characters) ===
    response_budget_chars: int = 100_000
    doc_budget_chars: int = 4000
    source_budget_chars: int = 20_000
    default_context_lines: int = 3

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "json"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 5

    # --- Validators ---

    @field_validator("cache_dir", mode="after")
    @classmethod
    def expand_cache_dir(cls, v: Path) -> Path:
        return v.expanduser()

    @field_validator("fuzzy_cutoff")
    @classmethod
    def validate_fuzzy_cutoff(cls, v: float) -> float:
        if not 0.0 < v <= 1.0:
            raise ValueError("fuzzy_cutoff must be in (0, 1]")
        return v

    @field_validator("max_workers", "search_default_limit", "search_max_limit")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("value must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.lock_timeout_s <= 0:
            errors.append("LOCK_TIMEOUT_S must be > 0")
        if self.lock_poll_interval_s <= 0 or self.lock_poll_interval_s > self.lock_timeout_s:
            errors.append("LOCK_POLL_INTERVAL_S must be > 0 and <= LOCK_TIMEOUT_S")
        if self.search_default_limit > self.search_max_limit:
            errors.append("SEARCH_DEFAULT_LIMIT must be <= SEARCH_MAX_LIMIT")
        if self.doc_budget_chars > self.response_budget_chars:
            errors.append("DOC_BUDGET_CHARS must be <= RESPONSE_BUDGET_CHARS")
        if self.source_budget_chars > self.response_budget_chars:
            errors.append("SOURCE_BUDGET_CHARS must be <= RESPONSE_BUDGET_CHARS")
        if self.default_context_lines < 0:
            errors.append("DEFAULT_CONTEXT_LINES must be >= 0")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Args:
        **overrides: Field-level overrides (for testing or embedding).

    Returns:
        Validated Settings instance.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
