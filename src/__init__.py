# src/__init__.py — v1
"""cratevault — offline cache of Rust crate docs, source and dependencies."""

from cratevault.version import __version__

__all__ = ["__version__"]
