# src/cache/fingerprint.py — v1
"""Content fingerprints for source trees.

The content hash is a SHA-256 over the sorted relative paths and file
bytes of a tree. Build output and VCS metadata are skipped so that the
hash only changes when the package sources change. Symlinks are hashed
as the content they point at, matching how trees are copied into the
cache.
"""

from __future__ import annotations

import hashlib
import os
from pathlib import Path

EXCLUDED_DIRS = frozenset({"target", ".git", ".svn", ".hg"})

_CHUNK_SIZE = 1024 * 1024


def is_skipped(directory: Path, name: str, excluded: frozenset[str] = EXCLUDED_DIRS) -> bool:
    """Whether directory/name stays out of copies and fingerprints.

    Skipped are excluded directories, broken symlinks and directory links
    that point back at one of their ancestors.
    """
    path = directory / name
    if name in excluded and path.is_dir():
        return True
    if not path.is_symlink():
        return False
    # exists() resolves relative targets against the link's own directory.
    if not path.exists():
        return True
    if path.is_dir():
        here = directory.resolve()
        target = path.resolve()
        return here == target or here.is_relative_to(target)
    return False


def iter_tree_files(root: Path, excluded: frozenset[str] = EXCLUDED_DIRS) -> list[Path]:
    """Return files under root (relative paths), sorted, skipping excluded dirs.

    Symlinked files and directories are followed.
    """
    files: list[Path] = []
    for dirpath, dirnames, filenames in os.walk(root, followlinks=True):
        base = Path(dirpath)
        dirnames[:] = sorted(d for d in dirnames if not is_skipped(base, d, excluded))
        for filename in filenames:
            if is_skipped(base, filename, excluded):
                continue
            files.append((base / filename).relative_to(root))
    return sorted(files, key=lambda p: p.as_posix())


def compute_content_hash(root: Path) -> str:
    """SHA-256 of the tree: every relative path followed by the file's bytes."""
    digest = hashlib.sha256()
    for rel in iter_tree_files(root):
        digest.update(rel.as_posix().encode("utf-8"))
        digest.update(b"\0")
        with (root / rel).open("rb") as fh:
            for block in iter(lambda: fh.read(_CHUNK_SIZE), b""):
                digest.update(block)
        digest.update(b"\0")
    return digest.hexdigest()


def directory_size(root: Path) -> int:
    """Total size in bytes of regular files under root."""
    total = 0
    for dirpath, _dirnames, filenames in os.walk(root, followlinks=False):
        for filename in filenames:
            path = Path(dirpath) / filename
            if not path.is_symlink():
                total += path.stat().st_size
    return total


def digest_bytes(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()
