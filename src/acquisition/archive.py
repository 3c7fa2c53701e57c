# src/acquisition/archive.py — v1
"""Safe extraction of registry source archives (.crate = gzip tarball).

A valid archive has exactly one top-level directory containing a
Cargo.toml. That directory is stripped so the package root lands directly
in the destination. Entries with absolute paths or '..' components
invalidate the archive; links and special files are skipped.
"""

from __future__ import annotations

import io
import logging
import shutil
import tarfile
from pathlib import Path, PurePosixPath

from cratevault.errors import InvalidSource

logger = logging.getLogger(__name__)

MANIFEST_NAME = "Cargo.toml"


def extract_crate_archive(data: bytes, dest: Path, label: str = "archive") -> int:
    """Extract a gzip tarball into dest, stripping its single root directory.

    Returns:
        Number of files written.

    Raises:
        InvalidSource: Corrupt archive, unsafe entries, no single root or no manifest.
    """
    try:
        archive = tarfile.open(fileobj=io.BytesIO(data), mode="r:gz")
    except (tarfile.TarError, OSError, EOFError) as e:
        raise InvalidSource(f"{label} is not a valid gzip tarball: {e}") from e

    with archive:
        try:
            members = archive.getmembers()
        except (tarfile.TarError, OSError, EOFError) as e:
            raise InvalidSource(f"{label} is truncated or corrupt: {e}") from e

        root = _single_root(members, label)
        manifest = f"{root}/{MANIFEST_NAME}"
        if not any(m.isfile() and _posix(m.name) == manifest for m in members):
            raise InvalidSource(f"{label} has no {MANIFEST_NAME} in {root}/")

        written = 0
        for member in members:
            parts = PurePosixPath(_posix(member.name)).parts[1:]
            if not parts:
                continue
            target = dest.joinpath(*parts)
            if member.isdir():
                target.mkdir(parents=True, exist_ok=True)
            elif member.isfile():
                target.parent.mkdir(parents=True, exist_ok=True)
                source = archive.extractfile(member)
                if source is None:
                    continue
                with source, target.open("wb") as fh:
                    shutil.copyfileobj(source, fh)
                written += 1
            else:
                logger.warning("Skipping non-regular entry %s in %s", member.name, label)
    logger.debug("Extracted %d files from %s", written, label)
    return written


def _posix(name: str) -> str:
    return name.replace("\\", "/").removeprefix("./").rstrip("/")


def _single_root(members: list[tarfile.TarInfo], label: str) -> str:
    roots: set[str] = set()
    for member in members:
        name = _posix(member.name)
        path = PurePosixPath(name)
        if not name or name.startswith("/") or path.is_absolute() or ".." in path.parts:
            raise InvalidSource(
                f"{label} contains an unsafe path: {member.name!r}",
                detail={"entry": member.name},
            )
        roots.add(path.parts[0])
    if len(roots) != 1:
        raise InvalidSource(
            f"{label} must contain exactly one top-level directory, found {len(roots)}",
            detail={"roots": sorted(roots)},
        )
    return roots.pop()
