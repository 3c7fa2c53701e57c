# src/acquisition/sources.py — v1
"""Origin descriptor parsing.

Accepted forms:
    None, "", "crates.io", "serde"                -> registry
    https://github.com/owner/repo                 -> repository, default ref
    https://github.com/owner/repo#branch:dev      -> repository, branch
    https://github.com/owner/repo#tag:v1.0        -> repository, tag
    https://github.com/owner/repo#commit:<sha>    -> repository, commit
    https://github.com/owner/repo/tree/main/sub   -> repository, branch + subpath
    any other http(s) or git@ URL                 -> repository, default ref
    /abs, ~/x, ./x, ../x, a/b                     -> local path
"""

from __future__ import annotations

from pathlib import Path

from pydantic import ValidationError

from cratevault.cache.models import LocalPathOrigin, Origin, RegistryOrigin, RepositoryOrigin
from cratevault.errors import InvalidRequest

_REF_MARKERS = (("#branch:", "branch"), ("#tag:", "tag"), ("#commit:", "commit"))


def parse_origin(descriptor: str | None) -> Origin:
    """Turn a textual origin descriptor into an Origin.

    Raises:
        InvalidRequest: Descriptor has an invalid reference or subpath.
    """
    if descriptor is None or not descriptor.strip():
        return RegistryOrigin()
    text = descriptor.strip()
    try:
        if _is_url(text):
            return _parse_url(text)
        if _is_local_path(text):
            return LocalPathOrigin(path=str(Path(text).expanduser().resolve()))
    except ValidationError as e:
        raise InvalidRequest(f"Invalid source {descriptor!r}: {e.errors()[0]['msg']}") from e
    # Bare words ("crates.io", a package name) mean the registry.
    return RegistryOrigin()


def _is_url(text: str) -> bool:
    return text.startswith(("http://", "https://", "git@", "ssh://", "git://"))


def _is_local_path(text: str) -> bool:
    return (
        text.startswith(("/", "~/", "./", "../"))
        or "/" in text
        or "\\" in text
    )


def _parse_url(url: str) -> RepositoryOrigin:
    base, ref, ref_kind = url, None, "default"
    for marker, kind in _REF_MARKERS:
        pos = url.find(marker)
        if pos != -1:
            base, ref, ref_kind = url[:pos], url[pos + len(marker):], kind
            break

    if base.startswith("http://github.com/"):
        base = "https://" + base[len("http://"):]
    base = base.rstrip("/")

    github_part = base.removeprefix("https://github.com/")
    if github_part != base:
        parts = github_part.split("/")
        if len(parts) >= 2:
            repo = parts[1].removesuffix(".git")
            locator = f"https://github.com/{parts[0]}/{repo}"
            if len(parts) > 4 and parts[2] == "tree":
                return RepositoryOrigin(
                    locator=locator,
                    ref=ref or parts[3],
                    ref_kind=ref_kind if ref else "branch",
                    subpath="/".join(parts[4:]),
                )
            if len(parts) == 4 and parts[2] == "tree" and not ref:
                return RepositoryOrigin(locator=locator, ref=parts[3], ref_kind="branch")
            return RepositoryOrigin(locator=locator, ref=ref, ref_kind=ref_kind)

    return RepositoryOrigin(locator=base, ref=ref, ref_kind=ref_kind)
