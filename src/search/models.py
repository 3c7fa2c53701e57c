# src/search/models.py — v1
"""Search query and result models, plus the opaque pagination cursor."""

from __future__ import annotations

import base64
import hashlib
import json
from typing import Literal, Union

from pydantic import BaseModel

from cratevault.docs.models import SourceSpan
from cratevault.errors import InvalidRequest

SearchMode = Literal["exact", "fuzzy"]
Detail = Literal["preview", "full"]


class SearchQuery(BaseModel):
    """One search request against a unit's index."""

    pattern: str
    mode: SearchMode = "fuzzy"
    kind: str | None = None
    path_prefix: str | None = None
    detail: Detail = "full"
    limit: int | None = None
    cursor: str | None = None

    def fingerprint(self) -> str:
        """Identity of the result set, independent of paging and detail."""
        raw = json.dumps([self.pattern, self.mode, self.kind, self.path_prefix])
        return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:12]


class PreviewHit(BaseModel):
    """Minimal hit: identifier, name and kind only."""

    id: str
    name: str
    kind: str


class FullHit(PreviewHit):
    """Hit with the full item record and its score."""

    path: list[str]
    signature: str | None = None
    docs: str | None = None
    span: SourceSpan | None = None
    module: str | None = None
    visibility: str = "public"
    score: float


SearchHit = Union[FullHit, PreviewHit]


class SearchPage(BaseModel):
    """One page of results."""

    hits: list[SearchHit]
    total: int
    offset: int
    limit: int
    mode: SearchMode
    detail: Detail
    next_cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return self.next_cursor is not None


def encode_cursor(offset: int, index_digest: str, query_fingerprint: str) -> str:
    payload = json.dumps({"o": offset, "d": index_digest[:16], "q": query_fingerprint})
    return base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str, index_digest: str, query_fingerprint: str) -> int:
    """Offset encoded in cursor.

    Raises:
        InvalidRequest: Malformed cursor, or one issued for another query or index build.
    """
    try:
        data = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
        offset = int(data["o"])
    except (ValueError, KeyError, TypeError) as e:
        raise InvalidRequest("Malformed cursor") from e
    if data.get("q") != query_fingerprint:
        raise InvalidRequest("Cursor was issued for a different query")
    if data.get("d") != index_digest[:16]:
        raise InvalidRequest("Cursor is stale: the index was rebuilt, restart the query")
    if offset < 0:
        raise InvalidRequest("Malformed cursor")
    return offset
