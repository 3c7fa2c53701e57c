# src/search/index.py — v1
"""Per-unit search index on SQLite FTS5.

Each documented unit gets one database holding:
  - ``items``: the full item record, so lookups never re-parse docs.json
  - ``items_fts``: FTS5 over name, split name words, path, kind and docs
  - ``items_vocab``: fts5vocab view used for fuzzy term expansion
  - ``meta``: the digest of the documentation artifact it was built from

Databases are built under a temp name and renamed into place, so a
reader sees either the previous index or the complete new one.
"""

from __future__ import annotations

import difflib
import logging
import os
import re
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path

from cratevault.docs.models import ITEM_KINDS, DocArtifact, DocItem
from cratevault.errors import InvalidRequest, InvalidSource, IoError, NotFound
from cratevault.search.config import COLUMN_WEIGHTS, MAX_QUERY_TOKENS, SearchConfig
from cratevault.search.models import (
    FullHit,
    PreviewHit,
    SearchHit,
    SearchPage,
    SearchQuery,
    decode_cursor,
    encode_cursor,
)

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE meta (key TEXT PRIMARY KEY, value TEXT NOT NULL);
CREATE TABLE items (
    rowid INTEGER PRIMARY KEY,
    item_id TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    name_lower TEXT NOT NULL,
    kind TEXT NOT NULL,
    path TEXT NOT NULL,
    record TEXT NOT NULL
);
CREATE INDEX idx_items_kind ON items(kind);
CREATE INDEX idx_items_path ON items(path);
CREATE INDEX idx_items_name ON items(name_lower);
CREATE VIRTUAL TABLE items_fts USING fts5(name, words, path, kind, docs, tokenize='unicode61');
CREATE VIRTUAL TABLE items_vocab USING fts5vocab(items_fts, 'row');
"""

_WORD_RE = re.compile(r"[A-Z]+(?=[A-Z][a-z])|[A-Z]?[a-z]+|[A-Z]+|\d+")
_ALNUM_RE = re.compile(r"[0-9A-Za-z]+")


def split_words(text: str) -> list[str]:
    """Lowercase words of an identifier: "HTTPClient_new" -> ["http", "client", "new"]."""
    words: list[str] = []
    for chunk in _ALNUM_RE.findall(text):
        words.extend(w.lower() for w in _WORD_RE.findall(chunk))
    return words


def query_tokens(pattern: str) -> list[str]:
    """Whole alphanumeric runs plus their identifier words, deduplicated in order."""
    tokens: list[str] = []
    for chunk in _ALNUM_RE.findall(pattern):
        for token in [chunk.lower(), *split_words(chunk)]:
            if token not in tokens:
                tokens.append(token)
    return tokens[:MAX_QUERY_TOKENS]


class SearchIndex:
    """Read access to one unit's index database."""

    def __init__(self, path: Path, config: SearchConfig | None = None) -> None:
        self._path = path
        self._config = config or SearchConfig()
        self._digest: str | None = None
        self._vocabulary: list[str] | None = None

    @property
    def path(self) -> Path:
        return self._path

    # === Build ===

    @classmethod
    def build(
        cls,
        path: Path,
        artifact: DocArtifact,
        artifact_digest: str,
        config: SearchConfig | None = None,
    ) -> SearchIndex:
        """Write a fresh index for artifact and atomically publish it at path."""
        config = config or SearchConfig()
        if len(artifact.items) > config.max_items:
            raise InvalidSource(
                f"{artifact.crate_name} has {len(artifact.items)} items, "
                f"more than the index limit of {config.max_items}"
            )
        tmp = path.with_name(f".{path.name}.{uuid.uuid4().hex[:8]}.tmp")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with closing(sqlite3.connect(tmp)) as conn:
                conn.executescript(_SCHEMA)
                rows = []
                fts_rows = []
                for rowid, item in enumerate(
                    sorted(artifact.items.values(), key=lambda i: i.id), start=1
                ):
                    qualified = item.qualified_path
                    rows.append(
                        (rowid, item.id, item.name, item.name.lower(), item.kind,
                         qualified, item.model_dump_json())
                    )
                    fts_rows.append(
                        (rowid, item.name, " ".join(split_words(item.name)),
                         " ".join(item.path), item.kind, item.docs or "")
                    )
                conn.executemany("INSERT INTO items VALUES (?, ?, ?, ?, ?, ?, ?)", rows)
                conn.executemany(
                    "INSERT INTO items_fts (rowid, name, words, path, kind, docs) "
                    "VALUES (?, ?, ?, ?, ?, ?)",
                    fts_rows,
                )
                conn.executemany(
                    "INSERT INTO meta VALUES (?, ?)",
                    [
                        ("artifact_digest", artifact_digest),
                        ("crate_name", artifact.crate_name),
                        ("item_count", str(len(rows))),
                        ("built_at", datetime.now(timezone.utc).isoformat()),
                    ],
                )
                conn.commit()
            os.replace(tmp, path)
        except (OSError, sqlite3.Error) as e:
            tmp.unlink(missing_ok=True)
            raise IoError(f"Failed to build search index {path}: {e}") from e

        logger.info("Built search index for %s (%d items)", artifact.crate_name, len(rows))
        index = cls(path, config)
        index._digest = artifact_digest
        return index

    # === Metadata ===

    def digest(self) -> str | None:
        """Artifact digest recorded at build time (None if unreadable or missing)."""
        if self._digest is None and self._path.is_file():
            try:
                with self._connect() as conn:
                    row = conn.execute(
                        "SELECT value FROM meta WHERE key = 'artifact_digest'"
                    ).fetchone()
            except IoError as e:
                logger.warning("Unreadable search index %s: %s", self._path, e.message)
                return None
            self._digest = row[0] if row else None
        return self._digest

    def is_current(self, artifact_digest: str | None) -> bool:
        return artifact_digest is not None and self.digest() == artifact_digest

    # === Lookup ===

    def get_item(self, item_id: str) -> DocItem:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT record FROM items WHERE item_id = ?", (str(item_id),)
            ).fetchone()
        if row is None:
            raise NotFound(f"Item {item_id} not found", detail={"item_id": str(item_id)})
        return DocItem.model_validate_json(row[0])

    def list_items(
        self,
        kind: str | None = None,
        path_prefix: str | None = None,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> tuple[list[DocItem], int, int, str | None]:
        """Items ordered by path: (items, total, offset, next cursor)."""
        self._check_kind(kind)
        limit = self._limit(limit)
        fingerprint = listing_fingerprint(kind, path_prefix)
        offset = decode_cursor(cursor, self.digest() or "", fingerprint) if cursor else 0

        where, params = _filters(kind, path_prefix)
        with self._connect() as conn:
            total = conn.execute(f"SELECT count(*) FROM items {where}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT record FROM items {where} ORDER BY path, item_id LIMIT ? OFFSET ?",
                [*params, limit, offset],
            ).fetchall()
        items = [DocItem.model_validate_json(r[0]) for r in rows]
        next_offset = offset + len(items)
        next_cursor = (
            encode_cursor(next_offset, self.digest() or "", fingerprint)
            if next_offset < total
            else None
        )
        return items, total, offset, next_cursor

    def cursor_at(self, offset: int, fingerprint: str) -> str:
        """Cursor resuming a result set at offset (used when a page is cut short)."""
        return encode_cursor(offset, self.digest() or "", fingerprint)

    # === Search ===

    def search(self, query: SearchQuery) -> SearchPage:
        pattern = query.pattern.strip()
        if not pattern:
            raise InvalidRequest("Search pattern must not be empty")
        if len(pattern) > self._config.max_query_length:
            raise InvalidRequest(
                f"Search pattern longer than {self._config.max_query_length} characters"
            )
        self._check_kind(query.kind)
        limit = self._limit(query.limit)
        fingerprint = query.fingerprint()
        digest = self.digest() or ""
        offset = decode_cursor(query.cursor, digest, fingerprint) if query.cursor else 0

        if query.mode == "exact":
            rows, total = self._exact(pattern, query, limit, offset)
        else:
            rows, total = self._fuzzy(pattern, query, limit, offset)

        hits: list[SearchHit] = []
        for item_id, name, kind, record, score in rows:
            if query.detail == "preview":
                hits.append(PreviewHit(id=item_id, name=name, kind=kind))
            else:
                item = DocItem.model_validate_json(record)
                hits.append(FullHit(**item.model_dump(), score=round(score, 6)))

        next_offset = offset + len(hits)
        return SearchPage(
            hits=hits,
            total=total,
            offset=offset,
            limit=limit,
            mode=query.mode,
            detail=query.detail,
            next_cursor=encode_cursor(next_offset, digest, fingerprint) if next_offset < total else None,
        )

    def _exact(
        self, pattern: str, query: SearchQuery, limit: int, offset: int
    ) -> tuple[list[tuple], int]:
        lowered = pattern.lower()
        if any(c in lowered for c in "*?"):
            like = _escape_like(lowered).replace("*", "%").replace("?", "_")
        else:
            like = f"%{_escape_like(lowered)}%"
        where, params = _filters(query.kind, query.path_prefix)
        clause = f"{where} {'AND' if where else 'WHERE'} name_lower LIKE ? ESCAPE '\\'"
        params = [*params, like]
        prefix = f"{_escape_like(lowered)}%"
        with self._connect() as conn:
            total = conn.execute(f"SELECT count(*) FROM items {clause}", params).fetchone()[0]
            rows = conn.execute(
                f"""
                SELECT item_id, name, kind, record,
                       CASE WHEN name_lower = ? THEN 3.0
                            WHEN name_lower LIKE ? ESCAPE '\\' THEN 2.0
                            ELSE 1.0 END AS score
                FROM items {clause}
                ORDER BY score DESC, length(name), name, item_id
                LIMIT ? OFFSET ?
                """,
                [lowered, prefix, *params, limit, offset],
            ).fetchall()
        return rows, total

    def _fuzzy(
        self, pattern: str, query: SearchQuery, limit: int, offset: int
    ) -> tuple[list[tuple], int]:
        tokens = query_tokens(pattern)
        if not tokens:
            return [], 0
        terms = self._expand(tokens)
        match = " OR ".join(
            [f'"{t}"' for t in terms] + [f'"{t}"*' for t in tokens if len(t) >= 3]
        )
        where, params = _filters(query.kind, query.path_prefix, table="items")
        clause = f"items_fts MATCH ? {('AND ' + where[len('WHERE '):]) if where else ''}"
        weights = ", ".join(str(w) for w in COLUMN_WEIGHTS)
        whole = "".join(_ALNUM_RE.findall(pattern)).lower()
        with self._connect() as conn:
            total = conn.execute(
                f"SELECT count(*) FROM items_fts JOIN items ON items.rowid = items_fts.rowid "
                f"WHERE {clause}",
                [match, *params],
            ).fetchone()[0]
            rows = conn.execute(
                f"""
                SELECT items.item_id, items.name, items.kind, items.record,
                       -bm25(items_fts, {weights}) AS score
                FROM items_fts JOIN items ON items.rowid = items_fts.rowid
                WHERE {clause}
                ORDER BY (replace(items.name_lower, '_', '') = ?) DESC,
                         score DESC, items.item_id
                LIMIT ? OFFSET ?
                """,
                [match, *params, whole, limit, offset],
            ).fetchall()
        return rows, total

    def _expand(self, tokens: list[str]) -> list[str]:
        """Tokens plus close vocabulary terms (typo tolerance)."""
        vocabulary = self._vocab()
        expanded: list[str] = []
        for token in tokens:
            if token not in expanded:
                expanded.append(token)
            slack = max(2, len(token) // 4)
            candidates = [v for v in vocabulary if abs(len(v) - len(token)) <= slack]
            for term in difflib.get_close_matches(
                token,
                candidates,
                n=self._config.fuzzy_max_expansions,
                cutoff=self._config.fuzzy_cutoff,
            ):
                if term not in expanded:
                    expanded.append(term)
        return expanded

    def _vocab(self) -> list[str]:
        if self._vocabulary is None:
            with self._connect() as conn:
                self._vocabulary = [
                    row[0]
                    for row in conn.execute("SELECT term FROM items_vocab ORDER BY term")
                    if _ALNUM_RE.fullmatch(row[0])
                ]
        return self._vocabulary

    # === Helpers ===

    def _limit(self, limit: int | None) -> int:
        if limit is None:
            return self._config.default_limit
        if limit < 1:
            raise InvalidRequest("limit must be >= 1")
        return min(limit, self._config.max_limit)

    @staticmethod
    def _check_kind(kind: str | None) -> None:
        if kind is not None and kind not in ITEM_KINDS:
            raise InvalidRequest(
                f"Unknown item kind {kind!r}", detail={"kinds": list(ITEM_KINDS)}
            )

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        if not self._path.is_file():
            raise NotFound(f"Search index {self._path} does not exist")
        try:
            conn = sqlite3.connect(f"{self._path.resolve().as_uri()}?mode=ro", uri=True)
        except sqlite3.Error as e:
            raise IoError(f"Cannot open search index {self._path}: {e}") from e
        try:
            yield conn
        except sqlite3.Error as e:
            raise IoError(f"Search index {self._path} query failed: {e}") from e
        finally:
            conn.close()


def listing_fingerprint(kind: str | None, path_prefix: str | None) -> str:
    return SearchQuery(pattern="*", mode="exact", kind=kind, path_prefix=path_prefix).fingerprint()


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _filters(
    kind: str | None, path_prefix: str | None, table: str = ""
) -> tuple[str, list[str]]:
    col = f"{table}." if table else ""
    conditions: list[str] = []
    params: list[str] = []
    if kind:
        conditions.append(f"{col}kind = ?")
        params.append(kind)
    if path_prefix:
        prefix = path_prefix.strip().strip(":")
        conditions.append(f"({col}path = ? OR {col}path LIKE ? ESCAPE '\\')")
        params.extend([prefix, f"{_escape_like(prefix)}::%"])
    if not conditions:
        return "", []
    return "WHERE " + " AND ".join(conditions), params
