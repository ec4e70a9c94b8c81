"""SQLite-backed session store with deduplication, compression and eviction."""

from __future__ import annotations

import sqlite3
import threading
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from distill.cache_boundary import CacheBoundaryManager
from distill.session_models import (
    CompressionLevel,
    ContextEntry,
    ContextRequest,
    ContextResult,
    ContextStats,
    CreateRequest,
    DeleteResult,
    OverBudgetError,
    PushRequest,
    PushResult,
    Session,
    SessionConfig,
    SessionError,
    SessionExistsError,
    SessionNotFoundError,
)
from distill.session_text import (
    compress_to_level,
    cosine_distance,
    decode_embedding,
    encode_embedding,
    estimate_tokens,
    format_age,
    generate_id,
    hash_content,
)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id                     TEXT PRIMARY KEY,
    max_tokens             INTEGER NOT NULL,
    dedup_threshold        REAL NOT NULL DEFAULT 0.15,
    preserve_recent        INTEGER NOT NULL DEFAULT 10,
    push_count             INTEGER NOT NULL DEFAULT 0,
    cache_boundary_tokens  INTEGER NOT NULL DEFAULT 0,
    created_at             TEXT NOT NULL,
    updated_at             TEXT NOT NULL
);
CREATE TABLE IF NOT EXISTS session_entries (
    id                TEXT PRIMARY KEY,
    session_id        TEXT NOT NULL,
    role              TEXT NOT NULL DEFAULT '',
    content           TEXT NOT NULL,
    original_content  TEXT NOT NULL,
    source            TEXT DEFAULT '',
    embedding         BLOB,
    importance        REAL NOT NULL DEFAULT 0.5,
    compression_level INTEGER NOT NULL DEFAULT 0,
    tokens            INTEGER NOT NULL DEFAULT 0,
    seq               INTEGER NOT NULL,
    inserted_at_push  INTEGER NOT NULL DEFAULT 0,
    stable_since_turn INTEGER NOT NULL DEFAULT 0,
    content_hash      TEXT NOT NULL DEFAULT '',
    created_at        TEXT NOT NULL,
    compressed_at     TEXT DEFAULT '',
    FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
);
CREATE INDEX IF NOT EXISTS idx_entries_session ON session_entries(session_id);
CREATE INDEX IF NOT EXISTS idx_entries_seq ON session_entries(session_id, seq);
CREATE INDEX IF NOT EXISTS idx_entries_stable ON session_entries(session_id, stable_since_turn);
"""

_DEFAULT_IMPORTANCE = 0.5


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(text: Optional[str]) -> Optional[datetime]:
    if not text:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


class _SessionSettings:
    __slots__ = ("max_tokens", "dedup_threshold", "preserve_recent")

    def __init__(self, max_tokens: int, dedup_threshold: float, preserve_recent: int) -> None:
        self.max_tokens = max_tokens
        self.dedup_threshold = dedup_threshold
        self.preserve_recent = preserve_recent


class SQLiteSessionStore:
    """Session store kept in an SQLite database; ``":memory:"`` by default."""

    def __init__(self, dsn: str = ":memory:", config: Optional[SessionConfig] = None) -> None:
        self.config = config if config is not None else SessionConfig()
        self._lock = threading.RLock()
        self._db = sqlite3.connect(dsn or ":memory:", isolation_level=None, check_same_thread=False)
        try:
            self._db.execute("PRAGMA journal_mode=WAL")
            self._db.execute("PRAGMA foreign_keys = ON")
            self._db.executescript(_SCHEMA)
        except sqlite3.Error:
            self._db.close()
            raise
        self._boundary = CacheBoundaryManager(self._db, self.config.cache_boundary)

    def __enter__(self) -> SQLiteSessionStore:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._db.close()

    def create(self, request: CreateRequest) -> Session:
        """Create a session; raise SessionExistsError if the id is taken."""
        session_id = request.session_id or generate_id()
        max_tokens = request.max_tokens if request.max_tokens > 0 else self.config.default_max_tokens
        threshold = (
            request.dedup_threshold
            if request.dedup_threshold > 0
            else self.config.default_dedup_threshold
        )
        preserve_recent = (
            request.preserve_recent
            if request.preserve_recent > 0
            else self.config.default_preserve_recent
        )
        moment = _now()
        stamp = moment.isoformat()
        with self._lock:
            try:
                self._db.execute(
                    "INSERT INTO sessions (id, max_tokens, dedup_threshold, preserve_recent, "
                    "created_at, updated_at) VALUES (?, ?, ?, ?, ?, ?)",
                    (session_id, max_tokens, threshold, preserve_recent, stamp, stamp),
                )
            except sqlite3.IntegrityError as exc:
                if "UNIQUE constraint" in str(exc):
                    raise SessionExistsError() from exc
                raise
        return Session(
            id=session_id,
            max_tokens=max_tokens,
            created_at=moment,
            updated_at=moment,
        )

    def push(self, request: PushRequest) -> PushResult:
        """Add entries, dropping duplicates and enforcing the token budget."""
        with self._lock:
            settings = self._load_settings(request.session_id)
            result = PushResult(session_id=request.session_id)

            (max_seq,) = self._db.execute(
                "SELECT COALESCE(MAX(seq), 0) FROM session_entries WHERE session_id = ?",
                (request.session_id,),
            ).fetchone()

            for entry in request.entries:
                if not entry.content:
                    continue
                importance = entry.importance if entry.importance > 0 else _DEFAULT_IMPORTANCE

                if entry.embedding and self._is_duplicate(
                    request.session_id, entry.embedding, settings.dedup_threshold
                ):
                    result.deduplicated += 1
                    continue

                tokens = estimate_tokens(entry.content)
                if tokens > settings.max_tokens:
                    raise OverBudgetError()

                max_seq += 1
                # The entry belongs to the push that is being recorded now.
                (push_count,) = self._db.execute(
                    "SELECT push_count FROM sessions WHERE id = ?", (request.session_id,)
                ).fetchone()
                self._db.execute(
                    "INSERT INTO session_entries (id, session_id, role, content, "
                    "original_content, source, embedding, importance, compression_level, "
                    "tokens, seq, inserted_at_push, stable_since_turn, content_hash, created_at) "
                    "VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, 0, ?, ?)",
                    (
                        generate_id(),
                        request.session_id,
                        entry.role,
                        entry.content,
                        entry.content,
                        entry.source,
                        encode_embedding(entry.embedding),
                        importance,
                        tokens,
                        max_seq,
                        push_count + 1,
                        hash_content(entry.content),
                        _now().isoformat(),
                    ),
                )
                result.accepted += 1

            while True:
                compressed, evicted = self._enforce_budget(request.session_id, settings)
                result.compressed += compressed
                result.evicted += evicted
                if compressed == 0 and evicted == 0:
                    break

            self._boundary.record_push(request.session_id)
            try:
                result.cache_boundary = self._boundary.evaluate(request.session_id)
            except (sqlite3.Error, SessionError):
                result.cache_boundary = None

            self._db.execute(
                "UPDATE sessions SET updated_at = ? WHERE id = ?",
                (_now().isoformat(), request.session_id),
            )
            current = self._current_tokens(request.session_id)
            result.current_tokens = current
            result.budget_remaining = settings.max_tokens - current
            return result

    def context(self, request: ContextRequest) -> ContextResult:
        """Return the session's entries in push order, optionally filtered."""
        with self._lock:
            (exists,) = self._db.execute(
                "SELECT COUNT(*) FROM sessions WHERE id = ?", (request.session_id,)
            ).fetchone()
            if exists == 0:
                raise SessionNotFoundError()

            query = (
                "SELECT id, role, content, source, compression_level, tokens, created_at "
                "FROM session_entries WHERE session_id = ?"
            )
            params: list[Any] = [request.session_id]
            if request.role:
                query += " AND role = ?"
                params.append(request.role)
            query += " ORDER BY seq ASC"
            rows = self._db.execute(query, params).fetchall()

            now = _now()
            levels: dict[int, int] = {}
            entries: list[ContextEntry] = []
            token_count = 0
            for entry_id, role, content, source, level, tokens, created in rows:
                if request.max_tokens > 0 and token_count + tokens > request.max_tokens:
                    break
                created_at = _parse_time(created)
                age_seconds = (now - created_at).total_seconds() if created_at else 0.0
                entries.append(
                    ContextEntry(
                        id=entry_id,
                        role=role,
                        content=content,
                        source=source or "",
                        level=CompressionLevel(level),
                        tokens=tokens,
                        age=format_age(age_seconds),
                    )
                )
                token_count += tokens
                levels[level] = levels.get(level, 0) + 1

            (original_tokens,) = self._db.execute(
                "SELECT COALESCE(SUM(LENGTH(original_content)+3)/4, 0) "
                "FROM session_entries WHERE session_id = ?",
                (request.session_id,),
            ).fetchone()

        return ContextResult(
            entries=entries,
            stats=ContextStats(
                total_entries=len(entries),
                total_tokens=token_count,
                compression_levels=levels,
                compression_savings=original_tokens - token_count,
            ),
        )

    def get(self, session_id: str) -> Session:
        """Return session metadata; raise SessionNotFoundError if absent."""
        with self._lock:
            row = self._db.execute(
                "SELECT id, max_tokens, push_count, cache_boundary_tokens, created_at, "
                "updated_at FROM sessions WHERE id = ?",
                (session_id,),
            ).fetchone()
            if row is None:
                raise SessionNotFoundError()
            current, count = self._db.execute(
                "SELECT COALESCE(SUM(tokens), 0), COUNT(*) FROM session_entries "
                "WHERE session_id = ?",
                (session_id,),
            ).fetchone()
        return Session(
            id=row[0],
            max_tokens=row[1],
            current_tokens=current,
            entry_count=count,
            cache_boundary_tokens=row[3],
            push_count=row[2],
            created_at=_parse_time(row[4]),
            updated_at=_parse_time(row[5]),
        )

    def delete(self, session_id: str) -> DeleteResult:
        """Remove a session and its entries."""
        with self._lock:
            (count,) = self._db.execute(
                "SELECT COUNT(*) FROM session_entries WHERE session_id = ?", (session_id,)
            ).fetchone()
            cursor = self._db.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
            if cursor.rowcount == 0:
                raise SessionNotFoundError()
        return DeleteResult(session_id=session_id, entries_removed=count)

    # --- internal ---

    def _load_settings(self, session_id: str) -> _SessionSettings:
        row = self._db.execute(
            "SELECT max_tokens, dedup_threshold, preserve_recent FROM sessions WHERE id = ?",
            (session_id,),
        ).fetchone()
        if row is None:
            raise SessionNotFoundError()
        return _SessionSettings(*row)

    def _current_tokens(self, session_id: str) -> int:
        (tokens,) = self._db.execute(
            "SELECT COALESCE(SUM(tokens), 0) FROM session_entries WHERE session_id = ?",
            (session_id,),
        ).fetchone()
        return tokens

    def _is_duplicate(
        self, session_id: str, embedding: Sequence[float], threshold: float
    ) -> bool:
        rows = self._db.execute(
            "SELECT embedding FROM session_entries "
            "WHERE session_id = ? AND embedding IS NOT NULL",
            (session_id,),
        ).fetchall()
        for (blob,) in rows:
            existing = decode_embedding(blob)
            if existing and cosine_distance(embedding, existing) < threshold:
                return True
        return False

    def _enforce_budget(self, session_id: str, settings: _SessionSettings) -> tuple[int, int]:
        current = self._current_tokens(session_id)
        if current <= settings.max_tokens:
            return 0, 0

        (total_entries,) = self._db.execute(
            "SELECT COUNT(*) FROM session_entries WHERE session_id = ?", (session_id,)
        ).fetchone()
        limit = total_entries - settings.preserve_recent
        if limit <= 0:
            return 0, self._evict_oldest(session_id, settings, current)

        rows = self._db.execute(
            "SELECT id, original_content, compression_level, importance, tokens "
            "FROM session_entries WHERE session_id = ? ORDER BY seq ASC LIMIT ?",
            (session_id, limit),
        ).fetchall()
        # Least important first; ties keep their oldest-first order.
        candidates = sorted(rows, key=lambda row: row[3])

        compressed = evicted = 0
        for entry_id, original, level, _importance, tokens in candidates:
            if current <= settings.max_tokens:
                break
            next_level = level + 1
            if next_level > CompressionLevel.KEYWORDS:
                self._db.execute("DELETE FROM session_entries WHERE id = ?", (entry_id,))
                current -= tokens
                evicted += 1
                continue

            content = compress_to_level(original, CompressionLevel(next_level))
            new_tokens = estimate_tokens(content)
            self._db.execute(
                "UPDATE session_entries SET content = ?, compression_level = ?, tokens = ?, "
                "compressed_at = ? WHERE id = ?",
                (content, next_level, new_tokens, _now().isoformat(), entry_id),
            )
            current -= tokens - new_tokens
            compressed += 1
        return compressed, evicted

    def _evict_oldest(self, session_id: str, settings: _SessionSettings, current: int) -> int:
        evicted = 0
        while current > settings.max_tokens:
            row = self._db.execute(
                "SELECT id, tokens FROM session_entries WHERE session_id = ? "
                "ORDER BY seq ASC LIMIT 1",
                (session_id,),
            ).fetchone()
            if row is None:
                break
            self._db.execute("DELETE FROM session_entries WHERE id = ?", (row[0],))
            current -= row[1]
            evicted += 1
        return evicted