"""Placement of prompt cache markers over the stable prefix of a session."""

from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from typing import Optional

from distill.session_models import (
    BoundaryStats,
    CacheBoundaryConfig,
    CacheBoundaryMarker,
    CacheBoundaryResult,
    SessionNotFoundError,
)


class CacheBoundaryManager:
    """Evaluates where cache_control markers belong after each session push.

    Works on the ``sessions`` and ``session_entries`` tables of the given
    SQLite connection.
    """

    def __init__(
        self, connection: sqlite3.Connection, config: Optional[CacheBoundaryConfig] = None
    ) -> None:
        self._connection = connection
        self.config = config if config is not None else CacheBoundaryConfig()

    def evaluate(self, session_id: str) -> CacheBoundaryResult:
        """Compute the recommended markers and whether the boundary moved."""
        if not self.config.enabled:
            return CacheBoundaryResult()

        rows = self._connection.execute(
            "SELECT id, tokens, stable_since_turn FROM session_entries "
            "WHERE session_id = ? ORDER BY seq ASC",
            (session_id,),
        ).fetchall()

        eligible: list[CacheBoundaryMarker] = []
        cumulative = 0
        for entry_id, tokens, stable_since in rows:
            cumulative += tokens
            # An entry counts once it has been promoted and its promotion turn
            # lies within the stability window.
            if 0 < stable_since <= self.config.min_stable_turns and (
                cumulative >= self.config.min_prefix_tokens
            ):
                eligible.append(CacheBoundaryMarker(entry_id, cumulative, stable_since))

        largest = sorted(eligible, key=lambda m: m.tokens_up_to_here, reverse=True)
        largest = largest[: max(self.config.max_markers, 0)]
        markers = sorted(largest, key=lambda m: m.tokens_up_to_here)

        result = CacheBoundaryResult(markers=markers)
        if markers:
            result.total_stable_tokens = markers[-1].tokens_up_to_here

        previous = self._stored_boundary(session_id)
        if previous is not None:
            if result.total_stable_tokens > previous:
                result.advanced = True
            elif result.total_stable_tokens < previous and previous > 0:
                result.retreated = True

        with self._connection:
            self._connection.execute(
                "UPDATE sessions SET cache_boundary_tokens = ? WHERE id = ?",
                (result.total_stable_tokens, session_id),
            )
        return result

    def record_push(self, session_id: str) -> None:
        """Count a push and promote entries that have survived long enough."""
        if not self.config.enabled:
            return

        with self._connection:
            self._connection.execute(
                "UPDATE sessions SET push_count = push_count + 1 WHERE id = ?",
                (session_id,),
            )
            row = self._connection.execute(
                "SELECT push_count FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
            if row is None:
                raise SessionNotFoundError()

            threshold = row[0] - self.config.min_stable_turns
            if threshold > 0:
                self._connection.execute(
                    "UPDATE session_entries SET stable_since_turn = inserted_at_push "
                    "WHERE session_id = ? AND stable_since_turn = 0 "
                    "AND inserted_at_push <= ?",
                    (session_id, threshold),
                )

    def invalidate_entry(self, entry_id: str) -> None:
        """Mark an entry as no longer stable, e.g. after its content changed."""
        with self._connection:
            self._connection.execute(
                "UPDATE session_entries SET stable_since_turn = 0, content_hash = '' "
                "WHERE id = ?",
                (entry_id,),
            )

    def stats(self, session_id: str) -> BoundaryStats:
        """Return a snapshot of the boundary state of a session."""
        row = self._connection.execute(
            "SELECT push_count, cache_boundary_tokens FROM sessions WHERE id = ?",
            (session_id,),
        ).fetchone()
        if row is None:
            raise SessionNotFoundError()

        (stable_count,) = self._connection.execute(
            "SELECT COUNT(*) FROM session_entries "
            "WHERE session_id = ? AND stable_since_turn > 0",
            (session_id,),
        ).fetchone()

        return BoundaryStats(
            session_id=session_id,
            push_count=row[0],
            boundary_tokens=row[1],
            stable_entry_count=stable_count,
            last_evaluated_at=datetime.now(timezone.utc),
        )

    def _stored_boundary(self, session_id: str) -> Optional[int]:
        row = self._connection.execute(
            "SELECT cache_boundary_tokens FROM sessions WHERE id = ?", (session_id,)
        ).fetchone()
        return None if row is None else row[0]