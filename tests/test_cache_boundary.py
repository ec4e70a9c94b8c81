import sqlite3

import pytest

from distill.cache_boundary import CacheBoundaryManager
from distill.session_models import CacheBoundaryConfig, SessionNotFoundError

SCHEMA = """
CREATE TABLE sessions (
    id TEXT PRIMARY KEY,
    push_count INTEGER NOT NULL DEFAULT 0,
    cache_boundary_tokens INTEGER NOT NULL DEFAULT 0
);
CREATE TABLE session_entries (
    id TEXT PRIMARY KEY,
    session_id TEXT NOT NULL,
    tokens INTEGER NOT NULL DEFAULT 0,
    seq INTEGER NOT NULL,
    inserted_at_push INTEGER NOT NULL DEFAULT 0,
    stable_since_turn INTEGER NOT NULL DEFAULT 0,
    content_hash TEXT NOT NULL DEFAULT ''
);
"""


@pytest.fixture
def connection():
    conn = sqlite3.connect(":memory:", isolation_level=None)
    conn.executescript(SCHEMA)
    conn.execute("INSERT INTO sessions (id) VALUES ('s1')")
    yield conn
    conn.close()


def add_entry(conn, entry_id, tokens, seq, inserted_at_push=1, stable_since=0):
    conn.execute(
        "INSERT INTO session_entries (id, session_id, tokens, seq, inserted_at_push, "
        "stable_since_turn, content_hash) VALUES (?, 's1', ?, ?, ?, ?, 'h')",
        (entry_id, tokens, seq, inserted_at_push, stable_since),
    )


def test_disabled_manager_does_nothing(connection):
    manager = CacheBoundaryManager(connection, CacheBoundaryConfig(enabled=False))
    add_entry(connection, "a", 2000, 1, stable_since=1)
    manager.record_push("s1")
    result = manager.evaluate("s1")
    assert result.markers == []
    assert result.total_stable_tokens == 0
    assert manager.stats("s1").push_count == 0


def test_record_push_increments_count(connection):
    manager = CacheBoundaryManager(connection)
    manager.record_push("s1")
    manager.record_push("s1")
    assert manager.stats("s1").push_count == 2


def test_entries_become_stable_after_min_turns(connection):
    manager = CacheBoundaryManager(connection)
    add_entry(connection, "a", 10, 1, inserted_at_push=1)
    manager.record_push("s1")
    manager.record_push("s1")
    assert manager.stats("s1").stable_entry_count == 0
    manager.record_push("s1")
    assert manager.stats("s1").stable_entry_count == 1
    (stable,) = connection.execute(
        "SELECT stable_since_turn FROM session_entries WHERE id = 'a'"
    ).fetchone()
    assert stable == 1


def test_evaluate_places_marker_and_advances(connection):
    manager = CacheBoundaryManager(connection)
    add_entry(connection, "a", 2000, 1, stable_since=1)
    result = manager.evaluate("s1")
    assert [m.entry_id for m in result.markers] == ["a"]
    assert result.markers[0].tokens_up_to_here == 2000
    assert result.total_stable_tokens == 2000
    assert result.advanced is True
    assert result.retreated is False
    assert manager.stats("s1").boundary_tokens == 2000

    again = manager.evaluate("s1")
    assert again.advanced is False
    assert again.retreated is False


def test_invalidate_entry_retreats_boundary(connection):
    manager = CacheBoundaryManager(connection)
    add_entry(connection, "a", 2000, 1, stable_since=1)
    manager.evaluate("s1")
    manager.invalidate_entry("a")
    result = manager.evaluate("s1")
    assert result.markers == []
    assert result.total_stable_tokens == 0
    assert result.retreated is True
    (content_hash,) = connection.execute(
        "SELECT content_hash FROM session_entries WHERE id = 'a'"
    ).fetchone()
    assert content_hash == ""


def test_prefix_below_minimum_gets_no_marker(connection):
    manager = CacheBoundaryManager(connection)
    add_entry(connection, "a", 100, 1, stable_since=1)
    result = manager.evaluate("s1")
    assert result.markers == []
    assert result.advanced is False


def test_markers_are_capped_and_in_document_order(connection):
    config = CacheBoundaryConfig()
    manager = CacheBoundaryManager(connection, config)
    ids = [f"e{i}" for i in range(6)]
    for seq, entry_id in enumerate(ids, start=1):
        add_entry(connection, entry_id, 2000, seq, stable_since=1)
    result = manager.evaluate("s1")
    assert len(result.markers) == config.max_markers
    assert [m.entry_id for m in result.markers] == ids[-config.max_markers:]
    positions = [m.tokens_up_to_here for m in result.markers]
    assert positions == sorted(positions)
    assert result.total_stable_tokens == positions[-1]


def test_unstable_entries_are_not_candidates(connection):
    manager = CacheBoundaryManager(connection)
    add_entry(connection, "a", 2000, 1, stable_since=0)
    add_entry(connection, "b", 2000, 2, stable_since=5)
    assert manager.evaluate("s1").markers == []


def test_missing_session_raises(connection):
    manager = CacheBoundaryManager(connection)
    with pytest.raises(SessionNotFoundError):
        manager.stats("nope")
    with pytest.raises(SessionNotFoundError):
        manager.record_push("nope")