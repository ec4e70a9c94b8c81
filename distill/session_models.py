"""Data model of stateful session context windows and cache boundaries."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntEnum
from typing import Any, Optional

# Minimum prefix size, in tokens, that qualifies for prompt caching.
MIN_CACHEABLE_TOKENS = 1024

# Maximum number of simultaneous cache_control markers per request.
MAX_CACHE_MARKERS = 4


class SessionError(Exception):
    """Base class for session failures."""

    default_message = "session error"

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)


class SessionNotFoundError(SessionError):
    """The session does not exist."""

    default_message = "session not found"


class SessionExistsError(SessionError):
    """A session with this id already exists."""

    default_message = "session already exists"


class OverBudgetError(SessionError):
    """A single entry is larger than the session's whole token budget."""

    default_message = "single entry exceeds token budget"


class CompressionLevel(IntEnum):
    """How far an entry's content has been compressed."""

    FULL = 0
    SUMMARY = 1
    SENTENCE = 2
    KEYWORDS = 3


def _iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment is not None else None


@dataclass
class Entry:
    """One item in a session's context window."""

    id: str = ""
    role: str = ""
    content: str = ""
    original_content: str = ""
    source: str = ""
    embedding: list[float] = field(default_factory=list)
    importance: float = 0.0
    level: CompressionLevel = CompressionLevel.FULL
    tokens: int = 0
    created_at: Optional[datetime] = None
    compressed_at: Optional[datetime] = None


@dataclass
class Session:
    """The state of a single context window."""

    id: str = ""
    max_tokens: int = 0
    current_tokens: int = 0
    entry_count: int = 0
    cache_boundary_tokens: int = 0
    push_count: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "session_id": self.id,
            "max_tokens": self.max_tokens,
            "current_tokens": self.current_tokens,
            "entry_count": self.entry_count,
        }
        if self.cache_boundary_tokens:
            data["cache_boundary_tokens"] = self.cache_boundary_tokens
        if self.push_count:
            data["push_count"] = self.push_count
        data["created_at"] = _iso(self.created_at)
        data["updated_at"] = _iso(self.updated_at)
        return data


@dataclass
class CreateRequest:
    """Input for creating a session; an empty id is generated, zeros take defaults."""

    session_id: str = ""
    max_tokens: int = 0
    dedup_threshold: float = 0.0
    preserve_recent: int = 0


@dataclass
class PushEntry:
    """One entry to add; an importance of 0 or less means 0.5."""

    role: str = ""
    content: str = ""
    source: str = ""
    embedding: list[float] = field(default_factory=list)
    importance: float = 0.0


@dataclass
class PushRequest:
    """Input for adding entries to a session."""

    session_id: str = ""
    entries: list[PushEntry] = field(default_factory=list)


@dataclass
class CacheBoundaryConfig:
    """How stability is judged and cache_control markers are placed.

    An entry is stable after surviving ``min_stable_turns`` pushes; no marker
    is placed before ``min_prefix_tokens`` and at most ``max_markers`` are.
    """

    enabled: bool = True
    min_stable_turns: int = 2
    min_prefix_tokens: int = MIN_CACHEABLE_TOKENS
    max_markers: int = MAX_CACHE_MARKERS


@dataclass
class CacheBoundaryMarker:
    """A recommended cache_control placement."""

    entry_id: str
    tokens_up_to_here: int
    stable_since_turn: int


@dataclass
class CacheBoundaryResult:
    """Markers in document order and how the boundary moved."""

    markers: list[CacheBoundaryMarker] = field(default_factory=list)
    total_stable_tokens: int = 0
    advanced: bool = False
    retreated: bool = False


@dataclass
class BoundaryStats:
    """A snapshot of a session's cache boundary state."""

    session_id: str
    push_count: int = 0
    boundary_tokens: int = 0
    stable_entry_count: int = 0
    last_evaluated_at: Optional[datetime] = None


@dataclass
class PushResult:
    """Outcome of a push."""

    session_id: str = ""
    accepted: int = 0
    deduplicated: int = 0
    compressed: int = 0
    evicted: int = 0
    current_tokens: int = 0
    budget_remaining: int = 0
    cache_boundary: Optional[CacheBoundaryResult] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "session_id": self.session_id,
            "accepted": self.accepted,
            "deduplicated": self.deduplicated,
            "compressed": self.compressed,
            "evicted": self.evicted,
            "current_tokens": self.current_tokens,
            "budget_remaining": self.budget_remaining,
        }
        if self.cache_boundary is not None:
            data["cache_boundary"] = dataclasses.asdict(self.cache_boundary)
        return data


@dataclass
class ContextRequest:
    """Input for reading a context window; 0 tokens means the whole window."""

    session_id: str = ""
    max_tokens: int = 0
    role: str = ""


@dataclass
class ContextEntry:
    """One entry returned from a context read."""

    id: str
    role: str
    content: str
    source: str = ""
    level: CompressionLevel = CompressionLevel.FULL
    tokens: int = 0
    age: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"id": self.id, "role": self.role, "content": self.content}
        if self.source:
            data["source"] = self.source
        data["level"] = int(self.level)
        data["tokens"] = self.tokens
        data["age"] = self.age
        return data


@dataclass
class ContextStats:
    """Context window metrics; savings are tokens removed by compression."""

    total_entries: int = 0
    total_tokens: int = 0
    compression_levels: dict[int, int] = field(default_factory=dict)
    compression_savings: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "total_tokens": self.total_tokens,
            "compression_levels": {str(k): v for k, v in self.compression_levels.items()},
            "compression_savings": self.compression_savings,
        }


@dataclass
class ContextResult:
    """Entries of a context read with their metrics."""

    entries: list[ContextEntry] = field(default_factory=list)
    stats: ContextStats = field(default_factory=ContextStats)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entries": [entry.to_dict() for entry in self.entries],
            "stats": self.stats.to_dict(),
        }


@dataclass
class DeleteResult:
    """Outcome of deleting a session."""

    session_id: str
    entries_removed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"session_id": self.session_id, "entries_removed": self.entries_removed}


@dataclass
class SessionConfig:
    """Defaults applied by a session store to new sessions."""

    default_max_tokens: int = 128000
    default_dedup_threshold: float = 0.15
    default_preserve_recent: int = 10
    cache_boundary: CacheBoundaryConfig = field(default_factory=CacheBoundaryConfig)