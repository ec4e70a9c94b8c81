"""Hierarchical multi-level summarization of conversation turns.

Turns are compressed progressively as they age:

* ``Level.FULL``: original content (recent)
* ``Level.PARAGRAPH``: paragraph summary (medium age)
* ``Level.SENTENCE``: one or two sentence summary (old)
* ``Level.KEYWORDS``: keywords only (very old)
* ``Level.EVICTED``: dropped entirely
"""

from __future__ import annotations

import dataclasses
import time
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Any, Optional


class Level(IntEnum):
    """Compression level of a conversation turn."""

    FULL = 0
    PARAGRAPH = 1
    SENTENCE = 2
    KEYWORDS = 3
    EVICTED = 4


@dataclass
class Turn:
    """A single conversation turn.

    A turn without a timestamp is treated as infinitely old.
    """

    id: str = ""
    role: str = ""
    content: str = ""
    original: str = ""
    timestamp: Optional[datetime] = None
    level: Level = Level.FULL
    importance: float = 0.0
    token_count: int = 0


@dataclass
class AgeLevel:
    """Turns at least ``after`` old may be compressed up to ``max_level``."""

    after: timedelta
    max_level: Level


def _default_age_levels() -> list[AgeLevel]:
    return [
        AgeLevel(timedelta(minutes=30), Level.PARAGRAPH),
        AgeLevel(timedelta(hours=2), Level.SENTENCE),
        AgeLevel(timedelta(hours=24), Level.KEYWORDS),
    ]


@dataclass
class SummarizeOptions:
    """Settings for a summarization pass.

    ``max_tokens`` of 0 means no budget. The ``preserve_recent`` most recent
    turns stay at full fidelity. Turns whose importance reaches
    ``importance_threshold`` are never compressed beyond a paragraph.
    """

    max_tokens: int = 0
    preserve_recent: int = 10
    importance_threshold: float = 0.7
    age_levels: list[AgeLevel] = field(default_factory=_default_age_levels)


@dataclass
class SummarizeStats:
    """What happened during a summarization pass; latency is in seconds."""

    input_turns: int = 0
    output_turns: int = 0
    input_tokens: int = 0
    output_tokens: int = 0
    compressed_turns: int = 0
    preserved_turns: int = 0
    reduction_pct: float = 0.0
    latency: float = 0.0


def default_options() -> SummarizeOptions:
    """Return the default summarization options."""
    return SummarizeOptions()


_ERROR_KEYWORDS = (
    "error", "exception", "panic", "fatal", "failed", "failure",
    "crash", "bug", "traceback", "stack trace", "nil pointer",
    "segfault", "timeout", "deadlock",
)

_DECISION_KEYWORDS = (
    "decided", "decision", "conclusion", "therefore", "we will",
    "we should", "let's use", "going with", "chosen", "agreed",
    "final answer", "solution is", "approach is",
)

_STOP_WORDS = frozenset({
    "the", "and", "for", "that", "this", "with", "from", "have",
    "will", "been", "were", "they", "their", "there", "when",
    "what", "which", "would", "could", "should", "about", "into",
    "more", "also", "some", "than", "then", "just", "like",
})

_KEYWORD_TRIM = ".,;:!?\"'()[]{}"


def score_importance(turn: Turn) -> float:
    """Return a heuristic importance score between 0 and 1.

    System turns always score 1.0. Code blocks, error keywords, decision
    keywords and tool output raise the score; very short content lowers it.
    """
    if turn.role == "system":
        return 1.0

    score = 0.5
    lower = turn.content.lower()

    if "```" in turn.content or "\t" in turn.content:
        score += 0.4
    if any(keyword in lower for keyword in _ERROR_KEYWORDS):
        score += 0.3
    if any(keyword in lower for keyword in _DECISION_KEYWORDS):
        score += 0.2
    if turn.role == "tool":
        score += 0.2
    if len(turn.content) < 50:
        score -= 0.1

    return min(max(score, 0.0), 1.0)


def score_turns(turns: Iterable[Turn]) -> None:
    """Set the importance of every turn that has none yet, in place."""
    for turn in turns:
        if turn.importance == 0:
            turn.importance = score_importance(turn)


def estimate_tokens(text: str) -> int:
    """Approximate the token count as one token per four non-space characters."""
    visible = sum(1 for ch in text if not ch.isspace())
    return (visible + 3) // 4


def total_tokens(turns: Iterable[Turn]) -> int:
    """Return the sum of token counts across turns."""
    return sum(turn.token_count for turn in turns)


def _truncate(text: str, max_chars: int) -> str:
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "…"


def _strip_code_blocks(text: str) -> str:
    kept = []
    in_code = False
    for line in text.split("\n"):
        if line.startswith("```"):
            in_code = not in_code
            continue
        if not in_code:
            kept.append(line + "\n")
    return "".join(kept)


def _split_sentences(text: str) -> list[str]:
    sentences = []
    current: list[str] = []
    for ch in text:
        current.append(ch)
        if ch in ".!?":
            sentence = "".join(current).strip()
            if sentence:
                sentences.append(sentence)
            current = []
    tail = "".join(current).strip()
    if tail:
        sentences.append(tail)
    return sentences


def extract_paragraph_summary(text: str) -> str:
    """Keep the first paragraph and any fenced code blocks."""
    kept = []
    in_code = False
    paragraph_done = False

    for line in text.split("\n"):
        if line.startswith("```"):
            in_code = not in_code
            kept.append(line)
            continue
        if in_code:
            kept.append(line)
            continue
        if not paragraph_done:
            kept.append(line)
            if line == "" and len(kept) > 1:
                paragraph_done = True

    result = "\n".join(kept).strip()
    return result or _truncate(text, 300)


def extract_sentence_summary(text: str) -> str:
    """Return the first one or two sentences, ignoring code blocks."""
    text = _strip_code_blocks(text)
    sentences = _split_sentences(text)
    if not sentences:
        return _truncate(text, 150)
    return " ".join(sentences[:2])


def extract_keyword_summary(text: str) -> str:
    """Return up to twelve distinct significant words, comma separated."""
    keywords: list[str] = []
    seen: set[str] = set()
    for raw in _strip_code_blocks(text).split():
        word = raw.strip(_KEYWORD_TRIM)
        lower = word.lower()
        if len(word.encode("utf-8")) < 4 or lower in _STOP_WORDS or lower in seen:
            continue
        seen.add(lower)
        keywords.append(word)
        if len(keywords) >= 12:
            break
    return ", ".join(keywords)


def _age_of(turn: Turn) -> timedelta:
    if turn.timestamp is None:
        return timedelta.max
    return datetime.now(turn.timestamp.tzinfo) - turn.timestamp


def _compress_to(turn: Turn, target: Level) -> None:
    if not turn.original:
        turn.original = turn.content
    if target == Level.PARAGRAPH:
        turn.content = extract_paragraph_summary(turn.original)
    elif target == Level.SENTENCE:
        turn.content = extract_sentence_summary(turn.original)
    elif target == Level.KEYWORDS:
        turn.content = extract_keyword_summary(turn.original)
    turn.level = target


class HierarchicalSummarizer:
    """Rule-based summarizer using extractive compression, without an LLM."""

    def summarize(
        self, turns: list[Turn], options: Optional[SummarizeOptions] = None
    ) -> tuple[list[Turn], SummarizeStats]:
        """Compress turns oldest-first to fit the options' budget.

        Unscored input turns get their importance and token counts set in
        place; the returned turns are copies.
        """
        start = time.perf_counter()
        opts = dataclasses.replace(options) if options is not None else default_options()
        if opts.preserve_recent < 0:
            opts.preserve_recent = 10
        if opts.importance_threshold <= 0:
            opts.importance_threshold = 0.7
        if not opts.age_levels:
            opts.age_levels = _default_age_levels()

        score_turns(turns)
        for turn in turns:
            turn.token_count = estimate_tokens(turn.content)

        stats = SummarizeStats(
            input_turns=len(turns),
            input_tokens=total_tokens(turns),
        )

        result = [dataclasses.replace(turn) for turn in turns]
        recent_cutoff = max(len(result) - opts.preserve_recent, 0)

        for index, turn in enumerate(result):
            if opts.preserve_recent > 0 and index >= recent_cutoff:
                stats.preserved_turns += 1
                continue

            max_level = self._max_level_for_age(_age_of(turn), opts.age_levels)
            if turn.importance >= opts.importance_threshold and max_level > Level.PARAGRAPH:
                max_level = Level.PARAGRAPH

            if max_level <= turn.level:
                stats.preserved_turns += 1
                continue

            _compress_to(turn, max_level)
            turn.token_count = estimate_tokens(turn.content)
            stats.compressed_turns += 1

        if opts.max_tokens > 0:
            result = self._enforce_token_budget(result, opts, recent_cutoff)

        stats.output_turns = len(result)
        stats.output_tokens = total_tokens(result)
        if stats.input_tokens > 0:
            stats.reduction_pct = (
                (stats.input_tokens - stats.output_tokens) / stats.input_tokens * 100
            )
        stats.latency = time.perf_counter() - start
        return result, stats

    @staticmethod
    def _max_level_for_age(age: timedelta, levels: Iterable[AgeLevel]) -> Level:
        best = Level.FULL
        for age_level in levels:
            if age >= age_level.after and age_level.max_level > best:
                best = Level(age_level.max_level)
        return best

    @staticmethod
    def _enforce_token_budget(
        turns: list[Turn], opts: SummarizeOptions, recent_cutoff: int
    ) -> list[Turn]:
        total = total_tokens(turns)
        if total <= opts.max_tokens:
            return turns

        for level in Level:
            if level == Level.FULL:
                continue
            if total <= opts.max_tokens:
                break
            for index, turn in enumerate(turns):
                if opts.preserve_recent > 0 and index >= recent_cutoff:
                    break
                if turn.level >= level:
                    continue
                if turn.importance >= opts.importance_threshold and level > Level.PARAGRAPH:
                    continue
                before = turn.token_count
                if level == Level.EVICTED:
                    turn.level = Level.EVICTED
                    turn.content = ""
                    turn.token_count = 0
                else:
                    _compress_to(turn, level)
                    turn.token_count = estimate_tokens(turn.content)
                total -= before - turn.token_count
                if total <= opts.max_tokens:
                    break

        return [turn for turn in turns if turn.level != Level.EVICTED]


def detect_turns(messages: Iterable[Any]) -> list[Turn]:
    """Build turns from messages, one minute apart and ending now.

    Each message is either a mapping with ``role`` and ``content`` keys or a
    ``(role, content)`` pair.
    """
    pairs = []
    for message in messages:
        if isinstance(message, Mapping):
            pairs.append((message["role"], message["content"]))
        else:
            role, content = message
            pairs.append((role, content))

    now = datetime.now(timezone.utc)
    count = len(pairs)
    return [
        Turn(
            id=f"turn-{index}",
            role=role,
            content=content,
            original=content,
            timestamp=now - timedelta(minutes=count - index),
            level=Level.FULL,
            token_count=estimate_tokens(content),
        )
        for index, (role, content) in enumerate(pairs)
    ]