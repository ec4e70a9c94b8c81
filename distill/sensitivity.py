"""Pattern-based classification of text by sensitivity level.

Classification uses compiled regular expressions only, so it is synchronous
and cheap enough to run on every retrieval.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Iterable, Optional


class Level(IntEnum):
    """Sensitivity of a piece of content, from least to most severe."""

    NONE = 0
    PII = 1
    INTERNAL_IP = 2
    CREDENTIALS = 3

    @property
    def label(self) -> str:
        """Return the short human-readable name of the level."""
        return _LABELS[self]

    def __str__(self) -> str:
        return self.label


_LABELS = {
    Level.NONE: "none",
    Level.PII: "pii",
    Level.INTERNAL_IP: "internal",
    Level.CREDENTIALS: "credentials",
}


@dataclass(frozen=True)
class Match:
    """One pattern that matched during classification."""

    pattern: str
    level: Level

    def to_dict(self) -> dict[str, Any]:
        return {"pattern": self.pattern, "level": int(self.level)}


@dataclass
class Result:
    """The highest level found in a text and every pattern that matched."""

    level: Level = Level.NONE
    matches: list[Match] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"level": int(self.level)}
        if self.matches:
            data["matches"] = [match.to_dict() for match in self.matches]
        return data


def _default_internal_domains() -> list[str]:
    return [".internal", ".corp", ".local"]


@dataclass
class ClassifierConfig:
    """Classifier settings.

    ``internal_domains`` are domain suffixes whose mention marks text as
    internal.
    """

    internal_domains: list[str] = field(default_factory=_default_internal_domains)


# Credentials come first as the most severe category.
_BUILTIN_PATTERNS: tuple[tuple[str, str, Level], ...] = (
    ("aws_access_key", r"AKIA[0-9A-Z]{16}", Level.CREDENTIALS),
    ("openai_api_key", r"sk-[a-zA-Z0-9_-]{20,}", Level.CREDENTIALS),
    ("github_token", r"ghp_[a-zA-Z0-9]{36}", Level.CREDENTIALS),
    ("github_token_old", r"gh[pousr]_[a-zA-Z0-9]{36}", Level.CREDENTIALS),
    ("slack_token", r"xox[baprs]-[a-zA-Z0-9-]+", Level.CREDENTIALS),
    (
        "generic_secret",
        r"(?i)(password|secret|token|api_key|apikey)\s*[:=]\s*\S+",
        Level.CREDENTIALS,
    ),
    ("email_address", r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}", Level.PII),
    ("phone_number", r"(?:\+?1[-.\s]?)?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}", Level.PII),
    ("credit_card", r"\b(?:\d[ -]*?){13,19}\b", Level.PII),
    ("ssn", r"\b\d{3}-\d{2}-\d{4}\b", Level.PII),
)


class Classifier:
    """Detects sensitive content in text with compiled patterns."""

    def __init__(self, config: Optional[ClassifierConfig] = None) -> None:
        self.config = config if config is not None else ClassifierConfig()
        self._patterns = [
            (name, re.compile(expr, re.ASCII), level)
            for name, expr, level in _BUILTIN_PATTERNS
        ]

    def classify(self, text: str) -> Result:
        """Scan text and return the most severe level with all matches."""
        matches = [
            Match(name, level)
            for name, regex, level in self._patterns
            if regex.search(text)
        ]

        lower = text.lower()
        if any(domain in lower for domain in self.config.internal_domains):
            matches.append(Match("internal_domain", Level.INTERNAL_IP))

        level = max((match.level for match in matches), default=Level.NONE)
        return Result(level=Level(level), matches=matches)

    def classify_batch(self, texts: Iterable[str]) -> tuple[Level, list[Result]]:
        """Classify each text; return the highest level and per-text results."""
        results = [self.classify(text) for text in texts]
        level = max((result.level for result in results), default=Level.NONE)
        return Level(level), results