"""Text, hashing and encoding helpers used by session stores."""

from __future__ import annotations

import math
import re
import secrets
import struct
import time
from datetime import timedelta
from typing import Optional, Sequence, Union

from distill.session_models import CompressionLevel

_SUMMARY_KEEP_RATIO = 0.2
_SUMMARY_MIN_LENGTH = 20
_SENTENCE_CUT = 50
_MAX_KEYWORDS = 15
_KEYWORD_TRIM = ".,;:!?\"'()[]{}"

_STOP_WORDS = frozenset({
    "that", "this", "with", "from", "have", "been", "were", "they",
    "their", "which", "would", "there", "about", "could", "other", "into",
    "more", "some", "than", "them", "very", "when", "what", "your",
    "also", "each", "does", "will", "just", "should", "because", "these",
})

_SENTENCE_RE = re.compile(r"[^.!?]+[.!?]*")


def _extractive_summary(text: str) -> str:
    """Keep the leading sentences that make up about a fifth of the text."""
    if len(text) < _SUMMARY_MIN_LENGTH:
        return text
    sentences = [s.strip() for s in _SENTENCE_RE.findall(text) if s.strip()]
    if len(sentences) <= 1:
        return text
    target = len(text) * _SUMMARY_KEEP_RATIO
    kept: list[str] = []
    length = 0
    for sentence in sentences:
        if kept and length + len(sentence) > target:
            break
        kept.append(sentence)
        length += len(sentence) + 1
    return " ".join(kept) or text


def _first_sentence(text: str) -> str:
    for index, ch in enumerate(text):
        if ch in ".!?":
            return text[: index + 1]
    if len(text) > _SENTENCE_CUT:
        cut = _SENTENCE_CUT
        while cut > 0 and text[cut] != " ":
            cut -= 1
        if cut == 0:
            cut = _SENTENCE_CUT
        return text[:cut].strip() + "..."
    return text


def compress_to_level(text: str, level: int) -> str:
    """Return text compressed to the given compression level."""
    if level == CompressionLevel.SUMMARY:
        return _extractive_summary(text)
    if level == CompressionLevel.SENTENCE:
        return _first_sentence(text)
    if level == CompressionLevel.KEYWORDS:
        return extract_keywords(text)
    return text


def extract_keywords(text: str) -> str:
    """Return up to fifteen distinct lower-case keywords, comma separated."""
    keywords: list[str] = []
    seen: set[str] = set()
    for word in text.split():
        lower = word.strip(_KEYWORD_TRIM).lower()
        if not lower or len(lower.encode("utf-8")) < 4 or lower in _STOP_WORDS or lower in seen:
            continue
        seen.add(lower)
        keywords.append(lower)
    return ", ".join(keywords[:_MAX_KEYWORDS])


def hash_content(text: str) -> str:
    """Return the 64-bit FNV-1a hash of the text as sixteen hex digits."""
    value = 14695981039346656037
    for byte in text.encode("utf-8"):
        value ^= byte
        value = (value * 1099511628211) & 0xFFFFFFFFFFFFFFFF
    return f"{value:016x}"


def generate_id() -> str:
    """Return a 24-digit hex id: a 4-byte Unix timestamp and 8 random bytes."""
    stamp = int(time.time()) & 0xFFFFFFFF
    return (struct.pack(">I", stamp) + secrets.token_bytes(8)).hex()


def encode_embedding(embedding: Sequence[float]) -> Optional[bytes]:
    """Pack an embedding as little-endian float32 values; empty gives None."""
    if not embedding:
        return None
    return struct.pack(f"<{len(embedding)}f", *embedding)


def decode_embedding(blob: Optional[bytes]) -> list[float]:
    """Unpack little-endian float32 values; malformed input gives an empty list."""
    if not blob or len(blob) % 4 != 0:
        return []
    return list(struct.unpack(f"<{len(blob) // 4}f", blob))


def cosine_distance(a: Sequence[float], b: Sequence[float]) -> float:
    """Return 1 minus the cosine similarity of two vectors.

    Vectors of different lengths or with zero magnitude are maximally
    distant (1.0).
    """
    if len(a) != len(b) or not a:
        return 1.0
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 1.0
    return 1.0 - dot / (norm_a * norm_b)


def estimate_tokens(text: str) -> int:
    """Approximate tokens as one per four bytes of UTF-8 text."""
    return (len(text.encode("utf-8")) + 3) // 4


def format_age(seconds: Union[float, timedelta]) -> str:
    """Format an age as whole seconds, minutes, hours or days."""
    if isinstance(seconds, timedelta):
        seconds = seconds.total_seconds()
    if seconds < 60:
        return f"{int(seconds)}s"
    if seconds < 3600:
        return f"{int(seconds / 60)}m"
    if seconds < 86400:
        return f"{int(seconds / 3600)}h"
    return f"{int(seconds / 86400)}d"