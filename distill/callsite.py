"""Per-call-site tracking of prompt cache usage."""

from __future__ import annotations

import dataclasses
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from distill.metrics import UsageRecord


@dataclass
class CallSiteRecord:
    """Cumulative cache usage for one call site."""

    call_site: str
    cache_creation_tokens: int = 0
    cache_read_tokens: int = 0
    uncached_input_tokens: int = 0
    output_tokens: int = 0
    total_requests: int = 0
    cache_hit_requests: int = 0
    first_seen: Optional[datetime] = None
    last_seen: Optional[datetime] = None

    def hit_rate(self) -> float:
        """Return cache reads over all input tokens, or 0 with no tokens."""
        total = self.cache_read_tokens + self.cache_creation_tokens + self.uncached_input_tokens
        if total == 0:
            return 0.0
        return self.cache_read_tokens / total

    def write_efficiency(self) -> float:
        """Return cache reads over cache writes, or 0 with no writes."""
        if self.cache_creation_tokens == 0:
            return 0.0
        return self.cache_read_tokens / self.cache_creation_tokens

    def request_hit_rate(self) -> float:
        """Return the fraction of requests that read from the cache."""
        if self.total_requests == 0:
            return 0.0
        return self.cache_hit_requests / self.total_requests


class CallSiteTracker:
    """Thread-safe record of cache usage per call site."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._records: dict[str, CallSiteRecord] = {}

    def record(self, call_site: str, usage: UsageRecord) -> None:
        """Add one usage observation for a call site."""
        with self._lock:
            now = datetime.now(timezone.utc)
            rec = self._records.get(call_site)
            if rec is None:
                rec = CallSiteRecord(call_site=call_site, first_seen=now)
                self._records[call_site] = rec
            rec.cache_creation_tokens += usage.cache_creation_input_tokens
            rec.cache_read_tokens += usage.cache_read_input_tokens
            rec.uncached_input_tokens += usage.input_tokens
            rec.output_tokens += usage.output_tokens
            rec.total_requests += 1
            if usage.cache_read_input_tokens > 0:
                rec.cache_hit_requests += 1
            rec.last_seen = now

    def stats(self, call_site: str) -> Optional[CallSiteRecord]:
        """Return a snapshot for a call site, or None if it is unknown."""
        with self._lock:
            rec = self._records.get(call_site)
            return dataclasses.replace(rec) if rec is not None else None

    def all_stats(self) -> list[CallSiteRecord]:
        """Return snapshots of all call sites, worst hit rate first."""
        with self._lock:
            snapshots = [dataclasses.replace(rec) for rec in self._records.values()]
        return sorted(snapshots, key=CallSiteRecord.hit_rate)

    def reset(self, call_site: str) -> None:
        """Forget all observations for a call site."""
        with self._lock:
            self._records.pop(call_site, None)

    def reset_all(self) -> None:
        """Forget all observations."""
        with self._lock:
            self._records = {}

    def summary(self) -> str:
        """Return a table of hit rate, write efficiency and requests per site."""
        stats = self.all_stats()
        if not stats:
            return "no call sites recorded"
        lines = [f"{'call site':<40} {'hit%':>8} {'eff':>8} {'reqs':>8}\n"]
        for rec in stats:
            lines.append(
                f"{rec.call_site:<40} {rec.hit_rate() * 100:7.0f}% "
                f"{rec.write_efficiency():7.1f}x {rec.total_requests:8d}\n"
            )
        return "".join(lines)