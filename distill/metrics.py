"""Prometheus-style instrumentation with text exposition and WSGI helpers."""

from __future__ import annotations

import math
import platform
import threading
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Iterable, Union

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"

WSGIApp = Callable[[dict, Callable[..., Any]], Iterable[bytes]]


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if float(value).is_integer() and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"').replace("\n", "\\n")


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


class _Metric:
    """Common behaviour of a named metric with optional labels."""

    kind = "untyped"

    def __init__(self, name: str, help: str, label_names: Iterable[str] = ()) -> None:
        self.name = name
        self.help = help
        self.label_names = tuple(label_names)
        self._lock = threading.Lock()

    def _key(self, label_values: tuple) -> tuple[str, ...]:
        if len(label_values) != len(self.label_names):
            raise ValueError(
                f"{self.name}: expected {len(self.label_names)} label values, "
                f"got {len(label_values)}"
            )
        return tuple(str(value) for value in label_values)

    def _label_text(self, key: tuple[str, ...], extra: tuple[tuple[str, str], ...] = ()) -> str:
        pairs = list(zip(self.label_names, key)) + list(extra)
        if not pairs:
            return ""
        inner = ",".join(f'{name}="{_escape_label(value)}"' for name, value in pairs)
        return "{" + inner + "}"

    def _header(self) -> list[str]:
        return [f"# HELP {self.name} {_escape_help(self.help)}", f"# TYPE {self.name} {self.kind}"]

    def exposition_lines(self) -> list[str]:
        raise NotImplementedError


class _ScalarMetric(_Metric):
    def __init__(self, name: str, help: str, label_names: Iterable[str] = ()) -> None:
        super().__init__(name, help, label_names)
        self._values: dict[tuple[str, ...], float] = {}
        if not self.label_names:
            self._values[()] = 0.0

    def _add(self, label_values: tuple, amount: float) -> None:
        key = self._key(label_values)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + amount

    def _current(self, label_values: tuple) -> float:
        key = self._key(label_values)
        with self._lock:
            return self._values.get(key, 0.0)

    def exposition_lines(self) -> list[str]:
        with self._lock:
            series = sorted(self._values.items())
        if not series:
            return []
        lines = self._header()
        for key, value in series:
            lines.append(f"{self.name}{self._label_text(key)} {_format_value(value)}")
        return lines


class Counter(_ScalarMetric):
    """A monotonically increasing value per label combination."""

    kind = "counter"

    def inc(self, *args: Any, amount: float = 1.0) -> None:
        """Add ``amount`` (default 1) to the series for these label values."""
        if amount < 0:
            raise ValueError(f"{self.name}: counter cannot decrease")
        self._add(args, float(amount))

    def value(self, *args: Any) -> float:
        """Return the current value of the series for these label values."""
        return self._current(args)


class Gauge(_ScalarMetric):
    """A value that can go up and down per label combination."""

    kind = "gauge"

    def set(self, value: float, *args: Any) -> None:
        """Set the series for these label values to ``value``."""
        key = self._key(args)
        with self._lock:
            self._values[key] = float(value)

    def inc(self, *args: Any) -> None:
        """Increase the series by one."""
        self._add(args, 1.0)

    def dec(self, *args: Any) -> None:
        """Decrease the series by one."""
        self._add(args, -1.0)

    def value(self, *args: Any) -> float:
        """Return the current value of the series for these label values."""
        return self._current(args)


class Histogram(_Metric):
    """Cumulative bucketed observations per label combination."""

    kind = "histogram"

    def __init__(
        self,
        name: str,
        help: str,
        label_names: Iterable[str] = (),
        buckets: Iterable[float] = (),
    ) -> None:
        super().__init__(name, help, label_names)
        self.buckets = tuple(sorted(float(bound) for bound in buckets))
        self._series: dict[tuple[str, ...], tuple[list[int], list[float]]] = {}
        if not self.label_names:
            self._series[()] = ([0] * len(self.buckets), [0.0, 0.0])

    def observe(self, value: float, *args: Any) -> None:
        """Record one observation for these label values."""
        key = self._key(args)
        with self._lock:
            counts, totals = self._series.setdefault(
                key, ([0] * len(self.buckets), [0.0, 0.0])
            )
            for index, bound in enumerate(self.buckets):
                if value <= bound:
                    counts[index] += 1
            totals[0] += value
            totals[1] += 1

    def count(self, *args: Any) -> int:
        """Return the number of observations for these label values."""
        key = self._key(args)
        with self._lock:
            entry = self._series.get(key)
            return int(entry[1][1]) if entry else 0

    def exposition_lines(self) -> list[str]:
        with self._lock:
            series = sorted(
                (key, list(counts), list(totals))
                for key, (counts, totals) in self._series.items()
            )
        if not series:
            return []
        lines = self._header()
        for key, counts, (total_sum, total_count) in series:
            for bound, cumulative in zip(self.buckets, counts):
                labels = self._label_text(key, (("le", _format_value(bound)),))
                lines.append(f"{self.name}_bucket{labels} {cumulative}")
            labels = self._label_text(key, (("le", "+Inf"),))
            lines.append(f"{self.name}_bucket{labels} {int(total_count)}")
            lines.append(f"{self.name}_sum{self._label_text(key)} {_format_value(total_sum)}")
            lines.append(f"{self.name}_count{self._label_text(key)} {int(total_count)}")
        return lines


@dataclass
class UsageRecord:
    """Token counts from the usage block of a model API response."""

    session_id: str = ""
    input_tokens: int = 0
    cache_creation_input_tokens: int = 0
    cache_read_input_tokens: int = 0
    output_tokens: int = 0


Duration = Union[float, timedelta]


class Metrics:
    """All service metrics and the runtime metrics of the process."""

    def __init__(self) -> None:
        self.requests_total = Counter(
            "distill_requests_total",
            "Total HTTP requests by endpoint and status code.",
            ("endpoint", "status"),
        )
        self.request_duration = Histogram(
            "distill_request_duration_seconds",
            "HTTP request latency distribution.",
            ("endpoint",),
            (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5),
        )
        self.chunks_processed = Counter(
            "distill_chunks_processed_total",
            "Total chunks processed by direction (input/output).",
            ("direction",),
        )
        self.reduction_ratio = Histogram(
            "distill_reduction_ratio",
            "Chunk reduction ratio per request (0=no reduction, 1=all removed).",
            ("endpoint",),
            (0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0),
        )
        self.active_requests = Gauge(
            "distill_active_requests",
            "Number of requests currently being processed.",
        )
        self.clusters_formed = Counter(
            "distill_clusters_formed_total",
            "Total clusters formed during deduplication.",
            ("endpoint",),
        )
        self.cache_creation_tokens = Counter(
            "distill_cache_creation_tokens_total",
            "Tokens written to Anthropic prompt cache (charged at 1.25x input price).",
            ("session_id",),
        )
        self.cache_read_tokens = Counter(
            "distill_cache_read_tokens_total",
            "Tokens read from Anthropic prompt cache (charged at 0.10x input price).",
            ("session_id",),
        )
        self.uncached_input_tokens = Counter(
            "distill_uncached_input_tokens_total",
            "Input tokens not served from cache (charged at 1.00x input price).",
            ("session_id",),
        )
        self.cache_hit_rate = Gauge(
            "distill_cache_hit_rate",
            "Rolling cache hit rate: cache_read / (cache_read + cache_creation + input).",
        )
        self.cache_write_efficiency = Gauge(
            "distill_cache_write_efficiency",
            "Cache read/write ratio. Values < 1.0 indicate writes that expire before being read.",
        )
        self.cache_boundary_position = Gauge(
            "distill_cache_boundary_position_tokens",
            "Current cache boundary position in tokens for a session.",
            ("session_id",),
        )
        self.cache_boundary_advances = Counter(
            "distill_cache_boundary_advances_total",
            "Number of times the cache boundary advanced (more content became stable).",
            ("session_id",),
        )
        self.cache_boundary_retreats = Counter(
            "distill_cache_boundary_retreats_total",
            "Number of times the cache boundary retreated (content changed or was evicted).",
            ("session_id",),
        )
        self.cache_estimated_savings = Counter(
            "distill_cache_estimated_savings_tokens_total",
            "Estimated tokens saved by prompt caching across all sessions.",
            ("session_id",),
        )

        self._python_info = Gauge(
            "python_info",
            "Python platform information.",
            ("implementation", "major", "minor", "patchlevel"),
        )
        major, minor, patch = platform.python_version_tuple()
        self._python_info.set(1, platform.python_implementation(), major, minor, patch)
        self._python_threads = Gauge("python_threads", "Number of live threads.")
        self._process_cpu = Gauge(
            "process_cpu_seconds_total",
            "Total user and system CPU time spent in seconds.",
        )
        self._process_cpu.kind = "counter"

        self._registry: list[_Metric] = [
            self.requests_total,
            self.request_duration,
            self.chunks_processed,
            self.reduction_ratio,
            self.active_requests,
            self.clusters_formed,
            self.cache_creation_tokens,
            self.cache_read_tokens,
            self.uncached_input_tokens,
            self.cache_hit_rate,
            self.cache_write_efficiency,
            self.cache_boundary_position,
            self.cache_boundary_advances,
            self.cache_boundary_retreats,
            self.cache_estimated_savings,
            self._python_info,
            self._python_threads,
            self._process_cpu,
        ]

    def exposition(self) -> str:
        """Render every metric in the Prometheus text format."""
        self._python_threads.set(threading.active_count())
        self._process_cpu.set(time.process_time())
        lines: list[str] = []
        for metric in sorted(self._registry, key=lambda m: m.name):
            lines.extend(metric.exposition_lines())
        return "".join(line + "\n" for line in lines)

    def handler(self, environ: dict, start_response: Callable[..., Any]) -> list[bytes]:
        """WSGI application serving the metrics page."""
        body = self.exposition().encode("utf-8")
        start_response(
            "200 OK",
            [("Content-Type", CONTENT_TYPE), ("Content-Length", str(len(body)))],
        )
        return [body]

    def record_request(self, endpoint: str, status_code: int, duration: Duration) -> None:
        """Record a completed request; ``duration`` is seconds or a timedelta."""
        seconds = duration.total_seconds() if isinstance(duration, timedelta) else float(duration)
        self.requests_total.inc(endpoint, str(status_code))
        self.request_duration.observe(seconds, endpoint)

    def record_dedup(
        self, endpoint: str, input_count: int, output_count: int, cluster_count: int
    ) -> None:
        """Record the chunk and cluster counts of one deduplication."""
        self.chunks_processed.inc("input", amount=input_count)
        self.chunks_processed.inc("output", amount=output_count)
        self.clusters_formed.inc(endpoint, amount=cluster_count)
        if input_count > 0:
            self.reduction_ratio.observe(1.0 - output_count / input_count, endpoint)

    def record_cache_usage(self, usage: UsageRecord) -> None:
        """Record cache token usage and update the derived gauges."""
        session_id = usage.session_id or "default"
        if usage.cache_creation_input_tokens > 0:
            self.cache_creation_tokens.inc(session_id, amount=usage.cache_creation_input_tokens)
        if usage.cache_read_input_tokens > 0:
            self.cache_read_tokens.inc(session_id, amount=usage.cache_read_input_tokens)
        if usage.input_tokens > 0:
            self.uncached_input_tokens.inc(session_id, amount=usage.input_tokens)

        total = (
            usage.input_tokens
            + usage.cache_creation_input_tokens
            + usage.cache_read_input_tokens
        )
        if total > 0:
            self.cache_hit_rate.set(usage.cache_read_input_tokens / total)
        if usage.cache_creation_input_tokens > 0:
            self.cache_write_efficiency.set(
                usage.cache_read_input_tokens / usage.cache_creation_input_tokens
            )

    def record_cache_boundary(
        self, session_id: str, boundary_tokens: int, advanced: bool, retreated: bool
    ) -> None:
        """Record the result of a cache boundary evaluation for a session."""
        session_id = session_id or "default"
        self.cache_boundary_position.set(boundary_tokens, session_id)
        if advanced:
            self.cache_boundary_advances.inc(session_id)
        if retreated:
            self.cache_boundary_retreats.inc(session_id)

    def middleware(self, endpoint: str, app: WSGIApp) -> WSGIApp:
        """Wrap a WSGI application so that its requests are instrumented."""

        def instrumented(environ: dict, start_response: Callable[..., Any]) -> list[bytes]:
            status_code = 200

            def capture(status: str, headers: list, exc_info: Any = None) -> Any:
                nonlocal status_code
                status_code = int(status.split(None, 1)[0])
                if exc_info is None:
                    return start_response(status, headers)
                return start_response(status, headers, exc_info)

            self.active_requests.inc()
            started = time.perf_counter()
            try:
                result = app(environ, capture)
                try:
                    body = list(result)
                finally:
                    close = getattr(result, "close", None)
                    if callable(close):
                        close()
            finally:
                self.active_requests.dec()
            self.record_request(endpoint, status_code, time.perf_counter() - started)
            return body

        return instrumented