import pytest

from distill.callsite import CallSiteRecord, CallSiteTracker
from distill.metrics import UsageRecord


def test_hit_rate():
    tracker = CallSiteTracker()
    tracker.record(
        "agent.go:42", UsageRecord(cache_creation_input_tokens=8000, input_tokens=200)
    )

    stats = tracker.stats("agent.go:42")
    assert stats is not None
    assert stats.hit_rate() == 0
    assert stats.total_requests == 1

    tracker.record("agent.go:42", UsageRecord(cache_read_input_tokens=8000))
    stats = tracker.stats("agent.go:42")
    assert stats.hit_rate() == pytest.approx(8000 / 16200)
    assert stats.cache_hit_requests == 1
    assert stats.request_hit_rate() == 0.5


def test_write_efficiency():
    tracker = CallSiteTracker()
    tracker.record("planner.go:84", UsageRecord(cache_creation_input_tokens=4000))
    tracker.record("planner.go:84", UsageRecord(cache_read_input_tokens=4000))
    tracker.record("planner.go:84", UsageRecord(cache_read_input_tokens=4000))
    assert tracker.stats("planner.go:84").write_efficiency() == 2.0


def test_all_stats_sorted_by_hit_rate():
    tracker = CallSiteTracker()
    tracker.record("good.go:1", UsageRecord(cache_read_input_tokens=1000))
    tracker.record("bad.go:1", UsageRecord(cache_creation_input_tokens=1000))

    all_stats = tracker.all_stats()
    assert len(all_stats) == 2
    assert all_stats[0].call_site == "bad.go:1"
    assert all_stats[1].call_site == "good.go:1"


def test_reset():
    tracker = CallSiteTracker()
    tracker.record("x.go:1", UsageRecord(input_tokens=100))
    tracker.reset("x.go:1")
    assert tracker.stats("x.go:1") is None


def test_reset_all():
    tracker = CallSiteTracker()
    tracker.record("a.go:1", UsageRecord(input_tokens=100))
    tracker.record("b.go:1", UsageRecord(input_tokens=100))
    tracker.reset_all()
    assert tracker.all_stats() == []


def test_summary():
    tracker = CallSiteTracker()
    tracker.record(
        "agent.go:42",
        UsageRecord(cache_creation_input_tokens=4000, cache_read_input_tokens=4000),
    )
    text = tracker.summary()
    lines = text.splitlines()
    assert lines[0].startswith("call site")
    assert lines[1].startswith("agent.go:42")
    assert "50%" in lines[1]
    assert "1.0x" in lines[1]
    assert lines[1].endswith(" 1")


def test_summary_empty():
    assert CallSiteTracker().summary() == "no call sites recorded"


def test_nil_stats():
    assert CallSiteTracker().stats("nonexistent.go:1") is None


def test_stats_is_snapshot():
    tracker = CallSiteTracker()
    tracker.record("a.go:1", UsageRecord(input_tokens=100, output_tokens=5))
    snapshot = tracker.stats("a.go:1")
    snapshot.uncached_input_tokens = 0
    assert tracker.stats("a.go:1").uncached_input_tokens == 100
    assert tracker.stats("a.go:1").output_tokens == 5


def test_timestamps_recorded():
    tracker = CallSiteTracker()
    tracker.record("a.go:1", UsageRecord(input_tokens=1))
    tracker.record("a.go:1", UsageRecord(input_tokens=1))
    stats = tracker.stats("a.go:1")
    assert stats.first_seen <= stats.last_seen


def test_empty_record_rates_are_zero():
    rec = CallSiteRecord(call_site="x")
    assert (rec.hit_rate(), rec.write_efficiency(), rec.request_hit_rate()) == (0, 0, 0)