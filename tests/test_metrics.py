from datetime import timedelta

import pytest

from distill.metrics import Counter, Gauge, Histogram, Metrics, UsageRecord


def _environ(method="POST", path="/v1/dedupe"):
    return {"REQUEST_METHOD": method, "PATH_INFO": path}


class _StartResponse:
    def __init__(self):
        self.status = None
        self.headers = None

    def __call__(self, status, headers, exc_info=None):
        self.status = status
        self.headers = headers


def test_new_starts_with_no_active_requests():
    m = Metrics()
    assert m.active_requests.value() == 0
    assert m.requests_total.value("/v1/dedupe", "200") == 0


def test_record_request():
    m = Metrics()
    m.record_request("/v1/dedupe", 200, 0.05)
    m.record_request("/v1/dedupe", 200, timedelta(milliseconds=100))
    m.record_request("/v1/dedupe", 400, 0.005)

    assert m.requests_total.value("/v1/dedupe", "200") == 2
    assert m.requests_total.value("/v1/dedupe", "400") == 1
    assert m.request_duration.count("/v1/dedupe") == 3


def test_record_dedup():
    m = Metrics()
    m.record_dedup("/v1/dedupe", 10, 6, 6)
    assert m.chunks_processed.value("input") == 10
    assert m.chunks_processed.value("output") == 6
    assert m.clusters_formed.value("/v1/dedupe") == 6
    assert m.reduction_ratio.count("/v1/dedupe") == 1


def test_record_dedup_zero_input():
    m = Metrics()
    m.record_dedup("/v1/dedupe", 0, 0, 0)
    assert m.chunks_processed.value("input") == 0
    assert m.reduction_ratio.count("/v1/dedupe") == 0


def test_middleware():
    m = Metrics()

    def app(environ, start_response):
        start_response("200 OK", [("Content-Type", "text/plain")])
        return [b"ok"]

    handler = m.middleware("/v1/dedupe", app)
    recorder = _StartResponse()
    body = handler(_environ(), recorder)

    assert recorder.status == "200 OK"
    assert b"".join(body) == b"ok"
    assert m.requests_total.value("/v1/dedupe", "200") == 1


def test_middleware_error_status():
    m = Metrics()

    def app(environ, start_response):
        start_response("400 Bad Request", [("Content-Type", "text/plain")])
        return [b"bad request\n"]

    handler = m.middleware("/v1/dedupe", app)
    handler(_environ(), _StartResponse())
    assert m.requests_total.value("/v1/dedupe", "400") == 1
    assert m.requests_total.value("/v1/dedupe", "200") == 0


def test_active_requests_during_and_after():
    m = Metrics()
    seen = []

    def app(environ, start_response):
        seen.append(m.active_requests.value())
        start_response("200 OK", [])
        return [b""]

    handler = m.middleware("/v1/dedupe", app)
    handler(_environ(), _StartResponse())
    assert seen == [1]
    assert m.active_requests.value() == 0


def test_active_requests_decremented_on_failure():
    m = Metrics()

    def app(environ, start_response):
        raise RuntimeError("boom")

    handler = m.middleware("/v1/dedupe", app)
    with pytest.raises(RuntimeError):
        handler(_environ(), _StartResponse())
    assert m.active_requests.value() == 0
    assert m.request_duration.count("/v1/dedupe") == 0


def test_handler():
    m = Metrics()
    m.record_request("/v1/dedupe", 200, 0.01)
    recorder = _StartResponse()
    body = b"".join(m.handler(_environ("GET", "/metrics"), recorder)).decode()

    assert recorder.status == "200 OK"
    assert dict(recorder.headers)["Content-Type"].startswith("text/plain")
    assert "distill_requests_total" in body
    assert "distill_request_duration_seconds" in body
    assert "python_threads" in body


def test_record_cache_usage():
    m = Metrics()
    m.record_cache_usage(
        UsageRecord(
            session_id="sess-1",
            input_tokens=100,
            cache_creation_input_tokens=8000,
            cache_read_input_tokens=0,
            output_tokens=200,
        )
    )
    assert m.cache_creation_tokens.value("sess-1") == 8000
    assert m.uncached_input_tokens.value("sess-1") == 100

    m.record_cache_usage(
        UsageRecord(session_id="sess-1", cache_read_input_tokens=8000, output_tokens=200)
    )
    assert m.cache_read_tokens.value("sess-1") == 8000
    assert m.cache_hit_rate.value() == 1.0


def test_record_cache_usage_write_efficiency():
    m = Metrics()
    m.record_cache_usage(
        UsageRecord(cache_creation_input_tokens=4000, cache_read_input_tokens=8000)
    )
    assert m.cache_write_efficiency.value() == 2.0


def test_record_cache_usage_default_session_id():
    m = Metrics()
    m.record_cache_usage(UsageRecord(input_tokens=50, cache_creation_input_tokens=1000))
    assert m.cache_creation_tokens.value("default") == 1000


def test_record_cache_boundary():
    m = Metrics()
    m.record_cache_boundary("sess-1", 8192, True, False)
    m.record_cache_boundary("sess-1", 16384, True, False)
    m.record_cache_boundary("sess-1", 8192, False, True)

    assert m.cache_boundary_advances.value("sess-1") == 2
    assert m.cache_boundary_retreats.value("sess-1") == 1
    assert m.cache_boundary_position.value("sess-1") == 8192


def test_handler_cache_metrics():
    m = Metrics()
    m.record_cache_usage(
        UsageRecord(
            session_id="sess-1",
            cache_creation_input_tokens=4096,
            cache_read_input_tokens=4096,
        )
    )
    m.record_cache_boundary("sess-1", 8192, True, False)
    body = b"".join(m.handler(_environ("GET", "/metrics"), _StartResponse())).decode()
    for name in (
        "distill_cache_creation_tokens_total",
        "distill_cache_read_tokens_total",
        "distill_cache_hit_rate",
        "distill_cache_write_efficiency",
        "distill_cache_boundary_position_tokens",
    ):
        assert name in body


def test_exposition_histogram_buckets():
    m = Metrics()
    m.record_request("/x", 200, 0.05)
    text = m.exposition()
    assert 'distill_request_duration_seconds_bucket{endpoint="/x",le="0.025"} 0' in text
    assert 'distill_request_duration_seconds_bucket{endpoint="/x",le="0.05"} 1' in text
    assert 'distill_request_duration_seconds_bucket{endpoint="/x",le="+Inf"} 1' in text
    assert 'distill_request_duration_seconds_count{endpoint="/x"} 1' in text
    assert 'distill_requests_total{endpoint="/x",status="200"} 1' in text
    assert "# TYPE distill_request_duration_seconds histogram" in text


def test_label_count_mismatch_raises():
    counter = Counter("c_total", "help", ("a", "b"))
    with pytest.raises(ValueError):
        counter.inc("only-one")


def test_counter_cannot_decrease():
    counter = Counter("c_total", "help")
    with pytest.raises(ValueError):
        counter.inc(amount=-1)


def test_gauge_inc_dec_set():
    gauge = Gauge("g", "help", ("k",))
    gauge.inc("a")
    gauge.inc("a")
    gauge.dec("a")
    assert gauge.value("a") == 1
    gauge.set(7.5, "a")
    assert gauge.value("a") == 7.5


def test_label_values_escaped():
    counter = Counter("c_total", "help", ("k",))
    counter.inc('a"b')
    assert 'c_total{k="a\\"b"} 1' in counter.exposition_lines()


def test_histogram_without_labels_reports_zero():
    hist = Histogram("h", "help", buckets=(1, 2))
    assert hist.count() == 0
    assert "h_count 0" in hist.exposition_lines()