# distill

Tools for keeping an LLM agent's context window small, relevant and cheap.

`distill` is a pure-Python library with no third-party dependencies. It
requires Python 3.10 or newer.

| Module | What it provides |
| --- | --- |
| `distill.session_store` | `SQLiteSessionStore`: an SQLite-backed context window per agent session |
| `distill.session_models` | Requests, results, entries, `SessionConfig` and the session errors |
| `distill.session_text` | Compression, keyword, hashing, embedding-encoding and token helpers used by sessions |
| `distill.cache_boundary` | `CacheBoundaryManager`: prompt-cache marker placement over the stable prefix of a session |
| `distill.summarize` | `HierarchicalSummarizer`: rule-based compression of conversation turns by age and importance |
| `distill.sensitivity` | `Classifier`: regex-based detection of credentials, personal data and internal domains |
| `distill.metrics` | `Metrics` with `Counter`, `Gauge` and `Histogram`, Prometheus text output and WSGI helpers |
| `distill.callsite` | `CallSiteTracker`: prompt-cache hit rates per call site |
| `distill.sse` | `SSEWriter` and `StageTimer` for streaming stage progress as server-sent events |
| `distill.types` | `Chunk`, `Vector`, `Cluster`, `ClusterResult` and other shared data types |
| `distill.retriever` | `Retriever` and `EmbeddingProvider` interfaces, `RetrieverWithEmbedding`, retriever errors |

## Sessions

```python
from distill.session_models import ContextRequest, CreateRequest, PushEntry, PushRequest
from distill.session_store import SQLiteSessionStore

with SQLiteSessionStore(":memory:") as store:
    store.create(CreateRequest(session_id="agent-1", max_tokens=8000))

    result = store.push(PushRequest(
        session_id="agent-1",
        entries=[
            PushEntry(role="user", content="Fix the JWT validation bug", importance=1.0),
            PushEntry(role="tool", content="File: auth/jwt.go ...", source="file_read"),
        ],
    ))
    print(result.accepted, result.current_tokens, result.budget_remaining)

    window = store.context(ContextRequest(session_id="agent-1", role="tool"))
    for entry in window.entries:
        print(entry.role, entry.level, entry.tokens, entry.age, entry.content)
```

On each push:

- entries with empty content are skipped;
- an entry with an embedding whose cosine distance to a stored embedding is
  below the session's dedup threshold is counted as deduplicated and dropped;
- when the session is over its token budget, the oldest entries outside the
  `preserve_recent` most recent ones are compressed one level at a time, least
  important first: full text, then a short leading-sentence summary, then the
  first sentence, then keywords; entries already at keywords are evicted. If
  every entry counts as recent, the oldest entries are evicted;
- the push is counted and the cache boundary is evaluated (see below).

Tokens are estimated as one per four bytes of UTF-8 text. Missing values in a
`CreateRequest` take the store's `SessionConfig` defaults (128 000 tokens,
dedup threshold 0.15, 10 recent entries).

Unknown sessions raise `SessionNotFoundError`, creating an existing one raises
`SessionExistsError`, and a single entry larger than the whole budget raises
`OverBudgetError`. All three derive from `SessionError`.

## Cache boundaries

`CacheBoundaryManager` works on the store's SQLite tables. After each push an
entry that has survived `min_stable_turns` pushes is marked stable, and
`evaluate` recommends up to `max_markers` (four by default) cache-marker
positions whose cumulative prefix reaches `min_prefix_tokens` (1024 by
default). The result says whether the boundary advanced or retreated since
the previous evaluation, and `PushResult.cache_boundary` carries it.
`invalidate_entry` marks an entry unstable again and `stats` returns a
`BoundaryStats` snapshot.

## Summarizing a conversation

```python
from distill.summarize import HierarchicalSummarizer, default_options, detect_turns

turns = detect_turns([
    {"role": "user", "content": "How should we store sessions?"},
    {"role": "assistant", "content": "We decided to use SQLite. It is simple and local."},
])

options = default_options()
options.max_tokens = 200
options.preserve_recent = 1

summarized, stats = HierarchicalSummarizer().summarize(turns, options)
print(stats.input_tokens, stats.output_tokens, stats.reduction_pct)
```

Turns are compressed by age (paragraph after 30 minutes, sentences after two
hours, keywords after a day by default). The `preserve_recent` most recent
turns stay at full fidelity, and turns whose importance reaches
`importance_threshold` are never compressed past a paragraph.
`score_importance` rates system turns at 1.0 and raises the score for code,
error keywords, decision keywords and tool output. When `max_tokens` is set
and the turns are still over budget, older turns are compressed further and,
as a last resort, dropped.

## Classifying sensitive content

```python
from distill.sensitivity import Classifier, ClassifierConfig

classifier = Classifier(ClassifierConfig())
result = classifier.classify("Contact alice@example.com at build.corp")
print(result.level, [match.pattern for match in result.matches])
# internal ['email_address', 'internal_domain']
```

`classify_batch` returns the highest level across several texts together with
the per-text results.

## Tracking prompt-cache usage

```python
from distill.callsite import CallSiteTracker
from distill.metrics import Metrics, UsageRecord

tracker = CallSiteTracker()
tracker.record("agent/planner.py:84", UsageRecord(cache_creation_input_tokens=4000))
tracker.record("agent/planner.py:84", UsageRecord(cache_read_input_tokens=4000))
print(tracker.summary())

metrics = Metrics()
metrics.record_cache_usage(UsageRecord(session_id="agent-1", cache_read_input_tokens=4000))
print(metrics.exposition())
```

`Metrics.handler` is a WSGI application serving the exposition text, and
`Metrics.middleware(endpoint, app)` wraps another WSGI application to count
requests by status code, observe latency and track in-flight requests.

## Streaming progress

`SSEWriter` takes any stream with `write` and `flush` and writes `progress`,
`complete` and `error` events in the `text/event-stream` format; its `headers`
attribute holds the response headers a server should send. `StageTimer`
measures how long a pipeline stage took.

## What this package does not do

- It has no command-line program and no HTTP server of its own; the metrics
  handler, middleware and `SSEWriter` are meant to be mounted in your own
  application.
- It ships no vector database clients and no embedding providers: `Retriever`
  and `EmbeddingProvider` are interfaces for you to implement.
- It has no clustering or deduplication pipeline for retrieved chunks; the
  `distill.types` classes describe such results but nothing here computes them.
- It does no distributed tracing.