"""Central registry for Prometheus metrics used across the backend."""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, Summary


REQUEST_COUNTER = Counter(
	"smartmatch_http_requests_total",
	"Total HTTP requests processed",
	["route", "method", "status"],
)

REQUEST_LATENCY = Histogram(
	"smartmatch_http_request_duration_seconds",
	"HTTP request latency in seconds",
	["route", "method"],
	buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0),
)

MATCH_REQUESTS = Counter(
	"smartmatch_match_requests_total",
	"Match ranking requests by context and outcome",
	["context", "outcome"],
)

MATCH_CANDIDATE_POOL = Histogram(
	"smartmatch_match_candidate_pool_size",
	"Eligible candidates per match request after block filtering",
	["context"],
	buckets=(0, 1, 5, 10, 25, 50, 100, 250, 500),
)

MATCH_RANK_DURATION = Histogram(
	"smartmatch_match_rank_duration_ms",
	"Time spent ranking candidates in milliseconds",
	buckets=(0.5, 1, 2, 5, 10, 25, 50, 100),
)

MATCH_PROCESSING_DURATION = Histogram(
	"smartmatch_match_processing_duration_ms",
	"End-to-end match processing time in milliseconds",
	["context"],
	buckets=(10, 25, 50, 100, 250, 500, 1000, 2500, 5000),
)

MATCH_PAGE_SCORE_AVG = Summary(
	"smartmatch_match_page_score_avg",
	"Average match score of returned pages",
)

MATCH_SIGNAL_FALLBACKS = Counter(
	"smartmatch_match_signal_fallbacks_total",
	"Signals that degraded to their neutral default",
	["signal", "reason"],
)

MATCH_EXPERIMENT_RESOLUTIONS = Counter(
	"smartmatch_match_experiment_resolutions_total",
	"Experiment weight resolutions by source",
	["source"],
)

MATCH_IMPRESSIONS = Counter(
	"smartmatch_match_impressions_total",
	"Match impression writes by result",
	["result"],
)

SIGNAL_WEIGHTS_CACHE = Counter(
	"smartmatch_signal_weights_cache_total",
	"Signal weight cache lookups",
	["result"],
)

REDIS_UP = Gauge("smartmatch_redis_up", "Redis availability (1=up,0=down)")
REDIS_LATENCY = Summary("smartmatch_redis_latency_seconds", "Redis ping latency (seconds)")

POSTGRES_UP = Gauge("smartmatch_postgres_up", "Postgres availability (1=up,0=down)")
POSTGRES_LATENCY = Summary("smartmatch_postgres_latency_seconds", "Postgres ping latency (seconds)")


def observe_request(route: str, method: str, status: int, elapsed_seconds: float) -> None:
	REQUEST_COUNTER.labels(route=route, method=method, status=str(status)).inc()
	REQUEST_LATENCY.labels(route=route, method=method).observe(elapsed_seconds)


def inc_match_request(context: str, outcome: str) -> None:
	MATCH_REQUESTS.labels(context=context, outcome=outcome).inc()


def observe_candidate_pool(context: str, size: int) -> None:
	MATCH_CANDIDATE_POOL.labels(context=context).observe(size)


def observe_rank_duration(elapsed_ms: float) -> None:
	MATCH_RANK_DURATION.observe(elapsed_ms)


def observe_match_processing(context: str, elapsed_ms: float) -> None:
	MATCH_PROCESSING_DURATION.labels(context=context).observe(elapsed_ms)


def observe_page_score(avg_score: float) -> None:
	MATCH_PAGE_SCORE_AVG.observe(avg_score)


def inc_signal_fallback(signal: str, reason: str) -> None:
	MATCH_SIGNAL_FALLBACKS.labels(signal=signal, reason=reason).inc()


def inc_experiment_resolution(source: str) -> None:
	MATCH_EXPERIMENT_RESOLUTIONS.labels(source=source).inc()


def inc_impression(result: str) -> None:
	MATCH_IMPRESSIONS.labels(result=result).inc()


def inc_signal_weights_cache(result: str) -> None:
	SIGNAL_WEIGHTS_CACHE.labels(result=result).inc()


def mark_redis(ok: bool, *, latency_seconds: float | None = None) -> None:
	REDIS_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		REDIS_LATENCY.observe(latency_seconds)


def mark_postgres(ok: bool, *, latency_seconds: float | None = None) -> None:
	POSTGRES_UP.set(1 if ok else 0)
	if latency_seconds is not None:
		POSTGRES_LATENCY.observe(latency_seconds)
