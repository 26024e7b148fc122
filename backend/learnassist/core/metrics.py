"""
Prometheus metrics for the orchestration service.

Naming follows Prometheus conventions:
- Counters: _total suffix
- Histograms: _seconds for durations, _distribution for value spreads
"""
from typing import Optional

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

from learnassist.core.logging import get_logger

logger = get_logger(__name__)

registry = REGISTRY

# ============================================================================
# HTTP (RED) METRICS
# ============================================================================

http_requests_total = Counter(
    "http_requests_total",
    "Total number of HTTP requests",
    ["method", "endpoint", "status"],
    registry=registry,
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
    registry=registry,
)

# ============================================================================
# ORCHESTRATION METRICS
# ============================================================================

orchestration_requests_total = Counter(
    "orchestration_requests_total",
    "Completed orchestration cycles",
    ["mode", "tier", "outcome"],  # outcome: generated | cached | failed
    registry=registry,
)

orchestration_duration_seconds = Histogram(
    "orchestration_duration_seconds",
    "End-to-end orchestration latency in seconds",
    ["outcome"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0],
    registry=registry,
)

complexity_score_distribution = Histogram(
    "complexity_score_distribution",
    "Distribution of query complexity scores",
    buckets=[0.0, 0.1, 0.2, 0.3, 0.4, 0.5, 0.6, 0.7, 0.8, 0.9, 1.0],
    registry=registry,
)

response_cache_hits_total = Counter(
    "response_cache_hits_total",
    "Response cache hits",
    registry=registry,
)

response_cache_misses_total = Counter(
    "response_cache_misses_total",
    "Response cache misses (including expired entries)",
    ["reason"],  # absent | expired | invalid
    registry=registry,
)

response_cache_write_failures_total = Counter(
    "response_cache_write_failures_total",
    "Response cache writes that failed and were swallowed",
    registry=registry,
)

retrieval_sources_distribution = Histogram(
    "retrieval_sources_distribution",
    "Number of content sources returned per retrieval",
    buckets=[0, 1, 2, 3, 5, 8, 10, 20],
    registry=registry,
)

retrieval_degraded_total = Counter(
    "retrieval_degraded_total",
    "Retrievals that degraded to an empty result",
    ["reason"],  # timeout | error
    registry=registry,
)

mode_transitions_total = Counter(
    "mode_transitions_total",
    "Recorded mode transitions",
    ["from_mode", "to_mode"],
    registry=registry,
)

session_write_conflicts_total = Counter(
    "session_write_conflicts_total",
    "Conditional session writes that lost a race",
    registry=registry,
)

# ============================================================================
# LLM METRICS
# ============================================================================

llm_requests_total = Counter(
    "llm_requests_total",
    "LLM backend calls",
    ["tier", "model"],
    registry=registry,
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "LLM backend call latency in seconds",
    ["tier", "model"],
    buckets=[0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0],
    registry=registry,
)

llm_errors_total = Counter(
    "llm_errors_total",
    "LLM backend errors",
    ["tier", "error_type"],
    registry=registry,
)

llm_retries_total = Counter(
    "llm_retries_total",
    "LLM calls retried after a transient error",
    ["tier"],
    registry=registry,
)

llm_tokens_total = Counter(
    "llm_tokens_total",
    "LLM tokens consumed",
    ["tier", "direction"],  # direction: input | output
    registry=registry,
)

llm_cost_usd_total = Counter(
    "llm_cost_usd_total",
    "Estimated LLM spend in USD",
    ["tier"],
    registry=registry,
)


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def normalize_endpoint(path: str) -> str:
    """
    Collapse per-session paths to keep label cardinality bounded.

    /session/abc123/history -> /session/{session_id}/history
    """
    if "?" in path:
        path = path.split("?")[0]
    parts = path.split("/")
    if len(parts) >= 4 and parts[1] == "session" and parts[3] in {"context", "history"}:
        return f"/session/{{session_id}}/{parts[3]}"
    return path


def record_http_request(method: str, endpoint: str, status_code: int, duration_seconds: float) -> None:
    normalized = normalize_endpoint(endpoint)
    http_requests_total.labels(method=method, endpoint=normalized, status=str(status_code)).inc()
    http_request_duration_seconds.labels(method=method, endpoint=normalized).observe(duration_seconds)


def record_orchestration(mode: str, tier: Optional[str], outcome: str, duration_seconds: float) -> None:
    orchestration_requests_total.labels(mode=mode, tier=tier or "none", outcome=outcome).inc()
    orchestration_duration_seconds.labels(outcome=outcome).observe(duration_seconds)


def record_complexity_score(score: float) -> None:
    complexity_score_distribution.observe(score)


def record_response_cache_hit() -> None:
    response_cache_hits_total.inc()


def record_response_cache_miss(reason: str = "absent") -> None:
    response_cache_misses_total.labels(reason=reason).inc()


def record_response_cache_write_failure() -> None:
    response_cache_write_failures_total.inc()


def record_retrieval(source_count: int) -> None:
    retrieval_sources_distribution.observe(source_count)


def record_retrieval_degraded(reason: str) -> None:
    retrieval_degraded_total.labels(reason=reason).inc()


def record_mode_transition(from_mode: Optional[str], to_mode: str) -> None:
    mode_transitions_total.labels(from_mode=from_mode or "none", to_mode=to_mode).inc()


def record_session_write_conflict() -> None:
    session_write_conflicts_total.inc()


def record_llm_request(tier: str, model: str, duration_seconds: float) -> None:
    llm_requests_total.labels(tier=tier, model=model).inc()
    llm_request_duration_seconds.labels(tier=tier, model=model).observe(duration_seconds)


def record_llm_error(tier: str, error_type: str) -> None:
    llm_errors_total.labels(tier=tier, error_type=error_type).inc()


def record_llm_retry(tier: str) -> None:
    llm_retries_total.labels(tier=tier).inc()


def record_llm_usage(tier: str, input_tokens: int, output_tokens: int, cost_usd: float) -> None:
    if input_tokens > 0:
        llm_tokens_total.labels(tier=tier, direction="input").inc(input_tokens)
    if output_tokens > 0:
        llm_tokens_total.labels(tier=tier, direction="output").inc(output_tokens)
    if cost_usd > 0:
        llm_cost_usd_total.labels(tier=tier).inc(cost_usd)


def get_metrics() -> bytes:
    """Prometheus text exposition of the default registry."""
    return generate_latest(registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
