"""
Unit tests for Prometheus metric helpers.
"""
from prometheus_client import REGISTRY

from learnassist.core.metrics import (
    get_metrics,
    get_metrics_content_type,
    normalize_endpoint,
    record_http_request,
    record_llm_usage,
    record_mode_transition,
    record_orchestration,
    record_response_cache_miss,
)


def sample(name, labels=None):
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


def test_normalize_endpoint_collapses_session_ids():
    assert normalize_endpoint("/session/abc123/history") == "/session/{session_id}/history"
    assert normalize_endpoint("/session/abc123/context?x=1") == "/session/{session_id}/context"
    assert normalize_endpoint("/respond") == "/respond"


def test_record_http_request_uses_normalized_endpoint():
    labels = {"method": "GET", "endpoint": "/session/{session_id}/history", "status": "200"}
    before = sample("http_requests_total", labels)

    record_http_request("GET", "/session/s-1/history", 200, 0.01)

    assert sample("http_requests_total", labels) == before + 1


def test_record_orchestration_labels_missing_tier():
    labels = {"mode": "tutor", "tier": "none", "outcome": "failed"}
    before = sample("orchestration_requests_total", labels)

    record_orchestration("tutor", None, "failed", 0.2)

    assert sample("orchestration_requests_total", labels) == before + 1


def test_record_mode_transition_initial_mode():
    labels = {"from_mode": "none", "to_mode": "mentor"}
    before = sample("mode_transitions_total", labels)

    record_mode_transition(None, "mentor")

    assert sample("mode_transitions_total", labels) == before + 1


def test_record_llm_usage_counts_tokens_and_cost():
    before_in = sample("llm_tokens_total", {"tier": "capable", "direction": "input"})
    before_cost = sample("llm_cost_usd_total", {"tier": "capable"})

    record_llm_usage("capable", 1000, 0, 0.003)

    assert sample("llm_tokens_total", {"tier": "capable", "direction": "input"}) == before_in + 1000
    assert abs(sample("llm_cost_usd_total", {"tier": "capable"}) - (before_cost + 0.003)) < 1e-9


def test_cache_miss_reasons_are_labelled():
    before = sample("response_cache_misses_total", {"reason": "expired"})

    record_response_cache_miss("expired")

    assert sample("response_cache_misses_total", {"reason": "expired"}) == before + 1


def test_exposition_format():
    body = get_metrics().decode()

    assert "orchestration_requests_total" in body
    assert get_metrics_content_type().startswith("text/plain")
