"""
Unit tests for the model invoker (httpx.MockTransport backend).
"""
import httpx
import pytest
from unittest.mock import AsyncMock

from learnassist.core.circuit_breaker import CircuitBreaker
from learnassist.core.config import Settings
from learnassist.core.errors import PersistentBackendError, TransientBackendError
from learnassist.models.domain import ModelTier, PromptPayload
from learnassist.services.ai.llm_client import LLMClient, build_llm_client, classify_status
from learnassist.services.ai.tiers import TierConfig, estimate_cost, estimate_tokens, tier_configs


def payload(text: str = "What is recursion?") -> PromptPayload:
    return PromptPayload(
        system="You are a tutor.",
        messages=[{"role": "user", "content": text}],
        grounded=False,
        source_count=0,
        language="en",
    )


def make_client(llm_backend, **kwargs) -> LLMClient:
    options = {
        "api_base": "https://llm.test/v1/",
        "api_key": "test-key",
        "tiers": tier_configs(Settings()),
        "transport": llm_backend.transport,
        "sleep": AsyncMock(),
    }
    options.update(kwargs)
    return LLMClient(**options)


@pytest.mark.parametrize("status,expected", [
    (200, None),
    (500, "transient"),
    (503, "transient"),
    (408, "transient"),
    (401, "auth"),
    (403, "auth"),
    (429, "quota"),
    (400, "bad_request"),
    (422, "bad_request"),
])
def test_classify_status(status, expected):
    assert classify_status(status) == expected


@pytest.mark.asyncio
async def test_invoke_returns_text_tokens_and_model(llm_client, llm_backend):
    result = await llm_client.invoke(payload(), ModelTier.FAST)

    assert "general explanation" in result.text
    assert result.model == "gpt-4o-mini"
    assert result.input_tokens == 120
    assert result.output_tokens == 80

    request = llm_backend.requests[0]
    assert request["messages"][0] == {"role": "system", "content": "You are a tutor."}
    assert request["messages"][1]["content"] == "What is recursion?"


@pytest.mark.asyncio
async def test_request_targets_chat_completions_with_bearer_token():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("Authorization")
        return httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]})

    client = LLMClient(
        api_base="https://llm.test/v1/",
        api_key="secret",
        tiers=tier_configs(Settings()),
        transport=httpx.MockTransport(handler),
    )
    await client.invoke(payload(), ModelTier.CAPABLE)

    assert seen["url"] == "https://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer secret"


@pytest.mark.asyncio
async def test_missing_usage_falls_back_to_character_estimate(llm_client, llm_backend):
    llm_backend.include_usage = False

    result = await llm_client.invoke(payload(), ModelTier.FAST)

    assert result.output_tokens == estimate_tokens(result.text)
    assert result.input_tokens > 0


@pytest.mark.asyncio
async def test_transient_errors_are_retried_with_backoff(llm_backend):
    sleep = AsyncMock()
    client = make_client(llm_backend, sleep=sleep)
    llm_backend.queue(503)
    llm_backend.queue(502)

    result = await client.invoke(payload(), ModelTier.FAST)

    assert result.text
    assert len(llm_backend.requests) == 3
    assert [call.args[0] for call in sleep.await_args_list] == [0.5, 1.0]


@pytest.mark.asyncio
async def test_retries_are_bounded(llm_backend):
    client = make_client(llm_backend)
    for _ in range(5):
        llm_backend.queue(500)

    with pytest.raises(TransientBackendError):
        await client.invoke(payload(), ModelTier.FAST)

    assert len(llm_backend.requests) == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("status,cause", [(401, "auth"), (429, "quota"), (400, "bad_request")])
async def test_client_errors_fail_fast(llm_backend, status, cause):
    client = make_client(llm_backend)
    llm_backend.queue(status)

    with pytest.raises(PersistentBackendError) as exc_info:
        await client.invoke(payload(), ModelTier.FAST)

    assert exc_info.value.cause == cause
    assert exc_info.value.status == status
    assert len(llm_backend.requests) == 1


@pytest.mark.asyncio
async def test_malformed_body_is_persistent(llm_backend):
    client = make_client(llm_backend)
    llm_backend.queue(200, {"choices": []})

    with pytest.raises(PersistentBackendError) as exc_info:
        await client.invoke(payload(), ModelTier.FAST)

    assert exc_info.value.cause == "malformed_response"


@pytest.mark.asyncio
async def test_empty_content_is_persistent(llm_backend):
    client = make_client(llm_backend)
    llm_backend.queue(200, {"choices": [{"message": {"content": "   "}}]})

    with pytest.raises(PersistentBackendError):
        await client.invoke(payload(), ModelTier.FAST)


@pytest.mark.asyncio
async def test_timeouts_are_transient():
    attempts = []

    def handler(request: httpx.Request) -> httpx.Response:
        attempts.append(request)
        raise httpx.ReadTimeout("timed out", request=request)

    client = LLMClient(
        api_base="https://llm.test/v1",
        api_key="test-key",
        tiers=tier_configs(Settings()),
        max_retries=1,
        transport=httpx.MockTransport(handler),
        sleep=AsyncMock(),
    )

    with pytest.raises(TransientBackendError):
        await client.invoke(payload(), ModelTier.FAST)
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_missing_api_key_is_configuration_error(llm_backend):
    client = make_client(llm_backend, api_key=None)

    with pytest.raises(PersistentBackendError) as exc_info:
        await client.invoke(payload(), ModelTier.FAST)

    assert exc_info.value.cause == "configuration"
    assert llm_backend.requests == []


@pytest.mark.asyncio
async def test_open_circuit_fails_without_calling_backend(llm_backend):
    client = make_client(llm_backend, max_retries=0)
    client.circuit_breaker = CircuitBreaker("llm_test", min_requests_for_threshold=1, open_duration_seconds=60)
    llm_backend.queue(503)

    with pytest.raises(TransientBackendError):
        await client.invoke(payload(), ModelTier.FAST)
    with pytest.raises(TransientBackendError):
        await client.invoke(payload(), ModelTier.FAST)

    assert len(llm_backend.requests) == 1


@pytest.mark.asyncio
async def test_persistent_errors_do_not_trip_circuit(llm_backend):
    client = make_client(llm_backend)
    client.circuit_breaker = CircuitBreaker(
        "llm_test",
        min_requests_for_threshold=1,
        ignored_exceptions=(PersistentBackendError,),
    )
    llm_backend.queue(400)

    with pytest.raises(PersistentBackendError):
        await client.invoke(payload(), ModelTier.FAST)
    result = await client.invoke(payload(), ModelTier.FAST)

    assert result.text


def test_estimate_cost_uses_tier_rates():
    config = TierConfig(
        tier=ModelTier.CAPABLE,
        model="gpt-4o",
        input_cost_per_1k=0.003,
        output_cost_per_1k=0.015,
        max_output_tokens=2000,
    )

    assert estimate_cost(config, 1000, 1000) == pytest.approx(0.018)
    assert estimate_cost(config, 0, 0) == 0.0


def test_estimate_tokens_is_quarter_of_characters():
    assert estimate_tokens("") == 0
    assert estimate_tokens("abcd") == 1
    assert estimate_tokens("abcde") == 2


def test_build_llm_client_reads_settings():
    settings = Settings(llm_api_key="k", llm_fast_model="small", llm_max_retries=4)

    client = build_llm_client(settings)

    assert client.api_key == "k"
    assert client.max_retries == 4
    assert client.tier_config(ModelTier.FAST).model == "small"
