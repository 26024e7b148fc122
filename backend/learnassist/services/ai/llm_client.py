"""
Async LLM client (model invoker).

Talks to an OpenAI-compatible /chat/completions API over httpx; no vendor
SDKs. One client serves every tier; the tier only selects model and rates.

Failure classification:
- timeouts, transport errors, HTTP 5xx and 408 -> TransientBackendError,
  retried up to `max_retries` times with exponential backoff
- other HTTP 4xx (auth, quota/429, bad payload) -> PersistentBackendError, no retry
- unparseable or empty completion body -> PersistentBackendError, no retry
- open circuit -> TransientBackendError, no retry
"""
import asyncio
import json
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from learnassist.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from learnassist.core.config import Settings, get_settings
from learnassist.core.errors import PersistentBackendError, TransientBackendError
from learnassist.core.logging import get_logger
from learnassist.core.metrics import (
    record_llm_error,
    record_llm_request,
    record_llm_retry,
    record_llm_usage,
)
from learnassist.models.domain import InvocationResult, ModelTier, PromptPayload
from learnassist.services.ai.tiers import (
    TierConfig,
    estimate_cost,
    estimate_tokens,
    tier_configs,
)

logger = get_logger(__name__)

TRANSIENT_STATUS_CODES = frozenset({408})


def classify_status(status_code: int) -> Optional[str]:
    """Map an HTTP status to an error cause, or None for success."""
    if status_code < 400:
        return None
    if status_code >= 500 or status_code in TRANSIENT_STATUS_CODES:
        return "transient"
    if status_code in (401, 403):
        return "auth"
    if status_code == 429:
        return "quota"
    return "bad_request"


class LLMClient:
    """Model invoker with bounded retries and a circuit breaker."""

    def __init__(
        self,
        api_base: str,
        api_key: Optional[str],
        tiers: Dict[ModelTier, TierConfig],
        timeout_seconds: float = 20.0,
        max_retries: int = 2,
        backoff_seconds: float = 0.5,
        temperature: float = 0.7,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.api_base = api_base.rstrip("/")
        self.api_key = api_key
        self.tiers = tiers
        self.timeout_seconds = timeout_seconds
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds
        self.temperature = temperature
        self._transport = transport
        self._sleep = sleep

        self.circuit_breaker = CircuitBreaker(
            name="llm_backend",
            failure_threshold=0.5,
            time_window_seconds=60,
            open_duration_seconds=30,
            ignored_exceptions=(PersistentBackendError,),
        )

    def tier_config(self, tier: ModelTier) -> TierConfig:
        return self.tiers[tier]

    def build_request(self, payload: PromptPayload, config: TierConfig) -> Dict[str, Any]:
        messages = [{"role": "system", "content": payload.system}]
        messages.extend(payload.messages)
        return {
            "model": config.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": config.max_output_tokens,
        }

    async def _post(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """One HTTP round trip, with failures already classified."""
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        url = f"{self.api_base}/chat/completions"
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                response = await client.post(url, headers=headers, json=body)
        except httpx.TimeoutException as exc:
            raise TransientBackendError(f"LLM request timed out: {type(exc).__name__}") from exc
        except httpx.TransportError as exc:
            raise TransientBackendError(f"LLM transport error: {type(exc).__name__}") from exc

        cause = classify_status(response.status_code)
        if cause == "transient":
            raise TransientBackendError(f"LLM backend returned {response.status_code}")
        if cause is not None:
            raise PersistentBackendError(
                f"LLM backend rejected the request ({response.status_code})",
                cause=cause,
                status=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise PersistentBackendError("LLM response body is not JSON", cause="malformed_response") from exc
        if not isinstance(data, dict):
            raise PersistentBackendError("LLM response body is not an object", cause="malformed_response")
        return data

    @staticmethod
    def extract_text(data: Dict[str, Any]) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as exc:
            raise PersistentBackendError(
                "LLM response has no choices[0].message.content",
                cause="malformed_response",
            ) from exc
        if not isinstance(content, str) or not content.strip():
            raise PersistentBackendError("LLM response content is empty", cause="malformed_response")
        return content.strip()

    async def invoke(self, payload: PromptPayload, tier: ModelTier) -> InvocationResult:
        """
        Send a composed prompt to the backend for `tier`.

        Raises:
            TransientBackendError: retries exhausted or circuit open
            PersistentBackendError: auth/quota/bad request, malformed body, missing API key
        """
        config = self.tier_config(tier)
        if not self.api_key:
            record_llm_error(tier.value, "missing_api_key")
            raise PersistentBackendError("LLM API key not configured", cause="configuration")

        body = self.build_request(payload, config)
        attempt = 0
        while True:
            start = time.time()
            try:
                data = await self.circuit_breaker.call_async(self._post, body)
            except CircuitBreakerOpenError as exc:
                record_llm_error(tier.value, "circuit_open")
                logger.warning("llm_circuit_open", tier=tier.value)
                raise TransientBackendError("LLM backend circuit is open") from exc
            except TransientBackendError as exc:
                record_llm_error(tier.value, "transient")
                if attempt >= self.max_retries:
                    logger.error(
                        "llm_retries_exhausted",
                        tier=tier.value,
                        model=config.model,
                        attempts=attempt + 1,
                        error=str(exc),
                    )
                    raise
                delay = self.backoff_seconds * (2 ** attempt)
                attempt += 1
                record_llm_retry(tier.value)
                logger.warning(
                    "llm_transient_error_retrying",
                    tier=tier.value,
                    attempt=attempt,
                    delay_seconds=delay,
                    error=str(exc),
                )
                await self._sleep(delay)
                continue
            except PersistentBackendError as exc:
                record_llm_error(tier.value, exc.cause)
                logger.error(
                    "llm_persistent_error",
                    tier=tier.value,
                    model=config.model,
                    cause=exc.cause,
                    status=exc.status,
                )
                raise
            finally:
                record_llm_request(tier.value, config.model, time.time() - start)
            break

        try:
            text = self.extract_text(data)
        except PersistentBackendError as exc:
            record_llm_error(tier.value, exc.cause)
            logger.error("llm_malformed_response", tier=tier.value, model=config.model)
            raise

        usage = data.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        input_tokens = int(usage.get("prompt_tokens") or 0) or estimate_tokens(json.dumps(body))
        output_tokens = int(usage.get("completion_tokens") or 0) or estimate_tokens(text)

        record_llm_usage(
            tier.value,
            input_tokens,
            output_tokens,
            estimate_cost(config, input_tokens, output_tokens),
        )
        logger.info(
            "llm_invocation_completed",
            tier=tier.value,
            model=config.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            retries=attempt,
        )
        return InvocationResult(
            text=text,
            tier=tier,
            model=config.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            raw_usage=usage,
        )


def build_llm_client(settings: Optional[Settings] = None, **overrides: Any) -> LLMClient:
    settings = settings or get_settings()
    options: Dict[str, Any] = {
        "api_base": settings.llm_api_base,
        "api_key": settings.llm_api_key,
        "tiers": tier_configs(settings),
        "timeout_seconds": settings.llm_timeout_seconds,
        "max_retries": settings.llm_max_retries,
        "backoff_seconds": settings.llm_backoff_seconds,
    }
    options.update(overrides)
    return LLMClient(**options)


_llm_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """Process-wide client built from the environment."""
    global _llm_client
    if _llm_client is None:
        _llm_client = build_llm_client()
    return _llm_client
