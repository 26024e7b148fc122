"""
Shared fixtures: in-process fakes for Redis, the content index, the model
backend (httpx.MockTransport) and the session/profile stores.
"""
import asyncio
import fnmatch
import json
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from learnassist.core.cache import CacheClient
from learnassist.core.circuit_breaker import CircuitBreaker
from learnassist.core.config import Settings, reset_settings
from learnassist.models.domain import ContentSource, SourceMetadata
from learnassist.services.ai.llm_client import LLMClient
from learnassist.services.ai.prompt import GENERAL_KNOWLEDGE_DISCLAIMER
from learnassist.services.ai.tiers import tier_configs
from learnassist.services.cache.response_cache import ResponseCache
from learnassist.services.retrieval.retriever import ContentRetriever
from learnassist.services.retrieval.scoring import keyword_relevance
from learnassist.services.session.manager import SessionContextManager
from learnassist.services.session.store import InMemoryProfileStore, InMemorySessionStore


class FakeRedis:
    """The subset of redis.asyncio.Redis the cache client uses."""

    def __init__(self):
        self.store: Dict[str, str] = {}
        self.ttls: Dict[str, int] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise RedisConnectionError("redis unavailable")

    async def ping(self):
        self._check()
        return True

    async def get(self, key):
        self._check()
        return self.store.get(key)

    async def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value
        self.ttls[key] = ttl
        return True

    async def delete(self, *keys):
        self._check()
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                self.ttls.pop(key, None)
                removed += 1
        return removed

    async def scan_iter(self, match=None):
        self._check()
        for key in list(self.store):
            if match is None or fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self):
        return None


class InMemoryContentIndex:
    """Keyword-scored chunks per user; stands in for the Supabase index."""

    def __init__(self):
        self.chunks: Dict[str, List[dict]] = defaultdict(list)
        self.calls = 0

    def upload(self, user_id: str, document_id: str, text: str, **metadata):
        chunk_id = f"{document_id}-{len(self.chunks[user_id])}"
        self.chunks[user_id].append({
            "document_id": document_id,
            "chunk_id": chunk_id,
            "text": text,
            "metadata": metadata,
        })

    async def retrieve_top_k(self, user_id: str, text: str, k: int) -> List[ContentSource]:
        self.calls += 1
        scored = []
        for chunk in self.chunks.get(user_id, []):
            score = keyword_relevance(text, chunk["text"])
            if score > 0:
                scored.append(ContentSource(
                    document_id=chunk["document_id"],
                    chunk_id=chunk["chunk_id"],
                    text=chunk["text"],
                    relevance_score=score,
                    metadata=SourceMetadata(**chunk["metadata"]),
                ))
        scored.sort(key=lambda source: source.relevance_score, reverse=True)
        return scored[:k]


class FailingContentIndex:
    def __init__(self, exc: Optional[Exception] = None):
        self.exc = exc or ConnectionError("content index unavailable")
        self.calls = 0

    async def retrieve_top_k(self, user_id, text, k):
        self.calls += 1
        raise self.exc


class SlowContentIndex:
    def __init__(self, delay: float = 1.0):
        self.delay = delay

    async def retrieve_top_k(self, user_id, text, k):
        await asyncio.sleep(self.delay)
        return []


class FakeLLMBackend:
    """
    OpenAI-compatible /chat/completions served through httpx.MockTransport.

    With sources in the system prompt it answers citing Source 1; without
    sources it opens with the general-knowledge disclaimer. Every answer is
    numbered so repeated calls produce different text.
    """

    def __init__(self):
        self.requests: List[dict] = []
        self.queued: List[Tuple[int, Optional[dict]]] = []
        self.include_usage = True

    def queue(self, status: int, body: Optional[dict] = None):
        self.queued.append((status, body))

    def handler(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)

        if self.queued:
            status, payload = self.queued.pop(0)
            if payload is None:
                payload = {"error": {"message": f"status {status}"}}
            return httpx.Response(status, json=payload)

        system = body["messages"][0]["content"]
        number = len(self.requests)
        if "[Source 1]:" in system:
            text = f"According to Source 1, this is how it works (answer #{number})."
        else:
            text = f"{GENERAL_KNOWLEDGE_DISCLAIMER} Here is a general explanation (answer #{number})."

        payload = {
            "id": f"chatcmpl-{number}",
            "model": body["model"],
            "choices": [{"index": 0, "message": {"role": "assistant", "content": text}}],
        }
        if self.include_usage:
            payload["usage"] = {"prompt_tokens": 120, "completion_tokens": 80, "total_tokens": 200}
        return httpx.Response(200, json=payload)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    @property
    def last_system_prompt(self) -> str:
        return self.requests[-1]["messages"][0]["content"]


class FakeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings()
    yield
    reset_settings()


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def cache_client(fake_redis):
    return CacheClient(redis=fake_redis, circuit_breaker=CircuitBreaker("test_cache"))


@pytest.fixture
def response_cache(cache_client, clock):
    return ResponseCache(cache_client, default_ttl_seconds=86400, clock=clock)


@pytest.fixture
def content_index():
    return InMemoryContentIndex()


@pytest.fixture
def llm_backend():
    return FakeLLMBackend()


@pytest.fixture
def llm_client(llm_backend, settings):
    return LLMClient(
        api_base="https://llm.test/v1",
        api_key="test-key",
        tiers=tier_configs(settings),
        transport=llm_backend.transport,
        sleep=AsyncMock(),
    )


@pytest.fixture
def session_store():
    return InMemorySessionStore()


@pytest.fixture
def profile_store():
    return InMemoryProfileStore()


@pytest.fixture
def make_manager(session_store, profile_store, content_index, llm_client, response_cache, settings, clock):
    """Build a manager wired to the fakes; override any collaborator by keyword."""

    def _make(**overrides) -> SessionContextManager:
        options = {
            "session_store": session_store,
            "profile_store": profile_store,
            "retriever": ContentRetriever(index=content_index, timeout_seconds=0.2, default_limit=10),
            "llm_client": llm_client,
            "response_cache": response_cache,
            "settings": settings,
            "clock": clock,
        }
        if "index" in overrides:
            index = overrides.pop("index")
            options["retriever"] = ContentRetriever(index=index, timeout_seconds=0.2, default_limit=10)
        options.update(overrides)
        return SessionContextManager(**options)

    return _make


@pytest.fixture
def manager(make_manager):
    return make_manager()
