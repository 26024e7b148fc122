"""
Response cache: (user, normalized query) -> full AIResponse.

Key format: `response:{quoted user_id}:{blake2b-128 of (user_id, normalized query)}`
where the query is case-folded and trimmed and the user id is percent-encoded,
so it never contains `:` or glob characters. Two users can never share an
entry or each other's invalidation pattern. Two textually identical
queries from the same user share an entry even when they mean different
things in context; that is accepted in exchange for the hit rate. The key
also ignores mode: a hit is served under the requesting mode even if the
text was generated under another persona.

Expiry is advisory: `expires_at` is checked on read and the Redis TTL is only
a passive cleanup attribute. Nothing sweeps entries actively.

All failures are logged and swallowed: a broken cache costs latency and
money, never correctness.
"""
import hashlib
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from urllib.parse import quote

from pydantic import ValidationError as PydanticValidationError

from learnassist.core.cache import CacheClient, get_cache_client
from learnassist.core.config import get_settings
from learnassist.core.logging import get_logger
from learnassist.core.metrics import (
    record_response_cache_hit,
    record_response_cache_miss,
    record_response_cache_write_failure,
)
from learnassist.models.domain import AIResponse, CacheEntry

logger = get_logger(__name__)

KEY_PREFIX = "response"


def normalize_query(query: str) -> str:
    return (query or "").strip().casefold()


def query_hash(user_id: str, query: str) -> str:
    digest = hashlib.blake2b(digest_size=16)
    digest.update(user_id.encode("utf-8"))
    digest.update(b"\x1f")
    digest.update(normalize_query(query).encode("utf-8"))
    return digest.hexdigest()


def user_key_segment(user_id: str) -> str:
    return quote(user_id, safe="")


def response_cache_key(user_id: str, query: str) -> str:
    return f"{KEY_PREFIX}:{user_key_segment(user_id)}:{query_hash(user_id, query)}"


def user_key_pattern(user_id: str) -> str:
    return f"{KEY_PREFIX}:{user_key_segment(user_id)}:*"


class ResponseCache:
    def __init__(
        self,
        cache_client: Optional[CacheClient] = None,
        default_ttl_seconds: Optional[int] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ):
        self._client = cache_client
        self.default_ttl_seconds = default_ttl_seconds or get_settings().response_cache_ttl_seconds
        self._clock = clock

    @property
    def client(self) -> CacheClient:
        return self._client if self._client is not None else get_cache_client()

    async def get(self, user_id: str, query: str) -> Optional[CacheEntry]:
        """
        Look up a cached response.

        Returns:
            The entry with `response.cached=True` and `estimated_cost=0`,
            or None on miss, expiry, undecodable entry or cache failure.
        """
        key = response_cache_key(user_id, query)
        try:
            raw = await self.client.get(key)
            if raw is None:
                record_response_cache_miss("absent")
                logger.debug("response_cache_miss", key=key)
                return None

            try:
                entry = CacheEntry.model_validate(raw)
            except PydanticValidationError as exc:
                record_response_cache_miss("invalid")
                logger.warning("response_cache_entry_invalid", key=key, error=str(exc))
                return None

            if entry.is_expired(self._clock()):
                record_response_cache_miss("expired")
                logger.debug("response_cache_expired", key=key, expires_at=entry.expires_at.isoformat())
                return None
        except Exception as exc:
            record_response_cache_miss("error")
            logger.warning(
                "response_cache_get_failed",
                key=key,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return None

        record_response_cache_hit()
        logger.debug("response_cache_hit", key=key)
        hit = entry.response.model_copy(update={"cached": True, "estimated_cost": 0.0})
        return entry.model_copy(update={"response": hit})

    async def put(self, user_id: str, query: str, response: AIResponse, ttl_seconds: Optional[int] = None) -> bool:
        """Store a freshly generated response. Never raises."""
        key = response_cache_key(user_id, query)
        ttl = ttl_seconds or self.default_ttl_seconds
        try:
            now = self._clock()
            entry = CacheEntry(
                cache_key=key,
                response=response,
                created_at=now,
                expires_at=now + timedelta(seconds=ttl),
            )
            success = await self.client.set(key, entry.model_dump(mode="json"), ttl)
        except Exception as exc:
            success = False
            logger.warning(
                "response_cache_put_failed",
                key=key,
                error=str(exc),
                error_type=type(exc).__name__,
            )

        if success:
            logger.debug("response_cache_set", key=key, ttl_seconds=ttl)
        else:
            record_response_cache_write_failure()
            logger.warning("response_cache_set_failed", key=key)
        return success

    async def invalidate_user(self, user_id: str) -> int:
        """Drop every cached response for a user (their materials changed)."""
        pattern = user_key_pattern(user_id)
        try:
            count = await self.client.delete(pattern)
        except Exception as exc:
            logger.warning(
                "response_cache_invalidate_failed",
                pattern=pattern,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return 0
        logger.info("response_cache_invalidated", user_id=user_id, count=count)
        return count
