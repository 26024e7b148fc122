"""
Redis cache client with circuit breaker protection.

The cache is a performance optimization only: every operation returns a
neutral value (None / False / 0) instead of raising when Redis is missing,
slow, or failing.

Pool settings:
- max connections: 20
- connect / socket timeout: 5 seconds
"""
import json
from typing import Any, Dict, Optional

from redis.asyncio import Redis
from redis.exceptions import RedisError

from learnassist.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError, CircuitState
from learnassist.core.config import get_settings
from learnassist.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: Optional[Redis] = None
_cache_circuit_breaker: Optional[CircuitBreaker] = None


async def initialize_redis(redis_url: Optional[str] = None) -> bool:
    """
    Connect to Redis and verify with PING.

    Returns:
        True if Redis is usable, False otherwise (the service runs uncached)
    """
    global _redis_client, _cache_circuit_breaker

    url = redis_url or get_settings().redis_url
    try:
        logger.info("redis_initializing", url=url)
        client = Redis.from_url(
            url,
            max_connections=20,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
            decode_responses=True,
        )
        await client.ping()
    except Exception as e:
        logger.error(
            "redis_initialization_failed",
            error=str(e),
            error_type=type(e).__name__,
            exc_info=True,
        )
        _redis_client = None
        return False

    _redis_client = client
    _cache_circuit_breaker = CircuitBreaker(
        name="redis_cache",
        failure_threshold=0.5,
        time_window_seconds=60,
        open_duration_seconds=30,
    )
    logger.info("redis_initialized")
    return True


async def close_redis() -> None:
    global _redis_client

    if _redis_client is None:
        return
    try:
        await _redis_client.aclose()
        logger.info("redis_closed")
    except Exception as e:
        logger.error("redis_close_failed", error=str(e), exc_info=True)
    finally:
        _redis_client = None


def get_redis_client() -> Optional[Redis]:
    return _redis_client


class CacheClient:
    """
    JSON key/value access to Redis.

    Values are serialized with json.dumps; get() returns the decoded value,
    or None on miss or any error.
    """

    def __init__(self, redis: Optional[Redis] = None, circuit_breaker: Optional[CircuitBreaker] = None):
        self._redis = redis
        self._circuit_breaker = circuit_breaker

    @property
    def redis(self) -> Optional[Redis]:
        return self._redis if self._redis is not None else get_redis_client()

    @property
    def circuit_breaker(self) -> Optional[CircuitBreaker]:
        if self._circuit_breaker is not None:
            return self._circuit_breaker
        return _cache_circuit_breaker

    @circuit_breaker.setter
    def circuit_breaker(self, value: Optional[CircuitBreaker]) -> None:
        self._circuit_breaker = value

    def _circuit_open(self) -> bool:
        return self.circuit_breaker is not None and self.circuit_breaker.state == CircuitState.OPEN

    async def _call(self, func, *args):
        if self.circuit_breaker is not None:
            return await self.circuit_breaker.call_async(func, *args)
        return await func(*args)

    async def get(self, key: str) -> Optional[Any]:
        redis = self.redis
        if redis is None:
            return None
        if self._circuit_open():
            logger.debug("cache_circuit_breaker_open", key=key)
            return None

        try:
            value = await self._call(redis.get, key)
        except CircuitBreakerOpenError:
            logger.debug("cache_circuit_breaker_open", key=key)
            return None
        except RedisError as e:
            logger.warning("cache_get_error", key=key, error=str(e), error_type=type(e).__name__)
            return None
        except Exception as e:
            logger.error(
                "cache_get_unexpected_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return None

        if value is None:
            return None
        try:
            return json.loads(value)
        except (TypeError, json.JSONDecodeError):
            return value

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        """
        Store `value` under `key` for `ttl` seconds.

        Returns:
            True if written, False otherwise
        """
        redis = self.redis
        if redis is None:
            return False
        if self._circuit_open():
            logger.debug("cache_circuit_breaker_open", key=key)
            return False

        try:
            serialized = value if isinstance(value, str) else json.dumps(value)
            await self._call(redis.setex, key, ttl, serialized)
            return True
        except CircuitBreakerOpenError:
            logger.debug("cache_circuit_breaker_open", key=key)
            return False
        except RedisError as e:
            logger.warning("cache_set_error", key=key, error=str(e), error_type=type(e).__name__)
            return False
        except Exception as e:
            logger.error(
                "cache_set_unexpected_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return False

    async def delete(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern (SCAN based).

        Returns:
            Number of keys deleted
        """
        redis = self.redis
        if redis is None:
            return 0
        if self._circuit_open():
            logger.debug("cache_circuit_breaker_open", pattern=pattern)
            return 0

        deleted = 0
        try:
            async for key in redis.scan_iter(match=pattern):
                await self._call(redis.delete, key)
                deleted += 1
        except CircuitBreakerOpenError:
            logger.debug("cache_circuit_breaker_open", pattern=pattern)
        except RedisError as e:
            logger.warning("cache_delete_error", pattern=pattern, error=str(e), error_type=type(e).__name__)
        except Exception as e:
            logger.error(
                "cache_delete_unexpected_error",
                pattern=pattern,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
        return deleted

    def get_circuit_breaker_metrics(self) -> Optional[Dict]:
        if self.circuit_breaker:
            return self.circuit_breaker.get_metrics()
        return None


_cache_client: Optional[CacheClient] = None


def get_cache_client() -> CacheClient:
    global _cache_client
    if _cache_client is None:
        _cache_client = CacheClient()
    return _cache_client
