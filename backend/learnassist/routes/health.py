"""
Health check endpoints.
"""
from fastapi import APIRouter

from learnassist.core.cache import get_cache_client
from learnassist.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter()


@router.get("")
async def health_check():
    """
    Basic health check endpoint.
    """
    return {
        "status": "ok",
        "message": "API is running"
    }


@router.get("/cache")
async def cache_health():
    """
    Response-cache backend status.

    The service works without Redis (every request is a miss), so an
    unavailable cache reports "degraded" rather than failing.
    """
    client = get_cache_client()
    if client.redis is None:
        return {
            "status": "degraded",
            "available": False,
            "message": "Redis not initialized; responses are not cached",
        }

    breaker = client.get_circuit_breaker_metrics()
    circuit_open = bool(breaker and breaker.get("state") == "open")
    return {
        "status": "degraded" if circuit_open else "ok",
        "available": not circuit_open,
        "circuit_breaker": breaker,
    }
