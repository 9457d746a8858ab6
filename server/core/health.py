"""Health check utilities.

Provides uptime tracking and cache reachability for the /health endpoint.
"""
import time
from typing import Dict, Any, TYPE_CHECKING

import psutil

if TYPE_CHECKING:
    from core.cache import CacheService

# Module-level startup time tracking
_startup_time: float = 0.0

_HEALTH_KEY = "_health_check"


def set_startup_time() -> None:
    """Record the application startup time. Call once during lifespan startup."""
    global _startup_time
    _startup_time = time.time()


def get_uptime() -> float:
    """Get uptime in seconds since startup."""
    return time.time() - _startup_time if _startup_time else 0.0


def get_memory_mb() -> float:
    """Get current process memory usage in MB."""
    try:
        return psutil.Process().memory_info().rss / (1024 * 1024)
    except psutil.Error:
        return 0.0


async def check_cache(cache: "CacheService") -> bool:
    """Round-trip a short-lived key through the cache."""
    try:
        await cache.set(_HEALTH_KEY, "ok", ttl=10)
        result = await cache.get(_HEALTH_KEY)
        await cache.delete(_HEALTH_KEY)
        return result == "ok"
    except Exception:
        return False


async def get_health_status(cache: "CacheService") -> Dict[str, Any]:
    """Get health status for /health endpoint.

    Returns:
        Dict containing status, cache backend, uptime and memory usage.
    """
    cache_healthy = await check_cache(cache)

    return {
        "status": "healthy" if cache_healthy else "degraded",
        "backend": cache.backend_name,
        "uptime_seconds": round(get_uptime(), 1),
        "memory_mb": round(get_memory_mb(), 1),
        "checks": {
            "cache": cache_healthy,
        },
    }
