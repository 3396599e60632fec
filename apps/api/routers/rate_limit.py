"""Fixed-window rate limiting dependency backed by Redis."""

from __future__ import annotations

import asyncio
import time
from typing import Callable, Dict, Tuple

from fastapi import HTTPException, Request
import redis.asyncio as redis

from config import settings


# (limit, window_seconds)
RATE_LIMITS: Dict[str, Tuple[int, int]] = {
    "AUTH": (10, 60),
    "AI": (20, 60 * 60),
    "SUBSCRIPTION": (5, 60),
    "AUTOMATIONS": (20, 60),
    "GENERAL": (100, 60),
}

_local_counters: Dict[str, Tuple[int, float]] = {}
_local_lock = asyncio.Lock()


def _client_identifier(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


async def _consume_local_quota(key: str, limit: int, window_seconds: int) -> bool:
    now = time.time()
    async with _local_lock:
        count, reset_at = _local_counters.get(key, (0, now + window_seconds))
        if now >= reset_at:
            count = 0
            reset_at = now + window_seconds
        count += 1
        _local_counters[key] = (count, reset_at)
        return count <= limit


def reset_local_counters() -> None:
    _local_counters.clear()


def rate_limit(prefix: str, limit: int, window_seconds: int) -> Callable[[Request], None]:
    """Dependency allowing `limit` requests per client per window for `prefix`."""

    async def _dependency(request: Request):
        if getattr(request.app.state, "disable_rate_limits", False):
            return

        key = f"collabos:rate:{prefix}:{_client_identifier(request)}"
        try:
            redis_client = redis.from_url(settings.REDIS_URL, decode_responses=True)
            try:
                current = await redis_client.incr(key)
                if current == 1:
                    await redis_client.expire(key, window_seconds)
            finally:
                await redis_client.aclose()
            allowed = current <= limit
        except Exception:
            allowed = await _consume_local_quota(key, limit, window_seconds)

        if not allowed:
            raise HTTPException(
                status_code=429,
                detail="Too many requests. Please try again later.",
            )

    return _dependency


def preset(prefix: str, name: str) -> Callable[[Request], None]:
    limit, window_seconds = RATE_LIMITS[name]
    return rate_limit(prefix, limit, window_seconds)
