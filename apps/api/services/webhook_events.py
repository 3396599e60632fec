"""Best-effort dedup of payment webhook events by event id."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Optional, Protocol

import redis.asyncio as redis

from config import settings

logger = logging.getLogger(__name__)


class WebhookEventStore(Protocol):
    async def seen(self, event_id: str) -> bool:
        ...

    async def mark(self, event_id: str) -> None:
        ...


class InMemoryWebhookEventStore:
    """
    Process-local map of event id -> first-seen time.

    Entries older than the TTL count as unseen on lookup. Once the map grows
    past sweep_threshold, every expired entry is dropped on the next mark.
    This is a soft cap with a TTL sweep, not an LRU.
    """

    def __init__(
        self,
        ttl_seconds: int = 3600,
        sweep_threshold: int = 1000,
        clock: Callable[[], float] = time.time,
    ):
        self.ttl_seconds = max(int(ttl_seconds), 1)
        self.sweep_threshold = max(int(sweep_threshold), 1)
        self._clock = clock
        self._events: Dict[str, float] = {}
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._events)

    def _expired(self, seen_at: float, now: float) -> bool:
        return now - seen_at >= self.ttl_seconds

    async def seen(self, event_id: str) -> bool:
        now = self._clock()
        async with self._lock:
            seen_at = self._events.get(event_id)
            return seen_at is not None and not self._expired(seen_at, now)

    async def mark(self, event_id: str) -> None:
        now = self._clock()
        async with self._lock:
            seen_at = self._events.get(event_id)
            if seen_at is None or self._expired(seen_at, now):
                self._events[event_id] = now
            if len(self._events) > self.sweep_threshold:
                self._sweep(now)

    def _sweep(self, now: float) -> None:
        stale = [event_id for event_id, seen_at in self._events.items() if self._expired(seen_at, now)]
        for event_id in stale:
            del self._events[event_id]
        if stale:
            logger.info("Swept %s expired webhook event ids", len(stale))

    def clear(self) -> None:
        self._events.clear()


class RedisWebhookEventStore:
    """Shared store for multi-process deployments; Redis key expiry is the TTL."""

    def __init__(self, redis_url: str, ttl_seconds: int = 3600, prefix: str = "collabos:webhook:event"):
        self.redis_url = redis_url
        self.ttl_seconds = max(int(ttl_seconds), 1)
        self.prefix = prefix

    def _key(self, event_id: str) -> str:
        return f"{self.prefix}:{event_id}"

    async def seen(self, event_id: str) -> bool:
        client = redis.from_url(self.redis_url, decode_responses=True)
        try:
            return bool(await client.exists(self._key(event_id)))
        finally:
            await client.aclose()

    async def mark(self, event_id: str) -> None:
        client = redis.from_url(self.redis_url, decode_responses=True)
        try:
            await client.set(self._key(event_id), str(int(time.time())), ex=self.ttl_seconds, nx=True)
        finally:
            await client.aclose()


class WebhookEventCache:
    """
    seen()/mark() facade over a store.

    A shared store that errors degrades to the local in-memory store, the
    same way the rate limiter falls back to local counters.
    """

    def __init__(self, store: WebhookEventStore, fallback: Optional[InMemoryWebhookEventStore] = None):
        self.store = store
        self.fallback = fallback

    async def seen(self, event_id: str) -> bool:
        try:
            return await self.store.seen(event_id)
        except Exception as exc:
            if self.fallback is None:
                raise
            logger.warning("Webhook event store unavailable, using local cache: %s", exc)
            return await self.fallback.seen(event_id)

    async def mark(self, event_id: str) -> None:
        try:
            await self.store.mark(event_id)
        except Exception as exc:
            if self.fallback is None:
                raise
            logger.warning("Webhook event store unavailable, using local cache: %s", exc)
            await self.fallback.mark(event_id)


def build_webhook_event_cache() -> WebhookEventCache:
    local = InMemoryWebhookEventStore(
        ttl_seconds=settings.WEBHOOK_EVENT_TTL_SECONDS,
        sweep_threshold=settings.WEBHOOK_EVENT_SWEEP_THRESHOLD,
    )
    if (settings.WEBHOOK_EVENT_STORE or "").strip().lower() == "redis":
        shared = RedisWebhookEventStore(settings.REDIS_URL, ttl_seconds=settings.WEBHOOK_EVENT_TTL_SECONDS)
        return WebhookEventCache(shared, fallback=local)
    return WebhookEventCache(local)


_cache: Optional[WebhookEventCache] = None


def get_webhook_event_cache() -> WebhookEventCache:
    global _cache
    if _cache is None:
        _cache = build_webhook_event_cache()
    return _cache


def reset_webhook_event_cache() -> None:
    global _cache
    _cache = None
