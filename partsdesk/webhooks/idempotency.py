"""Webhook idempotency: Redis-based deduplication of gateway event ids.

Security contract:
- Tracks event IDs in Redis with a 24h TTL (configurable)
- Duplicates are answered 200 without reprocessing (gateway retries on errors)
- Key pattern: webhook:seen:{provider}:{event_id}
- A key is released when processing fails so the redelivery is handled
- Calls are blocking; async callers run them in a threadpool. Socket
  timeouts bound how long a hung Redis can hold a request
- If Redis is down, falls back to allowing (fail-open). Order sync is
  idempotent on its own, so a missed dedup only costs a no-op pass.
"""

from __future__ import annotations

import logging

import redis

logger = logging.getLogger(__name__)

_DEFAULT_TTL_SECONDS = 86400  # 24 hours
_DEFAULT_SOCKET_TIMEOUT = 2.0  # seconds

# Key prefix for webhook dedup
_KEY_PREFIX = "webhook:seen"


class WebhookDeduplicator:
    """SETNX-based seen-set for webhook event ids.

    With no Redis client every event is treated as new.
    """

    def __init__(self, client: redis.Redis | None = None, ttl_seconds: int = _DEFAULT_TTL_SECONDS):
        self._redis = client
        self._ttl = ttl_seconds

    @classmethod
    def from_url(
        cls,
        redis_url: str,
        ttl_seconds: int = _DEFAULT_TTL_SECONDS,
        socket_timeout: float = _DEFAULT_SOCKET_TIMEOUT,
    ) -> WebhookDeduplicator:
        if not redis_url:
            return cls(None, ttl_seconds)
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client, ttl_seconds)

    @property
    def enabled(self) -> bool:
        return self._redis is not None

    @staticmethod
    def _key(provider: str, event_id: str) -> str:
        return f"{_KEY_PREFIX}:{provider}:{event_id}"

    def is_duplicate(self, provider: str, event_id: str) -> bool:
        """Check-and-mark: True if this event id was already seen.

        Uses Redis SET NX EX for an atomic check-and-mark.
        """
        if not event_id or self._redis is None:
            return False  # No ID = can't dedup, allow through

        try:
            was_set = self._redis.set(self._key(provider, event_id), "1", nx=True, ex=self._ttl)
        except redis.RedisError:
            logger.warning(
                "Redis unavailable for webhook dedup, allowing %s/%s",
                provider,
                event_id,
                exc_info=True,
            )
            return False

        if not was_set:
            logger.info("Duplicate webhook rejected: %s/%s", provider, event_id)
            return True
        return False

    def release(self, provider: str, event_id: str) -> None:
        """Forget an event id (processing failed; let the redelivery through)."""
        if not event_id or self._redis is None:
            return
        try:
            self._redis.delete(self._key(provider, event_id))
        except redis.RedisError:
            logger.warning("Failed to release webhook key: %s/%s", provider, event_id)
