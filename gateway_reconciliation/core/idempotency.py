"""
Outcome cache for redelivered gateway payloads.

Gateways redeliver the byte-identical webhook until they see an
acknowledgement. Caching the outcome per payload digest lets a redelivery
short-circuit before signature verification and the database. The cache is
an optimization only: the ledger's conditional update is what guarantees
idempotency, so every Redis failure degrades to a cache miss.
"""
import json
from typing import Any, Dict, Optional

import redis.asyncio as aioredis
import structlog

from gateway_reconciliation.monitoring.metrics import metrics

logger = structlog.get_logger(__name__)

KEY_PREFIX = "reconciliation:outcome:"


class OutcomeCache:
    """Redis-backed map from payload digest to reconciliation outcome."""

    def __init__(self, redis_client: aioredis.Redis, ttl_seconds: int = 86400):
        """
        Initialize outcome cache.

        Args:
            redis_client: Redis client (decode_responses=True)
            ttl_seconds: Expiry for cached outcomes
        """
        self.redis_client = redis_client
        self.ttl_seconds = ttl_seconds

    @classmethod
    def from_url(cls, redis_url: str, ttl_seconds: int = 86400) -> "OutcomeCache":
        client = aioredis.from_url(redis_url, encoding="utf-8", decode_responses=True)
        return cls(client, ttl_seconds)

    @staticmethod
    def key_for(digest: str) -> str:
        return f"{KEY_PREFIX}{digest}"

    async def get(self, digest: str) -> Optional[Dict[str, Any]]:
        """
        Look up a cached outcome.

        Args:
            digest: SHA-256 hex digest of the raw payload

        Returns:
            Optional[Dict[str, Any]]: Cached outcome or None
        """
        try:
            cached = await self.redis_client.get(self.key_for(digest))
        except aioredis.RedisError as e:
            logger.warning("outcome_cache_read_failed", payload_digest=digest, error=str(e))
            return None

        metrics.record_outcome_cache(cached is not None)
        if cached is None:
            return None
        try:
            return json.loads(cached)
        except ValueError:
            logger.warning("outcome_cache_entry_corrupt", payload_digest=digest)
            return None

    async def put(self, digest: str, outcome: Dict[str, Any]) -> None:
        """
        Store an outcome for a payload digest.

        Args:
            digest: SHA-256 hex digest of the raw payload
            outcome: JSON-serializable outcome
        """
        try:
            await self.redis_client.set(
                self.key_for(digest), json.dumps(outcome), ex=self.ttl_seconds
            )
        except aioredis.RedisError as e:
            logger.warning("outcome_cache_write_failed", payload_digest=digest, error=str(e))

    async def close(self) -> None:
        await self.redis_client.aclose()
