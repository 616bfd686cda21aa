"""
Idempotency store for payment requests.

Clients may send an ``Idempotency-Key`` header when applying a payment.
The key is claimed in Redis before the payment runs; the successful
response then replaces the claim. A replay with the same key returns the
cached body instead of charging the account again; reusing a key for a
different payment is rejected. Failed attempts release the claim, so
they can be resubmitted with the same key.
"""

import hashlib
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional

from backend.app.core.config import settings
from backend.app.core.exceptions import IdempotencyConflictError, IdempotencyKeyReusedError

logger = logging.getLogger("emi.idempotency")

KEY_PREFIX = "idempotency:payment:"
STATE_PENDING = "pending"
STATE_DONE = "done"


class IdempotencyStore:
    """
    Thin wrapper over a redis.asyncio client.

    Redis errors are logged and treated as a miss; the ledger stays
    correct without the cache, only replay protection is lost.
    """

    def __init__(self, redis_client, ttl_seconds: Optional[int] = None, pending_ttl_seconds: int = 60):
        self.redis = redis_client
        self.ttl_seconds = ttl_seconds or settings.idempotency_ttl_seconds
        self.pending_ttl_seconds = pending_ttl_seconds

    @staticmethod
    def cache_key(idempotency_key: str) -> str:
        return f"{KEY_PREFIX}{idempotency_key}"

    @staticmethod
    def fingerprint(account_number: str, amount: Decimal) -> str:
        """Stable hash of the payment a key was first used for."""
        payment_data = f"{account_number}:{amount}"
        return hashlib.sha256(payment_data.encode()).hexdigest()

    async def begin(self, idempotency_key: str, fingerprint: str) -> Optional[Dict[str, Any]]:
        """
        Claim ``idempotency_key`` or return the response it already produced.

        Returns:
            Cached response body for a replay, None when the caller should proceed

        Raises:
            IdempotencyConflictError: if another request holds the claim
            IdempotencyKeyReusedError: if the key was used for a different payment
        """
        key = self.cache_key(idempotency_key)
        try:
            claimed = await self.redis.set(
                key,
                json.dumps({"state": STATE_PENDING, "fingerprint": fingerprint}),
                ex=self.pending_ttl_seconds,
                nx=True
            )
            if claimed:
                return None
            cached = await self.redis.get(key)
        except Exception as e:
            logger.warning("idempotency_lookup_failed", extra={"key": idempotency_key, "error": str(e)})
            return None

        if not cached:
            return None

        entry = json.loads(cached)
        if entry.get("state") != STATE_DONE:
            raise IdempotencyConflictError(idempotency_key)
        if entry.get("fingerprint") != fingerprint:
            logger.warning("idempotency_key_reused", extra={"key": idempotency_key})
            raise IdempotencyKeyReusedError(idempotency_key)

        logger.info("idempotency_cache_hit", extra={"key": idempotency_key})
        return entry["response"]

    async def complete(self, idempotency_key: str, fingerprint: str, response: Dict[str, Any]) -> None:
        """Replace the claim with the successful response."""
        try:
            await self.redis.set(
                self.cache_key(idempotency_key),
                json.dumps({"state": STATE_DONE, "fingerprint": fingerprint, "response": response}),
                ex=self.ttl_seconds
            )
        except Exception as e:
            logger.warning("idempotency_store_failed", extra={"key": idempotency_key, "error": str(e)})

    async def release(self, idempotency_key: str) -> None:
        """Drop the claim after a failed attempt."""
        try:
            await self.redis.delete(self.cache_key(idempotency_key))
        except Exception as e:
            logger.warning("idempotency_release_failed", extra={"key": idempotency_key, "error": str(e)})
