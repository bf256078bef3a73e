from __future__ import annotations

import hashlib
from typing import Optional

from nearmatch.infra.redis import redis_client
from nearmatch.obs import metrics as obs_metrics
from nearmatch.settings import settings


class IdempotencyConflictError(Exception):
    """Raised when an idempotency key is replayed with a conflicting payload."""


def hash_payload(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def _key(handler: str, actor_id: str, key: str) -> str:
    return f"idem:{handler}:{actor_id}:{key}"


async def begin(
    key: str,
    handler: str,
    *,
    actor_id: str,
    payload_hash: str,
    ttl_s: int | None = None,
) -> Optional[str]:
    """Reserve a key, or return the result id recorded by an earlier call."""
    ttl = ttl_s or settings.idempotency_ttl_seconds
    redis_key = _key(handler, actor_id, key)
    reserved = await redis_client.hsetnx(redis_key, "payload_hash", payload_hash)
    if reserved:
        await redis_client.expire(redis_key, ttl)
        obs_metrics.idempotency("miss")
        return None

    row = await redis_client.hgetall(redis_key)
    if row.get("payload_hash") != payload_hash:
        obs_metrics.idempotency("conflict")
        raise IdempotencyConflictError("idempotency_conflict")
    result_id = row.get("result_id")
    if not result_id:
        obs_metrics.idempotency("in_progress")
        raise IdempotencyConflictError("idempotency_in_progress")
    obs_metrics.idempotency("hit")
    return result_id


async def complete(key: str, handler: str, *, actor_id: str, result_id: str) -> None:
    await redis_client.hset(_key(handler, actor_id, key), "result_id", result_id)


async def abandon(key: str, handler: str, *, actor_id: str) -> None:
    """Release a reservation whose operation failed so a retry can run."""
    await redis_client.delete(_key(handler, actor_id, key))
