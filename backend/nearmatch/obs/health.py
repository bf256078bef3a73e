"""Health check helpers for liveness and readiness probes."""

from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Dict, Tuple

from nearmatch.domain.store import Store
from nearmatch.infra.redis import redis_client
from nearmatch.obs import metrics

LOGGER = logging.getLogger(__name__)


async def _redis_status(timeout: float = 0.2) -> Dict[str, Any]:
	start = perf_counter()
	try:
		await asyncio.wait_for(redis_client.ping(), timeout=timeout)
		latency = perf_counter() - start
		metrics.mark_redis(True)
		return {"ok": True, "latency_ms": round(latency * 1000, 2)}
	except Exception as exc:  # pragma: no cover - depends on runtime
		metrics.mark_redis(False)
		LOGGER.warning("Redis readiness check failed", exc_info=True)
		return {"ok": False, "error": str(exc)}


async def _store_status(store: Store, timeout: float = 0.3) -> Dict[str, Any]:
	start = perf_counter()
	try:
		ok = await asyncio.wait_for(store.ping(), timeout=timeout)
		latency = perf_counter() - start
		metrics.mark_store(bool(ok))
		return {"ok": bool(ok), "latency_ms": round(latency * 1000, 2)}
	except Exception as exc:  # pragma: no cover - depends on runtime
		metrics.mark_store(False)
		LOGGER.warning("Store readiness check failed", exc_info=True)
		return {"ok": False, "error": str(exc)}


async def liveness() -> Dict[str, Any]:
	return {"status": "ok"}


async def readiness(store: Store) -> Tuple[int, Dict[str, Any]]:
	redis_state = await _redis_status()
	store_state = await _store_status(store)
	ok = redis_state.get("ok") and store_state.get("ok")
	return (
		200 if ok else 503,
		{
			"status": "ok" if ok else "degraded",
			"redis": redis_state,
			"store": store_state,
		},
	)
