"""Like edges and mutual-match detection."""

from __future__ import annotations

from typing import List, Set, Tuple

from nearmatch.domain.errors import Forbidden, InvalidArgument, NotFound
from nearmatch.domain.store import Like, Store, pair_key
from nearmatch.obs import logging as obs_logging
from nearmatch.obs import metrics as obs_metrics

logger = obs_logging.get_logger(__name__)


class MatchEngine:
	"""Records likes and reports whether the reverse edge already exists.

	A match is never stored; it is the presence of both like edges.
	"""

	def __init__(self, store: Store) -> None:
		self._store = store

	async def like_and_check_match(self, liker_id: str, liked_id: str) -> Tuple[Like, bool]:
		if liker_id == liked_id:
			raise InvalidArgument("cannot_like_self")
		if not await self._store.users_exist(liker_id, liked_id):
			raise NotFound("user_missing")
		if await self._store.is_blocked_either_way(liker_id, liked_id):
			raise Forbidden("blocked")

		# both likes of a pair take the same lock, so the second one sees the first
		async with self._store.transaction(lock_key=pair_key(liker_id, liked_id)) as tx:
			like = await tx.record_like(liker_id, liked_id)
			is_match = await tx.like_exists(liked_id, liker_id)

		obs_metrics.inc_like("add")
		if is_match:
			obs_metrics.inc_match()
			logger.info("match_detected", extra={"liker_id": liker_id, "liked_id": liked_id})
		return like, is_match

	async def remove_like(self, liker_id: str, liked_id: str) -> bool:
		async with self._store.transaction(lock_key=pair_key(liker_id, liked_id)) as tx:
			removed = await tx.remove_like(liker_id, liked_id)
		if removed:
			obs_metrics.inc_like("remove")
		return removed

	async def likes_received(self, user_id: str) -> List[Like]:
		return await self._store.likes_received(user_id)

	async def mutual_partners(self, user_id: str) -> Set[str]:
		return await self._store.mutual_partners(user_id)

	async def is_match(self, user_a: str, user_b: str) -> bool:
		return await self._store.like_exists(user_a, user_b) and await self._store.like_exists(user_b, user_a)
