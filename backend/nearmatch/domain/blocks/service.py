"""Directed block edges between users."""

from __future__ import annotations

from typing import List

from nearmatch.domain.errors import InvalidArgument, NotFound
from nearmatch.domain.store import Block, Store
from nearmatch.obs import logging as obs_logging
from nearmatch.obs import metrics as obs_metrics

logger = obs_logging.get_logger(__name__)


class BlockService:
	"""A block in either direction stops messages, likes and discovery between the pair."""

	def __init__(self, store: Store) -> None:
		self._store = store

	async def block(self, blocker_id: str, blocked_id: str) -> Block:
		if blocker_id == blocked_id:
			raise InvalidArgument("cannot_block_self")
		if not await self._store.users_exist(blocker_id, blocked_id):
			raise NotFound("user_missing")
		block = await self._store.record_block(blocker_id, blocked_id)
		obs_metrics.inc_block("add")
		logger.info("user_blocked", extra={"blocked_id": blocked_id})
		return block

	async def unblock(self, blocker_id: str, blocked_id: str) -> bool:
		removed = await self._store.remove_block(blocker_id, blocked_id)
		if removed:
			obs_metrics.inc_block("remove")
		return removed

	async def list_blocks(self, blocker_id: str) -> List[Block]:
		return await self._store.blocks_by(blocker_id)
