"""In-process registry of live connections per user."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Callable, Dict, Hashable, Optional, Set, Tuple

from nearmatch.domain.store import Store
from nearmatch.obs import logging as obs_logging
from nearmatch.obs import metrics as obs_metrics

logger = obs_logging.get_logger(__name__)

ConnectionHandle = Hashable

_LOCK_SHARDS = 64


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


class PresenceRegistry:
	"""Maps users to their live connections and mirrors presence to the store.

	The registry is owned by the server process and handed to the connection
	lifecycle and the delivery pipeline. Mutations for one user run under that
	user's shard lock, and the online/offline write to the store happens while
	the lock is held, so each transition is persisted exactly once.
	"""

	def __init__(self, store: Store, *, clock: Callable[[], datetime] = _utcnow, shards: int = _LOCK_SHARDS) -> None:
		self._store = store
		self._clock = clock
		self._connections: Dict[str, Set[ConnectionHandle]] = {}
		self._owners: Dict[ConnectionHandle, str] = {}
		# users whose last close still owes an offline write, with its close time
		self._pending_offline: Dict[str, datetime] = {}
		# users with live connections whose persisted flag the client turned off
		self._away: Set[str] = set()
		self._locks = tuple(asyncio.Lock() for _ in range(max(1, shards)))

	def _lock_for(self, user_id: str) -> asyncio.Lock:
		return self._locks[hash(user_id) % len(self._locks)]

	async def register(self, user_id: str, connection: ConnectionHandle) -> bool:
		"""Bind ``connection`` to ``user_id``; returns True on the offline to online transition.

		A new connection also re-asserts online when the persisted flag was turned
		off by the client while other connections stayed live.
		"""
		async with self._lock_for(user_id):
			owner = self._owners.get(connection)
			if owner is not None and owner != user_id:
				raise ValueError("connection already bound to another user")
			bucket = self._connections.setdefault(user_id, set())
			first = not bucket
			bucket.add(connection)
			self._owners[connection] = user_id
			if first or user_id in self._away:
				try:
					await self._store.set_presence(user_id, True, self._clock())
				except Exception:
					bucket.discard(connection)
					self._owners.pop(connection, None)
					if not bucket:
						self._connections.pop(user_id, None)
					raise
				self._away.discard(user_id)
				# the online write supersedes an offline write still owed
				self._pending_offline.pop(user_id, None)
			if first:
				obs_metrics.presence_transition(True)
				obs_metrics.set_presence_online(len(self._connections))
				logger.info("presence_online", extra={"user_id": user_id})
			return first

	async def unregister(self, connection: ConnectionHandle) -> Optional[str]:
		"""Drop ``connection`` and return the user it was bound to, if any.

		If the offline write fails the connection is still dropped, the write is
		kept as owed and retried by :meth:`flush_pending_offline`, and the error
		propagates.
		"""
		user_id = self._owners.get(connection)
		if user_id is None:
			return None
		async with self._lock_for(user_id):
			if self._owners.get(connection) != user_id:
				return None
			del self._owners[connection]
			bucket = self._connections.get(user_id, set())
			bucket.discard(connection)
			if bucket:
				return user_id
			self._connections.pop(user_id, None)
			self._away.discard(user_id)
			at = self._clock()
			self._pending_offline[user_id] = at
			obs_metrics.presence_transition(False)
			obs_metrics.set_presence_online(len(self._connections))
			await self._write_offline(user_id, at)
			logger.info("presence_offline", extra={"user_id": user_id, "last_seen": at.isoformat()})
			return user_id

	async def _write_offline(self, user_id: str, at: datetime) -> None:
		# caller holds the user's lock
		try:
			await self._store.set_presence(user_id, False, at)
		except Exception:
			logger.warning("presence_offline_write_failed", extra={"user_id": user_id}, exc_info=True)
			raise
		if self._pending_offline.get(user_id) == at:
			del self._pending_offline[user_id]

	def pending_offline(self) -> Tuple[str, ...]:
		return tuple(self._pending_offline)

	async def flush_pending_offline(self) -> int:
		"""Retry offline writes that failed earlier; returns how many landed."""
		flushed = 0
		for user_id in list(self._pending_offline):
			async with self._lock_for(user_id):
				at = self._pending_offline.get(user_id)
				if at is None:
					continue
				if self._connections.get(user_id):
					# reconnected meanwhile; register already wrote online
					del self._pending_offline[user_id]
					continue
				try:
					await self._write_offline(user_id, at)
				except Exception:
					continue
				flushed += 1
		if flushed:
			logger.info("presence_offline_flushed", extra={"flushed": flushed})
		return flushed

	async def run_offline_sweeper(self, interval_s: float = 5.0) -> None:
		"""Periodically retry owed offline writes until cancelled."""
		interval = max(0.1, float(interval_s))
		while True:
			await asyncio.sleep(interval)
			if self._pending_offline:
				await self.flush_pending_offline()

	def connections_for(self, user_id: str) -> Tuple[ConnectionHandle, ...]:
		return tuple(self._connections.get(user_id, ()))

	def user_for(self, connection: ConnectionHandle) -> Optional[str]:
		return self._owners.get(connection)

	def is_online(self, user_id: str) -> bool:
		return bool(self._connections.get(user_id))

	def online_count(self) -> int:
		return len(self._connections)

	async def reconcile_on_startup(self) -> int:
		"""Mark every persisted profile offline; live state starts empty."""
		reset = await self._store.reset_presence(self._clock())
		obs_metrics.set_presence_online(len(self._connections))
		if reset:
			logger.info("presence_reconciled", extra={"reset": reset})
		return reset

	async def apply_client_status(self, user_id: str, is_online: bool) -> bool:
		"""Persist a client-reported status and return the effective value.

		A user is only reported online while at least one connection is live.
		Going away with live connections lasts until the next connection is
		registered or the client reports online again.
		"""
		async with self._lock_for(user_id):
			live = bool(self._connections.get(user_id))
			effective = bool(is_online) and live
			await self._store.set_presence(user_id, effective, self._clock())
			if live and not effective:
				self._away.add(user_id)
			else:
				self._away.discard(user_id)
			return effective
