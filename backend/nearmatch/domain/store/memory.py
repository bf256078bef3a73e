"""In-process store used by tests and single-node development runs."""

from __future__ import annotations

import asyncio
import itertools
from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import AsyncIterator, Callable, Dict, Iterable, List, Optional, Set, Tuple

from nearmatch.domain.errors import Forbidden, NotFound

from .models import Block, Like, Message, NearbyCriteria, Presence, Profile, distance_km


def _utcnow() -> datetime:
	return datetime.now(timezone.utc)


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class _KeyLock:
	__slots__ = ("lock", "holders")

	def __init__(self) -> None:
		self.lock = asyncio.Lock()
		self.holders = 0


class MemoryStore:
	"""Store implementation backed by dictionaries guarded by an asyncio lock."""

	def __init__(self, *, clock: Callable[[], datetime] = _utcnow) -> None:
		self._clock = clock
		self._lock = asyncio.Lock()
		self._key_locks: Dict[str, _KeyLock] = {}
		self._users: Set[str] = set()
		self._profiles: Dict[str, Profile] = {}
		self._presence: Dict[str, Presence] = {}
		self._messages: Dict[int, Message] = {}
		self._likes: Dict[Tuple[str, str], Like] = {}
		self._blocks: Dict[Tuple[str, str], Block] = {}
		self._message_ids = itertools.count(1)
		self._like_ids = itertools.count(1)
		self._block_ids = itertools.count(1)
		self._last_message_at: Optional[datetime] = None

	async def ensure_schema(self) -> None:
		return None

	async def ping(self) -> bool:
		return True

	async def close(self) -> None:
		return None

	@asynccontextmanager
	async def transaction(self, *, lock_key: Optional[str] = None) -> AsyncIterator["MemoryStore"]:
		if lock_key is None:
			yield self
			return
		entry = self._key_locks.get(lock_key)
		if entry is None:
			entry = self._key_locks[lock_key] = _KeyLock()
		# holders counts the owner plus waiters; the last one out drops the entry
		entry.holders += 1
		try:
			async with entry.lock:
				yield self
		finally:
			entry.holders -= 1
			if entry.holders == 0 and self._key_locks.get(lock_key) is entry:
				del self._key_locks[lock_key]

	def _require_users(self, *user_ids: str) -> None:
		if any(user_id not in self._users for user_id in user_ids):
			raise NotFound("user_missing")

	async def upsert_user(self, user_id: str) -> None:
		async with self._lock:
			self._users.add(str(user_id))

	async def upsert_profile(self, profile: Profile) -> Profile:
		async with self._lock:
			self._users.add(profile.user_id)
			self._profiles[profile.user_id] = profile
			return self._with_presence(profile)

	def _with_presence(self, profile: Profile) -> Profile:
		presence = self._presence.get(profile.user_id)
		if presence is None:
			return replace(profile, is_online=False)
		return replace(profile, is_online=presence.is_online, last_seen=presence.last_seen)

	async def get_profile(self, user_id: str) -> Optional[Profile]:
		async with self._lock:
			profile = self._profiles.get(user_id)
			return self._with_presence(profile) if profile else None

	async def list_profiles(self, *, exclude_ids: Iterable[str] = ()) -> List[Profile]:
		excluded = set(exclude_ids)
		async with self._lock:
			return [
				self._with_presence(profile)
				for user_id, profile in self._profiles.items()
				if user_id not in excluded
			]

	async def nearby_profiles(self, criteria: NearbyCriteria) -> List[Tuple[Profile, Optional[float]]]:
		async with self._lock:
			hidden = {criteria.viewer_id}
			for blocker, blocked in self._blocks:
				if blocker == criteria.viewer_id:
					hidden.add(blocked)
				elif blocked == criteria.viewer_id:
					hidden.add(blocker)
			candidates = [
				self._with_presence(profile) for user_id, profile in self._profiles.items() if user_id not in hidden
			]

		results: List[Tuple[Profile, Optional[float]]] = []
		for profile in candidates:
			if not profile.is_visible or not criteria.age_min <= profile.age <= criteria.age_max:
				continue
			if criteria.online_only and not profile.is_online:
				continue
			distance: Optional[float] = None
			if criteria.has_location:
				if profile.latitude is None or profile.longitude is None:
					continue
				distance = distance_km(criteria.latitude, criteria.longitude, profile.latitude, profile.longitude)
				if distance > criteria.max_distance_km:
					continue
			results.append((profile, distance))

		results.sort(key=lambda item: item[0].last_seen or _EPOCH, reverse=True)
		results.sort(key=lambda item: not item[0].is_online)
		return results[: criteria.limit]

	async def users_exist(self, *user_ids: str) -> bool:
		async with self._lock:
			return all(user_id in self._users for user_id in user_ids)

	async def record_message(self, sender_id: str, receiver_id: str, content: str) -> Message:
		async with self._lock:
			self._require_users(sender_id, receiver_id)
			created_at = self._clock()
			if self._last_message_at is not None and created_at <= self._last_message_at:
				created_at = self._last_message_at + timedelta(microseconds=1)
			self._last_message_at = created_at
			message = Message(
				id=next(self._message_ids),
				sender_id=sender_id,
				receiver_id=receiver_id,
				content=content,
				is_read=False,
				created_at=created_at,
			)
			self._messages[message.id] = message
			return message

	async def get_message(self, message_id: int) -> Optional[Message]:
		async with self._lock:
			return self._messages.get(message_id)

	async def conversation_between(self, user_a: str, user_b: str) -> List[Message]:
		pair = {user_a, user_b}
		async with self._lock:
			rows = [m for m in self._messages.values() if {m.sender_id, m.receiver_id} == pair]
		return sorted(rows, key=Message.sort_key)

	async def latest_message_per_counterpart(self, user_id: str) -> List[Message]:
		async with self._lock:
			rows = [m for m in self._messages.values() if m.is_participant(user_id)]
		rows.sort(key=Message.sort_key, reverse=True)
		latest: Dict[str, Message] = {}
		for message in rows:
			latest.setdefault(message.counterpart(user_id), message)
		return list(latest.values())

	async def mark_read(self, message_id: int, reader_id: str) -> Message:
		async with self._lock:
			message = self._messages.get(message_id)
			if message is None:
				raise NotFound("message_not_found")
			if message.receiver_id != reader_id:
				raise Forbidden("not_receiver")
			if not message.is_read:
				message = replace(message, is_read=True)
				self._messages[message_id] = message
			return message

	async def record_like(self, liker_id: str, liked_id: str) -> Like:
		async with self._lock:
			self._require_users(liker_id, liked_id)
			existing = self._likes.get((liker_id, liked_id))
			if existing is not None:
				return existing
			like = Like(id=next(self._like_ids), liker_id=liker_id, liked_id=liked_id, created_at=self._clock())
			self._likes[(liker_id, liked_id)] = like
			return like

	async def like_exists(self, liker_id: str, liked_id: str) -> bool:
		async with self._lock:
			return (liker_id, liked_id) in self._likes

	async def remove_like(self, liker_id: str, liked_id: str) -> bool:
		async with self._lock:
			return self._likes.pop((liker_id, liked_id), None) is not None

	async def likes_received(self, user_id: str) -> List[Like]:
		async with self._lock:
			rows = [like for (_, liked), like in self._likes.items() if liked == user_id]
		return sorted(rows, key=lambda like: (like.created_at, like.id), reverse=True)

	async def mutual_partners(self, user_id: str) -> Set[str]:
		async with self._lock:
			return {
				liked
				for (liker, liked) in self._likes
				if liker == user_id and (liked, user_id) in self._likes
			}

	async def record_block(self, blocker_id: str, blocked_id: str) -> Block:
		async with self._lock:
			self._require_users(blocker_id, blocked_id)
			existing = self._blocks.get((blocker_id, blocked_id))
			if existing is not None:
				return existing
			block = Block(id=next(self._block_ids), blocker_id=blocker_id, blocked_id=blocked_id, created_at=self._clock())
			self._blocks[(blocker_id, blocked_id)] = block
			return block

	async def remove_block(self, blocker_id: str, blocked_id: str) -> bool:
		async with self._lock:
			return self._blocks.pop((blocker_id, blocked_id), None) is not None

	async def blocks_by(self, user_id: str) -> List[Block]:
		async with self._lock:
			rows = [block for (blocker, _), block in self._blocks.items() if blocker == user_id]
		return sorted(rows, key=lambda block: (block.created_at, block.id), reverse=True)

	async def is_blocked_either_way(self, user_a: str, user_b: str) -> bool:
		async with self._lock:
			return (user_a, user_b) in self._blocks or (user_b, user_a) in self._blocks

	async def blocked_ids(self, user_id: str) -> Set[str]:
		async with self._lock:
			result: Set[str] = set()
			for blocker, blocked in self._blocks:
				if blocker == user_id:
					result.add(blocked)
				elif blocked == user_id:
					result.add(blocker)
			return result

	async def set_presence(self, user_id: str, is_online: bool, at: datetime) -> None:
		async with self._lock:
			self._presence[user_id] = Presence(user_id=user_id, is_online=is_online, last_seen=at)

	async def get_presence(self, user_id: str) -> Presence:
		async with self._lock:
			return self._presence.get(user_id) or Presence(user_id=user_id, is_online=False, last_seen=None)

	async def reset_presence(self, at: datetime) -> int:
		async with self._lock:
			stale = [user_id for user_id, presence in self._presence.items() if presence.is_online]
			for user_id in stale:
				self._presence[user_id] = Presence(user_id=user_id, is_online=False, last_seen=at)
			return len(stale)
