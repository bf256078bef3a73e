"""Persistence contract shared by the Postgres and in-memory stores."""

from __future__ import annotations

from datetime import datetime
from typing import AsyncContextManager, Iterable, List, Optional, Protocol, Set, Tuple

from .models import Block, Like, Message, NearbyCriteria, Presence, Profile


class Store(Protocol):
	async def ensure_schema(self) -> None:
		...

	async def ping(self) -> bool:
		...

	async def close(self) -> None:
		...

	def transaction(self, *, lock_key: Optional[str] = None) -> AsyncContextManager["Store"]:
		"""Yield a store bound to one unit of work.

		Units sharing a ``lock_key`` run one at a time.
		"""
		...

	# users and profiles
	async def upsert_user(self, user_id: str) -> None:
		...

	async def upsert_profile(self, profile: Profile) -> Profile:
		...

	async def get_profile(self, user_id: str) -> Optional[Profile]:
		...

	async def list_profiles(self, *, exclude_ids: Iterable[str] = ()) -> List[Profile]:
		...

	async def nearby_profiles(self, criteria: NearbyCriteria) -> List[Tuple[Profile, Optional[float]]]:
		"""Profiles visible to ``criteria.viewer_id`` with their distance in km.

		Excludes the viewer and anyone blocked in either direction; ordered online
		first, then most recently seen, and cut at ``criteria.limit``.
		"""
		...

	async def users_exist(self, *user_ids: str) -> bool:
		...

	# messages
	async def record_message(self, sender_id: str, receiver_id: str, content: str) -> Message:
		...

	async def get_message(self, message_id: int) -> Optional[Message]:
		...

	async def conversation_between(self, user_a: str, user_b: str) -> List[Message]:
		...

	async def latest_message_per_counterpart(self, user_id: str) -> List[Message]:
		...

	async def mark_read(self, message_id: int, reader_id: str) -> Message:
		...

	# likes
	async def record_like(self, liker_id: str, liked_id: str) -> Like:
		...

	async def like_exists(self, liker_id: str, liked_id: str) -> bool:
		...

	async def remove_like(self, liker_id: str, liked_id: str) -> bool:
		...

	async def likes_received(self, user_id: str) -> List[Like]:
		...

	async def mutual_partners(self, user_id: str) -> Set[str]:
		...

	# blocks
	async def record_block(self, blocker_id: str, blocked_id: str) -> Block:
		...

	async def remove_block(self, blocker_id: str, blocked_id: str) -> bool:
		...

	async def blocks_by(self, user_id: str) -> List[Block]:
		...

	async def is_blocked_either_way(self, user_a: str, user_b: str) -> bool:
		...

	async def blocked_ids(self, user_id: str) -> Set[str]:
		...

	# presence
	async def set_presence(self, user_id: str, is_online: bool, at: datetime) -> None:
		...

	async def get_presence(self, user_id: str) -> Presence:
		...

	async def reset_presence(self, at: datetime) -> int:
		...
