from __future__ import annotations

from datetime import datetime
from typing import List

from pydantic import Field

from nearmatch.domain.store import Like
from nearmatch.domain.wire import WireModel


class LikeRequest(WireModel):
	liked_id: str = Field(..., min_length=1)


class LikeOut(WireModel):
	id: int
	liker_id: str
	liked_id: str
	created_at: datetime

	@classmethod
	def from_model(cls, like: Like) -> "LikeOut":
		return cls(id=like.id, liker_id=like.liker_id, liked_id=like.liked_id, created_at=like.created_at)


class LikeResult(WireModel):
	like: LikeOut
	is_match: bool


class MatchesOut(WireModel):
	user_ids: List[str]
