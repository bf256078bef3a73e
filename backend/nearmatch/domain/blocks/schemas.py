from __future__ import annotations

from datetime import datetime

from pydantic import Field

from nearmatch.domain.store import Block
from nearmatch.domain.wire import WireModel


class BlockRequest(WireModel):
	blocked_id: str = Field(..., min_length=1)


class BlockOut(WireModel):
	id: int
	blocker_id: str
	blocked_id: str
	created_at: datetime

	@classmethod
	def from_model(cls, block: Block) -> "BlockOut":
		return cls(id=block.id, blocker_id=block.blocker_id, blocked_id=block.blocked_id, created_at=block.created_at)
