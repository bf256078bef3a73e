from __future__ import annotations

from datetime import datetime
from typing import Optional

from nearmatch.domain.wire import WireModel

from .service import DiscoveryResult


class DiscoveryProfileOut(WireModel):
	user_id: str
	display_name: str
	age: int
	is_online: bool
	last_seen: Optional[datetime] = None
	distance_km: Optional[float] = None

	@classmethod
	def from_result(cls, result: DiscoveryResult) -> "DiscoveryProfileOut":
		profile = result.profile
		return cls(
			user_id=profile.user_id,
			display_name=profile.display_name,
			age=profile.age,
			is_online=profile.is_online,
			last_seen=profile.last_seen,
			distance_km=round(result.distance_km, 2) if result.distance_km is not None else None,
		)
