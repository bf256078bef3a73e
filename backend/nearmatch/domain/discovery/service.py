"""Nearby profile feed filtered by age, distance, presence and blocks."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from nearmatch.domain.errors import InvalidArgument
from nearmatch.domain.store import NearbyCriteria, Profile, Store
from nearmatch.obs import metrics as obs_metrics
from nearmatch.settings import settings

MIN_AGE = 18
MAX_AGE = 120


@dataclass(slots=True, frozen=True)
class DiscoveryQuery:
	latitude: Optional[float] = None
	longitude: Optional[float] = None
	max_distance_km: Optional[float] = None
	age_min: Optional[int] = None
	age_max: Optional[int] = None
	online_only: bool = False
	limit: Optional[int] = None


@dataclass(slots=True, frozen=True)
class DiscoveryResult:
	profile: Profile
	distance_km: Optional[float] = None


def _validate(query: DiscoveryQuery) -> DiscoveryQuery:
	age_min = settings.discovery_age_min if query.age_min is None else query.age_min
	age_max = settings.discovery_age_max if query.age_max is None else query.age_max
	if not (MIN_AGE <= age_min <= MAX_AGE) or not (MIN_AGE <= age_max <= MAX_AGE):
		raise InvalidArgument("age_out_of_range")
	if age_min > age_max:
		raise InvalidArgument("age_range_inverted")

	if (query.latitude is None) != (query.longitude is None):
		raise InvalidArgument("incomplete_location")
	if query.latitude is not None and not -90.0 <= query.latitude <= 90.0:
		raise InvalidArgument("latitude_out_of_range")
	if query.longitude is not None and not -180.0 <= query.longitude <= 180.0:
		raise InvalidArgument("longitude_out_of_range")

	max_distance = settings.discovery_default_max_km if query.max_distance_km is None else query.max_distance_km
	if max_distance <= 0:
		raise InvalidArgument("distance_out_of_range")

	limit = settings.discovery_limit if query.limit is None else query.limit
	if not 1 <= limit <= settings.discovery_limit:
		raise InvalidArgument("limit_out_of_range")

	return DiscoveryQuery(
		latitude=query.latitude,
		longitude=query.longitude,
		max_distance_km=max_distance,
		age_min=age_min,
		age_max=age_max,
		online_only=query.online_only,
		limit=limit,
	)


class DiscoveryService:
	def __init__(self, store: Store) -> None:
		self._store = store

	async def nearby(self, user_id: str, query: DiscoveryQuery) -> List[DiscoveryResult]:
		"""Return visible profiles near the caller, online users first."""
		query = _validate(query)
		criteria = NearbyCriteria(
			viewer_id=user_id,
			age_min=query.age_min,
			age_max=query.age_max,
			max_distance_km=query.max_distance_km,
			limit=query.limit,
			online_only=query.online_only,
			latitude=query.latitude,
			longitude=query.longitude,
		)
		rows = await self._store.nearby_profiles(criteria)
		obs_metrics.inc_discovery()
		return [DiscoveryResult(profile=profile, distance_km=distance) for profile, distance in rows]
