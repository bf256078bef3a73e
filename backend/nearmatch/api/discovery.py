"""Nearby profile feed."""

from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from nearmatch.api.deps import get_discovery
from nearmatch.domain.discovery import DiscoveryQuery, DiscoveryService
from nearmatch.domain.discovery.schemas import DiscoveryProfileOut
from nearmatch.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["discovery"])


@router.get("/discover", response_model=List[DiscoveryProfileOut])
async def discover_endpoint(
	latitude: Optional[float] = Query(default=None),
	longitude: Optional[float] = Query(default=None),
	max_distance: Optional[float] = Query(default=None, alias="maxDistance"),
	age_min: Optional[int] = Query(default=None, alias="ageMin"),
	age_max: Optional[int] = Query(default=None, alias="ageMax"),
	online_only: bool = Query(default=False, alias="onlineOnly"),
	limit: Optional[int] = Query(default=None),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: DiscoveryService = Depends(get_discovery),
) -> List[DiscoveryProfileOut]:
	query = DiscoveryQuery(
		latitude=latitude,
		longitude=longitude,
		max_distance_km=max_distance,
		age_min=age_min,
		age_max=age_max,
		online_only=online_only,
		limit=limit,
	)
	results = await service.nearby(auth_user.id, query)
	return [DiscoveryProfileOut.from_result(result) for result in results]
