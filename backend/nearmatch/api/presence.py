from __future__ import annotations

from fastapi import APIRouter, Depends

from nearmatch.api.deps import get_registry
from nearmatch.domain.presence import PresenceRegistry
from nearmatch.domain.presence.schemas import OnlineStatusOut, OnlineStatusRequest
from nearmatch.infra.auth import AuthenticatedUser, get_current_user

router = APIRouter(tags=["presence"])


@router.post("/online-status", response_model=OnlineStatusOut)
async def online_status_endpoint(
	payload: OnlineStatusRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	registry: PresenceRegistry = Depends(get_registry),
) -> OnlineStatusOut:
	effective = await registry.apply_client_status(auth_user.id, payload.is_online)
	return OnlineStatusOut(success=True, is_online=effective)
