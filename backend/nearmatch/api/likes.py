"""Likes and matches."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status

from nearmatch.api.deps import get_match_engine
from nearmatch.domain.matching import MatchEngine
from nearmatch.domain.matching.schemas import LikeOut, LikeRequest, LikeResult, MatchesOut
from nearmatch.domain.wire import SuccessOut
from nearmatch.infra import rate_limit
from nearmatch.infra.auth import AuthenticatedUser, get_current_user
from nearmatch.settings import settings

router = APIRouter(tags=["matching"])


@router.post("/likes", response_model=LikeResult, status_code=status.HTTP_201_CREATED)
async def like_endpoint(
	payload: LikeRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	engine: MatchEngine = Depends(get_match_engine),
) -> LikeResult:
	await rate_limit.enforce("like", auth_user.id, limit=settings.like_per_minute)
	like, is_match = await engine.like_and_check_match(auth_user.id, payload.liked_id)
	return LikeResult(like=LikeOut.from_model(like), is_match=is_match)


@router.delete("/likes/{liked_id}", response_model=SuccessOut)
async def unlike_endpoint(
	liked_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	engine: MatchEngine = Depends(get_match_engine),
) -> SuccessOut:
	removed = await engine.remove_like(auth_user.id, liked_id)
	return SuccessOut(success=removed)


@router.get("/likes", response_model=List[LikeOut])
async def likes_received_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	engine: MatchEngine = Depends(get_match_engine),
) -> List[LikeOut]:
	return [LikeOut.from_model(like) for like in await engine.likes_received(auth_user.id)]


@router.get("/matches", response_model=MatchesOut)
async def matches_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	engine: MatchEngine = Depends(get_match_engine),
) -> MatchesOut:
	partners = await engine.mutual_partners(auth_user.id)
	return MatchesOut(user_ids=sorted(partners))
