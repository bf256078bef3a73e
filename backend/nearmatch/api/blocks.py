"""Block management."""

from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, status

from nearmatch.api.deps import get_block_service
from nearmatch.domain.blocks import BlockService
from nearmatch.domain.blocks.schemas import BlockOut, BlockRequest
from nearmatch.domain.wire import SuccessOut
from nearmatch.infra import rate_limit
from nearmatch.infra.auth import AuthenticatedUser, get_current_user
from nearmatch.settings import settings

router = APIRouter(tags=["blocks"])


@router.post("/blocks", response_model=BlockOut, status_code=status.HTTP_201_CREATED)
async def block_endpoint(
	payload: BlockRequest,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: BlockService = Depends(get_block_service),
) -> BlockOut:
	await rate_limit.enforce("block", auth_user.id, limit=settings.block_per_minute)
	block = await service.block(auth_user.id, payload.blocked_id)
	return BlockOut.from_model(block)


@router.delete("/blocks/{blocked_id}", response_model=SuccessOut)
async def unblock_endpoint(
	blocked_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: BlockService = Depends(get_block_service),
) -> SuccessOut:
	return SuccessOut(success=await service.unblock(auth_user.id, blocked_id))


@router.get("/blocks", response_model=List[BlockOut])
async def list_blocks_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	service: BlockService = Depends(get_block_service),
) -> List[BlockOut]:
	return [BlockOut.from_model(block) for block in await service.list_blocks(auth_user.id)]
