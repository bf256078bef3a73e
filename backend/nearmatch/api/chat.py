"""FastAPI endpoints for direct messages."""

from __future__ import annotations

import json
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Response, status

from nearmatch.api.deps import get_pipeline, get_store
from nearmatch.domain.chat import DeliveryPipeline
from nearmatch.domain.chat.schemas import ConversationSummaryOut, MessageOut, SendMessageRequest
from nearmatch.domain.errors import Conflict
from nearmatch.domain.store import Store
from nearmatch.infra import idempotency, rate_limit
from nearmatch.infra.auth import AuthenticatedUser, get_current_user
from nearmatch.settings import settings

router = APIRouter(tags=["chat"])

_SEND_HANDLER = "messages.send"


@router.post("/messages", response_model=MessageOut, status_code=status.HTTP_201_CREATED)
async def send_message_endpoint(
	payload: SendMessageRequest,
	response: Response,
	idempotency_key: Optional[str] = Header(default=None, alias="Idempotency-Key"),
	auth_user: AuthenticatedUser = Depends(get_current_user),
	pipeline: DeliveryPipeline = Depends(get_pipeline),
	store: Store = Depends(get_store),
) -> MessageOut:
	key = idempotency_key.strip() if idempotency_key and idempotency_key.strip() else None
	if key:
		serialized = json.dumps(payload.model_dump(mode="json"), sort_keys=True)
		existing = await idempotency.begin(
			key,
			_SEND_HANDLER,
			actor_id=auth_user.id,
			payload_hash=idempotency.hash_payload(serialized),
		)
		if existing:
			message = await store.get_message(int(existing))
			if message is None:
				raise Conflict("idempotency_conflict")
			response.status_code = status.HTTP_200_OK
			return MessageOut.from_model(message)

	try:
		await rate_limit.enforce("message", auth_user.id, limit=settings.message_per_minute)
		message = await pipeline.send(auth_user.id, payload.receiver_id, payload.content)
	except Exception:
		if key:
			await idempotency.abandon(key, _SEND_HANDLER, actor_id=auth_user.id)
		raise
	if key:
		await idempotency.complete(key, _SEND_HANDLER, actor_id=auth_user.id, result_id=str(message.id))
	return MessageOut.from_model(message)


@router.get("/conversation/{other_user_id}", response_model=List[MessageOut])
async def conversation_endpoint(
	other_user_id: str,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	pipeline: DeliveryPipeline = Depends(get_pipeline),
) -> List[MessageOut]:
	messages = await pipeline.conversation(auth_user.id, other_user_id)
	return [MessageOut.from_model(message) for message in messages]


@router.get("/conversations", response_model=List[ConversationSummaryOut])
async def conversations_endpoint(
	auth_user: AuthenticatedUser = Depends(get_current_user),
	pipeline: DeliveryPipeline = Depends(get_pipeline),
) -> List[ConversationSummaryOut]:
	summaries = await pipeline.conversations(auth_user.id)
	return [ConversationSummaryOut.from_model(summary) for summary in summaries]


@router.post("/messages/{message_id}/read", response_model=MessageOut)
async def mark_read_endpoint(
	message_id: int,
	auth_user: AuthenticatedUser = Depends(get_current_user),
	pipeline: DeliveryPipeline = Depends(get_pipeline),
) -> MessageOut:
	message = await pipeline.mark_read(message_id, auth_user.id)
	return MessageOut.from_model(message)
