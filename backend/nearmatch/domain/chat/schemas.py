"""Pydantic schemas for the chat API and push frames."""

from __future__ import annotations

from datetime import datetime

from pydantic import Field

from nearmatch.domain.store import Message
from nearmatch.domain.wire import WireModel

from .models import NEW_MESSAGE_FRAME, ConversationSummary


class SendMessageRequest(WireModel):
	receiver_id: str = Field(..., min_length=1, description="Target user identifier")
	# blank and oversized content is rejected by the pipeline with a 400
	content: str


class MessageOut(WireModel):
	id: int
	sender_id: str
	receiver_id: str
	content: str
	is_read: bool
	created_at: datetime

	@classmethod
	def from_model(cls, message: Message) -> "MessageOut":
		return cls(
			id=message.id,
			sender_id=message.sender_id,
			receiver_id=message.receiver_id,
			content=message.content,
			is_read=message.is_read,
			created_at=message.created_at,
		)


class ConversationSummaryOut(WireModel):
	counterpart_id: str
	last_message: MessageOut

	@classmethod
	def from_model(cls, summary: ConversationSummary) -> "ConversationSummaryOut":
		return cls(counterpart_id=summary.counterpart_id, last_message=MessageOut.from_model(summary.last_message))


def new_message_frame(message: Message) -> dict:
	return {"type": NEW_MESSAGE_FRAME, "data": MessageOut.from_model(message).to_wire()}
