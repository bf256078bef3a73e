"""Chat domain records built on top of stored messages."""

from __future__ import annotations

from dataclasses import dataclass

from nearmatch.domain.store import Message

NEW_MESSAGE_FRAME = "new_message"


@dataclass(slots=True, frozen=True)
class ConversationSummary:
	"""Latest message with one partner, resolved relative to the requesting user."""

	counterpart_id: str
	last_message: Message

	@classmethod
	def for_user(cls, user_id: str, message: Message) -> "ConversationSummary":
		return cls(counterpart_id=message.counterpart(user_id), last_message=message)
