"""Validate, persist and fan out direct messages."""

from __future__ import annotations

import asyncio
from typing import Any, List, Optional, Protocol

from nearmatch.domain.errors import Forbidden, InvalidArgument
from nearmatch.domain.presence import ConnectionHandle, PresenceRegistry
from nearmatch.domain.store import Message, Store
from nearmatch.obs import logging as obs_logging
from nearmatch.obs import metrics as obs_metrics
from nearmatch.obs.tracing import get_tracer
from nearmatch.settings import settings

from .models import ConversationSummary
from .schemas import new_message_frame

logger = obs_logging.get_logger(__name__)

_SENDER_LOCK_SHARDS = 64


class Notifier(Protocol):
	async def push(self, connection: ConnectionHandle, frame: dict[str, Any]) -> None:
		...


class NullNotifier:
	"""Notifier for processes without a realtime transport."""

	async def push(self, connection: ConnectionHandle, frame: dict[str, Any]) -> None:
		return None


class DeliveryPipeline:
	"""Sends direct messages between two users.

	The store is the source of truth: a message is persisted before any push,
	and push failures never surface to the sender. Sends from one sender are
	serialized so they persist in submission order.
	"""

	def __init__(
		self,
		store: Store,
		registry: PresenceRegistry,
		notifier: Optional[Notifier] = None,
		*,
		push_timeout: Optional[float] = None,
		max_length: Optional[int] = None,
	) -> None:
		self._store = store
		self._registry = registry
		self._notifier: Notifier = notifier or NullNotifier()
		self._push_timeout = push_timeout if push_timeout is not None else settings.push_timeout_seconds
		self._max_length = max_length if max_length is not None else settings.message_max_length
		self._sender_locks = tuple(asyncio.Lock() for _ in range(_SENDER_LOCK_SHARDS))

	def _validate(self, sender_id: str, receiver_id: str, content: str) -> None:
		if not isinstance(content, str) or not content.strip():
			raise InvalidArgument("empty_content")
		if len(content) > self._max_length:
			raise InvalidArgument("content_too_long")
		if not receiver_id:
			raise InvalidArgument("missing_receiver")
		if sender_id == receiver_id:
			raise InvalidArgument("cannot_message_self")

	async def send(self, sender_id: str, receiver_id: str, content: str) -> Message:
		self._validate(sender_id, receiver_id, content)
		if await self._store.is_blocked_either_way(sender_id, receiver_id):
			raise Forbidden("blocked")

		lock = self._sender_locks[hash(sender_id) % len(self._sender_locks)]
		async with lock:
			message = await self._store.record_message(sender_id, receiver_id, content)
		obs_metrics.inc_chat_send()

		with get_tracer().start_as_current_span("chat.fan_out") as span:
			span.set_attribute("message.id", message.id)
			await self._fan_out(message)
		return message

	async def _fan_out(self, message: Message) -> None:
		targets = set(self._registry.connections_for(message.sender_id))
		targets.update(self._registry.connections_for(message.receiver_id))
		if not targets:
			return
		frame = new_message_frame(message)
		connections = list(targets)
		results = await asyncio.gather(
			*(self._push_one(connection, frame) for connection in connections),
			return_exceptions=True,
		)
		for connection, result in zip(connections, results):
			if isinstance(result, BaseException):
				obs_metrics.chat_push("failed")
				logger.warning(
					"chat_push_failed",
					extra={"connection": str(connection), "message_id": message.id, "error": repr(result)},
				)
			else:
				obs_metrics.chat_push("delivered")

	async def _push_one(self, connection: ConnectionHandle, frame: dict[str, Any]) -> None:
		await asyncio.wait_for(self._notifier.push(connection, frame), timeout=self._push_timeout)

	async def conversation(self, user_id: str, other_user_id: str) -> List[Message]:
		return await self._store.conversation_between(user_id, other_user_id)

	async def conversations(self, user_id: str) -> List[ConversationSummary]:
		latest = await self._store.latest_message_per_counterpart(user_id)
		return [ConversationSummary.for_user(user_id, message) for message in latest]

	async def mark_read(self, message_id: int, reader_id: str) -> Message:
		message = await self._store.mark_read(message_id, reader_id)
		obs_metrics.inc_chat_read()
		return message
