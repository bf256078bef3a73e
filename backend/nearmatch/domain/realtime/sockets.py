"""Socket.IO namespace carrying the realtime frame protocol."""

from __future__ import annotations

from typing import Any, Optional

import socketio

from nearmatch.domain.errors import Unauthenticated
from nearmatch.infra.auth import resolve_socket_identity
from nearmatch.obs import logging as obs_logging
from nearmatch.obs import metrics as obs_metrics

from .lifecycle import ConnectionLifecycle

logger = obs_logging.get_logger(__name__)


class RealtimeNamespace(socketio.AsyncNamespace):
	"""Binds Socket.IO connect/message/disconnect events to the connection lifecycle.

	Frames travel as the ``message`` event in both directions. The namespace also
	acts as the delivery pipeline's notifier, pushing frames to a single sid.
	"""

	def __init__(self, lifecycle: ConnectionLifecycle, namespace: str = "/") -> None:
		super().__init__(namespace)
		self.lifecycle = lifecycle

	async def on_connect(self, sid: str, environ: dict, auth: Optional[dict] = None) -> None:
		try:
			session_user = resolve_socket_identity(environ, auth if isinstance(auth, dict) else None)
		except Unauthenticated:
			obs_metrics.socket_frame_rejected("invalid_token")
			raise socketio.exceptions.ConnectionRefusedError("invalid_token") from None
		self.lifecycle.open(sid, session_user=session_user)
		obs_metrics.socket_connected(self.namespace)

	async def on_message(self, sid: str, data: Any) -> None:
		obs_metrics.socket_event(self.namespace, "message")
		tokens = obs_logging.bind_context(sid=sid)
		try:
			await self.lifecycle.receive(sid, data)
		except Exception:
			# a bad frame must never take the connection down
			logger.exception("socket_frame_failed")
		finally:
			obs_logging.reset_context(tokens)

	async def on_disconnect(self, sid: str, reason: Optional[str] = None) -> None:
		tokens = obs_logging.bind_context(sid=sid)
		try:
			user_id = await self.lifecycle.close(sid)
			if user_id:
				logger.info("socket_closed", extra={"user_id": user_id, "reason": reason})
		except Exception:
			# the registry keeps a failed offline write owed and retries it
			logger.exception("socket_close_failed")
		finally:
			obs_metrics.socket_disconnected(self.namespace)
			obs_logging.reset_context(tokens)

	async def push(self, connection: str, frame: dict[str, Any]) -> None:
		obs_metrics.socket_event(self.namespace, frame.get("type", "message"))
		await self.send(frame, to=connection)
