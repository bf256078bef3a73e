"""Per-connection state machine binding live connections to users."""

from __future__ import annotations

import enum
import json
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from nearmatch.domain.errors import Unauthenticated
from nearmatch.domain.presence import ConnectionHandle, PresenceRegistry
from nearmatch.infra.auth import AuthenticatedUser, verify_access_jwt
from nearmatch.obs import logging as obs_logging
from nearmatch.obs import metrics as obs_metrics

logger = obs_logging.get_logger(__name__)

AUTH_FRAME = "auth"


class ConnectionState(str, enum.Enum):
	CONNECTED = "connected"
	AUTHENTICATED = "authenticated"
	CLOSED = "closed"


@dataclass(slots=True)
class ConnectionSession:
	state: ConnectionState = ConnectionState.CONNECTED
	# identity verified at handshake, if the client presented one
	session_user: Optional[str] = None
	user_id: Optional[str] = None


class ConnectionLifecycle:
	"""Drives CONNECTED -> AUTHENTICATED -> CLOSED for every live connection.

	Malformed or unexpected frames are logged and dropped; they never close the
	connection. ``close`` releases the registry entry whenever the connection had
	authenticated, whatever the reason for the close.
	"""

	def __init__(
		self,
		registry: PresenceRegistry,
		*,
		allow_asserted_identity: bool = False,
		token_verifier: Callable[[str], AuthenticatedUser] = verify_access_jwt,
	) -> None:
		self._registry = registry
		self._allow_asserted_identity = allow_asserted_identity
		self._verify_token = token_verifier
		self._sessions: Dict[ConnectionHandle, ConnectionSession] = {}

	def open(self, connection: ConnectionHandle, session_user: Optional[str] = None) -> ConnectionSession:
		session = ConnectionSession(session_user=session_user)
		self._sessions[connection] = session
		return session

	def state_of(self, connection: ConnectionHandle) -> ConnectionState:
		session = self._sessions.get(connection)
		return session.state if session else ConnectionState.CLOSED

	def user_of(self, connection: ConnectionHandle) -> Optional[str]:
		session = self._sessions.get(connection)
		if session and session.state is ConnectionState.AUTHENTICATED:
			return session.user_id
		return None

	def _reject(self, connection: ConnectionHandle, reason: str) -> None:
		obs_metrics.socket_frame_rejected(reason)
		logger.warning("socket_frame_ignored", extra={"connection": str(connection), "reason": reason})

	async def receive(self, connection: ConnectionHandle, raw: Any) -> Optional[str]:
		"""Handle one inbound frame; returns the user id when it authenticated the connection."""
		session = self._sessions.get(connection)
		if session is None or session.state is ConnectionState.CLOSED:
			self._reject(connection, "unknown_connection")
			return None

		frame = raw
		if isinstance(raw, (bytes, bytearray)):
			try:
				raw = raw.decode("utf-8")
			except UnicodeDecodeError:
				self._reject(connection, "malformed")
				return None
		if isinstance(raw, str):
			try:
				frame = json.loads(raw)
			except ValueError:
				self._reject(connection, "malformed")
				return None
		if not isinstance(frame, dict):
			self._reject(connection, "not_an_object")
			return None

		if frame.get("type") != AUTH_FRAME:
			self._reject(connection, "unknown_type")
			return None
		return await self._authenticate(connection, session, frame)

	def _resolve_identity(self, connection: ConnectionHandle, session: ConnectionSession, frame: dict) -> Optional[str]:
		claimed = frame.get("userId")
		claimed = str(claimed).strip() if claimed is not None else ""
		if session.session_user:
			if claimed and claimed != session.session_user:
				self._reject(connection, "identity_mismatch")
				return None
			return session.session_user

		token = frame.get("token")
		if token:
			try:
				verified = self._verify_token(str(token)).id
			except Unauthenticated:
				self._reject(connection, "invalid_token")
				return None
			if claimed and claimed != verified:
				self._reject(connection, "identity_mismatch")
				return None
			return verified

		if self._allow_asserted_identity and claimed:
			return claimed
		self._reject(connection, "unverified_identity")
		return None

	async def _authenticate(self, connection: ConnectionHandle, session: ConnectionSession, frame: dict) -> Optional[str]:
		if session.state is ConnectionState.AUTHENTICATED:
			self._reject(connection, "already_authenticated")
			return None
		user_id = self._resolve_identity(connection, session, frame)
		if user_id is None:
			return None

		session.state = ConnectionState.AUTHENTICATED
		session.user_id = user_id
		try:
			await self._registry.register(user_id, connection)
		except Exception:
			session.state = ConnectionState.CONNECTED
			session.user_id = None
			logger.exception("socket_register_failed", extra={"connection": str(connection)})
			return None

		if self._sessions.get(connection) is not session:
			# closed while registering
			await self._registry.unregister(connection)
			return None
		logger.info("socket_authenticated", extra={"connection": str(connection), "user_id": user_id})
		return user_id

	async def close(self, connection: ConnectionHandle) -> Optional[str]:
		session = self._sessions.pop(connection, None)
		if session is None:
			return None
		previous = session.state
		session.state = ConnectionState.CLOSED
		if previous is not ConnectionState.AUTHENTICATED:
			return None
		return await self._registry.unregister(connection)
