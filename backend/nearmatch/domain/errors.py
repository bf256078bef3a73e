"""Domain-level exceptions shared by the messaging and matching core."""

from __future__ import annotations


class CoreError(Exception):
	"""Base class for typed failures surfaced by core operations."""

	reason: str = "unknown"

	def __init__(self, reason: str | None = None) -> None:
		super().__init__(reason or self.reason)
		if reason:
			self.reason = reason


class InvalidArgument(CoreError):
	reason = "invalid_argument"


class NotFound(CoreError):
	reason = "not_found"


class Forbidden(CoreError):
	reason = "forbidden"


class Conflict(CoreError):
	reason = "conflict"


class Unauthenticated(CoreError):
	reason = "unauthenticated"
