"""Structured JSON logging with per-request and per-connection context."""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from nearmatch.obs.tracing import current_trace_ids
from nearmatch.settings import settings

_LOGGER_NAME = "nearmatch"

# emitted on every record, in this order, whenever bound
_CONTEXT: Dict[str, ContextVar[Optional[str]]] = {
	"request_id": ContextVar("obs_request_id", default=None),
	"route": ContextVar("obs_route", default=None),
	"user_id": ContextVar("obs_user_id", default=None),
	"sid": ContextVar("obs_sid", default=None),
}

# message bodies and coordinates never reach the logs
_REDACTED_KEYS = frozenset({"content", "latitude", "longitude", "lat", "lon"})
_REDACTED_FRAGMENTS = ("token", "secret", "password", "authorization")

_MAX_STRING_LENGTH = 256

# attributes every LogRecord carries; anything else came in through `extra`
_RESERVED_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "taskName"}


def bind_context(**fields: Optional[str]) -> Dict[str, Token]:
	"""Bind request_id/route/user_id/sid for the current task; returns reset tokens."""
	tokens: Dict[str, Token] = {}
	for name, value in fields.items():
		if value is not None:
			tokens[name] = _CONTEXT[name].set(value)
	return tokens


def reset_context(tokens: Dict[str, Token]) -> None:
	for name, token in tokens.items():
		_CONTEXT[name].reset(token)


def current_request_id() -> Optional[str]:
	return _CONTEXT["request_id"].get()


def _is_sensitive(key: str) -> bool:
	lowered = key.lower()
	return lowered in _REDACTED_KEYS or any(fragment in lowered for fragment in _REDACTED_FRAGMENTS)


def _sanitize_field(key: str, value: Any) -> Any:
	if _is_sensitive(key):
		return "[redacted]"
	if isinstance(value, (int, float, bool)) or value is None:
		return value
	text = value if isinstance(value, str) else str(value)
	return text if len(text) <= _MAX_STRING_LENGTH else f"{text[:_MAX_STRING_LENGTH]}…"


class JSONLogFormatter(logging.Formatter):
	"""Emit logs as JSON objects with structured fields."""

	def format(self, record: logging.LogRecord) -> str:  # noqa: A003 (match logging api)
		payload: Dict[str, object] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"msg": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		for name, var in _CONTEXT.items():
			value = var.get()
			if value:
				payload[name] = value
		trace_ids = current_trace_ids()
		if trace_ids:
			payload["trace_id"], payload["span_id"] = trace_ids
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		for key, value in record.__dict__.items():
			if key in _RESERVED_ATTRS or key in payload:
				continue
			payload[key] = _sanitize_field(key, value)
		return json.dumps(payload, separators=(",", ":"))


class InfoSamplingFilter(logging.Filter):
	"""Randomly sample info-level logs, keep warnings/errors."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		rate = max(0.0, min(1.0, settings.obs_log_sampling_rate_info))
		return rate >= 1.0 or random.random() < rate


def configure_logging() -> logging.Logger:
	"""Configure root logger with JSON formatting and sampling."""
	root = logging.getLogger()
	root.handlers.clear()
	handler = logging.StreamHandler()
	handler.setFormatter(JSONLogFormatter())
	handler.addFilter(InfoSamplingFilter())
	root.addHandler(handler)
	root.setLevel(settings.obs_log_level)
	return logging.getLogger(_LOGGER_NAME)


def get_logger(name: Optional[str] = None) -> logging.Logger:
	return logging.getLogger(name or _LOGGER_NAME)
