"""JSON logging for the registrations service.

Log calls pass a dotted event name as the message and structured fields via
``extra``::

	_LOG.info("registration.created", extra={"registration_id": ..., "status": ...})

Registrant contact details are redacted and check-in codes are masked
before a line is written, since a code alone is enough to check someone in.
"""

from __future__ import annotations

import json
import logging
import random
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from clubhub.settings import settings

_LOGGER_NAME = "clubhub"

_CONTEXT: ContextVar[Mapping[str, str]] = ContextVar("obs_context", default={})
_CONTEXT_FIELDS = ("request_id", "route", "user_id", "client_ip")

_REDACTED_KEYS = (
	"email",
	"phone",
	"contact",
	"emergency",
	"token",
	"secret",
	"authorization",
	"password",
)
_MASKED_KEYS = ("check_in_code", "code")

# Lifecycle events are never sampled away; they are the audit trail.
_UNSAMPLED_PREFIXES = ("registration.", "waitlist.", "capacity_reconciler.", "reconciliation_sweeper.")

_MAX_STRING_LENGTH = 256

_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


def bind_context(**fields: Optional[str]) -> Token:
	"""Add request scoped fields to every line logged until ``reset_context``."""
	merged = dict(_CONTEXT.get())
	merged.update({key: value for key, value in fields.items() if key in _CONTEXT_FIELDS and value})
	return _CONTEXT.set(merged)


def reset_context(token: Token) -> None:
	_CONTEXT.reset(token)


def current_request_id() -> Optional[str]:
	return _CONTEXT.get().get("request_id")


def _mask_code(value: Any) -> str:
	text = str(value)
	return f"***{text[-2:]}" if len(text) > 2 else "***"


def _clean(key: str, value: Any) -> Any:
	lowered = key.lower()
	if lowered in _MASKED_KEYS:
		return _mask_code(value)
	if any(word in lowered for word in _REDACTED_KEYS):
		return "[redacted]"
	if isinstance(value, str) and len(value) > _MAX_STRING_LENGTH:
		return value[:_MAX_STRING_LENGTH] + "..."
	if isinstance(value, dict):
		return {str(k): _clean(str(k), v) for k, v in value.items()}
	return value


class JSONLogFormatter(logging.Formatter):
	def format(self, record: logging.LogRecord) -> str:  # noqa: A003
		payload: Dict[str, Any] = {
			"ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
			"level": record.levelname.lower(),
			"event": record.getMessage(),
			"logger": record.name,
			"service": settings.service_name,
			"env": settings.environment,
			"commit": settings.git_commit,
		}
		payload.update(_CONTEXT.get())
		for key, value in vars(record).items():
			if key in _STANDARD_ATTRS or key.startswith("_"):
				continue
			payload[key] = _clean(key, value)
		if record.exc_info:
			payload["exc_info"] = self.formatException(record.exc_info)
		return json.dumps(payload, separators=(",", ":"), default=str)


class InfoSamplingFilter(logging.Filter):
	"""Sample routine info lines (per request access logs); keep lifecycle events and warnings."""

	def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
		if record.levelno != logging.INFO:
			return True
		if isinstance(record.msg, str) and record.msg.startswith(_UNSAMPLED_PREFIXES):
			return True
		rate = max(0.0, min(1.0, settings.obs_log_sampling_rate_info))
		return rate >= 1.0 or random.random() < rate


def configure_logging() -> logging.Logger:
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
