"""Structured logging for admission decisions.

Every log line is a JSON object carrying the request id of the request being
admitted. Two kinds of fields never reach the output in clear:

- secrets (operator keys, Redis credentials, cookies) are replaced with
  ``[REDACTED]``;
- caller identifiers (rate limit keys, client addresses, user ids, emails)
  are replaced with ``hash_identifier(value)`` so a caller's decisions can
  still be correlated across lines without storing who the caller is.
"""

from __future__ import annotations

import hashlib
import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from app.core.config import LogSettings, settings

REDACTED = "[REDACTED]"

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

SENSITIVE_KEYS_DEFAULT: frozenset[str] = frozenset(
    {
        "admin_key",
        "x-admin-key",
        "app_admin_api_keys",
        "api_key",
        "x-api-key",
        "authorization",
        "cookie",
        "set-cookie",
        "password",
        "redis_password",
        "redis_url",
        "secret",
        "token",
    }
)

IDENTIFIER_KEYS_DEFAULT: frozenset[str] = frozenset(
    {
        "rate_limit_key",
        "client_address",
        "x-forwarded-for",
        "user_id",
        "email",
    }
)

# LogRecord attributes that are rendered explicitly or not at all
_RESERVED_ATTRS = frozenset(
    {
        "args",
        "asctime",
        "created",
        "exc_info",
        "exc_text",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "message",
        "module",
        "msecs",
        "msg",
        "name",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack",
        "stack_info",
        "taskName",
        "thread",
        "threadName",
    }
)


def set_request_id(request_id: str | None) -> None:
    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    """Request id of the request currently being handled, if any."""

    return _request_id_var.get()


def clear_request_id() -> None:
    _request_id_var.set(None)


def hash_identifier(value: str) -> str:
    """First 16 hex chars of the SHA-256 digest of a caller identifier."""

    return hashlib.sha256(value.encode()).hexdigest()[:16]


class FieldScrubber:
    """Redacts secrets and hashes caller identifiers in structured fields.

    Field names are matched case-insensitively, at any nesting depth inside
    mappings, lists and tuples.
    """

    def __init__(
        self,
        sensitive_keys: Iterable[str] | None = None,
        identifier_keys: Iterable[str] | None = None,
    ) -> None:
        self.sensitive_keys = {k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT)}
        self.identifier_keys = {k.lower() for k in (identifier_keys or IDENTIFIER_KEYS_DEFAULT)}

    def scrub_field(self, name: str, value: Any) -> Any:
        lowered = name.lower()
        if lowered in self.sensitive_keys:
            return REDACTED
        if lowered in self.identifier_keys and value is not None:
            return hash_identifier(str(value))
        return self.scrub_value(value)

    def scrub_value(self, value: Any) -> Any:
        if isinstance(value, Mapping):
            return {k: self.scrub_field(str(k), v) for k, v in value.items()}
        if isinstance(value, (list, tuple)):
            return type(value)(self.scrub_value(v) for v in value)
        return value

    def record_fields(self, record: LogRecord) -> dict[str, Any]:
        """Scrubbed ``extra`` fields of a record."""

        return {
            key: self.scrub_field(key, value)
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        }


class RequestIdFilter(logging.Filter):
    """Attach request_id from context when absent on the record."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Scrub record fields in place, for handlers with non-JSON formatters."""

    def __init__(
        self,
        sensitive_keys: Iterable[str] | None = None,
        identifier_keys: Iterable[str] | None = None,
    ) -> None:
        super().__init__()
        self.scrubber = FieldScrubber(sensitive_keys, identifier_keys)

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in self.scrubber.record_fields(record).items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per record: envelope fields, then scrubbed extras."""

    def __init__(
        self,
        *,
        sensitive_keys: Iterable[str] | None = None,
        identifier_keys: Iterable[str] | None = None,
        ensure_ascii: bool = True,
    ) -> None:
        super().__init__()
        self.scrubber = FieldScrubber(sensitive_keys, identifier_keys)
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id

        payload.update(self.scrubber.record_fields(record))

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    if log_settings.output != "file":
        return logging.StreamHandler(sys.stdout)

    file_path = Path(log_settings.file_path or "logs/app.log")
    file_path.parent.mkdir(parents=True, exist_ok=True)
    if not log_settings.max_bytes:
        return logging.FileHandler(file_path, encoding="utf-8")
    return RotatingFileHandler(
        file_path,
        maxBytes=log_settings.max_bytes,
        backupCount=log_settings.backup_count,
        encoding="utf-8",
    )


def configure_logging(log_settings: LogSettings | None = None, *, debug: bool = False) -> None:
    """Install a single root handler according to ``LOG_*`` settings.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
        debug: Log at DEBUG regardless of ``LOG_LEVEL`` (``APP_DEBUG``).
    """

    cfg = log_settings or settings.log

    handler = _build_handler(cfg)
    handler.addFilter(RequestIdFilter())

    if cfg.format == "plain":
        # JsonFormatter scrubs its own output; identifiers must be hashed once
        handler.addFilter(SensitiveDataFilter())
        handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s %(message)s")
        )
    else:
        handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    level = logging.DEBUG if debug else getattr(logging, cfg.level.upper(), logging.INFO)
    root_logger.setLevel(level)

    # Avoid double logging from uvicorn if it gets re-configured
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
