"""Tests for secret redaction and identifier hashing in logs."""

from __future__ import annotations

import json
import logging
from io import StringIO

from app.core.config import LogSettings
from app.core.logging import JsonFormatter, SensitiveDataFilter, configure_logging, hash_identifier


def _capture(name: str, handler_filter: logging.Filter | None = None) -> tuple[logging.Logger, StringIO]:
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.handlers.clear()
    logger.propagate = False

    stream = StringIO()
    handler = logging.StreamHandler(stream)
    if handler_filter is not None:
        handler.addFilter(handler_filter)
        handler.setFormatter(logging.Formatter("%(message)s %(admin_key)s %(rate_limit_key)s"))
    else:
        handler.setFormatter(JsonFormatter())
    logger.addHandler(handler)
    return logger, stream


def test_json_formatter_redacts_admin_keys():
    """Ensure operator keys never reach the output."""

    logger, stream = _capture("test_redaction")

    logger.info(
        "admin_auth.success",
        extra={
            "admin_key": "ops-secret-123",
            "X-Admin-Key": "another-secret",
            "safe_field": "visible",
        },
    )

    output = stream.getvalue()

    assert "ops-secret-123" not in output
    assert "another-secret" not in output
    assert "[REDACTED]" in output
    assert "visible" in output


def test_json_formatter_redacts_store_credentials():
    logger, stream = _capture("test_store_redaction")

    logger.info(
        "counter_store.created",
        extra={"redis_url": "redis://:hunter2@cache:6379/0", "backend": "redis"},
    )

    record = json.loads(stream.getvalue())

    assert record["redis_url"] == "[REDACTED]"
    assert record["backend"] == "redis"


def test_json_formatter_hashes_caller_identifiers():
    logger, stream = _capture("test_identifier_hashing")

    logger.info(
        "rate_limit.exceeded",
        extra={
            "rate_limit_key": "203.0.113.7:42",
            "email": "user@example.com",
            "policy": "login",
        },
    )

    record = json.loads(stream.getvalue())

    assert record["rate_limit_key"] == hash_identifier("203.0.113.7:42")
    assert record["email"] == hash_identifier("user@example.com")
    assert record["policy"] == "login"
    assert "user@example.com" not in stream.getvalue()


def test_safe_fields_pass_through():
    logger, stream = _capture("test_safe_fields")

    logger.info(
        "rate_limit.allowed",
        extra={
            "request_id": "req-123",
            "policy": "api",
            "key_hash": hash_identifier("203.0.113.7"),
            "remaining": 99,
        },
    )

    record = json.loads(stream.getvalue())

    assert record["request_id"] == "req-123"
    assert record["remaining"] == 99
    assert record["key_hash"] == hash_identifier("203.0.113.7")
    assert "[REDACTED]" not in stream.getvalue()


def test_nested_fields_are_scrubbed():
    logger, stream = _capture("test_nested")

    logger.info(
        "request.headers",
        extra={
            "headers": {
                "x-admin-key": "secret-key",
                "X-Forwarded-For": "198.51.100.1",
                "user-agent": "pytest",
            },
        },
    )

    record = json.loads(stream.getvalue())

    assert record["headers"]["x-admin-key"] == "[REDACTED]"
    assert record["headers"]["X-Forwarded-For"] == hash_identifier("198.51.100.1")
    assert record["headers"]["user-agent"] == "pytest"


def test_filter_scrubs_records_for_plain_formatters():
    logger, stream = _capture("test_plain_filter", SensitiveDataFilter())

    logger.info("plain", extra={"admin_key": "ops-secret", "rate_limit_key": "203.0.113.7"})

    output = stream.getvalue()

    assert "ops-secret" not in output
    assert "203.0.113.7" not in output
    assert hash_identifier("203.0.113.7") in output


def test_hash_identifier_is_stable_and_short():
    digest = hash_identifier("203.0.113.7")

    assert digest == hash_identifier("203.0.113.7")
    assert digest != hash_identifier("203.0.113.8")
    assert len(digest) == 16


def test_debug_overrides_configured_level():
    root = logging.getLogger()
    log_settings = LogSettings(level="WARNING")
    try:
        configure_logging(log_settings, debug=True)
        assert root.level == logging.DEBUG

        configure_logging(log_settings)
        assert root.level == logging.WARNING
    finally:
        configure_logging(log_settings)
