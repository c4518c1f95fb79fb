import contextvars
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any

# Applied in order; Stripe keys go before the generic bearer rule.
REDACTION_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}"), "[REDACTED_EMAIL]"),
    (re.compile(r"(?<!\d)(?:\+33\s?|0)[1-9](?:[\s.-]?\d{2}){4}(?!\d)"), "[REDACTED_PHONE]"),
    (re.compile(r"\bFR\d{2}(?:\s?[A-Z0-9]{4}){5}\s?[A-Z0-9]{3}\b"), "[REDACTED_IBAN]"),
    (re.compile(r"\b(?:sk|rk|whsec)_(?:test_|live_)?[A-Za-z0-9]+"), "[REDACTED_KEY]"),
    (re.compile(r"(?i)\bauthorization\s*[:=]\s*\S+"), "authorization=[REDACTED_TOKEN]"),
    (re.compile(r"(?i)bearer\s+[A-Za-z0-9._\-]+"), "Bearer [REDACTED_TOKEN]"),
)
# Values under these keys are dropped whatever they contain.
SENSITIVE_KEYS = frozenset(
    {
        "email",
        "client_email",
        "provider_email",
        "recipient",
        "phone",
        "authorization",
        "token",
        "api_key",
        "secret_key",
        "password",
    }
)

LOG_CONTEXT: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar("log_context", default={})
_RESERVED_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}


def redact_pii(value: str) -> str:
    for pattern, replacement in REDACTION_RULES:
        value = pattern.sub(replacement, value)
    return value


def _redact(value: Any, key: str | None = None) -> Any:
    if key is not None and key.lower() in SENSITIVE_KEYS:
        return "[REDACTED]"
    if isinstance(value, str):
        return redact_pii(value)
    if isinstance(value, dict):
        return {k: _redact(v, k) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_redact(item) for item in value]
    return value


def update_log_context(**kwargs: Any) -> dict[str, Any]:
    """Attach fields (request id, booking id, admin) to every later log line of this task."""
    merged = {**LOG_CONTEXT.get({}), **{k: v for k, v in kwargs.items() if v is not None}}
    LOG_CONTEXT.set(merged)
    return merged


def clear_log_context() -> None:
    LOG_CONTEXT.set({})


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    fields = {
        key: value
        for key, value in record.__dict__.items()
        if key not in _RESERVED_ATTRS and not key.startswith("_")
    }
    nested = fields.pop("extra", None)
    if isinstance(nested, dict):
        fields.update(nested)
    return fields


class RedactingJsonFormatter(logging.Formatter):
    """One JSON object per line, with contact details and secrets masked."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_pii(record.getMessage()),
        }
        entry.update(_redact(LOG_CONTEXT.get({})))
        entry.update(_redact(_record_fields(record)))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc_type"] = record.exc_info[0].__name__
        return json.dumps(entry, ensure_ascii=False, default=str)


def configure_logging(level: int = logging.INFO) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(RedactingJsonFormatter())
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)
