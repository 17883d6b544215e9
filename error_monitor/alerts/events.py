"""
Event ingestion helpers.

Builds RawEvents from producer fields and strips secrets from metadata.

Security contract: any metadata key that contains (case-insensitively) one
of SENSITIVE_KEYS is dropped, at every nesting level, before the metadata
is retained in a bucket or included in an outbound message.
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from error_monitor.alerts.error_types import RawEvent

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = (
    "password",
    "token",
    "secret",
    "apikey",
    "api_key",
    "authorization",
    "cookie",
    "credential",
    "private",
)

# Fields consumed into RawEvent attributes rather than kept as metadata
STANDARD_FIELDS = frozenset({"level", "message", "timestamp", "stack", "error", "splat", "exc_info"})


def is_sensitive_key(key: Any) -> bool:
    lower_key = str(key).lower()
    return any(sensitive in lower_key for sensitive in SENSITIVE_KEYS)


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, Mapping):
        return sanitize_metadata(value)
    if isinstance(value, (list, tuple)):
        return [_sanitize_value(item) for item in value]
    return value


def sanitize_metadata(metadata: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Copy of metadata without sensitive keys (recursively)."""
    if not metadata:
        return {}
    return {
        key: _sanitize_value(value)
        for key, value in metadata.items()
        if not is_sensitive_key(key)
    }


def to_utc(value: Any) -> Optional[datetime]:
    """Coerce datetime / epoch seconds / ISO string to an aware UTC datetime."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        except ValueError:
            logger.debug(f"Ignoring unparseable event timestamp: {value!r}")
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def format_exception_stack(error: BaseException) -> Optional[str]:
    if error.__traceback__ is None:
        return None
    return "".join(traceback.format_exception(type(error), error, error.__traceback__))


def build_raw_event(
    message: Optional[str],
    level: str = "error",
    fields: Optional[Mapping[str, Any]] = None
) -> RawEvent:
    """
    Build a RawEvent from producer fields.

    Recognized fields:
        stack:      stack trace text
        error:      exception instance, or mapping with name/stack
        name:       error name (also kept as metadata)
        timestamp:  datetime, epoch seconds or ISO-8601 string
    Everything else (except the standard fields) becomes metadata.
    """
    fields = dict(fields or {})
    error = fields.get('error')
    stack = fields.get('stack')
    error_name = None

    if isinstance(error, BaseException):
        error_name = type(error).__name__
        stack = stack or format_exception_stack(error)
        if not message:
            message = str(error)
    elif isinstance(error, Mapping):
        error_name = error.get('name')
        stack = stack or error.get('stack')
        if not message:
            message = error.get('message')

    error_name = error_name or fields.get('name') or fields.get('error_name')

    return RawEvent(
        message="" if message is None else str(message),
        level=str(level or "error"),
        error_name=str(error_name) if error_name else None,
        stack_trace=str(stack) if stack else None,
        metadata={k: v for k, v in fields.items() if k not in STANDARD_FIELDS},
        timestamp=to_utc(fields.get('timestamp')),
    )
