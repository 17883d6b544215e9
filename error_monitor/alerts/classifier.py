"""
Error Classifier

Maps a raw error message / exception name to a (category, severity) pair
using case-insensitive keyword matching. Rules are evaluated in priority
order and the first match wins; unmatched input falls through to
UNKNOWN/MEDIUM.

Priority:
    1. Redis connection         -> REDIS_CONNECTION / CRITICAL
    2. Database connection      -> DATABASE_CONNECTION / CRITICAL
    3. Database query / schema  -> DATABASE_QUERY / HIGH
    4. Upstream rate limiting   -> RATE_LIMIT / LOW
    5. Upstream API errors      -> EXTERNAL_API / MEDIUM
    6. Network errors           -> NETWORK / HIGH
    7. Permission errors        -> PERMISSION / MEDIUM
    8. Validation errors        -> VALIDATION / LOW
    9. Anything else            -> UNKNOWN / MEDIUM

Usage:
    from error_monitor.alerts.classifier import classify_error

    result = classify_error("ECONNREFUSED 127.0.0.1:5432", "Error")
    result.category   # ErrorCategory.DATABASE_CONNECTION
    result.severity   # ErrorSeverity.CRITICAL
"""

from typing import Any, Dict, NamedTuple, Optional

from error_monitor.alerts.error_types import ErrorCategory, ErrorSeverity


class Classification(NamedTuple):
    category: ErrorCategory
    severity: ErrorSeverity


DB_CONNECTION_PHRASES = (
    "connection refused",
    "econnrefused",
    "connection terminated",
    "connection reset",
    "an idle client has experienced an error",
    "server closed the connection unexpectedly",
)
DB_CONNECTION_NAMES = ("connectionerror", "connectionrefusederror", "interfaceerror")

DB_QUERY_PHRASES = ("syntax error", "duplicate key", "violates")
DB_QUERY_NAMES = ("queryerror", "databaseerror", "programmingerror", "integrityerror")

RATE_LIMIT_PHRASES = ("rate limit", "429", "you are being rate limited", "too many requests")

API_ERROR_NAMES = ("discordapierror", "apierror")
API_ERROR_PHRASES = (
    "unknown interaction",
    "interaction has already been acknowledged",
    "invalid form body",
    "unknown message",
    "unknown channel",
    "missing access",
)
# Missing Access, Unknown Message, Unknown Interaction
API_ERROR_CODES = ("50001", "10008", "10062")

NETWORK_PHRASES = (
    "etimedout",
    "enotfound",
    "econnreset",
    "socket hang up",
    "network",
    "fetch failed",
    "timed out",
)
NETWORK_NAMES = ("timeout", "connecttimeout", "readtimeout")

PERMISSION_PHRASES = ("permission", "forbidden", "50013", "missing permissions")
PERMISSION_NAMES = ("permissionerror",)

VALIDATION_PHRASES = ("validation", "invalid")
VALIDATION_NAMES = ("validationerror", "zoderror")


def _contains_any(text: str, needles) -> bool:
    return any(needle in text for needle in needles)


def _metadata_value(metadata: Optional[Dict[str, Any]], *keys: str) -> str:
    if not metadata:
        return ""
    for key in keys:
        value = metadata.get(key)
        if value is not None:
            return str(value)
    return ""


def classify_error(
    message: Optional[str],
    error_name: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None
) -> Classification:
    """
    Classify an error based on its message and characteristics.

    Args:
        message: Error message (None is treated as empty)
        error_name: Exception class name, if known
        metadata: Event fields; ``status``/``status_code`` and ``code`` are
            consulted for HTTP status and upstream API error codes

    Returns:
        Classification(category, severity)
    """
    lower_message = str(message or "").lower()
    lower_name = str(error_name or "").lower()
    status = _metadata_value(metadata, 'status', 'status_code', 'http_status')
    code = _metadata_value(metadata, 'code')

    # Redis is checked before generic DB so "redis ... ECONNREFUSED" stays Redis
    if "redis" in lower_message and _contains_any(
        lower_message, ("error", "connection", "econnrefused")
    ):
        return Classification(ErrorCategory.REDIS_CONNECTION, ErrorSeverity.CRITICAL)

    if (
        _contains_any(lower_message, DB_CONNECTION_PHRASES)
        or ("etimedout" in lower_message and "postgres" in lower_message)
        or ("pool" in lower_message and "error" in lower_message)
        or _contains_any(lower_name, DB_CONNECTION_NAMES)
    ):
        return Classification(ErrorCategory.DATABASE_CONNECTION, ErrorSeverity.CRITICAL)

    if (
        _contains_any(lower_message, DB_QUERY_PHRASES)
        or ("relation" in lower_message and "does not exist" in lower_message)
        or ("column" in lower_message and "does not exist" in lower_message)
        or _contains_any(lower_name, DB_QUERY_NAMES)
    ):
        return Classification(ErrorCategory.DATABASE_QUERY, ErrorSeverity.HIGH)

    if _contains_any(lower_message, RATE_LIMIT_PHRASES) or status == "429":
        return Classification(ErrorCategory.RATE_LIMIT, ErrorSeverity.LOW)

    if (
        _contains_any(lower_name, API_ERROR_NAMES)
        or _contains_any(lower_message, API_ERROR_PHRASES)
        or _contains_any(lower_message, API_ERROR_CODES)
        or code in API_ERROR_CODES
    ):
        return Classification(ErrorCategory.EXTERNAL_API, ErrorSeverity.MEDIUM)

    if _contains_any(lower_message, NETWORK_PHRASES) or _contains_any(lower_name, NETWORK_NAMES):
        return Classification(ErrorCategory.NETWORK, ErrorSeverity.HIGH)

    if (
        _contains_any(lower_message, PERMISSION_PHRASES)
        or _contains_any(lower_name, PERMISSION_NAMES)
        or status == "403"
        or code == "50013"
    ):
        return Classification(ErrorCategory.PERMISSION, ErrorSeverity.MEDIUM)

    if _contains_any(lower_message, VALIDATION_PHRASES) or _contains_any(lower_name, VALIDATION_NAMES):
        return Classification(ErrorCategory.VALIDATION, ErrorSeverity.LOW)

    return Classification(ErrorCategory.UNKNOWN, ErrorSeverity.MEDIUM)


SEVERITY_EMOJI = {
    ErrorSeverity.CRITICAL: "🔴",
    ErrorSeverity.HIGH: "🟠",
    ErrorSeverity.MEDIUM: "🟡",
    ErrorSeverity.LOW: "🔵",
}

# Decimal RGB, the format webhook embeds expect
SEVERITY_COLOR = {
    ErrorSeverity.CRITICAL: 0xFF0000,  # Red
    ErrorSeverity.HIGH: 0xFF6B00,      # Orange
    ErrorSeverity.MEDIUM: 0xFFC107,    # Yellow
    ErrorSeverity.LOW: 0x17A2B8,       # Teal
}


def get_severity_emoji(severity: ErrorSeverity) -> str:
    """Human-readable emoji for the severity level."""
    return SEVERITY_EMOJI.get(severity, "⚪")


def get_severity_color(severity: ErrorSeverity) -> int:
    """Embed color for the severity level."""
    return SEVERITY_COLOR.get(severity, 0x808080)
