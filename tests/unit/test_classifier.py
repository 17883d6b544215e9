"""
Tests for error classification.

Rules are evaluated in priority order; the first match decides both the
category and the severity. Unmatched input falls through to UNKNOWN/MEDIUM.

Reference:
- error_monitor/alerts/classifier.py
"""

import pytest

from error_monitor.alerts.classifier import (
    classify_error,
    get_severity_color,
    get_severity_emoji,
)
from error_monitor.alerts.error_types import ErrorCategory, ErrorSeverity


class TestClassifierRules:
    """One representative input per rule."""

    @pytest.mark.parametrize("message,error_name,expected", [
        ("Redis connection to 127.0.0.1:6379 failed - ECONNREFUSED", None,
         (ErrorCategory.REDIS_CONNECTION, ErrorSeverity.CRITICAL)),
        ("connect ECONNREFUSED 127.0.0.1:5432", "Error",
         (ErrorCategory.DATABASE_CONNECTION, ErrorSeverity.CRITICAL)),
        ("Connection terminated unexpectedly", None,
         (ErrorCategory.DATABASE_CONNECTION, ErrorSeverity.CRITICAL)),
        ("timeout exceeded when trying to connect (ETIMEDOUT) to postgres", None,
         (ErrorCategory.DATABASE_CONNECTION, ErrorSeverity.CRITICAL)),
        ("pool error: too many clients", None,
         (ErrorCategory.DATABASE_CONNECTION, ErrorSeverity.CRITICAL)),
        ('relation "users" does not exist', None,
         (ErrorCategory.DATABASE_QUERY, ErrorSeverity.HIGH)),
        ("duplicate key value violates unique constraint", None,
         (ErrorCategory.DATABASE_QUERY, ErrorSeverity.HIGH)),
        ("something broke", "IntegrityError",
         (ErrorCategory.DATABASE_QUERY, ErrorSeverity.HIGH)),
        ("You are being rate limited.", None,
         (ErrorCategory.RATE_LIMIT, ErrorSeverity.LOW)),
        ("Unknown interaction", "DiscordAPIError",
         (ErrorCategory.EXTERNAL_API, ErrorSeverity.MEDIUM)),
        ("request failed with code 10008", None,
         (ErrorCategory.EXTERNAL_API, ErrorSeverity.MEDIUM)),
        ("socket hang up", None,
         (ErrorCategory.NETWORK, ErrorSeverity.HIGH)),
        ("read operation failed", "ReadTimeout",
         (ErrorCategory.NETWORK, ErrorSeverity.HIGH)),
        ("Missing Permissions", None,
         (ErrorCategory.PERMISSION, ErrorSeverity.MEDIUM)),
        ("Validation failed: email is required", None,
         (ErrorCategory.VALIDATION, ErrorSeverity.LOW)),
        ("bad input", "ValidationError",
         (ErrorCategory.VALIDATION, ErrorSeverity.LOW)),
        ("Something unexpected happened", None,
         (ErrorCategory.UNKNOWN, ErrorSeverity.MEDIUM)),
    ])
    def test_rule(self, message, error_name, expected):
        assert tuple(classify_error(message, error_name)) == expected

    def test_matching_is_case_insensitive(self):
        assert classify_error("CONNECTION REFUSED").category == ErrorCategory.DATABASE_CONNECTION
        assert classify_error("x", "integrityerror").category == ErrorCategory.DATABASE_QUERY


class TestClassifierPriority:
    """Earlier rules win when several would match."""

    def test_redis_wins_over_database_connection(self):
        result = classify_error("Redis error: connect ECONNREFUSED 127.0.0.1:6379")
        assert result.category == ErrorCategory.REDIS_CONNECTION

    def test_database_query_wins_over_validation(self):
        result = classify_error('invalid input syntax error at or near "SELECT"')
        assert result.category == ErrorCategory.DATABASE_QUERY

    def test_rate_limit_wins_over_network(self):
        result = classify_error("429 Too Many Requests from upstream network")
        assert result.category == ErrorCategory.RATE_LIMIT

    def test_external_api_wins_over_validation(self):
        result = classify_error("Invalid Form Body")
        assert result.category == ErrorCategory.EXTERNAL_API


class TestClassifierMetadata:
    """HTTP status and upstream error codes from event metadata."""

    def test_status_429_is_rate_limit(self):
        result = classify_error("upstream said no", metadata={'status': 429})
        assert result.category == ErrorCategory.RATE_LIMIT

    def test_status_403_is_permission(self):
        result = classify_error("upstream said no", metadata={'status_code': 403})
        assert result.category == ErrorCategory.PERMISSION

    def test_api_code_is_external_api(self):
        result = classify_error("upstream said no", metadata={'code': 50001})
        assert result.category == ErrorCategory.EXTERNAL_API

    def test_code_50013_is_permission(self):
        result = classify_error("upstream said no", metadata={'code': '50013'})
        assert result.category == ErrorCategory.PERMISSION


class TestClassifierEdgeCases:

    def test_missing_message_is_unknown(self):
        assert tuple(classify_error(None)) == (ErrorCategory.UNKNOWN, ErrorSeverity.MEDIUM)

    def test_empty_message_is_unknown(self):
        assert tuple(classify_error("")) == (ErrorCategory.UNKNOWN, ErrorSeverity.MEDIUM)


class TestSeverityPresentation:

    def test_every_severity_has_emoji_and_color(self):
        for severity in ErrorSeverity:
            assert get_severity_emoji(severity)
            assert isinstance(get_severity_color(severity), int)

    def test_critical_is_red(self):
        assert get_severity_emoji(ErrorSeverity.CRITICAL) == "🔴"
        assert get_severity_color(ErrorSeverity.CRITICAL) == 0xFF0000
