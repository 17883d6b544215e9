"""
Tests for notification rendering and size limits.

Reference:
- error_monitor/alerts/rendering.py
"""

from datetime import datetime, timedelta, timezone

from error_monitor.alerts.error_types import (
    ErrorBucket,
    ErrorCategory,
    ErrorSeverity,
    NormalizedError,
    TransportStats,
)
from error_monitor.alerts.rendering import (
    MessageLimits,
    render_bucket,
    render_simplified,
    render_summary,
    truncate,
)

NOW = datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)


def make_bucket(message="Validation failed", stack_trace=None, source=None, count=1,
                severity=ErrorSeverity.LOW, category=ErrorCategory.VALIDATION, fingerprint="a1b2c3d4e5f60718"):
    error = NormalizedError(
        fingerprint=fingerprint,
        category=category,
        severity=severity,
        message=message,
        stack_trace=stack_trace,
        source=source,
        metadata={},
        timestamp=NOW,
    )
    return ErrorBucket(
        fingerprint=fingerprint,
        category=category,
        severity=severity,
        representative_error=error,
        count=count,
        first_occurrence=NOW,
        last_occurrence=NOW + timedelta(seconds=25),
    )


class TestTruncate:

    def test_short_text_unchanged(self):
        assert truncate("abc", 10) == "abc"

    def test_long_text_marked(self):
        assert truncate("abcdefghij", 6) == "abc..."

    def test_tiny_limit(self):
        assert truncate("abcdefghij", 2) == "ab"


class TestRenderBucket:

    def test_single_occurrence(self):
        message = render_bucket(make_bucket())

        assert message.title == "🔵 VALIDATION"
        assert message.description == "Validation failed"
        assert [f.name for f in message.fields] == ["Fingerprint"]
        assert message.fields[0].value == "`a1b2c3d4e5f60718`"
        assert message.is_summary is False

    def test_repeated_occurrences(self):
        message = render_bucket(make_bucket(count=12, source="src/forms.ts"))

        assert message.title == "🔵 VALIDATION (x12)"
        fields = {f.name: f.value for f in message.fields}
        assert fields["Occurrences"] == "**12** times, from 22:13:20 to 22:13:45 UTC"
        assert fields["Source"] == "`src/forms.ts`"

    def test_stack_trace_block(self):
        message = render_bucket(make_bucket(stack_trace="at validate (/app/src/forms.ts:10:5)"))
        assert message.description.endswith("**Stack Trace:**\n```at validate (/app/src/forms.ts:10:5)```")

    def test_long_message_truncated(self):
        message = render_bucket(make_bucket(message="x" * 5000))
        assert len(message.description) == 2000
        assert message.description.endswith("...")

    def test_stack_skipped_without_room(self):
        limits = MessageLimits(max_message_length=100, max_description_length=150)
        message = render_bucket(make_bucket(message="x" * 100, stack_trace="frame\n" * 50), limits)
        assert "Stack Trace" not in message.description

    def test_falls_back_to_simplified_over_total_limit(self):
        limits = MessageLimits(max_total_length=300)
        bucket = make_bucket(message="y" * 1000, stack_trace="frame\n" * 200)

        assert render_bucket(bucket, limits) == render_simplified(bucket, limits)

    def test_simplified_layout(self):
        message = render_simplified(make_bucket(message="z" * 900, stack_trace="frame", count=3))

        assert message.title == "🔵 VALIDATION (x3)"
        assert len(message.description) == 500
        assert [f.name for f in message.fields] == ["Fingerprint"]

    def test_critical_color(self):
        message = render_bucket(make_bucket(severity=ErrorSeverity.CRITICAL,
                                            category=ErrorCategory.DATABASE_CONNECTION))
        assert message.color == 0xFF0000
        assert message.title == "🔴 DATABASE_CONNECTION"


class TestRenderSummary:

    def test_sections(self):
        suppressed = [
            make_bucket(count=4, fingerprint="1111111111111111"),
            make_bucket(count=2, fingerprint="2222222222222222"),
            make_bucket(count=1, fingerprint="3333333333333333", category=ErrorCategory.NETWORK),
        ]
        updated = [make_bucket(count=9, fingerprint="4444444444444444", category=ErrorCategory.DATABASE_QUERY)]
        stats = TransportStats(total_received=20, total_sent=3, total_aggregated=10, total_suppressed=7)

        message = render_summary(
            suppressed, updated, stats, {'used': 15, 'max': 15, 'window_ms': 600_000}, NOW
        )

        assert message.title == "📊 Error Summary Report"
        assert message.is_summary is True
        fields = {f.name: f.value for f in message.fields}
        assert fields["Rate Limit Status"] == "15/15 messages used (10 minute window)"
        assert fields["Suppressed Errors (7 total, 3 kinds)"] == (
            "- **VALIDATION**: 6 errors (11111111, 22222222)\n"
            "- **NETWORK**: 1 errors (33333333)"
        )
        assert fields["Still Occurring After Notification (1)"] == (
            "- **DATABASE_QUERY** `44444444`: 9 total, last at 22:13:45"
        )
        assert "Received: **20**" in fields["Statistics"]
        assert "Failed: **0**" in fields["Statistics"]

    def test_only_updated(self):
        message = render_summary(
            [], [make_bucket()], TransportStats(), {'used': 1, 'max': 15, 'window_ms': 600_000}, NOW
        )
        names = [f.name for f in message.fields]
        assert names == ["Rate Limit Status", "Still Occurring After Notification (1)", "Statistics"]
