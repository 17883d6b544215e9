"""
Notification Rendering

Turns error buckets and summary data into sink-independent
RenderedMessage objects, enforcing the sink's size limits.

Bucket message layout:
    title:        "<emoji> <CATEGORY> (xN)"      (suffix only when N > 1)
    description:  message (truncated) + stack trace code block (truncated)
    fields:       Occurrences (N > 1), Source (if known), Fingerprint

If the full message is still over the sink's total limit, the simplified
fallback (title + short message + fingerprint) is used instead.
"""

from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional

from error_monitor.alerts.classifier import get_severity_color, get_severity_emoji
from error_monitor.alerts.error_types import (
    ErrorBucket,
    ErrorCategory,
    MessageField,
    RenderedMessage,
    TransportStats,
)
from error_monitor.constants import resilience

SUMMARY_COLOR = 0x3498DB  # Blue
STACK_PREFIX = "\n\n**Stack Trace:**\n```"
STACK_SUFFIX = "```"
ELLIPSIS = "..."


@dataclass(frozen=True)
class MessageLimits:
    """Size limits of one delivery sink, in characters."""
    max_message_length: int = resilience.MAX_MESSAGE_LENGTH
    max_description_length: int = resilience.MAX_DESCRIPTION_LENGTH
    max_total_length: int = resilience.MAX_TOTAL_LENGTH
    max_field_length: int = resilience.MAX_FIELD_LENGTH
    simplified_message_length: int = resilience.SIMPLIFIED_MESSAGE_LENGTH


DEFAULT_LIMITS = MessageLimits()


def truncate(text: str, limit: int) -> str:
    """Cut text to at most limit chars, marking the cut with '...'."""
    if len(text) <= limit:
        return text
    if limit <= len(ELLIPSIS):
        return text[:limit]
    return text[:limit - len(ELLIPSIS)] + ELLIPSIS


def format_time(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%H:%M:%S")


def bucket_title(bucket: ErrorBucket) -> str:
    count_suffix = f" (x{bucket.count})" if bucket.count > 1 else ""
    return f"{get_severity_emoji(bucket.severity)} {bucket.category.value}{count_suffix}"


def render_bucket(bucket: ErrorBucket, limits: MessageLimits = DEFAULT_LIMITS) -> RenderedMessage:
    """
    Render a bucket, falling back to the simplified layout when the full
    message exceeds limits.max_total_length.
    """
    error = bucket.representative_error
    description = truncate(error.message or "(no message)", limits.max_message_length)

    if error.stack_trace:
        available = (
            limits.max_description_length - len(description) - len(STACK_PREFIX) - len(STACK_SUFFIX)
        )
        if available > resilience.MIN_STACK_TRACE_SPACE:
            stack = truncate(error.stack_trace, available)
            description += f"{STACK_PREFIX}{stack}{STACK_SUFFIX}"

    fields = []
    if bucket.count > 1:
        fields.append(MessageField(
            name="Occurrences",
            value=(
                f"**{bucket.count}** times, from {format_time(bucket.first_occurrence)} "
                f"to {format_time(bucket.last_occurrence)} UTC"
            ),
        ))
    if error.source:
        fields.append(MessageField(
            name="Source",
            value=truncate(f"`{error.source}`", limits.max_field_length),
            inline=True,
        ))
    fields.append(MessageField(name="Fingerprint", value=f"`{bucket.fingerprint}`", inline=True))

    message = RenderedMessage(
        title=bucket_title(bucket),
        description=description,
        color=get_severity_color(bucket.severity),
        timestamp=error.timestamp,
        fields=fields,
        severity=bucket.severity,
        category=bucket.category,
        fingerprint=bucket.fingerprint,
    )

    if message.total_length() > limits.max_total_length:
        return render_simplified(bucket, limits)
    return message


def render_simplified(bucket: ErrorBucket, limits: MessageLimits = DEFAULT_LIMITS) -> RenderedMessage:
    """Title, short message and fingerprint only."""
    error = bucket.representative_error
    return RenderedMessage(
        title=bucket_title(bucket),
        description=truncate(error.message or "(no message)", limits.simplified_message_length),
        color=get_severity_color(bucket.severity),
        timestamp=error.timestamp,
        fields=[MessageField(name="Fingerprint", value=f"`{bucket.fingerprint}`", inline=True)],
        severity=bucket.severity,
        category=bucket.category,
        fingerprint=bucket.fingerprint,
    )


def _group_by_category(buckets: List[ErrorBucket]) -> Dict[ErrorCategory, Dict]:
    grouped: Dict[ErrorCategory, Dict] = defaultdict(lambda: {'count': 0, 'fingerprints': []})
    for bucket in buckets:
        grouped[bucket.category]['count'] += bucket.count
        grouped[bucket.category]['fingerprints'].append(bucket.fingerprint[:8])
    return grouped


def render_summary(
    suppressed: List[ErrorBucket],
    updated: List[ErrorBucket],
    stats: TransportStats,
    rate_limit_stats: Dict,
    now: datetime,
    limits: MessageLimits = DEFAULT_LIMITS
) -> RenderedMessage:
    """
    Periodic summary: rate limiter usage, suppressed errors by category,
    buckets still occurring after notification, and overall stats.
    """
    window_minutes = round(rate_limit_stats['window_ms'] / 60000)
    fields = [MessageField(
        name="Rate Limit Status",
        value=f"{rate_limit_stats['used']}/{rate_limit_stats['max']} messages used ({window_minutes} minute window)",
    )]

    if suppressed:
        total_suppressed = sum(b.count for b in suppressed)
        lines = [
            f"- **{category.value}**: {data['count']} errors ({', '.join(data['fingerprints'][:5])})"
            for category, data in _group_by_category(suppressed).items()
        ]
        fields.append(MessageField(
            name=f"Suppressed Errors ({total_suppressed} total, {len(suppressed)} kinds)",
            value=truncate("\n".join(lines), limits.max_field_length),
        ))

    if updated:
        lines = [
            f"- **{b.category.value}** `{b.fingerprint[:8]}`: {b.count} total, "
            f"last at {format_time(b.last_occurrence)}"
            for b in sorted(updated, key=lambda b: b.last_occurrence, reverse=True)
        ]
        fields.append(MessageField(
            name=f"Still Occurring After Notification ({len(updated)})",
            value=truncate("\n".join(lines), limits.max_field_length),
        ))

    fields.append(MessageField(
        name="Statistics",
        value=" | ".join([
            f"Received: **{stats.total_received}**",
            f"Sent: **{stats.total_sent}**",
            f"Aggregated: **{stats.total_aggregated}**",
            f"Suppressed: **{stats.total_suppressed}**",
            f"Failed: **{stats.total_failed}**",
        ]),
    ))

    return RenderedMessage(
        title="📊 Error Summary Report",
        description="",
        color=SUMMARY_COLOR,
        timestamp=now,
        fields=fields,
        is_summary=True,
    )
