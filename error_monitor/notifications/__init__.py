# error_monitor/notifications/__init__.py
"""
Delivery sinks (Discord, Slack, Sentry, local logging).
"""

from .sinks import (
    DiscordWebhookSink,
    LoggingSink,
    NotificationSink,
    SentrySink,
    SlackWebhookSink,
    build_sink_from_env,
)

__all__ = [
    "DiscordWebhookSink",
    "LoggingSink",
    "NotificationSink",
    "SentrySink",
    "SlackWebhookSink",
    "build_sink_from_env",
]
