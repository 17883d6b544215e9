#!/usr/bin/env python3
"""
File: error_monitor/notifications/sinks.py

Delivery sinks for rendered error notifications.

Every sink implements the same contract:
    deliver(RenderedMessage) -> DeliveryResult
        DeliveryResult.ok()
        DeliveryResult.rate_limited(retry_after_ms)   # pipeline requeues + backs off
        DeliveryResult.failed(error, payload_rejected) # pipeline logs + drops

Sinks never raise from deliver(); transport errors are returned as
failed results.

Available sinks:
- DiscordWebhookSink: Discord webhook embeds
- SlackWebhookSink: Slack incoming-webhook attachments
- SentrySink: Sentry events, grouped by the bucket fingerprint
- LoggingSink: local log output (development / no channel configured)

Webhook sinks are protected by a circuit breaker so an unavailable
endpoint fails fast instead of timing out on every message.
"""

import html
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import requests
import sentry_sdk

from error_monitor.alerts.error_types import (
    DeliveryResult,
    ErrorSeverity,
    RenderedMessage,
)
from error_monitor.alerts.rendering import DEFAULT_LIMITS, MessageLimits
from error_monitor.constants.resilience import WEBHOOK_TIMEOUT_SECONDS
from error_monitor.utils.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError

logger = logging.getLogger(__name__)

BOT_USERNAME = "Error Monitor"

# Discord "Invalid Form Body" (embed over size limits)
DISCORD_INVALID_FORM_BODY = 50035


class NotificationSink(ABC):
    """External delivery target for rendered notifications."""

    name = "sink"
    limits: MessageLimits = DEFAULT_LIMITS

    @abstractmethod
    def deliver(self, message: RenderedMessage) -> DeliveryResult:
        """Send one message. Must not raise."""

    def close(self) -> None:
        """Release connections/clients held by the sink."""


class LoggingSink(NotificationSink):
    """Logs notifications locally. Used when no channel is configured."""

    name = "logging"

    LEVEL_MAP = {
        ErrorSeverity.CRITICAL: logging.CRITICAL,
        ErrorSeverity.HIGH: logging.ERROR,
        ErrorSeverity.MEDIUM: logging.WARNING,
        ErrorSeverity.LOW: logging.INFO,
    }

    def __init__(self, logger_name: str = "error_monitor.notifications.console"):
        self._logger = logging.getLogger(logger_name)

    def deliver(self, message: RenderedMessage) -> DeliveryResult:
        level = self.LEVEL_MAP.get(message.severity, logging.INFO)
        log_message = f"{message.title}: {message.description}"
        if message.fields:
            details = " | ".join(f"{f.name}: {f.value}" for f in message.fields)
            log_message += f" | {details}"
        self._logger.log(level, log_message)
        return DeliveryResult.ok()


def _retry_after_ms(response: requests.Response) -> Optional[float]:
    """Retry hint from a 429 response, in milliseconds."""
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get('retry_after') is not None:
        try:
            # Discord reports seconds (float)
            return float(body['retry_after']) * 1000.0
        except (TypeError, ValueError):
            pass

    header = response.headers.get('Retry-After')
    if header:
        try:
            return float(header) * 1000.0
        except ValueError:
            logger.debug(f"Unparseable Retry-After header: {header!r}")
    return None


class WebhookSink(NotificationSink):
    """Shared HTTP behavior for webhook-based sinks."""

    def __init__(
        self,
        webhook_url: str,
        timeout: float = WEBHOOK_TIMEOUT_SECONDS,
        circuit_breaker: Optional[CircuitBreaker] = None
    ):
        if not webhook_url:
            raise ValueError(f"{type(self).__name__} requires a webhook URL")
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.circuit_breaker = circuit_breaker or CircuitBreaker(f"{self.name}_webhook")

    @abstractmethod
    def build_payload(self, message: RenderedMessage) -> Dict[str, Any]:
        """Translate a rendered message into the webhook's JSON body."""

    def is_payload_rejected(self, response: requests.Response) -> bool:
        return response.status_code == 413

    def _post(self, payload: Dict[str, Any]) -> requests.Response:
        response = requests.post(self.webhook_url, json=payload, timeout=self.timeout)
        # Only server errors count against the circuit
        if response.status_code >= 500:
            response.raise_for_status()
        return response

    def deliver(self, message: RenderedMessage) -> DeliveryResult:
        payload = self.build_payload(message)
        try:
            response = self.circuit_breaker.call(self._post, payload)
        except CircuitBreakerOpenError as e:
            return DeliveryResult.failed(
                f"{self.name} circuit breaker OPEN "
                f"(timeout remaining {e.timeout_remaining:.1f}s)"
            )
        except requests.exceptions.HTTPError as e:
            return DeliveryResult.failed(f"{self.name} webhook error: {e}")
        except requests.exceptions.RequestException as e:
            return DeliveryResult.failed(f"{self.name} webhook request failed: {e}")

        if response.status_code == 429:
            return DeliveryResult.rate_limited(_retry_after_ms(response))

        if self.is_payload_rejected(response):
            return DeliveryResult.failed(
                f"{self.name} rejected payload: HTTP {response.status_code}",
                payload_rejected=True
            )

        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            return DeliveryResult.failed(f"{self.name} webhook error: {e}")

        return DeliveryResult.ok()


class DiscordWebhookSink(WebhookSink):
    """Discord webhook embeds."""

    name = "discord"

    def build_payload(self, message: RenderedMessage) -> Dict[str, Any]:
        embed: Dict[str, Any] = {
            "title": message.title,
            "color": message.color,
            "timestamp": message.timestamp.isoformat(),
            "fields": [
                {"name": f.name, "value": f.value, "inline": f.inline}
                for f in message.fields
            ],
        }
        if message.description:
            embed["description"] = message.description
        return {"username": BOT_USERNAME, "embeds": [embed]}

    def is_payload_rejected(self, response: requests.Response) -> bool:
        if super().is_payload_rejected(response):
            return True
        if response.status_code != 400:
            return False
        try:
            body = response.json()
        except ValueError:
            return False
        return isinstance(body, dict) and body.get('code') == DISCORD_INVALID_FORM_BODY


class SlackWebhookSink(WebhookSink):
    """Slack incoming-webhook attachments."""

    name = "slack"
    limits = MessageLimits(max_message_length=2000, max_description_length=3000, max_total_length=3900)

    def build_payload(self, message: RenderedMessage) -> Dict[str, Any]:
        attachment = {
            "color": f"#{message.color:06x}",
            "title": html.escape(message.title),
            "text": html.escape(message.description),
            "fields": [
                {"title": html.escape(f.name), "value": html.escape(f.value), "short": f.inline}
                for f in message.fields
            ],
            "footer": BOT_USERNAME,
            "ts": int(message.timestamp.timestamp()),
        }
        return {"attachments": [attachment]}

    def is_payload_rejected(self, response: requests.Response) -> bool:
        if super().is_payload_rejected(response):
            return True
        return response.status_code == 400 and "too_long" in (response.text or "")


class SentrySink(NotificationSink):
    """
    Sends notifications as Sentry events. The bucket fingerprint becomes the
    Sentry fingerprint, so Sentry groups issues the same way the pipeline does.
    """

    name = "sentry"

    LEVEL_MAP = {
        ErrorSeverity.CRITICAL: 'fatal',
        ErrorSeverity.HIGH: 'error',
        ErrorSeverity.MEDIUM: 'warning',
        ErrorSeverity.LOW: 'info',
    }

    def __init__(self, dsn: Optional[str] = None, environment: Optional[str] = None):
        if dsn:
            sentry_sdk.init(
                dsn=dsn,
                environment=environment or os.getenv("ENVIRONMENT", "production"),
                send_default_pii=False,  # Don't send sensitive data
                attach_stacktrace=False,
            )

    def deliver(self, message: RenderedMessage) -> DeliveryResult:
        scope_kwargs: Dict[str, Any] = {
            'tags': {
                'category': message.category.value if message.category else 'summary',
                'severity': message.severity.value if message.severity else 'info',
            },
            'extras': {
                'description': message.description,
                **{f.name: f.value for f in message.fields},
            },
        }
        if message.fingerprint:
            scope_kwargs['fingerprint'] = [message.fingerprint]

        try:
            sentry_sdk.capture_message(
                message.title,
                level=self.LEVEL_MAP.get(message.severity, 'info'),
                **scope_kwargs
            )
        except Exception as e:
            return DeliveryResult.failed(f"Sentry capture failed: {e}")
        return DeliveryResult.ok()

    def close(self) -> None:
        sentry_sdk.flush(timeout=2)


def build_sink_from_env(environ: Optional[Dict[str, str]] = None) -> NotificationSink:
    """
    Pick a sink from environment variables, first match wins:
    DISCORD_WEBHOOK_URL, SLACK_WEBHOOK_URL, SENTRY_DSN, else LoggingSink.
    """
    environ = os.environ if environ is None else environ

    if environ.get('DISCORD_WEBHOOK_URL'):
        return DiscordWebhookSink(environ['DISCORD_WEBHOOK_URL'])
    if environ.get('SLACK_WEBHOOK_URL'):
        return SlackWebhookSink(environ['SLACK_WEBHOOK_URL'])
    if environ.get('SENTRY_DSN'):
        return SentrySink(environ['SENTRY_DSN'], environ.get('ENVIRONMENT'))

    logger.warning("No notification channel configured, errors will only be logged locally")
    return LoggingSink()
