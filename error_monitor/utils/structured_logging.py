"""
Structured Logging Utility

JSON-queryable log fields for pipeline decisions.

Before: String-based logging hard to query
    logger.info(f"Bucket {fingerprint} suppressed ({count} errors)")

After: Structured logging with queryable fields
    log_bucket_suppressed(fingerprint=fingerprint, category=..., count=count)
    # Query: jsonPayload.event="bucket_suppressed"

Structured fields are attached only when ENABLE_STRUCTURED_LOGGING=true;
otherwise the plain message is logged.
"""

import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class StructuredLogger:
    """
    Structured logging wrapper that adds JSON fields to log records.

    Usage:
        logger = StructuredLogger(__name__)
        logger.info("Bucket delivered", extra={'fingerprint': 'a1b2c3d4e5f60718', 'count': 12})
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.enabled = os.getenv('ENABLE_STRUCTURED_LOGGING', 'false').lower() == 'true'

    def _log(self, level: int, msg: str, extra: Optional[Dict[str, Any]], exc_info: bool = False):
        if self.enabled and extra:
            self.logger.log(level, msg, extra=extra, exc_info=exc_info)
        else:
            self.logger.log(level, msg, exc_info=exc_info)

    def info(self, msg: str, extra: Optional[Dict[str, Any]] = None):
        self._log(logging.INFO, msg, extra)

    def warning(self, msg: str, extra: Optional[Dict[str, Any]] = None):
        self._log(logging.WARNING, msg, extra)

    def error(self, msg: str, extra: Optional[Dict[str, Any]] = None, exc_info: bool = False):
        self._log(logging.ERROR, msg, extra, exc_info=exc_info)

    def debug(self, msg: str, extra: Optional[Dict[str, Any]] = None):
        self._log(logging.DEBUG, msg, extra)


# Convenience functions for pipeline events

_pipeline_logger = StructuredLogger('error_monitor.pipeline.events')


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def log_bucket_delivered(fingerprint: str, category: str, severity: str, count: int, **extra):
    _pipeline_logger.info(f"Bucket delivered: {category} x{count} ({fingerprint})", extra={
        'event': 'bucket_delivered',
        'fingerprint': fingerprint,
        'category': category,
        'severity': severity,
        'count': count,
        'timestamp': _timestamp(),
        **extra
    })


def log_bucket_suppressed(fingerprint: str, category: str, count: int, reason: str, **extra):
    _pipeline_logger.info(f"Bucket suppressed ({reason}): {category} x{count} ({fingerprint})", extra={
        'event': 'bucket_suppressed',
        'fingerprint': fingerprint,
        'category': category,
        'count': count,
        'reason': reason,
        'timestamp': _timestamp(),
        **extra
    })


def log_delivery_failed(fingerprint: str, error: str, **extra):
    _pipeline_logger.error(f"Failed to deliver bucket {fingerprint}: {error}", extra={
        'event': 'delivery_failed',
        'fingerprint': fingerprint,
        'error_message': error,
        'timestamp': _timestamp(),
        **extra
    })


def log_summary_sent(suppressed_buckets: int, suppressed_errors: int, updated_buckets: int, **extra):
    _pipeline_logger.info(
        f"Summary sent: {suppressed_errors} suppressed errors in {suppressed_buckets} buckets, "
        f"{updated_buckets} updated buckets",
        extra={
            'event': 'summary_sent',
            'suppressed_buckets': suppressed_buckets,
            'suppressed_errors': suppressed_errors,
            'updated_buckets': updated_buckets,
            'timestamp': _timestamp(),
            **extra
        }
    )
