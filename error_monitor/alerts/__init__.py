# error_monitor/alerts/__init__.py
"""
Classification, fingerprinting, aggregation and rate limiting of errors.
"""

from .error_types import (
    DeliveryResult,
    DeliveryStatus,
    ErrorBucket,
    ErrorCategory,
    ErrorSeverity,
    NormalizedError,
    RawEvent,
    RenderedMessage,
    TransportStats,
)
from .classifier import classify_error
from .fingerprint import generate_fingerprint
from .rate_limiter import SlidingWindowRateLimiter
from .aggregator import ErrorAggregator

__all__ = [
    "DeliveryResult",
    "DeliveryStatus",
    "ErrorBucket",
    "ErrorCategory",
    "ErrorSeverity",
    "NormalizedError",
    "RawEvent",
    "RenderedMessage",
    "TransportStats",
    "classify_error",
    "generate_fingerprint",
    "SlidingWindowRateLimiter",
    "ErrorAggregator",
]
