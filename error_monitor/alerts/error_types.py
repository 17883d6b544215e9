"""
Error Monitor Data Model

Types shared by the classifier, fingerprinting, aggregation and delivery
stages of the notification pipeline.

Lifecycle of one error class:
    RawEvent (producer) -> NormalizedError (classified + fingerprinted)
        -> ErrorBucket (aggregated occurrences) -> RenderedMessage (sink)

Usage:
    from error_monitor.alerts.error_types import ErrorCategory, ErrorSeverity
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional


class ErrorCategory(str, Enum):
    """Error classification categories for grouping similar errors."""
    REDIS_CONNECTION = "REDIS_CONNECTION"
    DATABASE_CONNECTION = "DATABASE_CONNECTION"
    DATABASE_QUERY = "DATABASE_QUERY"
    RATE_LIMIT = "RATE_LIMIT"
    EXTERNAL_API = "EXTERNAL_API"
    NETWORK = "NETWORK"
    PERMISSION = "PERMISSION"
    VALIDATION = "VALIDATION"
    UNKNOWN = "UNKNOWN"


class ErrorSeverity(str, Enum):
    """Severity tiers governing bypass and prioritization rules."""
    CRITICAL = "CRITICAL"  # Immediate notification (bypasses rate limit)
    HIGH = "HIGH"          # Aggregated but sent quickly
    MEDIUM = "MEDIUM"      # Can be batched
    LOW = "LOW"            # Can be heavily aggregated


@dataclass
class RawEvent:
    """Producer-supplied event. Metadata may contain secrets until sanitized."""
    message: str
    level: str = "error"
    error_name: Optional[str] = None
    stack_trace: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class NormalizedError:
    """Classified, fingerprinted and sanitized error occurrence."""
    fingerprint: str
    category: ErrorCategory
    severity: ErrorSeverity
    message: str
    stack_trace: Optional[str]
    source: Optional[str]
    metadata: Dict[str, Any]
    timestamp: datetime


@dataclass
class ErrorBucket:
    """
    All occurrences sharing one fingerprint within the tracking window.

    Owned by ErrorAggregator until flushed. Once notification_sent is True
    the bucket keeps accumulating count/last_occurrence but is never
    flushed again through the normal path.
    """
    fingerprint: str
    category: ErrorCategory
    severity: ErrorSeverity
    representative_error: NormalizedError
    count: int
    first_occurrence: datetime
    last_occurrence: datetime
    sample_metadata: List[Dict[str, Any]] = field(default_factory=list)
    notification_sent: bool = False
    last_notified_at: Optional[datetime] = None

    @property
    def is_critical(self) -> bool:
        return self.severity == ErrorSeverity.CRITICAL


@dataclass
class TransportStats:
    """Process-wide pipeline counters. Reset only on restart."""
    total_received: int = 0
    total_sent: int = 0
    total_aggregated: int = 0
    total_suppressed: int = 0
    total_failed: int = 0
    last_summary_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'total_received': self.total_received,
            'total_sent': self.total_sent,
            'total_aggregated': self.total_aggregated,
            'total_suppressed': self.total_suppressed,
            'total_failed': self.total_failed,
            'last_summary_at': self.last_summary_at.isoformat() if self.last_summary_at else None,
        }


class DeliveryStatus(str, Enum):
    """Outcome of a single sink delivery attempt."""
    OK = "ok"
    RATE_LIMITED = "rate_limited"
    ERROR = "error"


@dataclass(frozen=True)
class DeliveryResult:
    """Result returned by NotificationSink.deliver()."""
    status: DeliveryStatus
    retry_after_ms: Optional[float] = None
    error: Optional[str] = None
    payload_rejected: bool = False

    @classmethod
    def ok(cls) -> "DeliveryResult":
        return cls(status=DeliveryStatus.OK)

    @classmethod
    def rate_limited(cls, retry_after_ms: Optional[float] = None) -> "DeliveryResult":
        return cls(status=DeliveryStatus.RATE_LIMITED, retry_after_ms=retry_after_ms)

    @classmethod
    def failed(cls, error: str, payload_rejected: bool = False) -> "DeliveryResult":
        return cls(status=DeliveryStatus.ERROR, error=error, payload_rejected=payload_rejected)


@dataclass(frozen=True)
class MessageField:
    name: str
    value: str
    inline: bool = False


@dataclass
class RenderedMessage:
    """
    Sink-independent notification. Sinks translate it into their payload
    (Discord embed, Slack attachment, Sentry event, log line).
    """
    title: str
    description: str
    color: int
    timestamp: datetime
    fields: List[MessageField] = field(default_factory=list)
    severity: Optional[ErrorSeverity] = None
    category: Optional[ErrorCategory] = None
    fingerprint: Optional[str] = None
    is_summary: bool = False

    def total_length(self) -> int:
        """Character count the sink has to carry (title, body and fields)."""
        return (
            len(self.title)
            + len(self.description)
            + sum(len(f.name) + len(f.value) for f in self.fields)
        )
