"""
Error Aggregator

Groups repeated occurrences of the same fingerprint into one bucket and
delays the outbound notification by the aggregation window, so a burst of
identical errors produces a single message with an occurrence count.

CRITICAL errors are never scheduled: the pipeline flushes them
synchronously via flush_immediately().

Problem Solved:
Without aggregation, a database outage logging the same error 500 times in
30 seconds would send 500 notifications. With ErrorAggregator it becomes
one notification reading "(x500)".
"""

import logging
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

from error_monitor.alerts.error_types import (
    ErrorBucket,
    ErrorCategory,
    ErrorSeverity,
    NormalizedError,
)
from error_monitor.utils.scheduler import ScheduledCall, Scheduler

logger = logging.getLogger(__name__)


class ErrorAggregator:
    """
    Buckets normalized errors by fingerprint and schedules delayed flushes.

    Usage:
        aggregator = ErrorAggregator(
            aggregation_window_ms=30_000,
            max_samples_per_bucket=3,
            flush_callback=pipeline.handle_flushed_bucket,
            scheduler=scheduler,
        )
        is_new = aggregator.add(normalized_error)
    """

    def __init__(
        self,
        aggregation_window_ms: float,
        max_samples_per_bucket: int,
        flush_callback: Callable[[ErrorBucket], None],
        scheduler: Scheduler
    ):
        self.aggregation_window_ms = aggregation_window_ms
        self.max_samples_per_bucket = max_samples_per_bucket
        self._flush_callback = flush_callback
        self._scheduler = scheduler

        self._buckets: Dict[str, ErrorBucket] = {}
        self._pending_flushes: Dict[str, ScheduledCall] = {}

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._scheduler.now(), tz=timezone.utc)

    def add(self, error: NormalizedError) -> bool:
        """
        Add an error occurrence.

        Returns:
            True if this is the first occurrence (new bucket created)
        """
        existing = self._buckets.get(error.fingerprint)

        if existing:
            existing.count += 1
            existing.last_occurrence = max(existing.last_occurrence, error.timestamp)
            if len(existing.sample_metadata) < self.max_samples_per_bucket and error.metadata:
                existing.sample_metadata.append(error.metadata)
            return False

        bucket = ErrorBucket(
            fingerprint=error.fingerprint,
            category=error.category,
            severity=error.severity,
            representative_error=error,
            count=1,
            first_occurrence=error.timestamp,
            last_occurrence=error.timestamp,
            sample_metadata=[error.metadata] if error.metadata and self.max_samples_per_bucket > 0 else [],
        )
        self._buckets[error.fingerprint] = bucket

        if error.severity != ErrorSeverity.CRITICAL:
            self._schedule_flush(error.fingerprint)

        return True

    def _schedule_flush(self, fingerprint: str) -> None:
        def fire():
            self._pending_flushes.pop(fingerprint, None)
            self._flush_bucket(fingerprint)

        self._pending_flushes[fingerprint] = self._scheduler.call_later(
            self.aggregation_window_ms / 1000.0, fire
        )

    def _cancel_pending(self, fingerprint: str) -> None:
        call = self._pending_flushes.pop(fingerprint, None)
        if call:
            call.cancel()

    def _mark_sent(self, bucket: ErrorBucket) -> None:
        bucket.notification_sent = True
        bucket.last_notified_at = self._now()

    def _flush_bucket(self, fingerprint: str) -> None:
        bucket = self._buckets.get(fingerprint)
        if not bucket or bucket.notification_sent:
            return

        self._mark_sent(bucket)
        logger.debug(f"Flushing bucket {fingerprint} ({bucket.category.value} x{bucket.count})")
        self._flush_callback(bucket)

    def flush_immediately(self, fingerprint: str) -> Optional[ErrorBucket]:
        """
        Flush a bucket right now, bypassing the aggregation delay.

        Returns:
            The bucket, or None if unknown or already notified
        """
        bucket = self._buckets.get(fingerprint)
        if not bucket or bucket.notification_sent:
            return None

        self._cancel_pending(fingerprint)
        self._mark_sent(bucket)
        return bucket

    def flush_all(self) -> List[ErrorBucket]:
        """Force-flush every unsent bucket (shutdown/summary use)."""
        flushed = []
        for fingerprint, bucket in self._buckets.items():
            if not bucket.notification_sent:
                self._cancel_pending(fingerprint)
                self._mark_sent(bucket)
                flushed.append(bucket)
        return flushed

    def get_updated_buckets(self) -> List[ErrorBucket]:
        """Notified buckets that kept receiving occurrences afterwards."""
        return [
            bucket for bucket in self._buckets.values()
            if bucket.notification_sent
            and bucket.last_notified_at is not None
            and bucket.last_occurrence > bucket.last_notified_at
        ]

    def mark_notified(self, buckets: List[ErrorBucket]) -> None:
        """Re-stamp buckets after a follow-up (summary) notification."""
        now = self._now()
        for bucket in buckets:
            bucket.last_notified_at = max(now, bucket.last_occurrence)

    def get_bucket(self, fingerprint: str) -> Optional[ErrorBucket]:
        return self._buckets.get(fingerprint)

    def prune(self, max_age_ms: float) -> int:
        """
        Remove buckets with no occurrence in the last max_age_ms.

        Returns:
            Number of buckets removed
        """
        cutoff = self._now() - timedelta(milliseconds=max_age_ms)
        stale = [fp for fp, bucket in self._buckets.items() if bucket.last_occurrence < cutoff]

        for fingerprint in stale:
            self._cancel_pending(fingerprint)
            del self._buckets[fingerprint]

        if stale:
            logger.debug(f"Pruned {len(stale)} stale error buckets")
        return len(stale)

    def get_stats(self) -> Dict:
        by_category: Dict[ErrorCategory, int] = defaultdict(int)
        total_errors = 0
        for bucket in self._buckets.values():
            total_errors += bucket.count
            by_category[bucket.category] += bucket.count

        return {
            'active_buckets': len(self._buckets),
            'pending_flushes': len(self._pending_flushes),
            'total_errors': total_errors,
            'by_category': dict(by_category),
        }

    def reset(self) -> None:
        """Cancel every pending flush and drop all buckets."""
        for call in self._pending_flushes.values():
            call.cancel()
        self._pending_flushes.clear()
        self._buckets.clear()
