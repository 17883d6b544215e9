"""
Error Notification Pipeline

Ingests application error events, groups them into fingerprint buckets,
rate-limits outbound notifications, and delivers them to a sink one at a
time. Errors that do not fit into the rate-limit budget are kept in a
bounded suppressed table and reported in a periodic summary.

Per-event flow:
    ingest() -> classify + fingerprint -> ErrorAggregator.add()
        new bucket: delayed flush (CRITICAL: flushed immediately)
    flush -> rate limit check
        granted: delivery queue -> sink (sequential, spaced)
        denied:  suppressed table -> next summary

Threading model:
- Ingestion is synchronous and never does I/O.
- Timers (flush, summary, prune, pacing, backoff) run on the scheduler.
- Shared state is guarded by one RLock; sink calls happen outside it.

Usage:
    pipeline = ErrorNotificationPipeline(DiscordWebhookSink(url))
    pipeline.ingest("Connection refused", fields={'service': 'api'})
    ...
    pipeline.close()
"""

import logging
import threading
import time
from collections import deque
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Deque, Dict, List, Mapping, Optional

from error_monitor.alerts.aggregator import ErrorAggregator
from error_monitor.alerts.classifier import classify_error
from error_monitor.alerts.error_types import (
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
from error_monitor.alerts.events import build_raw_event, sanitize_metadata, to_utc
from error_monitor.alerts.fingerprint import (
    FALLBACK_FINGERPRINT,
    extract_source,
    generate_fingerprint,
)
from error_monitor.alerts.rate_limiter import SlidingWindowRateLimiter
from error_monitor.alerts.rendering import (
    DEFAULT_LIMITS,
    render_bucket,
    render_simplified,
    render_summary,
)
from error_monitor.config.pipeline_config import PipelineConfig, level_value
from error_monitor.notifications.sinks import NotificationSink
from error_monitor.utils.scheduler import (
    ScheduledCall,
    Scheduler,
    SerializedScheduler,
    ThreadedScheduler,
)
from error_monitor.utils.structured_logging import (
    log_bucket_delivered,
    log_bucket_suppressed,
    log_delivery_failed,
    log_summary_sent,
)

logger = logging.getLogger(__name__)


def _snapshot(bucket: ErrorBucket) -> ErrorBucket:
    """Copy handed from the aggregator to the delivery side."""
    return replace(bucket, sample_metadata=list(bucket.sample_metadata))


class ErrorNotificationPipeline:
    """
    Orchestrates aggregation, rate limiting, queued delivery and summaries.

    Args:
        sink: Delivery target for rendered notifications
        config: Pipeline settings (defaults to PipelineConfig())
        scheduler: Timer source. When omitted a ThreadedScheduler is created
            and shut down again by close().
    """

    def __init__(
        self,
        sink: NotificationSink,
        config: Optional[PipelineConfig] = None,
        scheduler: Optional[Scheduler] = None
    ):
        self.config = config or PipelineConfig()
        self.sink = sink

        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or ThreadedScheduler()
        self._lock = threading.RLock()
        # Timer callbacks touching shared state run under the pipeline lock
        self._serialized = SerializedScheduler(self._scheduler, self._lock)

        self.rate_limiter = SlidingWindowRateLimiter(
            window_duration_ms=self.config.window_duration_ms,
            max_messages=self.config.max_messages_per_window,
            clock=self._scheduler.now,
        )
        self.aggregator = ErrorAggregator(
            aggregation_window_ms=self.config.aggregation_window_ms,
            max_samples_per_bucket=self.config.max_samples_per_bucket,
            flush_callback=self.handle_flushed_bucket,
            scheduler=self._serialized,
        )

        self._stats = TransportStats()
        self._queue: Deque[ErrorBucket] = deque()
        self._suppressed: Dict[str, ErrorBucket] = {}
        self._rate_limit_retries: Dict[str, int] = {}
        self._processing = False
        self._closed = False

        self._summary_timer: Optional[ScheduledCall] = None
        if self.config.enable_summary:
            # Summary delivery does sink I/O, so it is not serialized
            self._summary_timer = self._scheduler.call_every(
                self.config.summary_interval_ms / 1000.0, self.send_summary
            )
        self._prune_timer = self._serialized.call_every(
            self.config.prune_interval_ms / 1000.0, self.prune
        )

        logger.info(
            f"Error notification pipeline started: sink={sink.name}, "
            f"{self.config.max_messages_per_window} messages per "
            f"{self.config.window_duration_ms / 60000:.0f} min, "
            f"aggregation {self.config.aggregation_window_ms / 1000:.0f}s"
        )

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest(self, message: Optional[str], level: str = "error", fields: Optional[Mapping[str, Any]] = None) -> None:
        """
        Accept one error event. Never raises.

        Args:
            message: Error message (may be empty)
            level: Log level name; events below config.min_level are ignored
            fields: stack, error (exception or mapping), name, timestamp and
                arbitrary metadata
        """
        try:
            event = build_raw_event(message, level, fields)
        except Exception as e:
            logger.error(f"Failed to build error event: {e}", exc_info=True)
            return
        self.ingest_event(event)

    def ingest_event(self, event: RawEvent) -> None:
        """Accept a prebuilt RawEvent. Never raises."""
        try:
            if level_value(event.level) < level_value(self.config.min_level):
                return

            with self._lock:
                if self._closed:
                    return
                self._stats.total_received += 1
                error = self._normalize(event)

                if not self.aggregator.add(error):
                    self._stats.total_aggregated += 1
                elif error.severity == ErrorSeverity.CRITICAL:
                    self._flush_critical(error.fingerprint)
        except Exception as e:
            logger.error(f"Failed to ingest error event: {e}", exc_info=True)

    def _now(self) -> datetime:
        return datetime.fromtimestamp(self._scheduler.now(), tz=timezone.utc)

    def _normalize(self, event: RawEvent) -> NormalizedError:
        message = event.message or ""
        metadata = sanitize_metadata(event.metadata)
        timestamp = to_utc(event.timestamp) or self._now()

        try:
            category, severity = classify_error(message, event.error_name, metadata)
            fingerprint = generate_fingerprint(message, event.stack_trace, event.error_name, category)
            source = extract_source(event.stack_trace)
        except Exception as e:
            logger.error(f"Failed to classify error, using fallback fingerprint: {e}", exc_info=True)
            category, severity = ErrorCategory.UNKNOWN, ErrorSeverity.MEDIUM
            fingerprint = FALLBACK_FINGERPRINT
            source = None

        return NormalizedError(
            fingerprint=fingerprint,
            category=category,
            severity=severity,
            message=message,
            stack_trace=event.stack_trace,
            source=source,
            metadata=metadata,
            timestamp=timestamp,
        )

    def _flush_critical(self, fingerprint: str) -> None:
        bucket = self.aggregator.flush_immediately(fingerprint)
        if bucket is None:
            return

        if self.config.critical_bypass_rate_limit:
            self.rate_limiter.force_acquire()
            logger.warning(f"🚨 Critical error {fingerprint} bypassing rate limit")
            self._enqueue(_snapshot(bucket))
        else:
            self.handle_flushed_bucket(bucket)

    # ------------------------------------------------------------------
    # Rate limiting and suppression
    # ------------------------------------------------------------------

    def handle_flushed_bucket(self, bucket: ErrorBucket) -> None:
        """Flush callback: enqueue if a rate-limit slot is free, else suppress."""
        with self._lock:
            if self._closed:
                return
            bucket = _snapshot(bucket)

            if self._acquire_slot(bucket):
                self._enqueue(bucket)
                return

            self._stats.total_suppressed += bucket.count
            self._store_suppressed(bucket)
            log_bucket_suppressed(
                bucket.fingerprint, bucket.category.value, bucket.count, reason='rate_limited'
            )

    def _acquire_slot(self, bucket: ErrorBucket) -> bool:
        if bucket.is_critical and self.config.critical_bypass_rate_limit:
            self.rate_limiter.force_acquire()
            return True
        return self.rate_limiter.try_acquire()

    def _store_suppressed(self, bucket: ErrorBucket) -> None:
        existing = self._suppressed.get(bucket.fingerprint)
        if existing is not None:
            existing.count += bucket.count
            existing.last_occurrence = max(existing.last_occurrence, bucket.last_occurrence)
            return

        if len(self._suppressed) >= self.config.max_suppressed_buckets:
            oldest = min(self._suppressed.values(), key=lambda b: b.last_occurrence)
            del self._suppressed[oldest.fingerprint]
            logger.debug(f"Suppressed table full, dropped bucket {oldest.fingerprint}")

        self._suppressed[bucket.fingerprint] = bucket

    def _trim_suppressed(self) -> int:
        excess = len(self._suppressed) - self.config.max_suppressed_buckets
        if excess <= 0:
            return 0
        oldest = sorted(self._suppressed.values(), key=lambda b: b.last_occurrence)[:excess]
        for bucket in oldest:
            del self._suppressed[bucket.fingerprint]
        return excess

    # ------------------------------------------------------------------
    # Delivery queue
    # ------------------------------------------------------------------

    def _make_room(self) -> None:
        """Evict until the queue has a free slot."""
        while len(self._queue) >= self.config.max_queue_size:
            victim_index = next(
                (i for i, queued in enumerate(self._queue) if not queued.is_critical), 0
            )
            victim = self._queue[victim_index]
            del self._queue[victim_index]

            self._rate_limit_retries.pop(victim.fingerprint, None)
            self._stats.total_suppressed += victim.count
            self._store_suppressed(victim)
            log_bucket_suppressed(
                victim.fingerprint, victim.category.value, victim.count, reason='queue_full'
            )

    def _enqueue(self, bucket: ErrorBucket) -> None:
        self._make_room()
        self._queue.append(bucket)
        self.process_queue()

    def process_queue(self) -> None:
        """Start the delivery worker unless one is already active."""
        with self._lock:
            if self._processing or self._closed or not self._queue:
                return
            self._processing = True
            self._scheduler.call_later(0, self._deliver_next)

    def _deliver_next(self) -> None:
        with self._lock:
            if self._closed or not self._queue:
                self._processing = False
                return
            bucket = self._queue.popleft()

        try:
            result = self._send_bucket(bucket)
        except Exception as e:
            logger.error(f"Failed to send bucket {bucket.fingerprint}: {e}", exc_info=True)
            result = DeliveryResult.failed(str(e))

        with self._lock:
            try:
                delay_ms = self._handle_delivery_result(bucket, result)
            except Exception as e:
                logger.error(f"Failed to record delivery of bucket {bucket.fingerprint}: {e}", exc_info=True)
                delay_ms = 0
            if self._closed:
                self._processing = False
                return
            # Worker stays active through the delay
            self._scheduler.call_later(delay_ms / 1000.0, self._deliver_next)

    def _deliver(self, message: RenderedMessage) -> DeliveryResult:
        try:
            result = self.sink.deliver(message)
        except Exception as e:
            logger.error(f"Sink {self.sink.name} raised during delivery: {e}", exc_info=True)
            return DeliveryResult.failed(str(e))

        if not isinstance(result, DeliveryResult):
            logger.error(f"Sink {self.sink.name} returned {result!r} instead of a DeliveryResult")
            return DeliveryResult.failed(f"invalid sink result: {result!r}")
        return result

    def _send_bucket(self, bucket: ErrorBucket) -> DeliveryResult:
        limits = getattr(self.sink, 'limits', DEFAULT_LIMITS)
        try:
            message = render_bucket(bucket, limits)
        except Exception as e:
            logger.error(f"Failed to render bucket {bucket.fingerprint}: {e}", exc_info=True)
            return DeliveryResult.failed(f"render error: {e}")

        result = self._deliver(message)
        if result.status == DeliveryStatus.ERROR and result.payload_rejected:
            simplified = render_simplified(bucket, limits)
            if simplified != message:
                logger.warning(f"Sink rejected bucket {bucket.fingerprint} payload, resending simplified")
                result = self._deliver(simplified)
        return result

    def _handle_delivery_result(self, bucket: ErrorBucket, result: DeliveryResult) -> float:
        """Update stats/queue for one delivery. Returns delay before next pop (ms)."""
        if result.status == DeliveryStatus.OK:
            self._stats.total_sent += 1
            self._rate_limit_retries.pop(bucket.fingerprint, None)
            log_bucket_delivered(
                bucket.fingerprint, bucket.category.value, bucket.severity.value, bucket.count
            )
            return self.config.inter_message_delay_ms

        if result.status == DeliveryStatus.RATE_LIMITED:
            attempts = self._rate_limit_retries.get(bucket.fingerprint, 0) + 1
            if attempts > self.config.max_rate_limit_retries:
                self._rate_limit_retries.pop(bucket.fingerprint, None)
                self._stats.total_failed += 1
                log_delivery_failed(bucket.fingerprint, f"still rate limited after {attempts - 1} retries")
                return self.config.inter_message_delay_ms

            self._rate_limit_retries[bucket.fingerprint] = attempts
            retry_after_ms = result.retry_after_ms
            if retry_after_ms is None:
                retry_after_ms = self.config.default_retry_after_ms
            logger.warning(
                f"Sink rate limited, retrying bucket {bucket.fingerprint} in {retry_after_ms:.0f}ms "
                f"(attempt {attempts}/{self.config.max_rate_limit_retries})"
            )
            self._make_room()
            self._queue.appendleft(bucket)
            return retry_after_ms

        self._rate_limit_retries.pop(bucket.fingerprint, None)
        self._stats.total_failed += 1
        log_delivery_failed(bucket.fingerprint, result.error or "unknown error")
        return 0

    # ------------------------------------------------------------------
    # Periodic maintenance
    # ------------------------------------------------------------------

    def send_summary(self) -> bool:
        """
        Deliver the summary report if there is anything to report.

        Returns:
            True if a summary was delivered
        """
        with self._lock:
            if self._closed:
                return False
            suppressed = list(self._suppressed.values())
            reported_counts = {b.fingerprint: b.count for b in suppressed}
            updated = self.aggregator.get_updated_buckets()
            if not suppressed and not updated:
                logger.debug("Nothing to summarize, skipping summary")
                return False

            limits = getattr(self.sink, 'limits', DEFAULT_LIMITS)
            message = render_summary(
                suppressed,
                updated,
                replace(self._stats),
                self.rate_limiter.get_stats(),
                self._now(),
                limits,
            )

        result = self._deliver(message)

        with self._lock:
            if result.status != DeliveryStatus.OK:
                logger.error(
                    f"Failed to send summary ({result.status.value}): {result.error or 'rate limited'}; "
                    f"keeping {len(suppressed)} suppressed buckets for the next cycle"
                )
                return False

            for bucket in suppressed:
                if self._suppressed.get(bucket.fingerprint) is not bucket:
                    continue
                # Occurrences merged in while the summary was in flight stay for the next one
                reported = reported_counts[bucket.fingerprint]
                if bucket.count > reported:
                    bucket.count -= reported
                else:
                    del self._suppressed[bucket.fingerprint]
            self.aggregator.mark_notified(updated)
            self._stats.last_summary_at = self._now()

        log_summary_sent(len(suppressed), sum(reported_counts.values()), len(updated))
        return True

    def prune(self) -> int:
        """Drop stale buckets and trim the suppressed table. Returns buckets removed."""
        with self._lock:
            removed = self.aggregator.prune(self.config.bucket_max_age_ms)
            trimmed = self._trim_suppressed()
        if removed or trimmed:
            logger.info(f"Pruned {removed} stale buckets, trimmed {trimmed} suppressed entries")
        return removed

    def flush_pending(self) -> int:
        """
        Flush every bucket still waiting on its aggregation window through
        the normal rate-limit path. Used before shutdown.
        """
        with self._lock:
            buckets = self.aggregator.flush_all()
            for bucket in buckets:
                self.handle_flushed_bucket(bucket)
        return len(buckets)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def get_stats(self) -> TransportStats:
        """Snapshot copy of the pipeline counters."""
        with self._lock:
            return replace(self._stats)

    def get_queue_snapshot(self) -> List[ErrorBucket]:
        with self._lock:
            return list(self._queue)

    @property
    def queue_size(self) -> int:
        with self._lock:
            return len(self._queue)

    def get_suppressed(self) -> Dict[str, ErrorBucket]:
        with self._lock:
            return dict(self._suppressed)

    def is_idle(self) -> bool:
        """True when nothing is queued and no delivery worker is active."""
        with self._lock:
            return not self._queue and not self._processing

    def wait_until_idle(self, timeout: float = 30.0, poll_interval: float = 0.1) -> bool:
        """Block until the delivery queue drains (ThreadedScheduler only)."""
        deadline = time.monotonic() + timeout
        while not self.is_idle():
            if time.monotonic() >= deadline:
                return False
            time.sleep(poll_interval)
        return True

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Cancel timers and pending flushes, then close the sink."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._summary_timer:
                self._summary_timer.cancel()
            self._prune_timer.cancel()
            self.aggregator.reset()
            dropped = len(self._queue)
            self._queue.clear()
            self._processing = False

        if dropped:
            logger.warning(f"Pipeline closed with {dropped} undelivered buckets in queue")
        if self._owns_scheduler:
            self._scheduler.shutdown()

        try:
            self.sink.close()
        except Exception as e:
            logger.error(f"Failed to close sink {self.sink.name}: {e}", exc_info=True)
        logger.info(f"Error notification pipeline closed: {self._stats.to_dict()}")
