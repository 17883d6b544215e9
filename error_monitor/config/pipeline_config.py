"""
Pipeline Configuration

All recognized options of the error notification pipeline, with defaults
from error_monitor/constants/resilience.py. Every option can be overridden
through an ``ERROR_MONITOR_<FIELD>`` environment variable.

Usage:
    from error_monitor.config.pipeline_config import PipelineConfig

    config = PipelineConfig(max_messages_per_window=30)
    config = PipelineConfig.from_env()   # ERROR_MONITOR_MAX_MESSAGES_PER_WINDOW=30
"""

import logging
import os
from dataclasses import dataclass, fields
from typing import Any, Dict, Mapping, Optional

from error_monitor.constants import resilience

logger = logging.getLogger(__name__)

ENV_PREFIX = "ERROR_MONITOR_"

LOG_LEVELS = {
    'debug': 10,
    'info': 20,
    'warn': 30,
    'warning': 30,
    'error': 40,
    'critical': 50,
    'fatal': 50,
}


def level_value(level: Optional[str]) -> int:
    """Numeric value of a level name; unknown names count as error."""
    return LOG_LEVELS.get(str(level or 'error').lower(), LOG_LEVELS['error'])


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in ('true', '1', 'yes', 'on')


@dataclass
class PipelineConfig:
    """Configuration for ErrorNotificationPipeline."""

    # Rate limiting
    window_duration_ms: int = resilience.WINDOW_DURATION_MS
    max_messages_per_window: int = resilience.MAX_MESSAGES_PER_WINDOW

    # Aggregation
    aggregation_window_ms: int = resilience.AGGREGATION_WINDOW_MS
    max_samples_per_bucket: int = resilience.MAX_SAMPLES_PER_BUCKET

    # Summary
    summary_interval_ms: int = resilience.SUMMARY_INTERVAL_MS
    enable_summary: bool = True

    # Severity bypass
    critical_bypass_rate_limit: bool = True

    # Bounds and delivery pacing
    max_queue_size: int = resilience.MAX_QUEUE_SIZE
    max_suppressed_buckets: int = resilience.MAX_SUPPRESSED_BUCKETS
    inter_message_delay_ms: int = resilience.INTER_MESSAGE_DELAY_MS
    default_retry_after_ms: int = resilience.DEFAULT_RETRY_AFTER_MS
    max_rate_limit_retries: int = resilience.MAX_RATE_LIMIT_RETRIES
    bucket_max_age_ms: int = resilience.BUCKET_MAX_AGE_MS
    prune_interval_ms: int = resilience.PRUNE_INTERVAL_MS

    # Events below this level are ignored
    min_level: str = "error"

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise ValueError for settings the pipeline cannot run with."""
        positive = (
            'window_duration_ms',
            'max_messages_per_window',
            'aggregation_window_ms',
            'summary_interval_ms',
            'max_queue_size',
            'max_suppressed_buckets',
            'bucket_max_age_ms',
            'prune_interval_ms',
        )
        for name in positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        non_negative = (
            'max_samples_per_bucket',
            'inter_message_delay_ms',
            'default_retry_after_ms',
            'max_rate_limit_retries',
        )
        for name in non_negative:
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")

        if str(self.min_level).lower() not in LOG_LEVELS:
            raise ValueError(f"Unknown min_level '{self.min_level}'")

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None, **overrides) -> "PipelineConfig":
        """
        Build a config from ERROR_MONITOR_* environment variables.

        Args:
            environ: Mapping to read instead of os.environ
            **overrides: Explicit values that win over the environment
        """
        environ = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        for f in fields(cls):
            raw = environ.get(f"{ENV_PREFIX}{f.name.upper()}")
            if raw is None:
                continue
            if f.type in (bool, 'bool'):
                values[f.name] = _parse_bool(raw)
            elif f.type in (int, 'int'):
                try:
                    values[f.name] = int(raw)
                except ValueError:
                    logger.warning(f"Ignoring non-integer {ENV_PREFIX}{f.name.upper()}={raw!r}")
            else:
                values[f.name] = raw

        values.update(overrides)
        return cls(**values)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}
