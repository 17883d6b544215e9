"""
Centralized resilience constants for the error notification pipeline.

Single source of truth for delivery bounds, retry limits, message size
limits and circuit breaker defaults. PipelineConfig and the sinks take
their defaults from here.

Usage:
    from error_monitor.constants.resilience import MAX_QUEUE_SIZE, DEFAULT_RETRY_AFTER_MS
"""


# =============================================================================
# RATE LIMITING / AGGREGATION WINDOWS (milliseconds)
# =============================================================================

# Sliding window for outbound notifications (10 minutes)
WINDOW_DURATION_MS = 10 * 60 * 1000

# Notifications allowed per sliding window
MAX_MESSAGES_PER_WINDOW = 15

# Delay before a new bucket is flushed, letting repeats aggregate (30 seconds)
AGGREGATION_WINDOW_MS = 30 * 1000

# Metadata samples kept per bucket
MAX_SAMPLES_PER_BUCKET = 3

# Periodic suppressed-error summary (5 minutes)
SUMMARY_INTERVAL_MS = 5 * 60 * 1000


# =============================================================================
# MEMORY BOUNDS
# =============================================================================

# Delivery queue hard limit
MAX_QUEUE_SIZE = 50

# Suppressed-bucket table hard limit
MAX_SUPPRESSED_BUCKETS = 100

# Buckets idle for longer than this are pruned (30 minutes)
BUCKET_MAX_AGE_MS = 30 * 60 * 1000

# How often pruning runs (10 minutes)
PRUNE_INTERVAL_MS = 10 * 60 * 1000


# =============================================================================
# DELIVERY
# =============================================================================

# Spacing between consecutive sink deliveries
INTER_MESSAGE_DELAY_MS = 500

# Backoff when a sink reports rate limiting without a retry hint
DEFAULT_RETRY_AFTER_MS = 5000

# 429 retries per message before it is dropped
MAX_RATE_LIMIT_RETRIES = 3

# Webhook HTTP timeout (seconds)
WEBHOOK_TIMEOUT_SECONDS = 10


# =============================================================================
# MESSAGE SIZE LIMITS (characters)
# =============================================================================

# Representative error message inside a rendered bucket
MAX_MESSAGE_LENGTH = 2000

# Whole description (message + stack trace block)
MAX_DESCRIPTION_LENGTH = 4096

# Everything the sink carries for one message (title, description, fields)
MAX_TOTAL_LENGTH = 6000

# Single field value
MAX_FIELD_LENGTH = 1024

# Message length in the simplified fallback
SIMPLIFIED_MESSAGE_LENGTH = 500

# Stack trace is only attached if at least this much room is left
MIN_STACK_TRACE_SPACE = 100


# =============================================================================
# CIRCUIT BREAKER
# =============================================================================

# Consecutive sink failures before the circuit opens
CIRCUIT_BREAKER_THRESHOLD = 5

# Seconds the circuit stays open before testing recovery
CIRCUIT_BREAKER_TIMEOUT_SECONDS = 300

# Successful calls needed in half-open state to close the circuit
CIRCUIT_BREAKER_HALF_OPEN_ATTEMPTS = 1
