#!/usr/bin/env python3
"""
send_test_error.py - push synthetic errors through the notification pipeline
-----------------------------------------------------------------------------
Builds a pipeline from the environment (DISCORD_WEBHOOK_URL /
SLACK_WEBHOOK_URL / SENTRY_DSN, ERROR_MONITOR_* settings), ingests one or
more synthetic errors, flushes them, waits for delivery and prints stats.

Exit codes
----------
0  All buckets delivered (or suppressed by the rate limiter)
1  At least one delivery failed
2  Delivery did not finish within --timeout

Usage
-----
# one database connection error (CRITICAL, sent immediately)
error-monitor-send-test --kind database

# ten identical validation errors -> one "(x10)" notification
error-monitor-send-test --kind validation --repeat 10
"""

import argparse
import json
import logging
import sys
from typing import Dict, Tuple, Type

from dotenv import load_dotenv

from error_monitor.alerts.pipeline import ErrorNotificationPipeline
from error_monitor.config.pipeline_config import PipelineConfig
from error_monitor.notifications.sinks import build_sink_from_env

logger = logging.getLogger(__name__)

# kind -> (exception type, message)
TEST_ERRORS: Dict[str, Tuple[Type[Exception], str]] = {
    'database': (ConnectionRefusedError, "connect ECONNREFUSED 127.0.0.1:5432"),
    'redis': (ConnectionError, "Redis connection to 127.0.0.1:6379 failed - ECONNREFUSED"),
    'network': (TimeoutError, "Request to https://api.example.com/v1/users/12345 timed out"),
    'validation': (ValueError, "Validation failed for field 'email' on request 9f1c2a7e-4b3d-4c8e-9a6f-2d5e8b7c1a3f"),
    'generic': (RuntimeError, "Unexpected state while processing job 48213"),
}


def _raise_test_error(kind: str) -> None:
    error_type, message = TEST_ERRORS[kind]
    raise error_type(message)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Send synthetic errors through the error notification pipeline')
    parser.add_argument('--kind', choices=sorted(TEST_ERRORS), default='generic', help='Kind of error to send')
    parser.add_argument('--repeat', type=int, default=1, help='Number of identical occurrences to ingest')
    parser.add_argument('--timeout', type=float, default=30.0, help='Seconds to wait for delivery')
    parser.add_argument('--env-file', default=None, help='Load environment variables from this file')
    parser.add_argument('--verbose', action='store_true', help='Enable debug logging')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.repeat < 1:
        print("--repeat must be at least 1", file=sys.stderr)
        return 2

    load_dotenv(args.env_file)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    config = PipelineConfig.from_env(enable_summary=False)
    pipeline = ErrorNotificationPipeline(build_sink_from_env(), config)

    try:
        for attempt in range(args.repeat):
            try:
                _raise_test_error(args.kind)
            except Exception as e:
                pipeline.ingest(None, "error", {'error': e, 'source': 'send_test_error', 'attempt': attempt + 1})

        # Skip the aggregation window instead of waiting it out
        flushed = pipeline.flush_pending()
        logger.info(f"Flushed {flushed} pending buckets")
        finished = pipeline.wait_until_idle(timeout=args.timeout)
        stats = pipeline.get_stats()
    finally:
        pipeline.close()

    print(json.dumps(stats.to_dict(), indent=2))

    if not finished:
        print(f"Delivery did not finish within {args.timeout:.0f}s", file=sys.stderr)
        return 2
    return 1 if stats.total_failed else 0


if __name__ == '__main__':
    sys.exit(main())
