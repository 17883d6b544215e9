"""
Logging Integration

Routes standard library log records into an ErrorNotificationPipeline so
existing ``logger.error(...)`` / ``logger.exception(...)`` calls produce
notifications without touching call sites.

Usage:
    pipeline = ErrorNotificationPipeline(build_sink_from_env())
    logging.getLogger().addHandler(PipelineLogHandler(pipeline))

    logger.error("Payment failed", extra={'order_id': 42})
    # -> pipeline.ingest("Payment failed", "error", {'order_id': 42})
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict

# Attributes every LogRecord carries; anything else came from ``extra``
_RECORD_ATTRIBUTES = frozenset(vars(logging.LogRecord('', 0, '', 0, '', (), None))) | {
    'message', 'asctime', 'taskName',
}

# The pipeline's own loggers; routing them back in would loop
INTERNAL_LOGGER_PREFIX = "error_monitor"


class PipelineLogHandler(logging.Handler):
    """logging.Handler feeding records at or above ``level`` into a pipeline."""

    def __init__(self, pipeline, level: int = logging.ERROR):
        super().__init__(level=level)
        self.pipeline = pipeline

    def _fields_from_record(self, record: logging.LogRecord) -> Dict[str, Any]:
        fields: Dict[str, Any] = {
            key: value for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and not key.startswith('_')
        }
        fields['logger'] = record.name
        fields['timestamp'] = datetime.fromtimestamp(record.created, tz=timezone.utc)

        if record.exc_info and record.exc_info[1] is not None:
            fields['error'] = record.exc_info[1]
        if record.stack_info and 'stack' not in fields:
            fields['stack'] = record.stack_info
        return fields

    def emit(self, record: logging.LogRecord) -> None:
        if record.name.startswith(INTERNAL_LOGGER_PREFIX):
            return
        try:
            self.pipeline.ingest(
                record.getMessage(),
                record.levelname.lower(),
                self._fields_from_record(record),
            )
        except Exception:
            self.handleError(record)
