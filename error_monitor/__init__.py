# error_monitor/__init__.py
"""
Error monitoring notification pipeline.

Turns a stream of application errors into a small number of deduplicated,
rate-limited notifications plus a periodic summary.
"""

from .alerts.pipeline import ErrorNotificationPipeline
from .config.pipeline_config import PipelineConfig
from .notifications.sinks import build_sink_from_env
from .utils.log_handler import PipelineLogHandler

__all__ = [
    "ErrorNotificationPipeline",
    "PipelineConfig",
    "PipelineLogHandler",
    "build_sink_from_env",
]
