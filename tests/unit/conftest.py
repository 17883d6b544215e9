# tests/unit/conftest.py
"""
Shared pytest configuration for unit tests.

Puts the project root at the front of sys.path and provides the pipeline
fixtures: a VirtualScheduler (manual clock), a scriptable RecordingSink and
a pipeline wired to both.
"""
import sys
import os

import pytest

# Add project root to path FIRST to ensure proper import resolution
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), '..', '..'))
if project_root in sys.path:
    sys.path.remove(project_root)
sys.path.insert(0, project_root)

from error_monitor.alerts.error_types import DeliveryResult  # noqa: E402
from error_monitor.alerts.pipeline import ErrorNotificationPipeline  # noqa: E402
from error_monitor.config.pipeline_config import PipelineConfig  # noqa: E402
from error_monitor.notifications.sinks import NotificationSink  # noqa: E402
from error_monitor.utils.scheduler import VirtualScheduler  # noqa: E402


class RecordingSink(NotificationSink):
    """
    Sink that records every delivered message.

    Queue up results with ``responses``; once exhausted every delivery
    succeeds.
    """

    name = "recording"

    def __init__(self):
        self.messages = []
        self.responses = []
        self.closed = False

    def deliver(self, message):
        self.messages.append(message)
        if self.responses:
            return self.responses.pop(0)
        return DeliveryResult.ok()

    def close(self):
        self.closed = True

    @property
    def bucket_messages(self):
        return [m for m in self.messages if not m.is_summary]

    @property
    def summaries(self):
        return [m for m in self.messages if m.is_summary]


@pytest.fixture
def scheduler():
    """Manual-clock scheduler; call scheduler.advance(seconds) to fire timers."""
    return VirtualScheduler()


@pytest.fixture
def recording_sink():
    return RecordingSink()


@pytest.fixture
def make_pipeline(scheduler, recording_sink):
    """Factory building pipelines with config overrides."""
    created = []

    def _make(**overrides):
        pipeline = ErrorNotificationPipeline(
            recording_sink,
            PipelineConfig(**overrides),
            scheduler=scheduler,
        )
        created.append(pipeline)
        return pipeline

    yield _make

    for pipeline in created:
        pipeline.close()


@pytest.fixture
def pipeline(make_pipeline):
    """Pipeline with default settings."""
    return make_pipeline()
