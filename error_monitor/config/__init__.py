# error_monitor/config/__init__.py
from .pipeline_config import PipelineConfig

__all__ = ["PipelineConfig"]
