"""
Structured logging (structlog), run correlation and progress tracking.
"""

from .config import LoggerConfig
from .correlation import CorrelationContext
from .progress import ProgressTracker

__all__ = ['LoggerConfig', 'CorrelationContext', 'ProgressTracker']
