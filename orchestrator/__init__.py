"""Run dispatch: background runs, progress observation and the daily schedule."""

from .service import PipelineFactory, RunService
from .store import InMemoryRunStore

__all__ = [
    "InMemoryRunStore",
    "PipelineFactory",
    "RunService",
]
