"""Queue workers and job handlers."""

from .handlers import AnalysisHandlers, Handler, LoggingNotifier
from .pool import WorkerPool
from .queue_worker import QueueWorker

__all__ = ["AnalysisHandlers", "Handler", "LoggingNotifier", "QueueWorker", "WorkerPool"]
