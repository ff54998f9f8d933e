"""Application services of the analysis pipeline."""

from .job_queue import JobQueue
from .orchestrator import AnalysisOrchestrator
from .pipeline import AnalysisPipeline, ResultSink

__all__ = ["AnalysisOrchestrator", "AnalysisPipeline", "JobQueue", "ResultSink"]
