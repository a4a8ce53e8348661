"""Service layer modules for batch evaluation and persistence."""

from .ingestion import EvaluationPipeline, JobState, MeetingRecord, PipelineConfig
from .result_store import JsonResultStore, ResultStore, StoredEvaluation

__all__ = [
    "EvaluationPipeline",
    "JobState",
    "JsonResultStore",
    "MeetingRecord",
    "PipelineConfig",
    "ResultStore",
    "StoredEvaluation",
]
