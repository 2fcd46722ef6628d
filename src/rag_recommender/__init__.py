"""Retrieval-augmented car recommendation pipeline."""

from .config import PipelineConfig
from .pipeline.recommender import Done, Failed, FailureReason, RecommendationPipeline
from .types import Recommendation, RecommendationSet, UserQuery

__all__ = [
    "Done",
    "Failed",
    "FailureReason",
    "PipelineConfig",
    "Recommendation",
    "RecommendationPipeline",
    "RecommendationSet",
    "UserQuery",
]
