"""Error taxonomy shared by the pipeline stages."""

from __future__ import annotations

from rag_recommender.types import PipelineWarning


class RecommenderError(Exception):
    """Base class for every pipeline error."""


class RetrievalError(RecommenderError):
    """The document store could not be reached or rejected the request."""


class PromptTooLargeError(RecommenderError):
    """Even the candidate-free prompt does not fit the configured budget."""

    def __init__(self, size: int, budget: int) -> None:
        super().__init__(f"Prompt needs {size} characters but the budget is {budget}")
        self.size = size
        self.budget = budget


class GenerationError(RecommenderError):
    """The generation service failed to return usable text."""

    retryable = False


class RateLimited(GenerationError):
    retryable = True


class Timeout(GenerationError):
    retryable = True


class Unavailable(GenerationError):
    pass


class InvalidResponse(GenerationError):
    pass


class ParseError(RecommenderError):
    """No valid recommendation could be extracted from non-empty output."""

    def __init__(self, message: str, warnings: list[PipelineWarning] | None = None) -> None:
        super().__init__(message)
        self.warnings = list(warnings or [])


class RequestCancelled(RecommenderError):
    """The caller abandoned the request while it was in flight."""
