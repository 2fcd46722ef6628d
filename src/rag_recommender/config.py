"""Configuration models for the recommendation pipeline."""

from __future__ import annotations

from pydantic import BaseModel, Field


class RetrievalConfig(BaseModel):
    """Configures how many candidates are requested from the document store."""

    top_k: int = Field(default=5, ge=1, le=50)


class PromptConfig(BaseModel):
    """Configures prompt composition and its character budget."""

    max_chars: int = Field(default=8000, ge=200)
    target_language: str = Field(default="English", min_length=1)
    description_max_chars: int = Field(default=100, ge=10)
    max_recommendations: int = Field(default=5, ge=1)


class ParserConfig(BaseModel):
    """Configures response validation and truncation."""

    max_recommendations: int = Field(default=5, ge=1)
    description_max_chars: int = Field(default=100, ge=10)


class RetryConfig(BaseModel):
    """Configures bounded exponential backoff for generation calls."""

    max_retries: int = Field(default=2, ge=0)
    base_delay_seconds: float = Field(default=0.5, ge=0.0)
    backoff_factor: float = Field(default=2.0, ge=1.0)


class GenerationConfig(BaseModel):
    """Configures the production generation adapter."""

    timeout_seconds: float = Field(default=30.0, gt=0.0)


class PipelineConfig(BaseModel):
    """Aggregates every stage configuration."""

    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    prompt: PromptConfig = Field(default_factory=PromptConfig)
    parser: ParserConfig = Field(default_factory=ParserConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    generation: GenerationConfig = Field(default_factory=GenerationConfig)

    @classmethod
    def with_max_recommendations(cls, count: int) -> "PipelineConfig":
        """Build a config whose prompt and parser agree on the result cap."""
        return cls(
            prompt=PromptConfig(max_recommendations=count),
            parser=ParserConfig(max_recommendations=count),
        )
