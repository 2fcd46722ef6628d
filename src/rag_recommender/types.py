"""Shared domain models."""

from __future__ import annotations

import re
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

_PRICE_NOISE = re.compile(r"[\s,$€£]|USD|EUR|GBP", re.IGNORECASE)


class MaritalStatus(str, Enum):
    SINGLE = "single"
    MARRIED = "married"
    DIVORCED = "divorced"
    WIDOWED = "widowed"


class UserQuery(BaseModel):
    """A user utterance plus optional structured preferences."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(min_length=1)
    age: int | None = Field(default=None, gt=0, le=130)
    height_cm: float | None = Field(default=None, gt=0)
    weight_kg: float | None = Field(default=None, gt=0)
    marital_status: MaritalStatus | None = None
    children: int | None = Field(default=None, ge=0)
    max_budget: float | None = Field(default=None, gt=0)

    def preference_lines(self) -> list[str]:
        """Serialize the preferences that are present, in a fixed order."""
        lines: list[str] = []
        if self.age is not None:
            lines.append(f"Age: {self.age}")
        if self.height_cm is not None:
            lines.append(f"Height: {self.height_cm:g} cm")
        if self.weight_kg is not None:
            lines.append(f"Weight: {self.weight_kg:g} kg")
        if self.marital_status is not None:
            lines.append(f"Marital status: {self.marital_status.value}")
        if self.children is not None:
            lines.append(f"Children: {self.children}")
        if self.max_budget is not None:
            lines.append(f"Maximum budget: {self.max_budget:.2f}")
        return lines


@dataclass(frozen=True, slots=True)
class CandidateRecord:
    """A document returned by the document store with its relevance score."""

    record_id: str
    description: str
    score: float
    metadata: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not 0.0 <= self.score <= 1.0:
            raise ValueError(f"relevance score must be within [0, 1]: {self.score}")


@dataclass(frozen=True, slots=True)
class Turn:
    """One role-tagged prompt turn."""

    role: Literal["system", "user"]
    content: str


@dataclass(frozen=True, slots=True)
class ComposedPrompt:
    """Ordered prompt turns built against a character budget."""

    turns: tuple[Turn, ...]
    budget_chars: int
    approx_tokens: int
    candidate_ids: tuple[str, ...] = ()

    @property
    def size(self) -> int:
        return sum(len(turn.content) for turn in self.turns)

    @property
    def system(self) -> str:
        return self.turns[0].content


@dataclass(frozen=True, slots=True)
class RawGeneration:
    """Generated text tagged with the prompt that produced it."""

    text: str
    prompt: ComposedPrompt
    created_at: datetime


class Recommendation(BaseModel):
    """A validated car recommendation."""

    model_config = ConfigDict(frozen=True)

    brand: str = Field(min_length=1)
    model: str = Field(min_length=1)
    year: int = Field(gt=0)
    price: float = Field(gt=0)
    interior_size: str | None = None
    description: str = ""
    maintenance_rating: int = Field(ge=0, le=10)
    interior_rating: int = Field(ge=0, le=10)
    general_rating: int = Field(ge=0, le=10)

    @field_validator("price", mode="before")
    @classmethod
    def _strip_currency(cls, value: Any) -> Any:
        if isinstance(value, str):
            cleaned = _PRICE_NOISE.sub("", value)
            return cleaned or value
        return value

    @field_validator("interior_size", mode="before")
    @classmethod
    def _stringify_size(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


@dataclass(frozen=True, slots=True)
class RecommendationSet:
    """Immutable, ordered and capped list of recommendations."""

    items: tuple[Recommendation, ...] = ()

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self) -> Iterator[Recommendation]:
        return iter(self.items)

    def __getitem__(self, index: int) -> Recommendation:
        return self.items[index]


class WarningKind(str, Enum):
    RETRIEVAL_DEGRADED = "retrieval_degraded"
    CANDIDATES_TRUNCATED = "candidates_truncated"
    NO_CONTENT = "no_content"
    ENTRY_DROPPED = "entry_dropped"
    DESCRIPTION_TRUNCATED = "description_truncated"
    RESULTS_TRUNCATED = "results_truncated"


@dataclass(frozen=True, slots=True)
class PipelineWarning:
    """A non-fatal condition attached to a pipeline result."""

    kind: WarningKind
    message: str
    entry_index: int | None = None
