"""Extraction and validation of recommendations from generated text."""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError

from rag_recommender.config import ParserConfig
from rag_recommender.errors import ParseError
from rag_recommender.types import (
    PipelineWarning,
    Recommendation,
    RecommendationSet,
    WarningKind,
)

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json|JSON)?\s*(.*?)(?:```|$)", flags=re.DOTALL)
_TAG_PATTERN = re.compile(r"<[^>]+>")
_ENTRY_START = re.compile(r'\[\s*(?:\{|$)|\{\s*(?:"|$)')
_WRAPPER_KEYS = ("recommendations", "cars", "vehicles", "results", "items")

_ALIASES = {
    "make": "brand",
    "manufacturer": "brand",
    "model_name": "model",
    "model_year": "year",
    "price_usd": "price",
    "cost": "price",
    "interior": "interior_size",
    "size": "interior_size",
    "maintenance": "maintenance_rating",
    "interior_score": "interior_rating",
    "interior_comfort": "interior_rating",
    "general": "general_rating",
    "overall": "general_rating",
    "overall_rating": "general_rating",
    "summary": "description",
}
_NESTED_RATINGS = {
    "maintenance": "maintenance_rating",
    "interior": "interior_rating",
    "general": "general_rating",
    "overall": "general_rating",
}

_decoder = json.JSONDecoder()
_BROKEN = object()


@dataclass(frozen=True, slots=True)
class ParseResult:
    recommendations: RecommendationSet
    warnings: tuple[PipelineWarning, ...]


class ResponseParser:
    """Turns free-form model output into a validated `RecommendationSet`.

    Extraction order:
    1. Take the first fenced code block if present, else the whole text.
    2. Decode the first JSON value holding objects; prose around it, including
       stray brackets, is ignored.
    3. If only a malformed or cut-off block was found, salvage every complete
       object in it individually and report the broken ones.

    Each entry is then validated on its own. Invalid entries are dropped with
    a warning; values are never clamped or filled in.
    """

    def __init__(self, config: ParserConfig | None = None) -> None:
        self.config = config or ParserConfig()

    def parse(self, text: str) -> ParseResult:
        if not text or not text.strip():
            return ParseResult(
                recommendations=RecommendationSet(),
                warnings=(PipelineWarning(WarningKind.NO_CONTENT, "Generation returned no content"),),
            )

        warnings: list[PipelineWarning] = []
        entries = _extract_entries(_structured_block(text), warnings)

        valid: list[Recommendation] = []
        for index, entry in enumerate(entries):
            if entry is _BROKEN:
                continue
            recommendation = self._validate_entry(index, entry, warnings)
            if recommendation is not None:
                valid.append(recommendation)

        if not valid:
            raise ParseError(
                f"No valid recommendation in {len(entries)} extracted entries", warnings
            )

        cap = self.config.max_recommendations
        if len(valid) > cap:
            warnings.append(
                PipelineWarning(
                    WarningKind.RESULTS_TRUNCATED,
                    f"Kept the first {cap} of {len(valid)} valid recommendations",
                )
            )
            valid = valid[:cap]

        return ParseResult(recommendations=RecommendationSet(tuple(valid)), warnings=tuple(warnings))

    def _validate_entry(
        self, index: int, entry: Any, warnings: list[PipelineWarning]
    ) -> Recommendation | None:
        if not isinstance(entry, dict):
            warnings.append(
                PipelineWarning(
                    WarningKind.ENTRY_DROPPED,
                    f"Entry is a {type(entry).__name__}, not an object",
                    entry_index=index,
                )
            )
            return None

        fields = _normalize_keys(entry)
        description = fields.get("description")
        if isinstance(description, str):
            description = " ".join(_TAG_PATTERN.sub("", description).split())
            cap = self.config.description_max_chars
            if len(description) > cap:
                warnings.append(
                    PipelineWarning(
                        WarningKind.DESCRIPTION_TRUNCATED,
                        f"Description shortened from {len(description)} to {cap} characters",
                        entry_index=index,
                    )
                )
                description = description[:cap].rstrip()
            fields["description"] = description
        elif description is None:
            fields.pop("description", None)

        try:
            return Recommendation.model_validate(fields)
        except ValidationError as exc:
            reason = _describe_errors(exc)
            logger.debug(f"Dropping entry {index}: {reason}")
            warnings.append(PipelineWarning(WarningKind.ENTRY_DROPPED, reason, entry_index=index))
            return None


def _structured_block(text: str) -> str:
    match = _FENCE_PATTERN.search(text)
    if match and match.group(1).strip():
        return match.group(1)
    return text


def _extract_entries(block: str, warnings: list[PipelineWarning]) -> list[Any]:
    # Bracketed prose such as "[1]" or "{family}" is stepped over. A start that
    # opens an object or an array of objects but fails to decode is salvaged,
    # unless a later start decodes to entries.
    first_decoded: list[Any] | None = None
    salvage_start: int | None = None
    pos = 0
    while True:
        start = _next_json_start(block, pos)
        if start is None:
            break
        try:
            value, end = _decoder.raw_decode(block, start)
        except json.JSONDecodeError:
            if not _ENTRY_START.match(block, start):
                pos = start + 1
                continue
            if salvage_start is None:
                salvage_start = start
            close = _matching_close(block, start)
            if close is None:
                break
            pos = close + 1
            continue
        entries = _unwrap(value)
        if any(isinstance(entry, dict) for entry in entries):
            return entries
        if first_decoded is None:
            first_decoded = entries
        pos = end

    if salvage_start is not None:
        logger.debug("Structured block is not valid JSON, salvaging entries")
        return _salvage_objects(block, salvage_start, warnings)
    return first_decoded or []


def _next_json_start(block: str, pos: int) -> int | None:
    positions = [found for found in (block.find("[", pos), block.find("{", pos)) if found != -1]
    return min(positions) if positions else None


def _unwrap(value: Any) -> list[Any]:
    if isinstance(value, list):
        return value
    if isinstance(value, dict):
        for key in _WRAPPER_KEYS:
            inner = value.get(key)
            if isinstance(inner, list):
                return inner
        return [value]
    return [value]


def _salvage_objects(block: str, start: int, warnings: list[PipelineWarning]) -> list[Any]:
    """Decode every top-level entry object independently.

    A `{"recommendations": [...]}` wrapper is stepped into first. Objects that
    do not decode are reported and skipped; an unterminated trailing object
    ends the scan.
    """

    pos = start
    if block[pos] == "{":
        wrapper = re.match(r'\{\s*"[^"]*"\s*:\s*\[', block[pos:])
        if wrapper:
            pos += wrapper.end()
    else:
        pos += 1

    entries: list[Any] = []
    while True:
        pos = block.find("{", pos)
        if pos == -1:
            break
        end = _matching_close(block, pos)
        if end is None:
            warnings.append(
                PipelineWarning(
                    WarningKind.ENTRY_DROPPED,
                    "Output ended inside an unterminated entry",
                    entry_index=len(entries),
                )
            )
            break
        try:
            entries.append(json.loads(block[pos : end + 1]))
        except json.JSONDecodeError as exc:
            warnings.append(
                PipelineWarning(
                    WarningKind.ENTRY_DROPPED,
                    f"Entry is not valid JSON: {exc.msg}",
                    entry_index=len(entries),
                )
            )
            # Placeholder keeps entry indexes aligned with the output order.
            entries.append(_BROKEN)
        pos = end + 1
    return entries


def _matching_close(text: str, start: int) -> int | None:
    opener = text[start]
    closer = "}" if opener == "{" else "]"
    depth = 0
    in_string = False
    escaped = False
    for pos in range(start, len(text)):
        char = text[pos]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == opener:
            depth += 1
        elif char == closer:
            depth -= 1
            if depth == 0:
                return pos
    return None


def _normalize_keys(entry: dict[str, Any]) -> dict[str, Any]:
    fields: dict[str, Any] = {}
    for raw_key, value in entry.items():
        key = re.sub(r"[\s\-]+", "_", str(raw_key).strip().lower())
        if key == "ratings" and isinstance(value, dict):
            for rating_key, rating in value.items():
                name = str(rating_key).strip().lower()
                target = _NESTED_RATINGS.get(name, f"{name}_rating")
                fields.setdefault(target, rating)
            continue
        fields[_ALIASES.get(key, key)] = value
    return fields


def _describe_errors(exc: ValidationError) -> str:
    parts: list[str] = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "entry"
        if error["type"] == "missing":
            parts.append(f"missing field {location}")
        else:
            parts.append(f"{location}: {error['msg']}")
    return "; ".join(parts)
