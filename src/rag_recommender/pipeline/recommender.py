"""Retrieve -> compose -> generate -> parse orchestration."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from enum import Enum
from typing import ClassVar, TypeVar

from rag_recommender.config import PipelineConfig
from rag_recommender.errors import (
    GenerationError,
    ParseError,
    PromptTooLargeError,
    RequestCancelled,
    RetrievalError,
)
from rag_recommender.generation.client import GenerationClient
from rag_recommender.obs.tracing import StageTiming, Timer
from rag_recommender.parsing.parser import ResponseParser
from rag_recommender.pipeline.retry import RetryPolicy
from rag_recommender.prompt.composer import PromptComposer
from rag_recommender.retrieval.document_store import DocumentStore
from rag_recommender.types import (
    CandidateRecord,
    ComposedPrompt,
    PipelineWarning,
    RawGeneration,
    RecommendationSet,
    UserQuery,
    WarningKind,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Stage(str, Enum):
    RETRIEVING = "retrieving"
    COMPOSING = "composing"
    GENERATING = "generating"
    PARSING = "parsing"
    DONE = "done"
    FAILED = "failed"


class FailureReason(str, Enum):
    PROMPT_TOO_LARGE = "prompt_too_large"
    GENERATION_EXHAUSTED = "generation_exhausted"
    GENERATION_FAILED = "generation_failed"
    NO_USABLE_OUTPUT = "no_usable_output"
    CANCELLED = "cancelled"


@dataclass(frozen=True, slots=True)
class RequestState:
    """Everything one request has produced so far.

    A new value is created at every transition; nothing here is shared with
    other requests.
    """

    query: UserQuery
    stage: Stage = Stage.RETRIEVING
    candidates: tuple[CandidateRecord, ...] = ()
    prompt: ComposedPrompt | None = None
    generation: RawGeneration | None = None
    warnings: tuple[PipelineWarning, ...] = ()
    timings: tuple[StageTiming, ...] = ()

    def advance(self, stage: Stage, **changes: object) -> "RequestState":
        return replace(self, stage=stage, **changes)

    def warn(self, *warnings: PipelineWarning) -> "RequestState":
        return replace(self, warnings=self.warnings + warnings)

    def timed(self, timer: Timer) -> "RequestState":
        timing = StageTiming(stage=self.stage.value, latency_ms=timer.elapsed_ms)
        return replace(self, timings=self.timings + (timing,))


@dataclass(frozen=True, slots=True)
class Done:
    recommendations: RecommendationSet
    warnings: tuple[PipelineWarning, ...] = ()
    timings: tuple[StageTiming, ...] = ()

    ok: ClassVar[bool] = True


@dataclass(frozen=True, slots=True)
class Failed:
    reason: FailureReason
    detail: str
    stage: Stage
    warnings: tuple[PipelineWarning, ...] = ()
    timings: tuple[StageTiming, ...] = ()

    ok: ClassVar[bool] = False


Outcome = Done | Failed


class RecommendationPipeline:
    """Runs one recommendation request through every stage.

    Failure policy:
    - Retrieval errors degrade to a candidate-free prompt with a warning.
    - Oversized prompts, exhausted or non-retryable generation errors and
      unusable output end the request with a tagged `Failed`.
    - Setting the optional `cancel` event aborts the outstanding external
      call and returns `Failed(CANCELLED)`.

    The pipeline keeps no per-request state, so one instance can serve many
    concurrent requests.
    """

    def __init__(
        self,
        *,
        document_store: DocumentStore,
        generation_client: GenerationClient,
        config: PipelineConfig | None = None,
        composer: PromptComposer | None = None,
        parser: ResponseParser | None = None,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or PipelineConfig()
        self.document_store = document_store
        self.generation_client = generation_client
        self.composer = composer or PromptComposer(self.config.prompt)
        self.parser = parser or ResponseParser(self.config.parser)
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config.retry)
        self._sleep = sleep

    async def recommend(self, query: UserQuery, *, cancel: asyncio.Event | None = None) -> Outcome:
        state = RequestState(query=query)
        try:
            state = await self._retrieve(state, cancel)

            _ensure_active(cancel)
            state = state.advance(Stage.COMPOSING)
            try:
                state, prompt = self._compose(state)
            except PromptTooLargeError as exc:
                return _fail(state, FailureReason.PROMPT_TOO_LARGE, str(exc))

            _ensure_active(cancel)
            state = state.advance(Stage.GENERATING)
            try:
                state, generation = await self._generate(state, prompt, cancel)
            except GenerationError as exc:
                reason = (
                    FailureReason.GENERATION_EXHAUSTED
                    if exc.retryable
                    else FailureReason.GENERATION_FAILED
                )
                return _fail(state, reason, f"{exc.__class__.__name__}: {exc}")

            state = state.advance(Stage.PARSING)
            return self._parse(state, generation)
        except RequestCancelled as exc:
            return _fail(state, FailureReason.CANCELLED, str(exc))

    async def _retrieve(self, state: RequestState, cancel: asyncio.Event | None) -> RequestState:
        limit = self.config.retrieval.top_k
        with Timer() as timer:
            try:
                candidates = await _guard(self.document_store.search(state.query.text, limit), cancel)
            except RetrievalError as exc:
                logger.warning(f"Retrieval failed, continuing without candidates: {exc}")
                state = state.warn(
                    PipelineWarning(WarningKind.RETRIEVAL_DEGRADED, f"Retrieval unavailable: {exc}")
                )
                candidates = []
        logger.debug(f"Retrieved {len(candidates)} candidates")
        return state.advance(state.stage, candidates=tuple(candidates[:limit])).timed(timer)

    def _compose(self, state: RequestState) -> tuple[RequestState, ComposedPrompt]:
        with Timer() as timer:
            prompt = self.composer.compose(state.query, state.candidates)
        dropped = len(state.candidates) - len(prompt.candidate_ids)
        if dropped:
            state = state.warn(
                PipelineWarning(
                    WarningKind.CANDIDATES_TRUNCATED,
                    f"Dropped {dropped} least relevant candidates to fit {prompt.budget_chars} characters",
                )
            )
        logger.debug(f"Composed prompt of {prompt.size} characters (~{prompt.approx_tokens} tokens)")
        return state.advance(state.stage, prompt=prompt).timed(timer), prompt

    async def _generate(
        self, state: RequestState, prompt: ComposedPrompt, cancel: asyncio.Event | None
    ) -> tuple[RequestState, RawGeneration]:
        retry_number = 0
        with Timer() as timer:
            while True:
                try:
                    generation = await _guard(self.generation_client.generate(prompt), cancel)
                    break
                except GenerationError as exc:
                    retry_number += 1
                    delay = self.retry_policy.delay_for(retry_number, exc)
                    if delay is None:
                        raise
                    logger.warning(
                        f"Generation attempt {retry_number} failed with {exc.__class__.__name__}, "
                        f"retrying in {delay:.2f}s"
                    )
                    await _guard(self._sleep(delay), cancel)
        return state.advance(state.stage, generation=generation).timed(timer), generation

    def _parse(self, state: RequestState, generation: RawGeneration) -> Outcome:
        with Timer() as timer:
            try:
                result = self.parser.parse(generation.text)
            except ParseError as exc:
                return _fail(state.warn(*exc.warnings), FailureReason.NO_USABLE_OUTPUT, str(exc))
        state = state.warn(*result.warnings).timed(timer).advance(Stage.DONE)
        for warning in result.warnings:
            logger.info(f"Parse warning ({warning.kind.value}): {warning.message}")
        return Done(
            recommendations=result.recommendations,
            warnings=state.warnings,
            timings=state.timings,
        )


def _fail(state: RequestState, reason: FailureReason, detail: str) -> Failed:
    logger.error(f"Recommendation failed during {state.stage.value}: {reason.value} ({detail})")
    return Failed(
        reason=reason,
        detail=detail,
        stage=state.stage,
        warnings=state.warnings,
        timings=state.timings,
    )


def _ensure_active(cancel: asyncio.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise RequestCancelled("Request cancelled by caller")


async def _guard(awaitable: Awaitable[T], cancel: asyncio.Event | None) -> T:
    """Await `awaitable` unless `cancel` fires first, in which case it is cancelled."""
    if cancel is None:
        return await awaitable
    if cancel.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise RequestCancelled("Request cancelled by caller")

    call = asyncio.ensure_future(awaitable)
    watcher = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({call, watcher}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        watcher.cancel()
        abandoned = not call.done()
        if abandoned:
            call.cancel()
    if abandoned:
        await asyncio.wait({call})
        raise RequestCancelled("Request cancelled by caller")
    return call.result()
