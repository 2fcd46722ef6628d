import asyncio
import json

from rag_recommender.config import PipelineConfig, PromptConfig
from rag_recommender.errors import InvalidResponse, RateLimited, RetrievalError, Timeout
from rag_recommender.generation.client import ChatModelGenerationClient, GenerationClient
from rag_recommender.generation.scripted import ScriptedGenerationClient
from rag_recommender.pipeline.recommender import (
    Done,
    Failed,
    FailureReason,
    RecommendationPipeline,
    Stage,
)
from rag_recommender.retrieval.catalog import parse_catalog
from rag_recommender.retrieval.document_store import InMemoryDocumentStore
from rag_recommender.types import CandidateRecord, ComposedPrompt, RawGeneration, UserQuery, WarningKind

_CATALOG = parse_catalog(
    [
        {"id": "volvo-xc90", "description": "Volvo XC90: seven seat family SUV with top safety scores.", "brand": "Volvo"},
        {"id": "kia-picanto", "description": "Kia Picanto: tiny city car that is cheap to run.", "brand": "Kia"},
        {"id": "honda-odyssey", "description": "Honda Odyssey: spacious minivan with sliding doors for families.", "brand": "Honda"},
    ]
)

_QUERY = UserQuery(text="Safe family car with seven seats", age=41, children=3, max_budget=60000)


def _entry(index: int, **overrides: object) -> dict[str, object]:
    entry: dict[str, object] = {
        "brand": "Volvo",
        "model": f"XC{90 + index}",
        "year": 2022,
        "price": 55000,
        "interior_size": "large",
        "description": "Seven seats and excellent crash ratings.",
        "maintenance_rating": 6,
        "interior_rating": 9,
        "general_rating": 9,
    }
    entry.update(overrides)
    return entry


def _generation(count: int = 2) -> str:
    return "Here you go:\n" + json.dumps([_entry(i) for i in range(count)])


class _SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class _FailingStore:
    async def search(self, query: str, limit: int) -> list[CandidateRecord]:
        raise RetrievalError("401 Unauthorized")


def _pipeline(generation_client, *, store=None, config=None, sleep=None) -> RecommendationPipeline:
    return RecommendationPipeline(
        document_store=store if store is not None else InMemoryDocumentStore(_CATALOG),
        generation_client=generation_client,
        config=config,
        sleep=sleep or _SleepRecorder(),
    )


def test_happy_path_grounds_prompt_in_retrieved_candidates() -> None:
    client = ScriptedGenerationClient([_generation(2)])

    outcome = asyncio.run(_pipeline(client).recommend(_QUERY))

    assert isinstance(outcome, Done)
    assert outcome.ok
    assert [rec.model for rec in outcome.recommendations] == ["XC90", "XC91"]
    assert outcome.warnings == ()
    assert [timing.stage for timing in outcome.timings] == [
        "retrieving",
        "composing",
        "generating",
        "parsing",
    ]
    sent = client.prompts[0]
    assert sent.candidate_ids[0] == "volvo-xc90"
    assert "[volvo-xc90]" in sent.turns[1].content


def test_retrieval_failure_degrades_to_generation_only() -> None:
    client = ScriptedGenerationClient([_generation(2)])

    outcome = asyncio.run(_pipeline(client, store=_FailingStore()).recommend(_QUERY))

    assert isinstance(outcome, Done)
    assert len(outcome.recommendations) == 2
    assert [warning.kind for warning in outcome.warnings] == [WarningKind.RETRIEVAL_DEGRADED]
    assert client.prompts[0].candidate_ids == ()
    assert "Candidate vehicles" not in client.prompts[0].turns[1].content


def test_rate_limited_twice_then_success_hides_retries() -> None:
    client = ScriptedGenerationClient([RateLimited("429"), RateLimited("429"), _generation(1)])
    sleep = _SleepRecorder()

    outcome = asyncio.run(_pipeline(client, sleep=sleep).recommend(_QUERY))

    assert isinstance(outcome, Done)
    assert len(outcome.recommendations) == 1
    assert outcome.warnings == ()
    assert client.calls == 3
    assert sleep.delays == [0.5, 1.0]


def test_timeouts_exhaust_retries() -> None:
    client = ScriptedGenerationClient([Timeout("t1"), Timeout("t2"), Timeout("t3"), _generation(1)])
    sleep = _SleepRecorder()

    outcome = asyncio.run(_pipeline(client, sleep=sleep).recommend(_QUERY))

    assert isinstance(outcome, Failed)
    assert not outcome.ok
    assert outcome.reason == FailureReason.GENERATION_EXHAUSTED
    assert outcome.stage == Stage.GENERATING
    assert client.calls == 3
    assert sleep.delays == [0.5, 1.0]


def test_invalid_response_is_not_retried() -> None:
    client = ScriptedGenerationClient([InvalidResponse("no text"), _generation(1)])

    outcome = asyncio.run(_pipeline(client).recommend(_QUERY))

    assert isinstance(outcome, Failed)
    assert outcome.reason == FailureReason.GENERATION_FAILED
    assert client.calls == 1


class _ContentFilteredChatModel:
    async def ainvoke(self, messages: list[object]) -> object:
        raise ValueError("Azure has not provided the response due to a content filter being triggered")


def test_unexpected_chat_model_error_becomes_failed_outcome() -> None:
    client = ChatModelGenerationClient(_ContentFilteredChatModel())

    outcome = asyncio.run(_pipeline(client).recommend(UserQuery(text="family car")))

    assert isinstance(outcome, Failed)
    assert outcome.reason == FailureReason.GENERATION_FAILED
    assert outcome.stage == Stage.GENERATING
    assert "content filter" in outcome.detail


def test_oversized_prompt_fails_before_generation() -> None:
    client = ScriptedGenerationClient([_generation(1)])
    config = PipelineConfig(prompt=PromptConfig(max_chars=200))

    outcome = asyncio.run(_pipeline(client, config=config).recommend(_QUERY))

    assert isinstance(outcome, Failed)
    assert outcome.reason == FailureReason.PROMPT_TOO_LARGE
    assert outcome.stage == Stage.COMPOSING
    assert client.calls == 0


def test_unusable_output_fails_with_drop_reasons() -> None:
    client = ScriptedGenerationClient([json.dumps([_entry(0, general_rating=15)])])

    outcome = asyncio.run(_pipeline(client).recommend(_QUERY))

    assert isinstance(outcome, Failed)
    assert outcome.reason == FailureReason.NO_USABLE_OUTPUT
    assert [warning.kind for warning in outcome.warnings] == [WarningKind.ENTRY_DROPPED]


def test_empty_generation_is_a_successful_empty_result() -> None:
    outcome = asyncio.run(_pipeline(ScriptedGenerationClient([""])).recommend(_QUERY))

    assert isinstance(outcome, Done)
    assert len(outcome.recommendations) == 0
    assert [warning.kind for warning in outcome.warnings] == [WarningKind.NO_CONTENT]


def test_warnings_accumulate_across_stages() -> None:
    client = ScriptedGenerationClient([json.dumps([_entry(i) for i in range(7)])])
    config = PipelineConfig.with_max_recommendations(5)

    outcome = asyncio.run(_pipeline(client, store=_FailingStore(), config=config).recommend(_QUERY))

    assert isinstance(outcome, Done)
    assert len(outcome.recommendations) == 5
    assert [warning.kind for warning in outcome.warnings] == [
        WarningKind.RETRIEVAL_DEGRADED,
        WarningKind.RESULTS_TRUNCATED,
    ]


class _BlockingGenerationClient(GenerationClient):
    def __init__(self) -> None:
        self.started = asyncio.Event()
        self.cancelled = False

    async def generate(self, prompt: ComposedPrompt) -> RawGeneration:
        self.started.set()
        try:
            await asyncio.sleep(30)
        except asyncio.CancelledError:
            self.cancelled = True
            raise
        raise AssertionError("generation should have been cancelled")


def test_cancellation_aborts_outstanding_generation() -> None:
    async def scenario():
        client = _BlockingGenerationClient()
        cancel = asyncio.Event()
        task = asyncio.create_task(_pipeline(client).recommend(_QUERY, cancel=cancel))
        await client.started.wait()
        cancel.set()
        outcome = await asyncio.wait_for(task, timeout=5)
        return client, outcome

    client, outcome = asyncio.run(scenario())

    assert isinstance(outcome, Failed)
    assert outcome.reason == FailureReason.CANCELLED
    assert outcome.stage == Stage.GENERATING
    assert client.cancelled


def test_cancellation_during_backoff() -> None:
    async def scenario():
        cancel = asyncio.Event()

        async def sleep(delay: float) -> None:
            cancel.set()
            await asyncio.sleep(30)

        client = ScriptedGenerationClient([RateLimited("429"), _generation(1)])
        outcome = await _pipeline(client, sleep=sleep).recommend(_QUERY, cancel=cancel)
        return client, outcome

    client, outcome = asyncio.run(scenario())

    assert isinstance(outcome, Failed)
    assert outcome.reason == FailureReason.CANCELLED
    assert client.calls == 1


def test_already_cancelled_request_never_calls_services() -> None:
    async def scenario():
        cancel = asyncio.Event()
        cancel.set()
        client = ScriptedGenerationClient([_generation(1)])
        outcome = await _pipeline(client).recommend(_QUERY, cancel=cancel)
        return client, outcome

    client, outcome = asyncio.run(scenario())

    assert isinstance(outcome, Failed)
    assert outcome.reason == FailureReason.CANCELLED
    assert outcome.stage == Stage.RETRIEVING
    assert client.calls == 0


class _EchoGenerationClient(GenerationClient):
    """Returns one recommendation named after the request it received."""

    async def generate(self, prompt: ComposedPrompt) -> RawGeneration:
        await asyncio.sleep(0)
        request = prompt.turns[1].content.split("Request:\n", 1)[1].split("\n", 1)[0]
        text = json.dumps([_entry(0, model=request)])
        return RawGeneration(text=text, prompt=prompt, created_at=None)  # type: ignore[arg-type]


def test_concurrent_requests_are_independent() -> None:
    pipeline = _pipeline(_EchoGenerationClient(), store=_FailingStore())
    queries = [UserQuery(text=f"request {i}") for i in range(5)]

    async def scenario():
        return await asyncio.gather(*(pipeline.recommend(query) for query in queries))

    outcomes = asyncio.run(scenario())

    assert [outcome.recommendations[0].model for outcome in outcomes] == [
        f"request {i}" for i in range(5)
    ]
    assert all(len(outcome.warnings) == 1 for outcome in outcomes)
