"""Deterministic generation client that replays a fixed script."""

from __future__ import annotations

from collections import deque
from datetime import datetime, timezone

from rag_recommender.errors import GenerationError, Unavailable
from rag_recommender.generation.client import GenerationClient
from rag_recommender.types import ComposedPrompt, RawGeneration

_EPOCH = datetime(2000, 1, 1, tzinfo=timezone.utc)


class ScriptedGenerationClient(GenerationClient):
    """Replays texts and errors in order; used for tests and offline demos.

    Each `generate` call consumes the next script step. A `GenerationError`
    step is raised instead of returned. Prompts received are kept in
    `prompts` so callers can assert on what was sent.
    """

    def __init__(self, script: list[str | GenerationError]) -> None:
        self._script: deque[str | GenerationError] = deque(script)
        self.prompts: list[ComposedPrompt] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt: ComposedPrompt) -> RawGeneration:
        self.prompts.append(prompt)
        if not self._script:
            raise Unavailable("Generation script exhausted")
        step = self._script.popleft()
        if isinstance(step, GenerationError):
            raise step
        return RawGeneration(text=step, prompt=prompt, created_at=_EPOCH)
