"""Budgeted prompt composition from a user query and retrieved candidates."""

from __future__ import annotations

import logging

from rag_recommender.config import PromptConfig
from rag_recommender.errors import PromptTooLargeError
from rag_recommender.obs.tracing import estimate_token_count
from rag_recommender.types import CandidateRecord, ComposedPrompt, Turn, UserQuery

logger = logging.getLogger(__name__)

RESPONSE_FIELDS = (
    "brand",
    "model",
    "year",
    "price",
    "interior_size",
    "description",
    "maintenance_rating",
    "interior_rating",
    "general_rating",
)

_SYSTEM_TEMPLATE = """
You are a car recommendation assistant.
Recommend at most {max_items} cars that fit the user's profile and request.

Output contract:
1) Reply with a JSON array only. Never use HTML tags or markdown inside values.
2) Each element is an object with exactly these keys: {fields}.
3) year is a four-digit integer. price is a positive number without currency symbols.
4) Ratings are integers from 0 (worst) to 10 (best):
   - maintenance_rating: how cheap and easy the car is to maintain.
   - interior_rating: cabin space and comfort for this user's household.
   - general_rating: overall fit for this user.
5) description has at most {description_cap} characters and is written in {language}.
6) When candidate vehicles are listed, prefer them and never contradict their details.
""".strip()


class PromptComposer:
    """Builds deterministic prompts that never exceed `max_chars`.

    The system turn is fixed for a given config. The user turn carries the
    serialized preferences, the utterance and, when available, candidate
    descriptions ordered by relevance. Candidates are dropped whole from the
    least relevant end until the prompt fits; descriptions are never cut.
    """

    def __init__(self, config: PromptConfig | None = None) -> None:
        self.config = config or PromptConfig()
        self._system = _SYSTEM_TEMPLATE.format(
            max_items=self.config.max_recommendations,
            fields=", ".join(RESPONSE_FIELDS),
            description_cap=self.config.description_max_chars,
            language=self.config.target_language,
        )

    @property
    def system_instruction(self) -> str:
        return self._system

    def compose(
        self, query: UserQuery, candidates: list[CandidateRecord] | tuple[CandidateRecord, ...] = ()
    ) -> ComposedPrompt:
        budget = self.config.max_chars
        base_size = len(self._system) + len(_user_turn(query, []))
        if base_size > budget:
            raise PromptTooLargeError(base_size, budget)

        ranked = sorted(candidates, key=lambda item: item.score, reverse=True)
        keep = len(ranked)
        user_content = _user_turn(query, ranked)
        while keep > 0 and len(self._system) + len(user_content) > budget:
            keep -= 1
            user_content = _user_turn(query, ranked[:keep])

        if keep < len(ranked):
            logger.debug(f"Dropped {len(ranked) - keep} of {len(ranked)} candidates to fit the prompt budget")

        turns = (Turn(role="system", content=self._system), Turn(role="user", content=user_content))
        return ComposedPrompt(
            turns=turns,
            budget_chars=budget,
            approx_tokens=sum(estimate_token_count(turn.content) for turn in turns),
            candidate_ids=tuple(item.record_id for item in ranked[:keep]),
        )


def _user_turn(query: UserQuery, candidates: list[CandidateRecord]) -> str:
    sections: list[str] = []

    preferences = query.preference_lines()
    if preferences:
        sections.append("User profile:\n" + "\n".join(f"- {line}" for line in preferences))
    else:
        sections.append("User profile: not provided")

    sections.append("Request:\n" + query.text.strip())

    if candidates:
        lines = [
            f"[{item.record_id}] {' '.join(item.description.split())}" for item in candidates
        ]
        sections.append("Candidate vehicles (most relevant first):\n" + "\n".join(lines))

    return "\n\n".join(sections)
