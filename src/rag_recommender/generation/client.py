"""Generation client contract and the LangChain chat-model adapter."""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any

import openai
from langchain_core.messages import BaseMessage, HumanMessage, SystemMessage

from rag_recommender.config import GenerationConfig
from rag_recommender.errors import InvalidResponse, RateLimited, Timeout, Unavailable
from rag_recommender.types import ComposedPrompt, RawGeneration

logger = logging.getLogger(__name__)


class GenerationClient(ABC):
    """Turns a composed prompt into raw generated text."""

    @abstractmethod
    async def generate(self, prompt: ComposedPrompt) -> RawGeneration:
        """Return generated text or raise a `GenerationError` subtype."""


class ChatModelGenerationClient(GenerationClient):
    """Adapter over a LangChain chat model such as `ChatOpenAI`.

    Provider exceptions are mapped onto the generation error taxonomy so the
    pipeline can decide on retries without knowing the provider.
    """

    def __init__(self, chat_model: Any, config: GenerationConfig | None = None) -> None:
        self.chat_model = chat_model
        self.config = config or GenerationConfig()

    async def generate(self, prompt: ComposedPrompt) -> RawGeneration:
        messages = to_messages(prompt)
        try:
            response = await asyncio.wait_for(
                self.chat_model.ainvoke(messages), timeout=self.config.timeout_seconds
            )
        except asyncio.TimeoutError as exc:
            raise Timeout(f"Generation exceeded {self.config.timeout_seconds:g}s") from exc
        except openai.RateLimitError as exc:
            raise RateLimited(str(exc)) from exc
        except openai.APITimeoutError as exc:
            raise Timeout(str(exc)) from exc
        except openai.OpenAIError as exc:
            raise Unavailable(f"{exc.__class__.__name__}: {exc}") from exc
        except Exception as exc:
            # Content filters and LangChain output errors surface as plain exceptions.
            raise InvalidResponse(f"{exc.__class__.__name__}: {exc}") from exc

        return RawGeneration(
            text=extract_text(response),
            prompt=prompt,
            created_at=datetime.now(timezone.utc),
        )


def to_messages(prompt: ComposedPrompt) -> list[BaseMessage]:
    messages: list[BaseMessage] = []
    for turn in prompt.turns:
        if turn.role == "system":
            messages.append(SystemMessage(content=turn.content))
        else:
            messages.append(HumanMessage(content=turn.content))
    return messages


def extract_text(response: Any) -> str:
    """Flatten chat-model output into text, rejecting shapes that carry none."""
    if isinstance(response, str):
        return response
    content = getattr(response, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, str):
                parts.append(item)
            elif isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
        return "".join(parts)
    raise InvalidResponse(f"Unsupported chat model response: {type(response).__name__}")
