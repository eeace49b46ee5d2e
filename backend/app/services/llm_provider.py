"""
LLM provider for topic routing and caption adaptation.

Swap the provider with ``set_llm_provider`` to plug in another model; the
default is OpenAI chat completions in JSON mode.
"""
from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from openai import AsyncOpenAI, OpenAIError
from sqlalchemy.ext.asyncio import AsyncSession

from app.errors import ExternalServiceError
from app.services import settings_store
from app.settings import get_settings

logger = logging.getLogger(__name__)

MATCH_SCORE_CUTOFF = 50


@dataclass
class TopicMatch:
    destination_id: int
    score: float
    reason: str


@dataclass
class AdaptationResult:
    slides: list[str]
    quality_score: float


class LLMProvider(ABC):
    """Semantic matcher + language adaptation service."""

    @abstractmethod
    async def match_topics(self, caption: str, destinations: list[tuple[int, str]]) -> list[TopicMatch]:
        """Return matches for (id, topic description) pairs; scores are 0-100."""

    @abstractmethod
    async def adapt_caption(self, caption: str, feedback: str | None = None) -> AdaptationResult:
        """Return target-language slide texts and a self-assessed 1-10 score."""


def _routing_prompt(destinations: list[tuple[int, str]]) -> str:
    listing = "\n".join(f"- ID {dest_id}: {topic}" for dest_id, topic in destinations)
    return (
        "You are a content classifier. Given an Instagram post caption, determine which "
        "destination accounts (by topic) are relevant matches.\n\n"
        f"Score each destination 0-100 based on relevance. Only include destinations with score >= {MATCH_SCORE_CUTOFF}.\n\n"
        f"Available destinations:\n{listing}\n\n"
        'Respond in JSON: {"matches": [{"destination_id": <number>, "score": <number 0-100>, "reason": "<brief explanation>"}]}'
    )


def _adaptation_prompt(language: str, feedback: str | None) -> str:
    prompt = (
        f"You are an expert translator into modern, native {language}. Translate Instagram post captions "
        "with cultural adaptation and marketing energy.\n\n"
        "Rules:\n"
        "- Split the caption into punchy slide texts for a carousel post (5-15 words each)\n"
        "- Adapt cultural references for the target audience\n"
        "- Aim for 3-8 slides depending on content length\n\n"
        "After translating, self-score the quality 1-10 (naturalness, cultural adaptation, "
        "engagement, slide count and length).\n\n"
        'Respond in JSON: {"slides": ["..."], "quality_score": <number 1-10>}'
    )
    if feedback:
        prompt += f"\n\nPrevious attempt was scored below threshold. Feedback: {feedback}. Please improve the translation quality."
    return prompt


class OpenAILLMProvider(LLMProvider):
    def __init__(self, api_key: str, *, model: str = "gpt-4o", language: str = "Hebrew", client: AsyncOpenAI | None = None):
        self.model = model
        self.language = language
        self.client = client or AsyncOpenAI(api_key=api_key)

    async def _complete_json(self, system: str, user: str, *, temperature: float, max_tokens: int) -> dict[str, Any]:
        try:
            response = await self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": user},
                ],
                response_format={"type": "json_object"},
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except OpenAIError as exc:
            raise ExternalServiceError("openai", str(exc)) from exc

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise ExternalServiceError("openai", f"empty response from {self.model}")
        try:
            return json.loads(content)
        except json.JSONDecodeError as exc:
            raise ExternalServiceError("openai", "response is not valid JSON", body=content) from exc

    async def match_topics(self, caption: str, destinations: list[tuple[int, str]]) -> list[TopicMatch]:
        data = await self._complete_json(
            _routing_prompt(destinations),
            f"Instagram post caption:\n\n{caption}",
            temperature=0.3,
            max_tokens=1000,
        )
        matches = []
        for raw in data.get("matches") or []:
            try:
                matches.append(TopicMatch(
                    destination_id=int(raw["destination_id"]),
                    score=float(raw.get("score", 0)),
                    reason=str(raw.get("reason") or ""),
                ))
            except (KeyError, TypeError, ValueError):
                logger.warning(f"[llm] skipping malformed match: {raw}")
        return matches

    async def adapt_caption(self, caption: str, feedback: str | None = None) -> AdaptationResult:
        data = await self._complete_json(
            _adaptation_prompt(self.language, feedback),
            f"Translate this Instagram caption to {self.language} carousel slides:\n\n{caption}",
            temperature=0.7,
            max_tokens=2000,
        )
        slides = [str(s) for s in data.get("slides") or [] if str(s).strip()]
        if not slides:
            raise ExternalServiceError("openai", "adaptation returned no slides")
        try:
            score = float(data.get("quality_score", 0))
        except (TypeError, ValueError):
            score = 0.0
        return AdaptationResult(slides=slides, quality_score=score)


# Override hook; None means "build from credentials"
_provider: LLMProvider | None = None


async def get_llm_provider(session: AsyncSession) -> LLMProvider:
    if _provider is not None:
        return _provider
    settings = get_settings()
    api_key = await settings_store.get_credential(session, settings_store.OPENAI_API_KEY)
    return OpenAILLMProvider(api_key, model=settings.openai_model, language=settings.target_language)


def set_llm_provider(provider: LLMProvider | None) -> None:
    global _provider
    _provider = provider
