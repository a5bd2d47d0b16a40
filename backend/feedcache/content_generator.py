"""HTTP adapter for the upstream content generation service."""

from __future__ import annotations

import logging
import math
from time import perf_counter
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, Field, ValidationError

from .config import Settings
from .errors import UpstreamGenerationFailure
from .models import ContentItem, Difficulty, GeneratedContent, TopicSpec

logger = logging.getLogger(__name__)

BASE_FEED_PRIORITY = 5
OPTIMAL_LENGTH_RANGE = (400, 600)
WORDS_PER_PARAGRAPH = 150


class _ReadingTopicResponse(BaseModel):
    title: Optional[str] = None
    content: str = Field(..., min_length=1)
    learning_elements: Any = None


def calculate_feed_priority(spec: TopicSpec, preferred_difficulty: Difficulty) -> int:
    """Ordering hint: base 5, +2 for an exact difficulty match, +1 for an optimal length."""
    priority = BASE_FEED_PRIORITY
    if spec.difficulty == preferred_difficulty:
        priority += 2
    low, high = OPTIMAL_LENGTH_RANGE
    if low <= spec.target_length <= high:
        priority += 1
    return priority


def _split_learning_elements(value: Any) -> Tuple[List[str], Dict[str, str]]:
    if isinstance(value, list):
        return [str(entry).strip() for entry in value if str(entry).strip()], {}
    if isinstance(value, dict):
        tags: List[str] = []
        extras: Dict[str, str] = {}
        for key, entry in value.items():
            if isinstance(entry, list):
                tags.extend(str(item).strip() for item in entry if str(item).strip())
            elif entry is not None:
                extras[str(key)] = str(entry)
        return tags, extras
    return [], {}


class ContentGenerator:
    """Calls ``GET /reading-topic`` once per item. No retries; one failure is one failed attempt."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 20.0,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._endpoint = f"{base_url.rstrip('/')}/reading-topic"
        self._timeout = timeout_seconds
        self._client = client or httpx.Client(timeout=timeout_seconds)
        self._owns_client = client is None

    @classmethod
    def from_settings(cls, settings: Settings) -> "ContentGenerator":
        return cls(settings.generator_url, timeout_seconds=settings.generator_timeout_seconds)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def generate(self, spec: TopicSpec) -> GeneratedContent:
        params = {
            "category": spec.category,
            "difficulty": spec.difficulty,
            "word_count": spec.target_length,
            "paragraph_count": math.ceil(spec.target_length / WORDS_PER_PARAGRAPH),
        }
        started_at = perf_counter()
        try:
            response = self._client.get(self._endpoint, params=params, timeout=self._timeout)
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise UpstreamGenerationFailure(
                f"Content generation timed out after {self._timeout}s for '{spec.category}'",
                category=spec.category,
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamGenerationFailure(
                f"Content generation call failed for '{spec.category}': {exc}",
                category=spec.category,
            ) from exc

        try:
            parsed = _ReadingTopicResponse.model_validate(response.json())
        except (ValueError, ValidationError) as exc:
            raise UpstreamGenerationFailure(
                f"Content generation returned an invalid payload for '{spec.category}': {exc}",
                category=spec.category,
            ) from exc

        latency_ms = int(round((perf_counter() - started_at) * 1000))
        tags, extras = _split_learning_elements(parsed.learning_elements)
        title = (parsed.title or "").strip() or f"{spec.category.title()} Article"
        logger.debug("Generated '%s' for %s/%s in %sms", title, spec.category, spec.difficulty, latency_ms)
        return GeneratedContent(
            title=title,
            body=parsed.content,
            tags=tags,
            extra_tags=extras,
            latency_ms=latency_ms,
        )

    def generate_item(
        self,
        user_id: str,
        spec: TopicSpec,
        *,
        preferred_difficulty: Difficulty,
        pre_generated: bool = True,
    ) -> ContentItem:
        """Generate one item and wrap it with priority and provenance fields."""
        generated = self.generate(spec)
        return ContentItem(
            user_id=user_id,
            category=spec.category,
            difficulty=spec.difficulty,
            target_length=spec.target_length,
            title=generated.title,
            body=generated.body,
            tags=generated.tags,
            extra_tags=generated.extra_tags,
            is_pre_generated=pre_generated,
            source="feed" if pre_generated else "on_demand",
            feed_priority=calculate_feed_priority(spec, preferred_difficulty),
            generator_latency_ms=generated.latency_ms,
        )


__all__ = [
    "BASE_FEED_PRIORITY",
    "ContentGenerator",
    "calculate_feed_priority",
]
