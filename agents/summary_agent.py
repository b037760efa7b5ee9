# agents/summary_agent.py
"""Chapter digests: generation, fallback, trimming and invalidation."""

from __future__ import annotations

import asyncio
import re
from typing import Any

import structlog
from async_lru import alru_cache  # type: ignore

from config import settings
from core.exceptions import ProviderError
from core.llm_interface import (
    SamplingParams,
    TextGenerationProvider,
    clean_model_response,
    llm_service,
)
from data_access.repository import StoryRepository
from models import ChapterSummary
from prompt_renderer import render_prompt, render_system_prompt
from utils.text_processing import trim_to_sentence

logger = structlog.get_logger(__name__)

_SIGNALS_LINE_RE = re.compile(r"^\s*\**\s*summary signals\s*\**\s*[:：]\s*(.*)$", re.I)


def parse_summary_signals(text: str) -> tuple[str, dict[str, str]]:
    """Split the trailing ``Summary Signals:`` line off a digest.

    Returns the digest without that line and the parsed ``key=value`` pairs.
    When several signal lines exist the last one wins.
    """
    lines = text.splitlines()
    for index in range(len(lines) - 1, -1, -1):
        match = _SIGNALS_LINE_RE.match(lines[index])
        if not match:
            continue
        signals: dict[str, str] = {}
        for part in re.split(r"[;；]", match.group(1)):
            if "=" not in part:
                continue
            key, value = part.split("=", 1)
            if key.strip():
                signals[key.strip()] = value.strip()
        digest = "\n".join(lines[:index] + lines[index + 1 :]).strip()
        return digest, signals
    return text.strip(), {}


@alru_cache(maxsize=settings.SUMMARY_CACHE_SIZE)
async def _llm_summarize_chapter_text(
    provider: TextGenerationProvider, chapter_text: str, chapter_number: int
) -> str:
    """Summarize full chapter text via the provider. Raises ``ProviderError``."""
    prompt = render_prompt(
        "summary_agent/chapter_summary.j2",
        {
            "chapter_number": chapter_number,
            "chapter_text": chapter_text,
            "min_words": settings.SUMMARY_MIN_WORDS,
            "max_words": settings.SUMMARY_MAX_WORDS,
        },
    )
    raw = await provider.async_complete(
        render_system_prompt("summary_agent"),
        prompt,
        SamplingParams(
            model=settings.SUMMARY_MODEL,
            temperature=settings.TEMPERATURE_SUMMARY,
            max_tokens=settings.MAX_SUMMARY_TOKENS,
        ),
    )
    cleaned = clean_model_response(raw)
    if not cleaned:
        raise ProviderError(f"Summary for chapter {chapter_number} was empty after cleaning.")
    return cleaned


class ChapterSummaryCompressor:
    """Turns chapter text into short fact digests and keeps them current."""

    def __init__(
        self,
        repository: StoryRepository,
        provider: TextGenerationProvider | None = None,
    ) -> None:
        self.repository = repository
        self.provider = provider or llm_service

    def trim(self, summary: str, max_len: int | None = None) -> str:
        return trim_to_sentence(
            summary,
            max_len if max_len is not None else settings.SUMMARY_MAX_CHARS,
            settings.SUMMARY_SENTENCE_CUTOFF_RATIO,
        )

    @staticmethod
    def fallback_summary(chapter_text: str, chapter_number: int) -> str:
        """Deterministic digest built from the opening of the chapter."""
        body = " ".join(chapter_text.split())
        limit = settings.SUMMARY_FALLBACK_CHARS
        if len(body) > limit:
            body = body[: max(limit - 3, 0)].rstrip() + "..."
        return f"Chapter {chapter_number}: {body}"

    async def build_summary(
        self, story_id: str, chapter_number: int, chapter_text: str
    ) -> ChapterSummary:
        if not chapter_text or not chapter_text.strip():
            return ChapterSummary(
                story_id=story_id,
                chapter_number=chapter_number,
                summary=f"Chapter {chapter_number} has no content.",
                is_fallback=True,
            )
        try:
            raw = await _llm_summarize_chapter_text(
                self.provider, chapter_text, chapter_number
            )
        except ProviderError as exc:
            logger.warning(
                "Summary generation failed; using local fallback.",
                story_id=story_id,
                chapter=chapter_number,
                error=str(exc),
            )
            return ChapterSummary(
                story_id=story_id,
                chapter_number=chapter_number,
                summary=self.fallback_summary(chapter_text, chapter_number),
                is_fallback=True,
            )

        digest, signals = parse_summary_signals(raw)
        if not digest:
            return ChapterSummary(
                story_id=story_id,
                chapter_number=chapter_number,
                summary=self.fallback_summary(chapter_text, chapter_number),
                signals=signals,
                is_fallback=True,
            )
        return ChapterSummary(
            story_id=story_id,
            chapter_number=chapter_number,
            summary=self.trim(digest),
            signals=signals,
        )

    async def summarize(self, chapter_text: str, chapter_number: int = 0) -> str:
        """Return a digest of ``chapter_text``. Never raises on provider failure."""
        summary = await self.build_summary("", chapter_number, chapter_text)
        return summary.summary

    async def summarize_and_store(
        self, story_id: str, chapter_number: int, chapter_text: str | None = None
    ) -> ChapterSummary:
        """Generate the digest for a stored chapter and upsert it."""
        if chapter_text is None:
            chapter_text = (
                await self.repository.get_chapter_text(story_id, chapter_number) or ""
            )
        summary = await self.build_summary(story_id, chapter_number, chapter_text)
        await self.repository.save_summary(summary)
        logger.info(
            "Chapter summary stored.",
            story_id=story_id,
            chapter=chapter_number,
            fallback=summary.is_fallback,
            length=len(summary.summary),
        )
        return summary

    async def invalidate(self, story_id: str, chapter_number: int) -> bool:
        """Drop the stored digest so the next publish regenerates it."""
        deleted = await self.repository.delete_summary(story_id, chapter_number)
        logger.info(
            "Chapter summary invalidated.",
            story_id=story_id,
            chapter=chapter_number,
            existed=deleted,
        )
        return deleted

    async def generate_missing_summaries(
        self, story_id: str, chapter_numbers: list[int] | None = None
    ) -> list[int]:
        """Summarize every stored chapter that has no digest yet."""
        candidates = (
            chapter_numbers
            if chapter_numbers is not None
            else await self.repository.list_chapter_numbers(story_id)
        )
        existing = {
            s.chapter_number for s in await self.repository.list_summaries(story_id)
        }
        missing = [num for num in candidates if num not in existing]
        if not missing:
            return []

        results = await asyncio.gather(
            *(self.summarize_and_store(story_id, num) for num in missing),
            return_exceptions=True,
        )
        generated: list[int] = []
        for num, result in zip(missing, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Could not generate missing summary.",
                    story_id=story_id,
                    chapter=num,
                    exc_info=result,
                )
            else:
                generated.append(num)
        return generated

    async def get_recent_summaries(
        self, story_id: str, current_chapter: int, limit: int | None = None
    ) -> list[ChapterSummary]:
        """Digests of the ``limit`` chapters before ``current_chapter``, oldest first."""
        window = limit if limit is not None else settings.MEMORY_SUMMARY_WINDOW
        if current_chapter <= 1 or window <= 0:
            return []
        return await self.repository.list_summaries(
            story_id, max(1, current_chapter - window), current_chapter - 1
        )

    async def summary_report(self, story_id: str) -> dict[str, Any]:
        summaries = await self.repository.list_summaries(story_id)
        total = len(summaries)
        average = (
            sum(len(s.summary) for s in summaries) / total if total else 0.0
        )
        return {
            "story_id": story_id,
            "total_summaries": total,
            "average_length": round(average, 1),
            "fallback_count": sum(1 for s in summaries if s.is_fallback),
            "summaries": {s.chapter_number: s.summary for s in summaries},
        }
