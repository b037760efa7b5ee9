# orchestration/rewrite_cascade.py
"""Keeps derived state honest when a chapter's text is replaced."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from agents.summary_agent import ChapterSummaryCompressor
from core.exceptions import ValidationError
from data_access.repository import StoryRepository
from utils.similarity import is_rewrite

from .pacing_service import PacingStateMachine

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RevisionOutcome:
    chapter_number: int
    similarity: float
    is_rewrite: bool
    summary_invalidated: bool = False
    pacing_rolled_back: bool = False


class RewriteCascade:
    def __init__(
        self,
        repository: StoryRepository,
        compressor: ChapterSummaryCompressor,
        pacing: PacingStateMachine,
    ) -> None:
        self.repository = repository
        self.compressor = compressor
        self.pacing = pacing

    async def update_chapter_text(
        self, story_id: str, chapter_number: int, new_text: str
    ) -> RevisionOutcome:
        """Store ``new_text`` and, if it rewrites the chapter, drop the stale
        summary and roll pacing back to the previous chapter."""
        if chapter_number < 1:
            raise ValidationError(f"Invalid chapter number: {chapter_number}")

        old_text = await self.repository.get_chapter_text(story_id, chapter_number)
        await self.repository.save_chapter_text(story_id, chapter_number, new_text)

        rewritten, similarity = is_rewrite(old_text, new_text)
        if not rewritten:
            return RevisionOutcome(chapter_number, similarity, False)

        logger.info(
            "Chapter rewrite detected.",
            story_id=story_id,
            chapter=chapter_number,
            similarity=round(similarity, 3),
        )
        invalidated = await self.compressor.invalidate(story_id, chapter_number)
        rolled_back = await self.pacing.rollback_to(story_id, chapter_number)
        return RevisionOutcome(
            chapter_number,
            similarity,
            True,
            summary_invalidated=invalidated,
            pacing_rolled_back=rolled_back,
        )
