# orchestration/pacing_service.py
"""Per-story pacing cycle: lazy creation, brief enrichment and advancement."""

from __future__ import annotations

import structlog

from agents.motivation_agent import MotivationExtractor
from agents.pacing_agent import (
    BriefEnhancer,
    CompletionOracle,
    LLMCompletionOracle,
    StageAnalyzer,
)
from config import settings
from core.exceptions import ConsistencyConflict, ProviderError, ValidationError
from core.llm_interface import TextGenerationProvider, llm_service
from data_access.repository import StoryRepository
from models import PacingProgress, PacingStage, TemplateType
from utils.locks import KeyedLock

logger = structlog.get_logger(__name__)


class PacingStateMachine:
    """Owns every ``PacingProgress`` row. All writes for one story go through
    that story's lock."""

    def __init__(
        self,
        repository: StoryRepository,
        provider: TextGenerationProvider | None = None,
        oracle: CompletionOracle | None = None,
        motivation_extractor: MotivationExtractor | None = None,
        stage_analyzer: StageAnalyzer | None = None,
        brief_enhancer: BriefEnhancer | None = None,
    ) -> None:
        provider = provider or llm_service
        self.repository = repository
        self.oracle = oracle or LLMCompletionOracle(provider)
        self.motivation_extractor = motivation_extractor or MotivationExtractor(provider)
        self.stage_analyzer = stage_analyzer or StageAnalyzer(provider)
        self.brief_enhancer = brief_enhancer or BriefEnhancer(provider)
        self._locks = KeyedLock()

    async def _load_or_create(self, story_id: str) -> PacingProgress:
        progress = await self.repository.get_pacing_progress(story_id)
        if progress is not None:
            return progress

        info = await self.repository.get_story_info(story_id) or {}
        start = settings.PACING_DEFAULT_START_CHAPTER
        progress = PacingProgress(
            story_id=story_id,
            enabled=settings.PACING_DEFAULT_ENABLED,
            start_chapter=start,
            stage_start_chapter=start,
            template_type=TemplateType.infer_from_genre(info.get("genre")),
        )
        await self.repository.save_pacing_progress(progress)
        logger.info(
            "Pacing progress initialized.",
            story_id=story_id,
            template_type=progress.template_type.value,
            start_chapter=start,
        )
        return progress

    async def get_or_init_progress(self, story_id: str) -> PacingProgress:
        async with self._locks.lock(story_id):
            return await self._load_or_create(story_id)

    async def _ensure_motivation(
        self, story_id: str, progress: PacingProgress, brief: str
    ) -> PacingProgress:
        try:
            result = await self.motivation_extractor.extract(brief)
        except ProviderError as exc:
            logger.warning(
                "Motivation extraction failed; continuing without it.",
                story_id=story_id,
                error=str(exc),
            )
            return progress
        if not result.found:
            logger.info("No motivation present in brief.", story_id=story_id)
            return progress

        async with self._locks.lock(story_id):
            current = await self._load_or_create(story_id)
            if (
                current.current_stage == PacingStage.MOTIVATION
                and current.loop_number == progress.loop_number
                and not current.has_motivation_for_loop
            ):
                current.motivation_summary = result.as_summary()
                current.motivation_loop = current.loop_number
                await self.repository.save_pacing_progress(current)
                logger.info(
                    "Motivation stored.",
                    story_id=story_id,
                    loop=current.loop_number,
                    strength=result.strength.value,
                )
            return current

    async def enhance_brief(
        self, story_id: str, chapter_number: int, original_brief: str
    ) -> str:
        """Enrich ``original_brief`` for the active stage.

        Returns the brief unchanged when pacing is off for this chapter or the
        provider fails.
        """
        progress = await self.get_or_init_progress(story_id)
        if not progress.enabled or chapter_number < progress.start_chapter:
            return original_brief
        if not original_brief or not original_brief.strip():
            return original_brief

        if (
            progress.current_stage == PacingStage.MOTIVATION
            and not progress.has_motivation_for_loop
        ):
            progress = await self._ensure_motivation(story_id, progress, original_brief)

        try:
            enriched = await self.brief_enhancer.enhance(
                progress, chapter_number, original_brief
            )
        except ProviderError as exc:
            logger.warning(
                "Brief enhancement failed; using original brief.",
                story_id=story_id,
                chapter=chapter_number,
                stage=progress.current_stage.value,
                error=str(exc),
            )
            return original_brief

        logger.info(
            "Brief enhanced.",
            story_id=story_id,
            chapter=chapter_number,
            stage=progress.current_stage.value,
            loop=progress.loop_number,
        )
        return enriched

    async def advance_if_complete(
        self, story_id: str, chapter_number: int, brief: str
    ) -> PacingProgress:
        """Judge the active stage against ``brief`` and advance on a clear YES."""
        if chapter_number < 1:
            raise ValidationError(f"Invalid chapter number: {chapter_number}")

        async with self._locks.lock(story_id):
            progress = await self._load_or_create(story_id)
            if not progress.enabled:
                raise ConsistencyConflict(f"Pacing is disabled for story '{story_id}'.")
            if chapter_number < progress.stage_start_chapter:
                raise ConsistencyConflict(
                    f"Chapter {chapter_number} predates the active {progress.current_stage.value} "
                    f"stage, which started at chapter {progress.stage_start_chapter}."
                )

            stage = progress.current_stage
            complete = await self.oracle.is_stage_complete(stage, chapter_number, brief)
            if complete:
                analysis = await self.stage_analyzer.analyze(stage, chapter_number, brief)
                if analysis:
                    progress.stage_analysis[stage] = analysis
                progress.current_stage = stage.next()
                progress.stage_start_chapter = chapter_number + 1
                if stage.is_last:
                    progress.loop_number += 1
                logger.info(
                    "Pacing stage advanced.",
                    story_id=story_id,
                    chapter=chapter_number,
                    from_stage=stage.value,
                    to_stage=progress.current_stage.value,
                    loop=progress.loop_number,
                )
            else:
                logger.info(
                    "Pacing stage not complete.",
                    story_id=story_id,
                    chapter=chapter_number,
                    stage=stage.value,
                )
            progress.last_updated_chapter = chapter_number
            await self.repository.save_pacing_progress(progress)
            return progress

    async def set_enabled(self, story_id: str, enabled: bool) -> PacingProgress:
        async with self._locks.lock(story_id):
            progress = await self._load_or_create(story_id)
            progress.enabled = enabled
            await self.repository.save_pacing_progress(progress)
        logger.info("Pacing toggled.", story_id=story_id, enabled=enabled)
        return progress

    async def set_activation_chapter(
        self, story_id: str, chapter_number: int
    ) -> PacingProgress:
        if chapter_number < 1:
            raise ValidationError(f"Invalid activation chapter: {chapter_number}")
        async with self._locks.lock(story_id):
            progress = await self._load_or_create(story_id)
            progress.start_chapter = chapter_number
            if progress.last_updated_chapter < chapter_number:
                progress.stage_start_chapter = chapter_number
            await self.repository.save_pacing_progress(progress)
        return progress

    async def reset_progress(self, story_id: str) -> bool:
        """Delete the progress row; the next call recreates it from defaults."""
        async with self._locks.lock(story_id):
            deleted = await self.repository.delete_pacing_progress(story_id)
        logger.info("Pacing progress reset.", story_id=story_id, existed=deleted)
        return deleted

    async def rollback_to(self, story_id: str, rewritten_chapter: int) -> bool:
        """Move cursors at or after ``rewritten_chapter`` back to the chapter before it."""
        async with self._locks.lock(story_id):
            progress = await self.repository.get_pacing_progress(story_id)
            if progress is None:
                return False
            target = rewritten_chapter - 1
            changed = False
            if progress.last_updated_chapter >= rewritten_chapter:
                progress.last_updated_chapter = target
                changed = True
            if progress.stage_start_chapter >= rewritten_chapter:
                progress.stage_start_chapter = target
                changed = True
            if changed:
                await self.repository.save_pacing_progress(progress)
                logger.info(
                    "Pacing progress rolled back after rewrite.",
                    story_id=story_id,
                    rewritten_chapter=rewritten_chapter,
                    last_updated=progress.last_updated_chapter,
                    stage_start=progress.stage_start_chapter,
                )
            return changed
