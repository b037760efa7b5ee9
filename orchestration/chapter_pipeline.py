# orchestration/chapter_pipeline.py
"""Chapter flow: context, brief enhancement, drafting and publishing."""

from __future__ import annotations

from dataclasses import dataclass, field

import structlog

from agents.summary_agent import ChapterSummaryCompressor
from config import settings
from core.exceptions import ConsistencyConflict, ValidationError
from core.llm_interface import (
    ChunkCallback,
    SamplingParams,
    TextGenerationProvider,
    llm_service,
)
from data_access.repository import StoryRepository
from models import ChapterSummary, PacingProgress, TaskKind
from processing.memory_bank import (
    MemoryBankAssembler,
    record_appearances,
    render_context_package,
)
from prompt_renderer import render_prompt, render_system_prompt

from .pacing_service import PacingStateMachine
from .rewrite_cascade import RevisionOutcome, RewriteCascade
from .task_orchestrator import GenerationTaskOrchestrator, ProgressReporter
from .term_miner import TermMiner

logger = structlog.get_logger(__name__)


@dataclass
class PreparedChapter:
    chapter_number: int
    context: str
    brief: str


@dataclass
class PublishResult:
    revision: RevisionOutcome
    summary: ChapterSummary
    appearances: list[str] = field(default_factory=list)
    pacing: PacingProgress | None = None


def chapter_target(story_id: str, chapter_number: int) -> str:
    return f"{story_id}:chapter:{chapter_number}"


class ChapterPipeline:
    """Wires the memory bank, pacing, summaries and tasks around one chapter."""

    def __init__(
        self,
        repository: StoryRepository,
        provider: TextGenerationProvider | None = None,
        pacing: PacingStateMachine | None = None,
        compressor: ChapterSummaryCompressor | None = None,
        orchestrator: GenerationTaskOrchestrator | None = None,
    ) -> None:
        self.repository = repository
        self.provider = provider or llm_service
        self.pacing = pacing or PacingStateMachine(repository, self.provider)
        self.compressor = compressor or ChapterSummaryCompressor(
            repository, self.provider
        )
        self.assembler = MemoryBankAssembler(repository)
        self.cascade = RewriteCascade(repository, self.compressor, self.pacing)
        self.orchestrator = orchestrator or GenerationTaskOrchestrator(repository)
        self.term_miner = TermMiner(repository, self.provider)

    async def prepare_chapter(
        self, story_id: str, chapter_number: int, brief: str
    ) -> PreparedChapter:
        if chapter_number < 1:
            raise ValidationError(f"Invalid chapter number: {chapter_number}")
        bank = await self.assembler.assemble(story_id, chapter_number)
        context = render_context_package(bank, chapter_number)
        enhanced = await self.pacing.enhance_brief(story_id, chapter_number, brief)
        return PreparedChapter(chapter_number, context, enhanced)

    async def draft_chapter(
        self,
        prepared: PreparedChapter,
        on_chunk: ChunkCallback | None = None,
    ) -> str:
        """Draft the chapter prose. Streams when ``on_chunk`` is given."""
        system_prompt = render_system_prompt("drafting_agent")
        user_prompt = render_prompt(
            "drafting_agent/draft_chapter.j2",
            {
                "chapter_number": prepared.chapter_number,
                "context": prepared.context,
                "brief": prepared.brief,
            },
        )
        params = SamplingParams(
            model=settings.DRAFTING_MODEL,
            temperature=settings.TEMPERATURE_DRAFTING,
            max_tokens=settings.MAX_GENERATION_TOKENS,
        )
        if on_chunk is None:
            return await self.provider.async_complete(system_prompt, user_prompt, params)
        return await self.provider.async_stream(
            system_prompt, user_prompt, params, on_chunk
        )

    async def publish_chapter(
        self,
        story_id: str,
        chapter_number: int,
        text: str,
        brief: str = "",
        characters: list[str] | None = None,
    ) -> PublishResult:
        """Store the chapter and bring summaries, appearances and pacing up to date."""
        revision = await self.cascade.update_chapter_text(story_id, chapter_number, text)
        summary = await self.compressor.summarize_and_store(
            story_id, chapter_number, text
        )
        appearances = await record_appearances(
            self.repository, story_id, characters or [], chapter_number
        )

        pacing: PacingProgress | None = None
        progress = await self.pacing.get_or_init_progress(story_id)
        if progress.enabled and chapter_number >= progress.start_chapter:
            try:
                pacing = await self.pacing.advance_if_complete(
                    story_id, chapter_number, brief or summary.summary
                )
            except ConsistencyConflict as exc:
                logger.info(
                    "Pacing not advanced for chapter.",
                    story_id=story_id,
                    chapter=chapter_number,
                    reason=str(exc),
                )
        logger.info(
            "Chapter published.",
            story_id=story_id,
            chapter=chapter_number,
            rewrite=revision.is_rewrite,
            appearances=len(appearances),
        )
        return PublishResult(revision, summary, appearances, pacing)

    async def generate_chapter_in_background(
        self,
        story_id: str,
        chapter_number: int,
        brief: str,
        characters: list[str] | None = None,
        on_chunk: ChunkCallback | None = None,
    ) -> str:
        """Queue prepare, draft and publish as one supervised task. Returns the task id."""

        async def body(reporter: ProgressReporter) -> dict[str, object]:
            await reporter.update(10, "assembling context")
            prepared = await self.prepare_chapter(story_id, chapter_number, brief)
            await reporter.update(30, "drafting")

            async def forward(chunk: str) -> None:
                if on_chunk is not None:
                    outcome = on_chunk(chunk)
                    if outcome is not None:
                        await outcome

            text = await self.draft_chapter(prepared, forward)
            if not await reporter.update(80, "publishing"):
                return {"chapter_number": chapter_number, "published": False}
            result = await self.publish_chapter(
                story_id, chapter_number, text, prepared.brief, characters
            )
            return {
                "chapter_number": chapter_number,
                "published": True,
                "length": len(text),
                "summary": result.summary.summary,
            }

        return await self.orchestrator.run_task(
            TaskKind.CHAPTER_WRITING,
            body,
            {"chapter_number": chapter_number},
            name=f"chapter {chapter_number}",
            story_id=story_id,
            target=chapter_target(story_id, chapter_number),
        )

    async def mine_terms_in_background(
        self, category: str, loops: int, batch_size: int | None = None
    ) -> str:
        async def body(reporter: ProgressReporter) -> dict[str, object]:
            await reporter.update(5, f"mining {category}")
            report = await self.term_miner.mine_terms(category, loops, batch_size)
            return {
                "calls": report.calls,
                "failed_calls": report.failed_calls,
                "inserted": report.inserted,
                "skipped": report.skipped,
            }

        return await self.orchestrator.run_task(
            TaskKind.TERM_MINING,
            body,
            {"category": category, "loops": loops},
            name=f"mine {category}",
            target=f"terms:{category}",
        )
