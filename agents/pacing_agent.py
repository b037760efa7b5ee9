# agents/pacing_agent.py
"""Provider calls behind the pacing cycle: brief enrichment, stage
completion judgement and per-stage analysis."""

from __future__ import annotations

import re
from typing import Protocol

import structlog

from config import settings
from core.exceptions import ProviderError
from core.llm_interface import (
    SamplingParams,
    TextGenerationProvider,
    clean_model_response,
    llm_service,
)
from models import PacingProgress, PacingStage
from prompt_renderer import render_prompt, render_system_prompt

logger = structlog.get_logger(__name__)

STAGE_COMPLETION_CRITERIA: dict[PacingStage, str] = {
    PacingStage.MOTIVATION: "a clear, urgent reason for action has been established",
    PacingStage.BONUS: (
        "the hidden advantage has been shown to the reader "
        "(not necessarily to other characters)"
    ),
    PacingStage.CONFRONTATION: (
        "the central conflict of the cycle has been resolved using that advantage"
    ),
    PacingStage.RESPONSE: (
        "at least two tiers of reaction (immediate + wider) are present"
    ),
    PacingStage.EARNING: (
        "a concrete gain is banked AND a new seed conflict/motivation is introduced"
    ),
}


def build_stage_guide(progress: PacingProgress) -> str:
    """Stage-specific guidance text for the active stage of ``progress``."""
    stage = progress.current_stage
    return render_prompt(
        "pacing_agent/stage_guide.j2",
        {
            "stage": stage.value,
            "question": stage.question,
            "loop_number": progress.loop_number,
            "template_type": progress.template_type.value,
            "template_pattern": progress.template_type.pattern,
        },
    )


def parse_completion_verdict(text: str) -> bool:
    """True only when the reply opens with YES. Anything else counts as not complete."""
    words = re.findall(r"[A-Z]+", clean_model_response(text).upper())
    return bool(words) and words[0] == "YES"


class CompletionOracle(Protocol):
    """Judges whether a chapter brief satisfies a pacing stage."""

    async def is_stage_complete(
        self, stage: PacingStage, chapter_number: int, brief: str
    ) -> bool: ...


class LLMCompletionOracle:
    """Asks the provider a YES/NO question per stage criterion."""

    def __init__(self, provider: TextGenerationProvider | None = None) -> None:
        self.provider = provider or llm_service

    async def is_stage_complete(
        self, stage: PacingStage, chapter_number: int, brief: str
    ) -> bool:
        prompt = render_prompt(
            "pacing_agent/stage_completion.j2",
            {
                "stage": stage.value,
                "criterion": STAGE_COMPLETION_CRITERIA[stage],
                "chapter_number": chapter_number,
                "brief": brief,
            },
        )
        try:
            raw = await self.provider.async_complete(
                render_system_prompt("pacing_agent"),
                prompt,
                SamplingParams(
                    model=settings.PACING_MODEL,
                    temperature=settings.TEMPERATURE_ORACLE,
                    max_tokens=settings.MAX_ORACLE_TOKENS,
                ),
            )
        except ProviderError as exc:
            logger.warning(
                "Completion oracle call failed; treating stage as not complete.",
                stage=stage.value,
                chapter=chapter_number,
                error=str(exc),
            )
            return False
        verdict = parse_completion_verdict(raw)
        logger.debug(
            "Completion oracle verdict",
            stage=stage.value,
            chapter=chapter_number,
            verdict=verdict,
        )
        return verdict


class StageAnalyzer:
    """Writes the short per-stage analysis stored on the progress row."""

    def __init__(self, provider: TextGenerationProvider | None = None) -> None:
        self.provider = provider or llm_service

    async def analyze(
        self, stage: PacingStage, chapter_number: int, brief: str
    ) -> str | None:
        prompt = render_prompt(
            "pacing_agent/stage_analysis.j2",
            {
                "stage": stage.value,
                "question": stage.question,
                "chapter_number": chapter_number,
                "brief": brief,
            },
        )
        try:
            raw = await self.provider.async_complete(
                render_system_prompt("pacing_agent"),
                prompt,
                SamplingParams(
                    model=settings.PACING_MODEL,
                    temperature=settings.TEMPERATURE_ANALYSIS,
                    max_tokens=settings.MAX_ANALYSIS_TOKENS,
                ),
            )
        except ProviderError as exc:
            logger.warning(
                "Stage analysis failed; leaving slot unchanged.",
                stage=stage.value,
                chapter=chapter_number,
                error=str(exc),
            )
            return None
        return clean_model_response(raw) or None


class BriefEnhancer:
    """Rewrites a plot brief around the active stage. Raises ``ProviderError``."""

    def __init__(self, provider: TextGenerationProvider | None = None) -> None:
        self.provider = provider or llm_service

    async def enhance(
        self, progress: PacingProgress, chapter_number: int, original_brief: str
    ) -> str:
        prompt = render_prompt(
            "pacing_agent/enhance_brief.j2",
            {
                "chapter_number": chapter_number,
                "stage_guide": build_stage_guide(progress),
                "motivation": progress.motivation_summary,
                "original_brief": original_brief,
            },
        )
        raw = await self.provider.async_complete(
            render_system_prompt("pacing_agent"),
            prompt,
            SamplingParams(
                model=settings.PACING_MODEL,
                temperature=settings.TEMPERATURE_PACING,
                max_tokens=settings.MAX_ENHANCE_TOKENS,
            ),
        )
        enriched = clean_model_response(raw)
        if not enriched:
            raise ProviderError("Brief enhancement returned no text after cleaning.")
        return enriched
