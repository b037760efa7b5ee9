# agents/motivation_agent.py
"""Extracts the protagonist's long-horizon motivation from a plot brief."""

from __future__ import annotations

import structlog
from async_lru import alru_cache  # type: ignore

from config import settings
from core.llm_interface import (
    SamplingParams,
    TextGenerationProvider,
    clean_model_response,
    llm_service,
)
from models import MotivationResult, MotivationStrength
from prompt_renderer import render_prompt, render_system_prompt
from utils.text_processing import parse_labeled_sections

logger = structlog.get_logger(__name__)

_NO_MOTIVATION_MARKERS = {"", "none", "n/a", "na", "null", "no motivation"}


def parse_motivation_output(text: str) -> MotivationResult:
    """Read the labeled extraction reply.

    A missing or ``NONE`` motivation yields an empty, WEAK result. Nothing is
    filled in that the reply does not state.
    """
    sections = parse_labeled_sections(clean_model_response(text))
    motivation = sections.get("motivation", "").strip()
    if motivation.strip(" .").lower() in _NO_MOTIVATION_MARKERS:
        return MotivationResult(
            rationale=sections.get("rationale", ""),
            optimization=sections.get("optimization", ""),
        )

    strength_text = sections.get("strength", "").upper()
    strength = MotivationStrength.WEAK
    for candidate in MotivationStrength:
        if candidate.value in strength_text:
            strength = candidate
            break

    return MotivationResult(
        motivation=motivation,
        strength=strength,
        rationale=sections.get("rationale", ""),
        optimization=sections.get("optimization", ""),
    )


@alru_cache(maxsize=64)
async def _llm_extract_motivation(
    provider: TextGenerationProvider, plot_brief: str
) -> MotivationResult:
    raw = await provider.async_complete(
        render_system_prompt("motivation_agent"),
        render_prompt("motivation_agent/extract_motivation.j2", {"brief": plot_brief}),
        SamplingParams(
            model=settings.PACING_MODEL,
            temperature=settings.TEMPERATURE_MOTIVATION,
            max_tokens=settings.MAX_MOTIVATION_TOKENS,
        ),
    )
    return parse_motivation_output(raw)


class MotivationExtractor:
    def __init__(self, provider: TextGenerationProvider | None = None) -> None:
        self.provider = provider or llm_service

    async def extract(self, plot_brief: str) -> MotivationResult:
        """Extract a motivation from ``plot_brief``.

        Repeated calls with the same brief return the cached result. Provider
        failures propagate as ``ProviderError``.
        """
        if not plot_brief or not plot_brief.strip():
            return MotivationResult()
        result = await _llm_extract_motivation(self.provider, plot_brief.strip())
        logger.info(
            "Motivation extracted.",
            found=result.found,
            strength=result.strength.value,
        )
        return result.model_copy()
