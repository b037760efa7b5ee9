# orchestration/term_miner.py
"""Vocabulary mining through batched provider fan-out."""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass

import structlog

from config import settings
from core.exceptions import ValidationError
from core.llm_interface import (
    SamplingParams,
    TextGenerationProvider,
    clean_model_response,
    llm_service,
)
from data_access.repository import StoryRepository
from prompt_renderer import render_prompt, render_system_prompt

from .worker_pool import run_in_batches

logger = structlog.get_logger(__name__)

_LIST_MARKER_RE = re.compile(r"^\s*(?:[-*•]|\d+[.)、])\s*")
MAX_TERM_LENGTH = 40


def parse_terms(text: str) -> list[str]:
    """One term per line, list markers and trailing punctuation removed."""
    terms: list[str] = []
    for line in clean_model_response(text).splitlines():
        term = _LIST_MARKER_RE.sub("", line).strip().strip("\"'`.,;:，。；")
        if term and len(term) <= MAX_TERM_LENGTH and term not in terms:
            terms.append(term)
    return terms


@dataclass
class MiningReport:
    category: str
    calls: int = 0
    failed_calls: int = 0
    extracted: int = 0
    inserted: int = 0
    skipped: int = 0


class TermMiner:
    def __init__(
        self,
        repository: StoryRepository,
        provider: TextGenerationProvider | None = None,
    ) -> None:
        self.repository = repository
        self.provider = provider or llm_service

    async def mine_terms(
        self,
        category: str,
        loops: int,
        batch_size: int | None = None,
        terms_per_call: int = 20,
    ) -> MiningReport:
        """Run ``loops`` provider calls in batches and store every new term once."""
        if not category or not category.strip():
            raise ValidationError("Term category must not be empty.")
        if loops < 1:
            raise ValidationError(f"loops must be positive, got {loops}.")

        report = MiningReport(category=category)
        seen: set[str] = set(await self.repository.list_terms(category))
        seen_lock = asyncio.Lock()
        write_lock = asyncio.Lock()
        system_prompt = render_system_prompt("term_miner")
        params = SamplingParams(
            model=settings.MINING_MODEL,
            temperature=settings.TEMPERATURE_MINING,
            max_tokens=settings.MAX_MINING_TOKENS,
        )

        async def one_round(round_number: int) -> int:
            raw = await self.provider.async_complete(
                system_prompt,
                render_prompt(
                    "term_miner/mine_terms.j2",
                    {"category": category, "count": terms_per_call, "round": round_number},
                ),
                params,
            )
            terms = parse_terms(raw)
            fresh: list[str] = []
            async with seen_lock:
                report.extracted += len(terms)
                for term in terms:
                    if term in seen:
                        report.skipped += 1
                    else:
                        seen.add(term)
                        fresh.append(term)
            async with write_lock:
                for term in fresh:
                    if await self.repository.insert_term(category, term):
                        report.inserted += 1
                    else:
                        report.skipped += 1
            return len(fresh)

        results = await run_in_batches(
            list(range(1, loops + 1)), one_round, batch_size
        )
        report.calls = len(results)
        for result in results:
            if isinstance(result, BaseException):
                report.failed_calls += 1
                logger.warning(
                    "Term mining call failed.", category=category, error=str(result)
                )

        logger.info(
            "Term mining finished.",
            category=category,
            calls=report.calls,
            failed=report.failed_calls,
            extracted=report.extracted,
            inserted=report.inserted,
            skipped=report.skipped,
        )
        return report
