# processing/memory_bank.py
"""Assembles the memory bank and renders it into bounded prompt context."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

from config import settings
from core.exceptions import TransientIOError
from core.llm_interface import truncate_text_by_tokens
from data_access.repository import StoryRepository
from models import (
    CharacterProfile,
    ChronicleEvent,
    ForeshadowingItem,
    MemoryBank,
)
from models.story_models import parse_str_map

from .character_ranker import CharacterRelevanceRanker

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class MemoryBankAssembler:
    """Builds a read-only ``MemoryBank`` from whatever the repository holds."""

    def __init__(self, repository: StoryRepository) -> None:
        self.repository = repository

    async def _load(
        self,
        story_id: str,
        category: str,
        loader: Callable[[], Awaitable[T]],
        empty: T,
    ) -> T:
        try:
            return await loader()
        except TransientIOError as exc:
            logger.warning(
                "Storage read failed; assembling without this category.",
                story_id=story_id,
                category=category,
                error=str(exc),
            )
            return empty

    @staticmethod
    def _parse_records(
        story_id: str,
        category: str,
        records: list[dict[str, Any]],
        parser: Callable[[dict[str, Any]], T],
    ) -> list[T]:
        parsed: list[T] = []
        for record in records:
            try:
                parsed.append(parser(record))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning(
                    "Skipping unreadable record.",
                    story_id=story_id,
                    category=category,
                    error=str(exc),
                )
        return parsed

    async def assemble(
        self, story_id: str, current_chapter: int | None = None
    ) -> MemoryBank:
        """Collect characters, chronicle, foreshadowing and recent summaries.

        Missing categories come back empty. With ``current_chapter`` only
        summaries of earlier chapters are included.
        """
        character_rows = await self._load(
            story_id,
            "characters",
            lambda: self.repository.list_character_records(story_id),
            [],
        )
        chronicle_rows = await self._load(
            story_id,
            "chronicle",
            lambda: self.repository.list_chronicle_records(story_id),
            [],
        )
        foreshadowing_rows = await self._load(
            story_id,
            "foreshadowing",
            lambda: self.repository.list_foreshadowing_records(story_id),
            [],
        )
        world = await self._load(
            story_id,
            "world_settings",
            lambda: self.repository.get_world_settings(story_id),
            {},
        )
        end_chapter = current_chapter - 1 if current_chapter is not None else None
        summaries = await self._load(
            story_id,
            "summaries",
            lambda: self.repository.list_summaries(story_id, None, end_chapter),
            [],
        )

        characters: dict[str, CharacterProfile] = {}
        for profile in self._parse_records(
            story_id, "characters", character_rows, CharacterProfile.from_record
        ):
            characters[profile.name] = profile

        chronicle = sorted(
            self._parse_records(
                story_id, "chronicle", chronicle_rows, ChronicleEvent.from_record
            ),
            key=lambda event: event.chapter_number,
        )
        foreshadowing = sorted(
            self._parse_records(
                story_id,
                "foreshadowing",
                foreshadowing_rows,
                ForeshadowingItem.from_record,
            ),
            key=lambda item: item.planted_chapter,
        )

        window = settings.MEMORY_SUMMARY_WINDOW
        recent = summaries[-window:] if window > 0 else []

        bank = MemoryBank(
            story_id=story_id,
            characters=characters,
            chronicle=chronicle,
            foreshadowing=foreshadowing,
            recent_summaries=recent,
            world_settings=parse_str_map(world),
        )
        logger.debug(
            "Memory bank assembled",
            story_id=story_id,
            characters=len(characters),
            chronicle=len(chronicle),
            foreshadowing=len(foreshadowing),
            summaries=len(recent),
        )
        return bank


def render_context_package(
    bank: MemoryBank,
    current_chapter: int,
    max_tokens: int | None = None,
    ranker: CharacterRelevanceRanker | None = None,
) -> str:
    """Render ``bank`` as prompt text, truncated to ``max_tokens``."""
    ranker = ranker or CharacterRelevanceRanker()
    sections: list[str] = []

    if bank.world_settings:
        world_lines = ["World facts:"]
        world_lines.extend(f"- {key}: {value}" for key, value in bank.world_settings.items())
        sections.append("\n".join(world_lines))

    sections.append(ranker.render_roster(bank.characters.values(), current_chapter))

    reminders = ranker.reactivation_suggestions(bank.characters.values(), current_chapter)
    if reminders:
        sections.append("\n".join(["Offstage characters:"] + [f"- {r}" for r in reminders]))

    open_items = sorted(bank.open_foreshadowing, key=lambda item: -item.priority)
    if open_items:
        fs_lines = ["Open foreshadowing (highest priority first):"]
        fs_lines.extend(
            f"- [ch {item.planted_chapter}, p{item.priority}] {item.content}"
            for item in open_items[:10]
        )
        sections.append("\n".join(fs_lines))

    if bank.recent_summaries:
        summary_lines = ["Recent chapters:"]
        summary_lines.extend(
            f"- Chapter {s.chapter_number}: {s.summary}"
            for s in reversed(bank.recent_summaries)
        )
        sections.append("\n".join(summary_lines))

    horizon = current_chapter - settings.MEMORY_RECENT_CHRONICLE_CHAPTERS
    recent_events = [e for e in bank.chronicle if e.chapter_number >= horizon]
    if recent_events:
        event_lines = ["Recent events:"]
        for event in recent_events:
            for description in event.events:
                event_lines.append(f"- ch {event.chapter_number}: {description}")
        sections.append("\n".join(event_lines))

    text = "\n\n".join(sections)
    return truncate_text_by_tokens(
        text,
        max_tokens if max_tokens is not None else settings.MEMORY_CONTEXT_MAX_TOKENS,
    )


async def record_appearances(
    repository: StoryRepository,
    story_id: str,
    names: list[str],
    chapter_number: int,
) -> list[str]:
    """Register an appearance for each named character that has a profile."""
    wanted = set(names)
    updated: list[str] = []
    for row in await repository.list_character_records(story_id):
        if row.get("name") not in wanted:
            continue
        try:
            profile = CharacterProfile.from_record(row)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning(
                "Cannot record appearance for unreadable profile.",
                story_id=story_id,
                character=row.get("name"),
                error=str(exc),
            )
            continue
        profile.record_appearance(chapter_number)
        await repository.save_character_record(story_id, profile.to_record())
        updated.append(profile.name)
    return updated
