# processing/character_ranker.py
"""Orders characters by narrative weight and recency for context assembly."""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

import structlog

from config import settings
from models import ActivityStatus, CharacterProfile, CharacterRole

logger = structlog.get_logger(__name__)

_ABSENT_STATUSES = frozenset({ActivityStatus.DECEASED, ActivityStatus.MISSING})


@dataclass(frozen=True)
class RankedCharacter:
    profile: CharacterProfile
    score: int


class CharacterRelevanceRanker:
    """Scores characters: role base, adjusted by recency and activity status."""

    def score(self, profile: CharacterProfile, current_chapter: int) -> int:
        role_scores = {
            CharacterRole.PROTAGONIST: settings.RANK_SCORE_PROTAGONIST,
            CharacterRole.MAJOR: settings.RANK_SCORE_MAJOR,
            CharacterRole.MINOR: settings.RANK_SCORE_MINOR,
        }
        total = role_scores[profile.role]

        if profile.last_appearance is not None:
            gap = current_chapter - profile.last_appearance
            if gap <= settings.RANK_RECENT_WINDOW:
                total += settings.RANK_RECENT_BOOST
            elif gap <= settings.RANK_NEAR_WINDOW:
                total += settings.RANK_NEAR_BOOST
            elif gap > settings.RANK_STALE_WINDOW:
                total -= settings.RANK_STALE_PENALTY

        if profile.status == ActivityStatus.ACTIVE:
            total += settings.RANK_ACTIVE_BOOST
        elif profile.status == ActivityStatus.INACTIVE:
            total -= settings.RANK_INACTIVE_PENALTY

        return max(total, 0)

    def rank(
        self, characters: Iterable[CharacterProfile], current_chapter: int
    ) -> list[RankedCharacter]:
        """Highest score first; equal scores keep their input order."""
        scored = [
            RankedCharacter(profile, self.score(profile, current_chapter))
            for profile in characters
        ]
        return sorted(scored, key=lambda item: item.score, reverse=True)

    def find_inactive(
        self,
        characters: Iterable[CharacterProfile],
        current_chapter: int,
        threshold_chapters: int | None = None,
    ) -> list[str]:
        """Names of characters unseen for more than ``threshold_chapters``.

        Deceased and missing characters are expected to be absent and are skipped.
        """
        threshold = (
            threshold_chapters
            if threshold_chapters is not None
            else settings.INACTIVE_CHARACTER_THRESHOLD
        )
        return [
            profile.name
            for profile in characters
            if profile.status not in _ABSENT_STATUSES
            and profile.last_appearance is not None
            and current_chapter - profile.last_appearance > threshold
        ]

    def reactivation_suggestions(
        self,
        characters: Iterable[CharacterProfile],
        current_chapter: int,
        threshold_chapters: int | None = None,
    ) -> list[str]:
        """Reminders for major characters that have been offstage too long."""
        pool = list(characters)
        inactive = set(self.find_inactive(pool, current_chapter, threshold_chapters))
        suggestions: list[str] = []
        for profile in pool:
            if profile.name not in inactive or profile.role != CharacterRole.MAJOR:
                continue
            gap = current_chapter - (profile.last_appearance or 0)
            suggestions.append(
                f"{profile.name} (major) has been absent for {gap} chapters; "
                "consider bringing them back or explaining their absence."
            )
        return suggestions

    def render_roster(
        self,
        characters: Iterable[CharacterProfile],
        current_chapter: int,
        limit: int | None = None,
        relationship_lines: int | None = None,
    ) -> str:
        """Plain-text roster of the top characters and a few key relationships."""
        pool = list(characters)
        if not pool:
            return "No character records yet."

        max_characters = (
            limit if limit is not None else settings.MEMORY_MAX_CHARACTERS_IN_CONTEXT
        )
        lines = ["Characters (by relevance):"]
        for item in self.rank(pool, current_chapter)[:max_characters]:
            profile = item.profile
            line = f"- {profile.name} ({profile.role.value}, {profile.status.value})"
            if profile.traits:
                line += f" [{', '.join(profile.traits[:3])}]"
            if profile.key_events:
                line += f" - latest: {profile.key_events[-1]}"
            lines.append(line)

        max_relationships = (
            relationship_lines
            if relationship_lines is not None
            else settings.MEMORY_MAX_RELATIONSHIP_LINES
        )
        relationship_block: list[str] = []
        for profile in pool:
            if len(relationship_block) >= max_relationships:
                break
            if not profile.relationships:
                continue
            pairs = list(profile.relationships.items())[:2]
            relationship_block.append(
                f"- {profile.name}: "
                + ", ".join(f"{other} ({label})" for other, label in pairs)
            )
        if relationship_block:
            lines.append("")
            lines.append("Key relationships:")
            lines.extend(relationship_block)
        return "\n".join(lines)
