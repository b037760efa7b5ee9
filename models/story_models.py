"""Story fact records consumed by the memory bank."""

from __future__ import annotations

import json
from enum import Enum
from typing import Any

import structlog
from pydantic import BaseModel, Field

from core.exceptions import ConsistencyConflict

logger = structlog.get_logger(__name__)


class CharacterRole(str, Enum):
    PROTAGONIST = "protagonist"
    MAJOR = "major"
    MINOR = "minor"

    @classmethod
    def parse(cls, value: Any) -> CharacterRole:
        """Map a stored role tag onto a role, defaulting to ``MINOR``."""
        if isinstance(value, CharacterRole):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.MINOR


class ActivityStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DECEASED = "deceased"
    MISSING = "missing"

    @classmethod
    def parse(cls, value: Any) -> ActivityStatus:
        if isinstance(value, ActivityStatus):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.ACTIVE


def _load_json_field(value: Any) -> Any:
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            return None
        return json.loads(stripped)
    return value


def parse_str_list(value: Any) -> list[str]:
    """Return ``value`` as a list of strings, or an empty list if it cannot be read."""
    try:
        loaded = _load_json_field(value)
    except (TypeError, ValueError):
        return []
    if isinstance(loaded, list):
        return [str(item) for item in loaded if item is not None]
    return []


def parse_str_map(value: Any) -> dict[str, str]:
    """Return ``value`` as a str->str mapping, or an empty dict if it cannot be read."""
    try:
        loaded = _load_json_field(value)
    except (TypeError, ValueError):
        return {}
    if isinstance(loaded, dict):
        return {str(k): str(v) for k, v in loaded.items() if v is not None}
    return {}


def _parse_optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class CharacterProfile(BaseModel):
    """Structured information about a character."""

    name: str
    role: CharacterRole = CharacterRole.MINOR
    traits: list[str] = Field(default_factory=list)
    key_events: list[str] = Field(default_factory=list)
    relationships: dict[str, str] = Field(default_factory=dict)
    first_appearance: int | None = None
    last_appearance: int | None = None
    appearance_count: int = 0
    status: ActivityStatus = ActivityStatus.ACTIVE

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> CharacterProfile:
        """Build a profile from a stored row, replacing unreadable sub-fields
        with empty defaults instead of failing."""

        first = _parse_optional_int(data.get("first_appearance"))
        last = _parse_optional_int(data.get("last_appearance"))
        if first is not None and last is not None and last < first:
            last = first
        count = _parse_optional_int(data.get("appearance_count")) or 0
        if count < 1 and last is not None:
            count = 1
        return cls(
            name=str(data["name"]),
            role=CharacterRole.parse(data.get("role")),
            traits=parse_str_list(data.get("traits")),
            key_events=parse_str_list(data.get("key_events")),
            relationships=parse_str_map(data.get("relationships")),
            first_appearance=first,
            last_appearance=last,
            appearance_count=count,
            status=ActivityStatus.parse(data.get("status")),
        )

    def to_record(self) -> dict[str, Any]:
        """Convert the profile to a flat row for storage."""
        return self.model_dump(mode="json")

    def record_appearance(self, chapter_number: int) -> None:
        """Register an appearance in ``chapter_number`` and mark the character active."""
        if self.first_appearance is None or chapter_number < self.first_appearance:
            self.first_appearance = chapter_number
        if self.last_appearance is None or chapter_number > self.last_appearance:
            self.last_appearance = chapter_number
        self.appearance_count += 1
        self.status = ActivityStatus.ACTIVE


class ChronicleEvent(BaseModel):
    """Events recorded for one chapter."""

    chapter_number: int
    events: list[str] = Field(default_factory=list)
    event_type: str = "other"
    importance: int = 5

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> ChronicleEvent:
        importance = _parse_optional_int(data.get("importance"))
        return cls(
            chapter_number=int(data["chapter_number"]),
            events=parse_str_list(data.get("events")),
            event_type=str(data.get("event_type") or "other"),
            importance=importance if importance is not None else 5,
        )


class ForeshadowingStatus(str, Enum):
    OPEN = "open"
    RESOLVED = "resolved"


class ForeshadowingItem(BaseModel):
    """A planted plot hook and its resolution state."""

    id: str
    content: str
    planted_chapter: int
    resolved_chapter: int | None = None
    status: ForeshadowingStatus = ForeshadowingStatus.OPEN
    type: str = "other"
    priority: int = 5

    @classmethod
    def from_record(cls, data: dict[str, Any]) -> ForeshadowingItem:
        planted = int(data["planted_chapter"])
        resolved = _parse_optional_int(data.get("resolved_chapter"))
        status = (
            ForeshadowingStatus.RESOLVED
            if str(data.get("status", "")).lower() == "resolved"
            else ForeshadowingStatus.OPEN
        )
        if resolved is not None and resolved < planted:
            logger.warning(
                "Ignoring resolved chapter earlier than planted chapter.",
                foreshadowing_id=data.get("id"),
                planted=planted,
                resolved=resolved,
            )
            resolved = None
        priority = _parse_optional_int(data.get("priority"))
        return cls(
            id=str(data.get("id") or f"fs_{planted}"),
            content=str(data.get("content") or ""),
            planted_chapter=planted,
            resolved_chapter=resolved,
            status=status,
            type=str(data.get("type") or "other"),
            priority=priority if priority is not None else 5,
        )

    @property
    def is_open(self) -> bool:
        return self.status == ForeshadowingStatus.OPEN

    def resolve(self, chapter_number: int) -> None:
        """Mark the item resolved in ``chapter_number``."""
        if not self.is_open:
            raise ConsistencyConflict(
                f"Foreshadowing '{self.id}' was already resolved in chapter {self.resolved_chapter}."
            )
        if chapter_number < self.planted_chapter:
            raise ConsistencyConflict(
                f"Foreshadowing '{self.id}' cannot resolve in chapter {chapter_number}, "
                f"before it was planted in chapter {self.planted_chapter}."
            )
        self.resolved_chapter = chapter_number
        self.status = ForeshadowingStatus.RESOLVED


class ChapterSummary(BaseModel):
    """Short fact digest of one chapter, unique per (story, chapter)."""

    story_id: str
    chapter_number: int
    summary: str
    signals: dict[str, str] = Field(default_factory=dict)
    is_fallback: bool = False


class MemoryBank(BaseModel):
    """Read projection of the facts needed to keep a chapter consistent."""

    story_id: str
    characters: dict[str, CharacterProfile] = Field(default_factory=dict)
    chronicle: list[ChronicleEvent] = Field(default_factory=list)
    foreshadowing: list[ForeshadowingItem] = Field(default_factory=list)
    recent_summaries: list[ChapterSummary] = Field(default_factory=list)
    world_settings: dict[str, str] = Field(default_factory=dict)

    @property
    def open_foreshadowing(self) -> list[ForeshadowingItem]:
        return [item for item in self.foreshadowing if item.is_open]
