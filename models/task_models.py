"""Generation task records."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_STATUSES


_TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.CANCELLED}
)


class TaskKind(str, Enum):
    CHARACTER_CREATION = "CHARACTER_CREATION"
    PLOT_GENERATION = "PLOT_GENERATION"
    DIALOGUE_WRITING = "DIALOGUE_WRITING"
    WORLD_BUILDING = "WORLD_BUILDING"
    STORY_OUTLINE = "STORY_OUTLINE"
    VOLUME_OUTLINE = "VOLUME_OUTLINE"
    CHAPTER_WRITING = "CHAPTER_WRITING"
    EDITING = "EDITING"
    TRANSLATION = "TRANSLATION"
    ANALYSIS = "ANALYSIS"
    TERM_MINING = "TERM_MINING"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class GenerationTask(BaseModel):
    """One supervised unit of generation work."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    kind: TaskKind
    name: str = ""
    status: TaskStatus = TaskStatus.PENDING
    progress: int = 0
    progress_note: str = ""
    retry_count: int = 0
    max_retries: int = 3
    story_id: str | None = None
    target: str | None = None
    parameters: dict[str, Any] = Field(default_factory=dict)
    output: Any = None
    error: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    started_at: datetime | None = None
    completed_at: datetime | None = None

    def touch(self) -> None:
        self.updated_at = utc_now()

    @property
    def can_retry(self) -> bool:
        return self.status == TaskStatus.FAILED and self.retry_count < self.max_retries
