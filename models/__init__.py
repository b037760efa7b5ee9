"""Central package for Cadence data models."""

from .pacing_models import (
    MotivationResult,
    MotivationStrength,
    PacingProgress,
    PacingStage,
    TemplateType,
)
from .story_models import (
    ActivityStatus,
    ChapterSummary,
    CharacterProfile,
    CharacterRole,
    ChronicleEvent,
    ForeshadowingItem,
    ForeshadowingStatus,
    MemoryBank,
)
from .task_models import GenerationTask, TaskKind, TaskStatus

__all__ = [
    "ActivityStatus",
    "ChapterSummary",
    "CharacterProfile",
    "CharacterRole",
    "ChronicleEvent",
    "ForeshadowingItem",
    "ForeshadowingStatus",
    "GenerationTask",
    "MemoryBank",
    "MotivationResult",
    "MotivationStrength",
    "PacingProgress",
    "PacingStage",
    "TaskKind",
    "TaskStatus",
    "TemplateType",
]
