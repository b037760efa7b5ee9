# data_access/repository.py
"""Storage contract for story facts, plus the in-memory backend."""

from __future__ import annotations

import asyncio
import copy
from typing import Any, Protocol

from models import ChapterSummary, GenerationTask, PacingProgress, TaskKind, TaskStatus

__all__ = [
    "StoryRepository",
    "InMemoryStoryRepository",
]


class StoryRepository(Protocol):
    """CRUD operations the engine needs from a storage backend.

    Character, chronicle and foreshadowing rows come back as raw dictionaries;
    their list and map sub-fields may be JSON strings and are parsed by the
    memory bank assembler.
    """

    async def get_story_info(self, story_id: str) -> dict[str, Any] | None: ...

    async def save_story_info(self, story_id: str, info: dict[str, Any]) -> None: ...

    async def list_character_records(self, story_id: str) -> list[dict[str, Any]]: ...

    async def save_character_record(
        self, story_id: str, record: dict[str, Any]
    ) -> None: ...

    async def list_chronicle_records(self, story_id: str) -> list[dict[str, Any]]: ...

    async def append_chronicle_record(
        self, story_id: str, record: dict[str, Any]
    ) -> None: ...

    async def list_foreshadowing_records(
        self, story_id: str
    ) -> list[dict[str, Any]]: ...

    async def save_foreshadowing_record(
        self, story_id: str, record: dict[str, Any]
    ) -> None: ...

    async def get_world_settings(self, story_id: str) -> dict[str, str]: ...

    async def save_world_settings(
        self, story_id: str, world_settings: dict[str, str]
    ) -> None: ...

    async def get_chapter_text(self, story_id: str, chapter_number: int) -> str | None: ...

    async def save_chapter_text(
        self, story_id: str, chapter_number: int, text: str
    ) -> None: ...

    async def list_chapter_numbers(self, story_id: str) -> list[int]: ...

    async def get_summary(
        self, story_id: str, chapter_number: int
    ) -> ChapterSummary | None: ...

    async def save_summary(self, summary: ChapterSummary) -> None: ...

    async def delete_summary(self, story_id: str, chapter_number: int) -> bool: ...

    async def list_summaries(
        self,
        story_id: str,
        start_chapter: int | None = None,
        end_chapter: int | None = None,
    ) -> list[ChapterSummary]: ...

    async def get_pacing_progress(self, story_id: str) -> PacingProgress | None: ...

    async def save_pacing_progress(self, progress: PacingProgress) -> None: ...

    async def delete_pacing_progress(self, story_id: str) -> bool: ...

    async def get_task(self, task_id: str) -> GenerationTask | None: ...

    async def save_task(self, task: GenerationTask) -> None: ...

    async def list_tasks(
        self,
        status: TaskStatus | None = None,
        kind: TaskKind | None = None,
        story_id: str | None = None,
    ) -> list[GenerationTask]: ...

    async def insert_term(self, category: str, term: str) -> bool: ...

    async def list_terms(self, category: str) -> list[str]: ...


class InMemoryStoryRepository:
    """Process-local backend. Every read returns a copy, so changes only land
    through the matching ``save`` call."""

    def __init__(self) -> None:
        self._stories: dict[str, dict[str, Any]] = {}
        self._characters: dict[str, dict[str, dict[str, Any]]] = {}
        self._chronicle: dict[str, list[dict[str, Any]]] = {}
        self._foreshadowing: dict[str, dict[str, dict[str, Any]]] = {}
        self._world: dict[str, dict[str, str]] = {}
        self._chapters: dict[tuple[str, int], str] = {}
        self._summaries: dict[tuple[str, int], ChapterSummary] = {}
        self._pacing: dict[str, PacingProgress] = {}
        self._tasks: dict[str, GenerationTask] = {}
        self._terms: dict[str, list[str]] = {}
        self._lock = asyncio.Lock()

    async def get_story_info(self, story_id: str) -> dict[str, Any] | None:
        info = self._stories.get(story_id)
        return copy.deepcopy(info) if info is not None else None

    async def save_story_info(self, story_id: str, info: dict[str, Any]) -> None:
        self._stories[story_id] = copy.deepcopy(info)

    async def list_character_records(self, story_id: str) -> list[dict[str, Any]]:
        return copy.deepcopy(list(self._characters.get(story_id, {}).values()))

    async def save_character_record(
        self, story_id: str, record: dict[str, Any]
    ) -> None:
        self._characters.setdefault(story_id, {})[str(record["name"])] = (
            copy.deepcopy(record)
        )

    async def list_chronicle_records(self, story_id: str) -> list[dict[str, Any]]:
        return copy.deepcopy(self._chronicle.get(story_id, []))

    async def append_chronicle_record(
        self, story_id: str, record: dict[str, Any]
    ) -> None:
        self._chronicle.setdefault(story_id, []).append(copy.deepcopy(record))

    async def list_foreshadowing_records(self, story_id: str) -> list[dict[str, Any]]:
        return copy.deepcopy(list(self._foreshadowing.get(story_id, {}).values()))

    async def save_foreshadowing_record(
        self, story_id: str, record: dict[str, Any]
    ) -> None:
        self._foreshadowing.setdefault(story_id, {})[str(record["id"])] = (
            copy.deepcopy(record)
        )

    async def get_world_settings(self, story_id: str) -> dict[str, str]:
        return dict(self._world.get(story_id, {}))

    async def save_world_settings(
        self, story_id: str, world_settings: dict[str, str]
    ) -> None:
        self._world[story_id] = dict(world_settings)

    async def get_chapter_text(self, story_id: str, chapter_number: int) -> str | None:
        return self._chapters.get((story_id, chapter_number))

    async def save_chapter_text(
        self, story_id: str, chapter_number: int, text: str
    ) -> None:
        self._chapters[(story_id, chapter_number)] = text

    async def list_chapter_numbers(self, story_id: str) -> list[int]:
        return sorted(num for sid, num in self._chapters if sid == story_id)

    async def get_summary(
        self, story_id: str, chapter_number: int
    ) -> ChapterSummary | None:
        summary = self._summaries.get((story_id, chapter_number))
        return summary.model_copy(deep=True) if summary else None

    async def save_summary(self, summary: ChapterSummary) -> None:
        self._summaries[(summary.story_id, summary.chapter_number)] = (
            summary.model_copy(deep=True)
        )

    async def delete_summary(self, story_id: str, chapter_number: int) -> bool:
        return self._summaries.pop((story_id, chapter_number), None) is not None

    async def list_summaries(
        self,
        story_id: str,
        start_chapter: int | None = None,
        end_chapter: int | None = None,
    ) -> list[ChapterSummary]:
        found = [
            summary.model_copy(deep=True)
            for (sid, num), summary in self._summaries.items()
            if sid == story_id
            and (start_chapter is None or num >= start_chapter)
            and (end_chapter is None or num <= end_chapter)
        ]
        return sorted(found, key=lambda s: s.chapter_number)

    async def get_pacing_progress(self, story_id: str) -> PacingProgress | None:
        progress = self._pacing.get(story_id)
        return progress.model_copy(deep=True) if progress else None

    async def save_pacing_progress(self, progress: PacingProgress) -> None:
        self._pacing[progress.story_id] = progress.model_copy(deep=True)

    async def delete_pacing_progress(self, story_id: str) -> bool:
        return self._pacing.pop(story_id, None) is not None

    async def get_task(self, task_id: str) -> GenerationTask | None:
        task = self._tasks.get(task_id)
        return task.model_copy(deep=True) if task else None

    async def save_task(self, task: GenerationTask) -> None:
        self._tasks[task.id] = task.model_copy(deep=True)

    async def list_tasks(
        self,
        status: TaskStatus | None = None,
        kind: TaskKind | None = None,
        story_id: str | None = None,
    ) -> list[GenerationTask]:
        found = [
            task.model_copy(deep=True)
            for task in self._tasks.values()
            if (status is None or task.status == status)
            and (kind is None or task.kind == kind)
            and (story_id is None or task.story_id == story_id)
        ]
        return sorted(found, key=lambda t: t.created_at, reverse=True)

    async def insert_term(self, category: str, term: str) -> bool:
        async with self._lock:
            terms = self._terms.setdefault(category, [])
            if term in terms:
                return False
            terms.append(term)
            return True

    async def list_terms(self, category: str) -> list[str]:
        return list(self._terms.get(category, []))
