# data_access/neo4j_repository.py
"""Neo4j-backed implementation of the story repository."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

import structlog

from core.db_manager import Neo4jManagerSingleton, neo4j_manager
from models import ChapterSummary, GenerationTask, PacingProgress, TaskKind, TaskStatus
from models.story_models import parse_str_map

logger = structlog.get_logger(__name__)

_CHARACTER_JSON_FIELDS = ("traits", "key_events", "relationships")
_CHRONICLE_JSON_FIELDS = ("events",)


def _to_properties(record: dict[str, Any], json_fields: Sequence[str]) -> dict[str, Any]:
    """Serialize list and map fields so they fit in node properties."""
    props: dict[str, Any] = {}
    for key, value in record.items():
        if key in json_fields and not isinstance(value, str):
            props[key] = json.dumps(value, ensure_ascii=False)
        elif isinstance(value, (dict, list)):
            props[key] = json.dumps(value, ensure_ascii=False)
        else:
            props[key] = value
    return props


class Neo4jStoryRepository:
    """Story repository that keeps every entity as a node keyed by story id."""

    def __init__(self, db: Neo4jManagerSingleton | None = None) -> None:
        self.db = db or neo4j_manager

    async def read(
        self, query: str, parameters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute a read query."""
        return await self.db.execute_read_query(query, parameters)

    async def write(
        self, query: str, parameters: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Execute a write query."""
        return await self.db.execute_write_query(query, parameters)

    # --- story ---
    async def get_story_info(self, story_id: str) -> dict[str, Any] | None:
        rows = await self.read(
            "MATCH (s:Story {id: $story_id}) RETURN s.info_json AS info_json",
            {"story_id": story_id},
        )
        if not rows or rows[0].get("info_json") is None:
            return None
        return json.loads(rows[0]["info_json"])

    async def save_story_info(self, story_id: str, info: dict[str, Any]) -> None:
        await self.write(
            "MERGE (s:Story {id: $story_id}) SET s.info_json = $info_json",
            {"story_id": story_id, "info_json": json.dumps(info, ensure_ascii=False)},
        )

    # --- characters ---
    async def list_character_records(self, story_id: str) -> list[dict[str, Any]]:
        rows = await self.read(
            "MATCH (c:Character {story_id: $story_id}) "
            "RETURN properties(c) AS props ORDER BY c.created_ts",
            {"story_id": story_id},
        )
        return [dict(row["props"]) for row in rows]

    async def save_character_record(
        self, story_id: str, record: dict[str, Any]
    ) -> None:
        props = _to_properties(record, _CHARACTER_JSON_FIELDS)
        props["story_id"] = story_id
        await self.write(
            "MERGE (c:Character {story_id: $story_id, name: $name}) "
            "ON CREATE SET c.created_ts = timestamp() "
            "SET c += $props",
            {"story_id": story_id, "name": props["name"], "props": props},
        )

    # --- chronicle ---
    async def list_chronicle_records(self, story_id: str) -> list[dict[str, Any]]:
        rows = await self.read(
            "MATCH (e:ChronicleEvent {story_id: $story_id}) "
            "RETURN properties(e) AS props ORDER BY e.chapter_number, e.created_ts",
            {"story_id": story_id},
        )
        return [dict(row["props"]) for row in rows]

    async def append_chronicle_record(
        self, story_id: str, record: dict[str, Any]
    ) -> None:
        props = _to_properties(record, _CHRONICLE_JSON_FIELDS)
        props["story_id"] = story_id
        await self.write(
            "CREATE (e:ChronicleEvent) SET e = $props, e.created_ts = timestamp()",
            {"props": props},
        )

    # --- foreshadowing ---
    async def list_foreshadowing_records(self, story_id: str) -> list[dict[str, Any]]:
        rows = await self.read(
            "MATCH (f:Foreshadowing {story_id: $story_id}) "
            "RETURN properties(f) AS props ORDER BY f.planted_chapter",
            {"story_id": story_id},
        )
        return [dict(row["props"]) for row in rows]

    async def save_foreshadowing_record(
        self, story_id: str, record: dict[str, Any]
    ) -> None:
        props = _to_properties(record, ())
        props["story_id"] = story_id
        await self.write(
            "MERGE (f:Foreshadowing {story_id: $story_id, id: $id}) SET f += $props",
            {"story_id": story_id, "id": str(props["id"]), "props": props},
        )

    # --- world settings ---
    async def get_world_settings(self, story_id: str) -> dict[str, str]:
        rows = await self.read(
            "MATCH (s:Story {id: $story_id}) RETURN s.world_json AS world_json",
            {"story_id": story_id},
        )
        if not rows:
            return {}
        return parse_str_map(rows[0].get("world_json"))

    async def save_world_settings(
        self, story_id: str, world_settings: dict[str, str]
    ) -> None:
        await self.write(
            "MERGE (s:Story {id: $story_id}) SET s.world_json = $world_json",
            {
                "story_id": story_id,
                "world_json": json.dumps(world_settings, ensure_ascii=False),
            },
        )

    # --- chapters ---
    async def get_chapter_text(self, story_id: str, chapter_number: int) -> str | None:
        rows = await self.read(
            "MATCH (c:Chapter {story_id: $story_id, number: $number}) RETURN c.text AS text",
            {"story_id": story_id, "number": chapter_number},
        )
        return rows[0].get("text") if rows else None

    async def save_chapter_text(
        self, story_id: str, chapter_number: int, text: str
    ) -> None:
        await self.write(
            "MERGE (c:Chapter {story_id: $story_id, number: $number}) "
            "SET c.text = $text, c.last_updated = timestamp()",
            {"story_id": story_id, "number": chapter_number, "text": text},
        )

    async def list_chapter_numbers(self, story_id: str) -> list[int]:
        rows = await self.read(
            "MATCH (c:Chapter {story_id: $story_id}) RETURN c.number AS number ORDER BY number",
            {"story_id": story_id},
        )
        return [int(row["number"]) for row in rows]

    # --- summaries ---
    @staticmethod
    def _summary_from_row(row: dict[str, Any]) -> ChapterSummary:
        return ChapterSummary(
            story_id=row["story_id"],
            chapter_number=int(row["chapter_number"]),
            summary=row.get("summary") or "",
            signals=parse_str_map(row.get("signals_json")),
            is_fallback=bool(row.get("is_fallback")),
        )

    async def get_summary(
        self, story_id: str, chapter_number: int
    ) -> ChapterSummary | None:
        rows = await self.read(
            "MATCH (s:ChapterSummary {story_id: $story_id, chapter_number: $number}) "
            "RETURN properties(s) AS props",
            {"story_id": story_id, "number": chapter_number},
        )
        return self._summary_from_row(rows[0]["props"]) if rows else None

    async def save_summary(self, summary: ChapterSummary) -> None:
        await self.write(
            "MERGE (s:ChapterSummary {story_id: $story_id, chapter_number: $number}) "
            "SET s.summary = $summary, s.signals_json = $signals_json, "
            "s.is_fallback = $is_fallback, s.updated_ts = timestamp()",
            {
                "story_id": summary.story_id,
                "number": summary.chapter_number,
                "summary": summary.summary,
                "signals_json": json.dumps(summary.signals, ensure_ascii=False),
                "is_fallback": summary.is_fallback,
            },
        )

    async def delete_summary(self, story_id: str, chapter_number: int) -> bool:
        rows = await self.write(
            "MATCH (s:ChapterSummary {story_id: $story_id, chapter_number: $number}) "
            "DELETE s RETURN count(*) AS deleted",
            {"story_id": story_id, "number": chapter_number},
        )
        return bool(rows and rows[0].get("deleted"))

    async def list_summaries(
        self,
        story_id: str,
        start_chapter: int | None = None,
        end_chapter: int | None = None,
    ) -> list[ChapterSummary]:
        rows = await self.read(
            "MATCH (s:ChapterSummary {story_id: $story_id}) "
            "WHERE ($start IS NULL OR s.chapter_number >= $start) "
            "AND ($end IS NULL OR s.chapter_number <= $end) "
            "RETURN properties(s) AS props ORDER BY s.chapter_number",
            {"story_id": story_id, "start": start_chapter, "end": end_chapter},
        )
        summaries: list[ChapterSummary] = []
        for row in rows:
            try:
                summaries.append(self._summary_from_row(row["props"]))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning(
                    "Skipping unreadable chapter summary.",
                    story_id=story_id,
                    error=str(exc),
                )
        return summaries

    # --- pacing ---
    async def get_pacing_progress(self, story_id: str) -> PacingProgress | None:
        rows = await self.read(
            "MATCH (p:PacingProgress {story_id: $story_id}) RETURN p.payload AS payload",
            {"story_id": story_id},
        )
        if not rows or not rows[0].get("payload"):
            return None
        return PacingProgress.model_validate_json(rows[0]["payload"])

    async def save_pacing_progress(self, progress: PacingProgress) -> None:
        await self.write(
            "MERGE (p:PacingProgress {story_id: $story_id}) "
            "SET p.payload = $payload, p.current_stage = $stage, p.loop_number = $loop",
            {
                "story_id": progress.story_id,
                "payload": progress.model_dump_json(),
                "stage": progress.current_stage.value,
                "loop": progress.loop_number,
            },
        )

    async def delete_pacing_progress(self, story_id: str) -> bool:
        rows = await self.write(
            "MATCH (p:PacingProgress {story_id: $story_id}) DELETE p RETURN count(*) AS deleted",
            {"story_id": story_id},
        )
        return bool(rows and rows[0].get("deleted"))

    # --- tasks ---
    async def get_task(self, task_id: str) -> GenerationTask | None:
        rows = await self.read(
            "MATCH (t:GenerationTask {id: $id}) RETURN t.payload AS payload",
            {"id": task_id},
        )
        if not rows or not rows[0].get("payload"):
            return None
        return GenerationTask.model_validate_json(rows[0]["payload"])

    async def save_task(self, task: GenerationTask) -> None:
        await self.write(
            "MERGE (t:GenerationTask {id: $id}) "
            "SET t.payload = $payload, t.status = $status, t.kind = $kind, "
            "t.story_id = $story_id, t.created_at = $created_at",
            {
                "id": task.id,
                "payload": task.model_dump_json(),
                "status": task.status.value,
                "kind": task.kind.value,
                "story_id": task.story_id,
                "created_at": task.created_at.isoformat(),
            },
        )

    async def list_tasks(
        self,
        status: TaskStatus | None = None,
        kind: TaskKind | None = None,
        story_id: str | None = None,
    ) -> list[GenerationTask]:
        rows = await self.read(
            "MATCH (t:GenerationTask) "
            "WHERE ($status IS NULL OR t.status = $status) "
            "AND ($kind IS NULL OR t.kind = $kind) "
            "AND ($story_id IS NULL OR t.story_id = $story_id) "
            "RETURN t.payload AS payload ORDER BY t.created_at DESC",
            {
                "status": status.value if status else None,
                "kind": kind.value if kind else None,
                "story_id": story_id,
            },
        )
        return [GenerationTask.model_validate_json(row["payload"]) for row in rows]

    # --- vocabulary terms ---
    async def insert_term(self, category: str, term: str) -> bool:
        rows = await self.write(
            "MERGE (t:Term {category: $category, value: $value}) "
            "ON CREATE SET t.created = true "
            "ON MATCH SET t.created = false "
            "RETURN t.created AS created",
            {"category": category, "value": term},
        )
        return bool(rows and rows[0].get("created"))

    async def list_terms(self, category: str) -> list[str]:
        rows = await self.read(
            "MATCH (t:Term {category: $category}) RETURN t.value AS value ORDER BY value",
            {"category": category},
        )
        return [row["value"] for row in rows]
