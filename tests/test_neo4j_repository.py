# tests/test_neo4j_repository.py
import json
from unittest.mock import AsyncMock

import pytest
from core.exceptions import TransientIOError
from data_access.neo4j_repository import Neo4jStoryRepository
from models import ChapterSummary, PacingProgress, PacingStage, TaskStatus
from processing.memory_bank import MemoryBankAssembler


class FakeDB:
    def __init__(self, read_rows=None, write_rows=None):
        self.execute_read_query = AsyncMock(return_value=read_rows or [])
        self.execute_write_query = AsyncMock(return_value=write_rows or [])


@pytest.mark.asyncio
async def test_character_lists_are_stored_as_json():
    db = FakeDB()
    repo = Neo4jStoryRepository(db)
    await repo.save_character_record(
        "s", {"name": "Lin", "traits": ["calm"], "relationships": {"Mo": "mentor"}}
    )
    query, params = db.execute_write_query.await_args.args
    assert "MERGE (c:Character" in query
    assert params["props"]["traits"] == '["calm"]'
    assert json.loads(params["props"]["relationships"]) == {"Mo": "mentor"}
    assert params["props"]["story_id"] == "s"


@pytest.mark.asyncio
async def test_node_properties_parse_into_memory_bank():
    character = {"name": "Lin", "story_id": "s", "traits": '["calm"]',
                 "role": "protagonist", "created_ts": 1}

    async def route(query, parameters=None):
        return [{"props": character}] if "(c:Character" in query else []

    db = FakeDB()
    db.execute_read_query.side_effect = route
    repo = Neo4jStoryRepository(db)
    bank = await MemoryBankAssembler(repo).assemble("s")
    assert bank.characters["Lin"].traits == ["calm"]


@pytest.mark.asyncio
async def test_summary_round_trip_through_rows():
    db = FakeDB()
    repo = Neo4jStoryRepository(db)
    summary = ChapterSummary(story_id="s", chapter_number=2, summary="d", signals={"loc": "x"})
    await repo.save_summary(summary)
    params = db.execute_write_query.await_args.args[1]

    db.execute_read_query.return_value = [
        {"props": {"story_id": "s", "chapter_number": 2, "summary": "d",
                   "signals_json": params["signals_json"], "is_fallback": False}}
    ]
    assert await repo.get_summary("s", 2) == summary


@pytest.mark.asyncio
async def test_pacing_payload_round_trip():
    db = FakeDB()
    repo = Neo4jStoryRepository(db)
    progress = PacingProgress(
        story_id="s", current_stage=PacingStage.RESPONSE, stage_analysis={PacingStage.BONUS: "a"}
    )
    await repo.save_pacing_progress(progress)
    payload = db.execute_write_query.await_args.args[1]["payload"]
    db.execute_read_query.return_value = [{"payload": payload}]
    assert await repo.get_pacing_progress("s") == progress


@pytest.mark.asyncio
async def test_list_tasks_passes_filters():
    db = FakeDB()
    repo = Neo4jStoryRepository(db)
    assert await repo.list_tasks(status=TaskStatus.FAILED, story_id="s") == []
    params = db.execute_read_query.await_args.args[1]
    assert params == {"status": "FAILED", "kind": None, "story_id": "s"}


@pytest.mark.asyncio
async def test_insert_term_reports_creation():
    repo = Neo4jStoryRepository(FakeDB(write_rows=[{"created": True}]))
    assert await repo.insert_term("names", "Aria")
    repo = Neo4jStoryRepository(FakeDB(write_rows=[{"created": False}]))
    assert not await repo.insert_term("names", "Aria")


@pytest.mark.asyncio
async def test_transient_errors_propagate():
    db = FakeDB()
    db.execute_read_query.side_effect = TransientIOError("gone")
    with pytest.raises(TransientIOError):
        await Neo4jStoryRepository(db).get_chapter_text("s", 1)


@pytest.mark.asyncio
async def test_corrupt_summary_signals_do_not_block_assembly():
    good = {"story_id": "s", "chapter_number": 1, "summary": "d1", "signals_json": '{"loc": "x"}'}
    broken = {"story_id": "s", "chapter_number": 2, "summary": "d2", "signals_json": "{broken"}
    unreadable = {"story_id": "s", "summary": "no chapter"}

    async def route(query, parameters=None):
        if "(s:ChapterSummary" in query:
            return [{"props": good}, {"props": broken}, {"props": unreadable}]
        return []

    db = FakeDB()
    db.execute_read_query.side_effect = route
    bank = await MemoryBankAssembler(Neo4jStoryRepository(db)).assemble("s")
    assert [s.chapter_number for s in bank.recent_summaries] == [1, 2]
    assert bank.recent_summaries[0].signals == {"loc": "x"}
    assert bank.recent_summaries[1].signals == {}


@pytest.mark.asyncio
async def test_world_settings_that_are_not_a_map_read_as_empty():
    async def route(query, parameters=None):
        if "s.world_json" in query:
            return [{"world_json": '["not a map"]'}]
        return []

    db = FakeDB()
    db.execute_read_query.side_effect = route
    repo = Neo4jStoryRepository(db)
    assert await repo.get_world_settings("s") == {}
    bank = await MemoryBankAssembler(repo).assemble("s")
    assert bank.world_settings == {}
