# tests/test_repository.py
import asyncio

import pytest
from data_access import InMemoryStoryRepository, build_repository
from models import ChapterSummary, GenerationTask, PacingProgress, TaskKind, TaskStatus


def test_build_repository_defaults_to_memory():
    assert isinstance(build_repository("memory"), InMemoryStoryRepository)


@pytest.mark.asyncio
async def test_reads_are_copies(repo):
    await repo.save_character_record("s", {"name": "Lin", "traits": ["calm"]})
    rows = await repo.list_character_records("s")
    rows[0]["traits"].append("angry")
    assert (await repo.list_character_records("s"))[0]["traits"] == ["calm"]

    await repo.save_pacing_progress(PacingProgress(story_id="s"))
    progress = await repo.get_pacing_progress("s")
    progress.loop_number = 5
    assert (await repo.get_pacing_progress("s")).loop_number == 1


@pytest.mark.asyncio
async def test_summaries_are_upserted_and_filtered(repo):
    for n in (3, 1, 2):
        await repo.save_summary(ChapterSummary(story_id="s", chapter_number=n, summary=f"v{n}"))
    await repo.save_summary(ChapterSummary(story_id="s", chapter_number=2, summary="v2b"))
    await repo.save_summary(ChapterSummary(story_id="other", chapter_number=1, summary="x"))

    found = await repo.list_summaries("s", 2, 3)
    assert [(s.chapter_number, s.summary) for s in found] == [(2, "v2b"), (3, "v3")]
    assert await repo.delete_summary("s", 2)
    assert not await repo.delete_summary("s", 2)


@pytest.mark.asyncio
async def test_chapter_numbers_sorted_per_story(repo):
    await repo.save_chapter_text("s", 2, "b")
    await repo.save_chapter_text("s", 1, "a")
    await repo.save_chapter_text("t", 9, "z")
    assert await repo.list_chapter_numbers("s") == [1, 2]


@pytest.mark.asyncio
async def test_list_tasks_filters(repo):
    first = GenerationTask(kind=TaskKind.ANALYSIS, story_id="s")
    second = GenerationTask(kind=TaskKind.CHAPTER_WRITING, story_id="s", status=TaskStatus.RUNNING)
    await repo.save_task(first)
    await repo.save_task(second)
    assert [t.id for t in await repo.list_tasks(status=TaskStatus.RUNNING)] == [second.id]
    assert [t.id for t in await repo.list_tasks(kind=TaskKind.ANALYSIS)] == [first.id]
    assert len(await repo.list_tasks(story_id="s")) == 2


@pytest.mark.asyncio
async def test_insert_term_is_unique_under_concurrency(repo):
    results = await asyncio.gather(*(repo.insert_term("names", "Aria") for _ in range(5)))
    assert results.count(True) == 1
    assert await repo.list_terms("names") == ["Aria"]
