# tests/test_memory_bank.py
import pytest
from config import settings
from core.exceptions import TransientIOError
from models import ChapterSummary
from processing.memory_bank import (
    MemoryBankAssembler,
    record_appearances,
    render_context_package,
)


async def _seed(repo):
    await repo.save_character_record(
        "s", {"name": "Lin", "role": "protagonist", "last_appearance": 4, "traits": '["brave"]'}
    )
    await repo.save_character_record("s", {"name": "Broken", "role": "major", "traits": "{"})
    await repo.save_character_record("s", {"name": "Mo", "role": "major"})
    await repo.append_chronicle_record("s", {"chapter_number": 3, "events": ["the bridge fell"]})
    await repo.append_chronicle_record("s", {"events": ["no chapter"]})
    await repo.save_foreshadowing_record(
        "s", {"id": "f1", "content": "a sealed letter", "planted_chapter": 2, "priority": 9}
    )
    await repo.save_foreshadowing_record(
        "s",
        {"id": "f2", "content": "old debt", "planted_chapter": 1,
         "resolved_chapter": 3, "status": "resolved"},
    )
    await repo.save_world_settings("s", {"magic": "costs memories"})
    for n in (1, 2, 3, 4, 5):
        await repo.save_summary(ChapterSummary(story_id="s", chapter_number=n, summary=f"events of {n}"))


@pytest.mark.asyncio
async def test_assemble_empty_story(repo):
    bank = await MemoryBankAssembler(repo).assemble("nothing")
    assert bank.characters == {}
    assert bank.chronicle == []
    assert bank.recent_summaries == []


@pytest.mark.asyncio
async def test_assemble_skips_bad_records_and_limits_summaries(repo, monkeypatch):
    await _seed(repo)
    monkeypatch.setattr(settings, "MEMORY_SUMMARY_WINDOW", 2)
    bank = await MemoryBankAssembler(repo).assemble("s", current_chapter=5)

    assert set(bank.characters) == {"Lin", "Broken", "Mo"}
    assert bank.characters["Broken"].traits == []
    assert [e.chapter_number for e in bank.chronicle] == [3]
    assert [f.id for f in bank.open_foreshadowing] == ["f1"]
    assert [s.chapter_number for s in bank.recent_summaries] == [3, 4]
    assert bank.world_settings == {"magic": "costs memories"}


@pytest.mark.asyncio
async def test_assemble_survives_transient_errors(repo, monkeypatch):
    await _seed(repo)

    async def flaky(_story_id):
        raise TransientIOError("connection reset")

    monkeypatch.setattr(repo, "list_chronicle_records", flaky)
    bank = await MemoryBankAssembler(repo).assemble("s", current_chapter=6)
    assert bank.chronicle == []
    assert "Lin" in bank.characters


@pytest.mark.asyncio
async def test_render_context_package_sections(repo):
    await _seed(repo)
    bank = await MemoryBankAssembler(repo).assemble("s", current_chapter=6)
    text = render_context_package(bank, 6)
    assert text.startswith("World facts:\n- magic: costs memories")
    assert "- Lin (protagonist, active) [brave]" in text
    assert "[ch 2, p9] a sealed letter" in text
    assert "old debt" not in text
    assert text.index("- Chapter 5:") < text.index("- Chapter 1:")
    assert "- ch 3: the bridge fell" in text


@pytest.mark.asyncio
async def test_render_context_package_is_bounded(repo):
    await _seed(repo)
    bank = await MemoryBankAssembler(repo).assemble("s", current_chapter=6)
    text = render_context_package(bank, 6, max_tokens=10)
    assert len(text) <= int(10 * settings.FALLBACK_CHARS_PER_TOKEN)


@pytest.mark.asyncio
async def test_record_appearances_updates_known_characters(repo):
    await _seed(repo)
    updated = await record_appearances(repo, "s", ["Lin", "Ghost"], 9)
    assert updated == ["Lin"]
    rows = {r["name"]: r for r in await repo.list_character_records("s")}
    assert rows["Lin"]["last_appearance"] == 9
    assert rows["Lin"]["appearance_count"] == 2
