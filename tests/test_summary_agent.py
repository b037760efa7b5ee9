# tests/test_summary_agent.py
import pytest
from agents.summary_agent import ChapterSummaryCompressor, parse_summary_signals
from config import settings
from core.exceptions import ProviderError
from models import ChapterSummary

DIGEST = "Lin crossed the river and lost the map. Mo stayed behind at the ford."


def test_parse_summary_signals_last_line_wins():
    text = (
        f"{DIGEST}\nSummary Signals: loc=ford\n"
        "**Summary Signals:** loc=river bank; item=map lost；deaths=none; junk"
    )
    digest, signals = parse_summary_signals(text)
    assert digest == f"{DIGEST}\nSummary Signals: loc=ford"
    assert signals == {"loc": "river bank", "item": "map lost", "deaths": "none"}


def test_parse_summary_signals_without_line():
    assert parse_summary_signals("  plain digest ") == ("plain digest", {})


def test_fallback_summary_is_deterministic_and_bounded(monkeypatch):
    monkeypatch.setattr(settings, "SUMMARY_FALLBACK_CHARS", 20)
    text = "word   " * 30
    out = ChapterSummaryCompressor.fallback_summary(text, 4)
    assert out == ChapterSummaryCompressor.fallback_summary(text, 4)
    assert out.startswith("Chapter 4: ")
    assert out.endswith("...")
    assert len(out) == len("Chapter 4: ") + 20


@pytest.mark.asyncio
async def test_summarize_uses_provider_and_extracts_signals(repo, make_provider):
    provider = make_provider([f"<think>hm</think>{DIGEST}\nSummary Signals: loc=ford; item=none"])
    compressor = ChapterSummaryCompressor(repo, provider)
    summary = await compressor.summarize_and_store("s", 3, "Chapter three prose.")

    assert summary.summary == DIGEST
    assert summary.signals == {"loc": "ford", "item": "none"}
    assert not summary.is_fallback
    assert (await repo.get_summary("s", 3)).summary == DIGEST
    prompt = provider.calls[0][1]
    assert "Summarize chapter 3" in prompt
    assert f"{settings.SUMMARY_MIN_WORDS}-{settings.SUMMARY_MAX_WORDS} words" in prompt


@pytest.mark.asyncio
async def test_summarize_falls_back_on_provider_error(repo, make_provider):
    compressor = ChapterSummaryCompressor(repo, make_provider([ProviderError("down")]))
    summary = await compressor.summarize_and_store("s", 2, "The storm broke at dawn.")
    assert summary.is_fallback
    assert summary.summary == "Chapter 2: The storm broke at dawn."


@pytest.mark.asyncio
async def test_signals_only_reply_falls_back(repo, make_provider):
    compressor = ChapterSummaryCompressor(repo, make_provider(["Summary Signals: loc=x"]))
    summary = await compressor.build_summary("s", 1, "Some text.")
    assert summary.is_fallback
    assert summary.signals == {"loc": "x"}


@pytest.mark.asyncio
async def test_empty_chapter_never_calls_provider(repo, make_provider):
    provider = make_provider()
    compressor = ChapterSummaryCompressor(repo, provider)
    assert await compressor.summarize("   ", 5) == "Chapter 5 has no content."
    assert provider.calls == []


@pytest.mark.asyncio
async def test_long_digest_is_trimmed(repo, make_provider, monkeypatch):
    monkeypatch.setattr(settings, "SUMMARY_MAX_CHARS", 50)
    compressor = ChapterSummaryCompressor(repo, make_provider(["One sentence here. " * 10]))
    digest = await compressor.summarize("text", 1)
    assert len(digest) <= 50
    assert digest.endswith(".")


@pytest.mark.asyncio
async def test_identical_requests_hit_cache(repo, make_provider):
    provider = make_provider([DIGEST])
    compressor = ChapterSummaryCompressor(repo, provider)
    first = await compressor.summarize("same chapter", 1)
    second = await compressor.summarize("same chapter", 1)
    assert first == second
    assert len(provider.calls) == 1


@pytest.mark.asyncio
async def test_invalidate_and_missing_generation(repo, make_provider):
    provider = make_provider(default=DIGEST)
    compressor = ChapterSummaryCompressor(repo, provider)
    for n in (1, 2, 3):
        await repo.save_chapter_text("s", n, f"text of chapter {n}")
    await repo.save_summary(ChapterSummary(story_id="s", chapter_number=2, summary="kept"))

    assert await compressor.generate_missing_summaries("s") == [1, 3]
    assert (await repo.get_summary("s", 2)).summary == "kept"

    assert await compressor.invalidate("s", 2)
    assert not await compressor.invalidate("s", 2)
    assert await repo.get_summary("s", 2) is None


@pytest.mark.asyncio
async def test_recent_summaries_window_and_report(repo):
    compressor = ChapterSummaryCompressor(repo)
    for n in range(1, 8):
        await repo.save_summary(
            ChapterSummary(story_id="s", chapter_number=n, summary="x" * n, is_fallback=n == 7)
        )
    recent = await compressor.get_recent_summaries("s", 6, limit=3)
    assert [s.chapter_number for s in recent] == [3, 4, 5]
    assert await compressor.get_recent_summaries("s", 1) == []

    report = await compressor.summary_report("s")
    assert report["total_summaries"] == 7
    assert report["average_length"] == 4.0
    assert report["fallback_count"] == 1
    assert report["summaries"][3] == "xxx"
