# tests/test_chapter_pipeline.py
import pytest
import pytest_asyncio
from models import PacingProgress, PacingStage, TaskStatus
from orchestration.chapter_pipeline import ChapterPipeline, chapter_target
from orchestration.pacing_service import PacingStateMachine
from orchestration.task_orchestrator import GenerationTaskOrchestrator
from orchestration.worker_pool import WorkerPool

DRAFT = "Lin climbed the stairs of the tower and found the sealed letter waiting."


def _responder(prompt: str) -> str:
    if "Write chapter" in prompt:
        return DRAFT
    if "Summarize chapter" in prompt:
        return "Lin finds the sealed letter.\nSummary Signals: loc=tower"
    if "Rewrite the plot brief" in prompt:
        return "Enhanced: Lin must reach the tower before the sect does."
    if "long-horizon motivation" in prompt:
        return "Motivation: NONE"
    if "describe how the chapter" in prompt:
        return "The deadline is set."
    if "List" in prompt:
        return "Azure Peak\nJade Hollow"
    return "unused"


@pytest_asyncio.fixture
async def pipeline(repo, make_provider, make_oracle):
    provider = make_provider(responder=_responder)
    pacing = PacingStateMachine(repo, provider, oracle=make_oracle(default=True))
    orchestrator = GenerationTaskOrchestrator(repo, WorkerPool(size=2))
    pipe = ChapterPipeline(repo, provider, pacing=pacing, orchestrator=orchestrator)
    yield pipe
    await orchestrator.shutdown(grace_seconds=1)


@pytest.mark.asyncio
async def test_prepare_chapter_builds_context_and_enhances(pipeline, repo):
    await repo.save_character_record("s", {"name": "Lin", "role": "protagonist"})
    prepared = await pipeline.prepare_chapter("s", 1, "Lin goes to the tower.")
    assert "Lin (protagonist" in prepared.context
    assert prepared.brief.startswith("Enhanced:")


@pytest.mark.asyncio
async def test_publish_chapter_updates_everything(pipeline, repo):
    await repo.save_character_record("s", {"name": "Lin", "role": "protagonist"})
    result = await pipeline.publish_chapter("s", 1, DRAFT, "brief", ["Lin"])

    assert not result.revision.is_rewrite
    assert result.summary.summary == "Lin finds the sealed letter."
    assert result.appearances == ["Lin"]
    assert result.pacing.current_stage == PacingStage.BONUS
    assert (await repo.get_chapter_text("s", 1)) == DRAFT


@pytest.mark.asyncio
async def test_publish_before_stage_start_keeps_pacing(pipeline, repo):
    await repo.save_pacing_progress(PacingProgress(story_id="s", stage_start_chapter=5))
    result = await pipeline.publish_chapter("s", 2, DRAFT)
    assert result.pacing is None
    assert (await repo.get_pacing_progress("s")).current_stage == PacingStage.MOTIVATION


@pytest.mark.asyncio
async def test_generate_chapter_in_background_streams_and_publishes(pipeline, repo):
    chunks: list[str] = []
    task_id = await pipeline.generate_chapter_in_background(
        "s", 1, "Lin goes to the tower.", on_chunk=chunks.append
    )
    assert pipeline.orchestrator.is_target_busy(chapter_target("s", 1))
    task = await pipeline.orchestrator.wait(task_id, timeout=2)

    assert task.status == TaskStatus.COMPLETED
    assert task.output["published"] is True
    assert "".join(chunks).strip() == DRAFT
    assert await repo.get_chapter_text("s", 1) == DRAFT
    assert (await repo.get_summary("s", 1)) is not None
    assert not pipeline.orchestrator.is_target_busy(chapter_target("s", 1))


@pytest.mark.asyncio
async def test_mine_terms_in_background(pipeline, repo):
    task_id = await pipeline.mine_terms_in_background("place names", loops=2)
    task = await pipeline.orchestrator.wait(task_id, timeout=2)
    assert task.status == TaskStatus.COMPLETED
    assert task.output["inserted"] == 2
    assert sorted(await repo.list_terms("place names")) == ["Azure Peak", "Jade Hollow"]
