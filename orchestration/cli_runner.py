# orchestration/cli_runner.py
"""Command-line runner for the story services."""

from __future__ import annotations

import argparse
import asyncio
import json
from pathlib import Path
from typing import Any

import structlog
from rich.console import Console

from config import settings
from core.db_manager import neo4j_manager
from core.exceptions import CadenceError
from core.llm_interface import llm_service
from data_access import build_repository
from processing.memory_bank import render_context_package
from utils.logging import setup_logging

from .chapter_pipeline import ChapterPipeline

logger = structlog.get_logger(__name__)
console = Console()


def _read_text(args: argparse.Namespace, text_attr: str, file_attr: str) -> str:
    path = getattr(args, file_attr, None)
    if path:
        return Path(path).read_text(encoding="utf-8")
    return getattr(args, text_attr, None) or ""


def _emit(payload: Any) -> None:
    if isinstance(payload, str):
        console.print(payload, markup=False, highlight=False)
    else:
        console.print_json(json.dumps(payload, default=str, ensure_ascii=False))


async def _dispatch(pipeline: ChapterPipeline, args: argparse.Namespace) -> Any:
    command = args.command
    if command == "memory":
        bank = await pipeline.assembler.assemble(args.story, args.chapter)
        return render_context_package(bank, args.chapter)
    if command == "enhance":
        return await pipeline.pacing.enhance_brief(
            args.story, args.chapter, _read_text(args, "brief", "brief_file")
        )
    if command == "advance":
        progress = await pipeline.pacing.advance_if_complete(
            args.story, args.chapter, _read_text(args, "brief", "brief_file")
        )
        return progress.model_dump(mode="json")
    if command == "summarize":
        text = _read_text(args, "text", "file") or None
        summary = await pipeline.compressor.summarize_and_store(
            args.story, args.chapter, text
        )
        return summary.model_dump(mode="json")
    if command == "revise":
        outcome = await pipeline.cascade.update_chapter_text(
            args.story, args.chapter, _read_text(args, "text", "file")
        )
        return {
            "chapter_number": outcome.chapter_number,
            "similarity": round(outcome.similarity, 4),
            "is_rewrite": outcome.is_rewrite,
            "summary_invalidated": outcome.summary_invalidated,
            "pacing_rolled_back": outcome.pacing_rolled_back,
        }
    if command == "pacing-status":
        progress = await pipeline.pacing.get_or_init_progress(args.story)
        return progress.model_dump(mode="json")
    if command == "reset-pacing":
        return {"reset": await pipeline.pacing.reset_progress(args.story)}
    if command == "mine":
        task_id = await pipeline.mine_terms_in_background(
            args.category, args.loops, args.batch_size
        )
        task = await pipeline.orchestrator.wait(task_id)
        return task.model_dump(mode="json")
    raise CadenceError(f"Unknown command: {command}")


async def _run(args: argparse.Namespace) -> int:
    backend = args.backend or settings.STORAGE_BACKEND
    if backend == "neo4j":
        await neo4j_manager.connect()
        await neo4j_manager.create_db_schema()
    pipeline = ChapterPipeline(build_repository(backend))
    try:
        _emit(await _dispatch(pipeline, args))
        return 0
    except CadenceError as exc:
        logger.error("Command failed.", command=args.command, error=str(exc))
        console.print(f"[red]{type(exc).__name__}:[/red] {exc}")
        return 1
    finally:
        await pipeline.orchestrator.shutdown()
        await llm_service.aclose()
        if backend == "neo4j":
            await neo4j_manager.close()


def run(args: argparse.Namespace) -> int:
    """Configure logging and run one command. Returns the process exit code."""
    setup_logging()
    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        logger.info("Interrupted; shutting down.")
        return 130
