# orchestration/task_orchestrator.py
"""Supervised generation tasks: state machine, progress and target guard."""

from __future__ import annotations

import asyncio
import math
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from config import settings
from core.exceptions import ConsistencyConflict, ValidationError
from data_access.repository import StoryRepository
from models import GenerationTask, TaskKind, TaskStatus
from models.task_models import utc_now
from utils.locks import KeyedLock

from .worker_pool import WorkerPool

logger = structlog.get_logger(__name__)


class ProgressReporter:
    """Handed to a task body to report progress and observe cancellation."""

    def __init__(self, orchestrator: GenerationTaskOrchestrator, task_id: str) -> None:
        self._orchestrator = orchestrator
        self.task_id = task_id

    async def update(self, percentage: int, note: str = "") -> bool:
        """Record progress. Returns False once the task is no longer running."""
        task = await self._orchestrator.get(self.task_id)
        if task.status != TaskStatus.RUNNING:
            return False
        await self._orchestrator.update_progress(self.task_id, percentage, note)
        return True

    async def is_cancelled(self) -> bool:
        task = await self._orchestrator.get(self.task_id)
        return task.status == TaskStatus.CANCELLED


TaskBody = Callable[[ProgressReporter], Awaitable[Any]]


class GenerationTaskOrchestrator:
    """Owns every ``GenerationTask`` row.

    A target (for example a volume id) can have at most one task in flight;
    the claim is taken at submission and released when the task reaches a
    terminal state or its body exits.
    """

    def __init__(
        self, repository: StoryRepository, pool: WorkerPool | None = None
    ) -> None:
        self.repository = repository
        self.pool = pool or WorkerPool()
        self._task_locks = KeyedLock()
        self._targets: dict[str, str] = {}
        self._bodies: dict[str, TaskBody] = {}
        self._handles: dict[str, asyncio.Future[Any]] = {}
        self._run_ids: dict[str, int] = {}

    # --- target guard ---
    def _claim_target(self, target: str, task_id: str) -> None:
        holder = self._targets.get(target)
        if holder is not None and holder != task_id:
            raise ConsistencyConflict(
                f"Target '{target}' is already being generated by task {holder}."
            )
        self._targets[target] = task_id

    def _release_target(self, target: str | None, task_id: str) -> None:
        if target is not None and self._targets.get(target) == task_id:
            del self._targets[target]
            logger.debug("Target released", target=target, task_id=task_id)

    def is_target_busy(self, target: str) -> bool:
        return target in self._targets

    # --- lookups ---
    async def get(self, task_id: str) -> GenerationTask:
        task = await self.repository.get_task(task_id)
        if task is None:
            raise ValidationError(f"Unknown task id: {task_id}")
        return task

    async def _transition(
        self, task_id: str, mutate: Callable[[GenerationTask], None]
    ) -> GenerationTask:
        async with self._task_locks.lock(task_id):
            task = await self.get(task_id)
            mutate(task)
            task.touch()
            await self.repository.save_task(task)
        if task.status.is_terminal:
            self._release_target(task.target, task.id)
            if not task.can_retry:
                self._bodies.pop(task.id, None)
        return task

    # --- state machine ---
    async def submit(
        self,
        kind: TaskKind,
        params: dict[str, Any] | None = None,
        *,
        name: str = "",
        story_id: str | None = None,
        target: str | None = None,
    ) -> str:
        """Create a PENDING task and return its id."""
        task = GenerationTask(
            kind=kind,
            name=name or kind.value.lower(),
            parameters=dict(params or {}),
            story_id=story_id,
            target=target,
            max_retries=settings.TASK_MAX_RETRIES,
        )
        if target is not None:
            self._claim_target(target, task.id)
        try:
            await self.repository.save_task(task)
        except BaseException:
            self._release_target(target, task.id)
            raise
        logger.info(
            "Task submitted.", task_id=task.id, kind=kind.value, target=target
        )
        return task.id

    async def start(self, task_id: str) -> GenerationTask:
        def mutate(task: GenerationTask) -> None:
            if task.status != TaskStatus.PENDING:
                raise ConsistencyConflict(
                    f"Task {task_id} cannot start from {task.status.value}."
                )
            task.status = TaskStatus.RUNNING
            task.started_at = utc_now()

        task = await self._transition(task_id, mutate)
        logger.info("Task started.", task_id=task_id)
        return task

    async def update_progress(
        self, task_id: str, percentage: int, note: str = ""
    ) -> GenerationTask:
        """Record progress while RUNNING. Values are clamped to 0-100 and may not go down."""
        if not isinstance(percentage, (int, float)) or isinstance(percentage, bool):
            raise ValidationError(f"Progress must be a number, got {percentage!r}.")
        if not math.isfinite(percentage):
            raise ValidationError(f"Progress must be finite, got {percentage!r}.")
        clamped = int(min(max(percentage, 0), 100))

        def mutate(task: GenerationTask) -> None:
            if task.status != TaskStatus.RUNNING:
                raise ConsistencyConflict(
                    f"Task {task_id} is {task.status.value}; progress only moves while RUNNING."
                )
            if clamped < task.progress:
                raise ValidationError(
                    f"Progress for task {task_id} cannot go from {task.progress} down to {clamped}."
                )
            task.progress = clamped
            if note:
                task.progress_note = note

        task = await self._transition(task_id, mutate)
        logger.debug("Task progress", task_id=task_id, progress=clamped, note=note)
        return task

    async def complete(self, task_id: str, output: Any = None) -> GenerationTask:
        def mutate(task: GenerationTask) -> None:
            if task.status != TaskStatus.RUNNING:
                raise ConsistencyConflict(
                    f"Task {task_id} cannot complete from {task.status.value}."
                )
            task.status = TaskStatus.COMPLETED
            task.progress = 100
            task.output = output
            task.completed_at = utc_now()

        task = await self._transition(task_id, mutate)
        logger.info("Task completed.", task_id=task_id)
        return task

    async def fail(self, task_id: str, error_message: str) -> GenerationTask:
        def mutate(task: GenerationTask) -> None:
            if task.status != TaskStatus.RUNNING:
                raise ConsistencyConflict(
                    f"Task {task_id} cannot fail from {task.status.value}."
                )
            task.status = TaskStatus.FAILED
            task.error = error_message
            task.completed_at = utc_now()

        task = await self._transition(task_id, mutate)
        logger.warning("Task failed.", task_id=task_id, error=error_message)
        return task

    async def cancel(self, task_id: str) -> GenerationTask:
        """Cancel a PENDING or RUNNING task. A running body is not interrupted;
        its result is discarded."""

        was_pending = False

        def mutate(task: GenerationTask) -> None:
            nonlocal was_pending
            if task.status not in (TaskStatus.PENDING, TaskStatus.RUNNING):
                raise ConsistencyConflict(
                    f"Task {task_id} cannot be cancelled from {task.status.value}."
                )
            was_pending = task.status == TaskStatus.PENDING
            task.status = TaskStatus.CANCELLED
            task.completed_at = utc_now()

        task = await self._transition(task_id, mutate)
        if was_pending:
            self._drop_run(task_id)
        logger.info("Task cancelled.", task_id=task_id)
        return task

    async def retry(self, task_id: str) -> GenerationTask:
        """Move a FAILED task back to PENDING and reschedule its body if known."""

        def mutate(task: GenerationTask) -> None:
            if task.status != TaskStatus.FAILED:
                raise ConsistencyConflict(
                    f"Task {task_id} cannot be retried from {task.status.value}."
                )
            if task.retry_count >= task.max_retries:
                raise ConsistencyConflict(
                    f"Task {task_id} already used {task.retry_count} of {task.max_retries} retries."
                )
            if task.target is not None:
                self._claim_target(task.target, task.id)
            task.status = TaskStatus.PENDING
            task.retry_count += 1
            task.progress = 0
            task.progress_note = ""
            task.error = None
            task.started_at = None
            task.completed_at = None

        task = await self._transition(task_id, mutate)
        logger.info("Task queued for retry.", task_id=task_id, retry=task.retry_count)
        if task_id in self._bodies:
            try:
                self._schedule(task_id)
            except RuntimeError:
                await self._transition(task_id, _cancel_pending)
                raise
        return task

    # --- supervised execution ---
    def _schedule(self, task_id: str) -> None:
        run_id = self._run_ids.get(task_id, 0) + 1
        handle = self.pool.submit(lambda: self._execute(task_id, run_id))
        self._run_ids[task_id] = run_id
        self._handles[task_id] = handle

    def _drop_run(self, task_id: str) -> None:
        """Forget a queued run that will never start."""
        handle = self._handles.pop(task_id, None)
        if handle is not None:
            handle.cancel()
        self._run_ids.pop(task_id, None)

    async def run_task(
        self,
        kind: TaskKind,
        body: TaskBody,
        params: dict[str, Any] | None = None,
        *,
        name: str = "",
        story_id: str | None = None,
        target: str | None = None,
    ) -> str:
        """Submit a task and run ``body`` on the worker pool. Returns the task id."""
        task_id = await self.submit(
            kind, params, name=name, story_id=story_id, target=target
        )
        self._bodies[task_id] = body
        try:
            self._schedule(task_id)
        except RuntimeError:
            await self._transition(task_id, _cancel_pending)
            raise
        return task_id

    async def _execute(self, task_id: str, run_id: int) -> Any:
        target: str | None = None
        try:
            task = await self.get(task_id)
            target = task.target
            if task.status != TaskStatus.PENDING:
                return None
            try:
                await self.start(task_id)
            except ConsistencyConflict:
                return None
            try:
                output = await self._bodies[task_id](ProgressReporter(self, task_id))
            except asyncio.CancelledError:
                await self._transition(
                    task_id, _fail_if_running("Task interrupted by shutdown.")
                )
                raise
            except Exception as exc:
                logger.error("Task body raised.", task_id=task_id, exc_info=True)
                await self._transition(
                    task_id, _fail_if_running(f"{type(exc).__name__}: {exc}")
                )
                return None

            current = await self.get(task_id)
            if current.status != TaskStatus.RUNNING:
                logger.info(
                    "Discarding result of task that is no longer running.",
                    task_id=task_id,
                    status=current.status.value,
                )
                return None
            try:
                await self.complete(task_id, output)
            except ConsistencyConflict:
                logger.info("Task left RUNNING before its result landed.", task_id=task_id)
                return None
            return output
        finally:
            # A retry may already have scheduled a newer run of this task.
            if self._run_ids.get(task_id) == run_id:
                self._release_target(target, task_id)
                self._handles.pop(task_id, None)
                del self._run_ids[task_id]

    async def wait(self, task_id: str, timeout: float | None = None) -> GenerationTask:
        """Wait for a scheduled task body to finish, then return the task row."""
        handle = self._handles.get(task_id)
        if handle is not None:
            await asyncio.wait([handle], timeout=timeout)
        return await self.get(task_id)

    async def shutdown(self, grace_seconds: float | None = None) -> None:
        """Shut the pool down, then cancel tasks whose runs never started."""
        await self.pool.shutdown(grace_seconds)
        for task_id in list(self._handles):
            task = await self._transition(task_id, _cancel_pending)
            self._drop_run(task_id)
            if task.status == TaskStatus.CANCELLED:
                logger.warning(
                    "Task cancelled at shutdown before it started.", task_id=task_id
                )

    # --- queries ---
    async def list_tasks(
        self,
        status: TaskStatus | None = None,
        kind: TaskKind | None = None,
        story_id: str | None = None,
    ) -> list[GenerationTask]:
        """Tasks matching the filters, newest first."""
        return await self.repository.list_tasks(status=status, kind=kind, story_id=story_id)

    async def batch_status(self, task_ids: list[str]) -> dict[str, TaskStatus | None]:
        result: dict[str, TaskStatus | None] = {}
        for task_id in task_ids:
            task = await self.repository.get_task(task_id)
            result[task_id] = task.status if task else None
        return result

    async def progress_view(self, task_id: str) -> dict[str, Any]:
        task = await self.get(task_id)
        elapsed: float | None = None
        remaining: float | None = None
        if task.started_at is not None:
            end = task.completed_at or utc_now()
            elapsed = (end - task.started_at).total_seconds()
            if task.status == TaskStatus.RUNNING and 0 < task.progress < 100:
                remaining = elapsed / task.progress * (100 - task.progress)
        return {
            "id": task.id,
            "kind": task.kind.value,
            "status": task.status.value,
            "progress": task.progress,
            "note": task.progress_note,
            "retry_count": task.retry_count,
            "elapsed_seconds": elapsed,
            "estimated_remaining_seconds": remaining,
            "error": task.error,
        }

    async def statistics(self, story_id: str | None = None) -> dict[str, Any]:
        tasks = await self.repository.list_tasks(story_id=story_id)
        counts = {status.value: 0 for status in TaskStatus}
        for task in tasks:
            counts[task.status.value] += 1
        finished = counts[TaskStatus.COMPLETED.value] + counts[TaskStatus.FAILED.value]
        success_rate = (
            counts[TaskStatus.COMPLETED.value] / finished * 100 if finished else 0.0
        )
        return {
            "total": len(tasks),
            "by_status": counts,
            "success_rate": round(success_rate, 1),
        }


def _cancel_pending(task: GenerationTask) -> None:
    if task.status == TaskStatus.PENDING:
        task.status = TaskStatus.CANCELLED
        task.completed_at = utc_now()


def _fail_if_running(message: str) -> Callable[[GenerationTask], None]:
    def mutate(task: GenerationTask) -> None:
        if task.status == TaskStatus.RUNNING:
            task.status = TaskStatus.FAILED
            task.error = message
            task.completed_at = utc_now()

    return mutate
