# orchestration/worker_pool.py
"""Bounded asyncio worker pool and batched fan-out."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any, TypeVar

import structlog

from config import settings

logger = structlog.get_logger(__name__)

T = TypeVar("T")
R = TypeVar("R")

Job = Callable[[], Awaitable[Any]]


class WorkerPool:
    """A fixed set of worker tasks draining a job queue.

    Shutdown waits up to a grace period for queued and running jobs, then
    cancels whatever is left.
    """

    def __init__(self, size: int | None = None) -> None:
        self.size = size or settings.WORKER_POOL_SIZE
        self._queue: asyncio.Queue[tuple[Job, asyncio.Future[Any]]] | None = None
        self._workers: list[asyncio.Task[None]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _ensure_started(self) -> asyncio.Queue[tuple[Job, asyncio.Future[Any]]]:
        if self._queue is None:
            self._queue = asyncio.Queue()
            self._workers = [
                asyncio.create_task(self._worker(index), name=f"cadence-worker-{index}")
                for index in range(self.size)
            ]
            logger.info("Worker pool started.", size=self.size)
        return self._queue

    def submit(self, job: Job) -> asyncio.Future[Any]:
        """Queue ``job`` and return a future for its result."""
        if self._closed:
            raise RuntimeError("Worker pool is shut down.")
        queue = self._ensure_started()
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        queue.put_nowait((job, future))
        return future

    async def _worker(self, index: int) -> None:
        assert self._queue is not None
        while True:
            job, future = await self._queue.get()
            try:
                if future.cancelled():
                    continue
                try:
                    result = await job()
                except asyncio.CancelledError:
                    future.cancel()
                    raise
                except Exception as exc:
                    if not future.done():
                        future.set_exception(exc)
                else:
                    if not future.done():
                        future.set_result(result)
            finally:
                self._queue.task_done()

    async def shutdown(self, grace_seconds: float | None = None) -> None:
        """Stop accepting work, drain for ``grace_seconds``, then force-cancel."""
        self._closed = True
        if self._queue is None:
            return
        grace = settings.SHUTDOWN_GRACE_SECONDS if grace_seconds is None else grace_seconds
        try:
            await asyncio.wait_for(self._queue.join(), timeout=grace)
        except asyncio.TimeoutError:
            logger.warning(
                "Worker pool did not drain in time; cancelling remaining jobs.",
                grace_seconds=grace,
                pending=self._queue.qsize(),
            )

        for worker in self._workers:
            worker.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)

        while not self._queue.empty():
            _, future = self._queue.get_nowait()
            future.cancel()
            self._queue.task_done()
        logger.info("Worker pool shut down.")


def chunked(items: Sequence[T], size: int) -> Iterable[Sequence[T]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


async def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int | None = None,
) -> list[R | BaseException]:
    """Run ``worker`` over ``items`` in fixed-size concurrent batches.

    Each batch finishes completely, failures included, before the next one
    starts. Results keep the order of ``items``; failures are returned as
    exception objects.
    """
    size = batch_size or settings.FANOUT_BATCH_SIZE
    if size < 1:
        raise ValueError("batch_size must be positive")
    results: list[R | BaseException] = []
    for batch_number, batch in enumerate(chunked(items, size), start=1):
        batch_results = await asyncio.gather(
            *(worker(item) for item in batch), return_exceptions=True
        )
        failures = sum(1 for r in batch_results if isinstance(r, BaseException))
        logger.debug(
            "Batch finished",
            batch=batch_number,
            size=len(batch),
            failures=failures,
        )
        results.extend(batch_results)
    return results
