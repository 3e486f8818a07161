import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from botlocal.logging_config import get_logger

logger = get_logger("worker_pool")

RECENT_FAILURES_LIMIT = 50


@dataclass
class Job:
    name: str
    fn: Callable[[], Any]
    context: dict = field(default_factory=dict)
    attempts: int = 0


class WorkerPool:
    """Bounded in-process queue drained by N asyncio workers.

    Jobs are blocking callables (DB session, HTTP calls) and run in a thread.
    """

    def __init__(
        self,
        workers: int = 4,
        queue_size: int = 1000,
        max_attempts: int = 1,
        retry_backoff_seconds: float = 2.0,
        drain_timeout_seconds: float = 10.0,
    ):
        self.workers = max(1, workers)
        self.queue_size = queue_size
        self.max_attempts = max(1, max_attempts)
        self.retry_backoff_seconds = retry_backoff_seconds
        self.drain_timeout_seconds = drain_timeout_seconds
        self.processed = 0
        self.failed = 0
        self.retried = 0
        self.dropped = 0
        self.recent_failures: deque = deque(maxlen=RECENT_FAILURES_LIMIT)
        self._queue: Optional[asyncio.Queue] = None
        self._tasks: list[asyncio.Task] = []
        self._accepting = False

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._queue = asyncio.Queue(maxsize=self.queue_size)
        self._accepting = True
        self._tasks = [asyncio.create_task(self._worker_loop(index)) for index in range(self.workers)]
        logger.info("Worker pool started", extra={"context": {"workers": self.workers, "queue_size": self.queue_size}})

    async def stop(self) -> None:
        """Stop taking jobs, let queued ones finish within the drain timeout, then cancel.

        Jobs still queued after the timeout were already acknowledged to the platform;
        each one is logged with its context and counted as dropped.
        """
        self._accepting = False
        if self._queue is not None and self.running:
            try:
                await asyncio.wait_for(self._queue.join(), timeout=self.drain_timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(
                    "Worker queue not drained before shutdown",
                    extra={"context": {"queued": self.qsize(), "timeout_seconds": self.drain_timeout_seconds}},
                )
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        self._drop_remaining()
        logger.info("Worker pool stopped", extra={"context": self.stats()})

    def _drop_remaining(self) -> None:
        if self._queue is None:
            return
        while True:
            try:
                job = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return
            self._queue.task_done()
            self.dropped += 1
            self.recent_failures.append(
                {
                    "job": job.name,
                    "error": "dropped at shutdown",
                    "attempts": job.attempts,
                    "at": datetime.now(timezone.utc).isoformat(),
                    **job.context,
                }
            )
            logger.error("Job dropped at shutdown", extra={"context": {**job.context, "job": job.name}})

    def submit(self, name: str, fn: Callable[[], Any], context: Optional[dict] = None) -> bool:
        """Enqueue a job. Returns False when the pool is not running or the queue is full."""
        if self._queue is None or not self._accepting or not self.running:
            logger.error("Worker pool not running, job rejected", extra={"context": {"job": name, **(context or {})}})
            return False
        try:
            self._queue.put_nowait(Job(name=name, fn=fn, context=context or {}))
        except asyncio.QueueFull:
            logger.warning("Worker queue full, job rejected", extra={"context": {"job": name, **(context or {})}})
            return False
        return True

    async def join(self) -> None:
        if self._queue is not None:
            await self._queue.join()

    def qsize(self) -> int:
        return self._queue.qsize() if self._queue is not None else 0

    def stats(self) -> dict:
        return {
            "running": self.running,
            "workers": self.workers,
            "queued": self.qsize(),
            "processed": self.processed,
            "failed": self.failed,
            "retried": self.retried,
            "dropped": self.dropped,
            "recent_failures": list(self.recent_failures),
        }

    async def _worker_loop(self, index: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._run(job)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error(
                    "Worker loop failed",
                    extra={"context": {"worker": index, "job": job.name, "error": str(exc)}},
                )
            finally:
                self._queue.task_done()

    async def _run(self, job: Job) -> None:
        while True:
            job.attempts += 1
            try:
                await asyncio.to_thread(job.fn)
                self.processed += 1
                return
            except Exception as exc:
                if job.attempts < self.max_attempts:
                    self.retried += 1
                    logger.warning(
                        "Job failed, retrying",
                        extra={"context": {**job.context, "job": job.name, "attempt": job.attempts, "error": str(exc)}},
                    )
                    await asyncio.sleep(self.retry_backoff_seconds * job.attempts)
                    continue
                self.failed += 1
                self.recent_failures.append(
                    {
                        "job": job.name,
                        "error": f"{type(exc).__name__}: {exc}",
                        "attempts": job.attempts,
                        "at": datetime.now(timezone.utc).isoformat(),
                        **job.context,
                    }
                )
                logger.error(
                    "Job failed",
                    extra={"context": {**job.context, "job": job.name, "attempts": job.attempts, "error": str(exc)}},
                    exc_info=True,
                )
                return
