"""Background job queue for asynchronous batch processing."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Protocol
from uuid import UUID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BulkPayrollJob:
    """Work item: process one batch."""

    batch_id: UUID
    pay_period: str
    employment_ids: tuple[str, ...] = ()
    attempt: int = 1


JobHandler = Callable[[BulkPayrollJob], Awaitable[object]]
FailureHandler = Callable[[BulkPayrollJob, BaseException], Awaitable[object]]


class QueueUnavailableError(Exception):
    """Raised when a job cannot be enqueued."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Job queue unavailable: {reason}")


class JobQueue(Protocol):
    """Accepts bulk payroll jobs for asynchronous execution."""

    async def enqueue(self, job: BulkPayrollJob) -> None: ...


class InProcessJobQueue:
    """asyncio-backed queue drained by a fixed set of worker tasks.

    A job whose handler raises is re-enqueued until max_attempts is reached,
    then handed to the failure handler. Batches resume from their cursor, so
    retries are safe.
    """

    def __init__(
        self,
        handler: JobHandler,
        workers: int = 1,
        max_attempts: int = 3,
        failure_handler: FailureHandler | None = None,
    ):
        self.handler = handler
        self.workers = max(workers, 1)
        self.max_attempts = max(max_attempts, 1)
        self.failure_handler = failure_handler
        self._queue: asyncio.Queue[BulkPayrollJob] = asyncio.Queue()
        self._tasks: list[asyncio.Task[None]] = []

    @property
    def running(self) -> bool:
        return bool(self._tasks)

    async def start(self) -> None:
        if self._tasks:
            return
        for n in range(self.workers):
            self._tasks.append(asyncio.create_task(self._worker(n), name=f"payroll-worker-{n}"))
        logger.info("Started %d payroll queue worker(s)", self.workers)

    async def stop(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()

    async def enqueue(self, job: BulkPayrollJob) -> None:
        if not self._tasks:
            raise QueueUnavailableError("no workers are running")
        await self._queue.put(job)

    async def join(self) -> None:
        """Wait until every enqueued job (including retries) has been handled."""
        await self._queue.join()

    async def _worker(self, n: int) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.handler(job)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                await self._handle_failure(job, exc)
            finally:
                self._queue.task_done()

    async def _handle_failure(self, job: BulkPayrollJob, exc: Exception) -> None:
        if job.attempt < self.max_attempts:
            logger.warning(
                "Job for batch %s failed on attempt %d/%d, retrying: %s",
                job.batch_id,
                job.attempt,
                self.max_attempts,
                exc,
            )
            await self._queue.put(replace(job, attempt=job.attempt + 1))
            return

        logger.error(
            "Job for batch %s failed after %d attempts: %s",
            job.batch_id,
            job.attempt,
            exc,
        )
        if self.failure_handler is not None:
            try:
                await self.failure_handler(job, exc)
            except Exception:
                logger.exception("Failure handler raised for batch %s", job.batch_id)
