# imprints/services/outbox.py
# Best-effort outbox for accounting side effects.
# Jobs run on a background worker with their own session, after the request
# transaction has committed. Failures are retried, logged and finally dropped.
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from imprints.core.config import settings

logger = logging.getLogger(__name__)

Job = Callable[[AsyncSession], Awaitable[Any]]


class AccountingOutbox:
    """Bounded queue of named jobs consumed by one worker task."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        maxsize: int = settings.ACCOUNTING_OUTBOX_SIZE,
        max_attempts: int = settings.ACCOUNTING_OUTBOX_RETRIES,
        retry_delay: float = settings.ACCOUNTING_OUTBOX_RETRY_DELAY,
    ):
        self._session_factory = session_factory
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._max_attempts = max(1, max_attempts)
        self._retry_delay = retry_delay
        self._worker: Optional[asyncio.Task] = None
        self.failed_jobs: list[str] = []

    def submit(self, name: str, job: Job) -> bool:
        """Queues a job without waiting. Returns False if it was dropped."""
        try:
            self._queue.put_nowait((name, job))
        except asyncio.QueueFull:
            logger.warning(f"[Outbox] queue full, dropping job {name}")
            self.failed_jobs.append(name)
            return False
        return True

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="accounting-outbox")
            logger.info("[Outbox] worker started")

    async def drain(self) -> None:
        """Waits until every queued job has finished (or failed for good)."""
        await self._queue.join()

    async def stop(self, timeout: float = 10.0) -> None:
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self.drain(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"[Outbox] {self._queue.qsize()} job(s) still pending at shutdown")
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("[Outbox] worker stopped")

    async def _run(self) -> None:
        while True:
            name, job = await self._queue.get()
            try:
                await self._execute(name, job)
            finally:
                self._queue.task_done()

    async def _execute(self, name: str, job: Job) -> None:
        for attempt in range(1, self._max_attempts + 1):
            try:
                async with self._session_factory() as db:
                    await job(db)
                return
            except Exception as e:
                if attempt < self._max_attempts:
                    logger.warning(f"[Outbox] job {name} failed ({attempt}/{self._max_attempts}): {e}")
                    await asyncio.sleep(self._retry_delay)
                else:
                    logger.error(
                        f"[Outbox] job {name} failed after {self._max_attempts} attempts, dropping: {e}",
                        exc_info=True,
                    )
                    self.failed_jobs.append(name)
