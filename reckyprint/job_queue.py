"""In-memory FIFO print queue with a single consumer."""

import asyncio
import logging
import uuid
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from reckyprint.actions import ActionDispatcher
from reckyprint.destinations import DestinationConfigResolver
from reckyprint.schemas import QueueStatsPayload, SilentPrintPayload

logger = logging.getLogger(__name__)

DEFAULT_JOB_PAUSE = 0.5


class JobStatus(str, Enum):
    """Print job status."""

    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class JobStateError(Exception):
    """A job was moved through its lifecycle out of order."""

    pass


@dataclass
class Job:
    """A print job received from the server.

    Lifecycle: PENDING -> RUNNING -> SUCCEEDED | FAILED, once.
    """

    filename: str
    data: bytes
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    destination: str | None = None
    content_type: str | None = None
    user_id: str | int | None = None
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    status: JobStatus = JobStatus.PENDING
    error: str | None = None

    @classmethod
    def from_payload(cls, payload: SilentPrintPayload) -> "Job":
        job = cls(
            filename=payload.filename,
            data=payload.decode_file(),
            destination=payload.destination,
            content_type=payload.content_type,
            user_id=payload.user_id,
        )
        if payload.job_id:
            job.id = payload.job_id
        return job

    def start(self) -> None:
        if self.status is not JobStatus.PENDING:
            raise JobStateError(f"Job {self.id} cannot start from {self.status.value}")
        self.status = JobStatus.RUNNING

    def finish(self, error: str | None = None) -> None:
        if self.status is not JobStatus.RUNNING:
            raise JobStateError(f"Job {self.id} cannot finish from {self.status.value}")
        self.error = error
        self.status = JobStatus.FAILED if error else JobStatus.SUCCEEDED


@dataclass(frozen=True)
class QueueStats:
    total: int
    processed: int
    failed: int
    in_queue: int
    is_processing: bool

    def to_payload(self) -> QueueStatsPayload:
        return QueueStatsPayload(
            total=self.total,
            processed=self.processed,
            failed=self.failed,
            in_queue=self.in_queue,
            is_processing=self.is_processing,
        )


class JobQueue:
    """Serializes print jobs so only one reaches the hardware at a time.

    ``enqueue`` appends to the tail and wakes the consumer task if it is
    idle. The consumer prints the head job, runs the post-print signals
    (beep, then cut) for its printer, records the outcome and pauses
    briefly before the next job. All of this runs on the event loop, so
    the deque needs no lock.
    """

    def __init__(
        self,
        print_job: Callable[[Job], Awaitable[object]],
        resolver: DestinationConfigResolver,
        dispatcher: ActionDispatcher,
        pause: float = DEFAULT_JOB_PAUSE,
    ):
        """Initialize the queue.

        Args:
            print_job: Coroutine printing one job; raises on failure.
            resolver: Source of effective cut/beep settings.
            dispatcher: Sends the post-print signals.
            pause: Seconds to wait after each job.
        """
        self._print_job = print_job
        self._resolver = resolver
        self._dispatcher = dispatcher
        self.pause = pause

        self._pending: deque[Job] = deque()
        self._current: Job | None = None
        self._worker: asyncio.Task | None = None
        self._total = 0
        self._processed = 0
        self._failed = 0

    @property
    def is_processing(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def current(self) -> Job | None:
        return self._current

    @property
    def pending(self) -> list[Job]:
        return list(self._pending)

    def enqueue(self, payload: SilentPrintPayload | Job) -> Job:
        """Add a job to the tail of the queue.

        Args:
            payload: Validated ``silentPrint`` payload, or a ready Job.

        Returns:
            Job: The queued job.
        """
        job = payload if isinstance(payload, Job) else Job.from_payload(payload)
        self._pending.append(job)
        self._total += 1
        logger.info(
            f"Queued job {job.id} for {job.destination or 'default printer'} "
            f"({len(self._pending)} waiting)"
        )

        if not self.is_processing:
            self._worker = asyncio.create_task(self._consume(), name="reckyprint-queue")
        return job

    def get_stats(self) -> QueueStats:
        """Snapshot of the queue counters."""
        return QueueStats(
            total=self._total,
            processed=self._processed,
            failed=self._failed,
            in_queue=len(self._pending),
            is_processing=self.is_processing,
        )

    def clear(self) -> int:
        """Drop every job still waiting. A running job is not affected.

        Returns:
            int: Number of jobs discarded.
        """
        count = len(self._pending)
        self._pending.clear()
        logger.info(f"Queue cleared, {count} pending job(s) discarded")
        return count

    async def drain(self) -> None:
        """Wait until the consumer has gone idle."""
        if self._worker is not None and not self._worker.done():
            await self._worker

    async def close(self) -> None:
        """Discard waiting jobs and let the running one finish."""
        if self._pending:
            self.clear()
        if self._current is not None:
            logger.info(f"Waiting for job {self._current.id} to finish")
        await self.drain()

    async def _consume(self) -> None:
        while self._pending:
            job = self._pending.popleft()
            self._current = job
            try:
                await self._run(job)
            finally:
                self._current = None
            # Give the printer time to breathe between jobs
            await asyncio.sleep(self.pause)

    async def _run(self, job: Job) -> None:
        job.start()
        logger.info(f"Printing job {job.id} ({job.filename}) on {job.destination or 'default printer'}")

        try:
            await self._print_job(job)
        except Exception as e:
            error = str(e) or e.__class__.__name__
            logger.error(f"Job {job.id} failed: {error}")
            job.finish(error)
            self._failed += 1
            return

        await self._post_print(job)

        job.finish()
        self._processed += 1
        logger.info(f"Job {job.id} printed")

    async def _post_print(self, job: Job) -> None:
        for result in await self._dispatcher.run_post_print(job.destination, self._resolver):
            if not result.success:
                logger.warning(f"{result.kind.value} after job {job.id} failed: {result.message}")
