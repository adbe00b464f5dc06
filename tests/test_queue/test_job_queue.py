"""Tests for the FIFO print queue."""

import asyncio
from unittest.mock import AsyncMock

import pytest
from conftest import job_payload, wait_for

from reckyprint.actions import ActionDispatcher, ActionResult
from reckyprint.config import FeatureConfig, FeatureSettings
from reckyprint.destinations import DestinationConfigResolver, Feature
from reckyprint.job_queue import Job, JobQueue, JobStateError, JobStatus
from reckyprint.printing import PrinterError
from reckyprint.schemas import SilentPrintPayload


class RecordingPrinter:
    """Print collaborator that records order and concurrency."""

    def __init__(self, delay: float = 0.0, fail_on: set[str] | None = None):
        self.delay = delay
        self.fail_on = fail_on or set()
        self.printed: list[str] = []
        self.running = 0
        self.max_running = 0
        self.gate: asyncio.Event | None = None

    async def __call__(self, job: Job) -> None:
        self.running += 1
        self.max_running = max(self.max_running, self.running)
        try:
            assert job.status is JobStatus.RUNNING
            if self.gate is not None:
                await self.gate.wait()
            await asyncio.sleep(self.delay)
            if job.filename in self.fail_on:
                raise PrinterError(f"lp command failed for {job.filename}")
            self.printed.append(job.filename)
        finally:
            self.running -= 1


class RecordingDispatcher(ActionDispatcher):
    """Dispatcher that records signals instead of running commands."""

    def __init__(self, fail: set[Feature] | None = None, raise_on: set[Feature] | None = None):
        self.fail = fail or set()
        self.raise_on = raise_on or set()
        self.calls: list[tuple[Feature, str | None, bool]] = []

    async def dispatch(self, kind, destination, config):
        kind = Feature(kind)
        self.calls.append((kind, destination, config.enabled))
        if kind in self.raise_on:
            raise RuntimeError("boom")
        return ActionResult(kind, destination, success=kind not in self.fail)


def make_job(name: str, destination: str | None = None) -> Job:
    return Job(filename=name, data=b"data", destination=destination)


@pytest.fixture
def disabled_resolver():
    return DestinationConfigResolver(
        cut=FeatureConfig(defaults=FeatureSettings(enabled=False)),
        beep=FeatureConfig(defaults=FeatureSettings(enabled=False)),
    )


class TestOrdering:
    """Tests for FIFO and single-consumer guarantees."""

    @pytest.mark.asyncio
    async def test_jobs_print_in_enqueue_order(self, disabled_resolver):
        """A, B, C print in order and no signal is sent when cut/beep are off."""
        printer = RecordingPrinter(delay=0.01)
        dispatcher = RecordingDispatcher()
        queue = JobQueue(printer, disabled_resolver, dispatcher, pause=0)

        for name in ("A", "B", "C"):
            queue.enqueue(make_job(name))
        await wait_for(lambda: not queue.is_processing)

        assert printer.printed == ["A", "B", "C"]
        assert all(enabled is False for _, _, enabled in dispatcher.calls)

    @pytest.mark.asyncio
    async def test_no_signal_commands_when_disabled(self, spool, disabled_resolver, monkeypatch):
        """With the real dispatcher, disabled features never spawn a command."""
        spawn = AsyncMock()
        monkeypatch.setattr(asyncio, "create_subprocess_exec", spawn)
        printer = RecordingPrinter()
        queue = JobQueue(printer, disabled_resolver, ActionDispatcher(spool, system="Windows"), pause=0)

        for name in ("A", "B", "C"):
            queue.enqueue(make_job(name, destination="CAJA"))
        await wait_for(lambda: not queue.is_processing)

        assert printer.printed == ["A", "B", "C"]
        spawn.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_jobs_arriving_while_busy_keep_order(self, disabled_resolver):
        printer = RecordingPrinter(delay=0.01)
        queue = JobQueue(printer, disabled_resolver, RecordingDispatcher(), pause=0)

        queue.enqueue(make_job("1"))
        await asyncio.sleep(0.005)
        queue.enqueue(make_job("2"))
        queue.enqueue(make_job("3"))
        await wait_for(lambda: len(printer.printed) == 3)

        assert printer.printed == ["1", "2", "3"]

    @pytest.mark.asyncio
    async def test_one_job_running_at_a_time(self, disabled_resolver):
        printer = RecordingPrinter(delay=0.005)
        queue = JobQueue(printer, disabled_resolver, RecordingDispatcher(), pause=0)

        jobs = [queue.enqueue(make_job(str(i))) for i in range(5)]
        while queue.is_processing:
            running = [j for j in jobs if j.status is JobStatus.RUNNING]
            assert len(running) <= 1
            assert queue.get_stats().in_queue == sum(j.status is JobStatus.PENDING for j in jobs)
            await asyncio.sleep(0.001)

        assert printer.max_running == 1
        assert all(j.status is JobStatus.SUCCEEDED for j in jobs)

    @pytest.mark.asyncio
    async def test_consumer_restarts_after_idle(self, disabled_resolver):
        printer = RecordingPrinter()
        queue = JobQueue(printer, disabled_resolver, RecordingDispatcher(), pause=0)

        queue.enqueue(make_job("first"))
        await wait_for(lambda: not queue.is_processing)
        queue.enqueue(make_job("second"))
        await wait_for(lambda: not queue.is_processing)

        assert printer.printed == ["first", "second"]


class TestStats:
    """Tests for queue counters."""

    @pytest.mark.asyncio
    async def test_stats_after_success_and_failure(self, disabled_resolver):
        """A failed print is counted and the next job still runs."""
        printer = RecordingPrinter(fail_on={"bad.pdf"})
        queue = JobQueue(printer, disabled_resolver, RecordingDispatcher(), pause=0)

        bad = queue.enqueue(make_job("bad.pdf"))
        good = queue.enqueue(make_job("good.pdf"))
        await wait_for(lambda: not queue.is_processing)

        stats = queue.get_stats()
        assert (stats.total, stats.processed, stats.failed, stats.in_queue) == (2, 1, 1, 0)
        assert stats.is_processing is False
        assert bad.status is JobStatus.FAILED
        assert "lp command failed" in bad.error
        assert good.status is JobStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_stats_payload_uses_wire_names(self, disabled_resolver):
        queue = JobQueue(RecordingPrinter(), disabled_resolver, RecordingDispatcher(), pause=0)

        payload = queue.get_stats().to_payload().model_dump(by_alias=True)

        assert payload == {"total": 0, "processed": 0, "failed": 0, "inQueue": 0, "isProcessing": False}


class TestClear:
    """Tests for discarding pending jobs."""

    @pytest.mark.asyncio
    async def test_clear_keeps_running_job(self, disabled_resolver):
        """Clearing drops waiting jobs only; the running one completes."""
        printer = RecordingPrinter()
        printer.gate = asyncio.Event()
        queue = JobQueue(printer, disabled_resolver, RecordingDispatcher(), pause=0)

        a = queue.enqueue(make_job("A"))
        queue.enqueue(make_job("B"))
        queue.enqueue(make_job("C"))
        await wait_for(lambda: a.status is JobStatus.RUNNING)

        assert queue.clear() == 2
        assert queue.get_stats().in_queue == 0
        assert a.status is JobStatus.RUNNING

        printer.gate.set()
        await wait_for(lambda: not queue.is_processing)

        assert printer.printed == ["A"]
        assert a.status is JobStatus.SUCCEEDED
        assert queue.get_stats().processed == 1

    @pytest.mark.asyncio
    async def test_close_waits_for_running_job(self, disabled_resolver):
        printer = RecordingPrinter(delay=0.02)
        queue = JobQueue(printer, disabled_resolver, RecordingDispatcher(), pause=0)

        queue.enqueue(make_job("A"))
        queue.enqueue(make_job("B"))
        await asyncio.sleep(0)
        await queue.close()

        assert printer.printed == ["A"]
        assert queue.is_processing is False

    @pytest.mark.asyncio
    async def test_drain_finishes_every_job(self, disabled_resolver):
        printer = RecordingPrinter(delay=0.01)
        queue = JobQueue(printer, disabled_resolver, RecordingDispatcher(), pause=0)

        for name in ("A", "B", "C"):
            queue.enqueue(make_job(name))
        await queue.drain()

        assert printer.printed == ["A", "B", "C"]
        assert queue.get_stats().in_queue == 0


class TestPostPrint:
    """Tests for the beep/cut sequence after a job."""

    @pytest.mark.asyncio
    async def test_beep_then_cut_with_resolved_config(self, receipt_resolver):
        dispatcher = RecordingDispatcher()
        queue = JobQueue(RecordingPrinter(), receipt_resolver, dispatcher, pause=0)

        queue.enqueue(make_job("A", destination="CAJA"))
        queue.enqueue(make_job("B", destination="OFICINA"))
        await wait_for(lambda: not queue.is_processing)

        assert dispatcher.calls == [
            (Feature.BEEP, "CAJA", True),
            (Feature.CUT, "CAJA", True),
            (Feature.BEEP, "OFICINA", False),
            (Feature.CUT, "OFICINA", False),
        ]

    @pytest.mark.asyncio
    async def test_beep_error_does_not_block_cut(self, receipt_resolver):
        """A beep that raises still lets the cut run and the job succeed."""
        dispatcher = RecordingDispatcher(raise_on={Feature.BEEP})
        queue = JobQueue(RecordingPrinter(), receipt_resolver, dispatcher, pause=0)

        job = queue.enqueue(make_job("A", destination="CAJA"))
        await wait_for(lambda: not queue.is_processing)

        assert [kind for kind, _, _ in dispatcher.calls] == [Feature.BEEP, Feature.CUT]
        assert job.status is JobStatus.SUCCEEDED

    @pytest.mark.asyncio
    async def test_failed_signal_keeps_job_succeeded(self, receipt_resolver):
        dispatcher = RecordingDispatcher(fail={Feature.CUT})
        queue = JobQueue(RecordingPrinter(), receipt_resolver, dispatcher, pause=0)

        job = queue.enqueue(make_job("A", destination="CAJA"))
        await wait_for(lambda: not queue.is_processing)

        assert job.status is JobStatus.SUCCEEDED
        assert queue.get_stats().failed == 0

    @pytest.mark.asyncio
    async def test_no_signals_after_failed_print(self, receipt_resolver):
        dispatcher = RecordingDispatcher()
        printer = RecordingPrinter(fail_on={"A"})
        queue = JobQueue(printer, receipt_resolver, dispatcher, pause=0)

        queue.enqueue(make_job("A", destination="CAJA"))
        await wait_for(lambda: not queue.is_processing)

        assert dispatcher.calls == []


class TestJob:
    """Tests for the job model."""

    def test_from_payload_keeps_server_fields(self):
        payload = SilentPrintPayload.model_validate(job_payload(destination="CAJA", jobId=42))

        job = Job.from_payload(payload)

        assert job.id == "42"
        assert job.destination == "CAJA"
        assert job.data == b"%PDF-1.4 test"
        assert job.user_id == 7
        assert job.status is JobStatus.PENDING

    def test_id_generated_when_absent(self):
        payload = SilentPrintPayload.model_validate(job_payload())

        first, second = Job.from_payload(payload), Job.from_payload(payload)

        assert first.id and second.id
        assert first.id != second.id

    def test_lifecycle_only_moves_forward(self):
        job = make_job("A")
        job.start()
        job.finish()

        with pytest.raises(JobStateError):
            job.start()
        with pytest.raises(JobStateError):
            job.finish("late failure")
        assert job.status is JobStatus.SUCCEEDED
