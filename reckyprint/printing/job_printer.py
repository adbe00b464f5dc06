"""Prints queued jobs through the platform printer backend."""

import asyncio
import logging

from reckyprint.job_queue import Job
from reckyprint.printing.base import PrinterBackend
from reckyprint.spool import SpoolDirectory

logger = logging.getLogger(__name__)


class JobPrinter:
    """Spool a job's document to disk and hand it to the backend.

    The print command blocks, so it runs in a worker thread. The spooled
    file is deleted after the spool's cleanup delay.
    """

    def __init__(
        self,
        backend: PrinterBackend,
        spool: SpoolDirectory,
        default_printer: str | None = None,
    ):
        self.backend = backend
        self.spool = spool
        self.default_printer = default_printer

    def printer_for(self, job: Job) -> str | None:
        if job.destination and job.destination.strip():
            return job.destination
        return self.default_printer

    async def __call__(self, job: Job) -> None:
        """Print a job.

        Raises:
            PrinterError: If the backend fails.
            OSError: If the file cannot be spooled.
        """
        path = self.spool.write(f"{job.id}-{job.filename}", job.data)
        printer = self.printer_for(job)
        logger.info(f"Using printer: {printer or '(system default)'}")
        try:
            await asyncio.to_thread(self.backend.print_file, path, printer)
        finally:
            self.spool.schedule_removal(path)
