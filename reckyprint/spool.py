"""Spool directory for downloaded print files and signal sequences."""

import asyncio
import logging
import tempfile
from pathlib import Path

from reckyprint.config import AgentConfig

logger = logging.getLogger(__name__)


class SpoolError(Exception):
    """Spool directory cannot be used."""

    pass


class SpoolDirectory:
    """Owns the temp files written for print jobs.

    Deletions are delayed so the OS spooler has time to read the file.
    Each delayed deletion is a task tracked here, so shutdown can cancel
    them and delete the files right away instead of leaving timers behind.
    """

    def __init__(self, path: Path, cleanup_delay: float = 3.0):
        self.path = path
        self.cleanup_delay = cleanup_delay
        self._pending: set[asyncio.Task] = set()

    @classmethod
    def from_config(cls, config: AgentConfig) -> "SpoolDirectory":
        path = Path(config.temp_dir) if config.temp_dir else Path(tempfile.gettempdir()) / "recky-print"
        return cls(path, config.temp_file_cleanup_delay)

    def ensure(self) -> None:
        """Create the directory.

        Raises:
            SpoolError: If the directory cannot be created.
        """
        try:
            self.path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SpoolError(f"Cannot create spool directory {self.path}: {e}") from e

    def write(self, filename: str, data: bytes) -> Path:
        """Write a file into the spool directory.

        Only the final path component of ``filename`` is kept.
        """
        target = self.path / (Path(filename).name or "document")
        target.write_bytes(data)
        logger.debug(f"Spooled {len(data)} bytes to {target}")
        return target

    def remove(self, path: Path) -> None:
        try:
            path.unlink(missing_ok=True)
            logger.debug(f"Removed spool file {path}")
        except OSError as e:
            logger.error(f"Error removing spool file {path}: {e}")

    def schedule_removal(self, path: Path, delay: float | None = None) -> asyncio.Task:
        """Delete ``path`` after ``delay`` seconds (default: cleanup_delay)."""
        delay = self.cleanup_delay if delay is None else delay
        task = asyncio.create_task(self._remove_later(path, delay))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _remove_later(self, path: Path, delay: float) -> None:
        try:
            await asyncio.sleep(delay)
        finally:
            # Also runs on cancellation, so shutdown never leaks files
            self.remove(path)

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def aclose(self) -> None:
        """Cancel pending deletions, removing their files immediately."""
        tasks = list(self._pending)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"Removed {len(tasks)} pending spool file(s)")
