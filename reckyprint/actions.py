"""Post-print hardware signals (paper cut, buzzer) for ESC/POS printers.

Signals are raw ESC/POS sequences copied to the printer share with
``copy /b``, so they only work on Windows. Elsewhere dispatching is a
successful no-op.
"""

import asyncio
import logging
import platform
import uuid
from dataclasses import dataclass
from pathlib import Path

from reckyprint import escpos
from reckyprint.destinations import (
    DestinationConfigResolver,
    EffectiveBeep,
    EffectiveConfig,
    EffectiveCut,
    Feature,
)
from reckyprint.spool import SpoolDirectory

logger = logging.getLogger(__name__)

SUPPORTED_SYSTEM = "Windows"
CUT_ATTEMPTS = 2


@dataclass(frozen=True)
class ActionResult:
    """Outcome of one dispatched signal."""

    kind: Feature
    destination: str | None
    success: bool
    skipped: bool = False
    message: str = ""
    output: str = ""


def build_raw_copy_command(path: Path, printer_name: str) -> list[str]:
    """Command copying a binary file verbatim to a shared Windows printer."""
    return ["cmd", "/c", "copy", "/b", str(path), f"\\\\localhost\\{printer_name}"]


class ActionDispatcher:
    """Sends cut and beep sequences to a printer after a job.

    Failures are reported as ``ActionResult`` values and never raised, so
    a failed beep does not stop the cut that follows it.
    """

    def __init__(
        self,
        spool: SpoolDirectory,
        system: str | None = None,
        retry_delay: float = 1.0,
        command_timeout: float = 15.0,
    ):
        """Initialize the dispatcher.

        Args:
            spool: Directory for the temporary sequence files.
            system: Platform name override (default: platform.system()).
            retry_delay: Seconds between two cut attempts.
            command_timeout: Seconds before the copy command is killed.
        """
        self.spool = spool
        self.system = system or platform.system()
        self.retry_delay = retry_delay
        self.command_timeout = command_timeout

    @property
    def is_supported(self) -> bool:
        return self.system == SUPPORTED_SYSTEM

    async def dispatch(
        self, kind: Feature | str, destination: str | None, config: EffectiveConfig
    ) -> ActionResult:
        """Send one signal to a printer.

        Args:
            kind: 'cut' or 'beep'.
            destination: Printer name.
            config: Effective settings for this printer.

        Returns:
            ActionResult: Success, failure or skip.
        """
        kind = Feature(kind)

        if not config.enabled:
            logger.info(f"{kind.value} disabled for {destination or 'default printer'}, skipping")
            return ActionResult(kind, destination, success=True, skipped=True, message="disabled")

        if not destination or not destination.strip():
            logger.info(f"No printer name for {kind.value}, skipping")
            return ActionResult(kind, destination, success=True, skipped=True, message="no printer")

        if config.delay_ms > 0:
            logger.debug(f"Waiting {config.delay_ms}ms before {kind.value} on {destination}")
            await asyncio.sleep(config.delay_ms / 1000)

        if not self.is_supported:
            logger.info(f"{kind.value} not supported on {self.system}, skipping")
            return ActionResult(kind, destination, success=True, skipped=True, message="unsupported platform")

        if kind is Feature.CUT:
            return await self._cut(destination, config)
        return await self._beep(destination, config)

    async def run_post_print(
        self, destination: str | None, resolver: DestinationConfigResolver
    ) -> list[ActionResult]:
        """Beep, then cut, with the settings resolved for ``destination``.

        Each signal is attempted whatever the outcome of the other.
        """
        results = []
        for kind in (Feature.BEEP, Feature.CUT):
            try:
                config = resolver.resolve(kind, destination)
                result = await self.dispatch(kind, destination, config)
            except Exception as e:
                logger.exception(f"Unexpected error sending {kind.value} to {destination}")
                result = ActionResult(kind, destination, success=False, message=str(e) or e.__class__.__name__)
            results.append(result)
        return results

    async def _beep(self, destination: str, config: EffectiveBeep) -> ActionResult:
        data = escpos.beep(config.count, config.duration)
        result = await self._send(Feature.BEEP, destination, data)
        if result.success:
            logger.info(f"Beep x{config.count} sent to {destination}")
        return result

    async def _cut(self, destination: str, config: EffectiveCut) -> ActionResult:
        try:
            data = escpos.cut(config.mode, config.feed_lines)
        except ValueError as e:
            logger.error(f"Cut for {destination}: {e}")
            return ActionResult(Feature.CUT, destination, success=False, message=str(e))

        result = None
        for attempt in range(1, CUT_ATTEMPTS + 1):
            result = await self._send(Feature.CUT, destination, data)
            if result.success:
                logger.info(f"{config.mode} cut sent to {destination}")
                return result
            logger.warning(f"Cut attempt {attempt}/{CUT_ATTEMPTS} on {destination} failed: {result.message}")
            if attempt < CUT_ATTEMPTS:
                await asyncio.sleep(self.retry_delay)

        if config.mode != "partial":
            logger.info(f"Trying partial cut on {destination} instead")
            fallback = await self._send(Feature.CUT, destination, escpos.cut("partial", config.feed_lines))
            if fallback.success:
                logger.info(f"Partial cut sent to {destination}")
                return fallback

        return result

    async def _send(self, kind: Feature, destination: str, data: bytes) -> ActionResult:
        try:
            path = self.spool.write(f"{kind.value}-{uuid.uuid4().hex}.bin", data)
        except OSError as e:
            logger.error(f"Cannot write {kind.value} sequence: {e}")
            return ActionResult(kind, destination, success=False, message=str(e))

        cmd = build_raw_copy_command(path, destination)
        logger.debug(f"Signal command: {' '.join(cmd)}")
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
            try:
                stdout, _ = await asyncio.wait_for(proc.communicate(), self.command_timeout)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                logger.error(f"{kind.value} command timed out for {destination}")
                return ActionResult(kind, destination, success=False, message="command timed out")
        except OSError as e:
            logger.error(f"Cannot run {kind.value} command: {e}")
            return ActionResult(kind, destination, success=False, message=str(e))
        finally:
            self.spool.remove(path)

        output = (stdout or b"").decode("utf-8", errors="replace").strip()
        if proc.returncode != 0:
            logger.error(f"{kind.value} command failed for {destination} ({proc.returncode}): {output}")
            return ActionResult(
                kind,
                destination,
                success=False,
                message=f"exit code {proc.returncode}",
                output=output,
            )
        return ActionResult(kind, destination, success=True, output=output)
