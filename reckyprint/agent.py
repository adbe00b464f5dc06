"""Recky Print agent - wires the connection, queue and printers together."""

import asyncio
import logging
import platform
import signal

from reckyprint import __version__
from reckyprint.actions import ActionDispatcher
from reckyprint.config import AgentConfig, get_config
from reckyprint.connection import ConnectionManager, Opener
from reckyprint.control import ControlServer
from reckyprint.destinations import DestinationConfigResolver
from reckyprint.job_queue import JobQueue
from reckyprint.printing import PrinterBackend, get_printer
from reckyprint.printing.job_printer import JobPrinter
from reckyprint.spool import SpoolDirectory

logger = logging.getLogger(__name__)


class PrintAgent:
    """Print agent that receives jobs over a websocket and prints them.

    The agent:
    1. Connects and authenticates to the Recky server
    2. Queues the print jobs it receives
    3. Prints them one at a time, then beeps and cuts if configured
    4. On SIGINT/SIGTERM, finishes the running job and logs final stats
    """

    def __init__(
        self,
        config: AgentConfig | None = None,
        printer: PrinterBackend | None = None,
        opener: Opener | None = None,
        system: str | None = None,
    ):
        """Initialize the agent.

        Args:
            config: Configuration (loads from file if not provided).
            printer: Printer backend (platform default if not provided).
            opener: Transport opener, for tests.
            system: Platform name override, for tests.
        """
        self.config = config or get_config()
        self.system = system or platform.system()
        self.spool = SpoolDirectory.from_config(self.config)
        self.printer = printer or get_printer(self.config, self.system)
        self.resolver = DestinationConfigResolver.from_config(self.config)
        self.dispatcher = ActionDispatcher(self.spool, system=self.system)
        self.queue = JobQueue(
            JobPrinter(self.printer, self.spool, self.config.default_printer),
            self.resolver,
            self.dispatcher,
            pause=self.config.job_pause,
        )
        self.connection = ConnectionManager(self.config, self.queue, opener=opener)
        self.control: ControlServer | None = None
        self._stop_event: asyncio.Event | None = None
        self._exit_code = 0

    def _log_startup(self) -> None:
        logger.info(f"=== Recky Print agent {__version__} starting ===")
        logger.info(f"System: {platform.system()} {platform.release()}")
        logger.info(f"Spool directory: {self.spool.path}")
        logger.info(f"Server: {self.config.server_url}")
        logger.info(f"Authentication mode: {self.config.auth_mode}")
        logger.info(f"Default printer: {self.config.default_printer or '(system default)'}")

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop, sig)
            except NotImplementedError:
                # Windows event loops have no add_signal_handler
                signal.signal(sig, lambda signum, frame: loop.call_soon_threadsafe(self.request_stop, signum))

    def request_stop(self, signum: int | None = None) -> None:
        """Ask the agent to shut down."""
        if signum is not None:
            logger.info(f"Shutdown signal received ({signal.Signals(signum).name})")
        if self._stop_event is not None:
            self._stop_event.set()

    async def run(self) -> int:
        """Run until a shutdown signal.

        Returns:
            int: Process exit code (1 if the control endpoint cannot start).

        Raises:
            SpoolError: If the spool directory cannot be created.
        """
        self.spool.ensure()
        self._log_startup()

        self._stop_event = asyncio.Event()
        self._exit_code = 0
        self._install_signal_handlers()

        tasks = [asyncio.create_task(self.connection.connect(), name="reckyprint-connect")]
        if self.config.control_port:
            self.control = ControlServer.create(
                self.connection, self.config.control_host, self.config.control_port
            )
            logger.info(
                f"Control endpoint on http://{self.config.control_host}:{self.config.control_port}"
            )
            tasks.append(asyncio.create_task(self._serve_control(), name="reckyprint-control"))

        await self._stop_event.wait()
        await self.shutdown()
        # The first connection attempt may still be waiting on the transport
        if not tasks[0].done():
            tasks[0].cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        return self._exit_code

    async def _serve_control(self) -> None:
        try:
            await self.control.serve()
        except SystemExit:
            # uvicorn exits when it cannot bind the port
            logger.error(
                f"Control endpoint could not start on "
                f"{self.config.control_host}:{self.config.control_port}; stopping"
            )
            self._exit_code = 1
            self.request_stop()

    async def shutdown(self) -> None:
        """Stop accepting work, finish the running job and clean up."""
        if self.control is not None:
            self.control.stop()
        await self.connection.stop()
        await self.queue.close()

        stats = self.queue.get_stats()
        logger.info(
            f"Final queue stats: total={stats.total} processed={stats.processed} "
            f"failed={stats.failed} in_queue={stats.in_queue}"
        )
        await self.spool.aclose()
        logger.info("Agent stopped")


def get_agent(config: AgentConfig | None = None) -> PrintAgent:
    """Factory function for PrintAgent.

    Args:
        config: Optional configuration.

    Returns:
        PrintAgent: Agent instance.
    """
    return PrintAgent(config)
