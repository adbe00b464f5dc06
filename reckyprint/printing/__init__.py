"""Cross-platform printing abstraction.

Provides a unified printer interface across Linux/macOS (CUPS) and Windows
(SumatraPDF). Use get_printer() factory to get the appropriate backend for
the current platform.
"""

import logging
import platform

from reckyprint.config import AgentConfig
from reckyprint.printing.base import PrinterBackend, PrinterError

logger = logging.getLogger(__name__)


def get_printer(config: AgentConfig, system: str | None = None) -> PrinterBackend:
    """Factory function that returns the appropriate printer backend.

    Args:
        config: Agent configuration (default printer, SumatraPDF path).
        system: Platform name override (default: platform.system()).

    Returns:
        PrinterBackend: Platform-specific printer instance.
    """
    system = system or platform.system()

    if system == "Windows":
        from reckyprint.printing.sumatra_printer import SumatraPrinter

        return SumatraPrinter(config.sumatra_path, config.default_printer)

    # Linux and macOS both use CUPS
    from reckyprint.printing.cups_printer import CupsPrinter

    return CupsPrinter(config.default_printer, system=system)


__all__ = [
    "PrinterBackend",
    "PrinterError",
    "get_printer",
]
