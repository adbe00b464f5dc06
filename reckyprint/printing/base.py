"""Abstract printer backend interface."""

from pathlib import Path
from typing import Protocol, runtime_checkable


class PrinterError(Exception):
    """Error during printing operation."""

    pass


@runtime_checkable
class PrinterBackend(Protocol):
    """Protocol defining the printer backend interface.

    All platform-specific printer implementations must satisfy this protocol.
    """

    @property
    def is_available(self) -> bool:
        """Check if the printing system is available.

        Returns:
            bool: True if printing is available.
        """
        ...

    def get_printers(self) -> list[dict]:
        """Get list of available printers.

        Returns:
            list[dict]: List of printer info dicts with 'name' and
                        'is_default' keys.
        """
        ...

    def get_default_printer(self) -> str | None:
        """Get the default printer name.

        Returns:
            str | None: Default printer name or None.
        """
        ...

    def print_file(self, path: Path, printer_name: str | None = None) -> bool:
        """Send a spooled file to a printer.

        Args:
            path: File to print.
            printer_name: Target printer (None = backend default).

        Returns:
            bool: True if the print job was submitted.

        Raises:
            PrinterError: If printing fails.
        """
        ...
