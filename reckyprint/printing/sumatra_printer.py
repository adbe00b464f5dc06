"""Windows printing backend using SumatraPDF's silent print mode."""

import logging
import subprocess
from pathlib import Path

from reckyprint.printing.base import PrinterError

logger = logging.getLogger(__name__)


class SumatraPrinter:
    """Windows printing backend driving SumatraPDF.exe."""

    def __init__(self, sumatra_path: str, printer_name: str | None = None):
        """Initialize Windows printer.

        Args:
            sumatra_path: Full path to SumatraPDF.exe.
            printer_name: Printer name (None = Windows default printer).
        """
        self.sumatra_path = sumatra_path
        self.printer_name = printer_name

    @property
    def is_available(self) -> bool:
        """Check if SumatraPDF is configured and present.

        Returns:
            bool: True if the executable exists.
        """
        return bool(self.sumatra_path) and Path(self.sumatra_path).exists()

    def _powershell(self, script: str) -> list[str]:
        try:
            result = subprocess.run(
                ["powershell", "-NoProfile", "-Command", script],
                capture_output=True,
                text=True,
                timeout=15,
            )
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return []
        return [line.strip() for line in result.stdout.splitlines() if line.strip()]

    def get_printers(self) -> list[dict]:
        """Get list of installed printers.

        Returns:
            list[dict]: List of printer info dicts.
        """
        default = self.get_default_printer()
        return [
            {"name": name, "is_default": name == default}
            for name in self._powershell("Get-Printer | Select-Object -ExpandProperty Name")
        ]

    def get_default_printer(self) -> str | None:
        """Get the default printer name.

        Returns:
            str | None: Default printer name or None.
        """
        names = self._powershell(
            "Get-CimInstance Win32_Printer -Filter 'Default=TRUE' | "
            "Select-Object -ExpandProperty Name"
        )
        return names[0] if names else None

    def build_command(self, path: Path, printer_name: str | None = None) -> list[str]:
        name = printer_name or self.printer_name
        if name:
            return [self.sumatra_path, "-print-to", name, "-silent", str(path)]
        return [self.sumatra_path, "-print-to-default", "-silent", str(path)]

    def print_file(self, path: Path, printer_name: str | None = None) -> bool:
        """Print a file through SumatraPDF.

        Args:
            path: File to print.
            printer_name: Override printer name.

        Returns:
            bool: True if print job was submitted successfully.

        Raises:
            PrinterError: If printing fails.
        """
        if not self.sumatra_path:
            raise PrinterError("SumatraPDF path not configured (set sumatra_path)")

        cmd = self.build_command(path, printer_name)
        logger.info(f"Print command: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=120)
        except subprocess.TimeoutExpired as err:
            raise PrinterError("Print command timed out") from err
        except FileNotFoundError as err:
            raise PrinterError(f"SumatraPDF not found at {self.sumatra_path}") from err

        if result.returncode != 0:
            raise PrinterError(f"SumatraPDF failed ({result.returncode}): {result.stderr.strip()}")

        logger.info(f"Print job submitted to {printer_name or self.printer_name or 'default'}")
        return True
