"""CUPS printing backend (Linux and macOS) using the lp/lpr commands."""

import logging
import platform
import subprocess
from pathlib import Path

from reckyprint.printing.base import PrinterError

logger = logging.getLogger(__name__)


class CupsPrinter:
    """Print through the CUPS command line tools.

    Linux uses ``lp -d``, macOS uses ``lpr -P``.
    """

    def __init__(self, printer_name: str | None = None, system: str | None = None):
        """Initialize the backend.

        Args:
            printer_name: Printer used when a job names none (None = CUPS default).
            system: Platform name override (default: platform.system()).
        """
        self.printer_name = printer_name
        self.system = system or platform.system()

    @property
    def is_available(self) -> bool:
        """Check if the print command exists.

        Returns:
            bool: True if lp (or lpr on macOS) is on the PATH.
        """
        command = "lpr" if self.system == "Darwin" else "lp"
        try:
            result = subprocess.run(["which", command], capture_output=True, text=True, timeout=5)
            return result.returncode == 0
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return False

    def get_printers(self) -> list[dict]:
        """Get list of available printers from lpstat.

        Returns:
            list[dict]: List of printer info dicts.
        """
        try:
            result = subprocess.run(["lpstat", "-p"], capture_output=True, text=True, timeout=10)
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return []

        default = self.get_default_printer()
        printers = []
        for line in result.stdout.strip().split("\n"):
            if line.startswith("printer "):
                parts = line.split()
                if len(parts) >= 2:
                    printers.append({"name": parts[1], "is_default": parts[1] == default})
        return printers

    def get_default_printer(self) -> str | None:
        """Get the default printer name from lpstat -d.

        Returns:
            str | None: Default printer name or None.
        """
        try:
            result = subprocess.run(["lpstat", "-d"], capture_output=True, text=True, timeout=5)
        except (subprocess.TimeoutExpired, FileNotFoundError):
            return None
        if "system default destination:" in result.stdout:
            return result.stdout.split(":")[-1].strip()
        return None

    def build_command(self, path: Path, printer_name: str | None = None) -> list[str]:
        name = printer_name or self.printer_name
        if self.system == "Darwin":
            cmd = ["lpr"]
            if name:
                cmd.extend(["-P", name])
        else:
            cmd = ["lp"]
            if name:
                cmd.extend(["-d", name])
        cmd.append(str(path))
        return cmd

    def print_file(self, path: Path, printer_name: str | None = None) -> bool:
        """Print a file with lp/lpr.

        Args:
            path: File to print.
            printer_name: Override printer name.

        Returns:
            bool: True if print job was submitted successfully.

        Raises:
            PrinterError: If printing fails.
        """
        cmd = self.build_command(path, printer_name)
        logger.info(f"Print command: {' '.join(cmd)}")

        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=60)
        except subprocess.TimeoutExpired as err:
            raise PrinterError("Print command timed out") from err
        except FileNotFoundError as err:
            raise PrinterError(f"{cmd[0]} command not found - is CUPS installed?") from err

        if result.returncode != 0:
            raise PrinterError(f"{cmd[0]} command failed: {result.stderr.strip()}")

        logger.info(f"Print job submitted via {cmd[0]}: {result.stdout.strip()}")
        return True
