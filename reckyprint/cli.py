"""Command-line interface for the Recky Print agent."""

import asyncio
import dataclasses
import logging
import sys

import click

from reckyprint import __version__
from reckyprint.actions import ActionDispatcher
from reckyprint.agent import get_agent
from reckyprint.config import (
    DEFAULT_CONFIG_FILE,
    DEFAULT_SERVER_URL,
    AgentConfig,
    ConfigError,
    get_config,
)
from reckyprint.destinations import DestinationConfigResolver, Feature
from reckyprint.printing import get_printer
from reckyprint.spool import SpoolDirectory, SpoolError


def setup_logging(level: str, log_file: str | None = None) -> None:
    """Set up logging configuration.

    Args:
        level: Log level string.
        log_file: Optional file receiving the same records as stderr.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=handlers,
        force=True,
    )


def _load_config() -> AgentConfig:
    try:
        return get_config()
    except ConfigError as e:
        click.echo(f"Error: {e}")
        sys.exit(1)


@click.group()
@click.version_option(version=__version__)
def main():
    """Recky Print - silent print agent for Recky.

    Recky Print connects to your Recky server and prints documents
    as soon as they are sent, one at a time.
    """
    pass


@main.command()
@click.option(
    "--server",
    "-s",
    prompt="Recky websocket URL",
    default=DEFAULT_SERVER_URL,
    help=f"Websocket URL of the Recky server (default: {DEFAULT_SERVER_URL})",
)
@click.option(
    "--key",
    "-k",
    prompt="Agent key",
    hide_input=True,
    help="Agent key issued by the Recky server",
)
def configure(server: str, key: str):
    """Set the server URL and agent key.

    Other settings already in the config file are kept.
    """
    config = _load_config().with_credentials(server.rstrip("/"), key)
    config.save()
    click.echo(f"\nConfiguration saved to {DEFAULT_CONFIG_FILE}")
    click.echo("\nRun 'reckyprint start' to start the agent.")


@main.command()
def status():
    """Show current configuration and printers."""
    config = _load_config()

    click.echo("\n=== Recky Print Status ===\n")

    if not config.is_configured():
        click.echo("Status: NOT CONFIGURED")
        click.echo("\nRun 'reckyprint configure' to set up the agent.")
        return

    click.echo(f"Server URL: {config.server_url}")
    key = config.agent_key
    click.echo(f"Agent Key: {'*' * 8}...{key[-4:] if len(key) > 4 else '****'}")
    click.echo(f"Auth Mode: {config.auth_mode}")
    click.echo(f"Default Printer: {config.default_printer or '(system default)'}")
    click.echo(f"Reconnect: every {config.reconnect_delay:g}s, max {config.reconnect_max_attempts} attempts")
    click.echo(f"Keep-alive: every {config.keepalive_interval:g}s, timeout {config.keepalive_timeout:g}s")

    resolver = DestinationConfigResolver.from_config(config)
    printers_with_overrides = sorted(set(config.cut.per_printer) | set(config.beep.per_printer))
    if printers_with_overrides:
        click.echo("\n=== Post-print Signals ===\n")
        for name in printers_with_overrides:
            cut = resolver.resolve_cut(name)
            beep = resolver.resolve_beep(name)
            cut_text = f"{cut.mode} after {cut.delay_ms}ms" if cut.enabled else "off"
            beep_text = f"x{beep.count} after {beep.delay_ms}ms" if beep.enabled else "off"
            click.echo(f"  {name}: cut {cut_text}, beep {beep_text}")


@main.command()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def start(verbose: bool):
    """Start the Recky Print agent.

    The agent connects to the server and prints jobs as they arrive.
    Press Ctrl+C to stop.
    """
    config = _load_config()

    if not config.is_configured():
        click.echo("Error: Agent not configured. Run 'reckyprint configure' first.")
        sys.exit(1)

    level = "DEBUG" if verbose else config.log_level
    setup_logging(level, config.log_file)

    click.echo("Starting Recky Print agent... (Ctrl+C to stop)")

    agent = get_agent(config)
    try:
        exit_code = asyncio.run(agent.run())
    except SpoolError as e:
        logging.getLogger(__name__).error(str(e))
        sys.exit(1)
    sys.exit(exit_code)


@main.command()
def printers():
    """List available printers."""
    printer = get_printer(_load_config())

    click.echo("\n=== Available Printers ===\n")

    if not printer.is_available:
        click.echo("No print system available.")
        sys.exit(1)

    printers_list = printer.get_printers()
    if not printers_list:
        click.echo("No printers found.")
        return

    for p in printers_list:
        marker = "* " if p.get("is_default") else "  "
        click.echo(f"{marker}{p['name']}")

    click.echo("\n(* = default printer)")


def _send_signal(feature: Feature, printer_name: str, **overrides) -> None:
    config = _load_config()
    setup_logging(config.log_level)

    effective = DestinationConfigResolver.from_config(config).resolve(feature, printer_name)
    effective = dataclasses.replace(effective, enabled=True, delay_ms=0, **overrides)

    spool = SpoolDirectory.from_config(config)
    try:
        spool.ensure()
    except SpoolError as e:
        click.echo(f"Error: {e}")
        sys.exit(1)

    result = asyncio.run(ActionDispatcher(spool).dispatch(feature, printer_name, effective))
    if result.skipped:
        click.echo(f"{feature.value} skipped: {result.message}")
    elif result.success:
        click.echo(f"{feature.value} sent to {printer_name}")
    else:
        click.echo(f"{feature.value} failed: {result.message}")
        if result.output:
            click.echo(result.output)
        sys.exit(1)


@main.command()
@click.argument("printer_name")
@click.option("--mode", type=click.Choice(["partial", "full"]), help="Override the configured cut mode")
def cut(printer_name: str, mode: str | None):
    """Send a paper cut to PRINTER_NAME now."""
    _send_signal(Feature.CUT, printer_name, **({"mode": mode} if mode else {}))


@main.command()
@click.argument("printer_name")
@click.option("--count", type=click.IntRange(1, 9), help="Override the configured beep count")
def beep(printer_name: str, count: int | None):
    """Sound the buzzer of PRINTER_NAME now."""
    _send_signal(Feature.BEEP, printer_name, **({"count": count} if count else {}))


if __name__ == "__main__":
    main()
