"""Logging setup shared by the CLI commands."""

import logging

from rich.console import Console
from rich.logging import RichHandler

console = Console()


def configure_logging(verbose: bool = False, unattended: bool = False) -> None:
    """
    Route log records through rich.

    Unattended (cron) runs get plain, timestamped lines without colour so the
    output reads well in a mail; interactive runs get rich's default layout.
    """
    level = logging.DEBUG if verbose else logging.INFO

    if unattended:
        handler = RichHandler(
            console=Console(no_color=True, width=120),
            show_path=False,
            markup=False,
            rich_tracebacks=False,
        )
    else:
        handler = RichHandler(console=console, show_path=verbose, markup=False)

    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[handler],
        force=True,
    )
    # GitPython logs every command at DEBUG
    logging.getLogger("git").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
