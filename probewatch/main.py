"""Entry point for the probe agent — `probewatch` console script."""

from __future__ import annotations

import logging

import uvicorn
from rich.console import Console
from rich.panel import Panel

from probewatch import __version__
from probewatch.config import settings

console = Console()


def main() -> None:
    """Load the configuration and run forever."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper()),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
    )

    console.print(
        Panel.fit(
            f"[bold]probewatch {__version__}[/bold]\n"
            f"Checks: {settings.checks_file}\n"
            f"Store:  {settings.db_path}\n"
            f"Bind:   {settings.api_host}:{settings.api_port}",
            title="probewatch",
            border_style="green",
        )
    )

    uvicorn.run(
        "probewatch.api.server:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
