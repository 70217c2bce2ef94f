#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import json
import os
from datetime import datetime, timedelta

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from shared.log import configure_root_logging, get_logger
from client.bootstrap import build_registry, launch
from registry.properties import ConfigProperty

app = typer.Typer(help="retcon: layered config bootstrap for a one-shot websocket client")
console = Console()
logger = get_logger(__name__)


def _default_name() -> str:
    return os.getenv("RETCON_NAME", "test")


def _render(prop: ConfigProperty) -> str:
    value = prop.value
    if value is None:
        return "null"
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, timedelta):
        return f"{value.total_seconds()}s"
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return str(value)


@app.command()
def run(
    name: str = typer.Option(_default_name(), help="Config base name: file path and env prefix"),
    linger: float = typer.Option(60.0, help="Seconds to keep the process alive after the attempt"),
):
    """Resolve config, connect once, send the handshake, read one frame, close."""
    configure_root_logging()
    registry = build_registry(name)

    async def main() -> None:
        supervisor = launch(registry)
        await supervisor.wait_ready()
        console.print(escape(supervisor.target.path))
        if linger > 0:
            await asyncio.sleep(linger)

    asyncio.run(main())


@app.command()
def show(
    name: str = typer.Option(_default_name(), help="Config base name: file path and env prefix"),
):
    """Print every resolved property and the source that won."""
    registry = build_registry(name)

    table = Table(title=f"retcon config: {name}")
    table.add_column("Name")
    table.add_column("Kind")
    table.add_column("Value")
    table.add_column("Priority", justify="right")
    table.add_column("Source")
    for prop in registry.properties():
        table.add_row(escape(prop.name), prop.kind.value, escape(_render(prop)), str(prop.priority), escape(prop.source))
    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
