"""CLI entry point for multitask."""

from __future__ import annotations

import logging
from collections import deque

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from multitask.config import MultitaskConfig
from multitask.errors import MultitaskError, SpawnError, TargetError, TerminalError
from multitask.wire import EventType, Wire, WireEvent

app = typer.Typer(
    name="multitask",
    help=(
        "Run several programs in one terminal. "
        "ESC n: new session, ESC 1-9: switch, ESC d: close, ESC q: quit."
    ),
    add_completion=False,
)


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """Configure the root logger.

    The multiplexer owns the screen, so logs never go to stderr: they go to
    ``log_file`` if given and are discarded otherwise.
    """
    root = logging.getLogger()
    for h in root.handlers[:]:
        root.removeHandler(h)
    root.setLevel(logging.DEBUG if verbose else logging.INFO)

    handler: logging.Handler
    if log_file:
        handler = logging.FileHandler(log_file)
        handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%H:%M:%S",
            )
        )
    else:
        handler = logging.NullHandler()
    root.addHandler(handler)


@app.callback(invoke_without_command=True)
def run(
    ctx: typer.Context,
    target: str | None = typer.Option(
        None,
        "--target",
        "-t",
        help="Program to run in each session (default: from env/install root).",
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    log_file: str | None = typer.Option(
        None, "--log-file", help="Write logs to this file."
    ),
) -> None:
    """Start the multiplexer with one session."""
    try:
        config = MultitaskConfig.load(target=target, log_file=log_file)
    except ValidationError as e:
        typer.echo(f"Error: invalid configuration: {e}", err=True)
        raise typer.Exit(1)
    ctx.obj = config
    if ctx.invoked_subcommand is not None:
        return

    setup_logging(verbose, config.log_file)

    try:
        target_path = config.resolve_target()
    except TargetError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)

    wire = Wire()
    events = wire.subscribe()
    try:
        _run_multiplexer(target_path, config, wire)
    except (TerminalError, SpawnError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    finally:
        wire.unsubscribe(events)

    _report_failures(events)


def _run_multiplexer(target_path: str, config: MultitaskConfig, wire: Wire) -> None:
    """Run the loop inside raw mode; the terminal is restored on every path."""
    from multitask.mux import Multiplexer
    from multitask.terminal import RawTerminal

    with RawTerminal() as terminal:
        mux = Multiplexer(target_path, config, wire=wire, size_provider=terminal.size)
        mux.run()


def _report_failures(events: deque[WireEvent | None]) -> None:
    """Print spawn failures that were only shown on the status line."""
    for event in events:
        if event is not None and event.type == EventType.SPAWN_FAILED:
            typer.echo(f"multitask: {event.data.get('error', 'spawn failed')}", err=True)


@app.command("config")
def show_config(ctx: typer.Context) -> None:
    """Show the resolved configuration and target program."""
    config: MultitaskConfig = ctx.obj
    console = Console()

    table = Table(title="multitask configuration")
    table.add_column("Setting", style="bold")
    table.add_column("Value")
    for name, value in config.model_dump().items():
        table.add_row(name, "-" if value is None else str(value))

    try:
        table.add_row("resolved target", config.resolve_target())
        ok = True
    except MultitaskError as e:
        table.add_row("resolved target", f"[red]{e}[/red]")
        ok = False

    console.print(table)
    if not ok:
        raise typer.Exit(1)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
