"""CLI application for revpi-tags.

Provides commands for:
- run: Start the interface runtime
- validate: Validate configuration
- tags / read / write: Inspect and change tags
- led / relay: Drive the control byte
- set-default: Persist a tag's power-on default
- schema: Export and check the explicit tag configuration schema
"""

from __future__ import annotations

import asyncio
import json
import os
from pathlib import Path
from typing import TYPE_CHECKING, Annotated

import typer
from rich.console import Console
from rich.table import Table

from revpi_tags import __version__
from revpi_tags.application.control import LEDState, RelayState
from revpi_tags.application.interface import RevPiInterface
from revpi_tags.config.loader import ConfigurationError, generate_example_config, load_config
from revpi_tags.config.schema_export import (
    export_json_schema_string,
    get_schema_version,
    validate_tag_config,
)
from revpi_tags.domain.errors import RevPiTagsError
from revpi_tags.main import run_interface
from revpi_tags.observability.logging import LOG_LEVEL_ENV, setup_logging

if TYPE_CHECKING:
    from revpi_tags.config.schema import InterfaceConfig


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"revpi-tags {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="revpi-tags",
    help="revpi-tags - Named tag access to the Revolution Pi process image",
    add_completion=False,
)


@app.callback()
def main(
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            "-V",
            callback=version_callback,
            is_eager=True,
            help="Show version and exit",
        ),
    ] = False,
) -> None:
    """revpi-tags CLI."""
    pass


console = Console()

ConfigArg = Annotated[
    Path,
    typer.Argument(
        help="Path to configuration YAML file",
        exists=True,
        file_okay=True,
        dir_okay=False,
        readable=True,
    ),
]


def _load(config: Path) -> InterfaceConfig:
    setup_logging(os.environ.get(LOG_LEVEL_ENV, "WARNING"))
    try:
        return load_config(config)
    except ConfigurationError as e:
        console.print("[bold red]Invalid configuration:[/bold red]")
        console.print(str(e))
        raise typer.Exit(code=1) from e


def _open(config: Path) -> RevPiInterface:
    try:
        return RevPiInterface(_load(config))
    except RevPiTagsError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e


@app.command()
def run(
    config: ConfigArg,
    override: Annotated[
        Path | None,
        typer.Option(
            "--override",
            "-o",
            help="Path to override configuration file",
            exists=True,
        ),
    ] = None,
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-l",
            help="Log level (DEBUG, INFO, WARNING, ERROR)",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            help="Log format (console, json)",
        ),
    ] = None,
) -> None:
    """Start polling the process image and publishing tag changes."""
    console.print("[bold green]Starting revpi-tags[/bold green]")
    console.print(f"Configuration: {config}")

    try:
        asyncio.run(
            run_interface(config, override_path=override, log_level=log_level, log_format=log_format)
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Shutdown requested[/yellow]")
    except Exception as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1) from e


@app.command()
def validate(config: ConfigArg) -> None:
    """Validate a configuration file without opening the process image."""
    console.print(f"[bold]Validating:[/bold] {config}")
    interface_config = _load(config)
    console.print("[bold green]Configuration valid![/bold green]")
    console.print(f"Image: {interface_config.image_path}")
    console.print(f"Topology: {interface_config.topology_path}")
    console.print(f"Poll interval: {interface_config.poll_interval_ms} ms")


@app.command()
def tags(
    config: ConfigArg,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the tags as an explicit tag configuration"),
    ] = False,
) -> None:
    """List the resolved tags with their type and address."""
    with _open(config) as interface:
        if as_json:
            typer.echo(json.dumps({name: tag.to_config() for name, tag in interface.tags.items()}))
            return

        table = Table(title="Tags")
        table.add_column("Name", style="cyan")
        table.add_column("Type", style="magenta")
        table.add_column("Byte", justify="right")
        table.add_column("Bit", justify="right")
        table.add_column("Comment")

        for tag in sorted(interface.tags.values(), key=lambda t: (t.byte_offset, t.bit_index)):
            bit = "" if tag.address.bit_index is None else str(tag.address.bit_index)
            table.add_row(tag.name, tag.type.value, str(tag.byte_offset), bit, tag.comment)

        console.print(table)
        console.print(f"Control byte: {interface.control_byte_offset}")


@app.command()
def read(
    config: ConfigArg,
    names: Annotated[
        list[str] | None,
        typer.Argument(help="Tags to read (all if omitted)"),
    ] = None,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print values as JSON"),
    ] = False,
) -> None:
    """Read tag values from the process image."""
    with _open(config) as interface:
        try:
            values = (
                {name: interface.read_tag(name) for name in names} if names else interface.read_all()
            )
        except RevPiTagsError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(code=1) from e

    if as_json:
        typer.echo(json.dumps(values))
        return

    table = Table(title="Tag Values")
    table.add_column("Name", style="cyan")
    table.add_column("Value", style="green")
    for name, value in values.items():
        table.add_row(name, str(value))
    console.print(table)


@app.command()
def write(
    config: ConfigArg,
    name: Annotated[str, typer.Argument(help="Tag name")],
    value: Annotated[str, typer.Argument(help="Value to write")],
) -> None:
    """Write a value to a tag."""
    with _open(config) as interface:
        try:
            written = interface.write_tag_sync(name, value)
        except RevPiTagsError as e:
            console.print(f"[bold red]Write failed:[/bold red] {name} = {value!r}: {e}")
            raise typer.Exit(code=1) from e
    console.print(f"[green]✓[/green] {name} = {written}")


@app.command()
def led(
    config: ConfigArg,
    number: Annotated[int, typer.Argument(min=1, max=3, help="LED number (1-3)")],
    state: Annotated[str, typer.Argument(help="off, green, red or orange")],
) -> None:
    """Set a status LED."""
    try:
        led_state = LEDState[state.upper()]
    except KeyError as e:
        console.print(f"[bold red]Unknown LED state:[/bold red] {state}")
        raise typer.Exit(code=1) from e

    with _open(config) as interface:
        setter = {1: interface.set_led1, 2: interface.set_led2, 3: interface.set_led3}[number]
        try:
            setter(led_state)
        except RevPiTagsError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(code=1) from e
    console.print(f"[green]✓[/green] LED{number} = {led_state.name}")


@app.command()
def relay(
    config: ConfigArg,
    state: Annotated[str, typer.Argument(help="closed or open")],
) -> None:
    """Set the relay output."""
    try:
        relay_state = RelayState[state.upper()]
    except KeyError as e:
        console.print(f"[bold red]Unknown relay state:[/bold red] {state}")
        raise typer.Exit(code=1) from e

    with _open(config) as interface:
        try:
            interface.set_relay(relay_state)
        except RevPiTagsError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(code=1) from e
    console.print(f"[green]✓[/green] Relay = {relay_state.name}")


@app.command("set-default")
def set_default(
    config: ConfigArg,
    name: Annotated[str, typer.Argument(help="Tag name")],
    value: Annotated[str, typer.Argument(help="New default value")],
) -> None:
    """Persist a new default value for a tag in the topology file (a backup is kept)."""
    with _open(config) as interface:
        try:
            updated = asyncio.run(interface.set_tag_default(name, value))
        except RevPiTagsError as e:
            console.print(f"[bold red]Error:[/bold red] {e}")
            raise typer.Exit(code=1) from e
    console.print(f"[green]✓[/green] Default for {name} set to {value!r} ({updated} row(s))")


@app.command("generate-example")
def generate_example(
    output: Annotated[
        Path,
        typer.Option(
            "--output",
            "-o",
            help="Output file path",
        ),
    ] = Path("revpi-tags.yaml"),
) -> None:
    """Generate an example configuration file."""
    output.write_text(generate_example_config())

    console.print(f"[bold green]Example configuration written:[/bold green] {output}")
    console.print("\nEdit this file to match your setup, then run:")
    console.print(f"  [cyan]revpi-tags validate {output}[/cyan]")
    console.print(f"  [cyan]revpi-tags run {output}[/cyan]")


# Schema subcommand group
schema_app = typer.Typer(
    name="schema",
    help="Explicit tag configuration schema - export, validate, and inspect",
)
app.add_typer(schema_app, name="schema")


@schema_app.command("export")
def schema_export(
    output: Annotated[
        Path | None,
        typer.Option(
            "--output",
            "-o",
            help="Output file path (prints to stdout if not specified)",
        ),
    ] = None,
    version_override: Annotated[
        str | None,
        typer.Option(
            "--version",
            "-v",
            help="Schema version to embed (default: auto)",
        ),
    ] = None,
) -> None:
    """Export the tag configuration JSON Schema."""
    schema_str = export_json_schema_string(version=version_override, indent=2)

    if output:
        output.write_text(schema_str)
        console.print(f"[bold green]Schema exported:[/bold green] {output}")
        console.print(f"Schema version: {version_override or get_schema_version()}")
    else:
        typer.echo(schema_str)


@schema_app.command("validate")
def schema_validate(
    tags_file: Annotated[
        Path,
        typer.Argument(
            help="Path to tag configuration JSON file",
            exists=True,
            file_okay=True,
            dir_okay=False,
            readable=True,
        ),
    ],
) -> None:
    """Validate an explicit tag configuration file against the schema."""
    console.print(f"[bold]Validating:[/bold] {tags_file}")

    errors = validate_tag_config(tags_file.read_text(encoding="utf-8"))
    if errors:
        console.print("[bold red]Schema validation failed:[/bold red]")
        for err in errors:
            console.print(f"  [red]•[/red] {err}")
        raise typer.Exit(code=1)

    console.print("[bold green]Tag configuration is valid![/bold green]")


@schema_app.command("version")
def schema_version_cmd() -> None:
    """Show the current schema version."""
    console.print(f"Tag configuration schema version: [bold]{get_schema_version()}[/bold]")
