"""Command-line interface for binrelay.

Commands:
    binrelay relay: Batch a JSON-lines event file into JSON-lines payloads
    binrelay decode: Restore and summarize the events of a payload file
    binrelay codecs: List the compression codecs of this runtime
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Annotated, Any, Iterator, Optional

import typer
from rich.console import Console
from rich.table import Table

from binrelay import __version__
from binrelay.batching import BatchFailure, BatchProcessor, JsonLinesSink
from binrelay.compression import CompressionManager
from binrelay.config import load_settings
from binrelay.consumer import PayloadConsumer
from binrelay.errors import BinrelayError
from binrelay.events import BinlogEvent
from binrelay.logging import configure_logging, log_context

app = typer.Typer(
    name="binrelay",
    help="Batch, compress and relay MySQL binlog change events",
    add_completion=False,
    no_args_is_help=True,
)

console = Console()
logger = logging.getLogger(__name__)


# =============================================================================
# Helpers
# =============================================================================


def _read_json_lines(path: Path) -> Iterator[tuple[int, dict[str, Any]]]:
    """Yield (line number, object) for every non-blank line.

    Raises:
        BinrelayError: If a line is not a JSON object.
    """
    with path.open(encoding="utf-8") as f:
        for number, line in enumerate(f, start=1):
            line = line.strip()
            if not line:
                continue
            try:
                value = json.loads(line)
            except json.JSONDecodeError as e:
                raise BinrelayError(f"{path}:{number}: invalid JSON: {e.msg}") from e
            if not isinstance(value, dict):
                raise BinrelayError(f"{path}:{number}: expected a JSON object")
            yield number, value


def _read_events(path: Path) -> Iterator[BinlogEvent]:
    for _, record in _read_json_lines(path):
        yield BinlogEvent.from_dict(record)


def _fail(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


# =============================================================================
# Commands
# =============================================================================


@app.command(name="relay")
def relay_cmd(
    events_file: Annotated[Path, typer.Argument(help="JSON-lines file of decoded events")],
    output: Annotated[
        Path,
        typer.Option("--output", "-o", help="JSON-lines file to append payloads to"),
    ],
    config_file: Annotated[
        Optional[Path],
        typer.Option("--config", "-c", help="YAML or JSON configuration file"),
    ] = None,
    batch_size: Annotated[
        Optional[int],
        typer.Option("--batch-size", help="Maximum events per batch"),
    ] = None,
    batch_memory: Annotated[
        Optional[int],
        typer.Option("--batch-memory", help="Maximum serialized bytes per batch"),
    ] = None,
    algorithm: Annotated[
        Optional[str],
        typer.Option("--algorithm", "-a", help="Compression algorithm (auto, gzip, lz4, zstd)"),
    ] = None,
    no_compression: Annotated[
        bool,
        typer.Option("--no-compression", help="Deliver payloads uncompressed"),
    ] = False,
    log_level: Annotated[
        Optional[str],
        typer.Option("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)"),
    ] = None,
    log_format: Annotated[
        Optional[str],
        typer.Option("--log-format", help="Log format (console, json)"),
    ] = None,
) -> None:
    """Batch an event file and write one payload per flushed batch."""
    if not events_file.exists():
        _fail(f"File not found: {events_file}")

    try:
        settings = load_settings(
            config_file,
            overrides={
                "batch_size": batch_size,
                "batch_memory": batch_memory,
                "compression_algorithm": algorithm,
                "compression_enabled": False if no_compression else None,
                "logging_level": log_level,
                "logging_format": log_format,
            },
        )
    except BinrelayError as e:
        _fail(str(e))

    configure_logging(settings.logging.level, settings.logging.format)

    failures: list[BatchFailure] = []
    try:
        with JsonLinesSink(output) as sink, log_context(source=str(events_file)):
            with BatchProcessor(settings.batch, sink) as processor:
                processor.on_failure(failures.append)
                consumed = processor.process_events(_read_events(events_file))
                stats = processor.get_stats()
    except BinrelayError as e:
        _fail(str(e))

    table = Table(title="Relay Summary", show_header=True, header_style="bold magenta")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right")
    table.add_row("Events read", f"{consumed:,}")
    table.add_row("Batches", f"{stats['total_batches']:,}")
    table.add_row("Batched events", f"{stats['total_events']:,}")
    table.add_row("Oversized events", f"{stats['fallback_events']:,}")
    table.add_row("Compressed bytes in", f"{stats['total_original_size']:,}")
    table.add_row("Compressed bytes out", f"{stats['total_compressed_size']:,}")
    table.add_row("Compression ratio", f"{stats['overall_compression_ratio']:.4f}")
    failure_color = "red" if failures else "green"
    table.add_row("Failures", f"[{failure_color}]{len(failures)}[/{failure_color}]")
    console.print(table)

    if failures:
        raise typer.Exit(1)


@app.command(name="decode")
def decode_cmd(
    payloads_file: Annotated[Path, typer.Argument(help="JSON-lines file of payloads")],
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the events as JSON lines instead of a summary"),
    ] = False,
) -> None:
    """Decode a payload file written by the relay command."""
    if not payloads_file.exists():
        _fail(f"File not found: {payloads_file}")

    consumer = PayloadConsumer()
    table = Table(title="Payloads", show_header=True, header_style="bold magenta")
    table.add_column("Batch", style="cyan", no_wrap=True)
    table.add_column("Events", justify="right")
    table.add_column("Algorithm", justify="center")
    table.add_column("Original", justify="right")
    table.add_column("Compressed", justify="right")
    table.add_column("Ratio", justify="right")

    try:
        for _, record in _read_json_lines(payloads_file):
            payload = consumer.to_payload(record)
            events = consumer.decode(payload)
            if as_json:
                for event in events:
                    typer.echo(event.to_json().decode("utf-8"))
                continue
            compression = payload.compression
            table.add_row(
                payload.batch_id,
                str(len(events)),
                compression.algorithm if compression else "-",
                f"{compression.original_size:,}" if compression else "-",
                f"{compression.compressed_size:,}" if compression else "-",
                f"{compression.compression_ratio:.4f}" if compression else "-",
            )
    except BinrelayError as e:
        _fail(str(e))

    if not as_json:
        console.print(table)


@app.command(name="codecs")
def codecs_cmd() -> None:
    """List compression codecs and their levels."""
    manager = CompressionManager()
    table = Table(title="Compression Codecs", show_header=True, header_style="bold magenta")
    table.add_column("Codec", style="cyan")
    table.add_column("Available", justify="center")
    table.add_column("Level", justify="right")
    table.add_column("Range", justify="center")
    table.add_column("Default", justify="center")

    for name, info in manager.get_stats().items():
        low, high = info["level_range"]
        table.add_row(
            name,
            "[green]yes[/green]" if info["supported"] else "[red]no[/red]",
            str(info["level"]),
            f"{low}-{high}",
            "*" if info["default"] else "",
        )
    console.print(table)


@app.command(name="version")
def version_cmd() -> None:
    """Show the binrelay version."""
    typer.echo(f"binrelay {__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
