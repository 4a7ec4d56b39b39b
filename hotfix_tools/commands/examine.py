"""Examine commands for offline manifest inspection."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click
import structlog
from rich.console import Console
from rich.table import Table

from hotfix_tools.core.config import AppConfig
from hotfix_tools.core.utils import format_size
from hotfix_tools.formats import (
    BlockIndexParser,
    DesignIndexParser,
    FileIndexParser,
    ManifestHeaderParser,
    ScriptIndexParser,
    parse_mapper,
)

logger = structlog.get_logger()

# Rows shown before a table is truncated
TABLE_LIMIT = 50


def _get_context_objects(ctx: click.Context) -> tuple[AppConfig, Console, bool]:
    """Extract common context objects."""
    config: AppConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]
    verbose: bool = ctx.obj["verbose"]
    return config, console, verbose


def _output_json(data: dict[str, Any]) -> None:
    """Output data as JSON."""
    print(json.dumps(data, indent=2, default=str))


def _read(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as e:
        raise click.ClickException(f"Failed to read file {path}: {e}") from e


def _limit(verbose: bool) -> int | None:
    return None if verbose else TABLE_LIMIT


@click.group()
def examine() -> None:
    """Examine hotfix manifest files."""
    pass


@examine.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--swap", is_flag=True, help="Decode big-endian fields through the byte-swap path")
@click.pass_context
def block(ctx: click.Context, input_path: Path, swap: bool) -> None:
    """Examine a block archive index (BlockV_*.bytes)."""
    config, console, verbose = _get_context_objects(ctx)

    try:
        index = BlockIndexParser(swap=swap).parse(_read(input_path))
    except ValueError as e:
        raise click.ClickException(f"Failed to parse block index: {e}") from e

    if config.output_format == "json":
        _output_json({
            "count": index.count,
            "entries": [entry.model_dump() for entry in index.entries],
        })
        return

    table = Table(title=f"Block Index: {input_path.name} ({index.count} blocks)")
    table.add_column("Name", style="cyan")
    table.add_column("Asset ID", justify="right")
    table.add_column("Size", justify="right", style="magenta")
    table.add_column("Base", justify="center")

    for entry in index.entries[:_limit(verbose)]:
        table.add_row(
            entry.name_hash,
            str(entry.asset_id),
            format_size(entry.size),
            "yes" if entry.is_base_layer else "",
        )
    console.print(table)

    total = sum(entry.size for entry in index.entries)
    console.print(f"Total size: {format_size(total)}")


def _examine_file_index(ctx: click.Context, input_path: Path, parser: FileIndexParser) -> None:
    config, console, verbose = _get_context_objects(ctx)

    try:
        index = parser.parse(_read(input_path))
    except ValueError as e:
        raise click.ClickException(f"Failed to parse {parser.kind} index: {e}") from e

    if config.output_format == "json":
        _output_json({
            "kind": parser.kind,
            "format_marker": index.format_marker,
            "aux_marker": index.aux_marker,
            "file_count": index.file_count,
            "files": [entry.model_dump() for entry in index.files],
        })
        return

    table = Table(title=f"{parser.kind.title()} Index: {input_path.name} ({index.file_count} files)")
    table.add_column("Content Hash", style="cyan")
    table.add_column("Name Hash", justify="right")
    table.add_column("Size", justify="right", style="magenta")
    table.add_column("Chunks", justify="right")
    table.add_column("Flag", justify="right")

    for entry in index.files[:_limit(verbose)]:
        table.add_row(
            entry.content_hash,
            f"{entry.name_hash & 0xFFFFFFFF:08x}",
            format_size(entry.declared_size),
            str(len(entry.sub_entries)),
            str(entry.trailing_flag),
        )
    console.print(table)


@examine.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def design(ctx: click.Context, input_path: Path) -> None:
    """Examine a design-data index (DesignV_*.bytes)."""
    _examine_file_index(ctx, input_path, DesignIndexParser())


@examine.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def script(ctx: click.Context, input_path: Path) -> None:
    """Examine a script index (LuaV_*.bytes)."""
    _examine_file_index(ctx, input_path, ScriptIndexParser())


@examine.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def header(ctx: click.Context, input_path: Path) -> None:
    """Examine a manifest header (M_DesignV.bytes, M_LuaV.bytes)."""
    config, console, _ = _get_context_objects(ctx)

    try:
        parsed = ManifestHeaderParser().parse(_read(input_path))
    except ValueError as e:
        raise click.ClickException(f"Failed to parse manifest header: {e}") from e

    if config.output_format == "json":
        _output_json(parsed.model_dump())
        return

    table = Table(title=f"Manifest Header: {input_path.name}")
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="magenta")
    for key, value in parsed.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


@examine.command()
@click.argument("input_path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.pass_context
def mapper(ctx: click.Context, input_path: Path) -> None:
    """Examine a mapper file (res_versions_*, data_versions, ...)."""
    config, console, verbose = _get_context_objects(ctx)

    try:
        records = parse_mapper(_read(input_path).decode("utf-8"))
    except ValueError as e:
        raise click.ClickException(f"Failed to parse mapper: {e}") from e

    if config.output_format == "json":
        _output_json({"records": [record.model_dump() for record in records]})
        return

    table = Table(title=f"Mapper: {input_path.name} ({len(records)} records)")
    table.add_column("Remote Name", style="cyan")
    table.add_column("MD5")
    table.add_column("Size", justify="right", style="magenta")
    table.add_column("Patch", justify="center")

    for record in records[:_limit(verbose)]:
        table.add_row(
            record.remote_name,
            record.md5,
            format_size(record.file_size),
            "yes" if record.is_patch else "",
        )
    console.print(table)
