"""Sync commands for mirroring game hotfix releases."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click
import structlog
from rich.console import Console
from rich.table import Table

from hotfix_tools.core.config import AppConfig
from hotfix_tools.core.downloader import Downloader
from hotfix_tools.core.games import GameProfile, load_profiles
from hotfix_tools.core.sync import SyncEngine, SyncReport
from hotfix_tools.core.types import Outcome

logger = structlog.get_logger()


def _get_context_objects(ctx: click.Context) -> tuple[AppConfig, Console, bool]:
    """Extract common context objects."""
    config: AppConfig = ctx.obj["config"]
    console: Console = ctx.obj["console"]
    verbose: bool = ctx.obj["verbose"]
    return config, console, verbose


def _output_json(data: dict[str, Any]) -> None:
    """Output data as JSON."""
    print(json.dumps(data, indent=2, default=str))


def _get_profile(game: str, games_file: Path | None) -> GameProfile:
    try:
        profiles = load_profiles(games_file)
    except (OSError, ValueError) as e:
        raise click.ClickException(f"Failed to load game profiles: {e}") from e

    profile = profiles.get(game)
    if profile is None:
        raise click.ClickException(f"Unknown game: {game}. Known games: {', '.join(sorted(profiles))}")
    return profile


def _display_report(console: Console, title: str, report: SyncReport, verbose: bool) -> None:
    table = Table(title=title)
    table.add_column("Outcome", style="cyan")
    table.add_column("Count", justify="right", style="magenta")
    for outcome in Outcome:
        table.add_row(outcome.value, str(report.counts.get(outcome, 0)))
    table.add_row("total", str(report.total), style="bold")
    console.print(table)

    if report.failed_manifests:
        console.print(f"[red]Failed manifests: {len(report.failed_manifests)}[/red]")
        for url in report.failed_manifests:
            console.print(f"  {url}")

    if report.unresolved:
        console.print(f"[yellow]Unresolved resources: {len(report.unresolved)}[/yellow]")
        shown = report.unresolved if verbose else report.unresolved[:10]
        for url in shown:
            console.print(f"  {url}")
        if len(shown) < len(report.unresolved):
            console.print(f"  ... and {len(report.unresolved) - len(shown)} more")


def _finish(ctx: click.Context, title: str, report: SyncReport) -> None:
    config, console, verbose = _get_context_objects(ctx)

    if config.output_format == "json":
        _output_json(report.to_dict())
    else:
        _display_report(console, title, report, verbose)

    if not report.ok:
        ctx.exit(1)


@click.command()
@click.argument("game")
@click.option("--release", "-r", "releases", multiple=True, help="Release to sync (repeatable, default all)")
@click.option("--client", "clients", multiple=True, help="Client to sync, e.g. client/Android (repeatable)")
@click.option(
    "--games-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON file with extra or replacement game profiles",
)
@click.pass_context
def sync(
    ctx: click.Context,
    game: str,
    releases: tuple[str, ...],
    clients: tuple[str, ...],
    games_file: Path | None,
) -> None:
    """Mirror the hotfix releases of GAME into the local cache."""
    config, console, _ = _get_context_objects(ctx)
    profile = _get_profile(game, games_file)

    unknown = [release for release in releases if release not in profile.releases]
    if unknown:
        raise click.ClickException(
            f"Unknown release(s) for {game}: {', '.join(unknown)}. "
            f"Known releases: {', '.join(profile.releases)}"
        )

    root = config.game_dir(game)
    logger.info("sync_start", game=game, root=str(root), releases=list(releases) or "all")

    with Downloader(config.sync) as downloader:
        engine = SyncEngine(profile, root, downloader, config.sync)
        report = engine.sync(list(releases) or None, list(clients) or None)

    logger.info("sync_done", game=game, requests=downloader.requests, total=report.total)
    _finish(ctx, f"Sync: {game}", report)


@click.command()
@click.argument("game")
@click.argument("release")
@click.argument("links_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--games-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    help="JSON file with extra or replacement game profiles",
)
@click.pass_context
def resume(
    ctx: click.Context,
    game: str,
    release: str,
    links_file: Path,
    games_file: Path | None,
) -> None:
    """Re-run the download cycle of a saved link manifest."""
    config, _, _ = _get_context_objects(ctx)
    profile = _get_profile(game, games_file)

    with Downloader(config.sync) as downloader:
        engine = SyncEngine(profile, config.game_dir(game), downloader, config.sync)
        try:
            report = engine.resume(release, links_file)
        except (OSError, ValueError) as e:
            raise click.ClickException(f"Failed to read link manifest {links_file}: {e}") from e

    _finish(ctx, f"Resume: {game} {release}", report)
