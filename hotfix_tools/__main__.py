"""Main entry point for hotfix-tools CLI."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Any

import click
import structlog
from rich.console import Console

from hotfix_tools import __version__
from hotfix_tools.commands.examine import examine
from hotfix_tools.commands.serve import serve
from hotfix_tools.commands.sync import resume, sync
from hotfix_tools.core.config import AppConfig


def configure_logging(level: str | None = None) -> None:
    """Render structlog events through stdlib logging on stderr.

    Args:
        level: Minimum level to emit; None keeps the stdlib default (warnings)
    """
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    if level is not None:
        logging.basicConfig(level=level, format="%(message)s", stream=sys.stderr, force=True)


configure_logging()

logger = structlog.get_logger()


@click.group()
@click.version_option(version=__version__, prog_name="hotfix-tools")
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True, path_type=Path),
    help="Configuration file path",
)
@click.option("--verbose", "-v", is_flag=True, help="Log progress (INFO)")
@click.option("--debug", "-d", is_flag=True, help="Log every resource decision (DEBUG)")
@click.option(
    "--output",
    "-o",
    type=click.Choice(["rich", "json", "plain"], case_sensitive=False),
    default="rich",
    help="Output format",
)
@click.pass_context
def main(
    ctx: click.Context,
    config: Path | None,
    verbose: bool,
    debug: bool,
    output: str,
) -> None:
    """Mirror and serve game hotfix CDN content."""
    ctx.ensure_object(dict)

    try:
        app_config = AppConfig.load(config)
    except Exception as e:
        logger.error("config_load_failed", error=str(e))
        sys.exit(1)

    if verbose or debug:
        app_config.log_level = "DEBUG" if debug else "INFO"
        configure_logging(app_config.log_level)
    if output:
        app_config.output_format = output.lower()

    console = Console(
        force_terminal=output == "rich",
        no_color=output != "rich",
        width=None if output == "rich" else 120,
    )

    ctx.obj["config"] = app_config
    ctx.obj["console"] = console
    ctx.obj["verbose"] = verbose or debug
    ctx.obj["debug"] = debug

    logger.debug("cli_initialized", config=app_config.model_dump(mode="json"))


@main.command()
@click.pass_context
def version(ctx: click.Context) -> None:
    """Show version information."""
    console: Console = ctx.obj["console"]
    config: AppConfig = ctx.obj["config"]

    if config.output_format == "json":
        info = {
            "name": "hotfix-tools",
            "version": __version__,
            "python_version": sys.version.replace("\n", " "),
            "platform": sys.platform,
        }
        # Plain print keeps rich markup out of the JSON
        print(json.dumps(info, indent=2))
        return

    console.print(f"hotfix-tools {__version__}")
    if ctx.obj["verbose"]:
        console.print(f"Python {sys.version}")
        console.print(f"Platform: {sys.platform}")


main.add_command(examine)
main.add_command(resume)
main.add_command(serve)
main.add_command(sync)


def handle_exception(exc_type: type[BaseException], exc_value: BaseException, exc_traceback: Any) -> None:
    """Log an uncaught exception and exit non-zero; Ctrl-C exits quietly."""
    if issubclass(exc_type, KeyboardInterrupt):
        logger.info("operation_cancelled")
    else:
        logger.error("uncaught_exception", exc_info=(exc_type, exc_value, exc_traceback))
    sys.exit(1)


if __name__ == "__main__":
    sys.excepthook = handle_exception
    main(prog_name="hotfix-tools")
