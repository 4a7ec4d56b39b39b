"""Serve command for the on-demand mirror."""

from __future__ import annotations

import click
import structlog
import uvicorn

from hotfix_tools.core.config import AppConfig
from hotfix_tools.server.app import create_app

logger = structlog.get_logger()


@click.command()
@click.option("--host", help="Bind address (default from config)")
@click.option("--port", "-p", type=int, help="Bind port (default from config)")
@click.pass_context
def serve(ctx: click.Context, host: str | None, port: int | None) -> None:
    """Serve the local mirror, fetching missing files from the origin."""
    config: AppConfig = ctx.obj["config"]

    host = host or config.serve.host
    port = port or config.serve.port

    logger.info("serve_start", host=host, port=port, cache_dir=str(config.cache_dir))
    uvicorn.run(create_app(config), host=host, port=port, log_level=config.log_level.lower())
