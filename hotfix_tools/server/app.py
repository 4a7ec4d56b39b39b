"""On-demand serving of the local mirror.

``GET /data_game/{game}/{path}`` serves the cached file when present.
Otherwise the file is fetched from the game's origin, stored, and served.
A request for a file that another request is already fetching, or whose
fetch fails, is redirected to the origin.
"""

from __future__ import annotations


import httpx
import structlog
from fastapi import FastAPI, Request
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, RedirectResponse, Response

from hotfix_tools.core.config import AppConfig, SyncConfig
from hotfix_tools.core.downloader import Downloader, FetchError
from hotfix_tools.core.inflight import InFlightRegistry

logger = structlog.get_logger()


def _redirect(url: str) -> RedirectResponse:
    return RedirectResponse(url, status_code=302)


def create_app(
    config: AppConfig | None = None,
    registry: InFlightRegistry | None = None,
    client: httpx.Client | None = None,
) -> FastAPI:
    """Build the serving application.

    Args:
        config: Application configuration (cache root, origins, timeouts)
        registry: In-flight registry; a fresh empty one when None
        client: Optional HTTP client used for origin fetches
    """
    config = config or AppConfig()
    app = FastAPI(title="Hotfix Server")
    app.state.registry = registry or InFlightRegistry()
    app.state.downloader = Downloader(
        SyncConfig(
            timeout=config.serve.fetch_timeout,
            max_retries=1,
            slow_speed_threshold=0,
            verify_ssl=config.sync.verify_ssl,
        ),
        client=client,
    )

    @app.get("/", response_class=PlainTextResponse)
    def index() -> str:
        return "Hotfix Server :)"

    @app.get("/data_game/{game}/{path:path}")
    def data_game(game: str, path: str, request: Request) -> Response:
        client_ip = request.client.host if request.client else "?"
        log = logger.bind(ip=client_ip, game=game, path=path)

        origin = config.serve.origins.get(game)
        if origin is None:
            log.warning("unknown_game")
            return JSONResponse({"code": 0, "message": "Not found"}, status_code=404)

        base = config.game_dir(game).resolve()
        file_path = (base / path).resolve()
        if not file_path.is_relative_to(base) or file_path == base:
            log.warning("path_rejected")
            return JSONResponse({"code": 0, "message": "Bad path"}, status_code=400)

        remote = origin.resolve(path)
        registry: InFlightRegistry = app.state.registry

        if file_path.is_file():
            log.debug("cache_hit", file=str(file_path))
        else:
            with registry.claim(remote) as owned:
                if not owned:
                    log.warning("fetch_in_progress", url=remote)
                    return _redirect(remote)

                log.info("cache_miss", url=remote, file=str(file_path))
                try:
                    app.state.downloader.fetch_to_file(remote, file_path)
                except (FetchError, OSError) as e:
                    log.error("fetch_failed", url=remote, error=str(e))
                    return _redirect(remote)
                log.info("fetch_done", url=remote, file=str(file_path))

        return FileResponse(file_path, filename=file_path.name)

    return app
