"""Pytest configuration and shared fixtures for hotfix_tools tests."""

import logging
import tempfile
from collections.abc import Callable, Generator
from pathlib import Path

import httpx
import pytest

from hotfix_tools.core.config import AppConfig, SyncConfig
from hotfix_tools.core.downloader import Downloader
from hotfix_tools.core.games import Channel, GameProfile
from hotfix_tools.core.types import ChannelKind, VersionSpec

BASE_URL = "https://cdn.test"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmp_dir:
        yield Path(tmp_dir)


@pytest.fixture(autouse=True)
def restore_root_logger() -> Generator[None, None, None]:
    """Undo level and handler changes made by --verbose or --debug."""
    root = logging.getLogger()
    level, handlers = root.level, list(root.handlers)
    yield
    root.setLevel(level)
    root.handlers[:] = handlers


@pytest.fixture
def fast_sync_config() -> SyncConfig:
    """Sync settings without backoff delays."""
    return SyncConfig(max_retries=2, base_backoff=0.0)


class FakeOrigin:
    """In-memory origin served through httpx.MockTransport.

    Unknown paths answer 404. Every request is recorded in ``requests``.
    """

    def __init__(self) -> None:
        self.files: dict[str, bytes] = {}
        self.statuses: dict[str, int] = {}
        self.requests: list[str] = []

    def add(self, url: str, content: bytes) -> None:
        self.files[url] = content

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        if url in self.statuses:
            return httpx.Response(self.statuses[url])
        if url in self.files:
            return httpx.Response(200, content=self.files[url])
        return httpx.Response(404)

    def client(self) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(self.handler))


@pytest.fixture
def origin() -> FakeOrigin:
    """Empty fake origin."""
    return FakeOrigin()


@pytest.fixture
def make_downloader(
    origin: FakeOrigin, fast_sync_config: SyncConfig
) -> Callable[..., Downloader]:
    """Factory for downloaders bound to the fake origin."""
    def factory(config: SyncConfig | None = None) -> Downloader:
        return Downloader(config or fast_sync_config, client=origin.client(), sleep=lambda _: None)
    return factory


@pytest.fixture
def mapper_profile() -> GameProfile:
    """Single-channel mapper profile pointing at the fake origin."""
    return GameProfile(
        name="testgame",
        base_url=BASE_URL,
        channels={
            "res": Channel(
                mode="client_game_res",
                clients=["client/Android"],
                mappers=["res_versions_external", "base_revision"],
                metadata_files=["base_revision"],
            ),
        },
        folder_rules={"AudioAssets": ["pck"]},
        releases={
            "1.0_live": [{"res": VersionSpec(version=100, suffix="abc123")}],
        },
    )


@pytest.fixture
def indexed_profile() -> GameProfile:
    """Block, design and script channels pointing at the fake origin."""
    clients = ["client/Android"]
    return GameProfile(
        name="indexed",
        base_url=BASE_URL,
        channels={
            "asb": Channel(mode="asb", kind=ChannelKind.BLOCK, clients=clients),
            "design": Channel(mode="design_data", kind=ChannelKind.DESIGN, clients=clients),
            "lua": Channel(mode="lua", kind=ChannelKind.SCRIPT, clients=clients),
        },
        releases={
            "V1.0Live": [
                {
                    "asb": VersionSpec(version=1, suffix="aa"),
                    "design": VersionSpec(version=2, suffix="bb"),
                    "lua": VersionSpec(version=3, suffix="cc"),
                },
            ],
        },
    )


@pytest.fixture
def app_config(temp_dir: Path) -> AppConfig:
    """Application config rooted in the temporary directory."""
    return AppConfig(cache_dir=temp_dir / "game")

