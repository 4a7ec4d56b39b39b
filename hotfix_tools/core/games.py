"""Release tables of the supported games.

These tables are plain data: the sync engine only ever sees a release name
and its version groups. Version groups must be listed in ascending order,
since later groups can reference files that only exist next to earlier ones.
"""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import BaseModel, Field

from hotfix_tools.core.types import ChannelKind, VersionSpec

logger = structlog.get_logger()

VersionGroup = dict[str, VersionSpec]


class Channel(BaseModel):
    """A remote content folder family and how to enumerate it."""

    mode: str = Field(..., description="Remote mode folder, e.g. client_game_res")
    kind: ChannelKind = Field(default=ChannelKind.MAPPER, description="Enumeration strategy")
    clients: list[str] = Field(default_factory=list, description="Client sub-paths")
    mappers: list[str] = Field(default_factory=list, description="Mapper files listing resources")
    metadata_files: list[str] = Field(
        default_factory=list,
        description="Mapper files downloaded but never expanded"
    )
    skip_names: list[str] = Field(
        default_factory=lambda: ["svc_catalog"],
        description="Record names that are never downloaded"
    )
    byte_swap: bool = Field(
        default=False,
        description="Decode big-endian index fields through the byte-swap path"
    )


class GameProfile(BaseModel):
    """Everything needed to mirror one game."""

    name: str = Field(..., description="Game identifier, also the mirror folder name")
    base_url: str = Field(..., description="Origin base URL")
    channels: dict[str, Channel] = Field(default_factory=dict, description="Channels by key")
    folder_rules: dict[str, list[str]] = Field(
        default_factory=dict,
        description="Sub-folder name -> file extensions routed into it"
    )
    releases: dict[str, list[VersionGroup]] = Field(
        default_factory=dict,
        description="Release name -> ascending version groups"
    )


GENSHIN = GameProfile(
    name="genshin",
    base_url="https://autopatchhk.yuanshen.com",
    channels={
        "res": Channel(
            mode="client_game_res",
            clients=["client/Android"],
            mappers=[
                "res_versions_external",
                "res_versions_medium",
                "res_versions_streaming",
                "release_res_versions_external",
                "release_res_versions_medium",
                "release_res_versions_streaming",
                "AudioAssets/audio_versions",
                "base_revision",
                "script_version",
                "patch_node_versions",
                "vulkan_gpu_list_config.txt",
            ],
            metadata_files=[
                "base_revision",
                "script_version",
                "patch_node_versions",
                "vulkan_gpu_list_config.txt",
            ],
        ),
        "clientSilence": Channel(
            mode="client_design_data",
            clients=["client_silence/General/AssetBundles"],
            mappers=["data_versions"],
        ),
        "client": Channel(
            mode="client_design_data",
            clients=["client/General/AssetBundles"],
            mappers=["data_versions"],
        ),
    },
    folder_rules={
        "AudioAssets": ["pck"],
        "VideoAssets": ["cuepoint", "usm"],
        "AssetBundles": ["blk"],
    },
    releases={
        "1.0_rel": [
            {
                "res": VersionSpec(version=1135452, suffix="1dda342ed1"),
                "clientSilence": VersionSpec(version=1141718, suffix="f1b1d4173a"),
                "client": VersionSpec(version=1146939, suffix="35b7968eda"),
            },
            {
                "res": VersionSpec(version=1139692, suffix="d2f2ff22c7"),
            },
        ],
        "1.0_live": [
            {
                "res": VersionSpec(version=1284249, suffix="ba7ad33643"),
                "clientSilence": VersionSpec(version=1358691, suffix="cdc3f383ef"),
                "client": VersionSpec(version=1358691, suffix="cdc3f383ef"),
            },
            {
                "clientSilence": VersionSpec(version=1393824, suffix="2599c61c7b"),
            },
        ],
    },
)

_SR_CLIENTS = ["client/Android", "client/Windows", "client/iOS"]

STARRAILS = GameProfile(
    name="starrails",
    base_url="https://autopatchos.starrails.com",
    channels={
        "asb": Channel(mode="asb", kind=ChannelKind.BLOCK, clients=_SR_CLIENTS),
        "design": Channel(mode="design_data", kind=ChannelKind.DESIGN, clients=_SR_CLIENTS),
        "lua": Channel(mode="lua", kind=ChannelKind.SCRIPT, clients=_SR_CLIENTS),
    },
    releases={
        "V3.0Live": [
            {
                "asb": VersionSpec(version=9341358, suffix="d0c774f35be6"),
                "design": VersionSpec(version=9355287, suffix="7427e93fd0f0"),
                "lua": VersionSpec(version=9342153, suffix="d83b3bb34d87"),
            },
        ],
    },
)

BUILTIN_PROFILES: dict[str, GameProfile] = {
    GENSHIN.name: GENSHIN,
    STARRAILS.name: STARRAILS,
}


def load_profiles(path: Path | None = None) -> dict[str, GameProfile]:
    """Load game profiles.

    Args:
        path: JSON file holding a list of profiles; built-ins when None

    Returns:
        Profiles keyed by game name. Entries from the file replace built-ins.
    """
    profiles = dict(BUILTIN_PROFILES)
    if path is None:
        return profiles

    with open(path, encoding="utf-8") as f:
        data = json.load(f)

    for item in data:
        profile = GameProfile.model_validate(item)
        profiles[profile.name] = profile

    logger.info("profiles_loaded", path=str(path), games=sorted(profiles))
    return profiles
