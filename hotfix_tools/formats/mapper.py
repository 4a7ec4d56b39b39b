"""Text manifest parsers: mapper files and the block archive listing.

Mapper lines come in two encodings::

    res_versions_external 0123456789abcdef0123456789abcdef|4096
    blocks/00/12345.blk 0123456789abcdef0123456789abcdef|1024 P local.blk
    {"remoteName": "...", "md5": "...", "fileSize": 4096}

A third token marks a patch-only record and a fourth supplies a local name.
Lines without a ``hash|size`` token are version markers and carry no file.
"""

from __future__ import annotations

import json

import structlog
from pydantic import BaseModel, ConfigDict, Field

logger = structlog.get_logger()


class MapperRecord(BaseModel):
    """Remote file record listed by a mapper."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    remote_name: str = Field(alias="remoteName", description="Remote file name")
    md5: str = Field(default="", description="Expected MD5 (hex)")
    file_size: int = Field(default=0, alias="fileSize", description="File size in bytes")
    is_patch: bool = Field(default=False, alias="isPatch", description="Patch-only record")
    local_name: str | None = Field(default=None, alias="localName", description="Alternate local name")

    @property
    def extension(self) -> str:
        """Extension of the remote name, without the dot."""
        return self.remote_name.rsplit(".", 1)[-1] if "." in self.remote_name else ""


class ArchiveRecord(BaseModel):
    """Line of the block archive listing (M_ArchiveV.bytes)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    major_version: int = Field(default=0, alias="MajorVersion")
    minor_version: int = Field(default=0, alias="MinorVersion")
    patch_version: int = Field(default=0, alias="PatchVersion")
    prev_patch: int = Field(default=0, alias="PrevPatch")
    content_hash: str = Field(alias="ContentHash")
    file_size: int = Field(default=0, alias="FileSize")
    timestamp: int = Field(default=0, alias="TimeStamp")
    file_name: str = Field(alias="FileName")
    base_assets_download_url: str = Field(default="", alias="BaseAssetsDownloadUrl")

    @property
    def is_block_index(self) -> bool:
        return "M_BlockV" in self.file_name


def parse_mapper_line(line: str) -> MapperRecord | None:
    """Parse one mapper line.

    Args:
        line: Raw line, with or without trailing newline

    Returns:
        Parsed record, or None for blank lines and version markers

    Raises:
        ValueError: If the line looks like a record but is malformed
    """
    line = line.strip()
    if not line:
        return None

    if line.startswith("{"):
        data = json.loads(line)
        if not isinstance(data, dict) or not data.get("remoteName"):
            return None
        return MapperRecord.model_validate(data)

    parts = line.split(" ")
    if len(parts) < 2 or "|" not in parts[1]:
        return None

    md5, _, size = parts[1].partition("|")
    try:
        file_size = int(size)
    except ValueError as e:
        raise ValueError(f"Invalid size in mapper line: {line!r}") from e

    return MapperRecord(
        remote_name=parts[0],
        md5=md5.lower(),
        file_size=file_size,
        is_patch=len(parts) > 2,
        local_name=parts[3] if len(parts) > 3 else None,
    )


def parse_mapper(text: str) -> list[MapperRecord]:
    """Parse a whole mapper file, dropping version markers."""
    records: list[MapperRecord] = []
    markers = 0
    for line in text.splitlines():
        record = parse_mapper_line(line)
        if record is None:
            if line.strip():
                markers += 1
            continue
        records.append(record)

    logger.debug("mapper_parsed", records=len(records), markers=markers)
    return records


def parse_archive_listing(text: str) -> list[ArchiveRecord]:
    """Parse the JSON-lines block archive listing."""
    return [
        ArchiveRecord.model_validate(json.loads(line))
        for line in text.splitlines()
        if line.strip()
    ]
