"""Manifest header parser (M_DesignV.bytes, M_LuaV.bytes).

The header names the index blob that follows it through ``index_hash``.
"""

from __future__ import annotations

import struct
from io import BytesIO

import structlog
from pydantic import BaseModel, Field

from hotfix_tools.formats.base import FormatParser
from hotfix_tools.formats.reader import ByteCursor, HashOrder, encode_hash, encode_varuint

logger = structlog.get_logger()


class ManifestHeader(BaseModel):
    """Fixed-layout manifest header."""

    magic: str = Field(description="4-character tag")
    metadata_size: int = Field(description="Metadata info size")
    revision_id: int = Field(description="Remote revision id")
    index_hash: str = Field(description="Content hash of the index blob (hex)")
    asset_list_size: int = Field(description="Asset list file size")
    asset_list_timestamp: int = Field(description="Asset list unix timestamp")
    asset_list_root_path: str = Field(default="", description="Asset list root path")


class ManifestHeaderParser(FormatParser[ManifestHeader]):
    """Parser for manifest headers."""

    def parse(self, data: bytes) -> ManifestHeader:
        cursor = ByteCursor(data)

        magic = cursor.read_chars(4)
        cursor.skip(2)
        metadata_size = cursor.read_i32_le()
        cursor.skip(0xE)
        revision_id = cursor.read_i32_le()
        index_hash = cursor.read_hash(HashOrder.REVERSED)
        asset_list_size = cursor.read_u32_le()
        cursor.skip(4)
        asset_list_timestamp = cursor.read_u64_le()
        asset_list_root_path = cursor.read_string()

        header = ManifestHeader(
            magic=magic,
            metadata_size=metadata_size,
            revision_id=revision_id,
            index_hash=index_hash,
            asset_list_size=asset_list_size,
            asset_list_timestamp=asset_list_timestamp,
            asset_list_root_path=asset_list_root_path,
        )
        logger.debug("manifest_header_parsed", **header.model_dump())
        return header

    def build(self, obj: ManifestHeader) -> bytes:
        """Build header bytes. Skipped regions are written as zeros."""
        magic = obj.magic.encode("utf-8")
        if len(magic) != 4:
            raise ValueError(f"Magic must be 4 bytes, got {len(magic)}")
        root_path = obj.asset_list_root_path.encode("utf-8")

        result = BytesIO()
        result.write(magic)
        result.write(b"\x00" * 2)
        result.write(struct.pack("<i", obj.metadata_size))
        result.write(b"\x00" * 0xE)
        result.write(struct.pack("<i", obj.revision_id))
        result.write(encode_hash(obj.index_hash, HashOrder.REVERSED))
        result.write(struct.pack("<I", obj.asset_list_size))
        result.write(b"\x00" * 4)
        result.write(struct.pack("<Q", obj.asset_list_timestamp))
        result.write(encode_varuint(len(root_path)))
        result.write(root_path)
        return result.getvalue()
