"""Block archive index (BlockV) parser.

Layout::

    header      20 bytes, opaque
    count       int32 little-endian
    reserved    4 bytes
    count x {
        name    16 bytes, reversed hash
        asset   int32 little-endian; high nibble of byte 2 marks the base layer
        size    int32 big-endian
    }
"""

from __future__ import annotations

import struct
from io import BytesIO

import structlog
from pydantic import BaseModel, ConfigDict, Field

from hotfix_tools.formats.base import FormatParser
from hotfix_tools.formats.reader import ByteCursor, HashOrder, encode_hash

logger = structlog.get_logger()

HEADER_SIZE = 20


class BlockEntry(BaseModel):
    """Single asset block descriptor."""

    model_config = ConfigDict(frozen=True)

    name_hash: str = Field(description="Asset name digest (hex)")
    asset_id: int = Field(description="Numeric asset id (int32)")
    size: int = Field(description="Block size in bytes")
    is_base_layer: bool = Field(description="Block lives in the current output folder")

    @property
    def file_name(self) -> str:
        """Remote file name of the block."""
        return f"{self.name_hash}.block"


class BlockIndex(BaseModel):
    """Decoded block archive index."""

    header: bytes = Field(default=b"\x00" * HEADER_SIZE, description="Opaque 20-byte header")
    reserved: bytes = Field(default=b"\x00" * 4, description="Field following the count")
    entries: list[BlockEntry] = Field(default_factory=list, description="Block entries")

    @property
    def count(self) -> int:
        return len(self.entries)


def is_base_layer(raw_asset: bytes) -> bool:
    """Decode the base-layer flag from the raw 4-byte asset field."""
    return (raw_asset[2] >> 4) > 0


class BlockIndexParser(FormatParser[BlockIndex]):
    """Parser for block archive indices.

    Args:
        swap: Enable the byte-swap mode of the underlying cursor
    """

    def __init__(self, swap: bool = False):
        self.swap = swap

    def parse(self, data: bytes) -> BlockIndex:
        cursor = ByteCursor(data, swap=self.swap)

        header = cursor.read_bytes(HEADER_SIZE)
        count = cursor.read_i32_le()
        reserved = cursor.read_bytes(4)

        if count < 0:
            raise ValueError(f"Negative block count: {count}")

        entries: list[BlockEntry] = []
        for _ in range(count):
            name_hash = cursor.read_hash(HashOrder.REVERSED)
            raw_asset = cursor.read_bytes(4)
            size = cursor.read_i32_be()
            entries.append(BlockEntry(
                name_hash=name_hash,
                asset_id=struct.unpack("<i", raw_asset)[0],
                size=size,
                is_base_layer=is_base_layer(raw_asset),
            ))

        logger.debug("block_index_parsed", count=count, consumed=cursor.position)
        return BlockIndex(header=header, reserved=reserved, entries=entries)

    def build(self, obj: BlockIndex) -> bytes:
        result = BytesIO()
        result.write(obj.header)
        result.write(struct.pack("<i", len(obj.entries)))
        result.write(obj.reserved)
        for entry in obj.entries:
            result.write(encode_hash(entry.name_hash, HashOrder.REVERSED))
            result.write(struct.pack("<i", entry.asset_id))
            result.write(struct.pack(">i", entry.size))
        return result.getvalue()
