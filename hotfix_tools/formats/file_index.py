"""File index parser shared by the design-data (DesignV) and script (LuaV) indices.

Layout::

    format_marker   uint64 little-endian
    file_count      int32 big-endian
    aux_marker      int32 little-endian
    file_count x FileEntry {
        name_hash       int32 big-endian
        content_hash    16 bytes, straight hash
        declared_size   uint64 big-endian
        sub_count       uint32 big-endian
        sub_count x SubEntry {
            name_hash   int32 big-endian
            size        uint32 big-endian
            offset      uint32 big-endian
        }
        trailing_flag   uint8
    }

Sub-entry offsets must be the running sum of the preceding sizes and the
declared size must equal the sum of all sub-entry sizes. Either violation
aborts the whole index, since every later record would be misaligned.
"""

from __future__ import annotations

import struct
from io import BytesIO

import structlog
from pydantic import BaseModel, Field

from hotfix_tools.formats.base import FormatParser, ManifestCorruptError
from hotfix_tools.formats.reader import ByteCursor, HashOrder, encode_hash

logger = structlog.get_logger()


class SubEntry(BaseModel):
    """Chunk of a file entry."""

    name_hash: int = Field(description="Chunk name hash (int32)")
    size: int = Field(description="Chunk size in bytes")
    offset: int = Field(description="Chunk offset within the file")


class FileEntry(BaseModel):
    """File record of a file index."""

    name_hash: int = Field(description="File name hash (int32)")
    content_hash: str = Field(description="Content MD5 (hex, wire order)")
    declared_size: int = Field(description="Declared total size")
    sub_entries: list[SubEntry] = Field(default_factory=list, description="Chunks in offset order")
    trailing_flag: int = Field(default=0, description="Trailing flag byte")

    @property
    def size(self) -> int:
        """Sum of the chunk sizes."""
        return sum(sub.size for sub in self.sub_entries)

    @property
    def file_name(self) -> str:
        """Remote file name of the content."""
        return f"{self.content_hash}.bytes"


class FileIndex(BaseModel):
    """Decoded file index."""

    format_marker: int = Field(default=0, description="Leading 64-bit marker")
    aux_marker: int = Field(default=0, description="32-bit marker after the count")
    files: list[FileEntry] = Field(default_factory=list, description="File entries")

    @property
    def file_count(self) -> int:
        return len(self.files)

    def recalc_offsets(self) -> None:
        """Rewrite every sub-entry offset as the running sum of sizes."""
        for file in self.files:
            offset = 0
            for sub in file.sub_entries:
                sub.offset = offset
                offset += sub.size


def check_entry(entry: FileEntry) -> None:
    """Verify the prefix-sum and declared-size invariants of one entry.

    Raises:
        ManifestCorruptError: If either invariant does not hold
    """
    expected = 0
    for position, sub in enumerate(entry.sub_entries):
        if sub.offset != expected:
            raise ManifestCorruptError(
                f"Offset mismatch in {entry.content_hash} at chunk {position}: "
                f"expected {expected}, read {sub.offset}",
                content_hash=entry.content_hash,
            )
        expected += sub.size

    if entry.declared_size != expected:
        raise ManifestCorruptError(
            f"Size mismatch in {entry.content_hash}: read {entry.declared_size}, "
            f"calc {expected} (diff {entry.declared_size - expected})",
            content_hash=entry.content_hash,
        )


class FileIndexParser(FormatParser[FileIndex]):
    """Parser for file indices."""

    kind = "file"

    def __init__(self, swap: bool = False):
        self.swap = swap

    def parse(self, data: bytes) -> FileIndex:
        cursor = ByteCursor(data, swap=self.swap)

        format_marker = cursor.read_u64_le()
        file_count = cursor.read_i32_be()
        aux_marker = cursor.read_i32_le()

        if file_count < 0:
            raise ValueError(f"Negative file count: {file_count}")

        files = [self._parse_entry(cursor) for _ in range(file_count)]

        logger.debug("file_index_parsed", kind=self.kind, files=file_count, consumed=cursor.position)
        return FileIndex(format_marker=format_marker, aux_marker=aux_marker, files=files)

    def _parse_entry(self, cursor: ByteCursor) -> FileEntry:
        name_hash = cursor.read_i32_be()
        content_hash = cursor.read_hash(HashOrder.STRAIGHT)
        declared_size = cursor.read_u64_be()
        sub_count = cursor.read_u32_be()

        sub_entries = [
            SubEntry(
                name_hash=cursor.read_i32_be(),
                size=cursor.read_u32_be(),
                offset=cursor.read_u32_be(),
            )
            for _ in range(sub_count)
        ]
        trailing_flag = cursor.read_u8()

        entry = FileEntry(
            name_hash=name_hash,
            content_hash=content_hash,
            declared_size=declared_size,
            sub_entries=sub_entries,
            trailing_flag=trailing_flag,
        )
        check_entry(entry)
        return entry

    def build(self, obj: FileIndex) -> bytes:
        result = BytesIO()
        result.write(struct.pack("<Q", obj.format_marker))
        result.write(struct.pack(">i", len(obj.files)))
        result.write(struct.pack("<i", obj.aux_marker))

        for entry in obj.files:
            result.write(struct.pack(">i", entry.name_hash))
            result.write(encode_hash(entry.content_hash, HashOrder.STRAIGHT))
            result.write(struct.pack(">Q", entry.declared_size))
            result.write(struct.pack(">I", len(entry.sub_entries)))
            for sub in entry.sub_entries:
                result.write(struct.pack(">iII", sub.name_hash, sub.size, sub.offset))
            result.write(struct.pack("B", entry.trailing_flag))

        return result.getvalue()


class DesignIndexParser(FileIndexParser):
    """Parser for design-data indices (DesignV_*.bytes)."""

    kind = "design"


class ScriptIndexParser(FileIndexParser):
    """Parser for script indices (LuaV_*.bytes)."""

    kind = "script"
