"""Format parsers and builders for hotfix CDN manifests.

This module provides parsers for the manifest formats published by the
game update CDN:
- Byte cursor: mixed-endian reads, varints, reversed and straight hashes
- Block index: asset block descriptors (BlockV)
- File index: design-data (DesignV) and script (LuaV) indices
- Manifest header: the fixed header naming an index blob
- Mapper: text/JSON resource listings and the block archive listing
"""

from hotfix_tools.formats.base import FormatParser, ManifestCorruptError
from hotfix_tools.formats.block_index import (
    BlockEntry,
    BlockIndex,
    BlockIndexParser,
)
from hotfix_tools.formats.file_index import (
    DesignIndexParser,
    FileEntry,
    FileIndex,
    FileIndexParser,
    ScriptIndexParser,
    SubEntry,
)
from hotfix_tools.formats.header import ManifestHeader, ManifestHeaderParser
from hotfix_tools.formats.mapper import (
    ArchiveRecord,
    MapperRecord,
    parse_archive_listing,
    parse_mapper,
    parse_mapper_line,
)
from hotfix_tools.formats.reader import (
    ByteCursor,
    Endian,
    HashOrder,
    OutOfBoundsError,
)

__all__ = [
    # Base
    "FormatParser",
    "ManifestCorruptError",
    # Reader
    "ByteCursor",
    "Endian",
    "HashOrder",
    "OutOfBoundsError",
    # Block index
    "BlockEntry",
    "BlockIndex",
    "BlockIndexParser",
    # File index
    "DesignIndexParser",
    "FileEntry",
    "FileIndex",
    "FileIndexParser",
    "ScriptIndexParser",
    "SubEntry",
    # Header
    "ManifestHeader",
    "ManifestHeaderParser",
    # Mapper
    "ArchiveRecord",
    "MapperRecord",
    "parse_archive_listing",
    "parse_mapper",
    "parse_mapper_line",
]
