"""Sequential byte cursor used by the binary index parsers.

The hotfix index formats mix little-endian and big-endian fields in the same
record, so every fixed-width read names its byte order explicitly instead of
relying on a reader-wide default.
"""

from __future__ import annotations

import struct
from enum import Enum

import structlog

logger = structlog.get_logger()

_MASK32 = 0xFFFFFFFF
_MASK64 = 0xFFFFFFFFFFFFFFFF

# (width, signed) -> struct format character
_FORMATS: dict[tuple[int, bool], str] = {
    (1, False): "B",
    (1, True): "b",
    (2, False): "H",
    (2, True): "h",
    (4, False): "I",
    (4, True): "i",
    (8, False): "Q",
    (8, True): "q",
}


class Endian(Enum):
    """Byte order of a fixed-width field."""

    LITTLE = "<"
    BIG = ">"


class HashOrder(Enum):
    """Layout of a 16-byte digest on the wire.

    REVERSED digests are stored as four 4-byte words, each byte-reversed.
    STRAIGHT digests are stored exactly as their hex form reads.
    """

    REVERSED = "reversed"
    STRAIGHT = "straight"


class OutOfBoundsError(ValueError):
    """Raised when a read extends past the end of the buffer.

    Attributes:
        offset: Cursor position at the time of the read
        requested: Number of bytes the read needed
        available: Number of bytes left in the buffer
    """

    def __init__(self, offset: int, requested: int, available: int):
        self.offset = offset
        self.requested = requested
        self.available = available
        super().__init__(
            f"Read of {requested} bytes at offset {offset} exceeds buffer "
            f"({available} bytes remaining)"
        )


def swap32(value: int) -> int:
    """Reverse the byte order of a 32-bit word (halves first, then byte pairs)."""
    value = ((value >> 16) | (value << 16)) & _MASK32
    return (((value & 0xFF00FF00) >> 8) | ((value & 0x00FF00FF) << 8)) & _MASK32


def swap64(value: int) -> int:
    """Reverse the byte order of a 64-bit word in three stages."""
    value = ((value >> 32) | (value << 32)) & _MASK64
    value = (((value & 0xFFFF0000FFFF0000) >> 16) | ((value & 0x0000FFFF0000FFFF) << 16)) & _MASK64
    return (((value & 0xFF00FF00FF00FF00) >> 8) | ((value & 0x00FF00FF00FF00FF) << 8)) & _MASK64


def encode_varuint(value: int) -> bytes:
    """Encode a non-negative integer as base-128 little-endian groups."""
    if value < 0:
        raise ValueError("varuint cannot encode negative values")
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def zigzag_encode(value: int) -> int:
    """Map a signed integer onto the unsigned zig-zag domain."""
    return value * 2 if value >= 0 else -value * 2 - 1


def zigzag_decode(value: int) -> int:
    """Inverse of :func:`zigzag_encode`."""
    return -((value >> 1) + 1) if value & 1 else value >> 1


def encode_hash(hex_digest: str, order: HashOrder) -> bytes:
    """Encode a 32-character hex digest in the given wire layout."""
    raw = bytes.fromhex(hex_digest)
    if len(raw) != 16:
        raise ValueError(f"Digest must be 16 bytes, got {len(raw)}")
    if order is HashOrder.STRAIGHT:
        return raw
    return b"".join(raw[i:i + 4][::-1] for i in range(0, 16, 4))


class ByteCursor:
    """Forward-only reader over an immutable byte buffer.

    Args:
        data: Buffer to read
        swap: Read big-endian words as little-endian primitives and
            byte-swap them afterwards. Only affects the big-endian
            32-bit and 64-bit reads.
    """

    def __init__(self, data: bytes, swap: bool = False):
        self._data = bytes(data)
        self._position = 0
        self.swap = swap

    @property
    def position(self) -> int:
        """Current offset into the buffer."""
        return self._position

    @property
    def remaining(self) -> int:
        """Number of unread bytes."""
        return len(self._data) - self._position

    def __len__(self) -> int:
        return len(self._data)

    def _take(self, count: int) -> bytes:
        if count < 0:
            raise ValueError(f"Cannot read a negative byte count: {count}")
        if count > self.remaining:
            raise OutOfBoundsError(self._position, count, self.remaining)
        start = self._position
        self._position += count
        return self._data[start:self._position]

    def read_bytes(self, count: int) -> bytes:
        """Read ``count`` raw bytes."""
        return self._take(count)

    def skip(self, count: int) -> None:
        """Advance past ``count`` bytes, still bounds-checked."""
        self._take(count)

    def read_fixed(self, width: int, endian: Endian, signed: bool = False) -> int:
        """Read a fixed-width integer.

        Args:
            width: Field width in bytes (1, 2, 4 or 8)
            endian: Byte order of the field
            signed: Interpret as two's complement

        Returns:
            Decoded integer
        """
        fmt_char = _FORMATS.get((width, signed))
        if fmt_char is None:
            raise ValueError(f"Unsupported field width: {width}")

        if self.swap and endian is Endian.BIG and width in (4, 8):
            raw = struct.unpack("<" + fmt_char.upper(), self._take(width))[0]
            value = swap32(raw) if width == 4 else swap64(raw)
            if signed and value >= 1 << (width * 8 - 1):
                value -= 1 << (width * 8)
            return value

        return struct.unpack(endian.value + fmt_char, self._take(width))[0]

    def read_u8(self) -> int:
        return self.read_fixed(1, Endian.LITTLE)

    def read_i16_le(self) -> int:
        return self.read_fixed(2, Endian.LITTLE, signed=True)

    def read_i32_le(self) -> int:
        return self.read_fixed(4, Endian.LITTLE, signed=True)

    def read_u32_le(self) -> int:
        return self.read_fixed(4, Endian.LITTLE)

    def read_i64_le(self) -> int:
        return self.read_fixed(8, Endian.LITTLE, signed=True)

    def read_u64_le(self) -> int:
        return self.read_fixed(8, Endian.LITTLE)

    def read_i32_be(self) -> int:
        return self.read_fixed(4, Endian.BIG, signed=True)

    def read_u32_be(self) -> int:
        return self.read_fixed(4, Endian.BIG)

    def read_u64_be(self) -> int:
        return self.read_fixed(8, Endian.BIG)

    def read_var_uint(self) -> int:
        """Read a base-128 varint (low group first, high bit continues)."""
        result = 0
        shift = 0
        while True:
            byte = self._take(1)[0]
            result |= (byte & 0x7F) << shift
            if not byte & 0x80:
                return result
            shift += 7

    def read_zigzag_varint(self) -> int:
        """Read a zig-zag encoded signed varint."""
        return zigzag_decode(self.read_var_uint())

    def read_7bit_length(self) -> int:
        """Read a 7-bit encoded length, bounded to 32 bits."""
        start = self._position
        value = self.read_var_uint()
        if value > _MASK32:
            raise ValueError(f"7-bit encoded length at offset {start} exceeds 32 bits")
        return value

    def read_string(self) -> str:
        """Read a 7-bit length-prefixed UTF-8 string."""
        length = self.read_7bit_length()
        return self._take(length).decode("utf-8")

    def read_chars(self, count: int) -> str:
        """Read ``count`` bytes as UTF-8 text."""
        return self._take(count).decode("utf-8", errors="replace")

    def read_reversed_hash(self) -> str:
        """Read a digest stored as four byte-reversed 4-byte words."""
        raw = self._take(16)
        return b"".join(raw[i:i + 4][::-1] for i in range(0, 16, 4)).hex()

    def read_straight_hash(self) -> str:
        """Read a digest stored in plain byte order."""
        return self._take(16).hex()

    def read_hash(self, order: HashOrder) -> str:
        """Read a 16-byte digest using the given layout."""
        if order is HashOrder.REVERSED:
            return self.read_reversed_hash()
        return self.read_straight_hash()
