"""Shared utilities for hotfix-tools."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterator
from pathlib import Path
from typing import BinaryIO

_MD5_IN_PATH = re.compile(r"/([a-f0-9]{32})\.")
_OUTPUT_FOLDER = re.compile(r"output_\d+_[a-f0-9]+/")
_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f-\x9f]")


def compute_md5(data: bytes) -> str:
    """Compute the hex MD5 of a buffer.

    Example:
        >>> compute_md5(b"hello")
        '5d41402abc4b2a76b9719d911017c592'
    """
    return hashlib.md5(data).hexdigest()


def chunked_read(
    stream: BinaryIO,
    chunk_size: int = 8192
) -> Iterator[bytes]:
    """Read stream in chunks.

    Args:
        stream: Binary stream to read from
        chunk_size: Size of each chunk in bytes

    Yields:
        Data chunks as bytes

    Raises:
        ValueError: If chunk_size is not positive
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")

    while True:
        chunk = stream.read(chunk_size)
        if not chunk:
            break
        yield chunk


def compute_file_md5(path: Path, chunk_size: int = 1024 * 1024) -> str | None:
    """Compute the hex MD5 of a file.

    Returns:
        Hex digest, or None if the file cannot be read
    """
    digest = hashlib.md5()
    try:
        with open(path, "rb") as f:
            for chunk in chunked_read(f, chunk_size):
                digest.update(chunk)
    except OSError:
        return None
    return digest.hexdigest()


def extract_md5(url: str) -> str | None:
    """Recover a content hash embedded in a URL path.

    The hash must be a 32-character lowercase hex path segment followed by a dot.

    Example:
        >>> extract_md5("https://cdn/x/0123456789abcdef0123456789abcdef.block")
        '0123456789abcdef0123456789abcdef'
        >>> extract_md5("https://cdn/x/DesignV_0123.bytes") is None
        True
    """
    match = _MD5_IN_PATH.search(url)
    return match.group(1) if match else None


def strip_output_folder(url: str) -> str:
    """Remove the ``output_<version>_<suffix>/`` segment from a URL or path."""
    return _OUTPUT_FOLDER.sub("", url, count=1)


def clean_url(url: str) -> str:
    """Drop control characters and surrounding whitespace."""
    return _CONTROL_CHARS.sub("", url).strip()


def format_size(size: int) -> str:
    """Format byte size as human-readable string.

    Example:
        >>> format_size(1024)
        '1.0 KB'
        >>> format_size(1536)
        '1.5 KB'
    """
    if size < 0:
        return "0 B"

    size_float = float(size)
    for unit in ["B", "KB", "MB", "GB", "TB"]:
        if size_float < 1024.0:
            if unit == "B":
                return f"{int(size_float)} {unit}"
            return f"{size_float:.1f} {unit}"
        size_float /= 1024.0
    return f"{size_float:.1f} PB"


def validate_hash_string(hash_str: str) -> bool:
    """Validate a 32-character hex MD5 string.

    Example:
        >>> validate_hash_string("5d41402abc4b2a76b9719d911017c592")
        True
        >>> validate_hash_string("invalid")
        False
    """
    if len(hash_str) != 32:
        return False
    try:
        bytes.fromhex(hash_str)
        return True
    except ValueError:
        return False
