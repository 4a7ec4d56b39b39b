"""Base classes for format parsers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Generic, TypeVar

import structlog
from pydantic import BaseModel

logger = structlog.get_logger()

T = TypeVar("T", bound=BaseModel)


class ManifestCorruptError(ValueError):
    """Raised when a decoded manifest violates its own size or offset invariants.

    Attributes:
        content_hash: Content hash of the offending entry, if known
    """

    def __init__(self, message: str, *, content_hash: str | None = None):
        self.content_hash = content_hash
        super().__init__(message)


class FormatParser(ABC, Generic[T]):
    """Base class for format parsers."""

    @abstractmethod
    def parse(self, data: bytes) -> T:
        """Parse binary data.

        Args:
            data: Binary data

        Returns:
            Parsed format object
        """
        ...

    def parse_file(self, path: str | Path) -> T:
        """Parse format from file.

        Args:
            path: File path

        Returns:
            Parsed format object
        """
        try:
            with open(path, "rb") as f:
                return self.parse(f.read())
        except OSError as e:
            logger.error("file_read_failed", path=str(path), error=str(e))
            raise ValueError(f"Cannot read file {path}: {e}") from e

    @abstractmethod
    def build(self, obj: T) -> bytes:
        """Build binary data from object.

        Args:
            obj: Format object

        Returns:
            Binary data
        """
        ...

    def validate(self, data: bytes) -> tuple[bool, str]:
        """Validate format data.

        Args:
            data: Binary data to validate

        Returns:
            Tuple of (is_valid, error_message)
        """
        try:
            obj = self.parse(data)
            rebuilt = self.build(obj)
            if data != rebuilt:
                return False, "Round-trip validation failed"
            return True, "Valid"
        except ValueError as e:
            return False, str(e)
