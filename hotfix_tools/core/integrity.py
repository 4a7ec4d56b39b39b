"""Content integrity verification for mirrored files.

Every remote resource with a known content hash is verified by hashing the
file on disk. Verification happens before a download (to skip valid files)
and once after it (to confirm the transfer).
"""

from __future__ import annotations

from pathlib import Path

import structlog

from hotfix_tools.core.utils import compute_file_md5

logger = structlog.get_logger()


class IntegrityError(Exception):
    """Raised when content verification fails.

    Attributes:
        expected: Expected hash as hex string
        actual: Actual hash as hex string, None if the file is missing
        path: File that was checked
    """

    def __init__(
        self,
        message: str,
        *,
        expected: str | None = None,
        actual: str | None = None,
        path: Path | None = None,
    ):
        self.expected = expected
        self.actual = actual
        self.path = path
        super().__init__(message)


def file_matches(path: Path, expected_md5: str) -> bool:
    """Check whether a file on disk has the expected MD5.

    Missing or unreadable files never match.
    """
    if not expected_md5:
        return False
    actual = compute_file_md5(path)
    return actual is not None and actual == expected_md5.lower()


def verify_file(path: Path, expected_md5: str) -> None:
    """Verify a file on disk against its expected MD5.

    Raises:
        IntegrityError: If the file is missing or the hash differs
    """
    actual = compute_file_md5(path)
    if actual != expected_md5.lower():
        raise IntegrityError(
            f"Content hash mismatch for {path}: expected {expected_md5}, got {actual}",
            expected=expected_md5,
            actual=actual,
            path=path,
        )
