"""Core functionality for hotfix_tools.

This module provides shared functionality used across the entire package:
- Configuration management
- Type definitions and game release tables
- Utility functions and integrity checks
- Verification ledger, downloader and sync engine
- In-flight registry for the serving path
"""

from hotfix_tools.core.types import (
    ChannelKind,
    Outcome,
    Resource,
    VersionSpec,
)
from hotfix_tools.core.utils import (
    chunked_read,
    compute_file_md5,
    compute_md5,
    extract_md5,
    format_size,
    strip_output_folder,
    validate_hash_string,
)

__all__ = [
    # Types
    "ChannelKind",
    "Outcome",
    "Resource",
    "VersionSpec",
    # Utils
    "chunked_read",
    "compute_file_md5",
    "compute_md5",
    "extract_md5",
    "format_size",
    "strip_output_folder",
    "validate_hash_string",
]
