"""Hotfix Tools - mirror game hotfix CDN content into a local tree.

This package decodes the manifest formats published by a game update CDN
and keeps a verified, resumable local mirror of the files they list.

Key modules:
- core: Shared functionality (config, ledger, downloader, sync engine)
- formats: Binary and text manifest parsers
- server: On-demand serving of the mirror
- commands: CLI command implementations
"""

__version__ = "0.1.0"
__author__ = "Hotfix Tools Team"

# Re-export commonly used types
from hotfix_tools.core.types import (
    ChannelKind,
    Outcome,
    VersionSpec,
)

__all__ = [
    "__version__",
    "__author__",
    "ChannelKind",
    "Outcome",
    "VersionSpec",
]
