"""Persisted verification ledger for one release of a game.

The ledger file is a single JSON object mapping remote URLs to:

- a 32-character lowercase MD5: the file was downloaded and verified
- ``"not_found"``: the origin answered 404, do not ask again
- ``""``: the file has no known hash and is always checked again

Every mutation rewrites the whole file, so a crash loses at most the entry
being resolved.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

import structlog

from hotfix_tools.core.utils import strip_output_folder, validate_hash_string

logger = structlog.get_logger()

NOT_FOUND = "not_found"
ALWAYS_RECHECK = ""


class EntryState(Enum):
    """Kind of a ledger entry."""

    CONFIRMED = "confirmed"
    NOT_FOUND = "not_found"
    ALWAYS_RECHECK = "always_recheck"


@dataclass(frozen=True)
class CacheEntry:
    """Verification outcome recorded for one remote URL."""

    state: EntryState
    md5: str = ""

    @classmethod
    def confirmed(cls, md5: str) -> CacheEntry:
        return cls(EntryState.CONFIRMED, md5.lower())

    @classmethod
    def not_found(cls) -> CacheEntry:
        return cls(EntryState.NOT_FOUND)

    @classmethod
    def always_recheck(cls) -> CacheEntry:
        return cls(EntryState.ALWAYS_RECHECK)

    @classmethod
    def from_json(cls, value: str) -> CacheEntry:
        if value == NOT_FOUND:
            return cls.not_found()
        if value == ALWAYS_RECHECK:
            return cls.always_recheck()
        return cls.confirmed(value)

    def to_json(self) -> str:
        if self.state is EntryState.NOT_FOUND:
            return NOT_FOUND
        if self.state is EntryState.ALWAYS_RECHECK:
            return ALWAYS_RECHECK
        return self.md5

    def matches(self, md5: str) -> bool:
        """True if this is a confirmed entry for the given hash."""
        return self.state is EntryState.CONFIRMED and bool(md5) and self.md5 == md5.lower()


class Ledger:
    """Write-through URL -> CacheEntry map backed by a JSON file.

    Args:
        path: Backing file; its directory is created on first write
    """

    def __init__(self, path: Path):
        self.path = path
        self._entries: dict[str, CacheEntry] = {}
        self._by_relative: dict[str, list[str]] = {}

    @classmethod
    def load(cls, path: Path) -> Ledger:
        """Load a ledger. Missing or unreadable files yield an empty ledger."""
        ledger = cls(path)
        if not path.exists():
            logger.debug("ledger_missing", path=str(path))
            return ledger

        try:
            with open(path, encoding="utf-8") as f:
                loaded: Any = json.load(f)
        except (json.JSONDecodeError, OSError, UnicodeDecodeError) as e:
            logger.warning("ledger_load_failed", path=str(path), error=str(e))
            return ledger

        if not isinstance(loaded, dict):
            logger.warning("ledger_invalid_format", path=str(path), type=type(loaded).__name__)
            return ledger

        for url, value in loaded.items():
            if not isinstance(value, str):
                continue
            if value not in (NOT_FOUND, ALWAYS_RECHECK) and not validate_hash_string(value):
                logger.warning("ledger_entry_dropped", url=url, value=value)
                continue
            ledger._set(url, CacheEntry.from_json(value))

        logger.info("ledger_loaded", path=str(path), entries=len(ledger))
        return ledger

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: object) -> bool:
        return url in self._entries

    def get(self, url: str) -> CacheEntry | None:
        return self._entries.get(url)

    def put(self, url: str, entry: CacheEntry) -> None:
        """Record an entry and flush the whole ledger to disk."""
        self._set(url, entry)
        self.save()

    def find_equivalent(self, url: str, md5: str = "") -> tuple[str, CacheEntry] | None:
        """Find an entry for the same file under a different output folder.

        Every equivalent entry is considered. A confirmed entry for ``md5`` wins,
        then a ``not_found`` entry, then the last URL added.
        """
        others = [other for other in self._by_relative.get(strip_output_folder(url), []) if other != url]
        if not others:
            return None

        for other in others:
            if self._entries[other].matches(md5):
                return other, self._entries[other]
        for other in others:
            if self._entries[other].state is EntryState.NOT_FOUND:
                return other, self._entries[other]
        return others[-1], self._entries[others[-1]]

    def save(self) -> None:
        """Write the ledger atomically through a temporary file."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        data = {url: entry.to_json() for url, entry in self._entries.items()}

        temp_path = self.path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            temp_path.replace(self.path)
        except OSError as e:
            logger.error("ledger_save_failed", path=str(self.path), error=str(e))
            if temp_path.exists():
                temp_path.unlink()
            raise

    def _set(self, url: str, entry: CacheEntry) -> None:
        self._entries[url] = entry
        urls = self._by_relative.setdefault(strip_output_folder(url), [])
        if url not in urls:
            urls.append(url)
