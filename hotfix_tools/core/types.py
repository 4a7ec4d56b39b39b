"""Core type definitions for hotfix_tools."""

from enum import StrEnum

from pydantic import BaseModel, Field


class ChannelKind(StrEnum):
    """How the resource list of a channel is discovered."""
    MAPPER = "mapper"
    BLOCK = "block"
    DESIGN = "design"
    SCRIPT = "script"


class Outcome(StrEnum):
    """Final state of one resource in a sync pass."""
    CACHED = "cached"
    CACHED_ABSENT = "cached_absent"
    VERIFIED = "verified"
    DOWNLOADED = "downloaded"
    NOT_FOUND = "not_found"
    UNRESOLVED = "unresolved"


class VersionSpec(BaseModel):
    """Output folder coordinates of one channel in a version group."""
    version: int = Field(..., description="Build version number")
    suffix: str = Field(..., description="Content hash suffix")

    @property
    def folder(self) -> str:
        return f"output_{self.version}_{self.suffix}"


class Resource(BaseModel):
    """A single downloadable unit."""
    url: str = Field(..., description="Canonical remote identifier")
    path: str = Field(..., description="Local path relative to the game mirror")
    md5: str = Field(default="", description="Expected MD5 (hex), empty if unknown")
