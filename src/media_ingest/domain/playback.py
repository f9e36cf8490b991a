"""Domain models for playback access."""

from dataclasses import dataclass
from datetime import datetime
from enum import StrEnum


class ArtifactRole(StrEnum):
    """Which stored artifact a descriptor points at."""

    SOURCE = "source"
    SOURCE_CHUNK = "source_chunk"
    SEGMENT = "segment"


@dataclass(frozen=True)
class AccessDescriptor:
    """Signed read access to one stored artifact."""

    index: int
    role: ArtifactRole
    storage_key: str
    url: str
    expires_at: datetime


@dataclass(frozen=True)
class PlaybackResult:
    """Ordered descriptors for a session's playable artifacts."""

    session_id: str
    segmented: bool
    descriptors: list[AccessDescriptor]
