"""Domain models for upload credentials and progress."""

from dataclasses import dataclass
from datetime import datetime

from media_ingest.domain.sessions import SessionStatus, UploadStrategy


@dataclass(frozen=True)
class WriteCredential:
    """Time-limited capability to write one object-store key."""

    chunk_index: int
    upload_url: str
    storage_key: str
    expires_at: datetime


@dataclass(frozen=True)
class UploadTicket:
    """Result of initiating an upload."""

    session_id: str
    strategy: UploadStrategy
    total_chunks: int
    credentials: list[WriteCredential]


@dataclass(frozen=True)
class UploadProgress:
    """Snapshot of chunk completion for resumable uploads."""

    session_id: str
    status: SessionStatus
    total_chunks: int
    completed_chunk_indices: list[int]
    remaining_chunk_indices: list[int]
    last_error: str | None = None

    @property
    def progress(self) -> str:
        """Human-readable ``completed/total`` counter."""
        return f"{len(self.completed_chunk_indices)}/{self.total_chunks}"
