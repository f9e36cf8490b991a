"""Ingestion session record and its state machine."""

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, Field

from media_ingest.domain.errors import NotReady


class SessionStatus(StrEnum):
    """Lifecycle stage of an ingestion session."""

    UPLOADING = "uploading"
    PROCESSING = "processing"
    CHUNKED = "chunked"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadStrategy(StrEnum):
    """How the client delivers the source file."""

    MULTIPART = "multipart"
    SINGLE = "single"


_TRANSITIONS: dict[SessionStatus, set[SessionStatus]] = {
    SessionStatus.UPLOADING: {SessionStatus.PROCESSING, SessionStatus.FAILED},
    SessionStatus.PROCESSING: {SessionStatus.CHUNKED, SessionStatus.FAILED},
    SessionStatus.CHUNKED: {SessionStatus.ANALYZING, SessionStatus.FAILED},
    SessionStatus.ANALYZING: {SessionStatus.COMPLETED, SessionStatus.FAILED},
    SessionStatus.COMPLETED: set(),
    SessionStatus.FAILED: {
        SessionStatus.FAILED,
        SessionStatus.PROCESSING,
        SessionStatus.ANALYZING,
    },
}


class IngestionSession(BaseModel):
    """One uploaded media item and its progress through the pipeline."""

    id: str
    source_name: str
    source_size_bytes: int
    strategy: UploadStrategy
    status: SessionStatus = SessionStatus.UPLOADING
    total_chunks: int
    completed_chunk_indices: list[int] = Field(default_factory=list)
    segment_refs: list[str] | None = None
    analysis_result: dict[str, object] | None = None
    last_error: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    processed_at: datetime | None = None
    completed_at: datetime | None = None
    version: int = 0

    @property
    def remaining_chunk_indices(self) -> list[int]:
        """Chunk indices not yet recorded as uploaded."""
        completed = set(self.completed_chunk_indices)
        return [i for i in range(self.total_chunks) if i not in completed]

    @property
    def all_chunks_complete(self) -> bool:
        """Whether every declared chunk has been recorded."""
        return len(self.completed_chunk_indices) == self.total_chunks


def can_transition(session: IngestionSession, target: SessionStatus) -> bool:
    """Return whether ``session`` may move to ``target``."""
    if target not in _TRANSITIONS[session.status]:
        return False
    if session.status is not SessionStatus.FAILED:
        return True
    # Retries out of failed resume from the last stage that completed.
    if target is SessionStatus.PROCESSING:
        return session.segment_refs is None and session.all_chunks_complete
    if target is SessionStatus.ANALYZING:
        return session.segment_refs is not None
    return True


def ensure_transition(session: IngestionSession, target: SessionStatus) -> None:
    """Raise ``NotReady`` when ``session`` cannot move to ``target``."""
    if not can_transition(session, target):
        raise NotReady(
            f"Session {session.id} cannot move from {session.status} to {target}"
        )


def with_chunk(session: IngestionSession, chunk_index: int) -> IngestionSession:
    """Return a copy with ``chunk_index`` added to the completed set."""
    if chunk_index in session.completed_chunk_indices:
        return session
    indices = sorted({*session.completed_chunk_indices, chunk_index})
    return session.model_copy(update={"completed_chunk_indices": indices})
