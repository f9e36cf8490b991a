"""Upload coordination for resumable chunked or single-object uploads."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from uuid import uuid4

from media_ingest.domain import storage_keys
from media_ingest.domain.errors import ExternalFailure, InvalidRequest, NotReady
from media_ingest.domain.sessions import (
    IngestionSession,
    SessionStatus,
    UploadStrategy,
    with_chunk,
)
from media_ingest.domain.uploads import UploadProgress, UploadTicket, WriteCredential
from media_ingest.services.session_store import SessionStoreAdapter
from media_ingest.services.storage import ObjectStore

logger = logging.getLogger(__name__)


class ChunkOutcome(StrEnum):
    """Client-reported result of one chunk upload."""

    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class UploadCoordinator:
    """Issues write credentials and tracks which chunks have landed."""

    sessions: SessionStoreAdapter
    object_store: ObjectStore
    upload_url_ttl_seconds: int = 7200
    max_chunk_count: int = 10_000

    def initiate(
        self,
        source_name: str | None,
        source_size_bytes: int | None,
        chunk_count: int | None = None,
    ) -> UploadTicket:
        """Create a session and return its write credentials.

        With ``chunk_count`` the client uploads that many byte ranges, one
        credential each. Without it the client uploads the whole file through
        a single credential and segmentation decides the split later.
        """
        if not source_name or not source_name.strip():
            raise InvalidRequest("fileName is required")
        if source_size_bytes is None or source_size_bytes <= 0:
            raise InvalidRequest("fileSize must be a positive number of bytes")
        if chunk_count is not None and chunk_count <= 0:
            raise InvalidRequest("chunkCount must be positive when provided")
        if chunk_count is not None and chunk_count > self.max_chunk_count:
            raise InvalidRequest(f"chunkCount must not exceed {self.max_chunk_count}")

        strategy = (
            UploadStrategy.SINGLE if chunk_count is None else UploadStrategy.MULTIPART
        )
        session = IngestionSession(
            id=str(uuid4()),
            source_name=source_name.strip(),
            source_size_bytes=source_size_bytes,
            strategy=strategy,
            total_chunks=chunk_count or 1,
        )
        credentials = self._credentials(session, range(session.total_chunks))
        self.sessions.create(session)
        logger.info(
            "Initiated %s upload %s with %s credential(s)",
            strategy,
            session.id,
            len(credentials),
        )
        return UploadTicket(
            session_id=session.id,
            strategy=strategy,
            total_chunks=session.total_chunks,
            credentials=credentials,
        )

    def record_chunk_complete(
        self, session_id: str, chunk_index: int, outcome: ChunkOutcome | str
    ) -> UploadProgress:
        """Record a chunk result; repeating a completed index changes nothing."""
        try:
            outcome = ChunkOutcome(outcome)
        except ValueError as exc:
            raise InvalidRequest(f"Unknown chunk outcome: {outcome}") from exc

        def change(session: IngestionSession) -> IngestionSession:
            if not 0 <= chunk_index < session.total_chunks:
                raise InvalidRequest(
                    f"chunkIndex {chunk_index} is outside 0..{session.total_chunks - 1}"
                )
            if session.status is not SessionStatus.UPLOADING:
                raise NotReady(f"Session {session.id} is no longer accepting chunks")
            if outcome is ChunkOutcome.COMPLETED:
                return with_chunk(session, chunk_index)
            return session

        session = self.sessions.mutate(session_id, change)
        if outcome is ChunkOutcome.FAILED:
            logger.info("Client reported chunk %s of %s failed", chunk_index, session_id)
        return _progress(session)

    def status(self, session_id: str) -> UploadProgress:
        """Return completed and remaining chunk indices."""
        return _progress(self.sessions.get(session_id))

    def reissue_credentials(
        self, session_id: str, chunk_indices: list[int] | None = None
    ) -> list[WriteCredential]:
        """Issue fresh credentials, by default for the remaining chunks only."""
        session = self.sessions.get(session_id)
        if session.status is not SessionStatus.UPLOADING:
            raise NotReady(f"Session {session_id} is no longer accepting chunks")
        indices = (
            session.remaining_chunk_indices if chunk_indices is None else chunk_indices
        )
        for index in indices:
            if not 0 <= index < session.total_chunks:
                raise InvalidRequest(f"chunkIndex {index} is out of range")
        return self._credentials(session, indices)

    def _credentials(
        self, session: IngestionSession, indices: Iterable[int]
    ) -> list[WriteCredential]:
        expires_at = datetime.now(tz=UTC) + timedelta(
            seconds=self.upload_url_ttl_seconds
        )
        credentials = []
        for index in indices:
            key = upload_key(session, index)
            try:
                url = self.object_store.create_upload_url(
                    key, self.upload_url_ttl_seconds
                )
            except Exception as exc:
                logger.exception(
                    "Failed to sign upload URL", extra={"session_id": session.id}
                )
                raise ExternalFailure(f"Could not issue upload URL: {exc}") from exc
            credentials.append(
                WriteCredential(
                    chunk_index=index,
                    upload_url=url,
                    storage_key=key,
                    expires_at=expires_at,
                )
            )
        return credentials


def upload_key(session: IngestionSession, chunk_index: int) -> str:
    """Object key the client writes for ``chunk_index``."""
    if session.strategy is UploadStrategy.SINGLE:
        return storage_keys.source_key(session.id, session.source_name)
    return storage_keys.chunk_key(session.id, chunk_index)


def _progress(session: IngestionSession) -> UploadProgress:
    return UploadProgress(
        session_id=session.id,
        status=session.status,
        total_chunks=session.total_chunks,
        completed_chunk_indices=list(session.completed_chunk_indices),
        remaining_chunk_indices=session.remaining_chunk_indices,
        last_error=session.last_error,
    )
