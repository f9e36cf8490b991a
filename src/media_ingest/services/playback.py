"""Time-limited playback access to originals and segments."""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import StrEnum

from media_ingest.domain.errors import ExternalFailure, NotReady
from media_ingest.domain.playback import AccessDescriptor, ArtifactRole, PlaybackResult
from media_ingest.domain.sessions import IngestionSession, UploadStrategy
from media_ingest.services.session_store import SessionStoreAdapter
from media_ingest.services.storage import ObjectStore
from media_ingest.services.uploads import upload_key

logger = logging.getLogger(__name__)


class PlaybackMode(StrEnum):
    """Which segments playback exposes once a session is segmented."""

    ALL_SEGMENTS = "all_segments"
    FIRST_SEGMENT = "first_segment"


@dataclass
class PlaybackResolver:
    """Builds signed read descriptors; never mutates session state."""

    sessions: SessionStoreAdapter
    object_store: ObjectStore
    url_ttl_seconds: int = 86400
    mode: PlaybackMode = PlaybackMode.ALL_SEGMENTS

    def resolve_playback(self, session_id: str) -> PlaybackResult:
        """Return segment descriptors when segmented, else the original source."""
        session = self.sessions.get(session_id)
        if session.segment_refs:
            keys = list(session.segment_refs)
            if self.mode is PlaybackMode.FIRST_SEGMENT:
                keys = keys[:1]
            return self._result(session, ArtifactRole.SEGMENT, keys)
        if not session.all_chunks_complete:
            raise NotReady(f"Session {session_id} has nothing playable stored yet")
        if session.strategy is UploadStrategy.SINGLE:
            return self._result(session, ArtifactRole.SOURCE, [upload_key(session, 0)])
        keys = [upload_key(session, index) for index in range(session.total_chunks)]
        return self._result(session, ArtifactRole.SOURCE_CHUNK, keys)

    def resolve_segments(self, session_id: str) -> PlaybackResult:
        """Return every segment descriptor regardless of playback mode."""
        session = self.sessions.get(session_id)
        if not session.segment_refs:
            raise NotReady(f"Session {session_id} has not been segmented yet")
        return self._result(session, ArtifactRole.SEGMENT, list(session.segment_refs))

    def _result(
        self, session: IngestionSession, role: ArtifactRole, keys: list[str]
    ) -> PlaybackResult:
        expires_at = datetime.now(tz=UTC) + timedelta(seconds=self.url_ttl_seconds)
        descriptors = []
        for index, key in enumerate(keys):
            try:
                url = self.object_store.create_download_url(key, self.url_ttl_seconds)
            except Exception as exc:
                logger.exception(
                    "Failed to sign playback URL", extra={"session_id": session.id}
                )
                raise ExternalFailure(f"Could not issue playback URL: {exc}") from exc
            descriptors.append(
                AccessDescriptor(
                    index=index,
                    role=role,
                    storage_key=key,
                    url=url,
                    expires_at=expires_at,
                )
            )
        return PlaybackResult(
            session_id=session.id,
            segmented=role is ArtifactRole.SEGMENT,
            descriptors=descriptors,
        )
