"""Batch submission of segments to the external analysis service."""

import asyncio
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Protocol

from media_ingest.domain.errors import ExternalFailure, NotReady
from media_ingest.domain.sessions import SessionStatus
from media_ingest.services.session_store import SessionStoreAdapter
from media_ingest.services.storage import ObjectStore

logger = logging.getLogger(__name__)


class TransientAnalysisError(RuntimeError):
    """Raised by clients for failures worth retrying, such as dropped connections."""


class AnalysisClient(Protocol):
    """Interface for the external batch analysis endpoint."""

    async def analyze_batch(self, references: list[str]) -> dict[str, object]:
        """Submit all references in one call and return the structured result."""


class ReferenceMode(StrEnum):
    """How segments are referenced in the batch request."""

    SIGNED_URL = "signed_url"
    OBJECT_KEY = "object_key"


@dataclass
class AnalysisDispatcher:
    """Submits a segmented session for analysis and records the outcome.

    Each call submits at most once per attempt; repeated calls after a
    failure submit again, and work already charged to the service is not
    deduplicated.
    """

    sessions: SessionStoreAdapter
    object_store: ObjectStore
    client: AnalysisClient
    reference_mode: ReferenceMode = ReferenceMode.SIGNED_URL
    reference_url_ttl_seconds: int = 86400
    max_attempts: int = 1
    retry_backoff_seconds: float = 5.0

    async def dispatch(self, session_id: str) -> dict[str, object]:
        """Analyze a ``chunked`` session, or retry a failed one with segments."""
        session = self.sessions.transition(session_id, SessionStatus.ANALYZING)
        if not session.segment_refs:
            message = "Session has no segments to analyze"
            self.sessions.mark_failed(session_id, message)
            raise NotReady(message)

        try:
            references = self._references(session.segment_refs)
            logger.info(
                "Submitting %s segments of %s for analysis",
                len(references),
                session_id,
            )
            result = await self._submit(references)
        except asyncio.CancelledError:
            self.sessions.mark_failed(session_id, "Analysis was cancelled")
            raise
        except Exception as exc:
            logger.exception("Analysis failed", extra={"session_id": session_id})
            message = f"Analysis failed: {exc}"
            self.sessions.mark_failed(session_id, message)
            raise ExternalFailure(message) from exc

        self.sessions.transition(
            session_id,
            SessionStatus.COMPLETED,
            analysis_result=result,
            completed_at=datetime.now(tz=UTC),
        )
        logger.info("Analysis completed for %s", session_id)
        return result

    def _references(self, segment_refs: list[str]) -> list[str]:
        if self.reference_mode is ReferenceMode.OBJECT_KEY:
            return list(segment_refs)
        return [
            self.object_store.create_download_url(key, self.reference_url_ttl_seconds)
            for key in segment_refs
        ]

    async def _submit(self, references: list[str]) -> dict[str, object]:
        attempt = 1
        while True:
            try:
                result = await self.client.analyze_batch(references)
            except TransientAnalysisError as exc:
                if attempt >= self.max_attempts:
                    raise
                logger.warning(
                    "Analysis attempt %s/%s failed: %s",
                    attempt,
                    self.max_attempts,
                    exc,
                )
                await asyncio.sleep(self.retry_backoff_seconds * attempt)
                attempt += 1
                continue
            if not isinstance(result, dict):
                raise ValueError("Analysis service returned a non-object result")
            return result
