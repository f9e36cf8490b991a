"""Typed read/modify/write access to persisted ingestion sessions."""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

from pydantic import ValidationError

from media_ingest.domain.errors import ExternalFailure, NotFound
from media_ingest.domain.sessions import (
    IngestionSession,
    SessionStatus,
    ensure_transition,
)

logger = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Key-value store with per-key expiry."""

    def load(self, key: str) -> str | None:
        """Return the stored value, or None when missing or expired."""

    def save(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value unconditionally with a TTL."""

    def compare_and_set(
        self, key: str, expected: str, value: str, ttl_seconds: int
    ) -> bool:
        """Replace ``expected`` with ``value`` atomically; False on conflict."""

    def ping(self) -> bool:
        """Return whether the store is reachable."""


@dataclass
class SessionStoreAdapter:
    """Persists whole session records and refreshes expiry on every write."""

    store: SessionStore
    ttl_seconds: int = 7200
    max_write_attempts: int = 50

    def create(self, session: IngestionSession) -> IngestionSession:
        """Persist a new session record."""
        self._save(_key(session.id), session.model_dump_json())
        logger.info("Created session %s", session.id)
        return session

    def get(self, session_id: str) -> IngestionSession:
        """Return a session or raise ``NotFound``."""
        raw = self._load(_key(session_id))
        if raw is None:
            raise NotFound(f"Upload session {session_id} not found")
        return _decode(session_id, raw)

    def mutate(
        self,
        session_id: str,
        change: Callable[[IngestionSession], IngestionSession],
    ) -> IngestionSession:
        """Apply ``change`` as an atomic read-modify-write and return the result.

        ``change`` may be called more than once when a concurrent writer wins
        the race, so it must be a pure function of the record it receives.
        Exceptions raised by ``change`` abort the write and propagate.
        """
        key = _key(session_id)
        for _ in range(self.max_write_attempts):
            raw = self._load(key)
            if raw is None:
                raise NotFound(f"Upload session {session_id} not found")
            current = _decode(session_id, raw)
            updated = change(current).model_copy(
                update={"version": current.version + 1}
            )
            if self._compare_and_set(key, raw, updated.model_dump_json()):
                return updated
        raise ExternalFailure(
            f"Session {session_id} is under heavy contention, try again"
        )

    def transition(
        self, session_id: str, target: SessionStatus, **changes: object
    ) -> IngestionSession:
        """Move a session along a legal edge, applying ``changes`` in the same write."""

        def change(session: IngestionSession) -> IngestionSession:
            ensure_transition(session, target)
            update: dict[str, object] = {"status": target, **changes}
            if target is not SessionStatus.FAILED:
                update.setdefault("last_error", None)
            return session.model_copy(update=update)

        session = self.mutate(session_id, change)
        logger.info("Session %s moved to %s", session_id, target)
        return session

    def mark_failed(self, session_id: str, message: str) -> IngestionSession:
        """Record a fatal error; re-entering failed overwrites ``last_error``."""

        def change(session: IngestionSession) -> IngestionSession:
            if session.status is SessionStatus.COMPLETED:
                return session
            return session.model_copy(
                update={"status": SessionStatus.FAILED, "last_error": message}
            )

        session = self.mutate(session_id, change)
        logger.warning("Session %s failed: %s", session_id, message)
        return session

    def ping(self) -> bool:
        """Return whether the backing store is reachable."""
        return self.store.ping()

    def _load(self, key: str) -> str | None:
        try:
            return self.store.load(key)
        except Exception as exc:
            raise _unavailable(key, exc) from exc

    def _save(self, key: str, value: str) -> None:
        try:
            self.store.save(key, value, self.ttl_seconds)
        except Exception as exc:
            raise _unavailable(key, exc) from exc

    def _compare_and_set(self, key: str, expected: str, value: str) -> bool:
        try:
            return self.store.compare_and_set(key, expected, value, self.ttl_seconds)
        except Exception as exc:
            raise _unavailable(key, exc) from exc


def _key(session_id: str) -> str:
    return f"upload:{session_id}"


def _unavailable(key: str, exc: Exception) -> ExternalFailure:
    logger.exception("Session store call failed for %s", key)
    return ExternalFailure(f"Session store is unavailable: {exc}")


def _decode(session_id: str, raw: str) -> IngestionSession:
    try:
        return IngestionSession.model_validate_json(raw)
    except ValidationError as exc:
        raise ExternalFailure(
            f"Stored session {session_id} is unreadable: {exc.error_count()} errors"
        ) from exc
