"""In-process session store for local runs."""

import threading
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from media_ingest.services.session_store import SessionStore


@dataclass
class _Entry:
    value: str
    expires_at: datetime


class InMemorySessionStore(SessionStore):
    """Session store held in a dict behind one lock.

    Expired entries are dropped when read and swept on every write, so
    abandoned sessions do not accumulate.
    """

    def __init__(self) -> None:
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def load(self, key: str) -> str | None:
        """Return a value if present and not expired."""
        with self._lock:
            return self._live_value(key)

    def save(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store a value with a TTL."""
        with self._lock:
            self._sweep()
            self._entries[key] = _entry(value, ttl_seconds)

    def compare_and_set(
        self, key: str, expected: str, value: str, ttl_seconds: int
    ) -> bool:
        """Swap when the current value matches."""
        with self._lock:
            self._sweep()
            if self._live_value(key) != expected:
                return False
            self._entries[key] = _entry(value, ttl_seconds)
            return True

    def ping(self) -> bool:
        """Always reachable."""
        return True

    def _live_value(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if datetime.now(tz=UTC) >= entry.expires_at:
            del self._entries[key]
            return None
        return entry.value

    def _sweep(self) -> None:
        now = datetime.now(tz=UTC)
        expired = [
            key for key, entry in self._entries.items() if now >= entry.expires_at
        ]
        for key in expired:
            del self._entries[key]


def _entry(value: str, ttl_seconds: int) -> _Entry:
    return _Entry(
        value=value,
        expires_at=datetime.now(tz=UTC) + timedelta(seconds=ttl_seconds),
    )
