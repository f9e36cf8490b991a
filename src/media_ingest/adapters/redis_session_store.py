"""Redis-backed session store."""

from dataclasses import dataclass

from redis import Redis
from redis.exceptions import RedisError, WatchError

from media_ingest.services.session_store import SessionStore


@dataclass
class RedisSessionStore(SessionStore):
    """Session store using SETEX and WATCH/MULTI compare-and-set."""

    client: Redis

    @classmethod
    def create(cls, url: str) -> "RedisSessionStore":
        """Create a store from a redis:// URL."""
        return cls(client=Redis.from_url(url, decode_responses=True))

    def load(self, key: str) -> str | None:
        """Return the value stored under ``key``."""
        return self.client.get(key)

    def save(self, key: str, value: str, ttl_seconds: int) -> None:
        """Store ``value`` with an absolute expiry."""
        self.client.set(key, value, ex=ttl_seconds)

    def compare_and_set(
        self, key: str, expected: str, value: str, ttl_seconds: int
    ) -> bool:
        """Swap the value if nobody else wrote it since ``expected`` was read."""
        with self.client.pipeline() as pipe:
            try:
                pipe.watch(key)
                if pipe.get(key) != expected:
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(key, value, ex=ttl_seconds)
                pipe.execute()
            except WatchError:
                return False
        return True

    def ping(self) -> bool:
        """Return whether Redis answers PING."""
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def close(self) -> None:
        """Release pooled connections."""
        self.client.close()
